"""
Configuration settings for sync-work agents.
"""
from pathlib import Path
from typing import Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Agent settings, read from the environment and an optional .env file."""

    # Identity
    agent_id: str = "agent-1"
    peer_id: Optional[str] = None  # Derived from the shared document when unset

    # Repository layout
    project_root: Path = Field(default_factory=Path.cwd)
    state_file: str = ".sync-state.json"
    lock_dir: str = ".sync-locks"

    # Timers (seconds)
    sync_interval: float = 30.0
    heartbeat_interval: float = 10.0

    # Locking (seconds)
    lock_timeout: float = 30.0
    lock_poll_interval: float = 1.0
    stale_after: float = 300.0

    # Peer liveness window (seconds)
    active_window: float = 300.0

    # Replication
    transport: Literal["git", "local"] = "git"
    remote: str = "origin"
    push_retries: int = 3

    # Task claiming
    max_claim_attempts: int = 3

    # Logging
    log_level: str = "INFO"
    log_file: Optional[str] = None

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @field_validator("push_retries", "max_claim_attempts")
    @classmethod
    def _non_negative(cls, value: int) -> int:
        if value < 0:
            raise ValueError("must be >= 0")
        return value

    @field_validator("log_level")
    @classmethod
    def _upper_level(cls, value: str) -> str:
        return value.upper()

    @property
    def state_path(self) -> Path:
        return self.project_root / self.state_file

    @property
    def lock_path(self) -> Path:
        return self.project_root / self.lock_dir
