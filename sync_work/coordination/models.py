"""
Data model of the shared coordination document and lock artifacts.

Everything here is serialised with camelCase keys and keeps unknown fields,
so a document written by a newer agent survives a read-modify-write by an
older one.
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer, WrapValidator
from pydantic.alias_generators import to_camel


DEFAULT_AGENT_IDS = ("agent-1", "agent-2")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AgentState(str, Enum):
    IDLE = "idle"
    WORKING = "working"
    OFFLINE = "offline"


class TaskStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"


class DocumentModel(BaseModel):
    """Base for persisted models: camelCase aliases, extra fields retained."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )

    def to_json_dict(self) -> Dict[str, Any]:
        # exclude_unset keeps absent optional fields absent on rewrite
        return self.model_dump(mode="json", by_alias=True, exclude_unset=True)


class Timestamp(datetime):
    """A UTC datetime that remembers the text it was read from."""

    text: Optional[str] = None

    @classmethod
    def wrap(cls, value: datetime, text: Optional[str] = None) -> 'Timestamp':
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        stamp = cls(value.year, value.month, value.day, value.hour, value.minute,
                    value.second, value.microsecond, tzinfo=value.tzinfo)
        stamp.text = text
        return stamp


def format_timestamp(value: datetime) -> str:
    """ISO-8601 in UTC with millisecond precision, e.g. 2024-01-01T12:00:00.000Z."""
    if getattr(value, "text", None):
        return value.text
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def _parse_timestamp(value: Any, handler) -> Timestamp:
    # Keep the original text so a rewrite reproduces it exactly
    text = value if isinstance(value, str) else getattr(value, "text", None)
    return Timestamp.wrap(handler(value), text)


UtcTimestamp = Annotated[
    datetime,
    WrapValidator(_parse_timestamp),
    PlainSerializer(format_timestamp, return_type=str, when_used="json"),
]


class AgentStatus(DocumentModel):
    """Self-reported presence of one agent."""
    status: AgentState = AgentState.IDLE
    current_task: Optional[str] = None
    last_seen: Optional[UtcTimestamp] = None

    @classmethod
    def fresh(cls, status: AgentState = AgentState.IDLE, current_task: Optional[str] = None) -> 'AgentStatus':
        return cls(status=status, current_task=current_task, last_seen=utcnow())

    def seen_within(self, seconds: float, now: Optional[datetime] = None) -> bool:
        if self.last_seen is None:
            return False
        now = now or utcnow()
        return (now - self.last_seen).total_seconds() < seconds


class Task(DocumentModel):
    """One unit of work in the shared backlog."""
    id: str
    description: str
    status: TaskStatus = TaskStatus.PENDING
    assigned_to: Optional[str] = None
    created_at: UtcTimestamp
    started_at: Optional[UtcTimestamp] = None
    completed_at: Optional[UtcTimestamp] = None
    result: Optional[Any] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    def is_available(self) -> bool:
        return self.status == TaskStatus.PENDING and not self.assigned_to


class SharedDocument(DocumentModel):
    """The replicated document: agent presence plus the task list."""
    agents: Dict[str, AgentStatus] = Field(default_factory=dict)
    tasks: List[Task] = Field(default_factory=list)
    version: int = 0

    @classmethod
    def initial(cls, agent_ids=DEFAULT_AGENT_IDS) -> 'SharedDocument':
        return cls(
            agents={agent_id: AgentStatus.fresh() for agent_id in agent_ids},
            tasks=[],
            version=0,
        )

    def find_task(self, task_id: str) -> Optional[Task]:
        for task in self.tasks:
            if task.id == task_id:
                return task
        return None

    def task_counts(self) -> Dict[str, int]:
        counts = {
            "total": len(self.tasks),
            "pending": 0,
            "inProgress": 0,
            "completed": 0,
        }
        keys = {
            TaskStatus.PENDING: "pending",
            TaskStatus.IN_PROGRESS: "inProgress",
            TaskStatus.COMPLETED: "completed",
        }
        for task in self.tasks:
            counts[keys[task.status]] += 1
        return counts


class LockRecord(DocumentModel):
    """Contents of one lock artifact."""
    agent_id: str
    file: str
    acquired_at: UtcTimestamp
    host: Optional[str] = None
    pid: Optional[int] = None

    def age_seconds(self, now: Optional[datetime] = None) -> float:
        now = now or utcnow()
        return (now - self.acquired_at).total_seconds()
