"""Test doubles and git helpers."""
import shutil
from typing import Callable, List, Optional

import pytest

from sync_work.replication import GitClient, PullResult, PushResult, Transport


class FakeTransport(Transport):
    """
    In-memory transport recording every call.

    ``on_pull`` and ``on_push`` let a test play the peer: they run where a
    real transport would merge remote changes into the working tree.
    """

    def __init__(self):
        self.pulls = 0
        self.pushes: List[str] = []
        self.on_pull: Optional[Callable[[], None]] = None
        self.on_push: Optional[Callable[[str], None]] = None
        self.push_result: Optional[PushResult] = None

    def initialize(self) -> bool:
        return False

    def pull(self) -> PullResult:
        self.pulls += 1
        if self.on_pull:
            self.on_pull()
        return PullResult(success=True)

    def push(self, message: str) -> PushResult:
        self.pushes.append(message)
        if self.on_push:
            self.on_push(message)
        if self.push_result is not None:
            return self.push_result
        return PushResult(success=True, committed=True, pushed=True, message=message)

    def status(self):
        return None

    def recent_commits(self, count: int = 10):
        return []


requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git is not installed")


def git(cwd, *args) -> str:
    """Run a git command for test setup, failing the test on error."""
    result = GitClient(cwd, author="tester").run(list(args))
    assert result.success, f"git {' '.join(args)} failed: {result.error}"
    return result.output

