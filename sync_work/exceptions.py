"""
Error taxonomy for the coordination engine.

Transient replication problems (network down, remote unreachable) are not
exceptions: the transport reports them as failed results so periodic loops
keep running. Everything below is a protocol-level condition the caller has
to see.
"""
from typing import Iterable, Optional


class SyncWorkError(Exception):
    """Base class for all sync-work errors."""


class DocumentNotFound(SyncWorkError):
    """The shared document does not exist yet (run initialize first)."""

    def __init__(self, path):
        self.path = path
        super().__init__(f"Shared document not found: {path}")


class CorruptDocument(SyncWorkError):
    """The shared document exists but cannot be parsed or validated."""

    def __init__(self, path, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Shared document {path} is corrupt: {reason}")


class LockTimeout(SyncWorkError):
    """Lock acquisition exceeded its deadline."""

    def __init__(self, resource: str, timeout: float, owner: Optional[str] = None):
        self.resource = resource
        self.timeout = timeout
        self.owner = owner
        held_by = f" (held by {owner})" if owner else ""
        super().__init__(f"Failed to acquire lock for {resource} after {timeout}s{held_by}")


class ConflictError(SyncWorkError):
    """A merge conflict on a path that cannot be resolved automatically."""

    def __init__(self, paths: Iterable[str]):
        self.paths = list(paths)
        super().__init__(f"Unresolved merge conflict in: {', '.join(self.paths)}")


class PushExhausted(SyncWorkError):
    """The remote kept rejecting our push after every retry."""

    def __init__(self, attempts: int, error: str = ""):
        self.attempts = attempts
        self.error = error
        detail = f": {error}" if error else ""
        super().__init__(f"Push rejected after {attempts} attempts{detail}")


class TaskNotFound(SyncWorkError):
    def __init__(self, task_id: str):
        self.task_id = task_id
        super().__init__(f"Task {task_id} not found")


class TaskAlreadyAssigned(SyncWorkError):
    def __init__(self, task_id: str, assigned_to: str):
        self.task_id = task_id
        self.assigned_to = assigned_to
        super().__init__(f"Task {task_id} already assigned to {assigned_to}")
