"""
Shared document store.

The document (agent presence + task list) lives in one JSON file at the
repository root and is always rewritten whole: read, modify in memory,
write back with the version bumped. Nothing here is mutually exclusive
across processes; exclusivity against the peer is left to the replication
transport, which is best-effort.
"""
import json
import logging
import os
import secrets
import tempfile
import time
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Tuple, TypeVar, Union

from pydantic import ValidationError

from ..exceptions import CorruptDocument, DocumentNotFound, TaskAlreadyAssigned, TaskNotFound
from .models import (
    DEFAULT_AGENT_IDS,
    AgentState,
    AgentStatus,
    SharedDocument,
    Task,
    TaskStatus,
    utcnow,
)


logger = logging.getLogger(__name__)

STATE_FILE = ".sync-state.json"
ACTIVE_WINDOW_SECONDS = 5 * 60

T = TypeVar("T")


def atomic_write_json(path: Path, data: Dict[str, Any]):
    """Write JSON through a temp file in the same directory, then rename over the target."""
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
            f.write("\n")
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def new_task_id() -> str:
    return f"task-{int(time.time() * 1000)}-{secrets.token_hex(3)}"


class DocumentStore:
    """
    Read/write access to the shared document for one agent.

    Status helpers only ever touch the calling agent's own entry; the peer's
    entry is read-only from here.
    """

    def __init__(
        self,
        project_root: Union[str, Path],
        agent_id: str,
        state_file: str = STATE_FILE,
        peer_id: Optional[str] = None,
        active_window: float = ACTIVE_WINDOW_SECONDS,
    ):
        """
        Initialize the store.

        Args:
            project_root: Root of the repository checkout
            agent_id: Identity of the local agent
            state_file: Document file name, relative to project_root
            peer_id: Identity of the other agent (derived from the document when None)
            active_window: Seconds since lastSeen within which the peer counts as active
        """
        self.project_root = Path(project_root)
        self.agent_id = agent_id
        self.path = self.project_root / state_file
        self.active_window = active_window
        self._peer_id = peer_id

    # -- lifecycle -----------------------------------------------------

    def exists(self) -> bool:
        return self.path.exists()

    def initialize(self) -> bool:
        """
        Create the document with default agent entries if it is absent.

        Returns:
            True if a new document was written, False if one already existed
        """
        if self.exists():
            return False

        agent_ids = list(DEFAULT_AGENT_IDS)
        for extra in (self.agent_id, self._peer_id):
            if extra and extra not in agent_ids:
                agent_ids.append(extra)

        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.write(SharedDocument.initial(agent_ids))
        logger.info("Created shared document at %s", self.path)
        return True

    def read(self) -> SharedDocument:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            raise DocumentNotFound(self.path) from None

        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise CorruptDocument(self.path, str(e)) from e

        if not isinstance(data, dict):
            raise CorruptDocument(self.path, "top-level value is not an object")

        try:
            return SharedDocument.model_validate(data)
        except ValidationError as e:
            raise CorruptDocument(self.path, f"{e.error_count()} validation error(s)") from e

    def write(self, doc: SharedDocument) -> SharedDocument:
        """Bump the version and persist the whole document."""
        doc.version += 1
        atomic_write_json(self.path, doc.to_json_dict())
        logger.debug("Wrote shared document version %d", doc.version)
        return doc

    def update(self, mutate: Callable[[SharedDocument], T]) -> T:
        """Read, apply ``mutate`` and write back. Returns whatever ``mutate`` returns."""
        doc = self.read()
        result = mutate(doc)
        self.write(doc)
        return result

    # -- agent presence ------------------------------------------------

    def _own_entry(self, doc: SharedDocument) -> AgentStatus:
        entry = doc.agents.get(self.agent_id)
        if entry is None:
            entry = AgentStatus.fresh()
            doc.agents[self.agent_id] = entry
        return entry

    def update_self_status(self, status: Union[AgentState, str], current_task: Optional[str] = None) -> AgentStatus:
        """Set the local agent's status and current task, refreshing lastSeen."""
        state = AgentState(status)

        def mutate(doc: SharedDocument) -> AgentStatus:
            entry = self._own_entry(doc)
            entry.status = state
            entry.current_task = current_task
            entry.last_seen = utcnow()
            return entry

        return self.update(mutate)

    def heartbeat(self) -> AgentStatus:
        def mutate(doc: SharedDocument) -> AgentStatus:
            entry = self._own_entry(doc)
            entry.last_seen = utcnow()
            return entry

        return self.update(mutate)

    def get_self(self) -> Optional[AgentStatus]:
        return self.read().agents.get(self.agent_id)

    def peer_id_for(self, doc: Optional[SharedDocument] = None) -> str:
        """Identity of the other agent: configured, else found in the document, else the default pair."""
        if self._peer_id:
            return self._peer_id
        if doc is not None:
            for agent_id in doc.agents:
                if agent_id != self.agent_id:
                    return agent_id
        return "agent-2" if self.agent_id == "agent-1" else "agent-1"

    @property
    def peer_id(self) -> str:
        return self.peer_id_for(self.read() if self.exists() else None)

    def get_peer(self) -> Tuple[str, Optional[AgentStatus]]:
        doc = self.read()
        peer_id = self.peer_id_for(doc)
        return peer_id, doc.agents.get(peer_id)

    def is_peer_active(self) -> bool:
        _, peer = self.get_peer()
        return peer is not None and peer.seen_within(self.active_window)

    # -- tasks ---------------------------------------------------------

    def add_task(self, description: str, metadata: Optional[Dict[str, Any]] = None) -> Task:
        """Append a pending task and return it."""

        def mutate(doc: SharedDocument) -> Task:
            created_at = utcnow()
            if doc.tasks and doc.tasks[-1].created_at > created_at:
                # Peer clock ahead of ours; keep createdAt ordered with the list
                created_at = doc.tasks[-1].created_at

            task_id = new_task_id()
            while doc.find_task(task_id) is not None:
                task_id = new_task_id()

            task = Task(
                id=task_id,
                description=description,
                status=TaskStatus.PENDING,
                assigned_to=None,
                created_at=created_at,
                metadata=dict(metadata or {}),
            )
            doc.tasks.append(task)
            return task

        task = self.update(mutate)
        logger.info("Added task %s: %s", task.id, description)
        return task

    def append_task(self, task: Task) -> bool:
        """Re-insert an existing task record if its id is absent. Returns True when written."""
        doc = self.read()
        if doc.find_task(task.id) is not None:
            return False
        doc.tasks.append(task)
        self.write(doc)
        return True

    def get_task(self, task_id: str) -> Task:
        task = self.read().find_task(task_id)
        if task is None:
            raise TaskNotFound(task_id)
        return task

    def get_available_task(self) -> Optional[Task]:
        for task in self.read().tasks:
            if task.is_available():
                return task
        return None

    def assign_task(self, task_id: str) -> Task:
        """
        Assign a task to the local agent and mark the agent as working.

        Idempotent for the current owner: a task already assigned to us is
        returned unchanged without writing.

        Raises:
            TaskNotFound: no task with that id
            TaskAlreadyAssigned: the task belongs to the peer
        """
        doc = self.read()
        task = doc.find_task(task_id)
        if task is None:
            raise TaskNotFound(task_id)

        if task.assigned_to == self.agent_id:
            return task
        if task.assigned_to:
            raise TaskAlreadyAssigned(task_id, task.assigned_to)

        now = utcnow()
        task.assigned_to = self.agent_id
        task.status = TaskStatus.IN_PROGRESS
        task.started_at = now

        entry = self._own_entry(doc)
        entry.status = AgentState.WORKING
        entry.current_task = task_id
        entry.last_seen = now

        self.write(doc)
        logger.info("Assigned task %s to %s", task_id, self.agent_id)
        return task

    def complete_task(self, task_id: str, result: Any = None) -> Task:
        """
        Mark a task completed and return the agent to idle.

        Raises:
            TaskNotFound: no task with that id
            TaskAlreadyAssigned: the task belongs to the peer
        """
        doc = self.read()
        task = doc.find_task(task_id)
        if task is None:
            raise TaskNotFound(task_id)
        if task.assigned_to and task.assigned_to != self.agent_id:
            raise TaskAlreadyAssigned(task_id, task.assigned_to)

        now = utcnow()
        if not task.assigned_to:
            task.assigned_to = self.agent_id
        task.status = TaskStatus.COMPLETED
        task.completed_at = now
        task.result = result if result is not None else {}

        entry = self._own_entry(doc)
        if entry.current_task in (None, task_id):
            entry.status = AgentState.IDLE
            entry.current_task = None
        entry.last_seen = now

        self.write(doc)
        logger.info("Completed task %s", task_id)
        return task

    def get_tasks(
        self,
        status: Optional[Union[TaskStatus, str]] = None,
        assigned_to: Optional[str] = None,
    ) -> Tuple[Task, ...]:
        """Tasks in document order matching every given filter."""
        wanted = TaskStatus(status) if status is not None else None
        return tuple(
            task for task in self.read().tasks
            if (wanted is None or task.status == wanted)
            and (assigned_to is None or task.assigned_to == assigned_to)
        )
