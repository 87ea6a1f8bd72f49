"""
Task claim/complete protocol on top of the shared document.
"""
import logging
from typing import Any, Callable, Dict, Optional, Tuple, Union

from ..exceptions import TaskAlreadyAssigned, TaskNotFound
from ..replication import LocalTransport, Transport
from .models import AgentState, SharedDocument, Task, TaskStatus
from .state import DocumentStore


logger = logging.getLogger(__name__)

MAX_CLAIM_ATTEMPTS = 3


class TaskQueue:
    """
    Backlog operations for one agent.

    A claim is only trusted after it has been pushed and read back: when the
    peer claimed the same task first, the replicated document names the peer
    and the claim counts as a lost race, not as an error.
    """

    def __init__(self, store: DocumentStore, transport: Optional[Transport] = None,
                 max_claim_attempts: int = MAX_CLAIM_ATTEMPTS):
        self.store = store
        self.transport = transport or LocalTransport()
        self.max_claim_attempts = max_claim_attempts

    @property
    def agent_id(self) -> str:
        return self.store.agent_id

    def _replicate(self, message: str, check: Callable[[SharedDocument], bool]) -> bool:
        """Push, then report whether ``check`` holds on the document we now see."""
        self.transport.push(message)
        return check(self.store.read())

    def add_task(self, description: str, metadata: Optional[Dict[str, Any]] = None) -> Task:
        """
        Add a pending task and publish it.

        The peer sees the task only after its next successful pull. If a sync
        conflict replaced our document with the remote copy, the task is
        appended again under the same id.
        """
        task = self.store.add_task(description, metadata)

        def present(doc: SharedDocument) -> bool:
            return doc.find_task(task.id) is not None

        message = f"Added task: {description}"
        for _ in range(max(self.max_claim_attempts, 1)):
            if self._replicate(message, present):
                return task
            logger.warning("Task %s lost in sync conflict, adding it again", task.id)
            self.store.append_task(task)

        # Publish the last re-append instead of waiting for the next sync round
        self.transport.push(message)
        return task

    def get_next_task(self) -> Optional[Task]:
        """
        Claim the first available task.

        Returns:
            The claimed task, or None when nothing could be claimed within
            max_claim_attempts
        """
        for _ in range(self.max_claim_attempts):
            task = self.store.get_available_task()
            if task is None:
                return None

            try:
                claimed = self.store.assign_task(task.id)
            except TaskAlreadyAssigned as e:
                logger.info("Task %s was taken by %s, trying next task...", task.id, e.assigned_to)
                continue

            if self._replicate(f"Claimed task: {task.description}", lambda doc: self._owns(doc, task.id)):
                return claimed

            logger.info("Lost claim race for task %s, trying next task...", task.id)
            self._clear_lost_claim(task.id)

        logger.info("No available tasks after %d attempts", self.max_claim_attempts)
        return None

    def _owns(self, doc: SharedDocument, task_id: str) -> bool:
        task = doc.find_task(task_id)
        return task is not None and task.assigned_to == self.agent_id

    def _clear_lost_claim(self, task_id: str):
        me = self.store.get_self()
        if me is not None and me.current_task == task_id:
            self.store.update_self_status(AgentState.IDLE, None)

    def get_current_task(self) -> Optional[Task]:
        doc = self.store.read()
        me = doc.agents.get(self.agent_id)
        if me is None or not me.current_task:
            return None
        return doc.find_task(me.current_task)

    def complete_current_task(self, result: Any = None) -> Optional[Task]:
        """
        Complete the task the local agent is working on.

        Returns:
            The completed task, or None when there is no current task
        """
        me = self.store.get_self()
        if me is None or not me.current_task:
            logger.info("No current task to complete")
            return None

        try:
            task = self.store.complete_task(me.current_task, result)
        except TaskNotFound:
            logger.warning("Current task %s no longer exists", me.current_task)
            self.store.update_self_status(AgentState.IDLE, None)
            return None

        self.transport.push(f"Completed task: {task.description}")
        return task

    def list_tasks(self, status: Optional[Union[TaskStatus, str]] = None,
                   assigned_to: Optional[str] = None) -> Tuple[Task, ...]:
        return self.store.get_tasks(status=status, assigned_to=assigned_to)

    def get_my_tasks(self) -> Tuple[Task, ...]:
        return self.list_tasks(assigned_to=self.agent_id)

    def get_pending_tasks(self) -> Tuple[Task, ...]:
        return self.list_tasks(status=TaskStatus.PENDING)

    def get_completed_tasks(self) -> Tuple[Task, ...]:
        return self.list_tasks(status=TaskStatus.COMPLETED)
