"""
Coordination infrastructure: shared document, task queue and resource locks.
"""
from .models import AgentState, AgentStatus, LockRecord, SharedDocument, Task, TaskStatus
from .state import DocumentStore
from .file_lock import LockManager, lock_file_name
from .task_queue import TaskQueue

__all__ = [
    'AgentState',
    'AgentStatus',
    'LockRecord',
    'SharedDocument',
    'Task',
    'TaskStatus',
    'DocumentStore',
    'LockManager',
    'lock_file_name',
    'TaskQueue',
]
