"""
Sync Work - two agents coordinating through a shared git repository.
"""

__version__ = "0.1.0"

from .config import Settings
from .coordination import DocumentStore, LockManager, TaskQueue
from .exceptions import (
    ConflictError,
    CorruptDocument,
    DocumentNotFound,
    LockTimeout,
    PushExhausted,
    SyncWorkError,
    TaskAlreadyAssigned,
    TaskNotFound,
)
from .orchestrator import SyncAgent
from .replication import GitTransport, LocalTransport, Transport

__all__ = [
    'SyncAgent',
    'Settings',
    'DocumentStore',
    'LockManager',
    'TaskQueue',
    'Transport',
    'GitTransport',
    'LocalTransport',
    'SyncWorkError',
    'DocumentNotFound',
    'CorruptDocument',
    'LockTimeout',
    'ConflictError',
    'PushExhausted',
    'TaskNotFound',
    'TaskAlreadyAssigned',
]
