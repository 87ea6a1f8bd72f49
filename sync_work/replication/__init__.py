"""
Replication of the coordination artifacts through git.
"""
from .git_client import CommitEntry, GitClient, GitOperationResult, RepoStatus
from .transport import GitTransport, LocalTransport, PullResult, PushResult, Transport

__all__ = [
    'CommitEntry',
    'GitClient',
    'GitOperationResult',
    'RepoStatus',
    'GitTransport',
    'LocalTransport',
    'PullResult',
    'PushResult',
    'Transport',
]
