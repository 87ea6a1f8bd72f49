"""
Replication transport: git used as an eventually-consistent shared log.

GitTransport replicates the working tree through commit/pull/push cycles.
LocalTransport is the degraded mode for two agents sharing one working tree
with no repository: every replication call is a successful no-op.
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional, Sequence

from ..exceptions import ConflictError, PushExhausted
from .git_client import CommitEntry, GitClient, GitOperationResult, RepoStatus


logger = logging.getLogger(__name__)

DEFAULT_PUSH_RETRIES = 3
REJECTION_MARKERS = ("[rejected]", "non-fast-forward", "fetch first", "stale info")


@dataclass
class PullResult:
    success: bool
    commits: int = 0
    resolved_conflict: bool = False
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class PushResult:
    success: bool
    committed: bool = False
    pushed: bool = False
    message: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def is_rejection(result: GitOperationResult) -> bool:
    """True when a push failed because the remote moved ahead of us."""
    text = f"{result.output}\n{result.error}"
    return any(marker in text for marker in REJECTION_MARKERS)


class Transport(ABC):
    """Replication boundary used by the store, lock manager and task queue."""

    @abstractmethod
    def initialize(self) -> bool:
        """Prepare the shared medium. Returns True if anything was created."""
        pass

    @abstractmethod
    def pull(self) -> PullResult:
        pass

    @abstractmethod
    def push(self, message: str) -> PushResult:
        pass

    @abstractmethod
    def status(self) -> Optional[RepoStatus]:
        pass

    @abstractmethod
    def recent_commits(self, count: int = 10) -> List[CommitEntry]:
        pass


class LocalTransport(Transport):
    """No replication: both agents see the same files directly."""

    def initialize(self) -> bool:
        return False

    def pull(self) -> PullResult:
        return PullResult(success=True, commits=0)

    def push(self, message: str) -> PushResult:
        return PushResult(success=True, committed=False, pushed=False)

    def status(self) -> Optional[RepoStatus]:
        return None

    def recent_commits(self, count: int = 10) -> List[CommitEntry]:
        return []


class GitTransport(Transport):
    """
    Replication through a git remote.

    Only the coordination artifacts listed in ``auto_resolve`` are ever
    merged automatically, and always by taking the remote copy verbatim.
    Entries ending in "/" match every path below that directory.
    """

    def __init__(
        self,
        client: GitClient,
        agent_id: str,
        remote: str = "origin",
        push_retries: int = DEFAULT_PUSH_RETRIES,
        auto_resolve: Sequence[str] = (".sync-state.json",),
    ):
        self.client = client
        self.agent_id = agent_id
        self.remote = remote
        self.push_retries = push_retries
        self.auto_resolve = tuple(auto_resolve)

    def _message(self, message: str) -> str:
        return f"[{self.agent_id}] {message}"

    def _repo_status(self) -> Optional[RepoStatus]:
        result = self.client.status()
        if not result.success:
            return None
        return result.data["status"]

    def has_remote(self) -> bool:
        return self.remote in self.client.remotes()

    def is_auto_resolvable(self, path: str) -> bool:
        for entry in self.auto_resolve:
            if entry.endswith("/"):
                if path.startswith(entry):
                    return True
            elif path == entry:
                return True
        return False

    def initialize(self) -> bool:
        if self.client.is_repo():
            return False

        logger.info("Initializing git repository...")
        result = self.client.init()
        if not result.success:
            logger.error("Error initializing git: %s", result.error)
            return False

        self.client.add()
        committed = self.client.commit(self._message("Initial commit"))
        if not committed.success:
            logger.debug("Nothing to commit in new repository")
        return True

    def _commit_pending(self, message: str) -> Optional[str]:
        """Stage everything and commit it. Returns the commit message, or None if nothing changed."""
        staged = self.client.add()
        if not staged.success:
            logger.warning("Error staging changes: %s", staged.error)
            return None

        status = self._repo_status()
        if status is None or not status.staged:
            return None

        commit_message = self._message(message)
        committed = self.client.commit(commit_message)
        if not committed.success:
            logger.warning("Error committing changes: %s", committed.error or committed.output)
            return None

        logger.info("Committed: %s", commit_message)
        return commit_message

    def pull(self) -> PullResult:
        """
        Fetch and merge the remote branch.

        Returns:
            PullResult with the number of commits integrated

        Raises:
            ConflictError: a conflicted path outside the coordination artifacts
        """
        if not self.has_remote():
            return PullResult(success=True, commits=0)

        fetched = self.client.fetch(self.remote)
        if not fetched.success:
            logger.warning("Error fetching from %s: %s", self.remote, fetched.error)
            return PullResult(success=False, error=fetched.error or "fetch failed")

        status = self._repo_status()
        if status is None:
            return PullResult(success=False, error="status unavailable")

        behind = status.behind
        if behind == 0:
            logger.debug("Already up to date")
            return PullResult(success=True, commits=0)

        if not status.is_clean:
            # The merge refuses to touch files with uncommitted edits
            self._commit_pending("Checkpoint before sync")

        merged = self.client.pull()
        if merged.success:
            logger.info("Pulled %d commits", behind)
            return PullResult(success=True, commits=behind)

        after = self._repo_status()
        conflicted = after.conflicted if after else []
        if not conflicted:
            error = merged.error or merged.output
            logger.warning("Error pulling changes: %s", error)
            return PullResult(success=False, error=error)

        return self._resolve_conflicts(conflicted, behind)

    def _resolve_conflicts(self, conflicted: List[str], behind: int) -> PullResult:
        unresolvable = [path for path in conflicted if not self.is_auto_resolvable(path)]
        if unresolvable:
            self.client.merge_abort()
            logger.error("Merge conflict needs manual resolution: %s", ", ".join(unresolvable))
            raise ConflictError(unresolvable)

        for path in conflicted:
            taken = self.client.checkout_theirs([path])
            if not taken.success:
                # No remote copy: the remote side deleted it
                (self.client.repo_path / path).unlink(missing_ok=True)
            self.client.add([path])

        committed = self.client.commit(self._message(f"Resolve sync conflict in {', '.join(conflicted)}"))
        if not committed.success:
            self.client.merge_abort()
            raise ConflictError(conflicted)

        logger.warning("Merge conflict in %s resolved by taking the remote copy", ", ".join(conflicted))
        return PullResult(success=True, commits=behind, resolved_conflict=True)

    def push(self, message: str) -> PushResult:
        """
        Commit local changes and publish them.

        Raises:
            ConflictError: pulling before the push hit an unresolvable conflict
            PushExhausted: the remote rejected every retry
        """
        commit_message = self._commit_pending(message)
        committed = commit_message is not None

        if not self.has_remote():
            if committed:
                logger.warning("No remote configured, skipping push")
            return PushResult(success=True, committed=committed, pushed=False, message=commit_message)

        pulled = self.pull()
        if not pulled.success:
            logger.warning("Pull before push failed: %s", pulled.error)

        status = self._repo_status()
        if status is None:
            return PushResult(success=False, committed=committed, message=commit_message,
                              error="status unavailable")

        if status.tracking and status.ahead == 0:
            if not committed:
                logger.debug("No changes to commit")
            return PushResult(success=True, committed=committed, pushed=False, message=commit_message)

        last_error = ""
        for attempt in range(self.push_retries + 1):
            if attempt:
                logger.info("Push rejected, re-pulling (retry %d/%d)", attempt, self.push_retries)
                self.pull()

            result = self.client.push(self.remote, status.branch, set_upstream=status.tracking is None)
            if result.success:
                logger.info("Pushed to %s", self.remote)
                return PushResult(success=True, committed=committed, pushed=True, message=commit_message)

            last_error = result.error
            if not is_rejection(result):
                logger.warning("Error pushing changes: %s", result.error)
                return PushResult(success=False, committed=committed, pushed=False,
                                  message=commit_message, error=result.error)

        raise PushExhausted(self.push_retries + 1, last_error)

    def status(self) -> Optional[RepoStatus]:
        status = self._repo_status()
        if status is None:
            logger.warning("Error getting repository status")
        return status

    def recent_commits(self, count: int = 10) -> List[CommitEntry]:
        result = self.client.log(count)
        if not result.success:
            logger.warning("Error getting commits: %s", result.error)
            return []
        return result.data["commits"]
