"""
Lock files for coordinating resource access between the two agents.

Each held resource has one marker file under the lock directory, and the
marker is replicated through the transport like any other file. Acquisition
is replicate-then-verify: create the marker, push it, pull, and check that
the marker we now see still names us. This narrows the window in which both
agents can believe they hold the same resource but does not close it. It is
a best-effort protocol, not a linearizable distributed mutex.
"""
import json
import logging
import os
import posixpath
import socket
import tempfile
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, List, Optional, Tuple, TypeVar, Union
from urllib.parse import quote

import psutil
from pydantic import ValidationError

from ..exceptions import LockTimeout, PushExhausted, SyncWorkError
from ..replication import LocalTransport, Transport
from .models import LockRecord, utcnow


logger = logging.getLogger(__name__)

LOCK_DIR = ".sync-locks"
LOCK_SUFFIX = ".lock"
STALE_AFTER_SECONDS = 5 * 60
POLL_INTERVAL_SECONDS = 1.0
DEFAULT_TIMEOUT_SECONDS = 30.0

T = TypeVar("T")


def lock_file_name(resource: str) -> str:
    """Filesystem-safe, collision-free file name for a resource path."""
    normalized = posixpath.normpath(resource.replace("\\", "/"))
    return quote(normalized, safe="-_.") + LOCK_SUFFIX


class LockManager:
    """
    Per-resource locks shared with the peer agent through the transport.

    State per resource: unlocked -> held(owner) -> unlocked. A marker older
    than ``stale_after`` seconds, one that cannot be parsed, or one left by
    a dead process on this host is expired and may be stolen.
    """

    def __init__(
        self,
        project_root: Union[str, Path],
        agent_id: str,
        transport: Optional[Transport] = None,
        lock_dir: str = LOCK_DIR,
        stale_after: float = STALE_AFTER_SECONDS,
        poll_interval: float = POLL_INTERVAL_SECONDS,
        default_timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ):
        """
        Initialize the lock manager.

        Args:
            project_root: Root of the repository checkout
            agent_id: Identity recorded as lock owner
            transport: Replication transport (no replication when None)
            lock_dir: Directory for lock markers, relative to project_root
            stale_after: Seconds after which a lock may be stolen
            poll_interval: Fixed backoff between acquisition attempts
            default_timeout: Timeout used when acquire() gets none
        """
        self.project_root = Path(project_root)
        self.agent_id = agent_id
        self.transport = transport or LocalTransport()
        self.lock_root = self.project_root / lock_dir
        self.stale_after = stale_after
        self.poll_interval = poll_interval
        self.default_timeout = default_timeout
        self.hostname = socket.gethostname()

    def lock_path(self, resource: str) -> Path:
        return self.lock_root / lock_file_name(resource)

    def _load(self, path: Path) -> Tuple[bool, Optional[LockRecord]]:
        """(exists, record). The record is None when the marker is unreadable."""
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return False, None
        try:
            return True, LockRecord.model_validate_json(raw)
        except ValidationError:
            return True, None

    def is_stale(self, record: Optional[LockRecord]) -> bool:
        if record is None:
            return True
        if record.age_seconds() > self.stale_after:
            return True
        # Owner ran on this machine and has exited without releasing
        if record.host == self.hostname and record.pid is not None:
            return not psutil.pid_exists(record.pid)
        return False

    def _create(self, path: Path, resource: str) -> Optional[LockRecord]:
        """Create the marker unless one already exists. Returns the record written."""
        record = LockRecord(
            agent_id=self.agent_id,
            file=resource,
            acquired_at=utcnow(),
            host=self.hostname,
            pid=os.getpid(),
        )
        self.lock_root.mkdir(parents=True, exist_ok=True)

        fd, tmp_name = tempfile.mkstemp(prefix=".", suffix=".tmp", dir=self.lock_root)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(json.dumps(record.to_json_dict()))
                f.flush()
                os.fsync(f.fileno())
            # link() fails if the marker exists, so a shared working tree
            # never ends up with two owners
            os.link(tmp_name, path)
        except FileExistsError:
            return None
        finally:
            Path(tmp_name).unlink(missing_ok=True)
        return record

    def _remove(self, path: Path):
        path.unlink(missing_ok=True)

    def acquire(self, resource: str, timeout: Optional[float] = None) -> LockRecord:
        """
        Acquire the lock for a resource.

        Args:
            resource: Path of the resource to lock
            timeout: Seconds to keep retrying (default_timeout when None)

        Returns:
            The lock record naming this agent

        Raises:
            LockTimeout: the peer still held the lock at the deadline
        """
        timeout = self.default_timeout if timeout is None else timeout
        path = self.lock_path(resource)
        deadline = time.monotonic() + timeout

        while True:
            self.transport.pull()
            exists, record = self._load(path)

            if exists and self.is_stale(record):
                holder = record.agent_id if record else "unknown"
                logger.warning("Removing stale lock for %s (held by %s)", resource, holder)
                self._remove(path)
                exists, record = False, None

            owner = None
            if exists:
                owner = record.agent_id
                if owner == self.agent_id:
                    logger.debug("Lock for %s already held", resource)
                    return record
            else:
                created = self._create(path, resource)
                if created is not None:
                    acquired = self._publish(path, resource)
                    if acquired is not None:
                        logger.info("Acquired lock for %s", resource)
                        return acquired
                    _, seen = self._load(path)
                    owner = seen.agent_id if seen else None
                    logger.info("Lost lock race for %s to %s", resource, owner or "unknown")

            if time.monotonic() >= deadline:
                raise LockTimeout(resource, timeout, owner)
            logger.debug("Lock for %s held by %s, waiting", resource, owner or "unknown")
            time.sleep(self.poll_interval)

    def _publish(self, path: Path, resource: str) -> Optional[LockRecord]:
        """Push a freshly created marker and verify it survived replication."""
        try:
            pushed = self.transport.push(f"Lock {resource}")
        except PushExhausted:
            self._remove(path)
            raise

        if not pushed.success:
            # The peer cannot see an unpublished lock; withdraw it
            logger.warning("Could not publish lock for %s: %s", resource, pushed.error)
            self._remove(path)
            return None

        self.transport.pull()
        exists, record = self._load(path)
        if exists and record is not None and record.agent_id == self.agent_id:
            return record
        return None

    def release(self, resource: str) -> bool:
        """
        Release a lock held by this agent.

        Returns:
            True if released (or nothing was locked), False if the lock
            belongs to the peer
        """
        path = self.lock_path(resource)
        self.transport.pull()
        exists, record = self._load(path)

        if not exists:
            logger.debug("No lock to release for %s", resource)
            return True

        if record is not None and record.agent_id != self.agent_id:
            logger.warning("Cannot release lock for %s: owned by %s", resource, record.agent_id)
            return False

        self._remove(path)
        self.transport.push(f"Release lock {resource}")
        logger.info("Released lock for %s", resource)
        return True

    def is_locked(self, resource: str) -> bool:
        exists, record = self._load(self.lock_path(resource))
        return exists and not self.is_stale(record)

    def get_lock_info(self, resource: str) -> Optional[LockRecord]:
        _, record = self._load(self.lock_path(resource))
        return record

    def list_locks(self) -> List[LockRecord]:
        if not self.lock_root.is_dir():
            return []
        records = []
        for path in sorted(self.lock_root.glob(f"*{LOCK_SUFFIX}")):
            _, record = self._load(path)
            if record is not None:
                records.append(record)
        return records

    @contextmanager
    def scoped_lock(self, resource: str, timeout: Optional[float] = None):
        """
        Context manager holding a lock for the duration of the block.

        Usage:
            with locks.scoped_lock('src/app.py'):
                # Peer agent will not take this lock meanwhile
                ...
        """
        record = self.acquire(resource, timeout)
        try:
            yield record
        except BaseException:
            # The block's own error wins over a failed release
            try:
                self.release(resource)
            except SyncWorkError:
                logger.exception("Error releasing lock for %s", resource)
            raise
        self.release(resource)

    def with_lock(self, resource: str, action: Callable[[], T], timeout: Optional[float] = None) -> T:
        """Run ``action`` under the lock; the lock is released even if it raises."""
        with self.scoped_lock(resource, timeout):
            return action()
