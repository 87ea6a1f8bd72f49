"""
Agent orchestrator - runs one agent's heartbeat and sync loops.
"""
import asyncio
import functools
import logging
import shutil
import signal
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple, TypeVar, Union

from .config import Settings
from .coordination import AgentState, DocumentStore, LockManager, Task, TaskQueue, TaskStatus
from .replication import GitClient, GitTransport, LocalTransport, Transport


logger = logging.getLogger(__name__)

T = TypeVar("T")


def build_transport(settings: Settings) -> Transport:
    """Git replication when possible, local-only coordination otherwise."""
    if settings.transport == "local":
        return LocalTransport()

    if shutil.which("git") is None:
        logger.warning("git executable not found, falling back to local-only coordination")
        return LocalTransport()

    client = GitClient(settings.project_root, author=settings.agent_id)
    lock_dir = Path(settings.lock_dir).as_posix().rstrip("/") + "/"
    return GitTransport(
        client,
        settings.agent_id,
        remote=settings.remote,
        push_retries=settings.push_retries,
        auto_resolve=(Path(settings.state_file).as_posix(), lock_dir),
    )


class SyncAgent:
    """
    One coordinating agent process.

    Owns the only timers in the system: a heartbeat that refreshes our
    lastSeen and a sync loop that pulls and pushes. Both loops run every
    blocking call on a single worker thread, so within this process the
    read-modify-write cycles on the shared document never interleave.
    """

    def __init__(self, settings: Optional[Settings] = None, transport: Optional[Transport] = None):
        self.settings = settings or Settings()
        self.agent_id = self.settings.agent_id
        root = Path(self.settings.project_root)

        self.transport = transport or build_transport(self.settings)
        self.store = DocumentStore(
            root,
            self.agent_id,
            state_file=self.settings.state_file,
            peer_id=self.settings.peer_id,
            active_window=self.settings.active_window,
        )
        self.locks = LockManager(
            root,
            self.agent_id,
            self.transport,
            lock_dir=self.settings.lock_dir,
            stale_after=self.settings.stale_after,
            poll_interval=self.settings.lock_poll_interval,
            default_timeout=self.settings.lock_timeout,
        )
        self.tasks = TaskQueue(self.store, self.transport, self.settings.max_claim_attempts)

        self.running = False
        self._timers: List[asyncio.Task] = []
        self._executor: Optional[ThreadPoolExecutor] = None
        self._stop_requested: Optional[asyncio.Event] = None

    def initialize(self):
        logger.info("Initializing sync-work for %s...", self.agent_id)
        self.transport.initialize()
        self.store.initialize()
        logger.info("Initialization complete")

    # -- lifecycle -----------------------------------------------------

    async def _call(self, fn: Callable[..., T], *args) -> T:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, functools.partial(fn, *args))

    async def _guarded(self, name: str, fn: Callable[[], T]) -> Optional[T]:
        """Run one cycle; a failure is logged and never escapes."""
        try:
            return await self._call(fn)
        except Exception:
            logger.exception("%s error", name)
            return None

    async def _every(self, interval: float, name: str, fn: Callable[[], Any]):
        while self.running:
            await asyncio.sleep(interval)
            if not self.running:
                break
            await self._guarded(name, fn)

    async def start(self):
        """Do an initial pull and start the heartbeat and sync loops."""
        if self.running:
            logger.info("Already running")
            return

        self.running = True
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"sync-work-{self.agent_id}")
        self._stop_requested = asyncio.Event()
        logger.info("Starting %s...", self.agent_id)

        await self._guarded("Initial sync", self.transport.pull)

        self._timers = [
            asyncio.create_task(self._every(self.settings.heartbeat_interval, "Heartbeat", self.store.heartbeat)),
            asyncio.create_task(self._every(self.settings.sync_interval, "Sync loop", self.sync_once)),
        ]

        logger.info("%s is now running", self.agent_id)
        logger.info("Sync interval: %ss, heartbeat interval: %ss",
                    self.settings.sync_interval, self.settings.heartbeat_interval)

    async def stop(self):
        """Mark this agent offline (best effort), then cancel both loops."""
        if not self.running:
            return

        self.running = False
        await self._guarded("Offline update", self.mark_offline)

        for timer in self._timers:
            timer.cancel()
        await asyncio.gather(*self._timers, return_exceptions=True)
        self._timers = []

        # A cycle cancelled mid-flight may still be running on the worker thread
        executor, self._executor = self._executor, None
        await asyncio.get_running_loop().run_in_executor(None, executor.shutdown)
        logger.info("%s stopped", self.agent_id)

    def request_stop(self):
        if self._stop_requested is not None:
            self._stop_requested.set()

    async def run_forever(self):
        """Run until SIGINT/SIGTERM or request_stop()."""
        await self.start()
        loop = asyncio.get_running_loop()
        handled = []
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.request_stop)
                handled.append(sig)
            except (NotImplementedError, RuntimeError):
                # Not supported on this platform; KeyboardInterrupt still ends the run
                pass

        try:
            await self._stop_requested.wait()
        finally:
            for sig in handled:
                loop.remove_signal_handler(sig)
            await self.stop()

    # -- cycles --------------------------------------------------------

    def sync_once(self) -> Dict[str, Any]:
        """One sync round: pull, report, push."""
        pulled = self.transport.pull()
        if pulled.commits > 0:
            logger.info("Pulled %d new commits", pulled.commits)

        me = self.store.get_self()
        peer_id, peer = self.store.get_peer()
        logger.info(
            "Status: %s, other agent %s: %s",
            me.status.value if me else "unknown",
            peer_id,
            peer.status.value if peer else "unknown",
        )

        pushed = self.transport.push("Auto-sync state")
        if pushed.committed:
            logger.info("Pushed local changes")

        return {"pull": pulled.to_dict(), "push": pushed.to_dict()}

    def mark_offline(self):
        """Report this agent offline, keeping its current task for a later restart."""
        me = self.store.get_self()
        current_task = me.current_task if me else None
        self.store.update_self_status(AgentState.OFFLINE, current_task)
        self.transport.push("Agent offline")

    # -- observability -------------------------------------------------

    def get_status(self) -> Dict[str, Any]:
        """Aggregated snapshot of both agents, the backlog and the repository."""
        doc = self.store.read()
        peer_id = self.store.peer_id_for(doc)
        me = doc.agents.get(self.agent_id)
        peer = doc.agents.get(peer_id)
        repo = self.transport.status()

        other = {"id": peer_id}
        if peer is not None:
            other.update(peer.to_json_dict())
        other["active"] = peer is not None and peer.seen_within(self.settings.active_window)

        agent = {"id": self.agent_id}
        if me is not None:
            agent.update(me.to_json_dict())

        return {
            "agent": agent,
            "otherAgent": other,
            "tasks": doc.task_counts(),
            "git": repo.to_dict() if repo else None,
            "recentCommits": [commit.to_dict() for commit in self.transport.recent_commits(5)],
        }

    # -- tasks and locks -----------------------------------------------

    def add_task(self, description: str, metadata: Optional[Dict[str, Any]] = None) -> Task:
        return self.tasks.add_task(description, metadata)

    def process_next_task(self) -> Optional[Task]:
        task = self.tasks.get_next_task()
        if task is None:
            logger.info("No tasks available")
            return None
        logger.info("Processing task: %s", task.description)
        return task

    def complete_task(self, result: Any = None) -> Optional[Task]:
        task = self.tasks.complete_current_task(result)
        if task is not None:
            logger.info("Completed task: %s", task.description)
        return task

    def list_tasks(self, status: Optional[Union[TaskStatus, str]] = None,
                   assigned_to: Optional[str] = None) -> Tuple[Task, ...]:
        return self.tasks.list_tasks(status=status, assigned_to=assigned_to)

    def with_file_lock(self, path: str, action: Callable[[], T], timeout: Optional[float] = None) -> T:
        return self.locks.with_lock(path, action, timeout)
