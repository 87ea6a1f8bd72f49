"""Tests for lock files."""
import json
import socket
from datetime import datetime, timedelta, timezone

import pytest

from sync_work.coordination import LockRecord, lock_file_name
from sync_work.exceptions import LockTimeout, PushExhausted
from sync_work.replication import PushResult


def write_marker(locks, resource, agent_id, acquired_at=None, host="elsewhere", pid=None):
    path = locks.lock_path(resource)
    path.parent.mkdir(parents=True, exist_ok=True)
    record = LockRecord(
        agent_id=agent_id,
        file=resource,
        acquired_at=acquired_at or datetime.now(timezone.utc),
        host=host,
        pid=pid,
    )
    path.write_text(json.dumps(record.to_json_dict()), encoding="utf-8")
    return path


class TestLockFileName:

    def test_path_separators_are_encoded(self):
        assert lock_file_name("src/app.py") == "src%2Fapp.py.lock"

    def test_equivalent_paths_share_a_lock(self):
        assert lock_file_name("src/../src/app.py") == lock_file_name("src/app.py")
        assert lock_file_name("src\\app.py") == lock_file_name("src/app.py")

    def test_distinct_paths_do_not_collide(self):
        assert lock_file_name("a/b_c") != lock_file_name("a_b/c")


class TestAcquireRelease:

    def test_acquire_writes_marker_and_publishes(self, locks, transport):
        record = locks.acquire("src/app.py")

        assert record.agent_id == "agent-1"
        assert record.file == "src/app.py"
        assert locks.is_locked("src/app.py")
        assert transport.pushes == ["Lock src/app.py"]

        marker = json.loads(locks.lock_path("src/app.py").read_text(encoding="utf-8"))
        assert marker["agentId"] == "agent-1"
        assert marker["file"] == "src/app.py"
        assert "acquiredAt" in marker

    def test_release_removes_marker(self, locks, transport):
        locks.acquire("src/app.py")
        assert locks.release("src/app.py") is True

        assert not locks.lock_path("src/app.py").exists()
        assert not locks.is_locked("src/app.py")
        assert transport.pushes[-1] == "Release lock src/app.py"

    def test_release_without_lock(self, locks):
        assert locks.release("never/locked.py") is True

    def test_reentrant_acquire(self, locks, transport):
        first = locks.acquire("src/app.py")
        second = locks.acquire("src/app.py")
        assert second.acquired_at == first.acquired_at
        assert len(transport.pushes) == 1

    def test_peer_waits_then_times_out(self, locks, peer_locks):
        locks.acquire("src/app.py")

        with pytest.raises(LockTimeout) as exc_info:
            peer_locks.acquire("src/app.py", timeout=0.05)
        assert exc_info.value.owner == "agent-1"
        assert exc_info.value.resource == "src/app.py"

    def test_peer_acquires_after_release(self, locks, peer_locks):
        locks.acquire("src/app.py")
        locks.release("src/app.py")

        record = peer_locks.acquire("src/app.py")
        assert record.agent_id == "agent-2"
        assert locks.get_lock_info("src/app.py").agent_id == "agent-2"

    def test_non_owner_cannot_release(self, locks, peer_locks):
        locks.acquire("src/app.py")
        assert peer_locks.release("src/app.py") is False
        assert locks.lock_path("src/app.py").exists()

    def test_independent_resources(self, locks, peer_locks):
        locks.acquire("a.py")
        assert peer_locks.acquire("b.py").agent_id == "agent-2"
        assert {r.file for r in locks.list_locks()} == {"a.py", "b.py"}


class TestStaleLocks:

    def test_old_lock_is_stolen(self, locks, peer_locks):
        old = datetime.now(timezone.utc) - timedelta(minutes=10)
        write_marker(locks, "src/app.py", "agent-1", acquired_at=old)

        assert peer_locks.acquire("src/app.py").agent_id == "agent-2"

    def test_recent_lock_from_other_host_is_respected(self, locks, peer_locks):
        write_marker(locks, "src/app.py", "agent-1")
        with pytest.raises(LockTimeout):
            peer_locks.acquire("src/app.py")

    def test_dead_local_owner_is_stale(self, locks, peer_locks, monkeypatch):
        monkeypatch.setattr("sync_work.coordination.file_lock.psutil.pid_exists", lambda pid: False)
        write_marker(locks, "src/app.py", "agent-1", host=socket.gethostname(), pid=999999)

        assert peer_locks.acquire("src/app.py").agent_id == "agent-2"

    def test_unreadable_marker_is_stale(self, locks, peer_locks):
        path = locks.lock_path("src/app.py")
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("garbage", encoding="utf-8")

        assert peer_locks.acquire("src/app.py").agent_id == "agent-2"

    def test_staleness_threshold(self, locks):
        fresh = LockRecord(agent_id="agent-2", file="x", acquired_at=datetime.now(timezone.utc), host="elsewhere")
        old = fresh.model_copy(update={"acquired_at": fresh.acquired_at - timedelta(seconds=301)})
        assert locks.is_stale(fresh) is False
        assert locks.is_stale(old) is True
        assert locks.is_stale(None) is True


class TestReplicationOutcomes:

    def test_lost_race_after_publish(self, locks, transport):
        def peer_wins():
            # The merged tree carries the peer's marker instead of ours
            if transport.pushes:
                write_marker(locks, "src/app.py", "agent-2")

        transport.on_pull = peer_wins

        with pytest.raises(LockTimeout) as exc_info:
            locks.acquire("src/app.py", timeout=0)
        assert exc_info.value.owner == "agent-2"

    def test_unpublished_lock_is_withdrawn(self, locks, transport):
        transport.push_result = PushResult(success=False, error="remote unreachable")

        with pytest.raises(LockTimeout):
            locks.acquire("src/app.py", timeout=0)
        assert not locks.lock_path("src/app.py").exists()

    def test_push_exhaustion_propagates(self, locks, transport):
        def reject(message):
            raise PushExhausted(4, "rejected")

        transport.on_push = reject

        with pytest.raises(PushExhausted):
            locks.acquire("src/app.py")
        assert not locks.lock_path("src/app.py").exists()


class TestScopedLocks:

    def test_with_lock_returns_action_result(self, locks):
        assert locks.with_lock("src/app.py", lambda: locks.is_locked("src/app.py")) is True
        assert not locks.is_locked("src/app.py")

    def test_with_lock_releases_on_error(self, locks):
        def fail():
            raise RuntimeError("edit failed")

        with pytest.raises(RuntimeError):
            locks.with_lock("src/app.py", fail)
        assert not locks.lock_path("src/app.py").exists()

    def test_scoped_lock_yields_record(self, locks):
        with locks.scoped_lock("src/app.py") as record:
            assert record.agent_id == "agent-1"
        assert not locks.is_locked("src/app.py")

    def test_action_error_survives_failed_release(self, locks, transport):
        def reject_release(message):
            if message.startswith("Release lock"):
                raise PushExhausted(4, "rejected")

        def fail():
            raise RuntimeError("edit failed")

        transport.on_push = reject_release

        with pytest.raises(RuntimeError, match="edit failed"):
            locks.with_lock("src/app.py", fail)
        assert not locks.lock_path("src/app.py").exists()

    def test_release_error_propagates_after_success(self, locks, transport):
        def reject_release(message):
            if message.startswith("Release lock"):
                raise PushExhausted(4, "rejected")

        transport.on_push = reject_release

        with pytest.raises(PushExhausted):
            locks.with_lock("src/app.py", lambda: "done")
