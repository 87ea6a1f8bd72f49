"""Shared fixtures for sync-work tests."""
import logging

import pytest

from sync_work.coordination import DocumentStore, LockManager, TaskQueue

from .helpers import FakeTransport, git


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def store(tmp_path):
    store = DocumentStore(tmp_path, "agent-1")
    store.initialize()
    return store


@pytest.fixture
def peer_store(tmp_path, store):
    return DocumentStore(tmp_path, "agent-2")


@pytest.fixture
def locks(tmp_path, transport):
    return LockManager(tmp_path, "agent-1", transport, poll_interval=0.01, default_timeout=0.05)


@pytest.fixture
def peer_locks(tmp_path):
    return LockManager(tmp_path, "agent-2", FakeTransport(), poll_interval=0.01, default_timeout=0.05)


@pytest.fixture
def queue(store, transport):
    return TaskQueue(store, transport)


@pytest.fixture
def git_clones(tmp_path):
    """
    A bare remote seeded with an initialized document, and two clones of it.

    Returns:
        (remote, clone_a, clone_b) paths
    """
    remote = tmp_path / "remote.git"
    git(tmp_path, "init", "--bare", str(remote))

    seed = tmp_path / "seed"
    git(tmp_path, "clone", str(remote), str(seed))
    DocumentStore(seed, "agent-1").initialize()
    (seed / "notes.txt").write_text("shared notes\n", encoding="utf-8")
    git(seed, "add", "-A")
    git(seed, "commit", "-m", "Seed")
    git(seed, "push", "-u", "origin", "HEAD")

    clone_a = tmp_path / "a"
    clone_b = tmp_path / "b"
    git(tmp_path, "clone", str(remote), str(clone_a))
    git(tmp_path, "clone", str(remote), str(clone_b))
    return remote, clone_a, clone_b


@pytest.fixture
def reset_logging():
    yield
    logger = logging.getLogger("sync_work")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)
