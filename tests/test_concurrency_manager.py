import threading
import time

import pytest

from siakad.core import ConcurrencyError
from siakad.services import ConcurrencyManager


def test_lock_is_released_after_block():
    manager = ConcurrencyManager()
    with manager.lock("enrollment:s1:term") as lock_id:
        assert manager.is_locked("enrollment:s1:term")
        assert manager.get_lock_info("enrollment:s1:term").lock_id == lock_id
    assert not manager.is_locked("enrollment:s1:term")


def test_same_holder_can_reenter():
    manager = ConcurrencyManager()
    with manager.lock("booking:r1:MONDAY", holder_id="h1"):
        with manager.lock("booking:r1:MONDAY", holder_id="h1"):
            assert manager.get_lock_info("booking:r1:MONDAY").depth == 2
        assert manager.is_locked("booking:r1:MONDAY")
    assert not manager.is_locked("booking:r1:MONDAY")


def test_other_holder_times_out():
    manager = ConcurrencyManager()
    manager.acquire_lock("key", "h1")

    with pytest.raises(ConcurrencyError) as excinfo:
        manager.acquire_lock("key", "h2", timeout=0.05)
    assert excinfo.value.details["resource_id"] == "key"


def test_waiter_proceeds_after_release():
    manager = ConcurrencyManager()
    lock_id = manager.acquire_lock("key", "h1")
    acquired = threading.Event()

    def waiter():
        with manager.lock("key", holder_id="h2", timeout=2.0):
            acquired.set()

    thread = threading.Thread(target=waiter)
    thread.start()
    time.sleep(0.05)
    assert not acquired.is_set()

    manager.release_lock(lock_id)
    thread.join(timeout=2.0)
    assert acquired.is_set()


def test_lock_many_takes_every_key_and_releases_them():
    manager = ConcurrencyManager()
    with manager.lock_many(["b", "a", "b"], holder_id="h1") as lock_ids:
        assert len(lock_ids) == 2
        assert manager.get_statistics()["held_locks"] == 2
    assert manager.get_statistics()["held_locks"] == 0


def test_lock_many_releases_on_partial_failure():
    manager = ConcurrencyManager()
    manager.acquire_lock("b", "other")

    with pytest.raises(ConcurrencyError):
        with manager.lock_many(["a", "b"], holder_id="h1", timeout=0.05):
            pass
    assert not manager.is_locked("a")


def test_release_unknown_lock():
    assert ConcurrencyManager().release_lock("nope") is False
