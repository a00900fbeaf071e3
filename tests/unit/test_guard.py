"""
Unit tests for the per-card lock table.
"""

import threading
import time

import pytest

from src.scheduling import BusyError, CardLockTable, LockWaitCancelled

pytestmark = pytest.mark.unit


def hold_in_thread(guard: CardLockTable, user_id: str, card_id: str):
    """Hold a lock from a background thread until the returned event is set."""
    acquired = threading.Event()
    release = threading.Event()

    def worker():
        with guard.hold(user_id, card_id, timeout=5):
            acquired.set()
            release.wait(5)

    thread = threading.Thread(target=worker, daemon=True)
    thread.start()
    assert acquired.wait(5)
    return release, thread


class TestMutualExclusion:
    def test_busy_when_held_elsewhere(self):
        guard = CardLockTable(default_timeout=0.05)
        release, thread = hold_in_thread(guard, "u1", "c1")
        try:
            with pytest.raises(BusyError) as exc_info:
                with guard.hold("u1", "c1"):
                    pass
            assert exc_info.value.code == "Busy"
            assert exc_info.value.retryable
            assert exc_info.value.waited_seconds >= 0
        finally:
            release.set()
            thread.join(5)

    def test_different_cards_are_independent(self):
        guard = CardLockTable(default_timeout=0.05)
        release, thread = hold_in_thread(guard, "u1", "c1")
        try:
            assert guard.with_lock("u1", "c2", lambda: "ok") == "ok"
            assert guard.with_lock("u2", "c1", lambda: "ok") == "ok"
        finally:
            release.set()
            thread.join(5)

    def test_waiter_acquires_after_release(self):
        guard = CardLockTable(default_timeout=2)
        release, thread = hold_in_thread(guard, "u1", "c1")
        threading.Timer(0.05, release.set).start()

        assert guard.with_lock("u1", "c1", lambda: 42) == 42
        thread.join(5)

    def test_serializes_critical_sections(self):
        guard = CardLockTable(default_timeout=5)
        counter = {"value": 0}

        def increment():
            current = counter["value"]
            time.sleep(0.001)
            counter["value"] = current + 1

        threads = [
            threading.Thread(target=guard.with_lock, args=("u1", "c1", increment))
            for _ in range(20)
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(10)

        assert counter["value"] == 20


class TestCancellation:
    def test_cancel_while_waiting(self):
        guard = CardLockTable(default_timeout=5)
        release, thread = hold_in_thread(guard, "u1", "c1")
        cancel = threading.Event()
        threading.Timer(0.05, cancel.set).start()
        try:
            started = time.monotonic()
            with pytest.raises(LockWaitCancelled):
                with guard.hold("u1", "c1", cancel=cancel):
                    pass
            assert time.monotonic() - started < 2
        finally:
            release.set()
            thread.join(5)

    def test_cancelled_is_busy(self):
        guard = CardLockTable()
        cancel = threading.Event()
        cancel.set()
        release, thread = hold_in_thread(guard, "u1", "c1")
        try:
            with pytest.raises(BusyError):
                guard.with_lock("u1", "c1", lambda: None, cancel=cancel)
        finally:
            release.set()
            thread.join(5)


class TestBookkeeping:
    def test_entries_dropped_after_release(self):
        guard = CardLockTable()

        with guard.hold("u1", "c1"):
            assert guard.is_locked("u1", "c1")
            assert len(guard) == 1

        assert not guard.is_locked("u1", "c1")
        assert len(guard) == 0

    def test_entries_dropped_after_timeout(self):
        guard = CardLockTable(default_timeout=0.01)
        release, thread = hold_in_thread(guard, "u1", "c1")
        with pytest.raises(BusyError):
            guard.with_lock("u1", "c1", lambda: None)
        release.set()
        thread.join(5)

        assert len(guard) == 0

    def test_lock_released_when_body_raises(self):
        guard = CardLockTable()

        with pytest.raises(RuntimeError):
            with guard.hold("u1", "c1"):
                raise RuntimeError("boom")

        assert guard.with_lock("u1", "c1", lambda: "again", timeout=0) == "again"

    def test_rejects_zero_shards(self):
        with pytest.raises(ValueError):
            CardLockTable(shards=0)
