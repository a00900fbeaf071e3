"""
Per-card Concurrency Guard.

In-process keyed lock table guaranteeing at most one in-flight review per
(user, card). Keys are spread over shards so bookkeeping for unrelated cards
does not serialise on one mutex; each entry is reference counted and dropped
once nobody holds or waits for it, so the table stays proportional to the
number of cards under review rather than the number ever reviewed.

Waiting is bounded. Callers may pass a ``threading.Event`` to give up while
waiting; once the lock is held the work runs to completion.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import TypeVar

from loguru import logger

from .errors import BusyError, LockWaitCancelled

T = TypeVar("T")

# Granularity of cancellation checks while waiting
_CANCEL_POLL_SECONDS = 0.01


@dataclass
class _LockEntry:
    lock: threading.Lock = field(default_factory=threading.Lock)
    refs: int = 0


class _Shard:
    def __init__(self) -> None:
        self.mutex = threading.Lock()
        self.entries: dict[tuple[str, str], _LockEntry] = {}


class CardLockTable:
    """
    Keyed mutual exclusion for (user_id, card_id) pairs.

    Usage:
        guard = CardLockTable(default_timeout=0.3)
        result = guard.with_lock(user_id, card_id, fn)

        with guard.hold(user_id, card_id):
            ...
    """

    def __init__(self, default_timeout: float = 0.3, shards: int = 64):
        """
        Initialize the lock table.

        Args:
            default_timeout: Seconds to wait for a lock before raising BusyError
            shards: Number of independent bookkeeping shards
        """
        if shards < 1:
            raise ValueError("shards must be >= 1")
        self.default_timeout = default_timeout
        self._shards = [_Shard() for _ in range(shards)]

    def _shard_for(self, key: tuple[str, str]) -> _Shard:
        return self._shards[hash(key) % len(self._shards)]

    def _checkout(self, key: tuple[str, str]) -> _LockEntry:
        shard = self._shard_for(key)
        with shard.mutex:
            entry = shard.entries.get(key)
            if entry is None:
                entry = _LockEntry()
                shard.entries[key] = entry
            entry.refs += 1
            return entry

    def _checkin(self, key: tuple[str, str], entry: _LockEntry) -> None:
        shard = self._shard_for(key)
        with shard.mutex:
            entry.refs -= 1
            if entry.refs == 0 and shard.entries.get(key) is entry:
                del shard.entries[key]

    @staticmethod
    def _acquire(
        lock: threading.Lock,
        timeout: float,
        cancel: threading.Event | None,
    ) -> str:
        """Returns "acquired", "timeout" or "cancelled"."""
        if cancel is None:
            return "acquired" if lock.acquire(timeout=max(timeout, 0)) else "timeout"

        deadline = time.monotonic() + max(timeout, 0)
        while True:
            if cancel.is_set():
                return "cancelled"
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return "acquired" if lock.acquire(blocking=False) else "timeout"
            if lock.acquire(timeout=min(remaining, _CANCEL_POLL_SECONDS)):
                return "acquired"

    @contextmanager
    def hold(
        self,
        user_id: str,
        card_id: str,
        timeout: float | None = None,
        cancel: threading.Event | None = None,
    ) -> Iterator[None]:
        """
        Hold the exclusive lock for a (user, card) pair.

        Raises:
            BusyError: If the lock is not acquired within the timeout
            LockWaitCancelled: If ``cancel`` is set before acquisition
        """
        key = (user_id, card_id)
        wait = self.default_timeout if timeout is None else timeout
        entry = self._checkout(key)
        started = time.monotonic()
        try:
            outcome = self._acquire(entry.lock, wait, cancel)
        except BaseException:
            self._checkin(key, entry)
            raise

        if outcome != "acquired":
            self._checkin(key, entry)
            waited = time.monotonic() - started
            if outcome == "cancelled":
                logger.debug(f"Lock wait cancelled for {user_id}/{card_id} after {waited:.3f}s")
                raise LockWaitCancelled(user_id, card_id)
            logger.warning(f"Lock contention on {user_id}/{card_id}: gave up after {waited:.3f}s")
            raise BusyError(user_id, card_id, waited_seconds=waited)

        try:
            yield
        finally:
            entry.lock.release()
            self._checkin(key, entry)

    def with_lock(
        self,
        user_id: str,
        card_id: str,
        fn: Callable[[], T],
        timeout: float | None = None,
        cancel: threading.Event | None = None,
    ) -> T:
        """Run ``fn`` while holding the lock for (user_id, card_id)."""
        with self.hold(user_id, card_id, timeout=timeout, cancel=cancel):
            return fn()

    def is_locked(self, user_id: str, card_id: str) -> bool:
        """Whether a review currently holds the lock for this pair."""
        key = (user_id, card_id)
        shard = self._shard_for(key)
        with shard.mutex:
            entry = shard.entries.get(key)
            return entry is not None and entry.lock.locked()

    def __len__(self) -> int:
        """Number of pairs currently held or waited on."""
        total = 0
        for shard in self._shards:
            with shard.mutex:
                total += len(shard.entries)
        return total
