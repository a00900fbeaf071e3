"""
Due Queue Builder with Subject Interleaving.

Builds the ordered, bounded list of cards a user should study now.

Ordering inside a subject:
1. Freshly failed cards (lapsed, repetition streak back at 0)
2. Most overdue first (ascending due_at)
3. card_id, for determinism

Across subjects (no subject filter, more than one subject due), buckets are
merged proportionally: the k-th card of a subject with n due cards is placed
at fraction (k + 0.5) / n of the session, so a subject holding 60% of the
due cards fills about 60% of every prefix of the queue instead of
monopolising the start of it.

The builder is read-only. It never takes per-card locks and works from a
single snapshot returned by the Card Store.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime

from loguru import logger

from .models import CardScheduleState, ensure_utc, utcnow
from .store import CardStore


@dataclass(frozen=True)
class QueueConfig:
    """Configuration for due queue building."""

    default_limit: int = 20
    max_limit: int = 100


def card_priority(state: CardScheduleState) -> tuple[int, datetime, str]:
    """Sort key within a subject bucket."""
    return (0 if state.is_freshly_failed else 1, state.due_at, state.card_id)


def interleave_by_subject(states: list[CardScheduleState]) -> list[CardScheduleState]:
    """
    Merge per-subject buckets proportionally to each bucket's size.

    Buckets are ordered by card_priority first. Positions that coincide go to
    the subject whose head card is most urgent.
    """
    buckets: dict[str | None, list[CardScheduleState]] = defaultdict(list)
    for state in states:
        buckets[state.subject_id].append(state)

    for bucket in buckets.values():
        bucket.sort(key=card_priority)

    if len(buckets) <= 1:
        return next(iter(buckets.values()), [])

    subject_rank = {
        subject: rank
        for rank, subject in enumerate(
            sorted(buckets, key=lambda s: (card_priority(buckets[s][0]), s or ""))
        )
    }

    slots: list[tuple[float, int, int, CardScheduleState]] = []
    for subject, bucket in buckets.items():
        size = len(bucket)
        for index, state in enumerate(bucket):
            slots.append(((index + 0.5) / size, subject_rank[subject], index, state))

    slots.sort(key=lambda slot: slot[:3])
    return [slot[3] for slot in slots]


class DueQueueBuilder:
    """
    Builds study queues from the Card Store.

    Usage:
        builder = DueQueueBuilder(store)
        card_ids = builder.build_queue("user-1", limit=20)
    """

    def __init__(self, store: CardStore, config: QueueConfig | None = None):
        """
        Initialize the builder.

        Args:
            store: Card Store to read states from
            config: Queue limits (defaults if None)
        """
        self.store = store
        self.config = config or QueueConfig()

    def resolve_limit(self, limit: int | None) -> int:
        if limit is None:
            return self.config.default_limit
        if limit < 0:
            raise ValueError(f"limit must be >= 0, got {limit}")
        return min(limit, self.config.max_limit)

    def due_states(
        self,
        user_id: str,
        subject_id: str | None = None,
        now: datetime | None = None,
    ) -> list[CardScheduleState]:
        """All due states for a user, unordered."""
        now = ensure_utc(now) if now is not None else utcnow()
        states = self.store.list_states(user_id, subject_id=subject_id, due_before=now)
        # Adapters may over-select; the due check here is authoritative
        return [state for state in states if state.is_due(now)]

    def build_queue(
        self,
        user_id: str,
        subject_id: str | None = None,
        limit: int | None = None,
        now: datetime | None = None,
    ) -> list[str]:
        """
        Build the ordered study queue.

        Args:
            user_id: User to build the session for
            subject_id: Restrict to one subject (disables interleaving)
            limit: Maximum cards returned (config default if None)
            now: Reference time (defaults to current UTC time)

        Returns:
            Ordered list of card IDs, possibly empty
        """
        cap = self.resolve_limit(limit)
        due = self.due_states(user_id, subject_id=subject_id, now=now)

        if subject_id is None:
            ordered = interleave_by_subject(due)
        else:
            ordered = sorted(due, key=card_priority)

        queue = [state.card_id for state in ordered[:cap]]

        logger.info(
            f"Queue built for {user_id}: {len(queue)} of {len(due)} due cards "
            f"(subject={subject_id or 'all'}, limit={cap})"
        )
        return queue
