"""
Scheduler error taxonomy.

Every error carries a stable ``code`` so the HTTP and CLI layers can report
it without inspecting messages:

- InvalidGrade  - client error, grade outside the accepted scale
- NotEnrolled   - the (user, card) pair does not exist
- Busy          - transient contention on the per-card lock, retry after backoff
- StorageError  - Card Store failure, re-fetch state before retrying
"""

from __future__ import annotations


class SchedulerError(Exception):
    """Base class for all scheduler errors."""

    code: str = "SchedulerError"
    retryable: bool = False


class InvalidGradeError(SchedulerError, ValueError):
    """Grade is not an integer in the accepted range."""

    code = "InvalidGrade"

    def __init__(self, grade: object, minimum: int = 0, maximum: int = 5):
        self.grade = grade
        super().__init__(f"Grade must be an integer in [{minimum}, {maximum}], got {grade!r}")


class NotEnrolledError(SchedulerError):
    """The user is not enrolled in the card."""

    code = "NotEnrolled"

    def __init__(self, user_id: str, card_id: str):
        self.user_id = user_id
        self.card_id = card_id
        super().__init__(f"User {user_id} is not enrolled in card {card_id}")


class BusyError(SchedulerError):
    """Another review for the same (user, card) holds the lock."""

    code = "Busy"
    retryable = True

    def __init__(
        self,
        user_id: str,
        card_id: str,
        waited_seconds: float | None = None,
        message: str | None = None,
    ):
        self.user_id = user_id
        self.card_id = card_id
        self.waited_seconds = waited_seconds
        if message is None:
            message = f"Card {card_id} for user {user_id} is being reviewed elsewhere"
            if waited_seconds is not None:
                message += f" (waited {waited_seconds:.3f}s)"
        super().__init__(message)


class LockWaitCancelled(BusyError):
    """The caller gave up while waiting for the per-card lock."""

    def __init__(self, user_id: str, card_id: str):
        super().__init__(
            user_id,
            card_id,
            message=f"Review of card {card_id} for user {user_id} cancelled while waiting",
        )


class StorageError(SchedulerError):
    """The Card Store failed to read or write."""

    code = "StorageError"
    retryable = True
