"""Failure taxonomy for redistribution passes.

Exceptions never leave the orchestrator: each one is converted into a
``FailureReason`` so callers can render actionable messages.
"""

from __future__ import annotations

from typing import Optional

from .models import FailureCode, FailureReason


class RedistributionError(RuntimeError):
    """Base class for every failure the redistribution core can report."""

    code: FailureCode = "no_legal_slot"

    def __init__(self, message: str, *, task_id: Optional[str] = None, hours: Optional[float] = None) -> None:
        super().__init__(message)
        self.message = message
        self.task_id = task_id
        self.hours = hours

    def to_reason(self) -> FailureReason:
        return FailureReason(
            code=self.code,
            message=self.message,
            task_id=self.task_id,
            hours=self.hours,
        )


class NegativeRemainingWork(RedistributionError):
    """Completed hours exceed the task estimate; the task is skipped."""

    code: FailureCode = "negative_remaining_work"


class NoLegalSlot(RedistributionError):
    """Remaining work cannot fit before the deadline."""

    code: FailureCode = "no_legal_slot"


class IterationBudgetExhausted(NoLegalSlot):
    code: FailureCode = "budget_exhausted"


class CrossTaskConflict(RedistributionError):
    """The post-placement integrity sweep found an overlap. Aborts the pass."""

    code: FailureCode = "cross_task_conflict"

    def __init__(self, message: str, *, conflicts=None, task_id: Optional[str] = None) -> None:
        super().__init__(message, task_id=task_id)
        self.conflicts = list(conflicts or [])


class UnknownTask(RedistributionError):
    """Missed sessions reference a task the caller did not supply."""

    code: FailureCode = "unknown_task"


class TaskAlreadyDone(RedistributionError):
    """Missed sessions belong to a task already marked done; they stay in place."""

    code: FailureCode = "task_done"


class InvalidFixedCommitment(RedistributionError):
    code: FailureCode = "invalid_fixed_commitment"

    def __init__(self, message: str, *, commitment_id: Optional[str] = None) -> None:
        super().__init__(message)
        self.commitment_id = commitment_id


__all__ = [
    "CrossTaskConflict",
    "InvalidFixedCommitment",
    "IterationBudgetExhausted",
    "NegativeRemainingWork",
    "NoLegalSlot",
    "RedistributionError",
    "TaskAlreadyDone",
    "UnknownTask",
]
