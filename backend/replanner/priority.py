"""Priority scoring for work that needs to be redistributed."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterable, List, Sequence, Tuple

from .models import StudySession, Task

logger = logging.getLogger(__name__)


IMPORTANCE_WEIGHT = 1000
URGENCY_CAP = 500
AGE_CAP = 200
SIZE_CAP = 100
MAX_PRIORITY_SCORE = IMPORTANCE_WEIGHT + URGENCY_CAP + AGE_CAP + SIZE_CAP

URGENCY_SATURATION_HOURS = 24.0
URGENCY_HORIZON_HOURS = 24.0 * 30
AGE_SATURATION_HOURS = 24.0 * 7
SIZE_SATURATION_MINUTES = 240


@dataclass(frozen=True)
class PriorityBreakdown:
    importance: int
    urgency: int
    age: int
    size: int

    @property
    def total(self) -> int:
        return self.importance + self.urgency + self.age + self.size


@dataclass
class PriorityCandidate:
    task: Task
    sessions: List[StudySession]
    breakdown: PriorityBreakdown

    @property
    def score(self) -> int:
        return self.breakdown.total

    @property
    def earliest_start(self) -> datetime:
        return min(session.start_at for session in self.sessions)

    def sort_key(self) -> Tuple[int, int, datetime, datetime, str]:
        return (
            -self.score,
            0 if self.task.importance else 1,
            self.task.deadline,
            self.earliest_start,
            self.task.id,
        )


def urgency_component(hours_remaining: float) -> int:
    """Log-scaled deadline pressure.

    Saturates at ``URGENCY_CAP`` inside the last day and reaches zero once the
    deadline is a month away; non-increasing in between.
    """
    if hours_remaining <= URGENCY_SATURATION_HOURS:
        return URGENCY_CAP
    if hours_remaining >= URGENCY_HORIZON_HOURS:
        return 0
    span = math.log(URGENCY_HORIZON_HOURS / URGENCY_SATURATION_HOURS)
    fraction = 1.0 - math.log(hours_remaining / URGENCY_SATURATION_HOURS) / span
    return int(round(URGENCY_CAP * fraction))


def age_component(age_hours: float) -> int:
    if age_hours <= 0:
        return 0
    return int(round(AGE_CAP * min(age_hours / AGE_SATURATION_HOURS, 1.0)))


def size_component(minutes: int) -> int:
    if minutes <= 0:
        return 0
    return int(round(SIZE_CAP * min(minutes / SIZE_SATURATION_MINUTES, 1.0)))


def breakdown(task: Task, sessions: Sequence[StudySession], now: datetime) -> PriorityBreakdown:
    hours_remaining = (task.deadline - now).total_seconds() / 3600.0
    if sessions:
        oldest_end = min(session.end_at for session in sessions)
        age_hours = (now - oldest_end).total_seconds() / 3600.0
        minutes = sum(session.allocated_minutes for session in sessions)
    else:
        age_hours = 0.0
        minutes = 0
    return PriorityBreakdown(
        importance=IMPORTANCE_WEIGHT if task.importance else 0,
        urgency=urgency_component(hours_remaining),
        age=age_component(age_hours),
        size=size_component(minutes),
    )


def score(task: Task, sessions: Sequence[StudySession], now: datetime) -> int:
    """Additive priority in ``[0, MAX_PRIORITY_SCORE]``."""
    return breakdown(task, sessions, now).total


def rank(
    tasks: Iterable[Task],
    missed_by_task: Dict[str, List[StudySession]],
    now: datetime,
) -> List[PriorityCandidate]:
    """Order tasks with missed sessions, highest priority first.

    The sort key is total, so identical inputs always yield the same order.
    """
    candidates: List[PriorityCandidate] = []
    for task in tasks:
        sessions = missed_by_task.get(task.id)
        if not sessions:
            continue
        candidates.append(
            PriorityCandidate(
                task=task,
                sessions=sorted(sessions, key=lambda session: (session.start_at, session.session_number)),
                breakdown=breakdown(task, sessions, now),
            )
        )
    candidates.sort(key=PriorityCandidate.sort_key)
    if candidates:
        logger.debug(
            "Priority order: %s",
            ", ".join(f"{candidate.task.id}={candidate.score}" for candidate in candidates),
        )
    return candidates


__all__ = [
    "MAX_PRIORITY_SCORE",
    "PriorityBreakdown",
    "PriorityCandidate",
    "age_component",
    "breakdown",
    "rank",
    "score",
    "size_component",
    "urgency_component",
]
