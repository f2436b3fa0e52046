"""Task-aware redistribution of outstanding study work.

The unit of redistribution is a task's entire outstanding work, not the single
session that was missed: every incomplete session of the task is withdrawn and
the true remainder (estimate minus completed time) is re-planned day by day.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Iterator, List, Optional, Sequence, Tuple

from .errors import IterationBudgetExhausted, NegativeRemainingWork, NoLegalSlot, RedistributionError
from .models import (
    INCOMPLETE_STATES,
    FixedCommitment,
    PlacementCandidate,
    RedistributionEvent,
    RedistributionMetadata,
    SchedulingSettings,
    StudySession,
    Task,
    TaskRedistribution,
    clean_hours,
    covering_minutes,
    minute_of_day,
    time_from_minute,
    to_hours,
)
from .schedule import WorkingSchedule
from .session_state import state_counts
from .validator import free_gaps, remaining_capacity, validate_placement

logger = logging.getLogger(__name__)

DEFAULT_MAX_REDISTRIBUTION_DAYS = 60
DEFAULT_MAX_DAY_ITERATIONS = 400
DEFAULT_SLOT_GRANULARITY_MINUTES = 15


@dataclass
class _Placement:
    session: StudySession
    minutes: int


def _snap_up(minute: int, granularity: int) -> int:
    return int(math.ceil(minute / granularity) * granularity)


class TaskAwareRedistributionEngine:
    """Re-plans a task's remaining work into legal future slots."""

    def __init__(
        self,
        settings: SchedulingSettings,
        fixed_commitments: Sequence[FixedCommitment] = (),
        *,
        max_redistribution_days: int = DEFAULT_MAX_REDISTRIBUTION_DAYS,
        max_day_iterations: int = DEFAULT_MAX_DAY_ITERATIONS,
        slot_granularity_minutes: int = DEFAULT_SLOT_GRANULARITY_MINUTES,
    ) -> None:
        self._settings = settings
        self._commitments = tuple(fixed_commitments)
        self._max_days = max(max_redistribution_days, 1)
        self._max_iterations = max(max_day_iterations, 1)
        self._granularity = max(slot_granularity_minutes, 1)

    def first_day(self, now: datetime) -> date:
        return now.date() + timedelta(days=self._settings.buffer_days)

    def candidate_days(self, task: Task, now: datetime) -> Iterator[date]:
        """Days from ``now + buffer_days`` through the deadline, chronologically."""
        first = self.first_day(now)
        last = min(task.deadline.date(), first + timedelta(days=self._max_days - 1))
        day = first
        while day <= last:
            yield day
            day += timedelta(days=1)

    def completed_hours(self, sessions: Sequence[StudySession]) -> float:
        return clean_hours(sum(session.worked_hours for session in sessions if session.state == "completed"))

    def redistribute_task(
        self,
        schedule: WorkingSchedule,
        task: Task,
        missed: Sequence[StudySession],
        now: datetime,
        *,
        metadata: RedistributionMetadata,
        priority_score: Optional[int] = None,
        task_aware: bool = True,
    ) -> TaskRedistribution:
        """Withdraw the task's outstanding sessions and place the remainder.

        Raises ``NegativeRemainingWork`` when completed time exceeds the
        estimate; capacity shortfalls are reported on the returned record.
        Hours are tracked exactly so completed, placed and unplaced work
        always add up to the estimate.
        """
        task_sessions = schedule.sessions_for_task(task.id)
        completed = self.completed_hours(task_sessions)

        if task_aware:
            remaining_hours = clean_hours(task.estimated_hours - completed)
            if remaining_hours < 0:
                raise NegativeRemainingWork(
                    f"Task '{task.id}' records {completed:g}h completed against an estimate of "
                    f"{task.estimated_hours:g}h.",
                    task_id=task.id,
                    hours=clean_hours(-remaining_hours),
                )
            collected = [
                session
                for session in task_sessions
                if session.state in INCOMPLETE_STATES or session.state == "redistributed"
            ]
        else:
            collected = list(missed)
            remaining_hours = clean_hours(sum(session.allocated_hours for session in collected))

        collected.sort(key=lambda session: (session.start_at, session.session_number))
        withdrawn_minutes = sum(session.allocated_minutes for session in collected)
        if metadata.original_slot is None and task_sessions:
            first = min(task_sessions, key=lambda session: session.session_number)
            metadata.original_slot = first.slot()
        next_number = max(
            [metadata.highest_session_number] + [session.session_number for session in task_sessions]
        )

        schedule.remove(collected)

        remaining = covering_minutes(remaining_hours)
        placements: List[_Placement] = []
        failure: Optional[RedistributionError] = None
        if remaining > 0:
            placements, failure = self._place(
                schedule, task, remaining, remaining_hours, withdrawn_minutes, next_number, now
            )
        placed = sum(placement.minutes for placement in placements)
        new_sessions = [placement.session for placement in placements]
        placed_hours = clean_hours(sum(session.allocated_hours for session in new_sessions))
        fully_placed = placed >= remaining
        unplaced_hours = 0.0 if fully_placed else clean_hours(remaining_hours - placed_hours)

        for session in collected:
            if session.state == "missed_original":
                session.state = "redistributed" if fully_placed else "failed_redistribution"
            else:
                session.state = "skipped_system"

        record = TaskRedistribution(
            task_id=task.id,
            success=fully_placed,
            status="redistributed" if fully_placed else ("partial" if new_sessions else "failed"),
            removed_sessions=[session.model_copy(deep=True) for session in collected],
            new_sessions=[session.model_copy(deep=True) for session in new_sessions],
            completed_hours=completed,
            remaining_hours=remaining_hours,
            placed_hours=placed_hours,
            unplaced_hours=unplaced_hours,
            priority_score=priority_score,
        )
        if failure is not None:
            record.failure_reasons.append(failure.to_reason())

        self._update_metadata(metadata, record, collected, new_sessions, schedule, now, priority_score)
        return record

    def _place(
        self,
        schedule: WorkingSchedule,
        task: Task,
        remaining: int,
        remaining_hours: float,
        withdrawn_minutes: int,
        last_number: int,
        now: datetime,
    ) -> Tuple[List[_Placement], Optional[RedistributionError]]:
        placements: List[_Placement] = []
        placed = 0
        allocated = 0.0
        iterations = 0
        for day in self.candidate_days(task, now):
            if iterations >= self._max_iterations:
                unplaced_hours = clean_hours(remaining_hours - allocated)
                return placements, IterationBudgetExhausted(
                    f"Stopped searching after {self._max_iterations} days with {unplaced_hours:g}h unplaced.",
                    task_id=task.id,
                    hours=unplaced_hours,
                )
            iterations += 1
            block = self._place_on_day(schedule, task, day, remaining - placed, now)
            if block is None:
                continue
            start, minutes = block
            last_number += 1
            final = placed + minutes >= remaining
            # The last block absorbs the sub-minute remainder of the estimate.
            hours = clean_hours(remaining_hours - allocated) if final else to_hours(minutes)
            session = StudySession(
                task_id=task.id,
                date=day,
                start_time=time_from_minute(start),
                end_time=time_from_minute(start + minutes),
                allocated_hours=hours,
                session_number=last_number,
                state="redistributed" if placed < withdrawn_minutes else "scheduled",
            )
            schedule.add(session)
            placements.append(_Placement(session=session, minutes=minutes))
            placed += minutes
            allocated += hours
            if final:
                return placements, None

        unplaced_hours = clean_hours(remaining_hours - allocated)
        if placed == 0 and (task.deadline <= now or task.deadline.date() < self.first_day(now)):
            message = f"deadline {task.deadline.isoformat()} has passed: {unplaced_hours:g}h unplaced"
        else:
            message = f"insufficient capacity: {unplaced_hours:g}h unplaced before deadline {task.deadline.isoformat()}"
        return placements, NoLegalSlot(message, task_id=task.id, hours=unplaced_hours)

    def _place_on_day(
        self,
        schedule: WorkingSchedule,
        task: Task,
        day: date,
        remaining: int,
        now: datetime,
    ) -> Optional[Tuple[int, int]]:
        """Largest legal block on ``day`` as ``(start_minute, minutes)``.

        A block never drops below ``min_session_minutes`` and never leaves a
        remainder shorter than that; only a remainder that was already short
        may be placed as-is.
        """
        earliest = 0
        if day == now.date():
            earliest = _snap_up(minute_of_day(now.time()) + (1 if now.second or now.microsecond else 0), self._granularity)
        latest: Optional[int] = None
        if day == task.deadline.date():
            latest = minute_of_day(task.deadline.time())

        view = schedule.view(self._commitments, self._settings)
        gaps = []
        for gap_start, gap_end in free_gaps(view, day, earliest):
            if latest is not None:
                gap_end = min(gap_end, latest)
            if gap_end > gap_start:
                gaps.append((gap_start, gap_end))
        if not gaps:
            return None

        minimum = self._settings.min_session_minutes
        longest = max(gap_end - gap_start for gap_start, gap_end in gaps)
        block = min(remaining, remaining_capacity(view, day), longest)
        if block <= 0 or block < min(minimum, remaining):
            return None
        if 0 < remaining - block < minimum:
            block = remaining - minimum
            if block < minimum:
                return None
        start = next(gap_start for gap_start, gap_end in gaps if gap_end - gap_start >= block)

        candidate = PlacementCandidate(
            task_id=task.id,
            date=day,
            start_time=time_from_minute(start),
            end_time=time_from_minute(start + block),
        )
        verdict = validate_placement(candidate, view)
        if not verdict.ok:
            logger.warning(
                "Rejected block for %s on %s (%s): %s",
                task.id,
                day.isoformat(),
                verdict.reason,
                verdict.detail,
            )
            return None
        return start, block

    def _update_metadata(
        self,
        metadata: RedistributionMetadata,
        record: TaskRedistribution,
        removed: Sequence[StudySession],
        created: Sequence[StudySession],
        schedule: WorkingSchedule,
        now: datetime,
        priority_score: Optional[int],
    ) -> None:
        if created:
            if len(removed) == len(created):
                for old, new in zip(removed, created):
                    metadata.history.append(
                        RedistributionEvent(
                            kind="moved",
                            from_slots=[old.slot()],
                            to_slots=[new.slot()],
                            timestamp=now,
                            reason="missed session re-placed"
                            if old.state in ("redistributed", "failed_redistribution")
                            else "outstanding session re-planned",
                        )
                    )
                metadata.successful_moves += len(created)
            else:
                metadata.history.append(
                    RedistributionEvent(
                        kind="replanned",
                        from_slots=[session.slot() for session in removed],
                        to_slots=[session.slot() for session in created],
                        timestamp=now,
                        reason=f"re-planned {record.placed_hours:g}h of remaining work",
                    )
                )
                metadata.successful_moves += 1
        for reason in record.failure_reasons:
            metadata.failure_reasons.append(reason.message)
        metadata.last_processed_at = now
        metadata.last_priority_score = priority_score
        metadata.unplaced_hours = record.unplaced_hours
        task_sessions = schedule.sessions_for_task(record.task_id) + list(removed)
        metadata.highest_session_number = max(
            [metadata.highest_session_number] + [session.session_number for session in task_sessions]
        )
        metadata.state_counts = state_counts(task_sessions)


__all__ = ["TaskAwareRedistributionEngine"]
