"""Conflict and capacity checks for candidate placements.

Everything here is a pure function of a ``ScheduleView``: validating the same
candidate against the same view always yields the same verdict, regardless of
the order sessions were supplied in.
"""

from __future__ import annotations

import dataclasses
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .errors import InvalidFixedCommitment
from .models import (
    MINUTES_PER_DAY,
    FixedCommitment,
    PlacementCandidate,
    PlacementVerdict,
    ScheduleConflict,
    SchedulingSettings,
    StudyPlan,
    StudySession,
)

logger = logging.getLogger(__name__)

Interval = Tuple[int, int]


@dataclass(frozen=True)
class ScheduleView:
    """Read-only view over committed sessions, fixed commitments and settings."""

    sessions: Tuple[StudySession, ...]
    commitments: Tuple[FixedCommitment, ...]
    settings: SchedulingSettings
    _by_date: Dict[date, Tuple[StudySession, ...]] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        grouped: Dict[date, List[StudySession]] = defaultdict(list)
        for session in self.sessions:
            if session.occupies_calendar:
                grouped[session.date].append(session)
        indexed = {
            day: tuple(sorted(items, key=lambda s: (s.start_minute, s.end_minute, s.key)))
            for day, items in grouped.items()
        }
        object.__setattr__(self, "_by_date", indexed)

    @classmethod
    def from_plans(
        cls,
        plans: Iterable[StudyPlan],
        commitments: Iterable[FixedCommitment],
        settings: SchedulingSettings,
    ) -> "ScheduleView":
        sessions = tuple(session for plan in plans for session in plan.planned_tasks)
        return cls(sessions=sessions, commitments=tuple(commitments), settings=settings)

    def sessions_on(self, day: date) -> Tuple[StudySession, ...]:
        return self._by_date.get(day, ())

    def commitment_intervals(self, day: date) -> List[Tuple[Interval, FixedCommitment]]:
        intervals: List[Tuple[Interval, FixedCommitment]] = []
        for commitment in self.commitments:
            interval = commitment.interval_on(day)
            if interval is not None:
                intervals.append((interval, commitment))
        return intervals

    def busy_intervals(self, day: date) -> List[Interval]:
        busy = [(session.start_minute, session.end_minute) for session in self.sessions_on(day)]
        busy.extend(interval for interval, _ in self.commitment_intervals(day))
        return sorted(busy)

    def committed_minutes(self, day: date) -> int:
        return sum(session.allocated_minutes for session in self.sessions_on(day))


def _overlaps(first: Interval, second: Interval) -> bool:
    return first[0] < second[1] and second[0] < first[1]


def is_slot_free(view: ScheduleView, day: date, start_minute: int, end_minute: int) -> bool:
    """True when the padded interval avoids every committed session and fixed block."""
    margin = view.settings.slot_buffer_minutes
    padded = (start_minute - margin, end_minute + margin)
    return not any(_overlaps(padded, busy) for busy in view.busy_intervals(day))


def is_work_day(settings: SchedulingSettings, day: date) -> bool:
    return day.weekday() in settings.work_days


def fits_study_window(settings: SchedulingSettings, day: date, start_minute: int, end_minute: int) -> bool:
    window_start, window_end = settings.window_bounds()
    return is_work_day(settings, day) and start_minute >= window_start and end_minute <= window_end


def within_daily_capacity(view: ScheduleView, day: date, additional_minutes: int) -> bool:
    return view.committed_minutes(day) + additional_minutes <= view.settings.daily_capacity_minutes


def remaining_capacity(view: ScheduleView, day: date) -> int:
    return max(view.settings.daily_capacity_minutes - view.committed_minutes(day), 0)


def validate_placement(
    candidate: PlacementCandidate,
    view: ScheduleView,
    settings: Optional[SchedulingSettings] = None,
) -> PlacementVerdict:
    """Compose window, overlap and capacity checks into a single verdict."""
    if settings is not None and settings != view.settings:
        view = dataclasses.replace(view, settings=settings)
    settings = view.settings
    day = candidate.date
    start, end = candidate.start_minute, candidate.end_minute

    if not is_work_day(settings, day):
        return PlacementVerdict(
            ok=False,
            reason="non-work-day",
            detail=f"{day.strftime('%A')} {day.isoformat()} is not a study day.",
        )
    if not fits_study_window(settings, day, start, end):
        return PlacementVerdict(
            ok=False,
            reason="outside-window",
            detail=(
                f"{candidate.start_time.strftime('%H:%M')}-{candidate.end_time.strftime('%H:%M')} falls outside "
                f"the {settings.study_window_start_hour:02d}:00-{settings.study_window_end_hour:02d}:00 window."
            ),
        )
    if not is_slot_free(view, day, start, end):
        return PlacementVerdict(
            ok=False,
            reason="overlap",
            detail=f"Slot overlaps an existing session or fixed commitment on {day.isoformat()}.",
        )
    if not within_daily_capacity(view, day, candidate.minutes):
        return PlacementVerdict(
            ok=False,
            reason="capacity-exceeded",
            detail=(
                f"{view.committed_minutes(day)} minutes already committed on {day.isoformat()}; "
                f"adding {candidate.minutes} exceeds {settings.daily_capacity_minutes}."
            ),
        )
    return PlacementVerdict(ok=True)


def free_gaps(view: ScheduleView, day: date, earliest_minute: int = 0) -> List[Interval]:
    """Bookable intervals inside the study window, honouring the buffer margin."""
    settings = view.settings
    if not is_work_day(settings, day):
        return []
    window_start, window_end = settings.window_bounds()
    cursor = max(window_start, earliest_minute)
    if cursor >= window_end:
        return []
    margin = settings.slot_buffer_minutes
    gaps: List[Interval] = []
    for busy_start, busy_end in view.busy_intervals(day):
        blocked_start = max(busy_start - margin, 0)
        blocked_end = min(busy_end + margin, MINUTES_PER_DAY)
        if blocked_end <= cursor:
            continue
        if blocked_start >= window_end:
            break
        if blocked_start > cursor:
            gaps.append((cursor, blocked_start))
        cursor = max(cursor, blocked_end)
        if cursor >= window_end:
            break
    if cursor < window_end:
        gaps.append((cursor, window_end))
    return gaps


def validate_final_schedule(
    sessions: Iterable[StudySession],
    commitments: Sequence[FixedCommitment] = (),
) -> List[ScheduleConflict]:
    """Integrity sweep over every committed session sharing a date.

    Catches overlaps that per-slot checks can miss when placements compound.
    """
    by_date: Dict[date, List[StudySession]] = defaultdict(list)
    for session in sessions:
        if session.occupies_calendar:
            by_date[session.date].append(session)

    conflicts: List[ScheduleConflict] = []
    for day in sorted(by_date):
        ordered = sorted(by_date[day], key=lambda s: (s.start_minute, s.end_minute, s.key))
        for index, first in enumerate(ordered):
            for second in ordered[index + 1:]:
                if second.start_minute >= first.end_minute:
                    break
                conflicts.append(ScheduleConflict(date=day, first=first.key, second=second.key, kind="session"))
            for commitment in commitments:
                interval = commitment.interval_on(day)
                if interval is not None and _overlaps((first.start_minute, first.end_minute), interval):
                    conflicts.append(
                        ScheduleConflict(date=day, first=first.key, second=commitment.id, kind="commitment")
                    )
    return conflicts


def validate_fixed_commitments(commitments: Iterable[FixedCommitment]) -> None:
    """Raise ``InvalidFixedCommitment`` for the first malformed block."""
    seen: set[str] = set()
    for commitment in commitments:
        ident = commitment.id
        if not ident or not ident.strip():
            raise InvalidFixedCommitment("Fixed commitment is missing an identifier.")
        if ident in seen:
            raise InvalidFixedCommitment(f"Fixed commitment id '{ident}' is duplicated.", commitment_id=ident)
        seen.add(ident)
        if not commitment.is_all_day:
            if commitment.start_time is None or commitment.end_time is None:
                raise InvalidFixedCommitment(
                    f"Fixed commitment '{ident}' needs start and end times unless it is all-day.",
                    commitment_id=ident,
                )
            if commitment.start_time >= commitment.end_time:
                raise InvalidFixedCommitment(
                    f"Fixed commitment '{ident}' must start before it ends.",
                    commitment_id=ident,
                )
        if commitment.recurring:
            if not commitment.days_of_week:
                raise InvalidFixedCommitment(
                    f"Recurring commitment '{ident}' does not list any weekdays.",
                    commitment_id=ident,
                )
            invalid_days = [day for day in commitment.days_of_week if day < 0 or day > 6]
            if invalid_days:
                raise InvalidFixedCommitment(
                    f"Recurring commitment '{ident}' uses invalid weekdays {invalid_days}.",
                    commitment_id=ident,
                )
        elif not commitment.specific_dates:
            raise InvalidFixedCommitment(
                f"One-off commitment '{ident}' has no dates.",
                commitment_id=ident,
            )
        if commitment.start_date and commitment.end_date and commitment.start_date > commitment.end_date:
            raise InvalidFixedCommitment(
                f"Fixed commitment '{ident}' ends before it starts.",
                commitment_id=ident,
            )


__all__ = [
    "ScheduleView",
    "fits_study_window",
    "free_gaps",
    "is_slot_free",
    "is_work_day",
    "remaining_capacity",
    "validate_final_schedule",
    "validate_fixed_commitments",
    "validate_placement",
    "within_daily_capacity",
]
