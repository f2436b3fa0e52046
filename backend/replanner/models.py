"""Schedule, task and redistribution models shared by every component."""

from __future__ import annotations

import datetime as dt
import math
from typing import Dict, List, Literal, Optional, Set, Tuple

from pydantic import BaseModel, Field, field_validator, model_validator

MINUTES_PER_DAY = 24 * 60
# ``datetime.time`` cannot express 24:00, so a window ending at midnight stops a minute early.
LAST_MINUTE_OF_DAY = MINUTES_PER_DAY - 1

SessionState = Literal[
    "scheduled",
    "in_progress",
    "completed",
    "missed_original",
    "redistributed",
    "failed_redistribution",
    "skipped_user",
    "skipped_system",
]

# States whose interval still blocks the calendar.
OCCUPYING_STATES: Set[str] = {"scheduled", "in_progress", "completed", "redistributed"}
INCOMPLETE_STATES: Set[str] = {"scheduled", "missed_original", "in_progress"}

RejectionReason = Literal["overlap", "outside-window", "non-work-day", "capacity-exceeded"]

FailureCode = Literal[
    "negative_remaining_work",
    "no_legal_slot",
    "budget_exhausted",
    "cross_task_conflict",
    "invalid_fixed_commitment",
    "unknown_task",
    "task_done",
]


def to_minutes(hours: float) -> int:
    return int(round(hours * 60))


def to_hours(minutes: int) -> float:
    return round(minutes / 60.0, 4)


def clean_hours(hours: float) -> float:
    """Strip float noise from hour arithmetic without losing sub-minute precision."""
    return round(hours, 6) + 0.0


def covering_minutes(hours: float) -> int:
    """Whole minutes of calendar time needed to hold ``hours`` of work."""
    return int(math.ceil(round(hours * 60, 6)))


def minute_of_day(value: dt.time) -> int:
    return value.hour * 60 + value.minute


def time_from_minute(minute: int) -> dt.time:
    minute = max(0, min(minute, LAST_MINUTE_OF_DAY))
    return dt.time(hour=minute // 60, minute=minute % 60)


class Task(BaseModel):
    """A unit of required work with a deadline."""

    id: str = Field(..., min_length=1)
    title: str = ""
    description: Optional[str] = None
    deadline: dt.datetime
    importance: bool = False
    estimated_hours: float = Field(..., gt=0)
    status: Literal["pending", "active", "done"] = "pending"
    created_at: Optional[dt.datetime] = None

    @property
    def estimated_minutes(self) -> int:
        return to_minutes(self.estimated_hours)


class StudySession(BaseModel):
    """One scheduled occurrence of work toward a task."""

    task_id: str = Field(..., min_length=1)
    date: dt.date
    start_time: dt.time
    end_time: dt.time
    allocated_hours: float = Field(..., gt=0)
    session_number: int = Field(..., ge=1)
    state: SessionState = "scheduled"
    actual_hours: Optional[float] = Field(default=None, ge=0)
    completed_at: Optional[dt.datetime] = None
    is_exception: bool = False

    @model_validator(mode="after")
    def _check_interval(self) -> "StudySession":
        if self.start_time >= self.end_time:
            raise ValueError(
                f"Session {self.task_id}#{self.session_number} must start before it ends "
                f"({self.start_time.isoformat()} >= {self.end_time.isoformat()})."
            )
        return self

    @property
    def key(self) -> str:
        return f"{self.task_id}#{self.session_number}"

    @property
    def start_at(self) -> dt.datetime:
        return dt.datetime.combine(self.date, self.start_time)

    @property
    def end_at(self) -> dt.datetime:
        return dt.datetime.combine(self.date, self.end_time)

    @property
    def start_minute(self) -> int:
        return minute_of_day(self.start_time)

    @property
    def end_minute(self) -> int:
        return minute_of_day(self.end_time)

    @property
    def allocated_minutes(self) -> int:
        return to_minutes(self.allocated_hours)

    @property
    def worked_hours(self) -> float:
        """Hours credited toward the task once the session is completed."""
        if self.actual_hours is not None:
            return self.actual_hours
        return self.allocated_hours

    @property
    def occupies_calendar(self) -> bool:
        return self.state in OCCUPYING_STATES and not self.is_exception

    def slot(self) -> "SlotRef":
        return SlotRef(date=self.date, start_time=self.start_time, end_time=self.end_time)


class StudyPlan(BaseModel):
    """All sessions planned for a single calendar day."""

    id: str
    date: dt.date
    planned_tasks: List[StudySession] = Field(default_factory=list)
    total_study_hours: float = Field(default=0.0, ge=0)
    available_hours: Optional[float] = Field(default=None, ge=0)

    @model_validator(mode="after")
    def _check_session_dates(self) -> "StudyPlan":
        for session in self.planned_tasks:
            if session.date != self.date:
                raise ValueError(
                    f"Session {session.key} is dated {session.date.isoformat()} "
                    f"but belongs to plan {self.id} ({self.date.isoformat()})."
                )
        return self

    def recalculate_totals(self) -> None:
        minutes = sum(session.allocated_minutes for session in self.planned_tasks if session.occupies_calendar)
        self.total_study_hours = to_hours(minutes)


class SchedulingSettings(BaseModel):
    """Per-user constraints every placement must respect."""

    daily_available_hours: float = Field(default=6.0, gt=0, le=24)
    study_window_start_hour: int = Field(default=9, ge=0, le=23)
    study_window_end_hour: int = Field(default=17, ge=1, le=24)
    work_days: List[int] = Field(default_factory=lambda: [0, 1, 2, 3, 4])
    buffer_days: int = Field(default=0, ge=0)
    min_session_minutes: int = Field(default=30, ge=1)
    slot_buffer_minutes: int = Field(default=0, ge=0, le=240)

    @field_validator("work_days")
    @classmethod
    def _check_work_days(cls, value: List[int]) -> List[int]:
        invalid = [day for day in value if day < 0 or day > 6]
        if invalid:
            raise ValueError(f"Work days must use weekday numbers 0 (Monday) to 6 (Sunday); got {invalid}.")
        return sorted(set(value))

    @model_validator(mode="after")
    def _check_window(self) -> "SchedulingSettings":
        if self.study_window_start_hour >= self.study_window_end_hour:
            raise ValueError("Study window must start before it ends.")
        return self

    @property
    def daily_capacity_minutes(self) -> int:
        return to_minutes(self.daily_available_hours)

    def window_bounds(self) -> Tuple[int, int]:
        end = min(self.study_window_end_hour * 60, LAST_MINUTE_OF_DAY)
        return self.study_window_start_hour * 60, end


class FixedCommitment(BaseModel):
    """Immovable calendar block that constrains but never participates in redistribution.

    Shape checks live in ``validator.validate_fixed_commitments`` so malformed
    blocks surface as ``InvalidFixedCommitment`` rather than request errors.
    """

    id: str
    title: str = ""
    start_time: Optional[dt.time] = None
    end_time: Optional[dt.time] = None
    is_all_day: bool = False
    recurring: bool = True
    days_of_week: List[int] = Field(default_factory=list)
    specific_dates: List[dt.date] = Field(default_factory=list)
    start_date: Optional[dt.date] = None
    end_date: Optional[dt.date] = None
    excluded_dates: List[dt.date] = Field(default_factory=list)

    def applies_on(self, day: dt.date) -> bool:
        if day in self.excluded_dates:
            return False
        if self.start_date is not None and day < self.start_date:
            return False
        if self.end_date is not None and day > self.end_date:
            return False
        if self.recurring:
            return day.weekday() in self.days_of_week
        return day in self.specific_dates

    def interval_on(self, day: dt.date) -> Optional[Tuple[int, int]]:
        if not self.applies_on(day):
            return None
        if self.is_all_day:
            return 0, MINUTES_PER_DAY
        if self.start_time is None or self.end_time is None:
            return None
        return minute_of_day(self.start_time), minute_of_day(self.end_time)


class SlotRef(BaseModel):
    date: dt.date
    start_time: dt.time
    end_time: dt.time

    def label(self) -> str:
        return f"{self.date.isoformat()} {self.start_time.strftime('%H:%M')}-{self.end_time.strftime('%H:%M')}"


class RedistributionEvent(BaseModel):
    kind: Literal["moved", "replanned"]
    from_slots: List[SlotRef] = Field(default_factory=list)
    to_slots: List[SlotRef] = Field(default_factory=list)
    timestamp: dt.datetime
    reason: str


class RedistributionMetadata(BaseModel):
    """Per-task bookkeeping accumulated across redistribution passes."""

    task_id: str
    original_slot: Optional[SlotRef] = None
    history: List[RedistributionEvent] = Field(default_factory=list)
    failure_reasons: List[str] = Field(default_factory=list)
    successful_moves: int = 0
    last_processed_at: Optional[dt.datetime] = None
    last_priority_score: Optional[int] = None
    state_counts: Dict[SessionState, int] = Field(default_factory=dict)
    highest_session_number: int = 0
    unplaced_hours: float = 0.0


class FailureReason(BaseModel):
    code: FailureCode
    message: str
    task_id: Optional[str] = None
    hours: Optional[float] = None


class TaskRedistribution(BaseModel):
    task_id: str
    success: bool = True
    status: Literal["redistributed", "partial", "failed", "skipped"] = "redistributed"
    removed_sessions: List[StudySession] = Field(default_factory=list)
    new_sessions: List[StudySession] = Field(default_factory=list)
    failure_reasons: List[FailureReason] = Field(default_factory=list)
    completed_hours: float = 0.0
    remaining_hours: float = 0.0
    placed_hours: float = 0.0
    unplaced_hours: float = 0.0
    priority_score: Optional[int] = None


class FeedbackDetails(BaseModel):
    tasks_processed: int = 0
    total_hours_redistributed: float = 0.0
    tasks_succeeded: int = 0
    tasks_failed: int = 0
    tasks_skipped: int = 0
    sessions_removed: int = 0
    sessions_created: int = 0
    unplaced_hours: float = 0.0
    error_count: int = 0
    errors: List[FailureReason] = Field(default_factory=list)


class RedistributionFeedback(BaseModel):
    message: str
    details: FeedbackDetails = Field(default_factory=FeedbackDetails)


class RedistributionOptions(BaseModel):
    max_redistribution_days: Optional[int] = Field(default=None, ge=1)
    target_session_ids: Optional[Set[str]] = None
    use_task_aware_mode: bool = True


class RedistributionResult(BaseModel):
    success: bool
    redistribution: Dict[str, TaskRedistribution] = Field(default_factory=dict)
    feedback: RedistributionFeedback
    study_plans: List[StudyPlan] = Field(default_factory=list)
    metadata: Dict[str, RedistributionMetadata] = Field(default_factory=dict)
    rolled_back: bool = False


class PlacementCandidate(BaseModel):
    task_id: str
    date: dt.date
    start_time: dt.time
    end_time: dt.time

    @model_validator(mode="after")
    def _check_interval(self) -> "PlacementCandidate":
        if self.start_time >= self.end_time:
            raise ValueError("Candidate placement must start before it ends.")
        return self

    @property
    def start_minute(self) -> int:
        return minute_of_day(self.start_time)

    @property
    def end_minute(self) -> int:
        return minute_of_day(self.end_time)

    @property
    def minutes(self) -> int:
        return self.end_minute - self.start_minute


class PlacementVerdict(BaseModel):
    ok: bool
    reason: Optional[RejectionReason] = None
    detail: str = ""


class ScheduleConflict(BaseModel):
    date: dt.date
    first: str
    second: str
    kind: Literal["session", "commitment"]

    @property
    def signature(self) -> Tuple[str, str, str, str]:
        return (self.date.isoformat(), self.kind, *sorted((self.first, self.second)))

    def describe(self) -> str:
        other = "fixed commitment" if self.kind == "commitment" else "session"
        return f"{self.first} overlaps {other} {self.second} on {self.date.isoformat()}"
