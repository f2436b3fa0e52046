from __future__ import annotations

from datetime import date, time

import pytest

from replanner.errors import InvalidFixedCommitment
from replanner.models import FixedCommitment, PlacementCandidate, SchedulingSettings, StudySession
from replanner.validator import (
    ScheduleView,
    fits_study_window,
    free_gaps,
    is_slot_free,
    remaining_capacity,
    validate_final_schedule,
    validate_fixed_commitments,
    validate_placement,
    within_daily_capacity,
)

WEDNESDAY = date(2025, 3, 5)
SATURDAY = date(2025, 3, 8)


def _settings(**overrides) -> SchedulingSettings:
    values = dict(
        daily_available_hours=6,
        study_window_start_hour=9,
        study_window_end_hour=17,
        work_days=[0, 1, 2, 3, 4],
        buffer_days=0,
        min_session_minutes=30,
    )
    values.update(overrides)
    return SchedulingSettings(**values)


def _session(task_id: str, start: time, end: time, *, number: int = 1, state: str = "scheduled", day: date = WEDNESDAY) -> StudySession:
    hours = (end.hour * 60 + end.minute - start.hour * 60 - start.minute) / 60
    return StudySession(
        task_id=task_id,
        date=day,
        start_time=start,
        end_time=end,
        allocated_hours=hours,
        session_number=number,
        state=state,
    )


def _view(*sessions: StudySession, commitments=(), **overrides) -> ScheduleView:
    return ScheduleView(sessions=tuple(sessions), commitments=tuple(commitments), settings=_settings(**overrides))


def _candidate(start: time, end: time, day: date = WEDNESDAY) -> PlacementCandidate:
    return PlacementCandidate(task_id="new-task", date=day, start_time=start, end_time=end)


def test_overlap_detected_and_touching_slots_allowed() -> None:
    view = _view(_session("a", time(10), time(11)))

    assert not is_slot_free(view, WEDNESDAY, 630, 690)
    assert is_slot_free(view, WEDNESDAY, 660, 720)
    assert is_slot_free(view, WEDNESDAY, 540, 600)


def test_slot_buffer_pads_existing_sessions() -> None:
    view = _view(_session("a", time(10), time(11)), slot_buffer_minutes=15)

    assert not is_slot_free(view, WEDNESDAY, 660, 720)
    assert is_slot_free(view, WEDNESDAY, 675, 735)


def test_missed_sessions_do_not_block_the_calendar() -> None:
    view = _view(_session("a", time(10), time(11), state="missed_original"))

    assert is_slot_free(view, WEDNESDAY, 600, 660)


def test_all_day_commitment_blocks_whole_day() -> None:
    holiday = FixedCommitment(id="holiday", is_all_day=True, recurring=False, specific_dates=[WEDNESDAY])
    view = _view(commitments=[holiday])

    verdict = validate_placement(_candidate(time(9), time(10)), view)

    assert not verdict.ok
    assert verdict.reason == "overlap"
    assert free_gaps(view, WEDNESDAY) == []


def test_window_and_work_day_checks() -> None:
    settings = _settings()

    assert fits_study_window(settings, WEDNESDAY, 540, 1020)
    assert not fits_study_window(settings, WEDNESDAY, 480, 600)
    assert not fits_study_window(settings, WEDNESDAY, 960, 1080)
    assert not fits_study_window(settings, SATURDAY, 600, 660)


def test_capacity_counts_committed_minutes() -> None:
    view = _view(
        _session("a", time(9), time(12)),
        _session("b", time(13), time(16)),
    )

    assert remaining_capacity(view, WEDNESDAY) == 0
    assert not within_daily_capacity(view, WEDNESDAY, 60)
    assert within_daily_capacity(view, date(2025, 3, 6), 360)


@pytest.mark.parametrize(
    ("candidate", "reason"),
    [
        (_candidate(time(10), time(11), SATURDAY), "non-work-day"),
        (_candidate(time(7), time(8)), "outside-window"),
        (_candidate(time(16), time(18)), "outside-window"),
        (_candidate(time(9, 30), time(10, 30)), "overlap"),
        (_candidate(time(16), time(17)), "capacity-exceeded"),
    ],
)
def test_validate_placement_reports_reason(candidate: PlacementCandidate, reason: str) -> None:
    view = _view(
        _session("a", time(9), time(10)),
        _session("b", time(10), time(15)),
    )

    verdict = validate_placement(candidate, view)

    assert verdict.ok is False
    assert verdict.reason == reason
    assert verdict.detail


def test_validate_placement_accepts_legal_slot() -> None:
    view = _view(_session("a", time(9), time(10)))

    verdict = validate_placement(_candidate(time(10), time(12)), view)

    assert verdict.ok is True
    assert verdict.reason is None


def test_validate_placement_honours_override_settings() -> None:
    view = _view()
    weekend = _settings(work_days=list(range(7)))

    assert validate_placement(_candidate(time(10), time(11), SATURDAY), view).reason == "non-work-day"
    assert validate_placement(_candidate(time(10), time(11), SATURDAY), view, weekend).ok


def test_verdict_is_independent_of_session_order() -> None:
    sessions = [
        _session("a", time(9), time(10)),
        _session("b", time(11), time(12)),
        _session("c", time(14), time(15)),
    ]
    candidate = _candidate(time(11, 30), time(12, 30))

    forward = validate_placement(candidate, _view(*sessions))
    backward = validate_placement(candidate, _view(*reversed(sessions)))

    assert forward == backward
    assert forward.reason == "overlap"


def test_free_gaps_split_around_sessions() -> None:
    view = _view(_session("a", time(10), time(11)))

    assert free_gaps(view, WEDNESDAY) == [(540, 600), (660, 1020)]
    assert free_gaps(view, WEDNESDAY, earliest_minute=630) == [(660, 1020)]
    assert free_gaps(view, SATURDAY) == []


def test_free_gaps_respect_recurring_commitments() -> None:
    lectures = FixedCommitment(
        id="lectures",
        start_time=time(9),
        end_time=time(12),
        days_of_week=[2],
    )
    view = _view(commitments=[lectures], slot_buffer_minutes=15)

    assert free_gaps(view, WEDNESDAY) == [(735, 1020)]
    assert free_gaps(view, date(2025, 3, 6)) == [(540, 1020)]


def test_final_schedule_reports_session_and_commitment_overlaps() -> None:
    meeting = FixedCommitment(id="meeting", start_time=time(11, 15), end_time=time(12), days_of_week=[2])
    sessions = [
        _session("a", time(10), time(11)),
        _session("b", time(10, 30), time(11, 30)),
        _session("c", time(10), time(12), state="missed_original"),
    ]

    conflicts = validate_final_schedule(sessions, [meeting])

    assert [(conflict.kind, conflict.first, conflict.second) for conflict in conflicts] == [
        ("session", "a#1", "b#1"),
        ("commitment", "b#1", "meeting"),
    ]
    assert "overlaps" in conflicts[0].describe()


def test_final_schedule_clean_when_sessions_touch() -> None:
    sessions = [
        _session("a", time(9), time(10)),
        _session("b", time(10), time(11)),
    ]

    assert validate_final_schedule(sessions) == []


@pytest.mark.parametrize(
    "commitments",
    [
        [FixedCommitment(id="", is_all_day=True, days_of_week=[0])],
        [
            FixedCommitment(id="dup", is_all_day=True, days_of_week=[0]),
            FixedCommitment(id="dup", is_all_day=True, days_of_week=[1]),
        ],
        [FixedCommitment(id="no-times", days_of_week=[0])],
        [FixedCommitment(id="backwards", start_time=time(12), end_time=time(10), days_of_week=[0])],
        [FixedCommitment(id="no-days", start_time=time(9), end_time=time(10))],
        [FixedCommitment(id="bad-day", start_time=time(9), end_time=time(10), days_of_week=[7])],
        [FixedCommitment(id="one-off", start_time=time(9), end_time=time(10), recurring=False)],
        [
            FixedCommitment(
                id="range",
                is_all_day=True,
                days_of_week=[0],
                start_date=date(2025, 4, 1),
                end_date=date(2025, 3, 1),
            )
        ],
    ],
)
def test_malformed_commitments_are_rejected(commitments) -> None:
    with pytest.raises(InvalidFixedCommitment) as excinfo:
        validate_fixed_commitments(commitments)

    assert excinfo.value.to_reason().code == "invalid_fixed_commitment"


def test_wellformed_commitments_pass() -> None:
    validate_fixed_commitments(
        [
            FixedCommitment(id="gym", start_time=time(18), end_time=time(19), days_of_week=[0, 2, 4]),
            FixedCommitment(id="trip", is_all_day=True, recurring=False, specific_dates=[SATURDAY]),
        ]
    )


def test_exception_sessions_are_exempt_from_overlap_and_capacity() -> None:
    block = _session("retreat", time(9), time(17)).model_copy(update={"is_exception": True})
    regular = _session("a", time(10), time(11))
    view = _view(block)

    assert is_slot_free(view, WEDNESDAY, 600, 660)
    assert remaining_capacity(view, WEDNESDAY) == 360
    assert validate_placement(_candidate(time(10), time(11)), view).ok
    assert validate_final_schedule([block, regular]) == []
