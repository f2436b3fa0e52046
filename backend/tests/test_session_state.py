from __future__ import annotations

from datetime import date, datetime, time, timezone

from replanner.models import StudySession
from replanner.session_state import classify_sessions, state_counts

NOW = datetime(2025, 3, 4, 12, 0)


def _session(number: int, day: date, start: int, end: int, state: str = "scheduled") -> StudySession:
    return StudySession(
        task_id="task-1",
        date=day,
        start_time=time(start, 0),
        end_time=time(end, 0),
        allocated_hours=end - start,
        session_number=number,
        state=state,
    )


def test_past_scheduled_session_is_marked_missed() -> None:
    past = _session(1, date(2025, 3, 3), 9, 10)
    future = _session(2, date(2025, 3, 5), 9, 10)

    result = classify_sessions([past, future], NOW)

    assert past.state == "missed_original"
    assert result.missed == [past]
    assert result.newly_missed == [past]
    assert result.active == [future]
    assert future.state == "scheduled"


def test_in_progress_session_past_its_end_is_missed() -> None:
    running = _session(1, date(2025, 3, 4), 9, 11, state="in_progress")

    result = classify_sessions([running], NOW)

    assert running.state == "missed_original"
    assert result.missed == [running]


def test_session_ending_exactly_now_is_not_missed() -> None:
    boundary = _session(1, date(2025, 3, 4), 11, 12)

    result = classify_sessions([boundary], NOW)

    assert boundary.state == "scheduled"
    assert result.active == [boundary]
    assert result.missed == []


def test_classification_is_idempotent() -> None:
    past = _session(1, date(2025, 3, 3), 9, 10)
    classify_sessions([past], NOW)

    second = classify_sessions([past], NOW)

    assert past.state == "missed_original"
    assert second.missed == [past]
    assert second.newly_missed == []


def test_completed_and_terminal_sessions_are_left_alone() -> None:
    done = _session(1, date(2025, 3, 1), 9, 10, state="completed")
    skipped = _session(2, date(2025, 3, 2), 9, 10, state="skipped_user")
    moved = _session(3, date(2025, 3, 2), 10, 11, state="redistributed")

    result = classify_sessions([done, skipped, moved], NOW)

    assert done.state == "completed"
    assert skipped.state == "skipped_user"
    assert moved.state == "redistributed"
    assert result.completed == [done]
    assert result.terminal == [skipped, moved]
    assert result.newly_missed == []
    assert set(result.as_dict()) == {"active", "missed", "completed", "terminal"}


def test_state_counts_aggregates_by_state() -> None:
    sessions = [
        _session(1, date(2025, 3, 1), 9, 10, state="completed"),
        _session(2, date(2025, 3, 2), 9, 10, state="completed"),
        _session(3, date(2025, 3, 5), 9, 10),
    ]

    assert state_counts(sessions) == {"completed": 2, "scheduled": 1}


def test_aware_now_is_compared_as_wall_clock() -> None:
    past = _session(1, date(2025, 3, 4), 10, 11)
    later = _session(2, date(2025, 3, 4), 12, 13)
    aware_now = datetime(2025, 3, 4, 12, 0, tzinfo=timezone.utc)

    result = classify_sessions([past, later], aware_now, timezone_name="")

    assert result.newly_missed == [past]
    assert result.active == [later]
