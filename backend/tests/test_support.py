from __future__ import annotations

import logging
from datetime import date, datetime, timedelta, timezone

import pytest

from factories import plans, session
from replanner.clock import as_wall_clock
from replanner.config import default_scheduling_settings, get_settings
from replanner.logging_config import configure_logging
from replanner.models import SchedulingSettings
from replanner.schedule import WorkingSchedule
from replanner.telemetry import collect_events, emit_event, register_listener, unregister_listener


@pytest.fixture
def fresh_settings(monkeypatch):
    get_settings.cache_clear()
    yield monkeypatch
    get_settings.cache_clear()


def test_settings_read_from_environment(fresh_settings) -> None:
    fresh_settings.setenv("REPLANNER_DAILY_AVAILABLE_HOURS", "3.5")
    fresh_settings.setenv("REPLANNER_WORK_DAYS", "[0, 2, 4]")
    fresh_settings.setenv("REPLANNER_BUFFER_DAYS", "1")

    scheduling = default_scheduling_settings()

    assert scheduling.daily_available_hours == 3.5
    assert scheduling.work_days == [0, 2, 4]
    assert scheduling.buffer_days == 1
    assert scheduling.daily_capacity_minutes == 210


def test_invalid_environment_raises_runtime_error(fresh_settings) -> None:
    fresh_settings.setenv("REPLANNER_MIN_SESSION_MINUTES", "0")

    with pytest.raises(RuntimeError, match="Invalid replanner configuration"):
        get_settings()


def test_scheduling_settings_reject_bad_window() -> None:
    with pytest.raises(ValueError):
        SchedulingSettings(study_window_start_hour=17, study_window_end_hour=9)
    with pytest.raises(ValueError):
        SchedulingSettings(work_days=[7])


def test_collect_events_filters_by_name() -> None:
    with collect_events("wanted") as events:
        emit_event("wanted", day=date(2025, 3, 4), count=2)
        emit_event("ignored", count=1)

    assert [event.name for event in events] == ["wanted"]
    assert events[0].payload == {"day": "2025-03-04", "count": 2}


def test_failing_listener_does_not_break_emit() -> None:
    def broken(event):
        raise ValueError("listener failure")

    register_listener(broken)
    try:
        with collect_events() as events:
            emit_event("still_delivered")
    finally:
        unregister_listener(broken)

    assert [event.name for event in events] == ["still_delivered"]


def test_working_schedule_copies_and_merges_plans() -> None:
    day = date(2025, 3, 5)
    first, second = plans([session("a", 1, day, 9, 10)]), plans([session("b", 1, day, 11, 12)])
    originals = first + second

    working = WorkingSchedule(originals)
    [moved] = working.sessions_for_task("a")
    working.remove([moved])
    working.add(session("a", 2, date(2025, 3, 6), 13, 14))

    result = working.plans()
    assert [plan.date for plan in result] == [day, date(2025, 3, 6)]
    assert [item.key for item in result[0].planned_tasks] == ["b#1"]
    assert result[0].total_study_hours == 1.0
    assert result[1].id == "plan-2025-03-06"
    assert [item.key for item in originals[0].planned_tasks] == ["a#1"]


def test_wall_clock_strips_offsets() -> None:
    naive = datetime(2025, 3, 4, 12, 0)
    aware = datetime(2025, 3, 4, 12, 0, tzinfo=timezone(timedelta(hours=-5)))

    assert as_wall_clock(naive, "Europe/Paris") is naive
    assert as_wall_clock(aware) == naive


def test_logging_config_sets_service_levels(monkeypatch) -> None:
    monkeypatch.setenv("REPLANNER_LOG_LEVEL", "debug")
    monkeypatch.delenv("REPLANNER_DEBUG_TELEMETRY", raising=False)
    configure_logging()

    service = logging.getLogger("replanner")
    assert service.level == logging.DEBUG
    assert service.propagate is False
    assert logging.getLogger("replanner.telemetry").level == logging.DEBUG

    monkeypatch.setenv("REPLANNER_LOG_LEVEL", "not-a-level")
    monkeypatch.setenv("REPLANNER_DEBUG_TELEMETRY", "1")
    configure_logging()

    assert service.level == logging.INFO
    assert logging.getLogger("replanner.telemetry").level == logging.DEBUG

    monkeypatch.delenv("REPLANNER_LOG_LEVEL")
    monkeypatch.delenv("REPLANNER_DEBUG_TELEMETRY")
    configure_logging()
    assert logging.getLogger("replanner.telemetry").level == logging.INFO
