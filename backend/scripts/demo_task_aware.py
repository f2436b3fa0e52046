"""Walk through the four-day missed-session scenario in both redistribution modes.

A 4h task due in four days was planned as 1h/day: day 1 completed, day 2
missed, days 3 and 4 still scheduled. Task-aware mode re-plans all 3h that
remain; session-based mode only moves the missed hour.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from datetime import date, datetime, time, timedelta
from typing import List, Tuple

from replanner.models import (
    RedistributionOptions,
    RedistributionResult,
    SchedulingSettings,
    StudyPlan,
    StudySession,
    Task,
)
from replanner.orchestrator import redistribute

LOGGER = logging.getLogger("replanner.demo")


def build_scenario(today: date) -> Tuple[List[StudyPlan], Task]:
    task = Task(
        id="task-1",
        title="Important Project",
        description="A 4-hour task due in 4 days",
        deadline=datetime.combine(today + timedelta(days=4), time(17, 0)),
        importance=True,
        estimated_hours=4,
    )
    plans: List[StudyPlan] = []
    states = [
        (today - timedelta(days=2), "completed"),
        (today - timedelta(days=1), "scheduled"),
        (today + timedelta(days=1), "scheduled"),
        (today + timedelta(days=2), "scheduled"),
    ]
    for number, (day, state) in enumerate(states, start=1):
        session = StudySession(
            task_id=task.id,
            date=day,
            start_time=time(9, 0),
            end_time=time(10, 0),
            allocated_hours=1,
            session_number=number,
            state=state,
            actual_hours=1 if state == "completed" else None,
        )
        plans.append(
            StudyPlan(
                id=f"plan-day{number}",
                date=day,
                planned_tasks=[session],
                total_study_hours=1,
                available_hours=6,
            )
        )
    return plans, task


def describe(result: RedistributionResult, task: Task) -> List[str]:
    lines = [
        f"Success: {result.success}",
        f"Message: {result.feedback.message}",
        f"Tasks processed: {result.feedback.details.tasks_processed}",
        f"Total hours redistributed: {result.feedback.details.total_hours_redistributed}h",
    ]
    record = result.redistribution.get(task.id)
    if record is None:
        return lines
    lines.append("Removed sessions:")
    for session in record.removed_sessions:
        lines.append(f"  - #{session.session_number} {session.date.isoformat()} {session.allocated_hours}h ({session.state})")
    lines.append("New sessions:")
    for session in record.new_sessions:
        lines.append(
            f"  - #{session.session_number} {session.date.isoformat()} "
            f"{session.start_time.strftime('%H:%M')}-{session.end_time.strftime('%H:%M')} {session.allocated_hours}h"
        )
    total = record.completed_hours + record.placed_hours + record.unplaced_hours
    lines.append(
        f"Completed {record.completed_hours}h + placed {record.placed_hours}h + unplaced {record.unplaced_hours}h "
        f"= {total:g}h of {task.estimated_hours:g}h"
    )
    return lines


def main(argv: List[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--today", type=date.fromisoformat, default=date.today(), help="Anchor date (YYYY-MM-DD).")
    parser.add_argument("--mode", choices=["task-aware", "session", "both"], default="both")
    parser.add_argument("--json", action="store_true", help="Print raw results as JSON.")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.WARNING,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    settings = SchedulingSettings(
        daily_available_hours=6,
        study_window_start_hour=9,
        study_window_end_hour=17,
        work_days=list(range(7)),
        buffer_days=0,
        min_session_minutes=30,
    )
    now = datetime.combine(args.today, time(8, 0))
    modes = ["task-aware", "session"] if args.mode == "both" else [args.mode]
    payload = {}
    for mode in modes:
        plans, task = build_scenario(args.today)
        result = redistribute(
            plans,
            [task],
            settings=settings,
            now=now,
            options=RedistributionOptions(use_task_aware_mode=mode == "task-aware"),
        )
        if args.json:
            payload[mode] = result.model_dump(mode="json")
            continue
        print(f"=== {mode} ===")
        for line in describe(result, task):
            print(line)
        print()
    if args.json:
        print(json.dumps(payload, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
