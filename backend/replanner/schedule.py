"""Mutable working copy of a schedule used during a single redistribution pass."""

from __future__ import annotations

from datetime import date
from typing import Dict, Iterable, Iterator, List, Sequence

from .models import FixedCommitment, SchedulingSettings, StudyPlan, StudySession
from .validator import ScheduleView


def plan_id_for(day: date) -> str:
    return f"plan-{day.isoformat()}"


class WorkingSchedule:
    """Deep copy of the caller's plans that the pass is free to mutate.

    The originals are never touched, so discarding this object is a complete
    rollback.
    """

    def __init__(self, plans: Sequence[StudyPlan]) -> None:
        self._plans: Dict[date, StudyPlan] = {}
        for plan in plans:
            copy = plan.model_copy(deep=True)
            existing = self._plans.get(copy.date)
            if existing is None:
                self._plans[copy.date] = copy
            else:
                existing.planned_tasks.extend(copy.planned_tasks)

    def __iter__(self) -> Iterator[StudySession]:
        for day in sorted(self._plans):
            yield from self._plans[day].planned_tasks

    def sessions_for_task(self, task_id: str) -> List[StudySession]:
        return [session for session in self if session.task_id == task_id]

    def remove(self, sessions: Iterable[StudySession]) -> None:
        doomed = {id(session) for session in sessions}
        for plan in self._plans.values():
            plan.planned_tasks = [session for session in plan.planned_tasks if id(session) not in doomed]

    def add(self, session: StudySession) -> None:
        plan = self._plans.get(session.date)
        if plan is None:
            plan = StudyPlan(id=plan_id_for(session.date), date=session.date)
            self._plans[session.date] = plan
        plan.planned_tasks.append(session)
        plan.planned_tasks.sort(key=lambda item: (item.start_time, item.task_id, item.session_number))

    def view(self, commitments: Sequence[FixedCommitment], settings: SchedulingSettings) -> ScheduleView:
        return ScheduleView(sessions=tuple(self), commitments=tuple(commitments), settings=settings)

    def plans(self) -> List[StudyPlan]:
        """Committed plans, ordered by date, with refreshed totals."""
        ordered: List[StudyPlan] = []
        for day in sorted(self._plans):
            plan = self._plans[day]
            plan.recalculate_totals()
            ordered.append(plan)
        return ordered


__all__ = ["WorkingSchedule", "plan_id_for"]
