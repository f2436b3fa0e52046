"""Transactional driver for a full redistribution pass.

A pass works on a deep copy of the schedule. After every task the integrity
sweep runs over the whole copy; a new overlap aborts the pass and the caller's
original plans are returned untouched. There is no partial-commit-then-repair.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import defaultdict
from datetime import datetime
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from .clock import as_wall_clock
from .config import default_scheduling_settings, get_settings
from .errors import (
    CrossTaskConflict,
    InvalidFixedCommitment,
    NegativeRemainingWork,
    RedistributionError,
    TaskAlreadyDone,
    UnknownTask,
)
from .models import (
    FailureReason,
    FeedbackDetails,
    FixedCommitment,
    RedistributionFeedback,
    RedistributionMetadata,
    RedistributionOptions,
    RedistributionResult,
    SchedulingSettings,
    StudyPlan,
    StudySession,
    Task,
    TaskRedistribution,
    clean_hours,
)
from .priority import PriorityCandidate, rank
from .redistribution import TaskAwareRedistributionEngine
from .schedule import WorkingSchedule
from .session_state import classify_sessions
from .telemetry import emit_event
from .validator import validate_final_schedule, validate_fixed_commitments

logger = logging.getLogger(__name__)


class RedistributionOrchestrator:
    """Runs one pass across every task with missed work."""

    def __init__(
        self,
        settings: Optional[SchedulingSettings] = None,
        fixed_commitments: Sequence[FixedCommitment] = (),
        *,
        max_redistribution_days: Optional[int] = None,
        max_day_iterations: Optional[int] = None,
        slot_granularity_minutes: Optional[int] = None,
        timezone_name: Optional[str] = None,
    ) -> None:
        config = get_settings()
        self._settings = settings or default_scheduling_settings()
        self._commitments = tuple(fixed_commitments)
        self._max_days = max_redistribution_days or config.max_redistribution_days
        self._max_iterations = max_day_iterations or config.max_day_iterations
        self._granularity = slot_granularity_minutes or config.slot_granularity_minutes
        self._timezone = timezone_name if timezone_name is not None else config.timezone

    def run(
        self,
        study_plans: Sequence[StudyPlan],
        tasks: Sequence[Task],
        now: datetime,
        options: Optional[RedistributionOptions] = None,
        metadata: Optional[Mapping[str, RedistributionMetadata]] = None,
    ) -> RedistributionResult:
        started = time.perf_counter()
        options = options or RedistributionOptions()
        now = as_wall_clock(now, self._timezone)
        original_plans = list(study_plans)
        incoming_metadata = {key: value.model_copy(deep=True) for key, value in (metadata or {}).items()}

        try:
            validate_fixed_commitments(self._commitments)
        except InvalidFixedCommitment as exc:
            logger.warning("Aborting redistribution: %s", exc.message)
            return self._aborted(original_plans, incoming_metadata, exc, started, status="aborted")

        working = WorkingSchedule(original_plans)
        classification = classify_sessions(list(working), now)
        baseline = {conflict.signature for conflict in validate_final_schedule(working, self._commitments)}

        candidates, unhandled = self._candidates(classification.missed, tasks, now, options)
        if not candidates:
            plans = working.plans() if classification.newly_missed else original_plans
            message = "No missed sessions need redistribution."
            if unhandled:
                message = "No missed sessions were redistributed." + _unhandled_suffix(unhandled)
            return self._finish(
                plans,
                {},
                incoming_metadata,
                started,
                errors=unhandled,
                message=message,
                status="noop" if not unhandled else "partial",
            )

        horizon = options.max_redistribution_days or self._max_days
        engine = TaskAwareRedistributionEngine(
            self._settings,
            self._commitments,
            max_redistribution_days=horizon,
            max_day_iterations=self._max_iterations,
            slot_granularity_minutes=self._granularity,
        )
        working_metadata = {key: value.model_copy(deep=True) for key, value in incoming_metadata.items()}
        redistribution: Dict[str, TaskRedistribution] = {}

        try:
            for candidate in candidates:
                task = candidate.task
                record = self._redistribute_one(engine, working, candidate, now, working_metadata, options)
                redistribution[task.id] = record
                emit_event(
                    "task_redistribution",
                    task_id=task.id,
                    status=record.status,
                    priority_score=candidate.score,
                    removed=len(record.removed_sessions),
                    created=len(record.new_sessions),
                    placed_hours=record.placed_hours,
                    unplaced_hours=record.unplaced_hours,
                )
                self._check_integrity(working, baseline, task.id)
        except CrossTaskConflict as exc:
            logger.error("Rolling back redistribution pass: %s", exc.message)
            return self._aborted(original_plans, incoming_metadata, exc, started, status="rolled_back")

        message = self._summary_message(redistribution) + _unhandled_suffix(unhandled)
        succeeded = not unhandled and all(record.success for record in redistribution.values())
        return self._finish(
            working.plans(),
            redistribution,
            {**incoming_metadata, **working_metadata},
            started,
            errors=unhandled,
            message=message,
            status="success" if succeeded else "partial",
        )

    def _candidates(
        self,
        missed: Sequence[StudySession],
        tasks: Sequence[Task],
        now: datetime,
        options: RedistributionOptions,
    ) -> Tuple[List[PriorityCandidate], List[FailureReason]]:
        """Rank tasks eligible for this pass and report missed work left behind."""
        targets = options.target_session_ids
        missed_by_task: Dict[str, List[StudySession]] = defaultdict(list)
        for session in missed:
            if targets is not None and session.key not in targets:
                continue
            missed_by_task[session.task_id].append(session)

        eligible: List[Task] = []
        unhandled: List[FailureReason] = []
        known = set()
        for task in tasks:
            known.add(task.id)
            sessions = missed_by_task.get(task.id)
            if not sessions:
                continue
            if task.status == "done":
                logger.info("Task %s is done; leaving its missed sessions in place.", task.id)
                unhandled.append(
                    TaskAlreadyDone(
                        f"Task '{task.id}' is done; {len(sessions)} missed session(s) left in place.",
                        task_id=task.id,
                        hours=_missed_hours(sessions),
                    ).to_reason()
                )
                continue
            eligible.append(task.model_copy(update={"deadline": as_wall_clock(task.deadline, self._timezone)}))
        for task_id in sorted(set(missed_by_task) - known):
            sessions = missed_by_task[task_id]
            logger.warning("Missed sessions reference unknown task %s", task_id)
            unhandled.append(
                UnknownTask(
                    f"Unknown task '{task_id}'; {len(sessions)} missed session(s) left in place.",
                    task_id=task_id,
                    hours=_missed_hours(sessions),
                ).to_reason()
            )
        return rank(eligible, missed_by_task, now), unhandled

    def _redistribute_one(
        self,
        engine: TaskAwareRedistributionEngine,
        working: WorkingSchedule,
        candidate: PriorityCandidate,
        now: datetime,
        metadata: Dict[str, RedistributionMetadata],
        options: RedistributionOptions,
    ) -> TaskRedistribution:
        task = candidate.task
        task_metadata = metadata.setdefault(task.id, RedistributionMetadata(task_id=task.id))
        try:
            return engine.redistribute_task(
                working,
                task,
                candidate.sessions,
                now,
                metadata=task_metadata,
                priority_score=candidate.score,
                task_aware=options.use_task_aware_mode,
            )
        except NegativeRemainingWork as exc:
            logger.warning("Skipping task %s: %s", task.id, exc.message)
            task_metadata.failure_reasons.append(exc.message)
            task_metadata.last_processed_at = now
            task_metadata.last_priority_score = candidate.score
            return TaskRedistribution(
                task_id=task.id,
                success=False,
                status="skipped",
                failure_reasons=[exc.to_reason()],
                priority_score=candidate.score,
            )

    def _check_integrity(self, working: WorkingSchedule, baseline: set, task_id: str) -> None:
        conflicts = validate_final_schedule(working, self._commitments)
        introduced = [conflict for conflict in conflicts if conflict.signature not in baseline]
        if introduced:
            described = "; ".join(conflict.describe() for conflict in introduced)
            raise CrossTaskConflict(
                f"Integrity check failed after redistributing {task_id}: {described}",
                conflicts=introduced,
                task_id=task_id,
            )

    def _summary_message(self, redistribution: Mapping[str, TaskRedistribution]) -> str:
        placed = clean_hours(sum(record.placed_hours for record in redistribution.values()))
        failed = [record for record in redistribution.values() if record.status in ("partial", "failed")]
        skipped = [record for record in redistribution.values() if record.status == "skipped"]
        count = len(redistribution)
        message = f"Redistributed {placed:g}h across {count} task{'s' if count != 1 else ''}."
        if failed:
            unplaced = clean_hours(sum(record.unplaced_hours for record in failed))
            message += f" {len(failed)} task{'s' if len(failed) != 1 else ''} could not be fully placed ({unplaced:g}h unplaced)."
        if skipped:
            message += f" {len(skipped)} task{'s' if len(skipped) != 1 else ''} skipped for inconsistent progress data."
        return message

    def _aborted(
        self,
        original_plans: List[StudyPlan],
        metadata: Dict[str, RedistributionMetadata],
        error: RedistributionError,
        started: float,
        *,
        status: str,
    ) -> RedistributionResult:
        verb = "rolled back" if status == "rolled_back" else "aborted"
        return self._finish(
            original_plans,
            {},
            metadata,
            started,
            errors=[error.to_reason()],
            message=f"Redistribution {verb}: {error.message}",
            status=status,
        )

    def _finish(
        self,
        plans: List[StudyPlan],
        redistribution: Dict[str, TaskRedistribution],
        metadata: Dict[str, RedistributionMetadata],
        started: float,
        *,
        errors: List[FailureReason],
        message: str,
        status: str,
    ) -> RedistributionResult:
        records = list(redistribution.values())
        details = FeedbackDetails(
            tasks_processed=len(records),
            total_hours_redistributed=clean_hours(sum(record.placed_hours for record in records)),
            tasks_succeeded=sum(1 for record in records if record.success),
            tasks_failed=sum(1 for record in records if record.status in ("partial", "failed")),
            tasks_skipped=sum(1 for record in records if record.status == "skipped"),
            sessions_removed=sum(len(record.removed_sessions) for record in records),
            sessions_created=sum(len(record.new_sessions) for record in records),
            unplaced_hours=clean_hours(sum(record.unplaced_hours for record in records)),
            error_count=len(errors) + sum(len(record.failure_reasons) for record in records),
            errors=errors,
        )
        rolled_back = status == "rolled_back"
        success = not errors and all(record.success for record in records)
        duration_ms = round((time.perf_counter() - started) * 1000.0, 2)
        emit_event(
            "redistribution_pass",
            status=status,
            success=success,
            tasks_processed=details.tasks_processed,
            tasks_failed=details.tasks_failed,
            tasks_skipped=details.tasks_skipped,
            total_hours_redistributed=details.total_hours_redistributed,
            error_count=details.error_count,
            duration_ms=duration_ms,
        )
        log = logger.info if success else logger.warning
        log("Redistribution pass %s in %.2fms: %s", status, duration_ms, message)
        return RedistributionResult(
            success=success,
            redistribution=redistribution,
            feedback=RedistributionFeedback(message=message, details=details),
            study_plans=plans,
            metadata=metadata,
            rolled_back=rolled_back,
        )


def _missed_hours(sessions: Sequence[StudySession]) -> float:
    return clean_hours(sum(session.allocated_hours for session in sessions))


def _unhandled_suffix(unhandled: Sequence[FailureReason]) -> str:
    if not unhandled:
        return ""
    return " Missed work left in place: " + " ".join(reason.message for reason in unhandled)


def redistribute(
    study_plans: Sequence[StudyPlan],
    tasks: Sequence[Task],
    settings: Optional[SchedulingSettings] = None,
    fixed_commitments: Sequence[FixedCommitment] = (),
    now: Optional[datetime] = None,
    options: Optional[RedistributionOptions] = None,
    metadata: Optional[Mapping[str, RedistributionMetadata]] = None,
) -> RedistributionResult:
    """Redistribute missed work across ``study_plans``.

    Passes over the same schedule must be serialised by the caller: the
    working-copy-then-commit protocol assumes no interleaving writer.
    """
    orchestrator = RedistributionOrchestrator(settings, fixed_commitments)
    return orchestrator.run(study_plans, tasks, now or datetime.now(), options, metadata)


async def redistribute_async(
    study_plans: Sequence[StudyPlan],
    tasks: Sequence[Task],
    settings: Optional[SchedulingSettings] = None,
    fixed_commitments: Sequence[FixedCommitment] = (),
    now: Optional[datetime] = None,
    options: Optional[RedistributionOptions] = None,
    metadata: Optional[Mapping[str, RedistributionMetadata]] = None,
) -> RedistributionResult:
    """Run ``redistribute`` in a worker thread so an event loop stays responsive."""
    return await asyncio.to_thread(
        redistribute,
        study_plans,
        tasks,
        settings,
        fixed_commitments,
        now,
        options,
        metadata,
    )


__all__ = ["RedistributionOrchestrator", "redistribute", "redistribute_async"]
