"""REST endpoints that expose the redistribution core to host applications."""

from __future__ import annotations

import logging
from datetime import datetime
from time import perf_counter
from typing import Dict, List, Optional

from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel, Field

from .config import default_scheduling_settings, get_settings
from .errors import InvalidFixedCommitment
from .models import (
    FixedCommitment,
    PlacementCandidate,
    PlacementVerdict,
    RedistributionMetadata,
    RedistributionOptions,
    RedistributionResult,
    SchedulingSettings,
    StudyPlan,
    StudySession,
    Task,
)
from .orchestrator import redistribute
from .session_state import classify_sessions
from .telemetry import emit_event
from .validator import ScheduleView, validate_fixed_commitments, validate_placement

router = APIRouter(prefix="/api/redistribution", tags=["redistribution"])
logger = logging.getLogger(__name__)


class RedistributionRequest(BaseModel):
    study_plans: List[StudyPlan] = Field(default_factory=list)
    tasks: List[Task] = Field(default_factory=list)
    settings: Optional[SchedulingSettings] = None
    fixed_commitments: List[FixedCommitment] = Field(default_factory=list)
    now: Optional[datetime] = None
    options: RedistributionOptions = Field(default_factory=RedistributionOptions)
    metadata: Dict[str, RedistributionMetadata] = Field(default_factory=dict)


class ClassifyRequest(BaseModel):
    sessions: List[StudySession] = Field(default_factory=list)
    now: Optional[datetime] = None


class ClassifyResponse(BaseModel):
    active: List[StudySession] = Field(default_factory=list)
    missed: List[StudySession] = Field(default_factory=list)
    completed: List[StudySession] = Field(default_factory=list)
    terminal: List[StudySession] = Field(default_factory=list)
    newly_missed: List[str] = Field(default_factory=list)


class PlacementCheckRequest(BaseModel):
    candidate: PlacementCandidate
    study_plans: List[StudyPlan] = Field(default_factory=list)
    fixed_commitments: List[FixedCommitment] = Field(default_factory=list)
    settings: Optional[SchedulingSettings] = None


@router.post("", response_model=RedistributionResult, status_code=status.HTTP_200_OK)
def run_redistribution(request: RedistributionRequest) -> RedistributionResult:
    # Sync handler: FastAPI runs it in the thread pool so large passes do not block the loop.
    started_at = perf_counter()
    try:
        result = redistribute(
            request.study_plans,
            request.tasks,
            settings=request.settings,
            fixed_commitments=request.fixed_commitments,
            now=request.now,
            options=request.options,
            metadata=request.metadata,
        )
    except Exception as exc:  # noqa: BLE001
        logger.exception("Unexpected failure during redistribution")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Unable to redistribute the schedule. Try again shortly.",
        ) from exc
    emit_event(
        "redistribution_request",
        status="success" if result.success else "failure",
        rolled_back=result.rolled_back,
        plan_count=len(request.study_plans),
        task_count=len(request.tasks),
        duration_ms=round((perf_counter() - started_at) * 1000.0, 2),
    )
    return result


@router.post("/classify", response_model=ClassifyResponse, status_code=status.HTTP_200_OK)
def classify(request: ClassifyRequest) -> ClassifyResponse:
    classification = classify_sessions(
        request.sessions,
        request.now or datetime.now(),
        timezone_name=get_settings().timezone,
    )
    return ClassifyResponse(
        active=classification.active,
        missed=classification.missed,
        completed=classification.completed,
        terminal=classification.terminal,
        newly_missed=[session.key for session in classification.newly_missed],
    )


@router.post("/validate-placement", response_model=PlacementVerdict, status_code=status.HTTP_200_OK)
def check_placement(request: PlacementCheckRequest) -> PlacementVerdict:
    try:
        validate_fixed_commitments(request.fixed_commitments)
    except InvalidFixedCommitment as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=exc.message,
        ) from exc
    settings = request.settings or default_scheduling_settings()
    view = ScheduleView.from_plans(request.study_plans, request.fixed_commitments, settings)
    return validate_placement(request.candidate, view)


__all__ = ["router"]
