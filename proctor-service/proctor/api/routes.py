"""
FastAPI route definitions for the proctor service.

  GET  /health                                              — liveness/readiness check
  POST /anti-cheating/sessions/start                        — open a proctor session
  POST /anti-cheating/sessions/{session_id}/end             — end own session
  POST /anti-cheating/sessions/{session_id}/violations      — record a violation
  GET  /anti-cheating/assessments/{assessment_id}/lockdown-config
  POST /anti-cheating/validate-browser
  POST /anti-cheating/analyze-timing
  GET  /anti-cheating/suspicious-activity                   — reviewers only
  GET  /anti-cheating/statistics                            — reviewers only
  GET  /anti-cheating/sessions/{session_id}                 — reviewers only
  GET  /anti-cheating/violations/{violation_id}             — reviewers only
  PUT  /anti-cheating/violations/{violation_id}/review      — reviewers only
"""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Depends, Request, status

from proctor.analysis.browser import BrowserSignals
from proctor.analysis.timing import QuestionTiming
from proctor.api.deps import Caller, get_caller, get_service, require_reviewer
from proctor.api.schemas import (
    AnalyzeTimingRequest,
    BrowserValidationResponse,
    LockdownPolicyResponse,
    MessageResponse,
    RecordViolationRequest,
    ReviewViolationRequest,
    SessionDetailResponse,
    SessionResponse,
    StartSessionRequest,
    StatsResponse,
    SuspiciousActivityResponse,
    TimingAnalysisResponse,
    ValidateBrowserRequest,
    ViolationResponse,
)
from proctor.core.models import ClientSignals, ViolationInput
from proctor.sessions.service import ProctorService

logger = logging.getLogger(__name__)

router = APIRouter()
anti_cheating = APIRouter(prefix="/anti-cheating", tags=["anti-cheating"])


def _as_utc(value: datetime | None) -> datetime | None:
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


# ── Health ─────────────────────────────────────────────────────────────────────

@router.get("/health")
async def health(request: Request) -> dict[str, Any]:
    service: ProctorService = request.app.state.proctor_service
    checks = getattr(request.app.state, "dependency_checks", {})

    dependencies = {}
    for name, check in checks.items():
        ok = await asyncio.to_thread(check)
        dependencies[name] = "ok" if ok else "error"

    return {
        "status": "ok" if all(v == "ok" for v in dependencies.values()) else "degraded",
        "sessions": {
            "total":  len(service.store),
            "active": len(service.store.active()),
        },
        "dependencies": dependencies,
    }


# ── Session lifecycle ──────────────────────────────────────────────────────────

@anti_cheating.post(
    "/sessions/start",
    response_model=SessionResponse,
    status_code=status.HTTP_201_CREATED,
)
async def start_session(
    req:     StartSessionRequest,
    caller:  Caller = Depends(get_caller),
    service: ProctorService = Depends(get_service),
) -> SessionResponse:
    signals = ClientSignals(
        browser_fingerprint = req.browser_fingerprint,
        ip_address          = req.ip_address,
        user_agent          = req.user_agent,
        screen_resolution   = req.screen_resolution,
        timezone            = req.timezone,
        metadata            = req.metadata,
    )
    session = await service.start_session(req.attempt_id, signals, caller.user_id)
    return SessionResponse.from_session(session)


@anti_cheating.post("/sessions/{session_id}/end", response_model=MessageResponse)
async def end_session(
    session_id: str,
    caller:     Caller = Depends(get_caller),
    service:    ProctorService = Depends(get_service),
) -> MessageResponse:
    await service.end_session(session_id, caller.user_id)
    return MessageResponse(message="Proctor session ended successfully")


@anti_cheating.post(
    "/sessions/{session_id}/violations",
    response_model=ViolationResponse,
    status_code=status.HTTP_201_CREATED,
)
async def record_violation(
    session_id: str,
    req:        RecordViolationRequest,
    caller:     Caller = Depends(get_caller),
    service:    ProctorService = Depends(get_service),
) -> ViolationResponse:
    violation = await service.record_violation(
        session_id,
        ViolationInput(type=req.type, severity=req.severity, details=req.details),
        caller.user_id,
    )
    return ViolationResponse.model_validate(violation)


# ── Pre-session / post-submission checks ──────────────────────────────────────

@anti_cheating.get(
    "/assessments/{assessment_id}/lockdown-config",
    response_model=LockdownPolicyResponse,
)
async def lockdown_config(
    assessment_id: str,
    caller:        Caller = Depends(get_caller),
    service:       ProctorService = Depends(get_service),
) -> LockdownPolicyResponse:
    policy = await service.lockdown_policy(assessment_id)
    return LockdownPolicyResponse.model_validate(policy)


@anti_cheating.post("/validate-browser", response_model=BrowserValidationResponse)
async def validate_browser(
    req:     ValidateBrowserRequest,
    caller:  Caller = Depends(get_caller),
    service: ProctorService = Depends(get_service),
) -> BrowserValidationResponse:
    result = service.validate_browser(
        BrowserSignals(
            user_agent        = req.user_agent,
            screen_resolution = req.screen_resolution,
            timezone          = req.timezone,
            plugins           = req.plugins,
            languages         = req.languages,
        ),
        expected_fingerprint=req.expected_fingerprint,
    )
    return BrowserValidationResponse.model_validate(result)


@anti_cheating.post("/analyze-timing", response_model=TimingAnalysisResponse)
async def analyze_timing(
    req:     AnalyzeTimingRequest,
    caller:  Caller = Depends(get_caller),
    service: ProctorService = Depends(get_service),
) -> TimingAnalysisResponse:
    timings = [
        QuestionTiming(question_index=t.question_index, time_spent_ms=t.time_spent)
        for t in req.question_timings
    ]
    result = await service.analyze_timing(req.attempt_id, timings)
    return TimingAnalysisResponse.model_validate(result)


# ── Reviewer views ─────────────────────────────────────────────────────────────

@anti_cheating.get("/suspicious-activity", response_model=list[SuspiciousActivityResponse])
async def suspicious_activity(
    assessment_id: str | None = None,
    user_id:       str | None = None,
    start_date:    datetime | None = None,
    end_date:      datetime | None = None,
    reviewer:      Caller = Depends(require_reviewer),
    service:       ProctorService = Depends(get_service),
) -> list[SuspiciousActivityResponse]:
    activities = service.suspicious_activity(
        assessment_id = assessment_id,
        user_id       = user_id,
        start_date    = _as_utc(start_date),
        end_date      = _as_utc(end_date),
    )
    return [SuspiciousActivityResponse.model_validate(a) for a in activities]


@anti_cheating.get("/statistics", response_model=StatsResponse)
async def statistics(
    start_date: datetime | None = None,
    end_date:   datetime | None = None,
    reviewer:   Caller = Depends(require_reviewer),
    service:    ProctorService = Depends(get_service),
) -> StatsResponse:
    stats = service.statistics(_as_utc(start_date), _as_utc(end_date))
    return StatsResponse.model_validate(stats)


@anti_cheating.get("/sessions/{session_id}", response_model=SessionDetailResponse)
async def get_session(
    session_id: str,
    reviewer:   Caller = Depends(require_reviewer),
    service:    ProctorService = Depends(get_service),
) -> SessionDetailResponse:
    return SessionDetailResponse.from_session(service.get_session(session_id))


@anti_cheating.get("/violations/{violation_id}", response_model=ViolationResponse)
async def get_violation(
    violation_id: str,
    reviewer:     Caller = Depends(require_reviewer),
    service:      ProctorService = Depends(get_service),
) -> ViolationResponse:
    return ViolationResponse.model_validate(service.get_violation(violation_id))


@anti_cheating.put("/violations/{violation_id}/review", response_model=ViolationResponse)
async def review_violation(
    violation_id: str,
    req:          ReviewViolationRequest,
    reviewer:     Caller = Depends(require_reviewer),
    service:      ProctorService = Depends(get_service),
) -> ViolationResponse:
    violation = await service.review_violation(
        violation_id,
        reviewer_id  = reviewer.user_id,
        review_notes = req.review_notes,
        flagged      = req.flagged,
    )
    return ViolationResponse.model_validate(violation)


router.include_router(anti_cheating)
