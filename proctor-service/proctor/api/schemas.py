"""
Request / response bodies for the anti-cheating API.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from proctor.core.models import (
    ProctorSession,
    SessionStatus,
    Severity,
    ViolationType,
)

RESOLUTION_PATTERN = r"^\s*\d+\s*[xX×]\s*\d+\s*$"


# ── Requests ───────────────────────────────────────────────────────────────────

class StartSessionRequest(BaseModel):
    attempt_id:          str
    browser_fingerprint: str = ""
    ip_address:          str = ""
    user_agent:          str = ""
    screen_resolution:   str = ""
    timezone:            str = ""
    metadata: dict[str, Any] = Field(default_factory=dict)


class RecordViolationRequest(BaseModel):
    type:     ViolationType
    severity: Severity = Severity.MEDIUM
    details:  dict[str, Any] = Field(default_factory=dict)


class ValidateBrowserRequest(BaseModel):
    user_agent:        str
    screen_resolution: str = Field(pattern=RESOLUTION_PATTERN)
    timezone:          str
    plugins:   list[str] = Field(default_factory=list)
    languages: list[str] = Field(default_factory=list)
    expected_fingerprint: str | None = None


class QuestionTimingIn(BaseModel):
    question_index: int   = Field(ge=0)
    time_spent:     float = Field(ge=0, allow_inf_nan=False, description="milliseconds")


class AnalyzeTimingRequest(BaseModel):
    attempt_id: str
    question_timings: list[QuestionTimingIn] = Field(min_length=1)


class ReviewViolationRequest(BaseModel):
    review_notes: str | None = None
    flagged:      bool | None = None


# ── Responses ──────────────────────────────────────────────────────────────────

class ViolationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id:        str
    type:      ViolationType
    severity:  Severity
    timestamp: datetime
    details:   dict[str, Any]
    flagged:   bool
    reviewed:  bool
    reviewed_by:  str | None = None
    review_notes: str | None = None
    reviewed_at:  datetime | None = None


class SessionResponse(BaseModel):
    id:            str
    attempt_id:    str
    assessment_id: str
    user_id:       str
    start_time:    datetime
    end_time:      datetime | None
    status:        SessionStatus
    violation_count: int
    browser_fingerprint: str
    ip_address:          str
    user_agent:          str
    screen_resolution:   str
    timezone:            str
    metadata: dict[str, Any]
    termination_reason: str | None = None

    @classmethod
    def from_session(cls, session: ProctorSession) -> "SessionResponse":
        return cls(
            id              = session.id,
            attempt_id      = session.attempt_id,
            assessment_id   = session.assessment_id,
            user_id         = session.user_id,
            start_time      = session.start_time,
            end_time        = session.end_time,
            status          = session.status,
            violation_count = len(session.violations),
            browser_fingerprint = session.browser_fingerprint,
            ip_address          = session.ip_address,
            user_agent          = session.user_agent,
            screen_resolution   = session.screen_resolution,
            timezone            = session.timezone,
            metadata            = dict(session.metadata),
            termination_reason  = session.termination_reason,
        )


class SessionDetailResponse(SessionResponse):
    violations: list[ViolationResponse] = Field(default_factory=list)

    @classmethod
    def from_session(cls, session: ProctorSession) -> "SessionDetailResponse":
        base = SessionResponse.from_session(session).model_dump()
        return cls(
            **base,
            violations=[ViolationResponse.model_validate(v) for v in session.violations],
        )


class SuspiciousActivityResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    session_id:       str
    attempt_id:       str
    assessment_id:    str
    user_id:          str
    violation_count:  int
    highest_severity: Severity
    timestamp:        datetime
    status:           SessionStatus
    violations: list[ViolationResponse]


class LockdownPolicyResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    enable_lockdown:         bool
    prevent_tab_switching:   bool
    prevent_copy_paste:      bool
    prevent_right_click:     bool
    prevent_dev_tools:       bool
    require_fullscreen:      bool
    prevent_back_navigation: bool
    allowed_domains:    list[str]
    blocked_keystrokes: list[str]
    warning_message:    str


class BrowserValidationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    valid:      bool
    warnings:   list[str]
    risk_score: int
    recommended_actions: list[str]


class TimingAnalysisResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    suspicious:    bool
    reasons:       list[str]
    average_time:  float
    fastest_time:  float
    slowest_time:  float
    time_variance: float


class StatsResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    total_sessions:   int
    active_sessions:  int
    flagged_sessions: int
    total_violations: int
    violations_by_type: dict[str, int]
    weekly_flagged:   int
    most_common_violation: str | None
    average_violations_per_session: float


class MessageResponse(BaseModel):
    message: str
