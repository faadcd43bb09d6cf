"""
Domain model for proctor sessions and security violations.

Violation kinds and severities are closed enums; every consumer that
branches on them (severity ranking, escalation) goes through the explicit
tables below so a new member fails loudly instead of falling through.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from proctor.core.anticheat_config import AntiCheatConfig


class ViolationType(str, Enum):
    TAB_SWITCH        = "tab_switch"
    WINDOW_BLUR       = "window_blur"
    COPY_PASTE        = "copy_paste"
    RIGHT_CLICK       = "right_click"
    DEV_TOOLS         = "dev_tools"
    FULLSCREEN_EXIT   = "fullscreen_exit"
    SUSPICIOUS_TIMING = "suspicious_timing"
    MULTIPLE_SESSIONS = "multiple_sessions"
    IP_CHANGE         = "ip_change"
    BROWSER_CHANGE    = "browser_change"


class Severity(str, Enum):
    LOW      = "low"
    MEDIUM   = "medium"
    HIGH     = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK: dict[Severity, int] = {
    Severity.LOW:      1,
    Severity.MEDIUM:   2,
    Severity.HIGH:     3,
    Severity.CRITICAL: 4,
}


# metadata key: terminated, but the attempt review flag is not stored yet
FLAG_PENDING = "flag_pending"


class SessionStatus(str, Enum):
    ACTIVE     = "active"
    COMPLETED  = "completed"
    TERMINATED = "terminated"


def highest_severity(violations: list["SecurityViolation"]) -> Severity:
    """Highest severity among ``violations`` (LOW for an empty list)."""
    highest = Severity.LOW
    for v in violations:
        if v.severity.rank > highest.rank:
            highest = v.severity
    return highest


def new_session_id() -> str:
    return f"session_{uuid.uuid4().hex}"


def new_violation_id() -> str:
    return f"violation_{uuid.uuid4().hex}"


# ── Inputs ────────────────────────────────────────────────────────────────────

@dataclass
class ClientSignals:
    """Client environment reported when a proctor session is opened."""
    browser_fingerprint: str = ""
    ip_address:          str = ""
    user_agent:          str = ""
    screen_resolution:   str = ""
    timezone:            str = ""
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class ViolationInput:
    type:     ViolationType
    severity: Severity = Severity.MEDIUM
    details:  dict[str, Any] = field(default_factory=dict)


# ── Entities ──────────────────────────────────────────────────────────────────

@dataclass
class SecurityViolation:
    id:        str
    type:      ViolationType
    severity:  Severity
    timestamp: datetime
    details:   dict[str, Any] = field(default_factory=dict)
    flagged:   bool = False
    reviewed:  bool = False
    reviewed_by:  str | None = None
    review_notes: str | None = None
    reviewed_at:  datetime | None = None


@dataclass
class ProctorSession:
    id:            str
    attempt_id:    str
    assessment_id: str
    user_id:       str
    start_time:    datetime
    config:        AntiCheatConfig
    status:        SessionStatus = SessionStatus.ACTIVE
    end_time:      datetime | None = None
    violations: list[SecurityViolation] = field(default_factory=list)

    browser_fingerprint: str = ""
    ip_address:          str = ""
    user_agent:          str = ""
    screen_resolution:   str = ""
    timezone:            str = ""
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def is_active(self) -> bool:
        return self.status is SessionStatus.ACTIVE

    @property
    def flagged_violations(self) -> list[SecurityViolation]:
        return [v for v in self.violations if v.flagged]

    @property
    def termination_reason(self) -> str | None:
        return self.metadata.get("termination_reason")
