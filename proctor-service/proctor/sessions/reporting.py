"""
Read-side views for reviewers: suspicious activity, statistics, and the
browser lockdown policy for an assessment.
"""
from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from proctor.config import Settings
from proctor.core.anticheat_config import AntiCheatConfig
from proctor.core.models import (
    ProctorSession,
    SecurityViolation,
    SessionStatus,
    Severity,
    highest_severity,
)

WEEK = timedelta(days=7)


@dataclass
class SuspiciousActivity:
    session_id:       str
    attempt_id:       str
    assessment_id:    str
    user_id:          str
    violation_count:  int
    highest_severity: Severity
    timestamp:        datetime
    status:           SessionStatus
    violations: list[SecurityViolation] = field(default_factory=list)


@dataclass
class BrowserLockdownPolicy:
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


@dataclass
class AntiCheatStats:
    total_sessions:    int = 0
    active_sessions:   int = 0
    flagged_sessions:  int = 0
    total_violations:  int = 0
    violations_by_type: dict[str, int] = field(default_factory=dict)
    weekly_flagged:    int = 0
    most_common_violation: str | None = None
    average_violations_per_session: float = 0.0


def _in_range(session: ProctorSession, start: datetime | None, end: datetime | None) -> bool:
    if start is not None and session.start_time < start:
        return False
    if end is not None and session.start_time > end:
        return False
    return True


def list_suspicious(
    sessions: list[ProctorSession],
    assessment_id: str | None = None,
    user_id:       str | None = None,
    start_date:    datetime | None = None,
    end_date:      datetime | None = None,
) -> list[SuspiciousActivity]:
    """
    Sessions with at least one flagged violation, filtered, then ordered by
    highest flagged severity and flagged count (both descending).
    """
    activities: list[SuspiciousActivity] = []
    for session in sessions:
        if assessment_id and session.assessment_id != assessment_id:
            continue
        if user_id and session.user_id != user_id:
            continue
        if not _in_range(session, start_date, end_date):
            continue

        flagged = session.flagged_violations
        if not flagged:
            continue
        activities.append(SuspiciousActivity(
            session_id       = session.id,
            attempt_id       = session.attempt_id,
            assessment_id    = session.assessment_id,
            user_id          = session.user_id,
            violation_count  = len(flagged),
            highest_severity = highest_severity(flagged),
            timestamp        = session.start_time,
            status           = session.status,
            violations       = flagged,
        ))

    activities.sort(key=lambda a: (a.highest_severity.rank, a.violation_count), reverse=True)
    return activities


def build_lockdown_policy(config: AntiCheatConfig, settings: Settings) -> BrowserLockdownPolicy:
    return BrowserLockdownPolicy(
        enable_lockdown         = config.enable_browser_lockdown,
        prevent_tab_switching   = config.prevent_tab_switching,
        prevent_copy_paste      = config.prevent_copy_paste,
        prevent_right_click     = config.prevent_right_click,
        prevent_dev_tools       = config.prevent_dev_tools,
        require_fullscreen      = config.require_fullscreen,
        prevent_back_navigation = config.prevent_back_navigation,
        allowed_domains         = list(settings.lockdown_allowed_domains),
        blocked_keystrokes      = list(settings.lockdown_blocked_keystrokes),
        warning_message         = settings.lockdown_warning_message,
    )


def compute_statistics(
    sessions:   list[ProctorSession],
    now:        datetime,
    start_date: datetime | None = None,
    end_date:   datetime | None = None,
) -> AntiCheatStats:
    selected = [s for s in sessions if _in_range(s, start_date, end_date)]
    if not selected:
        return AntiCheatStats()

    by_type: Counter[str] = Counter(
        v.type.value for s in selected for v in s.violations
    )
    flagged = [s for s in selected if s.flagged_violations]
    total_violations = sum(by_type.values())

    return AntiCheatStats(
        total_sessions    = len(selected),
        active_sessions   = sum(1 for s in selected if s.is_active),
        flagged_sessions  = len(flagged),
        total_violations  = total_violations,
        violations_by_type = dict(by_type),
        weekly_flagged    = sum(1 for s in flagged if now - s.start_time <= WEEK),
        most_common_violation = by_type.most_common(1)[0][0] if by_type else None,
        average_violations_per_session = round(total_violations / len(selected), 2),
    )
