"""
Auto-flag and end-of-session escalation rules.
"""
from __future__ import annotations

from datetime import datetime, timedelta

from proctor.core.anticheat_config import AntiCheatConfig
from proctor.core.models import (
    SecurityViolation,
    Severity,
    ViolationType,
    new_violation_id,
)

DEFAULT_FLAG_WINDOW = timedelta(minutes=5)


def should_auto_flag(
    violation: SecurityViolation,
    existing:  list[SecurityViolation],
    config:    AntiCheatConfig,
    window:    timedelta = DEFAULT_FLAG_WINDOW,
) -> bool:
    """
    Critical violations are always flagged. Otherwise flag once the number of
    violations inside the window ending at ``violation.timestamp`` (the new
    one included) reaches the configured threshold.
    """
    if violation.severity is Severity.CRITICAL:
        return True

    in_window = 1 + sum(
        1 for v in existing
        if violation.timestamp - v.timestamp < window
    )
    return in_window >= config.auto_flag_threshold


def completion_violation(
    violations: list[SecurityViolation],
    tab_switch_limit: int,
    now: datetime,
) -> SecurityViolation | None:
    """Escalation appended when a session ends with excessive tab switching."""
    tab_switches = sum(1 for v in violations if v.type is ViolationType.TAB_SWITCH)
    if tab_switches <= tab_switch_limit:
        return None
    return SecurityViolation(
        id        = new_violation_id(),
        type      = ViolationType.SUSPICIOUS_TIMING,
        severity  = Severity.HIGH,
        timestamp = now,
        details   = {
            "reason":           "Excessive tab switching detected",
            "tab_switch_count": tab_switches,
        },
        flagged   = True,
    )
