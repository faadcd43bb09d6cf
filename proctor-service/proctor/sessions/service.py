"""
ProctorService — owns proctor session lifecycle and violation escalation.

State machine:
    active ──end()──────────────────────────────▶ completed
    active ──terminate() (timeout / max violations) ▶ terminated
No transition leaves a terminal state.

Concurrency: every read-modify-write on a session runs under that
session's lock, and session start runs under the caller's user lock, so
the one-active-session check and the max-violations check cannot be raced
by concurrent callers. Events are emitted while the lock is held, so
subscribers see them in the order the session changed.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable

from proctor.analysis.browser import BrowserSignals, BrowserValidation, validate_browser
from proctor.analysis.timing import QuestionTiming, TimingAnalysis, analyze_timings
from proctor.config import Settings, get_settings
from proctor.core.attempts import AttemptRepository
from proctor.core.errors import ConflictError, ForbiddenError, NotFoundError, ProctorError
from proctor.core.models import (
    ClientSignals,
    FLAG_PENDING,
    ProctorSession,
    SecurityViolation,
    SessionStatus,
    ViolationInput,
    new_session_id,
    new_violation_id,
)
from proctor.events import bus as events
from proctor.events.bus import EventBus
from proctor.sessions.escalation import completion_violation, should_auto_flag
from proctor.sessions.reporting import (
    AntiCheatStats,
    BrowserLockdownPolicy,
    SuspiciousActivity,
    build_lockdown_policy,
    compute_statistics,
    list_suspicious,
)
from proctor.sessions.store import SessionStore

logger = logging.getLogger(__name__)

REASON_TIMEOUT        = "Session timeout"
REASON_MAX_VIOLATIONS = "Maximum violations exceeded"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ProctorService:
    def __init__(
        self,
        attempts: AttemptRepository,
        store:    SessionStore | None = None,
        bus:      EventBus | None = None,
        settings: Settings | None = None,
        clock:    Callable[[], datetime] = utcnow,
    ) -> None:
        self._attempts = attempts
        self._store    = store if store is not None else SessionStore()
        self._bus      = bus if bus is not None else EventBus()
        self._settings = settings or get_settings()
        self._clock    = clock
        self._flag_window = timedelta(seconds=self._settings.auto_flag_window_seconds)
        self._retention   = timedelta(hours=self._settings.session_retention_hours)

    @property
    def store(self) -> SessionStore:
        return self._store

    @property
    def bus(self) -> EventBus:
        return self._bus

    # ── Lifecycle ───────────────────────────────────────────────────────────

    async def start_session(
        self,
        attempt_id: str,
        signals:    ClientSignals,
        caller_id:  str,
    ) -> ProctorSession:
        try:
            attempt = await self._attempts.find_attempt(attempt_id)
            if attempt is None:
                raise NotFoundError("Assessment attempt not found")
            if attempt.user_id != caller_id:
                raise ForbiddenError("Access denied to this attempt")

            async with self._store.user_lock(caller_id):
                if self._store.active_for_user(caller_id) is not None:
                    raise ConflictError("User already has an active proctoring session")

                session = ProctorSession(
                    id            = new_session_id(),
                    attempt_id    = attempt_id,
                    assessment_id = attempt.assessment_id,
                    user_id       = caller_id,
                    start_time    = self._clock(),
                    config        = attempt.config,
                    browser_fingerprint = signals.browser_fingerprint,
                    ip_address          = signals.ip_address,
                    user_agent          = signals.user_agent,
                    screen_resolution   = signals.screen_resolution,
                    timezone            = signals.timezone,
                    metadata            = dict(signals.metadata),
                )
                self._store.add(session)
                await self._bus.emit(events.SESSION_STARTED, {
                    "session": session,
                    "user_id": caller_id,
                })
        except ProctorError as exc:
            logger.warning("Failed to start proctor session for attempt %s: %s",
                           attempt_id, exc.message)
            raise

        logger.info("Started proctor session %s for attempt %s (timeout=%dms)",
                    session.id, attempt_id, session.config.session_timeout_ms)
        return session

    async def end_session(self, session_id: str, caller_id: str) -> ProctorSession:
        try:
            session = self._require_session(session_id)
            async with self._store.session_lock(session_id):
                self._check_owner(session, caller_id)
                self._check_active(session)

                now = self._clock()
                escalation = completion_violation(
                    session.violations,
                    self._settings.tab_switch_escalation_limit,
                    now,
                )
                if escalation is not None:
                    self._store.append_violation(session, escalation)
                    logger.warning("Session %s escalated at completion: %s",
                                   session_id, escalation.details["reason"])

                session.status   = SessionStatus.COMPLETED
                session.end_time = now
                self._store.release_user(session)
                await self._bus.emit(events.SESSION_ENDED, {
                    "session": session,
                    "user_id": caller_id,
                })
        except ProctorError as exc:
            logger.warning("Failed to end proctor session %s: %s", session_id, exc.message)
            raise

        logger.info("Ended proctor session %s", session_id)
        return session

    async def terminate_session(self, session_id: str, reason: str) -> bool:
        """Force-terminate an active session. Returns False if it was not terminated."""
        session = self._require_session(session_id)
        async with self._store.session_lock(session_id):
            if not session.is_active:
                return False
            return await self._terminate_locked(session, reason)

    async def _terminate_locked(
        self,
        session: ProctorSession,
        reason:  str,
        final:   bool = False,
    ) -> bool:
        """
        Flag the attempt, then terminate ``session``. If flagging fails a
        timer-driven termination is abandoned (the next sweep retries it),
        while a ``final`` one still terminates and leaves the flag pending.
        """
        try:
            await self._attempts.flag_attempt_for_review(session.attempt_id, reason)
        except Exception as exc:
            if not final:
                logger.error(
                    "Failed to flag attempt %s while terminating session %s (%s): %s; "
                    "session left active",
                    session.attempt_id, session.id, reason, exc,
                )
                return False
            logger.error(
                "Failed to flag attempt %s while terminating session %s (%s): %s; "
                "flag retried on next sweep",
                session.attempt_id, session.id, reason, exc,
            )
            session.metadata[FLAG_PENDING] = True

        session.status   = SessionStatus.TERMINATED
        session.end_time = self._clock()
        session.metadata["termination_reason"] = reason
        self._store.release_user(session)

        logger.warning("Terminated proctor session %s: %s", session.id, reason)
        await self._bus.emit(events.SESSION_TERMINATED, {
            "session": session,
            "reason":  reason,
        })
        return True

    async def sweep_expired(self) -> int:
        """
        Terminate active sessions whose timeout elapsed, retry review flags
        that failed during an earlier termination, and evict finished
        sessions past the retention period. Returns the number of sessions
        terminated.
        """
        now = self._clock()
        terminated = 0
        for session in self._store.active():
            async with self._store.session_lock(session.id):
                if session.is_active and self._expired(session, now):
                    if await self._terminate_locked(session, REASON_TIMEOUT):
                        terminated += 1

        for session in self._store.pending_flags():
            async with self._store.session_lock(session.id):
                await self._retry_flag(session)

        evicted = self._store.evict_finished(now - self._retention)
        if evicted:
            logger.info("Evicted %d finished session(s) past retention", evicted)
        return terminated

    @staticmethod
    def _expired(session: ProctorSession, now: datetime) -> bool:
        expires_at = session.start_time + timedelta(milliseconds=session.config.session_timeout_ms)
        return now >= expires_at

    async def _retry_flag(self, session: ProctorSession) -> None:
        if not session.metadata.get(FLAG_PENDING):
            return
        try:
            await self._attempts.flag_attempt_for_review(
                session.attempt_id, session.termination_reason,
            )
        except Exception as exc:
            logger.error("Retry flagging attempt %s failed: %s", session.attempt_id, exc)
            return
        del session.metadata[FLAG_PENDING]
        logger.info("Flagged attempt %s for review after retry", session.attempt_id)

    # ── Violations ──────────────────────────────────────────────────────────

    async def record_violation(
        self,
        session_id: str,
        data:       ViolationInput,
        caller_id:  str,
    ) -> SecurityViolation:
        try:
            session = self._require_session(session_id)
            async with self._store.session_lock(session_id):
                self._check_owner(session, caller_id)
                self._check_active(session)

                violation = SecurityViolation(
                    id        = new_violation_id(),
                    type      = data.type,
                    severity  = data.severity,
                    timestamp = self._clock(),
                    details   = dict(data.details),
                )
                violation.flagged = should_auto_flag(
                    violation, session.violations, session.config, self._flag_window,
                )
                self._store.append_violation(session, violation)

                logger.warning("Recorded %s violation: %s in session %s (flagged=%s)",
                               violation.severity.value, violation.type.value,
                               session_id, violation.flagged)
                await self._bus.emit(events.VIOLATION_RECORDED, {
                    "session":   session,
                    "violation": violation,
                    "user_id":   caller_id,
                })

                if len(session.violations) >= session.config.max_violations_allowed:
                    await self._terminate_locked(session, REASON_MAX_VIOLATIONS, final=True)
        except ProctorError as exc:
            logger.warning("Failed to record violation for session %s: %s",
                           session_id, exc.message)
            raise

        return violation

    def get_session(self, session_id: str) -> ProctorSession:
        return self._require_session(session_id)

    def get_violation(self, violation_id: str) -> SecurityViolation:
        found = self._store.find_violation(violation_id)
        if found is None:
            raise NotFoundError("Violation not found")
        return found[1]

    async def review_violation(
        self,
        violation_id: str,
        reviewer_id:  str,
        review_notes: str | None = None,
        flagged:      bool | None = None,
    ) -> SecurityViolation:
        found = self._store.find_violation(violation_id)
        if found is None:
            raise NotFoundError("Violation not found")
        session, violation = found

        async with self._store.session_lock(session.id):
            violation.reviewed     = True
            violation.reviewed_by  = reviewer_id
            violation.review_notes = review_notes
            violation.reviewed_at  = self._clock()
            if flagged is not None:
                violation.flagged = flagged

        logger.info("Violation %s reviewed by %s (flagged=%s)",
                    violation_id, reviewer_id, violation.flagged)
        return violation

    # ── Analysis & reporting ────────────────────────────────────────────────

    async def analyze_timing(
        self,
        attempt_id: str,
        timings:    list[QuestionTiming],
    ) -> TimingAnalysis:
        attempt = await self._attempts.find_attempt(attempt_id)
        if attempt is None:
            raise NotFoundError("Assessment attempt not found")
        return analyze_timings(timings, apply_rules=attempt.config.time_analysis_enabled)

    def validate_browser(
        self,
        signals: BrowserSignals,
        expected_fingerprint: str | None = None,
    ) -> BrowserValidation:
        return validate_browser(
            signals,
            expected_fingerprint = expected_fingerprint,
            server_timezone      = self._settings.server_timezone,
        )

    async def lockdown_policy(self, assessment_id: str) -> BrowserLockdownPolicy:
        config = await self._attempts.get_assessment_config(assessment_id)
        if config is None:
            raise NotFoundError("Assessment not found")
        return build_lockdown_policy(config, self._settings)

    def suspicious_activity(
        self,
        assessment_id: str | None = None,
        user_id:       str | None = None,
        start_date:    datetime | None = None,
        end_date:      datetime | None = None,
    ) -> list[SuspiciousActivity]:
        return list_suspicious(
            self._store.all(),
            assessment_id = assessment_id,
            user_id       = user_id,
            start_date    = start_date,
            end_date      = end_date,
        )

    def statistics(
        self,
        start_date: datetime | None = None,
        end_date:   datetime | None = None,
    ) -> AntiCheatStats:
        return compute_statistics(self._store.all(), self._clock(), start_date, end_date)

    # ── Helpers ─────────────────────────────────────────────────────────────

    def _require_session(self, session_id: str) -> ProctorSession:
        session = self._store.get(session_id)
        if session is None:
            raise NotFoundError("Proctor session not found")
        return session

    @staticmethod
    def _check_owner(session: ProctorSession, caller_id: str) -> None:
        if session.user_id != caller_id:
            raise ForbiddenError("Access denied to this session")

    @staticmethod
    def _check_active(session: ProctorSession) -> None:
        if not session.is_active:
            raise ForbiddenError(f"Proctor session is not active ({session.status.value})")
