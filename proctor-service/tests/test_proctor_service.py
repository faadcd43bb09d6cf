"""
Tests for the proctor session lifecycle, violation recording and escalation.
Run with: pytest proctor-service/tests/test_proctor_service.py -v
"""
import asyncio

import pytest


def _signals():
    from proctor.core.models import ClientSignals
    return ClientSignals(
        browser_fingerprint = "fp_123456",
        ip_address          = "192.168.1.100",
        user_agent          = "Mozilla/5.0",
        screen_resolution   = "1920x1080",
        timezone            = "UTC",
    )


def _violation(vtype="tab_switch", severity="medium"):
    from proctor.core.models import Severity, ViolationInput, ViolationType
    return ViolationInput(type=ViolationType(vtype), severity=Severity(severity))


class TestStartSession:
    @pytest.mark.asyncio
    async def test_start_creates_active_session(self, service):
        from proctor.core.models import SessionStatus
        session = await service.start_session("attempt-1", _signals(), "user-1")
        assert session.status is SessionStatus.ACTIVE
        assert session.end_time is None
        assert session.assessment_id == "assessment-1"
        assert session.browser_fingerprint == "fp_123456"
        assert service.store.active_for_user("user-1") is session

    @pytest.mark.asyncio
    async def test_unknown_attempt_not_found(self, service):
        from proctor.core.errors import NotFoundError
        with pytest.raises(NotFoundError):
            await service.start_session("missing", _signals(), "user-1")

    @pytest.mark.asyncio
    async def test_foreign_attempt_forbidden(self, service):
        from proctor.core.errors import ConflictError, ForbiddenError
        with pytest.raises(ForbiddenError) as exc_info:
            await service.start_session("attempt-2", _signals(), "user-1")
        assert not isinstance(exc_info.value, ConflictError)

    @pytest.mark.asyncio
    async def test_second_active_session_conflicts(self, service, attempts):
        from proctor.core.errors import ConflictError
        attempts.add_attempt("attempt-1b", "user-1")
        await service.start_session("attempt-1", _signals(), "user-1")
        with pytest.raises(ConflictError):
            await service.start_session("attempt-1b", _signals(), "user-1")

    @pytest.mark.asyncio
    async def test_new_session_allowed_after_end(self, service, attempts):
        attempts.add_attempt("attempt-1b", "user-1")
        first = await service.start_session("attempt-1", _signals(), "user-1")
        await service.end_session(first.id, "user-1")
        second = await service.start_session("attempt-1b", _signals(), "user-1")
        assert second.is_active

    @pytest.mark.asyncio
    async def test_concurrent_starts_leave_one_active_session(self, service, attempts):
        from proctor.core.errors import ConflictError
        for i in range(10):
            attempts.add_attempt(f"attempt-c{i}", "user-9")

        results = await asyncio.gather(
            *(service.start_session(f"attempt-c{i}", _signals(), "user-9") for i in range(10)),
            return_exceptions=True,
        )

        started = [r for r in results if not isinstance(r, Exception)]
        assert len(started) == 1
        assert all(isinstance(r, ConflictError) for r in results if isinstance(r, Exception))
        assert [s for s in service.store.all() if s.user_id == "user-9" and s.is_active] == started


class TestRecordViolation:
    @pytest.mark.asyncio
    async def test_critical_violation_always_flagged(self, service):
        session = await service.start_session("attempt-1", _signals(), "user-1")
        violation = await service.record_violation(
            session.id, _violation("dev_tools", "critical"), "user-1",
        )
        assert violation.flagged is True
        assert violation.reviewed is False

    @pytest.mark.asyncio
    async def test_flag_window_scenario(self, service, attempts, clock):
        attempts.add_assessment("windowed", auto_flag_threshold=3, max_violations_allowed=10)
        attempts.add_attempt("attempt-w", "user-w", "windowed")
        session = await service.start_session("attempt-w", _signals(), "user-w")

        flags = []
        for gap in (0, 1, 1, 8):          # t, t+1m, t+2m, t+10m
            clock.advance(minutes=gap)
            v = await service.record_violation(session.id, _violation(), "user-w")
            flags.append(v.flagged)

        assert flags == [False, False, True, False]

    @pytest.mark.asyncio
    async def test_violations_kept_in_insertion_order(self, service):
        session = await service.start_session("attempt-1", _signals(), "user-1")
        kinds = ["tab_switch", "copy_paste", "right_click"]
        for kind in kinds:
            await service.record_violation(session.id, _violation(kind, "low"), "user-1")
        assert [v.type.value for v in session.violations] == kinds

    @pytest.mark.asyncio
    async def test_fifth_violation_terminates_session(self, service, attempts):
        from proctor.core.errors import ForbiddenError
        from proctor.core.models import SessionStatus
        session = await service.start_session("attempt-1", _signals(), "user-1")

        for _ in range(4):
            await service.record_violation(session.id, _violation(), "user-1")
        assert session.is_active

        await service.record_violation(session.id, _violation(), "user-1")
        assert session.status is SessionStatus.TERMINATED
        assert session.end_time is not None
        assert session.termination_reason == "Maximum violations exceeded"
        assert attempts.flagged == [("attempt-1", "Maximum violations exceeded")]

        with pytest.raises(ForbiddenError):
            await service.record_violation(session.id, _violation(), "user-1")
        assert len(session.violations) == 5

    @pytest.mark.asyncio
    async def test_concurrent_violations_cannot_skip_termination(self, service):
        from proctor.core.errors import ForbiddenError
        from proctor.core.models import SessionStatus
        session = await service.start_session("attempt-1", _signals(), "user-1")

        results = await asyncio.gather(
            *(service.record_violation(session.id, _violation(), "user-1") for _ in range(8)),
            return_exceptions=True,
        )

        recorded = [r for r in results if not isinstance(r, Exception)]
        rejected = [r for r in results if isinstance(r, Exception)]
        assert len(recorded) == 5
        assert all(isinstance(r, ForbiddenError) for r in rejected)
        assert session.status is SessionStatus.TERMINATED

    @pytest.mark.asyncio
    async def test_unknown_session_not_found(self, service):
        from proctor.core.errors import NotFoundError
        with pytest.raises(NotFoundError):
            await service.record_violation("session_missing", _violation(), "user-1")

    @pytest.mark.asyncio
    async def test_other_users_session_forbidden(self, service):
        from proctor.core.errors import ForbiddenError
        session = await service.start_session("attempt-1", _signals(), "user-1")
        with pytest.raises(ForbiddenError):
            await service.record_violation(session.id, _violation(), "user-2")
        assert session.violations == []

    @pytest.mark.asyncio
    async def test_failed_flagging_still_terminates_at_limit(self, service, attempts):
        from proctor.core.errors import ForbiddenError
        from proctor.core.models import SessionStatus
        attempts.fail_flagging = True
        session = await service.start_session("attempt-1", _signals(), "user-1")
        for _ in range(5):
            await service.record_violation(session.id, _violation(), "user-1")

        assert session.status is SessionStatus.TERMINATED
        assert session.termination_reason == "Maximum violations exceeded"
        assert session.metadata["flag_pending"] is True
        assert attempts.flagged == []
        with pytest.raises(ForbiddenError):
            await service.record_violation(session.id, _violation(), "user-1")
        assert len(session.violations) == 5

        # the sweep retries only the review flag once the store recovers
        attempts.fail_flagging = False
        assert await service.sweep_expired() == 0
        assert attempts.flagged == [("attempt-1", "Maximum violations exceeded")]
        assert "flag_pending" not in session.metadata
        await service.sweep_expired()
        assert len(attempts.flagged) == 1

    @pytest.mark.asyncio
    async def test_concurrent_violations_with_failed_flagging(self, service, attempts):
        from proctor.core.errors import ForbiddenError
        attempts.fail_flagging = True
        session = await service.start_session("attempt-1", _signals(), "user-1")

        results = await asyncio.gather(
            *(service.record_violation(session.id, _violation(), "user-1") for _ in range(8)),
            return_exceptions=True,
        )

        assert sum(not isinstance(r, Exception) for r in results) == 5
        assert all(isinstance(r, ForbiddenError) for r in results if isinstance(r, Exception))
        assert service.store.active_for_user("user-1") is None


class TestEndSession:
    @pytest.mark.asyncio
    async def test_end_completes_session(self, service, clock):
        from proctor.core.models import SessionStatus
        session = await service.start_session("attempt-1", _signals(), "user-1")
        clock.advance(minutes=30)
        await service.end_session(session.id, "user-1")
        assert session.status is SessionStatus.COMPLETED
        assert session.end_time == clock.now
        assert service.store.active_for_user("user-1") is None

    @pytest.mark.asyncio
    async def test_excessive_tab_switching_escalates_on_end(self, service, attempts):
        from proctor.core.models import Severity, ViolationType
        attempts.add_assessment("lenient", max_violations_allowed=20)
        attempts.add_attempt("attempt-l", "user-l", "lenient")
        session = await service.start_session("attempt-l", _signals(), "user-l")
        for _ in range(6):
            await service.record_violation(session.id, _violation("tab_switch", "low"), "user-l")

        await service.end_session(session.id, "user-l")

        last = session.violations[-1]
        assert len(session.violations) == 7
        assert last.type is ViolationType.SUSPICIOUS_TIMING
        assert last.severity is Severity.HIGH
        assert last.flagged is True

    @pytest.mark.asyncio
    async def test_end_requires_owner(self, service):
        from proctor.core.errors import ForbiddenError
        session = await service.start_session("attempt-1", _signals(), "user-1")
        with pytest.raises(ForbiddenError):
            await service.end_session(session.id, "user-2")
        assert session.is_active

    @pytest.mark.asyncio
    async def test_end_unknown_session(self, service):
        from proctor.core.errors import NotFoundError
        with pytest.raises(NotFoundError):
            await service.end_session("session_missing", "user-1")

    @pytest.mark.asyncio
    async def test_terminated_session_cannot_be_completed(self, service):
        from proctor.core.errors import ForbiddenError
        from proctor.core.models import SessionStatus
        session = await service.start_session("attempt-1", _signals(), "user-1")
        assert await service.terminate_session(session.id, "Proctor decision") is True
        with pytest.raises(ForbiddenError):
            await service.end_session(session.id, "user-1")
        assert session.status is SessionStatus.TERMINATED


class TestSessionTimeout:
    @pytest.mark.asyncio
    async def test_sweep_terminates_expired_session(self, service, clock, attempts):
        session = await service.start_session("attempt-1", _signals(), "user-1")
        clock.advance(minutes=59)
        assert await service.sweep_expired() == 0
        assert session.is_active

        clock.advance(minutes=1)
        assert await service.sweep_expired() == 1
        assert session.termination_reason == "Session timeout"
        assert attempts.flagged == [("attempt-1", "Session timeout")]

    @pytest.mark.asyncio
    async def test_sweep_skips_completed_session(self, service, clock, attempts):
        session = await service.start_session("attempt-1", _signals(), "user-1")
        await service.end_session(session.id, "user-1")
        clock.advance(hours=2)
        assert await service.sweep_expired() == 0
        assert session.termination_reason is None
        assert attempts.flagged == []

    @pytest.mark.asyncio
    async def test_assessment_timeout_override(self, service, clock, attempts):
        attempts.add_assessment("short", session_timeout_ms=300_000)
        attempts.add_attempt("attempt-s", "user-s", "short")
        session = await service.start_session("attempt-s", _signals(), "user-s")
        clock.advance(minutes=5)
        await service.sweep_expired()
        assert session.termination_reason == "Session timeout"

    @pytest.mark.asyncio
    async def test_sweeper_survives_failing_sweep(self, service, clock, attempts):
        from proctor.sessions.sweeper import TimeoutSweeper
        session = await service.start_session("attempt-1", _signals(), "user-1")
        clock.advance(hours=2)
        attempts.fail_flagging = True

        sweeper = TimeoutSweeper(service, interval_seconds=60)
        assert await sweeper.run_once() == 0
        assert session.is_active

        attempts.fail_flagging = False
        assert await sweeper.run_once() == 1

    @pytest.mark.asyncio
    async def test_sweep_evicts_finished_sessions_past_retention(self, service, clock, attempts):
        from proctor.core.errors import NotFoundError
        attempts.add_attempt("attempt-1b", "user-1")
        ended = await service.start_session("attempt-1", _signals(), "user-1")
        violation = await service.record_violation(ended.id, _violation(), "user-1")
        await service.end_session(ended.id, "user-1")

        clock.advance(hours=167)
        await service.sweep_expired()
        assert service.store.get(ended.id) is ended

        running = await service.start_session("attempt-1b", _signals(), "user-1")
        clock.advance(hours=2)
        await service.sweep_expired()

        assert service.store.get(ended.id) is None
        with pytest.raises(NotFoundError):
            service.get_violation(violation.id)
        # timed out in this sweep, so it is kept for reviewers
        assert service.store.get(running.id) is running
        assert running.termination_reason == "Session timeout"

    @pytest.mark.asyncio
    async def test_sweeper_task_starts_and_stops(self, service):
        from proctor.sessions.sweeper import TimeoutSweeper
        sweeper = TimeoutSweeper(service, interval_seconds=0.01)
        sweeper.start()
        await asyncio.sleep(0.05)
        await sweeper.stop()


class TestEvents:
    @pytest.mark.asyncio
    async def test_lifecycle_events_in_order(self, service):
        received = []
        service.bus.subscribe("*", lambda name, payload: received.append((name, payload)))

        session = await service.start_session("attempt-1", _signals(), "user-1")
        for _ in range(5):
            await service.record_violation(session.id, _violation(), "user-1")

        names = [name for name, _ in received]
        assert names == [
            "proctor.session.started",
            *["proctor.violation.recorded"] * 5,
            "proctor.session.terminated",
        ]
        assert received[-1][1]["reason"] == "Maximum violations exceeded"
        assert received[1][1]["violation"] is session.violations[0]

    @pytest.mark.asyncio
    async def test_end_emits_ended_event(self, service):
        received = []
        service.bus.subscribe("proctor.session.ended", lambda name, payload: received.append(payload))
        session = await service.start_session("attempt-1", _signals(), "user-1")
        await service.end_session(session.id, "user-1")
        assert len(received) == 1
        assert received[0]["session"] is session


class TestReview:
    @pytest.mark.asyncio
    async def test_review_can_clear_flag(self, service, clock):
        session = await service.start_session("attempt-1", _signals(), "user-1")
        violation = await service.record_violation(
            session.id, _violation("dev_tools", "critical"), "user-1",
        )

        reviewed = await service.review_violation(
            violation.id, "instructor-1", review_notes="False positive", flagged=False,
        )
        assert reviewed is violation
        assert violation.reviewed is True
        assert violation.flagged is False
        assert violation.reviewed_by == "instructor-1"
        assert violation.review_notes == "False positive"
        assert violation.reviewed_at == clock.now

    @pytest.mark.asyncio
    async def test_review_without_flag_keeps_flag(self, service):
        session = await service.start_session("attempt-1", _signals(), "user-1")
        violation = await service.record_violation(
            session.id, _violation("dev_tools", "critical"), "user-1",
        )
        await service.review_violation(violation.id, "instructor-1")
        assert violation.flagged is True

    @pytest.mark.asyncio
    async def test_unknown_violation(self, service):
        from proctor.core.errors import NotFoundError
        with pytest.raises(NotFoundError):
            service.get_violation("violation_missing")
        with pytest.raises(NotFoundError):
            await service.review_violation("violation_missing", "instructor-1")


class TestAnalysisOperations:
    @pytest.mark.asyncio
    async def test_analyze_timing_requires_known_attempt(self, service):
        from proctor.analysis.timing import QuestionTiming
        from proctor.core.errors import NotFoundError
        with pytest.raises(NotFoundError):
            await service.analyze_timing("missing", [QuestionTiming(0, 1000)])

    @pytest.mark.asyncio
    async def test_time_analysis_disabled_skips_rules(self, service, attempts):
        from proctor.analysis.timing import QuestionTiming
        attempts.add_assessment("untimed", time_analysis_enabled=False)
        attempts.add_attempt("attempt-u", "user-u", "untimed")
        timings = [QuestionTiming(0, 50000), QuestionTiming(1, 48000), QuestionTiming(2, 1000)]

        result = await service.analyze_timing("attempt-u", timings)
        assert result.suspicious is False
        assert result.average_time == pytest.approx(33000.0)

    @pytest.mark.asyncio
    async def test_lockdown_policy_follows_assessment(self, service, attempts, settings):
        from proctor.core.errors import NotFoundError
        attempts.add_assessment("open-book", prevent_copy_paste=False, require_fullscreen=False)

        policy = await service.lockdown_policy("open-book")
        assert policy.prevent_copy_paste is False
        assert policy.require_fullscreen is False
        assert policy.prevent_tab_switching is True
        assert policy.allowed_domains == settings.lockdown_allowed_domains
        assert policy == await service.lockdown_policy("open-book")

        with pytest.raises(NotFoundError):
            await service.lockdown_policy("missing")
