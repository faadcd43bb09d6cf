"""
Shared fixtures: an in-memory attempt store, a controllable clock, and a
ProctorService / FastAPI app wired to them.
"""
import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient


class FakeClock:
    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeAttemptRepository:
    """AttemptRepository double; yields to the loop on every call like a real I/O store."""

    def __init__(self, defaults) -> None:
        self._defaults = defaults
        self.assessments: dict = {}
        self.attempts: dict = {}
        self.flagged: list[tuple[str, str | None]] = []
        self.fail_flagging = False

    def add_assessment(self, assessment_id: str, **overrides):
        from proctor.core.anticheat_config import AntiCheatOverrides, merge_config
        config = merge_config(self._defaults, AntiCheatOverrides(**overrides))
        self.assessments[assessment_id] = config
        return config

    def add_attempt(self, attempt_id: str, user_id: str, assessment_id: str = "assessment-1"):
        if assessment_id not in self.assessments:
            self.add_assessment(assessment_id)
        self.attempts[attempt_id] = (user_id, assessment_id)

    async def find_attempt(self, attempt_id: str):
        from proctor.core.attempts import AttemptInfo
        await asyncio.sleep(0)
        if attempt_id not in self.attempts:
            return None
        user_id, assessment_id = self.attempts[attempt_id]
        return AttemptInfo(
            attempt_id    = attempt_id,
            user_id       = user_id,
            assessment_id = assessment_id,
            config        = self.assessments[assessment_id],
        )

    async def get_assessment_config(self, assessment_id: str):
        await asyncio.sleep(0)
        return self.assessments.get(assessment_id)

    async def flag_attempt_for_review(self, attempt_id: str, reason: str | None = None) -> None:
        await asyncio.sleep(0)
        if self.fail_flagging:
            raise ConnectionError("attempt store unavailable")
        self.flagged.append((attempt_id, reason))


@pytest.fixture
def settings():
    from proctor.config import Settings
    return Settings(publish_events=False, server_timezone="UTC")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def attempts(settings):
    from proctor.core.anticheat_config import default_config
    repo = FakeAttemptRepository(default_config(settings))
    repo.add_assessment("assessment-1")
    repo.add_attempt("attempt-1", "user-1")
    repo.add_attempt("attempt-2", "user-2")
    return repo


@pytest.fixture
def service(attempts, settings, clock):
    from proctor.sessions.service import ProctorService
    return ProctorService(attempts, settings=settings, clock=clock)


@pytest.fixture
def client(service):
    from proctor.main import create_app
    app = create_app(service)
    with TestClient(app) as test_client:
        yield test_client


def student(user_id: str = "user-1") -> dict:
    return {"X-User-Id": user_id, "X-User-Role": "student"}


def instructor(user_id: str = "instructor-1") -> dict:
    return {"X-User-Id": user_id, "X-User-Role": "instructor"}
