"""
SqlAttemptRepository — AttemptRepository backed by the course service's
PostgreSQL tables.

SQLAlchemy calls are blocking, so each one runs on a worker thread via
``asyncio.to_thread`` and the event loop is never held up by the database.
"""
from __future__ import annotations

import asyncio
import logging
import uuid

from sqlalchemy import select

from proctor.config import Settings, get_settings
from proctor.core.anticheat_config import (
    AntiCheatConfig,
    AntiCheatOverrides,
    default_config,
    merge_config,
)
from proctor.core.attempts import AttemptInfo
from proctor.core.errors import ValidationError
from proctor.db.database import get_db
from proctor.db.models import Assessment, AssessmentAttempt

logger = logging.getLogger(__name__)

REVIEW_FLAG = "proctoring"


def _parse_uuid(value: str) -> uuid.UUID | None:
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


class SqlAttemptRepository:
    def __init__(self, settings: Settings | None = None) -> None:
        self._defaults = default_config(settings or get_settings())

    def _effective_config(self, assessment: Assessment | None) -> AntiCheatConfig:
        """Assessment overrides over the defaults; a broken blob falls back to the defaults."""
        metadata = assessment.assessment_metadata if assessment is not None else None
        try:
            return merge_config(self._defaults, AntiCheatOverrides.from_metadata(metadata))
        except ValidationError as exc:
            logger.error("Assessment %s has an invalid anti-cheat override, using defaults: %s",
                         assessment.id if assessment is not None else None, exc.message)
            return self._defaults

    # ── AttemptRepository ───────────────────────────────────────────────────

    async def find_attempt(self, attempt_id: str) -> AttemptInfo | None:
        return await asyncio.to_thread(self._find_attempt, attempt_id)

    async def get_assessment_config(self, assessment_id: str) -> AntiCheatConfig | None:
        return await asyncio.to_thread(self._get_assessment_config, assessment_id)

    async def flag_attempt_for_review(self, attempt_id: str, reason: str | None = None) -> None:
        await asyncio.to_thread(self._flag_attempt, attempt_id, reason)

    # ── Blocking implementations ────────────────────────────────────────────

    def _find_attempt(self, attempt_id: str) -> AttemptInfo | None:
        key = _parse_uuid(attempt_id)
        if key is None:
            return None
        with get_db() as db:
            attempt = db.get(AssessmentAttempt, key)
            if attempt is None:
                return None
            return AttemptInfo(
                attempt_id    = str(attempt.id),
                user_id       = str(attempt.user_id),
                assessment_id = str(attempt.assessment_id),
                config        = self._effective_config(attempt.assessment),
            )

    def _get_assessment_config(self, assessment_id: str) -> AntiCheatConfig | None:
        key = _parse_uuid(assessment_id)
        if key is None:
            return None
        with get_db() as db:
            assessment = db.execute(
                select(Assessment).where(Assessment.id == key)
            ).scalar_one_or_none()
            if assessment is None:
                return None
            return self._effective_config(assessment)

    def _flag_attempt(self, attempt_id: str, reason: str | None) -> None:
        key = _parse_uuid(attempt_id)
        if key is None:
            raise ValueError(f"Invalid attempt id: {attempt_id!r}")
        with get_db() as db:
            attempt = db.get(AssessmentAttempt, key)
            if attempt is None:
                raise LookupError(f"Attempt {attempt_id} no longer exists")
            attempt.flagged_for_review = True
            flag = f"{REVIEW_FLAG}: {reason}" if reason else REVIEW_FLAG
            flags = list(attempt.flags or [])
            if flag not in flags:
                attempt.flags = [*flags, flag]
        logger.info("Flagged attempt %s for review (%s)", attempt_id, reason or "no reason")
