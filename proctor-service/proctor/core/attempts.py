"""
Interface to the assessment/attempt store owned by the course service.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from proctor.core.anticheat_config import AntiCheatConfig


@dataclass(frozen=True)
class AttemptInfo:
    attempt_id:    str
    user_id:       str
    assessment_id: str
    config:        AntiCheatConfig   # effective config: assessment overrides merged on defaults


class AttemptRepository(Protocol):
    async def find_attempt(self, attempt_id: str) -> AttemptInfo | None: ...

    async def get_assessment_config(self, assessment_id: str) -> AntiCheatConfig | None: ...

    async def flag_attempt_for_review(self, attempt_id: str, reason: str | None = None) -> None: ...
