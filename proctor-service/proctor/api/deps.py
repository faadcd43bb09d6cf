"""
Request dependencies: caller identity and the ProctorService instance.

Authentication happens in the gateway; it forwards the authenticated user in
``X-User-Id`` and their role in ``X-User-Role``. This service only compares
ids for ownership and checks roles for reviewer endpoints.
"""
from __future__ import annotations

from dataclasses import dataclass

from fastapi import Depends, Header, HTTPException, Request

from proctor.sessions.service import ProctorService

REVIEWER_ROLES = frozenset({"admin", "instructor"})


@dataclass(frozen=True)
class Caller:
    user_id: str
    role:    str = "student"

    @property
    def is_reviewer(self) -> bool:
        return self.role in REVIEWER_ROLES


def get_service(request: Request) -> ProctorService:
    return request.app.state.proctor_service


def get_caller(
    x_user_id:   str | None = Header(default=None),
    x_user_role: str | None = Header(default=None),
) -> Caller:
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Missing caller identity")
    return Caller(user_id=x_user_id, role=(x_user_role or "student").lower())


def require_reviewer(caller: Caller = Depends(get_caller)) -> Caller:
    if not caller.is_reviewer:
        raise HTTPException(status_code=403, detail="Insufficient permissions")
    return caller
