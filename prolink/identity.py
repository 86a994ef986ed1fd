# -*- coding: utf-8 -*-
"""Explicit caller identity threaded through every service call."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

from .errors import Forbidden, ReasonRequired

_MIN_REASON_LENGTH = 10


@dataclass(frozen=True)
class Caller:
    id: str
    email: str
    role: str
    verified: bool = False

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    @property
    def is_professional(self) -> bool:
        return self.role == "professional"


def caller_from_user(user: Dict[str, Any]) -> Caller:
    return Caller(
        id=str(user["id"]),
        email=str(user["email"]).lower().strip(),
        role=str(user.get("role") or "client"),
        verified=bool(user.get("verified")),
    )


def require_admin(caller: Caller) -> None:
    if not caller.is_admin:
        raise Forbidden("Administrator access required")


def require_professional(caller: Caller) -> None:
    if not caller.is_professional:
        raise Forbidden("Only professionals can perform this action")


def require_reason(reason: Optional[str]) -> str:
    text = (reason or "").strip()
    if len(text) < _MIN_REASON_LENGTH:
        raise ReasonRequired()
    return text


def actor_type_for(caller: Caller, relationship: Optional[Dict[str, Any]] = None) -> str:
    """Audit actor type of a caller, relative to a relationship when given."""
    if caller.is_admin:
        return "admin"
    if relationship is not None:
        if relationship.get("client_id") == caller.id:
            return "client"
        if relationship.get("professional_id") == caller.id:
            return "professional"
    return "professional" if caller.is_professional else "client"
