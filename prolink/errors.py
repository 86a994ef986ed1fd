# -*- coding: utf-8 -*-
"""Typed errors for the relationship & permission engine.

Every error is an ``HTTPException`` so storage helpers can raise it directly and FastAPI
renders it; ``code`` is a stable identifier the UI switches on ("link expired" vs.
"already connected"). ``IntegrityViolation`` is never raised to callers, it is built and
reported through the diagnostics channel of the exclusivity resolver.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse


class ProlinkError(HTTPException):
    status_code = 400
    code = "prolink_error"
    message = "Request failed"

    def __init__(self, detail: Optional[str] = None, **context: Any) -> None:
        super().__init__(status_code=type(self).status_code, detail=detail or self.message)
        self.context: Dict[str, Any] = context

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"detail": self.detail, "code": self.code}
        if self.context:
            payload["context"] = self.context
        return payload


# ---- NotFound ----------------------------------------------------------------


class NotFound(ProlinkError):
    status_code = 404
    code = "not_found"
    message = "Not found"


class TokenNotFound(NotFound):
    code = "token_not_found"
    message = "Invitation link is invalid"


class InvitationNotFound(NotFound):
    code = "invitation_not_found"
    message = "Invitation not found"


class RelationshipNotFound(NotFound):
    code = "relationship_not_found"
    message = "Relationship not found"


class UnknownPermission(NotFound):
    code = "unknown_permission"
    message = "Unknown permission"


class UnknownRole(NotFound):
    code = "unknown_role"
    message = "Unknown role type"


class RequestNotFound(NotFound):
    code = "request_not_found"
    message = "Permission request not found"


class UserNotFound(NotFound):
    code = "user_not_found"
    message = "User not found"


class PresetNotFound(NotFound):
    code = "preset_not_found"
    message = "Permission preset not found"


# ---- InvalidState ------------------------------------------------------------


class InvalidState(ProlinkError):
    status_code = 409
    code = "invalid_state"
    message = "Operation not allowed in the current state"


class AlreadyAccepted(InvalidState):
    code = "already_accepted"
    message = "Invitation has already been accepted"


class PermissionDisabled(InvalidState):
    code = "permission_disabled"
    message = "Permission is disabled"


class SystemPresetLocked(InvalidState):
    code = "system_preset_locked"
    message = "System presets cannot be deleted or demoted"


# ---- Expired -----------------------------------------------------------------


class Expired(ProlinkError):
    status_code = 410
    code = "expired"
    message = "Expired"


class InvitationExpired(Expired):
    code = "invitation_expired"
    message = "Invitation link has expired"


# ---- Conflict ----------------------------------------------------------------


class Conflict(ProlinkError):
    status_code = 409
    code = "conflict"
    message = "Conflict"


class DuplicateRelationship(Conflict):
    code = "duplicate_relationship"
    message = "Already connected with this client"


class ExclusivityConflict(Conflict):
    code = "exclusivity_conflict"
    message = "Another professional already holds this exclusive permission"


class RedundantPermission(Conflict):
    code = "redundant_permission"
    message = "Permission is already part of the role's default bundle"


class PermissionAlreadyGranted(Conflict):
    code = "permission_already_granted"
    message = "Permission already granted"


class DuplicateRequest(Conflict):
    code = "duplicate_request"
    message = "Request already pending"


class EmailAlreadyRegistered(Conflict):
    code = "email_already_registered"
    message = "Email already registered"


class DuplicatePreset(Conflict):
    code = "duplicate_preset"
    message = "A preset with this name already exists"


# ---- Forbidden ---------------------------------------------------------------


class Forbidden(ProlinkError):
    status_code = 403
    code = "forbidden"
    message = "Not allowed"


class EmailMismatch(Forbidden):
    code = "email_mismatch"
    message = "This invitation was sent to a different email address"


class VerificationRequired(Forbidden):
    code = "verification_required"
    message = "Permission requires a verified professional"


class ReasonRequired(Forbidden):
    code = "reason_required"
    message = "Admin actions require a reason of at least 10 characters"


# ---- InvalidInput ------------------------------------------------------------


class InvalidInput(ProlinkError):
    status_code = 422
    code = "invalid_input"
    message = "Invalid input"


class InvalidDefinition(InvalidInput):
    code = "invalid_definition"
    message = "Invalid permission definition"


class InvalidPreset(InvalidInput):
    code = "invalid_preset"
    message = "Invalid permission preset"


# ---- IntegrityViolation ------------------------------------------------------


class IntegrityViolation(ProlinkError):
    status_code = 500
    code = "integrity_violation"
    message = "Data integrity violation"


async def prolink_error_handler(request: Request, exc: ProlinkError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())
