# -*- coding: utf-8 -*-
"""Grant ledger & permission requests — API endpoints."""

from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query

from ..auth.security import get_current_caller
from ..identity import Caller
from .models import (
    ApproveRequest,
    ApproveResponse,
    GrantRequest,
    GrantResponse,
    LedgerEntry,
    LedgerListResponse,
    PermissionRequestCreate,
    PermissionRequestListResponse,
    PermissionRequestOut,
    RevokeRequest,
    RevokeResponse,
)
from .storage import (
    approve_permission_request,
    deny_permission_request,
    grant_permission,
    list_permission_requests,
    list_relationship_permissions,
    request_permission,
    revoke_permission,
)

router = APIRouter(prefix="/api/relationships", tags=["Permissions"])
requests_router = APIRouter(prefix="/api/permission-requests", tags=["Permission requests"])


def _grant_response(row: Dict[str, Any]) -> GrantResponse:
    return GrantResponse(
        entry=LedgerEntry(**row),
        changed=bool(row.get("changed")),
        displaced_relationship_id=row.get("displaced_relationship_id"),
    )


@router.get("/{relationship_id}/permissions", response_model=LedgerListResponse, summary="Permissions of a relationship")
def list_permissions(relationship_id: str, caller: Caller = Depends(get_current_caller)):
    rows = list_relationship_permissions(caller=caller, relationship_id=relationship_id)
    return LedgerListResponse(count=len(rows), items=[LedgerEntry(**r) for r in rows])


@router.post(
    "/{relationship_id}/permissions/{slug}/grant",
    response_model=GrantResponse,
    summary="Grant a permission",
)
def grant(
    relationship_id: str,
    slug: str,
    request: Optional[GrantRequest] = None,
    caller: Caller = Depends(get_current_caller),
):
    request = request or GrantRequest()
    row = grant_permission(
        caller=caller,
        relationship_id=relationship_id,
        slug=slug,
        displace=request.displace,
        reason=request.reason,
    )
    return _grant_response(row)


@router.post(
    "/{relationship_id}/permissions/{slug}/revoke",
    response_model=RevokeResponse,
    summary="Revoke a permission",
)
def revoke(
    relationship_id: str,
    slug: str,
    request: Optional[RevokeRequest] = None,
    caller: Caller = Depends(get_current_caller),
):
    result = revoke_permission(
        caller=caller,
        relationship_id=relationship_id,
        slug=slug,
        reason=request.reason if request else None,
    )
    return RevokeResponse(**result)


@requests_router.post("", response_model=PermissionRequestOut, summary="Ask a client for a permission")
def create_request(request: PermissionRequestCreate, caller: Caller = Depends(get_current_caller)):
    row = request_permission(
        caller=caller,
        relationship_id=request.relationship_id,
        slug=request.permission_slug,
        notes=request.notes,
    )
    return PermissionRequestOut(**row)


@requests_router.get("", response_model=PermissionRequestListResponse, summary="List permission requests")
def list_requests(
    status: Optional[str] = Query(default="pending"),
    caller: Caller = Depends(get_current_caller),
):
    rows = list_permission_requests(caller=caller, status=status or None)
    return PermissionRequestListResponse(count=len(rows), items=[PermissionRequestOut(**r) for r in rows])


@requests_router.post("/{request_id}/approve", response_model=ApproveResponse, summary="Approve a permission request")
def approve(
    request_id: str,
    request: Optional[ApproveRequest] = None,
    caller: Caller = Depends(get_current_caller),
):
    result = approve_permission_request(
        caller=caller,
        request_id=request_id,
        displace=request.displace if request else False,
    )
    return ApproveResponse(
        request=PermissionRequestOut(**result["request"]),
        grant=_grant_response(result["grant"]),
    )


@requests_router.post("/{request_id}/deny", response_model=PermissionRequestOut, summary="Deny a permission request")
def deny(request_id: str, caller: Caller = Depends(get_current_caller)):
    return PermissionRequestOut(**deny_permission_request(caller=caller, request_id=request_id))
