# -*- coding: utf-8 -*-
"""Invitations — API endpoints."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query

from ..auth.security import get_current_caller
from ..identity import Caller, require_admin
from ..relationships.models import RelationshipOut
from .models import (
    CancelRequest,
    ExpireResponse,
    InvitationCreateRequest,
    InvitationCreateResponse,
    InvitationDetailsResponse,
    InvitationListResponse,
    InvitationOut,
    RedeemRequest,
    RedeemResponse,
)
from .storage import (
    cancel_invitation,
    create_invitation,
    expire_stale_invitations,
    get_invitation_details,
    list_invitations,
    redeem_invitation,
)

router = APIRouter(prefix="/api/invitations", tags=["Invitations"])
admin_router = APIRouter(prefix="/api/admin/invitations", tags=["Admin"])


@router.post("", response_model=InvitationCreateResponse, summary="Invite a client")
def create(request: InvitationCreateRequest, caller: Caller = Depends(get_current_caller)):
    invitation, token = create_invitation(
        caller=caller,
        email=request.email,
        role_type=request.role_type,
        requested_permissions=request.requested_permissions,
    )
    return InvitationCreateResponse(**invitation, token=token)


@router.get("", response_model=InvitationListResponse, summary="List my invitations")
def list_mine(
    status: Optional[str] = Query(default=None),
    caller: Caller = Depends(get_current_caller),
):
    rows = list_invitations(caller=caller, status=status)
    return InvitationListResponse(count=len(rows), items=[InvitationOut(**r) for r in rows])


@router.get("/lookup", response_model=InvitationDetailsResponse, summary="Preview an invitation before accepting")
def lookup(token: str = Query(..., min_length=1), caller: Caller = Depends(get_current_caller)):
    return InvitationDetailsResponse(**get_invitation_details(caller=caller, token=token))


@router.post("/redeem", response_model=RedeemResponse, summary="Accept an invitation")
def redeem(request: RedeemRequest, caller: Caller = Depends(get_current_caller)):
    result = redeem_invitation(
        caller=caller,
        token=request.token,
        displace_exclusive=request.displace_exclusive,
    )
    return RedeemResponse(
        relationship=RelationshipOut(**result),
        granted_permissions=result["granted_permissions"],
        skipped_permissions=result["skipped_permissions"],
        displaced_relationship_ids=result["displaced_relationship_ids"],
    )


@router.post("/{invitation_id}/cancel", response_model=InvitationOut, summary="Cancel a pending invitation")
def cancel(
    invitation_id: str,
    request: Optional[CancelRequest] = None,
    caller: Caller = Depends(get_current_caller),
):
    row = cancel_invitation(
        caller=caller,
        invitation_id=invitation_id,
        reason=request.reason if request else None,
    )
    return InvitationOut(**row)


@admin_router.post("/expire", response_model=ExpireResponse, summary="Expire stale pending invitations")
def expire(caller: Caller = Depends(get_current_caller)):
    require_admin(caller)
    return ExpireResponse(expired=expire_stale_invitations())
