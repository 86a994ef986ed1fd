# -*- coding: utf-8 -*-
"""Invitations — models."""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field

from ..catalog.models import PermissionDefinition, RoleType
from ..relationships.models import RelationshipOut


class InvitationCreateRequest(BaseModel):
    email: str = Field(..., min_length=3, max_length=320)
    role_type: RoleType
    requested_permissions: List[str] = Field(default_factory=list)


class InvitationOut(BaseModel):
    id: str
    professional_id: str
    email: str
    role_type: str
    status: str
    created_at: str
    expires_at: str
    accepted_at: Optional[str] = None
    requested_permissions: List[str] = Field(default_factory=list)


class InvitationCreateResponse(InvitationOut):
    relationship_id: str
    token: str
    invite_url: str


class InvitationListResponse(BaseModel):
    count: int
    items: List[InvitationOut]


class RedeemRequest(BaseModel):
    token: str = Field(..., min_length=1)
    displace_exclusive: bool = False


class SkippedPermission(BaseModel):
    slug: str
    reason: str


class RedeemResponse(BaseModel):
    relationship: RelationshipOut
    granted_permissions: List[str]
    skipped_permissions: List[SkippedPermission]
    displaced_relationship_ids: List[str]


class CancelRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=500)


class ProfessionalSummary(BaseModel):
    id: str
    email: str
    display_name: Optional[str] = None
    verified: bool = False


class ExclusiveTransfer(BaseModel):
    slug: str
    holder_relationship_id: str
    holder_professional_id: str
    holder_role_type: str


class InvitationDetailsResponse(BaseModel):
    invitation: InvitationOut
    professional: Optional[ProfessionalSummary] = None
    permissions: List[PermissionDefinition]
    requested_permissions: List[str]
    email_matches: bool
    exclusive_transfers: List[ExclusiveTransfer]


class ExpireResponse(BaseModel):
    expired: int
