# -*- coding: utf-8 -*-
"""Grant ledger & permission requests — models."""

from __future__ import annotations

from typing import List, Literal, Optional

from pydantic import BaseModel, Field

LedgerStatus = Literal["pending", "granted", "revoked"]
RequestStatus = Literal["pending", "approved", "denied"]


class LedgerEntry(BaseModel):
    id: str
    relationship_id: str
    client_id: Optional[str] = None
    permission_slug: str
    is_exclusive: bool = False
    status: LedgerStatus
    granted_at: Optional[str] = None
    granted_by: Optional[str] = None
    revoked_at: Optional[str] = None
    display_name: Optional[str] = None
    category: Optional[str] = None
    permission_type: Optional[str] = None
    is_enabled: Optional[bool] = None


class LedgerListResponse(BaseModel):
    count: int
    items: List[LedgerEntry]


class GrantRequest(BaseModel):
    displace: bool = False
    reason: Optional[str] = Field(default=None, max_length=500)


class GrantResponse(BaseModel):
    entry: LedgerEntry
    changed: bool
    displaced_relationship_id: Optional[str] = None


class RevokeRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=500)


class RevokeResponse(BaseModel):
    relationship_id: str
    permission_slug: str
    status: Optional[LedgerStatus] = None
    changed: bool


class PermissionRequestCreate(BaseModel):
    relationship_id: str
    permission_slug: str
    notes: Optional[str] = Field(default=None, max_length=1000)


class PermissionRequestOut(BaseModel):
    id: str
    relationship_id: str
    client_id: str
    permission_slug: str
    status: RequestStatus
    notes: Optional[str] = None
    requested_at: str
    responded_at: Optional[str] = None
    professional_id: Optional[str] = None
    role_type: Optional[str] = None
    display_name: Optional[str] = None
    category: Optional[str] = None


class PermissionRequestListResponse(BaseModel):
    count: int
    items: List[PermissionRequestOut]


class ApproveRequest(BaseModel):
    displace: bool = False


class ApproveResponse(BaseModel):
    request: PermissionRequestOut
    grant: GrantResponse
