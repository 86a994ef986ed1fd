# -*- coding: utf-8 -*-
"""Permission catalog — Pydantic models."""

from __future__ import annotations

from typing import List, Literal, Optional

from pydantic import BaseModel, Field

Category = Literal["nutrition", "workouts", "weight", "photos", "checkins", "fasting", "profile"]
PermissionType = Literal["read", "write"]
RoleType = Literal["nutritionist", "trainer", "coach"]


class PermissionDefinition(BaseModel):
    slug: str
    display_name: str
    description: Optional[str] = None
    category: Category
    permission_type: PermissionType
    is_exclusive: bool = False
    is_enabled: bool = True
    requires_verification: bool = False
    sort_order: int = 0
    created_at: str


class PermissionListResponse(BaseModel):
    count: int
    items: List[PermissionDefinition]


class RoleBundleResponse(BaseModel):
    role_type: RoleType
    permissions: List[str]


class PermissionCreateRequest(BaseModel):
    slug: str = Field(..., min_length=2, max_length=50, pattern="^[a-z][a-z0-9_]*$")
    display_name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    category: Category
    permission_type: PermissionType
    is_exclusive: bool = False
    requires_verification: bool = False
    sort_order: int = 0
    reason: str = Field(..., max_length=500)


class PermissionUpdateRequest(BaseModel):
    display_name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = None
    is_enabled: Optional[bool] = None
    requires_verification: Optional[bool] = None
    sort_order: Optional[int] = None
    reason: str = Field(..., max_length=500)


class ExclusivityChangeRequest(BaseModel):
    is_exclusive: bool
    reason: str = Field(..., max_length=500)


class ExclusivityChangeResponse(PermissionDefinition):
    changed: bool
    ledger_rows: int = 0


class ExclusivityConflictItem(BaseModel):
    client_id: str
    grant_count: int
    relationship_ids: List[str]
    professional_ids: List[str]


class ExclusivityConflictResponse(BaseModel):
    slug: str
    count: int
    items: List[ExclusivityConflictItem]
