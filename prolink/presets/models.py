# -*- coding: utf-8 -*-
"""Permission presets — models."""

from __future__ import annotations

from typing import List, Literal, Optional

from pydantic import BaseModel, Field


class PresetPermission(BaseModel):
    slug: str
    is_enabled: bool = True
    display_name: Optional[str] = None
    category: Optional[str] = None
    is_exclusive: Optional[bool] = None


class PresetOut(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    is_system: bool
    is_active: bool
    created_by: Optional[str] = None
    created_at: str
    updated_at: str
    permission_count: int
    permissions: List[PresetPermission]


class PresetListResponse(BaseModel):
    count: int
    items: List[PresetOut]


class PresetPermissionIn(BaseModel):
    slug: str = Field(..., min_length=1, max_length=50)
    is_enabled: bool = True


class PresetCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    is_system: bool = False
    permissions: List[PresetPermissionIn] = Field(default_factory=list)
    reason: str = Field(..., max_length=500)


class PresetUpdateRequest(BaseModel):
    name: Optional[str] = Field(default=None, max_length=100)
    description: Optional[str] = None
    is_system: Optional[bool] = None
    permissions: Optional[List[PresetPermissionIn]] = None
    reason: str = Field(..., max_length=500)


class PresetDeleteRequest(BaseModel):
    reason: str = Field(..., max_length=500)


class PresetApplyRequest(BaseModel):
    relationship_id: str
    displace: bool = False
    reason: str = Field(..., max_length=500)


class PresetApplyItem(BaseModel):
    slug: str
    status: Literal["granted", "skipped"]
    reason: Optional[str] = None
    is_exclusive: Optional[bool] = None
    displaced_relationship_id: Optional[str] = None
    holder_relationship_id: Optional[str] = None


class PresetApplyResponse(BaseModel):
    preset_id: str
    preset_name: str
    relationship_id: str
    success_count: int
    fail_count: int
    results: List[PresetApplyItem]
