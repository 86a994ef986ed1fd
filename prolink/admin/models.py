# -*- coding: utf-8 -*-
"""Admin overrides — models."""

from __future__ import annotations

from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from ..catalog.models import RoleType
from ..presets.models import PresetApplyResponse
from ..relationships.models import RelationshipOut


class ForceConnectRequest(BaseModel):
    client_id: str
    professional_id: str
    role_type: RoleType
    preset_id: Optional[str] = None
    displace: bool = False
    reason: str = Field(..., max_length=500)


class ForceConnectResponse(BaseModel):
    relationship: RelationshipOut
    action: Literal["created", "updated"]
    preset_result: Optional[PresetApplyResponse] = None


class ForceDisconnectRequest(BaseModel):
    relationship_id: str
    reason: str = Field(..., max_length=500)


class ForceDisconnectResponse(BaseModel):
    relationship: RelationshipOut
    revoked_permissions: List[str]
