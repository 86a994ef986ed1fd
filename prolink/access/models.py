# -*- coding: utf-8 -*-
"""Access checks — models."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel

from ..relationships.models import RelationshipOut


class CanViewResponse(BaseModel):
    professional_id: str
    client_id: str
    category: str
    allowed: bool


class AccessibleClientsResponse(BaseModel):
    count: int
    client_ids: List[str]


class ExclusiveHolder(RelationshipOut):
    permission_id: str
    permission_granted_at: Optional[str] = None
    permission_granted_by: Optional[str] = None


class ExclusiveHolderResponse(BaseModel):
    client_id: str
    permission_slug: str
    holder: Optional[ExclusiveHolder] = None
    diagnostics: List[Dict[str, Any]]
