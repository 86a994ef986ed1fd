# -*- coding: utf-8 -*-
"""Audit log — models."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class AuditEvent(BaseModel):
    id: str
    event_type: str
    actor_type: str
    actor_id: Optional[str] = None
    target_client_id: Optional[str] = None
    target_relationship_id: Optional[str] = None
    target_professional_id: Optional[str] = None
    permission_slug: Optional[str] = None
    previous_state: Optional[Dict[str, Any]] = None
    new_state: Optional[Dict[str, Any]] = None
    reason: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: str


class AuditListResponse(BaseModel):
    count: int
    items: List[AuditEvent]
