# -*- coding: utf-8 -*-
"""Relationships — models."""

from __future__ import annotations

from typing import List, Literal, Optional

from pydantic import BaseModel, Field

RelationshipStatus = Literal["pending", "active", "ended"]


class RelationshipOut(BaseModel):
    id: str
    professional_id: str
    client_id: Optional[str] = None
    client_email: str
    role_type: str
    status: RelationshipStatus
    invitation_id: Optional[str] = None
    invited_at: Optional[str] = None
    accepted_at: Optional[str] = None
    ended_at: Optional[str] = None
    forced_by_admin: Optional[str] = None
    forced_reason: Optional[str] = None
    forced_at: Optional[str] = None


class RelationshipListResponse(BaseModel):
    count: int
    items: List[RelationshipOut]


class EndRelationshipRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=500)
