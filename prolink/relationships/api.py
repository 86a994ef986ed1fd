# -*- coding: utf-8 -*-
"""Relationships — API endpoints."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query

from ..auth.security import get_current_caller
from ..identity import Caller
from .models import EndRelationshipRequest, RelationshipListResponse, RelationshipOut
from .storage import end_relationship, get_relationship_for_caller, list_relationships

router = APIRouter(prefix="/api/relationships", tags=["Relationships"])


@router.get("", response_model=RelationshipListResponse, summary="List my relationships")
def list_mine(
    status: Optional[str] = Query(default=None),
    as_role: Optional[str] = Query(default=None, pattern="^(professional|client)$"),
    caller: Caller = Depends(get_current_caller),
):
    rows = list_relationships(caller=caller, status=status, as_role=as_role)
    return RelationshipListResponse(count=len(rows), items=[RelationshipOut(**r) for r in rows])


@router.get("/{relationship_id}", response_model=RelationshipOut, summary="Get a relationship")
def get_one(relationship_id: str, caller: Caller = Depends(get_current_caller)):
    return RelationshipOut(**get_relationship_for_caller(caller=caller, relationship_id=relationship_id))


@router.post("/{relationship_id}/end", response_model=RelationshipOut, summary="End a relationship")
def end(
    relationship_id: str,
    request: Optional[EndRelationshipRequest] = None,
    caller: Caller = Depends(get_current_caller),
):
    row = end_relationship(
        caller=caller,
        relationship_id=relationship_id,
        reason=request.reason if request else None,
    )
    return RelationshipOut(**row)
