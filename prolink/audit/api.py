# -*- coding: utf-8 -*-
"""Audit log — admin API endpoints."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query

from ..auth.security import get_current_caller
from ..identity import Caller
from .models import AuditEvent, AuditListResponse
from .storage import list_events

router = APIRouter(prefix="/api/admin/audit", tags=["Admin"])


@router.get("", response_model=AuditListResponse, summary="Search the permission audit log")
def search(
    client_id: Optional[str] = Query(default=None),
    relationship_id: Optional[str] = Query(default=None),
    permission_slug: Optional[str] = Query(default=None),
    event_type: Optional[str] = Query(default=None),
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    caller: Caller = Depends(get_current_caller),
):
    rows = list_events(
        caller=caller,
        client_id=client_id,
        relationship_id=relationship_id,
        permission_slug=permission_slug,
        event_type=event_type,
        limit=limit,
        offset=offset,
    )
    return AuditListResponse(count=len(rows), items=[AuditEvent(**r) for r in rows])
