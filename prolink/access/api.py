# -*- coding: utf-8 -*-
"""Access checks — API endpoints."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query

from ..auth.security import get_current_caller
from ..catalog.models import Category, RoleType
from ..identity import Caller, require_admin, require_professional
from .models import AccessibleClientsResponse, CanViewResponse, ExclusiveHolderResponse
from .storage import accessible_clients, can_view, exclusive_holder_for_caller

router = APIRouter(prefix="/api/access", tags=["Access"])


def _professional_id(caller: Caller, professional_id: Optional[str]) -> str:
    # Admins may ask on behalf of any professional; professionals only about themselves.
    if professional_id and professional_id != caller.id:
        require_admin(caller)
        return professional_id
    require_professional(caller)
    return caller.id


@router.get("/can-view", response_model=CanViewResponse, summary="Can a professional view a client's data category")
def check_can_view(
    client_id: str = Query(...),
    category: Category = Query(...),
    role_type: Optional[RoleType] = Query(default=None),
    professional_id: Optional[str] = Query(default=None),
    caller: Caller = Depends(get_current_caller),
):
    pro_id = _professional_id(caller, professional_id)
    return CanViewResponse(
        professional_id=pro_id,
        client_id=client_id,
        category=category,
        allowed=can_view(pro_id, client_id, category, required_role_type=role_type),
    )


@router.get("/clients", response_model=AccessibleClientsResponse, summary="Clients a professional can access")
def list_clients(
    role_type: Optional[RoleType] = Query(default=None),
    professional_id: Optional[str] = Query(default=None),
    caller: Caller = Depends(get_current_caller),
):
    pro_id = _professional_id(caller, professional_id)
    client_ids = sorted(accessible_clients(pro_id, required_role_type=role_type))
    return AccessibleClientsResponse(count=len(client_ids), client_ids=client_ids)


@router.get("/exclusive-holder", response_model=ExclusiveHolderResponse, summary="Who holds an exclusive permission")
def exclusive_holder(
    client_id: str = Query(...),
    slug: str = Query(...),
    caller: Caller = Depends(get_current_caller),
):
    return ExclusiveHolderResponse(**exclusive_holder_for_caller(caller=caller, client_id=client_id, slug=slug))
