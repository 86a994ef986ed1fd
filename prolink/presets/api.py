# -*- coding: utf-8 -*-
"""Permission presets — API endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from ..auth.security import get_current_caller
from ..identity import Caller
from .models import (
    PresetApplyRequest,
    PresetApplyResponse,
    PresetCreateRequest,
    PresetDeleteRequest,
    PresetListResponse,
    PresetOut,
    PresetUpdateRequest,
)
from .storage import (
    apply_permission_preset,
    delete_permission_preset,
    get_permission_preset,
    list_permission_presets,
    upsert_permission_preset,
)

router = APIRouter(prefix="/api/presets", tags=["Presets"])


@router.get("", response_model=PresetListResponse, summary="List permission presets")
def list_presets(
    include_inactive: bool = Query(default=False),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    caller: Caller = Depends(get_current_caller),
):
    rows = list_permission_presets(caller=caller, include_inactive=include_inactive, limit=limit, offset=offset)
    return PresetListResponse(count=len(rows), items=[PresetOut(**r) for r in rows])


@router.get("/{preset_id}", response_model=PresetOut, summary="Get a permission preset")
def get_preset(preset_id: str, caller: Caller = Depends(get_current_caller)):
    return PresetOut(**get_permission_preset(caller=caller, preset_id=preset_id))


@router.post("", response_model=PresetOut, summary="Create a permission preset")
def create_preset(request: PresetCreateRequest, caller: Caller = Depends(get_current_caller)):
    row = upsert_permission_preset(
        caller=caller,
        name=request.name,
        description=request.description,
        is_system=request.is_system,
        permissions=[p.model_dump() for p in request.permissions],
        reason=request.reason,
    )
    return PresetOut(**row)


@router.put("/{preset_id}", response_model=PresetOut, summary="Update a permission preset")
def update_preset(preset_id: str, request: PresetUpdateRequest, caller: Caller = Depends(get_current_caller)):
    row = upsert_permission_preset(
        caller=caller,
        preset_id=preset_id,
        name=request.name,
        description=request.description,
        is_system=request.is_system,
        permissions=[p.model_dump() for p in request.permissions] if request.permissions is not None else None,
        reason=request.reason,
    )
    return PresetOut(**row)


@router.post("/{preset_id}/deactivate", response_model=PresetOut, summary="Deactivate a permission preset")
def deactivate_preset(preset_id: str, request: PresetDeleteRequest, caller: Caller = Depends(get_current_caller)):
    return PresetOut(**delete_permission_preset(caller=caller, preset_id=preset_id, reason=request.reason))


@router.post("/{preset_id}/apply", response_model=PresetApplyResponse, summary="Apply a preset to a relationship")
def apply_preset(preset_id: str, request: PresetApplyRequest, caller: Caller = Depends(get_current_caller)):
    result = apply_permission_preset(
        caller=caller,
        relationship_id=request.relationship_id,
        preset_id=preset_id,
        displace=request.displace,
        reason=request.reason,
    )
    return PresetApplyResponse(**result)
