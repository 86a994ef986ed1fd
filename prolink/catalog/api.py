# -*- coding: utf-8 -*-
"""Permission catalog endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from ..auth.security import get_current_caller
from ..errors import UnknownPermission
from ..identity import Caller
from .models import (
    ExclusivityChangeRequest,
    ExclusivityChangeResponse,
    ExclusivityConflictItem,
    ExclusivityConflictResponse,
    PermissionCreateRequest,
    PermissionDefinition,
    PermissionListResponse,
    PermissionUpdateRequest,
    RoleBundleResponse,
)
from .storage import (
    create_definition,
    find_exclusivity_conflicts,
    get_definition,
    list_definitions,
    role_default_permissions,
    set_definition_exclusivity,
    update_definition,
)

router = APIRouter(prefix="/api/catalog", tags=["Catalog"])


@router.get("/permissions", response_model=PermissionListResponse, summary="List permission definitions")
def list_permissions(
    include_disabled: bool = Query(default=False),
    caller: Caller = Depends(get_current_caller),
):
    rows = list_definitions(include_disabled=include_disabled and caller.is_admin)
    return PermissionListResponse(count=len(rows), items=[PermissionDefinition(**r) for r in rows])


@router.get("/permissions/{slug}", response_model=PermissionDefinition, summary="Get a permission definition")
def get_permission(slug: str, caller: Caller = Depends(get_current_caller)):
    row = get_definition(slug)
    if not row or (not row["is_enabled"] and not caller.is_admin):
        raise UnknownPermission(f"Unknown permission: {slug}", slug=slug)
    return PermissionDefinition(**row)


@router.get("/roles/{role_type}", response_model=RoleBundleResponse, summary="Default permissions of a role")
def get_role_bundle(role_type: str):
    return RoleBundleResponse(role_type=role_type, permissions=list(role_default_permissions(role_type)))


@router.post("/permissions", response_model=PermissionDefinition, summary="Create a permission definition")
def create_permission(request: PermissionCreateRequest, caller: Caller = Depends(get_current_caller)):
    row = create_definition(
        caller=caller,
        slug=request.slug,
        display_name=request.display_name,
        description=request.description,
        category=request.category,
        permission_type=request.permission_type,
        is_exclusive=request.is_exclusive,
        requires_verification=request.requires_verification,
        sort_order=request.sort_order,
        reason=request.reason,
    )
    return PermissionDefinition(**row)


@router.patch("/permissions/{slug}", response_model=PermissionDefinition, summary="Edit or disable a permission")
def update_permission(
    slug: str,
    request: PermissionUpdateRequest,
    caller: Caller = Depends(get_current_caller),
):
    changes = request.model_dump(exclude={"reason"}, exclude_none=True)
    row = update_definition(caller=caller, slug=slug, changes=changes, reason=request.reason)
    return PermissionDefinition(**row)


@router.get(
    "/permissions/{slug}/exclusivity-conflicts",
    response_model=ExclusivityConflictResponse,
    summary="Clients holding a permission from several professionals",
)
def exclusivity_conflicts(slug: str, caller: Caller = Depends(get_current_caller)):
    rows = find_exclusivity_conflicts(caller=caller, slug=slug)
    return ExclusivityConflictResponse(slug=slug, count=len(rows), items=[ExclusivityConflictItem(**r) for r in rows])


@router.put(
    "/permissions/{slug}/exclusivity",
    response_model=ExclusivityChangeResponse,
    summary="Make a permission exclusive or shared",
)
def set_exclusivity(
    slug: str,
    request: ExclusivityChangeRequest,
    caller: Caller = Depends(get_current_caller),
):
    row = set_definition_exclusivity(caller=caller, slug=slug, is_exclusive=request.is_exclusive, reason=request.reason)
    return ExclusivityChangeResponse(**row)
