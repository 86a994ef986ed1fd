# -*- coding: utf-8 -*-
"""Admin overrides — API endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from ..auth.security import get_current_caller
from ..identity import Caller
from .models import ForceConnectRequest, ForceConnectResponse, ForceDisconnectRequest, ForceDisconnectResponse
from .storage import force_connect, force_disconnect

router = APIRouter(prefix="/api/admin", tags=["Admin"])


@router.post("/force-connect", response_model=ForceConnectResponse, summary="Connect a client and professional")
def connect(request: ForceConnectRequest, caller: Caller = Depends(get_current_caller)):
    result = force_connect(
        caller=caller,
        client_id=request.client_id,
        professional_id=request.professional_id,
        role_type=request.role_type,
        preset_id=request.preset_id,
        displace=request.displace,
        reason=request.reason,
    )
    return ForceConnectResponse(**result)


@router.post("/force-disconnect", response_model=ForceDisconnectResponse, summary="End a relationship as an admin")
def disconnect(request: ForceDisconnectRequest, caller: Caller = Depends(get_current_caller)):
    result = force_disconnect(caller=caller, relationship_id=request.relationship_id, reason=request.reason)
    return ForceDisconnectResponse(**result)
