# -*- coding: utf-8 -*-
"""
Prolink API

Professional–client relationships, invitations and the permission ledger.
"""

from __future__ import annotations

import logging
import os
from datetime import datetime, timezone

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .access.api import router as access_router
from .admin.api import router as overrides_router
from .app_db import init_app_db
from .audit.api import router as audit_router
from .auth.api import admin_router as professionals_admin_router
from .auth.api import router as auth_router
from .auth.security import get_current_user_from_request
from .catalog.api import router as catalog_router
from .config import settings
from .errors import ProlinkError, prolink_error_handler
from .grants.api import requests_router as permission_requests_router
from .grants.api import router as grants_router
from .invitations.api import admin_router as invitations_admin_router
from .invitations.api import router as invitations_router
from .presets.api import router as presets_router
from .relationships.api import router as relationships_router

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%dT%H:%M:%SZ",
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Prolink",
    description="Professional–client relationships and permission authorization",
    version="0.1.0",
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_exception_handler(ProlinkError, prolink_error_handler)


@app.on_event("startup")
def _startup_init_db() -> None:
    init_app_db(settings.app_db_path)
    logger.info("App database ready at %s", settings.app_db_path)


_AUTH_EXEMPT_PREFIXES = (
    "/api/auth/login",
    "/api/auth/register",
    "/api/docs",
    "/api/redoc",
    "/api/openapi.json",
)


@app.middleware("http")
async def _auth_gate(request: Request, call_next):
    path = request.url.path
    if path.startswith("/api") and path != "/api/health" and not any(path.startswith(p) for p in _AUTH_EXEMPT_PREFIXES):
        try:
            user = get_current_user_from_request(request)
            request.state.user = user
        except HTTPException as exc:
            return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})
    return await call_next(request)


app.include_router(auth_router)
app.include_router(professionals_admin_router)
app.include_router(catalog_router)
app.include_router(invitations_router)
app.include_router(invitations_admin_router)
app.include_router(relationships_router)
app.include_router(grants_router)
app.include_router(permission_requests_router)
app.include_router(access_router)
app.include_router(audit_router)
app.include_router(presets_router)
app.include_router(overrides_router)


@app.get("/api/health")
def health_check():
    return {
        "status": "ok",
        "version": "0.1.0",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


def run() -> None:
    """Console entry point (used by pyproject [project.scripts])."""
    import uvicorn

    host = os.environ.get("PROLINK_HOST") or os.environ.get("HOST") or "127.0.0.1"
    port_raw = os.environ.get("PROLINK_PORT") or os.environ.get("PORT") or "8000"
    try:
        port = int(port_raw)
    except ValueError:
        port = 8000

    uvicorn.run("prolink.api:app", host=host, port=port, reload=False)
