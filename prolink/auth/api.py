# -*- coding: utf-8 -*-
"""Auth — API endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Response

from ..config import settings
from ..identity import Caller
from .models import AuthResponse, LoginRequest, RegisterRequest, UserPublic, VerificationRequest
from .security import (
    TOKEN_COOKIE_NAME,
    create_access_token,
    get_current_caller,
    get_current_user,
    hash_password,
    verify_password,
)
from .storage import create_user, get_user_by_email, set_professional_verified

router = APIRouter(prefix="/api/auth", tags=["Auth"])
admin_router = APIRouter(prefix="/api/admin/professionals", tags=["Admin"])


def _user_public(row: dict) -> UserPublic:
    return UserPublic(
        id=row["id"],
        email=row["email"],
        role=row["role"],
        display_name=row.get("display_name"),
        verified=bool(row.get("verified")),
        created_at=row["created_at"],
    )


def _set_auth_cookie(resp: Response, token: str) -> None:
    max_age = int(settings.token_ttl_days) * 24 * 60 * 60
    resp.set_cookie(
        TOKEN_COOKIE_NAME,
        token,
        httponly=True,
        secure=bool(settings.cookie_secure),
        samesite="lax",
        max_age=max_age,
        path="/",
    )


@router.post("/register", response_model=AuthResponse, summary="Register a new user")
def register(request: RegisterRequest, response: Response):
    password_hash = hash_password(request.password)
    user = create_user(
        email=request.email,
        password_hash=password_hash,
        role=request.role,
        display_name=request.display_name,
    )
    token = create_access_token(user_id=user["id"], email=user["email"], role=user["role"])
    _set_auth_cookie(response, token)
    return AuthResponse(user=_user_public(user), token=token)


@router.post("/login", response_model=AuthResponse, summary="Login")
def login(request: LoginRequest, response: Response):
    user = get_user_by_email(request.email)
    if not user or not verify_password(request.password, user["password_hash"]):
        raise HTTPException(status_code=401, detail="Invalid email or password")

    token = create_access_token(user_id=user["id"], email=user["email"], role=user["role"])
    _set_auth_cookie(response, token)
    return AuthResponse(user=_user_public(user), token=token)


@router.post("/logout", summary="Logout")
def logout(response: Response):
    response.delete_cookie(TOKEN_COOKIE_NAME, path="/")
    return {"status": "ok"}


@router.get("/me", response_model=UserPublic, summary="Get current user")
def me(user: dict = Depends(get_current_user)):
    return _user_public(user)


@admin_router.post("/{user_id}/verify", response_model=UserPublic, summary="Set a professional's verification flag")
def verify_professional(
    user_id: str,
    request: VerificationRequest,
    caller: Caller = Depends(get_current_caller),
):
    row = set_professional_verified(
        caller=caller,
        user_id=user_id,
        verified=request.verified,
        reason=request.reason,
    )
    return _user_public(row)
