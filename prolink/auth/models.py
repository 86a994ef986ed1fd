# -*- coding: utf-8 -*-
"""Auth — Pydantic models."""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, Field


class RegisterRequest(BaseModel):
    email: str = Field(..., min_length=3, max_length=254)
    password: str = Field(..., min_length=8, max_length=128)
    role: Literal["client", "professional"] = "client"
    display_name: Optional[str] = Field(default=None, max_length=100)


class LoginRequest(BaseModel):
    email: str = Field(..., min_length=3, max_length=254)
    password: str = Field(..., min_length=1, max_length=128)


class UserPublic(BaseModel):
    id: str
    email: str
    role: str
    display_name: Optional[str] = None
    verified: bool = False
    created_at: str


class AuthResponse(BaseModel):
    user: UserPublic
    token: str


class VerificationRequest(BaseModel):
    verified: bool = True
    reason: str = Field(..., max_length=500)
