# -*- coding: utf-8 -*-
"""Auth — DB storage helpers."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional
from uuid import uuid4

from ..app_db import db_conn, db_tx, utc_now
from ..audit.storage import record_event
from ..config import settings
from ..errors import EmailAlreadyRegistered, UserNotFound
from ..identity import Caller, require_admin, require_reason

logger = logging.getLogger(__name__)


def get_user_by_email(email: str) -> Optional[Dict[str, Any]]:
    with db_conn(settings.app_db_path) as conn:
        row = conn.execute("SELECT * FROM users WHERE email = ?", (email.lower().strip(),)).fetchone()
        return dict(row) if row else None


def get_user_by_id(user_id: str) -> Optional[Dict[str, Any]]:
    with db_conn(settings.app_db_path) as conn:
        row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        return dict(row) if row else None


def create_user(
    *,
    email: str,
    password_hash: str,
    role: str = "client",
    display_name: Optional[str] = None,
) -> Dict[str, Any]:
    user_id = str(uuid4())
    now = utc_now()
    email_norm = email.lower().strip()
    if email_norm in settings.admin_emails:
        role = "admin"
    with db_tx(settings.app_db_path) as conn:
        existing = conn.execute("SELECT id FROM users WHERE email = ?", (email_norm,)).fetchone()
        if existing:
            raise EmailAlreadyRegistered()
        conn.execute(
            """
            INSERT INTO users (id, email, password_hash, role, display_name, verified, created_at)
            VALUES (?, ?, ?, ?, ?, 0, ?)
            """,
            (user_id, email_norm, password_hash, role, display_name, now),
        )
    return {
        "id": user_id,
        "email": email_norm,
        "password_hash": password_hash,
        "role": role,
        "display_name": display_name,
        "verified": 0,
        "created_at": now,
    }


def set_professional_verified(
    *,
    caller: Caller,
    user_id: str,
    verified: bool,
    reason: Optional[str],
) -> Dict[str, Any]:
    require_admin(caller)
    reason_text = require_reason(reason)
    with db_tx(settings.app_db_path) as conn:
        row = conn.execute(
            "SELECT * FROM users WHERE id = ? AND role = 'professional'",
            (user_id,),
        ).fetchone()
        if not row:
            raise UserNotFound("Professional not found")
        previous = bool(row["verified"])
        conn.execute("UPDATE users SET verified = ? WHERE id = ?", (int(verified), user_id))
        record_event(
            conn,
            event_type="verification",
            actor_type="admin",
            actor_id=caller.id,
            target_professional_id=user_id,
            previous_state={"verified": previous},
            new_state={"verified": bool(verified)},
            reason=reason_text,
        )
        updated = dict(row)
    updated["verified"] = int(verified)
    logger.info("Professional %s verification set to %s by %s", user_id, verified, caller.id)
    return updated
