# -*- coding: utf-8 -*-
"""Admin overrides — force-connect and force-disconnect.

Both stamp ``forced_by_admin``, ``forced_reason`` and ``forced_at`` on the relationship
and write an ``admin_override`` audit event in the same transaction.
"""

from __future__ import annotations

import logging
import sqlite3
from typing import Any, Dict, Optional
from uuid import uuid4

from ..app_db import db_tx, utc_now
from ..audit.storage import record_event
from ..catalog.storage import role_default_permissions
from ..config import settings
from ..errors import DuplicateRelationship, InvalidState, UserNotFound
from ..identity import Caller, require_admin, require_reason
from ..presets.storage import apply_preset_in_tx
from ..relationships.storage import end_in_tx, fetch_relationship, find_open_relationship, require_relationship

logger = logging.getLogger(__name__)


def _require_user(conn: sqlite3.Connection, user_id: str, role: str) -> Dict[str, Any]:
    row = conn.execute("SELECT * FROM users WHERE id = ? AND role = ?", (user_id, role)).fetchone()
    if not row:
        raise UserNotFound(f"No {role} with id {user_id}", user_id=user_id, role=role)
    return dict(row)


def force_connect(
    *,
    caller: Caller,
    client_id: str,
    professional_id: str,
    role_type: str,
    reason: Optional[str],
    preset_id: Optional[str] = None,
    displace: bool = False,
) -> Dict[str, Any]:
    """Connect a client and a professional without an invitation.

    An existing active relationship is re-stamped; otherwise a new active one is created
    with no grants. ``preset_id`` grants a preset in the same transaction.
    """
    require_admin(caller)
    reason_text = require_reason(reason)
    role_default_permissions(role_type)
    now = utc_now()
    preset_result = None
    with db_tx(settings.app_db_path) as conn:
        client = _require_user(conn, client_id, "client")
        _require_user(conn, professional_id, "professional")
        existing = find_open_relationship(
            conn,
            professional_id=professional_id,
            client_id=client_id,
            client_email=client["email"],
        )
        if existing and existing["status"] == "pending":
            raise InvalidState(
                "An invitation to this client is outstanding; cancel it first",
                relationship_id=existing["id"],
                status="pending",
            )
        if existing:
            relationship_id = existing["id"]
            action = "updated"
            conn.execute(
                "UPDATE relationships SET forced_by_admin = ?, forced_reason = ?, forced_at = ? WHERE id = ?",
                (caller.id, reason_text, now, relationship_id),
            )
        else:
            relationship_id = str(uuid4())
            action = "created"
            try:
                conn.execute(
                    """
                    INSERT INTO relationships (
                        id, professional_id, client_id, client_email, role_type, status,
                        invited_at, accepted_at, forced_by_admin, forced_reason, forced_at
                    ) VALUES (?, ?, ?, ?, ?, 'active', ?, ?, ?, ?, ?)
                    """,
                    (
                        relationship_id,
                        professional_id,
                        client_id,
                        client["email"],
                        role_type,
                        now,
                        now,
                        caller.id,
                        reason_text,
                        now,
                    ),
                )
            except sqlite3.IntegrityError as exc:
                raise DuplicateRelationship() from exc
        relationship = require_relationship(conn, relationship_id)

        if preset_id:
            preset_result = apply_preset_in_tx(
                conn,
                relationship=relationship,
                preset_id=preset_id,
                actor_id=caller.id,
                reason=reason_text,
                displace=displace,
            )

        record_event(
            conn,
            event_type="admin_override",
            actor_type="admin",
            actor_id=caller.id,
            target_client_id=client_id,
            target_relationship_id=relationship_id,
            target_professional_id=professional_id,
            previous_state={"status": existing["status"]} if existing else None,
            new_state={
                "action": "force_connect",
                "status": "active",
                "preset_applied": preset_id is not None,
            },
            reason=reason_text,
            metadata={"result": action, "preset_id": preset_id},
        )
        relationship = fetch_relationship(conn, relationship_id)

    logger.info(
        "Relationship %s force-connected (%s) by %s: professional=%s client=%s",
        relationship_id,
        action,
        caller.id,
        professional_id,
        client_id,
    )
    return {"relationship": relationship, "action": action, "preset_result": preset_result}


def force_disconnect(*, caller: Caller, relationship_id: str, reason: Optional[str]) -> Dict[str, Any]:
    """End an active relationship on an administrator's authority."""
    require_admin(caller)
    reason_text = require_reason(reason)
    now = utc_now()
    with db_tx(settings.app_db_path) as conn:
        relationship = require_relationship(conn, relationship_id)
        revoked = end_in_tx(conn, relationship, now)
        conn.execute(
            "UPDATE relationships SET forced_by_admin = ?, forced_reason = ?, forced_at = ? WHERE id = ?",
            (caller.id, reason_text, now, relationship_id),
        )
        record_event(
            conn,
            event_type="admin_override",
            actor_type="admin",
            actor_id=caller.id,
            target_client_id=relationship["client_id"],
            target_relationship_id=relationship_id,
            target_professional_id=relationship["professional_id"],
            previous_state={"status": "active", "permissions_revoked": len(revoked)},
            new_state={"status": "ended", "action": "force_disconnect"},
            reason=reason_text,
            metadata={"revoked_permissions": revoked},
        )
        ended = fetch_relationship(conn, relationship_id)

    logger.info(
        "Relationship %s force-disconnected by %s; revoked %d permission(s)",
        relationship_id,
        caller.id,
        len(revoked),
    )
    return {"relationship": ended, "revoked_permissions": revoked}
