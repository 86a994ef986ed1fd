# -*- coding: utf-8 -*-
"""Audit log — append-only permission event records.

``record_event`` never opens its own connection: it writes through the connection of the
mutation being audited so the event commits or rolls back with it.
"""

from __future__ import annotations

import json
import sqlite3
from typing import Any, Dict, List, Optional
from uuid import uuid4

from ..app_db import db_conn, utc_now
from ..config import settings
from ..identity import Caller, require_admin

EVENT_TYPES = (
    "grant",
    "revoke",
    "transfer",
    "policy_change",
    "verification",
    "invitation_create",
    "invitation_accept",
    "invitation_expire",
    "invitation_cancel",
    "relationship_end",
    "request_create",
    "request_approve",
    "request_deny",
    "preset_create",
    "preset_update",
    "preset_delete",
    "preset_apply",
    "admin_override",
)


def _dump(value: Any) -> Optional[str]:
    if value is None:
        return None
    return json.dumps(value, ensure_ascii=False, sort_keys=True)


def _load(raw: Optional[str]) -> Any:
    if not raw:
        return None
    try:
        return json.loads(raw)
    except ValueError:
        return None


def record_event(
    conn: sqlite3.Connection,
    *,
    event_type: str,
    actor_type: str,
    actor_id: Optional[str],
    target_client_id: Optional[str] = None,
    target_relationship_id: Optional[str] = None,
    target_professional_id: Optional[str] = None,
    permission_slug: Optional[str] = None,
    previous_state: Optional[Dict[str, Any]] = None,
    new_state: Optional[Dict[str, Any]] = None,
    reason: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> str:
    if event_type not in EVENT_TYPES:
        raise ValueError(f"unknown audit event type: {event_type}")
    event_id = str(uuid4())
    conn.execute(
        """
        INSERT INTO permission_audit_log (
            id, event_type, actor_type, actor_id, target_client_id, target_relationship_id,
            target_professional_id, permission_slug, previous_state, new_state, reason, metadata, created_at
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            event_id,
            event_type,
            actor_type,
            actor_id,
            target_client_id,
            target_relationship_id,
            target_professional_id,
            permission_slug,
            _dump(previous_state),
            _dump(new_state),
            reason,
            _dump(metadata or {}),
            utc_now(),
        ),
    )
    return event_id


def _row_to_event(row: Dict[str, Any]) -> Dict[str, Any]:
    event = dict(row)
    event["previous_state"] = _load(event.get("previous_state"))
    event["new_state"] = _load(event.get("new_state"))
    event["metadata"] = _load(event.get("metadata")) or {}
    return event


def list_events(
    *,
    caller: Caller,
    client_id: Optional[str] = None,
    relationship_id: Optional[str] = None,
    permission_slug: Optional[str] = None,
    event_type: Optional[str] = None,
    limit: int = 100,
    offset: int = 0,
) -> List[Dict[str, Any]]:
    require_admin(caller)
    sql = "SELECT * FROM permission_audit_log WHERE 1 = 1"
    params: list[Any] = []
    if client_id:
        sql += " AND target_client_id = ?"
        params.append(client_id)
    if relationship_id:
        sql += " AND target_relationship_id = ?"
        params.append(relationship_id)
    if permission_slug:
        sql += " AND permission_slug = ?"
        params.append(permission_slug)
    if event_type:
        sql += " AND event_type = ?"
        params.append(event_type)
    sql += " ORDER BY created_at DESC LIMIT ? OFFSET ?"
    params.extend([int(limit), int(offset)])
    with db_conn(settings.app_db_path) as conn:
        rows = conn.execute(sql, tuple(params)).fetchall()
    return [_row_to_event(dict(r)) for r in rows]
