# -*- coding: utf-8 -*-
"""Relationship store — DB storage helpers.

Lifecycle: ``pending --accept--> active --end--> ended``. Ended is terminal. A pending
relationship whose invitation expires or is cancelled is deleted, never ended.
"""

from __future__ import annotations

import logging
import sqlite3
from typing import Any, Dict, List, Optional

from ..app_db import db_conn, db_tx, utc_now
from ..audit.storage import record_event
from ..config import settings
from ..errors import Forbidden, InvalidState, RelationshipNotFound
from ..identity import Caller, actor_type_for, require_reason

logger = logging.getLogger(__name__)


def fetch_relationship(conn: sqlite3.Connection, relationship_id: str) -> Optional[Dict[str, Any]]:
    row = conn.execute("SELECT * FROM relationships WHERE id = ?", (relationship_id,)).fetchone()
    return dict(row) if row else None


def require_relationship(conn: sqlite3.Connection, relationship_id: str) -> Dict[str, Any]:
    relationship = fetch_relationship(conn, relationship_id)
    if not relationship:
        raise RelationshipNotFound(relationship_id=relationship_id)
    return relationship


def get_relationship(relationship_id: str, conn: Optional[sqlite3.Connection] = None) -> Optional[Dict[str, Any]]:
    if conn is not None:
        return fetch_relationship(conn, relationship_id)
    with db_conn(settings.app_db_path) as read_conn:
        return fetch_relationship(read_conn, relationship_id)


def is_party(caller: Caller, relationship: Dict[str, Any]) -> bool:
    return caller.id in (relationship.get("client_id"), relationship.get("professional_id"))


def require_party_or_admin(caller: Caller, relationship: Dict[str, Any]) -> None:
    if caller.is_admin or is_party(caller, relationship):
        return
    # Non-parties must not learn that the relationship exists.
    raise RelationshipNotFound(relationship_id=relationship.get("id"))


def find_open_relationship(
    conn: sqlite3.Connection,
    *,
    professional_id: str,
    client_id: Optional[str] = None,
    client_email: Optional[str] = None,
    exclude_id: Optional[str] = None,
) -> Optional[Dict[str, Any]]:
    """The non-ended relationship between a professional and a client id or invited email."""
    clauses = []
    params: list[Any] = [professional_id]
    if client_id:
        clauses.append("client_id = ?")
        params.append(client_id)
    if client_email:
        clauses.append("client_email = ?")
        params.append(client_email.lower().strip())
        clauses.append("client_id IN (SELECT id FROM users WHERE email = ?)")
        params.append(client_email.lower().strip())
    if not clauses:
        return None
    sql = f"SELECT * FROM relationships WHERE professional_id = ? AND status != 'ended' AND ({' OR '.join(clauses)})"
    if exclude_id:
        sql += " AND id != ?"
        params.append(exclude_id)
    row = conn.execute(sql, tuple(params)).fetchone()
    return dict(row) if row else None


def get_relationship_for_caller(*, caller: Caller, relationship_id: str) -> Dict[str, Any]:
    with db_conn(settings.app_db_path) as conn:
        relationship = require_relationship(conn, relationship_id)
    require_party_or_admin(caller, relationship)
    return relationship


def list_relationships(
    *,
    caller: Caller,
    status: Optional[str] = None,
    as_role: Optional[str] = None,
) -> List[Dict[str, Any]]:
    """Relationships the caller is a party to; admins see every relationship."""
    sql = "SELECT * FROM relationships WHERE 1 = 1"
    params: list[Any] = []
    if not caller.is_admin:
        if as_role == "professional":
            sql += " AND professional_id = ?"
            params.append(caller.id)
        elif as_role == "client":
            sql += " AND client_id = ?"
            params.append(caller.id)
        else:
            sql += " AND (professional_id = ? OR client_id = ?)"
            params.extend([caller.id, caller.id])
    if status:
        sql += " AND status = ?"
        params.append(status)
    sql += " ORDER BY COALESCE(accepted_at, invited_at) DESC"
    with db_conn(settings.app_db_path) as conn:
        rows = conn.execute(sql, tuple(params)).fetchall()
    return [dict(r) for r in rows]


def end_in_tx(conn: sqlite3.Connection, relationship: Dict[str, Any], now: str) -> List[str]:
    """Flip an active relationship to ended inside the caller's transaction.

    Every non-revoked ledger row is revoked and pending requests are denied. Returns the
    slugs that were revoked.
    """
    relationship_id = relationship["id"]
    if relationship["status"] != "active":
        raise InvalidState(
            f"Cannot end a relationship that is {relationship['status']}",
            relationship_id=relationship_id,
            status=relationship["status"],
        )
    conn.execute(
        "UPDATE relationships SET status = 'ended', ended_at = ? WHERE id = ?",
        (now, relationship_id),
    )
    revoked = [
        r["permission_slug"]
        for r in conn.execute(
            "SELECT permission_slug FROM client_permissions WHERE relationship_id = ? AND status != 'revoked'",
            (relationship_id,),
        ).fetchall()
    ]
    conn.execute(
        """
        UPDATE client_permissions
        SET status = 'revoked', revoked_at = ?
        WHERE relationship_id = ? AND status != 'revoked'
        """,
        (now, relationship_id),
    )
    conn.execute(
        """
        UPDATE permission_requests
        SET status = 'denied', responded_at = ?, notes = COALESCE(notes, 'Relationship ended')
        WHERE relationship_id = ? AND status = 'pending'
        """,
        (now, relationship_id),
    )
    return revoked


def end_relationship(
    *,
    caller: Caller,
    relationship_id: str,
    reason: Optional[str] = None,
) -> Dict[str, Any]:
    """End an active relationship and revoke every grant under it in the same transaction."""
    reason_text = require_reason(reason) if caller.is_admin else reason
    now = utc_now()
    with db_tx(settings.app_db_path) as conn:
        relationship = require_relationship(conn, relationship_id)
        require_party_or_admin(caller, relationship)
        revoked = end_in_tx(conn, relationship, now)
        record_event(
            conn,
            event_type="relationship_end",
            actor_type=actor_type_for(caller, relationship),
            actor_id=caller.id,
            target_client_id=relationship["client_id"],
            target_relationship_id=relationship_id,
            target_professional_id=relationship["professional_id"],
            previous_state={"status": "active"},
            new_state={"status": "ended"},
            reason=reason_text,
            metadata={"revoked_permissions": revoked},
        )
        ended = fetch_relationship(conn, relationship_id)

    logger.info(
        "Relationship %s ended by %s; revoked %d permission(s)",
        relationship_id,
        caller.id,
        len(revoked),
    )
    return ended


def ensure_professional_of(caller: Caller, relationship: Dict[str, Any]) -> None:
    if relationship.get("professional_id") != caller.id:
        raise Forbidden("Only the relationship's professional can perform this action")


def ensure_client_of(caller: Caller, relationship: Dict[str, Any]) -> None:
    if relationship.get("client_id") != caller.id:
        raise Forbidden("Only the relationship's client can perform this action")
