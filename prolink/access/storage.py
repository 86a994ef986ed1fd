# -*- coding: utf-8 -*-
"""Access checks — answers "may this professional see this client's data?".

Every check requires an ``active`` relationship; pending and ended relationships grant
nothing. Categories in ``DEFAULT_VISIBLE_CATEGORIES`` need no grant.
"""

from __future__ import annotations

import logging
import sqlite3
from typing import Any, Dict, List, Optional, Set

from ..app_db import db_conn
from ..catalog.defaults import DEFAULT_VISIBLE_CATEGORIES
from ..config import settings
from ..errors import Forbidden, IntegrityViolation
from ..exclusivity import find_exclusive_holder
from ..identity import Caller

logger = logging.getLogger(__name__)


def _active_relationship_id(
    conn: sqlite3.Connection,
    *,
    professional_id: str,
    client_id: str,
    required_role_type: Optional[str] = None,
) -> Optional[str]:
    sql = "SELECT id FROM relationships WHERE professional_id = ? AND client_id = ? AND status = 'active'"
    params: list[Any] = [professional_id, client_id]
    if required_role_type:
        sql += " AND role_type = ?"
        params.append(required_role_type)
    row = conn.execute(sql, tuple(params)).fetchone()
    return row["id"] if row else None


def can_view(
    professional_id: str,
    client_id: str,
    category: str,
    required_role_type: Optional[str] = None,
) -> bool:
    with db_conn(settings.app_db_path) as conn:
        relationship_id = _active_relationship_id(
            conn,
            professional_id=professional_id,
            client_id=client_id,
            required_role_type=required_role_type,
        )
        if not relationship_id:
            return False
        if category in DEFAULT_VISIBLE_CATEGORIES:
            return True
        row = conn.execute(
            """
            SELECT 1
            FROM client_permissions cp
            JOIN permission_definitions pd ON pd.slug = cp.permission_slug
            WHERE cp.relationship_id = ?
              AND cp.status = 'granted'
              AND pd.category = ?
              AND pd.permission_type = 'read'
              AND pd.is_enabled = 1
            LIMIT 1
            """,
            (relationship_id, category),
        ).fetchone()
    return row is not None


def has_permission(professional_id: str, client_id: str, slug: str) -> bool:
    """Check one specific enabled permission, typically before a write."""
    with db_conn(settings.app_db_path) as conn:
        row = conn.execute(
            """
            SELECT 1
            FROM client_permissions cp
            JOIN relationships r ON r.id = cp.relationship_id
            JOIN permission_definitions pd ON pd.slug = cp.permission_slug
            WHERE r.professional_id = ?
              AND r.client_id = ?
              AND r.status = 'active'
              AND cp.permission_slug = ?
              AND cp.status = 'granted'
              AND pd.is_enabled = 1
            LIMIT 1
            """,
            (professional_id, client_id, slug),
        ).fetchone()
    return row is not None


def accessible_clients(professional_id: str, required_role_type: Optional[str] = None) -> Set[str]:
    sql = "SELECT client_id FROM relationships WHERE professional_id = ? AND status = 'active' AND client_id IS NOT NULL"
    params: list[Any] = [professional_id]
    if required_role_type:
        sql += " AND role_type = ?"
        params.append(required_role_type)
    with db_conn(settings.app_db_path) as conn:
        rows = conn.execute(sql, tuple(params)).fetchall()
    return {r["client_id"] for r in rows}


def exclusive_holder_for_caller(*, caller: Caller, client_id: str, slug: str) -> Dict[str, Any]:
    """Holder lookup for dashboards: the client, their active professionals, or an admin."""
    if not caller.is_admin and caller.id != client_id and client_id not in accessible_clients(caller.id):
        raise Forbidden("Not allowed to inspect this client's permissions")
    diagnostics: List[IntegrityViolation] = []
    holder = find_exclusive_holder(client_id, slug, diagnostics=diagnostics)
    return {
        "client_id": client_id,
        "permission_slug": slug,
        "holder": holder,
        "diagnostics": [d.to_dict() for d in diagnostics],
    }
