# -*- coding: utf-8 -*-
"""Exclusivity resolver: who holds an exclusive permission for a client.

A pure lookup, read on most dashboard views. Exclusivity is enforced when a grant is
written, not here; if more than one holder is ever found the most recently granted row
wins and the breach is reported as an ``IntegrityViolation`` diagnostic.
"""

from __future__ import annotations

import logging
import sqlite3
from typing import Any, Dict, List, Optional

from .app_db import db_conn
from .config import settings
from .errors import IntegrityViolation

logger = logging.getLogger(__name__)

_HOLDER_SQL = """
    SELECT r.*,
           cp.id AS permission_id,
           cp.granted_at AS permission_granted_at,
           cp.granted_by AS permission_granted_by
    FROM client_permissions cp
    JOIN relationships r ON r.id = cp.relationship_id
    JOIN permission_definitions pd ON pd.slug = cp.permission_slug
    WHERE cp.client_id = ?
      AND cp.permission_slug = ?
      AND cp.status = 'granted'
      AND r.status = 'active'
      AND pd.is_exclusive = 1
    ORDER BY cp.granted_at DESC, cp.id DESC
"""


def _resolve(
    conn: sqlite3.Connection,
    client_id: str,
    slug: str,
    diagnostics: Optional[List[IntegrityViolation]],
) -> Optional[Dict[str, Any]]:
    rows = conn.execute(_HOLDER_SQL, (client_id, slug)).fetchall()
    if not rows:
        return None
    holder = dict(rows[0])
    if len(rows) > 1:
        violation = IntegrityViolation(
            f"{len(rows)} active holders of exclusive permission {slug}",
            client_id=client_id,
            permission_slug=slug,
            relationship_ids=[r["id"] for r in rows],
            resolved_to=holder["id"],
        )
        logger.error(
            "Exclusivity broken for client=%s slug=%s holders=%s; using latest grant %s",
            client_id,
            slug,
            [r["id"] for r in rows],
            holder["id"],
        )
        if diagnostics is not None:
            diagnostics.append(violation)
    return holder


def find_exclusive_holder(
    client_id: str,
    slug: str,
    *,
    diagnostics: Optional[List[IntegrityViolation]] = None,
    conn: Optional[sqlite3.Connection] = None,
) -> Optional[Dict[str, Any]]:
    """Return the active relationship holding ``slug`` for ``client_id``, or ``None``.

    Pass ``conn`` to read inside an open write transaction (the grant path does). Pass a
    list as ``diagnostics`` to collect integrity violations; they are logged either way.
    Non-exclusive and unknown slugs have no holder.
    """
    if conn is not None:
        return _resolve(conn, client_id, slug, diagnostics)
    with db_conn(settings.app_db_path) as read_conn:
        return _resolve(read_conn, client_id, slug, diagnostics)
