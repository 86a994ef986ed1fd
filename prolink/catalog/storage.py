# -*- coding: utf-8 -*-
"""Permission catalog — DB storage helpers."""

from __future__ import annotations

import logging
import sqlite3
from typing import Any, Dict, List, Optional

from ..app_db import db_conn, db_tx, utc_now
from ..audit.storage import record_event
from ..config import settings
from ..errors import (
    Conflict,
    ExclusivityConflict,
    InvalidDefinition,
    PermissionDisabled,
    UnknownPermission,
    UnknownRole,
)
from ..identity import Caller, require_admin, require_reason
from .defaults import CATEGORIES, PERMISSION_TYPES, ROLE_DEFAULT_PERMISSIONS

logger = logging.getLogger(__name__)

_BOOL_FIELDS = ("is_exclusive", "is_enabled", "requires_verification")
# category and permission_type are fixed at creation; is_exclusive changes only through
# set_definition_exclusivity, which re-syncs the ledger copies.
_EDITABLE_FIELDS = ("display_name", "description", "is_enabled", "requires_verification", "sort_order")


def _row_to_definition(row: Any) -> Dict[str, Any]:
    definition = dict(row)
    for key in _BOOL_FIELDS:
        definition[key] = bool(definition.get(key))
    return definition


def role_default_permissions(role_type: str) -> tuple[str, ...]:
    try:
        return ROLE_DEFAULT_PERMISSIONS[role_type]
    except KeyError:
        raise UnknownRole(f"Unknown role type: {role_type}") from None


def list_definitions(*, include_disabled: bool = False) -> List[Dict[str, Any]]:
    sql = "SELECT * FROM permission_definitions"
    if not include_disabled:
        sql += " WHERE is_enabled = 1"
    sql += " ORDER BY sort_order ASC, slug ASC"
    with db_conn(settings.app_db_path) as conn:
        rows = conn.execute(sql).fetchall()
    return [_row_to_definition(r) for r in rows]


def fetch_definition(conn: sqlite3.Connection, slug: str) -> Optional[Dict[str, Any]]:
    row = conn.execute("SELECT * FROM permission_definitions WHERE slug = ?", (slug,)).fetchone()
    return _row_to_definition(row) if row else None


def get_definition(slug: str) -> Optional[Dict[str, Any]]:
    with db_conn(settings.app_db_path) as conn:
        return fetch_definition(conn, slug)


def require_definition(slug: str) -> Dict[str, Any]:
    definition = get_definition(slug)
    if not definition:
        raise UnknownPermission(f"Unknown permission: {slug}", slug=slug)
    return definition


def require_enabled_definition(conn: sqlite3.Connection, slug: str) -> Dict[str, Any]:
    definition = fetch_definition(conn, slug)
    if not definition:
        raise UnknownPermission(f"Unknown permission: {slug}", slug=slug)
    if not definition["is_enabled"]:
        raise PermissionDisabled(f"Permission is disabled: {slug}", slug=slug)
    return definition


def create_definition(
    *,
    caller: Caller,
    slug: str,
    display_name: str,
    category: str,
    permission_type: str,
    description: Optional[str] = None,
    is_exclusive: bool = False,
    requires_verification: bool = False,
    sort_order: int = 0,
    reason: Optional[str],
) -> Dict[str, Any]:
    require_admin(caller)
    reason_text = require_reason(reason)
    if category not in CATEGORIES:
        raise InvalidDefinition(f"Unknown category: {category}", category=category)
    if permission_type not in PERMISSION_TYPES:
        raise InvalidDefinition(f"Unknown permission type: {permission_type}", permission_type=permission_type)
    now = utc_now()
    with db_tx(settings.app_db_path) as conn:
        if fetch_definition(conn, slug):
            raise Conflict(f"Permission already exists: {slug}", slug=slug)
        conn.execute(
            """
            INSERT INTO permission_definitions (
                slug, display_name, description, category, permission_type,
                is_exclusive, is_enabled, requires_verification, sort_order, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, 1, ?, ?, ?)
            """,
            (
                slug,
                display_name,
                description,
                category,
                permission_type,
                int(is_exclusive),
                int(requires_verification),
                int(sort_order),
                now,
            ),
        )
        definition = fetch_definition(conn, slug)
        record_event(
            conn,
            event_type="policy_change",
            actor_type="admin",
            actor_id=caller.id,
            permission_slug=slug,
            new_state=definition,
            reason=reason_text,
            metadata={"action": "create"},
        )
    logger.info("Permission %s created by %s", slug, caller.id)
    return definition


def update_definition(
    *,
    caller: Caller,
    slug: str,
    changes: Dict[str, Any],
    reason: Optional[str],
) -> Dict[str, Any]:
    """Edit a catalog entry. Disabling is the only way to retire one."""
    require_admin(caller)
    reason_text = require_reason(reason)
    updates = {k: v for k, v in changes.items() if k in _EDITABLE_FIELDS and v is not None}
    with db_tx(settings.app_db_path) as conn:
        current = fetch_definition(conn, slug)
        if not current:
            raise UnknownPermission(f"Unknown permission: {slug}", slug=slug)
        if not updates:
            return current
        assignments = ", ".join(f"{key} = ?" for key in updates)
        params = [int(v) if isinstance(v, bool) else v for v in updates.values()]
        conn.execute(
            f"UPDATE permission_definitions SET {assignments} WHERE slug = ?",
            (*params, slug),
        )
        updated = fetch_definition(conn, slug)
        record_event(
            conn,
            event_type="policy_change",
            actor_type="admin",
            actor_id=caller.id,
            permission_slug=slug,
            previous_state={k: current[k] for k in updates},
            new_state={k: updated[k] for k in updates},
            reason=reason_text,
            metadata={"action": "update"},
        )
    logger.info("Permission %s updated by %s: %s", slug, caller.id, sorted(updates))
    return updated


def _exclusivity_conflicts(conn: sqlite3.Connection, slug: str) -> List[Dict[str, Any]]:
    rows = conn.execute(
        """
        SELECT cp.client_id,
               COUNT(*) AS grant_count,
               GROUP_CONCAT(cp.relationship_id) AS relationship_ids,
               GROUP_CONCAT(r.professional_id) AS professional_ids
        FROM client_permissions cp
        JOIN relationships r ON r.id = cp.relationship_id
        WHERE cp.permission_slug = ? AND cp.status = 'granted'
        GROUP BY cp.client_id
        HAVING COUNT(*) > 1
        ORDER BY grant_count DESC, cp.client_id ASC
        """,
        (slug,),
    ).fetchall()
    return [
        {
            "client_id": r["client_id"],
            "grant_count": r["grant_count"],
            "relationship_ids": sorted(r["relationship_ids"].split(",")),
            "professional_ids": sorted(r["professional_ids"].split(",")),
        }
        for r in rows
    ]


def find_exclusivity_conflicts(*, caller: Caller, slug: str) -> List[Dict[str, Any]]:
    """Clients holding ``slug`` from more than one professional."""
    require_admin(caller)
    with db_conn(settings.app_db_path) as conn:
        if not fetch_definition(conn, slug):
            raise UnknownPermission(f"Unknown permission: {slug}", slug=slug)
        return _exclusivity_conflicts(conn, slug)


def set_definition_exclusivity(
    *,
    caller: Caller,
    slug: str,
    is_exclusive: bool,
    reason: Optional[str],
) -> Dict[str, Any]:
    """Switch a permission between shared and exclusive.

    Ledger rows keep their own copy of ``is_exclusive`` and are re-synced in the same
    transaction. Switching to exclusive is refused while any client has the permission
    granted to more than one professional; those grants must be revoked first.
    """
    require_admin(caller)
    reason_text = require_reason(reason)
    target = bool(is_exclusive)
    with db_tx(settings.app_db_path) as conn:
        current = fetch_definition(conn, slug)
        if not current:
            raise UnknownPermission(f"Unknown permission: {slug}", slug=slug)
        if current["is_exclusive"] == target:
            return {**current, "changed": False, "ledger_rows": 0}
        if target:
            conflicts = _exclusivity_conflicts(conn, slug)
            if conflicts:
                raise ExclusivityConflict(
                    f"Cannot make {slug} exclusive: {len(conflicts)} client(s) hold it from several professionals",
                    permission_slug=slug,
                    conflict_count=len(conflicts),
                    client_ids=[c["client_id"] for c in conflicts],
                )
        conn.execute(
            "UPDATE permission_definitions SET is_exclusive = ? WHERE slug = ?",
            (int(target), slug),
        )
        try:
            cur = conn.execute(
                "UPDATE client_permissions SET is_exclusive = ? WHERE permission_slug = ?",
                (int(target), slug),
            )
        except sqlite3.IntegrityError as exc:
            raise ExclusivityConflict(permission_slug=slug) from exc
        ledger_rows = cur.rowcount
        updated = fetch_definition(conn, slug)
        record_event(
            conn,
            event_type="policy_change",
            actor_type="admin",
            actor_id=caller.id,
            permission_slug=slug,
            previous_state={"is_exclusive": current["is_exclusive"]},
            new_state={"is_exclusive": target},
            reason=reason_text,
            metadata={"action": "set_exclusive" if target else "set_shared", "ledger_rows": ledger_rows},
        )
    logger.info("Permission %s is_exclusive=%s set by %s (%d ledger rows)", slug, target, caller.id, ledger_rows)
    return {**updated, "changed": True, "ledger_rows": ledger_rows}
