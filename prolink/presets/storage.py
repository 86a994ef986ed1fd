# -*- coding: utf-8 -*-
"""Permission presets — DB storage helpers.

A preset is a named list of permission slugs. Applying one grants each enabled slug on
an active relationship through the ledger's exclusivity-aware grant path. Presets are
never deleted, only deactivated; system presets cannot be deactivated or demoted.
"""

from __future__ import annotations

import logging
import sqlite3
from typing import Any, Dict, Iterable, List, Optional
from uuid import uuid4

from ..app_db import db_conn, db_tx, utc_now
from ..audit.storage import record_event
from ..catalog.storage import fetch_definition
from ..config import settings
from ..errors import (
    DuplicatePreset,
    ExclusivityConflict,
    InvalidPreset,
    InvalidState,
    PresetNotFound,
    SystemPresetLocked,
    UnknownPermission,
    VerificationRequired,
)
from ..grants.storage import fetch_ledger_row, grant_in_tx
from ..identity import Caller, require_admin, require_reason
from ..relationships.storage import require_relationship

logger = logging.getLogger(__name__)


def _preset_permissions(conn: sqlite3.Connection, preset_id: str) -> List[Dict[str, Any]]:
    rows = conn.execute(
        """
        SELECT pp.permission_slug AS slug, pp.is_enabled, pd.display_name, pd.category, pd.is_exclusive
        FROM preset_permissions pp
        JOIN permission_definitions pd ON pd.slug = pp.permission_slug
        WHERE pp.preset_id = ?
        ORDER BY pd.category ASC, pd.display_name ASC
        """,
        (preset_id,),
    ).fetchall()
    items = []
    for r in rows:
        item = dict(r)
        item["is_enabled"] = bool(item["is_enabled"])
        item["is_exclusive"] = bool(item["is_exclusive"])
        items.append(item)
    return items


def _row_to_preset(conn: sqlite3.Connection, row: Any) -> Dict[str, Any]:
    preset = dict(row)
    preset["is_system"] = bool(preset["is_system"])
    preset["is_active"] = bool(preset["is_active"])
    preset["permissions"] = _preset_permissions(conn, preset["id"])
    preset["permission_count"] = len(preset["permissions"])
    return preset


def fetch_preset(conn: sqlite3.Connection, preset_id: str) -> Optional[Dict[str, Any]]:
    row = conn.execute("SELECT * FROM permission_presets WHERE id = ?", (preset_id,)).fetchone()
    return _row_to_preset(conn, row) if row else None


def list_permission_presets(
    *,
    caller: Caller,
    include_inactive: bool = False,
    limit: int = 50,
    offset: int = 0,
) -> List[Dict[str, Any]]:
    """Active presets for everyone; administrators may include deactivated ones."""
    sql = "SELECT * FROM permission_presets"
    if not (include_inactive and caller.is_admin):
        sql += " WHERE is_active = 1"
    sql += " ORDER BY is_system DESC, name ASC LIMIT ? OFFSET ?"
    with db_conn(settings.app_db_path) as conn:
        rows = conn.execute(sql, (int(limit), int(offset))).fetchall()
        return [_row_to_preset(conn, r) for r in rows]


def get_permission_preset(*, caller: Caller, preset_id: str) -> Dict[str, Any]:
    with db_conn(settings.app_db_path) as conn:
        preset = fetch_preset(conn, preset_id)
    if not preset or (not preset["is_active"] and not caller.is_admin):
        raise PresetNotFound(preset_id=preset_id)
    return preset


def _normalize_permissions(conn: sqlite3.Connection, permissions: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    items: List[Dict[str, Any]] = []
    seen = set()
    for entry in permissions:
        slug = str(entry.get("slug") or "").strip()
        if not slug:
            raise InvalidPreset("Preset permission without a slug")
        if slug in seen:
            raise InvalidPreset(f"Permission listed twice: {slug}", slug=slug)
        if not fetch_definition(conn, slug):
            raise UnknownPermission(f"Unknown permission: {slug}", slug=slug)
        seen.add(slug)
        items.append({"slug": slug, "is_enabled": bool(entry.get("is_enabled", True))})
    return items


def upsert_permission_preset(
    *,
    caller: Caller,
    reason: Optional[str],
    preset_id: Optional[str] = None,
    name: Optional[str] = None,
    description: Optional[str] = None,
    is_system: Optional[bool] = None,
    permissions: Optional[Iterable[Dict[str, Any]]] = None,
) -> Dict[str, Any]:
    """Create a preset, or update one when ``preset_id`` is given.

    ``permissions`` is a list of ``{"slug": ..., "is_enabled": ...}`` entries and replaces
    the preset's list; on update ``None`` keeps the current list.
    """
    require_admin(caller)
    reason_text = require_reason(reason)
    clean_name = (name or "").strip()
    now = utc_now()
    with db_tx(settings.app_db_path) as conn:
        current = fetch_preset(conn, preset_id) if preset_id else None
        if preset_id and not current:
            raise PresetNotFound(preset_id=preset_id)
        if current is None and not clean_name:
            raise InvalidPreset("Preset name is required")
        if current is not None and current["is_system"] and is_system is False:
            raise SystemPresetLocked(preset_id=preset_id)
        items = _normalize_permissions(conn, permissions) if permissions is not None else None

        try:
            if current is None:
                preset_id = str(uuid4())
                conn.execute(
                    """
                    INSERT INTO permission_presets (
                        id, name, description, is_system, is_active, created_by, created_at, updated_at
                    ) VALUES (?, ?, ?, ?, 1, ?, ?, ?)
                    """,
                    (preset_id, clean_name, description, int(bool(is_system)), caller.id, now, now),
                )
            else:
                conn.execute(
                    """
                    UPDATE permission_presets
                    SET name = ?, description = COALESCE(?, description), updated_at = ?
                    WHERE id = ?
                    """,
                    (clean_name or current["name"], description, now, preset_id),
                )
        except sqlite3.IntegrityError as exc:
            raise DuplicatePreset(name=clean_name) from exc

        if items is not None:
            conn.execute("DELETE FROM preset_permissions WHERE preset_id = ?", (preset_id,))
            conn.executemany(
                """
                INSERT INTO preset_permissions (preset_id, permission_slug, is_enabled, created_at)
                VALUES (?, ?, ?, ?)
                """,
                [(preset_id, item["slug"], int(item["is_enabled"]), now) for item in items],
            )

        preset = fetch_preset(conn, preset_id)
        record_event(
            conn,
            event_type="preset_update" if current else "preset_create",
            actor_type="admin",
            actor_id=caller.id,
            previous_state={"name": current["name"], "permissions": current["permissions"]} if current else None,
            new_state={"name": preset["name"], "permissions": preset["permissions"]},
            reason=reason_text,
            metadata={"preset_id": preset_id, "is_system": preset["is_system"]},
        )
    logger.info("Preset %s (%s) %s by %s", preset_id, preset["name"], "updated" if current else "created", caller.id)
    return preset


def delete_permission_preset(*, caller: Caller, preset_id: str, reason: Optional[str]) -> Dict[str, Any]:
    """Deactivate a preset. Relationships it was applied to keep their grants."""
    require_admin(caller)
    reason_text = require_reason(reason)
    with db_tx(settings.app_db_path) as conn:
        current = fetch_preset(conn, preset_id)
        if not current:
            raise PresetNotFound(preset_id=preset_id)
        if current["is_system"]:
            raise SystemPresetLocked(preset_id=preset_id)
        if not current["is_active"]:
            return current
        conn.execute(
            "UPDATE permission_presets SET is_active = 0, updated_at = ? WHERE id = ?",
            (utc_now(), preset_id),
        )
        record_event(
            conn,
            event_type="preset_delete",
            actor_type="admin",
            actor_id=caller.id,
            previous_state={"name": current["name"], "is_active": True},
            new_state={"name": current["name"], "is_active": False},
            reason=reason_text,
            metadata={"preset_id": preset_id},
        )
        preset = fetch_preset(conn, preset_id)
    logger.info("Preset %s deactivated by %s", preset_id, caller.id)
    return preset


def apply_preset_in_tx(
    conn: sqlite3.Connection,
    *,
    relationship: Dict[str, Any],
    preset_id: str,
    actor_id: str,
    reason: str,
    displace: bool = False,
) -> Dict[str, Any]:
    """Grant every enabled slug of a preset using the caller's open write transaction.

    Slugs that cannot be granted (held exclusively by another professional, needing a
    verified professional, or disabled in the catalog) are skipped and reported.
    """
    preset = fetch_preset(conn, preset_id)
    if not preset or not preset["is_active"]:
        raise PresetNotFound(preset_id=preset_id)
    if relationship["status"] != "active":
        raise InvalidState(
            f"Cannot apply a preset to a relationship that is {relationship['status']}",
            relationship_id=relationship["id"],
            status=relationship["status"],
        )

    results: List[Dict[str, Any]] = []
    granted = 0
    failed = 0
    for item in preset["permissions"]:
        if not item["is_enabled"]:
            continue
        slug = item["slug"]
        definition = fetch_definition(conn, slug)
        if not definition["is_enabled"]:
            results.append({"slug": slug, "status": "skipped", "reason": "disabled"})
            continue
        existing = fetch_ledger_row(conn, relationship["id"], slug)
        if existing and existing["status"] == "granted":
            results.append({"slug": slug, "status": "skipped", "reason": "already_granted"})
            continue
        try:
            grant = grant_in_tx(
                conn,
                relationship=relationship,
                definition=definition,
                granted_by="admin",
                actor_type="admin",
                actor_id=actor_id,
                displace=displace,
                reason=reason,
            )
        except ExclusivityConflict as exc:
            results.append(
                {
                    "slug": slug,
                    "status": "skipped",
                    "reason": "exclusive_held",
                    "holder_relationship_id": exc.context.get("holder_relationship_id"),
                }
            )
            failed += 1
            continue
        except VerificationRequired:
            results.append({"slug": slug, "status": "skipped", "reason": "verification_required"})
            failed += 1
            continue
        results.append(
            {
                "slug": slug,
                "status": "granted",
                "is_exclusive": definition["is_exclusive"],
                "displaced_relationship_id": grant["displaced_relationship_id"],
            }
        )
        granted += 1

    record_event(
        conn,
        event_type="preset_apply",
        actor_type="admin",
        actor_id=actor_id,
        target_client_id=relationship["client_id"],
        target_relationship_id=relationship["id"],
        target_professional_id=relationship["professional_id"],
        new_state={"preset_name": preset["name"], "results": results},
        reason=reason,
        metadata={"preset_id": preset_id, "success_count": granted, "fail_count": failed},
    )
    return {
        "preset_id": preset_id,
        "preset_name": preset["name"],
        "relationship_id": relationship["id"],
        "success_count": granted,
        "fail_count": failed,
        "results": results,
    }


def apply_permission_preset(
    *,
    caller: Caller,
    relationship_id: str,
    preset_id: str,
    reason: Optional[str],
    displace: bool = False,
) -> Dict[str, Any]:
    require_admin(caller)
    reason_text = require_reason(reason)
    with db_tx(settings.app_db_path) as conn:
        relationship = require_relationship(conn, relationship_id)
        result = apply_preset_in_tx(
            conn,
            relationship=relationship,
            preset_id=preset_id,
            actor_id=caller.id,
            reason=reason_text,
            displace=displace,
        )
    logger.info(
        "Preset %s applied to relationship %s by %s: %d granted, %d failed",
        preset_id,
        relationship_id,
        caller.id,
        result["success_count"],
        result["fail_count"],
    )
    return result
