# -*- coding: utf-8 -*-
"""Permission grant ledger — DB storage helpers.

One ``client_permissions`` row per (relationship, slug); grant and revoke flip its
status. Exclusive grants check and displace the current holder inside the same
``BEGIN IMMEDIATE`` transaction that writes the new grant.
"""

from __future__ import annotations

import logging
import sqlite3
from typing import Any, Dict, List, Optional, Tuple
from uuid import uuid4

from ..app_db import db_conn, db_tx, utc_now
from ..audit.storage import record_event
from ..catalog.storage import fetch_definition, require_enabled_definition
from ..config import settings
from ..errors import (
    DuplicateRequest,
    ExclusivityConflict,
    Forbidden,
    IntegrityViolation,
    InvalidState,
    PermissionAlreadyGranted,
    RequestNotFound,
    UnknownPermission,
    VerificationRequired,
)
from ..exclusivity import find_exclusive_holder
from ..identity import Caller, actor_type_for, require_reason
from ..relationships.storage import (
    ensure_client_of,
    ensure_professional_of,
    is_party,
    require_party_or_admin,
    require_relationship,
)

logger = logging.getLogger(__name__)


def fetch_ledger_row(conn: sqlite3.Connection, relationship_id: str, slug: str) -> Optional[Dict[str, Any]]:
    row = conn.execute(
        "SELECT * FROM client_permissions WHERE relationship_id = ? AND permission_slug = ?",
        (relationship_id, slug),
    ).fetchone()
    return dict(row) if row else None


def professional_is_verified(conn: sqlite3.Connection, professional_id: str) -> bool:
    row = conn.execute("SELECT verified FROM users WHERE id = ?", (professional_id,)).fetchone()
    return bool(row and row["verified"])


def seed_pending_row(
    conn: sqlite3.Connection,
    *,
    relationship_id: str,
    definition: Dict[str, Any],
    client_id: Optional[str] = None,
) -> None:
    conn.execute(
        """
        INSERT OR IGNORE INTO client_permissions (
            id, relationship_id, client_id, permission_slug, is_exclusive, status
        ) VALUES (?, ?, ?, ?, ?, 'pending')
        """,
        (str(uuid4()), relationship_id, client_id, definition["slug"], int(definition["is_exclusive"])),
    )


def grant_in_tx(
    conn: sqlite3.Connection,
    *,
    relationship: Dict[str, Any],
    definition: Dict[str, Any],
    granted_by: str,
    actor_type: str,
    actor_id: Optional[str],
    displace: bool = False,
    reason: Optional[str] = None,
    diagnostics: Optional[List[IntegrityViolation]] = None,
) -> Dict[str, Any]:
    """Grant ``definition`` on ``relationship`` using the caller's open write transaction.

    Returns the ledger row with ``displaced_relationship_id`` (the previous exclusive
    holder, if one was revoked) and ``changed`` (False when it was already granted).
    """
    slug = definition["slug"]
    relationship_id = relationship["id"]
    client_id = relationship["client_id"]
    if relationship["status"] != "active":
        raise InvalidState(
            f"Cannot grant on a relationship that is {relationship['status']}",
            relationship_id=relationship_id,
            status=relationship["status"],
        )
    if definition["requires_verification"] and not professional_is_verified(conn, relationship["professional_id"]):
        raise VerificationRequired(slug=slug)

    existing = fetch_ledger_row(conn, relationship_id, slug)
    if existing and existing["status"] == "granted":
        return {**existing, "displaced_relationship_id": None, "changed": False}

    now = utc_now()
    displaced: Optional[Dict[str, Any]] = None
    if definition["is_exclusive"]:
        holder = find_exclusive_holder(client_id, slug, diagnostics=diagnostics, conn=conn)
        if holder and holder["id"] != relationship_id:
            if not displace:
                raise ExclusivityConflict(
                    relationship_id=relationship_id,
                    permission_slug=slug,
                    holder_relationship_id=holder["id"],
                    holder_professional_id=holder["professional_id"],
                )
            displaced = holder
            # Revokes every other granted row, including strays left by a data-layer bug.
            conn.execute(
                """
                UPDATE client_permissions
                SET status = 'revoked', revoked_at = ?
                WHERE client_id = ? AND permission_slug = ? AND status = 'granted' AND relationship_id != ?
                """,
                (now, client_id, slug, relationship_id),
            )
            record_event(
                conn,
                event_type="transfer",
                actor_type=actor_type,
                actor_id=actor_id,
                target_client_id=client_id,
                target_relationship_id=holder["id"],
                target_professional_id=holder["professional_id"],
                permission_slug=slug,
                previous_state={"status": "granted", "relationship_id": holder["id"]},
                new_state={"status": "revoked", "transferred_to": relationship_id},
                reason=reason,
            )

    try:
        if existing:
            conn.execute(
                """
                UPDATE client_permissions
                SET status = 'granted', granted_at = ?, granted_by = ?, revoked_at = NULL,
                    client_id = ?, is_exclusive = ?
                WHERE id = ?
                """,
                (now, granted_by, client_id, int(definition["is_exclusive"]), existing["id"]),
            )
        else:
            conn.execute(
                """
                INSERT INTO client_permissions (
                    id, relationship_id, client_id, permission_slug, is_exclusive,
                    status, granted_at, granted_by, revoked_at
                ) VALUES (?, ?, ?, ?, ?, 'granted', ?, ?, NULL)
                """,
                (str(uuid4()), relationship_id, client_id, slug, int(definition["is_exclusive"]), now, granted_by),
            )
    except sqlite3.IntegrityError as exc:
        # Exclusive-holder index backstop.
        raise ExclusivityConflict(relationship_id=relationship_id, permission_slug=slug) from exc

    record_event(
        conn,
        event_type="grant",
        actor_type=actor_type,
        actor_id=actor_id,
        target_client_id=client_id,
        target_relationship_id=relationship_id,
        target_professional_id=relationship["professional_id"],
        permission_slug=slug,
        previous_state={"status": existing["status"]} if existing else None,
        new_state={"status": "granted", "granted_by": granted_by},
        reason=reason,
        metadata={"displaced_relationship_id": displaced["id"]} if displaced else None,
    )
    if displaced:
        logger.info(
            "Exclusive permission %s for client %s transferred from relationship %s to %s",
            slug,
            client_id,
            displaced["id"],
            relationship_id,
        )

    row = fetch_ledger_row(conn, relationship_id, slug) or {}
    return {**row, "displaced_relationship_id": displaced["id"] if displaced else None, "changed": True}


def grant_permission(
    *,
    caller: Caller,
    relationship_id: str,
    slug: str,
    displace: bool = False,
    reason: Optional[str] = None,
) -> Dict[str, Any]:
    """Grant a permission on an active relationship.

    The client of the relationship grants as ``client``; administrators grant as
    ``admin`` and must give a reason. ``displace`` allows taking an exclusive permission
    away from another professional in the same transaction.
    """
    reason_text = require_reason(reason) if caller.is_admin else reason
    with db_tx(settings.app_db_path) as conn:
        relationship = require_relationship(conn, relationship_id)
        if caller.is_admin:
            granted_by = "admin"
        elif caller.id == relationship["client_id"]:
            granted_by = "client"
        elif is_party(caller, relationship):
            raise Forbidden("Only the client can grant permissions")
        else:
            require_party_or_admin(caller, relationship)
        definition = require_enabled_definition(conn, slug)
        return grant_in_tx(
            conn,
            relationship=relationship,
            definition=definition,
            granted_by=granted_by,
            actor_type=actor_type_for(caller, relationship),
            actor_id=caller.id,
            displace=displace,
            reason=reason_text,
        )


def revoke_permission(
    *,
    caller: Caller,
    relationship_id: str,
    slug: str,
    reason: Optional[str] = None,
) -> Dict[str, Any]:
    """Revoke a permission. Revoking something not granted is a successful no-op."""
    reason_text = require_reason(reason) if caller.is_admin else reason
    now = utc_now()
    with db_tx(settings.app_db_path) as conn:
        relationship = require_relationship(conn, relationship_id)
        require_party_or_admin(caller, relationship)
        if not fetch_definition(conn, slug):
            raise UnknownPermission(f"Unknown permission: {slug}", slug=slug)
        existing = fetch_ledger_row(conn, relationship_id, slug)
        # Pending rows belong to an unredeemed invitation and stay untouched.
        if not existing or existing["status"] != "granted":
            return {
                "relationship_id": relationship_id,
                "permission_slug": slug,
                "status": existing["status"] if existing else None,
                "changed": False,
            }
        conn.execute(
            "UPDATE client_permissions SET status = 'revoked', revoked_at = ? WHERE id = ?",
            (now, existing["id"]),
        )
        record_event(
            conn,
            event_type="revoke",
            actor_type=actor_type_for(caller, relationship),
            actor_id=caller.id,
            target_client_id=relationship["client_id"],
            target_relationship_id=relationship_id,
            target_professional_id=relationship["professional_id"],
            permission_slug=slug,
            previous_state={"status": existing["status"]},
            new_state={"status": "revoked"},
            reason=reason_text,
        )
    return {"relationship_id": relationship_id, "permission_slug": slug, "status": "revoked", "changed": True}


def list_relationship_permissions(*, caller: Caller, relationship_id: str) -> List[Dict[str, Any]]:
    with db_conn(settings.app_db_path) as conn:
        relationship = require_relationship(conn, relationship_id)
        require_party_or_admin(caller, relationship)
        rows = conn.execute(
            """
            SELECT cp.*, pd.display_name, pd.category, pd.permission_type, pd.is_enabled
            FROM client_permissions cp
            JOIN permission_definitions pd ON pd.slug = cp.permission_slug
            WHERE cp.relationship_id = ?
            ORDER BY pd.sort_order ASC
            """,
            (relationship_id,),
        ).fetchall()
    items = []
    for r in rows:
        item = dict(r)
        item["is_exclusive"] = bool(item["is_exclusive"])
        item["is_enabled"] = bool(item["is_enabled"])
        items.append(item)
    return items


# ---- Permission requests -------------------------------------------------------


def _fetch_request(conn: sqlite3.Connection, request_id: str) -> Optional[Dict[str, Any]]:
    row = conn.execute("SELECT * FROM permission_requests WHERE id = ?", (request_id,)).fetchone()
    return dict(row) if row else None


def request_permission(
    *,
    caller: Caller,
    relationship_id: str,
    slug: str,
    notes: Optional[str] = None,
) -> Dict[str, Any]:
    """The professional of an active relationship asks the client for one more permission."""
    now = utc_now()
    with db_tx(settings.app_db_path) as conn:
        relationship = require_relationship(conn, relationship_id)
        require_party_or_admin(caller, relationship)
        ensure_professional_of(caller, relationship)
        if relationship["status"] != "active":
            raise InvalidState(
                f"Cannot request permissions on a relationship that is {relationship['status']}",
                relationship_id=relationship_id,
                status=relationship["status"],
            )
        require_enabled_definition(conn, slug)
        existing = fetch_ledger_row(conn, relationship_id, slug)
        if existing and existing["status"] == "granted":
            raise PermissionAlreadyGranted(relationship_id=relationship_id, permission_slug=slug)
        request_id = str(uuid4())
        try:
            conn.execute(
                """
                INSERT INTO permission_requests (
                    id, relationship_id, client_id, permission_slug, status, notes, requested_at
                ) VALUES (?, ?, ?, ?, 'pending', ?, ?)
                """,
                (request_id, relationship_id, relationship["client_id"], slug, notes, now),
            )
        except sqlite3.IntegrityError as exc:
            raise DuplicateRequest(relationship_id=relationship_id, permission_slug=slug) from exc
        record_event(
            conn,
            event_type="request_create",
            actor_type="professional",
            actor_id=caller.id,
            target_client_id=relationship["client_id"],
            target_relationship_id=relationship_id,
            target_professional_id=relationship["professional_id"],
            permission_slug=slug,
            new_state={"status": "pending"},
            metadata={"request_id": request_id},
        )
        return _fetch_request(conn, request_id)


def _respond(
    conn: sqlite3.Connection,
    *,
    caller: Caller,
    request_id: str,
) -> Tuple[Dict[str, Any], Dict[str, Any]]:
    request = _fetch_request(conn, request_id)
    if not request:
        raise RequestNotFound(request_id=request_id)
    relationship = require_relationship(conn, request["relationship_id"])
    if not is_party(caller, relationship):
        raise RequestNotFound(request_id=request_id)
    ensure_client_of(caller, relationship)
    if request["status"] != "pending":
        raise InvalidState(
            f"Request is already {request['status']}",
            request_id=request_id,
            status=request["status"],
        )
    return request, relationship


def approve_permission_request(
    *,
    caller: Caller,
    request_id: str,
    displace: bool = False,
) -> Dict[str, Any]:
    """Approve a pending request; the grant and the status flip commit together."""
    now = utc_now()
    with db_tx(settings.app_db_path) as conn:
        request, relationship = _respond(conn, caller=caller, request_id=request_id)
        definition = require_enabled_definition(conn, request["permission_slug"])
        grant = grant_in_tx(
            conn,
            relationship=relationship,
            definition=definition,
            granted_by="client",
            actor_type="client",
            actor_id=caller.id,
            displace=displace,
        )
        conn.execute(
            "UPDATE permission_requests SET status = 'approved', responded_at = ? WHERE id = ?",
            (now, request_id),
        )
        record_event(
            conn,
            event_type="request_approve",
            actor_type="client",
            actor_id=caller.id,
            target_client_id=relationship["client_id"],
            target_relationship_id=relationship["id"],
            target_professional_id=relationship["professional_id"],
            permission_slug=request["permission_slug"],
            previous_state={"status": "pending"},
            new_state={"status": "approved"},
            metadata={"request_id": request_id},
        )
        return {"request": _fetch_request(conn, request_id), "grant": grant}


def deny_permission_request(*, caller: Caller, request_id: str) -> Dict[str, Any]:
    now = utc_now()
    with db_tx(settings.app_db_path) as conn:
        request, relationship = _respond(conn, caller=caller, request_id=request_id)
        conn.execute(
            "UPDATE permission_requests SET status = 'denied', responded_at = ? WHERE id = ?",
            (now, request_id),
        )
        record_event(
            conn,
            event_type="request_deny",
            actor_type="client",
            actor_id=caller.id,
            target_client_id=relationship["client_id"],
            target_relationship_id=relationship["id"],
            target_professional_id=relationship["professional_id"],
            permission_slug=request["permission_slug"],
            previous_state={"status": "pending"},
            new_state={"status": "denied"},
            metadata={"request_id": request_id},
        )
        return _fetch_request(conn, request_id)


def list_permission_requests(*, caller: Caller, status: Optional[str] = "pending") -> List[Dict[str, Any]]:
    """Incoming requests for a client, outgoing requests for a professional."""
    sql = """
        SELECT pr.*, r.professional_id, r.role_type, pd.display_name, pd.category
        FROM permission_requests pr
        JOIN relationships r ON r.id = pr.relationship_id
        JOIN permission_definitions pd ON pd.slug = pr.permission_slug
        WHERE (pr.client_id = ? OR r.professional_id = ?)
    """
    params: list[Any] = [caller.id, caller.id]
    if status:
        sql += " AND pr.status = ?"
        params.append(status)
    sql += " ORDER BY pr.requested_at DESC"
    with db_conn(settings.app_db_path) as conn:
        rows = conn.execute(sql, tuple(params)).fetchall()
    return [dict(r) for r in rows]
