# -*- coding: utf-8 -*-
"""Invitations — DB storage helpers.

Only the HMAC of an invitation token is stored; the raw token is handed back once, at
creation. Expiry is lazy: a redemption past ``expires_at`` flips the invitation to
``expired`` and removes its pending relationship before reporting the error, and
``expire_stale_invitations`` does the same in bulk.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
import sqlite3
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple
from uuid import uuid4

from ..app_db import db_conn, db_tx, format_timestamp, utc_now
from ..audit.storage import record_event
from ..catalog.storage import fetch_definition, require_enabled_definition, role_default_permissions
from ..config import settings
from ..errors import (
    AlreadyAccepted,
    DuplicateRelationship,
    EmailMismatch,
    Forbidden,
    InvalidState,
    InvitationExpired,
    InvitationNotFound,
    RedundantPermission,
    TokenNotFound,
    VerificationRequired,
)
from ..exclusivity import find_exclusive_holder
from ..grants.storage import grant_in_tx, professional_is_verified, seed_pending_row
from ..identity import Caller, actor_type_for, require_professional, require_reason
from ..relationships.storage import fetch_relationship, find_open_relationship

logger = logging.getLogger(__name__)

_TOKEN_PREFIX = "plinv_"


def _hash_token(token: str) -> str:
    secret = (settings.invite_secret or settings.jwt_secret).encode("utf-8")
    return hmac.new(secret, token.encode("utf-8"), hashlib.sha256).hexdigest()


def _generate_token() -> Tuple[str, str]:
    token = f"{_TOKEN_PREFIX}{secrets.token_urlsafe(32)}"
    return token, _hash_token(token)


def build_invite_url(token: str) -> str:
    return f"{settings.invite_base_url}?token={token}"


def _public(row: Any) -> Dict[str, Any]:
    invitation = dict(row)
    invitation.pop("token_hash", None)
    return invitation


def _fetch_invitation(conn: sqlite3.Connection, invitation_id: str) -> Optional[Dict[str, Any]]:
    row = conn.execute("SELECT * FROM invitations WHERE id = ?", (invitation_id,)).fetchone()
    return dict(row) if row else None


def _fetch_by_token(conn: sqlite3.Connection, token: str) -> Dict[str, Any]:
    row = conn.execute(
        "SELECT * FROM invitations WHERE token_hash = ?",
        (_hash_token((token or "").strip()),),
    ).fetchone()
    if not row:
        raise TokenNotFound()
    return dict(row)


def _requested_permissions(conn: sqlite3.Connection, invitation_id: str) -> List[str]:
    rows = conn.execute(
        "SELECT permission_slug FROM invitation_permissions WHERE invitation_id = ? ORDER BY requested_at, permission_slug",
        (invitation_id,),
    ).fetchall()
    return [r["permission_slug"] for r in rows]


def _expire_in_tx(
    conn: sqlite3.Connection,
    invitation: Dict[str, Any],
    *,
    now: str,
    event_type: str = "invitation_expire",
    actor_type: str = "system",
    actor_id: Optional[str] = None,
    reason: Optional[str] = None,
) -> None:
    """Flip a pending invitation to expired and drop its pending relationship (ledger rows cascade)."""
    conn.execute(
        "UPDATE invitations SET status = 'expired' WHERE id = ? AND status = 'pending'",
        (invitation["id"],),
    )
    pending = conn.execute(
        "SELECT id FROM relationships WHERE invitation_id = ? AND status = 'pending'",
        (invitation["id"],),
    ).fetchone()
    conn.execute(
        "DELETE FROM relationships WHERE invitation_id = ? AND status = 'pending'",
        (invitation["id"],),
    )
    record_event(
        conn,
        event_type=event_type,
        actor_type=actor_type,
        actor_id=actor_id,
        target_relationship_id=pending["id"] if pending else None,
        target_professional_id=invitation["professional_id"],
        previous_state={"status": "pending"},
        new_state={"status": "expired"},
        reason=reason,
        metadata={"invitation_id": invitation["id"], "email": invitation["email"], "expires_at": invitation["expires_at"]},
    )


def _expire_stale_in_tx(
    conn: sqlite3.Connection,
    *,
    now: str,
    professional_id: Optional[str] = None,
    email: Optional[str] = None,
) -> int:
    sql = "SELECT * FROM invitations WHERE status = 'pending' AND expires_at < ?"
    params: list[Any] = [now]
    if professional_id:
        sql += " AND professional_id = ?"
        params.append(professional_id)
    if email:
        sql += " AND email = ?"
        params.append(email)
    stale = [dict(r) for r in conn.execute(sql, tuple(params)).fetchall()]
    for invitation in stale:
        _expire_in_tx(conn, invitation, now=now)
    return len(stale)


def create_invitation(
    *,
    caller: Caller,
    email: str,
    role_type: str,
    requested_permissions: Iterable[str] = (),
) -> Tuple[Dict[str, Any], str]:
    """Invite a client by e-mail. Returns the invitation (with ``invite_url``) and the raw token."""
    require_professional(caller)
    email_norm = email.lower().strip()
    if email_norm == caller.email:
        raise Forbidden("Professionals cannot invite themselves")
    bundle = role_default_permissions(role_type)
    requested = list(dict.fromkeys(s.strip() for s in requested_permissions if s and s.strip()))

    now_dt = datetime.now(timezone.utc)
    now = format_timestamp(now_dt)
    expires_at = format_timestamp(now_dt + timedelta(days=settings.invite_ttl_days))
    invitation_id = str(uuid4())
    relationship_id = str(uuid4())
    token, token_hash = _generate_token()

    with db_tx(settings.app_db_path) as conn:
        _expire_stale_in_tx(conn, now=now, professional_id=caller.id, email=email_norm)
        existing = find_open_relationship(conn, professional_id=caller.id, client_email=email_norm)
        if existing:
            raise DuplicateRelationship(relationship_id=existing["id"], status=existing["status"])

        verified = professional_is_verified(conn, caller.id)
        extras = []
        for slug in requested:
            definition = require_enabled_definition(conn, slug)
            if slug in bundle:
                raise RedundantPermission(
                    f"{slug} is already included for role {role_type}",
                    slug=slug,
                    role_type=role_type,
                )
            if definition["requires_verification"] and not verified:
                raise VerificationRequired(slug=slug)
            extras.append(definition)

        defaults = []
        for slug in bundle:
            definition = fetch_definition(conn, slug)
            if not definition or not definition["is_enabled"]:
                logger.warning("Skipping unavailable default permission %s for role %s", slug, role_type)
                continue
            defaults.append(definition)

        conn.execute(
            """
            INSERT INTO invitations (id, professional_id, email, role_type, token_hash, status, created_at, expires_at)
            VALUES (?, ?, ?, ?, ?, 'pending', ?, ?)
            """,
            (invitation_id, caller.id, email_norm, role_type, token_hash, now, expires_at),
        )
        for definition in extras:
            conn.execute(
                """
                INSERT INTO invitation_permissions (invitation_id, permission_slug, requested_by, requested_at)
                VALUES (?, ?, 'professional', ?)
                """,
                (invitation_id, definition["slug"], now),
            )
        try:
            conn.execute(
                """
                INSERT INTO relationships (id, professional_id, client_id, client_email, role_type, status, invitation_id, invited_at)
                VALUES (?, ?, NULL, ?, ?, 'pending', ?, ?)
                """,
                (relationship_id, caller.id, email_norm, role_type, invitation_id, now),
            )
        except sqlite3.IntegrityError as exc:
            raise DuplicateRelationship() from exc
        for definition in defaults + extras:
            seed_pending_row(conn, relationship_id=relationship_id, definition=definition)

        record_event(
            conn,
            event_type="invitation_create",
            actor_type="professional",
            actor_id=caller.id,
            target_relationship_id=relationship_id,
            target_professional_id=caller.id,
            new_state={"status": "pending"},
            metadata={
                "invitation_id": invitation_id,
                "email": email_norm,
                "role_type": role_type,
                "requested_permissions": [d["slug"] for d in extras],
            },
        )
        invitation = _public(_fetch_invitation(conn, invitation_id))

    invitation["requested_permissions"] = [d["slug"] for d in extras]
    invitation["relationship_id"] = relationship_id
    invitation["invite_url"] = build_invite_url(token)
    logger.info("Invitation %s created by %s for %s (%s)", invitation_id, caller.id, email_norm, role_type)
    return invitation, token


def redeem_invitation(
    *,
    caller: Caller,
    token: str,
    displace_exclusive: bool = False,
) -> Dict[str, Any]:
    """Accept an invitation: activate the relationship and grant its permissions atomically.

    The returned relationship carries ``granted_permissions``, ``skipped_permissions``
    (disabled or unverified since the invitation was issued) and
    ``displaced_relationship_ids``. An exclusive permission held by another professional
    fails the whole redemption with ``ExclusivityConflict`` unless ``displace_exclusive``.
    """
    now = utc_now()
    expired: Optional[Dict[str, Any]] = None
    with db_tx(settings.app_db_path) as conn:
        invitation = _fetch_by_token(conn, token)
        if invitation["status"] == "accepted":
            raise AlreadyAccepted(invitation_id=invitation["id"])
        if invitation["status"] == "expired":
            raise InvitationExpired(invitation_id=invitation["id"])
        if now > invitation["expires_at"]:
            _expire_in_tx(conn, invitation, now=now)
            expired = invitation
        else:
            result = _accept_in_tx(
                conn,
                caller=caller,
                invitation=invitation,
                now=now,
                displace_exclusive=displace_exclusive,
            )

    if expired is not None:
        logger.info("Invitation %s expired on redemption (expires_at=%s)", expired["id"], expired["expires_at"])
        raise InvitationExpired(invitation_id=expired["id"], expires_at=expired["expires_at"])
    logger.info(
        "Invitation %s accepted by %s; granted=%s skipped=%s",
        invitation["id"],
        caller.id,
        result["granted_permissions"],
        [s["slug"] for s in result["skipped_permissions"]],
    )
    return result


def _accept_in_tx(
    conn: sqlite3.Connection,
    *,
    caller: Caller,
    invitation: Dict[str, Any],
    now: str,
    displace_exclusive: bool,
) -> Dict[str, Any]:
    if caller.email.lower().strip() != invitation["email"].lower().strip():
        raise EmailMismatch(invitation_id=invitation["id"])
    if caller.id == invitation["professional_id"]:
        raise Forbidden("Professionals cannot accept their own invitations")
    row = conn.execute(
        "SELECT * FROM relationships WHERE invitation_id = ?",
        (invitation["id"],),
    ).fetchone()
    if not row or row["status"] != "pending":
        raise AlreadyAccepted(invitation_id=invitation["id"])
    relationship_id = row["id"]

    other = find_open_relationship(
        conn,
        professional_id=invitation["professional_id"],
        client_id=caller.id,
        client_email=caller.email,
        exclude_id=relationship_id,
    )
    if other:
        raise DuplicateRelationship(relationship_id=other["id"], status=other["status"])

    conn.execute(
        "UPDATE relationships SET status = 'active', client_id = ?, accepted_at = ? WHERE id = ?",
        (caller.id, now, relationship_id),
    )
    conn.execute(
        "UPDATE client_permissions SET client_id = ? WHERE relationship_id = ?",
        (caller.id, relationship_id),
    )
    conn.execute(
        "UPDATE invitations SET status = 'accepted', accepted_at = ? WHERE id = ?",
        (now, invitation["id"]),
    )
    relationship = fetch_relationship(conn, relationship_id)

    slugs = [
        r["permission_slug"]
        for r in conn.execute(
            """
            SELECT cp.permission_slug
            FROM client_permissions cp
            JOIN permission_definitions pd ON pd.slug = cp.permission_slug
            WHERE cp.relationship_id = ? AND cp.status = 'pending'
            ORDER BY pd.sort_order, cp.permission_slug
            """,
            (relationship_id,),
        ).fetchall()
    ]
    verified = professional_is_verified(conn, invitation["professional_id"])
    granted: List[str] = []
    skipped: List[Dict[str, str]] = []
    displaced: List[str] = []
    for slug in slugs:
        definition = fetch_definition(conn, slug)
        if not definition or not definition["is_enabled"]:
            skipped.append({"slug": slug, "reason": "disabled"})
            continue
        if definition["requires_verification"] and not verified:
            skipped.append({"slug": slug, "reason": "verification_required"})
            continue
        grant = grant_in_tx(
            conn,
            relationship=relationship,
            definition=definition,
            granted_by="client",
            actor_type="client",
            actor_id=caller.id,
            displace=displace_exclusive,
        )
        granted.append(slug)
        if grant.get("displaced_relationship_id"):
            displaced.append(grant["displaced_relationship_id"])
    for item in skipped:
        logger.warning(
            "Permission %s not granted on relationship %s: %s",
            item["slug"],
            relationship_id,
            item["reason"],
        )

    record_event(
        conn,
        event_type="invitation_accept",
        actor_type="client",
        actor_id=caller.id,
        target_client_id=caller.id,
        target_relationship_id=relationship_id,
        target_professional_id=invitation["professional_id"],
        previous_state={"status": "pending"},
        new_state={"status": "active"},
        metadata={
            "invitation_id": invitation["id"],
            "granted": granted,
            "skipped": skipped,
            "displaced_relationship_ids": displaced,
        },
    )
    result = fetch_relationship(conn, relationship_id)
    result["granted_permissions"] = granted
    result["skipped_permissions"] = skipped
    result["displaced_relationship_ids"] = displaced
    return result


def cancel_invitation(
    *,
    caller: Caller,
    invitation_id: str,
    reason: Optional[str] = None,
) -> Dict[str, Any]:
    reason_text = require_reason(reason) if caller.is_admin else reason
    now = utc_now()
    with db_tx(settings.app_db_path) as conn:
        invitation = _fetch_invitation(conn, invitation_id)
        if not invitation or (not caller.is_admin and invitation["professional_id"] != caller.id):
            raise InvitationNotFound(invitation_id=invitation_id)
        if invitation["status"] == "accepted":
            raise AlreadyAccepted(invitation_id=invitation_id)
        if invitation["status"] != "pending":
            raise InvalidState(f"Invitation is already {invitation['status']}", invitation_id=invitation_id)
        _expire_in_tx(
            conn,
            invitation,
            now=now,
            event_type="invitation_cancel",
            actor_type=actor_type_for(caller),
            actor_id=caller.id,
            reason=reason_text,
        )
        cancelled = _public(_fetch_invitation(conn, invitation_id))
    logger.info("Invitation %s cancelled by %s", invitation_id, caller.id)
    return cancelled


def get_invitation_details(*, caller: Caller, token: str) -> Dict[str, Any]:
    """Read-only preview for the accept screen, including exclusive-permission transfer warnings."""
    now = utc_now()
    with db_conn(settings.app_db_path) as conn:
        invitation = _fetch_by_token(conn, token)
        if invitation["status"] == "accepted":
            raise AlreadyAccepted(invitation_id=invitation["id"])
        if invitation["status"] == "expired" or now > invitation["expires_at"]:
            raise InvitationExpired(invitation_id=invitation["id"], expires_at=invitation["expires_at"])

        professional = conn.execute(
            "SELECT id, email, display_name, verified FROM users WHERE id = ?",
            (invitation["professional_id"],),
        ).fetchone()
        rows = conn.execute(
            """
            SELECT pd.*
            FROM client_permissions cp
            JOIN relationships r ON r.id = cp.relationship_id
            JOIN permission_definitions pd ON pd.slug = cp.permission_slug
            WHERE r.invitation_id = ? AND cp.status = 'pending'
            ORDER BY pd.sort_order, pd.slug
            """,
            (invitation["id"],),
        ).fetchall()
        permissions = [dict(r) for r in rows]

        transfers = []
        for definition in permissions:
            if not definition["is_exclusive"]:
                continue
            holder = find_exclusive_holder(caller.id, definition["slug"], conn=conn)
            if holder and holder["professional_id"] != invitation["professional_id"]:
                transfers.append(
                    {
                        "slug": definition["slug"],
                        "holder_relationship_id": holder["id"],
                        "holder_professional_id": holder["professional_id"],
                        "holder_role_type": holder["role_type"],
                    }
                )

    for definition in permissions:
        for key in ("is_exclusive", "is_enabled", "requires_verification"):
            definition[key] = bool(definition[key])
    return {
        "invitation": _public(invitation),
        "professional": {
            "id": professional["id"],
            "email": professional["email"],
            "display_name": professional["display_name"],
            "verified": bool(professional["verified"]),
        }
        if professional
        else None,
        "permissions": permissions,
        "requested_permissions": [
            slug for slug in (p["slug"] for p in permissions) if slug not in role_default_permissions(invitation["role_type"])
        ],
        "email_matches": caller.email.lower().strip() == invitation["email"],
        "exclusive_transfers": transfers,
    }


def list_invitations(*, caller: Caller, status: Optional[str] = None) -> List[Dict[str, Any]]:
    """A professional's invitations, newest first; admins see all of them."""
    if not caller.is_admin:
        require_professional(caller)
    sql = "SELECT * FROM invitations WHERE 1 = 1"
    params: list[Any] = []
    if not caller.is_admin:
        sql += " AND professional_id = ?"
        params.append(caller.id)
    if status:
        sql += " AND status = ?"
        params.append(status)
    sql += " ORDER BY created_at DESC"
    with db_conn(settings.app_db_path) as conn:
        rows = conn.execute(sql, tuple(params)).fetchall()
        items = []
        for r in rows:
            invitation = _public(r)
            invitation["requested_permissions"] = _requested_permissions(conn, invitation["id"])
            items.append(invitation)
    return items


def expire_stale_invitations(now: Optional[str] = None) -> int:
    """Janitor pass: expire every pending invitation past its TTL."""
    with db_tx(settings.app_db_path) as conn:
        count = _expire_stale_in_tx(conn, now=now or utc_now())
    if count:
        logger.info("Expired %d stale invitation(s)", count)
    return count
