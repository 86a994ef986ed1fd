# -*- coding: utf-8 -*-
"""App database (users/catalog/relationships/ledger) — SQLite helpers.

Reads go through ``db_conn``. Every mutation goes through ``db_tx``, which opens the
transaction with ``BEGIN IMMEDIATE`` so the write lock is held before the first read.
That lock is the serialization point for redemptions and exclusive grants.
"""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator

from .catalog.defaults import SEED_DEFINITIONS
from .config import settings


def format_timestamp(value: datetime) -> str:
    # Fixed-width microsecond timestamps sort lexically in chronological order.
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def utc_now() -> str:
    return format_timestamp(datetime.now(timezone.utc))


def connect(db_path: Path) -> sqlite3.Connection:
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(
        str(db_path),
        timeout=settings.db_timeout,
        check_same_thread=False,
        isolation_level=None,
    )
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON;")
    return conn


_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS users (
        id TEXT PRIMARY KEY,
        email TEXT NOT NULL UNIQUE,
        password_hash TEXT NOT NULL,
        role TEXT NOT NULL CHECK (role IN ('client', 'professional', 'admin')),
        display_name TEXT,
        verified INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS permission_definitions (
        slug TEXT PRIMARY KEY,
        display_name TEXT NOT NULL,
        description TEXT,
        category TEXT NOT NULL CHECK (category IN ('nutrition', 'workouts', 'weight', 'photos', 'checkins', 'fasting', 'profile')),
        permission_type TEXT NOT NULL CHECK (permission_type IN ('read', 'write')),
        is_exclusive INTEGER NOT NULL DEFAULT 0,
        is_enabled INTEGER NOT NULL DEFAULT 1,
        requires_verification INTEGER NOT NULL DEFAULT 0,
        sort_order INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS invitations (
        id TEXT PRIMARY KEY,
        professional_id TEXT NOT NULL,
        email TEXT NOT NULL,
        role_type TEXT NOT NULL CHECK (role_type IN ('nutritionist', 'trainer', 'coach')),
        token_hash TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'pending' CHECK (status IN ('pending', 'accepted', 'expired')),
        created_at TEXT NOT NULL,
        expires_at TEXT NOT NULL,
        accepted_at TEXT,
        FOREIGN KEY(professional_id) REFERENCES users(id) ON DELETE CASCADE
    );
    """,
    "CREATE UNIQUE INDEX IF NOT EXISTS idx_invitations_token_hash ON invitations(token_hash);",
    "CREATE INDEX IF NOT EXISTS idx_invitations_professional_status ON invitations(professional_id, status);",
    "CREATE INDEX IF NOT EXISTS idx_invitations_status_expires ON invitations(status, expires_at);",
    """
    CREATE TABLE IF NOT EXISTS invitation_permissions (
        invitation_id TEXT NOT NULL,
        permission_slug TEXT NOT NULL,
        requested_by TEXT NOT NULL DEFAULT 'professional' CHECK (requested_by IN ('professional', 'admin', 'system')),
        requested_at TEXT NOT NULL,
        PRIMARY KEY (invitation_id, permission_slug),
        FOREIGN KEY(invitation_id) REFERENCES invitations(id) ON DELETE CASCADE,
        FOREIGN KEY(permission_slug) REFERENCES permission_definitions(slug)
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS relationships (
        id TEXT PRIMARY KEY,
        professional_id TEXT NOT NULL,
        client_id TEXT,
        client_email TEXT NOT NULL,
        role_type TEXT NOT NULL CHECK (role_type IN ('nutritionist', 'trainer', 'coach')),
        status TEXT NOT NULL DEFAULT 'pending' CHECK (status IN ('pending', 'active', 'ended')),
        invitation_id TEXT,
        invited_at TEXT,
        accepted_at TEXT,
        ended_at TEXT,
        forced_by_admin TEXT,
        forced_reason TEXT,
        forced_at TEXT,
        FOREIGN KEY(professional_id) REFERENCES users(id) ON DELETE CASCADE,
        FOREIGN KEY(client_id) REFERENCES users(id) ON DELETE CASCADE,
        FOREIGN KEY(invitation_id) REFERENCES invitations(id) ON DELETE SET NULL,
        FOREIGN KEY(forced_by_admin) REFERENCES users(id)
    );
    """,
    # At most one non-ended relationship per (professional, client).
    """
    CREATE UNIQUE INDEX IF NOT EXISTS idx_relationships_open_pair_email
    ON relationships(professional_id, client_email) WHERE status != 'ended';
    """,
    """
    CREATE UNIQUE INDEX IF NOT EXISTS idx_relationships_open_pair_client
    ON relationships(professional_id, client_id) WHERE status != 'ended' AND client_id IS NOT NULL;
    """,
    "CREATE INDEX IF NOT EXISTS idx_relationships_client_status ON relationships(client_id, status);",
    "CREATE INDEX IF NOT EXISTS idx_relationships_professional_status ON relationships(professional_id, status);",
    "CREATE INDEX IF NOT EXISTS idx_relationships_invitation ON relationships(invitation_id);",
    """
    CREATE INDEX IF NOT EXISTS idx_relationships_forced
    ON relationships(forced_by_admin, forced_at) WHERE forced_by_admin IS NOT NULL;
    """,
    """
    CREATE TABLE IF NOT EXISTS client_permissions (
        id TEXT PRIMARY KEY,
        relationship_id TEXT NOT NULL,
        client_id TEXT,
        permission_slug TEXT NOT NULL,
        is_exclusive INTEGER NOT NULL DEFAULT 0,
        status TEXT NOT NULL DEFAULT 'pending' CHECK (status IN ('pending', 'granted', 'revoked')),
        granted_at TEXT,
        granted_by TEXT CHECK (granted_by IN ('client', 'admin', 'system')),
        revoked_at TEXT,
        UNIQUE (relationship_id, permission_slug),
        FOREIGN KEY(relationship_id) REFERENCES relationships(id) ON DELETE CASCADE,
        FOREIGN KEY(permission_slug) REFERENCES permission_definitions(slug)
    );
    """,
    "CREATE INDEX IF NOT EXISTS idx_client_permissions_client_slug ON client_permissions(client_id, permission_slug, status);",
    # Storage-level backstop for exclusivity: one granted exclusive row per (client, slug).
    """
    CREATE UNIQUE INDEX IF NOT EXISTS idx_client_permissions_exclusive_holder
    ON client_permissions(client_id, permission_slug) WHERE status = 'granted' AND is_exclusive = 1;
    """,
    """
    CREATE TABLE IF NOT EXISTS permission_requests (
        id TEXT PRIMARY KEY,
        relationship_id TEXT NOT NULL,
        client_id TEXT NOT NULL,
        permission_slug TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'pending' CHECK (status IN ('pending', 'approved', 'denied')),
        notes TEXT,
        requested_at TEXT NOT NULL,
        responded_at TEXT,
        FOREIGN KEY(relationship_id) REFERENCES relationships(id) ON DELETE CASCADE,
        FOREIGN KEY(permission_slug) REFERENCES permission_definitions(slug)
    );
    """,
    """
    CREATE UNIQUE INDEX IF NOT EXISTS idx_permission_requests_pending_unique
    ON permission_requests(relationship_id, permission_slug) WHERE status = 'pending';
    """,
    "CREATE INDEX IF NOT EXISTS idx_permission_requests_client_status ON permission_requests(client_id, status);",
    """
    CREATE TABLE IF NOT EXISTS permission_presets (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL UNIQUE,
        description TEXT,
        is_system INTEGER NOT NULL DEFAULT 0,
        is_active INTEGER NOT NULL DEFAULT 1,
        created_by TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        FOREIGN KEY(created_by) REFERENCES users(id) ON DELETE SET NULL
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS preset_permissions (
        preset_id TEXT NOT NULL,
        permission_slug TEXT NOT NULL,
        is_enabled INTEGER NOT NULL DEFAULT 1,
        created_at TEXT NOT NULL,
        PRIMARY KEY (preset_id, permission_slug),
        FOREIGN KEY(preset_id) REFERENCES permission_presets(id) ON DELETE CASCADE,
        FOREIGN KEY(permission_slug) REFERENCES permission_definitions(slug)
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS permission_audit_log (
        id TEXT PRIMARY KEY,
        event_type TEXT NOT NULL,
        actor_type TEXT NOT NULL CHECK (actor_type IN ('client', 'professional', 'admin', 'system')),
        actor_id TEXT,
        target_client_id TEXT,
        target_relationship_id TEXT,
        target_professional_id TEXT,
        permission_slug TEXT,
        previous_state TEXT,
        new_state TEXT,
        reason TEXT,
        metadata TEXT NOT NULL DEFAULT '{}',
        created_at TEXT NOT NULL
    );
    """,
    "CREATE INDEX IF NOT EXISTS idx_audit_log_created ON permission_audit_log(created_at DESC);",
    "CREATE INDEX IF NOT EXISTS idx_audit_log_client ON permission_audit_log(target_client_id);",
)


def init_app_db(db_path: Path) -> None:
    conn = connect(db_path)
    try:
        conn.execute("PRAGMA journal_mode = WAL;")
        cur = conn.cursor()
        cur.execute("BEGIN")
        for statement in _SCHEMA:
            cur.execute(statement)
        now = utc_now()
        for definition in SEED_DEFINITIONS:
            cur.execute(
                """
                INSERT OR IGNORE INTO permission_definitions (
                    slug, display_name, description, category, permission_type,
                    is_exclusive, is_enabled, requires_verification, sort_order, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, 1, 0, ?, ?)
                """,
                (
                    definition["slug"],
                    definition["display_name"],
                    definition["description"],
                    definition["category"],
                    definition["permission_type"],
                    int(definition["is_exclusive"]),
                    definition["sort_order"],
                    now,
                ),
            )
        cur.execute("COMMIT")
    finally:
        conn.close()


@contextmanager
def db_conn(db_path: Path) -> Iterator[sqlite3.Connection]:
    conn = connect(db_path)
    try:
        yield conn
    finally:
        conn.close()


@contextmanager
def db_tx(db_path: Path) -> Iterator[sqlite3.Connection]:
    """Single write transaction: commits on success, rolls back on any exception."""
    conn = connect(db_path)
    try:
        conn.execute("BEGIN IMMEDIATE")
        try:
            yield conn
        except BaseException:
            conn.execute("ROLLBACK")
            raise
        conn.execute("COMMIT")
    finally:
        conn.close()
