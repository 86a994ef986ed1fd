# -*- coding: utf-8 -*-
"""Shared fixtures: a throwaway app database per test and shortcuts for common setups."""

from __future__ import annotations

import shutil
import tempfile
import unittest
from pathlib import Path
from typing import Any, Dict, Iterable

from prolink.app_db import db_conn, db_tx, init_app_db
from prolink.auth.storage import create_user
from prolink.config import settings
from prolink.identity import Caller, caller_from_user
from prolink.invitations.storage import create_invitation, redeem_invitation

PAST = "2000-01-01T00:00:00.000000Z"


class DatabaseTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = Path(tempfile.mkdtemp(prefix="prolink-test-"))
        self._saved_db_path = settings.app_db_path
        settings.app_db_path = self._tmp / "prolink.db"
        init_app_db(settings.app_db_path)

    def tearDown(self) -> None:
        settings.app_db_path = self._saved_db_path
        shutil.rmtree(self._tmp, ignore_errors=True)

    # ---- users -----------------------------------------------------------------

    def make_user(self, email: str, *, role: str = "client", verified: bool = False) -> Caller:
        user = create_user(email=email, password_hash="not-a-real-hash", role=role)
        if verified:
            self.execute("UPDATE users SET verified = 1 WHERE id = ?", (user["id"],))
            user["verified"] = 1
        return caller_from_user(user)

    def make_professional(self, email: str, *, verified: bool = False) -> Caller:
        return self.make_user(email, role="professional", verified=verified)

    def make_admin(self, email: str = "admin@example.com") -> Caller:
        return self.make_user(email, role="admin")

    # ---- relationships ---------------------------------------------------------

    def invite(
        self,
        professional: Caller,
        client_email: str,
        role_type: str = "nutritionist",
        requested: Iterable[str] = (),
    ) -> tuple[Dict[str, Any], str]:
        return create_invitation(
            caller=professional,
            email=client_email,
            role_type=role_type,
            requested_permissions=requested,
        )

    def connect(
        self,
        professional: Caller,
        client: Caller,
        role_type: str = "nutritionist",
        requested: Iterable[str] = (),
        displace: bool = False,
    ) -> Dict[str, Any]:
        _, token = self.invite(professional, client.email, role_type, requested)
        return redeem_invitation(caller=client, token=token, displace_exclusive=displace)

    # ---- raw SQL ---------------------------------------------------------------

    def execute(self, sql: str, params: tuple = ()) -> None:
        with db_tx(settings.app_db_path) as conn:
            conn.execute(sql, params)

    def query(self, sql: str, params: tuple = ()) -> list[Dict[str, Any]]:
        with db_conn(settings.app_db_path) as conn:
            return [dict(r) for r in conn.execute(sql, params).fetchall()]

    def ledger_status(self, relationship_id: str, slug: str) -> Any:
        rows = self.query(
            "SELECT status FROM client_permissions WHERE relationship_id = ? AND permission_slug = ?",
            (relationship_id, slug),
        )
        return rows[0]["status"] if rows else None

    def audit_events(self, event_type: str) -> list[Dict[str, Any]]:
        return self.query("SELECT * FROM permission_audit_log WHERE event_type = ? ORDER BY created_at", (event_type,))
