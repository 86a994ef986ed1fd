# -*- coding: utf-8 -*-

from __future__ import annotations

import json
import unittest

from prolink.access.storage import accessible_clients, can_view, has_permission
from prolink.admin.storage import force_connect, force_disconnect
from prolink.errors import (
    DuplicateRelationship,
    Forbidden,
    InvalidState,
    ReasonRequired,
    RelationshipNotFound,
    UnknownRole,
    UserNotFound,
)
from prolink.grants.storage import request_permission
from prolink.presets.storage import upsert_permission_preset

from support import DatabaseTestCase

REASON = "Support ticket 4411 merge"


class TestForceConnect(DatabaseTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.admin = self.make_admin()
        self.client = self.make_user("client@example.com")
        self.pro = self.make_professional("pro@example.com")

    def connect_by_admin(self, **kwargs):
        kwargs.setdefault("client_id", self.client.id)
        kwargs.setdefault("professional_id", self.pro.id)
        kwargs.setdefault("role_type", "trainer")
        kwargs.setdefault("reason", REASON)
        return force_connect(caller=self.admin, **kwargs)

    def test_creates_active_relationship_without_grants(self) -> None:
        result = self.connect_by_admin()
        relationship = result["relationship"]
        self.assertEqual(result["action"], "created")
        self.assertIsNone(result["preset_result"])
        self.assertEqual(relationship["status"], "active")
        self.assertEqual(relationship["client_email"], "client@example.com")
        self.assertEqual(relationship["forced_by_admin"], self.admin.id)
        self.assertEqual(relationship["forced_reason"], REASON)
        self.assertIsNotNone(relationship["forced_at"])

        self.assertEqual(accessible_clients(self.pro.id), {self.client.id})
        self.assertTrue(can_view(self.pro.id, self.client.id, "profile"))
        self.assertFalse(has_permission(self.pro.id, self.client.id, "assign_programmes"))

        event = self.audit_events("admin_override")[0]
        self.assertEqual(event["actor_id"], self.admin.id)
        self.assertEqual(json.loads(event["new_state"])["action"], "force_connect")

        # The pair is connected now; a fresh invitation is a duplicate.
        with self.assertRaises(DuplicateRelationship):
            self.invite(self.pro, self.client.email)

    def test_applies_preset_in_the_same_transaction(self) -> None:
        preset = upsert_permission_preset(
            caller=self.admin,
            name="Training basics",
            permissions=[{"slug": "view_workouts"}, {"slug": "assign_programmes"}],
            reason=REASON,
        )
        result = self.connect_by_admin(preset_id=preset["id"])
        self.assertEqual(result["preset_result"]["success_count"], 2)
        self.assertTrue(has_permission(self.pro.id, self.client.id, "assign_programmes"))
        self.assertTrue(json.loads(self.audit_events("admin_override")[0]["new_state"])["preset_applied"])

    def test_existing_active_relationship_is_restamped(self) -> None:
        relationship = self.connect(self.pro, self.client)
        result = self.connect_by_admin()
        self.assertEqual(result["action"], "updated")
        self.assertEqual(result["relationship"]["id"], relationship["id"])
        self.assertEqual(result["relationship"]["role_type"], "nutritionist")
        self.assertEqual(result["relationship"]["forced_by_admin"], self.admin.id)
        self.assertEqual(len(self.query("SELECT id FROM relationships")), 1)

    def test_outstanding_invitation_blocks_force_connect(self) -> None:
        self.invite(self.pro, self.client.email)
        with self.assertRaises(InvalidState):
            self.connect_by_admin()
        self.assertEqual(self.audit_events("admin_override"), [])

    def test_validation(self) -> None:
        with self.assertRaises(Forbidden):
            force_connect(
                caller=self.pro,
                client_id=self.client.id,
                professional_id=self.pro.id,
                role_type="trainer",
                reason=REASON,
            )
        with self.assertRaises(ReasonRequired):
            self.connect_by_admin(reason="because")
        with self.assertRaises(UnknownRole):
            self.connect_by_admin(role_type="physio")
        with self.assertRaises(UserNotFound):
            self.connect_by_admin(client_id=self.pro.id)
        with self.assertRaises(UserNotFound):
            self.connect_by_admin(professional_id=self.client.id)
        self.assertEqual(self.query("SELECT id FROM relationships"), [])


class TestForceDisconnect(DatabaseTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.admin = self.make_admin()
        self.client = self.make_user("client@example.com")
        self.pro = self.make_professional("pro@example.com")
        self.relationship = self.connect(self.pro, self.client)

    def test_ends_relationship_and_revokes_grants(self) -> None:
        pending = request_permission(caller=self.pro, relationship_id=self.relationship["id"], slug="view_workouts")
        result = force_disconnect(caller=self.admin, relationship_id=self.relationship["id"], reason=REASON)

        ended = result["relationship"]
        self.assertEqual(ended["status"], "ended")
        self.assertEqual(ended["forced_by_admin"], self.admin.id)
        self.assertEqual(ended["forced_reason"], REASON)
        self.assertEqual(
            set(result["revoked_permissions"]),
            {"view_nutrition", "view_weight", "view_profile", "set_nutrition_targets"},
        )
        self.assertEqual(self.ledger_status(self.relationship["id"], "set_nutrition_targets"), "revoked")
        request_row = self.query("SELECT status FROM permission_requests WHERE id = ?", (pending["id"],))[0]
        self.assertEqual(request_row["status"], "denied")
        self.assertEqual(accessible_clients(self.pro.id), set())

        event = self.audit_events("admin_override")[0]
        self.assertEqual(json.loads(event["previous_state"])["permissions_revoked"], 4)
        self.assertEqual(self.audit_events("relationship_end"), [])

        with self.assertRaises(InvalidState):
            force_disconnect(caller=self.admin, relationship_id=self.relationship["id"], reason=REASON)

    def test_reconnect_after_disconnect_creates_new_relationship(self) -> None:
        force_disconnect(caller=self.admin, relationship_id=self.relationship["id"], reason=REASON)
        result = force_connect(
            caller=self.admin,
            client_id=self.client.id,
            professional_id=self.pro.id,
            role_type="nutritionist",
            reason=REASON,
        )
        self.assertEqual(result["action"], "created")
        self.assertNotEqual(result["relationship"]["id"], self.relationship["id"])

    def test_admin_only(self) -> None:
        with self.assertRaises(Forbidden):
            force_disconnect(caller=self.client, relationship_id=self.relationship["id"], reason=REASON)
        with self.assertRaises(ReasonRequired):
            force_disconnect(caller=self.admin, relationship_id=self.relationship["id"], reason=None)
        with self.assertRaises(RelationshipNotFound):
            force_disconnect(caller=self.admin, relationship_id="missing", reason=REASON)


if __name__ == "__main__":
    unittest.main()
