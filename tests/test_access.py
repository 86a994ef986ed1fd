# -*- coding: utf-8 -*-

from __future__ import annotations

import unittest

from prolink.access.storage import accessible_clients, can_view, exclusive_holder_for_caller, has_permission
from prolink.catalog.storage import update_definition
from prolink.errors import Forbidden
from prolink.grants.storage import revoke_permission
from prolink.invitations.storage import redeem_invitation
from prolink.relationships.storage import end_relationship

from support import DatabaseTestCase


class TestAccessChecks(DatabaseTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.pro = self.make_professional("pro@example.com")
        self.client = self.make_user("client@example.com")

    def test_can_view_follows_grants(self) -> None:
        self.connect(self.pro, self.client)
        self.assertTrue(can_view(self.pro.id, self.client.id, "nutrition"))
        self.assertTrue(can_view(self.pro.id, self.client.id, "weight"))
        self.assertFalse(can_view(self.pro.id, self.client.id, "workouts"))
        self.assertFalse(can_view(self.pro.id, self.client.id, "photos"))

    def test_role_type_filter(self) -> None:
        self.connect(self.pro, self.client)
        self.assertTrue(can_view(self.pro.id, self.client.id, "nutrition", required_role_type="nutritionist"))
        self.assertFalse(can_view(self.pro.id, self.client.id, "nutrition", required_role_type="trainer"))

    def test_profile_is_visible_without_grant(self) -> None:
        relationship = self.connect(self.pro, self.client)
        revoke_permission(caller=self.client, relationship_id=relationship["id"], slug="view_profile")
        self.assertTrue(can_view(self.pro.id, self.client.id, "profile"))

    def test_write_grant_does_not_open_reads(self) -> None:
        relationship = self.connect(self.pro, self.client)
        revoke_permission(caller=self.client, relationship_id=relationship["id"], slug="view_nutrition")
        self.assertTrue(has_permission(self.pro.id, self.client.id, "set_nutrition_targets"))
        self.assertFalse(can_view(self.pro.id, self.client.id, "nutrition"))

    def test_pending_and_ended_relationships_grant_nothing(self) -> None:
        _, token = self.invite(self.pro, self.client.email)
        self.assertFalse(can_view(self.pro.id, self.client.id, "profile"))
        self.assertEqual(accessible_clients(self.pro.id), set())

        relationship = redeem_invitation(caller=self.client, token=token)
        self.assertEqual(accessible_clients(self.pro.id), {self.client.id})
        end_relationship(caller=self.client, relationship_id=relationship["id"])
        self.assertFalse(can_view(self.pro.id, self.client.id, "profile"))
        self.assertFalse(has_permission(self.pro.id, self.client.id, "view_nutrition"))
        self.assertEqual(accessible_clients(self.pro.id), set())

    def test_disabled_permission_stops_granting_access(self) -> None:
        self.connect(self.pro, self.client)
        admin = self.make_admin()
        update_definition(caller=admin, slug="view_weight", changes={"is_enabled": False}, reason="Weight tracking paused")
        self.assertFalse(can_view(self.pro.id, self.client.id, "weight"))
        self.assertFalse(has_permission(self.pro.id, self.client.id, "view_weight"))

    def test_accessible_clients(self) -> None:
        other = self.make_user("other@example.com")
        self.connect(self.pro, self.client)
        self.connect(self.pro, other, role_type="trainer")
        self.assertEqual(accessible_clients(self.pro.id), {self.client.id, other.id})
        self.assertEqual(accessible_clients(self.pro.id, required_role_type="trainer"), {other.id})

    def test_exclusive_holder_visibility(self) -> None:
        relationship = self.connect(self.pro, self.client)
        result = exclusive_holder_for_caller(caller=self.client, client_id=self.client.id, slug="set_nutrition_targets")
        self.assertEqual(result["holder"]["id"], relationship["id"])
        self.assertEqual(result["diagnostics"], [])

        # Professionals connected to the client may look too; strangers may not.
        self.assertIsNotNone(
            exclusive_holder_for_caller(caller=self.pro, client_id=self.client.id, slug="set_nutrition_targets")["holder"]
        )
        stranger = self.make_professional("stranger@example.com")
        with self.assertRaises(Forbidden):
            exclusive_holder_for_caller(caller=stranger, client_id=self.client.id, slug="set_nutrition_targets")


if __name__ == "__main__":
    unittest.main()
