# -*- coding: utf-8 -*-

from __future__ import annotations

import unittest

from prolink.app_db import init_app_db
from prolink.catalog.defaults import ROLE_DEFAULT_PERMISSIONS, SEED_DEFINITIONS
from prolink.catalog.storage import (
    create_definition,
    find_exclusivity_conflicts,
    get_definition,
    list_definitions,
    require_definition,
    role_default_permissions,
    set_definition_exclusivity,
    update_definition,
)
from prolink.config import settings
from prolink.errors import (
    Conflict,
    ExclusivityConflict,
    Forbidden,
    InvalidDefinition,
    ReasonRequired,
    UnknownPermission,
    UnknownRole,
)
from prolink.exclusivity import find_exclusive_holder
from prolink.grants.storage import grant_permission, revoke_permission

from support import DatabaseTestCase


class TestCatalog(DatabaseTestCase):
    def test_seed_is_idempotent(self) -> None:
        init_app_db(settings.app_db_path)
        rows = list_definitions()
        self.assertEqual(len(rows), len(SEED_DEFINITIONS))
        exclusive = {r["slug"] for r in rows if r["is_exclusive"]}
        self.assertEqual(
            exclusive,
            {"set_nutrition_targets", "set_weight_targets", "assign_programmes", "assign_checkins", "set_fasting_schedule"},
        )
        self.assertTrue(all(r["permission_type"] == "write" for r in rows if r["is_exclusive"]))

    def test_role_bundles_only_reference_catalog_slugs(self) -> None:
        slugs = {d["slug"] for d in SEED_DEFINITIONS}
        for role_type, bundle in ROLE_DEFAULT_PERMISSIONS.items():
            self.assertTrue(set(bundle) <= slugs, role_type)
        self.assertIn("set_nutrition_targets", role_default_permissions("nutritionist"))
        with self.assertRaises(UnknownRole):
            role_default_permissions("physio")

    def test_disabled_definitions_hidden_by_default(self) -> None:
        admin = self.make_admin()
        update_definition(caller=admin, slug="view_fasting", changes={"is_enabled": False}, reason="Feature retired for now")
        self.assertNotIn("view_fasting", {r["slug"] for r in list_definitions()})
        self.assertIn("view_fasting", {r["slug"] for r in list_definitions(include_disabled=True)})
        self.assertFalse(get_definition("view_fasting")["is_enabled"])

    def test_create_definition_is_admin_only_and_audited(self) -> None:
        admin = self.make_admin()
        pro = self.make_professional("pro@example.com")
        with self.assertRaises(Forbidden):
            create_definition(
                caller=pro,
                slug="view_sleep",
                display_name="View sleep",
                category="checkins",
                permission_type="read",
                reason="Adding sleep tracking",
            )
        with self.assertRaises(ReasonRequired):
            create_definition(
                caller=admin,
                slug="view_sleep",
                display_name="View sleep",
                category="checkins",
                permission_type="read",
                reason="short",
            )

        row = create_definition(
            caller=admin,
            slug="view_sleep",
            display_name="View sleep",
            category="checkins",
            permission_type="read",
            reason="Adding sleep tracking",
        )
        self.assertEqual(row["slug"], "view_sleep")
        self.assertTrue(row["is_enabled"])
        self.assertEqual(require_definition("view_sleep")["category"], "checkins")

        with self.assertRaises(Conflict):
            create_definition(
                caller=admin,
                slug="view_sleep",
                display_name="View sleep",
                category="checkins",
                permission_type="read",
                reason="Adding sleep tracking",
            )

        events = self.audit_events("policy_change")
        self.assertEqual(len(events), 1)
        self.assertEqual(events[0]["actor_id"], admin.id)
        self.assertEqual(events[0]["reason"], "Adding sleep tracking")

    def test_update_ignores_exclusivity_and_category(self) -> None:
        admin = self.make_admin()
        row = update_definition(
            caller=admin,
            slug="set_nutrition_targets",
            changes={"is_exclusive": False, "category": "weight", "display_name": "Set macro targets"},
            reason="Rename for the new dashboard",
        )
        self.assertTrue(row["is_exclusive"])
        self.assertEqual(row["category"], "nutrition")
        self.assertEqual(row["display_name"], "Set macro targets")

    def test_create_rejects_unknown_category_and_type(self) -> None:
        admin = self.make_admin()
        with self.assertRaises(InvalidDefinition) as ctx:
            create_definition(
                caller=admin,
                slug="view_sleep",
                display_name="View sleep",
                category="sleep",
                permission_type="read",
                reason="Adding sleep tracking",
            )
        self.assertEqual(ctx.exception.code, "invalid_definition")
        self.assertEqual(ctx.exception.status_code, 422)
        self.assertEqual(ctx.exception.context, {"category": "sleep"})

        with self.assertRaises(InvalidDefinition):
            create_definition(
                caller=admin,
                slug="view_sleep",
                display_name="View sleep",
                category="checkins",
                permission_type="delete",
                reason="Adding sleep tracking",
            )
        self.assertIsNone(get_definition("view_sleep"))

    def test_unknown_definition(self) -> None:
        admin = self.make_admin()
        with self.assertRaises(UnknownPermission):
            require_definition("does_not_exist")
        with self.assertRaises(UnknownPermission):
            update_definition(caller=admin, slug="does_not_exist", changes={"sort_order": 3}, reason="Reordering the list")


class TestExclusivityToggle(DatabaseTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.admin = self.make_admin()
        self.client = self.make_user("client@example.com")
        self.nutritionist = self.make_professional("nutritionist@example.com")
        self.trainer = self.make_professional("trainer@example.com")
        self.first = self.connect(self.nutritionist, self.client)
        self.second = self.connect(self.trainer, self.client, role_type="trainer")

    def test_making_shared_permission_exclusive_requires_single_holders(self) -> None:
        # Both bundles include view_weight.
        conflicts = find_exclusivity_conflicts(caller=self.admin, slug="view_weight")
        self.assertEqual(len(conflicts), 1)
        self.assertEqual(conflicts[0]["client_id"], self.client.id)
        self.assertEqual(conflicts[0]["grant_count"], 2)
        self.assertEqual(set(conflicts[0]["professional_ids"]), {self.nutritionist.id, self.trainer.id})

        with self.assertRaises(ExclusivityConflict) as ctx:
            set_definition_exclusivity(caller=self.admin, slug="view_weight", is_exclusive=True, reason="Only one weigh-in owner")
        self.assertEqual(ctx.exception.context["conflict_count"], 1)
        self.assertFalse(get_definition("view_weight")["is_exclusive"])
        self.assertEqual(self.audit_events("policy_change"), [])

        revoke_permission(caller=self.client, relationship_id=self.second["id"], slug="view_weight")
        self.assertEqual(find_exclusivity_conflicts(caller=self.admin, slug="view_weight"), [])
        row = set_definition_exclusivity(caller=self.admin, slug="view_weight", is_exclusive=True, reason="Only one weigh-in owner")
        self.assertTrue(row["changed"])
        self.assertTrue(row["is_exclusive"])
        self.assertEqual(row["ledger_rows"], 2)

        flags = self.query("SELECT DISTINCT is_exclusive FROM client_permissions WHERE permission_slug = 'view_weight'")
        self.assertEqual(flags, [{"is_exclusive": 1}])
        self.assertEqual(find_exclusive_holder(self.client.id, "view_weight")["id"], self.first["id"])
        with self.assertRaises(ExclusivityConflict):
            grant_permission(caller=self.client, relationship_id=self.second["id"], slug="view_weight")

        event = self.audit_events("policy_change")[0]
        self.assertEqual(event["actor_id"], self.admin.id)
        self.assertIn("set_exclusive", event["metadata"])

    def test_making_exclusive_permission_shared(self) -> None:
        row = set_definition_exclusivity(
            caller=self.admin, slug="set_nutrition_targets", is_exclusive=False, reason="Co-managed nutrition plans"
        )
        self.assertFalse(row["is_exclusive"])
        self.assertIsNone(find_exclusive_holder(self.client.id, "set_nutrition_targets"))

        grant = grant_permission(caller=self.client, relationship_id=self.second["id"], slug="set_nutrition_targets")
        self.assertIsNone(grant["displaced_relationship_id"])
        self.assertEqual(self.ledger_status(self.first["id"], "set_nutrition_targets"), "granted")
        self.assertEqual(self.ledger_status(self.second["id"], "set_nutrition_targets"), "granted")

        again = set_definition_exclusivity(
            caller=self.admin, slug="set_nutrition_targets", is_exclusive=False, reason="Co-managed nutrition plans"
        )
        self.assertFalse(again["changed"])
        self.assertEqual(len(self.audit_events("policy_change")), 1)

    def test_toggle_is_admin_only(self) -> None:
        with self.assertRaises(Forbidden):
            set_definition_exclusivity(caller=self.client, slug="view_weight", is_exclusive=True, reason="Only one weigh-in owner")
        with self.assertRaises(Forbidden):
            find_exclusivity_conflicts(caller=self.nutritionist, slug="view_weight")
        with self.assertRaises(ReasonRequired):
            set_definition_exclusivity(caller=self.admin, slug="view_weight", is_exclusive=True, reason="")
        with self.assertRaises(UnknownPermission):
            set_definition_exclusivity(caller=self.admin, slug="read_minds", is_exclusive=True, reason="Only one weigh-in owner")


if __name__ == "__main__":
    unittest.main()
