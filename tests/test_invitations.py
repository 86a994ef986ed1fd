# -*- coding: utf-8 -*-

from __future__ import annotations

import threading
import unittest

from prolink.catalog.storage import update_definition
from prolink.errors import (
    AlreadyAccepted,
    DuplicateRelationship,
    EmailMismatch,
    ExclusivityConflict,
    Forbidden,
    InvalidState,
    InvitationExpired,
    InvitationNotFound,
    PermissionDisabled,
    RedundantPermission,
    TokenNotFound,
    UnknownPermission,
    UnknownRole,
    VerificationRequired,
)
from prolink.invitations.storage import (
    cancel_invitation,
    expire_stale_invitations,
    get_invitation_details,
    list_invitations,
    redeem_invitation,
)

from support import PAST, DatabaseTestCase


class TestCreateInvitation(DatabaseTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.pro = self.make_professional("pro@example.com")

    def test_create_stores_only_token_hash(self) -> None:
        invitation, token = self.invite(self.pro, "Client@Example.com", requested=["view_workouts"])
        self.assertTrue(token.startswith("plinv_"))
        self.assertIn(f"token={token}", invitation["invite_url"])
        self.assertEqual(invitation["email"], "client@example.com")
        self.assertEqual(invitation["status"], "pending")
        self.assertEqual(invitation["requested_permissions"], ["view_workouts"])
        self.assertNotIn("token_hash", invitation)

        stored = self.query("SELECT token_hash FROM invitations WHERE id = ?", (invitation["id"],))[0]
        self.assertNotEqual(stored["token_hash"], token)
        self.assertNotIn(token, stored["token_hash"])

        relationship = self.query("SELECT * FROM relationships WHERE invitation_id = ?", (invitation["id"],))[0]
        self.assertEqual(relationship["status"], "pending")
        self.assertIsNone(relationship["client_id"])
        ledger = self.query(
            "SELECT permission_slug, status FROM client_permissions WHERE relationship_id = ?",
            (relationship["id"],),
        )
        self.assertEqual(
            {r["permission_slug"] for r in ledger},
            {"view_nutrition", "view_weight", "view_profile", "set_nutrition_targets", "view_workouts"},
        )
        self.assertTrue(all(r["status"] == "pending" for r in ledger))

    def test_only_professionals_invite(self) -> None:
        client = self.make_user("someone@example.com")
        with self.assertRaises(Forbidden):
            self.invite(client, "other@example.com")

    def test_second_invitation_for_same_email_is_rejected(self) -> None:
        self.invite(self.pro, "client@example.com")
        with self.assertRaises(DuplicateRelationship):
            self.invite(self.pro, "CLIENT@example.com", role_type="coach")
        # Another professional may still invite the same client.
        other = self.make_professional("other-pro@example.com")
        self.invite(other, "client@example.com")

    def test_invitation_for_already_connected_client_is_rejected(self) -> None:
        client = self.make_user("client@example.com")
        self.connect(self.pro, client)
        with self.assertRaises(DuplicateRelationship):
            self.invite(self.pro, "client@example.com", role_type="trainer")

    def test_requested_permission_validation(self) -> None:
        with self.assertRaises(UnknownRole):
            self.invite(self.pro, "a@example.com", role_type="physio")
        with self.assertRaises(UnknownPermission):
            self.invite(self.pro, "a@example.com", requested=["read_minds"])
        with self.assertRaises(RedundantPermission):
            self.invite(self.pro, "a@example.com", requested=["view_nutrition"])

        admin = self.make_admin()
        update_definition(caller=admin, slug="view_fasting", changes={"is_enabled": False}, reason="Feature retired for now")
        with self.assertRaises(PermissionDisabled):
            self.invite(self.pro, "a@example.com", requested=["view_fasting"])

        # Nothing was written by the failed attempts.
        self.assertEqual(self.query("SELECT COUNT(*) AS n FROM invitations")[0]["n"], 0)
        self.assertEqual(self.query("SELECT COUNT(*) AS n FROM relationships")[0]["n"], 0)

    def test_verification_required_for_flagged_permission(self) -> None:
        admin = self.make_admin()
        update_definition(
            caller=admin,
            slug="view_progress_photos",
            changes={"requires_verification": True},
            reason="Photos need a vetted professional",
        )
        with self.assertRaises(VerificationRequired):
            self.invite(self.pro, "a@example.com", requested=["view_progress_photos"])

        verified = self.make_professional("verified@example.com", verified=True)
        invitation, _ = self.invite(verified, "a@example.com", requested=["view_progress_photos"])
        self.assertEqual(invitation["requested_permissions"], ["view_progress_photos"])

    def test_list_invitations(self) -> None:
        self.invite(self.pro, "a@example.com")
        self.invite(self.pro, "b@example.com", role_type="trainer")
        other = self.make_professional("other-pro@example.com")
        self.invite(other, "c@example.com")

        mine = list_invitations(caller=self.pro)
        self.assertEqual({i["email"] for i in mine}, {"a@example.com", "b@example.com"})
        self.assertEqual(len(list_invitations(caller=self.make_admin())), 3)
        self.assertEqual(list_invitations(caller=self.pro, status="accepted"), [])


class TestRedeemInvitation(DatabaseTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.pro = self.make_professional("pro@example.com")
        self.client = self.make_user("client@example.com")

    def test_redeem_activates_and_grants_bundle(self) -> None:
        invitation, token = self.invite(self.pro, "CLIENT@example.com", requested=["view_workouts"])
        relationship = redeem_invitation(caller=self.client, token=token)

        self.assertEqual(relationship["status"], "active")
        self.assertEqual(relationship["client_id"], self.client.id)
        self.assertIsNotNone(relationship["accepted_at"])
        self.assertEqual(
            set(relationship["granted_permissions"]),
            {"view_nutrition", "view_weight", "view_profile", "set_nutrition_targets", "view_workouts"},
        )
        self.assertEqual(relationship["skipped_permissions"], [])
        rows = self.query("SELECT * FROM client_permissions WHERE relationship_id = ?", (relationship["id"],))
        self.assertTrue(all(r["status"] == "granted" and r["granted_by"] == "client" for r in rows))
        self.assertTrue(all(r["client_id"] == self.client.id for r in rows))

        stored = self.query("SELECT status, accepted_at FROM invitations WHERE id = ?", (invitation["id"],))[0]
        self.assertEqual(stored["status"], "accepted")
        self.assertIsNotNone(stored["accepted_at"])

    def test_token_is_single_use(self) -> None:
        _, token = self.invite(self.pro, self.client.email)
        redeem_invitation(caller=self.client, token=token)
        with self.assertRaises(AlreadyAccepted):
            redeem_invitation(caller=self.client, token=token)

    def test_unknown_token(self) -> None:
        with self.assertRaises(TokenNotFound):
            redeem_invitation(caller=self.client, token="plinv_nope")

    def test_email_mismatch(self) -> None:
        _, token = self.invite(self.pro, self.client.email)
        stranger = self.make_user("stranger@example.com")
        with self.assertRaises(EmailMismatch):
            redeem_invitation(caller=stranger, token=token)
        # The rightful client can still accept afterwards.
        self.assertEqual(redeem_invitation(caller=self.client, token=token)["status"], "active")

    def test_concurrent_redemption_accepts_exactly_once(self) -> None:
        _, token = self.invite(self.pro, self.client.email)
        barrier = threading.Barrier(5)
        outcomes: list = []
        lock = threading.Lock()

        def attempt() -> None:
            barrier.wait()
            try:
                redeem_invitation(caller=self.client, token=token)
                result = "ok"
            except AlreadyAccepted:
                result = "already_accepted"
            with lock:
                outcomes.append(result)

        threads = [threading.Thread(target=attempt) for _ in range(5)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        self.assertEqual(outcomes.count("ok"), 1)
        self.assertEqual(outcomes.count("already_accepted"), 4)
        self.assertEqual(
            self.query("SELECT COUNT(*) AS n FROM relationships WHERE status = 'active'")[0]["n"],
            1,
        )
        self.assertEqual(len(self.audit_events("invitation_accept")), 1)

    def test_expired_invitation_is_flipped_and_cleaned_up(self) -> None:
        invitation, token = self.invite(self.pro, self.client.email)
        self.execute("UPDATE invitations SET expires_at = ? WHERE id = ?", (PAST, invitation["id"]))

        with self.assertRaises(InvitationExpired):
            redeem_invitation(caller=self.client, token=token)

        stored = self.query("SELECT status FROM invitations WHERE id = ?", (invitation["id"],))[0]
        self.assertEqual(stored["status"], "expired")
        self.assertEqual(self.query("SELECT COUNT(*) AS n FROM relationships")[0]["n"], 0)
        self.assertEqual(self.query("SELECT COUNT(*) AS n FROM client_permissions")[0]["n"], 0)

        # Still expired on the next attempt, and the professional can invite again.
        with self.assertRaises(InvitationExpired):
            redeem_invitation(caller=self.client, token=token)
        _, fresh = self.invite(self.pro, self.client.email)
        self.assertEqual(redeem_invitation(caller=self.client, token=fresh)["status"], "active")

    def test_new_invitation_replaces_stale_one(self) -> None:
        invitation, _ = self.invite(self.pro, self.client.email)
        self.execute("UPDATE invitations SET expires_at = ? WHERE id = ?", (PAST, invitation["id"]))
        self.invite(self.pro, self.client.email, role_type="coach")
        stored = self.query("SELECT status FROM invitations WHERE id = ?", (invitation["id"],))[0]
        self.assertEqual(stored["status"], "expired")

    def test_permissions_disabled_after_issue_are_skipped(self) -> None:
        _, token = self.invite(self.pro, self.client.email, role_type="coach")
        admin = self.make_admin()
        update_definition(caller=admin, slug="view_fasting", changes={"is_enabled": False}, reason="Feature retired for now")

        relationship = redeem_invitation(caller=self.client, token=token)
        self.assertEqual(relationship["skipped_permissions"], [{"slug": "view_fasting", "reason": "disabled"}])
        self.assertNotIn("view_fasting", relationship["granted_permissions"])
        self.assertNotEqual(self.ledger_status(relationship["id"], "view_fasting"), "granted")

    def test_exclusive_conflict_rolls_back_whole_redemption(self) -> None:
        holder = self.connect(self.pro, self.client)
        coach = self.make_professional("coach@example.com")
        invitation, token = self.invite(coach, self.client.email, role_type="coach")

        with self.assertRaises(ExclusivityConflict) as ctx:
            redeem_invitation(caller=self.client, token=token)
        self.assertEqual(ctx.exception.context["holder_relationship_id"], holder["id"])

        stored = self.query("SELECT status FROM invitations WHERE id = ?", (invitation["id"],))[0]
        self.assertEqual(stored["status"], "pending")
        pending = self.query("SELECT * FROM relationships WHERE invitation_id = ?", (invitation["id"],))[0]
        self.assertEqual(pending["status"], "pending")
        self.assertIsNone(pending["client_id"])
        self.assertEqual(self.ledger_status(holder["id"], "set_nutrition_targets"), "granted")


class TestInvitationLifecycle(DatabaseTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.pro = self.make_professional("pro@example.com")
        self.client = self.make_user("client@example.com")

    def test_cancel_invitation(self) -> None:
        invitation, token = self.invite(self.pro, self.client.email)
        other = self.make_professional("other@example.com")
        with self.assertRaises(InvitationNotFound):
            cancel_invitation(caller=other, invitation_id=invitation["id"])

        cancelled = cancel_invitation(caller=self.pro, invitation_id=invitation["id"])
        self.assertEqual(cancelled["status"], "expired")
        self.assertEqual(self.query("SELECT COUNT(*) AS n FROM relationships")[0]["n"], 0)
        self.assertEqual(len(self.audit_events("invitation_cancel")), 1)
        with self.assertRaises(InvitationExpired):
            redeem_invitation(caller=self.client, token=token)
        with self.assertRaises(InvalidState):
            cancel_invitation(caller=self.pro, invitation_id=invitation["id"])

    def test_cannot_cancel_accepted_invitation(self) -> None:
        invitation, token = self.invite(self.pro, self.client.email)
        redeem_invitation(caller=self.client, token=token)
        with self.assertRaises(AlreadyAccepted):
            cancel_invitation(caller=self.pro, invitation_id=invitation["id"])

    def test_janitor_expires_only_stale_invitations(self) -> None:
        stale, _ = self.invite(self.pro, "stale@example.com")
        fresh, _ = self.invite(self.pro, "fresh@example.com")
        self.execute("UPDATE invitations SET expires_at = ? WHERE id = ?", (PAST, stale["id"]))

        self.assertEqual(expire_stale_invitations(), 1)
        self.assertEqual(expire_stale_invitations(), 0)
        statuses = {
            r["id"]: r["status"] for r in self.query("SELECT id, status FROM invitations")
        }
        self.assertEqual(statuses[stale["id"]], "expired")
        self.assertEqual(statuses[fresh["id"]], "pending")
        remaining = self.query("SELECT client_email FROM relationships")
        self.assertEqual([r["client_email"] for r in remaining], ["fresh@example.com"])
        self.assertEqual(len(self.audit_events("invitation_expire")), 1)

    def test_details_preview_warns_about_exclusive_transfer(self) -> None:
        holder = self.connect(self.pro, self.client)
        coach = self.make_professional("coach@example.com")
        invitation, token = self.invite(coach, self.client.email, role_type="coach")

        details = get_invitation_details(caller=self.client, token=token)
        self.assertEqual(details["invitation"]["id"], invitation["id"])
        self.assertEqual(details["professional"]["id"], coach.id)
        self.assertTrue(details["email_matches"])
        self.assertEqual(details["requested_permissions"], [])
        self.assertIn("set_fasting_schedule", {p["slug"] for p in details["permissions"]})
        self.assertEqual(
            details["exclusive_transfers"],
            [
                {
                    "slug": "set_nutrition_targets",
                    "holder_relationship_id": holder["id"],
                    "holder_professional_id": self.pro.id,
                    "holder_role_type": "nutritionist",
                }
            ],
        )

    def test_details_do_not_mutate_expired_invitations(self) -> None:
        invitation, token = self.invite(self.pro, self.client.email)
        self.execute("UPDATE invitations SET expires_at = ? WHERE id = ?", (PAST, invitation["id"]))
        with self.assertRaises(InvitationExpired):
            get_invitation_details(caller=self.client, token=token)
        stored = self.query("SELECT status FROM invitations WHERE id = ?", (invitation["id"],))[0]
        self.assertEqual(stored["status"], "pending")


if __name__ == "__main__":
    unittest.main()
