from __future__ import annotations

import unittest
from unittest.mock import patch

from sqlalchemy.exc import OperationalError

from agriloop.extensions import db
from agriloop.models import Listing, ListingStatus, Order
from agriloop.services.listing_service import set_listing_status
from agriloop.services.payment_event_service import apply_payment_success

from support import MarketplaceTestCase


class DisputeEscrowTestCase(MarketplaceTestCase):
    def _paid_order(self) -> int:
        order_id = self.make_direct_order()
        with self.app.app_context():
            apply_payment_success(db.session.get(Order, order_id), provider="stripe", payment_ref="pi_escrow")
            db.session.commit()
        return order_id

    def _open(self, order_id: int, token: str, reason: str = "Load arrived contaminated with plastic"):
        return self.client.post(f"/api/orders/{order_id}/dispute", json={"reason": reason}, headers=self.auth(token))

    def _resolve(self, order_id: int, action: str, token: str | None = None):
        return self.client.post(
            f"/api/admin/disputes/{order_id}/resolve",
            json={"resolution": "Reviewed photos from both parties", "action": action},
            headers=self.auth(token or self.admin_token),
        )

    def test_refund_buyer_on_paid_order(self):
        order_id = self._paid_order()
        self.assertEqual(self._open(order_id, self.buyer_token).status_code, 200)

        res = self._resolve(order_id, "refund_buyer")
        self.assertEqual(res.status_code, 200, res.get_data(as_text=True))
        order = res.get_json()["order"]
        self.assertEqual(order["payment_status"], "refunded")
        self.assertEqual(order["status"], "refunded")
        self.assertFalse(order["escrow_hold"])
        self.assertFalse(order["dispute"]["is_open"])
        self.assertEqual(order["dispute"]["resolution_action"], "refund_buyer")
        self.assertEqual(order["timeline"][-1]["status"], "dispute_resolved")

    def test_release_seller_completes_order(self):
        order_id = self._paid_order()
        self._open(order_id, self.supplier_token, "Buyer refuses to collect the load")
        res = self._resolve(order_id, "release_seller")
        order = res.get_json()["order"]
        self.assertEqual(order["status"], "completed")
        self.assertFalse(order["escrow_hold"])
        self.assertEqual(order["payment_status"], "paid")

    def test_no_action_changes_nothing_else(self):
        order_id = self._paid_order()
        self._open(order_id, self.buyer_token)
        order = self._resolve(order_id, "no_action").get_json()["order"]
        self.assertEqual(order["status"], "processing")
        self.assertTrue(order["escrow_hold"])

    def test_only_one_open_dispute(self):
        order_id = self.make_direct_order()
        self.assertEqual(self._open(order_id, self.buyer_token).status_code, 200)
        again = self._open(order_id, self.supplier_token, "Opening a second dispute here")
        self.assertEqual(again.status_code, 400)
        self.assertEqual(again.get_json()["message"], "Dispute already open")

    def test_dispute_can_reopen_after_resolution(self):
        order_id = self.make_direct_order()
        self._open(order_id, self.buyer_token)
        self._resolve(order_id, "no_action")
        res = self._open(order_id, self.buyer_token, "Problem came back after pickup")
        self.assertEqual(res.status_code, 200)
        dispute = res.get_json()["order"]["dispute"]
        self.assertTrue(dispute["is_open"])
        self.assertIsNone(dispute["resolution_action"])

    def test_dispute_rules(self):
        order_id = self.make_direct_order()
        self.assertEqual(self._open(order_id, self.rival_token).status_code, 403)
        self.assertEqual(self._open(order_id, self.buyer_token, "short").status_code, 400)

    def test_resolve_requires_admin_and_open_dispute(self):
        order_id = self.make_direct_order()
        missing = self._resolve(order_id, "no_action")
        self.assertEqual(missing.status_code, 404)
        self.assertEqual(missing.get_json()["message"], "Open dispute not found")

        self._open(order_id, self.buyer_token)
        self.assertEqual(self._resolve(order_id, "no_action", token=self.buyer_token).status_code, 403)
        self.assertEqual(self._resolve(order_id, "split_the_difference").status_code, 400)

    def test_admin_lists_open_disputes(self):
        order_id = self.make_direct_order()
        self._open(order_id, self.buyer_token)
        res = self.client.get("/api/admin/disputes?status=open", headers=self.auth(self.admin_token))
        self.assertEqual(res.status_code, 200)
        ids = [o["id"] for o in res.get_json()["disputes"]]
        self.assertIn(order_id, ids)
        self.assertEqual(self.client.get("/api/admin/disputes", headers=self.auth(self.buyer_token)).status_code, 403)

    def test_release_escrow_after_delivery(self):
        order_id = self._paid_order()
        early = self.client.post(f"/api/orders/{order_id}/release-escrow", headers=self.auth(self.supplier_token))
        self.assertEqual(early.status_code, 400)

        self.client.put(f"/api/orders/{order_id}/status", json={"status": "delivered"}, headers=self.auth(self.supplier_token))
        self.assertEqual(
            self.client.post(f"/api/orders/{order_id}/release-escrow", headers=self.auth(self.buyer_token)).status_code,
            403,
        )
        res = self.client.post(f"/api/orders/{order_id}/release-escrow", headers=self.auth(self.supplier_token))
        self.assertEqual(res.status_code, 200)
        order = res.get_json()["order"]
        self.assertEqual(order["status"], "completed")
        self.assertFalse(order["escrow_hold"])
        self.assertEqual(order["timeline"][-1]["note"], "Escrow released")

    def test_release_escrow_without_payment(self):
        order_id = self.make_direct_order()
        res = self.client.post(f"/api/orders/{order_id}/release-escrow", headers=self.auth(self.supplier_token))
        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.get_json()["message"], "No escrow to release")


class ListingOverrideTestCase(MarketplaceTestCase):
    def test_admin_reopens_sold_listing(self):
        listing_id = self.make_listing()
        with self.app.app_context():
            db.session.get(Listing, listing_id).status = ListingStatus.SOLD
            db.session.commit()
        res = self.client.put(
            f"/api/admin/listings/{listing_id}/status",
            json={"status": "active"},
            headers=self.auth(self.admin_token),
        )
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.get_json()["listing"]["status"], "active")

    def test_override_is_admin_only(self):
        listing_id = self.make_listing()
        res = self.client.put(
            f"/api/admin/listings/{listing_id}/status",
            json={"status": "cancelled"},
            headers=self.auth(self.supplier_token),
        )
        self.assertEqual(res.status_code, 403)

    def test_failed_commit_rolls_back_override(self):
        listing_id = self.make_listing()
        with self.app.app_context():
            with patch.object(db.session, "commit", side_effect=OperationalError("UPDATE listings", {}, Exception("disk I/O error"))):
                with self.assertRaises(OperationalError):
                    set_listing_status(listing_id, self.admin_id, "cancelled")
            self.assertEqual(db.session.get(Listing, listing_id).status, ListingStatus.ACTIVE)
            self.assertFalse(db.session.dirty)

    def test_override_validates_status(self):
        listing_id = self.make_listing()
        res = self.client.put(
            f"/api/admin/listings/{listing_id}/status",
            json={"status": "vanished"},
            headers=self.auth(self.admin_token),
        )
        self.assertEqual(res.status_code, 400)


if __name__ == "__main__":
    unittest.main()
