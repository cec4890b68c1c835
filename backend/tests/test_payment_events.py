from __future__ import annotations

import hashlib
import hmac
import json
import os
import time
import unittest
from unittest.mock import patch

from agriloop.extensions import db
from agriloop.models import Order, OrderStatus, OrderTimelineEntry, PaymentStatus, WebhookEvent
from agriloop.services.payment_event_service import apply_payment_success

from support import ENV_OVERRIDES, MarketplaceTestCase


def _stripe_headers(raw: bytes, *, secret: str | None = None, ts: int | None = None) -> dict:
    ts = int(ts if ts is not None else time.time())
    key = (secret or ENV_OVERRIDES["STRIPE_WEBHOOK_SECRET"]).encode("utf-8")
    sig = hmac.new(key, f"{ts}.".encode("utf-8") + raw, hashlib.sha256).hexdigest()
    return {"Stripe-Signature": f"t={ts},v1={sig}", "Content-Type": "application/json"}


def _stripe_event(event_id: str, event_type: str, order_id: int, intent_id: str = "pi_123") -> bytes:
    payload = {
        "id": event_id,
        "type": event_type,
        "data": {"object": {"id": intent_id, "metadata": {"orderId": str(order_id)}}},
    }
    return json.dumps(payload).encode("utf-8")


def _razorpay_signature(order_ref: str, payment_ref: str) -> str:
    key = ENV_OVERRIDES["RAZORPAY_KEY_SECRET"].encode("utf-8")
    return hmac.new(key, f"{order_ref}|{payment_ref}".encode("utf-8"), hashlib.sha256).hexdigest()


class StripeWebhookTestCase(MarketplaceTestCase):
    def _post(self, raw: bytes, headers: dict):
        return self.client.post("/api/payments/stripe/webhook", data=raw, headers=headers)

    def _timeline_count(self, order_id: int) -> int:
        with self.app.app_context():
            return OrderTimelineEntry.query.filter_by(order_id=order_id).count()

    def test_success_marks_order_paid_and_held(self):
        order_id = self.make_direct_order()
        raw = _stripe_event("evt_success_1", "payment_intent.succeeded", order_id, "pi_success_1")
        res = self._post(raw, _stripe_headers(raw))
        self.assertEqual(res.status_code, 200, res.get_data(as_text=True))
        self.assertTrue(res.get_json()["received"])

        with self.app.app_context():
            order = db.session.get(Order, order_id)
            self.assertEqual(order.payment_status, PaymentStatus.PAID)
            self.assertEqual(order.status, OrderStatus.PROCESSING)
            self.assertEqual(order.payment_id, "pi_success_1")
            self.assertEqual(order.payment_method, "stripe")
            self.assertTrue(order.escrow_hold)

    def test_duplicate_success_adds_one_timeline_entry(self):
        order_id = self.make_direct_order()
        before = self._timeline_count(order_id)

        raw = _stripe_event("evt_dup_1", "payment_intent.succeeded", order_id)
        self.assertEqual(self._post(raw, _stripe_headers(raw)).status_code, 200)
        replay = self._post(raw, _stripe_headers(raw))
        self.assertTrue(replay.get_json()["replayed"])

        # Same payment reported again under a fresh event id.
        raw2 = _stripe_event("evt_dup_2", "payment_intent.succeeded", order_id)
        again = self._post(raw2, _stripe_headers(raw2))
        self.assertEqual(again.get_json()["status"], "duplicate")

        self.assertEqual(self._timeline_count(order_id), before + 1)
        with self.app.app_context():
            self.assertEqual(WebhookEvent.query.filter_by(provider="stripe", event_id="evt_dup_1").count(), 1)

    def test_failure_records_attempt_without_status_change(self):
        order_id = self.make_direct_order()
        raw = _stripe_event("evt_fail_1", "payment_intent.payment_failed", order_id)
        self.assertEqual(self._post(raw, _stripe_headers(raw)).status_code, 200)
        with self.app.app_context():
            order = db.session.get(Order, order_id)
            self.assertEqual(order.payment_status, PaymentStatus.FAILED)
            self.assertEqual(order.status, OrderStatus.PENDING)
            self.assertEqual(order.timeline[-1].note, "Stripe payment failed")

    def test_failure_after_payment_is_ignored(self):
        order_id = self.make_direct_order()
        ok = _stripe_event("evt_paid_first", "payment_intent.succeeded", order_id)
        self._post(ok, _stripe_headers(ok))
        late = _stripe_event("evt_fail_late", "payment_intent.payment_failed", order_id)
        res = self._post(late, _stripe_headers(late))
        self.assertEqual(res.get_json()["status"], "ignored_paid")
        with self.app.app_context():
            self.assertEqual(db.session.get(Order, order_id).payment_status, PaymentStatus.PAID)

    def test_bad_signature_is_rejected(self):
        order_id = self.make_direct_order()
        raw = _stripe_event("evt_forged", "payment_intent.succeeded", order_id)
        res = self._post(raw, _stripe_headers(raw, secret="whsec_wrong"))
        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.get_json()["error"], "INVALID_SIGNATURE")
        with self.app.app_context():
            self.assertEqual(db.session.get(Order, order_id).payment_status, PaymentStatus.PENDING)

    def test_stale_timestamp_is_rejected(self):
        order_id = self.make_direct_order()
        raw = _stripe_event("evt_old", "payment_intent.succeeded", order_id)
        res = self._post(raw, _stripe_headers(raw, ts=int(time.time()) - 3600))
        self.assertEqual(res.status_code, 400)

    def test_other_events_are_acknowledged(self):
        raw = json.dumps({"id": "evt_other", "type": "charge.refunded", "data": {"object": {"id": "ch_1"}}}).encode("utf-8")
        res = self._post(raw, _stripe_headers(raw))
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.get_json()["status"], "ignored")

    def test_missing_secret_reports_misconfiguration(self):
        raw = _stripe_event("evt_nosecret", "payment_intent.succeeded", 1)
        with patch.dict(os.environ, {"STRIPE_WEBHOOK_SECRET": ""}):
            res = self._post(raw, _stripe_headers(raw))
        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.get_json()["error"], "INTEGRATION_MISCONFIGURED")

    def test_success_leaves_advanced_status_alone(self):
        order_id = self.make_direct_order()
        self.client.put(
            f"/api/orders/{order_id}/status",
            json={"status": "accepted"},
            headers=self.auth(self.supplier_token),
        )
        with self.app.app_context():
            order = db.session.get(Order, order_id)
            self.assertTrue(apply_payment_success(order, provider="stripe", payment_ref="pi_direct"))
            db.session.commit()
            order = db.session.get(Order, order_id)
            self.assertEqual(order.status, OrderStatus.ACCEPTED)
            self.assertEqual(order.payment_status, PaymentStatus.PAID)


class RazorpayVerifyTestCase(MarketplaceTestCase):
    def _verify(self, order_id: int, token: str, signature: str | None = None):
        body = {
            "orderId": order_id,
            "razorpay_order_id": "order_rzp_1",
            "razorpay_payment_id": "pay_rzp_1",
            "razorpay_signature": signature if signature is not None else _razorpay_signature("order_rzp_1", "pay_rzp_1"),
        }
        return self.client.post("/api/payments/razorpay/verify", json=body, headers=self.auth(token))

    def test_valid_signature_marks_paid(self):
        order_id = self.make_direct_order()
        res = self._verify(order_id, self.buyer_token)
        self.assertEqual(res.status_code, 200, res.get_data(as_text=True))
        order = res.get_json()["order"]
        self.assertEqual(order["payment_status"], "paid")
        self.assertEqual(order["payment_method"], "razorpay")
        self.assertEqual(order["payment_id"], "pay_rzp_1")
        self.assertEqual(order["status"], "processing")
        self.assertTrue(order["escrow_hold"])

    def test_repeat_verification_is_a_no_op(self):
        order_id = self.make_direct_order()
        self._verify(order_id, self.buyer_token)
        res = self._verify(order_id, self.buyer_token)
        self.assertEqual(res.status_code, 200)
        notes = [e["note"] for e in res.get_json()["order"]["timeline"]]
        self.assertEqual(notes.count("Razorpay payment verified"), 1)

    def test_invalid_signature(self):
        order_id = self.make_direct_order()
        res = self._verify(order_id, self.buyer_token, signature="0" * 64)
        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.get_json()["message"], "Invalid payment signature")

    def test_only_the_buyer_verifies(self):
        order_id = self.make_direct_order()
        res = self._verify(order_id, self.rival_token)
        self.assertEqual(res.status_code, 403)


class RefundedOrderTestCase(MarketplaceTestCase):
    """A refunded payment is settled; later provider traffic must not reopen it."""

    def _verify(self, order_id: int):
        body = {
            "orderId": order_id,
            "razorpay_order_id": "order_rzp_9",
            "razorpay_payment_id": "pay_rzp_9",
            "razorpay_signature": _razorpay_signature("order_rzp_9", "pay_rzp_9"),
        }
        return self.client.post("/api/payments/razorpay/verify", json=body, headers=self.auth(self.buyer_token))

    def _refund_through_dispute(self, order_id: int) -> None:
        opened = self.client.post(
            f"/api/orders/{order_id}/dispute",
            json={"reason": "Load never arrived at the depot"},
            headers=self.auth(self.buyer_token),
        )
        self.assertEqual(opened.status_code, 200, opened.get_data(as_text=True))
        resolved = self.client.post(
            f"/api/admin/disputes/{order_id}/resolve",
            json={"resolution": "Carrier confirmed non-delivery", "action": "refund_buyer"},
            headers=self.auth(self.admin_token),
        )
        self.assertEqual(resolved.get_json()["order"]["payment_status"], "refunded")

    def _assert_still_refunded(self, order_id: int) -> None:
        with self.app.app_context():
            order = db.session.get(Order, order_id)
            self.assertEqual(order.payment_status, PaymentStatus.REFUNDED)
            self.assertEqual(order.status, OrderStatus.REFUNDED)
            self.assertFalse(order.escrow_hold)
            statuses = [e.status for e in order.timeline]
        self.assertEqual(statuses.count(OrderStatus.PROCESSING), 1)

    def test_repeated_razorpay_verify_after_refund_changes_nothing(self):
        order_id = self.make_direct_order()
        self.assertEqual(self._verify(order_id).status_code, 200)
        self._refund_through_dispute(order_id)

        again = self._verify(order_id)
        self.assertEqual(again.status_code, 200)
        self.assertEqual(again.get_json()["order"]["payment_status"], "refunded")
        self._assert_still_refunded(order_id)

    def test_fresh_stripe_success_after_refund_is_a_duplicate(self):
        order_id = self.make_direct_order()
        self._verify(order_id)
        self._refund_through_dispute(order_id)

        raw = _stripe_event("evt_after_refund_ok", "payment_intent.succeeded", order_id, "pi_late")
        res = self.client.post("/api/payments/stripe/webhook", data=raw, headers=_stripe_headers(raw))
        self.assertEqual(res.get_json()["status"], "duplicate")
        self._assert_still_refunded(order_id)

    def test_late_failure_after_refund_is_ignored(self):
        order_id = self.make_direct_order()
        self._verify(order_id)
        self._refund_through_dispute(order_id)

        raw = _stripe_event("evt_after_refund_fail", "payment_intent.payment_failed", order_id)
        res = self.client.post("/api/payments/stripe/webhook", data=raw, headers=_stripe_headers(raw))
        self.assertEqual(res.get_json()["status"], "ignored_paid")
        self._assert_still_refunded(order_id)


class SellerRefundTestCase(MarketplaceTestCase):
    def _paid_order(self) -> int:
        order_id = self.make_direct_order()
        with self.app.app_context():
            apply_payment_success(db.session.get(Order, order_id), provider="stripe", payment_ref="pi_refund_me")
            db.session.commit()
        return order_id

    def _refund(self, order_id: int, token: str, reason: str = "Buyer cancelled before pickup"):
        return self.client.post(
            "/api/payments/refund",
            json={"orderId": order_id, "reason": reason},
            headers=self.auth(token),
        )

    def test_seller_refunds_paid_order(self):
        order_id = self._paid_order()
        res = self._refund(order_id, self.supplier_token)
        self.assertEqual(res.status_code, 200, res.get_data(as_text=True))
        order = res.get_json()["order"]
        self.assertEqual(order["payment_status"], "refunded")
        self.assertEqual(order["status"], "refunded")
        self.assertFalse(order["escrow_hold"])
        self.assertEqual(order["timeline"][-1]["status"], "refunded")
        self.assertEqual(order["timeline"][-1]["note"], "Refund processed: Buyer cancelled before pickup")

    def test_only_the_seller_refunds(self):
        order_id = self._paid_order()
        for token in (self.buyer_token, self.rival_token, self.admin_token):
            self.assertEqual(self._refund(order_id, token).status_code, 403)
        with self.app.app_context():
            self.assertEqual(db.session.get(Order, order_id).payment_status, PaymentStatus.PAID)

    def test_unpaid_order_has_nothing_to_refund(self):
        order_id = self.make_direct_order()
        res = self._refund(order_id, self.supplier_token)
        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.get_json()["message"], "No payment to refund")

    def test_second_refund_is_rejected(self):
        order_id = self._paid_order()
        self.assertEqual(self._refund(order_id, self.supplier_token).status_code, 200)
        again = self._refund(order_id, self.supplier_token)
        self.assertEqual(again.status_code, 400)
        with self.app.app_context():
            statuses = [e.status for e in db.session.get(Order, order_id).timeline]
        self.assertEqual(statuses.count(OrderStatus.REFUNDED), 1)

    def test_refund_requires_login(self):
        self.assertEqual(self.client.post("/api/payments/refund", json={"orderId": 1}).status_code, 401)


class PaymentMethodsTestCase(MarketplaceTestCase):
    def test_lists_methods(self):
        res = self.client.get("/api/payments/methods", headers=self.auth(self.buyer_token))
        self.assertEqual(res.status_code, 200)
        methods = {m["id"]: m for m in res.get_json()["methods"]}
        self.assertIn("stripe", methods)
        self.assertTrue(methods["razorpay"]["enabled"])
        self.assertFalse(methods["paypal"]["enabled"])


if __name__ == "__main__":
    unittest.main()
