from __future__ import annotations

import hashlib
import hmac
import unittest

from agriloop.errors import Unauthorized, ValidationError
from agriloop.integrations.payments.razorpay_provider import RazorpayVerifier
from agriloop.integrations.payments.stripe_provider import StripePaymentsProvider, parse_signature_header
from agriloop.utils.jwt_utils import create_token, decode_token, get_bearer_token


def _sign(secret: str, ts: int, body: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), f"{ts}.".encode("utf-8") + body, hashlib.sha256).hexdigest()


class StripeSignatureTestCase(unittest.TestCase):
    def setUp(self):
        self.provider = StripePaymentsProvider(webhook_secret="whsec_unit", clock=lambda: 1_700_000_000)
        self.body = b'{"id":"evt_1","type":"payment_intent.succeeded","data":{"object":{"id":"pi_1"}}}'

    def test_parses_header_with_multiple_signatures(self):
        ts, sigs = parse_signature_header("t=12,v1=aa,v0=zz,v1=bb")
        self.assertEqual(ts, 12)
        self.assertEqual(sigs, ["aa", "bb"])

    def test_accepts_any_matching_v1(self):
        good = _sign("whsec_unit", 1_700_000_000, self.body)
        self.provider.verify_signature(self.body, f"t=1700000000,v1={'0' * 64},v1={good}")

    def test_rejects_malformed_header(self):
        with self.assertRaises(Unauthorized) as ctx:
            self.provider.verify_signature(self.body, "garbage")
        self.assertEqual(ctx.exception.details["reason"], "malformed_header")

    def test_rejects_tampered_body(self):
        good = _sign("whsec_unit", 1_700_000_000, self.body)
        with self.assertRaises(Unauthorized) as ctx:
            self.provider.verify_signature(self.body + b" ", f"t=1700000000,v1={good}")
        self.assertEqual(ctx.exception.details["reason"], "mismatch")

    def test_rejects_timestamp_outside_tolerance(self):
        ts = 1_700_000_000 - 301
        with self.assertRaises(Unauthorized) as ctx:
            self.provider.verify_signature(self.body, f"t={ts},v1={_sign('whsec_unit', ts, self.body)}")
        self.assertEqual(ctx.exception.details["reason"], "timestamp_outside_tolerance")

    def test_parse_event_without_order_metadata(self):
        header = f"t=1700000000,v1={_sign('whsec_unit', 1_700_000_000, self.body)}"
        event = self.provider.parse_event(raw_body=self.body, headers={"Stripe-Signature": header})
        self.assertEqual(event.outcome, "succeeded")
        self.assertEqual(event.event_id, "evt_1")
        self.assertEqual(event.payment_ref, "pi_1")
        self.assertIsNone(event.order_id)


class RazorpayVerifierTestCase(unittest.TestCase):
    def test_missing_fields(self):
        with self.assertRaises(ValidationError):
            RazorpayVerifier(key_secret="k").verify(razorpay_order_id="order_1", razorpay_payment_id="", razorpay_signature="sig")

    def test_mismatch(self):
        with self.assertRaises(Unauthorized):
            RazorpayVerifier(key_secret="k").verify(razorpay_order_id="order_1", razorpay_payment_id="pay_1", razorpay_signature="f" * 64)


class TokenTestCase(unittest.TestCase):
    def test_round_trip_subject(self):
        payload = decode_token(create_token(42))
        self.assertEqual(payload["sub"], "42")

    def test_expired_and_garbage_tokens(self):
        self.assertIsNone(decode_token(create_token(42, ttl_seconds=-10)))
        self.assertIsNone(decode_token("not.a.jwt"))

    def test_bearer_header_parsing(self):
        self.assertEqual(get_bearer_token("Bearer abc"), "abc")
        self.assertIsNone(get_bearer_token("Token abc"))
        self.assertIsNone(get_bearer_token(""))


if __name__ == "__main__":
    unittest.main()
