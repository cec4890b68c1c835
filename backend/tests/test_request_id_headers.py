from __future__ import annotations

import unittest
import uuid

from support import MarketplaceTestCase


class RequestIdHeadersTestCase(MarketplaceTestCase):
    def test_generates_request_id_when_missing(self):
        res = self.client.get("/api/health")
        self.assertEqual(res.status_code, 200)
        rid = (res.headers.get("X-Request-ID") or "").strip()
        self.assertTrue(rid)
        uuid.UUID(rid)

    def test_echoes_request_id_when_provided(self):
        incoming = "rid-test-123"
        res = self.client.get("/api/health", headers={"X-Request-ID": incoming})
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.headers.get("X-Request-ID"), incoming)

    def test_unauthorized_payload_includes_trace_id(self):
        res = self.client.post("/api/bids", json={"listingId": 1, "amount": 2})
        self.assertEqual(res.status_code, 401)
        body = res.get_json(force=True)
        self.assertIn("trace_id", body)
        self.assertEqual((body.get("trace_id") or "").strip(), (res.headers.get("X-Request-ID") or "").strip())

    def test_business_error_carries_same_trace_id(self):
        res = self.client.get("/api/orders/424242", headers={**self.auth(self.buyer_token), "X-Request-ID": "rid-missing-order"})
        self.assertEqual(res.status_code, 404)
        self.assertEqual(res.get_json()["trace_id"], "rid-missing-order")


if __name__ == "__main__":
    unittest.main()
