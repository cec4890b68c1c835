from __future__ import annotations

import json
import time

from agriloop.errors import Unauthorized, ValidationError
from agriloop.integrations.payments.base import PaymentEvent, PaymentsProvider
from agriloop.integrations.payments.signing import hmac_sha256_hex, signatures_match


SUCCEEDED = "payment_intent.succeeded"
FAILED = "payment_intent.payment_failed"


def parse_signature_header(header: str) -> tuple[int | None, list[str]]:
    ts = None
    v1: list[str] = []
    for part in (header or "").split(","):
        key, _, value = part.strip().partition("=")
        if key == "t":
            try:
                ts = int(value)
            except ValueError:
                ts = None
        elif key == "v1" and value:
            v1.append(value)
    return ts, v1


class StripePaymentsProvider(PaymentsProvider):
    name = "stripe"

    def __init__(self, *, webhook_secret: str, tolerance_seconds: int = 300, clock=time.time):
        self.webhook_secret = webhook_secret
        self.tolerance_seconds = tolerance_seconds
        self._clock = clock

    def verify_signature(self, raw_body: bytes, header: str) -> None:
        ts, candidates = parse_signature_header(header)
        if ts is None or not candidates:
            raise Unauthorized("Invalid webhook signature", reason="malformed_header")
        if self.tolerance_seconds > 0 and abs(int(self._clock()) - ts) > self.tolerance_seconds:
            raise Unauthorized("Invalid webhook signature", reason="timestamp_outside_tolerance")
        signed = f"{ts}.".encode("utf-8") + (raw_body or b"")
        expected = hmac_sha256_hex(self.webhook_secret, signed)
        if not any(signatures_match(expected, c) for c in candidates):
            raise Unauthorized("Invalid webhook signature", reason="mismatch")

    def parse_event(self, *, raw_body: bytes, headers) -> PaymentEvent:
        self.verify_signature(raw_body, headers.get("Stripe-Signature", ""))
        try:
            payload = json.loads((raw_body or b"{}").decode("utf-8"))
        except (ValueError, UnicodeDecodeError):
            raise ValidationError("Webhook body is not valid JSON")
        if not isinstance(payload, dict):
            raise ValidationError("Webhook body is not valid JSON")

        event_type = str(payload.get("type") or "")
        event_id = str(payload.get("id") or "")
        obj = ((payload.get("data") or {}).get("object")) or {}
        metadata = obj.get("metadata") or {}
        raw_order = metadata.get("orderId") or metadata.get("order_id")
        try:
            order_id = int(raw_order) if raw_order not in (None, "") else None
        except (TypeError, ValueError):
            order_id = None

        if event_type == SUCCEEDED:
            outcome = "succeeded"
        elif event_type == FAILED:
            outcome = "failed"
        else:
            outcome = "ignored"
        return PaymentEvent(
            provider=self.name,
            event_id=event_id or str(obj.get("id") or ""),
            event_type=event_type,
            outcome=outcome,
            order_id=order_id,
            payment_ref=str(obj.get("id") or ""),
            raw=payload,
        )
