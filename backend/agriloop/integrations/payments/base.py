from __future__ import annotations

from dataclasses import dataclass


@dataclass
class PaymentEvent:
    """Provider callback reduced to what the order ledger needs."""

    provider: str
    event_id: str
    event_type: str
    outcome: str  # "succeeded", "failed" or "ignored"
    order_id: int | None = None
    payment_ref: str = ""
    raw: dict | None = None


class PaymentsProvider:
    name = "unknown"

    def parse_event(self, *, raw_body: bytes, headers) -> PaymentEvent:
        raise NotImplementedError
