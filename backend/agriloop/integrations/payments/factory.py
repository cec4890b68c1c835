from __future__ import annotations

import os

from agriloop.integrations.common import IntegrationMisconfiguredError
from agriloop.integrations.payments.razorpay_provider import RazorpayVerifier
from agriloop.integrations.payments.stripe_provider import StripePaymentsProvider

PAYMENT_METHOD_CATALOG = (
    {"id": "stripe", "name": "Credit/Debit Card", "online": True},
    {"id": "razorpay", "name": "Razorpay (UPI, cards, netbanking)", "online": True},
    {"id": "paypal", "name": "PayPal", "online": True},
    {"id": "bank_transfer", "name": "Bank Transfer", "online": False},
    {"id": "cash_on_delivery", "name": "Cash on Delivery", "online": False},
)


def _tolerance() -> int:
    raw = (os.getenv("STRIPE_WEBHOOK_TOLERANCE_SECONDS") or "300").strip()
    try:
        return int(raw)
    except ValueError:
        return 300


def build_stripe_provider() -> StripePaymentsProvider:
    secret = (os.getenv("STRIPE_WEBHOOK_SECRET") or "").strip()
    if not secret:
        raise IntegrationMisconfiguredError("INTEGRATION_MISCONFIGURED:missing STRIPE_WEBHOOK_SECRET")
    return StripePaymentsProvider(webhook_secret=secret, tolerance_seconds=_tolerance())


def build_razorpay_verifier() -> RazorpayVerifier:
    secret = (os.getenv("RAZORPAY_KEY_SECRET") or "").strip()
    if not secret:
        raise IntegrationMisconfiguredError("INTEGRATION_MISCONFIGURED:missing RAZORPAY_KEY_SECRET")
    return RazorpayVerifier(key_secret=secret)


def payment_health() -> dict:
    missing = [k for k in ("STRIPE_WEBHOOK_SECRET", "RAZORPAY_KEY_SECRET") if not (os.getenv(k) or "").strip()]
    return {"status": "misconfigured" if missing else "configured", "missing": missing}
