from __future__ import annotations

from agriloop.errors import Unauthorized, ValidationError
from agriloop.integrations.payments.signing import hmac_sha256_hex, signatures_match


class RazorpayVerifier:
    """Checks the signature Razorpay hands the client after checkout."""

    name = "razorpay"

    def __init__(self, *, key_secret: str):
        self.key_secret = key_secret

    def verify(self, *, razorpay_order_id: str, razorpay_payment_id: str, razorpay_signature: str) -> None:
        if not (razorpay_order_id and razorpay_payment_id and razorpay_signature):
            raise ValidationError(
                "razorpay_order_id, razorpay_payment_id and razorpay_signature are required"
            )
        expected = hmac_sha256_hex(self.key_secret, f"{razorpay_order_id}|{razorpay_payment_id}")
        if not signatures_match(expected, razorpay_signature):
            raise Unauthorized("Invalid payment signature", provider=self.name)
