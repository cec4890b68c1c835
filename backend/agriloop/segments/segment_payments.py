from __future__ import annotations

from flask import Blueprint, jsonify, request

from agriloop.services.payment_event_service import PaymentEventService, payment_methods
from agriloop.utils.auth import current_user, unauthorized
from agriloop.utils.notify import current_notifier
from agriloop.utils.observability import get_request_id
from agriloop.utils.payload import json_body, pick

payments_bp = Blueprint("payments_bp", __name__, url_prefix="/api/payments")


@payments_bp.post("/stripe/webhook")
def stripe_webhook():
    # Signature is computed over the exact bytes received; never re-serialise.
    raw = request.get_data(cache=True) or b""
    result = PaymentEventService(current_notifier()).handle_stripe_webhook(
        raw_body=raw,
        headers=request.headers,
        request_id=get_request_id(),
    )
    return jsonify(result), 200


@payments_bp.post("/razorpay/verify")
def razorpay_verify():
    user = current_user()
    if not user:
        return unauthorized()
    data = json_body()
    order = PaymentEventService(current_notifier()).verify_razorpay(
        order_id=pick(data, "order_id"),
        buyer_id=user.id,
        razorpay_order_id=pick(data, "razorpay_order_id"),
        razorpay_payment_id=pick(data, "razorpay_payment_id"),
        razorpay_signature=pick(data, "razorpay_signature"),
    )
    return jsonify({"ok": True, "message": "Payment verified", "order": order.to_dict()}), 200


@payments_bp.post("/refund")
def refund_payment():
    user = current_user()
    if not user:
        return unauthorized()
    data = json_body()
    order = PaymentEventService(current_notifier()).refund_payment(
        order_id=pick(data, "order_id"),
        seller_id=user.id,
        reason=pick(data, "reason"),
    )
    return jsonify({"ok": True, "message": "Refund processed", "order": order.to_dict()}), 200


@payments_bp.get("/methods")
def list_payment_methods():
    user = current_user()
    if not user:
        return unauthorized()
    return jsonify({"ok": True, "methods": payment_methods()}), 200
