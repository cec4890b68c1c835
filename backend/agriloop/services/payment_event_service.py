from __future__ import annotations

import logging
import os

from sqlalchemy import case
from sqlalchemy.exc import IntegrityError

from agriloop.errors import Conflict, Forbidden, InvalidOperation
from agriloop.extensions import db
from agriloop.integrations.payments.base import PaymentEvent
from agriloop.integrations.payments.factory import (
    PAYMENT_METHOD_CATALOG,
    build_razorpay_verifier,
    build_stripe_provider,
)
from agriloop.models import LedgerStatus, Order, OrderStatus, PaymentStatus, WebhookEvent
from agriloop.services.common import check_text, get_or_404
from agriloop.services.order_service import append_timeline
from agriloop.services.state_guard import compare_and_set
from agriloop.utils.notify import NullNotifier

logger = logging.getLogger(__name__)

# Statuses a successful payment moves forward to processing.
PROCESSING_FROM = (OrderStatus.CONFIRMED, OrderStatus.PENDING)

# Payment states still waiting on the provider. Paid and refunded are settled.
UNSETTLED = (PaymentStatus.PENDING, PaymentStatus.FAILED)


def apply_payment_success(order: Order, *, provider: str, payment_ref: str, actor_id=None, note: str = "") -> bool:
    """Mark an order paid and put the funds on escrow hold.

    Returns False when the payment is already settled (paid or refunded);
    a duplicate success changes nothing and appends no timeline entry.
    Does not commit.
    """
    moved = case((Order.status.in_(PROCESSING_FROM), OrderStatus.PROCESSING), else_=Order.status)
    if not compare_and_set(
        Order,
        order.id,
        Order.payment_status.in_(UNSETTLED),
        payment_status=PaymentStatus.PAID,
        payment_id=payment_ref,
        payment_method=provider,
        escrow_hold=True,
        status=moved,
    ):
        return False
    append_timeline(order.id, OrderStatus.PROCESSING, note or f"{provider.capitalize()} payment succeeded", actor_id)
    return True


def apply_payment_failure(order: Order, *, provider: str, note: str = "") -> bool:
    """Record a failed attempt. Ignored once the payment is settled. Does not commit."""
    if not compare_and_set(Order, order.id, Order.payment_status.in_(UNSETTLED), payment_status=PaymentStatus.FAILED):
        return False
    append_timeline(order.id, OrderStatus.PENDING, note or f"{provider.capitalize()} payment failed")
    return True


def payment_methods() -> list[dict]:
    enabled = {
        "stripe": True,
        "razorpay": bool((os.getenv("RAZORPAY_KEY_SECRET") or "").strip()),
        "paypal": False,
        "bank_transfer": True,
        "cash_on_delivery": True,
    }
    return [dict(item, enabled=enabled.get(item["id"], False)) for item in PAYMENT_METHOD_CATALOG]


class PaymentEventService:
    def __init__(self, notifier=None):
        self.notifier = notifier or NullNotifier()

    def handle_stripe_webhook(self, *, raw_body: bytes, headers, request_id: str = "") -> dict:
        provider = build_stripe_provider()
        event = provider.parse_event(raw_body=raw_body, headers=headers)
        return self.apply_event(event, request_id=request_id)

    def apply_event(self, event: PaymentEvent, *, request_id: str = "") -> dict:
        if event.event_id and WebhookEvent.seen(event.provider, event.event_id):
            logger.info("payment_webhook_replayed provider=%s event_id=%s", event.provider, event.event_id)
            return {"received": True, "replayed": True}

        ledger = WebhookEvent(
            provider=event.provider,
            event_id=event.event_id or f"{event.event_type}:{event.payment_ref}",
            event_type=event.event_type,
            order_id=event.order_id,
            reference=event.payment_ref,
            status=LedgerStatus.RECEIVED,
            request_id=request_id or None,
        )
        applied = False
        try:
            db.session.add(ledger)
            db.session.flush()
            order = db.session.get(Order, int(event.order_id)) if event.order_id is not None else None
            if event.outcome == "ignored":
                ledger.status = LedgerStatus.IGNORED
            elif order is None:
                ledger.status = LedgerStatus.UNMATCHED
                ledger.error = "order_not_found"
            elif event.outcome == "succeeded":
                applied = apply_payment_success(order, provider=event.provider, payment_ref=event.payment_ref)
                ledger.status = LedgerStatus.PROCESSED if applied else LedgerStatus.DUPLICATE
            else:
                applied = apply_payment_failure(order, provider=event.provider)
                ledger.status = LedgerStatus.PROCESSED if applied else LedgerStatus.IGNORED_PAID
            db.session.commit()
        except IntegrityError:
            # A concurrent delivery of the same event id won the insert.
            db.session.rollback()
            logger.info("payment_webhook_replayed provider=%s event_id=%s", event.provider, event.event_id)
            return {"received": True, "replayed": True}
        except Exception:
            db.session.rollback()
            raise

        logger.info(
            "payment_webhook_processed provider=%s event_id=%s type=%s order_id=%s status=%s",
            event.provider,
            ledger.event_id,
            event.event_type,
            event.order_id,
            ledger.status,
        )
        if applied and event.outcome == "succeeded":
            self._notify_paid(int(event.order_id))
        return {"received": True, "replayed": False, "status": ledger.status}

    def verify_razorpay(self, *, order_id, buyer_id, razorpay_order_id, razorpay_payment_id, razorpay_signature) -> Order:
        verifier = build_razorpay_verifier()
        order = get_or_404(Order, order_id, "Order")
        if int(order.buyer_id) != int(buyer_id):
            raise Forbidden("Not authorized to verify this payment")
        verifier.verify(
            razorpay_order_id=str(razorpay_order_id or ""),
            razorpay_payment_id=str(razorpay_payment_id or ""),
            razorpay_signature=str(razorpay_signature or ""),
        )
        try:
            applied = apply_payment_success(
                order,
                provider=verifier.name,
                payment_ref=str(razorpay_payment_id),
                actor_id=buyer_id,
                note="Razorpay payment verified",
            )
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        db.session.refresh(order)
        logger.info("razorpay_verified order_id=%s payment_id=%s applied=%s", order.id, razorpay_payment_id, applied)
        if applied:
            self._notify_paid(int(order.id))
        return order

    def refund_payment(self, *, order_id, seller_id, reason=None) -> Order:
        """Seller hands a captured payment back to the buyer.

        The provider-side refund call is out of process; this records its
        effect on the order and releases the escrow hold.
        """
        reason = check_text(reason, "reason", max_len=500)
        order = get_or_404(Order, order_id, "Order")
        if order.party_role(seller_id) != "seller":
            raise Forbidden("Not authorized to refund this order")
        if order.payment_status != PaymentStatus.PAID or not order.payment_id:
            raise InvalidOperation("No payment to refund", payment_status=order.payment_status)

        try:
            refunded = compare_and_set(
                Order,
                order.id,
                Order.payment_status == PaymentStatus.PAID,
                payment_status=PaymentStatus.REFUNDED,
                status=OrderStatus.REFUNDED,
                escrow_hold=False,
            )
            if not refunded:
                raise Conflict("Payment was changed concurrently", order_id=int(order.id))
            append_timeline(order.id, OrderStatus.REFUNDED, f"Refund processed: {reason or 'requested by seller'}", seller_id)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        db.session.refresh(order)
        logger.info("payment_refunded order_id=%s payment_id=%s seller_id=%s", order.id, order.payment_id, seller_id)

        self.notifier.notify(
            order.buyer_id,
            "Payment Refunded",
            f"Your payment for order {order.order_number} was refunded.",
            {"order_id": int(order.id), "event": "payment_refunded"},
        )
        return order

    def _notify_paid(self, order_id: int) -> None:
        order = db.session.get(Order, order_id)
        if order is None:
            return
        self.notifier.notify(
            order.seller_id,
            "Payment Received",
            f"Payment for order {order.order_number} was received and is held in escrow.",
            {"order_id": int(order.id), "event": "payment_succeeded"},
        )
