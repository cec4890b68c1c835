from __future__ import annotations

import logging
from datetime import datetime

from agriloop.errors import Conflict, Forbidden, InvalidOperation, NotFound, ValidationError
from agriloop.extensions import db
from agriloop.models import Order, OrderStatus, PaymentStatus, UserRole
from agriloop.services.common import check_text, get_or_404, load_actor, paginate, role_of
from agriloop.services.order_service import append_timeline
from agriloop.services.state_guard import compare_and_set
from agriloop.utils.notify import NullNotifier

logger = logging.getLogger(__name__)


class ResolutionAction:
    REFUND_BUYER = "refund_buyer"
    RELEASE_SELLER = "release_seller"
    PARTIAL_REFUND = "partial_refund"
    NO_ACTION = "no_action"

    ALL = (REFUND_BUYER, RELEASE_SELLER, PARTIAL_REFUND, NO_ACTION)


RELEASABLE_STATUSES = (OrderStatus.DELIVERED, OrderStatus.IN_TRANSIT)


class DisputeService:
    """Dispute lifecycle plus the escrow flag it settles.

    ``escrow_hold`` is bookkeeping only; nothing here moves money.
    """

    def __init__(self, notifier=None):
        self.notifier = notifier or NullNotifier()

    def open_dispute(self, *, order_id, actor_id, reason) -> Order:
        reason = check_text(reason, "reason", min_len=10, max_len=500, required=True)
        order = get_or_404(Order, order_id, "Order")
        if order.party_role(actor_id) is None:
            raise Forbidden("Not authorized to dispute this order")
        if order.dispute_is_open:
            raise InvalidOperation("Dispute already open")

        try:
            opened = compare_and_set(
                Order,
                order.id,
                Order.dispute_is_open.is_(False),
                dispute_is_open=True,
                dispute_reason=reason,
                dispute_opened_at=datetime.utcnow(),
                dispute_resolved_at=None,
                dispute_resolution_note=None,
                dispute_resolution_action=None,
            )
            if not opened:
                raise InvalidOperation("Dispute already open")
            append_timeline(order.id, "dispute_opened", reason, actor_id)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        db.session.refresh(order)
        logger.info("dispute_opened order_id=%s actor_id=%s", order.id, actor_id)

        self.notifier.notify(
            order.counterpart_id(actor_id),
            "Dispute Opened",
            f"A dispute was opened on order {order.order_number}: {reason}",
            {"order_id": int(order.id), "event": "dispute_opened"},
        )
        return order

    def resolve_dispute(self, *, order_id, admin_id, resolution, action) -> Order:
        admin = load_actor(admin_id)
        if role_of(admin) != UserRole.ADMIN:
            raise Forbidden("Admin access required", role=role_of(admin))
        resolution = check_text(resolution, "resolution", min_len=10, max_len=1000, required=True)
        action = str(action or "").strip()
        if action not in ResolutionAction.ALL:
            raise ValidationError("Invalid resolution action", field="action", allowed=list(ResolutionAction.ALL))

        order = db.session.get(Order, int(order_id)) if str(order_id).isdigit() else None
        if order is None or not order.dispute_is_open:
            raise NotFound("Open dispute not found")

        values = {
            "dispute_is_open": False,
            "dispute_resolved_at": datetime.utcnow(),
            "dispute_resolution_note": resolution,
            "dispute_resolution_action": action,
        }
        settled = None
        if action == ResolutionAction.REFUND_BUYER and order.payment_status == PaymentStatus.PAID:
            values.update(payment_status=PaymentStatus.REFUNDED, status=OrderStatus.REFUNDED, escrow_hold=False)
            settled = OrderStatus.REFUNDED
        elif action == ResolutionAction.RELEASE_SELLER:
            values.update(escrow_hold=False, status=OrderStatus.COMPLETED)
            settled = OrderStatus.COMPLETED

        conditions = [Order.dispute_is_open.is_(True)]
        if settled == OrderStatus.REFUNDED:
            conditions.append(Order.payment_status == PaymentStatus.PAID)

        try:
            if not compare_and_set(Order, order.id, *conditions, **values):
                raise Conflict("Dispute was changed concurrently", order_id=int(order.id))
            append_timeline(order.id, "dispute_resolved", f"{action}: {resolution}", admin.id)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        db.session.refresh(order)
        logger.info("dispute_resolved order_id=%s action=%s settled=%s admin_id=%s", order.id, action, settled, admin.id)

        message = f"The dispute on order {order.order_number} was resolved ({action}): {resolution}"
        for user_id in (order.buyer_id, order.seller_id):
            self.notifier.notify(
                user_id,
                "Dispute Resolved",
                message,
                {"order_id": int(order.id), "event": "dispute_resolved", "action": action},
            )
        return order

    def release_escrow(self, *, order_id, actor_id) -> Order:
        order = get_or_404(Order, order_id, "Order")
        if order.party_role(actor_id) != "seller":
            raise Forbidden("Not authorized to release escrow")
        if order.payment_status != PaymentStatus.PAID or not order.escrow_hold:
            raise InvalidOperation("No escrow to release")
        if order.status not in RELEASABLE_STATUSES:
            raise InvalidOperation(
                "Order must be delivered or in transit to release",
                current_status=order.status,
            )

        try:
            released = compare_and_set(
                Order,
                order.id,
                Order.escrow_hold.is_(True),
                Order.status.in_(RELEASABLE_STATUSES),
                escrow_hold=False,
                status=OrderStatus.COMPLETED,
            )
            if not released:
                raise Conflict("Escrow was changed concurrently", order_id=int(order.id))
            append_timeline(order.id, OrderStatus.COMPLETED, "Escrow released", actor_id)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        db.session.refresh(order)
        logger.info("escrow_released order_id=%s seller_id=%s", order.id, actor_id)
        return order

    def list_disputes(self, *, admin_id, status="open", page: int = 1, limit: int = 20):
        admin = load_actor(admin_id)
        if role_of(admin) != UserRole.ADMIN:
            raise Forbidden("Admin access required", role=role_of(admin))
        status = (status or "open").strip().lower()
        query = Order.query
        if status == "open":
            query = query.filter(Order.dispute_is_open.is_(True))
        elif status == "resolved":
            query = query.filter(Order.dispute_is_open.is_(False), Order.dispute_resolved_at.isnot(None))
        elif status == "all":
            query = query.filter(Order.dispute_opened_at.isnot(None))
        else:
            raise ValidationError("Invalid dispute status filter", allowed=["open", "resolved", "all"])
        return paginate(query.order_by(Order.dispute_opened_at.desc(), Order.id.desc()), page, limit)
