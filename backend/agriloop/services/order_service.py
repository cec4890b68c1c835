from __future__ import annotations

import logging
import time
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from agriloop.errors import Conflict, Forbidden, InvalidOperation, ValidationError
from agriloop.extensions import db
from agriloop.models import (
    DELIVERY_METHODS,
    PAYMENT_METHODS,
    ADDRESS_FIELDS,
    Listing,
    ListingStatus,
    Order,
    OrderNegotiation,
    OrderStatus,
    OrderTimelineEntry,
    PriceType,
    UserRole,
)
from agriloop.services.common import (
    as_number,
    check_text,
    get_or_404,
    load_actor,
    paginate,
    parse_quantity,
    role_of,
)
from agriloop.services.state_guard import compare_and_set
from agriloop.utils.notify import NullNotifier

logger = logging.getLogger(__name__)


# Which targets each party may set. There is no predecessor graph: any
# current status can move to any target the actor's role allows.
ROLE_TARGETS = {
    "buyer": (OrderStatus.CANCELLED,),
    "seller": (
        OrderStatus.ACCEPTED,
        OrderStatus.PICKUP_SCHEDULED,
        OrderStatus.IN_TRANSIT,
        OrderStatus.DELIVERED,
        OrderStatus.COMPLETED,
        OrderStatus.CANCELLED,
    ),
}

DELIVERY_LABELS = {"pickup": "Customer Pickup", "delivery": "Delivery"}


def money(value) -> float:
    return float(Decimal(str(value or 0.0)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def next_order_number(now_ms: int | None = None) -> str:
    """``ORD-<epoch ms>-<running count:04d>``; the unique index catches collisions."""
    stamp = int(now_ms if now_ms is not None else time.time() * 1000)
    count = db.session.query(func.count(Order.id)).scalar() or 0
    return f"ORD-{stamp}-{int(count) + 1:04d}"


# Two writers inside the same millisecond draw the same number; the loser
# rolls back and tries once more with a fresh one.
ORDER_NUMBER_ATTEMPTS = 2


def order_number_collided(attempt: int) -> None:
    """Call after rolling back an IntegrityError; raises once attempts run out."""
    logger.warning("order_number_collision attempt=%s", attempt + 1)
    if attempt + 1 >= ORDER_NUMBER_ATTEMPTS:
        raise Conflict("Could not allocate an order number, please retry")


def append_timeline(order_id: int, status: str, note: str | None = None, updated_by: int | None = None) -> OrderTimelineEntry:
    entry = OrderTimelineEntry(
        order_id=int(order_id),
        status=status,
        note=note,
        updated_by=int(updated_by) if updated_by is not None else None,
        timestamp=datetime.utcnow(),
    )
    db.session.add(entry)
    return entry


def build_direct_order(
    *,
    listing: Listing,
    buyer_id: int,
    quantity_amount: float,
    quantity_unit: str,
    delivery_method: str,
    delivery_address: dict | None,
    payment_method: str,
    notes: str | None,
) -> Order:
    """Buy-now order; starts out ``pending`` so the buyer may still negotiate."""
    order = Order(
        order_number=next_order_number(),
        buyer_id=int(buyer_id),
        seller_id=int(listing.seller_id),
        listing_id=int(listing.id),
        quantity_amount=float(quantity_amount),
        quantity_unit=quantity_unit,
        total_amount=money(float(listing.price_per_unit or 0.0) * float(quantity_amount)),
        currency=listing.currency or "USD",
        status=OrderStatus.PENDING,
        payment_method=payment_method,
        delivery_method=delivery_method,
        notes=notes,
    )
    order.set_delivery_address(delivery_address)
    db.session.add(order)
    db.session.flush()
    append_timeline(order.id, OrderStatus.PENDING, "Order placed", buyer_id)
    return order


def build_order_from_bid(*, listing: Listing, bid) -> Order:
    """Order spawned by an accepted bid; seeded ``placed``.

    The total is the listing's per-unit price times the bid quantity.
    """
    order = Order(
        order_number=next_order_number(),
        buyer_id=int(bid.bidder_id),
        seller_id=int(listing.seller_id),
        listing_id=int(listing.id),
        bid_id=int(bid.id),
        quantity_amount=float(bid.quantity_amount),
        quantity_unit=bid.quantity_unit,
        total_amount=money(float(listing.price_per_unit or 0.0) * float(bid.quantity_amount)),
        currency=listing.currency or "USD",
        status=OrderStatus.PLACED,
        payment_method="stripe",
        delivery_method="pickup",
    )
    db.session.add(order)
    db.session.flush()
    append_timeline(order.id, OrderStatus.PLACED, f"Created from accepted bid #{int(bid.id)}", listing.seller_id)
    return order


def new_order_message(order: Order, listing: Listing) -> str:
    return (
        f"New order placed!\n\n"
        f"Order ID: {order.order_number}\n"
        f"Product: {listing.title}\n"
        f"Quantity: {order.quantity_amount:g} {order.quantity_unit}\n"
        f"Total: {order.currency} {order.total_amount:.2f}\n\n"
        f"Please get ready and prepare the order!\n\n"
        f"Delivery Method: {DELIVERY_LABELS.get(order.delivery_method, order.delivery_method)}"
    )


class OrderService:
    def __init__(self, notifier=None):
        self.notifier = notifier or NullNotifier()

    def _order(self, order_id) -> Order:
        return get_or_404(Order, order_id, "Order")

    def create_order(
        self,
        *,
        buyer_id,
        listing_id,
        quantity,
        delivery=None,
        payment_method="stripe",
        notes=None,
    ) -> Order:
        quantity_amount, quantity_unit = parse_quantity(quantity)
        delivery = delivery if isinstance(delivery, dict) else {}
        delivery_method = str(delivery.get("method") or "pickup").strip()
        if delivery_method not in DELIVERY_METHODS:
            raise ValidationError("Invalid delivery method", field="delivery.method", allowed=list(DELIVERY_METHODS))
        address = delivery.get("address") if isinstance(delivery.get("address"), dict) else {}
        unknown = sorted(k for k in address if k not in ADDRESS_FIELDS)
        if unknown:
            raise ValidationError("Unknown delivery address fields", fields=unknown)
        method = str(payment_method or "").strip()
        if method not in PAYMENT_METHODS:
            raise ValidationError("Invalid payment method", field="payment_method", allowed=list(PAYMENT_METHODS))
        notes = check_text(notes, "notes", max_len=1000)

        buyer = load_actor(buyer_id)
        if role_of(buyer) != UserRole.BUYER:
            raise Forbidden("Only buyers can place orders", role=role_of(buyer))
        listing = get_or_404(Listing, listing_id, "Listing")
        if listing.status != ListingStatus.ACTIVE:
            raise InvalidOperation("Listing is not available", status=listing.status)
        if listing.price_type not in PriceType.DIRECT_CHECKOUT:
            raise InvalidOperation("This listing only accepts bids", price_type=listing.price_type)
        if int(listing.seller_id) == int(buyer.id):
            raise InvalidOperation("Cannot order your own listing")

        for attempt in range(ORDER_NUMBER_ATTEMPTS):
            try:
                order = build_direct_order(
                    listing=listing,
                    buyer_id=buyer.id,
                    quantity_amount=quantity_amount,
                    quantity_unit=quantity_unit,
                    delivery_method=delivery_method,
                    delivery_address=address,
                    payment_method=method,
                    notes=notes,
                )
                db.session.commit()
                break
            except IntegrityError:
                db.session.rollback()
                order_number_collided(attempt)
            except Exception:
                db.session.rollback()
                raise
        logger.info("order_created order_id=%s order_number=%s listing_id=%s buyer_id=%s", order.id, order.order_number, listing.id, buyer.id)

        self.notifier.notify(
            order.seller_id,
            f"New Order #{order.order_number} - Get Ready!",
            new_order_message(order, listing),
            {"order_id": int(order.id), "event": "order_created"},
        )
        return order

    def update_status(self, *, order_id, actor_id, new_status, note=None) -> Order:
        target = str(new_status or "").strip()
        if target not in OrderStatus.ALL:
            raise ValidationError("Invalid status", status=target, allowed=list(OrderStatus.ALL))
        note = check_text(note, "note", max_len=500)

        order = self._order(order_id)
        role = order.party_role(actor_id)
        if role is None:
            raise Forbidden("Not authorized to update this order")
        allowed = ROLE_TARGETS[role]
        if target not in allowed:
            raise Forbidden(
                f"{role.capitalize()} cannot set this status",
                role=role,
                current_status=order.status,
                allowed=list(allowed),
            )

        current = order.status
        try:
            if not compare_and_set(Order, order.id, Order.status == current, status=target):
                raise Conflict("Order was modified concurrently", order_id=int(order.id), expected_status=current)
            append_timeline(order.id, target, note, actor_id)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        db.session.refresh(order)
        logger.info("order_status_updated order_id=%s from=%s to=%s actor_id=%s role=%s", order.id, current, target, actor_id, role)

        self.notifier.notify(
            order.counterpart_id(actor_id),
            "Order Status Updated",
            f"Order {order.order_number} status changed to {target}.",
            {"order_id": int(order.id), "status": target},
        )
        return order

    def add_review(self, *, order_id, actor_id, rating, comment=None) -> Order:
        if isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 5:
            raise ValidationError("Rating must be between 1 and 5", field="rating")
        comment = check_text(comment, "comment", max_len=500)

        order = self._order(order_id)
        if order.status != OrderStatus.DELIVERED:
            raise InvalidOperation("Can only review delivered orders", current_status=order.status)
        role = order.party_role(actor_id)
        if role is None:
            raise Forbidden("Not authorized to review this order")
        rating_col = getattr(Order, f"{role}_review_rating")
        if getattr(order, f"{role}_review_rating") is not None:
            raise InvalidOperation(f"{role.capitalize()} review already exists", role=role)

        try:
            written = compare_and_set(
                Order,
                order.id,
                rating_col.is_(None),
                **{
                    f"{role}_review_rating": int(rating),
                    f"{role}_review_comment": comment,
                    f"{role}_reviewed_at": datetime.utcnow(),
                },
            )
            if not written:
                raise InvalidOperation(f"{role.capitalize()} review already exists", role=role)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        db.session.refresh(order)
        logger.info("order_reviewed order_id=%s role=%s rating=%s", order.id, role, rating)
        return order

    def negotiate_price(self, *, order_id, buyer_id, proposed_price, message) -> Order:
        price = as_number(proposed_price, "price")
        message = check_text(message, "message", min_len=10, max_len=500, required=True)

        order = self._order(order_id)
        if order.party_role(buyer_id) != "buyer":
            raise Forbidden("Only buyer can negotiate")
        if order.status != OrderStatus.PENDING:
            raise InvalidOperation("Can only negotiate pending orders", current_status=order.status)

        try:
            if order.original_price is None:
                order.original_price = float(order.total_amount)
            order.is_negotiated = True
            order.negotiated_price = price
            db.session.add(OrderNegotiation(order_id=order.id, user_id=int(buyer_id), price=price, message=message))
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        logger.info("order_negotiated order_id=%s price=%s", order.id, price)

        self.notifier.notify(
            order.seller_id,
            "Price Negotiation",
            f"The buyer proposed {order.currency} {price:.2f} for order {order.order_number}: {message}",
            {"order_id": int(order.id), "event": "negotiation"},
        )
        return order

    def get_order(self, *, order_id, viewer_id) -> Order:
        order = self._order(order_id)
        if order.party_role(viewer_id) is None:
            raise Forbidden("Not authorized to view this order")
        return order

    def list_orders(self, *, user_id, side: str, status=None, page: int = 1, limit: int = 10):
        column = Order.buyer_id if side == "buyer" else Order.seller_id
        query = Order.query.filter(column == int(user_id))
        if status:
            query = query.filter(Order.status == str(status))
        return paginate(query.order_by(Order.created_at.desc(), Order.id.desc()), page, limit)

    def timeline(self, *, order_id, viewer_id) -> list[OrderTimelineEntry]:
        order = self._order(order_id)
        if order.party_role(viewer_id) is None:
            viewer = load_actor(viewer_id)
            if role_of(viewer) != UserRole.ADMIN:
                raise Forbidden("Not authorized to view this order")
        return list(order.timeline)
