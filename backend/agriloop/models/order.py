from datetime import datetime
import json

import sqlalchemy as sa
from sqlalchemy import event
from sqlalchemy.orm import validates

from agriloop.extensions import db


class OrderStatus:
    PENDING = "pending"
    PLACED = "placed"
    ACCEPTED = "accepted"
    PICKUP_SCHEDULED = "pickup_scheduled"
    IN_TRANSIT = "in_transit"
    DELIVERED = "delivered"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    REFUNDED = "refunded"

    ALL = (
        PENDING,
        PLACED,
        ACCEPTED,
        PICKUP_SCHEDULED,
        IN_TRANSIT,
        DELIVERED,
        COMPLETED,
        CANCELLED,
        CONFIRMED,
        PROCESSING,
        REFUNDED,
    )


class PaymentStatus:
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"

    ALL = (PENDING, PAID, FAILED, REFUNDED)


PAYMENT_METHODS = ("stripe", "paypal", "bank_transfer", "cash_on_delivery", "razorpay")
DELIVERY_METHODS = ("pickup", "delivery")
ADDRESS_FIELDS = ("street", "city", "state", "zip_code", "country")


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


class Order(db.Model):
    __tablename__ = "orders"

    id = db.Column(db.Integer, primary_key=True)
    order_number = db.Column(db.String(40), nullable=False, unique=True, index=True)

    buyer_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    seller_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    listing_id = db.Column(db.Integer, db.ForeignKey("listings.id"), nullable=False, index=True)
    # Set when the order was spawned by an accepted bid.
    bid_id = db.Column(db.Integer, db.ForeignKey("bids.id"), nullable=True, unique=True)

    quantity_amount = db.Column(db.Float, nullable=False)
    quantity_unit = db.Column(db.String(16), nullable=False)

    total_amount = db.Column(db.Float, nullable=False)
    currency = db.Column(db.String(8), nullable=False, default="USD", server_default="USD")

    status = db.Column(db.String(24), nullable=False, default=OrderStatus.PENDING, server_default=OrderStatus.PENDING, index=True)
    payment_status = db.Column(db.String(16), nullable=False, default=PaymentStatus.PENDING, server_default=PaymentStatus.PENDING)
    payment_method = db.Column(db.String(24), nullable=False, default="stripe")
    payment_id = db.Column(db.String(120), nullable=True)

    delivery_method = db.Column(db.String(16), nullable=False, default="pickup")
    delivery_address_json = db.Column(db.Text, nullable=True)
    notes = db.Column(db.Text, nullable=True)

    escrow_hold = db.Column(db.Boolean, nullable=False, default=False, server_default=sa.text("false"))

    # Negotiation: history rows live in order_negotiations.
    is_negotiated = db.Column(db.Boolean, nullable=False, default=False, server_default=sa.text("false"))
    original_price = db.Column(db.Float, nullable=True)
    negotiated_price = db.Column(db.Float, nullable=True)

    dispute_is_open = db.Column(db.Boolean, nullable=False, default=False, server_default=sa.text("false"), index=True)
    dispute_reason = db.Column(db.String(500), nullable=True)
    dispute_opened_at = db.Column(db.DateTime, nullable=True)
    dispute_resolved_at = db.Column(db.DateTime, nullable=True)
    dispute_resolution_note = db.Column(db.String(1000), nullable=True)
    dispute_resolution_action = db.Column(db.String(24), nullable=True)

    buyer_review_rating = db.Column(db.Integer, nullable=True)
    buyer_review_comment = db.Column(db.String(500), nullable=True)
    buyer_reviewed_at = db.Column(db.DateTime, nullable=True)
    seller_review_rating = db.Column(db.Integer, nullable=True)
    seller_review_comment = db.Column(db.String(500), nullable=True)
    seller_reviewed_at = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, index=True)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    timeline = db.relationship(
        "OrderTimelineEntry",
        back_populates="order",
        order_by="OrderTimelineEntry.id",
        lazy="selectin",
        passive_deletes="all",
    )
    negotiation_history = db.relationship(
        "OrderNegotiation",
        back_populates="order",
        order_by="OrderNegotiation.id",
        lazy="selectin",
        passive_deletes="all",
    )

    @validates("order_number")
    def _validate_order_number(self, key, value):
        current = self.__dict__.get("order_number")
        if current and value != current:
            raise ValueError("order_number is immutable")
        return value

    def delivery_address(self) -> dict:
        raw = (self.delivery_address_json or "").strip()
        if not raw:
            return {}
        try:
            data = json.loads(raw)
            return data if isinstance(data, dict) else {}
        except Exception:
            return {}

    def set_delivery_address(self, address: dict | None) -> None:
        clean = {k: str(v) for k, v in (address or {}).items() if k in ADDRESS_FIELDS and v not in (None, "")}
        self.delivery_address_json = json.dumps(clean, separators=(",", ":")) if clean else None

    def party_role(self, user_id) -> str | None:
        try:
            uid = int(user_id)
        except (TypeError, ValueError):
            return None
        if uid == int(self.buyer_id):
            return "buyer"
        if uid == int(self.seller_id):
            return "seller"
        return None

    def counterpart_id(self, user_id) -> int:
        return int(self.seller_id) if self.party_role(user_id) == "buyer" else int(self.buyer_id)

    def _review(self, prefix: str) -> dict | None:
        rating = getattr(self, f"{prefix}_review_rating")
        if rating is None:
            return None
        return {
            "rating": int(rating),
            "comment": getattr(self, f"{prefix}_review_comment") or "",
            "reviewed_at": _iso(getattr(self, f"{prefix}_reviewed_at")),
        }

    def to_dict(self) -> dict:
        return {
            "id": int(self.id),
            "order_number": self.order_number,
            "buyer_id": int(self.buyer_id),
            "seller_id": int(self.seller_id),
            "listing_id": int(self.listing_id),
            "bid_id": int(self.bid_id) if self.bid_id is not None else None,
            "quantity": {
                "amount": float(self.quantity_amount or 0.0),
                "unit": self.quantity_unit or "kg",
            },
            "total_price": {
                "amount": float(self.total_amount or 0.0),
                "currency": self.currency or "USD",
            },
            "status": self.status,
            "payment_status": self.payment_status,
            "payment_method": self.payment_method,
            "payment_id": self.payment_id,
            "delivery": {
                "method": self.delivery_method,
                "address": self.delivery_address(),
            },
            "notes": self.notes or "",
            "escrow_hold": bool(self.escrow_hold),
            "negotiation": {
                "is_negotiated": bool(self.is_negotiated),
                "original_price": self.original_price,
                "negotiated_price": self.negotiated_price,
                "history": [n.to_dict() for n in self.negotiation_history],
            },
            "dispute": {
                "is_open": bool(self.dispute_is_open),
                "reason": self.dispute_reason,
                "opened_at": _iso(self.dispute_opened_at),
                "resolved_at": _iso(self.dispute_resolved_at),
                "resolution_note": self.dispute_resolution_note,
                "resolution_action": self.dispute_resolution_action,
            },
            "reviews": {
                "buyer_review": self._review("buyer"),
                "seller_review": self._review("seller"),
            },
            "timeline": [t.to_dict() for t in self.timeline],
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


class OrderTimelineEntry(db.Model):
    __tablename__ = "order_timeline"

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    status = db.Column(db.String(32), nullable=False)
    note = db.Column(db.String(1000), nullable=True)
    updated_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    timestamp = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    order = db.relationship("Order", back_populates="timeline")

    def to_dict(self) -> dict:
        return {
            "id": int(self.id),
            "status": self.status,
            "note": self.note or "",
            "updated_by": int(self.updated_by) if self.updated_by is not None else None,
            "timestamp": _iso(self.timestamp),
        }


class OrderNegotiation(db.Model):
    __tablename__ = "order_negotiations"

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    price = db.Column(db.Float, nullable=False)
    message = db.Column(db.String(500), nullable=True)
    timestamp = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    order = db.relationship("Order", back_populates="negotiation_history")

    def to_dict(self) -> dict:
        return {
            "user_id": int(self.user_id),
            "price": float(self.price),
            "message": self.message or "",
            "timestamp": _iso(self.timestamp),
        }


@event.listens_for(OrderTimelineEntry, "before_update")
def _timeline_is_append_only(mapper, connection, target):
    raise RuntimeError("order timeline entries are append-only")


@event.listens_for(OrderTimelineEntry, "before_delete")
def _timeline_rows_are_kept(mapper, connection, target):
    raise RuntimeError("order timeline entries cannot be deleted")
