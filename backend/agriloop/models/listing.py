from datetime import datetime

import sqlalchemy as sa

from agriloop.extensions import db


class ListingStatus:
    ACTIVE = "active"
    PENDING = "pending"
    SOLD = "sold"
    EXPIRED = "expired"
    CANCELLED = "cancelled"

    ALL = (ACTIVE, PENDING, SOLD, EXPIRED, CANCELLED)


class PriceType:
    FIXED = "fixed"
    BIDS = "bids"
    NEGOTIABLE = "negotiable"

    ALL = (FIXED, BIDS, NEGOTIABLE)
    DIRECT_CHECKOUT = (FIXED, NEGOTIABLE)


QUANTITY_UNITS = ("kg", "tons", "pounds", "cubic_meters")
CURRENCIES = ("USD", "EUR", "GBP", "INR")


class Listing(db.Model):
    __tablename__ = "listings"

    id = db.Column(db.Integer, primary_key=True)

    # Supplier user id
    seller_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    title = db.Column(db.String(100), nullable=False)
    description = db.Column(db.Text, nullable=True)

    # fruits | vegetables | mixed | other
    category = db.Column(db.String(32), nullable=False, default="other", server_default="other")
    waste_type = db.Column(db.String(40), nullable=True)
    condition = db.Column(db.String(32), nullable=True)

    quantity_amount = db.Column(db.Float, nullable=False, default=0.0)
    quantity_unit = db.Column(db.String(16), nullable=False, default="kg")

    price_per_unit = db.Column(db.Float, nullable=False, default=0.0)
    currency = db.Column(db.String(8), nullable=False, default="USD", server_default="USD")
    negotiable = db.Column(db.Boolean, nullable=False, default=True, server_default=sa.text("true"))
    price_type = db.Column(db.String(16), nullable=False, default=PriceType.FIXED, server_default=PriceType.FIXED)
    min_bid = db.Column(db.Float, nullable=True)
    reserve_price = db.Column(db.Float, nullable=True)

    status = db.Column(db.String(16), nullable=False, default=ListingStatus.ACTIVE, server_default=ListingStatus.ACTIVE, index=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    def accepts_bids(self) -> bool:
        return (self.price_type or "") == PriceType.BIDS

    def to_dict(self) -> dict:
        return {
            "id": int(self.id),
            "seller_id": int(self.seller_id),
            "title": self.title or "",
            "description": self.description or "",
            "category": self.category or "other",
            "waste_type": self.waste_type or "",
            "condition": self.condition or "",
            "quantity": {
                "amount": float(self.quantity_amount or 0.0),
                "unit": self.quantity_unit or "kg",
            },
            "price": {
                "per_unit": float(self.price_per_unit or 0.0),
                "currency": self.currency or "USD",
                "negotiable": bool(self.negotiable),
                "price_type": self.price_type or PriceType.FIXED,
                "min_bid": float(self.min_bid) if self.min_bid is not None else None,
                "reserve_price": float(self.reserve_price) if self.reserve_price is not None else None,
            },
            "status": self.status or ListingStatus.ACTIVE,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
