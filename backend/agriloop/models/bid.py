from datetime import datetime

from agriloop.extensions import db


class BidStatus:
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    WITHDRAWN = "withdrawn"
    EXPIRED = "expired"

    ALL = (PENDING, ACCEPTED, REJECTED, WITHDRAWN, EXPIRED)


class Bid(db.Model):
    __tablename__ = "bids"
    __table_args__ = (
        db.Index("ix_bids_listing_status", "listing_id", "status"),
    )

    id = db.Column(db.Integer, primary_key=True)
    listing_id = db.Column(db.Integer, db.ForeignKey("listings.id"), nullable=False)
    bidder_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    # Offered price per unit
    amount = db.Column(db.Float, nullable=False)
    quantity_amount = db.Column(db.Float, nullable=False)
    quantity_unit = db.Column(db.String(16), nullable=False)
    message = db.Column(db.String(500), nullable=True)

    status = db.Column(db.String(16), nullable=False, default=BidStatus.PENDING, server_default=BidStatus.PENDING)
    expires_at = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, index=True)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    listing = db.relationship("Listing")

    def is_expired(self, now: datetime | None = None) -> bool:
        if self.expires_at is None:
            return False
        return self.expires_at <= (now or datetime.utcnow())

    def effective_status(self, now: datetime | None = None) -> str:
        status = self.status or BidStatus.PENDING
        if status == BidStatus.PENDING and self.is_expired(now):
            return BidStatus.EXPIRED
        return status

    def to_dict(self) -> dict:
        return {
            "id": int(self.id),
            "listing_id": int(self.listing_id),
            "bidder_id": int(self.bidder_id),
            "amount": float(self.amount or 0.0),
            "quantity": {
                "amount": float(self.quantity_amount or 0.0),
                "unit": self.quantity_unit or "kg",
            },
            "message": self.message or "",
            "status": self.effective_status(),
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
