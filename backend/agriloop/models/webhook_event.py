from datetime import datetime

from agriloop.extensions import db


class LedgerStatus:
    RECEIVED = "received"
    PROCESSED = "processed"
    # Success reported again for an order that is already paid.
    DUPLICATE = "duplicate"
    # Failure reported after the payment was settled (paid or refunded).
    IGNORED_PAID = "ignored_paid"
    IGNORED = "ignored"
    UNMATCHED = "unmatched"


class WebhookEvent(db.Model):
    """One row per provider event id; the unique key makes replays cheap to spot."""

    __tablename__ = "webhook_events"
    __table_args__ = (
        db.UniqueConstraint("provider", "event_id", name="uq_webhook_events_provider_event"),
    )

    id = db.Column(db.Integer, primary_key=True)
    provider = db.Column(db.String(32), nullable=False)
    event_id = db.Column(db.String(128), nullable=False)
    event_type = db.Column(db.String(64), nullable=True)
    order_id = db.Column(db.Integer, nullable=True)
    reference = db.Column(db.String(128), nullable=True)
    status = db.Column(db.String(32), nullable=False, default=LedgerStatus.RECEIVED)
    request_id = db.Column(db.String(64), nullable=True)
    error = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    @classmethod
    def seen(cls, provider: str, event_id: str) -> bool:
        return db.session.query(cls.id).filter_by(provider=provider, event_id=event_id).first() is not None
