import json
from datetime import datetime

from agriloop.extensions import db


class NotificationStatus:
    QUEUED = "queued"
    SENT = "sent"
    FAILED = "failed"


class Notification(db.Model):
    """Outbox row for one user-facing message.

    ``sms`` rows start queued and are pushed by the messaging provider;
    ``in_app`` rows are complete as soon as they are stored.
    """

    __tablename__ = "notifications"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    channel = db.Column(db.String(32), nullable=False, default="in_app")
    title = db.Column(db.String(160), nullable=True)
    message = db.Column(db.Text, nullable=False)
    status = db.Column(db.String(24), nullable=False, default=NotificationStatus.QUEUED)
    provider = db.Column(db.String(64), nullable=True)
    # Gateway message id once sent, error code once failed.
    provider_ref = db.Column(db.String(120), nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    sent_at = db.Column(db.DateTime, nullable=True)
    meta = db.Column(db.Text, nullable=True)

    @property
    def text(self) -> str:
        return f"{self.title}: {self.message}" if self.title else (self.message or "")

    def mark_sent(self, provider: str, ref: str = "") -> None:
        self.status = NotificationStatus.SENT
        self.provider = provider
        self.provider_ref = (ref or "")[:120]
        self.sent_at = datetime.utcnow()

    def mark_failed(self, provider: str, code: str = "") -> None:
        self.status = NotificationStatus.FAILED
        self.provider = provider
        self.provider_ref = (code or "")[:120]

    def meta_dict(self) -> dict:
        try:
            data = json.loads(self.meta or "{}")
        except ValueError:
            return {}
        return data if isinstance(data, dict) else {}

    def to_dict(self) -> dict:
        return {
            "id": int(self.id),
            "user_id": int(self.user_id),
            "channel": self.channel,
            "title": self.title or "",
            "message": self.message or "",
            "status": self.status,
            "provider": self.provider or "",
            "provider_ref": self.provider_ref or "",
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "sent_at": self.sent_at.isoformat() if self.sent_at else None,
            "meta": self.meta_dict(),
        }
