from datetime import datetime

from werkzeug.security import generate_password_hash

from agriloop.extensions import db


class UserRole:
    SUPPLIER = "supplier"
    BUYER = "buyer"
    ADMIN = "admin"

    ALL = (SUPPLIER, BUYER, ADMIN)


class User(db.Model):
    """Marketplace account. Sign-up and login live outside this service;
    rows arrive through the admin CLI or the shared accounts database."""

    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False, default="")
    email = db.Column(db.String(255), unique=True, index=True, nullable=False)
    # SMS notifications are only attempted when this is set.
    phone = db.Column(db.String(32), unique=True, index=True, nullable=True)
    password_hash = db.Column(db.String(255), nullable=False, default="")
    role = db.Column(db.String(32), nullable=False, default=UserRole.BUYER)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def set_password(self, raw_password: str) -> None:
        self.password_hash = generate_password_hash(raw_password)

    @property
    def has_phone(self) -> bool:
        return bool((self.phone or "").strip())
