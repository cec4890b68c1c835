from __future__ import annotations

import os
import unittest

from agriloop import create_app
from agriloop.extensions import db
from agriloop.models import Listing, ListingStatus, PriceType, User
from agriloop.utils.jwt_utils import create_token


ENV_OVERRIDES = {
    "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:",
    "DATABASE_URL": "sqlite:///:memory:",
    "NOTIFY_PROVIDER": "log",
    "NOTIFY_DISPATCH": "inline",
    "STRIPE_WEBHOOK_SECRET": "whsec_test_secret",
    "RAZORPAY_KEY_SECRET": "rzp_test_secret",
}


def _upsert_user(*, email: str, role: str, phone: str | None = None) -> User:
    row = User.query.filter_by(email=email).first()
    if row is None:
        row = User(name=email.split("@")[0], email=email, phone=phone, role=role)
        row.set_password("password123")
        db.session.add(row)
        db.session.flush()
    return row


class MarketplaceTestCase(unittest.TestCase):
    """One in-memory database per test class, seeded with four accounts."""

    @classmethod
    def setUpClass(cls):
        cls._prev_env = {key: os.getenv(key) for key in ENV_OVERRIDES}
        os.environ.update(ENV_OVERRIDES)

        cls.app = create_app()
        cls.app.config.update(TESTING=True)
        with cls.app.app_context():
            db.create_all()
            supplier = _upsert_user(email="supplier@agriloop.test", role="supplier", phone="+15550001001")
            buyer = _upsert_user(email="buyer@agriloop.test", role="buyer", phone="+15550001002")
            rival = _upsert_user(email="rival@agriloop.test", role="buyer")
            admin = _upsert_user(email="admin@agriloop.test", role="admin")
            db.session.commit()

            cls.supplier_id = int(supplier.id)
            cls.buyer_id = int(buyer.id)
            cls.rival_id = int(rival.id)
            cls.admin_id = int(admin.id)

        cls.supplier_token = create_token(cls.supplier_id)
        cls.buyer_token = create_token(cls.buyer_id)
        cls.rival_token = create_token(cls.rival_id)
        cls.admin_token = create_token(cls.admin_id)
        cls.client = cls.app.test_client()

    @classmethod
    def tearDownClass(cls):
        for key, value in cls._prev_env.items():
            if value is None:
                os.environ.pop(key, None)
            else:
                os.environ[key] = value

    @staticmethod
    def auth(token: str) -> dict:
        return {"Authorization": f"Bearer {token}"}

    def make_listing(self, *, price_type: str = PriceType.BIDS, price_per_unit: float = 2.0, min_bid=None, currency="USD") -> int:
        with self.app.app_context():
            row = Listing(
                seller_id=self.supplier_id,
                title=f"Organic waste lot ({price_type})",
                category="mixed",
                waste_type="organic",
                quantity_amount=1000.0,
                quantity_unit="kg",
                price_per_unit=price_per_unit,
                currency=currency,
                negotiable=price_type != PriceType.FIXED,
                price_type=price_type,
                min_bid=min_bid,
                status=ListingStatus.ACTIVE,
            )
            db.session.add(row)
            db.session.commit()
            return int(row.id)

    def place_bid(self, listing_id: int, token: str, amount: float, kg: float = 100.0, **extra):
        body = {"listingId": listing_id, "amount": amount, "quantity": {"amount": kg, "unit": "kg"}}
        body.update(extra)
        return self.client.post("/api/bids", json=body, headers=self.auth(token))

    def make_direct_order(self, *, kg: float = 50.0, price_per_unit: float = 3.0) -> int:
        listing_id = self.make_listing(price_type=PriceType.FIXED, price_per_unit=price_per_unit)
        res = self.client.post(
            "/api/orders",
            json={
                "listingId": listing_id,
                "quantity": {"amount": kg, "unit": "kg"},
                "delivery": {"method": "pickup"},
                "paymentMethod": "stripe",
            },
            headers=self.auth(self.buyer_token),
        )
        self.assertEqual(res.status_code, 201, res.get_data(as_text=True))
        return int(res.get_json()["order"]["id"])
