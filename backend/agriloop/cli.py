from __future__ import annotations

import os

import click
from sqlalchemy.exc import IntegrityError

from agriloop.config import deployment_env, env_bool
from agriloop.extensions import db
from agriloop.models import Listing, ListingStatus, PriceType, User

DEMO_LISTINGS = (
    # title, category, price type, price per kg, min bid
    ("Vegetable peelings", "vegetables", PriceType.FIXED, 0.8, None),
    ("Spent brewery grain", "other", PriceType.NEGOTIABLE, 0.5, None),
    ("Mixed fruit pulp", "fruits", PriceType.BIDS, 0.6, 0.4),
)


def _ensure_user(email: str, role: str, password: str, *, name: str = "", phone=None) -> User:
    user = User.query.filter_by(email=email).first()
    if user is None:
        user = User(name=name or email.split("@")[0], email=email, role=role, phone=phone)
        db.session.add(user)
    else:
        user.role = role
        if phone and not user.phone:
            user.phone = phone
    user.set_password(password)
    return user


def register_cli(app) -> None:
    @app.cli.command("bootstrap-admin")
    def bootstrap_admin():
        """Create or promote the admin named by ADMIN_EMAIL / ADMIN_PASSWORD."""
        if deployment_env() not in ("dev", "development", "local", "test") and not env_bool("ALLOW_ADMIN_BOOTSTRAP"):
            raise click.ClickException("Admin bootstrap disabled. Set ALLOW_ADMIN_BOOTSTRAP=1 or AGRILOOP_ENV=dev.")

        email = (os.getenv("ADMIN_EMAIL") or "").strip().lower()
        password = (os.getenv("ADMIN_PASSWORD") or "").strip()
        if not email or not password:
            raise click.ClickException("ADMIN_EMAIL and ADMIN_PASSWORD must be set.")

        try:
            admin = _ensure_user(email, "admin", password, phone=(os.getenv("ADMIN_PHONE") or "").strip() or None)
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            raise click.ClickException("ADMIN_PHONE is already used by another account.")
        click.echo(f"admin_bootstrap_ok {admin.email}")

    @app.cli.command("seed-demo")
    @click.option("--password", default="demo-pass-123", show_default=True, help="Password for the demo accounts")
    def seed_demo(password: str):
        """Create a demo supplier and buyer with one listing per price type."""
        supplier = _ensure_user("supplier@agriloop.local", "supplier", password, name="Demo supplier")
        _ensure_user("buyer@agriloop.local", "buyer", password, name="Demo buyer")
        db.session.flush()

        created = 0
        for title, category, price_type, per_unit, min_bid in DEMO_LISTINGS:
            if Listing.query.filter_by(seller_id=supplier.id, title=title).first():
                continue
            db.session.add(
                Listing(
                    seller_id=supplier.id,
                    title=title,
                    category=category,
                    waste_type="organic",
                    condition="fresh",
                    quantity_amount=500.0,
                    quantity_unit="kg",
                    price_per_unit=per_unit,
                    currency="USD",
                    negotiable=price_type != PriceType.FIXED,
                    price_type=price_type,
                    min_bid=min_bid,
                    status=ListingStatus.ACTIVE,
                )
            )
            created += 1
        db.session.commit()
        click.echo(f"seed_demo_ok listings_created={created}")
