from __future__ import annotations

import math
from datetime import datetime

from agriloop.errors import NotFound, ValidationError
from agriloop.extensions import db
from agriloop.models import QUANTITY_UNITS, User


def get_or_404(model, row_id, label: str):
    try:
        pk = int(row_id)
    except (TypeError, ValueError):
        raise NotFound(f"{label} not found")
    row = db.session.get(model, pk)
    if row is None:
        raise NotFound(f"{label} not found")
    return row


def load_actor(user_id) -> User:
    user = get_or_404(User, user_id, "User")
    if not bool(user.is_active):
        raise NotFound("User not found")
    return user


def role_of(user: User) -> str:
    return (user.role or "").strip().lower()


def as_number(value, field: str, *, minimum: float = 0.0, allow_equal: bool = True) -> float:
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a number", field=field)
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be a number", field=field)
    if math.isnan(number) or math.isinf(number):
        raise ValidationError(f"{field} must be a number", field=field)
    if number < minimum or (not allow_equal and number == minimum):
        bound = ">=" if allow_equal else ">"
        raise ValidationError(f"{field} must be {bound} {minimum:g}", field=field)
    return number


def parse_quantity(quantity) -> tuple[float, str]:
    """Return (amount, unit) from a ``{"amount": .., "unit": ..}`` mapping."""
    if not isinstance(quantity, dict):
        raise ValidationError("quantity must be an object with amount and unit", field="quantity")
    amount = as_number(quantity.get("amount"), "quantity.amount", allow_equal=False)
    unit = str(quantity.get("unit") or "").strip()
    if unit not in QUANTITY_UNITS:
        raise ValidationError("Invalid unit", field="quantity.unit", allowed=list(QUANTITY_UNITS))
    return amount, unit


def check_text(value, field: str, *, min_len: int = 0, max_len: int = 500, required: bool = False) -> str | None:
    if value is None or value == "":
        if required or min_len > 0:
            raise ValidationError(f"{field} is required", field=field)
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a string", field=field)
    text = value.strip()
    if len(text) < min_len or len(text) > max_len:
        raise ValidationError(
            f"{field} must be between {min_len} and {max_len} characters",
            field=field,
            length=len(text),
        )
    return text


def parse_datetime(value, field: str) -> datetime | None:
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        return _naive_utc(value)
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        raise ValidationError(f"{field} must be an ISO-8601 timestamp", field=field)
    return _naive_utc(parsed) if parsed.tzinfo is not None else parsed


def _naive_utc(value: datetime) -> datetime:
    offset = value.utcoffset()
    return (value - offset).replace(tzinfo=None) if offset is not None else value.replace(tzinfo=None)


def paginate(query, page: int, limit: int) -> tuple[list, dict]:
    total = query.order_by(None).count()
    items = query.offset((page - 1) * limit).limit(limit).all()
    return items, {
        "current_page": page,
        "total_pages": int(math.ceil(total / float(limit))) if limit else 0,
        "total_items": int(total),
        "items_per_page": limit,
    }
