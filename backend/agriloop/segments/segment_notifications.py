from __future__ import annotations

from flask import Blueprint, jsonify

from agriloop.models import Notification
from agriloop.utils.auth import current_user, unauthorized

notifications_bp = Blueprint("notifications_bp", __name__, url_prefix="/api")


@notifications_bp.get("/notifications")
def list_notifications():
    user = current_user()
    if not user:
        return unauthorized()
    rows = (
        Notification.query.filter_by(user_id=user.id)
        .order_by(Notification.created_at.desc(), Notification.id.desc())
        .limit(80)
        .all()
    )
    return jsonify({"ok": True, "items": [n.to_dict() for n in rows]}), 200
