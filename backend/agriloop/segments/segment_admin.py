from __future__ import annotations

from flask import Blueprint, jsonify, request

from agriloop.services.dispute_service import DisputeService
from agriloop.services.listing_service import set_listing_status
from agriloop.utils.auth import current_user, unauthorized
from agriloop.utils.notify import current_notifier
from agriloop.utils.payload import json_body, page_args, pick

admin_bp = Blueprint("admin_bp", __name__, url_prefix="/api/admin")


@admin_bp.get("/disputes")
def list_disputes():
    user = current_user()
    if not user:
        return unauthorized()
    page, limit = page_args()
    orders, pagination = DisputeService(current_notifier()).list_disputes(
        admin_id=user.id,
        status=request.args.get("status") or "open",
        page=page,
        limit=limit,
    )
    return jsonify({"ok": True, "disputes": [o.to_dict() for o in orders], "pagination": pagination}), 200


@admin_bp.post("/disputes/<int:order_id>/resolve")
def resolve_dispute(order_id: int):
    user = current_user()
    if not user:
        return unauthorized()
    data = json_body()
    order = DisputeService(current_notifier()).resolve_dispute(
        order_id=order_id,
        admin_id=user.id,
        resolution=pick(data, "resolution"),
        action=pick(data, "action"),
    )
    return jsonify({"ok": True, "message": "Dispute resolved", "order": order.to_dict()}), 200


@admin_bp.put("/listings/<int:listing_id>/status")
def override_listing_status(listing_id: int):
    user = current_user()
    if not user:
        return unauthorized()
    data = json_body()
    listing = set_listing_status(listing_id, user.id, pick(data, "status"))
    return jsonify({"ok": True, "listing": listing.to_dict()}), 200
