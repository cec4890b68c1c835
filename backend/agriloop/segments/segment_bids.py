from __future__ import annotations

from flask import Blueprint, jsonify

from agriloop.services.bid_service import BidService
from agriloop.utils.auth import current_user, unauthorized
from agriloop.utils.notify import current_notifier
from agriloop.utils.payload import json_body, pick

bids_bp = Blueprint("bids_bp", __name__, url_prefix="/api")


def _service() -> BidService:
    return BidService(current_notifier())


@bids_bp.post("/bids")
def place_bid():
    user = current_user()
    if not user:
        return unauthorized()
    data = json_body()
    bid = _service().place_bid(
        listing_id=pick(data, "listing_id"),
        bidder_id=user.id,
        amount=pick(data, "amount"),
        quantity=pick(data, "quantity"),
        message=pick(data, "message"),
        expires_at=pick(data, "expires_at"),
    )
    return jsonify({"ok": True, "message": "Bid placed successfully", "bid": bid.to_dict()}), 201


@bids_bp.get("/bids/listing/<int:listing_id>")
def list_listing_bids(listing_id: int):
    user = current_user()
    if not user:
        return unauthorized()
    bids = _service().list_bids(listing_id=listing_id, viewer_id=user.id)
    return jsonify({"ok": True, "bids": [b.to_dict() for b in bids]}), 200


@bids_bp.post("/bids/<int:bid_id>/accept")
def accept_bid(bid_id: int):
    user = current_user()
    if not user:
        return unauthorized()
    bid, order = _service().accept_bid(bid_id=bid_id, acting_user_id=user.id)
    return jsonify({
        "ok": True,
        "message": "Bid accepted and order created",
        "bid": bid.to_dict(),
        "order": order.to_dict(),
    }), 200


@bids_bp.post("/bids/<int:bid_id>/reject")
def reject_bid(bid_id: int):
    user = current_user()
    if not user:
        return unauthorized()
    bid = _service().reject_bid(bid_id=bid_id, seller_id=user.id)
    return jsonify({"ok": True, "message": "Bid rejected", "bid": bid.to_dict()}), 200


@bids_bp.post("/bids/<int:bid_id>/withdraw")
def withdraw_bid(bid_id: int):
    user = current_user()
    if not user:
        return unauthorized()
    bid = _service().withdraw_bid(bid_id=bid_id, bidder_id=user.id)
    return jsonify({"ok": True, "message": "Bid withdrawn", "bid": bid.to_dict()}), 200
