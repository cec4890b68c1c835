from __future__ import annotations

from flask import Blueprint, jsonify, request

from agriloop.services.dispute_service import DisputeService
from agriloop.services.order_service import OrderService
from agriloop.utils.auth import current_user, unauthorized
from agriloop.utils.notify import current_notifier
from agriloop.utils.payload import json_body, page_args, pick

orders_bp = Blueprint("orders_bp", __name__, url_prefix="/api")


def _orders() -> OrderService:
    return OrderService(current_notifier())


def _order_payload(order, message: str, status: int = 200):
    return jsonify({"ok": True, "message": message, "order": order.to_dict()}), status


@orders_bp.post("/orders")
def create_order():
    user = current_user()
    if not user:
        return unauthorized()
    data = json_body()
    order = _orders().create_order(
        buyer_id=user.id,
        listing_id=pick(data, "listing_id", pick(data, "waste_item")),
        quantity=pick(data, "quantity"),
        delivery=pick(data, "delivery"),
        payment_method=pick(data, "payment_method", "stripe"),
        notes=pick(data, "notes"),
    )
    return _order_payload(order, "Order created successfully", 201)


def _my_orders(side: str):
    user = current_user()
    if not user:
        return unauthorized()
    page, limit = page_args(default_limit=10)
    orders, pagination = _orders().list_orders(
        user_id=user.id,
        side=side,
        status=(request.args.get("status") or "").strip() or None,
        page=page,
        limit=limit,
    )
    return jsonify({"ok": True, "orders": [o.to_dict() for o in orders], "pagination": pagination}), 200


@orders_bp.get("/orders/my/buyer")
def my_buyer_orders():
    return _my_orders("buyer")


@orders_bp.get("/orders/my/seller")
def my_seller_orders():
    return _my_orders("seller")


@orders_bp.get("/orders/<int:order_id>")
def get_order(order_id: int):
    user = current_user()
    if not user:
        return unauthorized()
    order = _orders().get_order(order_id=order_id, viewer_id=user.id)
    return jsonify({"ok": True, "order": order.to_dict()}), 200


@orders_bp.get("/orders/<int:order_id>/timeline")
def order_timeline(order_id: int):
    user = current_user()
    if not user:
        return unauthorized()
    entries = _orders().timeline(order_id=order_id, viewer_id=user.id)
    return jsonify({"ok": True, "items": [e.to_dict() for e in entries]}), 200


@orders_bp.put("/orders/<int:order_id>/status")
def update_order_status(order_id: int):
    user = current_user()
    if not user:
        return unauthorized()
    data = json_body()
    order = _orders().update_status(
        order_id=order_id,
        actor_id=user.id,
        new_status=pick(data, "status"),
        note=pick(data, "note"),
    )
    return _order_payload(order, "Order status updated successfully")


@orders_bp.post("/orders/<int:order_id>/review")
def add_review(order_id: int):
    user = current_user()
    if not user:
        return unauthorized()
    data = json_body()
    order = _orders().add_review(
        order_id=order_id,
        actor_id=user.id,
        rating=pick(data, "rating"),
        comment=pick(data, "comment"),
    )
    return _order_payload(order, "Review added successfully")


@orders_bp.post("/orders/<int:order_id>/negotiate")
def negotiate(order_id: int):
    user = current_user()
    if not user:
        return unauthorized()
    data = json_body()
    order = _orders().negotiate_price(
        order_id=order_id,
        buyer_id=user.id,
        proposed_price=pick(data, "price"),
        message=pick(data, "message"),
    )
    return _order_payload(order, "Negotiation sent successfully")


@orders_bp.post("/orders/<int:order_id>/dispute")
def open_dispute(order_id: int):
    user = current_user()
    if not user:
        return unauthorized()
    data = json_body()
    order = DisputeService(current_notifier()).open_dispute(
        order_id=order_id,
        actor_id=user.id,
        reason=pick(data, "reason"),
    )
    return _order_payload(order, "Dispute opened")


@orders_bp.post("/orders/<int:order_id>/release-escrow")
def release_escrow(order_id: int):
    user = current_user()
    if not user:
        return unauthorized()
    order = DisputeService(current_notifier()).release_escrow(order_id=order_id, actor_id=user.id)
    return _order_payload(order, "Escrow released")
