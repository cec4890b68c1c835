from __future__ import annotations

from flask import g, jsonify, request

from agriloop.extensions import db
from agriloop.models import User
from agriloop.utils.jwt_utils import decode_token, get_bearer_token

def current_user() -> User | None:
    """Resolve the bearer token to an active user, or None."""
    token = get_bearer_token(request.headers.get("Authorization", ""))
    if not token:
        return None
    payload = decode_token(token)
    if not payload:
        return None
    try:
        uid = int(payload.get("sub"))
    except (TypeError, ValueError):
        return None
    user = db.session.get(User, uid)
    if user is None or not bool(user.is_active):
        return None
    g.auth_user_id = int(user.id)
    g.auth_role = user.role
    return user

def unauthorized():
    payload = {"ok": False, "message": "Unauthorized"}
    rid = (getattr(g, "request_id", "") or "").strip()
    if rid:
        payload["trace_id"] = rid
    return jsonify(payload), 401
