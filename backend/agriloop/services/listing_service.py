from __future__ import annotations

import logging

from agriloop.errors import Forbidden, ValidationError
from agriloop.extensions import db
from agriloop.models import Listing, ListingStatus, UserRole
from agriloop.services.common import get_or_404, load_actor, role_of

logger = logging.getLogger(__name__)


def get_listing(listing_id) -> Listing:
    return get_or_404(Listing, listing_id, "Listing")


def set_listing_status(listing_id, admin_id, status) -> Listing:
    """Admin override; the only path that may move a sold listing."""
    admin = load_actor(admin_id)
    if role_of(admin) != UserRole.ADMIN:
        raise Forbidden("Admin access required", role=role_of(admin))
    target = str(status or "").strip().lower()
    if target not in ListingStatus.ALL:
        raise ValidationError("Invalid listing status", status=target, allowed=list(ListingStatus.ALL))

    listing = get_listing(listing_id)
    previous = listing.status
    try:
        listing.status = target
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    logger.info("listing_status_override listing_id=%s from=%s to=%s admin_id=%s", listing.id, previous, target, admin.id)
    return listing
