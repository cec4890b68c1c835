from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from agriloop.errors import Conflict, Forbidden, InvalidOperation, ValidationError
from agriloop.extensions import db
from agriloop.models import Bid, BidStatus, Listing, ListingStatus
from agriloop.services.common import (
    as_number,
    check_text,
    get_or_404,
    load_actor,
    parse_datetime,
    parse_quantity,
)
from agriloop.services.order_service import ORDER_NUMBER_ATTEMPTS, build_order_from_bid, order_number_collided
from agriloop.services.state_guard import compare_and_set
from agriloop.utils.notify import NullNotifier

logger = logging.getLogger(__name__)


class BidService:
    """Bid placement and single-winner acceptance.

    Every state change is a compare-and-set UPDATE so two sellers' tabs
    (or a seller and a withdrawing bidder) racing on the same rows cannot
    both win.
    """

    def __init__(self, notifier=None):
        self.notifier = notifier or NullNotifier()

    def _bid(self, bid_id) -> Bid:
        return get_or_404(Bid, bid_id, "Bid")

    def place_bid(self, *, listing_id, bidder_id, amount, quantity, message=None, expires_at=None) -> Bid:
        amount = as_number(amount, "amount")
        quantity_amount, quantity_unit = parse_quantity(quantity)
        message = check_text(message, "message", max_len=500)
        expires = parse_datetime(expires_at, "expires_at")
        if expires is not None and expires <= datetime.utcnow():
            raise ValidationError("expires_at must be in the future", field="expires_at")

        bidder = load_actor(bidder_id)
        listing = get_or_404(Listing, listing_id, "Listing")
        if int(listing.seller_id) == int(bidder.id):
            raise InvalidOperation("Cannot bid on your own listing")
        if not listing.accepts_bids():
            raise InvalidOperation("This listing does not accept bids", price_type=listing.price_type)
        if listing.status != ListingStatus.ACTIVE:
            raise InvalidOperation("Listing is not active", status=listing.status)
        if listing.min_bid is not None and amount < float(listing.min_bid):
            raise InvalidOperation(f"Bid must be at least {float(listing.min_bid):g}", min_bid=float(listing.min_bid))

        bid = Bid(
            listing_id=int(listing.id),
            bidder_id=int(bidder.id),
            amount=amount,
            quantity_amount=quantity_amount,
            quantity_unit=quantity_unit,
            message=message,
            status=BidStatus.PENDING,
            expires_at=expires,
        )
        try:
            db.session.add(bid)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        logger.info("bid_placed bid_id=%s listing_id=%s bidder_id=%s amount=%s", bid.id, listing.id, bidder.id, amount)

        self.notifier.notify(
            listing.seller_id,
            "New Bid Received",
            f"New bid of {listing.currency} {amount:.2f}/{quantity_unit} for "
            f"{quantity_amount:g} {quantity_unit} on \"{listing.title}\".",
            {"bid_id": int(bid.id), "listing_id": int(listing.id), "event": "bid_placed"},
        )
        return bid

    def list_bids(self, *, listing_id, viewer_id) -> list[Bid]:
        listing = get_or_404(Listing, listing_id, "Listing")
        query = Bid.query.filter(Bid.listing_id == listing.id)
        if int(listing.seller_id) != int(viewer_id):
            query = query.filter(Bid.bidder_id == int(viewer_id))
        return query.order_by(Bid.amount.desc(), Bid.created_at.desc(), Bid.id.desc()).all()

    def accept_bid(self, *, bid_id, acting_user_id):
        """Accept one bid; returns ``(bid, order)``.

        Claims the listing, rejects the siblings, flips the bid and creates
        the order in one transaction. Losing any of the guarded updates to a
        concurrent writer rolls the whole thing back with Conflict.
        """
        bid = self._bid(bid_id)
        listing = bid.listing
        if int(listing.seller_id) != int(acting_user_id):
            raise Forbidden("Only seller can accept bids")
        if bid.status != BidStatus.PENDING:
            raise InvalidOperation("Bid is not pending", status=bid.status)
        now = datetime.utcnow()
        if bid.is_expired(now):
            raise InvalidOperation("Bid has expired", status=BidStatus.EXPIRED)
        if listing.status != ListingStatus.ACTIVE:
            raise InvalidOperation("Listing is not active", status=listing.status)

        for attempt in range(ORDER_NUMBER_ATTEMPTS):
            try:
                if not compare_and_set(Listing, listing.id, Listing.status == ListingStatus.ACTIVE, status=ListingStatus.SOLD):
                    raise Conflict("Listing is no longer active", listing_id=int(listing.id))
                rejected = db.session.execute(
                    update(Bid)
                    .where(
                        Bid.listing_id == listing.id,
                        Bid.id != bid.id,
                        Bid.status == BidStatus.PENDING,
                    )
                    .values(status=BidStatus.REJECTED, updated_at=now)
                    .execution_options(synchronize_session=False)
                ).rowcount
                if not compare_and_set(Bid, bid.id, Bid.status == BidStatus.PENDING, status=BidStatus.ACCEPTED):
                    raise Conflict("Bid is no longer pending", bid_id=int(bid.id))
                order = build_order_from_bid(listing=listing, bid=bid)
                db.session.commit()
                break
            except IntegrityError:
                # Only the order insert can trip a unique index here.
                db.session.rollback()
                order_number_collided(attempt)
            except Exception:
                db.session.rollback()
                raise
        db.session.refresh(bid)
        logger.info(
            "bid_accepted bid_id=%s listing_id=%s order_id=%s rejected_siblings=%s",
            bid.id,
            listing.id,
            order.id,
            int(rejected or 0),
        )

        self.notifier.notify(
            listing.seller_id,
            f"New Order #{order.order_number} - Get Ready!",
            f"New order from accepted bid!\n\n"
            f"Order ID: {order.order_number}\n"
            f"Product: {listing.title}\n"
            f"Quantity: {order.quantity_amount:g} {order.quantity_unit}\n"
            f"Total: {order.currency} {order.total_amount:.2f}\n\n"
            f"Please get ready and prepare the order!",
            {"order_id": int(order.id), "bid_id": int(bid.id), "event": "bid_accepted"},
        )
        self.notifier.notify(
            bid.bidder_id,
            "Your bid was accepted",
            f"Your bid on \"{listing.title}\" was accepted. Order {order.order_number} has been created.",
            {"order_id": int(order.id), "bid_id": int(bid.id), "event": "bid_accepted"},
        )
        return bid, order

    def reject_bid(self, *, bid_id, seller_id) -> Bid:
        bid = self._bid(bid_id)
        listing = bid.listing
        if int(listing.seller_id) != int(seller_id):
            raise Forbidden("Only seller can reject bids")
        if bid.status != BidStatus.PENDING:
            raise InvalidOperation("Bid is not pending", status=bid.status)
        self._transition(bid, BidStatus.REJECTED)
        logger.info("bid_rejected bid_id=%s listing_id=%s", bid.id, listing.id)

        self.notifier.notify(
            bid.bidder_id,
            "Your bid was declined",
            f"Your bid on \"{listing.title}\" was declined by the seller.",
            {"bid_id": int(bid.id), "listing_id": int(listing.id), "event": "bid_rejected"},
        )
        return bid

    def withdraw_bid(self, *, bid_id, bidder_id) -> Bid:
        bid = self._bid(bid_id)
        if int(bid.bidder_id) != int(bidder_id):
            raise Forbidden("Only bidder can withdraw bid")
        if bid.status != BidStatus.PENDING:
            raise InvalidOperation("Bid cannot be withdrawn", status=bid.status)
        self._transition(bid, BidStatus.WITHDRAWN)
        logger.info("bid_withdrawn bid_id=%s listing_id=%s", bid.id, bid.listing_id)
        return bid

    def _transition(self, bid: Bid, target: str) -> None:
        try:
            if not compare_and_set(Bid, bid.id, Bid.status == BidStatus.PENDING, status=target):
                raise Conflict("Bid is no longer pending", bid_id=int(bid.id))
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        db.session.refresh(bid)
