from agriloop.models.user import User, UserRole
from agriloop.models.listing import Listing, ListingStatus, PriceType, QUANTITY_UNITS, CURRENCIES
from agriloop.models.bid import Bid, BidStatus
from agriloop.models.order import (
    Order,
    OrderStatus,
    OrderTimelineEntry,
    OrderNegotiation,
    PaymentStatus,
    PAYMENT_METHODS,
    DELIVERY_METHODS,
    ADDRESS_FIELDS,
)
from agriloop.models.notification import Notification, NotificationStatus
from agriloop.models.webhook_event import LedgerStatus, WebhookEvent

__all__ = [
    "User",
    "UserRole",
    "Listing",
    "ListingStatus",
    "PriceType",
    "QUANTITY_UNITS",
    "CURRENCIES",
    "Bid",
    "BidStatus",
    "Order",
    "OrderStatus",
    "OrderTimelineEntry",
    "OrderNegotiation",
    "PaymentStatus",
    "PAYMENT_METHODS",
    "DELIVERY_METHODS",
    "ADDRESS_FIELDS",
    "Notification",
    "NotificationStatus",
    "LedgerStatus",
    "WebhookEvent",
]
