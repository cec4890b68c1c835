from __future__ import annotations


class MarketplaceError(Exception):
    """Business-rule failure raised by the services.

    Rendered by the app-level error handler; ``details`` explains which
    actor role or which current status refused the operation.
    """

    code = "MARKETPLACE_ERROR"
    status = 500

    def __init__(self, message: str = "", **details):
        super().__init__(message or self.code)
        self.message = message or self.code
        self.details = {k: v for k, v in details.items() if v is not None}


class NotFound(MarketplaceError):
    code = "NOT_FOUND"
    status = 404


class Forbidden(MarketplaceError):
    code = "FORBIDDEN"
    status = 403


class InvalidOperation(MarketplaceError):
    code = "INVALID_OPERATION"
    status = 400


class ValidationError(MarketplaceError):
    code = "VALIDATION_ERROR"
    status = 400


class Unauthorized(MarketplaceError):
    # Payment signature mismatch; the REST contract answers 400 here.
    code = "INVALID_SIGNATURE"
    status = 400


class Conflict(MarketplaceError):
    code = "CONFLICT"
    status = 409
