"""Domain error taxonomy shared by the marketplace services.

Each error carries the HTTP status it maps to and a ``context`` dict with the
identifiers a caller needs to act on the failure (product id, order id,
transaction hash, ...). ``libs.common.error_handler`` renders them.
"""

from typing import Any, Optional


class MarketplaceError(Exception):
    """Base class for expected, typed failures."""

    status_code: int = 400
    error_code: str = "error"

    def __init__(self, message: str, **context: Any):
        self.message = message
        self.context = {k: v for k, v in context.items() if v is not None}
        super().__init__(message)

    def to_dict(self) -> dict:
        body = {"detail": self.message, "error": self.error_code}
        if self.context:
            body["context"] = {
                key: value if isinstance(value, (bool, int)) else str(value)
                for key, value in self.context.items()
            }
        return body


class ValidationError(MarketplaceError):
    """Malformed or unacceptable input; nothing was changed."""

    status_code = 422
    error_code = "validation_error"


class EmptyCart(ValidationError):
    error_code = "empty_cart"

    def __init__(self, buyer_auth_id: Optional[str] = None):
        super().__init__("Cart is empty", buyer_auth_id=buyer_auth_id)


class InsufficientStock(MarketplaceError):
    """Requested quantity exceeds the product's available stock."""

    status_code = 422
    error_code = "insufficient_stock"

    def __init__(
        self,
        product_id,
        requested: int,
        available: int,
        product_name: Optional[str] = None,
        market_id=None,
    ):
        self.product_id = product_id
        self.requested = requested
        self.available = available
        label = product_name or str(product_id)
        super().__init__(
            f"Insufficient stock for product: {label} "
            f"(requested {requested}, available {available})",
            product_id=product_id,
            market_id=market_id,
            requested=requested,
            available=available,
        )

    @property
    def shortfall(self) -> int:
        return self.requested - self.available


class Unauthorized(MarketplaceError):
    """Actor may not act on the resource. The message never says why."""

    status_code = 403
    error_code = "unauthorized"

    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message)


class InvalidSignature(MarketplaceError):
    """Inbound webhook failed HMAC verification."""

    status_code = 401
    error_code = "invalid_signature"

    def __init__(self, message: str = "Invalid webhook signature"):
        super().__init__(message)


class InvalidStateTransition(MarketplaceError):
    """Action is not permitted from the resource's current status."""

    status_code = 422
    error_code = "invalid_state_transition"

    def __init__(self, message: str, *, current_status, **context: Any):
        self.current_status = getattr(current_status, "value", current_status)
        super().__init__(message, current_status=self.current_status, **context)


class NotFound(MarketplaceError):
    status_code = 404
    error_code = "not_found"


class ExternalServiceFailure(MarketplaceError):
    """A collaborator (chain service, sibling service) failed or was unreachable."""

    status_code = 502
    error_code = "external_service_failure"


class OrderNumberConflict(MarketplaceError):
    """Generated order number collided at insert time. Safe to retry."""

    status_code = 409
    error_code = "order_number_conflict"

    def __init__(self):
        super().__init__(
            "Could not allocate a unique order number, please retry", retryable=True
        )
