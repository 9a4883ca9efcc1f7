"""Storefront error taxonomy.

Service methods raise these inside a transaction so the whole unit of work
rolls back; shopper-facing entry points translate them into result models
with generic messages.
"""

GENERIC_UNAVAILABLE = "Product temporarily unavailable"
GENERIC_ORDER_FAILURE = "Unable to process order, please try again"
INVALID_DISCOUNT = "Invalid discount code"


class StorefrontError(Exception):
    """Base class; ``public_message`` is safe to show to an anonymous shopper."""

    public_message = GENERIC_ORDER_FAILURE

    def __init__(self, detail: str = "", public_message: str = None):
        super().__init__(detail or self.public_message)
        if public_message:
            self.public_message = public_message


class ProductUnavailableError(StorefrontError):
    public_message = GENERIC_UNAVAILABLE


class InsufficientStockError(ProductUnavailableError):
    pass


class OrderValidationError(StorefrontError):
    pass


class InvalidDiscountError(StorefrontError):
    public_message = INVALID_DISCOUNT


class InvalidTransitionError(StorefrontError):
    public_message = "Status change not allowed"


class PaymentProviderError(StorefrontError):
    public_message = "Unable to create payment. Please try again."


class NotificationError(StorefrontError):
    public_message = "Unable to send message, please try again"


class DuplicateError(StorefrontError):
    public_message = "This code already exists"


class NotFoundError(StorefrontError):
    public_message = "Not found"
