"""
Error taxonomy for the gifting core.

Every failure is an exception carrying the HTTP status the API layer answers
with and a stable machine-readable code the storefront maps to a message.
"""

from typing import Optional


class GiftingError(Exception):
    status_code = 400
    code = "error"

    def __init__(self, detail: Optional[str] = None):
        self.detail = detail or self.__class__.__doc__ or self.code
        super().__init__(self.detail)


class NotFound(GiftingError):
    """Resource not found"""
    status_code = 404
    code = "not_found"


class InvalidAmount(GiftingError):
    """Point amount must be a positive integer"""
    code = "invalid_amount"


class InsufficientFunds(GiftingError):
    """Insufficient points balance"""
    status_code = 409
    code = "insufficient_funds"

    def __init__(self, balance: int, requested: int):
        self.balance = balance
        self.requested = requested
        super().__init__(f"Insufficient points balance: {balance} available, {requested} required")


class EmptyCart(GiftingError):
    """Cart is empty"""
    code = "empty_cart"


class IncompleteAddress(GiftingError):
    """Shipping address is incomplete"""
    code = "incomplete_address"

    def __init__(self, missing):
        self.missing = list(missing)
        super().__init__("Please provide a complete shipping address: missing " + ", ".join(self.missing))


class CatalogMismatch(GiftingError):
    """Cart references a product that can no longer be ordered"""
    status_code = 409
    code = "catalog_mismatch"

    def __init__(self, product_id: str, reason: str):
        self.product_id = product_id
        self.reason = reason
        super().__init__(f"Product {product_id} {reason}")


class InvalidTransition(GiftingError):
    """Order status transition not allowed"""
    status_code = 409
    code = "invalid_transition"


class Conflict(GiftingError):
    """Resource already exists or is in the wrong state"""
    status_code = 409
    code = "conflict"


class ConcurrentModification(GiftingError):
    """Record changed concurrently; retry"""
    status_code = 409
    code = "concurrent_modification"


class StoreUnavailable(GiftingError):
    """Document store unavailable; try again later"""
    status_code = 503
    code = "store_unavailable"
