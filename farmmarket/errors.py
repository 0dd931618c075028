"""Custom exceptions for the Farm Market API."""
from typing import List, Optional


class FarmMarketError(Exception):
    """Base exception for all domain errors. Carries the HTTP status it maps to."""

    status_code = 500

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        self.message = message
        self.errors = errors or []
        super().__init__(message)


class ValidationError(FarmMarketError):
    """Raised when input is malformed or missing required fields."""

    status_code = 400

    def __init__(self, message: str = "Validation error", errors: Optional[List[str]] = None):
        super().__init__(message, errors)


class NotFoundError(FarmMarketError):
    """Raised when a referenced entity does not exist."""

    status_code = 404


class ProductNotFound(NotFoundError):
    """Raised when a product ID doesn't resolve."""

    def __init__(self, product_id: int):
        self.product_id = product_id
        super().__init__(f"Product {product_id} not found")


class OrderNotFound(NotFoundError):
    """Raised when an order ID or order number doesn't resolve."""

    def __init__(self, order_ref):
        self.order_ref = order_ref
        super().__init__(f"Order {order_ref} not found")


class UserNotFound(NotFoundError):
    def __init__(self, user_id: int):
        self.user_id = user_id
        super().__init__(f"User {user_id} not found")


class InsufficientStock(FarmMarketError):
    """Raised when a product's stock cannot cover the requested quantity."""

    status_code = 400

    def __init__(self, product_id: int, product_name: str, available: int, requested: int):
        self.product_id = product_id
        self.product_name = product_name
        self.available = available
        self.requested = requested
        super().__init__(
            f"Insufficient stock for {product_name}. Available: {available}, Requested: {requested}"
        )


class InvalidTransition(FarmMarketError):
    """Raised when an order cannot move from its current status to the requested one."""

    status_code = 400

    def __init__(self, current: str, requested: str, reason: Optional[str] = None):
        self.current = current
        self.requested = requested
        msg = reason or f"Invalid status transition: {current} -> {requested}"
        super().__init__(msg)


class Conflict(FarmMarketError):
    """Raised when creating an entity that already exists."""

    status_code = 400


class Unauthorized(FarmMarketError):
    status_code = 401

    def __init__(self, message: str = "Could not validate credentials"):
        super().__init__(message)


class Forbidden(FarmMarketError):
    status_code = 403

    def __init__(self, message: str = "Admin privileges required"):
        super().__init__(message)
