"""
Business-rule validation for the Farm Market API.

Provides checks beyond what the pydantic schemas enforce.
"""
from typing import Dict, List, Tuple
from . import schemas

MAX_ORDER_LINES = 100
MAX_LINE_QUANTITY = 10000

# Forward path of an order; Cancelled is reachable from every non-terminal status
VALID_TRANSITIONS: Dict[str, List[str]] = {
    "Pending": ["Confirmed", "Processing", "Cancelled"],
    "Confirmed": ["Processing", "Packed", "Cancelled"],
    "Processing": ["Packed", "Shipped", "Cancelled"],
    "Packed": ["Shipped", "Cancelled"],
    "Shipped": ["Delivered", "Cancelled"],
    "Delivered": [],
    "Cancelled": [],
}

TERMINAL_STATUSES = ("Delivered", "Cancelled")


def validate_order_request(order: schemas.OrderCreate) -> List[str]:
    """
    Collect every field-level problem with an order request.

    Args:
        order: Parsed checkout payload

    Returns:
        List of error messages; empty when the request is acceptable
    """
    errors = []

    if not order.customer_name or not order.customer_name.strip():
        errors.append("Customer name is required")

    if not order.customer_phone or not order.customer_phone.strip():
        errors.append("Customer phone is required")

    if not order.delivery_address.full_address or not order.delivery_address.full_address.strip():
        errors.append("Delivery address is required")

    if not order.items:
        errors.append("Order must contain at least one item")
    elif len(order.items) > MAX_ORDER_LINES:
        errors.append(f"Order cannot contain more than {MAX_ORDER_LINES} items")

    for index, item in enumerate(order.items, start=1):
        if item.quantity > MAX_LINE_QUANTITY:
            errors.append(f"Item {index}: quantity exceeds maximum ({MAX_LINE_QUANTITY})")

    return errors


def merge_order_items(items: List[schemas.OrderItemIn]) -> List[Tuple[int, int]]:
    """
    Collapse repeated product references into one line each.

    Args:
        items: Cart lines as submitted

    Returns:
        List of (product_id, quantity) in first-seen order
    """
    merged: Dict[int, int] = {}
    for item in items:
        merged[item.product_id] = merged.get(item.product_id, 0) + item.quantity
    return list(merged.items())


def validate_order_status_transition(old_status: str, new_status: str) -> Tuple[bool, str]:
    """
    Validate that a status transition is allowed.

    Args:
        old_status: Current order status
        new_status: New order status

    Returns:
        Tuple of (is_valid, error_message)
    """
    if old_status not in VALID_TRANSITIONS:
        return False, f"Unknown status: {old_status}"

    if new_status not in VALID_TRANSITIONS:
        return False, f"Unknown status: {new_status}"

    if old_status == new_status:
        return True, ""  # No change is valid

    if new_status not in VALID_TRANSITIONS[old_status]:
        return False, f"Invalid status transition: {old_status} -> {new_status}"

    return True, ""
