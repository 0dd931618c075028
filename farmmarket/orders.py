"""
Order placement and lifecycle operations.

Placement snapshots current catalog prices, allocates the daily order number,
stores the order and reserves stock in a single transaction. Lifecycle
operations move the order through its statuses, append to its history and
give stock back on cancellation.
"""
import logging
from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Tuple
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from . import config, crud, models, schemas, validators
from .errors import InsufficientStock, InvalidTransition, ProductNotFound, ValidationError

logger = logging.getLogger(__name__)

INITIAL_STATUS = "Pending"
CANCELLED = "Cancelled"
DELIVERED = "Delivered"


def _snapshot_lines(db: Session, order_in: schemas.OrderCreate) -> List[dict]:
    """
    Re-read every referenced product and check stock before anything is written.

    Raises:
        ProductNotFound: if any product ID doesn't resolve
        InsufficientStock: if any product can't cover its quantity
    """
    lines = []
    for product_id, quantity in validators.merge_order_items(order_in.items):
        product = crud.get_product(db, product_id, refresh=True)
        if product is None:
            raise ProductNotFound(product_id)
        if product.stock < quantity:
            raise InsufficientStock(product.id, product.name, product.stock, quantity)
        price = Decimal(str(product.price)).quantize(models.CENTS)
        lines.append({
            "product_id": product.id,
            "name": product.name,
            "price": price,
            "unit": product.unit,
            "quantity": quantity,
            "subtotal": (price * quantity).quantize(models.CENTS),
        })
    return lines


def _build_order(order_in: schemas.OrderCreate, lines: List[dict], now: datetime) -> models.Order:
    total_amount = sum((line["subtotal"] for line in lines), Decimal("0"))
    discount = order_in.discount.quantize(models.CENTS)
    delivery_fee = order_in.delivery_fee.quantize(models.CENTS)
    address = order_in.delivery_address

    order = models.Order(
        customer_name=order_in.customer_name.strip(),
        customer_email=order_in.customer_email.lower() if order_in.customer_email else None,
        customer_phone=order_in.customer_phone.strip(),
        delivery_full_address=address.full_address.strip(),
        delivery_street=address.street,
        delivery_city=address.city,
        delivery_state=address.state,
        delivery_zip_code=address.zip_code,
        payment_method=order_in.payment_method,
        payment_status="Pending",
        total_amount=total_amount,
        discount=discount,
        delivery_fee=delivery_fee,
        final_amount=total_amount - discount + delivery_fee,
        status=INITIAL_STATUS,
        notes=order_in.notes,
        created_at=now,
        updated_at=now,
    )
    order.items = [models.OrderItem(**line) for line in lines]
    crud.add_status_event(order, INITIAL_STATUS, notes="Order created", timestamp=now)
    return order


def place_order(db: Session, order_in: schemas.OrderCreate, now: Optional[datetime] = None) -> models.Order:
    """
    Place an order from a checkout request.

    This operation:
    - Validates required customer fields and cart lines
    - Re-reads current price and stock for every product (client prices are ignored)
    - Allocates the next order number for the day
    - Creates the order with its line items and initial history entry
    - Decrements stock with an atomic conditional update per product

    Everything after validation runs in one transaction: if any conditional
    decrement loses a race with a concurrent order, the order and every
    decrement already applied are rolled back.

    Args:
        db: Database session
        order_in: Parsed checkout payload
        now: Moment of placement (defaults to current UTC time)

    Returns:
        The created Order

    Raises:
        ValidationError: 400 on missing fields or an empty cart
        ProductNotFound: 404 if a product ID doesn't resolve
        InsufficientStock: 400 if any product can't cover its quantity
    """
    errors = validators.validate_order_request(order_in)
    if errors:
        raise ValidationError("Validation error", errors)

    lines = _snapshot_lines(db, order_in)

    total_amount = sum((line["subtotal"] for line in lines), Decimal("0"))
    if order_in.discount > total_amount + order_in.delivery_fee:
        raise ValidationError("Validation error", ["Discount cannot exceed the order total"])

    now = now or datetime.utcnow()

    for attempt in range(1, config.ORDER_NUMBER_RETRIES + 1):
        order = _build_order(order_in, lines, now)
        order.order_number = crud.next_order_number(db, now)
        db.add(order)
        try:
            db.flush()
        except IntegrityError:
            # Another request took this number between our read and insert
            db.rollback()
            logger.warning(f"Order number {order.order_number} already taken (attempt {attempt}), retrying")
            continue

        try:
            for line in lines:
                crud.decrease_stock(db, line["product_id"], line["quantity"], commit=False)
        except (InsufficientStock, ProductNotFound) as e:
            db.rollback()
            logger.warning(f"Stock reservation failed for order {order.order_number}, rolled back: {e}")
            raise

        db.commit()
        db.refresh(order)
        logger.info(
            f"Placed order {order.order_number} for {order.customer_phone}: "
            f"{len(lines)} line(s), final amount {order.final_amount}"
        )
        return order

    raise RuntimeError(f"Could not allocate an order number after {config.ORDER_NUMBER_RETRIES} attempts")


def update_status(
    db: Session,
    order: models.Order,
    new_status: str,
    actor: Optional[str] = None,
    notes: Optional[str] = None,
) -> Tuple[models.Order, List[str]]:
    """
    Move an order to a new status and append it to the history.

    Any status may follow any other unless STRICT_STATUS_TRANSITIONS is set.
    Cancelling is routed through cancel_order() so stock is always restored,
    and reactivating a cancelled order reserves its stock again. Lines whose
    product has been deleted meanwhile are skipped and reported as warnings.

    Args:
        db: Database session
        order: Order to update
        new_status: Target status
        actor: Who made the change
        notes: Free-form notes for the history entry

    Returns:
        Tuple of (updated order, warnings)

    Raises:
        InvalidTransition: if strict transitions are enabled and the move is not allowed
        InsufficientStock: if reactivating a cancelled order and stock ran out
    """
    if new_status == CANCELLED:
        return cancel_order(db, order, notes, actor)

    old_status = order.status
    if config.STRICT_STATUS_TRANSITIONS:
        is_valid, error_message = validators.validate_order_status_transition(old_status, new_status)
        if not is_valid:
            raise InvalidTransition(old_status, new_status, error_message)

    warnings = []
    if old_status == CANCELLED:
        for item in order.items:
            try:
                crud.decrease_stock(db, item.product_id, item.quantity, commit=False)
            except ProductNotFound:
                message = f"Product {item.product_id} ({item.name}) no longer exists; stock not reserved"
                logger.warning(f"Reactivating order {order.order_number}: {message}")
                warnings.append(message)
            except InsufficientStock:
                db.rollback()
                raise
        logger.info(f"Order {order.order_number} reactivated, stock reserved again")

    order.status = new_status
    crud.add_status_event(order, new_status, updated_by=actor, notes=notes)
    db.commit()
    db.refresh(order)
    logger.info(f"Order {order.order_number} status changed from '{old_status}' to '{new_status}' by {actor}")
    return order, warnings


def cancel_order(
    db: Session,
    order: models.Order,
    reason: Optional[str] = None,
    actor: Optional[str] = None,
) -> Tuple[models.Order, List[str]]:
    """
    Cancel an order and give its stock back to the catalog.

    Line items whose product has since been deleted are skipped; each skip is
    logged and reported back as a warning instead of failing the cancellation.

    Args:
        db: Database session
        order: Order to cancel
        reason: Cancellation reason (stored and used as history notes)
        actor: Who cancelled

    Returns:
        Tuple of (cancelled order, warnings)

    Raises:
        InvalidTransition: if the order is Delivered or already Cancelled
    """
    if order.status == DELIVERED:
        raise InvalidTransition(order.status, CANCELLED, "Cannot cancel delivered order")
    if order.status == CANCELLED:
        raise InvalidTransition(order.status, CANCELLED, "Order is already cancelled")

    # Claim the cancellation first so two concurrent requests can't both restore stock
    claimed = db.execute(
        update(models.Order)
        .where(models.Order.id == order.id, models.Order.status.notin_(validators.TERMINAL_STATUSES))
        .values(status=CANCELLED, cancellation_reason=reason, updated_at=datetime.utcnow())
        .execution_options(synchronize_session=False)
    ).rowcount
    if not claimed:
        db.rollback()
        db.refresh(order)
        raise InvalidTransition(order.status, CANCELLED, f"Cannot cancel order in status {order.status}")

    warnings = []
    for item in order.items:
        try:
            crud.increase_stock(db, item.product_id, item.quantity, commit=False)
        except ProductNotFound:
            message = f"Product {item.product_id} ({item.name}) no longer exists; stock not restored"
            logger.warning(f"Cancelling order {order.order_number}: {message}")
            warnings.append(message)

    crud.add_status_event(order, CANCELLED, updated_by=actor, notes=reason)
    db.commit()
    db.refresh(order)
    logger.info(f"Order {order.order_number} cancelled by {actor}: {reason}")
    return order, warnings


def update_delivery(db: Session, order: models.Order, delivery: schemas.DeliveryUpdate) -> models.Order:
    """
    Update delivery details (date, estimated time, tracking number).

    Args:
        db: Database session
        order: Order to update
        delivery: Fields to change (only provided fields are applied)

    Returns:
        Updated order
    """
    for key, value in delivery.model_dump(exclude_unset=True).items():
        setattr(order, key, value)
    db.commit()
    db.refresh(order)
    return order
