"""
CRUD (Create, Read, Update, Delete) operations for the Farm Market API.

This module contains all database operations for the catalog, orders and users.
Stock only changes through decrease_stock() and increase_stock(), which are
single conditional UPDATE statements so concurrent requests cannot oversell.
"""
import logging
import math
from datetime import datetime
from typing import List, Optional, Tuple
from sqlalchemy import case, func, or_, update
from sqlalchemy.orm import Session, Query
from . import models, schemas
from .errors import InsufficientStock, ProductNotFound

logger = logging.getLogger(__name__)

PRODUCT_SORTS = {
    "price_asc": models.Product.price.asc(),
    "price_desc": models.Product.price.desc(),
    "name": models.Product.name.asc(),
    "rating": models.Product.ratings_average.desc(),
}


def paginate(query: Query, page: int, limit: int) -> Tuple[list, schemas.Pagination]:
    """
    Apply offset pagination to a query.

    Args:
        query: Query with filters and ordering already applied
        page: 1-based page number
        limit: Page size

    Returns:
        Tuple of (rows on this page, pagination metadata)
    """
    page = max(page, 1)
    limit = max(limit, 1)
    total = query.order_by(None).count()
    rows = query.offset((page - 1) * limit).limit(limit).all()
    pagination = schemas.Pagination(
        total=total,
        page=page,
        pages=math.ceil(total / limit),
        limit=limit,
    )
    return rows, pagination


# --------
# Products
# --------

def get_product(db: Session, product_id: int, refresh: bool = False) -> Optional[models.Product]:
    """
    Retrieve a single product by ID.

    Args:
        db: Database session
        product_id: ID of the product to retrieve
        refresh: Re-read the row even if the session already holds it

    Returns:
        Product object or None if not found
    """
    return db.get(models.Product, product_id, populate_existing=refresh)


def get_products(
    db: Session,
    category: Optional[str] = None,
    search: Optional[str] = None,
    min_price: Optional[float] = None,
    max_price: Optional[float] = None,
    featured: Optional[bool] = None,
    in_stock: Optional[bool] = None,
    sort: Optional[str] = None,
    page: int = 1,
    limit: int = 20,
) -> Tuple[List[models.Product], schemas.Pagination]:
    """
    List available products with storefront filters and pagination.

    Returns:
        Tuple of (products, pagination)
    """
    query = db.query(models.Product).filter(models.Product.is_available.is_(True))

    if category:
        query = query.filter(models.Product.category == category)
    if search:
        pattern = f"%{search}%"
        query = query.filter(or_(
            models.Product.name.ilike(pattern),
            models.Product.description.ilike(pattern),
        ))
    if min_price is not None:
        query = query.filter(models.Product.price >= min_price)
    if max_price is not None:
        query = query.filter(models.Product.price <= max_price)
    if featured:
        query = query.filter(models.Product.is_featured.is_(True))
    if in_stock:
        query = query.filter(models.Product.stock > 0)

    order = PRODUCT_SORTS.get(sort, models.Product.created_at.desc())
    query = query.order_by(order, models.Product.id.desc())
    return paginate(query, page, limit)


def get_featured_products(db: Session, limit: int = 8) -> List[models.Product]:
    return (
        db.query(models.Product)
        .filter(
            models.Product.is_featured.is_(True),
            models.Product.is_available.is_(True),
            models.Product.stock > 0,
        )
        .order_by(models.Product.created_at.desc(), models.Product.id.desc())
        .limit(limit)
        .all()
    )


def get_categories(db: Session) -> List[str]:
    rows = db.query(models.Product.category).distinct().order_by(models.Product.category).all()
    return [category for (category,) in rows]


def get_low_stock_products(db: Session, threshold: int = 10) -> List[models.Product]:
    """
    Products that still sell but are running out (0 < stock <= threshold).

    Args:
        db: Database session
        threshold: Inclusive upper bound on stock

    Returns:
        List of Product objects, lowest stock first
    """
    return (
        db.query(models.Product)
        .filter(models.Product.stock > 0, models.Product.stock <= threshold)
        .order_by(models.Product.stock.asc(), models.Product.name.asc())
        .all()
    )


def get_out_of_stock_products(db: Session) -> List[models.Product]:
    return (
        db.query(models.Product)
        .filter(models.Product.stock == 0)
        .order_by(models.Product.name.asc())
        .all()
    )


def create_product(db: Session, product: schemas.ProductCreate) -> models.Product:
    """
    Create a new product in the catalog.

    A product created with zero stock is stored as unavailable.

    Args:
        db: Database session
        product: Product data to create

    Returns:
        Created Product object
    """
    data = product.model_dump()
    data["is_available"] = data["is_available"] and data["stock"] > 0
    db_product = models.Product(**data)
    db.add(db_product)
    db.commit()
    db.refresh(db_product)
    logger.info(f"Created product {db_product.id} '{db_product.name}' with stock {db_product.stock}")
    return db_product


def update_product(db: Session, product_id: int, product: schemas.ProductUpdate) -> Optional[models.Product]:
    """
    Update an existing product.

    Args:
        db: Database session
        product_id: ID of the product to update
        product: Updated product data (only provided fields will be updated)

    Returns:
        Updated Product object or None if not found
    """
    db_product = get_product(db, product_id)
    if db_product is None:
        return None

    update_data = product.model_dump(exclude_unset=True)
    for key, value in update_data.items():
        setattr(db_product, key, value)

    if db_product.stock == 0:
        db_product.is_available = False

    db.commit()
    db.refresh(db_product)
    return db_product


def toggle_featured(db: Session, product_id: int) -> Optional[models.Product]:
    db_product = get_product(db, product_id)
    if db_product is None:
        return None
    db_product.is_featured = not db_product.is_featured
    db.commit()
    db.refresh(db_product)
    return db_product


def delete_product(db: Session, product_id: int) -> bool:
    """
    Delete a product from the catalog.

    Order line items keep their snapshot and are left untouched.

    Args:
        db: Database session
        product_id: ID of the product to delete

    Returns:
        True if product was deleted, False if not found
    """
    db_product = get_product(db, product_id)
    if db_product is None:
        return False

    db.delete(db_product)
    db.commit()
    return True


def decrease_stock(db: Session, product_id: int, quantity: int, commit: bool = True) -> models.Product:
    """
    Atomically take `quantity` units out of stock.

    The decrement only applies when stock >= quantity at the moment the UPDATE
    runs; a product that reaches zero becomes unavailable in the same statement.

    Args:
        db: Database session
        product_id: ID of the product
        quantity: Units to remove (>= 1)
        commit: Commit immediately; pass False to join the caller's transaction

    Returns:
        The product with its new stock

    Raises:
        ProductNotFound: if the product does not exist
        InsufficientStock: if stock < quantity
    """
    if quantity < 1:
        raise ValueError("quantity must be at least 1")

    stmt = (
        update(models.Product)
        .where(models.Product.id == product_id, models.Product.stock >= quantity)
        .values(
            stock=models.Product.stock - quantity,
            is_available=case((models.Product.stock == quantity, False), else_=models.Product.is_available),
            updated_at=datetime.utcnow(),
        )
        .execution_options(synchronize_session=False)
    )
    result = db.execute(stmt)

    if result.rowcount == 0:
        current = get_product(db, product_id, refresh=True)
        if current is None:
            raise ProductNotFound(product_id)
        raise InsufficientStock(current.id, current.name, current.stock, quantity)

    if commit:
        db.commit()
    return get_product(db, product_id, refresh=True)


def increase_stock(db: Session, product_id: int, quantity: int, commit: bool = True) -> models.Product:
    """
    Atomically add `quantity` units to stock.

    A product whose stock becomes positive is made available again.

    Args:
        db: Database session
        product_id: ID of the product
        quantity: Units to add (>= 1)
        commit: Commit immediately; pass False to join the caller's transaction

    Returns:
        The product with its new stock

    Raises:
        ProductNotFound: if the product does not exist
    """
    if quantity < 1:
        raise ValueError("quantity must be at least 1")

    stmt = (
        update(models.Product)
        .where(models.Product.id == product_id)
        .values(
            stock=models.Product.stock + quantity,
            is_available=case((models.Product.stock + quantity > 0, True), else_=models.Product.is_available),
            updated_at=datetime.utcnow(),
        )
        .execution_options(synchronize_session=False)
    )
    result = db.execute(stmt)

    if result.rowcount == 0:
        raise ProductNotFound(product_id)

    if commit:
        db.commit()
    return get_product(db, product_id, refresh=True)


# ------
# Orders
# ------

def get_order(db: Session, order_id: int) -> Optional[models.Order]:
    """
    Retrieve a single order by ID.

    Args:
        db: Database session
        order_id: ID of the order to retrieve

    Returns:
        Order object or None if not found
    """
    return db.get(models.Order, order_id)


def get_order_by_number(db: Session, order_number: str) -> Optional[models.Order]:
    return db.query(models.Order).filter(models.Order.order_number == order_number).first()


def get_orders(
    db: Session,
    status: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    phone: Optional[str] = None,
    page: int = 1,
    limit: int = 20,
) -> Tuple[List[models.Order], schemas.Pagination]:
    """
    List orders for the back office, newest first.

    Args:
        db: Database session
        status: Exact status to match
        start_date: Inclusive lower bound on creation time
        end_date: Inclusive upper bound on creation time
        phone: Case-insensitive substring of the customer phone
        page: 1-based page number
        limit: Page size

    Returns:
        Tuple of (orders, pagination)
    """
    query = db.query(models.Order)

    if status:
        query = query.filter(models.Order.status == status)
    if phone:
        query = query.filter(models.Order.customer_phone.ilike(f"%{phone}%"))
    if start_date:
        query = query.filter(models.Order.created_at >= start_date)
    if end_date:
        query = query.filter(models.Order.created_at <= end_date)

    query = query.order_by(models.Order.created_at.desc(), models.Order.id.desc())
    return paginate(query, page, limit)


def get_recent_orders(db: Session, limit: int = 10) -> List[models.Order]:
    return (
        db.query(models.Order)
        .order_by(models.Order.created_at.desc(), models.Order.id.desc())
        .limit(limit)
        .all()
    )


def get_orders_by_phone(db: Session, phone: str, limit: int = 20) -> List[models.Order]:
    return (
        db.query(models.Order)
        .filter(models.Order.customer_phone == phone)
        .order_by(models.Order.created_at.desc(), models.Order.id.desc())
        .limit(limit)
        .all()
    )


def next_order_number(db: Session, now: Optional[datetime] = None) -> str:
    """
    Derive the next order number for a calendar day.

    Format is ORD + YYMMDD + 4-digit sequence; the sequence continues from the
    highest number already stored for that day and restarts at 0001 each day.

    Args:
        db: Database session
        now: Moment of placement (defaults to current UTC time)

    Returns:
        Order number string, e.g. "ORD2505230007"
    """
    now = now or datetime.utcnow()
    prefix = f"ORD{now:%y%m%d}"
    last_number = (
        db.query(func.max(models.Order.order_number))
        .filter(models.Order.order_number.like(f"{prefix}%"))
        .scalar()
    )
    sequence = int(last_number[len(prefix):]) + 1 if last_number else 1
    return f"{prefix}{sequence:04d}"


def add_status_event(
    order: models.Order,
    status: str,
    updated_by: Optional[str] = None,
    notes: Optional[str] = None,
    timestamp: Optional[datetime] = None,
) -> models.OrderStatusEvent:
    """
    Append an entry to an order's status history.

    Existing entries are never modified; the caller commits.
    """
    event = models.OrderStatusEvent(
        status=status,
        timestamp=timestamp or datetime.utcnow(),
        updated_by=updated_by,
        notes=notes,
    )
    order.status_history.append(event)
    return event


# -----
# Users
# -----

def get_user(db: Session, user_id: int) -> Optional[models.User]:
    """
    Retrieve a single user by ID.

    Args:
        db: Database session
        user_id: ID of the user to retrieve

    Returns:
        User object or None if not found
    """
    return db.get(models.User, user_id)


def get_user_by_email(db: Session, email: str) -> Optional[models.User]:
    """
    Retrieve a user by email address.

    Args:
        db: Database session
        email: Email address to search for (case-insensitive)

    Returns:
        User object or None if not found
    """
    return db.query(models.User).filter(models.User.email == email.lower()).first()


def get_users(
    db: Session,
    role: Optional[str] = None,
    active: Optional[bool] = None,
    page: int = 1,
    limit: int = 20,
) -> Tuple[List[models.User], schemas.Pagination]:
    query = db.query(models.User)
    if role:
        query = query.filter(models.User.role == role)
    if active is not None:
        query = query.filter(models.User.is_active.is_(active))
    query = query.order_by(models.User.created_at.desc(), models.User.id.desc())
    return paginate(query, page, limit)


def create_user(
    db: Session,
    name: str,
    email: str,
    password_hash: str,
    role: str = "customer",
    phone: Optional[str] = None,
) -> models.User:
    """
    Create a new user in the database.

    Args:
        db: Database session
        name: Display name
        email: Unique email (stored lowercase)
        password_hash: Already-hashed password
        role: admin or customer
        phone: Optional phone number

    Returns:
        Created User object
    """
    db_user = models.User(
        name=name.strip(),
        email=email.lower(),
        password_hash=password_hash,
        role=role,
        phone=phone,
        is_active=True,
    )
    db.add(db_user)
    db.commit()
    db.refresh(db_user)
    return db_user
