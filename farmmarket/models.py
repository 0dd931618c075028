"""
SQLAlchemy ORM models for the Farm Market API.

Defines the database schema for products, orders, order line items,
order status history and users.
"""
from datetime import datetime
from decimal import Decimal
from sqlalchemy import Column, Integer, String, DateTime, Numeric, ForeignKey, Text, Boolean, Float, JSON
from sqlalchemy.orm import relationship
from .database import Base

CENTS = Decimal("0.01")


def _money():
    return Numeric(10, 2)


class Product(Base):
    """
    Product model representing a sellable item in the catalog.

    Attributes:
        id (int): Primary key, auto-incremented product ID
        name (str): Product name
        price (Decimal): Unit price
        unit (str): Selling unit (kg, lb, piece, dozen, gram, liter)
        stock (int): Units currently available for sale
        category (str): Product category
        is_available (bool): Whether the product is listed; always False when stock is 0
        is_featured (bool): Whether the product is showcased on the storefront
        discount (float): Discount percentage (0-100)
        nutrition_info (dict): Optional calories, protein, carbs and fat per unit
        created_at (datetime): Timestamp when the product was created
    """
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False, index=True)
    description = Column(String(500), nullable=True)
    price = Column(_money(), nullable=False)
    unit = Column(String, nullable=False, default="kg")
    stock = Column(Integer, nullable=False, default=0)
    category = Column(String, nullable=False, default="vegetables", index=True)
    image_url = Column(String, nullable=True)
    is_available = Column(Boolean, nullable=False, default=True)
    is_featured = Column(Boolean, nullable=False, default=False)
    discount = Column(Float, nullable=False, default=0)
    origin = Column(String(100), nullable=True)
    nutrition_info = Column(JSON, nullable=True)
    ratings_average = Column(Float, nullable=False, default=0)
    ratings_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    @property
    def final_price(self) -> Decimal:
        price = Decimal(str(self.price))
        if self.discount:
            return (price - price * Decimal(str(self.discount)) / 100).quantize(CENTS)
        return price

    @property
    def in_stock(self) -> bool:
        return self.stock > 0

    def __repr__(self):
        return f"<Product(id={self.id}, name='{self.name}', stock={self.stock})>"


class Order(Base):
    """
    Order model representing a placed customer order.

    Amounts are captured at placement time and never recomputed:
    final_amount = total_amount - discount + delivery_fee.

    Attributes:
        id (int): Primary key
        order_number (str): Human-readable daily sequential number, e.g. ORD2505230007
        status (str): Current lifecycle status
        items (list): Line items snapshotted at placement
        status_history (list): Append-only audit trail of status changes
    """
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    order_number = Column(String(16), unique=True, index=True, nullable=False)
    customer_name = Column(String(100), nullable=False)
    customer_email = Column(String, nullable=True)
    customer_phone = Column(String, nullable=False, index=True)
    delivery_street = Column(String, nullable=True)
    delivery_city = Column(String, nullable=True)
    delivery_state = Column(String, nullable=True)
    delivery_zip_code = Column(String, nullable=True)
    delivery_full_address = Column(Text, nullable=False)
    payment_method = Column(String, nullable=False, default="Pay on Delivery")
    payment_status = Column(String, nullable=False, default="Pending")
    total_amount = Column(_money(), nullable=False, default=0)
    discount = Column(_money(), nullable=False, default=0)
    delivery_fee = Column(_money(), nullable=False, default=0)
    final_amount = Column(_money(), nullable=False)
    status = Column(String, nullable=False, default="Pending", index=True)
    notes = Column(String(500), nullable=True)
    delivery_date = Column(DateTime, nullable=True)
    estimated_delivery_time = Column(String, nullable=True)
    tracking_number = Column(String, nullable=True)
    cancellation_reason = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    items = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.id",
    )
    status_history = relationship(
        "OrderStatusEvent",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderStatusEvent.id",
    )

    @property
    def delivery_address(self) -> dict:
        return {
            "full_address": self.delivery_full_address,
            "street": self.delivery_street,
            "city": self.delivery_city,
            "state": self.delivery_state,
            "zip_code": self.delivery_zip_code,
        }


class OrderItem(Base):
    """
    Line item owned by an order.

    product_id is a weak reference: the product may be edited or deleted later,
    so name, price and unit are copied at placement time.
    """
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    product_id = Column(Integer, nullable=False, index=True)
    name = Column(String(100), nullable=False)
    price = Column(_money(), nullable=False)
    unit = Column(String, nullable=False)
    quantity = Column(Integer, nullable=False)
    subtotal = Column(_money(), nullable=False)

    order = relationship("Order", back_populates="items")


class OrderStatusEvent(Base):
    """
    OrderStatusEvent model representing one entry of an order's status history.

    Attributes:
        id (int): Primary key, auto-incrementing event ID
        order_id (int): Foreign key to the order
        status (str): Status the order moved to
        timestamp (datetime): When the change happened
        updated_by (str): Who made the change (optional)
        notes (str): Free-form notes (optional)
    """
    __tablename__ = "order_status_events"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    status = Column(String, nullable=False)
    timestamp = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_by = Column(String, nullable=True)
    notes = Column(Text, nullable=True)

    order = relationship("Order", back_populates="status_history")


class User(Base):
    """
    User model representing a back-office account.

    Attributes:
        id (int): Primary key, auto-incremented user ID
        name (str): User's full name
        email (str): User's email address (unique)
        password_hash (str): Hashed password
        role (str): User role (admin, customer)
        is_active (bool): Whether the user account is active
        created_at (datetime): Timestamp when the user was created
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    email = Column(String, unique=True, index=True, nullable=False)
    password_hash = Column(String, nullable=False)
    role = Column(String, default="customer", nullable=False)
    phone = Column(String, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    last_login = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
