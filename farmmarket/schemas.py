"""
Pydantic schemas for request/response validation in the Farm Market API.

These schemas define the structure of data for API requests and responses.
JSON keys are camelCase on the wire; Python attributes stay snake_case.
"""
from datetime import datetime
from decimal import Decimal
from typing import Annotated, Optional, List, Literal, Union
from pydantic import AliasChoices, BaseModel, ConfigDict, EmailStr, Field, PlainSerializer, field_validator
from pydantic.alias_generators import to_camel

ProductUnit = Literal["kg", "lb", "piece", "dozen", "gram", "liter"]
ProductCategory = Literal["vegetables", "fruits", "grains", "dairy", "meat", "other"]
OrderStatus = Literal["Pending", "Confirmed", "Processing", "Packed", "Shipped", "Delivered", "Cancelled"]
PaymentMethod = Literal["Pay on Delivery", "Online", "Card", "UPI"]
PaymentStatus = Literal["Pending", "Paid", "Failed", "Refunded"]
UserRole = Literal["admin", "customer"]

# Exact decimal in Python, plain JSON number on the wire
Money = Annotated[Decimal, PlainSerializer(float, return_type=float, when_used="json")]


class CamelModel(BaseModel):
    """Base schema: camelCase aliases, accepts either naming on input."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class Pagination(CamelModel):
    total: int
    page: int
    pages: int
    limit: int


# --------
# Products
# --------

class NutritionInfo(CamelModel):
    calories: Optional[float] = Field(default=None, ge=0)
    protein: Optional[float] = Field(default=None, ge=0)
    carbs: Optional[float] = Field(default=None, ge=0)
    fat: Optional[float] = Field(default=None, ge=0)


class ProductBase(CamelModel):
    """Base schema with common product attributes."""
    name: str = Field(..., min_length=1, max_length=100)
    price: Money = Field(..., ge=0)
    unit: ProductUnit = "kg"
    category: ProductCategory = "vegetables"
    description: Optional[str] = Field(default=None, max_length=500)
    image_url: Optional[str] = None
    is_featured: bool = False
    discount: float = Field(default=0, ge=0, le=100)
    origin: Optional[str] = Field(default=None, max_length=100)
    nutrition_info: Optional[NutritionInfo] = None

    @field_validator("name")
    @classmethod
    def name_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Product name is required")
        return v


class ProductCreate(ProductBase):
    """Schema for creating a new product."""
    stock: int = Field(default=0, ge=0)
    is_available: bool = True


class ProductUpdate(CamelModel):
    """
    Schema for editing a product. All fields are optional.

    Stock is deliberately absent: it only changes through the stock endpoint.
    """
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    price: Optional[Money] = Field(default=None, ge=0)
    unit: Optional[ProductUnit] = None
    category: Optional[ProductCategory] = None
    description: Optional[str] = Field(default=None, max_length=500)
    image_url: Optional[str] = None
    is_available: Optional[bool] = None
    is_featured: Optional[bool] = None
    discount: Optional[float] = Field(default=None, ge=0, le=100)
    origin: Optional[str] = Field(default=None, max_length=100)
    nutrition_info: Optional[NutritionInfo] = None


class StockUpdate(CamelModel):
    """Schema for PATCH /products/{id}/stock."""
    quantity: int = Field(..., ge=1)
    action: str = Field(..., description="'increase' or 'decrease'")


class Product(ProductBase):
    """
    Schema for product responses, includes all database fields.

    Attributes:
        id (int): Product's unique identifier
        stock (int): Units available
        is_available (bool): Listed on the storefront
        final_price (Decimal): Price after discount
        in_stock (bool): stock > 0
    """
    id: int
    stock: int
    is_available: bool
    final_price: Money
    in_stock: bool
    ratings_average: float = 0
    ratings_count: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ProductList(CamelModel):
    products: List[Product]
    pagination: Pagination


# ------
# Orders
# ------

class OrderItemIn(CamelModel):
    """One cart line submitted at checkout. Client prices are never trusted."""
    product_id: int = Field(..., validation_alias=AliasChoices("productId", "_id", "product_id", "id"))
    quantity: int = Field(..., ge=1)


class DeliveryAddress(CamelModel):
    full_address: str
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None


class OrderCreate(CamelModel):
    """Schema for placing an order (public checkout)."""
    customer_name: str = Field(..., max_length=100)
    customer_phone: str
    delivery_address: Union[DeliveryAddress, str]
    customer_email: Optional[EmailStr] = None
    payment_method: PaymentMethod = "Pay on Delivery"
    notes: Optional[str] = Field(default=None, max_length=500)
    discount: Money = Field(default=Decimal("0"), ge=0)
    delivery_fee: Money = Field(default=Decimal("0"), ge=0)
    items: List[OrderItemIn] = Field(default_factory=list, description="Cart lines")

    @field_validator("customer_email", mode="before")
    @classmethod
    def blank_email_is_none(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator("delivery_address", mode="after")
    @classmethod
    def normalize_address(cls, v):
        if isinstance(v, str):
            return DeliveryAddress(full_address=v)
        return v


class OrderItem(CamelModel):
    """Line item snapshot captured at placement."""
    product_id: int
    name: str
    price: Money
    unit: str
    quantity: int
    subtotal: Money


class StatusEvent(CamelModel):
    status: str
    timestamp: datetime
    updated_by: Optional[str] = None
    notes: Optional[str] = None


class TrackingEvent(CamelModel):
    """Status history entry as shown to shoppers; omits who made the change."""
    status: str
    timestamp: datetime
    notes: Optional[str] = None


class Order(CamelModel):
    """
    Schema for order responses, includes all database fields.

    Attributes:
        id (int): Order's unique identifier
        order_number (str): Human-readable order number
        items (List[OrderItem]): Snapshotted line items
        status_history (List[StatusEvent]): Append-only status log
    """
    id: int
    order_number: str
    customer_name: str
    customer_email: Optional[str] = None
    customer_phone: str
    delivery_address: DeliveryAddress
    payment_method: str
    payment_status: str
    items: List[OrderItem]
    total_amount: Money
    discount: Money
    delivery_fee: Money
    final_amount: Money
    status: str
    notes: Optional[str] = None
    delivery_date: Optional[datetime] = None
    estimated_delivery_time: Optional[str] = None
    tracking_number: Optional[str] = None
    cancellation_reason: Optional[str] = None
    status_history: List[StatusEvent]
    created_at: datetime
    updated_at: Optional[datetime] = None


class OrderList(CamelModel):
    orders: List[Order]
    pagination: Pagination


class OrderTracking(CamelModel):
    """Public tracking projection: no contact details, no amounts."""
    order_number: str
    customer_name: str
    status: str
    status_history: List[TrackingEvent]
    estimated_delivery_time: Optional[str] = None
    tracking_number: Optional[str] = None
    created_at: datetime


class OrderSummary(CamelModel):
    id: int
    order_number: str
    customer_name: str
    status: str
    final_amount: Money
    created_at: datetime


class OrderActionResult(CamelModel):
    """Response for status changes and cancellations."""
    message: str
    order: Order
    warnings: List[str] = Field(default_factory=list)


class StatusUpdate(CamelModel):
    status: OrderStatus
    notes: Optional[str] = None


class CancelRequest(CamelModel):
    reason: Optional[str] = None


class DeliveryUpdate(CamelModel):
    delivery_date: Optional[datetime] = None
    estimated_delivery_time: Optional[str] = None
    tracking_number: Optional[str] = None


# ----
# Auth
# ----

class UserRegister(CamelModel):
    """Schema for account registration with password."""
    name: str = Field(..., min_length=1, max_length=100)
    email: EmailStr
    password: str = Field(..., min_length=6, description="Password must be at least 6 characters")
    phone: Optional[str] = None


class UserLogin(CamelModel):
    """Schema for login."""
    email: EmailStr
    password: str


class PasswordChange(CamelModel):
    current_password: str
    new_password: str = Field(..., min_length=6)


class ProfileUpdate(CamelModel):
    """Fields a user may change on their own account. Omitted fields stay as they are."""
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    phone: Optional[str] = None

    @field_validator("name")
    @classmethod
    def name_not_blank(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        v = v.strip()
        if not v:
            raise ValueError("Name cannot be blank")
        return v


class User(CamelModel):
    """Schema for user responses; never includes the password hash."""
    id: int
    name: str
    email: str
    role: UserRole
    phone: Optional[str] = None
    is_active: bool
    last_login: Optional[datetime] = None
    created_at: datetime


class ProfileResult(CamelModel):
    message: str
    user: User


class Token(CamelModel):
    """Schema for JWT token response."""
    access_token: str
    token_type: str = "bearer"
    user: User


class TokenData(BaseModel):
    """Schema for data stored in JWT token."""
    user_id: Optional[int] = None
    email: Optional[str] = None
    role: Optional[str] = None


class UserList(CamelModel):
    users: List[User]
    pagination: Pagination
