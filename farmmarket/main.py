"""
Farm Market API

This module implements the FastAPI application for a farm-produce marketplace:
a public storefront (catalog browsing, checkout, order tracking) and an admin
back office (catalog management, order fulfilment, analytics).

Endpoints:
    GET /health: Liveness check
    /api/auth/*: Registration, login, profile and user administration
    /api/products/*: Catalog browsing (public) and management (admin)
    /api/orders/*: Checkout and tracking (public), fulfilment (admin)
    /api/analytics/*: Dashboard and reports (admin)

Attributes:
    app (FastAPI): The FastAPI application instance
"""
from contextlib import asynccontextmanager
from datetime import date, datetime, time
from typing import List, Optional
import csv
import io
import json
import logging
from fastapi import FastAPI, Depends, Query, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from sqlalchemy.orm import Session

from . import __version__, auth, config, crud, models, orders, reporting, schemas
from .database import SessionLocal, engine, get_db
from .errors import (
    FarmMarketError,
    OrderNotFound,
    ProductNotFound,
    Conflict,
    Unauthorized,
    UserNotFound,
    ValidationError,
)

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# Create database tables
models.Base.metadata.create_all(bind=engine)


@asynccontextmanager
async def lifespan(app: FastAPI):
    db = SessionLocal()
    try:
        auth.bootstrap_admin(db)
    finally:
        db.close()
    yield


app = FastAPI(title="farm-market-api", version=__version__, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# --- Error handling ---


@app.exception_handler(FarmMarketError)
async def farm_market_error_handler(request: Request, exc: FarmMarketError) -> JSONResponse:
    """Convert domain errors to JSON responses with their mapped status code."""
    content = {"detail": exc.message}
    if exc.errors:
        content["errors"] = exc.errors
    headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, Unauthorized) else None
    return JSONResponse(status_code=exc.status_code, content=content, headers=headers)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Report malformed request bodies and parameters as 400 with field-level messages."""
    errors = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error["loc"] if part not in ("body", "query", "path"))
        errors.append(f"{location}: {error['msg']}" if location else error["msg"])
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": "Validation error", "errors": errors},
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error"},
    )


def _day_start(day: Optional[date]) -> Optional[datetime]:
    return datetime.combine(day, time.min) if day else None


def _day_end(day: Optional[date]) -> Optional[datetime]:
    return datetime.combine(day, time.max) if day else None


def _get_order_or_404(db: Session, order_id: int) -> models.Order:
    db_order = crud.get_order(db, order_id)
    if db_order is None:
        raise OrderNotFound(order_id)
    return db_order


# --- Health ---


@app.get("/health", response_model=dict)
def health():
    """
    Health check endpoint.

    Used by load balancers and orchestrators to verify the process is up.

    Returns:
        dict: {"status": "healthy"}
    """
    return {"status": "healthy"}


# --- Auth ---


@app.post("/api/auth/register", response_model=schemas.Token, status_code=status.HTTP_201_CREATED)
def register(user: schemas.UserRegister, db: Session = Depends(get_db)):
    """
    Register a new customer account.

    Raises:
        Conflict: 400 if email already exists
    """
    if crud.get_user_by_email(db, user.email):
        raise Conflict("User with this email already exists")

    db_user = crud.create_user(
        db,
        name=user.name,
        email=user.email,
        password_hash=auth.get_password_hash(user.password),
        role="customer",
        phone=user.phone,
    )
    logger.info(f"Registered user {db_user.id} ({db_user.email})")
    return auth.issue_token(db_user)


@app.post("/api/auth/login", response_model=schemas.Token)
def login(credentials: schemas.UserLogin, db: Session = Depends(get_db)):
    """
    Authenticate and login a user.

    Raises:
        Unauthorized: 401 if credentials are invalid or the account is deactivated
    """
    user = auth.authenticate_user(db, credentials.email, credentials.password)
    if not user:
        raise Unauthorized("Invalid email or password")
    if not user.is_active:
        raise Unauthorized("Your account has been deactivated")

    user.last_login = datetime.utcnow()
    db.commit()
    db.refresh(user)
    return auth.issue_token(user)


@app.get("/api/auth/me", response_model=schemas.User)
def get_current_user_info(current_user: models.User = Depends(auth.get_current_user)):
    return current_user


@app.put("/api/auth/me", response_model=schemas.ProfileResult)
def update_current_user(
    profile: schemas.ProfileUpdate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user)
):
    """
    Update the current user's name or phone. Email and role cannot be changed here.
    """
    changes = profile.model_dump(exclude_unset=True)
    if changes.get("name", "") is None:
        del changes["name"]
    for key, value in changes.items():
        setattr(current_user, key, value)
    db.commit()
    db.refresh(current_user)
    return {"message": "Profile updated successfully", "user": current_user}


@app.post("/api/auth/logout", response_model=dict)
def logout(current_user: models.User = Depends(auth.get_current_user)):
    """
    Log out. Tokens are stateless, so the client simply discards its token.
    """
    logger.info(f"User {current_user.email} logged out")
    return {"message": "Logged out successfully"}


@app.post("/api/auth/change-password", response_model=dict)
def change_password(
    payload: schemas.PasswordChange,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user)
):
    """
    Change the current user's password.

    Raises:
        Unauthorized: 401 if the current password is wrong
    """
    if not auth.verify_password(payload.current_password, current_user.password_hash):
        raise Unauthorized("Current password is incorrect")
    current_user.password_hash = auth.get_password_hash(payload.new_password)
    db.commit()
    return {"message": "Password changed successfully"}


@app.get("/api/auth/users", response_model=schemas.UserList)
def list_users(
    role: Optional[str] = None,
    active: Optional[bool] = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_admin)
):
    users, pagination = crud.get_users(db, role=role, active=active, page=page, limit=limit)
    return {"users": users, "pagination": pagination}


@app.patch("/api/auth/users/{user_id}/toggle-active", response_model=schemas.User)
def toggle_user_active(
    user_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_admin)
):
    """
    Activate or deactivate a user account (admin only).

    Raises:
        UserNotFound: 404 if user not found
        ValidationError: 400 when an admin tries to deactivate themselves
    """
    db_user = crud.get_user(db, user_id)
    if db_user is None:
        raise UserNotFound(user_id)
    if db_user.id == current_user.id:
        raise ValidationError("You cannot deactivate your own account")
    db_user.is_active = not db_user.is_active
    db.commit()
    db.refresh(db_user)
    logger.info(f"User {db_user.id} {'activated' if db_user.is_active else 'deactivated'} by {current_user.email}")
    return db_user


# --- Products ---


@app.get("/api/products", response_model=schemas.ProductList)
def list_products(
    category: Optional[str] = None,
    search: Optional[str] = None,
    min_price: Optional[float] = Query(default=None, alias="minPrice", ge=0),
    max_price: Optional[float] = Query(default=None, alias="maxPrice", ge=0),
    featured: Optional[bool] = None,
    in_stock: Optional[bool] = Query(default=None, alias="inStock"),
    sort: Optional[str] = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    db: Session = Depends(get_db)
):
    """
    Browse the catalog (public). Only available products are listed.

    Args:
        category: Exact category
        search: Case-insensitive match on name or description
        min_price / max_price: Inclusive price bounds
        featured: Only featured products when true
        in_stock: Only products with stock when true
        sort: price_asc, price_desc, name or rating (newest first otherwise)
        page / limit: Pagination

    Returns:
        {"products": [...], "pagination": {total, page, pages, limit}}
    """
    products, pagination = crud.get_products(
        db,
        category=category,
        search=search,
        min_price=min_price,
        max_price=max_price,
        featured=featured,
        in_stock=in_stock,
        sort=sort,
        page=page,
        limit=limit,
    )
    return {"products": products, "pagination": pagination}


@app.get("/api/products/featured", response_model=List[schemas.Product])
def list_featured_products(db: Session = Depends(get_db)):
    return crud.get_featured_products(db)


@app.get("/api/products/categories", response_model=List[str])
def list_categories(db: Session = Depends(get_db)):
    return crud.get_categories(db)


@app.get("/api/products/low-stock", response_model=List[schemas.Product])
def list_low_stock_products(
    threshold: int = Query(default=config.LOW_STOCK_THRESHOLD, ge=0),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_admin)
):
    return crud.get_low_stock_products(db, threshold=threshold)


@app.get("/api/products/statistics")
def get_product_statistics(
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_admin)
):
    return reporting.product_statistics(db)


@app.get("/api/products/{product_id}", response_model=schemas.Product)
def get_product(product_id: int, db: Session = Depends(get_db)):
    """
    Get a single product by ID (public).

    Raises:
        ProductNotFound: 404 if product not found
    """
    db_product = crud.get_product(db, product_id)
    if db_product is None:
        raise ProductNotFound(product_id)
    return db_product


@app.post("/api/products", response_model=schemas.Product, status_code=status.HTTP_201_CREATED)
def create_product(
    product: schemas.ProductCreate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_admin)
):
    return crud.create_product(db, product)


@app.put("/api/products/{product_id}", response_model=schemas.Product)
def update_product(
    product_id: int,
    product: schemas.ProductUpdate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_admin)
):
    """
    Edit product details (admin only). Stock is changed via the stock endpoint.

    Raises:
        ProductNotFound: 404 if product not found
    """
    db_product = crud.update_product(db, product_id, product)
    if db_product is None:
        raise ProductNotFound(product_id)
    return db_product


@app.patch("/api/products/{product_id}/stock", response_model=schemas.Product)
def update_stock(
    product_id: int,
    payload: schemas.StockUpdate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_admin)
):
    """
    Increase or decrease stock (admin only).

    Raises:
        ValidationError: 400 on an unknown action
        InsufficientStock: 400 when decreasing below zero
        ProductNotFound: 404 if product not found
    """
    if payload.action == "increase":
        db_product = crud.increase_stock(db, product_id, payload.quantity)
    elif payload.action == "decrease":
        db_product = crud.decrease_stock(db, product_id, payload.quantity)
    else:
        raise ValidationError("Invalid action. Use 'increase' or 'decrease'")
    logger.info(f"Stock of product {product_id} {payload.action}d by {payload.quantity} to {db_product.stock}")
    return db_product


@app.patch("/api/products/{product_id}/featured", response_model=schemas.Product)
def toggle_product_featured(
    product_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_admin)
):
    db_product = crud.toggle_featured(db, product_id)
    if db_product is None:
        raise ProductNotFound(product_id)
    return db_product


@app.delete("/api/products/{product_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_product(
    product_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_admin)
):
    """
    Delete a product (admin only). Past orders keep their line-item snapshot.

    Raises:
        ProductNotFound: 404 if product not found
    """
    if not crud.delete_product(db, product_id):
        raise ProductNotFound(product_id)
    logger.info(f"Product {product_id} deleted by {current_user.email}")


# --- Orders ---


@app.post("/api/orders", response_model=schemas.Order, status_code=status.HTTP_201_CREATED)
def place_order(order: schemas.OrderCreate, db: Session = Depends(get_db)):
    """
    Place an order from the storefront checkout (public).

    Raises:
        ValidationError: 400 on an empty cart or missing customer fields
        ProductNotFound: 404 if a product ID doesn't resolve
        InsufficientStock: 400 if a product can't cover the requested quantity
    """
    return orders.place_order(db, order)


@app.get("/api/orders", response_model=schemas.OrderList)
def list_orders(
    status_filter: Optional[str] = Query(default=None, alias="status"),
    start_date: Optional[date] = Query(default=None, alias="startDate"),
    end_date: Optional[date] = Query(default=None, alias="endDate"),
    phone: Optional[str] = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_admin)
):
    """
    List orders with filters and pagination (admin only), newest first.
    """
    db_orders, pagination = crud.get_orders(
        db,
        status=status_filter,
        start_date=_day_start(start_date),
        end_date=_day_end(end_date),
        phone=phone,
        page=page,
        limit=limit,
    )
    return {"orders": db_orders, "pagination": pagination}


@app.get("/api/orders/track/{order_number}", response_model=schemas.OrderTracking)
def track_order(order_number: str, db: Session = Depends(get_db)):
    """
    Public order tracking by order number.

    Raises:
        OrderNotFound: 404 if no order has this number
    """
    db_order = crud.get_order_by_number(db, order_number)
    if db_order is None:
        raise OrderNotFound(order_number)
    return db_order


@app.get("/api/orders/recent", response_model=List[schemas.OrderSummary])
def list_recent_orders(
    limit: int = Query(default=10, ge=1, le=100),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_admin)
):
    return crud.get_recent_orders(db, limit=limit)


@app.get("/api/orders/statistics")
def get_order_statistics(
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_admin)
):
    return reporting.order_statistics(db)


@app.get("/api/orders/customer/{phone}", response_model=List[schemas.Order])
def list_customer_orders(
    phone: str,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_admin)
):
    return crud.get_orders_by_phone(db, phone)


@app.get("/api/orders/export/csv")
def export_orders_csv(
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_admin)
):
    """
    Export orders to CSV (admin only).

    Returns:
        CSV file, one row per order; items_json is a JSON-encoded array of line items
    """
    db_orders = crud.get_recent_orders(db, limit=10000)

    output = io.StringIO()
    writer = csv.writer(output)

    writer.writerow([
        'order_number', 'created_at', 'customer_name', 'customer_phone', 'status',
        'payment_method', 'payment_status', 'total_amount', 'discount', 'delivery_fee',
        'final_amount', 'items_json',
    ])

    for order in db_orders:
        items_json = json.dumps([
            {"productId": item.product_id, "name": item.name, "quantity": item.quantity, "subtotal": float(item.subtotal)}
            for item in order.items
        ])
        writer.writerow([
            order.order_number,
            order.created_at.isoformat(),
            order.customer_name,
            order.customer_phone,
            order.status,
            order.payment_method,
            order.payment_status,
            order.total_amount,
            order.discount,
            order.delivery_fee,
            order.final_amount,
            items_json,
        ])

    output.seek(0)
    return StreamingResponse(
        iter([output.getvalue()]),
        media_type="text/csv",
        headers={"Content-Disposition": "attachment; filename=orders.csv"}
    )


@app.get("/api/orders/{order_id}", response_model=schemas.Order)
def get_order(
    order_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_admin)
):
    return _get_order_or_404(db, order_id)


@app.patch("/api/orders/{order_id}/status", response_model=schemas.OrderActionResult)
def update_order_status(
    order_id: int,
    payload: schemas.StatusUpdate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_admin)
):
    """
    Change an order's status (admin only). The change is appended to the status history.

    Raises:
        OrderNotFound: 404 if order not found
        InvalidTransition: 400 if the change is not allowed
    """
    db_order = _get_order_or_404(db, order_id)
    db_order, warnings = orders.update_status(db, db_order, payload.status, current_user.email, payload.notes)
    return {"message": "Order status updated successfully", "order": db_order, "warnings": warnings}


@app.patch("/api/orders/{order_id}/cancel", response_model=schemas.OrderActionResult)
def cancel_order(
    order_id: int,
    payload: schemas.CancelRequest,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_admin)
):
    """
    Cancel an order and restore its stock (admin only).

    Raises:
        OrderNotFound: 404 if order not found
        InvalidTransition: 400 if the order is delivered or already cancelled
    """
    db_order = _get_order_or_404(db, order_id)
    db_order, warnings = orders.cancel_order(db, db_order, payload.reason, current_user.email)
    return {"message": "Order cancelled successfully", "order": db_order, "warnings": warnings}


@app.put("/api/orders/{order_id}/delivery", response_model=schemas.Order)
def update_order_delivery(
    order_id: int,
    payload: schemas.DeliveryUpdate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_admin)
):
    db_order = _get_order_or_404(db, order_id)
    return orders.update_delivery(db, db_order, payload)


# --- Analytics ---


@app.get("/api/analytics/dashboard")
def get_dashboard(
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_admin)
):
    return reporting.dashboard(db)


@app.get("/api/analytics/sales-report")
def get_sales_report(
    start_date: Optional[date] = Query(default=None, alias="startDate"),
    end_date: Optional[date] = Query(default=None, alias="endDate"),
    group_by: str = Query(default="day", alias="groupBy"),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_admin)
):
    """
    Sales for a date range grouped by hour, day or month (admin only).

    Raises:
        ValidationError: 400 if either date is missing or the range is inverted
    """
    return reporting.sales_report(db, _day_start(start_date), _day_end(end_date), group_by)


@app.get("/api/analytics/product-performance")
def get_product_performance(
    start_date: Optional[date] = Query(default=None, alias="startDate"),
    end_date: Optional[date] = Query(default=None, alias="endDate"),
    limit: int = Query(default=10, ge=1, le=100),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_admin)
):
    return reporting.product_performance(db, _day_start(start_date), _day_end(end_date), limit)


@app.get("/api/analytics/customer-insights")
def get_customer_insights(
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_admin)
):
    return reporting.customer_insights(db)


@app.get("/api/analytics/inventory")
def get_inventory_report(
    threshold: int = Query(default=config.LOW_STOCK_THRESHOLD, ge=0),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_admin)
):
    return reporting.inventory_report(db, threshold)


@app.get("/api/analytics/order-trends")
def get_order_trends(
    days: int = 30,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_admin)
):
    return reporting.order_trends(db, days)


def run():
    """Console entry point: serve the API with uvicorn."""
    import uvicorn

    uvicorn.run("farmmarket.main:app", host=config.HOST, port=config.PORT)
