"""
Sales and inventory reports for the back-office dashboard.

Every figure is recomputed on each call from the order and product tables.
Aggregates (count, sum, avg, grouping by a column) run in SQL; grouping by
calendar bucket is done in Python over rows already filtered in SQL, which
keeps the queries portable between PostgreSQL and SQLite.
Revenue never includes cancelled orders.
"""
from collections import OrderedDict
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, List, Optional, Tuple
from sqlalchemy import func
from sqlalchemy.orm import Session

from . import config, models
from .errors import ValidationError

CANCELLED = "Cancelled"
DELIVERED = "Delivered"

BUCKET_FORMATS = {
    "hour": "%Y-%m-%d %H:00",
    "day": "%Y-%m-%d",
    "month": "%Y-%m",
}


def _money(value) -> float:
    return round(float(value or 0), 2)


def percentage_change(current: float, previous: float) -> float:
    """Growth from previous to current in percent; 0 when there is no baseline."""
    if not previous:
        return 0.0
    return round((current - previous) / previous * 100, 2)


def start_of_day(moment: datetime) -> datetime:
    return moment.replace(hour=0, minute=0, second=0, microsecond=0)


def start_of_month(moment: datetime) -> datetime:
    return start_of_day(moment).replace(day=1)


def previous_month_start(month_start: datetime) -> datetime:
    return start_of_month(month_start - timedelta(days=1))


def _revenue_between(db: Session, start: datetime, end: Optional[datetime] = None) -> float:
    query = db.query(func.sum(models.Order.final_amount)).filter(
        models.Order.status != CANCELLED,
        models.Order.created_at >= start,
    )
    if end is not None:
        query = query.filter(models.Order.created_at < end)
    return _money(query.scalar())


def _count_orders_since(db: Session, start: datetime) -> int:
    return db.query(func.count(models.Order.id)).filter(models.Order.created_at >= start).scalar()


def bucket_orders(
    rows: Iterable[Tuple[datetime, float]],
    key: Callable[[datetime], str],
) -> "OrderedDict[str, List[float]]":
    """
    Group (created_at, amount) rows by a calendar key.

    Args:
        rows: Rows ordered by created_at
        key: Maps a timestamp to its bucket label

    Returns:
        Ordered mapping of bucket label to the amounts in it
    """
    buckets: "OrderedDict[str, List[float]]" = OrderedDict()
    for created_at, amount in rows:
        buckets.setdefault(key(created_at), []).append(float(amount or 0))
    return buckets


def status_breakdown(db: Session) -> Dict[str, int]:
    rows = db.query(models.Order.status, func.count(models.Order.id)).group_by(models.Order.status).all()
    return {status: count for status, count in rows}


def product_summary(product: models.Product) -> dict:
    return {
        "id": product.id,
        "name": product.name,
        "stock": product.stock,
        "unit": product.unit,
        "price": _money(product.price),
        "category": product.category,
    }


def order_summary(order: models.Order) -> dict:
    return {
        "id": order.id,
        "orderNumber": order.order_number,
        "customerName": order.customer_name,
        "status": order.status,
        "finalAmount": _money(order.final_amount),
        "createdAt": order.created_at.isoformat(),
    }


def top_products(
    db: Session,
    limit: int = 5,
    rank_by: str = "quantity",
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> List[dict]:
    """
    Best-selling products, grouping line items of non-cancelled orders by product reference.

    Args:
        db: Database session
        limit: Number of products to return
        rank_by: "quantity" or "revenue"
        start: Optional inclusive lower bound on order creation
        end: Optional inclusive upper bound on order creation

    Returns:
        List of dicts with productId, name, totalQuantity, totalRevenue,
        orderCount and averagePrice
    """
    total_quantity = func.sum(models.OrderItem.quantity)
    total_revenue = func.sum(models.OrderItem.subtotal)

    query = (
        db.query(
            models.OrderItem.product_id,
            func.max(models.OrderItem.name).label("name"),
            total_quantity.label("total_quantity"),
            total_revenue.label("total_revenue"),
            func.count(models.OrderItem.id).label("order_count"),
            func.avg(models.OrderItem.price).label("average_price"),
        )
        .join(models.Order, models.OrderItem.order_id == models.Order.id)
        .filter(models.Order.status != CANCELLED)
    )
    if start is not None:
        query = query.filter(models.Order.created_at >= start)
    if end is not None:
        query = query.filter(models.Order.created_at <= end)

    ranking = total_revenue if rank_by == "revenue" else total_quantity
    rows = (
        query.group_by(models.OrderItem.product_id)
        .order_by(ranking.desc(), models.OrderItem.product_id.asc())
        .limit(limit)
        .all()
    )
    return [
        {
            "productId": row.product_id,
            "name": row.name,
            "totalQuantity": int(row.total_quantity or 0),
            "totalRevenue": _money(row.total_revenue),
            "orderCount": int(row.order_count),
            "averagePrice": _money(row.average_price),
        }
        for row in rows
    ]


def dashboard(db: Session, now: Optional[datetime] = None, threshold: Optional[int] = None) -> dict:
    """
    Overview for the admin dashboard.

    Returns:
        dict: overview totals, status breakdown, top products, inventory alerts, recent orders
    """
    now = now or datetime.utcnow()
    threshold = config.LOW_STOCK_THRESHOLD if threshold is None else threshold
    today = start_of_day(now)
    this_month = start_of_month(now)
    last_month = previous_month_start(this_month)

    month_revenue = _revenue_between(db, this_month)
    last_month_revenue = _revenue_between(db, last_month, this_month)

    low_stock = [
        product_summary(p)
        for p in db.query(models.Product).filter(
            models.Product.stock > 0,
            models.Product.stock <= threshold,
            models.Product.is_available.is_(True),
        ).order_by(models.Product.stock.asc()).all()
    ]
    out_of_stock = db.query(func.count(models.Product.id)).filter(models.Product.stock == 0).scalar()
    recent = (
        db.query(models.Order)
        .order_by(models.Order.created_at.desc(), models.Order.id.desc())
        .limit(5)
        .all()
    )

    return {
        "overview": {
            "totalProducts": db.query(func.count(models.Product.id)).scalar(),
            "totalOrders": db.query(func.count(models.Order.id)).scalar(),
            "totalCustomers": db.query(func.count(func.distinct(models.Order.customer_phone))).scalar(),
            "todayOrders": _count_orders_since(db, today),
            "todayRevenue": _revenue_between(db, today),
            "monthOrders": _count_orders_since(db, this_month),
            "monthRevenue": month_revenue,
            "lastMonthRevenue": last_month_revenue,
            "revenueGrowth": percentage_change(month_revenue, last_month_revenue),
        },
        "orderStatusBreakdown": status_breakdown(db),
        "topProducts": top_products(db, limit=5, rank_by="quantity"),
        "inventory": {
            "lowStockProducts": low_stock,
            "outOfStockProducts": out_of_stock,
        },
        "recentOrders": [order_summary(order) for order in recent],
    }


def sales_report(db: Session, start: datetime, end: datetime, group_by: str = "day") -> dict:
    """
    Revenue and order counts for a date range, bucketed by hour, day or month.

    Args:
        db: Database session
        start: Inclusive start of the range
        end: Inclusive end of the range
        group_by: "hour", "day" or "month" (anything else falls back to "day")

    Returns:
        dict with period, summary and salesData

    Raises:
        ValidationError: if start is after end
    """
    if start is None or end is None:
        raise ValidationError("Start date and end date are required")
    if start > end:
        raise ValidationError("Start date must not be after end date")

    group_by = group_by if group_by in BUCKET_FORMATS else "day"
    fmt = BUCKET_FORMATS[group_by]

    in_range = (
        models.Order.status != CANCELLED,
        models.Order.created_at >= start,
        models.Order.created_at <= end,
    )
    rows = (
        db.query(models.Order.created_at, models.Order.final_amount)
        .filter(*in_range)
        .order_by(models.Order.created_at.asc())
        .all()
    )
    buckets = bucket_orders(rows, lambda created_at: created_at.strftime(fmt))

    totals = db.query(
        func.count(models.Order.id),
        func.sum(models.Order.final_amount),
        func.avg(models.Order.final_amount),
    ).filter(*in_range).one()
    total_items = (
        db.query(func.count(models.OrderItem.id))
        .join(models.Order, models.OrderItem.order_id == models.Order.id)
        .filter(*in_range)
        .scalar()
    )

    return {
        "period": {"startDate": start.isoformat(), "endDate": end.isoformat(), "groupBy": group_by},
        "summary": {
            "totalOrders": totals[0],
            "totalRevenue": _money(totals[1]),
            "averageOrderValue": _money(totals[2]),
            "totalItems": total_items,
        },
        "salesData": [
            {
                "period": label,
                "totalOrders": len(amounts),
                "totalRevenue": _money(sum(amounts)),
                "averageOrderValue": _money(sum(amounts) / len(amounts)),
            }
            for label, amounts in buckets.items()
        ],
    }


def product_performance(
    db: Session,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    limit: int = 10,
) -> List[dict]:
    """
    Top products by revenue, enriched with their current stock.

    Products deleted since they were sold report stock 0 and isAvailable false.
    """
    performance = top_products(db, limit=limit, rank_by="revenue", start=start, end=end)
    product_ids = [entry["productId"] for entry in performance]
    products = {
        p.id: p for p in db.query(models.Product).filter(models.Product.id.in_(product_ids)).all()
    } if product_ids else {}

    for entry in performance:
        product = products.get(entry["productId"])
        entry["currentStock"] = product.stock if product else 0
        entry["isAvailable"] = product.is_available if product else False
    return performance


def customer_insights(db: Session, now: Optional[datetime] = None, new_customer_days: int = 30) -> dict:
    """
    Customer aggregates keyed by phone number over non-cancelled orders.

    Returns:
        dict: top customers by order count and by spending, and customers whose
        first order falls within the last `new_customer_days` days
    """
    now = now or datetime.utcnow()
    order_count = func.count(models.Order.id)
    total_spent = func.sum(models.Order.final_amount)
    first_order = func.min(models.Order.created_at)

    base = (
        db.query(
            models.Order.customer_phone.label("phone"),
            func.max(models.Order.customer_name).label("customer_name"),
            order_count.label("total_orders"),
            total_spent.label("total_spent"),
            func.avg(models.Order.final_amount).label("average_order_value"),
            first_order.label("first_order"),
        )
        .filter(models.Order.status != CANCELLED)
        .group_by(models.Order.customer_phone)
    )

    def serialize(row) -> dict:
        return {
            "phone": row.phone,
            "customerName": row.customer_name,
            "totalOrders": int(row.total_orders),
            "totalSpent": _money(row.total_spent),
            "averageOrderValue": _money(row.average_order_value),
            "firstOrder": row.first_order.isoformat() if row.first_order else None,
        }

    by_orders = base.order_by(order_count.desc(), models.Order.customer_phone.asc()).limit(10).all()
    by_spending = base.order_by(total_spent.desc(), models.Order.customer_phone.asc()).limit(10).all()

    cutoff = now - timedelta(days=new_customer_days)
    new_customers = base.having(first_order >= cutoff).order_by(first_order.desc()).all()

    return {
        "topCustomersByOrders": [serialize(row) for row in by_orders],
        "topCustomersBySpending": [serialize(row) for row in by_spending],
        "newCustomers": len(new_customers),
        "newCustomersList": [serialize(row) for row in new_customers[:10]],
    }


def inventory_report(db: Session, threshold: Optional[int] = None) -> dict:
    """
    Inventory health: totals, per-category breakdown, stock value and alert lists.

    Args:
        db: Database session
        threshold: Low-stock bound (0 < stock <= threshold)

    Returns:
        dict with summary, categoryBreakdown, lowStockList and outOfStockList
    """
    threshold = config.LOW_STOCK_THRESHOLD if threshold is None else threshold
    product_count = func.count(models.Product.id)

    categories = (
        db.query(
            models.Product.category,
            product_count.label("count"),
            func.sum(models.Product.stock).label("total_stock"),
            func.avg(models.Product.price).label("average_price"),
        )
        .group_by(models.Product.category)
        .order_by(product_count.desc(), models.Product.category.asc())
        .all()
    )

    low_stock = (
        db.query(models.Product)
        .filter(models.Product.stock > 0, models.Product.stock <= threshold)
        .order_by(models.Product.stock.asc(), models.Product.name.asc())
        .all()
    )
    out_of_stock = (
        db.query(models.Product)
        .filter(models.Product.stock == 0)
        .order_by(models.Product.name.asc())
        .all()
    )
    inventory_value = db.query(func.sum(models.Product.price * models.Product.stock)).scalar()

    return {
        "summary": {
            "totalProducts": db.query(product_count).scalar(),
            "availableProducts": db.query(product_count).filter(models.Product.is_available.is_(True)).scalar(),
            "outOfStockProducts": len(out_of_stock),
            "lowStockProducts": len(low_stock),
            "totalInventoryValue": _money(inventory_value),
        },
        "categoryBreakdown": [
            {
                "category": row.category,
                "count": int(row.count),
                "totalStock": int(row.total_stock or 0),
                "averagePrice": _money(row.average_price),
            }
            for row in categories
        ],
        "lowStockList": [product_summary(p) for p in low_stock],
        "outOfStockList": [product_summary(p) for p in out_of_stock],
    }


def order_trends(db: Session, days: int = 30, now: Optional[datetime] = None) -> dict:
    """
    Daily order series for the past N days (including today), zero-filled.

    Returns list of {date, totalOrders, totalRevenue, averageOrderValue,
    cancelledOrders, deliveredOrders}. totalOrders counts every order;
    revenue figures skip cancelled ones.
    """
    days = max(1, min(days, 180))  # clamp to sane bounds
    now = now or datetime.utcnow()
    start_dt = start_of_day(now) - timedelta(days=days - 1)

    rows = (
        db.query(models.Order.created_at, models.Order.final_amount, models.Order.status)
        .filter(models.Order.created_at >= start_dt)
        .order_by(models.Order.created_at.asc())
        .all()
    )

    data_map: Dict[str, dict] = {}
    for created_at, final_amount, status in rows:
        entry = data_map.setdefault(
            created_at.date().isoformat(),
            {"totalOrders": 0, "revenue": [], "cancelledOrders": 0, "deliveredOrders": 0},
        )
        entry["totalOrders"] += 1
        if status == CANCELLED:
            entry["cancelledOrders"] += 1
        else:
            entry["revenue"].append(float(final_amount or 0))
        if status == DELIVERED:
            entry["deliveredOrders"] += 1

    series = []
    for i in range(days):
        d = (start_dt + timedelta(days=i)).date().isoformat()
        entry = data_map.get(d, {"totalOrders": 0, "revenue": [], "cancelledOrders": 0, "deliveredOrders": 0})
        revenue = entry["revenue"]
        series.append({
            "date": d,
            "totalOrders": entry["totalOrders"],
            "totalRevenue": _money(sum(revenue)),
            "averageOrderValue": _money(sum(revenue) / len(revenue)) if revenue else 0.0,
            "cancelledOrders": entry["cancelledOrders"],
            "deliveredOrders": entry["deliveredOrders"],
        })

    return {"days": days, "series": series}


def order_statistics(db: Session, now: Optional[datetime] = None) -> dict:
    """Revenue stats, status breakdown, and today's / this month's order counts."""
    now = now or datetime.utcnow()
    totals = db.query(
        func.count(models.Order.id),
        func.sum(models.Order.final_amount),
        func.avg(models.Order.final_amount),
    ).filter(models.Order.status != CANCELLED).one()

    return {
        "totalRevenue": _money(totals[1]),
        "totalOrders": totals[0],
        "averageOrderValue": _money(totals[2]),
        "statusBreakdown": status_breakdown(db),
        "todayOrders": _count_orders_since(db, start_of_day(now)),
        "monthOrders": _count_orders_since(db, start_of_month(now)),
    }


def product_statistics(db: Session, threshold: Optional[int] = None) -> dict:
    threshold = config.LOW_STOCK_THRESHOLD if threshold is None else threshold
    count = func.count(models.Product.id)
    categories = db.query(models.Product.category, count).group_by(models.Product.category).all()
    return {
        "totalProducts": db.query(count).scalar(),
        "availableProducts": db.query(count).filter(models.Product.is_available.is_(True)).scalar(),
        "outOfStock": db.query(count).filter(models.Product.stock == 0).scalar(),
        "lowStock": db.query(count).filter(models.Product.stock > 0, models.Product.stock <= threshold).scalar(),
        "categoryStats": {category: total for category, total in categories},
    }
