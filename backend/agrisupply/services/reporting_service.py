# Overview: Service-layer aggregates for dashboards and analytics; sales, products, customers and stock.

"""
Reporting Service

All figures are owner-scoped and computed with SQL aggregates over orders,
order items, customers and products. Money is integer paise; averages are
rounded half-up to a whole paisa.

STATUS WINDOWS:
- Dashboard widgets count revenue from Confirmed and Delivered orders.
- Analytics reports count every order at or past confirmation
  (Confirmed, Processing, Shipped, Delivered).

Period buckets use SQLite strftime formats (day, week, month, hour).
"""

from __future__ import annotations

from datetime import datetime, timedelta

from sqlalchemy import case, func

from ..extensions import db
from ..models import Customer, Order, OrderItem, Product
from ..models.orders import STATUS_CONFIRMED, STATUS_PENDING, STATUS_PROCESSING
from agrisupply.time_utils import parse_iso_datetime, to_utc_z, utcnow
from .order_service import CONFIRMED_STATUSES, REVENUE_STATUSES


class ReportError(Exception):
    """Raised when report parameters are invalid."""
    pass


OPEN_ORDER_STATUSES = (STATUS_PENDING, STATUS_CONFIRMED, STATUS_PROCESSING)

PERIOD_FORMATS = {
    "hour": "%Y-%m-%d %H:00",
    "day": "%Y-%m-%d",
    "week": "%Y-W%W",
    "month": "%Y-%m",
}

SLOW_MOVING_DAYS = 30


def _average(total: int, count: int) -> int:
    if not count:
        return 0
    return (total + count // 2) // count


def period_start(period_days: int, now: datetime | None = None) -> datetime:
    if period_days < 1:
        raise ReportError("period must be a positive number of days")
    return (now or utcnow()) - timedelta(days=period_days)


def _parse_range(start: str | None, end: str | None) -> tuple[datetime | None, datetime | None]:
    try:
        start_dt = parse_iso_datetime(start) if start else None
        end_dt = parse_iso_datetime(end) if end else None
    except ValueError:
        raise ReportError("start and end must be ISO-8601 datetimes")
    if start_dt and end_dt and start_dt > end_dt:
        raise ReportError("start must be before end")
    return start_dt, end_dt


def _period_expr(group_by: str):
    fmt = PERIOD_FORMATS.get(group_by)
    if fmt is None:
        raise ReportError(f"group_by must be one of: {', '.join(PERIOD_FORMATS)}")
    return func.strftime(fmt, Order.created_at)


def _order_filters(owner_id: int, statuses, start: datetime | None, end: datetime | None) -> list:
    filters = [Order.created_by_user_id == owner_id, Order.order_status.in_(statuses)]
    if start:
        filters.append(Order.created_at >= start)
    if end:
        filters.append(Order.created_at <= end)
    return filters


# =============================================================================
# BUILDING BLOCKS
# =============================================================================

def sales_by_period(
    owner_id: int,
    *,
    group_by: str = "day",
    start: datetime | None = None,
    end: datetime | None = None,
    payment_method: str | None = None,
    statuses=REVENUE_STATUSES,
) -> list[dict]:
    period = _period_expr(group_by)
    filters = _order_filters(owner_id, statuses, start, end)
    if payment_method:
        filters.append(Order.payment_method == payment_method)

    item_counts = (
        db.session.query(OrderItem.order_id, func.count(OrderItem.id).label("n"))
        .group_by(OrderItem.order_id)
        .subquery()
    )
    rows = (
        db.session.query(
            period.label("period"),
            func.coalesce(func.sum(Order.total_amount_cents), 0).label("revenue"),
            func.count(Order.id).label("orders"),
            func.coalesce(func.sum(item_counts.c.n), 0).label("items"),
        )
        .outerjoin(item_counts, item_counts.c.order_id == Order.id)
        .filter(*filters)
        .group_by("period")
        .order_by("period")
        .all()
    )
    return [
        {
            "period": row.period,
            "total_revenue_cents": int(row.revenue or 0),
            "order_count": int(row.orders or 0),
            "average_order_value_cents": _average(int(row.revenue or 0), int(row.orders or 0)),
            "total_items": int(row.items or 0),
        }
        for row in rows
    ]


def top_products(
    owner_id: int,
    *,
    start: datetime | None = None,
    end: datetime | None = None,
    category: str | None = None,
    sort_by: str = "quantity",
    limit: int = 10,
    statuses=REVENUE_STATUSES,
) -> list[dict]:
    """
    Best sellers by quantity (default), revenue or number of orders.

    profit_margin_pct is reported only for products with a cost price.
    """
    quantity = func.sum(OrderItem.quantity)
    revenue = func.sum(OrderItem.total_price_cents)
    order_count = func.count(func.distinct(Order.id))
    sort_columns = {"quantity": quantity, "revenue": revenue, "orders": order_count}
    if sort_by not in sort_columns:
        raise ReportError("sort_by must be quantity, revenue or orders")

    query = (
        db.session.query(
            Product,
            quantity.label("quantity"),
            revenue.label("revenue"),
            order_count.label("orders"),
            func.avg(OrderItem.unit_price_cents).label("average_price"),
            func.max(Order.created_at).label("last_sold"),
        )
        .join(OrderItem, OrderItem.product_id == Product.id)
        .join(Order, Order.id == OrderItem.order_id)
        .filter(*_order_filters(owner_id, statuses, start, end))
    )
    if category:
        query = query.filter(Product.category == category)

    rows = query.group_by(Product.id).order_by(sort_columns[sort_by].desc(), Product.id).limit(limit).all()

    results = []
    for product, qty, rev, orders, average_price, last_sold in rows:
        average_price = int(round(average_price or 0))
        margin = None
        if product.cost_price_cents is not None and average_price > 0:
            margin = round((average_price - product.cost_price_cents) / average_price * 100.0, 2)
        results.append({
            "product_id": product.id,
            "name": product.name,
            "brand": product.brand,
            "category": product.category,
            "total_quantity": int(qty or 0),
            "total_revenue_cents": int(rev or 0),
            "order_count": int(orders or 0),
            "average_price_cents": average_price,
            "profit_margin_pct": margin,
            "current_stock": product.stock_quantity,
            "minimum_stock": product.minimum_stock,
            "is_low_stock": product.is_low_stock,
            "last_sold_date": to_utc_z(last_sold),
        })
    return results


def top_customers(
    owner_id: int,
    *,
    start: datetime | None = None,
    end: datetime | None = None,
    customer_group: str | None = None,
    sort_by: str = "revenue",
    limit: int = 10,
    statuses=REVENUE_STATUSES,
    now: datetime | None = None,
) -> list[dict]:
    """
    Customers by spend (default), order count or recency ("frequency",
    most recent buyer first).
    """
    now = now or utcnow()
    spent = func.sum(Order.total_amount_cents)
    orders = func.count(Order.id)
    last_order = func.max(Order.created_at)
    sort_columns = {"revenue": spent.desc(), "orders": orders.desc(), "frequency": last_order.desc()}
    if sort_by not in sort_columns:
        raise ReportError("sort_by must be revenue, orders or frequency")

    query = (
        db.session.query(
            Customer,
            spent.label("spent"),
            orders.label("orders"),
            func.min(Order.created_at).label("first_order"),
            last_order.label("last_order"),
        )
        .join(Order, Order.customer_id == Customer.id)
        .filter(*_order_filters(owner_id, statuses, start, end))
    )
    if customer_group:
        query = query.filter(Customer.customer_group == customer_group)

    rows = query.group_by(Customer.id).order_by(sort_columns[sort_by], Customer.id).limit(limit).all()
    return [
        {
            "customer_id": customer.id,
            "name": customer.name,
            "phone": customer.phone,
            "email": customer.email,
            "business_type": customer.business_type,
            "customer_group": customer.customer_group,
            "total_spent_cents": int(total or 0),
            "order_count": int(count or 0),
            "average_order_value_cents": _average(int(total or 0), int(count or 0)),
            "first_order_date": to_utc_z(first),
            "last_order_date": to_utc_z(last),
            "days_since_last_order": (now - last).days if last else None,
        }
        for customer, total, count, first, last in rows
    ]


def category_performance(
    owner_id: int,
    *,
    start: datetime | None = None,
    end: datetime | None = None,
    category: str | None = None,
    statuses=REVENUE_STATUSES,
) -> list[dict]:
    revenue = func.sum(OrderItem.total_price_cents)
    query = (
        db.session.query(
            Product.category,
            revenue.label("revenue"),
            func.sum(OrderItem.quantity).label("quantity"),
            func.count(func.distinct(Order.id)).label("orders"),
            func.avg(OrderItem.unit_price_cents).label("average_price"),
        )
        .join(OrderItem, OrderItem.product_id == Product.id)
        .join(Order, Order.id == OrderItem.order_id)
        .filter(*_order_filters(owner_id, statuses, start, end))
    )
    if category:
        query = query.filter(Product.category == category)

    rows = query.group_by(Product.category).order_by(revenue.desc(), Product.category).all()
    return [
        {
            "category": row.category,
            "total_revenue_cents": int(row.revenue or 0),
            "total_quantity": int(row.quantity or 0),
            "order_count": int(row.orders or 0),
            "average_price_cents": int(round(row.average_price or 0)),
        }
        for row in rows
    ]


def payment_breakdown(owner_id: int, *, start=None, end=None, statuses=CONFIRMED_STATUSES) -> list[dict]:
    rows = (
        db.session.query(Order.payment_method, func.count(Order.id), func.sum(Order.total_amount_cents))
        .filter(*_order_filters(owner_id, statuses, start, end))
        .group_by(Order.payment_method)
        .order_by(Order.payment_method)
        .all()
    )
    return [
        {"payment_method": method, "order_count": count, "total_revenue_cents": int(total or 0)}
        for method, count, total in rows
    ]


def recent_orders(owner_id: int, limit: int = 10) -> list[dict]:
    orders = (
        db.session.query(Order)
        .filter(Order.created_by_user_id == owner_id)
        .order_by(Order.created_at.desc(), Order.id.desc())
        .limit(limit)
        .all()
    )
    return [order.to_dict() for order in orders]


def low_stock_products(owner_id: int, limit: int | None = None) -> list[dict]:
    query = (
        db.session.query(Product)
        .filter(
            Product.created_by_user_id == owner_id,
            Product.is_active.is_(True),
            Product.stock_quantity <= Product.minimum_stock,
        )
        .order_by(Product.stock_quantity.asc(), Product.name.asc())
    )
    if limit:
        query = query.limit(limit)
    return [
        {
            "product_id": p.id,
            "name": p.name,
            "brand": p.brand,
            "category": p.category,
            "stock_quantity": p.stock_quantity,
            "minimum_stock": p.minimum_stock,
            "price_cents": p.price_cents,
            "pack_size": {"value": p.pack_size_value, "unit": p.pack_size_unit},
        }
        for p in query.all()
    ]


# =============================================================================
# DASHBOARD
# =============================================================================

def dashboard_overview(owner_id: int, period_days: int = 30, now: datetime | None = None) -> dict:
    start = period_start(period_days, now)

    active_customers = (Customer.created_by_user_id == owner_id, Customer.is_active.is_(True))
    active_products = (Product.created_by_user_id == owner_id, Product.is_active.is_(True))

    revenue, revenue_orders = (
        db.session.query(func.coalesce(func.sum(Order.total_amount_cents), 0), func.count(Order.id))
        .filter(*_order_filters(owner_id, REVENUE_STATUSES, start, None))
        .one()
    )

    return {
        "customers": {
            "total": db.session.query(func.count(Customer.id)).filter(*active_customers).scalar(),
            "new": db.session.query(func.count(Customer.id))
            .filter(*active_customers, Customer.created_at >= start)
            .scalar(),
        },
        "products": {
            "total": db.session.query(func.count(Product.id)).filter(*active_products).scalar(),
            "low_stock": db.session.query(func.count(Product.id))
            .filter(*active_products, Product.stock_quantity <= Product.minimum_stock)
            .scalar(),
            "out_of_stock": db.session.query(func.count(Product.id))
            .filter(*active_products, Product.stock_quantity == 0)
            .scalar(),
        },
        "orders": {
            "total": db.session.query(func.count(Order.id))
            .filter(Order.created_by_user_id == owner_id, Order.created_at >= start)
            .scalar(),
            "pending": db.session.query(func.count(Order.id))
            .filter(Order.created_by_user_id == owner_id, Order.order_status.in_(OPEN_ORDER_STATUSES))
            .scalar(),
        },
        "revenue": {
            "total_cents": int(revenue or 0),
            "average_cents": _average(int(revenue or 0), revenue_orders),
        },
        "period_days": period_days,
    }


def sales_chart(owner_id: int, period_days: int = 30, group_by: str = "day", now: datetime | None = None) -> list[dict]:
    start = period_start(period_days, now)
    return sales_by_period(owner_id, group_by=group_by, start=start)


def analytics_dashboard(owner_id: int, period_days: int = 30, now: datetime | None = None) -> dict:
    """One-call summary for the analytics landing page."""
    start = period_start(period_days, now)

    revenue, orders = (
        db.session.query(func.coalesce(func.sum(Order.total_amount_cents), 0), func.count(Order.id))
        .filter(*_order_filters(owner_id, CONFIRMED_STATUSES, start, None))
        .one()
    )
    new_customers = (
        db.session.query(func.count(Customer.id))
        .filter(Customer.created_by_user_id == owner_id, Customer.created_at >= start)
        .scalar()
    )

    return {
        "sales_metrics": {
            "total_revenue_cents": int(revenue or 0),
            "total_orders": orders,
            "average_order_value_cents": _average(int(revenue or 0), orders),
        },
        "daily_sales": sales_by_period(owner_id, start=start, statuses=CONFIRMED_STATUSES),
        "top_products": top_products(owner_id, start=start, sort_by="revenue", statuses=CONFIRMED_STATUSES),
        "customer_metrics": {"new_customers": new_customers},
        "low_stock_products": low_stock_products(owner_id, limit=10),
        "recent_orders": recent_orders(owner_id, limit=5),
        "period_days": period_days,
    }


# =============================================================================
# ANALYTICS REPORTS
# =============================================================================

def sales_report(
    owner_id: int,
    *,
    start: str | None = None,
    end: str | None = None,
    group_by: str = "day",
    category: str | None = None,
    payment_method: str | None = None,
) -> dict:
    start_dt, end_dt = _parse_range(start, end)
    rows = sales_by_period(
        owner_id, group_by=group_by, start=start_dt, end=end_dt,
        payment_method=payment_method, statuses=CONFIRMED_STATUSES,
    )
    total_revenue = sum(r["total_revenue_cents"] for r in rows)
    total_orders = sum(r["order_count"] for r in rows)
    return {
        "group_by": group_by,
        "start": to_utc_z(start_dt),
        "end": to_utc_z(end_dt),
        "sales_data": rows,
        "payment_breakdown": payment_breakdown(owner_id, start=start_dt, end=end_dt),
        "category_performance": category_performance(
            owner_id, start=start_dt, end=end_dt, category=category, statuses=CONFIRMED_STATUSES,
        ),
        "summary": {
            "total_revenue_cents": total_revenue,
            "total_orders": total_orders,
            "average_order_value_cents": _average(total_revenue, total_orders),
        },
    }


def product_report(
    owner_id: int,
    *,
    start: str | None = None,
    end: str | None = None,
    category: str | None = None,
    sort_by: str = "revenue",
    limit: int = 20,
    now: datetime | None = None,
) -> dict:
    start_dt, end_dt = _parse_range(start, end)
    now = now or utcnow()
    performance = top_products(
        owner_id, start=start_dt, end=end_dt, category=category,
        sort_by=sort_by, limit=limit, statuses=CONFIRMED_STATUSES,
    )

    # Products that have sold before but not within the slow-moving window
    slow_moving = (
        db.session.query(Product)
        .filter(
            Product.created_by_user_id == owner_id,
            Product.is_active.is_(True),
            Product.last_sold_date < now - timedelta(days=SLOW_MOVING_DAYS),
        )
        .order_by(Product.last_sold_date.asc())
        .limit(10)
        .all()
    )

    return {
        "product_performance": performance,
        "slow_moving_products": [
            {
                "product_id": p.id,
                "name": p.name,
                "brand": p.brand,
                "category": p.category,
                "stock_quantity": p.stock_quantity,
                "last_sold_date": to_utc_z(p.last_sold_date),
            }
            for p in slow_moving
        ],
        "summary": {
            "total_products": len(performance),
            "total_revenue_cents": sum(p["total_revenue_cents"] for p in performance),
            "total_quantity_sold": sum(p["total_quantity"] for p in performance),
        },
    }


def customer_report(
    owner_id: int,
    *,
    start: str | None = None,
    end: str | None = None,
    customer_group: str | None = None,
    sort_by: str = "revenue",
    limit: int = 20,
    now: datetime | None = None,
) -> dict:
    start_dt, end_dt = _parse_range(start, end)
    customers = top_customers(
        owner_id, start=start_dt, end=end_dt, customer_group=customer_group,
        sort_by=sort_by, limit=limit, statuses=CONFIRMED_STATUSES, now=now,
    )

    segments = (
        db.session.query(
            Customer.customer_group,
            func.count(Customer.id),
            func.coalesce(func.sum(Customer.total_purchases_cents), 0),
        )
        .filter(Customer.created_by_user_id == owner_id, Customer.is_active.is_(True))
        .group_by(Customer.customer_group)
        .order_by(Customer.customer_group)
        .all()
    )

    per_customer = (
        db.session.query(func.count(Order.id).label("orders"))
        .filter(*_order_filters(owner_id, CONFIRMED_STATUSES, start_dt, end_dt))
        .group_by(Order.customer_id)
        .subquery()
    )
    single, repeat = db.session.query(
        func.coalesce(func.sum(case((per_customer.c.orders == 1, 1), else_=0)), 0),
        func.coalesce(func.sum(case((per_customer.c.orders > 1, 1), else_=0)), 0),
    ).one()

    total_revenue = sum(c["total_spent_cents"] for c in customers)
    total_orders = sum(c["order_count"] for c in customers)
    return {
        "top_customers": customers,
        "customer_segmentation": [
            {
                "customer_group": group,
                "count": count,
                "total_revenue_cents": int(total or 0),
                "average_revenue_cents": _average(int(total or 0), count),
            }
            for group, count, total in segments
        ],
        "customer_retention": {
            "new_customers": int(single),
            "returning_customers": int(repeat),
            "total_customers": int(single) + int(repeat),
        },
        "summary": {
            "total_customers": len(customers),
            "total_revenue_cents": total_revenue,
            "average_order_value_cents": _average(total_revenue, total_orders),
        },
    }


def inventory_report(owner_id: int) -> dict:
    active = (Product.created_by_user_id == owner_id, Product.is_active.is_(True))
    low_stock = low_stock_products(owner_id)

    turnover_rows = (
        db.session.query(Product)
        .filter(*active, Product.total_sold > 0)
        .all()
    )
    turnover = sorted(
        (
            {
                "product_id": p.id,
                "name": p.name,
                "brand": p.brand,
                "category": p.category,
                "stock_quantity": p.stock_quantity,
                "total_sold": p.total_sold,
                "turnover_rate": round(p.total_sold / p.stock_quantity, 2) if p.stock_quantity > 0 else 0,
                "last_sold_date": to_utc_z(p.last_sold_date),
            }
            for p in turnover_rows
        ),
        key=lambda row: (-row["turnover_rate"], row["product_id"]),
    )[:20]

    stock_value = func.sum(Product.price_cents * Product.stock_quantity)
    categories = (
        db.session.query(
            Product.category,
            func.count(Product.id),
            func.coalesce(stock_value, 0),
            func.sum(case((Product.stock_quantity <= Product.minimum_stock, 1), else_=0)),
            func.coalesce(func.sum(Product.stock_quantity), 0),
        )
        .filter(*active)
        .group_by(Product.category)
        .order_by(stock_value.desc(), Product.category)
        .all()
    )
    category_stock = [
        {
            "category": category,
            "total_products": count,
            "total_stock_value_cents": int(value or 0),
            "low_stock_count": int(low or 0),
            "total_quantity": int(quantity or 0),
        }
        for category, count, value, low, quantity in categories
    ]

    return {
        "low_stock_products": low_stock,
        "stock_turnover": turnover,
        "category_stock": category_stock,
        "summary": {
            "total_low_stock": len(low_stock),
            "total_stock_value_cents": sum(c["total_stock_value_cents"] for c in category_stock),
        },
    }
