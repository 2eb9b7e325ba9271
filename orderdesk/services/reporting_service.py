# Overview: Service-layer operations for reporting; read-only dashboard queries.

from __future__ import annotations

from datetime import datetime, timedelta

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..models import Customer, Order, Product, ORDER_STATUSES
from orderdesk.time_utils import start_of_day, to_utc_z, utcnow

# Statuses whose totals count as revenue (payment received)
SETTLED_STATUSES = ("paid", "processing", "shipped", "delivered")


def dashboard_stats(
    session: Session,
    *,
    low_stock_threshold: int = 10,
    now: datetime | None = None,
) -> dict:
    """
    Headline numbers for the back-office dashboard.

    No side effects; safe to call at any time, including during checkouts.
    """
    now = now or utcnow()
    day_start = start_of_day(now)
    day_end = day_start + timedelta(days=1)

    total_customers = (
        session.query(func.count(Customer.id))
        .filter(Customer.deleted_at.is_(None))
        .scalar()
    )

    orders_today = (
        session.query(func.count(Order.id))
        .filter(Order.created_at >= day_start, Order.created_at < day_end)
        .scalar()
    )

    revenue_cents = (
        session.query(func.coalesce(func.sum(Order.total_cents), 0))
        .filter(Order.status.in_(SETTLED_STATUSES))
        .scalar()
    )

    orders_by_status = {status: 0 for status in ORDER_STATUSES}
    rows = session.query(Order.status, func.count(Order.id)).group_by(Order.status).all()
    for status, count in rows:
        orders_by_status[status] = int(count)

    low_stock = (
        session.query(Product)
        .filter(
            Product.stock_quantity <= low_stock_threshold,
            Product.is_active.is_(True),
            Product.deleted_at.is_(None),
        )
        .order_by(Product.stock_quantity.asc(), Product.sku.asc())
        .all()
    )

    return {
        "generated_at": to_utc_z(now),
        "total_customers": int(total_customers or 0),
        "orders_today": int(orders_today or 0),
        "revenue_cents": int(revenue_cents or 0),
        "orders_by_status": orders_by_status,
        "low_stock": [
            {"sku": p.sku, "name": p.name, "stock_quantity": p.stock_quantity}
            for p in low_stock
        ],
    }
