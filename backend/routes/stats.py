# backend/routes/stats.py

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from sqlalchemy import func, extract, case
from datetime import datetime, timedelta, timezone

from database import get_db
from utils.tokenJWT import require_admin
from models.users import User
from models.order import Order, OrderItem
from schemas.order import (
    OrderStats, OrderCounts, RevenueStats, StatusBucket, MonthlyRevenue, TopProduct,
)

router = APIRouter(
    prefix="/stats",
    tags=["Stats"]
)

TOP_PRODUCTS_LIMIT = 10


def _period_starts(now: datetime):
    start_of_today = now.replace(hour=0, minute=0, second=0, microsecond=0)
    # Weeks start on Sunday
    start_of_week = start_of_today - timedelta(days=(start_of_today.weekday() + 1) % 7)
    start_of_month = start_of_today.replace(day=1)
    start_of_year = start_of_today.replace(month=1, day=1)
    return start_of_today, start_of_week, start_of_month, start_of_year


def _sum_since(start: datetime):
    return func.coalesce(func.sum(case((Order.created_at >= start, Order.total_price), else_=0.0)), 0.0)


def _count_since(start: datetime):
    return func.coalesce(func.sum(case((Order.created_at >= start, 1), else_=0)), 0)


@router.get("/orders", response_model=OrderStats)
def get_order_stats(
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin)
):
    today, week, month, year = _period_starts(datetime.now(timezone.utc))

    # Counts and revenue for every period in a single pass
    row = db.query(
        func.count(Order.id).label("total"),
        _count_since(today).label("today"),
        _count_since(week).label("week"),
        _count_since(month).label("month"),
        _count_since(year).label("year"),
        func.coalesce(func.sum(Order.total_price), 0.0).label("total_revenue"),
        _sum_since(today).label("daily_revenue"),
        _sum_since(week).label("weekly_revenue"),
        _sum_since(month).label("monthly_revenue"),
        _sum_since(year).label("yearly_revenue"),
        func.coalesce(func.avg(Order.total_price), 0.0).label("average_order_value"),
    ).one()

    counts = OrderCounts(total=row.total, today=row.today, week=row.week, month=row.month, year=row.year)
    revenue = RevenueStats(
        total_revenue=round(row.total_revenue, 2),
        daily_revenue=round(row.daily_revenue, 2),
        weekly_revenue=round(row.weekly_revenue, 2),
        monthly_revenue=round(row.monthly_revenue, 2),
        yearly_revenue=round(row.yearly_revenue, 2),
        average_order_value=round(row.average_order_value, 2),
    )

    # Orders grouped by lifecycle status, busiest first
    by_status = (
        db.query(
            Order.status,
            func.count(Order.id).label("count"),
            func.sum(Order.total_price).label("revenue"),
        )
        .group_by(Order.status)
        .order_by(func.count(Order.id).desc())
        .all()
    )

    # Month-by-month revenue for the current year
    month_col = extract("month", Order.created_at)
    monthly = (
        db.query(
            month_col.label("month"),
            func.sum(Order.total_price).label("revenue"),
            func.count(Order.id).label("orders"),
        )
        .filter(Order.created_at >= year)
        .group_by(month_col)
        .order_by(month_col)
        .all()
    )

    # Best sellers by ordered quantity
    unit_price = func.coalesce(OrderItem.discount_price, OrderItem.price)
    top = (
        db.query(
            OrderItem.product_id.label("product_id"),
            func.min(OrderItem.name).label("product_name"),
            func.sum(OrderItem.quantity).label("quantity"),
            func.sum(unit_price * OrderItem.quantity).label("revenue"),
        )
        .group_by(OrderItem.product_id)
        .order_by(func.sum(OrderItem.quantity).desc())
        .limit(TOP_PRODUCTS_LIMIT)
        .all()
    )

    return OrderStats(
        counts=counts,
        revenue=revenue,
        orders_by_status=[
            StatusBucket(status=s.status.value, count=s.count, revenue=round(s.revenue or 0.0, 2))
            for s in by_status
        ],
        monthly_revenue_chart=[
            MonthlyRevenue(month=int(m.month), revenue=round(m.revenue or 0.0, 2), orders=m.orders)
            for m in monthly
        ],
        top_products=[
            TopProduct(product_id=t.product_id, product_name=t.product_name,
                       quantity=t.quantity, revenue=round(t.revenue or 0.0, 2))
            for t in top
        ],
    )
