# routes/reports.py
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Literal, Optional, Tuple

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session, joinedload

from database import get_db
from utils.errors import ValidationError
from utils.tokenJWT import restaurant_admin
from models.users import User
from models.order import Order, OrderStatus
from schemas.reports import SalesReportResponse, SalesByPeriodItem, TopProductItem

router = APIRouter(prefix="/admin/reports", tags=["Reports"])

TOP_PRODUCTS_LIMIT = 5

Period = Literal["daily", "weekly", "monthly"]


def _as_utc(dt: datetime) -> datetime:
    return dt.replace(tzinfo=timezone.utc) if dt.tzinfo is None else dt.astimezone(timezone.utc)


def _parse_iso(s: Optional[str], end_of_day: bool = False) -> Optional[datetime]:
    if not s:
        return None
    # A bare YYYY-MM-DD end date covers the whole day
    if end_of_day and len(s) == 10:
        s += "T23:59:59.999999"
    try:
        dt = datetime.fromisoformat(s)
    except ValueError:
        raise ValidationError(f"Bad datetime format: {s}")
    # Naive input is read as UTC; offsets are normalized to UTC
    return _as_utc(dt)


def _default_window(period: str, now: datetime) -> datetime:
    if period == "daily":
        return now.replace(hour=0, minute=0, second=0, microsecond=0)
    if period == "weekly":
        return now - timedelta(days=7)
    return now - timedelta(days=30)


def period_label(period: str, created_at: datetime) -> str:
    d = _as_utc(created_at)
    if period == "daily":
        return d.date().isoformat()
    if period == "weekly":
        year, week, _ = d.isocalendar()
        return f"{year}-W{week:02d}"
    return d.strftime("%Y-%m")


def build_sales_report(orders: List[Order], period: str) -> dict:
    """Totals, per-bucket breakdown and top products over already-filtered orders."""
    total_sales = sum(o.total_price or 0 for o in orders)
    total_orders = len(orders)

    buckets: Dict[str, Dict[str, float]] = defaultdict(lambda: {"sales": 0.0, "orders": 0})
    products: Dict[Tuple[Optional[int], str], Dict[str, float]] = defaultdict(
        lambda: {"total_sales": 0.0, "units_sold": 0}
    )
    for o in orders:
        bucket = buckets[period_label(period, o.created_at)]
        bucket["sales"] += o.total_price or 0
        bucket["orders"] += 1
        for it in o.items:
            entry = products[(it.product_id, it.product_name)]
            entry["total_sales"] += it.price * it.quantity
            entry["units_sold"] += it.quantity

    sales_by_period = [
        SalesByPeriodItem(period=label, sales=round(b["sales"], 2), orders=b["orders"])
        for label, b in sorted(buckets.items())
    ]
    ranked = sorted(products.items(), key=lambda kv: kv[1]["total_sales"], reverse=True)[:TOP_PRODUCTS_LIMIT]
    top_products = [
        TopProductItem(
            product_id=pid, name=name or "Unknown Product",
            total_sales=round(v["total_sales"], 2), units_sold=v["units_sold"],
        )
        for (pid, name), v in ranked
    ]

    return {
        "total_sales": round(total_sales, 2),
        "total_orders": total_orders,
        "avg_order_value": round(total_sales / total_orders, 2) if total_orders else 0.0,
        "sales_by_period": sales_by_period,
        "top_products": top_products,
    }


# Sales summary for the admin's restaurant
@router.get("/sales", response_model=SalesReportResponse)
def sales_report(
    period: Period = Query("daily"),
    start_date: Optional[str] = Query(None, description="ISO start datetime"),
    end_date: Optional[str] = Query(None, description="ISO end datetime"),
    db: Session = Depends(get_db),
    current_user: User = Depends(restaurant_admin),
):
    fdt = _parse_iso(start_date)
    tdt = _parse_iso(end_date, end_of_day=True)
    if fdt is None and tdt is None:
        fdt = _default_window(period, datetime.now(timezone.utc))
    if fdt and tdt and fdt > tdt:
        raise ValidationError("start_date must not be after end_date")

    q = db.query(Order).options(joinedload(Order.items)).filter(
        Order.restaurant_id == current_user.restaurant_id,
        Order.status != OrderStatus.CANCELLED.value,
    )
    if fdt:
        q = q.filter(Order.created_at >= fdt)
    if tdt:
        q = q.filter(Order.created_at <= tdt)

    orders = q.order_by(Order.created_at.asc()).all()
    report = build_sales_report(orders, period)

    return SalesReportResponse(period=period, date_from=fdt, date_to=tdt, **report)
