# backend/routes/admin.py
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from database import get_db
from models.users import User
from models.category import Category
from models.product import Product
from models.order import Order, OrderStatus
from routes.orders import order_query, order_to_out
from schemas.order import OrderResponse
from schemas.reports import DashboardResponse
from utils.errors import ValidationError
from utils.tokenJWT import restaurant_admin

router = APIRouter(prefix="/admin", tags=["Admin"])


# Orders placed at the admin's restaurant, newest first
@router.get("/orders", response_model=List[OrderResponse])
def list_restaurant_orders(
    status: Optional[str] = Query(None, description="Filter by order status"),
    db: Session = Depends(get_db),
    current_user: User = Depends(restaurant_admin),
):
    query = order_query(db).filter(Order.restaurant_id == current_user.restaurant_id)

    if status:
        try:
            query = query.filter(Order.status == OrderStatus(status).value)
        except ValueError:
            raise ValidationError(f"Unknown order status: {status}")

    orders = query.order_by(Order.created_at.desc(), Order.id.desc()).all()
    return [order_to_out(o) for o in orders]


# Counters for the admin's restaurant
@router.get("/dashboard", response_model=DashboardResponse)
def dashboard(
    db: Session = Depends(get_db),
    current_user: User = Depends(restaurant_admin),
):
    rid = current_user.restaurant_id
    return DashboardResponse(
        total_products=db.query(Product).filter(Product.restaurant_id == rid).count(),
        total_orders=db.query(Order).filter(Order.restaurant_id == rid).count(),
        total_categories=db.query(Category).filter(Category.restaurant_id == rid).count(),
        restaurant_id=rid,
        restaurant_name=current_user.restaurant.name if current_user.restaurant else "",
    )
