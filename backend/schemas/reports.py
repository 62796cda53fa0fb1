# schemas/reports.py
from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel

# One bucket of the sales breakdown (day, ISO week or month)
class SalesByPeriodItem(BaseModel):
    period: str
    sales: float
    orders: int

# Best selling products by revenue
class TopProductItem(BaseModel):
    product_id: Optional[int] = None
    name: str
    total_sales: float
    units_sold: int

class SalesReportResponse(BaseModel):
    period: str
    total_sales: float
    total_orders: int
    avg_order_value: float
    sales_by_period: List[SalesByPeriodItem]
    top_products: List[TopProductItem]
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None

# Admin dashboard counters
class DashboardResponse(BaseModel):
    total_products: int
    total_orders: int
    total_categories: int
    restaurant_id: int
    restaurant_name: str
