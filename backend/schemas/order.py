from pydantic import BaseModel, Field, field_validator
from typing import List, Optional
from datetime import datetime

from models.order import OrderStatus, PaymentMethod


# Output schema for an individual order line item
class OrderItemOut(BaseModel):
    product_id: Optional[int] = None
    product_name: str
    quantity: int
    price: float
    line_total: float


# Input schema for checkout
class OrderCreatePayload(BaseModel):
    delivery_address: str = Field(min_length=1)
    restaurant_id: int
    payment_method: PaymentMethod = PaymentMethod.CASH_ON_DELIVERY
    stripe_session_id: Optional[str] = None

    @field_validator("delivery_address")
    @classmethod
    def address_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Delivery address is required")
        return v


# Result of a successful checkout
class OrderPlaced(BaseModel):
    order_id: int
    total_price: float
    status: str


# Output schema representing the full order details
class OrderResponse(BaseModel):
    id: int
    user_id: int
    restaurant_id: int
    restaurant_name: Optional[str] = None
    status: str
    total_price: float
    delivery_address: str
    payment_method: str
    stripe_session_id: Optional[str] = None
    created_at: datetime
    items: List[OrderItemOut]

# Schema for updating order status; unknown values are checked in the route
class OrderStatusUpdate(BaseModel):
    status: str

    def as_status(self) -> Optional[OrderStatus]:
        try:
            return OrderStatus(self.status)
        except ValueError:
            return None
