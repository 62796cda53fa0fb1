from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import datetime

# Request schema for adding an item to the cart (or overwriting its quantity)
class CartAddItem(BaseModel):
    product_id: int
    quantity: int = Field(default=1, ge=1)

# Request schema for updating cart item quantity
class CartUpdateItem(BaseModel):
    product_id: int
    quantity: int = Field(ge=1)

# Response schema for a single cart line item, joined with live product data
class CartItemOut(BaseModel):
    product_id: int
    name: str
    price: float
    stock: int
    image_url: Optional[str] = None
    restaurant_id: int
    quantity: int
    line_total: float

    class Config:
        from_attributes = True

# Response schema for the entire cart summary
class CartOut(BaseModel):
    items: List[CartItemOut]
    total: float
    updated_at: Optional[datetime] = None
