# backend/schemas/product.py
from pydantic import BaseModel, Field, ConfigDict
from typing import Optional


# Base configuration for ORM compatibility
class ORMBase(BaseModel):
    model_config = ConfigDict(from_attributes=True)


# Schema for creating a new product in the admin's restaurant
class ProductCreate(ORMBase):
    name: str = Field(min_length=1)
    category_id: int
    price: float = Field(ge=0)
    stock: int = Field(ge=0)
    description: Optional[str] = None
    # Image is uploaded to the CDN by the client; only the URL is stored
    image_url: Optional[str] = None


# Schema for partial product updates
class ProductEditRequest(ORMBase):
    """Schema for PUT requests - all fields optional."""
    name: Optional[str] = Field(None, min_length=1)
    category_id: Optional[int] = None
    price: Optional[float] = Field(None, ge=0)
    stock: Optional[int] = Field(None, ge=0)
    description: Optional[str] = None
    image_url: Optional[str] = None


class ProductResponse(ORMBase):
    id: int
    name: str
    description: Optional[str] = None
    price: float
    stock: int
    category_id: int
    category_name: Optional[str] = None
    restaurant_id: Optional[int] = None
    image_url: Optional[str] = None
