import json
from datetime import datetime
from typing import Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator


def _parse_cuisines(value: Union[str, List[str], None]) -> Optional[List[str]]:
    # Accepts a JSON list, a comma separated string or a plain list
    if value is None:
        return None
    if isinstance(value, str):
        try:
            parsed = json.loads(value)
        except ValueError:
            parsed = value.split(",")
        value = parsed if isinstance(parsed, list) else [str(parsed)]
    return [str(c).strip() for c in value if str(c).strip()]


class Address(BaseModel):
    street: str = ""
    city: str = Field(min_length=1)
    country: str = "Pakistan"
    postal_code: str = Field(default="", pattern=r"^(\d{5})?$")


class Contact(BaseModel):
    phone: str = Field(min_length=1)
    email: Optional[EmailStr] = None


class RestaurantCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    description: str = Field(default="", max_length=500)
    address: Address
    contact: Contact
    cuisine_types: List[str] = Field(default_factory=list)
    delivery_available: bool = True
    minimum_order_amount: float = Field(default=0, ge=0)
    average_delivery_time: int = Field(default=30, ge=0)
    logo_url: Optional[str] = None

    @field_validator("cuisine_types", mode="before")
    @classmethod
    def split_cuisines(cls, v):
        return _parse_cuisines(v) or []


# Partial update; omitted fields keep their value
class RestaurantUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    address: Optional[Address] = None
    contact: Optional[Contact] = None
    cuisine_types: Optional[List[str]] = None
    delivery_available: Optional[bool] = None
    minimum_order_amount: Optional[float] = Field(default=None, ge=0)
    average_delivery_time: Optional[int] = Field(default=None, ge=0)
    logo_url: Optional[str] = None

    @field_validator("cuisine_types", mode="before")
    @classmethod
    def split_cuisines(cls, v):
        return _parse_cuisines(v)


class RatingOut(BaseModel):
    average: float = 0
    total: int = 0
    distribution: Dict[str, int] = Field(default_factory=dict)


class RestaurantOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    description: str
    admin_id: int
    address: Address
    contact: Contact
    cuisine_types: List[str]
    delivery_available: bool
    minimum_order_amount: float
    average_delivery_time: int
    logo_url: Optional[str] = None
    rating: RatingOut
    is_active: bool
    created_at: Optional[datetime] = None
