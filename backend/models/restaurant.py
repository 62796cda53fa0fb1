# backend/models/restaurant.py
from sqlalchemy import (
    Column, Integer, String, Float, Boolean, ForeignKey, DateTime, JSON, CheckConstraint, func
)
from sqlalchemy.orm import relationship
from database import Base


def empty_rating() -> dict:
    return {"average": 0.0, "total": 0, "distribution": {str(star): 0 for star in range(1, 6)}}


# Represents a restaurant owned by a single admin user.
# Restaurants are never hard-deleted; deactivation flips is_active.
class Restaurant(Base):
    __tablename__ = "restaurants"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), unique=True, nullable=False, index=True)
    description = Column(String(500), nullable=False, default="")
    admin_id = Column(Integer, ForeignKey("users.id"), nullable=False)

    # Address
    address_street = Column(String, nullable=False, default="")
    address_city = Column(String, nullable=False)
    address_country = Column(String, nullable=False, default="Pakistan")
    address_postal_code = Column(String, nullable=False, default="")

    # Contact
    contact_phone = Column(String, nullable=False)
    contact_email = Column(String, nullable=False, default="")

    cuisine_types = Column(JSON, nullable=False, default=list)
    delivery_available = Column(Boolean, nullable=False, default=True)
    minimum_order_amount = Column(Float, CheckConstraint("minimum_order_amount >= 0"), nullable=False, default=0)
    average_delivery_time = Column(Integer, CheckConstraint("average_delivery_time >= 0"), nullable=False, default=30)
    logo_url = Column(String, nullable=True)

    # Aggregate rating: {"average", "total", "distribution": {"1".."5": count}}
    rating = Column(JSON, nullable=False, default=empty_rating)

    is_active = Column(Boolean, nullable=False, default=True, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    admin = relationship("User", foreign_keys=[admin_id])
    categories = relationship("Category", back_populates="restaurant")
    products = relationship("Product", back_populates="restaurant")
