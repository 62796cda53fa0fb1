import enum

from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, CheckConstraint, func
from sqlalchemy.orm import relationship
from database import Base


# Moderation state; approved and pending reviews count toward the restaurant rating
class ReviewStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


# Customer review of a delivered order (at most one per order)
class Review(Base):
    __tablename__ = "reviews"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), unique=True, nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    restaurant_id = Column(Integer, ForeignKey("restaurants.id"), nullable=False, index=True)
    rating = Column(Integer, CheckConstraint("rating >= 1 AND rating <= 5"), nullable=False)
    comment = Column(String(500), nullable=False)
    status = Column(String, nullable=False, default=ReviewStatus.APPROVED.value, index=True)
    helpful_votes = Column(Integer, nullable=False, default=0)
    report_count = Column(Integer, nullable=False, default=0)
    # Restaurant owner's public reply
    owner_response = Column(String(500), nullable=True)
    response_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    user = relationship("User")
    order = relationship("Order")
    restaurant = relationship("Restaurant")
