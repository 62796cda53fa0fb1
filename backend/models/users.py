# backend/models/users.py
from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, func
from sqlalchemy.orm import relationship
from database import Base

# Represents a user account; identity is issued externally, only the role matters here
class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, nullable=False, index=True)
    name = Column(String, nullable=True)
    role = Column(String, nullable=False, default="customer") # customer | admin
    # Restaurant managed by an admin (set on the admin's first restaurant creation)
    restaurant_id = Column(Integer, ForeignKey("restaurants.id", use_alter=True, name="fk_users_restaurant_id"), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    restaurant = relationship("Restaurant", foreign_keys=[restaurant_id], post_update=True)

    @property
    def is_admin(self) -> bool:
        return (self.role or "").lower() == "admin"
