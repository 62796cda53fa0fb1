# backend/routes/restaurants.py
import logging
from typing import List

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from database import get_db
from models.users import User
from models.restaurant import Restaurant, empty_rating
from schemas.restaurant import (
    Address, Contact, RatingOut, RestaurantCreate, RestaurantOut, RestaurantUpdate
)
from utils.audit import write_log, client_ip
from utils.errors import Conflict, Forbidden, NotFound
from utils.tokenJWT import role_required

router = APIRouter(prefix="/restaurants", tags=["Restaurants"])
logger = logging.getLogger(__name__)


def _restaurant_to_out(r: Restaurant) -> RestaurantOut:
    return RestaurantOut(
        id=r.id,
        name=r.name,
        description=r.description or "",
        admin_id=r.admin_id,
        address=Address(
            street=r.address_street or "",
            city=r.address_city,
            country=r.address_country or "",
            postal_code=r.address_postal_code or "",
        ),
        contact=Contact(phone=r.contact_phone, email=r.contact_email or None),
        cuisine_types=r.cuisine_types or [],
        delivery_available=r.delivery_available,
        minimum_order_amount=r.minimum_order_amount,
        average_delivery_time=r.average_delivery_time,
        logo_url=r.logo_url,
        rating=RatingOut(**(r.rating or empty_rating())),
        is_active=r.is_active,
        created_at=r.created_at,
    )


def _apply_address_contact(r: Restaurant, address: Address = None, contact: Contact = None):
    if address is not None:
        r.address_street = address.street
        r.address_city = address.city
        r.address_country = address.country
        r.address_postal_code = address.postal_code
    if contact is not None:
        r.contact_phone = contact.phone
        r.contact_email = contact.email or ""


def _owned_restaurant(db: Session, restaurant_id: int, user: User) -> Restaurant:
    if user.restaurant_id != restaurant_id:
        raise Forbidden("Not authorized to update this restaurant")
    restaurant = db.query(Restaurant).filter(Restaurant.id == restaurant_id).first()
    if not restaurant:
        raise NotFound("Restaurant not found")
    return restaurant


# Active restaurants (public)
@router.get("", response_model=List[RestaurantOut])
def list_restaurants(db: Session = Depends(get_db)):
    rows = db.query(Restaurant).filter(Restaurant.is_active.is_(True)).order_by(Restaurant.name.asc()).all()
    return [_restaurant_to_out(r) for r in rows]


@router.get("/{restaurant_id}", response_model=RestaurantOut)
def get_restaurant(restaurant_id: int, db: Session = Depends(get_db)):
    restaurant = db.query(Restaurant).filter(Restaurant.id == restaurant_id).first()
    if not restaurant:
        raise NotFound("Restaurant not found")
    return _restaurant_to_out(restaurant)


# An admin creates exactly one restaurant
@router.post("", response_model=RestaurantOut, status_code=status.HTTP_201_CREATED)
def create_restaurant(
    payload: RestaurantCreate,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(role_required("admin")),
):
    if current_user.restaurant_id:
        raise Conflict("Admin already has a restaurant")
    if db.query(Restaurant).filter(Restaurant.name == payload.name).first():
        raise Conflict("Restaurant name already exists")

    restaurant = Restaurant(
        name=payload.name,
        description=payload.description,
        admin_id=current_user.id,
        cuisine_types=payload.cuisine_types,
        delivery_available=payload.delivery_available,
        minimum_order_amount=payload.minimum_order_amount,
        average_delivery_time=payload.average_delivery_time,
        logo_url=payload.logo_url,
        rating=empty_rating(),
    )
    _apply_address_contact(restaurant, payload.address, payload.contact)
    db.add(restaurant)
    try:
        db.flush()
        current_user.restaurant_id = restaurant.id
        db.commit()
    except IntegrityError:
        db.rollback()
        raise Conflict("Restaurant name already exists")
    db.refresh(restaurant)

    logger.info("Restaurant %s created by admin %s", restaurant.id, current_user.id)
    write_log(
        db, user_id=current_user.id, action="RESTAURANT_CREATE", resource="restaurants", status="SUCCESS",
        ip=client_ip(request), meta={"restaurant_id": restaurant.id, "name": restaurant.name},
    )
    return _restaurant_to_out(restaurant)


@router.put("/{restaurant_id}", response_model=RestaurantOut)
def update_restaurant(
    restaurant_id: int,
    payload: RestaurantUpdate,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(role_required("admin")),
):
    restaurant = _owned_restaurant(db, restaurant_id, current_user)

    data = payload.model_dump(exclude_unset=True, exclude={"address", "contact"})
    if "name" in data and data["name"] != restaurant.name:
        if db.query(Restaurant).filter(Restaurant.name == data["name"]).first():
            raise Conflict("Restaurant name already exists")
    for field, value in data.items():
        if value is not None:
            setattr(restaurant, field, value)
    _apply_address_contact(restaurant, payload.address, payload.contact)
    db.commit()
    db.refresh(restaurant)

    write_log(
        db, user_id=current_user.id, action="RESTAURANT_UPDATE", resource="restaurants", status="SUCCESS",
        ip=client_ip(request), meta={"restaurant_id": restaurant.id, "fields": sorted(payload.model_fields_set)},
    )
    return _restaurant_to_out(restaurant)


# Soft delete: restaurants are deactivated, never removed
@router.delete("/{restaurant_id}", response_model=RestaurantOut)
def deactivate_restaurant(
    restaurant_id: int,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(role_required("admin")),
):
    restaurant = _owned_restaurant(db, restaurant_id, current_user)
    restaurant.is_active = False
    db.commit()
    db.refresh(restaurant)

    write_log(
        db, user_id=current_user.id, action="RESTAURANT_DEACTIVATE", resource="restaurants", status="SUCCESS",
        ip=client_ip(request), meta={"restaurant_id": restaurant.id},
    )
    return _restaurant_to_out(restaurant)
