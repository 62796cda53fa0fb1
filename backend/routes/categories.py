# backend/routes/categories.py
from typing import List

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session

from database import get_db
from models.users import User
from models.category import Category
from models.product import Product
from schemas.category import CategoryCreate, CategoryUpdate, CategoryOut
from utils.audit import write_log, client_ip
from utils.errors import Conflict, Forbidden, NotFound
from utils.tokenJWT import restaurant_admin

router = APIRouter(prefix="/categories", tags=["Categories"])


def _name_taken(db: Session, name: str, restaurant_id: int) -> bool:
    return db.query(Category).filter(
        Category.name == name, Category.restaurant_id == restaurant_id
    ).first() is not None


def _owned_category(db: Session, category_id: int, user: User, action: str) -> Category:
    category = db.query(Category).filter(Category.id == category_id).first()
    if not category:
        raise NotFound("Category not found")
    if category.restaurant_id != user.restaurant_id:
        raise Forbidden(f"Not authorized to {action} this category")
    return category


@router.get("", response_model=List[CategoryOut])
def list_categories(
    db: Session = Depends(get_db),
    current_user: User = Depends(restaurant_admin),
):
    return db.query(Category).filter(
        Category.restaurant_id == current_user.restaurant_id
    ).order_by(Category.name.asc()).all()


@router.post("", response_model=CategoryOut, status_code=status.HTTP_201_CREATED)
def create_category(
    payload: CategoryCreate,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(restaurant_admin),
):
    if _name_taken(db, payload.name, current_user.restaurant_id):
        raise Conflict("Category already exists for this restaurant")

    category = Category(name=payload.name, description=payload.description, restaurant_id=current_user.restaurant_id)
    db.add(category)
    db.commit()
    db.refresh(category)

    write_log(
        db, user_id=current_user.id, action="CATEGORY_CREATE", resource="categories", status="SUCCESS",
        ip=client_ip(request), meta={"category_id": category.id, "name": category.name},
    )
    return category


@router.put("/{category_id}", response_model=CategoryOut)
def update_category(
    category_id: int,
    payload: CategoryUpdate,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(restaurant_admin),
):
    category = _owned_category(db, category_id, current_user, "update")

    if payload.name and payload.name != category.name:
        if _name_taken(db, payload.name, current_user.restaurant_id):
            raise Conflict("Category name already exists for this restaurant")
        category.name = payload.name
    if payload.description is not None:
        category.description = payload.description
    db.commit()
    db.refresh(category)

    write_log(
        db, user_id=current_user.id, action="CATEGORY_UPDATE", resource="categories", status="SUCCESS",
        ip=client_ip(request), meta={"category_id": category.id},
    )
    return category


@router.delete("/{category_id}")
def delete_category(
    category_id: int,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(restaurant_admin),
):
    category = _owned_category(db, category_id, current_user, "delete")
    if db.query(Product).filter(Product.category_id == category.id).count():
        raise Conflict("Category still has products")

    db.delete(category)
    db.commit()

    write_log(
        db, user_id=current_user.id, action="CATEGORY_DELETE", resource="categories", status="SUCCESS",
        ip=client_ip(request), meta={"category_id": category_id},
    )
    return {"message": "Category deleted successfully"}
