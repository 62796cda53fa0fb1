# backend/routes/products.py
from typing import Optional, List

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.orm import Session, joinedload

from database import get_db
from utils.tokenJWT import restaurant_admin
from utils.audit import write_log, client_ip
from utils.errors import Conflict, Forbidden, NotFound, ValidationError
from models.users import User
from models.category import Category
from models.product import Product
import schemas.product as product_schemas

router = APIRouter(tags=["Products"])


# ---- HELPERS ----
def _to_response(p: Product) -> product_schemas.ProductResponse:
    out = product_schemas.ProductResponse.model_validate(p)
    out.category_name = p.category.name if p.category else None
    return out


def _category_in_restaurant(db: Session, category_id: int, restaurant_id: int) -> Category:
    category = db.query(Category).filter(Category.id == category_id).first()
    if not category:
        raise NotFound("Category not found")
    if category.restaurant_id != restaurant_id:
        raise Forbidden("Category does not belong to your restaurant")
    return category


def _name_taken(db: Session, name: str, category_id: int, exclude_id: Optional[int] = None) -> bool:
    q = db.query(Product).filter(Product.name == name, Product.category_id == category_id)
    if exclude_id is not None:
        q = q.filter(Product.id != exclude_id)
    return q.first() is not None


def _owned_product(db: Session, product_id: int, user: User) -> Product:
    product = db.query(Product).options(joinedload(Product.category)).filter(Product.id == product_id).first()
    if not product:
        raise NotFound("Product not found")
    if product.restaurant_id != user.restaurant_id:
        raise Forbidden("Not authorized to modify this product")
    return product


# =========================
# PRODUCT LIST (public)
# =========================
@router.get("/products", response_model=List[product_schemas.ProductResponse])
def list_products(
    restaurant_id: Optional[int] = Query(None),
    category_id: Optional[int] = Query(None),
    price_min: Optional[float] = Query(None, ge=0),
    price_max: Optional[float] = Query(None, ge=0),
    db: Session = Depends(get_db),
):
    if price_min is not None and price_max is not None and price_min > price_max:
        raise ValidationError("price_min must not exceed price_max")

    query = db.query(Product).options(joinedload(Product.category))
    if restaurant_id is not None:
        query = query.filter(Product.restaurant_id == restaurant_id)
    if category_id is not None:
        query = query.filter(Product.category_id == category_id)
    if price_min is not None:
        query = query.filter(Product.price >= price_min)
    if price_max is not None:
        query = query.filter(Product.price <= price_max)

    return [_to_response(p) for p in query.order_by(Product.id.asc()).all()]


@router.get("/products/{product_id}", response_model=product_schemas.ProductResponse)
def get_product(product_id: int, db: Session = Depends(get_db)):
    product = db.query(Product).options(joinedload(Product.category)).filter(Product.id == product_id).first()
    if not product:
        raise NotFound("Product not found")
    return _to_response(product)


# =========================
# CREATE
# =========================
@router.post("/products", response_model=product_schemas.ProductResponse, status_code=status.HTTP_201_CREATED)
def add_product(
    payload: product_schemas.ProductCreate,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(restaurant_admin),
):
    _category_in_restaurant(db, payload.category_id, current_user.restaurant_id)
    if _name_taken(db, payload.name, payload.category_id):
        raise Conflict("Product already exists in this category")

    new_product = Product(
        **payload.model_dump(),
        restaurant_id=current_user.restaurant_id,
        created_by=current_user.id,
    )
    db.add(new_product)
    db.commit()
    db.refresh(new_product)

    write_log(
        db, user_id=current_user.id, action="PRODUCT_CREATE", resource="products", status="SUCCESS",
        ip=client_ip(request), meta={"id": new_product.id, "name": new_product.name},
    )
    return _to_response(new_product)


# =========================
# PARTIAL UPDATE
# =========================
@router.put("/products/{product_id}", response_model=product_schemas.ProductResponse)
def update_product(
    product_id: int,
    payload: product_schemas.ProductEditRequest,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(restaurant_admin),
):
    product = _owned_product(db, product_id, current_user)

    data = {k: v for k, v in payload.model_dump(exclude_unset=True).items() if v is not None}
    if "category_id" in data:
        _category_in_restaurant(db, data["category_id"], current_user.restaurant_id)
    name = data.get("name", product.name)
    category_id = data.get("category_id", product.category_id)
    if _name_taken(db, name, category_id, exclude_id=product.id):
        raise Conflict("Product already exists in this category")

    for key, value in data.items():
        setattr(product, key, value)
    db.commit()
    db.refresh(product)

    write_log(
        db, user_id=current_user.id, action="PRODUCT_UPDATE", resource="products", status="SUCCESS",
        ip=client_ip(request), meta={"id": product.id, "fields": sorted(data)},
    )
    return _to_response(product)


# =========================
# DELETE
# =========================
@router.delete("/products/{product_id}")
def delete_product(
    product_id: int,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(restaurant_admin),
):
    product = _owned_product(db, product_id, current_user)
    pid, pname = product.id, product.name
    db.delete(product)
    db.commit()
    write_log(
        db, user_id=current_user.id, action="PRODUCT_DELETE", resource="products", status="SUCCESS",
        ip=client_ip(request), meta={"id": pid},
    )
    return {"detail": f"Product '{pname}' deleted"}
