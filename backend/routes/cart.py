# backend/routes/cart.py
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session

from database import get_db
from utils.tokenJWT import get_current_user
from utils.audit import write_log, client_ip
from utils.errors import NotFound, InsufficientStock
from models.users import User
from models.product import Product
from models.cart import Cart, CartItem
from schemas.cart import CartAddItem, CartUpdateItem, CartOut, CartItemOut

router = APIRouter(prefix="/cart", tags=["Cart"])
logger = logging.getLogger(__name__)

def _get_cart(db: Session, user_id: int, create: bool = True) -> Optional[Cart]:
    # Retrieve the user's cart, creating it lazily on first use
    cart = db.query(Cart).filter(Cart.user_id == user_id).first()
    if not cart and create:
        cart = Cart(user_id=user_id)
        db.add(cart)
        db.flush()
    return cart

def _prune_cart(db: Session, cart: Cart) -> int:
    # Drop lines whose product vanished or has no restaurant; returns how many were removed
    dangling = [it for it in cart.items if it.product is None or it.product.restaurant_id is None]
    for it in dangling:
        cart.items.remove(it)
    if dangling:
        db.commit()
        db.refresh(cart)
        logger.info("Pruned %s dangling item(s) from cart %s", len(dangling), cart.id)
    return len(dangling)

def _cart_to_out(db: Session, cart: Optional[Cart]) -> CartOut:
    if cart is None:
        return CartOut(items=[], total=0.0)

    _prune_cart(db, cart)

    items_out = []
    total = 0.0
    for it in cart.items:
        line_total = it.product.price * it.quantity
        total += line_total
        items_out.append(CartItemOut(
            product_id=it.product_id,
            name=it.product.name,
            price=it.product.price,
            stock=it.product.stock,
            image_url=it.product.image_url,
            restaurant_id=it.product.restaurant_id,
            quantity=it.quantity,
            line_total=round(line_total, 2),
        ))
    return CartOut(items=items_out, total=round(total, 2), updated_at=cart.updated_at)

def _load_product(db: Session, product_id: int) -> Product:
    product = db.query(Product).filter(Product.id == product_id).first()
    if not product:
        raise NotFound("Product not found")
    return product

def _check_stock(product: Product, quantity: int):
    if quantity > product.stock:
        raise InsufficientStock(f"{product.name} has insufficient stock")

@router.get("", response_model=CartOut)
def get_cart(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    cart = _get_cart(db, current_user.id, create=False)
    return _cart_to_out(db, cart)

@router.post("", response_model=CartOut, status_code=status.HTTP_201_CREATED)
def add_to_cart(
    payload: CartAddItem,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    product = _load_product(db, payload.product_id)
    _check_stock(product, payload.quantity)

    cart = _get_cart(db, current_user.id)
    item = db.query(CartItem).filter(
        CartItem.cart_id == cart.id, CartItem.product_id == product.id
    ).first()

    if item:
        # Overwrite, never accumulate
        item.quantity = payload.quantity
    else:
        cart.items.append(CartItem(product_id=product.id, quantity=payload.quantity))

    db.commit()
    db.refresh(cart)

    out = _cart_to_out(db, cart)
    write_log(
        db,
        user_id=current_user.id,
        action="CART_ADD",
        resource="cart",
        status="SUCCESS",
        ip=client_ip(request),
        meta={"product_id": product.id, "quantity": payload.quantity, "cart_items": len(out.items)},
    )
    return out

@router.put("", response_model=CartOut)
def update_cart_item(
    payload: CartUpdateItem,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    cart = _get_cart(db, current_user.id, create=False)
    if not cart:
        raise NotFound("Cart not found")

    product = _load_product(db, payload.product_id)
    _check_stock(product, payload.quantity)

    item = db.query(CartItem).filter(
        CartItem.cart_id == cart.id, CartItem.product_id == payload.product_id
    ).first()
    if not item:
        raise NotFound("Product not found in cart")

    item.quantity = payload.quantity
    db.commit()
    db.refresh(cart)

    out = _cart_to_out(db, cart)
    write_log(
        db,
        user_id=current_user.id,
        action="CART_UPDATE",
        resource="cart",
        status="SUCCESS",
        ip=client_ip(request),
        meta={"product_id": payload.product_id, "quantity": payload.quantity},
    )
    return out

@router.delete("/{product_id}", response_model=CartOut)
def remove_cart_item(
    product_id: int,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    cart = _get_cart(db, current_user.id, create=False)
    item = None
    if cart:
        item = db.query(CartItem).filter(
            CartItem.cart_id == cart.id, CartItem.product_id == product_id
        ).first()
    if not item:
        raise NotFound("Product not found in cart")

    cart.items.remove(item)
    db.commit()
    db.refresh(cart)

    out = _cart_to_out(db, cart)
    write_log(
        db,
        user_id=current_user.id,
        action="CART_DELETE",
        resource="cart",
        status="SUCCESS",
        ip=client_ip(request),
        meta={"product_id": product_id, "cart_items": len(out.items)},
    )
    return out

@router.delete("", response_model=CartOut)
def clear_cart(
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    cart = _get_cart(db, current_user.id, create=False)
    if cart:
        cart.items.clear()
        db.commit()
        db.refresh(cart)

    write_log(
        db,
        user_id=current_user.id,
        action="CART_CLEAR",
        resource="cart",
        status="SUCCESS",
        ip=client_ip(request),
    )
    return _cart_to_out(db, cart)
