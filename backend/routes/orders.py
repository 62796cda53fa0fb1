# backend/routes/orders.py
import json
from typing import List, Optional, Tuple
from fastapi import APIRouter, Depends, Request, status
from sqlalchemy import update, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from database import get_db
import logging
from utils.tokenJWT import get_current_user
from utils.audit import write_log, client_ip
from utils.stripe_client import StripeClient, get_payment_client
from utils.errors import (
    AppError, ValidationError, EmptyCart, NotFound, Forbidden, Conflict,
    InsufficientStock, DeliveryUnavailable, MinimumOrderNotMet, InvalidState,
)
from models.users import User
from models.product import Product
from models.restaurant import Restaurant
from models.cart import Cart, CartItem
from models.order import Order, OrderItem, OrderStatus, PaymentMethod
from schemas.order import (
    OrderResponse, OrderItemOut, OrderCreatePayload, OrderPlaced, OrderStatusUpdate
)

router = APIRouter(prefix="/orders", tags=["Orders"])
logger = logging.getLogger(__name__)

# Forward progression; Cancelled is reachable from any non-terminal status
STATUS_FLOW = [
    OrderStatus.PENDING,
    OrderStatus.CONFIRMED,
    OrderStatus.PREPARING,
    OrderStatus.OUT_FOR_DELIVERY,
    OrderStatus.DELIVERED,
]
TERMINAL_STATUSES = {OrderStatus.DELIVERED, OrderStatus.CANCELLED}


def can_transition(old: OrderStatus, new: OrderStatus) -> bool:
    if old == new:
        return True
    if old in TERMINAL_STATUSES:
        return False
    if new == OrderStatus.CANCELLED:
        return True
    return STATUS_FLOW.index(new) > STATUS_FLOW.index(old)


# Map Order model to OrderResponse schema
def order_to_out(order: Order) -> OrderResponse:
    items: List[OrderItemOut] = [
        OrderItemOut(
            product_id=it.product_id,
            product_name=it.product_name,
            quantity=it.quantity,
            price=it.price,
            line_total=round(it.quantity * it.price, 2),
        )
        for it in order.items
    ]
    return OrderResponse(
        id=order.id,
        user_id=order.user_id,
        restaurant_id=order.restaurant_id,
        restaurant_name=order.restaurant.name if order.restaurant else None,
        status=order.status,
        total_price=round(order.total_price, 2),
        delivery_address=order.delivery_address,
        payment_method=order.payment_method,
        stripe_session_id=order.stripe_session_id,
        created_at=order.created_at,
        items=items,
    )


def order_query(db: Session):
    return db.query(Order).options(
        joinedload(Order.items), joinedload(Order.restaurant)
    )


def reserve_stock(db: Session, product_id: int, quantity: int) -> bool:
    """Atomically decrements stock if enough is left; False when it is not."""
    result = db.execute(
        update(Product)
        .where(Product.id == product_id, Product.stock >= quantity)
        .values(stock=Product.stock - quantity)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def load_checkout_restaurant(db: Session, restaurant_id: int) -> Restaurant:
    restaurant = db.query(Restaurant).filter(Restaurant.id == restaurant_id).first()
    if not restaurant or not restaurant.is_active:
        raise NotFound("Restaurant not found")
    if not restaurant.delivery_available:
        raise DeliveryUnavailable("Delivery is not available for this restaurant")
    return restaurant


def validate_checkout(
    db: Session, cart: Optional[Cart], restaurant_id: int
) -> Tuple[Restaurant, List[Tuple[CartItem, Product]], float]:
    """
    Read-only checkout validation shared by placing an order and opening a
    payment session: cart contents, restaurant, same-restaurant rule, stock
    availability and the minimum order amount. Returns the restaurant, the
    resolved (cart line, product) pairs and the order total.
    """
    if not cart or not cart.items:
        raise EmptyCart("Cart is empty")

    restaurant = load_checkout_restaurant(db, restaurant_id)

    lines: List[Tuple[CartItem, Product]] = []
    for ci in cart.items:
        product = db.query(Product).filter(Product.id == ci.product_id).first()
        if not product:
            raise NotFound(f"Product {ci.product_id} not found")
        if product.restaurant_id != restaurant.id:
            raise ValidationError("All items must belong to the same restaurant")
        lines.append((ci, product))

    total_price = 0.0
    for ci, product in lines:
        if product.stock < ci.quantity:
            raise InsufficientStock(f"{product.name} is out of stock")
        total_price += product.price * ci.quantity
    total_price = round(total_price, 2)

    if total_price < restaurant.minimum_order_amount:
        raise MinimumOrderNotMet(f"Minimum order amount is {restaurant.minimum_order_amount}")

    return restaurant, lines, total_price


def checkout_manifest(lines: List[Tuple[CartItem, Product]]) -> List[dict]:
    # Item manifest stored on a checkout session
    return [{"product": product.id, "quantity": ci.quantity, "price": product.price} for ci, product in lines]


def _manifest_key(items: List[dict]) -> list:
    return sorted((int(it["product"]), int(it["quantity"]), round(float(it["price"]), 2)) for it in items)


def session_matches(metadata: dict, user_id: int, restaurant_id: int, items: List[dict], total: float) -> bool:
    """True when checkout session metadata describes exactly this purchase."""
    try:
        return (
            int(metadata["userId"]) == user_id
            and int(metadata["restaurantId"]) == restaurant_id
            and round(float(metadata["total"]), 2) == round(total, 2)
            and _manifest_key(json.loads(metadata["items"])) == _manifest_key(items)
        )
    except (KeyError, TypeError, ValueError):
        return False


# Place an order from the caller's cart
@router.post("", response_model=OrderPlaced, status_code=status.HTTP_201_CREATED)
def place_order(
    payload: OrderCreatePayload,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    payment_client: StripeClient = Depends(get_payment_client),
):
    online = payload.payment_method == PaymentMethod.ONLINE
    if online and not payload.stripe_session_id:
        raise ValidationError("Online payment requires a checkout session")
    if not online and payload.stripe_session_id:
        raise ValidationError("Checkout session only applies to online payment")

    cart = db.query(Cart).filter(Cart.user_id == current_user.id).first()
    restaurant, lines, total_price = validate_checkout(db, cart, payload.restaurant_id)

    # The session must have been opened for exactly this cart
    if online:
        session = payment_client.retrieve_session(payload.stripe_session_id)
        metadata = session.get("metadata") or {}
        if not session_matches(metadata, current_user.id, restaurant.id, checkout_manifest(lines), total_price):
            logger.warning(
                "Checkout session %s does not match the cart of user %s", payload.stripe_session_id, current_user.id
            )
            raise ValidationError("Checkout session does not match the cart")

    order = Order(
        user_id=current_user.id,
        restaurant_id=restaurant.id,
        status=OrderStatus.PENDING.value,
        total_price=total_price,
        delivery_address=payload.delivery_address,
        payment_method=payload.payment_method.value,
        stripe_session_id=payload.stripe_session_id,
    )

    # Stock reservation, order insert and cart clearing commit together or not at all
    try:
        for ci, product in lines:
            if not reserve_stock(db, product.id, ci.quantity):
                raise InsufficientStock(f"{product.name} is out of stock")
            order.items.append(OrderItem(
                product_id=product.id,
                product_name=product.name,
                quantity=ci.quantity,
                price=product.price,
            ))
        db.add(order)
        cart.items.clear()
        db.commit()
    except AppError:
        db.rollback()
        raise
    except IntegrityError:
        db.rollback()
        raise Conflict("An order already exists for this checkout session")

    db.refresh(order)
    logger.info("Order %s placed by user %s, total %.2f", order.id, current_user.id, order.total_price)
    write_log(
        db, user_id=current_user.id, action="ORDER_PLACE", resource="orders", status="SUCCESS",
        ip=client_ip(request),
        meta={"order_id": order.id, "total_price": order.total_price, "payment_method": order.payment_method},
    )
    return OrderPlaced(order_id=order.id, total_price=order.total_price, status=order.status)


# Customers see their own orders; admins also see orders placed against their restaurant
@router.get("", response_model=List[OrderResponse])
def list_orders(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    q = order_query(db)
    if current_user.is_admin and current_user.restaurant_id:
        q = q.filter(or_(Order.user_id == current_user.id, Order.restaurant_id == current_user.restaurant_id))
    else:
        q = q.filter(Order.user_id == current_user.id)
    rows = q.order_by(Order.created_at.desc(), Order.id.desc()).all()
    return [order_to_out(o) for o in rows]


def _can_view(order: Order, user: User) -> bool:
    if order.user_id == user.id:
        return True
    return user.is_admin and user.restaurant_id is not None and user.restaurant_id == order.restaurant_id


# Get details of a specific order
@router.get("/{order_id}", response_model=OrderResponse)
def get_order_detail(
    order_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    order = order_query(db).filter(Order.id == order_id).first()
    if not order:
        raise NotFound("Order not found")
    if not _can_view(order, current_user):
        raise Forbidden("Not authorized to view this order")
    return order_to_out(order)


# Move an order along its lifecycle (restaurant admin only)
@router.put("/{order_id}", response_model=OrderResponse)
def update_order_status(
    order_id: int,
    payload: OrderStatusUpdate,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    order = order_query(db).filter(Order.id == order_id).first()
    if not order:
        raise NotFound("Order not found")
    if not current_user.is_admin or current_user.restaurant_id != order.restaurant_id:
        raise Forbidden("Not authorized to update this order")

    new_status = payload.as_status()
    if new_status is None:
        raise ValidationError("Invalid status")

    old_status = OrderStatus(order.status)
    if not can_transition(old_status, new_status):
        raise InvalidState(f"Cannot change status from {old_status.value} to {new_status.value}")

    if old_status != new_status:
        order.status = new_status.value
        db.commit()
        db.refresh(order)
        logger.info("Order %s status %s -> %s", order.id, old_status.value, new_status.value)
        write_log(
            db, user_id=current_user.id, action="ORDER_STATUS_CHANGE", resource="orders", status="SUCCESS",
            ip=client_ip(request), meta={"order_id": order.id, "old": old_status.value, "new": new_status.value},
        )
    return order_to_out(order)
