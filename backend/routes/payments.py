# backend/routes/payments.py
import json
import logging
from typing import List, Optional, Tuple

from fastapi import APIRouter, Depends, Header, Request
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from database import get_db
from models.users import User
from models.cart import Cart
from models.product import Product
from models.order import Order, OrderItem, OrderStatus, PaymentMethod
from routes.orders import validate_checkout, reserve_stock, checkout_manifest, session_matches
from schemas.payment import (
    CheckoutSessionCreate, CheckoutSessionOut, PaymentSuccessPayload, PaymentSuccessOut
)
from utils.audit import write_log, client_ip
from utils.errors import InvalidState, NotFound, PaymentMismatch, ValidationError
from utils.stripe_client import StripeClient, get_payment_client
from utils.tokenJWT import get_current_user

router = APIRouter(tags=["Payments"])
logger = logging.getLogger(__name__)

# Stripe caps each metadata value at 500 characters
METADATA_VALUE_LIMIT = 500
SESSION_COMPLETED = "checkout.session.completed"
PAID = "paid"


def _confirm_online_order(db: Session, order: Order) -> Order:
    # Only a pending online order moves; anything further along is left untouched
    if order.payment_method == PaymentMethod.ONLINE.value and order.status == OrderStatus.PENDING.value:
        order.status = OrderStatus.CONFIRMED.value
        db.commit()
        db.refresh(order)
        logger.info("Order %s confirmed by payment session %s", order.id, order.stripe_session_id)
    return order


def _order_from_metadata(db: Session, session_id: str, metadata: dict) -> Order:
    try:
        user_id = int(metadata["userId"])
        restaurant_id = int(metadata["restaurantId"])
        delivery_address = metadata["deliveryAddress"]
        lines = [
            (int(it["product"]), int(it["quantity"]), float(it["price"]))
            for it in json.loads(metadata["items"])
        ]
    except (KeyError, TypeError, ValueError):
        raise ValidationError("Missing required fields in session metadata")
    if not delivery_address or not lines:
        raise ValidationError("Missing required fields in session metadata")

    order = Order(
        user_id=user_id,
        restaurant_id=restaurant_id,
        status=OrderStatus.CONFIRMED.value,
        delivery_address=delivery_address,
        payment_method=PaymentMethod.ONLINE.value,
        stripe_session_id=session_id,
    )
    total_price = 0.0
    for product_id, quantity, price in lines:
        product = db.query(Product).filter(Product.id == product_id).first()
        if not reserve_stock(db, product_id, quantity):
            # Payment is already captured; record the order and flag the shortfall
            logger.warning(
                "Stock shortfall for product %s (qty %s) on paid session %s", product_id, quantity, session_id
            )
        order.items.append(OrderItem(
            product_id=product_id,
            product_name=product.name if product else "Unknown Product",
            quantity=quantity,
            price=price,
        ))
        total_price += price * quantity
    order.total_price = round(total_price, 2)
    db.add(order)

    cart = db.query(Cart).filter(Cart.user_id == user_id).first()
    if cart:
        cart.items.clear()
    return order


def order_manifest(order: Order) -> List[dict]:
    return [{"product": it.product_id, "quantity": it.quantity, "price": it.price} for it in order.items]


def mark_session_paid(
    db: Session, session_id: str, metadata: dict, ip: Optional[str] = None, create: bool = True
) -> Tuple[Order, bool]:
    """
    Idempotent "mark as paid" shared by the webhook and the client-side
    confirmation. Returns the order and whether it was created by this call.

    An existing order is only confirmed when the paid session describes the
    same purchase; otherwise it stays Pending, a FAILED audit row is written
    and PaymentMismatch is raised.
    """
    order = db.query(Order).filter(Order.stripe_session_id == session_id).first()
    if order:
        if not session_matches(metadata, order.user_id, order.restaurant_id, order_manifest(order), order.total_price):
            logger.warning(
                "Paid session %s (total %s) does not match order %s (total %.2f)",
                session_id, metadata.get("total"), order.id, order.total_price,
            )
            write_log(
                db, user_id=order.user_id, action="PAYMENT_MISMATCH", resource="payments", status="FAILED",
                ip=ip, meta={"order_id": order.id, "session_id": session_id, "paid_total": metadata.get("total")},
            )
            raise PaymentMismatch("Paid session does not match the order")
        return _confirm_online_order(db, order), False
    if not create:
        raise NotFound("Order not found")

    order = _order_from_metadata(db, session_id, metadata)
    try:
        db.commit()
    except IntegrityError:
        # A concurrent delivery inserted the same session first
        db.rollback()
        order = db.query(Order).filter(Order.stripe_session_id == session_id).first()
        if order is None:
            raise
        return _confirm_online_order(db, order), False
    db.refresh(order)
    return order, True


# Open a Stripe hosted checkout for the caller's cart
@router.post("/create-checkout-session", response_model=CheckoutSessionOut)
def create_checkout_session(
    payload: CheckoutSessionCreate,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    payment_client: StripeClient = Depends(get_payment_client),
):
    cart = db.query(Cart).filter(Cart.user_id == current_user.id).first()
    restaurant, lines, total = validate_checkout(db, cart, payload.restaurant_id)

    manifest = payment_client.build_line_items([
        {"name": product.name, "quantity": ci.quantity, "price": product.price}
        for ci, product in lines
    ])
    if not manifest:
        raise ValidationError("No valid items to process")

    items_json = json.dumps(checkout_manifest(lines), separators=(",", ":"))
    if len(items_json) > METADATA_VALUE_LIMIT or len(payload.delivery_address) > METADATA_VALUE_LIMIT:
        raise ValidationError("Cart is too large for online payment")

    metadata = {
        "restaurantId": str(restaurant.id),
        "deliveryAddress": payload.delivery_address,
        "total": str(total),
        "items": items_json,
        "userId": str(current_user.id),
    }
    logger.info("Creating checkout session for user %s, total %.2f, %s item(s)", current_user.id, total, len(lines))
    session_id = payment_client.create_checkout_session(manifest, metadata)

    write_log(
        db, user_id=current_user.id, action="CHECKOUT_SESSION_CREATE", resource="payments", status="SUCCESS",
        ip=client_ip(request), meta={"session_id": session_id, "total": total},
    )
    return CheckoutSessionOut(session_id=session_id, total=total)


# Stripe webhook: raw body, verified against the endpoint secret
@router.post("/webhook")
async def stripe_webhook(
    request: Request,
    db: Session = Depends(get_db),
    payment_client: StripeClient = Depends(get_payment_client),
    stripe_signature: Optional[str] = Header(None, alias="Stripe-Signature"),
):
    body = await request.body()
    event = payment_client.construct_event(body, stripe_signature)
    event_type = event.get("type")
    logger.info("Stripe webhook received: %s", event_type)

    if event_type == SESSION_COMPLETED:
        session = event.get("data", {}).get("object", {})
        session_id = session.get("id")
        if not session_id:
            raise ValidationError("Missing session id")

        try:
            order, created = mark_session_paid(
                db, session_id, session.get("metadata") or {}, ip=client_ip(request)
            )
        except PaymentMismatch:
            # Acknowledged so Stripe stops redelivering; the order stays Pending for review
            return {"received": True}
        write_log(
            db, user_id=order.user_id, action="PAYMENT_WEBHOOK", resource="payments", status="SUCCESS",
            ip=client_ip(request),
            meta={"order_id": order.id, "session_id": session_id, "created": created},
        )
    else:
        logger.info("Unhandled Stripe event type %s", event_type)

    return {"received": True}


# Fallback confirmation invoked by the client after the redirect back from Stripe
@router.post("/payment-success", response_model=PaymentSuccessOut)
def payment_success(
    payload: PaymentSuccessPayload,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    payment_client: StripeClient = Depends(get_payment_client),
):
    order = db.query(Order).filter(Order.stripe_session_id == payload.session_id).first()
    if order and order.user_id != current_user.id:
        raise NotFound("Order not found")

    session = payment_client.retrieve_session(payload.session_id)
    if session.get("payment_status") != PAID:
        raise InvalidState("Payment has not been completed")

    order, _ = mark_session_paid(
        db, payload.session_id, session.get("metadata") or {}, ip=client_ip(request), create=False
    )
    write_log(
        db, user_id=current_user.id, action="PAYMENT_CONFIRM", resource="payments", status="SUCCESS",
        ip=client_ip(request), meta={"order_id": order.id, "session_id": payload.session_id},
    )
    return PaymentSuccessOut(order_id=order.id, status=order.status)
