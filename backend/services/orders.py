# backend/services/orders.py
"""Checkout: turns the user's cart into an order.

Everything a client could tamper with (prices, stock, coupon value) is
re-read from live state here. Nothing is persisted until the payment
intent (when needed) exists, and stock reservation, order insert and cart
clearing commit in one transaction.
"""
import logging
from collections import defaultdict
from datetime import datetime, timezone
from typing import Dict, List, Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from config import settings
from models.cart import Cart
from models.order import Order, OrderItem, OrderCounter, OrderStatus, PaymentMethod
from models.users import User
from services.cart import find_cart, empty_cart
from services.catalog import get_product
from services.coupons import CouponEvaluator, CouponRule
from services.errors import (
    ShopError, EmptyCart, ProductUnavailable, InsufficientStock, InvalidCoupon,
    PaymentInitiationFailed, ConcurrentModification,
)
from services.events import publish, OrderConfirmed
from services.pricing import price_breakdown, to_minor_units
from utils.payment_client import PaymentGatewayError

logger = logging.getLogger(__name__)

# Payment methods settled through a gateway payment intent
INTENT_METHODS = {PaymentMethod.CARD, PaymentMethod.STRIPE}

ORDER_NUMBER_ATTEMPTS = 5


def next_order_number(db: Session, now: Optional[datetime] = None) -> str:
    """Allocate ``ORD<yymmdd><seq>`` from the per-day counter row.

    The increment is a single UPDATE, so concurrent checkouts get distinct
    sequence values; the first order of a day inserts the row and retries
    if another transaction inserted it first.
    """
    now = now or datetime.now(timezone.utc)
    day = now.strftime("%y%m%d")
    for _ in range(ORDER_NUMBER_ATTEMPTS):
        result = db.execute(
            update(OrderCounter)
            .where(OrderCounter.day == day)
            .values(value=OrderCounter.value + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount:
            seq = db.query(OrderCounter.value).filter(OrderCounter.day == day).scalar()
            return f"ORD{day}{seq:04d}"
        try:
            with db.begin_nested():
                db.add(OrderCounter(day=day, value=1))
        except IntegrityError:
            continue
        return f"ORD{day}0001"
    raise ConcurrentModification("Could not allocate an order number, please retry")


def _snapshot_items(db: Session, cart: Cart) -> List[OrderItem]:
    # Several variants of one product share its stock
    needed: Dict[int, int] = defaultdict(int)
    for line in cart.items:
        needed[line.product_id] += line.quantity

    items = []
    for line in cart.items:
        product = get_product(db, line.product_id)
        if product is None or not product.active:
            name = product.name if product is not None else f"#{line.product_id}"
            raise ProductUnavailable(f'Product "{name}" is no longer available', product_id=line.product_id)
        if product.stock < needed[product.id]:
            raise InsufficientStock(product.name, needed[product.id], product.stock, product_id=product.id)

        items.append(OrderItem(
            product_id=product.id,
            name=product.name,
            sku=product.sku,
            quantity=line.quantity,
            price=product.price,
            discount_price=product.discount_price,
            color=line.color,
            storage=line.storage,
        ))
    return items


def _checkout_coupon(cart: Cart, subtotal: float, evaluator: CouponEvaluator,
                     now: datetime) -> Optional[CouponRule]:
    """Re-validate the attached coupon against the order's own subtotal.

    A coupon that no longer qualifies is dropped and checkout continues
    without a discount.
    """
    if not cart.has_coupon:
        return None
    try:
        rule = evaluator.evaluate(cart.coupon_code)
    except InvalidCoupon:
        logger.info("Coupon %s no longer exists, ignored for cart %s", cart.coupon_code, cart.id)
        return None

    expires_at = cart.coupon_expires_at
    if expires_at is not None and expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=timezone.utc)
    if expires_at is not None and now >= expires_at:
        logger.info("Coupon %s expired, ignored for cart %s", rule.code, cart.id)
        return None
    if subtotal < rule.min_purchase:
        logger.info("Coupon %s below minimum purchase, ignored for cart %s", rule.code, cart.id)
        return None
    return rule


async def _cancel_intent(gateway, intent_id: Optional[str]) -> None:
    if not intent_id:
        return
    try:
        await gateway.cancel_payment_intent(intent_id)
    except PaymentGatewayError:
        logger.warning("Could not cancel payment intent %s after failed checkout", intent_id)


async def create_order(
    db: Session,
    user: User,
    *,
    shipping_address: dict,
    payment_method: PaymentMethod,
    gateway,
    evaluator: CouponEvaluator,
    billing_address: Optional[dict] = None,
    contact_info: Optional[dict] = None,
    notes: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Order:
    now = now or datetime.now(timezone.utc)

    cart = find_cart(db, user.id, lock=True)
    if cart is None or not cart.items:
        raise EmptyCart("No items in cart")

    items = _snapshot_items(db, cart)
    subtotal = sum(it.effective_price * it.quantity for it in items)
    coupon = _checkout_coupon(cart, subtotal, evaluator, now)
    totals = price_breakdown(subtotal, coupon)

    payment_result = None
    if payment_method in INTENT_METHODS:
        try:
            intent = await gateway.create_payment_intent(
                to_minor_units(totals.total),
                settings.CURRENCY,
                {"user_id": user.id, "cart_id": cart.id},
            )
        except PaymentGatewayError as e:
            db.rollback()
            raise PaymentInitiationFailed(f"Payment initiation failed: {e}")
        payment_result = {"id": intent["id"], "status": intent["status"],
                          "client_secret": intent.get("client_secret")}

    order = Order(
        user_id=user.id,
        items=items,
        shipping_address=shipping_address,
        billing_address=billing_address or {"same_as_shipping": True},
        contact_info=contact_info or {},
        notes=notes,
        payment_method=payment_method,
        payment_result=payment_result,
        payment_intent_id=payment_result["id"] if payment_result else None,
        subtotal=totals.subtotal,
        discount=totals.discount,
        coupon=coupon.as_dict() if coupon else None,
        tax_price=totals.tax,
        shipping_price=totals.shipping,
        total_price=totals.total,
        currency=settings.CURRENCY,
        status=OrderStatus.PENDING,
    )

    try:
        order.order_number = next_order_number(db, now)
        db.add(order)
        db.flush()
        publish(db, OrderConfirmed(order))
        empty_cart(cart)
        db.commit()
    except (ShopError, IntegrityError, StaleDataError) as exc:
        db.rollback()
        await _cancel_intent(gateway, payment_result["id"] if payment_result else None)
        if not isinstance(exc, ShopError):
            raise ConcurrentModification("Checkout conflicted with another request, please retry")
        raise

    db.refresh(order)
    logger.info("Order %s created for user %s, total %.2f", order.order_number, user.id, order.total_price)
    return order
