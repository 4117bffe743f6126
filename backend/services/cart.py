# backend/services/cart.py
import logging
from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from config import settings
from models.cart import Cart, CartItem
from services.catalog import get_product, get_product_or_404
from services.coupons import CouponEvaluator
from services.errors import (
    NotFound, ProductUnavailable, InsufficientStock, InvalidQuantity,
    MinimumPurchaseNotMet, NoCouponApplied,
)

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _touch(cart: Cart) -> None:
    # Bumps the version column even when only child rows changed
    cart.updated_at = _now()


def find_cart(db: Session, user_id: int, lock: bool = False) -> Optional[Cart]:
    query = db.query(Cart).filter(Cart.user_id == user_id)
    if lock:
        query = query.with_for_update()
    return query.first()


def get_or_create_cart(db: Session, user_id: int) -> Cart:
    cart = find_cart(db, user_id)
    if cart:
        return cart
    cart = Cart(user_id=user_id)
    db.add(cart)
    try:
        db.commit()
    except IntegrityError:
        # Another request created the user's cart first
        db.rollback()
        cart = find_cart(db, user_id)
    return cart


def _require_cart(db: Session, user_id: int) -> Cart:
    cart = find_cart(db, user_id)
    if not cart:
        raise NotFound("Cart not found")
    return cart


def _find_item(cart: Cart, item_id: int) -> CartItem:
    for item in cart.items:
        if item.id == item_id:
            return item
    raise NotFound("Item not found in cart", item_id=item_id)


def _find_line(cart: Cart, product_id: int, color: Optional[str], storage: Optional[str]) -> Optional[CartItem]:
    key = (product_id, color, storage)
    for item in cart.items:
        if item.variant_key == key:
            return item
    return None


def _is_stale(item: CartItem) -> bool:
    return item.product is None or not item.product.active


def read_cart(db: Session, user_id: int) -> Cart:
    """Return the user's cart, pruning lines whose product is gone or inactive.

    Pruning is persisted, so repeated reads converge on the same result.
    Users without a cart get an empty, unsaved one.
    """
    cart = find_cart(db, user_id)
    if cart is None:
        return Cart(user_id=user_id, items=[])

    stale = [it for it in cart.items if _is_stale(it)]
    if stale:
        for item in stale:
            cart.items.remove(item)
        _touch(cart)
        db.commit()
        db.refresh(cart)
        logger.info("Pruned %d unavailable items from cart %s", len(stale), cart.id)
    return cart


def add_item(db: Session, user_id: int, product_id: int, quantity: int = 1,
             color: Optional[str] = None, storage: Optional[str] = None) -> Cart:
    if quantity is None or quantity < 1:
        raise InvalidQuantity("Quantity must be at least 1")

    product = get_product_or_404(db, product_id)
    if not product.active:
        raise ProductUnavailable("Product is not available", product_id=product_id)

    cart = get_or_create_cart(db, user_id)
    line = _find_line(cart, product_id, color, storage)
    requested_total = quantity + (line.quantity if line else 0)
    if product.stock < requested_total:
        raise InsufficientStock(product.name, requested_total, product.stock, product_id=product.id)

    if line:
        line.quantity = requested_total
        line.added_at = _now()
    else:
        cart.items.append(CartItem(
            product_id=product.id,
            quantity=quantity,
            price=product.price,
            discount_price=product.discount_price,
            color=color,
            storage=storage,
            added_at=_now(),
        ))
    _touch(cart)
    db.commit()
    db.refresh(cart)
    return cart


def update_item_quantity(db: Session, user_id: int, item_id: int, quantity: int) -> Cart:
    if quantity is None or quantity < 1:
        raise InvalidQuantity("Quantity must be at least 1")

    cart = _require_cart(db, user_id)
    item = _find_item(cart, item_id)

    # Stock is checked against the live product, not the snapshot
    product = get_product(db, item.product_id)
    if product is None or not product.active:
        cart.items.remove(item)
        _touch(cart)
        db.commit()
        raise ProductUnavailable("Product is no longer available", product_id=item.product_id)

    if quantity > product.stock:
        raise InsufficientStock(product.name, quantity, product.stock, product_id=product.id)

    item.quantity = quantity
    item.added_at = _now()
    _touch(cart)
    db.commit()
    db.refresh(cart)
    return cart


def remove_item(db: Session, user_id: int, item_id: int) -> Cart:
    cart = _require_cart(db, user_id)
    item = _find_item(cart, item_id)
    cart.items.remove(item)
    _touch(cart)
    db.commit()
    db.refresh(cart)
    return cart


def empty_cart(cart: Cart) -> None:
    """Drop every line and the coupon without committing."""
    cart.items.clear()
    cart.detach_coupon()
    _touch(cart)


def clear_cart(db: Session, user_id: int) -> Cart:
    cart = _require_cart(db, user_id)
    empty_cart(cart)
    db.commit()
    db.refresh(cart)
    return cart


def apply_coupon(db: Session, user_id: int, code: str, evaluator: CouponEvaluator,
                 now: Optional[datetime] = None) -> Cart:
    rule = evaluator.evaluate(code)
    cart = _require_cart(db, user_id)

    subtotal = cart.subtotal
    if subtotal < rule.min_purchase:
        raise MinimumPurchaseNotMet(rule.min_purchase, subtotal)

    now = now or _now()
    cart.coupon_code = rule.code
    cart.coupon_discount = rule.discount
    cart.coupon_type = rule.type
    cart.coupon_min_purchase = rule.min_purchase
    cart.coupon_expires_at = now + timedelta(days=settings.COUPON_TTL_DAYS)
    _touch(cart)
    db.commit()
    db.refresh(cart)
    return cart


def remove_coupon(db: Session, user_id: int) -> Cart:
    cart = _require_cart(db, user_id)
    if not cart.has_coupon:
        raise NoCouponApplied("No coupon applied")
    cart.detach_coupon()
    _touch(cart)
    db.commit()
    db.refresh(cart)
    return cart


def merge_guest_items(db: Session, user_id: int, guest_items: Iterable) -> Tuple[Cart, int]:
    """Fold a guest cart into the user's cart.

    Unavailable products are skipped and quantities are capped at live
    stock, so a partially stale guest cart never fails the whole merge.
    """
    cart = get_or_create_cart(db, user_id)
    merged = 0
    for guest in guest_items:
        if guest.quantity < 1:
            continue
        product = get_product(db, guest.product_id)
        if product is None or not product.active or product.stock < 1:
            continue

        line = _find_line(cart, product.id, guest.color, guest.storage)
        if line:
            line.quantity = min(line.quantity + guest.quantity, product.stock)
            line.added_at = _now()
        else:
            cart.items.append(CartItem(
                product_id=product.id,
                quantity=min(guest.quantity, product.stock),
                price=product.price,
                discount_price=product.discount_price,
                color=guest.color,
                storage=guest.storage,
                added_at=_now(),
            ))
        merged += 1

    _touch(cart)
    db.commit()
    db.refresh(cart)
    return cart, merged
