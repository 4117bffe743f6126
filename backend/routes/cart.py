# backend/routes/cart.py
from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from database import get_db
from utils.tokenJWT import get_current_user
from utils.audit import write_log, client_ip
from models.users import User
from models.cart import Cart
from services import cart as cart_service
from services.coupons import CouponEvaluator, get_coupon_evaluator
from services.pricing import cart_breakdown
from schemas.cart import (
    CartAddItem, CartUpdateItem, CouponApply, CartMerge,
    CartOut, CartItemOut, CartCouponOut, CartMergeOut,
)

router = APIRouter(prefix="/cart", tags=["Cart"])


def _cart_to_out(cart: Cart) -> CartOut:
    totals = cart_breakdown(cart)
    coupon = None
    if cart.has_coupon:
        coupon = CartCouponOut(
            code=cart.coupon_code,
            discount=cart.coupon_discount or 0.0,
            type=cart.coupon_type,
            min_purchase=cart.coupon_min_purchase or 0.0,
            expires_at=cart.coupon_expires_at,
            valid=cart.coupon_is_valid(),
        )
    return CartOut(
        id=cart.id,
        items=[CartItemOut.model_validate(it) for it in cart.items],
        coupon=coupon,
        total_items=cart.total_items,
        subtotal=totals.subtotal,
        discount_amount=totals.discount,
        total_after_discount=totals.total_after_discount,
        estimated_tax=totals.tax,
        estimated_shipping=totals.shipping,
        estimated_total=totals.total,
    )


def _log(db: Session, request: Request, user: User, action: str, out: CartOut, **meta):
    write_log(
        db,
        user_id=user.id,
        action=action,
        resource="cart",
        resource_id=out.id,
        ip=client_ip(request),
        meta={**meta, "items": len(out.items), "total": out.estimated_total},
    )


@router.get("", response_model=CartOut)
def get_cart(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    cart = cart_service.read_cart(db, current_user.id)
    return _cart_to_out(cart)


@router.post("", response_model=CartOut)
def add_to_cart(
    payload: CartAddItem,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    cart = cart_service.add_item(
        db, current_user.id, payload.product_id, payload.quantity,
        color=payload.color, storage=payload.storage,
    )
    out = _cart_to_out(cart)
    _log(db, request, current_user, "CART_ADD", out, product_id=payload.product_id, qty=payload.quantity)
    return out


@router.delete("", response_model=CartOut)
def clear_cart(
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    cart = cart_service.clear_cart(db, current_user.id)
    out = _cart_to_out(cart)
    _log(db, request, current_user, "CART_CLEAR", out)
    return out


@router.put("/items/{item_id}", response_model=CartOut)
def update_cart_item(
    item_id: int,
    payload: CartUpdateItem,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    cart = cart_service.update_item_quantity(db, current_user.id, item_id, payload.quantity)
    out = _cart_to_out(cart)
    _log(db, request, current_user, "CART_UPDATE", out, item_id=item_id, qty=payload.quantity)
    return out


@router.delete("/items/{item_id}", response_model=CartOut)
def delete_cart_item(
    item_id: int,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    cart = cart_service.remove_item(db, current_user.id, item_id)
    out = _cart_to_out(cart)
    _log(db, request, current_user, "CART_DELETE", out, item_id=item_id)
    return out


@router.post("/coupon", response_model=CartOut)
def apply_coupon(
    payload: CouponApply,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    evaluator: CouponEvaluator = Depends(get_coupon_evaluator),
):
    cart = cart_service.apply_coupon(db, current_user.id, payload.code, evaluator)
    out = _cart_to_out(cart)
    _log(db, request, current_user, "COUPON_APPLY", out, code=cart.coupon_code)
    return out


@router.delete("/coupon", response_model=CartOut)
def remove_coupon(
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    cart = cart_service.remove_coupon(db, current_user.id)
    out = _cart_to_out(cart)
    _log(db, request, current_user, "COUPON_REMOVE", out)
    return out


@router.post("/merge", response_model=CartMergeOut)
def merge_cart(
    payload: CartMerge,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    cart, merged = cart_service.merge_guest_items(db, current_user.id, payload.guest_items)
    out = _cart_to_out(cart)
    _log(db, request, current_user, "CART_MERGE", out, merged=merged)
    return CartMergeOut(cart=out, merged=merged)
