# backend/services/pricing.py
from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Optional

from config import settings
from services.coupons import CouponRule, PERCENTAGE


@dataclass(frozen=True)
class PriceBreakdown:
    subtotal: float
    discount: float
    total_after_discount: float
    tax: float
    shipping: float
    total: float

    def as_dict(self):
        return asdict(self)


def discount_for(subtotal: float, coupon: Optional[CouponRule]) -> float:
    if coupon is None or not coupon.discount:
        return 0.0
    if coupon.type == PERCENTAGE:
        return round(subtotal * coupon.discount / 100, 2)
    return round(coupon.discount, 2)


def price_breakdown(subtotal: float, coupon: Optional[CouponRule] = None) -> PriceBreakdown:
    """Totals shared by the cart view and checkout.

    Each component is rounded to cents before summing so the stored total
    always equals total_after_discount + tax + shipping.
    """
    subtotal = round(subtotal, 2)
    discount = discount_for(subtotal, coupon)
    total_after_discount = round(max(0.0, subtotal - discount), 2)
    tax = round(total_after_discount * settings.TAX_RATE, 2)
    # Free shipping strictly above the threshold
    shipping = 0.0 if total_after_discount > settings.FREE_SHIPPING_THRESHOLD else float(settings.SHIPPING_FEE)
    total = round(total_after_discount + tax + shipping, 2)
    return PriceBreakdown(
        subtotal=subtotal,
        discount=discount,
        total_after_discount=total_after_discount,
        tax=tax,
        shipping=shipping,
        total=total,
    )


def cart_breakdown(cart, now: Optional[datetime] = None) -> PriceBreakdown:
    # An expired or under-threshold coupon stays attached but is inert
    coupon = None
    if cart.coupon_is_valid(now):
        coupon = CouponRule(
            code=cart.coupon_code,
            discount=cart.coupon_discount or 0.0,
            type=cart.coupon_type,
            min_purchase=cart.coupon_min_purchase or 0.0,
        )
    return price_breakdown(cart.subtotal, coupon)


def to_minor_units(amount: float) -> int:
    return int(round(amount * 100))
