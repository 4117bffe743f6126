# backend/services/coupons.py
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from config import settings
from services.errors import InvalidCoupon

PERCENTAGE = "percentage"
FIXED = "fixed"


@dataclass(frozen=True)
class CouponRule:
    code: str
    discount: float
    type: str
    min_purchase: float = 0.0

    def as_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "discount": self.discount, "type": self.type,
                "min_purchase": self.min_purchase}


class CouponEvaluator:
    """Looks coupon codes up in a rule table.

    The table is injected (``Settings.COUPONS`` by default) so a database
    backed coupon store can replace it later. ``evaluate`` only resolves the
    code; the minimum purchase is enforced by the caller against its own
    subtotal, both when the coupon is attached and again at checkout.
    """

    def __init__(self, rules: Mapping[str, Mapping[str, Any]]):
        self._rules: Dict[str, CouponRule] = {}
        for code, rule in rules.items():
            kind = rule.get("type", PERCENTAGE)
            if kind not in (PERCENTAGE, FIXED):
                raise ValueError(f"Unsupported coupon type {kind!r} for {code}")
            key = code.strip().upper()
            self._rules[key] = CouponRule(
                code=key,
                discount=float(rule["discount"]),
                type=kind,
                min_purchase=float(rule.get("min_purchase") or 0),
            )

    def evaluate(self, code: Optional[str]) -> CouponRule:
        key = (code or "").strip().upper()
        if not key:
            raise InvalidCoupon("Please provide coupon code")
        rule = self._rules.get(key)
        if rule is None:
            raise InvalidCoupon("Invalid coupon code", code=code)
        return rule


coupon_evaluator = CouponEvaluator(settings.COUPONS)

def get_coupon_evaluator() -> CouponEvaluator:
    return coupon_evaluator
