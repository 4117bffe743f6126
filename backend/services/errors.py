# backend/services/errors.py
"""Domain failures raised by the cart and order services.

Each error carries a machine-readable ``kind``, the HTTP status it maps to
and a ``context`` dict with the fields a client needs to react (for example
the available quantity on ``InsufficientStock``). ``main.py`` registers a
single handler that renders them as JSON.
"""
from typing import Any, Dict, Optional


class ShopError(Exception):
    kind = "ShopError"
    status_code = 400

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context: Dict[str, Any] = context

    def to_dict(self) -> Dict[str, Any]:
        return {"detail": self.message, "error": self.kind, "context": self.context}


class NotFound(ShopError):
    kind = "NotFound"
    status_code = 404


class ProductUnavailable(ShopError):
    kind = "ProductUnavailable"


class InsufficientStock(ShopError):
    kind = "InsufficientStock"

    def __init__(self, product_name: str, required: int, available: int, product_id: Optional[int] = None):
        super().__init__(
            f'Product "{product_name}" has only {available} items available',
            product_id=product_id, product=product_name, required=required, available=available,
        )


class InvalidQuantity(ShopError):
    kind = "InvalidQuantity"


class EmptyCart(ShopError):
    kind = "EmptyCart"


class InvalidCoupon(ShopError):
    kind = "InvalidCoupon"


class MinimumPurchaseNotMet(ShopError):
    kind = "MinimumPurchaseNotMet"

    def __init__(self, min_purchase: float, subtotal: float):
        super().__init__(
            f"Minimum purchase of ${min_purchase:.2f} required for this coupon",
            min_purchase=min_purchase, subtotal=round(subtotal, 2),
        )


class NoCouponApplied(ShopError):
    kind = "NoCouponApplied"


class InvalidStatusTransition(ShopError):
    kind = "InvalidStatusTransition"

    def __init__(self, current: str, requested: str):
        super().__init__(
            f"Cannot change status from {current} to {requested}",
            current=current, requested=requested,
        )


class NotAuthorized(ShopError):
    kind = "NotAuthorized"
    status_code = 403


class PaymentInitiationFailed(ShopError):
    kind = "PaymentInitiationFailed"
    status_code = 502


class AlreadyPaid(ShopError):
    kind = "AlreadyPaid"


class OrderNotPaid(ShopError):
    kind = "OrderNotPaid"


class ConcurrentModification(ShopError):
    kind = "ConcurrentModification"
    status_code = 409
