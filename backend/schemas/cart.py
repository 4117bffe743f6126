from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field
from typing import List, Optional

# Request schema for adding an item to the cart
class CartAddItem(BaseModel):
    product_id: int
    quantity: int = 1
    color: Optional[str] = None
    storage: Optional[str] = None

# Request schema for updating cart item quantity (range checked by the cart service)
class CartUpdateItem(BaseModel):
    quantity: int

class CouponApply(BaseModel):
    code: str = Field(min_length=1)

# A line of the browser-side cart kept before login
class GuestCartItem(BaseModel):
    product_id: int
    quantity: int = 1
    color: Optional[str] = None
    storage: Optional[str] = None

class CartMerge(BaseModel):
    guest_items: List[GuestCartItem]

# Populated product data shown next to each line
class CartProductSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    brand: Optional[str] = None
    price: float
    discount_price: Optional[float] = None
    stock: int
    image_url: Optional[str] = None

# Response schema for a single cart line item
class CartItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    product_id: int
    product: Optional[CartProductSummary] = None
    quantity: int
    price: float
    discount_price: Optional[float] = None
    color: Optional[str] = None
    storage: Optional[str] = None
    added_at: Optional[datetime] = None
    line_total: float

class CartCouponOut(BaseModel):
    code: str
    discount: float
    type: str
    min_purchase: float
    expires_at: Optional[datetime] = None
    valid: bool

# Response schema for the entire cart with derived totals
class CartOut(BaseModel):
    id: Optional[int] = None
    items: List[CartItemOut]
    coupon: Optional[CartCouponOut] = None
    total_items: int
    subtotal: float
    discount_amount: float
    total_after_discount: float
    estimated_tax: float
    estimated_shipping: float
    estimated_total: float

class CartMergeOut(BaseModel):
    cart: CartOut
    merged: int
