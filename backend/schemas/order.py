from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Dict, List, Optional
from datetime import datetime

from models.order import OrderStatus, PaymentMethod


class Address(BaseModel):
    type: str = "home"  # home | work | other
    street: str
    city: str
    state: Optional[str] = None
    country: str = "United States"
    zip_code: Optional[str] = None
    phone: Optional[str] = None

class BillingAddress(BaseModel):
    same_as_shipping: bool = True
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None
    zip_code: Optional[str] = None

class ContactInfo(BaseModel):
    email: Optional[str] = None
    phone: Optional[str] = None


# Checkout input: the client never sends prices or totals
class OrderCreatePayload(BaseModel):
    shipping_address: Address
    billing_address: Optional[BillingAddress] = None
    contact_info: Optional[ContactInfo] = None
    payment_method: PaymentMethod = PaymentMethod.COD
    notes: Optional[str] = None


# Output schema for an individual order line item
class OrderItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    product_id: int
    name: str
    sku: Optional[str] = None
    quantity: int
    price: float
    discount_price: Optional[float] = None
    color: Optional[str] = None
    storage: Optional[str] = None
    line_total: float


# Output schema representing the full order details
class OrderResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    order_number: str
    user_id: int
    items: List[OrderItemOut]
    item_count: int
    shipping_address: Dict[str, Any]
    billing_address: Dict[str, Any]
    contact_info: Optional[Dict[str, Any]] = None
    notes: Optional[str] = None
    payment_method: PaymentMethod
    payment_result: Optional[Dict[str, Any]] = None
    subtotal: float
    discount: float
    coupon: Optional[Dict[str, Any]] = None
    tax_price: float
    shipping_price: float
    total_price: float
    currency: str
    status: OrderStatus
    is_paid: bool
    paid_at: Optional[datetime] = None
    is_delivered: bool
    delivered_at: Optional[datetime] = None
    tracking_number: Optional[str] = None
    carrier: Optional[str] = None
    admin_notes: Optional[str] = None
    cancellation_reason: Optional[str] = None
    refund_reason: Optional[str] = None
    refund_amount: Optional[float] = None
    refunded_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


# Schema for paginated order lists
class OrdersPage(BaseModel):
    items: List[OrderResponse]
    total: int
    page: int
    page_size: int


# Admin status change; every field optional
class OrderStatusPatch(BaseModel):
    status: Optional[OrderStatus] = None
    tracking_number: Optional[str] = None
    carrier: Optional[str] = None
    admin_notes: Optional[str] = None
    reason: Optional[str] = None

class OrderCancelPayload(BaseModel):
    reason: Optional[str] = None

# Payment confirmation as reported by the client or gateway
class PaymentResultPayload(BaseModel):
    id: Optional[str] = None
    status: Optional[str] = None
    update_time: Optional[str] = None
    email_address: Optional[str] = None
    receipt_url: Optional[str] = None


# Admin order statistics
class OrderCounts(BaseModel):
    total: int
    today: int
    week: int
    month: int
    year: int

class RevenueStats(BaseModel):
    total_revenue: float = 0.0
    daily_revenue: float = 0.0
    weekly_revenue: float = 0.0
    monthly_revenue: float = 0.0
    yearly_revenue: float = 0.0
    average_order_value: float = 0.0

class StatusBucket(BaseModel):
    status: str
    count: int
    revenue: float

class MonthlyRevenue(BaseModel):
    month: int
    revenue: float
    orders: int

class TopProduct(BaseModel):
    product_id: int
    product_name: str
    quantity: int
    revenue: float

class OrderStats(BaseModel):
    counts: OrderCounts
    revenue: RevenueStats
    orders_by_status: List[StatusBucket] = Field(default_factory=list)
    monthly_revenue_chart: List[MonthlyRevenue] = Field(default_factory=list)
    top_products: List[TopProduct] = Field(default_factory=list)
