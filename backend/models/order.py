# backend/models/order.py
import enum
from sqlalchemy import (
    Column, Integer, String, Float, Boolean, ForeignKey, DateTime, JSON, Enum, func
)
from sqlalchemy.orm import relationship
from database import Base

# Order lifecycle states; allowed transitions live in services/order_status.py
class OrderStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"

class PaymentMethod(str, enum.Enum):
    COD = "cod"
    CARD = "card"
    PAYPAL = "paypal"
    STRIPE = "stripe"
    BANK_TRANSFER = "bank_transfer"


class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    order_number = Column(String, unique=True, nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    # Addresses and contact data as submitted at checkout
    shipping_address = Column(JSON, nullable=False)
    billing_address = Column(JSON, nullable=False)
    contact_info = Column(JSON, nullable=True)
    notes = Column(String, nullable=True)

    # Payment
    payment_method = Column(Enum(PaymentMethod, values_callable=lambda e: [m.value for m in e]),
                            nullable=False, default=PaymentMethod.COD)
    payment_result = Column(JSON, nullable=True)
    payment_intent_id = Column(String, nullable=True, index=True)
    is_paid = Column(Boolean, nullable=False, default=False)
    paid_at = Column(DateTime(timezone=True), nullable=True)

    # Pricing, computed server-side at checkout
    subtotal = Column(Float, nullable=False, default=0.0)
    discount = Column(Float, nullable=False, default=0.0)
    coupon = Column(JSON, nullable=True)
    tax_price = Column(Float, nullable=False, default=0.0)
    shipping_price = Column(Float, nullable=False, default=0.0)
    total_price = Column(Float, nullable=False, default=0.0)
    currency = Column(String(3), nullable=False, default="USD")

    # Lifecycle
    status = Column(Enum(OrderStatus, values_callable=lambda e: [m.value for m in e]),
                    nullable=False, default=OrderStatus.PENDING, index=True)
    is_delivered = Column(Boolean, nullable=False, default=False)
    delivered_at = Column(DateTime(timezone=True), nullable=True)
    tracking_number = Column(String, nullable=True)
    carrier = Column(String, nullable=True)
    admin_notes = Column(String, nullable=True)
    cancellation_reason = Column(String, nullable=True)
    refund_reason = Column(String, nullable=True)
    refund_amount = Column(Float, nullable=True)
    refunded_at = Column(DateTime(timezone=True), nullable=True)

    # True while the ordered quantities are held out of product stock
    stock_reserved = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
    version = Column(Integer, nullable=False)

    items = relationship("OrderItem", back_populates="order", cascade="all, delete-orphan",
                         order_by="OrderItem.id")
    user = relationship("User")

    __mapper_args__ = {"version_id_col": version}

    @property
    def item_count(self) -> int:
        return sum(it.quantity for it in self.items)


# Immutable snapshot of a cart line taken at checkout
class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)
    name = Column(String, nullable=False)
    sku = Column(String, nullable=True)
    quantity = Column(Integer, nullable=False)
    price = Column(Float, nullable=False)
    discount_price = Column(Float, nullable=True)
    color = Column(String, nullable=True)
    storage = Column(String, nullable=True)

    order = relationship("Order", back_populates="items")
    product = relationship("Product")

    @property
    def effective_price(self) -> float:
        return self.discount_price if self.discount_price is not None else self.price

    @property
    def line_total(self) -> float:
        return round(self.effective_price * self.quantity, 2)


# Per-day order number sequence, incremented atomically in SQL
class OrderCounter(Base):
    __tablename__ = "order_counters"

    day = Column(String(6), primary_key=True)  # yymmdd
    value = Column(Integer, nullable=False, default=0)
