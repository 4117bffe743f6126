# backend/models/cart.py
from datetime import datetime, timezone
from sqlalchemy import Column, Integer, ForeignKey, String, DateTime, Float, func
from sqlalchemy.orm import relationship
from database import Base

# Represents the user's shopping cart (exactly one per user)
class Cart(Base):
    __tablename__ = "carts"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), unique=True, index=True, nullable=False)
    notes = Column(String, nullable=True)

    # Attached coupon snapshot; all NULL when no coupon is applied
    coupon_code = Column(String, nullable=True)
    coupon_discount = Column(Float, nullable=True)
    coupon_type = Column(String, nullable=True)  # percentage | fixed
    coupon_min_purchase = Column(Float, nullable=True)
    coupon_expires_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now())

    # Optimistic lock: every mutation bumps the row so overlapping edits fail
    version = Column(Integer, nullable=False)

    # One-to-many relationship with cart items, kept in insertion order
    items = relationship(
        "CartItem", back_populates="cart", cascade="all, delete-orphan", order_by="CartItem.id"
    )

    __mapper_args__ = {"version_id_col": version}

    @property
    def has_coupon(self) -> bool:
        return self.coupon_code is not None

    @property
    def subtotal(self) -> float:
        return sum(it.effective_price * it.quantity for it in self.items)

    @property
    def total_items(self) -> int:
        return sum(it.quantity for it in self.items)

    def coupon_is_valid(self, now: datetime = None) -> bool:
        """Attached coupon is unexpired and the subtotal still meets its minimum."""
        if not self.has_coupon:
            return False
        now = now or datetime.now(timezone.utc)
        expires_at = self.coupon_expires_at
        if expires_at is not None:
            # SQLite drops tzinfo on the way back
            if expires_at.tzinfo is None:
                expires_at = expires_at.replace(tzinfo=timezone.utc)
            if now >= expires_at:
                return False
        return self.subtotal >= (self.coupon_min_purchase or 0)

    def detach_coupon(self):
        self.coupon_code = None
        self.coupon_discount = None
        self.coupon_type = None
        self.coupon_min_purchase = None
        self.coupon_expires_at = None


# A single product + variant line within a cart
class CartItem(Base):
    __tablename__ = "cart_items"

    id = Column(Integer, primary_key=True, index=True)
    cart_id = Column(Integer, ForeignKey("carts.id"), index=True, nullable=False)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="CASCADE"), index=True, nullable=False)
    quantity = Column(Integer, nullable=False, default=1)

    # Price snapshot at the moment of addition
    price = Column(Float, nullable=False)
    discount_price = Column(Float, nullable=True)

    # Selected variant
    color = Column(String, nullable=True)
    storage = Column(String, nullable=True)

    added_at = Column(DateTime(timezone=True), server_default=func.now())

    cart = relationship("Cart", back_populates="items")
    product = relationship("Product")

    @property
    def effective_price(self) -> float:
        return self.discount_price if self.discount_price is not None else self.price

    @property
    def line_total(self) -> float:
        return round(self.effective_price * self.quantity, 2)

    @property
    def variant_key(self):
        return (self.product_id, self.color, self.storage)
