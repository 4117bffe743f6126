# backend/services/catalog.py
import logging
from typing import Optional

from sqlalchemy import update, case
from sqlalchemy.orm import Session

from models.product import Product
from services.errors import NotFound, InsufficientStock
from services.events import subscribe, OrderConfirmed, OrderReleased

logger = logging.getLogger(__name__)


def get_product(db: Session, product_id: int) -> Optional[Product]:
    return db.query(Product).filter(Product.id == product_id).first()


def get_product_or_404(db: Session, product_id: int) -> Product:
    product = get_product(db, product_id)
    if not product:
        raise NotFound("Product not found", product_id=product_id)
    return product


def adjust_stock(db: Session, product_id: int, delta: int, sold_delta: int = 0) -> bool:
    """Apply a stock change in a single UPDATE statement.

    Decrements are conditional (enough stock and product still active), so
    two concurrent checkouts can never both take the last unit. Returns
    False when the condition did not match.
    """
    stmt = update(Product).where(Product.id == product_id)
    if delta < 0:
        stmt = stmt.where(Product.stock >= -delta, Product.active.is_(True))
    new_sold = Product.sold + sold_delta
    stmt = stmt.values(
        stock=Product.stock + delta,
        sold=case((new_sold < 0, 0), else_=new_sold),
    )
    result = db.execute(stmt.execution_options(synchronize_session=False))

    # Loaded instances would otherwise keep the pre-update numbers
    loaded = db.identity_map.get(Session.identity_key(Product, product_id))
    if loaded is not None:
        db.expire(loaded, ["stock", "sold"])
    return result.rowcount == 1


@subscribe(OrderConfirmed)
def reserve_stock(db: Session, event: OrderConfirmed) -> None:
    order = event.order
    if order.stock_reserved:
        return
    for item in order.items:
        if not adjust_stock(db, item.product_id, -item.quantity, item.quantity):
            product = get_product(db, item.product_id)
            available = product.stock if product is not None and product.active else 0
            raise InsufficientStock(item.name, item.quantity, available, product_id=item.product_id)
    order.stock_reserved = True
    logger.info("Reserved stock for order %s", order.order_number)


@subscribe(OrderReleased)
def release_stock(db: Session, event: OrderReleased) -> None:
    order = event.order
    # A second release for the same order is a no-op
    if not order.stock_reserved:
        return
    for item in order.items:
        adjust_stock(db, item.product_id, item.quantity, -item.quantity)
    order.stock_reserved = False
    logger.info("Released stock for order %s (%s)", order.order_number, event.reason)
