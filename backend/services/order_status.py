# backend/services/order_status.py
import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.orm import Session

from models.order import Order, OrderStatus, PaymentMethod
from models.users import User
import services.catalog  # noqa: F401  registers the stock handlers
from services.errors import (
    InvalidStatusTransition, NotAuthorized, AlreadyPaid, OrderNotPaid,
)
from services.events import publish, OrderReleased

logger = logging.getLogger(__name__)

S = OrderStatus

# source status -> statuses it may move to
TRANSITIONS = {
    S.PENDING: {S.CONFIRMED, S.CANCELLED},
    S.CONFIRMED: {S.PROCESSING, S.CANCELLED},
    S.PROCESSING: {S.SHIPPED, S.CANCELLED},
    S.SHIPPED: {S.DELIVERED},
    S.DELIVERED: {S.REFUNDED},
    S.CANCELLED: set(),
    S.REFUNDED: set(),
}

# Self-service cancellation stops earlier than admin cancellation
USER_CANCELLABLE = {S.PENDING, S.CONFIRMED}

FULFILMENT_PATH = [S.PENDING, S.CONFIRMED, S.PROCESSING, S.SHIPPED, S.DELIVERED]


def _now() -> datetime:
    return datetime.now(timezone.utc)


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    return target in TRANSITIONS.get(current, set())


def transition(db: Session, order: Order, target: OrderStatus, *,
               reason: Optional[str] = None, now: Optional[datetime] = None) -> None:
    """Move ``order`` to ``target`` and apply that state's side effects.

    Leaving the transition table is an error, including re-entering the
    current state, which keeps stock restoration to a single run.
    """
    current = order.status
    if not can_transition(current, target):
        raise InvalidStatusTransition(current.value, target.value)

    now = now or _now()
    order.status = target

    if target == S.DELIVERED:
        order.is_delivered = True
        order.delivered_at = now
    elif target == S.CANCELLED:
        if reason:
            order.cancellation_reason = reason
        publish(db, OrderReleased(order, target.value))
    elif target == S.REFUNDED:
        order.refunded_at = now
        order.refund_amount = order.total_price
        if reason:
            order.refund_reason = reason
        publish(db, OrderReleased(order, target.value))

    logger.info("Order %s: %s -> %s", order.order_number, current.value, target.value)


def update_order_status(db: Session, order: Order, *, status: Optional[OrderStatus] = None,
                        tracking_number: Optional[str] = None, carrier: Optional[str] = None,
                        admin_notes: Optional[str] = None, reason: Optional[str] = None) -> Order:
    """Admin status change plus shipment metadata; commits."""
    if status is not None:
        transition(db, order, status, reason=reason)
    if tracking_number:
        order.tracking_number = tracking_number
    if carrier:
        order.carrier = carrier
    if admin_notes:
        order.admin_notes = admin_notes
    db.commit()
    db.refresh(order)
    return order


def ensure_can_view(order: Order, user: User) -> None:
    if order.user_id != user.id and not user.is_admin:
        raise NotAuthorized("Not authorized to access this order")


def cancel_order(db: Session, order: Order, user: User, reason: Optional[str] = None) -> Order:
    """Self-service cancellation by the order's owner (or an admin); commits."""
    if order.user_id != user.id and not user.is_admin:
        raise NotAuthorized("Not authorized to cancel this order")
    if order.status not in USER_CANCELLABLE:
        raise InvalidStatusTransition(order.status.value, S.CANCELLED.value)
    transition(db, order, S.CANCELLED, reason=reason)
    db.commit()
    db.refresh(order)
    return order


def mark_paid(db: Session, order: Order, payment_result: dict, now: Optional[datetime] = None) -> Order:
    """Record a payment and advance the status in the same commit.

    Cash on delivery settles to ``confirmed``, everything else to
    ``processing``. The status walks the legal hops to get there and is
    never moved backwards when fulfilment is already further along.
    """
    if order.is_paid:
        raise AlreadyPaid("Order is already paid")

    target = S.CONFIRMED if order.payment_method == PaymentMethod.COD else S.PROCESSING
    if order.status not in FULFILMENT_PATH:
        raise InvalidStatusTransition(order.status.value, target.value)

    now = now or _now()
    current_pos = FULFILMENT_PATH.index(order.status)
    target_pos = FULFILMENT_PATH.index(target)
    for step in FULFILMENT_PATH[current_pos + 1:target_pos + 1]:
        transition(db, order, step, now=now)

    order.is_paid = True
    order.paid_at = now
    order.payment_result = {**(order.payment_result or {}), **payment_result}
    db.commit()
    db.refresh(order)
    return order


def mark_delivered(db: Session, order: Order, now: Optional[datetime] = None) -> Order:
    if not order.is_paid:
        raise OrderNotPaid("Order is not paid")
    transition(db, order, S.DELIVERED, now=now)
    db.commit()
    db.refresh(order)
    return order


def cancel_unpaid(db: Session, order: Order, reason: str) -> bool:
    """Cancel a pending order whose payment was declined or abandoned; commits.

    Returns False and leaves the order alone once it is paid or has left
    ``pending``.
    """
    if order.is_paid or order.status != S.PENDING:
        return False
    transition(db, order, S.CANCELLED, reason=reason)
    db.commit()
    db.refresh(order)
    return True
