# backend/routes/orders.py
import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request
from sqlalchemy.orm import Session, selectinload

from database import get_db
from utils.tokenJWT import get_current_user, require_admin
from utils.audit import write_log, client_ip
from utils.notifier import EmailNotifier, get_notifier, queue_notice, order_confirmation, order_status_update
from utils.payment_client import PaymentClient, get_payment_client
from models.users import User
from models.order import Order, OrderStatus
from services.coupons import CouponEvaluator, get_coupon_evaluator
from services.errors import NotFound, NotAuthorized
from services.orders import create_order
from services import order_status
from schemas.order import (
    OrderResponse, OrdersPage, OrderStatusPatch, OrderCreatePayload,
    OrderCancelPayload, PaymentResultPayload,
)

router = APIRouter(prefix="/orders", tags=["Orders"])
logger = logging.getLogger(__name__)


def _get_order(db: Session, order_id: int) -> Order:
    order = (
        db.query(Order)
        .options(selectinload(Order.items), selectinload(Order.user))
        .filter(Order.id == order_id)
        .first()
    )
    if not order:
        raise NotFound("Order not found", order_id=order_id)
    return order


def _page(query, page: int, page_size: int) -> dict:
    total = query.count()
    rows = (
        query.order_by(Order.created_at.desc(), Order.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
        .all()
    )
    return {
        "items": [OrderResponse.model_validate(o) for o in rows],
        "total": total,
        "page": page,
        "page_size": page_size,
    }


def _notify_status(background_tasks: BackgroundTasks, notifier: EmailNotifier, order: Order):
    if order.user is not None:
        queue_notice(background_tasks, notifier, order_status_update(order.user, order))


# Checkout: turn the current cart into an order
@router.post("", response_model=OrderResponse, status_code=201)
async def place_order(
    payload: OrderCreatePayload,
    request: Request,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    gateway: PaymentClient = Depends(get_payment_client),
    evaluator: CouponEvaluator = Depends(get_coupon_evaluator),
    notifier: EmailNotifier = Depends(get_notifier),
):
    order = await create_order(
        db,
        current_user,
        shipping_address=payload.shipping_address.model_dump(),
        billing_address=payload.billing_address.model_dump() if payload.billing_address else None,
        contact_info=payload.contact_info.model_dump(exclude_none=True) if payload.contact_info else None,
        payment_method=payload.payment_method,
        notes=payload.notes,
        gateway=gateway,
        evaluator=evaluator,
    )
    out = OrderResponse.model_validate(order)
    queue_notice(background_tasks, notifier, order_confirmation(current_user, order))

    write_log(
        db, user_id=current_user.id, action="ORDER_CREATE", resource="orders", resource_id=out.id,
        ip=client_ip(request),
        meta={"order_number": out.order_number, "total": out.total_price, "payment_method": out.payment_method.value},
    )
    return out


# List the current user's orders
@router.get("", response_model=OrdersPage)
def list_my_orders(
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=100),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    q = db.query(Order).options(selectinload(Order.items)).filter(Order.user_id == current_user.id)
    return _page(q, page, page_size)


# List every order (admin only); must stay above /{order_id}
@router.get("/all", response_model=OrdersPage)
def list_all_orders(
    status: Optional[OrderStatus] = None,
    user_id: Optional[int] = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin)
):
    q = db.query(Order).options(selectinload(Order.items))
    if status is not None:
        q = q.filter(Order.status == status)
    if user_id is not None:
        q = q.filter(Order.user_id == user_id)
    return _page(q, page, page_size)


# Get details of a specific order
@router.get("/{order_id}", response_model=OrderResponse)
def get_order_detail(
    order_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    order = _get_order(db, order_id)
    order_status.ensure_can_view(order, current_user)
    return order


# Record a payment confirmation
@router.put("/{order_id}/pay", response_model=OrderResponse)
def pay_order(
    order_id: int,
    payload: PaymentResultPayload,
    request: Request,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    notifier: EmailNotifier = Depends(get_notifier),
):
    order = _get_order(db, order_id)
    if order.user_id != current_user.id and not current_user.is_admin:
        raise NotAuthorized("Not authorized to pay for this order")

    order = order_status.mark_paid(db, order, payload.model_dump(exclude_none=True))
    out = OrderResponse.model_validate(order)
    _notify_status(background_tasks, notifier, order)

    write_log(db, user_id=current_user.id, action="ORDER_PAY", resource="orders", resource_id=out.id,
              ip=client_ip(request), meta={"order_number": out.order_number, "status": out.status.value})
    return out


# Self-service cancellation
@router.put("/{order_id}/cancel", response_model=OrderResponse)
def cancel_order(
    order_id: int,
    request: Request,
    background_tasks: BackgroundTasks,
    payload: Optional[OrderCancelPayload] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    notifier: EmailNotifier = Depends(get_notifier),
):
    order = _get_order(db, order_id)
    reason = payload.reason if payload else None
    order = order_status.cancel_order(db, order, current_user, reason=reason)
    out = OrderResponse.model_validate(order)
    _notify_status(background_tasks, notifier, order)

    write_log(db, user_id=current_user.id, action="ORDER_CANCEL", resource="orders", resource_id=out.id,
              ip=client_ip(request), meta={"order_number": out.order_number, "reason": reason})
    return out


# Admin status change with shipment metadata
@router.put("/{order_id}/status", response_model=OrderResponse)
def update_order_status(
    order_id: int,
    payload: OrderStatusPatch,
    request: Request,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin),
    notifier: EmailNotifier = Depends(get_notifier),
):
    order = _get_order(db, order_id)
    old_status = order.status.value
    order = order_status.update_order_status(
        db, order,
        status=payload.status,
        tracking_number=payload.tracking_number,
        carrier=payload.carrier,
        admin_notes=payload.admin_notes,
        reason=payload.reason,
    )
    out = OrderResponse.model_validate(order)
    if payload.status is not None:
        _notify_status(background_tasks, notifier, order)

    write_log(db, user_id=current_user.id, action="ORDER_STATUS_CHANGE", resource="orders", resource_id=out.id,
              ip=client_ip(request), meta={"order_number": out.order_number, "old": old_status, "new": out.status.value})
    return out


# Mark a paid order as delivered (admin only)
@router.put("/{order_id}/deliver", response_model=OrderResponse)
def deliver_order(
    order_id: int,
    request: Request,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin),
    notifier: EmailNotifier = Depends(get_notifier),
):
    order = _get_order(db, order_id)
    order = order_status.mark_delivered(db, order)
    out = OrderResponse.model_validate(order)
    _notify_status(background_tasks, notifier, order)

    write_log(db, user_id=current_user.id, action="ORDER_DELIVER", resource="orders", resource_id=out.id,
              ip=client_ip(request), meta={"order_number": out.order_number})
    return out
