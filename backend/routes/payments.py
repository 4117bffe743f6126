# backend/routes/payments.py
import json
import logging
from fastapi import APIRouter, BackgroundTasks, Request, Depends, HTTPException, Header
from sqlalchemy.orm import Session

from database import get_db
from models.order import Order
from services.errors import ShopError
from services.order_status import mark_paid, cancel_unpaid
from utils.audit import write_log, client_ip
from utils.notifier import EmailNotifier, get_notifier, queue_notice, order_status_update
from utils.payment_client import PaymentClient, get_payment_client

router = APIRouter(prefix="/payments", tags=["Payments"])
logger = logging.getLogger(__name__)

SUCCEEDED = "payment_intent.succeeded"
# Intent outcomes that release a pending order's stock
RELEASING = {
    "payment_intent.payment_failed": "Payment failed",
    "payment_intent.canceled": "Payment canceled",
}


def _intent_object(event) -> dict:
    data = event.get("data") if isinstance(event, dict) else None
    intent = data.get("object") if isinstance(data, dict) else None
    return intent if isinstance(intent, dict) else {}


@router.post("/webhook")
async def payment_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    gateway: PaymentClient = Depends(get_payment_client),
    notifier: EmailNotifier = Depends(get_notifier),
    signature: str = Header(None, alias="Stripe-Signature"),
):
    if signature is None:
        raise HTTPException(status_code=400, detail="Missing Stripe-Signature header")

    body = await request.body()
    if not gateway.verify_signature(signature, body):
        logger.warning("Payment webhook signature verification failed")
        raise HTTPException(status_code=403, detail="Signature verification failed")

    try:
        event = json.loads(body)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid JSON payload")
    if not isinstance(event, dict):
        raise HTTPException(status_code=400, detail="Invalid event payload")

    event_type = event.get("type")
    intent = _intent_object(event)
    logger.info("Payment webhook received: %s for %s", event_type, intent.get("id"))

    if event_type != SUCCEEDED and event_type not in RELEASING:
        return {"status": "ignored"}

    intent_id = intent.get("id")
    if not intent_id:
        return {"status": "error", "message": "Missing payment intent id"}

    order = db.query(Order).filter(Order.payment_intent_id == intent_id).first()
    if not order:
        return {"status": "error", "message": "Order not found"}

    if event_type in RELEASING:
        reason = RELEASING[event_type]
        error = intent.get("last_payment_error")
        if isinstance(error, dict) and error.get("message"):
            reason = f"{reason}: {error['message']}"
        if not cancel_unpaid(db, order, reason):
            return {"status": "ok"}
        logger.info("Order %s cancelled after %s", order.order_number, event_type)
    else:
        # Gateways redeliver events; an already paid order is acknowledged as is
        if order.is_paid:
            return {"status": "ok"}
        try:
            order = mark_paid(db, order, {
                "id": intent_id,
                "status": intent.get("status", "succeeded"),
                "update_time": str(event.get("created", "")),
                "email_address": intent.get("receipt_email"),
            })
        except ShopError as e:
            db.rollback()
            logger.warning("Webhook could not mark order %s paid: %s", order.order_number, e.message)
            return {"status": "error", "message": e.message}

    if order.user is not None:
        queue_notice(background_tasks, notifier, order_status_update(order.user, order))

    write_log(
        db, user_id=order.user_id, action="PAYMENT_WEBHOOK", resource="orders", resource_id=order.id,
        ip=client_ip(request), meta={"intent_id": intent_id, "event": event_type},
    )
    return {"status": "ok"}
