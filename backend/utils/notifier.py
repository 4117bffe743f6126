# backend/utils/notifier.py
import logging
import smtplib
from dataclasses import dataclass
from email.message import EmailMessage

from fastapi import BackgroundTasks

from config import settings

logger = logging.getLogger(__name__)


# Fully rendered message; built while the ORM session is still open
@dataclass(frozen=True)
class OrderNotice:
    email: str
    subject: str
    body: str


def _greeting(user) -> str:
    return f"Hello {user.name or user.email},"


def order_confirmation(user, order) -> OrderNotice:
    lines = [
        _greeting(user),
        "",
        "Thank you for your order! Your order has been received and is being processed.",
        "",
        f"Order Number: {order.order_number}",
        f"Total Amount: {order.total_price:.2f} {order.currency}",
        f"Status: {order.status.value}",
        "",
        "Items Ordered:",
    ]
    for item in order.items:
        lines.append(f"  {item.name} - {item.effective_price:.2f} x {item.quantity}")
    lines += ["", "Best regards,", "The Mobile Shop Team"]
    return OrderNotice(
        email=user.email,
        subject=f"Order Confirmation - {order.order_number}",
        body="\n".join(lines),
    )


def order_status_update(user, order) -> OrderNotice:
    lines = [
        _greeting(user),
        "",
        f"Your order {order.order_number} is now {order.status.value}.",
    ]
    if order.tracking_number:
        lines.append(f"Tracking number: {order.tracking_number} ({order.carrier or 'carrier n/a'})")
    lines += ["", "Best regards,", "The Mobile Shop Team"]
    return OrderNotice(
        email=user.email,
        subject=f"Order {order.order_number} - {order.status.value}",
        body="\n".join(lines),
    )


class EmailNotifier:
    """Sends order e-mails over SMTP, or only logs them when SMTP is not configured."""

    def send(self, notice: OrderNotice) -> None:
        if not settings.SMTP_HOST:
            logger.info("Mail to %s skipped (no SMTP_HOST): %s", notice.email, notice.subject)
            return

        msg = EmailMessage()
        msg["From"] = f"Mobile Shop <{settings.EMAIL_FROM}>"
        msg["To"] = notice.email
        msg["Subject"] = notice.subject
        msg.set_content(notice.body)

        with smtplib.SMTP(settings.SMTP_HOST, settings.SMTP_PORT, timeout=10) as smtp:
            smtp.starttls()
            if settings.SMTP_USER:
                smtp.login(settings.SMTP_USER, settings.SMTP_PASSWORD)
            smtp.send_message(msg)

    def send_order_confirmation(self, user, order) -> None:
        self.send(order_confirmation(user, order))

    def send_order_status_update(self, user, order) -> None:
        self.send(order_status_update(user, order))


def _deliver(notifier, notice: OrderNotice) -> None:
    try:
        notifier.send(notice)
    except Exception:
        # Mail problems never fail the order operation that triggered them
        logger.exception("Failed to send '%s' to %s", notice.subject, notice.email)


def queue_notice(background_tasks: BackgroundTasks, notifier, notice: OrderNotice) -> None:
    background_tasks.add_task(_deliver, notifier, notice)


notifier = EmailNotifier()

def get_notifier() -> EmailNotifier:
    return notifier
