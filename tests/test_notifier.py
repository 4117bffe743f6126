"""Tests for order notification rendering and delivery."""

from types import SimpleNamespace

import pytest
from fastapi import BackgroundTasks

from models.order import OrderStatus
from utils import notifier as notifier_module
from utils.notifier import EmailNotifier, order_confirmation, order_status_update, queue_notice


@pytest.fixture
def user():
    return SimpleNamespace(email="dana@mobileshop.com", name="Dana")


@pytest.fixture
def order():
    item = SimpleNamespace(name="Pixel 9", effective_price=699.0, quantity=2)
    return SimpleNamespace(
        order_number="ORD2610190007",
        total_price=1509.84,
        currency="USD",
        status=OrderStatus.SHIPPED,
        items=[item],
        tracking_number="1Z999",
        carrier="UPS",
    )


class TestRendering:
    def test_confirmation(self, user, order):
        notice = order_confirmation(user, order)
        assert notice.email == "dana@mobileshop.com"
        assert notice.subject == "Order Confirmation - ORD2610190007"
        assert "Hello Dana," in notice.body
        assert "Pixel 9 - 699.00 x 2" in notice.body
        assert "1509.84 USD" in notice.body

    def test_status_update_includes_tracking(self, user, order):
        notice = order_status_update(user, order)
        assert notice.subject == "Order ORD2610190007 - shipped"
        assert "Tracking number: 1Z999 (UPS)" in notice.body


class TestDelivery:
    def test_without_smtp_only_logs(self, user, order, monkeypatch):
        monkeypatch.setattr(notifier_module.settings, "SMTP_HOST", "")

        def fail(*args, **kwargs):
            raise AssertionError("SMTP must not be used")

        monkeypatch.setattr(notifier_module.smtplib, "SMTP", fail)
        sender = EmailNotifier()
        sender.send_order_confirmation(user, order)
        sender.send_order_status_update(user, order)

    def test_queued_failure_is_swallowed(self, user, order):
        class Broken:
            def send(self, notice):
                raise ConnectionError("down")

        tasks = BackgroundTasks()
        queue_notice(tasks, Broken(), order_status_update(user, order))
        task = tasks.tasks[0]
        task.func(*task.args, **task.kwargs)
