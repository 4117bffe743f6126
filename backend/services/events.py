# backend/services/events.py
"""In-process domain events for the order lifecycle.

Handlers run synchronously inside the caller's transaction, so anything
they write commits or rolls back together with the order change that
raised the event.
"""
from collections import defaultdict
from dataclasses import dataclass
from typing import Callable, Dict, List, Type

from sqlalchemy.orm import Session

from models.order import Order


@dataclass(frozen=True)
class OrderConfirmed:
    """Checkout accepted the order; its quantities leave product stock."""
    order: Order


@dataclass(frozen=True)
class OrderReleased:
    """The order entered cancelled or refunded; its quantities return to stock."""
    order: Order
    reason: str


_handlers: Dict[Type, List[Callable]] = defaultdict(list)


def subscribe(event_type: Type):
    def _register(fn: Callable[[Session, object], None]):
        _handlers[event_type].append(fn)
        return fn
    return _register


def publish(db: Session, event) -> None:
    for handler in _handlers[type(event)]:
        handler(db, event)
