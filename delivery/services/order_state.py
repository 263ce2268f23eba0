"""Order status vocabulary, the transition table and read-side derivations.

Nothing in here touches the database; the derivations are computed from a
persisted order every time it is read and are never stored.
"""

import math
from datetime import datetime
from typing import Dict, FrozenSet, Optional

from ..utils.clock import from_iso, utcnow


PENDING = "pending"
CONFIRMED = "confirmed"
PREPARING = "preparing"
READY_FOR_PICKUP = "ready_for_pickup"
OUT_FOR_DELIVERY = "out_for_delivery"
DELIVERED = "delivered"
CANCELLED = "cancelled"
REFUNDED = "refunded"

ORDER_STATUSES = (
    PENDING,
    CONFIRMED,
    PREPARING,
    READY_FOR_PICKUP,
    OUT_FOR_DELIVERY,
    DELIVERED,
    CANCELLED,
    REFUNDED,
)

TERMINAL_STATUSES: FrozenSet[str] = frozenset({DELIVERED, CANCELLED, REFUNDED})

TRANSITIONS: Dict[str, FrozenSet[str]] = {
    PENDING: frozenset({CONFIRMED, CANCELLED}),
    CONFIRMED: frozenset({PREPARING, CANCELLED}),
    PREPARING: frozenset({READY_FOR_PICKUP, CANCELLED}),
    READY_FOR_PICKUP: frozenset({OUT_FOR_DELIVERY, DELIVERED, CANCELLED}),
    OUT_FOR_DELIVERY: frozenset({DELIVERED, CANCELLED}),
    DELIVERED: frozenset(),
    CANCELLED: frozenset(),
    REFUNDED: frozenset(),
}

# who may request a target status through the generic status call
RESTAURANT_TARGETS = frozenset({CONFIRMED, PREPARING, READY_FOR_PICKUP})
DRIVER_TARGETS = frozenset({OUT_FOR_DELIVERY, DELIVERED})
REQUESTABLE_TARGETS = RESTAURANT_TARGETS | DRIVER_TARGETS | {CANCELLED}

CANCELLABLE_STATUSES = frozenset({PENDING, CONFIRMED})

# status -> tracking key stamped when the status is reached
TRACKING_KEYS = {
    PENDING: "order_placed",
    CONFIRMED: "order_confirmed",
    PREPARING: "preparation_started",
    READY_FOR_PICKUP: "ready_for_pickup",
    OUT_FOR_DELIVERY: "out_for_delivery",
    DELIVERED: "delivered",
    CANCELLED: "cancelled",
    REFUNDED: "refunded",
}

ORDER_TYPES = ("delivery", "pickup")

PAYMENT_METHODS = ("card", "cash", "paypal", "wallet")
PAYMENT_PENDING = "pending"
PAYMENT_PROCESSING = "processing"
PAYMENT_COMPLETED = "completed"
PAYMENT_FAILED = "failed"
PAYMENT_REFUNDED = "refunded"
SETTLED_PAYMENT_STATUSES = frozenset({PAYMENT_COMPLETED, PAYMENT_REFUNDED})

ROLES = ("customer", "restaurant_owner", "delivery_driver", "admin")

STATUS_MESSAGES = {
    PENDING: "Your order has been placed and is waiting for restaurant confirmation.",
    CONFIRMED: "Your order has been confirmed by the restaurant.",
    PREPARING: "The restaurant is preparing your delicious food.",
    READY_FOR_PICKUP: "Your order is ready for pickup/delivery.",
    OUT_FOR_DELIVERY: "Your order is on its way to you.",
    DELIVERED: "Your order has been delivered successfully.",
    CANCELLED: "Your order has been cancelled.",
    REFUNDED: "Your order has been refunded.",
}


def is_legal_transition(source: str, target: str) -> bool:
    return target in TRANSITIONS.get(source, frozenset())


def is_terminal(status: str) -> bool:
    return status in TERMINAL_STATUSES


def status_message(status: str) -> str:
    return STATUS_MESSAGES.get(status, "Unknown status")


def can_be_cancelled(status: str) -> bool:
    return status in CANCELLABLE_STATUSES


def can_be_modified(status: str) -> bool:
    return status == PENDING


def estimated_time_remaining(order, now: Optional[datetime] = None) -> Optional[int]:
    """Whole minutes until the estimated delivery time, never negative."""
    if not order.estimated_delivery_time or order.status == DELIVERED:
        return None
    remaining = (order.estimated_delivery_time - (now or utcnow())).total_seconds()
    return math.ceil(remaining / 60) if remaining > 0 else 0


def order_duration(order) -> Optional[float]:
    """Seconds between placement and delivery."""
    tracking = order.tracking or {}
    delivered = from_iso((tracking.get("delivered") or {}).get("timestamp"))
    placed = from_iso((tracking.get("order_placed") or {}).get("timestamp"))
    if not delivered or not placed:
        return None
    return (delivered - placed).total_seconds()
