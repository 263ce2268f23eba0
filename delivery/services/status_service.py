"""Order status transitions.

Authorization is checked before legality: an actor who may not request a
target status is refused with ``NotAuthorized`` even when the transition
table would allow it. The status, its tracking stamp and any derived
timestamps are written in one conditional statement.
"""

import copy
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from ..db.session import get_session
from ..models.order import Order
from ..models.user import User
from ..utils.clock import from_iso, to_iso, utcnow
from ..utils.dto import to_order_dto
from ..utils.validators import ensure_max_length, ensure_positive_int
from . import order_state as st
from .auth_service import Actor
from .errors import IllegalTransition, NotAuthorized, NotFound, ValidationError
from .logging import log_event
from .order_repository import OrderRepository


DEFAULT_CONFIRM_ESTIMATE = 30
DEFAULT_PREPARATION_ESTIMATE = 20
DEFAULT_ARRIVAL_MINUTES = 20

SYSTEM_ROLE = "system"

_ACTOR_LABELS = {
    "customer": "customer",
    "restaurant_owner": "restaurant",
    "delivery_driver": "driver",
    "admin": "admin",
    SYSTEM_ROLE: "system",
}


def actor_label(role: str) -> str:
    return _ACTOR_LABELS.get(role, role)


@dataclass
class TransitionDetails:
    estimated_time: Optional[int] = None  # minutes
    estimated_arrival: Optional[datetime] = None
    delivered_by: Optional[str] = None
    signature: Optional[str] = None
    photo: Optional[str] = None
    reason: Optional[str] = None
    driver_location: Optional[Dict[str, float]] = None

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "TransitionDetails":
        payload = payload or {}
        estimated_time = payload.get("estimated_time", payload.get("estimatedTime"))
        arrival = payload.get("estimated_arrival", payload.get("estimatedArrival"))
        try:
            arrival = from_iso(arrival) if isinstance(arrival, str) else arrival
        except ValueError:
            raise ValidationError("estimated_arrival must be an ISO-8601 timestamp")
        return cls(
            estimated_time=ensure_positive_int(estimated_time, "estimated_time") if estimated_time is not None else None,
            estimated_arrival=arrival,
            delivered_by=payload.get("delivered_by", payload.get("deliveredBy")),
            signature=payload.get("signature"),
            photo=payload.get("photo"),
            reason=ensure_max_length(payload.get("reason"), "reason"),
            driver_location=payload.get("driver_location"),
        )


def authorize_transition(order: Order, owner_id: Optional[str], target: str, actor: Actor) -> None:
    if target not in st.REQUESTABLE_TARGETS:
        raise ValidationError(f"Invalid status: {target}")
    if actor.is_admin:
        return
    if target in st.RESTAURANT_TARGETS:
        allowed = owner_id is not None and actor.user_id == owner_id
    elif target in st.DRIVER_TARGETS:
        allowed = order.delivery_driver_id is not None and actor.user_id == order.delivery_driver_id
    else:
        allowed = actor.user_id in (order.customer_id, owner_id)
    if not allowed:
        raise NotAuthorized("Not authorized to update this order status", target=target)


def transition_values(
    order: Order,
    target: str,
    details: Optional[TransitionDetails],
    actor_role: str,
    now: datetime,
) -> Dict[str, Any]:
    """Column values that move ``order`` into ``target``, tracking included."""
    details = details or TransitionDetails()
    tracking = copy.deepcopy(order.tracking or {})
    stamp = {"timestamp": to_iso(now)}
    values: Dict[str, Any] = {"status": target}

    if target == st.CONFIRMED:
        estimate = details.estimated_time or DEFAULT_CONFIRM_ESTIMATE
        tracking["order_confirmed"] = dict(stamp, estimated_time=estimate)
        values["estimated_delivery_time"] = now + timedelta(minutes=estimate)
    elif target == st.PREPARING:
        tracking["preparation_started"] = dict(
            stamp, estimated_time=details.estimated_time or DEFAULT_PREPARATION_ESTIMATE
        )
    elif target == st.READY_FOR_PICKUP:
        tracking["ready_for_pickup"] = stamp
    elif target == st.OUT_FOR_DELIVERY:
        arrival = details.estimated_arrival or now + timedelta(minutes=DEFAULT_ARRIVAL_MINUTES)
        tracking["picked_up"] = dict(stamp, driver_location=details.driver_location)
        tracking["out_for_delivery"] = dict(stamp, estimated_arrival=to_iso(arrival))
    elif target == st.DELIVERED:
        tracking["delivered"] = dict(
            stamp,
            delivered_by=details.delivered_by,
            signature=details.signature,
            photo=details.photo,
        )
        values["actual_delivery_time"] = now
    elif target == st.CANCELLED:
        tracking["cancelled"] = dict(stamp, reason=details.reason, cancelled_by=actor_label(actor_role))
    elif target == st.REFUNDED:
        tracking["refunded"] = dict(stamp, reason=details.reason, refunded_by=actor_label(actor_role))

    values["tracking"] = tracking
    return values


def apply_transition(
    session,
    order: Order,
    target: str,
    details: Optional[TransitionDetails],
    actor_role: str,
    now: datetime,
    *,
    extra_values: Optional[Dict[str, Any]] = None,
    expected_payment_status=None,
) -> Order:
    """Check the transition table and commit the change in one statement."""
    source = order.status
    if not st.is_legal_transition(source, target):
        raise IllegalTransition(source, target)
    values = transition_values(order, target, details, actor_role, now)
    values.update(extra_values or {})
    OrderRepository.conditional_update(
        session,
        order,
        values,
        expected_status=source,
        expected_payment_status=expected_payment_status,
    )
    log_event("info", "order.status_changed", order_id=order.id, source=source, target=target, actor_role=actor_role)
    return order


class OrderStatusService:
    """Status changes requested by restaurant owners, drivers, customers and admins."""

    def __init__(self, session_factory=get_session, clock=utcnow):
        self._session_factory = session_factory
        self._clock = clock

    def update_status(
        self,
        order_id: str,
        target: str,
        actor: Actor,
        details: Optional[TransitionDetails] = None,
    ) -> Dict:
        with self._session_factory() as session:
            order = OrderRepository.get(session, order_id)
            owner_id = OrderRepository.restaurant_owner(session, order)
            authorize_transition(order, owner_id, target, actor)
            apply_transition(session, order, target, details, actor.role, self._clock())
            return to_order_dto(order, now=self._clock())

    def cancel_order(self, order_id: str, actor: Actor, reason: Optional[str] = None) -> Dict:
        """Customer-facing cancel: only while the restaurant has not started cooking."""
        details = TransitionDetails(reason=ensure_max_length(reason, "reason") or "No reason provided")
        with self._session_factory() as session:
            order = OrderRepository.get(session, order_id)
            owner_id = OrderRepository.restaurant_owner(session, order)
            authorize_transition(order, owner_id, st.CANCELLED, actor)
            if not st.can_be_cancelled(order.status):
                raise IllegalTransition(order.status, st.CANCELLED, "Order cannot be cancelled at this stage")
            apply_transition(session, order, st.CANCELLED, details, actor.role, self._clock())
            return to_order_dto(order, now=self._clock())

    def assign_driver(self, order_id: str, driver_id: str, actor: Actor) -> Dict:
        if not driver_id:
            raise ValidationError("driver_id required")
        with self._session_factory() as session:
            order = OrderRepository.get(session, order_id)
            owner_id = OrderRepository.restaurant_owner(session, order)
            if not actor.is_admin and not (actor.role == "restaurant_owner" and actor.user_id == owner_id):
                raise NotAuthorized("Not authorized to assign driver for this order")
            if st.is_terminal(order.status):
                raise ValidationError(f"Cannot assign a driver to a {order.status} order")
            driver = session.get(User, driver_id)
            if driver is None:
                raise NotFound("Delivery driver not found")
            if driver.role != "delivery_driver" or not driver.is_active:
                raise ValidationError("Invalid or inactive delivery driver")
            contact_info = dict(order.contact_info or {})
            contact_info["driver_phone"] = driver.phone
            contact_info["driver_name"] = driver.name
            OrderRepository.conditional_update(
                session,
                order,
                {"delivery_driver_id": driver.id, "contact_info": contact_info},
                expected_status=order.status,
            )
            log_event("info", "order.driver_assigned", order_id=order.id, driver_id=driver.id)
            return to_order_dto(order, now=self._clock())
