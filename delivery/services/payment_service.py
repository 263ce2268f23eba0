"""Payment reconciliation between orders and the payment gateway.

Gateway calls are made outside any database transaction and the order is
only written after the gateway answered, so a failed call leaves the order
exactly as it was. Webhooks may arrive late, twice, or before the
synchronous confirm; applying the same gateway state again is a no-op.
"""

from typing import Any, Dict, Optional

from sqlalchemy.exc import IntegrityError

from ..db.session import get_session
from ..models.order import Order
from ..models.webhook_event import ProcessedWebhookEvent
from ..utils.clock import utcnow
from ..utils.pagination import normalize_paging, page_count
from ..utils.dto import to_payment_dto, to_pricing_dto
from ..utils.validators import ensure_max_length, ensure_money
from . import order_state as st
from .auth_service import Actor
from .errors import Conflict, NotAuthorized, NotFound, OrderNotPayable, ValidationError
from .logging import log_event
from .order_repository import OrderRepository
from .pricing_service import from_minor_units, to_minor_units
from .status_service import SYSTEM_ROLE, TransitionDetails, apply_transition, transition_values


SUCCEEDED_EVENT = "payment_intent.succeeded"
FAILED_EVENT = "payment_intent.payment_failed"

# gateway intent status -> local payment status
INTENT_STATUS_MAP = {
    "succeeded": st.PAYMENT_COMPLETED,
    "requires_action": st.PAYMENT_PROCESSING,
    "processing": st.PAYMENT_PROCESSING,
    "payment_failed": st.PAYMENT_FAILED,
}


def _state(order: Order, intent: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    result = {
        "order_id": order.id,
        "order_number": order.order_number,
        "order_status": order.status,
        "payment_status": order.payment_status,
    }
    if intent is not None:
        result["payment_intent"] = {
            "id": intent.get("id"),
            "status": intent.get("status"),
            "amount": intent.get("amount"),
        }
    return result


class PaymentService:

    def __init__(self, gateway, session_factory=get_session, *, currency: str = "USD", clock=utcnow):
        self._gateway = gateway
        self._session_factory = session_factory
        self._currency = currency
        self._clock = clock

    def create_payment_intent(self, order_id: str, requester: Actor, payment_method_id: Optional[str] = None) -> Dict:
        with self._session_factory() as session:
            order = OrderRepository.get(session, order_id)
            if order.customer_id != requester.user_id:
                raise NotAuthorized("Not authorized to pay for this order")
            if order.status != st.PENDING:
                raise OrderNotPayable("Order cannot be paid at this stage", status=order.status)
            if order.payment_status == st.PAYMENT_COMPLETED:
                raise OrderNotPayable("Order has already been paid")
            amount = to_minor_units(order.total)
            loaded_payment_status = order.payment_status
            currency = order.currency or self._currency
            metadata = {"order_id": order.id, "order_number": order.order_number}
            description = f"Order {order.order_number}"

        intent = self._gateway.create_intent(
            amount,
            currency,
            metadata=metadata,
            description=description,
            payment_method=payment_method_id,
        )

        with self._session_factory() as session:
            order = OrderRepository.get(session, order_id)
            OrderRepository.conditional_update(
                session,
                order,
                {"payment_intent_id": intent["id"], "payment_status": st.PAYMENT_PROCESSING},
                expected_status=st.PENDING,
                expected_payment_status=loaded_payment_status,
            )
        log_event("info", "payment.intent_created", order_id=order_id, intent_id=intent["id"], amount=amount)
        return {
            "client_secret": intent.get("client_secret"),
            "intent_id": intent["id"],
            "amount": intent.get("amount", amount),
            "status": intent.get("status"),
        }

    def confirm_payment(self, intent_id: str, requester: Optional[Actor] = None) -> Dict:
        """Pull the intent's state from the gateway and apply it to its order."""
        if not intent_id:
            raise ValidationError("Payment intent ID is required")
        with self._session_factory() as session:
            order = OrderRepository.find_by_intent(session, intent_id)
            if order is None:
                raise NotFound("Order not found for this payment")
            if requester is not None and not requester.is_admin and order.customer_id != requester.user_id:
                raise NotAuthorized("Not authorized to confirm this payment")
            if order.payment_status in st.SETTLED_PAYMENT_STATUSES:
                return _state(order)

        intent = self._gateway.retrieve_intent(intent_id)

        with self._session_factory() as session:
            order = OrderRepository.find_by_intent(session, intent_id)
            if order is None:
                raise NotFound("Order not found for this payment")
            self._apply_intent_status(session, order, intent.get("status"), source="confirm")
            return _state(order, intent)

    def handle_webhook_event(self, raw_payload: bytes, signature: Optional[str]) -> Dict:
        event = self._gateway.construct_event(raw_payload, signature)
        event_id = event.get("id")
        event_type = event.get("type")
        with self._session_factory() as session:
            if event_id and session.get(ProcessedWebhookEvent, event_id) is not None:
                log_event("info", "webhook.duplicate", event_id=event_id, event_type=event_type)
                return {"received": True, "duplicate": True}

            if event_type in (SUCCEEDED_EVENT, FAILED_EVENT):
                intent = (event.get("data") or {}).get("object") or {}
                order = OrderRepository.find_by_intent(session, intent.get("id"))
                if order is None:
                    log_event("warning", "webhook.order_missing", event_id=event_id, intent_id=intent.get("id"))
                else:
                    status = "succeeded" if event_type == SUCCEEDED_EVENT else "payment_failed"
                    self._apply_intent_status(session, order, status, source="webhook")
            else:
                log_event("info", "webhook.ignored", event_id=event_id, event_type=event_type)

            if event_id:
                session.add(ProcessedWebhookEvent(event_id=event_id, event_type=event_type or "", processed_at=self._clock()))
                try:
                    session.flush()
                except IntegrityError:
                    # another delivery of the same event committed first
                    session.rollback()
                    return {"received": True, "duplicate": True}
        return {"received": True}

    def _apply_intent_status(self, session, order: Order, gateway_status: Optional[str], *, source: str) -> Order:
        target = INTENT_STATUS_MAP.get(gateway_status or "")
        if target is None or order.payment_status in st.SETTLED_PAYMENT_STATUSES:
            # unknown states and late events never move a settled payment
            return order
        if target == order.payment_status:
            return order

        loaded_payment_status = order.payment_status
        if target != st.PAYMENT_COMPLETED:
            OrderRepository.conditional_update(
                session,
                order,
                {"payment_status": target},
                expected_payment_status=loaded_payment_status,
            )
            log_event("info", "payment.status_changed", order_id=order.id, payment_status=target, source=source)
            return order

        now = self._clock()
        paid = {"payment_status": st.PAYMENT_COMPLETED, "paid_at": now, "transaction_id": order.payment_intent_id}
        try:
            if order.status == st.PENDING:
                apply_transition(
                    session,
                    order,
                    st.CONFIRMED,
                    None,
                    SYSTEM_ROLE,
                    now,
                    extra_values=paid,
                    expected_payment_status=loaded_payment_status,
                )
            else:
                OrderRepository.conditional_update(
                    session, order, paid, expected_payment_status=loaded_payment_status
                )
        except Conflict:
            # a concurrent confirm or webhook may have settled it already
            session.refresh(order)
            if order.payment_status != st.PAYMENT_COMPLETED:
                raise
            return order
        log_event("info", "payment.confirmed", order_id=order.id, order_status=order.status, source=source)
        return order

    def refund(
        self,
        order_id: str,
        actor: Actor,
        amount=None,
        reason: Optional[str] = None,
    ) -> Dict:
        reason = ensure_max_length(reason, "reason")
        with self._session_factory() as session:
            order = OrderRepository.get(session, order_id)
            owner_id = OrderRepository.restaurant_owner(session, order)
            if not (actor.is_admin or actor.user_id in (order.customer_id, owner_id)):
                raise NotAuthorized("Not authorized to refund this order")
            if order.payment_status == st.PAYMENT_REFUNDED:
                raise Conflict("Order has already been refunded")
            if order.payment_status != st.PAYMENT_COMPLETED:
                raise OrderNotPayable("Order payment is not completed")
            if not order.payment_intent_id:
                raise OrderNotPayable("No payment intent found for this order")
            refund_amount = ensure_money(amount, "amount", str(order.total))
            if refund_amount <= 0 or refund_amount > order.total:
                raise ValidationError("Refund amount must be greater than 0 and at most the order total")
            intent_id = order.payment_intent_id

        refund = self._gateway.refund(
            intent_id,
            to_minor_units(refund_amount),
            metadata={"order_id": order_id, "refund_reason": reason or "Customer requested refund"},
        )
        refunded = from_minor_units(refund.get("amount", to_minor_units(refund_amount)))

        with self._session_factory() as session:
            order = OrderRepository.get(session, order_id)
            now = self._clock()
            values = transition_values(
                order, st.REFUNDED, TransitionDetails(reason=reason or "Payment refunded"), actor.role, now
            )
            values.update({"payment_status": st.PAYMENT_REFUNDED, "refunded_at": now, "refund_amount": refunded})
            # refunds bypass the transition table: delivered and cancelled orders can be refunded too
            OrderRepository.conditional_update(
                session,
                order,
                values,
                expected_status=order.status,
                expected_payment_status=st.PAYMENT_COMPLETED,
            )
        log_event("info", "payment.refunded", order_id=order_id, refund_id=refund.get("id"), amount=refunded)
        return {
            "refund_id": refund.get("id"),
            "amount": float(refunded),
            "status": refund.get("status"),
            "order_status": st.REFUNDED,
        }

    def payment_history(self, actor: Actor, *, page: int = 1, page_size: int = 10) -> Dict:
        p, ps = normalize_paging(page, page_size)
        with self._session_factory() as session:
            q = session.query(Order).filter(
                Order.customer_id == actor.user_id,
                Order.payment_status.in_(list(st.SETTLED_PAYMENT_STATUSES)),
            )
            total = q.count()
            rows = q.order_by(Order.created_at.desc()).offset((p - 1) * ps).limit(ps).all()
            items = [
                {
                    "order_id": r.id,
                    "order_number": r.order_number,
                    "restaurant_id": r.restaurant_id,
                    "pricing": to_pricing_dto(r),
                    "payment": to_payment_dto(r),
                    "created_at": r.created_at.isoformat() if r.created_at else None,
                }
                for r in rows
            ]
        return {"items": items, "page": p, "page_size": ps, "pages": page_count(total, ps), "total": total}
