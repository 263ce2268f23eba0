from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union
from uuid import uuid4

from sqlalchemy.exc import IntegrityError

from ..db.session import get_session
from ..models.order import Order
from ..models.restaurant import Restaurant
from ..models.user import User
from ..utils.clock import from_iso, to_iso, utcnow
from ..utils.dto import to_order_dto, to_tracking_dto
from ..utils.pagination import normalize_paging, page_count
from ..utils.validators import ensure_max_length
from . import order_state as st
from .auth_service import Actor
from .catalog_service import CatalogService
from .errors import Conflict, EmptyOrder, NotAuthorized, NotFound, ValidationError
from .logging import log_event
from .order_repository import OrderRepository
from .pricing_service import SERVICE_FEE_RATE, TAX_RATE, LineRequest, compute_pricing


ORDER_NUMBER_ATTEMPTS = 3


def _parse_lines(lines: Sequence[Union[LineRequest, Dict[str, Any]]]) -> List[LineRequest]:
    if not lines:
        raise EmptyOrder("At least one item is required")
    return [line if isinstance(line, LineRequest) else LineRequest.from_payload(line) for line in lines]


def _validate_address(order_type: str, delivery_address: Optional[Dict]) -> Optional[Dict]:
    if order_type not in st.ORDER_TYPES:
        raise ValidationError("Order type must be delivery or pickup")
    if order_type == "pickup":
        return None
    if not isinstance(delivery_address, dict) or not (delivery_address.get("street") or "").strip():
        raise ValidationError("Delivery orders require a delivery address")
    return delivery_address


def _validate_payment_method(method: Optional[str]) -> str:
    if method not in st.PAYMENT_METHODS:
        raise ValidationError("Invalid payment method")
    return method


def can_view(order: Order, owner_id: Optional[str], actor: Actor) -> bool:
    return (
        actor.is_admin
        or actor.user_id == order.customer_id
        or (order.delivery_driver_id is not None and actor.user_id == order.delivery_driver_id)
        or (owner_id is not None and actor.user_id == owner_id)
    )


class OrderService:
    """Order creation, repeat orders and order reads backed by DB."""

    def __init__(
        self,
        session_factory=get_session,
        catalog: Optional[CatalogService] = None,
        *,
        currency: str = "USD",
        tax_rate: Decimal = TAX_RATE,
        service_fee_rate: Decimal = SERVICE_FEE_RATE,
        clock=utcnow,
    ):
        self._session_factory = session_factory
        self._catalog = catalog or CatalogService(session_factory)
        self._currency = currency
        self._tax_rate = tax_rate
        self._service_fee_rate = service_fee_rate
        self._clock = clock

    def create_order(
        self,
        *,
        customer_id: str,
        restaurant_id: str,
        lines: Sequence[Union[LineRequest, Dict[str, Any]]],
        order_type: str = "delivery",
        payment_method: str,
        delivery_address: Optional[Dict] = None,
        tip=0,
        scheduled_delivery_time: Optional[datetime] = None,
        customer_notes: Optional[str] = None,
    ) -> Dict:
        """Price the requested lines against the current catalog and persist a pending order."""
        line_requests = _parse_lines(lines)
        address = _validate_address(order_type, delivery_address)
        method = _validate_payment_method(payment_method)
        notes = ensure_max_length(customer_notes, "customer_notes")
        if isinstance(scheduled_delivery_time, str):
            try:
                scheduled_delivery_time = from_iso(scheduled_delivery_time)
            except ValueError:
                raise ValidationError("scheduled_delivery_time must be an ISO-8601 timestamp")

        restaurant = self._catalog.get_restaurant(restaurant_id)
        if not restaurant.is_active:
            raise ValidationError("Restaurant is not accepting orders", restaurant_id=restaurant_id)
        catalog_items = self._catalog.get_menu_items(restaurant_id, [r.menu_item_id for r in line_requests])
        missing = [r.menu_item_id for r in line_requests if r.menu_item_id not in catalog_items]
        if missing:
            raise NotFound(f"Menu item {missing[0]} not found", menu_item_id=missing[0])

        pricing = compute_pricing(
            [(catalog_items[r.menu_item_id], r) for r in line_requests],
            restaurant.delivery_fee,
            order_type,
            tip,
            tax_rate=self._tax_rate,
            service_fee_rate=self._service_fee_rate,
        )

        def build(session, now):
            customer = session.get(User, customer_id)
            if customer is None:
                raise NotFound("Customer not found")
            return Order(
                id=str(uuid4()),
                customer_id=customer_id,
                restaurant_id=restaurant_id,
                items=[line.to_dict() for line in pricing.lines],
                order_type=order_type,
                status=st.PENDING,
                delivery_address=address,
                scheduled_delivery_time=scheduled_delivery_time,
                estimated_delivery_time=scheduled_delivery_time
                or now + timedelta(minutes=restaurant.estimated_delivery_time),
                subtotal=pricing.subtotal,
                tax=pricing.tax,
                delivery_fee=pricing.delivery_fee,
                service_fee=pricing.service_fee,
                discount=pricing.discount,
                tip=pricing.tip,
                total=pricing.total,
                currency=self._currency,
                payment_method=method,
                payment_status=st.PAYMENT_PENDING,
                tracking={"order_placed": {"timestamp": to_iso(now)}},
                contact_info={"customer_phone": customer.phone, "restaurant_phone": restaurant.phone},
                customer_notes=notes,
                created_at=now,
                updated_at=now,
            )

        order, dto = self._insert_order(build)
        log_event(
            "info",
            "order.created",
            order_id=order.id,
            order_number=order.order_number,
            items=len(pricing.lines),
            total=pricing.total,
        )
        return dto

    def repeat_order(self, original_order_id: str, requester: Actor, overrides: Optional[Dict] = None) -> Dict:
        """New pending order from an earlier order's item and price snapshot."""
        overrides = overrides or {}

        def build(session, now):
            original = OrderRepository.get(session, original_order_id)
            if original.customer_id != requester.user_id:
                raise NotAuthorized("Not authorized to repeat this order")
            restaurant = session.get(Restaurant, original.restaurant_id)
            if restaurant is None or not restaurant.is_active:
                raise ValidationError("Restaurant is no longer available")
            address = _validate_address(
                original.order_type, overrides.get("delivery_address") or original.delivery_address
            )
            method = _validate_payment_method(overrides.get("payment_method") or original.payment_method)
            return Order(
                id=str(uuid4()),
                customer_id=original.customer_id,
                restaurant_id=original.restaurant_id,
                items=list(original.items or []),
                order_type=original.order_type,
                status=st.PENDING,
                delivery_address=address,
                estimated_delivery_time=now + timedelta(minutes=int(restaurant.estimated_delivery_time or 30)),
                subtotal=original.subtotal,
                tax=original.tax,
                delivery_fee=original.delivery_fee,
                service_fee=original.service_fee,
                discount=original.discount,
                tip=original.tip,
                total=original.total,
                currency=original.currency,
                payment_method=method,
                payment_status=st.PAYMENT_PENDING,
                tracking={"order_placed": {"timestamp": to_iso(now)}},
                contact_info={
                    "customer_phone": (original.contact_info or {}).get("customer_phone"),
                    "restaurant_phone": restaurant.phone,
                },
                customer_notes=ensure_max_length(overrides.get("customer_notes"), "customer_notes"),
                repeat_order=True,
                original_order_id=original.id,
                created_at=now,
                updated_at=now,
            )

        order, dto = self._insert_order(build)
        log_event("info", "order.repeated", order_id=order.id, original_order_id=order.original_order_id)
        return dto

    def _insert_order(self, build) -> Tuple[Order, Dict]:
        """Insert the order ``build(session, now)`` returns under a fresh order number.

        A concurrent checkout may commit the same number first; the insert is
        then retried in a new transaction.
        """
        for attempt in range(ORDER_NUMBER_ATTEMPTS):
            try:
                with self._session_factory() as session:
                    now = self._clock()
                    order = build(session, now)
                    order.order_number = OrderRepository.next_order_number(session, now, offset=attempt)
                    session.add(order)
                    session.flush()
                    dto = to_order_dto(order, now=now)
            except IntegrityError as exc:
                if "order_number" not in str(exc.orig):
                    raise
                log_event("warning", "order.number_collision", attempt=attempt + 1)
                continue
            return order, dto
        raise Conflict("Could not allocate an order number, please retry")

    def get_order(self, order_id: str, actor: Actor) -> Dict:
        with self._session_factory() as session:
            order = OrderRepository.get(session, order_id)
            if not can_view(order, OrderRepository.restaurant_owner(session, order), actor):
                raise NotAuthorized("Not authorized to view this order")
            return to_order_dto(order, now=self._clock())

    def get_tracking(self, order_id: str, actor: Actor) -> Dict:
        with self._session_factory() as session:
            order = OrderRepository.get(session, order_id)
            if not can_view(order, OrderRepository.restaurant_owner(session, order), actor):
                raise NotAuthorized("Not authorized to view this order tracking")
            return to_tracking_dto(order, now=self._clock())

    def list_orders(
        self,
        actor: Actor,
        *,
        status: Optional[str] = None,
        page: int = 1,
        page_size: int = 10,
    ) -> Dict:
        """Orders visible to the actor's role, newest first."""
        if status is not None and status not in st.ORDER_STATUSES:
            raise ValidationError(f"Invalid status: {status}")
        p, ps = normalize_paging(page, page_size)
        with self._session_factory() as session:
            q = session.query(Order)
            if actor.role == "customer":
                q = q.filter(Order.customer_id == actor.user_id)
            elif actor.role == "restaurant_owner":
                owned = [r.id for r in session.query(Restaurant.id).filter(Restaurant.owner_id == actor.user_id)]
                if not owned:
                    raise NotFound("No restaurant found for this user")
                q = q.filter(Order.restaurant_id.in_(owned))
            elif actor.role == "delivery_driver":
                q = q.filter(Order.delivery_driver_id == actor.user_id)
            elif not actor.is_admin:
                raise NotAuthorized("Unknown role")
            if status:
                q = q.filter(Order.status == status)
            total = q.count()
            rows = q.order_by(Order.created_at.desc()).offset((p - 1) * ps).limit(ps).all()
            now = self._clock()
            return {
                "items": [to_order_dto(r, now=now) for r in rows],
                "page": p,
                "page_size": ps,
                "pages": page_count(total, ps),
                "total": total,
            }

    def add_feedback(
        self,
        order_id: str,
        actor: Actor,
        *,
        rating: int,
        comment: Optional[str] = None,
        food_quality: Optional[int] = None,
        delivery_speed: Optional[int] = None,
        driver_rating: Optional[int] = None,
    ) -> Dict:
        """Customer rating after delivery; can be left once."""
        scores = {
            "rating": rating,
            "food_quality": food_quality,
            "delivery_speed": delivery_speed,
            "driver_rating": driver_rating,
        }
        for field, value in scores.items():
            if value is None and field != "rating":
                continue
            if isinstance(value, bool) or not isinstance(value, int) or not 1 <= value <= 5:
                raise ValidationError(f"{field} must be an integer between 1 and 5")
        with self._session_factory() as session:
            order = OrderRepository.get(session, order_id)
            if order.customer_id != actor.user_id:
                raise NotAuthorized("Only the customer can leave feedback")
            if order.status not in (st.DELIVERED, st.REFUNDED):
                raise ValidationError("Feedback can only be left on delivered orders")
            if order.feedback is not None:
                raise Conflict("Feedback has already been submitted for this order")
            feedback = {k: v for k, v in scores.items() if v is not None}
            feedback["comment"] = ensure_max_length(comment, "comment")
            feedback["submitted_at"] = to_iso(self._clock())
            # the row only matches while no feedback is stored
            OrderRepository.conditional_update(
                session, order, {"feedback": feedback}, require_empty_feedback=True
            )
            log_event("info", "order.feedback_added", order_id=order.id, rating=rating)
            return to_order_dto(order, now=self._clock())
