"""Order reads and single-statement writes.

Every write that depends on the current status goes through
``conditional_update``, which only matches the row while it still holds the
status (and payment status) the caller loaded. A concurrent writer that got
there first makes the statement match nothing and the caller gets
``Conflict`` instead of silently overwriting.
"""

from datetime import datetime
from typing import Dict, Iterable, Optional, Union

from sqlalchemy import func, update

from ..models.order import Order
from ..models.restaurant import Restaurant
from ..utils.clock import utcnow
from .errors import Conflict, NotFound


class OrderRepository:

    @staticmethod
    def get(session, order_id: str) -> Order:
        order = session.get(Order, order_id) if order_id else None
        if order is None:
            raise NotFound("Order not found")
        return order

    @staticmethod
    def find_by_intent(session, intent_id: str) -> Optional[Order]:
        if not intent_id:
            return None
        return session.query(Order).filter(Order.payment_intent_id == intent_id).first()

    @staticmethod
    def restaurant_owner(session, order: Order) -> Optional[str]:
        restaurant = session.get(Restaurant, order.restaurant_id)
        return restaurant.owner_id if restaurant else None

    @staticmethod
    def next_order_number(session, now: Optional[datetime] = None, offset: int = 0) -> str:
        """ORD<epoch-millis><4-digit sequence>.

        The sequence is read without a lock, so two checkouts can pick the
        same number; the unique column rejects the second insert and the
        caller retries with a larger ``offset``.
        """
        now = now or utcnow()
        epoch = datetime(1970, 1, 1)
        millis = int((now - epoch).total_seconds() * 1000)
        count = session.query(func.count(Order.id)).scalar() or 0
        return f"ORD{millis}{(count + 1 + offset) % 10000:04d}"

    @staticmethod
    def conditional_update(
        session,
        order: Order,
        values: Dict,
        *,
        expected_status: Optional[str] = None,
        expected_payment_status: Union[str, Iterable[str], None] = None,
        require_empty_feedback: bool = False,
    ) -> Order:
        stmt = update(Order).where(Order.id == order.id)
        if expected_status is not None:
            stmt = stmt.where(Order.status == expected_status)
        if expected_payment_status is not None:
            if isinstance(expected_payment_status, str):
                expected_payment_status = [expected_payment_status]
            stmt = stmt.where(Order.payment_status.in_(list(expected_payment_status)))
        if require_empty_feedback:
            stmt = stmt.where(Order.feedback.is_(None))
        values = dict(values)
        values.setdefault("updated_at", utcnow())
        result = session.execute(stmt.values(**values).execution_options(synchronize_session=False))
        if result.rowcount != 1:
            raise Conflict(
                "Order was modified concurrently, reload and retry",
                order_id=order.id,
                expected_status=expected_status,
            )
        session.refresh(order)
        return order
