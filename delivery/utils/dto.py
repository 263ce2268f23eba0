from datetime import datetime
from typing import Any, Dict, Optional

from ..services import order_state


def _money(value) -> float:
    return float(value or 0)


def _iso(value) -> Optional[str]:
    return value.isoformat() if value else None


def to_pricing_dto(row: Any) -> Dict:
    return {
        "subtotal": _money(row.subtotal),
        "tax": _money(row.tax),
        "delivery_fee": _money(row.delivery_fee),
        "service_fee": _money(row.service_fee),
        "discount": _money(row.discount),
        "tip": _money(row.tip),
        "total": _money(row.total),
        "currency": row.currency,
    }


def to_payment_dto(row: Any) -> Dict:
    return {
        "method": row.payment_method,
        "status": row.payment_status,
        "transaction_id": row.transaction_id,
        "payment_intent_id": row.payment_intent_id,
        "paid_at": _iso(row.paid_at),
        "refunded_at": _iso(row.refunded_at),
        "refund_amount": _money(row.refund_amount) if row.refund_amount is not None else None,
    }


def to_order_dto(row: Any, now: Optional[datetime] = None) -> Dict:
    # derived fields are computed on every read, never stored
    return {
        "id": row.id,
        "order_number": row.order_number,
        "customer_id": row.customer_id,
        "restaurant_id": row.restaurant_id,
        "delivery_driver_id": row.delivery_driver_id,
        "items": row.items or [],
        "order_type": row.order_type,
        "status": row.status,
        "status_message": order_state.status_message(row.status),
        "can_be_cancelled": order_state.can_be_cancelled(row.status),
        "can_be_modified": order_state.can_be_modified(row.status),
        "estimated_time_remaining": order_state.estimated_time_remaining(row, now),
        "order_duration": order_state.order_duration(row),
        "delivery_address": row.delivery_address,
        "scheduled_delivery_time": _iso(row.scheduled_delivery_time),
        "estimated_delivery_time": _iso(row.estimated_delivery_time),
        "actual_delivery_time": _iso(row.actual_delivery_time),
        "pricing": to_pricing_dto(row),
        "payment": to_payment_dto(row),
        "tracking": row.tracking or {},
        "contact_info": row.contact_info or {},
        "feedback": row.feedback,
        "customer_notes": row.customer_notes,
        "repeat_order": bool(row.repeat_order),
        "original_order_id": row.original_order_id,
        "created_at": _iso(row.created_at),
    }


def to_tracking_dto(row: Any, now: Optional[datetime] = None) -> Dict:
    return {
        "order_number": row.order_number,
        "status": row.status,
        "status_message": order_state.status_message(row.status),
        "estimated_delivery_time": _iso(row.estimated_delivery_time),
        "estimated_time_remaining": order_state.estimated_time_remaining(row, now),
        "tracking": row.tracking or {},
        "restaurant_id": row.restaurant_id,
        "delivery_driver_id": row.delivery_driver_id,
    }
