"""訂單 API 路由：建立、查詢、狀態變更、指派外送員與評價。"""

from __future__ import annotations

from typing import Any, Dict

from flask import Blueprint, current_app, jsonify, request

from delivery.services.auth_service import Actor
from delivery.services.errors import ValidationError
from delivery.services.status_service import TransitionDetails


orders_bp = Blueprint("delivery_orders", __name__, url_prefix="/api/orders")


def _components() -> Dict[str, Any]:
    return current_app.extensions["delivery_components"]


def _actor() -> Actor:
    return _components()["auth"].authenticate(request.headers.get("Authorization"))


def _payload() -> Dict[str, Any]:
    payload = request.get_json(silent=True)
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object")
    return payload


def _int_arg(name: str, default: int) -> int:
    try:
        return int(request.args.get(name, default))
    except (TypeError, ValueError):
        raise ValidationError(f"{name} must be an integer")


@orders_bp.post("")
def create_order():
    actor = _actor()
    payload = _payload()
    payment = payload.get("payment") or {}
    order = _components()["orders"].create_order(
        customer_id=actor.user_id,
        restaurant_id=str(payload.get("restaurant_id") or payload.get("restaurant") or ""),
        lines=payload.get("items") or [],
        order_type=payload.get("order_type", payload.get("orderType", "delivery")),
        payment_method=payment.get("method") or payload.get("payment_method"),
        delivery_address=payload.get("delivery_address") or payload.get("deliveryAddress"),
        tip=payload.get("tip", 0),
        scheduled_delivery_time=payload.get("scheduled_delivery_time"),
        customer_notes=payload.get("customer_notes"),
    )
    return jsonify({"success": True, "message": "Order placed successfully", "data": order}), 201


@orders_bp.get("")
def list_orders():
    actor = _actor()
    result = _components()["orders"].list_orders(
        actor,
        status=request.args.get("status") or None,
        page=_int_arg("page", 1),
        page_size=_int_arg("limit", 10),
    )
    return jsonify({"success": True, "data": result})


@orders_bp.get("/<order_id>")
def get_order(order_id: str):
    order = _components()["orders"].get_order(order_id, _actor())
    return jsonify({"success": True, "data": order})


@orders_bp.put("/<order_id>/status")
def update_status(order_id: str):
    actor = _actor()
    payload = _payload()
    status = str(payload.get("status") or "").strip()
    if not status:
        raise ValidationError("status required")
    order = _components()["status"].update_status(
        order_id, status, actor, TransitionDetails.from_payload(payload)
    )
    return jsonify({"success": True, "message": f"Order status updated to {status}", "data": order})


@orders_bp.put("/<order_id>/cancel")
def cancel_order(order_id: str):
    actor = _actor()
    order = _components()["status"].cancel_order(order_id, actor, _payload().get("reason"))
    return jsonify({"success": True, "message": "Order cancelled successfully", "data": order})


@orders_bp.put("/<order_id>/assign-driver")
def assign_driver(order_id: str):
    actor = _actor()
    payload = _payload()
    driver_id = str(payload.get("driver_id") or payload.get("driverId") or "").strip()
    order = _components()["status"].assign_driver(order_id, driver_id, actor)
    return jsonify({"success": True, "message": "Delivery driver assigned successfully", "data": order})


@orders_bp.get("/<order_id>/tracking")
def get_tracking(order_id: str):
    tracking = _components()["orders"].get_tracking(order_id, _actor())
    return jsonify({"success": True, "data": tracking})


@orders_bp.post("/<order_id>/repeat")
def repeat_order(order_id: str):
    actor = _actor()
    payload = _payload()
    order = _components()["orders"].repeat_order(
        order_id,
        actor,
        {
            "delivery_address": payload.get("delivery_address"),
            "payment_method": payload.get("payment_method"),
            "customer_notes": payload.get("customer_notes"),
        },
    )
    return jsonify({"success": True, "message": "Order repeated successfully", "data": order}), 201


@orders_bp.post("/<order_id>/feedback")
def add_feedback(order_id: str):
    actor = _actor()
    payload = _payload()
    order = _components()["orders"].add_feedback(
        order_id,
        actor,
        rating=payload.get("rating"),
        comment=payload.get("comment"),
        food_quality=payload.get("food_quality"),
        delivery_speed=payload.get("delivery_speed"),
        driver_rating=payload.get("driver_rating"),
    )
    return jsonify({"success": True, "message": "Feedback submitted", "data": order}), 201
