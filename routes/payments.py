"""付款 API 路由：建立付款意圖、確認付款、退款、付款紀錄與金流 webhook。"""

from __future__ import annotations

from typing import Any, Dict

from flask import Blueprint, current_app, jsonify, request

from delivery.services.auth_service import Actor
from delivery.services.errors import ValidationError


payments_bp = Blueprint("delivery_payments", __name__, url_prefix="/api/payments")


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


@payments_bp.post("/create-intent")
def create_intent():
    actor = _actor()
    payload = _payload()
    order_id = str(payload.get("order_id") or payload.get("orderId") or "").strip()
    if not order_id:
        raise ValidationError("Valid order ID is required")
    result = _components()["payments"].create_payment_intent(
        order_id, actor, payment_method_id=payload.get("payment_method_id")
    )
    return jsonify({"success": True, "data": result})


@payments_bp.post("/confirm")
def confirm():
    actor = _actor()
    payload = _payload()
    intent_id = str(payload.get("payment_intent_id") or payload.get("paymentIntentId") or "").strip()
    result = _components()["payments"].confirm_payment(intent_id, actor)
    return jsonify({"success": True, "message": "Payment status updated", "data": result})


@payments_bp.post("/refund")
def refund():
    actor = _actor()
    payload = _payload()
    order_id = str(payload.get("order_id") or payload.get("orderId") or "").strip()
    if not order_id:
        raise ValidationError("Valid order ID is required")
    result = _components()["payments"].refund(
        order_id, actor, amount=payload.get("amount"), reason=payload.get("reason")
    )
    return jsonify({"success": True, "message": "Refund processed successfully", "data": result})


@payments_bp.get("/history")
def history():
    actor = _actor()
    try:
        page = int(request.args.get("page", 1))
        limit = int(request.args.get("limit", 10))
    except ValueError:
        raise ValidationError("page and limit must be integers")
    result = _components()["payments"].payment_history(actor, page=page, page_size=limit)
    return jsonify({"success": True, "data": result})


@payments_bp.post("/webhook")
def webhook():
    # called by the gateway itself: no bearer token, the signature is the authorization
    result = _components()["payments"].handle_webhook_event(
        request.get_data(), request.headers.get("Stripe-Signature")
    )
    return jsonify(result)
