"""
Stripe-compatible payment gateway client.
Talks to the REST API with form-encoded requests authenticated by the secret key.
Webhook payloads are authenticated with the `t=<unix>,v1=<hmac>` signature header.
"""
import hashlib
import hmac
import json
import logging
import time
from typing import Any, Dict, List, Optional, Tuple

import requests

from .errors import InvalidSignature, PaymentGatewayError


def _flatten(data: Dict[str, Any], prefix: str = "") -> List[Tuple[str, Any]]:
    """Nested dicts to Stripe's bracketed form keys (metadata[order_id]=...)."""
    pairs: List[Tuple[str, Any]] = []
    for key, value in data.items():
        name = f"{prefix}[{key}]" if prefix else key
        if value is None:
            continue
        if isinstance(value, dict):
            pairs.extend(_flatten(value, name))
        elif isinstance(value, bool):
            pairs.append((name, "true" if value else "false"))
        else:
            pairs.append((name, value))
    return pairs


def compute_signature(payload: bytes, secret: str, timestamp: int) -> str:
    signed = f"{timestamp}.".encode("utf-8") + payload
    return hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()


def signature_header(payload: bytes, secret: str, timestamp: Optional[int] = None) -> str:
    ts = int(timestamp if timestamp is not None else time.time())
    return f"t={ts},v1={compute_signature(payload, secret, ts)}"


def verify_signature(
    payload: bytes,
    header: Optional[str],
    secret: str,
    tolerance: int = 300,
    now: Optional[float] = None,
) -> None:
    """Raise InvalidSignature unless ``header`` signs ``payload`` with ``secret``."""
    if not secret:
        raise InvalidSignature("Webhook secret is not configured")
    if not header:
        raise InvalidSignature("Missing signature header")
    timestamp = None
    candidates = []
    for part in header.split(","):
        key, _, value = part.strip().partition("=")
        if key == "t":
            try:
                timestamp = int(value)
            except ValueError:
                raise InvalidSignature("Malformed signature timestamp")
        elif key == "v1":
            candidates.append(value)
    if timestamp is None or not candidates:
        raise InvalidSignature("Malformed signature header")
    expected = compute_signature(payload, secret, timestamp)
    if not any(hmac.compare_digest(expected, c) for c in candidates):
        raise InvalidSignature("Signature does not match payload")
    current = now if now is not None else time.time()
    if tolerance and abs(current - timestamp) > tolerance:
        raise InvalidSignature("Signature timestamp outside tolerance")


class StripeGateway:
    """Thin client for payment intents and refunds."""

    def __init__(
        self,
        secret_key: str,
        base_url: str = "https://api.stripe.com/v1",
        timeout: float = 15,
        webhook_secret: str = "",
        webhook_tolerance: int = 300,
    ) -> None:
        self.secret_key = secret_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.webhook_secret = webhook_secret
        self.webhook_tolerance = webhook_tolerance
        self.logger = logging.getLogger(__name__)

    def _request(self, method: str, path: str, data: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        if not self.secret_key:
            raise PaymentGatewayError("Payment gateway is not configured")
        url = f"{self.base_url}/{path.lstrip('/')}"
        try:
            response = requests.request(
                method,
                url,
                headers={"Authorization": f"Bearer {self.secret_key}"},
                data=_flatten(data) if data else None,
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            self.logger.warning("Gateway request %s %s failed: %s", method, path, exc)
            raise PaymentGatewayError(f"Payment gateway unreachable: {exc}")

        try:
            body = response.json()
        except ValueError:
            body = {}
        if response.status_code >= 400:
            message = (body.get("error") or {}).get("message") or f"HTTP {response.status_code}"
            self.logger.warning("Gateway %s %s returned %s: %s", method, path, response.status_code, message)
            raise PaymentGatewayError(message, status=response.status_code)
        return body

    def create_intent(
        self,
        amount: int,
        currency: str,
        *,
        metadata: Optional[Dict[str, str]] = None,
        description: Optional[str] = None,
        payment_method: Optional[str] = None,
    ) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "amount": int(amount),
            "currency": currency.lower(),
            "metadata": metadata or {},
            "description": description,
        }
        if payment_method:
            data.update({"payment_method": payment_method, "confirmation_method": "manual", "confirm": True})
        return self._request("POST", "payment_intents", data)

    def retrieve_intent(self, intent_id: str) -> Dict[str, Any]:
        return self._request("GET", f"payment_intents/{intent_id}")

    def refund(
        self,
        intent_id: str,
        amount: int,
        *,
        reason: str = "requested_by_customer",
        metadata: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        return self._request(
            "POST",
            "refunds",
            {"payment_intent": intent_id, "amount": int(amount), "reason": reason, "metadata": metadata or {}},
        )

    def construct_event(self, payload: bytes, header: Optional[str]) -> Dict[str, Any]:
        verify_signature(payload, header, self.webhook_secret, self.webhook_tolerance)
        try:
            event = json.loads(payload.decode("utf-8"))
        except (UnicodeDecodeError, ValueError):
            raise InvalidSignature("Webhook payload is not valid JSON")
        if not isinstance(event, dict) or "type" not in event:
            raise InvalidSignature("Webhook payload is not an event")
        return event
