import json

import pytest
import requests

from delivery.services import payment_gateway
from delivery.services.errors import InvalidSignature, PaymentGatewayError
from delivery.services.payment_gateway import StripeGateway, compute_signature, signature_header, verify_signature


class _Response:
    def __init__(self, status_code, body):
        self.status_code = status_code
        self._body = body

    def json(self):
        if self._body is None:
            raise ValueError("no json")
        return self._body


@pytest.fixture
def recorded(monkeypatch):
    calls = []
    replies = []

    def fake_request(method, url, headers=None, data=None, timeout=None):
        calls.append({"method": method, "url": url, "headers": headers, "data": data, "timeout": timeout})
        reply = replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply

    monkeypatch.setattr(payment_gateway.requests, "request", fake_request)
    return calls, replies


def test_create_intent_posts_form_encoded_amount(recorded):
    calls, replies = recorded
    replies.append(_Response(200, {"id": "pi_9", "status": "requires_payment_method", "client_secret": "s"}))
    gateway = StripeGateway("sk_test", base_url="https://gateway.test/v1/")

    intent = gateway.create_intent(6300, "USD", metadata={"order_id": "o-1"}, description="Order ORD1")

    assert intent["id"] == "pi_9"
    call = calls[0]
    assert call["method"] == "POST"
    assert call["url"] == "https://gateway.test/v1/payment_intents"
    assert call["headers"] == {"Authorization": "Bearer sk_test"}
    assert ("amount", 6300) in call["data"]
    assert ("currency", "usd") in call["data"]
    assert ("metadata[order_id]", "o-1") in call["data"]
    assert call["timeout"] == 15


def test_create_intent_with_payment_method_confirms_immediately(recorded):
    calls, replies = recorded
    replies.append(_Response(200, {"id": "pi_9", "status": "succeeded"}))

    StripeGateway("sk_test").create_intent(100, "eur", payment_method="pm_card")

    assert ("payment_method", "pm_card") in calls[0]["data"]
    assert ("confirm", "true") in calls[0]["data"]


def test_retrieve_and_refund_paths(recorded):
    calls, replies = recorded
    replies.extend([_Response(200, {"id": "pi_9", "status": "succeeded"}), _Response(200, {"id": "re_1", "amount": 500})])
    gateway = StripeGateway("sk_test")

    assert gateway.retrieve_intent("pi_9")["status"] == "succeeded"
    assert gateway.refund("pi_9", 500)["id"] == "re_1"

    assert calls[0]["method"] == "GET"
    assert calls[0]["url"].endswith("/payment_intents/pi_9")
    assert calls[0]["data"] is None
    assert calls[1]["url"].endswith("/refunds")
    assert ("payment_intent", "pi_9") in calls[1]["data"]
    assert ("reason", "requested_by_customer") in calls[1]["data"]


def test_error_response_becomes_gateway_error(recorded):
    _, replies = recorded
    replies.append(_Response(402, {"error": {"message": "Your card was declined."}}))

    with pytest.raises(PaymentGatewayError) as exc:
        StripeGateway("sk_test").retrieve_intent("pi_9")

    assert exc.value.message == "Your card was declined."
    assert exc.value.details == {"status": 402}
    assert exc.value.status_code == 502


def test_non_json_error_response(recorded):
    _, replies = recorded
    replies.append(_Response(503, None))

    with pytest.raises(PaymentGatewayError) as exc:
        StripeGateway("sk_test").retrieve_intent("pi_9")

    assert exc.value.message == "HTTP 503"


def test_network_failure_becomes_gateway_error(recorded):
    _, replies = recorded
    replies.append(requests.ConnectionError("connection refused"))

    with pytest.raises(PaymentGatewayError):
        StripeGateway("sk_test").retrieve_intent("pi_9")


def test_unconfigured_gateway_refuses_calls(recorded):
    calls, _ = recorded

    with pytest.raises(PaymentGatewayError):
        StripeGateway("").create_intent(100, "usd")
    assert calls == []


def test_signature_round_trip_and_tolerance():
    payload = b'{"id": "evt_1"}'
    header = signature_header(payload, "whsec", timestamp=1_700_000_000)

    verify_signature(payload, header, "whsec", now=1_700_000_100)

    with pytest.raises(InvalidSignature):
        verify_signature(payload, header, "whsec", now=1_700_000_301)
    with pytest.raises(InvalidSignature):
        verify_signature(payload + b" ", header, "whsec", now=1_700_000_000)
    with pytest.raises(InvalidSignature):
        verify_signature(payload, header, "other", now=1_700_000_000)


@pytest.mark.parametrize("header", ["", "garbage", "t=abc,v1=00", "t=1700000000", "v1=00"])
def test_malformed_signature_headers(header):
    with pytest.raises(InvalidSignature):
        verify_signature(b"{}", header, "whsec", now=1_700_000_000)


def test_any_matching_v1_candidate_is_accepted():
    payload = b"{}"
    good = compute_signature(payload, "whsec", 1_700_000_000)

    verify_signature(payload, f"t=1700000000,v1=bad,v1={good}", "whsec", now=1_700_000_000)


def test_construct_event_parses_signed_payload():
    gateway = StripeGateway("sk_test", webhook_secret="whsec")
    payload = json.dumps({"id": "evt_1", "type": "payment_intent.succeeded"}).encode("utf-8")

    event = gateway.construct_event(payload, signature_header(payload, "whsec"))

    assert event["type"] == "payment_intent.succeeded"


def test_construct_event_rejects_unsigned_or_non_event_payloads():
    gateway = StripeGateway("sk_test", webhook_secret="whsec")
    not_event = b'["x"]'

    with pytest.raises(InvalidSignature):
        gateway.construct_event(not_event, signature_header(not_event, "whsec"))
    with pytest.raises(InvalidSignature):
        StripeGateway("sk_test").construct_event(b"{}", signature_header(b"{}", "whsec"))
