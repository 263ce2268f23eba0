import json
from datetime import datetime, timedelta
from decimal import Decimal
from types import SimpleNamespace

import pytest

from delivery.db.session import make_session_factory
from delivery.models.menu_item import MenuItem
from delivery.models.restaurant import Restaurant
from delivery.models.user import User
from delivery.services.auth_service import Actor, AuthService
from delivery.services.catalog_service import CatalogService
from delivery.services.errors import InvalidSignature, PaymentGatewayError
from delivery.services.order_service import OrderService
from delivery.services.payment_gateway import signature_header, verify_signature
from delivery.services.payment_service import PaymentService
from delivery.services.status_service import OrderStatusService


WEBHOOK_SECRET = "whsec_test"
JWT_SECRET = "test-jwt-secret"


class FrozenClock:
    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, minutes: int = 0, seconds: int = 0) -> None:
        self.now += timedelta(minutes=minutes, seconds=seconds)


class FakeGateway:
    """In-memory stand-in for the payment gateway."""

    def __init__(self):
        self.intents = {}
        self.refunds = []
        self.calls = []
        self.fail_with = None
        self._counter = 0

    def _maybe_fail(self, name):
        self.calls.append(name)
        if self.fail_with is not None:
            raise self.fail_with

    def create_intent(self, amount, currency, *, metadata=None, description=None, payment_method=None):
        self._maybe_fail("create_intent")
        self._counter += 1
        intent = {
            "id": f"pi_{self._counter}",
            "client_secret": f"pi_{self._counter}_secret",
            "amount": amount,
            "currency": currency.lower(),
            "status": "requires_payment_method",
            "metadata": metadata or {},
        }
        self.intents[intent["id"]] = intent
        return dict(intent)

    def retrieve_intent(self, intent_id):
        self._maybe_fail("retrieve_intent")
        if intent_id not in self.intents:
            raise PaymentGatewayError("No such payment_intent", status=404)
        return dict(self.intents[intent_id])

    def refund(self, intent_id, amount, *, reason="requested_by_customer", metadata=None):
        self._maybe_fail("refund")
        refund = {"id": f"re_{len(self.refunds) + 1}", "amount": amount, "status": "succeeded", "payment_intent": intent_id}
        self.refunds.append(refund)
        return dict(refund)

    def construct_event(self, payload, header):
        verify_signature(payload, header, WEBHOOK_SECRET)
        try:
            return json.loads(payload.decode("utf-8"))
        except ValueError:
            raise InvalidSignature("Webhook payload is not valid JSON")

    def set_status(self, intent_id, status):
        self.intents[intent_id]["status"] = status


def make_event(event_type, intent_id, event_id="evt_1"):
    payload = json.dumps(
        {"id": event_id, "type": event_type, "data": {"object": {"id": intent_id, "object": "payment_intent"}}}
    ).encode("utf-8")
    return payload, signature_header(payload, WEBHOOK_SECRET)


@pytest.fixture
def session_factory(tmp_path):
    return make_session_factory(f"sqlite:///{tmp_path / 'test.db'}")


@pytest.fixture
def clock():
    return FrozenClock(datetime(2026, 3, 1, 12, 0, 0))


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def seed(session_factory):
    ids = SimpleNamespace(
        customer="u-customer",
        other_customer="u-other",
        owner="u-owner",
        other_owner="u-other-owner",
        driver="u-driver",
        inactive_driver="u-driver-off",
        admin="u-admin",
        restaurant="r-1",
        burger="m-burger",
        fries="m-fries",
        soup="m-soup",
    )
    with session_factory() as session:
        session.add_all(
            [
                User(id=ids.customer, name="Casey", phone="555-0100", role="customer"),
                User(id=ids.other_customer, name="Robin", phone="555-0101", role="customer"),
                User(id=ids.owner, name="Olive", phone="555-0200", role="restaurant_owner"),
                User(id=ids.other_owner, name="Omar", phone="555-0201", role="restaurant_owner"),
                User(id=ids.driver, name="Dana", phone="555-0300", role="delivery_driver"),
                User(id=ids.inactive_driver, name="Drew", phone="555-0301", role="delivery_driver", is_active=False),
                User(id=ids.admin, name="Ada", role="admin"),
                Restaurant(
                    id=ids.restaurant,
                    name="Burger Barn",
                    owner_id=ids.owner,
                    phone="555-0999",
                    delivery_fee=Decimal("3.00"),
                    estimated_delivery_time=40,
                ),
                Restaurant(id="r-2", name="Other Place", owner_id=ids.other_owner, delivery_fee=Decimal("2.00")),
            ]
        )
        session.flush()
        session.add_all(
            [
                MenuItem(
                    id=ids.burger,
                    restaurant_id=ids.restaurant,
                    name="Burger",
                    description="Beef patty",
                    price=Decimal("25.00"),
                    sizes=[{"name": "Regular", "price": 25.0}, {"name": "Large", "price": 30.0}],
                    customizations=[
                        {
                            "name": "Toppings",
                            "type": "multiple",
                            "options": [{"name": "Cheese", "price": 1.0}, {"name": "Bacon", "price": 2.5}],
                        },
                        {
                            "name": "Sauce",
                            "type": "single",
                            "options": [{"name": "Ketchup", "price": 0}, {"name": "Aioli", "price": 0.5}],
                        },
                    ],
                ),
                MenuItem(id=ids.fries, restaurant_id=ids.restaurant, name="Fries", price=Decimal("4.50")),
                MenuItem(
                    id=ids.soup,
                    restaurant_id=ids.restaurant,
                    name="Soup",
                    price=Decimal("6.00"),
                    is_available=False,
                ),
            ]
        )
    return ids


@pytest.fixture
def actors(seed):
    return SimpleNamespace(
        customer=Actor(seed.customer, "customer"),
        other_customer=Actor(seed.other_customer, "customer"),
        owner=Actor(seed.owner, "restaurant_owner"),
        other_owner=Actor(seed.other_owner, "restaurant_owner"),
        driver=Actor(seed.driver, "delivery_driver"),
        admin=Actor(seed.admin, "admin"),
    )


@pytest.fixture
def services(session_factory, gateway, clock):
    catalog = CatalogService(session_factory)
    return SimpleNamespace(
        catalog=catalog,
        orders=OrderService(session_factory, catalog, clock=clock),
        status=OrderStatusService(session_factory, clock=clock),
        payments=PaymentService(gateway, session_factory, clock=clock),
        auth=AuthService(JWT_SECRET, session_factory),
    )


ADDRESS = {"street": "1 Main St", "city": "Springfield", "state": "IL", "zip_code": "62701"}


@pytest.fixture
def place_order(services, seed):
    """Places a $63.00 delivery order: 2 x $25 burger, $3 delivery, $5 tip."""

    def _place(**overrides):
        params = dict(
            customer_id=seed.customer,
            restaurant_id=seed.restaurant,
            lines=[{"menu_item_id": seed.burger, "quantity": 2}],
            order_type="delivery",
            payment_method="card",
            delivery_address=ADDRESS,
            tip=5,
        )
        params.update(overrides)
        return services.orders.create_order(**params)

    return _place
