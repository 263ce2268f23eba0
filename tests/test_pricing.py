from decimal import Decimal

import pytest

from delivery.services.errors import EmptyOrder, InvalidSelection, ItemUnavailable, ValidationError
from delivery.services.pricing_service import (
    CatalogItem,
    LineRequest,
    compute_pricing,
    from_minor_units,
    price_line,
    summarize,
    to_minor_units,
)
from delivery.utils.validators import MAX_MONEY, ensure_money


BURGER = CatalogItem(
    id="m-burger",
    name="Burger",
    price=Decimal("25.00"),
    sizes=({"name": "Large", "price": 30.0},),
    customizations=(
        {"name": "Toppings", "type": "multiple", "options": [{"name": "Cheese", "price": 1.0}, {"name": "Bacon", "price": 2.5}]},
        {"name": "Sauce", "type": "single", "options": [{"name": "Ketchup", "price": 0}, {"name": "Aioli", "price": 0.5}]},
    ),
)
SALAD = CatalogItem(
    id="m-salad",
    name="Salad",
    price=Decimal("9.00"),
    customizations=({"name": "Dressing", "type": "single", "required": True, "options": [{"name": "Ranch", "price": 0}]},),
)


def test_reference_scenario():
    breakdown = compute_pricing([(BURGER, LineRequest("m-burger", quantity=2))], Decimal("3.00"), "delivery", tip=5)

    assert breakdown.subtotal == Decimal("50.00")
    assert breakdown.tax == Decimal("4.00")
    assert breakdown.service_fee == Decimal("1.00")
    assert breakdown.delivery_fee == Decimal("3.00")
    assert breakdown.discount == Decimal("0.00")
    assert breakdown.total == Decimal("63.00")


def test_pickup_orders_pay_no_delivery_fee():
    breakdown = compute_pricing([(BURGER, LineRequest("m-burger"))], Decimal("3.00"), "pickup")

    assert breakdown.delivery_fee == Decimal("0.00")
    assert breakdown.total == Decimal("27.50")


def test_size_price_replaces_base_price_and_options_add():
    line = price_line(
        BURGER,
        LineRequest(
            "m-burger",
            quantity=3,
            size="Large",
            customizations=[{"name": "Toppings", "options": ["Cheese", {"name": "Bacon"}]}],
        ),
    )

    assert line.unit_price == Decimal("33.50")
    assert line.subtotal == Decimal("100.50")
    assert line.size == {"name": "Large", "price": "30.00"}
    assert line.customizations[0]["total_price"] == "3.50"


@pytest.mark.parametrize("subtotal", ["0", "10", "50", "125", "999"])
@pytest.mark.parametrize("tip, discount, fee", [(0, 0, 0), (5, 0, 3), (2, 7, 4)])
def test_total_is_sum_of_components(subtotal, tip, discount, fee):
    breakdown = summarize(Decimal(subtotal), delivery_fee=fee, tip=tip, discount=discount)

    expected = max(
        Decimal("0"),
        breakdown.subtotal + breakdown.tax + breakdown.delivery_fee + breakdown.service_fee + breakdown.tip - breakdown.discount,
    )
    assert breakdown.total == expected
    assert breakdown.tax == Decimal(subtotal) * Decimal("0.08")
    assert breakdown.service_fee == Decimal(subtotal) * Decimal("0.02")


def test_total_is_floored_at_zero():
    breakdown = summarize(Decimal("10.00"), discount=100)

    assert breakdown.total == Decimal("0.00")


def test_unavailable_item_is_rejected():
    soup = CatalogItem(id="m-soup", name="Soup", price=Decimal("6.00"), is_available=False)

    with pytest.raises(ItemUnavailable):
        compute_pricing([(soup, LineRequest("m-soup"))], 0, "pickup")


@pytest.mark.parametrize(
    "request_",
    [
        LineRequest("m-burger", size="Huge"),
        LineRequest("m-burger", customizations=[{"name": "Extras", "options": ["Cheese"]}]),
        LineRequest("m-burger", customizations=[{"name": "Toppings", "options": ["Pickles"]}]),
        LineRequest("m-burger", customizations=[{"name": "Sauce", "options": ["Ketchup", "Aioli"]}]),
    ],
)
def test_unknown_or_conflicting_selection_is_rejected(request_):
    with pytest.raises(InvalidSelection):
        price_line(BURGER, request_)


def test_required_customization_must_be_chosen():
    with pytest.raises(InvalidSelection):
        price_line(SALAD, LineRequest("m-salad"))

    line = price_line(SALAD, LineRequest("m-salad", customizations=[{"name": "Dressing", "options": ["Ranch"]}]))
    assert line.unit_price == Decimal("9.00")


def test_empty_line_set_is_rejected():
    with pytest.raises(EmptyOrder):
        compute_pricing([], 0, "delivery")


def test_quantity_and_tip_are_validated():
    with pytest.raises(ValidationError):
        price_line(BURGER, LineRequest("m-burger", quantity=0))
    with pytest.raises(ValidationError):
        compute_pricing([(BURGER, LineRequest("m-burger"))], 0, "delivery", tip=-1)
    with pytest.raises(ValidationError):
        compute_pricing([(BURGER, LineRequest("m-burger"))], 0, "drone")
    for quantity in (1.9, True, "1.9", "abc"):
        with pytest.raises(ValidationError):
            LineRequest.from_payload({"menu_item_id": "m-burger", "quantity": quantity})
    with pytest.raises(ValidationError):
        price_line(BURGER, LineRequest("m-burger", quantity=2.5))

    assert LineRequest.from_payload({"menu_item_id": "m-burger", "quantity": 2.0}).quantity == 2


def test_oversized_tip_is_a_validation_error():
    for tip in ("1e30", "10000000000", 1e12):
        with pytest.raises(ValidationError):
            compute_pricing([(BURGER, LineRequest("m-burger"))], 0, "delivery", tip=tip)


def test_money_rounds_half_up_to_cents():
    assert ensure_money("63.005", "tip") == Decimal("63.01")
    assert ensure_money("0.125", "tip") == Decimal("0.13")
    assert ensure_money("9999999999.99", "tip") == MAX_MONEY


def test_line_request_from_payload_accepts_original_field_names():
    request_ = LineRequest.from_payload({"menuItem": "m-burger", "quantity": "2", "size": {"name": "Large"}})

    assert request_.menu_item_id == "m-burger"
    assert request_.quantity == 2
    assert request_.size == "Large"


def test_minor_unit_conversion():
    assert to_minor_units(Decimal("63.00")) == 6300
    assert to_minor_units(Decimal("0.125")) == 13
    assert from_minor_units(1050) == Decimal("10.50")
