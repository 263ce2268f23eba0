"""Price computation for order lines.

Pure functions over a catalog snapshot: the caller fetches the menu items
as they are at checkout and passes them in, so an order's prices never
follow later catalog edits.
"""

from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Optional, Sequence, Tuple

from ..utils.validators import ensure_money, ensure_positive_int
from .errors import EmptyOrder, InvalidSelection, ItemUnavailable, ValidationError


TAX_RATE = Decimal("0.08")
SERVICE_FEE_RATE = Decimal("0.02")
CENT = Decimal("0.01")


def to_money(value) -> Decimal:
    return Decimal(str(value or 0)).quantize(CENT, rounding=ROUND_HALF_UP)


def to_minor_units(amount: Decimal) -> int:
    """Currency units to integer cents, only used at the gateway boundary."""
    return int((Decimal(amount) * 100).to_integral_value(rounding=ROUND_HALF_UP))


def from_minor_units(amount: int) -> Decimal:
    return to_money(Decimal(int(amount)) / 100)


@dataclass(frozen=True)
class CatalogItem:
    """Menu item as the catalog reports it at order time."""

    id: str
    name: str
    price: Decimal
    is_available: bool = True
    description: Optional[str] = None
    image: Optional[str] = None
    sizes: Tuple[Dict[str, Any], ...] = ()
    customizations: Tuple[Dict[str, Any], ...] = ()

    @classmethod
    def from_model(cls, row) -> "CatalogItem":
        return cls(
            id=row.id,
            name=row.name,
            price=to_money(row.price),
            is_available=bool(row.is_available),
            description=row.description,
            image=row.image,
            sizes=tuple(row.sizes or ()),
            customizations=tuple(row.customizations or ()),
        )


@dataclass
class LineRequest:
    menu_item_id: str
    quantity: int = 1
    size: Optional[str] = None
    # [{"name": "Toppings", "options": ["Cheese", "Olives"]}]
    customizations: List[Dict[str, Any]] = field(default_factory=list)
    special_instructions: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "LineRequest":
        if not isinstance(payload, dict):
            raise ValidationError("each item must be an object")
        menu_item_id = str(payload.get("menu_item_id") or payload.get("menuItem") or "").strip()
        if not menu_item_id:
            raise ValidationError("menu_item_id required")
        size = payload.get("size")
        if isinstance(size, dict):
            size = size.get("name")
        customizations = payload.get("customizations") or []
        if not isinstance(customizations, list):
            raise ValidationError("customizations must be a list")
        return cls(
            menu_item_id=menu_item_id,
            quantity=ensure_positive_int(payload.get("quantity", 1), "quantity"),
            size=size or None,
            customizations=customizations,
            special_instructions=payload.get("special_instructions") or payload.get("specialInstructions"),
        )


@dataclass
class PricedLine:
    menu_item_id: str
    name: str
    description: Optional[str]
    image: Optional[str]
    unit_price: Decimal
    quantity: int
    size: Optional[Dict[str, Any]]
    customizations: List[Dict[str, Any]]
    special_instructions: Optional[str]
    subtotal: Decimal

    def to_dict(self) -> Dict[str, Any]:
        return {
            "menu_item_id": self.menu_item_id,
            "name": self.name,
            "description": self.description,
            "image": self.image,
            "unit_price": str(self.unit_price),
            "quantity": self.quantity,
            "size": self.size,
            "customizations": self.customizations,
            "special_instructions": self.special_instructions,
            "subtotal": str(self.subtotal),
        }


@dataclass
class PricingBreakdown:
    subtotal: Decimal
    tax: Decimal
    delivery_fee: Decimal
    service_fee: Decimal
    discount: Decimal
    tip: Decimal
    total: Decimal
    lines: List[PricedLine] = field(default_factory=list)

    def to_dict(self) -> Dict[str, float]:
        return {
            "subtotal": float(self.subtotal),
            "tax": float(self.tax),
            "delivery_fee": float(self.delivery_fee),
            "service_fee": float(self.service_fee),
            "discount": float(self.discount),
            "tip": float(self.tip),
            "total": float(self.total),
        }


def _option_name(option) -> str:
    if isinstance(option, dict):
        return str(option.get("name") or "")
    return str(option or "")


def _resolve_size(item: CatalogItem, size_name: Optional[str]) -> Tuple[Decimal, Optional[Dict[str, Any]]]:
    if not size_name:
        return item.price, None
    for size in item.sizes:
        if size.get("name") == size_name:
            price = to_money(size.get("price"))
            return price, {"name": size_name, "price": str(price)}
    raise InvalidSelection(f"Size {size_name!r} does not exist on {item.name}", menu_item_id=item.id)


def _resolve_customizations(item: CatalogItem, requested: List[Dict[str, Any]]) -> Tuple[Decimal, List[Dict[str, Any]]]:
    by_name = {c.get("name"): c for c in item.customizations}
    chosen: Dict[str, Dict[str, Any]] = {}
    total = Decimal("0")
    for selection in requested:
        if not isinstance(selection, dict):
            raise InvalidSelection("customization selections must be objects", menu_item_id=item.id)
        name = selection.get("name")
        group = by_name.get(name)
        if group is None:
            raise InvalidSelection(f"Customization {name!r} does not exist on {item.name}", menu_item_id=item.id)
        options = {o.get("name"): o for o in group.get("options") or []}
        picked = []
        for option in selection.get("options") or []:
            option_name = _option_name(option)
            match = options.get(option_name)
            if match is None:
                raise InvalidSelection(
                    f"Option {option_name!r} does not exist for {name!r} on {item.name}",
                    menu_item_id=item.id,
                )
            price = to_money(match.get("price"))
            picked.append({"name": option_name, "price": str(price)})
            total += price
        entry = chosen.setdefault(name, {"name": name, "options": []})
        entry["options"].extend(picked)

    for group in item.customizations:
        name = group.get("name")
        picked_count = len(chosen.get(name, {}).get("options", []))
        if group.get("type", "single") == "single" and picked_count > 1:
            raise InvalidSelection(f"Customization {name!r} allows a single option", menu_item_id=item.id)
        if group.get("required") and picked_count == 0:
            raise InvalidSelection(f"Customization {name!r} is required", menu_item_id=item.id)

    snapshot = []
    for entry in chosen.values():
        entry["total_price"] = str(sum((Decimal(o["price"]) for o in entry["options"]), Decimal("0")))
        snapshot.append(entry)
    return total, snapshot


def price_line(item: CatalogItem, request: LineRequest) -> PricedLine:
    """Unit price is the size price when a size is chosen, plus every option delta."""
    if not item.is_available:
        raise ItemUnavailable(f"Item {item.id} is not available", menu_item_id=item.id)
    quantity = ensure_positive_int(request.quantity, "quantity")
    base_price, size = _resolve_size(item, request.size)
    extras, customizations = _resolve_customizations(item, request.customizations)
    unit_price = to_money(base_price + extras)
    return PricedLine(
        menu_item_id=item.id,
        name=item.name,
        description=item.description,
        image=item.image,
        unit_price=unit_price,
        quantity=quantity,
        size=size,
        customizations=customizations,
        special_instructions=request.special_instructions,
        subtotal=to_money(unit_price * quantity),
    )


def summarize(
    subtotal: Decimal,
    *,
    delivery_fee=0,
    tip=0,
    discount=0,
    tax_rate: Decimal = TAX_RATE,
    service_fee_rate: Decimal = SERVICE_FEE_RATE,
) -> PricingBreakdown:
    subtotal = to_money(subtotal)
    tax = to_money(subtotal * tax_rate)
    service_fee = to_money(subtotal * service_fee_rate)
    delivery_fee = ensure_money(delivery_fee, "delivery_fee", "0")
    tip = ensure_money(tip, "tip", "0")
    discount = ensure_money(discount, "discount", "0")
    total = max(Decimal("0.00"), subtotal + tax + delivery_fee + service_fee + tip - discount)
    return PricingBreakdown(
        subtotal=subtotal,
        tax=tax,
        delivery_fee=delivery_fee,
        service_fee=service_fee,
        discount=discount,
        tip=tip,
        total=to_money(total),
    )


def compute_pricing(
    lines: Sequence[Tuple[CatalogItem, LineRequest]],
    restaurant_delivery_fee,
    order_type: str,
    tip=0,
    *,
    discount=0,
    tax_rate: Decimal = TAX_RATE,
    service_fee_rate: Decimal = SERVICE_FEE_RATE,
) -> PricingBreakdown:
    if not lines:
        raise EmptyOrder("At least one item is required")
    if order_type not in ("delivery", "pickup"):
        raise ValidationError("Order type must be delivery or pickup")
    priced = [price_line(item, request) for item, request in lines]
    subtotal = sum((line.subtotal for line in priced), Decimal("0"))
    breakdown = summarize(
        subtotal,
        delivery_fee=restaurant_delivery_fee if order_type == "delivery" else 0,
        tip=tip,
        discount=discount,
        tax_rate=tax_rate,
        service_fee_rate=service_fee_rate,
    )
    breakdown.lines = priced
    return breakdown
