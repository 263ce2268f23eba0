from dataclasses import dataclass, fields
from typing import Dict, List, Optional, Sequence
from uuid import uuid4

from ..db.session import get_session
from ..models.menu_item import MenuItem
from ..models.restaurant import Restaurant
from ..utils.clock import utcnow
from ..utils.validators import ensure_money
from .auth_service import Actor
from .errors import NotAuthorized, NotFound, ValidationError
from .logging import log_event
from .pricing_service import CatalogItem


@dataclass
class MenuItemUpdate:
    """The only menu item fields an owner may change after creation."""

    name: Optional[str] = None
    description: Optional[str] = None
    image: Optional[str] = None
    price: Optional[float] = None
    sizes: Optional[List[Dict]] = None
    customizations: Optional[List[Dict]] = None
    preparation_time: Optional[int] = None
    is_available: Optional[bool] = None

    @classmethod
    def from_payload(cls, payload: Dict) -> "MenuItemUpdate":
        allowed = {f.name for f in fields(cls)}
        unknown = set(payload or {}) - allowed
        if unknown:
            raise ValidationError(f"Fields cannot be updated: {', '.join(sorted(unknown))}")
        return cls(**(payload or {}))


@dataclass(frozen=True)
class RestaurantSnapshot:
    id: str
    name: str
    owner_id: str
    phone: Optional[str]
    is_active: bool
    delivery_fee: object
    estimated_delivery_time: int


class CatalogService:
    """Restaurant and menu reads used at checkout, plus the owner's menu item edits.

    Menu items are a child collection of their restaurant addressed by their
    own generated ids; edits go through add/update/remove, never by position.
    """

    def __init__(self, session_factory=get_session):
        self._session_factory = session_factory

    @staticmethod
    def snapshot_restaurant(row: Restaurant) -> RestaurantSnapshot:
        return RestaurantSnapshot(
            id=row.id,
            name=row.name,
            owner_id=row.owner_id,
            phone=row.phone,
            is_active=bool(row.is_active),
            delivery_fee=ensure_money(row.delivery_fee, "delivery_fee", "0"),
            estimated_delivery_time=int(row.estimated_delivery_time or 30),
        )

    def get_restaurant(self, restaurant_id: str) -> RestaurantSnapshot:
        with self._session_factory() as session:
            row = session.get(Restaurant, restaurant_id)
            if row is None:
                raise NotFound("Restaurant not found")
            return self.snapshot_restaurant(row)

    def get_menu_items(self, restaurant_id: str, item_ids: Sequence[str]) -> Dict[str, CatalogItem]:
        """Current state of the requested items of one restaurant, keyed by id."""
        wanted = set(item_ids)
        with self._session_factory() as session:
            rows = (
                session.query(MenuItem)
                .filter(MenuItem.restaurant_id == restaurant_id, MenuItem.id.in_(wanted))
                .all()
            )
            return {r.id: CatalogItem.from_model(r) for r in rows}

    def get_menu_item(self, restaurant_id: str, item_id: str) -> Dict:
        with self._session_factory() as session:
            item = session.get(MenuItem, item_id)
            if item is None or item.restaurant_id != restaurant_id:
                raise NotFound("Menu item not found")
            return item.to_dict()

    def list_menu(self, restaurant_id: str, *, available_only: bool = True) -> List[Dict]:
        with self._session_factory() as session:
            q = session.query(MenuItem).filter(MenuItem.restaurant_id == restaurant_id)
            if available_only:
                q = q.filter(MenuItem.is_available.is_(True))
            return [r.to_dict() for r in q.order_by(MenuItem.created_at, MenuItem.name).all()]

    def _owned_restaurant(self, session, restaurant_id: str, actor: Actor) -> Restaurant:
        restaurant = session.get(Restaurant, restaurant_id)
        if restaurant is None:
            raise NotFound("Restaurant not found")
        if not actor.is_admin and restaurant.owner_id != actor.user_id:
            raise NotAuthorized("Not authorized to manage this menu")
        return restaurant

    def add_menu_item(self, restaurant_id: str, actor: Actor, *, name: str, price, **extra) -> Dict:
        if not (name or "").strip():
            raise ValidationError("name required")
        with self._session_factory() as session:
            self._owned_restaurant(session, restaurant_id, actor)
            item = MenuItem(
                id=str(uuid4()),
                restaurant_id=restaurant_id,
                name=name.strip(),
                price=ensure_money(price, "price"),
                description=extra.get("description"),
                image=extra.get("image"),
                sizes=extra.get("sizes") or [],
                customizations=extra.get("customizations") or [],
                preparation_time=int(extra.get("preparation_time") or 15),
                is_available=bool(extra.get("is_available", True)),
            )
            session.add(item)
            session.flush()
            log_event("info", "menu.item_added", restaurant_id=restaurant_id, item_id=item.id)
            return item.to_dict()

    def update_menu_item(self, restaurant_id: str, item_id: str, actor: Actor, update: MenuItemUpdate) -> Dict:
        with self._session_factory() as session:
            self._owned_restaurant(session, restaurant_id, actor)
            item = session.get(MenuItem, item_id)
            if item is None or item.restaurant_id != restaurant_id:
                raise NotFound("Menu item not found")
            for f in fields(update):
                value = getattr(update, f.name)
                if value is None:
                    continue
                if f.name == "price":
                    value = ensure_money(value, "price")
                setattr(item, f.name, value)
            item.updated_at = utcnow()
            session.flush()
            return item.to_dict()

    def remove_menu_item(self, restaurant_id: str, item_id: str, actor: Actor) -> None:
        with self._session_factory() as session:
            self._owned_restaurant(session, restaurant_id, actor)
            item = session.get(MenuItem, item_id)
            if item is None or item.restaurant_id != restaurant_id:
                raise NotFound("Menu item not found")
            session.delete(item)
            session.flush()
        return None
