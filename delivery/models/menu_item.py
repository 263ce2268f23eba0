"""
菜單品項模型
品項隸屬於餐廳，以自身 id 作為子集合鍵值
"""
from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, JSON, Numeric, String, Text, func
from .base import Base


class MenuItem(Base):
    __tablename__ = "menu_item"

    id = Column(String(36), primary_key=True)
    restaurant_id = Column(String(36), ForeignKey("restaurant.id", ondelete="CASCADE"), nullable=False)
    name = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    image = Column(String(512), nullable=True)
    price = Column(Numeric(12, 2), nullable=False)
    # [{"name": "Large", "price": 12.5}]
    sizes = Column(JSON, nullable=True)
    # [{"name": "Toppings", "type": "multiple", "required": False, "options": [{"name": "Cheese", "price": 1.0}]}]
    customizations = Column(JSON, nullable=True)
    preparation_time = Column(Integer, nullable=False, default=15)
    is_available = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, server_default=func.now())
    updated_at = Column(DateTime, nullable=False, server_default=func.now())

    def to_dict(self):
        return {
            "id": self.id,
            "restaurant_id": self.restaurant_id,
            "name": self.name,
            "description": self.description,
            "image": self.image,
            "price": float(self.price or 0),
            "sizes": self.sizes or [],
            "customizations": self.customizations or [],
            "preparation_time": self.preparation_time,
            "is_available": bool(self.is_available),
        }
