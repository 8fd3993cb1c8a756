# ================================
# MODEL TESTS (tests/test_models.py)
# ================================

import importlib

from app.models import Base, CartItem, Property, User


class TestModelRegistry:
    """Models import cleanly and register their tables"""

    def test_models_package_imports(self):
        module = importlib.import_module("app.models")
        assert module.CartItem is CartItem

    def test_tables_are_registered(self):
        tables = set(Base.metadata.tables)
        assert {"users", "properties", "carts", "cart_items", "commissions", "rules", "notifications"} <= tables

    def test_one_active_item_per_property_index(self):
        indexes = {index.name: index for index in CartItem.__table__.indexes}
        active = indexes["uq_cart_items_active_property"]
        assert active.unique is True
        assert [column.name for column in active.columns] == ["property_id"]

    def test_relationship_names_do_not_hide_attributes(self, db, buyer, live_property):
        from app.services.reservation_engine import ReservationEngine

        item = ReservationEngine.reserve(db, buyer.id, live_property.id)
        assert item.property.id == live_property.id
        assert isinstance(item.property, Property)
        assert isinstance(item.buyer, User)
