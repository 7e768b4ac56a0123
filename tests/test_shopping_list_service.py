"""
Tests for ShoppingListService and the SQLite shopping_list repository.
"""

from __future__ import annotations

import pytest

from Trip_Sense.data.repositories import shopping_list_repo
from Trip_Sense.data.repositories.stores_repo import create_store
from Trip_Sense.services.shopping_list_service import ShoppingListService, parse_quantity_prefix


@pytest.fixture
def service():
    return ShoppingListService()


@pytest.mark.parametrize(
    "text, expected",
    [
        ("apples", ("apples", 1.0, None)),
        ("2x milk", ("milk", 2.0, None)),
        ("2 x milk", ("milk", 2.0, None)),
        ("3 apples", ("apples", 3.0, None)),
        ("1.5 lb chicken", ("chicken", 1.5, "LB")),
        ("eggs x2", ("eggs", 2.0, None)),
        ("2 cans soup", ("soup", 2.0, "CAN")),
        ("3 xylitol gum", ("xylitol gum", 3.0, None)),
        ("  ", ("", 1.0, None)),
    ],
)
def test_parse_quantity_prefix(text, expected):
    assert parse_quantity_prefix(text) == expected


class TestShoppingListService:
    def test_add_single_item(self, service):
        item = service.add_single_item("  2% Milk ", quantity=1, unit="gal", suggested_price=350)
        assert item.id is not None
        assert item.display_name == "2% Milk"
        assert item.unit == "GALLON"
        assert item.suggested_price == 350
        assert item.is_active and not item.is_checked_off

    def test_empty_name_is_rejected(self, service):
        with pytest.raises(ValueError):
            service.add_single_item("   ")

    def test_add_items_from_text(self, service):
        created = service.add_items_from_text("apples, 2x milk, , 1.5 lb chicken")
        assert [(i.display_name, i.quantity, i.unit) for i in created] == [
            ("apples", 1.0, "COUNT"),
            ("milk", 2.0, "COUNT"),
            ("chicken", 1.5, "LB"),
        ]

    def test_grouped_by_store(self, service):
        store = create_store("FreshMart")
        service.add_single_item("milk", planned_store_id=store.id)
        service.add_single_item("rice")

        grouped = service.get_active_items_grouped_by_store()
        assert [i.display_name for i in grouped[store.id]] == ["milk"]
        assert [i.display_name for i in grouped[None]] == ["rice"]

    def test_update_item_patches_fields(self, service):
        item = service.add_single_item("milk")
        updated = service.update_item(item.id, {"notes": "Moved from A", "planned_store_id": None, "is_checked_off": True})
        assert updated.notes == "Moved from A"
        assert updated.is_checked_off

        assert service.get_active_items() == []
        assert [i.id for i in service.get_active_items(include_checked_off=True)] == [item.id]

    def test_update_item_validation(self, service):
        item = service.add_single_item("milk")
        with pytest.raises(ValueError):
            service.update_item(item.id, {"colour": "blue"})
        with pytest.raises(ValueError):
            service.update_item(item.id, {"quantity": 0})
        with pytest.raises(ValueError):
            service.update_item(item.id, {"display_name": "  "})

    def test_update_missing_or_deleted_item_returns_none(self, service):
        assert service.update_item(999, {"notes": "x"}) is None

        item = service.add_single_item("milk")
        assert service.delete_item(item.id) is True
        assert service.update_item(item.id, {"notes": "x"}) is None
        assert service.get_item(item.id).is_active is False

    def test_delete_unknown_item(self, service):
        assert service.delete_item(12345) is False

    def test_clear_checked_off(self, service):
        a = service.add_single_item("milk")
        service.add_single_item("rice")
        service.check_off_item(a.id)

        assert service.clear_checked_off() == 1
        assert [i.display_name for i in service.get_active_items(include_checked_off=True)] == ["rice"]

    def test_repo_filters_by_store(self):
        store = create_store("Value Foods")
        shopping_list_repo.add_item("rice", planned_store_id=store.id)
        shopping_list_repo.add_item("milk")

        items = shopping_list_repo.list_active_items(store_id=store.id)
        assert [i.display_name for i in items] == ["rice"]


def test_export_active_items_as_dicts(service):
    service.add_single_item("milk", suggested_price=350)
    rows = service.export_active_items_as_dicts()
    assert rows[0]["display_name"] == "milk"
    assert rows[0]["suggested_price"] == 350
    assert rows[0]["is_active"] is True
