"""
Shared fixtures for the Trip Sense test-suite.

Every test gets its own SQLite file and config directory under tmp_path, so
nothing touches src/Trip_Sense/data/db or the real trip_config.json.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Any, Dict, List, Optional

import pytest

from Trip_Sense.config_store import CONFIG_DIR_ENV
from Trip_Sense.data.connection import DB_DIR_ENV
from Trip_Sense.data.schema import initialize_database
from Trip_Sense.domain.models import ShoppingListItem, Store


@pytest.fixture(autouse=True)
def isolated_env(tmp_path, monkeypatch):
    monkeypatch.setenv(DB_DIR_ENV, str(tmp_path / "db"))
    monkeypatch.setenv(CONFIG_DIR_ENV, str(tmp_path / "config"))
    initialize_database()
    return tmp_path


def make_item(
    item_id: int,
    name: str,
    price: Optional[int] = None,
    quantity: float = 1.0,
    unit: str = "COUNT",
    category: Optional[str] = None,
    store_id: Optional[int] = None,
) -> ShoppingListItem:
    return ShoppingListItem(
        id=item_id,
        display_name=name,
        quantity=quantity,
        unit=unit,
        planned_store_id=store_id,
        suggested_price=price,
        category=category,
    )


def make_store(store_id: int, name: str, is_favorite: bool = False, priority: int = 0) -> Store:
    return Store(id=store_id, name=name, is_favorite=is_favorite, priority=priority)


class FakeListStore:
    """
    In-memory list store with failure injection.

    fail_next: number of upcoming write calls that raise.
    fail_always: every write raises until switched off.
    """

    def __init__(self, items: Optional[List[ShoppingListItem]] = None) -> None:
        self.items: Dict[int, ShoppingListItem] = {i.id: i for i in (items or [])}
        self.deleted: List[int] = []
        self.calls: List[tuple] = []
        self.fail_next = 0
        self.fail_always = False

    def _maybe_fail(self) -> None:
        if self.fail_always:
            raise ConnectionError("list store unavailable")
        if self.fail_next > 0:
            self.fail_next -= 1
            raise ConnectionError("list store hiccup")

    def update_item(self, item_id: int, fields: Dict[str, Any]) -> Optional[ShoppingListItem]:
        self.calls.append(("update", item_id, dict(fields)))
        self._maybe_fail()
        item = self.items.get(item_id)
        if item is None:
            return None
        item = replace(item, **fields)
        self.items[item_id] = item
        return item

    def delete_item(self, item_id: int) -> bool:
        self.calls.append(("delete", item_id))
        self._maybe_fail()
        if self.items.pop(item_id, None) is None:
            return False
        self.deleted.append(item_id)
        return True

    def get_active_items(self, include_checked_off: bool = False, store_id: Optional[int] = None):
        out = list(self.items.values())
        if not include_checked_off:
            out = [i for i in out if not i.is_checked_off]
        if store_id is not None:
            out = [i for i in out if i.planned_store_id == store_id]
        return out


@pytest.fixture
def list_store():
    return FakeListStore()
