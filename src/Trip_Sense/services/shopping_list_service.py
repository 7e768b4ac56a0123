"""
Trip_Sense.services.shopping_list_service

Service layer for shopping list behavior.

This wraps the shopping_list_repo (SQLite) and provides higher-level
operations. It is also the persistence layer the trip session talks to
(through the PersistenceOutbox): read-all, patch-by-id and delete-by-id.
"""

from __future__ import annotations

import logging
import re
from dataclasses import asdict
from typing import Any, Dict, List, Optional, Tuple

from Trip_Sense.data.repositories.shopping_list_repo import (
    add_item,
    clear_checked_off_items,
    get_item_by_id,
    list_active_items,
    mark_checked_off,
    soft_delete_item,
    update_item as repo_update_item,
)
from Trip_Sense.domain.models import ShoppingListItem, Unit

logger = logging.getLogger(__name__)


_re_qty_prefix = re.compile(r"^(\d+(?:\.\d+)?)(?:\s*[x×]\s+|[x×](?=[a-z])|\s+)(\S.*)$", re.IGNORECASE)
_re_qty_suffix = re.compile(r"^(\S.*?)\s+[x×]\s*(\d+(?:\.\d+)?)$", re.IGNORECASE)


def parse_quantity_prefix(text: str) -> Tuple[str, float, Optional[str]]:
    """
    Split "2x milk", "3 apples", "1.5 lb chicken" or "eggs x2" into
    (name, quantity, unit). Quantity defaults to 1, unit to None.
    """
    cleaned = " ".join((text or "").split())
    if not cleaned:
        return "", 1.0, None

    qty = 1.0
    rest = cleaned
    m = _re_qty_prefix.match(cleaned)
    if m:
        qty = float(m.group(1))
        rest = m.group(2)
    else:
        m = _re_qty_suffix.match(cleaned)
        if m:
            rest = m.group(1)
            qty = float(m.group(2))

    unit: Optional[str] = None
    parts = rest.split(" ", 1)
    if len(parts) == 2:
        maybe_unit = Unit.try_parse(parts[0])
        if maybe_unit is not None:
            unit = maybe_unit.value
            rest = parts[1]

    if qty <= 0:
        qty = 1.0
    return rest, qty, unit


class ShoppingListService:
    """
    High-level shopping list operations.
    Callers should use this instead of talking to the repository directly.
    """

    # ---------- Basic list operations ----------

    def add_single_item(
        self,
        name: str,
        quantity: Optional[float] = None,
        unit: Optional[str] = None,
        planned_store_id: Optional[int] = None,
        suggested_price: Optional[int] = None,
        category: Optional[str] = None,
        added_by: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> ShoppingListItem:
        """
        Add a single item to the shopping list.
        """
        cleaned_name = self._normalize_name(name)
        if not cleaned_name:
            raise ValueError("Item name must not be empty")

        return add_item(
            display_name=cleaned_name,
            quantity=quantity,
            unit=unit,
            planned_store_id=planned_store_id,
            suggested_price=suggested_price,
            category=category,
            added_by=added_by,
            notes=notes,
        )

    def add_items_from_text(
        self,
        text: str,
        planned_store_id: Optional[int] = None,
        added_by: Optional[str] = None,
    ) -> List[ShoppingListItem]:
        """
        Parse a comma-separated text input (e.g. 'apples, 2x milk, 1.5 lb chicken')
        into multiple shopping list entries.

          - split by commas
          - ignore empty segments
          - a leading number (optionally followed by 'x' and a unit) is the quantity
        """
        if not text:
            return []

        created_items: List[ShoppingListItem] = []
        for part in text.split(","):
            name, qty, unit = parse_quantity_prefix(part)
            if not name:
                continue
            created_items.append(
                self.add_single_item(
                    name=name,
                    quantity=qty,
                    unit=unit,
                    planned_store_id=planned_store_id,
                    added_by=added_by,
                )
            )

        return created_items

    def get_item(self, item_id: int) -> Optional[ShoppingListItem]:
        return get_item_by_id(item_id)

    def get_active_items(
        self,
        include_checked_off: bool = False,
        store_id: Optional[int] = None,
    ) -> List[ShoppingListItem]:
        """
        Return the list of active shopping list items.
        """
        return list_active_items(
            include_checked_off=include_checked_off,
            store_id=store_id,
        )

    def get_active_items_grouped_by_store(
        self,
    ) -> Dict[Optional[int], List[ShoppingListItem]]:
        """
        Return active items grouped by planned_store_id.
        """
        grouped: Dict[Optional[int], List[ShoppingListItem]] = {}
        for item in list_active_items(include_checked_off=False, store_id=None):
            grouped.setdefault(item.planned_store_id, []).append(item)
        return grouped

    def check_off_item(self, item_id: int, checked: bool = True) -> None:
        mark_checked_off(item_id, checked)

    def update_item(self, item_id: int, fields: Dict[str, Any]) -> Optional[ShoppingListItem]:
        """
        Patch an item (completion flag, notes, assigned store, price, name,
        quantity, unit). Returns None when the item is gone.
        """
        if "display_name" in fields:
            fields = dict(fields)
            fields["display_name"] = self._normalize_name(fields["display_name"])
            if not fields["display_name"]:
                raise ValueError("Item name must not be empty")
        updated = repo_update_item(item_id, fields)
        if updated is None:
            logger.debug("update_item: item %s not found or inactive", item_id)
        return updated

    def delete_item(self, item_id: int) -> bool:
        """
        Remove an item from the active list (soft delete).
        """
        return soft_delete_item(item_id)

    def clear_checked_off(self) -> int:
        """
        Soft-delete (deactivate) any checked-off items.
        Returns the number cleared.
        """
        return clear_checked_off_items()

    def export_active_items_as_dicts(
        self,
        include_checked_off: bool = False,
        store_id: Optional[int] = None,
    ) -> List[Dict]:
        """
        Convenience method for export. Returns list of dicts.
        """
        items = self.get_active_items(include_checked_off=include_checked_off, store_id=store_id)
        return [asdict(i) for i in items]

    # ---------- Utility ----------

    @staticmethod
    def _normalize_name(name: str) -> str:
        if not name:
            return ""
        return " ".join(str(name).split())
