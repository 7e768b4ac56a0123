"""
Trip_Sense.data.repositories.shopping_list_repo

SQLite-backed persistence for ShoppingListItem objects.
"""

from __future__ import annotations

from contextlib import closing
from datetime import datetime
from typing import Any, Dict, List, Optional

from Trip_Sense.data.connection import get_connection
from Trip_Sense.domain.models import ShoppingListItem, Unit


_SELECT_COLUMNS = """
    id, display_name, quantity, unit,
    planned_store_id, suggested_price, category,
    added_by, added_at,
    is_checked_off, is_active, notes
"""

# Columns a caller may patch through update_item().
UPDATABLE_FIELDS = (
    "display_name",
    "quantity",
    "unit",
    "planned_store_id",
    "suggested_price",
    "category",
    "is_checked_off",
    "notes",
)


# ---------- Row mapping helpers ----------

def _row_to_shopping_item(row) -> ShoppingListItem:
    """
    Convert a SQLite row into a ShoppingListItem dataclass.
    Ordering must match _SELECT_COLUMNS.
    """
    (
        item_id,
        display_name,
        quantity,
        unit,
        planned_store_id,
        suggested_price,
        category,
        added_by,
        added_at,
        is_checked_off,
        is_active,
        notes,
    ) = row

    return ShoppingListItem(
        id=item_id,
        display_name=display_name,
        quantity=float(quantity) if quantity is not None else 1.0,
        unit=unit or Unit.COUNT.value,
        planned_store_id=planned_store_id,
        suggested_price=int(suggested_price) if suggested_price is not None else None,
        category=category,
        added_by=added_by,
        added_at=added_at,
        is_checked_off=bool(is_checked_off),
        is_active=bool(is_active),
        notes=notes,
    )


# ---------- CRUD operations ----------

def add_item(
    display_name: str,
    quantity: Optional[float] = None,
    unit: Optional[str] = None,
    planned_store_id: Optional[int] = None,
    suggested_price: Optional[int] = None,
    category: Optional[str] = None,
    added_by: Optional[str] = None,
    notes: Optional[str] = None,
) -> ShoppingListItem:
    """
    Add a new item to the shopping list and return it.
    """
    now = datetime.utcnow().isoformat(timespec="seconds")
    qty = float(quantity) if quantity and quantity > 0 else 1.0

    with get_connection() as conn, closing(conn.cursor()) as cur:
        cur.execute(
            """
            INSERT INTO shopping_list (
                display_name,
                quantity,
                unit,
                planned_store_id,
                suggested_price,
                category,
                added_by,
                added_at,
                is_checked_off,
                is_active,
                notes
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, 0, 1, ?)
            """,
            (
                display_name,
                qty,
                Unit.parse(unit).value,
                planned_store_id,
                suggested_price,
                category,
                added_by,
                now,
                notes,
            ),
        )
        new_id = cur.lastrowid

        cur.execute(
            f"SELECT {_SELECT_COLUMNS} FROM shopping_list WHERE id = ?",
            (new_id,),
        )
        row = cur.fetchone()

    return _row_to_shopping_item(row)


def get_item_by_id(item_id: int) -> Optional[ShoppingListItem]:
    """
    Fetch a single shopping list item by ID (active or not).
    """
    with get_connection() as conn, closing(conn.cursor()) as cur:
        cur.execute(
            f"SELECT {_SELECT_COLUMNS} FROM shopping_list WHERE id = ?",
            (item_id,),
        )
        row = cur.fetchone()

    return _row_to_shopping_item(row) if row else None


def list_active_items(
    include_checked_off: bool = False,
    store_id: Optional[int] = None,
) -> List[ShoppingListItem]:
    """
    List items that are still active. Optionally filter by store,
    and optionally include those already checked off.
    """
    where_clauses = ["is_active = 1"]
    params: List[Any] = []

    if not include_checked_off:
        where_clauses.append("is_checked_off = 0")

    if store_id is not None:
        where_clauses.append("planned_store_id = ?")
        params.append(store_id)

    where_sql = " AND ".join(where_clauses)

    query = f"""
        SELECT {_SELECT_COLUMNS}
        FROM shopping_list
        WHERE {where_sql}
        ORDER BY added_at ASC, id ASC
    """

    with get_connection() as conn, closing(conn.cursor()) as cur:
        cur.execute(query, params)
        rows = cur.fetchall()

    return [_row_to_shopping_item(r) for r in rows]


def update_item(item_id: int, fields: Dict[str, Any]) -> Optional[ShoppingListItem]:
    """
    Patch the given columns of one item and return the updated row.

    Unknown keys raise ValueError. Returns None if the item does not exist
    or is no longer active.
    """
    unknown = [k for k in fields if k not in UPDATABLE_FIELDS]
    if unknown:
        raise ValueError(f"Unknown shopping_list fields: {', '.join(sorted(unknown))}")

    values: Dict[str, Any] = dict(fields)
    if "unit" in values:
        values["unit"] = Unit.parse(values["unit"]).value
    if "is_checked_off" in values:
        values["is_checked_off"] = 1 if values["is_checked_off"] else 0
    if "quantity" in values:
        q = values["quantity"]
        if q is None or float(q) <= 0:
            raise ValueError("quantity must be positive")
        values["quantity"] = float(q)

    with get_connection() as conn, closing(conn.cursor()) as cur:
        cur.execute(
            "SELECT id FROM shopping_list WHERE id = ? AND is_active = 1",
            (item_id,),
        )
        if cur.fetchone() is None:
            return None

        if values:
            assignments = ", ".join(f"{col} = ?" for col in values)
            cur.execute(
                f"UPDATE shopping_list SET {assignments} WHERE id = ?",
                (*values.values(), item_id),
            )

        cur.execute(
            f"SELECT {_SELECT_COLUMNS} FROM shopping_list WHERE id = ?",
            (item_id,),
        )
        row = cur.fetchone()

    return _row_to_shopping_item(row) if row else None


def mark_checked_off(item_id: int, checked: bool = True) -> None:
    """
    Mark a shopping item as checked off (or undo).
    """
    with get_connection() as conn, closing(conn.cursor()) as cur:
        cur.execute(
            """
            UPDATE shopping_list
            SET is_checked_off = ?
            WHERE id = ?
            """,
            (1 if checked else 0, item_id),
        )


def soft_delete_item(item_id: int) -> bool:
    """
    Soft-delete an item (keep history, but hide from active list).
    Returns True if a row was affected.
    """
    with get_connection() as conn, closing(conn.cursor()) as cur:
        cur.execute(
            """
            UPDATE shopping_list
            SET is_active = 0
            WHERE id = ?
            """,
            (item_id,),
        )
        return cur.rowcount > 0


def clear_checked_off_items() -> int:
    """
    Mark all checked-off items as inactive. Useful after a completed shop.
    """
    with get_connection() as conn, closing(conn.cursor()) as cur:
        cur.execute(
            """
            UPDATE shopping_list
            SET is_active = 0
            WHERE is_checked_off = 1 AND is_active = 1
            """
        )
        return cur.rowcount
