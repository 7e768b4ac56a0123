"""
Trip_Sense.data.repositories.stores_repo

SQLite-backed persistence for Store objects.
"""

from __future__ import annotations

from contextlib import closing
from datetime import datetime
from typing import List, Optional

from Trip_Sense.data.connection import get_connection
from Trip_Sense.domain.models import Store


_SELECT_COLUMNS = "id, name, address, city, postal_code, is_favorite, priority, notes"


# ---------- Row mapping helpers ----------

def _row_to_store(row) -> Store:
    (
        store_id,
        name,
        address,
        city,
        postal_code,
        is_favorite,
        priority,
        notes,
    ) = row

    return Store(
        id=store_id,
        name=name,
        address=address,
        city=city,
        postal_code=postal_code,
        is_favorite=bool(is_favorite),
        priority=priority or 0,
        notes=notes,
    )


# ---------- CRUD operations ----------

def create_store(
    name: str,
    address: Optional[str] = None,
    city: Optional[str] = None,
    postal_code: Optional[str] = None,
    is_favorite: bool = False,
    priority: int = 0,
    notes: Optional[str] = None,
) -> Store:
    """
    Insert a new store and return the Store object.
    """
    with get_connection() as conn, closing(conn.cursor()) as cur:
        cur.execute(
            """
            INSERT INTO stores (
                name, address, city, postal_code,
                is_favorite, priority, notes, created_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                name,
                address,
                city,
                postal_code,
                1 if is_favorite else 0,
                priority,
                notes,
                datetime.utcnow().isoformat(timespec="seconds"),
            ),
        )
        store_id = cur.lastrowid

        cur.execute(f"SELECT {_SELECT_COLUMNS} FROM stores WHERE id = ?", (store_id,))
        row = cur.fetchone()

    return _row_to_store(row)


def list_stores(
    only_favorites: bool = False,
    order_by_priority: bool = True,
) -> List[Store]:
    """
    Return all stores, optionally only favorites, ordered by priority then name.
    """
    where_clause = "WHERE is_favorite = 1" if only_favorites else ""
    order_clause = "ORDER BY priority DESC, name ASC" if order_by_priority else "ORDER BY name ASC"

    query = f"""
        SELECT {_SELECT_COLUMNS}
        FROM stores
        {where_clause}
        {order_clause}
    """

    with get_connection() as conn, closing(conn.cursor()) as cur:
        cur.execute(query)
        rows = cur.fetchall()

    return [_row_to_store(r) for r in rows]
