"""
Trip_Sense.data.repositories.deals_repo

SQLite-backed persistence for store promotions (Deal objects).

Deals are read-only to the trip engine; this module exists so the demo
harness and admin tooling can seed and inspect the local deal table.
"""

from __future__ import annotations

import logging
from contextlib import closing
from datetime import date
from typing import Any, List, Optional

from Trip_Sense.data.connection import get_connection
from Trip_Sense.domain.models import Deal, DealMechanism

logger = logging.getLogger(__name__)


_SELECT_COLUMNS = """
    id, store_id, product_name, category, mechanism,
    sale_price, regular_price, percent_off, spend_threshold, buy_quantity,
    start_date, end_date, description
"""


# ---------- Row mapping helpers ----------

def _parse_date(value: Optional[str]) -> Optional[date]:
    if not value:
        return None
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        return None


def _row_to_deal(row) -> Optional[Deal]:
    (
        deal_id,
        store_id,
        product_name,
        category,
        mechanism,
        sale_price,
        regular_price,
        percent_off,
        spend_threshold,
        buy_quantity,
        start_date,
        end_date,
        description,
    ) = row

    try:
        mech = DealMechanism(mechanism)
    except ValueError:
        logger.warning("Skipping deal %s with unknown mechanism %r", deal_id, mechanism)
        return None

    return Deal(
        id=deal_id,
        product_name=product_name,
        mechanism=mech,
        store_id=store_id,
        category=category,
        sale_price=sale_price,
        regular_price=regular_price,
        percent_off=percent_off,
        spend_threshold=spend_threshold,
        buy_quantity=buy_quantity,
        start_date=_parse_date(start_date),
        end_date=_parse_date(end_date),
        description=description,
    )


# ---------- CRUD operations ----------

def add_deal(
    product_name: str,
    mechanism: DealMechanism = DealMechanism.SALE_PRICE,
    store_id: Optional[int] = None,
    category: Optional[str] = None,
    sale_price: Optional[int] = None,
    regular_price: Optional[int] = None,
    percent_off: Optional[float] = None,
    spend_threshold: Optional[int] = None,
    buy_quantity: Optional[int] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    description: Optional[str] = None,
) -> Deal:
    """
    Insert a promotion and return it.
    """
    with get_connection() as conn, closing(conn.cursor()) as cur:
        cur.execute(
            """
            INSERT INTO store_deals (
                store_id, product_name, category, mechanism,
                sale_price, regular_price, percent_off, spend_threshold, buy_quantity,
                start_date, end_date, description
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                store_id,
                product_name,
                category,
                DealMechanism(mechanism).value,
                sale_price,
                regular_price,
                percent_off,
                spend_threshold,
                buy_quantity,
                start_date.isoformat() if start_date else None,
                end_date.isoformat() if end_date else None,
                description,
            ),
        )
        new_id = cur.lastrowid

        cur.execute(f"SELECT {_SELECT_COLUMNS} FROM store_deals WHERE id = ?", (new_id,))
        row = cur.fetchone()

    return _row_to_deal(row)


def get_deal_by_id(deal_id: int) -> Optional[Deal]:
    with get_connection() as conn, closing(conn.cursor()) as cur:
        cur.execute(f"SELECT {_SELECT_COLUMNS} FROM store_deals WHERE id = ?", (deal_id,))
        row = cur.fetchone()

    return _row_to_deal(row) if row else None


def list_deals_for_store(
    store_id: Optional[int],
    on_date: Optional[date] = None,
    include_global: bool = True,
) -> List[Deal]:
    """
    Deals for one retailer, optionally including store-agnostic ones
    (store_id IS NULL), restricted to those valid on on_date when given.

    Open-ended validity windows (NULL start or end) always match.
    """
    where_clauses: List[str] = []
    params: List[Any] = []

    if store_id is None:
        where_clauses.append("store_id IS NULL")
    elif include_global:
        where_clauses.append("(store_id = ? OR store_id IS NULL)")
        params.append(store_id)
    else:
        where_clauses.append("store_id = ?")
        params.append(store_id)

    if on_date is not None:
        d = on_date.isoformat()
        where_clauses.append("(start_date IS NULL OR start_date <= ?)")
        where_clauses.append("(end_date IS NULL OR end_date >= ?)")
        params.extend([d, d])

    query = f"""
        SELECT {_SELECT_COLUMNS}
        FROM store_deals
        WHERE {" AND ".join(where_clauses)}
        ORDER BY id ASC
    """

    with get_connection() as conn, closing(conn.cursor()) as cur:
        cur.execute(query, params)
        rows = cur.fetchall()

    deals = [_row_to_deal(r) for r in rows]
    return [d for d in deals if d is not None]


def delete_expired_deals(before: date) -> int:
    """
    Remove deals whose end_date is strictly before the given date.
    """
    with get_connection() as conn, closing(conn.cursor()) as cur:
        cur.execute(
            "DELETE FROM store_deals WHERE end_date IS NOT NULL AND end_date < ?",
            (before.isoformat(),),
        )
        return cur.rowcount
