"""
Trip_Sense.data.repositories.loyalty_repo

Per-store loyalty program terms (one row per store).
"""

from __future__ import annotations

from contextlib import closing
from typing import Optional

from Trip_Sense.data.connection import get_connection
from Trip_Sense.domain.models import LoyaltyTerms


def set_loyalty_terms(store_id: int, percent_off: float, member_id: Optional[str] = None) -> LoyaltyTerms:
    """
    Insert or replace the loyalty terms for a store.
    """
    with get_connection() as conn, closing(conn.cursor()) as cur:
        cur.execute(
            """
            INSERT INTO loyalty_terms (store_id, percent_off, member_id, updated_at)
            VALUES (?, ?, ?, datetime('now'))
            ON CONFLICT(store_id) DO UPDATE SET
                percent_off = excluded.percent_off,
                member_id = excluded.member_id,
                updated_at = excluded.updated_at
            """,
            (store_id, float(percent_off), member_id),
        )
    return LoyaltyTerms(store_id=store_id, percent_off=float(percent_off), member_id=member_id)


def get_loyalty_terms(store_id: int) -> Optional[LoyaltyTerms]:
    with get_connection() as conn, closing(conn.cursor()) as cur:
        cur.execute(
            "SELECT store_id, percent_off, member_id FROM loyalty_terms WHERE store_id = ?",
            (store_id,),
        )
        row = cur.fetchone()

    if not row:
        return None
    return LoyaltyTerms(store_id=row[0], percent_off=float(row[1]), member_id=row[2])


def delete_loyalty_terms(store_id: int) -> None:
    with get_connection() as conn, closing(conn.cursor()) as cur:
        cur.execute("DELETE FROM loyalty_terms WHERE store_id = ?", (store_id,))
