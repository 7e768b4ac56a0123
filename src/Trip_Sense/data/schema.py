"""
Trip_Sense.data.schema

SQLite schema definition and initialization for the Trip Sense backend.
"""

from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Optional


def create_tables(conn: sqlite3.Connection) -> None:
    """
    Create all tables if they do not exist.

    Run this once at startup (safe to call multiple times).
    """
    cur = conn.cursor()

    # --- stores ---
    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS stores (
            id              INTEGER PRIMARY KEY AUTOINCREMENT,
            name            TEXT NOT NULL,
            address         TEXT,
            city            TEXT,
            postal_code     TEXT,
            is_favorite     INTEGER NOT NULL DEFAULT 0,
            priority        INTEGER NOT NULL DEFAULT 0,
            notes           TEXT,
            created_at      TEXT NOT NULL DEFAULT (datetime('now'))
        );
        """
    )
    cur.execute(
        "CREATE INDEX IF NOT EXISTS idx_stores_name ON stores(name);"
    )

    # --- shopping_list ---
    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS shopping_list (
            id               INTEGER PRIMARY KEY AUTOINCREMENT,
            display_name     TEXT NOT NULL,     -- what user typed/spoke
            quantity         REAL NOT NULL DEFAULT 1,
            unit             TEXT NOT NULL DEFAULT 'COUNT',
            planned_store_id INTEGER,           -- nullable, NULL = unassigned / deferred
            suggested_price  INTEGER,           -- unit price in cents
            category         TEXT,              -- free-text hint
            added_by         TEXT,
            added_at         TEXT NOT NULL DEFAULT (datetime('now')),
            is_checked_off   INTEGER NOT NULL DEFAULT 0,  -- 0/1
            is_active        INTEGER NOT NULL DEFAULT 1,  -- 0/1
            notes            TEXT,
            FOREIGN KEY (planned_store_id) REFERENCES stores(id) ON DELETE SET NULL
        );
        """
    )
    cur.execute(
        """
        CREATE INDEX IF NOT EXISTS idx_shopping_list_active
        ON shopping_list(is_active, planned_store_id);
        """
    )

    # --- store_deals ---
    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS store_deals (
            id              INTEGER PRIMARY KEY AUTOINCREMENT,
            store_id        INTEGER,            -- NULL = valid at any retailer
            product_name    TEXT NOT NULL,
            category        TEXT,
            mechanism       TEXT NOT NULL DEFAULT 'sale_price',
            sale_price      INTEGER,            -- cents
            regular_price   INTEGER,            -- cents
            percent_off     REAL,
            spend_threshold INTEGER,            -- cents
            buy_quantity    INTEGER,
            start_date      TEXT,               -- 'YYYY-MM-DD'
            end_date        TEXT,
            description     TEXT,
            created_at      TEXT NOT NULL DEFAULT (datetime('now')),
            FOREIGN KEY (store_id) REFERENCES stores(id) ON DELETE CASCADE
        );
        """
    )
    cur.execute(
        """
        CREATE INDEX IF NOT EXISTS idx_store_deals_store_dates
        ON store_deals(store_id, start_date, end_date);
        """
    )

    # --- loyalty_terms ---
    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS loyalty_terms (
            store_id     INTEGER PRIMARY KEY,
            percent_off  REAL NOT NULL,
            member_id    TEXT,
            updated_at   TEXT NOT NULL DEFAULT (datetime('now')),
            FOREIGN KEY (store_id) REFERENCES stores(id) ON DELETE CASCADE
        );
        """
    )

    conn.commit()


def initialize_database(base_dir: Optional[Path] = None) -> None:
    """
    Convenience helper: open a connection, create tables, close it.

    Call this once at startup (demo harness, tests).
    """
    from .connection import get_connection  # local import to avoid cycles

    conn = get_connection(base_dir)
    try:
        create_tables(conn)
    finally:
        conn.close()
