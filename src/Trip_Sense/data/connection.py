"""
Trip_Sense.data.connection

SQLite connection utilities for the Trip Sense backend.
Stores the database inside src/Trip_Sense/data/db/ unless TRIP_SENSE_DB_DIR
points somewhere else.
"""

from __future__ import annotations

import os
import sqlite3
from pathlib import Path
from typing import Optional

# Name of the SQLite file
DB_FILENAME = "Trip_Sense.db"
DB_DIR_ENV = "TRIP_SENSE_DB_DIR"


def get_db_path(base_dir: Optional[Path] = None) -> Path:
    """
    Return the full path to the DB file.

    Resolution order: explicit base_dir, the TRIP_SENSE_DB_DIR env var, then
    the 'db' directory next to this file:
        src/Trip_Sense/data/db/Trip_Sense.db
    """
    if base_dir is None:
        override = os.environ.get(DB_DIR_ENV)
        base_dir = Path(override) if override else Path(__file__).resolve().parent / "db"
    else:
        base_dir = Path(base_dir)

    base_dir.mkdir(parents=True, exist_ok=True)
    return base_dir / DB_FILENAME


def get_connection(base_dir: Optional[Path] = None) -> sqlite3.Connection:
    """
    Open a SQLite connection to our DB.

    Used as `with get_connection() as conn:`, which commits on success and
    rolls back on error.
    """
    db_path = get_db_path(base_dir)
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    return conn
