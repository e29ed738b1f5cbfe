"""
db.py
SQLite helpers + initialization (creates DB/tables).
"""

from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone

from config import settings

logger = logging.getLogger(__name__)

DB_FILE = settings.DB_FILE


@contextmanager
def get_conn():
    conn = sqlite3.connect(DB_FILE, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    try:
        yield conn
        conn.commit()
    finally:
        conn.close()


def execute(sql: str, params: tuple = (), conn: sqlite3.Connection | None = None) -> int:
    # an open connection joins the caller's transaction
    if conn is not None:
        return conn.execute(sql, params).lastrowid
    with get_conn() as conn:
        cur = conn.execute(sql, params)
        return cur.lastrowid


def fetch_one(sql: str, params: tuple = ()):
    with get_conn() as conn:
        cur = conn.execute(sql, params)
        return cur.fetchone()


def fetch_all(sql: str, params: tuple = ()) -> list[sqlite3.Row]:
    with get_conn() as conn:
        cur = conn.execute(sql, params)
        return cur.fetchall()


def timestamp() -> str:
    """Server-assigned audit timestamp (UTC, seconds)."""
    return datetime.now(timezone.utc).replace(tzinfo=None).isoformat(timespec="seconds")


def _create_tables() -> None:
    execute(
        """
        CREATE TABLE IF NOT EXISTS clients (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT NOT NULL,
            phone TEXT NOT NULL,
            email TEXT,
            employee_id INTEGER,
            created_at TEXT NOT NULL
        )
        """
    )

    # No ON DELETE CASCADE: removing a client leaves its subscriptions alone
    execute(
        """
        CREATE TABLE IF NOT EXISTS subscriptions (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            client_id INTEGER NOT NULL,
            employee_id INTEGER,
            plan_type TEXT NOT NULL CHECK(plan_type IN ('monthly','quarterly','semiannual','annual')),
            price REAL NOT NULL CHECK(price >= 0),
            start_date TEXT NOT NULL,
            end_date TEXT NOT NULL,
            status TEXT NOT NULL CHECK(status IN ('active','suspended','expired','cancelled')),
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            FOREIGN KEY(client_id) REFERENCES clients(id)
        )
        """
    )

    execute(
        """
        CREATE TABLE IF NOT EXISTS payments (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            subscription_id INTEGER,
            client_id INTEGER NOT NULL,
            amount REAL NOT NULL CHECK(amount > 0),
            kind TEXT NOT NULL CHECK(kind IN ('payment','refund')),
            date TEXT NOT NULL,
            description TEXT
        )
        """
    )

    # properties holds a JSON object: changed fields as [old, new], or a snapshot
    execute(
        """
        CREATE TABLE IF NOT EXISTS activity (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            subject_type TEXT NOT NULL,
            subject_id INTEGER NOT NULL,
            event TEXT NOT NULL CHECK(event IN ('created','updated','deleted')),
            description TEXT NOT NULL,
            properties TEXT NOT NULL DEFAULT '{}',
            created_at TEXT NOT NULL
        )
        """
    )


def init_db() -> None:
    """
    Initialize the database.
    - Create tables (idempotent)
    """
    DB_FILE.parent.mkdir(parents=True, exist_ok=True)
    _create_tables()
    logger.debug("Database ready at %s", DB_FILE)
