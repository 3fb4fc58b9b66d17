"""
storage/migrations.py

v2: failure_counters table for failed-login threshold rules.
v3: users table backing SqliteUserDirectory.
"""

from __future__ import annotations

import logging
import time
from typing import Callable

from .database import Database

logger = logging.getLogger(__name__)


def migration_2(cur) -> None:
    """Failed-login counters with per-row expiry."""
    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS failure_counters (
            kind       TEXT NOT NULL,
            key        TEXT NOT NULL,
            count      INTEGER NOT NULL,
            expires_at REAL NOT NULL,
            PRIMARY KEY (kind, key)
        )
        """
    )


def migration_3(cur) -> None:
    """Platform users, for USERNAME conditions and username recipients."""
    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS users (
            user_id    INTEGER PRIMARY KEY,
            login      TEXT NOT NULL UNIQUE,
            email      TEXT NOT NULL DEFAULT '',
            first_name TEXT NOT NULL DEFAULT '',
            last_name  TEXT NOT NULL DEFAULT '',
            roles      TEXT NOT NULL DEFAULT '[]'
        )
        """
    )


_MIGRATIONS: list[tuple[int, Callable]] = [
    (2, migration_2),
    (3, migration_3),
]


def apply_migrations(db: Database) -> None:
    with db.lock:
        cur = db.conn.cursor()
        cur.execute("SELECT MAX(version) FROM schema_version")
        row = cur.fetchone()
        current_version: int = row[0] if row[0] is not None else 0

        pending = [(v, fn) for v, fn in _MIGRATIONS if v > current_version]
        if not pending:
            logger.debug("No pending migrations (current schema version=%d)", current_version)
            return

        for version, migration_fn in pending:
            logger.info("Applying migration v%d …", version)
            try:
                migration_fn(cur)
                cur.execute(
                    "INSERT OR REPLACE INTO schema_version (version, applied_at) VALUES (?, ?)",
                    (version, time.time()),
                )
                db.conn.commit()
                logger.info("Migration v%d applied successfully", version)
            except Exception as exc:
                db.conn.rollback()
                logger.error("Migration v%d FAILED: %s — rolling back", version, exc)
                raise
