from __future__ import annotations

import logging
import sqlite3
from typing import Callable

from .utils import utc_now_iso

Migration = Callable[[sqlite3.Connection], None]


def apply_migrations(conn: sqlite3.Connection) -> None:
    logger = logging.getLogger("feedrelay.migrations")
    conn.execute("BEGIN IMMEDIATE")
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS schema_migrations (
            version TEXT PRIMARY KEY,
            applied_at TEXT NOT NULL
        )
        """
    )
    applied = {
        row[0]
        for row in conn.execute("SELECT version FROM schema_migrations").fetchall()
    }
    try:
        for version, migration in _get_migrations():
            if version in applied:
                logger.debug("migration_skipped version=%s", version)
                continue
            migration(conn)
            conn.execute(
                "INSERT OR IGNORE INTO schema_migrations (version, applied_at) VALUES (?, ?)",
                (version, utc_now_iso()),
            )
            logger.info("migration_applied version=%s", version)
        conn.commit()
    except Exception:
        conn.rollback()
        raise


def _migration_initial_schema(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS items (
            id TEXT PRIMARY KEY,
            kind TEXT NOT NULL,
            title TEXT NOT NULL,
            link TEXT NOT NULL,
            source TEXT NOT NULL DEFAULT '',
            body TEXT NULL,
            media_url TEXT NULL,
            image_url TEXT NULL,
            translated_title TEXT NULL,
            translated_body TEXT NULL,
            status TEXT NOT NULL,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
        """
    )
    conn.execute(
        """
        CREATE INDEX IF NOT EXISTS idx_items_kind_status_created
        ON items (kind, status, created_at)
        """
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_items_kind_created ON items (kind, created_at)"
    )


def _migration_source_runs(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS source_runs (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            kind TEXT NOT NULL,
            source TEXT NOT NULL,
            started_at TEXT NOT NULL,
            finished_at TEXT NULL,
            status TEXT NOT NULL,
            items_found INTEGER NOT NULL DEFAULT 0,
            items_inserted INTEGER NOT NULL DEFAULT 0,
            skipped_duplicates INTEGER NOT NULL DEFAULT 0,
            skipped_invalid INTEGER NOT NULL DEFAULT 0,
            error TEXT NULL
        )
        """
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_source_runs_source ON source_runs (kind, source, started_at)"
    )


def _get_migrations() -> list[tuple[str, Migration]]:
    return [
        ("001_initial_schema", _migration_initial_schema),
        ("002_source_runs", _migration_source_runs),
    ]
