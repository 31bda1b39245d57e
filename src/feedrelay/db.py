from __future__ import annotations

import os
import sqlite3

from .migrations import apply_migrations


def connect_db(path: str) -> sqlite3.Connection:
    if path != ":memory:":
        directory = os.path.dirname(os.path.abspath(path))
        os.makedirs(directory, exist_ok=True)
    conn = sqlite3.connect(path)
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA synchronous=NORMAL")
    conn.execute("PRAGMA busy_timeout=5000")
    apply_migrations(conn)
    return conn
