from __future__ import annotations

import sqlite3
from typing import Any, Iterable

from .db import connect_db
from .models import (
    Candidate,
    InsertOutcome,
    Item,
    ItemStatus,
    can_transition,
)
from .utils import fingerprint, utc_now_iso, utc_now_iso_offset

ITEM_COLUMNS = (
    "id, kind, title, link, source, body, media_url, image_url, "
    "translated_title, translated_body, status, created_at, updated_at"
)

MUTABLE_FIELDS = {
    "body",
    "media_url",
    "image_url",
    "translated_title",
    "translated_body",
    "status",
}


class ItemNotFoundError(LookupError):
    pass


class InvalidTransitionError(ValueError):
    pass


def init_db(path: str) -> sqlite3.Connection:
    return connect_db(path)


def insert_item(
    conn: sqlite3.Connection,
    kind: str,
    candidate: Candidate,
    initial_status: ItemStatus,
    now: str | None = None,
) -> str:
    outcomes = insert_items(conn, kind, [candidate], initial_status, now=now)
    return outcomes[0].item_id


def insert_items(
    conn: sqlite3.Connection,
    kind: str,
    candidates: Iterable[Candidate],
    initial_status: ItemStatus,
    now: str | None = None,
) -> list[InsertOutcome]:
    outcomes: list[InsertOutcome] = []
    try:
        for candidate in candidates:
            item_id = fingerprint(candidate.title, candidate.link)
            existing = conn.execute("SELECT 1 FROM items WHERE id = ?", (item_id,)).fetchone()
            if existing:
                outcomes.append(InsertOutcome(item_id=item_id, inserted=False))
                continue
            created_at = now or utc_now_iso()
            conn.execute(
                """
                INSERT INTO items
                    (id, kind, title, link, source, body, status, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    item_id,
                    kind,
                    candidate.title,
                    candidate.link,
                    candidate.source or "",
                    candidate.artist,
                    ItemStatus(initial_status).value,
                    created_at,
                    created_at,
                ),
            )
            outcomes.append(InsertOutcome(item_id=item_id, inserted=True))
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    return outcomes


def get_item(conn: sqlite3.Connection, item_id: str) -> Item | None:
    row = conn.execute(
        f"SELECT {ITEM_COLUMNS} FROM items WHERE id = ?",
        (item_id,),
    ).fetchone()
    if not row:
        return None
    return _row_to_item(row)


def list_items_by_status(
    conn: sqlite3.Connection, kind: str, status: ItemStatus, limit: int = 100
) -> list[Item]:
    cursor = conn.execute(
        f"""
        SELECT {ITEM_COLUMNS}
        FROM items
        WHERE kind = ? AND status = ?
        ORDER BY created_at DESC, rowid DESC
        LIMIT ?
        """,
        (kind, ItemStatus(status).value, limit),
    )
    return [_row_to_item(row) for row in cursor.fetchall()]


def list_items_by_status_since(
    conn: sqlite3.Connection,
    kind: str,
    status: ItemStatus,
    window_seconds: int,
    limit: int = 100,
) -> list[Item]:
    cutoff = utc_now_iso_offset(seconds=-window_seconds)
    cursor = conn.execute(
        f"""
        SELECT {ITEM_COLUMNS}
        FROM items
        WHERE kind = ? AND status = ? AND created_at >= ?
        ORDER BY created_at DESC, rowid DESC
        LIMIT ?
        """,
        (kind, ItemStatus(status).value, cutoff, limit),
    )
    return [_row_to_item(row) for row in cursor.fetchall()]


def update_item_fields(conn: sqlite3.Connection, item_id: str, **fields: Any) -> None:
    unknown = sorted(set(fields) - MUTABLE_FIELDS)
    if unknown:
        raise ValueError(f"immutable_or_unknown_fields:{','.join(unknown)}")
    current = get_item(conn, item_id)
    if current is None:
        raise ItemNotFoundError(item_id)
    assignments: list[str] = []
    values: list[Any] = []
    for name in sorted(fields):
        value = fields[name]
        if name == "status":
            target = ItemStatus(value)
            if target != current.status and not can_transition(current.status, target):
                raise InvalidTransitionError(
                    f"{item_id}: {current.status.value} -> {target.value}"
                )
            value = target.value
        assignments.append(f"{name} = ?")
        values.append(value)
    assignments.append("updated_at = ?")
    values.append(utc_now_iso())
    cursor = conn.execute(
        f"UPDATE items SET {', '.join(assignments)} WHERE id = ? AND status = ?",
        (*values, item_id, current.status.value),
    )
    if cursor.rowcount == 0:
        conn.rollback()
        raise InvalidTransitionError(f"{item_id}: status changed concurrently")
    conn.commit()


def set_status(conn: sqlite3.Connection, item_id: str, status: ItemStatus) -> None:
    update_item_fields(conn, item_id, status=status)


def set_detail(
    conn: sqlite3.Connection,
    item_id: str,
    *,
    body: str | None = None,
    media_url: str | None = None,
    image_url: str | None = None,
) -> None:
    fields = {
        name: value
        for name, value in (("body", body), ("media_url", media_url), ("image_url", image_url))
        if value
    }
    if not fields:
        return
    update_item_fields(conn, item_id, **fields)


def set_translation(
    conn: sqlite3.Connection,
    item_id: str,
    *,
    translated_title: str,
    translated_body: str,
    status: ItemStatus,
) -> None:
    update_item_fields(
        conn,
        item_id,
        translated_title=translated_title,
        translated_body=translated_body,
        status=status,
    )


def apply_review_verdicts(
    conn: sqlite3.Connection, item_ids: list[str], accepted_ids: set[str]
) -> tuple[list[str], list[str]]:
    accepted: list[str] = []
    rejected: list[str] = []
    now = utc_now_iso()
    try:
        for item_id in item_ids:
            if item_id in accepted_ids:
                target = ItemStatus.PENDING_TRANSLATION
            else:
                target = ItemStatus.REJECTED
            cursor = conn.execute(
                "UPDATE items SET status = ?, updated_at = ? WHERE id = ? AND status = ?",
                (target.value, now, item_id, ItemStatus.PENDING_REVIEW.value),
            )
            if cursor.rowcount == 0:
                if get_item(conn, item_id) is None:
                    raise ItemNotFoundError(item_id)
                raise InvalidTransitionError(f"{item_id}: no longer pending_review")
            if target == ItemStatus.PENDING_TRANSLATION:
                accepted.append(item_id)
            else:
                rejected.append(item_id)
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    return accepted, rejected


def count_items_by_status(conn: sqlite3.Connection, kind: str) -> dict[str, int]:
    counts = {status.value: 0 for status in ItemStatus}
    cursor = conn.execute(
        "SELECT status, COUNT(*) FROM items WHERE kind = ? GROUP BY status",
        (kind,),
    )
    for status, total in cursor.fetchall():
        counts[status] = int(total)
    return counts


def count_items(conn: sqlite3.Connection, kind: str) -> int:
    row = conn.execute("SELECT COUNT(*) FROM items WHERE kind = ?", (kind,)).fetchone()
    return int(row[0]) if row else 0


def cleanup_old_records(conn: sqlite3.Connection, kind: str, keep_count: int) -> int:
    if keep_count <= 0:
        raise ValueError("keep_count must be positive")
    row = conn.execute(
        """
        SELECT created_at FROM items
        WHERE kind = ?
        ORDER BY created_at DESC
        LIMIT 1 OFFSET ?
        """,
        (kind, keep_count - 1),
    ).fetchone()
    if not row:
        return 0
    try:
        cursor = conn.execute(
            "DELETE FROM items WHERE kind = ? AND created_at < ?",
            (kind, row[0]),
        )
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    return cursor.rowcount


def record_source_run(
    conn: sqlite3.Connection,
    *,
    kind: str,
    source: str,
    started_at: str,
    finished_at: str | None,
    status: str,
    items_found: int,
    items_inserted: int,
    skipped_duplicates: int,
    skipped_invalid: int,
    error: str | None,
) -> None:
    conn.execute(
        """
        INSERT INTO source_runs
            (kind, source, started_at, finished_at, status, items_found, items_inserted,
             skipped_duplicates, skipped_invalid, error)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            kind,
            source,
            started_at,
            finished_at,
            status,
            items_found,
            items_inserted,
            skipped_duplicates,
            skipped_invalid,
            error,
        ),
    )
    conn.commit()


def list_source_runs(
    conn: sqlite3.Connection, kind: str | None = None, limit: int = 50
) -> list[dict[str, object]]:
    if kind:
        cursor = conn.execute(
            """
            SELECT kind, source, started_at, finished_at, status, items_found,
                   items_inserted, skipped_duplicates, skipped_invalid, error
            FROM source_runs
            WHERE kind = ?
            ORDER BY id DESC
            LIMIT ?
            """,
            (kind, limit),
        )
    else:
        cursor = conn.execute(
            """
            SELECT kind, source, started_at, finished_at, status, items_found,
                   items_inserted, skipped_duplicates, skipped_invalid, error
            FROM source_runs
            ORDER BY id DESC
            LIMIT ?
            """,
            (limit,),
        )
    runs: list[dict[str, object]] = []
    for row in cursor.fetchall():
        (
            run_kind,
            source,
            started_at,
            finished_at,
            status,
            items_found,
            items_inserted,
            skipped_duplicates,
            skipped_invalid,
            error,
        ) = row
        runs.append(
            {
                "kind": run_kind,
                "source": source,
                "started_at": started_at,
                "finished_at": finished_at,
                "status": status,
                "items_found": items_found,
                "items_inserted": items_inserted,
                "skipped_duplicates": skipped_duplicates,
                "skipped_invalid": skipped_invalid,
                "error": error,
            }
        )
    return runs


def _row_to_item(row: tuple) -> Item:
    (
        item_id,
        kind,
        title,
        link,
        source,
        body,
        media_url,
        image_url,
        translated_title,
        translated_body,
        status,
        created_at,
        updated_at,
    ) = row
    return Item(
        id=item_id,
        kind=kind,
        title=title,
        link=link,
        source=source or "",
        body=body,
        media_url=media_url,
        image_url=image_url,
        translated_title=translated_title,
        translated_body=translated_body,
        status=ItemStatus(status),
        created_at=created_at,
        updated_at=updated_at,
    )
