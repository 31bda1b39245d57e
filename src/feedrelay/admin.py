from __future__ import annotations

import os
import sqlite3
from datetime import datetime, timezone

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from pydantic import BaseModel

from .config import Config, ConfigError, load_config
from .models import ITEM_KINDS, Item, ItemStatus
from .storage import (
    count_items_by_status,
    get_item,
    init_db,
    list_items_by_status,
    list_source_runs,
)

app = FastAPI(title="feedrelay Admin API")


def _require_admin_token(request: Request) -> None:
    token = os.environ.get("FR_ADMIN_TOKEN")
    if not token:
        return
    if request.headers.get("X-Admin-Token") != token:
        raise HTTPException(status_code=401, detail="unauthorized")


class ItemOut(BaseModel):
    id: str
    kind: str
    title: str
    link: str
    source: str
    body: str | None = None
    media_url: str | None = None
    image_url: str | None = None
    translated_title: str | None = None
    translated_body: str | None = None
    status: str
    created_at: str
    updated_at: str


@app.get("/health")
def health() -> dict[str, object]:
    return {
        "ok": True,
        "version": _get_version(),
        "time": datetime.now(tz=timezone.utc).isoformat(),
    }


@app.get("/items", dependencies=[Depends(_require_admin_token)])
def items_list(
    kind: str = Query("news"),
    status: str = Query(ItemStatus.PENDING_REVIEW.value),
    limit: int = Query(50, ge=1, le=500),
) -> list[ItemOut]:
    _check_kind(kind)
    try:
        item_status = ItemStatus(status)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=f"unknown status: {status}") from exc
    conn = _get_conn()
    try:
        items = list_items_by_status(conn, kind, item_status, limit)
    finally:
        conn.close()
    return [_item_out(item) for item in items]


@app.get("/items/{item_id}", dependencies=[Depends(_require_admin_token)])
def items_get(item_id: str) -> ItemOut:
    conn = _get_conn()
    try:
        item = get_item(conn, item_id)
    finally:
        conn.close()
    if item is None:
        raise HTTPException(status_code=404, detail="item_not_found")
    return _item_out(item)


@app.get("/stats", dependencies=[Depends(_require_admin_token)])
def stats(kind: str = Query("news")) -> dict[str, object]:
    _check_kind(kind)
    conn = _get_conn()
    try:
        counts = count_items_by_status(conn, kind)
    finally:
        conn.close()
    return {"kind": kind, "counts": counts, "total": sum(counts.values())}


@app.get("/sources/runs", dependencies=[Depends(_require_admin_token)])
def source_runs(
    kind: str | None = Query(None),
    limit: int = Query(50, ge=1, le=500),
) -> list[dict[str, object]]:
    if kind is not None:
        _check_kind(kind)
    conn = _get_conn()
    try:
        return list_source_runs(conn, kind=kind, limit=limit)
    finally:
        conn.close()


def _check_kind(kind: str) -> None:
    if kind not in ITEM_KINDS:
        raise HTTPException(status_code=400, detail=f"unknown kind: {kind}")


def _item_out(item: Item) -> ItemOut:
    return ItemOut(
        id=item.id,
        kind=item.kind,
        title=item.title,
        link=item.link,
        source=item.source,
        body=item.body,
        media_url=item.media_url,
        image_url=item.image_url,
        translated_title=item.translated_title,
        translated_body=item.translated_body,
        status=item.status.value,
        created_at=item.created_at,
        updated_at=item.updated_at,
    )


def _load_config() -> Config:
    try:
        return load_config()
    except ConfigError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc


def _get_conn() -> sqlite3.Connection:
    return init_db(_load_config().paths.state_db)


def _get_version() -> str:
    from importlib.metadata import PackageNotFoundError, version

    try:
        return version("feedrelay")
    except PackageNotFoundError:
        return "unknown"
