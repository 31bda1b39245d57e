from __future__ import annotations

import dataclasses
import logging
import sqlite3
import time
from typing import Callable

from ..config import Config, ConfigError
from ..filters import blocked_keywords
from ..ingest import FetchError
from ..models import (
    ContentSource,
    Item,
    ItemStatus,
    Publisher,
    Reviewer,
    StageReport,
    Translator,
)
from ..publish import PublishError
from ..storage import (
    InvalidTransitionError,
    ItemNotFoundError,
    apply_review_verdicts,
    cleanup_old_records,
    get_item,
    insert_items,
    list_items_by_status,
    list_items_by_status_since,
    record_source_run,
    set_detail,
    set_status,
    set_translation,
)
from ..utils import log_event, utc_now_iso
from .batch import SequentialRunner

# Store failures end the stage instead of counting against one item.
STORE_ERRORS = (sqlite3.Error, ItemNotFoundError, InvalidTransitionError)

# Field that must be populated before an item of the kind can be translated.
DETAIL_FIELDS = {"news": "body", "music": "media_url"}


class ReviewError(RuntimeError):
    pass


def run_ingest(
    conn: sqlite3.Connection,
    config: Config,
    kind: str,
    source_client: ContentSource,
    logger: logging.Logger,
    source_name: str | None = None,
) -> StageReport:
    kind_cfg = config.kind(kind)
    report = StageReport(stage="ingest", kind=kind)
    if source_name in (None, "", "all"):
        sources = list(kind_cfg.sources.values())
    elif source_name in kind_cfg.sources:
        sources = [kind_cfg.sources[source_name]]
    else:
        available = ", ".join(sorted(kind_cfg.sources)) or "none"
        raise ConfigError(f"unknown source: {source_name} (available: {available})")

    for source in sources:
        started_at = utc_now_iso()
        log_event(logger, logging.INFO, "source_started", kind=kind, source=source.name)
        try:
            candidates = source_client.list_candidates(source)
        except Exception as exc:  # noqa: BLE001
            report.failed += 1
            report.errors.append(f"{source.name}: {exc}")
            log_event(
                logger,
                logging.ERROR,
                "source_failed",
                kind=kind,
                source=source.name,
                error=str(exc),
            )
            record_source_run(
                conn,
                kind=kind,
                source=source.name,
                started_at=started_at,
                finished_at=utc_now_iso(),
                status="error",
                items_found=0,
                items_inserted=0,
                skipped_duplicates=0,
                skipped_invalid=0,
                error=str(exc),
            )
            continue

        valid = [c for c in candidates if c.title.strip() and c.link.strip()]
        skipped_invalid = len(candidates) - len(valid)
        outcomes = insert_items(conn, kind, valid, kind_cfg.initial_status)
        inserted = sum(1 for outcome in outcomes if outcome.inserted)
        duplicates = len(outcomes) - inserted

        report.seen += len(candidates)
        report.advanced += inserted
        report.skipped += skipped_invalid + duplicates
        record_source_run(
            conn,
            kind=kind,
            source=source.name,
            started_at=started_at,
            finished_at=utc_now_iso(),
            status="ok",
            items_found=len(candidates),
            items_inserted=inserted,
            skipped_duplicates=duplicates,
            skipped_invalid=skipped_invalid,
            error=None,
        )
        log_event(
            logger,
            logging.INFO,
            "source_completed",
            kind=kind,
            source=source.name,
            found=len(candidates),
            inserted=inserted,
            duplicates=duplicates,
            invalid=skipped_invalid,
        )
    return _finish(report, logger)


def run_review(
    conn: sqlite3.Connection,
    config: Config,
    kind: str,
    reviewer: Reviewer,
    logger: logging.Logger,
) -> StageReport:
    kind_cfg = config.kind(kind)
    report = StageReport(stage="review", kind=kind)
    if not kind_cfg.review:
        log_event(logger, logging.INFO, "review_not_enabled", kind=kind)
        return report

    pending = list_items_by_status(conn, kind, ItemStatus.PENDING_REVIEW, kind_cfg.batch_limit)
    report.seen = len(pending)
    if not pending:
        log_event(logger, logging.INFO, "review_nothing_pending", kind=kind)
        return _finish(report, logger)

    context = list_items_by_status_since(
        conn,
        kind,
        ItemStatus.PUBLISHED,
        kind_cfg.review_context_hours * 3600,
        kind_cfg.batch_limit,
    )
    payload = [{"title": item.title} for item in context]
    payload.extend({"id": item.id, "title": item.title} for item in pending)
    log_event(
        logger,
        logging.INFO,
        "review_requested",
        kind=kind,
        pending=len(pending),
        context=len(context),
    )
    try:
        returned_ids = reviewer.review(payload)
    except Exception as exc:  # noqa: BLE001
        log_event(logger, logging.ERROR, "review_failed", kind=kind, error=str(exc))
        raise ReviewError(f"review_failed: {exc}") from exc

    pending_ids = [item.id for item in pending]
    pending_set = set(pending_ids)
    unknown = [item_id for item_id in returned_ids if item_id not in pending_set]
    if unknown:
        log_event(
            logger,
            logging.WARNING,
            "review_unknown_ids",
            kind=kind,
            count=len(unknown),
            ids=",".join(unknown[:10]),
        )
    accepted, rejected = apply_review_verdicts(
        conn, pending_ids, pending_set.intersection(returned_ids)
    )
    titles = {item.id: item.title for item in pending}
    for item_id in accepted:
        log_event(logger, logging.INFO, "review_accepted", item_id=item_id, title=titles[item_id])
    for item_id in rejected:
        log_event(logger, logging.INFO, "review_rejected", item_id=item_id, title=titles[item_id])
    report.advanced = len(accepted)
    report.rejected = len(rejected)
    return _finish(report, logger)


def run_translate(
    conn: sqlite3.Connection,
    config: Config,
    kind: str,
    source_client: ContentSource,
    translator: Translator,
    logger: logging.Logger,
) -> StageReport:
    kind_cfg = config.kind(kind)
    report = StageReport(stage="translate", kind=kind)
    detail_field = DETAIL_FIELDS[kind]
    items = list_items_by_status(conn, kind, ItemStatus.PENDING_TRANSLATION, kind_cfg.batch_limit)
    report.seen = len(items)

    def handle(item: Item) -> None:
        blocked = blocked_keywords([item.title, item.body], kind_cfg.filters)
        if blocked:
            set_status(conn, item.id, ItemStatus.REJECTED)
            report.rejected += 1
            log_event(
                logger,
                logging.INFO,
                "item_blocked",
                item_id=item.id,
                title=item.title,
                checkpoint="raw",
                keywords=",".join(blocked),
            )
            return

        if not getattr(item, detail_field):
            source = kind_cfg.sources.get(item.source)
            if source is None:
                raise FetchError(f"source_not_configured: {item.source}")
            detail = source_client.fetch_detail(item.link, source)
            set_detail(
                conn,
                item.id,
                body=detail.body,
                media_url=detail.media_url,
                image_url=detail.image_url,
            )
            item = get_item(conn, item.id) or item
            log_event(
                logger,
                logging.INFO,
                "detail_fetched",
                item_id=item.id,
                title=item.title,
                has_detail=bool(getattr(item, detail_field)),
            )

        translation = translator.translate(item)
        blocked = blocked_keywords(
            [translation.translated_title, translation.translated_body], kind_cfg.filters
        )
        status = ItemStatus.REJECTED if blocked else ItemStatus.TRANSLATED
        set_translation(
            conn,
            item.id,
            translated_title=translation.translated_title,
            translated_body=translation.translated_body,
            status=status,
        )
        if blocked:
            report.rejected += 1
            log_event(
                logger,
                logging.INFO,
                "item_blocked",
                item_id=item.id,
                title=item.title,
                checkpoint="translated",
                keywords=",".join(blocked),
            )
            return
        report.advanced += 1
        log_event(logger, logging.INFO, "item_translated", item_id=item.id, title=item.title)

    failures = _runner(logger).run(items, handle)
    _record_failures(report, failures)
    return _finish(report, logger)


def run_publish(
    conn: sqlite3.Connection,
    config: Config,
    kind: str,
    publisher: Publisher,
    logger: logging.Logger,
    sleep: Callable[[float], None] = time.sleep,
) -> StageReport:
    kind_cfg = config.kind(kind)
    report = StageReport(stage="publish", kind=kind)
    items = list_items_by_status(conn, kind, ItemStatus.TRANSLATED, kind_cfg.batch_limit)
    report.seen = len(items)

    def handle(item: Item) -> None:
        try:
            result = publisher.publish(item)
            if not result.success:
                raise PublishError(result.error or "publish_unsuccessful")
            set_status(conn, item.id, ItemStatus.PUBLISHED)
            report.advanced += 1
            log_event(
                logger,
                logging.INFO,
                "item_published",
                item_id=item.id,
                title=item.title,
                **{
                    key: value
                    for key, value in dataclasses.asdict(result).items()
                    if key.endswith("_sent")
                },
            )
        finally:
            sleep(kind_cfg.publish_delay_seconds)

    failures = _runner(logger).run(items, handle)
    _record_failures(report, failures)
    return _finish(report, logger)


def run_retention(
    conn: sqlite3.Connection,
    config: Config,
    kind: str,
    logger: logging.Logger,
    keep: int | None = None,
) -> StageReport:
    kind_cfg = config.kind(kind)
    report = StageReport(stage="retain", kind=kind)
    keep_count = kind_cfg.retention_keep if keep is None else keep
    report.deleted = cleanup_old_records(conn, kind, keep_count)
    log_event(
        logger,
        logging.INFO,
        "retention_completed",
        kind=kind,
        keep=keep_count,
        deleted=report.deleted,
    )
    return _finish(report, logger)


def _runner(logger: logging.Logger) -> SequentialRunner:
    return SequentialRunner(
        logger,
        describe=lambda item: {"item_id": item.id, "title": item.title},
        fatal=STORE_ERRORS,
    )


def _record_failures(report: StageReport, failures: list[tuple[Item, Exception]]) -> None:
    report.failed += len(failures)
    report.errors.extend(f"{item.id}: {exc}" for item, exc in failures)


def _finish(report: StageReport, logger: logging.Logger) -> StageReport:
    log_event(
        logger,
        logging.INFO,
        "stage_completed",
        stage=report.stage,
        kind=report.kind,
        seen=report.seen,
        advanced=report.advanced,
        rejected=report.rejected,
        failed=report.failed,
        skipped=report.skipped,
        deleted=report.deleted,
    )
    return report
