from __future__ import annotations

import argparse
import logging
import os
import sqlite3

from .config import Config, ConfigError, load_config
from .fsinit import build_default_paths, cleanup_temp_dir, ensure_runtime_dirs, set_umask_from_env
from .ingest import WebContentSource
from .llm import LlmClient
from .models import ITEM_KINDS, StageReport
from .pipelines.stages import (
    ReviewError,
    run_ingest,
    run_publish,
    run_retention,
    run_review,
    run_translate,
)
from .publish import TelegramPublisher
from .storage import count_items_by_status, init_db, list_source_runs
from .utils import configure_logging, json_dumps, log_event


def _setup_logging() -> logging.Logger:
    return configure_logging("feedrelay")


def _bootstrap(args: argparse.Namespace, logger: logging.Logger) -> tuple[Config, sqlite3.Connection]:
    set_umask_from_env()
    config = load_config(args.config)
    config.kind(args.kind)
    ensure_runtime_dirs(build_default_paths(config))
    cleanup_temp_dir(config.paths.temp_dir, logger)
    conn = init_db(config.paths.state_db)
    return config, conn


def _report_exit(report: StageReport) -> int:
    print(json_dumps(report))
    return 0


def _llm_client(config: Config, logger: logging.Logger) -> LlmClient:
    return LlmClient(config.llm, logger, api_key=os.environ.get("FR_LLM_API_KEY"))


def _cmd_ingest(args: argparse.Namespace, logger: logging.Logger) -> int:
    config, conn = _bootstrap(args, logger)
    try:
        source_client = WebContentSource(config.http, logger)
        report = run_ingest(conn, config, args.kind, source_client, logger, args.source)
    finally:
        conn.close()
    return _report_exit(report)


def _cmd_review(args: argparse.Namespace, logger: logging.Logger) -> int:
    config, conn = _bootstrap(args, logger)
    try:
        report = run_review(conn, config, args.kind, _llm_client(config, logger), logger)
    except ReviewError as exc:
        log_event(logger, logging.ERROR, "review_aborted", kind=args.kind, error=str(exc))
        return 1
    finally:
        conn.close()
    return _report_exit(report)


def _cmd_translate(args: argparse.Namespace, logger: logging.Logger) -> int:
    config, conn = _bootstrap(args, logger)
    try:
        report = run_translate(
            conn,
            config,
            args.kind,
            WebContentSource(config.http, logger),
            _llm_client(config, logger),
            logger,
        )
    finally:
        conn.close()
    return _report_exit(report)


def _cmd_publish(args: argparse.Namespace, logger: logging.Logger) -> int:
    config, conn = _bootstrap(args, logger)
    try:
        publisher = TelegramPublisher.from_env(config, logger)
        report = run_publish(conn, config, args.kind, publisher, logger)
    finally:
        conn.close()
    return _report_exit(report)


def _cmd_retain(args: argparse.Namespace, logger: logging.Logger) -> int:
    config, conn = _bootstrap(args, logger)
    try:
        report = run_retention(conn, config, args.kind, logger, keep=args.keep)
    finally:
        conn.close()
    return _report_exit(report)


def _cmd_status(args: argparse.Namespace, logger: logging.Logger) -> int:
    config, conn = _bootstrap(args, logger)
    try:
        payload = {
            "kind": args.kind,
            "counts": count_items_by_status(conn, args.kind),
            "sources": sorted(config.kind(args.kind).sources),
            "recent_runs": list_source_runs(conn, kind=args.kind, limit=args.runs),
        }
    finally:
        conn.close()
    print(json_dumps(payload))
    return 0


def _cmd_serve(args: argparse.Namespace, logger: logging.Logger) -> int:
    import uvicorn

    if args.config:
        os.environ["FR_CONFIG_PATH"] = args.config
    config = load_config(args.config)
    ensure_runtime_dirs(build_default_paths(config))
    log_event(logger, logging.INFO, "admin_api_starting", host=args.host, port=args.port)
    uvicorn.run("feedrelay.admin:app", host=args.host, port=args.port, proxy_headers=True)
    return 0


def _add_kind_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--kind",
        choices=ITEM_KINDS,
        default="news",
        help="Item kind to operate on (default: news)",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="feedrelay", description="feedrelay pipeline CLI")
    parser.add_argument(
        "--config",
        dest="config",
        default=None,
        help="Path to config.yml (defaults to FR_CONFIG_PATH or built-in defaults)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    ingest_parser = subparsers.add_parser("ingest", help="Scrape sources and store new items")
    ingest_parser.add_argument(
        "source",
        nargs="?",
        default="all",
        help="Source name to scrape, or 'all' (default)",
    )
    _add_kind_argument(ingest_parser)
    ingest_parser.set_defaults(func=_cmd_ingest)

    review_parser = subparsers.add_parser("review", help="Review pending items with the LLM")
    _add_kind_argument(review_parser)
    review_parser.set_defaults(func=_cmd_review)

    translate_parser = subparsers.add_parser(
        "translate", help="Fetch details and translate accepted items"
    )
    _add_kind_argument(translate_parser)
    translate_parser.set_defaults(func=_cmd_translate)

    publish_parser = subparsers.add_parser("publish", help="Publish translated items to Telegram")
    _add_kind_argument(publish_parser)
    publish_parser.set_defaults(func=_cmd_publish)

    retain_parser = subparsers.add_parser("retain", help="Delete the oldest records beyond the cap")
    retain_parser.add_argument(
        "--keep",
        type=int,
        default=None,
        help="Records to keep (defaults to kinds.<kind>.retention_keep)",
    )
    _add_kind_argument(retain_parser)
    retain_parser.set_defaults(func=_cmd_retain)

    status_parser = subparsers.add_parser("status", help="Print item counts and recent source runs")
    status_parser.add_argument("--runs", type=int, default=10, help="Recent source runs to show")
    _add_kind_argument(status_parser)
    status_parser.set_defaults(func=_cmd_status)

    serve_parser = subparsers.add_parser("serve", help="Run the read-only admin API")
    serve_parser.add_argument("--host", default="127.0.0.1", help="Host to bind to")
    serve_parser.add_argument("--port", type=int, default=8000, help="Port to bind to")
    serve_parser.set_defaults(func=_cmd_serve)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logger = _setup_logging()
    try:
        return args.func(args, logger)
    except ConfigError as exc:
        log_event(logger, logging.ERROR, "config_error", error=str(exc))
        return 1
    except Exception as exc:  # noqa: BLE001
        logger.exception("event=command_failed command=%s error=%s", args.command, exc)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
