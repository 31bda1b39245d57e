from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Iterable

from .config import Config
from .utils import log_event


def set_umask_from_env() -> None:
    _apply_umask()


def ensure_runtime_dirs(paths: Iterable[str]) -> None:
    for path in paths:
        if not path:
            continue
        _ensure_dir(Path(path))


def build_default_paths(config: Config) -> list[str]:
    return [config.paths.data_dir, config.paths.temp_dir]


def cleanup_temp_dir(temp_dir: str, logger: logging.Logger) -> int:
    root = Path(temp_dir)
    if not root.is_dir():
        return 0
    removed = 0
    for entry in root.iterdir():
        if not entry.is_file():
            continue
        try:
            entry.unlink()
            removed += 1
        except OSError as exc:
            log_event(logger, logging.WARNING, "temp_cleanup_failed", path=str(entry), error=str(exc))
    if removed:
        log_event(logger, logging.INFO, "temp_cleaned", path=temp_dir, removed=removed)
    return removed


def _apply_umask() -> None:
    umask_value = os.environ.get("FR_UMASK", "002")
    try:
        os.umask(int(umask_value, 8))
    except (ValueError, TypeError):
        os.umask(0o002)


def _ensure_dir(path: Path) -> None:
    try:
        path.mkdir(parents=True, exist_ok=True)
    except PermissionError:
        return
    _safe_chmod(path, 0o775)


def _safe_chmod(path: Path, mode: int) -> None:
    try:
        path.chmod(mode)
    except PermissionError:
        return
