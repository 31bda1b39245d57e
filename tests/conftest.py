from __future__ import annotations

from pathlib import Path
from typing import Any, Callable

import pytest
import yaml

from feedrelay.config import Config, load_config
from feedrelay.storage import init_db

ENV_VARS = (
    "FR_CONFIG_PATH",
    "FR_DATA_DIR",
    "FR_LOG_LEVEL",
    "FR_LOG_FILE",
    "FR_LOG_LEVELS",
    "FR_LLM_API_KEY",
    "FR_TELEGRAM_BOT_TOKEN",
    "FR_TELEGRAM_CHANNEL_ID",
    "FR_ADMIN_TOKEN",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch) -> None:
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def write_config(tmp_path) -> Callable[..., Path]:
    def _write(overrides: dict[str, Any] | None = None) -> Path:
        payload: dict[str, Any] = {"paths": {"data_dir": str(tmp_path / "data")}}
        _merge(payload, overrides or {})
        path = tmp_path / "config.yml"
        path.write_text(yaml.safe_dump(payload, allow_unicode=True), encoding="utf-8")
        return path

    return _write


@pytest.fixture
def make_config(write_config) -> Callable[..., Config]:
    def _make(overrides: dict[str, Any] | None = None) -> Config:
        return load_config(str(write_config(overrides)))

    return _make


@pytest.fixture
def conn(tmp_path):
    connection = init_db(str(tmp_path / "data" / "state.sqlite3"))
    yield connection
    connection.close()


def _merge(base: dict[str, Any], overrides: dict[str, Any]) -> None:
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            _merge(base[key], value)
        else:
            base[key] = value
