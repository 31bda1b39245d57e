from __future__ import annotations

import copy
import os
from dataclasses import dataclass
from typing import Any

import yaml

from .models import ITEM_KINDS, ItemStatus


class ConfigError(ValueError):
    pass


@dataclass(frozen=True)
class PathsConfig:
    data_dir: str
    state_db: str
    temp_dir: str


@dataclass(frozen=True)
class HttpConfig:
    timeout_seconds: int
    user_agent: str
    max_retries: int
    backoff_seconds: int
    headers: dict[str, str]


@dataclass(frozen=True)
class LlmConfig:
    provider: str
    base_url: str
    model: str
    temperature: float
    max_output_tokens: int
    timeout_seconds: int
    max_retries: int
    backoff_seconds: float
    review_prompt: str
    translation_prompts: dict[str, str]


@dataclass(frozen=True)
class PublishingConfig:
    timeout_seconds: int
    signature: str
    caption_limit: int
    message_limit: int
    audio_limit_bytes: int
    document_limit_bytes: int
    compression_bitrates: list[str]
    ffmpeg_path: str


@dataclass(frozen=True)
class SourceConfig:
    name: str
    type: str
    url: str
    selectors: dict[str, str]


@dataclass(frozen=True)
class KindConfig:
    name: str
    review: bool
    initial_status: ItemStatus
    batch_limit: int
    review_context_hours: int
    publish_delay_seconds: float
    retention_keep: int
    filters: list[str]
    sources: dict[str, SourceConfig]


@dataclass(frozen=True)
class Config:
    paths: PathsConfig
    http: HttpConfig
    llm: LlmConfig
    publishing: PublishingConfig
    kinds: dict[str, KindConfig]

    def kind(self, name: str) -> KindConfig:
        try:
            return self.kinds[name]
        except KeyError as exc:
            raise ConfigError(f"unknown kind: {name}") from exc


REVIEW_PROMPT = (
    "You are the editor of a Persian-language news channel. The JSON list below "
    "holds news headlines. Entries without an id were published on the channel "
    "recently: treat them as examples of what the channel accepts and do not "
    "accept a new entry that repeats one of their stories. From the entries that "
    "have an id, select the ones worth publishing: important world and regional "
    "news, no advertising, no opinion pieces, no duplicates of each other. "
    'Respond with JSON only: an array of objects of the form {"id": "<id>"} for '
    "the selected entries, or [] if none qualify"
)

NEWS_TRANSLATION_PROMPT = (
    "Translate the news article below into fluent Persian (Farsi) for a news "
    "channel. Keep names, numbers and quotes accurate, drop navigation text, "
    "bylines and advertising, and keep the body under 900 characters. Respond "
    'with JSON only: {"translatedTitle": "...", "translatedContent": "..."}'
)

MUSIC_TRANSLATION_PROMPT = (
    "Transliterate the song title and artist name below into Persian script as "
    "they are commonly written by Persian listeners. Respond with JSON only: "
    '{"translatedTitle": "...", "translatedArtist": "..."}'
)

_KIND_DEFAULTS: dict[str, dict[str, Any]] = {
    "news": {
        "review": True,
        "initial_status": ItemStatus.PENDING_REVIEW.value,
        "batch_limit": 100,
        "review_context_hours": 24,
        "publish_delay_seconds": 1.0,
        "retention_keep": 10000,
        "filters": [],
        "sources": {},
    },
    "music": {
        "review": False,
        "initial_status": ItemStatus.PENDING_TRANSLATION.value,
        "batch_limit": 100,
        "review_context_hours": 24,
        "publish_delay_seconds": 3.0,
        "retention_keep": 10000,
        "filters": [],
        "sources": {},
    },
}

DEFAULT_CONFIG: dict[str, Any] = {
    "paths": {
        "data_dir": "./data",
        "state_db": "",
        "temp_dir": "",
    },
    "http": {
        "timeout_seconds": 90,
        "user_agent": (
            "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
            "(KHTML, like Gecko) Chrome/100.0.4896.127 Safari/537.36"
        ),
        "max_retries": 1,
        "backoff_seconds": 5,
        "headers": {},
    },
    "llm": {
        "provider": "google",
        "base_url": "",
        "model": "gemini-2.0-flash",
        "temperature": 0.7,
        "max_output_tokens": 4048,
        "timeout_seconds": 120,
        "max_retries": 1,
        "backoff_seconds": 2.0,
        "review_prompt": REVIEW_PROMPT,
        "translation_prompts": {
            "news": NEWS_TRANSLATION_PROMPT,
            "music": MUSIC_TRANSLATION_PROMPT,
        },
    },
    "publishing": {
        "timeout_seconds": 120,
        "signature": "",
        "caption_limit": 1024,
        "message_limit": 4096,
        "audio_limit_bytes": 50 * 1024 * 1024,
        "document_limit_bytes": 2048 * 1024 * 1024,
        "compression_bitrates": ["192k", "128k", "96k"],
        "ffmpeg_path": "ffmpeg",
    },
    "kinds": _KIND_DEFAULTS,
}

# Maps whose keys are chosen by the operator rather than by the schema.
FREE_FORM_PATHS = {
    "config.http.headers",
    "config.llm.translation_prompts",
}

SOURCE_TYPES = {"html", "rss"}
SELECTOR_KEYS = {"container", "title", "link", "artist", "body", "remove", "image", "media"}
LLM_PROVIDERS = {"google", "openai_compatible", "anthropic"}


def get_config_path(explicit: str | None = None) -> str | None:
    if explicit:
        return explicit
    return os.environ.get("FR_CONFIG_PATH") or None


def load_config(path: str | None = None) -> Config:
    raw = load_raw_config(path)
    errors = validate_config(raw)
    if errors:
        raise ConfigError("Invalid config: " + "; ".join(errors))
    return _build_config(raw)


def load_raw_config(path: str | None = None) -> dict[str, Any]:
    cfg = copy.deepcopy(DEFAULT_CONFIG)
    resolved = get_config_path(path)
    if not resolved:
        return cfg
    if not os.path.exists(resolved):
        raise ConfigError(f"config file not found: {resolved}")
    try:
        with open(resolved, "r", encoding="utf-8") as handle:
            overrides = yaml.safe_load(handle) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"config file is not valid YAML: {exc}") from exc
    if not isinstance(overrides, dict):
        raise ConfigError("config file must contain a mapping")
    return _deep_merge(cfg, overrides)


def validate_config(cfg: dict[str, Any]) -> list[str]:
    errors: list[str] = []
    _validate_dict(cfg, DEFAULT_CONFIG, "config", errors)
    if errors:
        return errors
    if cfg["llm"]["provider"] not in LLM_PROVIDERS:
        errors.append(f"config.llm.provider must be one of {sorted(LLM_PROVIDERS)}")
    for kind_name, kind_cfg in cfg["kinds"].items():
        _validate_kind(kind_name, kind_cfg, errors)
    return errors


def _validate_kind(kind_name: str, kind_cfg: dict[str, Any], errors: list[str]) -> None:
    path = f"config.kinds.{kind_name}"
    initial = kind_cfg["initial_status"]
    if initial not in (ItemStatus.PENDING_REVIEW.value, ItemStatus.PENDING_TRANSLATION.value):
        errors.append(f"{path}.initial_status must be pending_review or pending_translation")
    elif initial == ItemStatus.PENDING_REVIEW.value and not kind_cfg["review"]:
        errors.append(f"{path}.initial_status pending_review requires review: true")
    if kind_cfg["batch_limit"] <= 0:
        errors.append(f"{path}.batch_limit must be positive")
    if kind_cfg["retention_keep"] <= 0:
        errors.append(f"{path}.retention_keep must be positive")
    for source_name, source_cfg in kind_cfg["sources"].items():
        source_path = f"{path}.sources.{source_name}"
        if not isinstance(source_cfg, dict):
            errors.append(f"{source_path} must be an object")
            continue
        if source_cfg.get("type", "html") not in SOURCE_TYPES:
            errors.append(f"{source_path}.type must be one of {sorted(SOURCE_TYPES)}")
        if not isinstance(source_cfg.get("url"), str) or not source_cfg.get("url"):
            errors.append(f"{source_path}.url is required")
        selectors = source_cfg.get("selectors") or {}
        if not isinstance(selectors, dict):
            errors.append(f"{source_path}.selectors must be an object")
            continue
        for key, value in selectors.items():
            if key not in SELECTOR_KEYS:
                errors.append(f"unknown {source_path}.selectors.{key}")
            elif not isinstance(value, str):
                errors.append(f"{source_path}.selectors.{key} must be a string")


def _validate_dict(value: dict[str, Any], schema: dict[str, Any], path: str, errors: list[str]) -> None:
    if not isinstance(value, dict):
        errors.append(f"{path} must be an object")
        return
    if path in FREE_FORM_PATHS:
        for key, item in value.items():
            if not isinstance(item, str):
                errors.append(f"{path}.{key} must be a string")
        return
    for key in schema.keys():
        if key not in value:
            errors.append(f"missing {path}.{key}")
    for key in value.keys():
        if key not in schema:
            errors.append(f"unknown {path}.{key}")
    for key, default in schema.items():
        if key not in value:
            continue
        if key == "sources":
            if not isinstance(value[key], dict):
                errors.append(f"{path}.{key} must be an object")
            continue
        _validate_value(value[key], default, f"{path}.{key}", errors)


def _validate_value(value: Any, default: Any, path: str, errors: list[str]) -> None:
    if isinstance(default, dict):
        if not isinstance(value, dict):
            errors.append(f"{path} must be an object")
            return
        _validate_dict(value, default, path, errors)
        return
    if isinstance(default, list):
        if not isinstance(value, list):
            errors.append(f"{path} must be a list")
            return
        for item in value:
            if not isinstance(item, str):
                errors.append(f"{path} must be a list of strings")
                break
        return
    if isinstance(default, bool):
        if not isinstance(value, bool):
            errors.append(f"{path} must be a boolean")
        return
    if isinstance(default, int):
        if not isinstance(value, int) or isinstance(value, bool):
            errors.append(f"{path} must be an integer")
        return
    if isinstance(default, float):
        if not isinstance(value, (int, float)) or isinstance(value, bool):
            errors.append(f"{path} must be a number")
        return
    if isinstance(default, str):
        if not isinstance(value, str):
            errors.append(f"{path} must be a string")
        return


def _build_config(cfg: dict[str, Any]) -> Config:
    paths_cfg = cfg["paths"]
    http_cfg = cfg["http"]
    llm_cfg = cfg["llm"]
    publishing_cfg = cfg["publishing"]

    data_dir = os.environ.get("FR_DATA_DIR") or str(paths_cfg["data_dir"])
    paths = PathsConfig(
        data_dir=data_dir,
        state_db=str(paths_cfg["state_db"]) or os.path.join(data_dir, "state.sqlite3"),
        temp_dir=str(paths_cfg["temp_dir"]) or os.path.join(data_dir, "tmp"),
    )

    http = HttpConfig(
        timeout_seconds=int(http_cfg["timeout_seconds"]),
        user_agent=str(http_cfg["user_agent"]),
        max_retries=int(http_cfg["max_retries"]),
        backoff_seconds=int(http_cfg["backoff_seconds"]),
        headers={str(k): str(v) for k, v in http_cfg["headers"].items()},
    )

    llm = LlmConfig(
        provider=str(llm_cfg["provider"]),
        base_url=str(llm_cfg["base_url"]),
        model=str(llm_cfg["model"]),
        temperature=float(llm_cfg["temperature"]),
        max_output_tokens=int(llm_cfg["max_output_tokens"]),
        timeout_seconds=int(llm_cfg["timeout_seconds"]),
        max_retries=int(llm_cfg["max_retries"]),
        backoff_seconds=float(llm_cfg["backoff_seconds"]),
        review_prompt=str(llm_cfg["review_prompt"]),
        translation_prompts=dict(llm_cfg["translation_prompts"]),
    )

    publishing = PublishingConfig(
        timeout_seconds=int(publishing_cfg["timeout_seconds"]),
        signature=str(publishing_cfg["signature"]),
        caption_limit=int(publishing_cfg["caption_limit"]),
        message_limit=int(publishing_cfg["message_limit"]),
        audio_limit_bytes=int(publishing_cfg["audio_limit_bytes"]),
        document_limit_bytes=int(publishing_cfg["document_limit_bytes"]),
        compression_bitrates=list(publishing_cfg["compression_bitrates"]),
        ffmpeg_path=str(publishing_cfg["ffmpeg_path"]),
    )

    kinds = {
        name: _build_kind(name, kind_cfg)
        for name, kind_cfg in cfg["kinds"].items()
        if name in ITEM_KINDS
    }

    return Config(
        paths=paths,
        http=http,
        llm=llm,
        publishing=publishing,
        kinds=kinds,
    )


def _build_kind(name: str, kind_cfg: dict[str, Any]) -> KindConfig:
    sources = {
        source_name: SourceConfig(
            name=source_name,
            type=str(source_cfg.get("type", "html")),
            url=str(source_cfg["url"]),
            selectors={str(k): str(v) for k, v in (source_cfg.get("selectors") or {}).items()},
        )
        for source_name, source_cfg in kind_cfg["sources"].items()
    }
    return KindConfig(
        name=name,
        review=bool(kind_cfg["review"]),
        initial_status=ItemStatus(kind_cfg["initial_status"]),
        batch_limit=int(kind_cfg["batch_limit"]),
        review_context_hours=int(kind_cfg["review_context_hours"]),
        publish_delay_seconds=float(kind_cfg["publish_delay_seconds"]),
        retention_keep=int(kind_cfg["retention_keep"]),
        filters=[str(keyword) for keyword in kind_cfg["filters"]],
        sources=sources,
    )


def _deep_merge(base: dict[str, Any], overrides: dict[str, Any]) -> dict[str, Any]:
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            base[key] = _deep_merge(base[key], value)
        else:
            base[key] = value
    return base
