from __future__ import annotations

import json
import logging
from typing import Any

import jsonschema

from ..config import LlmConfig
from ..models import Item, Translation
from ..utils import log_event, truncate
from .coerce import CoercionError, coerce_structured
from .router import LlmError, call_model

REVIEW_SCHEMA: dict[str, Any] = {
    "type": "array",
    "items": {
        "type": "object",
        "properties": {"id": {"type": "string"}},
        "required": ["id"],
    },
}

# Per kind: input key for the body, output key for the translated body.
TRANSLATION_FIELDS: dict[str, tuple[str, str]] = {
    "news": ("content", "translatedContent"),
    "music": ("artist", "translatedArtist"),
}


def translation_schema(kind: str) -> dict[str, Any]:
    _, body_key = _translation_fields(kind)
    return {
        "type": "object",
        "properties": {
            "translatedTitle": {"type": "string", "minLength": 1},
            body_key: {"type": "string"},
        },
        "required": ["translatedTitle", body_key],
    }


class LlmClient:
    def __init__(
        self,
        llm_cfg: LlmConfig,
        logger: logging.Logger,
        api_key: str | None = None,
    ) -> None:
        self.llm_cfg = llm_cfg
        self.logger = logger
        self.api_key = api_key

    def review(self, items: list[dict[str, str]]) -> list[str]:
        text = json.dumps(items, ensure_ascii=False, indent=2)
        raw = call_model(self.llm_cfg, self.api_key, self.llm_cfg.review_prompt, text, self.logger)
        parsed = self._parse(raw, REVIEW_SCHEMA, "review")
        return [str(entry["id"]) for entry in parsed]

    def translate(self, item: Item) -> Translation:
        input_key, output_key = _translation_fields(item.kind)
        prompt = self.llm_cfg.translation_prompts.get(item.kind)
        if not prompt:
            raise LlmError(f"missing_translation_prompt:{item.kind}")
        text = json.dumps(
            {"title": item.title, input_key: item.body or ""},
            ensure_ascii=False,
            indent=2,
        )
        raw = call_model(self.llm_cfg, self.api_key, prompt, text, self.logger)
        parsed = self._parse(raw, translation_schema(item.kind), "translate")
        return Translation(
            translated_title=parsed["translatedTitle"].strip(),
            translated_body=(parsed[output_key] or "").strip(),
        )

    def _parse(self, raw: str, schema: dict[str, Any], operation: str) -> Any:
        try:
            parsed = coerce_structured(raw)
        except CoercionError:
            log_event(
                self.logger,
                logging.WARNING,
                "llm_output_unparseable",
                operation=operation,
                raw=truncate(raw, 300),
            )
            raise
        try:
            jsonschema.validate(parsed, schema)
        except jsonschema.ValidationError as exc:
            log_event(
                self.logger,
                logging.WARNING,
                "llm_output_schema_invalid",
                operation=operation,
                error=exc.message,
            )
            raise CoercionError(f"schema_invalid: {exc.message}") from exc
        return parsed


def _translation_fields(kind: str) -> tuple[str, str]:
    try:
        return TRANSLATION_FIELDS[kind]
    except KeyError as exc:
        raise LlmError(f"unsupported_kind:{kind}") from exc
