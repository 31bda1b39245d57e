from __future__ import annotations

import json
import logging
import time
import urllib.error
import urllib.parse
import urllib.request
from typing import Any

from ..config import LlmConfig
from ..utils import log_event


class LlmError(RuntimeError):
    pass


def call_model(
    llm_cfg: LlmConfig,
    api_key: str | None,
    system: str,
    user: str,
    logger: logging.Logger,
) -> str:
    attempt = 0
    while True:
        try:
            return _call_provider(llm_cfg, api_key, system, user)
        except LlmError as exc:
            if attempt >= llm_cfg.max_retries:
                raise
            attempt += 1
            log_event(
                logger,
                logging.WARNING,
                "llm_call_retry",
                provider=llm_cfg.provider,
                attempt=attempt,
                error=str(exc),
            )
            time.sleep(llm_cfg.backoff_seconds * attempt)


def _call_provider(llm_cfg: LlmConfig, api_key: str | None, system: str, user: str) -> str:
    provider_type = llm_cfg.provider
    base_url = llm_cfg.base_url or _default_base_url(provider_type)
    if provider_type == "openai_compatible":
        path = _join_url(base_url, "/chat/completions")
        payload = {
            "model": llm_cfg.model,
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
            "temperature": llm_cfg.temperature,
            "max_tokens": llm_cfg.max_output_tokens,
        }
        headers = _auth_headers(provider_type, api_key)
        response = _http_request("POST", path, headers, payload, llm_cfg.timeout_seconds)
        return _read_openai(response)
    if provider_type == "anthropic":
        path = _join_url(base_url, "/messages")
        payload = {
            "model": llm_cfg.model,
            "max_tokens": llm_cfg.max_output_tokens,
            "temperature": llm_cfg.temperature,
            "system": system,
            "messages": [{"role": "user", "content": user}],
        }
        headers = _auth_headers(provider_type, api_key)
        response = _http_request("POST", path, headers, payload, llm_cfg.timeout_seconds)
        return _read_anthropic(response)
    if provider_type == "google":
        path = _join_url(
            base_url,
            f"/models/{urllib.parse.quote(llm_cfg.model)}:generateContent",
        )
        path = _append_key(path, api_key)
        # Gemini takes the instructions and the payload as one prompt.
        payload = {
            "contents": [{"parts": [{"text": f"{system}\n\n{user}"}]}],
            "generationConfig": {
                "temperature": llm_cfg.temperature,
                "maxOutputTokens": llm_cfg.max_output_tokens,
                "responseMimeType": "application/json",
            },
        }
        response = _http_request("POST", path, {}, payload, llm_cfg.timeout_seconds)
        return _read_google(response)
    raise LlmError("unsupported_provider_type")


def _http_request(
    method: str,
    url: str,
    headers: dict[str, str],
    payload: dict[str, Any] | None,
    timeout: int,
) -> dict[str, Any]:
    data = json.dumps(payload).encode("utf-8") if payload is not None else None
    request = urllib.request.Request(url, data=data, method=method)
    request.add_header("Content-Type", "application/json")
    for key, value in headers.items():
        request.add_header(key, value)
    try:
        with urllib.request.urlopen(request, timeout=timeout) as response:
            raw = response.read().decode("utf-8")
    except urllib.error.HTTPError as exc:
        raw = exc.read().decode("utf-8", errors="ignore")
        raise LlmError(f"http_error {exc.code}: {raw[:500]}") from exc
    except urllib.error.URLError as exc:
        raise LlmError(f"network_error: {exc}") from exc
    except TimeoutError as exc:
        raise LlmError(f"timeout: {exc}") from exc
    try:
        return json.loads(raw)
    except json.JSONDecodeError as exc:
        raise LlmError(f"invalid_provider_response: {raw[:200]}") from exc


def _read_openai(response: dict[str, Any]) -> str:
    choices = response.get("choices") or []
    if not choices:
        raise LlmError("openai_missing_choices")
    return choices[0].get("message", {}).get("content") or ""


def _read_anthropic(response: dict[str, Any]) -> str:
    content = response.get("content") or []
    if not content:
        raise LlmError("anthropic_missing_content")
    return content[0].get("text") or ""


def _read_google(response: dict[str, Any]) -> str:
    candidates = response.get("candidates") or []
    if not candidates:
        raise LlmError("google_missing_candidates")
    parts = candidates[0].get("content", {}).get("parts", [])
    if not parts:
        raise LlmError("google_missing_parts")
    return "".join(part.get("text") or "" for part in parts)


def _auth_headers(provider_type: str, api_key: str | None) -> dict[str, str]:
    if not api_key:
        return {}
    if provider_type == "openai_compatible":
        return {"Authorization": f"Bearer {api_key}"}
    if provider_type == "anthropic":
        return {"x-api-key": api_key, "anthropic-version": "2023-06-01"}
    return {}


def _default_base_url(provider_type: str) -> str:
    if provider_type == "openai_compatible":
        return "https://api.openai.com/v1"
    if provider_type == "anthropic":
        return "https://api.anthropic.com/v1"
    if provider_type == "google":
        return "https://generativelanguage.googleapis.com/v1beta"
    return ""


def _append_key(url: str, api_key: str | None) -> str:
    if not api_key:
        return url
    parsed = urllib.parse.urlsplit(url)
    query = urllib.parse.parse_qsl(parsed.query, keep_blank_values=True)
    query.append(("key", api_key))
    return urllib.parse.urlunsplit(
        (parsed.scheme, parsed.netloc, parsed.path, urllib.parse.urlencode(query), parsed.fragment)
    )


def _join_url(base: str, path: str) -> str:
    return base.rstrip("/") + path
