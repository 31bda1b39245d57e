from __future__ import annotations

import logging
import time
from urllib.error import HTTPError, URLError
from urllib.parse import urljoin
from urllib.request import Request, urlopen

import feedparser

from .config import HttpConfig, SourceConfig
from .models import Candidate, Detail
from .pipelines.content_fetch import extract_candidates, extract_detail
from .utils import log_event


class FetchError(RuntimeError):
    pass


def _fetch_url(
    url: str,
    headers: dict[str, str],
    timeout: int,
    max_retries: int,
    backoff_seconds: int,
) -> tuple[int | None, bytes | None, str | None]:
    attempt = 0
    while attempt <= max_retries:
        try:
            request = Request(url, headers=headers)
            with urlopen(request, timeout=timeout) as response:
                status = response.getcode()
                content = response.read()
            return status, content, None
        except HTTPError as exc:
            return exc.code, None, str(exc)
        except (URLError, TimeoutError) as exc:
            if attempt >= max_retries:
                return None, None, str(exc)
            time.sleep(backoff_seconds * (attempt + 1))
            attempt += 1
    return None, None, "Unknown fetch error"


class WebContentSource:
    def __init__(self, http_cfg: HttpConfig, logger: logging.Logger) -> None:
        self.http_cfg = http_cfg
        self.logger = logger

    def list_candidates(self, source: SourceConfig) -> list[Candidate]:
        content = self._get(source.url, source.name)
        if source.type == "rss":
            return _parse_feed(content, source, self.logger)
        html = content.decode("utf-8", errors="replace")
        try:
            return extract_candidates(html, source.selectors, source.url, source.name)
        except ValueError as exc:
            raise FetchError(f"{source.name}: {exc}") from exc

    def fetch_detail(self, link: str, source: SourceConfig) -> Detail:
        content = self._get(link, source.name)
        html = content.decode("utf-8", errors="replace")
        return extract_detail(html, source.selectors, link)

    def _get(self, url: str, source_name: str) -> bytes:
        headers = {"User-Agent": self.http_cfg.user_agent}
        headers.update(self.http_cfg.headers)
        http_status, content, error = _fetch_url(
            url,
            headers=headers,
            timeout=self.http_cfg.timeout_seconds,
            max_retries=self.http_cfg.max_retries,
            backoff_seconds=self.http_cfg.backoff_seconds,
        )
        if error or not content:
            log_event(
                self.logger,
                logging.WARNING,
                "fetch_failed",
                source=source_name,
                url=url,
                http_status=http_status,
                error=error or "empty response",
            )
            raise FetchError(f"{url}: {error or 'empty response'}")
        return content


def _parse_feed(content: bytes, source: SourceConfig, logger: logging.Logger) -> list[Candidate]:
    parsed = feedparser.parse(content)
    if parsed.bozo:
        log_event(
            logger,
            logging.WARNING,
            "feed_parse_warning",
            source=source.name,
            error=str(parsed.bozo_exception),
        )
    candidates: list[Candidate] = []
    for entry in parsed.entries or []:
        title = (entry.get("title") or "").strip()
        link = entry.get("link") or entry.get("id") or ""
        artist = entry.get("author") or None
        candidates.append(
            Candidate(
                title=title,
                link=urljoin(source.url, link) if link else "",
                source=source.name,
                artist=artist,
            )
        )
    return candidates
