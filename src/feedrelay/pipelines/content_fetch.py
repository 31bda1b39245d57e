from __future__ import annotations

import re
from urllib.parse import urljoin

from bs4 import BeautifulSoup

from ..models import Candidate, Detail


def extract_candidates(
    html: str, selectors: dict[str, str], base_url: str, source_name: str
) -> list[Candidate]:
    soup = BeautifulSoup(html, "html.parser")
    container_selector = selectors.get("container")
    if not container_selector:
        raise ValueError("missing_container_selector")
    candidates: list[Candidate] = []
    for element in soup.select(container_selector):
        title = _select_text(element, selectors.get("title"))
        href = _select_attr(element, selectors.get("link"), ("href",))
        artist = _select_text(element, selectors.get("artist")) if selectors.get("artist") else None
        candidates.append(
            Candidate(
                title=title,
                link=urljoin(base_url, href) if href else "",
                source=source_name,
                artist=artist or None,
            )
        )
    return candidates


def extract_detail(html: str, selectors: dict[str, str], base_url: str) -> Detail:
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(["script", "style"]):
        tag.decompose()
    remove_selector = selectors.get("remove")
    if remove_selector:
        for tag in soup.select(remove_selector):
            tag.decompose()

    body = None
    if selectors.get("body"):
        parts = [
            _normalize_text(node.get_text(" ", strip=True))
            for node in soup.select(selectors["body"])
        ]
        body = "\n".join(part for part in parts if part) or None

    image_url = None
    if selectors.get("image"):
        image = _select_attr(soup, selectors["image"], ("content", "src", "data-src"))
        image_url = urljoin(base_url, image) if image else None

    media_url = None
    if selectors.get("media"):
        media = _select_attr(soup, selectors["media"], ("href", "src"))
        media_url = urljoin(base_url, media) if media else None

    return Detail(body=body, media_url=media_url, image_url=image_url)


def _select_text(element, selector: str | None) -> str:
    node = element.select_one(selector) if selector else element
    if node is None:
        return ""
    return _normalize_text(node.get_text(" ", strip=True))


def _select_attr(element, selector: str | None, attrs: tuple[str, ...]) -> str | None:
    node = element.select_one(selector) if selector else element
    if node is None:
        return None
    for attr in attrs:
        value = node.get(attr)
        if value:
            return str(value).strip()
    return None


def _normalize_text(text: str) -> str:
    return re.sub(r"\s+", " ", text).strip()
