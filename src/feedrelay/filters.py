from __future__ import annotations

from typing import Iterable


def matched_keywords(text: str | None, keywords: Iterable[str]) -> list[str]:
    if not text:
        return []
    return [keyword for keyword in keywords if keyword and keyword in text]


def contains_keyword(text: str | None, keywords: Iterable[str]) -> bool:
    return bool(matched_keywords(text, keywords))


def blocked_keywords(texts: Iterable[str | None], keywords: list[str]) -> list[str]:
    matches: list[str] = []
    for text in texts:
        for keyword in matched_keywords(text, keywords):
            if keyword not in matches:
                matches.append(keyword)
    return matches
