from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol


class ItemStatus(str, Enum):
    PENDING_REVIEW = "pending_review"
    PENDING_TRANSLATION = "pending_translation"
    TRANSLATED = "translated"
    PUBLISHED = "published"
    REJECTED = "rejected"


ALLOWED_TRANSITIONS: dict[ItemStatus, frozenset[ItemStatus]] = {
    ItemStatus.PENDING_REVIEW: frozenset(
        {ItemStatus.PENDING_TRANSLATION, ItemStatus.REJECTED}
    ),
    ItemStatus.PENDING_TRANSLATION: frozenset(
        {ItemStatus.TRANSLATED, ItemStatus.REJECTED}
    ),
    ItemStatus.TRANSLATED: frozenset({ItemStatus.PUBLISHED}),
    ItemStatus.PUBLISHED: frozenset(),
    ItemStatus.REJECTED: frozenset(),
}

ITEM_KINDS = ("news", "music")


def can_transition(current: ItemStatus, target: ItemStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


@dataclass(frozen=True)
class Item:
    id: str
    kind: str
    title: str
    link: str
    source: str
    body: str | None
    media_url: str | None
    image_url: str | None
    translated_title: str | None
    translated_body: str | None
    status: ItemStatus
    created_at: str
    updated_at: str


@dataclass(frozen=True)
class Candidate:
    title: str
    link: str
    source: str
    artist: str | None = None


@dataclass(frozen=True)
class Detail:
    body: str | None = None
    media_url: str | None = None
    image_url: str | None = None


@dataclass(frozen=True)
class Translation:
    translated_title: str
    translated_body: str


@dataclass(frozen=True)
class PublishResult:
    success: bool
    photo_sent: bool = False
    audio_sent: bool = False
    document_sent: bool = False
    text_sent: bool = False
    error: str | None = None


@dataclass(frozen=True)
class InsertOutcome:
    item_id: str
    inserted: bool


@dataclass
class StageReport:
    stage: str
    kind: str
    seen: int = 0
    advanced: int = 0
    rejected: int = 0
    failed: int = 0
    skipped: int = 0
    deleted: int = 0
    errors: list[str] = field(default_factory=list)


class ContentSource(Protocol):
    def list_candidates(self, source) -> list[Candidate]: ...

    def fetch_detail(self, link: str, source) -> Detail: ...


class Reviewer(Protocol):
    def review(self, items: list[dict[str, str]]) -> list[str]: ...


class Translator(Protocol):
    def translate(self, item: Item) -> Translation: ...


class Publisher(Protocol):
    def publish(self, item: Item) -> PublishResult: ...
