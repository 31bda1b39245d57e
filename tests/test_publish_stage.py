import logging

import pytest

from feedrelay.models import Candidate, ItemStatus, PublishResult
from feedrelay.pipelines.stages import run_publish
from feedrelay.publish import PublishError
from feedrelay.storage import ItemNotFoundError, get_item, insert_items, set_translation


class FakePublisher:
    def __init__(self, outcomes=None):
        self.outcomes = outcomes or {}
        self.published = []

    def publish(self, item):
        self.published.append(item.id)
        outcome = self.outcomes.get(item.title, PublishResult(success=True, text_sent=True))
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def _seed_translated(conn, kind, titles):
    candidates = [
        Candidate(title=title, link=f"https://x.example/{kind}/{index}", source="src")
        for index, title in enumerate(titles)
    ]
    outcomes = insert_items(conn, kind, candidates, ItemStatus.PENDING_TRANSLATION)
    ids = []
    for outcome in outcomes:
        set_translation(
            conn,
            outcome.item_id,
            translated_title="t",
            translated_body="b",
            status=ItemStatus.TRANSLATED,
        )
        ids.append(outcome.item_id)
    return ids


def test_successful_publish_marks_published(conn, make_config):
    config = make_config()
    ids = _seed_translated(conn, "news", ["A", "B"])
    sleeps = []

    report = run_publish(
        conn, config, "news", FakePublisher(), logging.getLogger("test"), sleep=sleeps.append
    )

    assert report.advanced == 2
    assert all(get_item(conn, item_id).status == ItemStatus.PUBLISHED for item_id in ids)
    assert sleeps == [1.0, 1.0]


def test_failures_leave_items_translated(conn, make_config):
    config = make_config()
    ids = _seed_translated(conn, "news", ["Raises", "Unsuccessful", "Fine"])
    publisher = FakePublisher(
        {
            "Raises": PublishError("sendMessage: Bad Request"),
            "Unsuccessful": PublishResult(success=False, error="nothing_sent"),
        }
    )
    sleeps = []

    report = run_publish(
        conn, config, "news", publisher, logging.getLogger("test"), sleep=sleeps.append
    )

    assert report.failed == 2
    assert report.advanced == 1
    assert len(publisher.published) == 3
    assert len(sleeps) == 3
    statuses = [get_item(conn, item_id).status for item_id in ids]
    assert statuses == [ItemStatus.TRANSLATED, ItemStatus.TRANSLATED, ItemStatus.PUBLISHED]
    assert any("nothing_sent" in error for error in report.errors)


def test_music_uses_longer_delay(conn, make_config):
    config = make_config()
    _seed_translated(conn, "music", ["Song"])
    sleeps = []

    run_publish(
        conn, config, "music", FakePublisher(), logging.getLogger("test"), sleep=sleeps.append
    )

    assert sleeps == [3.0]


def test_only_translated_items_are_published(conn, make_config):
    config = make_config()
    insert_items(
        conn,
        "news",
        [Candidate(title="Waiting", link="https://x.example/w", source="src")],
        ItemStatus.PENDING_REVIEW,
    )
    publisher = FakePublisher()

    report = run_publish(
        conn, config, "news", publisher, logging.getLogger("test"), sleep=lambda s: None
    )

    assert report.seen == 0
    assert publisher.published == []


def test_store_error_after_send_aborts_the_stage(conn, make_config):
    config = make_config()
    ids = _seed_translated(conn, "news", ["A", "B"])

    class RowDeletingPublisher(FakePublisher):
        def publish(self, item):
            conn.execute("DELETE FROM items WHERE id = ?", (item.id,))
            conn.commit()
            return super().publish(item)

    publisher = RowDeletingPublisher()

    with pytest.raises(ItemNotFoundError):
        run_publish(
            conn, config, "news", publisher, logging.getLogger("test"), sleep=lambda s: None
        )

    assert len(publisher.published) == 1
    remaining = [item_id for item_id in ids if item_id not in publisher.published]
    assert get_item(conn, remaining[0]).status == ItemStatus.TRANSLATED
