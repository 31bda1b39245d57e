import logging

import pytest

from feedrelay.config import ConfigError
from feedrelay.ingest import FetchError
from feedrelay.models import Candidate, Detail, ItemStatus
from feedrelay.pipelines.stages import run_ingest
from feedrelay.storage import count_items, get_item, list_items_by_status, list_source_runs
from feedrelay.utils import fingerprint

SOURCES = {
    "Alpha": {"url": "https://alpha.example", "selectors": {"container": "li"}},
    "Beta": {"url": "https://beta.example", "selectors": {"container": "li"}},
}


class FakeSource:
    def __init__(self, listings):
        self.listings = listings
        self.calls = []

    def list_candidates(self, source):
        self.calls.append(source.name)
        result = self.listings[source.name]
        if isinstance(result, Exception):
            raise result
        return result

    def fetch_detail(self, link, source):
        return Detail()


def _news_config(make_config):
    return make_config({"kinds": {"news": {"sources": SOURCES}}})


def test_failing_source_does_not_stop_others(conn, make_config):
    config = _news_config(make_config)
    client = FakeSource(
        {
            "Alpha": FetchError("https://alpha.example: timed out"),
            "Beta": [
                Candidate(title="One", link="https://beta.example/1", source="Beta"),
                Candidate(title="Two", link="https://beta.example/2", source="Beta"),
            ],
        }
    )

    report = run_ingest(conn, config, "news", client, logging.getLogger("test"))

    assert client.calls == ["Alpha", "Beta"]
    assert report.failed == 1
    assert report.advanced == 2
    assert report.seen == 2
    assert "Alpha" in report.errors[0]
    items = list_items_by_status(conn, "news", ItemStatus.PENDING_REVIEW, 10)
    assert {item.title for item in items} == {"One", "Two"}
    runs = {run["source"]: run for run in list_source_runs(conn, kind="news")}
    assert runs["Alpha"]["status"] == "error"
    assert runs["Beta"]["status"] == "ok"
    assert runs["Beta"]["items_inserted"] == 2


def test_single_source_and_all(conn, make_config):
    config = _news_config(make_config)
    client = FakeSource({"Alpha": [], "Beta": []})

    run_ingest(conn, config, "news", client, logging.getLogger("test"), "Beta")
    assert client.calls == ["Beta"]

    run_ingest(conn, config, "news", client, logging.getLogger("test"), "all")
    assert client.calls == ["Beta", "Alpha", "Beta"]


def test_unknown_source_lists_available(conn, make_config):
    config = _news_config(make_config)
    with pytest.raises(ConfigError) as excinfo:
        run_ingest(conn, config, "news", FakeSource({}), logging.getLogger("test"), "Gamma")
    assert "Gamma" in str(excinfo.value)
    assert "Alpha, Beta" in str(excinfo.value)


def test_invalid_and_duplicate_candidates_are_skipped(conn, make_config):
    config = _news_config(make_config)
    good = Candidate(title="Story", link="https://alpha.example/s", source="Alpha")
    client = FakeSource(
        {
            "Alpha": [
                good,
                Candidate(title="  ", link="https://alpha.example/blank", source="Alpha"),
                Candidate(title="No link", link="", source="Alpha"),
            ],
            "Beta": [good],
        }
    )

    report = run_ingest(conn, config, "news", client, logging.getLogger("test"))

    assert report.seen == 4
    assert report.advanced == 1
    assert report.skipped == 3
    assert count_items(conn, "news") == 1
    runs = {run["source"]: run for run in list_source_runs(conn, kind="news")}
    assert runs["Alpha"]["skipped_invalid"] == 2
    assert runs["Beta"]["skipped_duplicates"] == 1


def test_rerun_inserts_nothing(conn, make_config):
    config = _news_config(make_config)
    client = FakeSource(
        {
            "Alpha": [Candidate(title="A", link="https://alpha.example/a", source="Alpha")],
            "Beta": [],
        }
    )
    run_ingest(conn, config, "news", client, logging.getLogger("test"))
    report = run_ingest(conn, config, "news", client, logging.getLogger("test"))
    assert report.advanced == 0
    assert report.skipped == 1
    assert count_items(conn, "news") == 1


def test_music_starts_pending_translation_with_artist(conn, make_config):
    config = make_config(
        {
            "kinds": {
                "music": {
                    "sources": {
                        "Tracks": {"url": "https://music.example", "selectors": {"container": "div"}}
                    }
                }
            }
        }
    )
    candidate = Candidate(
        title="Song", link="https://music.example/t/1", source="Tracks", artist="Singer"
    )
    client = FakeSource({"Tracks": [candidate]})

    report = run_ingest(conn, config, "music", client, logging.getLogger("test"))

    assert report.advanced == 1
    item = get_item(conn, fingerprint("Song", "https://music.example/t/1"))
    assert item.kind == "music"
    assert item.status == ItemStatus.PENDING_TRANSLATION
    assert item.body == "Singer"
