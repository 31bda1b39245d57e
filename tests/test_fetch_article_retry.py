from urllib.error import HTTPError, URLError

from feedrelay import ingest


class _Response:
    def __init__(self, body: bytes) -> None:
        self._body = body

    def getcode(self) -> int:
        return 200

    def read(self) -> bytes:
        return self._body

    def __enter__(self):
        return self

    def __exit__(self, *exc) -> None:
        return None


def test_fetch_retries_network_errors(monkeypatch):
    attempts = []
    sleeps = []

    def fake_urlopen(request, timeout):
        attempts.append(request.full_url)
        if len(attempts) == 1:
            raise URLError("connection reset")
        return _Response(b"<html></html>")

    monkeypatch.setattr(ingest, "urlopen", fake_urlopen)
    monkeypatch.setattr(ingest.time, "sleep", sleeps.append)

    status, content, error = ingest._fetch_url(
        "https://example.com/page", headers={}, timeout=5, max_retries=1, backoff_seconds=3
    )

    assert (status, content, error) == (200, b"<html></html>", None)
    assert len(attempts) == 2
    assert sleeps == [3]


def test_fetch_gives_up_after_max_retries(monkeypatch):
    sleeps = []

    def fake_urlopen(request, timeout):
        raise TimeoutError("timed out")

    monkeypatch.setattr(ingest, "urlopen", fake_urlopen)
    monkeypatch.setattr(ingest.time, "sleep", sleeps.append)

    status, content, error = ingest._fetch_url(
        "https://example.com/page", headers={}, timeout=5, max_retries=2, backoff_seconds=1
    )

    assert status is None
    assert content is None
    assert error == "timed out"
    assert sleeps == [1, 2]


def test_fetch_does_not_retry_http_errors(monkeypatch):
    calls = []

    def fake_urlopen(request, timeout):
        calls.append(request)
        raise HTTPError(request.full_url, 404, "Not Found", hdrs=None, fp=None)

    monkeypatch.setattr(ingest, "urlopen", fake_urlopen)
    monkeypatch.setattr(ingest.time, "sleep", lambda seconds: None)

    status, content, error = ingest._fetch_url(
        "https://example.com/missing", headers={}, timeout=5, max_retries=3, backoff_seconds=1
    )

    assert status == 404
    assert content is None
    assert "404" in error
    assert len(calls) == 1
