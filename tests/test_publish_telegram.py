import logging
import os

import pytest
import requests

from feedrelay import publish as publish_module
from feedrelay.config import ConfigError
from feedrelay.media import MediaError
from feedrelay.models import Item, ItemStatus
from feedrelay.publish import PublishError, TelegramPublisher, _fit_escaped


class _Download:
    def __init__(self, content: bytes, status_code: int = 200) -> None:
        self.content = content
        self.status_code = status_code

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")

    def iter_content(self, chunk_size):
        yield self.content

    def __enter__(self):
        return self

    def __exit__(self, *exc) -> None:
        return None


class _ApiResponse:
    def __init__(self, payload, status_code=200):
        self._payload = payload
        self.status_code = status_code

    def json(self):
        return self._payload


class FakeSession:
    def __init__(self, downloads=None, failing_methods=()):
        self.downloads = downloads or {}
        self.failing_methods = set(failing_methods)
        self.posts = []

    def get(self, url, stream, timeout, headers):
        content = self.downloads.get(url)
        if content is None:
            return _Download(b"", status_code=404)
        return _Download(content)

    def post(self, url, data, files, timeout):
        method = url.rsplit("/", 1)[-1]
        self.posts.append(
            {
                "url": url,
                "method": method,
                "data": data,
                "files": sorted(files) if files else [],
            }
        )
        if method in self.failing_methods:
            return _ApiResponse({"ok": False, "description": "Bad Request: failed"}, 400)
        return _ApiResponse({"ok": True, "result": {"message_id": len(self.posts)}})

    def methods(self):
        return [post["method"] for post in self.posts]


def _item(**overrides):
    values = {
        "id": "item-1",
        "kind": "news",
        "title": "Original",
        "link": "https://x.example/1",
        "source": "src",
        "body": "Original body",
        "media_url": None,
        "image_url": None,
        "translated_title": "عنوان <مهم>",
        "translated_body": "متن خبر",
        "status": ItemStatus.TRANSLATED,
        "created_at": "2025-01-01T00:00:00+00:00",
        "updated_at": "2025-01-01T00:00:00+00:00",
    }
    values.update(overrides)
    return Item(**values)


def _publisher(make_config, tmp_path, session, overrides=None):
    config = make_config({"publishing": {"signature": "@channel", **(overrides or {})}})
    return TelegramPublisher(
        config.publishing,
        config.http,
        str(tmp_path / "tmp"),
        logging.getLogger("test"),
        bot_token="123:secret",
        channel_id="@channel",
        session=session,
        sleep=lambda seconds: None,
    )


def test_news_with_image_sends_photo(make_config, tmp_path):
    session = FakeSession({"https://img.example/a.jpg": b"jpeg"})
    publisher = _publisher(make_config, tmp_path, session)

    result = publisher.publish(_item(image_url="https://img.example/a.jpg"))

    assert result.success is True
    assert result.photo_sent is True
    assert session.methods() == ["sendPhoto"]
    post = session.posts[0]
    assert post["url"] == "https://api.telegram.org/bot123:secret/sendPhoto"
    assert post["files"] == ["photo"]
    assert post["data"]["caption"].startswith("<b>عنوان &lt;مهم&gt;</b>\n\nمتن خبر")
    assert post["data"]["caption"].endswith("\n\n@channel")
    assert os.listdir(tmp_path / "tmp") == []


def test_news_photo_failure_falls_back_to_message(make_config, tmp_path):
    session = FakeSession(failing_methods={"sendPhoto"}, downloads={"https://img.example/a.jpg": b"x"})
    publisher = _publisher(make_config, tmp_path, session)

    result = publisher.publish(_item(image_url="https://img.example/a.jpg"))

    assert result.text_sent is True
    assert result.photo_sent is False
    assert session.methods() == ["sendPhoto", "sendMessage"]


def test_news_without_image_sends_message(make_config, tmp_path):
    session = FakeSession()
    publisher = _publisher(make_config, tmp_path, session)

    result = publisher.publish(_item(translated_body="x" * 5000))

    assert result.text_sent is True
    text = session.posts[0]["data"]["text"]
    assert len(text) <= 4096
    assert text.endswith("\n\n@channel")


def test_message_failure_raises(make_config, tmp_path):
    session = FakeSession(failing_methods={"sendMessage"})
    publisher = _publisher(make_config, tmp_path, session)

    with pytest.raises(PublishError) as excinfo:
        publisher.publish(_item())
    assert "Bad Request" in str(excinfo.value)
    assert "secret" not in str(excinfo.value)


def test_music_sends_photo_then_audio(make_config, tmp_path):
    session = FakeSession(
        {
            "https://m.example/cover.jpg": b"jpeg",
            "https://m.example/song.mp3": b"mp3-bytes",
        }
    )
    publisher = _publisher(make_config, tmp_path, session)
    item = _item(
        kind="music",
        translated_title="آهنگ",
        translated_body="خواننده",
        image_url="https://m.example/cover.jpg",
        media_url="https://m.example/song.mp3",
    )

    result = publisher.publish(item)

    assert result.photo_sent is True
    assert result.audio_sent is True
    assert result.text_sent is False
    assert session.methods() == ["sendPhoto", "sendAudio"]
    caption = session.posts[0]["data"]["caption"]
    assert caption == "🎵 <b>آهنگ</b>\n\n🎙️ خواننده\n@channel"
    audio = session.posts[1]
    assert audio["files"] == ["audio", "thumbnail"]
    assert audio["data"]["title"] == "آهنگ"
    assert audio["data"]["performer"] == "خواننده"
    assert os.listdir(tmp_path / "tmp") == []


def test_music_audio_failure_falls_back_to_document(make_config, tmp_path):
    session = FakeSession(
        {"https://m.example/song.mp3": b"mp3-bytes"}, failing_methods={"sendAudio"}
    )
    publisher = _publisher(make_config, tmp_path, session)
    item = _item(kind="music", media_url="https://m.example/song.mp3")

    result = publisher.publish(item)

    assert result.document_sent is True
    assert result.audio_sent is False
    assert session.methods() == ["sendAudio", "sendDocument"]
    assert "Sent as document" in session.posts[1]["data"]["caption"]


def test_music_oversized_audio_uncompressible_goes_to_document(
    make_config, tmp_path, monkeypatch
):
    session = FakeSession({"https://m.example/song.mp3": b"0123456789"})
    publisher = _publisher(make_config, tmp_path, session, {"audio_limit_bytes": 5})

    def fail_compress(*args, **kwargs):
        raise MediaError("unable_to_compress_within_limit")

    monkeypatch.setattr(publish_module, "progressive_compress", fail_compress)

    result = publisher.publish(_item(kind="music", media_url="https://m.example/song.mp3"))

    assert result.document_sent is True
    assert session.methods() == ["sendDocument"]


def test_music_oversized_audio_is_compressed(make_config, tmp_path, monkeypatch):
    session = FakeSession({"https://m.example/song.mp3": b"0123456789"})
    publisher = _publisher(make_config, tmp_path, session, {"audio_limit_bytes": 5})
    produced = []

    def fake_compress(ffmpeg_path, input_path, target_size, bitrates, logger):
        output = input_path + ".small.mp3"
        with open(output, "wb") as handle:
            handle.write(b"123")
        produced.append(output)
        return output

    monkeypatch.setattr(publish_module, "progressive_compress", fake_compress)

    result = publisher.publish(_item(kind="music", media_url="https://m.example/song.mp3"))

    assert result.audio_sent is True
    assert session.methods() == ["sendAudio"]
    assert not os.path.exists(produced[0])


def test_music_without_media_sends_text(make_config, tmp_path):
    session = FakeSession()
    publisher = _publisher(make_config, tmp_path, session)

    result = publisher.publish(
        _item(kind="music", media_url="https://m.example/missing.mp3")
    )

    assert result.text_sent is True
    assert session.methods() == ["sendMessage"]
    assert "https://m.example/missing.mp3" in session.posts[0]["data"]["text"]


def test_from_env_requires_credentials(make_config, monkeypatch):
    config = make_config()
    with pytest.raises(ConfigError):
        TelegramPublisher.from_env(config, logging.getLogger("test"))

    monkeypatch.setenv("FR_TELEGRAM_BOT_TOKEN", "1:abc")
    monkeypatch.setenv("FR_TELEGRAM_CHANNEL_ID", "@news")
    publisher = TelegramPublisher.from_env(config, logging.getLogger("test"))
    assert publisher.channel_id == "@news"


def test_fit_escaped_counts_entities():
    text = "<" * 10
    fitted = _fit_escaped(text, 20)
    assert len(fitted) <= 20
    assert fitted.startswith("&lt;")
    assert _fit_escaped("short", 20) == "short"
