from __future__ import annotations

import html
import logging
import os
import time
from typing import Any, Callable

import requests

from .config import Config, ConfigError, HttpConfig, PublishingConfig
from .media import (
    MediaError,
    delete_file,
    download_file,
    file_size,
    progressive_compress,
)
from .models import Item, PublishResult
from .utils import log_event, truncate

TELEGRAM_API_BASE = "https://api.telegram.org"


class PublishError(RuntimeError):
    pass


class TelegramPublisher:
    def __init__(
        self,
        publishing_cfg: PublishingConfig,
        http_cfg: HttpConfig,
        temp_dir: str,
        logger: logging.Logger,
        *,
        bot_token: str,
        channel_id: str,
        session: requests.Session | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.publishing_cfg = publishing_cfg
        self.http_cfg = http_cfg
        self.temp_dir = temp_dir
        self.logger = logger
        self.bot_token = bot_token
        self.channel_id = channel_id
        self.session = session or requests.Session()
        self.sleep = sleep

    @classmethod
    def from_env(cls, config: Config, logger: logging.Logger) -> TelegramPublisher:
        bot_token = os.environ.get("FR_TELEGRAM_BOT_TOKEN")
        channel_id = os.environ.get("FR_TELEGRAM_CHANNEL_ID")
        if not bot_token or not channel_id:
            raise ConfigError("FR_TELEGRAM_BOT_TOKEN and FR_TELEGRAM_CHANNEL_ID are required")
        return cls(
            config.publishing,
            config.http,
            config.paths.temp_dir,
            logger,
            bot_token=bot_token,
            channel_id=channel_id,
        )

    def publish(self, item: Item) -> PublishResult:
        if item.kind == "music":
            return self._publish_music(item)
        return self._publish_news(item)

    def _publish_news(self, item: Item) -> PublishResult:
        if item.image_url:
            caption = self._news_text(item, self.publishing_cfg.caption_limit)
            try:
                self.send_photo(item.image_url, caption)
                return PublishResult(success=True, photo_sent=True)
            except (PublishError, MediaError) as exc:
                log_event(
                    self.logger,
                    logging.WARNING,
                    "photo_send_failed",
                    item_id=item.id,
                    error=str(exc),
                )
        self.send_message(self._news_text(item, self.publishing_cfg.message_limit))
        return PublishResult(success=True, text_sent=True)

    def _publish_music(self, item: Item) -> PublishResult:
        title = html.escape(item.translated_title or item.title)
        artist = html.escape(item.translated_body or item.body or "")
        caption = f"🎵 <b>{title}</b>\n\n🎙️ {artist}"
        if self.publishing_cfg.signature:
            caption += f"\n{self.publishing_cfg.signature}"

        photo_sent = False
        audio_sent = False
        document_sent = False
        if item.image_url:
            try:
                self.send_photo(item.image_url, caption)
                photo_sent = True
                self.sleep(1.0)
            except (PublishError, MediaError) as exc:
                log_event(
                    self.logger,
                    logging.WARNING,
                    "photo_send_failed",
                    item_id=item.id,
                    error=str(exc),
                )
        if item.media_url:
            try:
                delivered = self._deliver_audio(item)
                audio_sent = delivered == "audio"
                document_sent = delivered == "document"
            except (PublishError, MediaError) as exc:
                log_event(
                    self.logger,
                    logging.WARNING,
                    "audio_send_failed",
                    item_id=item.id,
                    error=str(exc),
                )

        text_sent = False
        if not (photo_sent or audio_sent or document_sent):
            text = (
                f"{caption}\n\n🎵 Audio: {html.escape(item.media_url or 'Not available')}"
                f"\n🖼️ Image: {html.escape(item.image_url or 'Not available')}"
            )
            self.send_message(text)
            text_sent = True
        return PublishResult(
            success=True,
            photo_sent=photo_sent,
            audio_sent=audio_sent,
            document_sent=document_sent,
            text_sent=text_sent,
        )

    def _deliver_audio(self, item: Item) -> str:
        title = item.translated_title or item.title
        performer = item.translated_body or item.body or ""
        local_path = self._download(item.media_url or "", "audio")
        compressed_path = None
        thumb_path = None
        try:
            original_size = file_size(local_path)
            to_send = local_path
            if original_size > self.publishing_cfg.audio_limit_bytes:
                log_event(
                    self.logger,
                    logging.INFO,
                    "audio_too_large",
                    item_id=item.id,
                    size=original_size,
                )
                try:
                    compressed_path = progressive_compress(
                        self.publishing_cfg.ffmpeg_path,
                        local_path,
                        self.publishing_cfg.audio_limit_bytes,
                        self.publishing_cfg.compression_bitrates,
                        self.logger,
                    )
                    to_send = compressed_path
                except MediaError:
                    if original_size <= self.publishing_cfg.document_limit_bytes:
                        self.send_document(local_path, title, performer)
                        return "document"
                    raise
            if item.image_url:
                try:
                    thumb_path = self._download(item.image_url, "thumb")
                except MediaError as exc:
                    log_event(
                        self.logger,
                        logging.INFO,
                        "thumb_download_failed",
                        item_id=item.id,
                        error=str(exc),
                    )
            try:
                self.send_audio(to_send, title, performer, thumb_path)
                return "audio"
            except PublishError as exc:
                if file_size(to_send) > self.publishing_cfg.document_limit_bytes:
                    raise
                log_event(
                    self.logger,
                    logging.WARNING,
                    "audio_fallback_document",
                    item_id=item.id,
                    error=str(exc),
                )
                self.send_document(to_send, title, performer)
                return "document"
        finally:
            delete_file(local_path, self.logger)
            if compressed_path and compressed_path != local_path:
                delete_file(compressed_path, self.logger)
            delete_file(thumb_path, self.logger)

    def send_message(self, text: str) -> dict[str, Any]:
        return self._call(
            "sendMessage",
            {"chat_id": self.channel_id, "text": text, "parse_mode": "HTML"},
        )

    def send_photo(self, image_url: str, caption: str) -> dict[str, Any]:
        local_path = self._download(image_url, "image")
        try:
            with open(local_path, "rb") as handle:
                return self._call(
                    "sendPhoto",
                    {"chat_id": self.channel_id, "caption": caption, "parse_mode": "HTML"},
                    files={"photo": handle},
                )
        finally:
            delete_file(local_path, self.logger)

    def send_audio(
        self, path: str, title: str, performer: str, thumb_path: str | None = None
    ) -> dict[str, Any]:
        data = {
            "chat_id": self.channel_id,
            "title": title,
            "performer": performer,
            "parse_mode": "HTML",
        }
        with open(path, "rb") as audio:
            if not thumb_path:
                return self._call("sendAudio", data, files={"audio": audio})
            with open(thumb_path, "rb") as thumb:
                return self._call("sendAudio", data, files={"audio": audio, "thumbnail": thumb})

    def send_document(self, path: str, title: str, performer: str) -> dict[str, Any]:
        size_mb = file_size(path) / 1024 / 1024
        caption = (
            f"🎵 <b>{html.escape(title or 'Audio File')}</b>\n"
            f"🎙️ {html.escape(performer or 'Unknown Artist')}\n"
            f"📁 Size: {size_mb:.2f}MB\n"
            "📎 Sent as document due to size limit"
        )
        with open(path, "rb") as handle:
            return self._call(
                "sendDocument",
                {"chat_id": self.channel_id, "caption": caption, "parse_mode": "HTML"},
                files={"document": (os.path.basename(path), handle, "audio/mpeg")},
            )

    def _download(self, url: str, prefix: str) -> str:
        return download_file(
            self.session,
            url,
            self.temp_dir,
            prefix,
            timeout=self.http_cfg.timeout_seconds,
            user_agent=self.http_cfg.user_agent,
            logger=self.logger,
        )

    def _call(
        self, method: str, data: dict[str, Any], files: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        url = f"{TELEGRAM_API_BASE}/bot{self.bot_token}/{method}"
        try:
            response = self.session.post(
                url,
                data=data,
                files=files,
                timeout=self.publishing_cfg.timeout_seconds,
            )
        except requests.RequestException as exc:
            raise PublishError(f"{method}: {self._redact(str(exc))}") from exc
        try:
            payload = response.json()
        except ValueError:
            payload = {}
        if response.status_code != 200 or not payload.get("ok"):
            description = payload.get("description") or f"http_status={response.status_code}"
            raise PublishError(f"{method}: {description}")
        return payload.get("result") or {}

    def _redact(self, text: str) -> str:
        return text.replace(self.bot_token, "***")

    def _news_text(self, item: Item, limit: int) -> str:
        title = html.escape(item.translated_title or item.title)
        header = f"<b>{title}</b>\n\n"
        footer = f"\n\n{self.publishing_cfg.signature}" if self.publishing_cfg.signature else ""
        budget = max(0, limit - len(header) - len(footer))
        return header + _fit_escaped(item.translated_body or "", budget) + footer


def _fit_escaped(text: str, budget: int) -> str:
    """Escape ``text`` for Telegram HTML, truncated so the result fits ``budget``."""
    raw_limit = min(budget, len(text))
    while raw_limit > 0:
        escaped = html.escape(truncate(text, raw_limit))
        if len(escaped) <= budget:
            return escaped
        # An escaped character is at most six characters long.
        raw_limit -= max(1, (len(escaped) - budget) // 6)
    return ""
