from __future__ import annotations

import logging
import os
import subprocess
import uuid
from urllib.parse import urlsplit

import requests

from .utils import log_event


class MediaError(RuntimeError):
    pass


def file_extension(url: str, default: str = ".tmp") -> str:
    try:
        path = urlsplit(url).path
    except ValueError:
        return default
    _, extension = os.path.splitext(path)
    return extension or default


def file_size(path: str) -> int:
    try:
        return os.path.getsize(path)
    except OSError:
        return 0


def delete_file(path: str | None, logger: logging.Logger) -> None:
    if not path:
        return
    try:
        os.remove(path)
    except FileNotFoundError:
        return
    except OSError as exc:
        log_event(logger, logging.WARNING, "temp_file_delete_failed", path=path, error=str(exc))


def download_file(
    session: requests.Session,
    url: str,
    temp_dir: str,
    prefix: str,
    *,
    timeout: int,
    user_agent: str,
    logger: logging.Logger,
) -> str:
    os.makedirs(temp_dir, exist_ok=True)
    path = os.path.join(temp_dir, f"{prefix}_{uuid.uuid4().hex}{file_extension(url)}")
    try:
        with session.get(
            url,
            stream=True,
            timeout=timeout,
            headers={"User-Agent": user_agent},
        ) as response:
            response.raise_for_status()
            with open(path, "wb") as handle:
                for chunk in response.iter_content(chunk_size=64 * 1024):
                    if chunk:
                        handle.write(chunk)
    except (requests.RequestException, OSError) as exc:
        delete_file(path, logger)
        raise MediaError(f"download_failed {url}: {exc}") from exc
    log_event(logger, logging.INFO, "media_downloaded", url=url, path=path, size=file_size(path))
    return path


def compress_audio(ffmpeg_path: str, input_path: str, output_path: str, bitrate: str) -> str:
    cmd = [
        ffmpeg_path,
        "-y",
        "-loglevel",
        "error",
        "-i",
        input_path,
        "-vn",
        "-ac",
        "2",
        "-ar",
        "44100",
        "-b:a",
        bitrate,
        "-f",
        "mp3",
        output_path,
    ]
    try:
        proc = subprocess.run(cmd, capture_output=True, text=True, check=False)
    except OSError as exc:
        raise MediaError(f"ffmpeg_unavailable: {exc}") from exc
    if proc.returncode != 0:
        raise MediaError(f"ffmpeg_failed rc={proc.returncode}: {(proc.stderr or '').strip()[:300]}")
    return output_path


def progressive_compress(
    ffmpeg_path: str,
    input_path: str,
    target_size: int,
    bitrates: list[str],
    logger: logging.Logger,
) -> str:
    base, _ = os.path.splitext(input_path)
    for bitrate in bitrates:
        output_path = f"{base}_{bitrate}.mp3"
        try:
            compress_audio(ffmpeg_path, input_path, output_path, bitrate)
        except MediaError as exc:
            log_event(logger, logging.WARNING, "compression_failed", bitrate=bitrate, error=str(exc))
            delete_file(output_path, logger)
            continue
        size = file_size(output_path)
        log_event(logger, logging.INFO, "compression_attempt", bitrate=bitrate, size=size)
        if size <= target_size:
            return output_path
        delete_file(output_path, logger)
    raise MediaError("unable_to_compress_within_limit")
