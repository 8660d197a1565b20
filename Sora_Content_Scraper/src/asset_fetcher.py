"""
Downloads one post's video next to a JSON snapshot of its metadata.

The JSON snapshot is rewritten on every call; the video is skipped when the
target file already exists, so re-running a collection only fetches what is
missing. Videos are streamed to ``<name>.part`` and renamed once complete.
"""

import asyncio
import json
import logging
import os
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path, PurePosixPath
from typing import Dict, Optional
from urllib.parse import urlparse

import aiofiles
import aiohttp

import Sora_Content_Scraper.src.logger
from Sora_Content_Scraper.src.config import DEFAULT_DEVICE_ID_HEADER, SORA_HOST
from Sora_Content_Scraper.src.errors import AssetDownloadError
from Sora_Content_Scraper.src.scraper_functions.page_collector import Item

logger = logging.getLogger('SCS.Assets')

DOWNLOAD_CHUNK_SIZE = 131072
DEFAULT_EXTENSION = '.mp4'
DOWNLOAD_ACCEPT = 'video/*,application/octet-stream;q=0.9,*/*;q=0.8'
CROSS_ORIGIN_DROP = ('authorization', 'content-type', 'content-length')


@dataclass
class AssetResult:
    item_id: str
    json_path: Path
    media_path: Path
    skipped: bool = False
    size: Optional[int] = None


def format_date_stamp(now: Optional[datetime] = None) -> str:
    return (now or datetime.now()).strftime('%Y%m%d')


def format_bytes(size) -> str:
    if not isinstance(size, (int, float)) or size <= 0:
        return 'unknown size'
    units = ['B', 'KB', 'MB', 'GB', 'TB']
    index = 0
    value = float(size)
    while value >= 1024 and index < len(units) - 1:
        value /= 1024
        index += 1
    return f"{value:.0f} {units[index]}" if index == 0 else f"{value:.1f} {units[index]}"


def infer_extension(download_url: Optional[str]) -> str:
    if not download_url:
        return DEFAULT_EXTENSION
    try:
        suffix = PurePosixPath(urlparse(download_url).path).suffix
    except ValueError:
        return DEFAULT_EXTENSION
    return suffix or DEFAULT_EXTENSION


def asset_basename(date_stamp: str, item_id: str, author_id: str) -> str:
    return f"{date_stamp}_{item_id}_{author_id}"


def resolve_media_path(destination, file_name: str) -> Path:
    """
    Where the media file goes for ``destination``:
    existing directory -> generated name inside it; existing file -> itself;
    missing path -> a file path if the last segment has an extension, else a directory.
    """
    destination = Path(destination)
    if destination.is_dir():
        return destination / file_name
    if destination.exists():
        return destination
    if destination.suffix:
        return destination
    return destination / file_name


def build_download_headers(base_headers: Dict[str, str], download_url: str,
                           api_host: str = SORA_HOST,
                           device_id_header: str = DEFAULT_DEVICE_ID_HEADER) -> Dict[str, str]:
    """Copy of ``base_headers`` for a media GET; credentials stay on the API host only."""
    headers = {key.lower(): value for key, value in base_headers.items()}
    headers['accept'] = DOWNLOAD_ACCEPT

    hostname = urlparse(download_url).hostname or ''
    if not (hostname == api_host or hostname.endswith('.' + api_host)):
        for name in CROSS_ORIGIN_DROP + (device_id_header.lower(),):
            headers.pop(name, None)

    return headers


def write_metadata(json_path: Path, data) -> None:
    json_path.parent.mkdir(parents=True, exist_ok=True)
    with open(json_path, 'w', encoding='utf-8') as f:
        json.dump(data, f, ensure_ascii=False, indent=4)


class AssetFetcher:
    def __init__(self, session: aiohttp.ClientSession, headers: Optional[Dict[str, str]] = None,
                 api_host: str = SORA_HOST, device_id_header: str = DEFAULT_DEVICE_ID_HEADER):
        self.session = session
        self.headers = dict(headers or {})
        self.api_host = api_host
        self.device_id_header = device_id_header
        self.stats = {"downloaded": 0, "skipped": 0, "bytes": 0}

    async def fetch_asset(self, item: Item, destination, date_stamp: Optional[str] = None) -> AssetResult:
        date_stamp = date_stamp or format_date_stamp()
        download_url = item.download_url
        base_name = asset_basename(date_stamp, item.item_id, item.author_id)

        media_path = resolve_media_path(destination, base_name + infer_extension(download_url))
        json_path = media_path.parent / f"{base_name}.json"

        await asyncio.to_thread(write_metadata, json_path, item.raw)
        label = f"[{item.label}] " if item.label is not None else ""
        logger.info(f"{label}ID: {item.item_id} | JSON saved to: {json_path}")

        if media_path.exists():
            logger.info(f"File already exists, skipping download: {item.item_id}")
            self.stats["skipped"] += 1
            return AssetResult(item.item_id, json_path, media_path, skipped=True)

        if not download_url:
            raise AssetDownloadError(str(item.item_id), 0, "no downloadable_url")

        logger.info(f"Downloading: {media_path}")
        size = await self._stream_to_file(download_url, media_path)
        self.stats["downloaded"] += 1
        logger.info(f"Download completed: {media_path}")
        return AssetResult(item.item_id, json_path, media_path, size=size)

    async def _stream_to_file(self, download_url: str, media_path: Path) -> Optional[int]:
        headers = build_download_headers(self.headers, download_url, self.api_host, self.device_id_header)
        part_path = media_path.with_name(media_path.name + '.part')
        media_path.parent.mkdir(parents=True, exist_ok=True)

        async with self.session.get(download_url, headers=headers) as resp:
            if not 200 <= resp.status < 400:
                raise AssetDownloadError(download_url, resp.status, resp.reason or '')

            total_size = resp.content_length
            if total_size:
                logger.info(f"Size: {format_bytes(total_size)}")

            written = 0
            try:
                async with aiofiles.open(part_path, 'wb') as f:
                    async for chunk in resp.content.iter_chunked(DOWNLOAD_CHUNK_SIZE):
                        await f.write(chunk)
                        written += len(chunk)
            except BaseException:
                if part_path.exists():
                    part_path.unlink()
                raise

        os.replace(part_path, media_path)
        self.stats["bytes"] += written
        return total_size
