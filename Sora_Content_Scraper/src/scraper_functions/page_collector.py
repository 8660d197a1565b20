"""
Remix feed collector

Fetches a root post from the JSON API, then walks its remix feed page by page
using the opaque cursor the API hands back. Pagination stops when a page comes
back without a cursor, when a page is missing its ``items`` list, or after
``max_pages`` requests.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import aiohttp

import Sora_Content_Scraper.src.logger
from Sora_Content_Scraper.src.config import DEFAULT_API_BASE_URL, DEFAULT_MAX_PAGES, DEFAULT_TIMEOUT
from Sora_Content_Scraper.src.errors import PageCollectionError

logger = logging.getLogger('SCS.Collector')

ITEM_ID_PATTERN = re.compile(r'/(s_[a-f0-9]+)', re.IGNORECASE)
FIRST_LABEL = 11


# ============================================================================
# DATA CLASSES
# ============================================================================

@dataclass
class Attachment:
    downloadable_url: Optional[str]
    prompt: str = ""


@dataclass
class Item:
    """A post plus the profile that owns it, as returned by the API."""
    item_id: str
    author_id: str
    attachments: List[Attachment]
    raw: Dict[str, Any]
    label: Optional[int] = None

    @property
    def download_url(self) -> Optional[str]:
        for attachment in self.attachments:
            if attachment.downloadable_url:
                return attachment.downloadable_url
        return None

    @property
    def prompt(self) -> str:
        return self.attachments[0].prompt if self.attachments else ""


@dataclass
class PageListing:
    items: List[Item]
    cursor: Optional[str] = None


@dataclass
class RootItem:
    item: Item
    remix_count: int = 0
    cursor: Optional[str] = None
    first_page: List[Item] = field(default_factory=list)


@dataclass
class Collection:
    root: RootItem
    related: List[Item]
    pages_fetched: int = 0

    @property
    def items(self) -> List[Item]:
        return [self.root.item] + self.related


# ============================================================================
# URL HELPERS
# ============================================================================

def extract_id_from_url(url: str) -> Optional[str]:
    """``s_...`` ids pass through; otherwise the first ``/s_<hex>`` path segment."""
    if url.startswith('s_') and '/' not in url:
        return url
    match = ITEM_ID_PATTERN.search(url)
    return match.group(1) if match else None


def normalize_url(ref: str, cursor: Optional[str] = None,
                  base_url: str = DEFAULT_API_BASE_URL) -> str:
    """Map an id or share URL to the item API URL (remix feed page when ``cursor`` is set)."""
    item_id = extract_id_from_url(ref)
    if item_id is None:
        return ref

    url = base_url.rstrip('/') + '/' + item_id
    if cursor:
        url += '/remix_feed?cursor=' + quote(cursor, safe='')
    return url


def parse_item(data: Dict[str, Any]) -> Optional[Item]:
    """Build an Item from a ``{"post": ..., "profile": ...}`` record."""
    if not isinstance(data, dict):
        return None
    post = data.get('post')
    if not isinstance(post, dict) or not post.get('id'):
        return None

    profile = data.get('profile') or {}
    if not isinstance(profile, dict):
        profile = {}

    attachments = []
    for attachment in post.get('attachments') or []:
        if isinstance(attachment, dict):
            attachments.append(Attachment(
                downloadable_url=attachment.get('downloadable_url'),
                prompt=attachment.get('prompt') or '',
            ))

    author_id = profile.get('username') or profile.get('user_id') or post.get('shared_by') or 'unknown'
    return Item(item_id=str(post['id']), author_id=str(author_id), attachments=attachments, raw=data)


def parse_items(raw_items) -> List[Item]:
    items = []
    for raw in raw_items or []:
        item = parse_item(raw)
        if item is None:
            logger.debug("Skipping remix entry without a post id")
            continue
        items.append(item)
    return items


# ============================================================================
# API CLIENT
# ============================================================================

class ApiClient:
    """JSON GETs with shared headers and a per-request timeout."""

    def __init__(self, headers: dict | None = None, *, timeout: float = DEFAULT_TIMEOUT,
                 session: Optional[aiohttp.ClientSession] = None):
        self.headers = dict(headers or {})
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self._session = session
        self._owns_session = session is None

    @property
    def session(self) -> Optional[aiohttp.ClientSession]:
        return self._session

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
            self._owns_session = True
        return self._session

    async def close(self):
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()

    async def __aenter__(self):
        await self._get_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def get_json(self, url: str) -> Any:
        session = await self._get_session()
        logger.info(f"Requesting: {url}")
        async with session.get(url, headers=self.headers, timeout=self.timeout) as resp:
            if resp.status != 200:
                logger.warning(f"Received non-200 status {resp.status} for {url}")
            resp.raise_for_status()
            return await resp.json(content_type=None)


# ============================================================================
# COLLECTOR
# ============================================================================

class PageCollector:
    def __init__(self, client, base_url: str = DEFAULT_API_BASE_URL,
                 max_pages: int = DEFAULT_MAX_PAGES):
        self.client = client
        self.base_url = base_url
        self.max_pages = max_pages

    async def collect_root(self, ref: str) -> RootItem:
        url = normalize_url(ref, base_url=self.base_url)
        try:
            data = await self.client.get_json(url)
        except aiohttp.ClientError as e:
            raise PageCollectionError(f"Failed to fetch root item {ref}: {e}") from e

        item = parse_item(data)
        if item is None:
            raise PageCollectionError(f"Root item {ref} has no post data")

        post = data['post']
        remix_count = 0
        cursor = None
        first_page: List[Item] = []

        # Alternate response shape that nests children; no remix feed to follow
        if 'children' not in data:
            remix_count = int(post.get('remix_count') or 0)
            remix_posts = post.get('remix_posts') or {}
            if isinstance(remix_posts, dict):
                cursor = remix_posts.get('cursor') or None
                first_page = parse_items(remix_posts.get('items'))

        return RootItem(item=item, remix_count=remix_count, cursor=cursor, first_page=first_page)

    async def collect_page(self, ref: str, cursor: str) -> Optional[PageListing]:
        """One remix feed page, or None when the response lacks an ``items`` list."""
        url = normalize_url(ref, cursor=cursor, base_url=self.base_url)
        data = await self.client.get_json(url)

        if not isinstance(data, dict) or not isinstance(data.get('items'), list):
            logger.warning(f"Remix page for {ref} has no items list, stopping pagination")
            return None

        return PageListing(items=parse_items(data['items']), cursor=data.get('cursor') or None)

    async def collect(self, ref: str) -> Collection:
        root = await self.collect_root(ref)
        related = list(root.first_page)
        logger.info(f"--- remix_count: {root.remix_count} remix videos for {root.item.item_id}")

        cursor = root.cursor
        pages = 0
        while cursor and pages < self.max_pages:
            pages += 1
            logger.info(f"--- Requesting remix page {pages}")
            listing = await self.collect_page(root.item.item_id, cursor)
            if listing is None:
                break
            related.extend(listing.items)
            if not listing.cursor:
                logger.info("--- No more remix videos, pagination finished")
                break
            cursor = listing.cursor
        else:
            if cursor:
                logger.warning(f"Stopped after {self.max_pages} remix pages with a cursor still pending")

        root.item.label = FIRST_LABEL
        for counter, item in enumerate(related, start=FIRST_LABEL + 1):
            item.label = counter

        return Collection(root=root, related=related, pages_fetched=pages)
