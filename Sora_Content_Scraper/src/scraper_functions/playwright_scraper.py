"""
Rendered post page fetcher (Playwright)

Loads a public post page in Chromium and reads the data the page ships with:
- meta tags and the share-card prompt
- the Next.js flight payload holding the post/profile JSON
- ids of related posts linked from inline scripts

The page-automation part lives in ``PlaywrightScraper``; the parsing helpers
below it are plain functions so they can be used on saved HTML as well.
"""

import json
import logging
import re
from typing import Any, Dict, List, Optional, Tuple

from playwright.async_api import async_playwright, Page, BrowserContext, Browser

import Sora_Content_Scraper.src.logger
from Sora_Content_Scraper.src.config import DEFAULT_SHARE_URL, SORA_HOST, cookie_string_to_list
from Sora_Content_Scraper.src.scraper_functions.page_collector import Attachment, Item, PageListing, parse_item

logger = logging.getLogger('SCS.Browser')

FLIGHT_CHUNK_PATTERN = re.compile(r'self\.__next_f\.push\(\[1,\s*"(5:.*)"\]\)', re.DOTALL)
RELATED_POST_PATTERN = re.compile(
    r'(?:https?://)?' + re.escape(SORA_HOST) + r'/p/(s_[a-z0-9]{32})', re.IGNORECASE
)


# ============================================================================
# PAGE DATA PARSING
# ============================================================================

def decode_flight_chunk(script_text: str) -> Optional[Any]:
    """JSON value carried by a ``self.__next_f.push([1,"5:..."])`` script, if any."""
    match = FLIGHT_CHUNK_PATTERN.search(script_text)
    if not match:
        return None

    raw = match.group(1)
    try:
        # The capture is the body of a JS string literal
        text = json.loads('"' + raw + '"', strict=False)
    except json.JSONDecodeError as e:
        logger.debug(f"Failed to unescape flight chunk: {e}")
        return None

    if text.startswith('5:'):
        text = text[2:]
    text = text.rstrip('\n')

    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        logger.debug(f"Failed to parse Next.js data: {e}")
        return None


def extract_post_data(script_texts: List[str]) -> Optional[Dict[str, Any]]:
    """
    Find the post record in the flight payload.

    The payload is shaped ``["$", "$b", null, {"children": ["$", "$L13", null,
    {"post": {...}, "initialComments": {...}}]}]``; the inner ``post`` value is
    a ``{"post": ..., "profile": ...}`` record.
    """
    for text in script_texts:
        if '5:[' not in text:
            continue
        parsed = decode_flight_chunk(text)
        if not (isinstance(parsed, list) and len(parsed) > 3 and isinstance(parsed[3], dict)):
            continue

        children = parsed[3].get('children')
        if not (isinstance(children, list) and len(children) > 3 and isinstance(children[3], dict)):
            continue

        post_data = children[3]
        record = post_data.get('post')
        if not isinstance(record, dict):
            continue

        result = dict(record)
        if post_data.get('initialComments') is not None:
            result['initialComments'] = post_data['initialComments']
        return result
    return None


def extract_related_ids(script_texts: List[str], exclude: Optional[str] = None) -> List[str]:
    """Post ids linked from inline scripts, in first-seen order."""
    seen = []
    for text in script_texts:
        normalized = text.replace('\\/', '/')
        for match in RELATED_POST_PATTERN.finditer(normalized):
            post_id = match.group(1)
            if post_id != exclude and post_id not in seen:
                seen.append(post_id)
    return seen


def build_rendered_result(page_data: Dict[str, Any]) -> Tuple[Optional[Item], PageListing]:
    """Turn raw page data into the root Item plus a listing of related posts."""
    record = page_data.get('post_data')
    item = parse_item(record) if record else None
    if item is not None:
        item.raw = dict(record, pageMeta=page_data.get('metadata', {}))

    exclude = item.item_id if item else None
    related = []
    for post_id in extract_related_ids(page_data.get('scripts', []), exclude=exclude):
        related.append(Item(
            item_id=post_id,
            author_id='unknown',
            attachments=[],
            raw={'id': post_id, 'url': DEFAULT_SHARE_URL + post_id},
        ))
    return item, PageListing(items=related, cursor=None)


# ============================================================================
# PLAYWRIGHT PAGE FETCHER
# ============================================================================

class PlaywrightScraper:
    """Opens post pages in Chromium and hands back the embedded post data."""

    def __init__(
        self,
        headless: bool = True,
        slow_mo: int = 0,
        navigation_timeout: float = 600.0,
        selector_timeout: float = 200.0,
        wait_selector: str = 'video',
        executable_path: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
        ignore_https_errors: bool = False,
    ):
        self.headless = headless
        self.slow_mo = slow_mo
        self.navigation_timeout = navigation_timeout
        self.selector_timeout = selector_timeout
        self.wait_selector = wait_selector
        self.executable_path = executable_path
        self.headers = dict(headers or {})
        self.ignore_https_errors = ignore_https_errors

        self.playwright = None
        self.browser: Browser = None
        self.context: BrowserContext = None
        self.page: Page = None

        self.console_logs = []
        self.stats = {"pages_loaded": 0, "errors": 0}

    def _on_console(self, msg):
        self.console_logs.append({"type": msg.type, "text": msg.text})
        logger.debug(f"[browser log type:{msg.type}]: {msg.text}")

    async def start(self):
        self.playwright = await async_playwright().start()

        launch_args = {
            'headless': self.headless,
            'slow_mo': self.slow_mo,
            'args': ['--no-sandbox', '--disable-setuid-sandbox', '--lang=en-US,en'],
        }
        if self.executable_path:
            launch_args['executable_path'] = self.executable_path

        try:
            self.browser = await self.playwright.chromium.launch(**launch_args)
            logger.info("✓ Browser launched")
        except Exception as e:
            logger.error(f"❌ Browser launch failed: {e}")
            await self.playwright.stop()
            raise

        context_args = {
            'viewport': {'width': 1440, 'height': 1000},
            'locale': 'en-US',
            'ignore_https_errors': self.ignore_https_errors,
        }
        user_agent = {key.lower(): value for key, value in self.headers.items()}.get('user-agent')
        if user_agent:
            context_args['user_agent'] = user_agent
        self.context = await self.browser.new_context(**context_args)
        await self._apply_headers()

        self.page = await self.context.new_page()
        self.page.on('console', self._on_console)

    async def _apply_headers(self):
        """Push ``self.headers`` onto the live context. The user agent is fixed at context creation."""
        headers = {key.lower(): value for key, value in self.headers.items()}
        cookie = headers.pop('cookie', None)
        headers.pop('user-agent', None)
        await self.context.set_extra_http_headers(headers)

        if cookie:
            cookies = cookie_string_to_list(cookie)
            await self.context.add_cookies(cookies)
            logger.info(f"✓ Loaded {len(cookies)} cookies")

    async def stop(self):
        try:
            if self.context:
                await self.context.close()
            if self.browser:
                await self.browser.close()
        except Exception as e:
            logger.debug(f"Error closing browser: {e}")
        try:
            if self.playwright:
                await self.playwright.stop()
        except Exception as e:
            logger.debug(f"Error stopping playwright: {e}")

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.stop()

    async def _collect_page_data(self) -> Dict[str, Any]:
        return await self.page.evaluate('''
            () => {
                const metadata = {};
                document.querySelectorAll('meta').forEach(meta => {
                    const name = meta.getAttribute('name') || meta.getAttribute('property');
                    const content = meta.getAttribute('content');
                    if (name && content) {
                        metadata[name] = content;
                    }
                });
                const video = document.querySelector('main video') || document.querySelector('video');
                return {
                    title: document.title,
                    metadata,
                    videoSrc: video ? (video.currentSrc || video.getAttribute('src')) : null,
                    scripts: Array.from(document.querySelectorAll('script')).map(s => s.textContent || ''),
                };
            }
        ''')

    async def fetch_rendered_item(self, url: str, headers: Optional[Dict[str, str]] = None
                                  ) -> Tuple[Optional[Item], PageListing]:
        """Load ``url`` and return (root item, related posts listing)."""
        if headers is not None:
            self.headers = dict(headers)
            if self.context is not None:
                await self._apply_headers()
        if self.page is None:
            await self.start()

        logger.info(f"Loading page: {url}")
        try:
            await self.page.goto(url, wait_until='networkidle',
                                 timeout=self.navigation_timeout * 1000)
            await self.page.wait_for_selector(self.wait_selector,
                                              timeout=self.selector_timeout * 1000)
            page_data = await self._collect_page_data()
        except Exception as e:
            self.stats["errors"] += 1
            logger.error(f"Error scraping page: {e}")
            raise

        self.stats["pages_loaded"] += 1
        page_data['post_data'] = extract_post_data(page_data.get('scripts', []))
        if page_data['post_data'] is None:
            logger.warning("⚠️ Could not find post data in the page scripts")

        item, related = build_rendered_result(page_data)
        if item is not None and not item.download_url and page_data.get('videoSrc'):
            logger.debug("Post has no downloadable_url, falling back to the page video src")
            item.attachments.insert(0, Attachment(downloadable_url=page_data['videoSrc'], prompt=item.prompt))
        logger.info(f"✓ Page scraped: {len(related.items)} related posts")
        return item, related
