"""
Fetch one post by rendering its public page in a browser, then download it.

Usage: python get_video_info.py --url <post_url> [--output downloads/] [--headless]
Example: python get_video_info.py --url https://sora.chatgpt.com/p/s_68e5d5037b4c8191b33992ce7f8feaee
"""

import argparse
import asyncio
import sys
from pathlib import Path

import aiohttp
from dotenv import load_dotenv
from playwright.async_api import Error as PlaywrightError

from Sora_Content_Scraper.src.asset_fetcher import AssetFetcher, asset_basename, format_date_stamp
from Sora_Content_Scraper.src.config import DEFAULT_SHARE_URL, build_headers
from Sora_Content_Scraper.src.errors import PageCollectionError, ScraperError
from Sora_Content_Scraper.src.logger import setup_logging
from Sora_Content_Scraper.src.scraper_functions.page_collector import extract_id_from_url
from Sora_Content_Scraper.src.scraper_functions.playwright_scraper import PlaywrightScraper


async def get_video_info(url: str, output: str, headers: dict, headless: bool = True,
                         wait_selector: str = 'video', verbose: bool = False, verify_ssl: bool = True):
    logger = setup_logging("video_info", verbose=verbose)

    item_id = extract_id_from_url(url)
    if item_id and not url.startswith(("http://", "https://")):
        url = DEFAULT_SHARE_URL + item_id

    async with PlaywrightScraper(headless=headless, wait_selector=wait_selector, headers=headers,
                                 ignore_https_errors=not verify_ssl) as scraper:
        item, related = await scraper.fetch_rendered_item(url)

    if item is None:
        raise PageCollectionError(f"No post data found on {url}")

    logger.info(f"Post {item.item_id} by {item.author_id}")
    logger.info(f"Prompt: {item.prompt[:120]}")
    for post in related.items:
        logger.info(f"  related: {post.raw['url']}")

    date_stamp = format_date_stamp()
    destination = Path(output) / asset_basename(date_stamp, item.item_id, item.author_id)
    destination.mkdir(parents=True, exist_ok=True)
    connector = aiohttp.TCPConnector(ssl=False) if not verify_ssl else None
    async with aiohttp.ClientSession(connector=connector) as session:
        result = await AssetFetcher(session, headers).fetch_asset(item, destination, date_stamp=date_stamp)

    print(f"\n✅ {result.media_path}{' (already downloaded)' if result.skipped else ''}")
    return item, related


def main():
    load_dotenv()

    parser = argparse.ArgumentParser(description="Render a post page and download its video")
    parser.add_argument("--url", "-u", type=str, required=True, help="Post URL or s_ id")
    parser.add_argument("--output", "-o", type=str, default="downloads")
    parser.add_argument("--headless", action="store_true")
    parser.add_argument("--wait-selector", type=str, default="video")
    parser.add_argument("--auth", "-a", type=str, default=None)
    parser.add_argument("--auth-file", type=str, default=None)
    parser.add_argument("--cookie-file", type=str, default=None)
    parser.add_argument("--user-agent", type=str, default=None)
    parser.add_argument("--skip-cert-check", action="store_true",
                        help="Disable TLS certificate verification (use with caution)")
    parser.add_argument("--verbose", "-v", action="store_true")
    args = parser.parse_args()

    try:
        headers = build_headers(auth=args.auth, auth_file=args.auth_file,
                                cookie_file=args.cookie_file, user_agent=args.user_agent)
        asyncio.run(get_video_info(args.url, args.output, headers, headless=args.headless,
                                   wait_selector=args.wait_selector, verbose=args.verbose,
                                   verify_ssl=not args.skip_cert_check))
    except KeyboardInterrupt:
        sys.exit(130)
    except (ScraperError, PlaywrightError, aiohttp.ClientError, OSError) as e:
        print(f"❌ Failed to fetch video: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
