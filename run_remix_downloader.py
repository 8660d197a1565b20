"""
Remix Downloader

Downloads a post's video and every remix of it:
1. Fetch the root post from the JSON API
2. Walk the remix feed with its cursor (at most --max-pages pages)
3. Save a JSON snapshot and the video for each post, skipping videos
   already on disk

Usage:
    python run_remix_downloader.py --url https://sora.chatgpt.com/p/s_<id>
    python run_remix_downloader.py --url s_<id> --output downloads/
"""

import argparse
import asyncio
import json
import sys
from datetime import datetime
from pathlib import Path

import aiohttp
from dotenv import load_dotenv

from Sora_Content_Scraper.src.asset_fetcher import AssetFetcher, asset_basename, format_date_stamp
from Sora_Content_Scraper.src.config import (
    DEFAULT_API_BASE_URL,
    DEFAULT_MAX_PAGES,
    DEFAULT_TIMEOUT,
    CollectorConfig,
    build_headers,
)
from Sora_Content_Scraper.src.errors import ScraperError
from Sora_Content_Scraper.src.logger import setup_logging
from Sora_Content_Scraper.src.scraper_functions.page_collector import (
    ApiClient,
    PageCollector,
    extract_id_from_url,
)


async def download_remixes(ref: str, config: CollectorConfig, verbose: bool = False):
    logger = setup_logging("remix_downloader", verbose=verbose)

    item_id = extract_id_from_url(ref)
    if not item_id:
        raise ScraperError(f"Invalid URL or ID, cannot extract a post id: {ref}")
    logger.info(f"Post ID: {item_id}")

    if "authorization" not in config.headers:
        logger.warning("No authorization token provided. Requests may fail with 401/403 responses.")
    if not config.verify_ssl:
        logger.warning("TLS certificate verification is disabled")

    date_stamp = format_date_stamp()
    run_stats = {
        "post_id": item_id,
        "started_at": datetime.now().isoformat(),
        "remix_pages": 0,
        "items": 0,
        "downloaded": 0,
        "skipped": 0,
    }

    timeout = aiohttp.ClientTimeout(total=None, sock_connect=config.timeout, sock_read=config.timeout)
    connector = aiohttp.TCPConnector(ssl=False) if not config.verify_ssl else None
    async with aiohttp.ClientSession(timeout=timeout, connector=connector) as session:
        client = ApiClient(config.headers, timeout=config.timeout, session=session)
        collector = PageCollector(client, base_url=config.base_url, max_pages=config.max_pages)
        collection = await collector.collect(item_id)

        run_stats["remix_pages"] = collection.pages_fetched
        run_stats["items"] = len(collection.items)
        logger.info(f"Collected root + {len(collection.related)} remixes "
                    f"from {collection.pages_fetched} extra pages")

        root = collection.root.item
        output_dir = Path(config.output_dir) / asset_basename(date_stamp, root.item_id, root.author_id)
        # Must exist so resolve_media_path treats it as a directory
        output_dir.mkdir(parents=True, exist_ok=True)

        fetcher = AssetFetcher(session, config.headers, api_host=config.api_host,
                               device_id_header=config.device_id_header)
        for item in collection.items:
            await fetcher.fetch_asset(item, output_dir, date_stamp=date_stamp)

    run_stats.update(downloaded=fetcher.stats["downloaded"], skipped=fetcher.stats["skipped"])
    run_stats["completed_at"] = datetime.now().isoformat()

    summary_file = output_dir / f"run_summary_{datetime.now().strftime('%Y%m%d_%H%M%S')}.json"
    with open(summary_file, 'w', encoding='utf-8') as f:
        json.dump(run_stats, f, ensure_ascii=False, indent=2)

    logger.info(f"\n✅ Run complete! Summary saved to {summary_file}")
    logger.info(f"   - Posts: {run_stats['items']}")
    logger.info(f"   - Downloaded: {run_stats['downloaded']}")
    logger.info(f"   - Already on disk: {run_stats['skipped']}")
    return run_stats


def main():
    load_dotenv()

    parser = argparse.ArgumentParser(description="Download a post and all of its remixes")
    parser.add_argument("--url", "-u", type=str, required=True, help="Post URL or s_ id")
    parser.add_argument("--output", "-o", type=str, default="downloads", help="Base output directory")
    parser.add_argument("--base-url", type=str, default=DEFAULT_API_BASE_URL)
    parser.add_argument("--max-pages", type=int, default=DEFAULT_MAX_PAGES)
    parser.add_argument("--timeout", type=float, default=DEFAULT_TIMEOUT)
    parser.add_argument("--auth", "-a", type=str, default=None)
    parser.add_argument("--auth-file", type=str, default=None)
    parser.add_argument("--cookie-file", type=str, default=None)
    parser.add_argument("--device-id", type=str, default=None)
    parser.add_argument("--user-agent", type=str, default=None)
    parser.add_argument("--skip-cert-check", action="store_true",
                        help="Disable TLS certificate verification (use with caution)")
    parser.add_argument("--verbose", "-v", action="store_true")
    args = parser.parse_args()

    try:
        config = CollectorConfig(
            base_url=args.base_url,
            headers=build_headers(
                auth=args.auth,
                auth_file=args.auth_file,
                cookie_file=args.cookie_file,
                device_id=args.device_id,
                user_agent=args.user_agent,
            ),
            output_dir=Path(args.output),
            max_pages=args.max_pages,
            timeout=args.timeout,
            verify_ssl=not args.skip_cert_check,
        )
        asyncio.run(download_remixes(args.url, config, verbose=args.verbose))
    except KeyboardInterrupt:
        print("\nInterrupted.")
        sys.exit(130)
    except (ScraperError, aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
        print(f"\n❌ Failed to download remixes: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
