"""
Code Prober Runner

Probes random 6-character codes against an endpoint you are authorized to
test, in concurrent batches, until one comes back not rejected:
1. Tried codes persist across restarts (JSON file or SQLite)
2. Accepted codes go to a per-UTC-day success file
3. The endpoint and credentials come from flags or the environment

Usage:
    python run_prober.py --endpoint https://example.test/api/accept
    python run_prober.py --policy minimal --batch-size 50
    python run_prober.py --store sqlite --state-dir progress_tracking/
"""

import argparse
import asyncio
import os
import sqlite3
import sys
from pathlib import Path

from dotenv import load_dotenv

from Sora_Content_Scraper.src.batch_coordinator import BatchCoordinator
from Sora_Content_Scraper.src.code_ledger import SuccessLedger, open_code_store
from Sora_Content_Scraper.src.config import (
    DEFAULT_BATCH_SIZE,
    DEFAULT_PER_TASK_DELAY,
    DEFAULT_TIMEOUT,
    POLICIES,
    ProbeConfig,
    build_headers,
)
from Sora_Content_Scraper.src.errors import ScraperError
from Sora_Content_Scraper.src.logger import setup_logging
from Sora_Content_Scraper.src.probe_executor import ProbeExecutor


async def run_prober(config: ProbeConfig, verbose: bool = False) -> int:
    logger = setup_logging("prober", verbose=verbose)

    logger.info("=" * 70)
    logger.info("CODE PROBER")
    logger.info(f"Endpoint: {config.endpoint}")
    logger.info(f"Batch size: {config.batch_size} | Concurrency: {config.concurrency} | "
                f"Policy: {config.policy.name} | Store: {config.store}")
    logger.info("=" * 70)

    if "authorization" not in config.headers:
        logger.warning("No authorization credential set. Requests may be rejected with 401/403.")

    store = open_code_store(config.store, config.state_dir)
    ledger = SuccessLedger(config.state_dir)

    try:
        async with ProbeExecutor(config.endpoint, config.headers, timeout=config.timeout) as prober:
            coordinator = BatchCoordinator(
                prober=prober,
                store=store,
                ledger=ledger,
                batch_size=config.batch_size,
                concurrency=config.concurrency,
                per_task_delay=config.per_task_delay,
                policy=config.policy,
                retry_unreachable=config.retry_unreachable,
                max_batches=config.max_batches,
            )
            result = await coordinator.run()
    finally:
        store.close()

    logger.info(f"\n✅ Done after {result.batches} batches ({result.probed} codes probed)")
    logger.info(f"   - Tried codes on record: {result.tried_total}")
    logger.info(f"   - Accepted: {', '.join(result.accepted) or 'none'}")
    logger.info(f"   - Success file: {ledger.path}")
    return 0


def main():
    load_dotenv()

    parser = argparse.ArgumentParser(description="Batched code prober with resumable progress")

    parser.add_argument("--endpoint", type=str, default=os.environ.get("PROBE_ENDPOINT_URL"),
                        help="URL to POST codes to (or PROBE_ENDPOINT_URL)")
    parser.add_argument("--state-dir", type=str, default=".", help="Where ledger files live")
    parser.add_argument("--store", choices=["json", "sqlite"], default="json")

    parser.add_argument("--batch-size", type=int, default=DEFAULT_BATCH_SIZE)
    parser.add_argument("--concurrency", type=int, default=None, help="Max probes in flight (default: batch size)")
    parser.add_argument("--delay", type=float, default=DEFAULT_PER_TASK_DELAY, help="Seconds after each probe")
    parser.add_argument("--timeout", type=float, default=DEFAULT_TIMEOUT)
    parser.add_argument("--policy", choices=sorted(POLICIES), default="strict")
    parser.add_argument("--retry-unreachable", action="store_true",
                        help="Do not mark codes that got no response as tried")
    parser.add_argument("--max-batches", type=int, default=None)

    parser.add_argument("--auth", "-a", type=str, default=None)
    parser.add_argument("--auth-file", type=str, default=None)
    parser.add_argument("--device-id", type=str, default=None)
    parser.add_argument("--user-agent", type=str, default=None)
    parser.add_argument("--verbose", "-v", action="store_true")

    args = parser.parse_args()

    try:
        headers = build_headers(
            auth=args.auth,
            auth_file=args.auth_file,
            device_id=args.device_id,
            user_agent=args.user_agent,
        )
        config = ProbeConfig(
            endpoint=args.endpoint,
            headers=headers,
            state_dir=Path(args.state_dir),
            batch_size=args.batch_size,
            concurrency=args.concurrency,
            per_task_delay=args.delay,
            timeout=args.timeout,
            policy=POLICIES[args.policy],
            retry_unreachable=args.retry_unreachable,
            max_batches=args.max_batches,
            store=args.store,
        )
        sys.exit(asyncio.run(run_prober(config, verbose=args.verbose)))
    except KeyboardInterrupt:
        print("\nInterrupted.")
        sys.exit(130)
    except (ScraperError, OSError, sqlite3.Error) as e:
        print(f"Fatal error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
