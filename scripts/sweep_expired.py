#!/usr/bin/env python3
"""
Governance maintenance sweep.

Removes expired AI cache entries and stale invites, and optionally retries
billing events whose state transition failed. Safe to run concurrently with
the API and on any schedule.

Usage:
    # Purge expired cache entries and invites (default - for cron)
    python3 scripts/sweep_expired.py

    # Also retry up to 500 unprocessed billing events
    python3 scripts/sweep_expired.py --retry-billing --limit 500
"""

import argparse
import asyncio

from governance.db.session import close_engines, get_write_session
from governance.observability import get_logger, setup_logging
from governance.services.maintenance import retry_billing_events, sweep_expired

logger = get_logger("governance.scripts.sweep_expired")


async def run(retry_billing: bool, limit: int) -> None:
    try:
        async with get_write_session() as session:
            await sweep_expired(session)
            if retry_billing:
                await retry_billing_events(session, limit=limit)
    finally:
        await close_engines()


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Purge expired governance rows",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--retry-billing",
        action="store_true",
        help="Retry billing events left unprocessed",
    )
    parser.add_argument(
        "--limit",
        type=int,
        default=100,
        help="Maximum billing events to retry (default: 100)",
    )
    args = parser.parse_args()

    setup_logging()
    logger.info("sweep_starting", retry_billing=args.retry_billing, limit=args.limit)
    asyncio.run(run(args.retry_billing, args.limit))


if __name__ == "__main__":
    main()
