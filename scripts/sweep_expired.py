#!/usr/bin/env python3
"""Run the expiration sweeper once.

Deletes expired carts and expires stale pending checkout sessions, for
deployments that schedule the sweep externally (cron, Kubernetes CronJob)
with SWEEPER_ENABLED=false on the API.

Usage:
    python scripts/sweep_expired.py
    python scripts/sweep_expired.py --loop --interval 60
"""

import argparse
import asyncio

import structlog

from ucp_checkout.application.sweeper import ExpirationSweeper
from ucp_checkout.infrastructure.collaborators import close_collaborators
from ucp_checkout.infrastructure.config import settings
from ucp_checkout.infrastructure.database import engine
from ucp_checkout.infrastructure.logging import configure_logging

logger = structlog.get_logger()


async def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Delete expired carts and expire stale checkout sessions",
    )
    parser.add_argument(
        "--loop",
        action="store_true",
        help="Keep sweeping instead of running once",
    )
    parser.add_argument(
        "--interval",
        type=float,
        default=settings.sweeper_interval_seconds,
        help="Seconds between sweeps with --loop",
    )
    args = parser.parse_args()

    configure_logging()
    sweeper = ExpirationSweeper()
    try:
        if args.loop:
            await sweeper.run_forever(args.interval)
        else:
            result = await sweeper.sweep_once()
            print(f"Deleted {result.carts_deleted} carts, expired {result.sessions_expired} sessions")
    finally:
        await close_collaborators()
        await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
