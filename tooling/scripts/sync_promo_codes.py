"""Run one promo code sweep: expire lapsed codes and mirror pending ones to Stripe.

Intended usage: schedule via cron when the in-process coupon sync worker is
disabled, or run by hand after a Stripe outage.

Example:
    python tooling/scripts/sync_promo_codes.py --batch-size 100
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

from loguru import logger


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Execute a promo code coupon sync sweep once")
    parser.add_argument(
        "--batch-size",
        type=int,
        default=None,
        help="Override the number of promo codes pushed to Stripe in this sweep.",
    )
    parser.add_argument(
        "--max-attempts",
        type=int,
        default=None,
        help="Skip codes that already failed this many sync attempts.",
    )
    return parser.parse_args()


async def _run(batch_size: int | None, max_attempts: int | None) -> dict[str, int]:
    repo_root = Path(__file__).resolve().parents[2]
    api_src = repo_root / "apps" / "api" / "src"
    if str(api_src) not in sys.path:
        sys.path.insert(0, str(api_src))

    from coachly_api.db.session import async_session, engine  # type: ignore import-position
    from coachly_api.workers import CouponSyncWorker  # type: ignore import-position

    worker = CouponSyncWorker(
        async_session,  # type: ignore[arg-type]
        batch_size=batch_size,
        max_attempts=max_attempts,
    )
    try:
        return await worker.run_once()
    finally:
        await engine.dispose()


def main() -> int:
    args = parse_args()
    summary = asyncio.run(_run(args.batch_size, args.max_attempts))
    logger.success(
        "Promo code sync run completed",
        expired=summary.get("expired", 0),
        synced=summary.get("synced", 0),
        failed=summary.get("failed", 0),
        skipped=summary.get("skipped", 0),
    )
    return 1 if summary.get("failed", 0) else 0


if __name__ == "__main__":
    sys.exit(main())
