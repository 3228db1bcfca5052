#!/usr/bin/env python3
"""Quick health check for the Coachly commerce observability endpoint.

Usage:
    python tooling/scripts/check_commerce_observability.py \
        --base-url https://staging-api.example.com \
        --api-key "$CHECKOUT_API_KEY"

The script validates:
  * Coupon sync failures are within threshold.
  * Stripe payout failures are within threshold.
  * Webhook handler failures are within threshold.
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from typing import Any, Dict, Optional

import httpx


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Coachly commerce observability checker")
    parser.add_argument(
        "--base-url",
        default="http://localhost:8000",
        help="Base URL of the Coachly commerce API.",
    )
    parser.add_argument(
        "--api-key",
        default=None,
        help="Checkout API key, when the service enforces one.",
    )
    parser.add_argument(
        "--max-coupon-sync-failures",
        type=int,
        default=0,
        help="Maximum allowed coupon mirror failures before failing (default: 0).",
    )
    parser.add_argument(
        "--max-payout-failures",
        type=int,
        default=0,
        help="Maximum allowed payout failures before failing (default: 0).",
    )
    parser.add_argument(
        "--max-webhook-failures",
        type=int,
        default=0,
        help="Maximum allowed webhook handler failures before failing (default: 0).",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=10.0,
        help="HTTP request timeout in seconds.",
    )
    return parser.parse_args()


def _fail(message: str) -> None:
    print(f"[check-commerce] FAIL {message}")
    sys.exit(1)


def _log_ok(message: str) -> None:
    print(f"[check-commerce] OK {message}")


async def _fetch_snapshot(client: httpx.AsyncClient, api_key: Optional[str]) -> Dict[str, Any]:
    headers = {"X-API-Key": api_key} if api_key else None
    response = await client.get("/api/v1/commerce/observability", headers=headers)
    response.raise_for_status()
    return response.json()


def validate_snapshot(payload: Dict[str, Any], args: argparse.Namespace) -> None:
    coupon_failures = int(payload.get("coupon_sync", {}).get("totals", {}).get("failed", 0))
    if coupon_failures > args.max_coupon_sync_failures:
        reason = payload["coupon_sync"].get("events", {}).get("last_failure_reason")
        _fail(f"Coupon sync failures {coupon_failures} exceed threshold ({reason or 'no reason recorded'})")
    _log_ok(f"Coupon sync failures: {coupon_failures}")

    payout_failures = int(payload.get("payouts", {}).get("totals", {}).get("failed", 0))
    if payout_failures > args.max_payout_failures:
        reason = payload["payouts"].get("events", {}).get("last_failure_reason")
        _fail(f"Payout failures {payout_failures} exceed threshold ({reason or 'no reason recorded'})")
    _log_ok(f"Payout failures: {payout_failures}")

    failed_webhooks = payload.get("webhooks", {}).get("totals", {}).get("failed", {})
    webhook_failures = sum(int(count) for count in failed_webhooks.values())
    if webhook_failures > args.max_webhook_failures:
        _fail(f"Webhook failures {webhook_failures} exceed threshold: {failed_webhooks}")
    _log_ok(f"Webhook failures: {webhook_failures}")


async def main_async(args: argparse.Namespace) -> None:
    async with httpx.AsyncClient(base_url=args.base_url, timeout=args.timeout) as client:
        try:
            payload = await _fetch_snapshot(client, args.api_key)
        except httpx.HTTPError as exc:
            _fail(f"Unable to fetch commerce observability snapshot: {exc}")
            return
    validate_snapshot(payload, args)


def main() -> None:
    asyncio.run(main_async(parse_args()))


if __name__ == "__main__":
    main()
