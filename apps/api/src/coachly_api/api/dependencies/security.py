"""Shared-secret guards for internal callers; an unset key disables its guard."""

import secrets

from fastapi import Header, HTTPException, status

from coachly_api.core.settings import settings


def _verify_key(provided: str, expected: str, detail: str) -> None:
    if not expected:
        return
    if not secrets.compare_digest(provided.encode("utf-8"), expected.encode("utf-8")):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)


async def require_checkout_api_key(x_api_key: str = Header("", alias="X-API-Key")) -> None:
    _verify_key(x_api_key, settings.checkout_api_key, "Invalid API key")


async def require_admin_api_key(x_api_key: str = Header("", alias="X-API-Key")) -> None:
    """Guard promo code, influencer, and payout administration."""

    _verify_key(x_api_key, settings.admin_api_key, "Invalid admin API key")
