"""Stripe provider abstractions for coupon mirroring and influencer payouts."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Final, Mapping

import stripe
from loguru import logger

from coachly_api.core.money import from_cents, to_cents
from coachly_api.core.settings import settings
from coachly_api.services.errors import ExternalServiceError, OutcomeUnknownError, WebhookSignatureError

# Failures after which Stripe may already have applied the request.
_INDETERMINATE_ERRORS: Final[tuple[type[Exception], ...]] = (
    stripe.APIConnectionError,
    stripe.APIError,
    stripe.IdempotencyError,
)


@dataclass(slots=True)
class StripeCouponRecord:
    """Normalized coupon payload returned from Stripe."""

    coupon_id: str
    percent_off: Decimal | None
    amount_off: Decimal | None
    currency: str | None
    metadata: Mapping[str, str] = field(default_factory=dict)


@dataclass(slots=True)
class StripePromotionCodeRecord:
    """Normalized promotion code payload returned from Stripe."""

    promotion_code_id: str
    code: str
    coupon_id: str | None
    active: bool
    max_redemptions: int | None
    metadata: Mapping[str, str] = field(default_factory=dict)


@dataclass(slots=True)
class StripePayoutRecord:
    """Transfer of funds to an influencer's connected account."""

    payout_id: str
    status: str
    amount: Decimal
    currency: str
    destination: str
    created_at: datetime


def _metadata_of(item: Mapping[str, Any]) -> dict[str, str]:
    raw = item.get("metadata") or {}
    return {str(key): str(value) for key, value in dict(raw).items()}


class StripeCommerceProvider:
    """Thin asynchronous wrapper around the official Stripe SDK.

    Every SDK call runs in a worker thread and is bounded by
    ``stripe_timeout_seconds``. Rejections surface as ``ExternalServiceError``;
    timeouts and connection or server errors, after which Stripe may still
    have applied the call, surface as ``OutcomeUnknownError``.
    """

    _MAX_LIST_PAGES: Final[int] = 50

    def __init__(
        self,
        secret_key: str,
        webhook_secret: str | None = None,
        *,
        timeout_seconds: float | None = None,
        max_network_retries: int | None = None,
    ) -> None:
        if not secret_key:
            raise ValueError("Stripe secret key must be provided")
        self._secret_key = secret_key
        self._webhook_secret = webhook_secret
        self._timeout_seconds = timeout_seconds or settings.stripe_timeout_seconds
        stripe.api_key = secret_key
        stripe.max_network_retries = (
            max_network_retries if max_network_retries is not None else settings.stripe_max_network_retries
        )

    @classmethod
    def from_settings(cls) -> "StripeCommerceProvider":
        """Build the provider using application settings."""

        return cls(settings.stripe_secret_key, settings.stripe_webhook_secret)

    async def _run(self, func: Any, *args: Any, **kwargs: Any) -> Any:
        """Execute blocking Stripe SDK calls in a worker thread."""

        operation = getattr(func, "__qualname__", repr(func))
        try:
            return await asyncio.wait_for(asyncio.to_thread(func, *args, **kwargs), timeout=self._timeout_seconds)
        except asyncio.TimeoutError as exc:
            logger.warning("Stripe call timed out", operation=operation, timeout_seconds=self._timeout_seconds)
            raise OutcomeUnknownError(f"Stripe {operation} timed out") from exc
        except _INDETERMINATE_ERRORS as exc:
            logger.warning("Stripe call outcome unknown", operation=operation, error=str(exc))
            raise OutcomeUnknownError(f"Stripe {operation} outcome unknown: {exc}") from exc
        except stripe.StripeError as exc:
            logger.warning(
                "Stripe call failed",
                operation=operation,
                error=str(exc),
                code=getattr(exc, "code", None),
            )
            raise ExternalServiceError(f"Stripe {operation} failed: {exc.user_message or exc}") from exc

    async def _list_all(self, func: Any, *, page_size: int | None = None, **params: Any) -> list[Mapping[str, Any]]:
        items: list[Mapping[str, Any]] = []
        starting_after: str | None = None
        for _ in range(self._MAX_LIST_PAGES):
            query = dict(params, limit=page_size or settings.stripe_coupon_page_size)
            if starting_after:
                query["starting_after"] = starting_after
            response = await self._run(func, **query)
            page = list(response.get("data", []))
            items.extend(page)
            if not response.get("has_more") or not page:
                break
            starting_after = str(page[-1]["id"])
        return items

    async def list_coupons(self) -> list[StripeCouponRecord]:
        coupons: list[StripeCouponRecord] = []
        for item in await self._list_all(stripe.Coupon.list):
            percent_off = item.get("percent_off")
            amount_off = item.get("amount_off")
            currency = item.get("currency")
            coupons.append(
                StripeCouponRecord(
                    coupon_id=str(item["id"]),
                    percent_off=Decimal(str(percent_off)) if percent_off is not None else None,
                    amount_off=from_cents(int(amount_off)) if amount_off is not None else None,
                    currency=str(currency).lower() if currency else None,
                    metadata=_metadata_of(item),
                )
            )
        return coupons

    async def create_coupon(
        self,
        *,
        percent_off: Decimal | None = None,
        amount_off: Decimal | None = None,
        currency: str | None = None,
        name: str | None = None,
        metadata: Mapping[str, str],
        idempotency_key: str,
    ) -> StripeCouponRecord:
        """Create a single-use-per-checkout coupon (``duration=once``)."""

        if (percent_off is None) == (amount_off is None):
            raise ValueError("Exactly one of percent_off or amount_off is required")
        payload: dict[str, Any] = {"duration": "once", "metadata": dict(metadata)}
        if name:
            payload["name"] = name[:40]
        if percent_off is not None:
            payload["percent_off"] = float(percent_off)
        else:
            if not currency:
                raise ValueError("currency is required for amount_off coupons")
            payload["amount_off"] = to_cents(amount_off)
            payload["currency"] = currency.lower()

        coupon = await self._run(stripe.Coupon.create, idempotency_key=idempotency_key, **payload)
        return StripeCouponRecord(
            coupon_id=str(coupon["id"]),
            percent_off=percent_off,
            amount_off=amount_off,
            currency=currency.lower() if currency else None,
            metadata=_metadata_of(coupon),
        )

    async def list_promotion_codes(self) -> list[StripePromotionCodeRecord]:
        records: list[StripePromotionCodeRecord] = []
        for item in await self._list_all(stripe.PromotionCode.list):
            coupon = item.get("coupon")
            coupon_id = coupon.get("id") if isinstance(coupon, Mapping) else coupon
            records.append(
                StripePromotionCodeRecord(
                    promotion_code_id=str(item["id"]),
                    code=str(item.get("code", "")),
                    coupon_id=str(coupon_id) if coupon_id else None,
                    active=bool(item.get("active", True)),
                    max_redemptions=item.get("max_redemptions"),
                    metadata=_metadata_of(item),
                )
            )
        return records

    async def create_promotion_code(
        self,
        *,
        coupon_id: str,
        code: str,
        max_redemptions: int | None,
        expires_at: datetime | None,
        minimum_amount: Decimal | None,
        currency: str,
        metadata: Mapping[str, str],
        idempotency_key: str,
    ) -> StripePromotionCodeRecord:
        payload: dict[str, Any] = {"coupon": coupon_id, "code": code, "metadata": dict(metadata)}
        if max_redemptions is not None:
            payload["max_redemptions"] = max_redemptions
        if expires_at is not None:
            payload["expires_at"] = int(expires_at.timestamp())
        if minimum_amount is not None:
            payload["restrictions"] = {
                "minimum_amount": to_cents(minimum_amount),
                "minimum_amount_currency": currency.lower(),
            }

        promotion_code = await self._run(stripe.PromotionCode.create, idempotency_key=idempotency_key, **payload)
        return StripePromotionCodeRecord(
            promotion_code_id=str(promotion_code["id"]),
            code=code,
            coupon_id=coupon_id,
            active=bool(promotion_code.get("active", True)),
            max_redemptions=max_redemptions,
            metadata=_metadata_of(promotion_code),
        )

    async def create_payout(
        self,
        *,
        destination_account_id: str,
        amount: Decimal,
        currency: str,
        description: str | None,
        metadata: Mapping[str, str],
        idempotency_key: str,
    ) -> StripePayoutRecord:
        """Move ``amount`` to the influencer's connected account."""

        transfer = await self._run(
            stripe.Transfer.create,
            amount=to_cents(amount),
            currency=currency.lower(),
            destination=destination_account_id,
            description=description,
            metadata=dict(metadata),
            idempotency_key=idempotency_key,
        )
        created = datetime.fromtimestamp(transfer.get("created", 0), tz=timezone.utc)
        return StripePayoutRecord(
            payout_id=str(transfer["id"]),
            status="reversed" if transfer.get("reversed") else "paid",
            amount=from_cents(int(transfer.get("amount", to_cents(amount)))),
            currency=str(transfer.get("currency", currency)).lower(),
            destination=destination_account_id,
            created_at=created,
        )

    def construct_event(self, payload: str, signature: str | None) -> Mapping[str, Any]:
        """Verify a webhook signature and return the parsed event."""

        if not self._webhook_secret:
            raise WebhookSignatureError("Stripe webhook secret not configured", reason="WEBHOOK_NOT_CONFIGURED")
        if not signature:
            raise WebhookSignatureError("Missing Stripe signature header")
        try:
            return stripe.Webhook.construct_event(payload=payload, sig_header=signature, secret=self._webhook_secret)
        except stripe.SignatureVerificationError as exc:
            raise WebhookSignatureError("Invalid Stripe signature") from exc
        except ValueError as exc:
            raise WebhookSignatureError("Invalid payload body", reason="INVALID_PAYLOAD") from exc

    @property
    def webhook_secret(self) -> str | None:
        """Expose configured webhook signing secret."""

        return self._webhook_secret


__all__ = [
    "StripeCommerceProvider",
    "StripeCouponRecord",
    "StripePayoutRecord",
    "StripePromotionCodeRecord",
]
