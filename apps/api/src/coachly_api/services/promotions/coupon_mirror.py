"""Best-effort projection of promo codes into Stripe coupons and promotion codes."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict
from uuid import UUID

from loguru import logger
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from coachly_api.core.clock import as_utc, utcnow
from coachly_api.core.settings import settings
from coachly_api.models.promo_code import (
    CouponSyncStatusEnum,
    DiscountTypeEnum,
    PromoCode,
    PromoCodeStatusEnum,
)
from coachly_api.observability.commerce import get_commerce_store
from coachly_api.services.billing.providers.stripe import StripeCommerceProvider

METADATA_KEY = "promo_code_id"


@dataclass(slots=True, frozen=True)
class _MirrorTerms:
    promo_code_id: UUID
    code: str
    discount_type: DiscountTypeEnum
    value: Decimal
    usage_limit: int | None
    min_order_amount: Decimal | None
    valid_until: datetime | None
    influencer_id: UUID | None

    @property
    def fingerprint(self) -> str:
        raw = "|".join(
            str(part)
            for part in (
                self.code,
                self.discount_type.value,
                self.value,
                self.usage_limit,
                self.min_order_amount,
                self.valid_until.isoformat() if self.valid_until else None,
            )
        )
        return hashlib.sha256(raw.encode("utf-8")).hexdigest()[:16]

    def metadata(self) -> dict[str, str]:
        payload = {METADATA_KEY: str(self.promo_code_id), "promo_code": self.code}
        if self.influencer_id is not None:
            payload["influencer_id"] = str(self.influencer_id)
        return payload


@dataclass(slots=True)
class CouponSyncResult:
    promo_code_id: UUID
    status: str
    coupon_id: str | None = None
    promotion_code_id: str | None = None
    created_coupon: bool = False
    created_promotion_code: bool = False
    error: str | None = None


class CouponMirror:
    """Keeps Stripe in step with local promo codes, keyed on ``promo_code_id`` metadata.

    Failures never propagate: they are logged, counted, and written to the
    promo code's ``sync_status`` so the reconciliation worker retries them.
    """

    def __init__(self, session: AsyncSession, provider: StripeCommerceProvider | None) -> None:
        self._session = session
        self._provider = provider

    async def sync(self, promo_code_id: UUID) -> CouponSyncResult:
        promo_code = await self._session.get(PromoCode, promo_code_id)
        if promo_code is None:
            return CouponSyncResult(promo_code_id=promo_code_id, status="missing")
        if promo_code.sync_status == CouponSyncStatusEnum.SYNCED and promo_code.stripe_promotion_code_id:
            return CouponSyncResult(
                promo_code_id=promo_code_id,
                status="synced",
                coupon_id=promo_code.stripe_coupon_id,
                promotion_code_id=promo_code.stripe_promotion_code_id,
            )
        if self._provider is None:
            logger.info("Stripe not configured; coupon mirror skipped", promo_code_id=str(promo_code_id))
            return CouponSyncResult(promo_code_id=promo_code_id, status="skipped")

        terms = _MirrorTerms(
            promo_code_id=promo_code.id,
            code=promo_code.code,
            discount_type=DiscountTypeEnum(promo_code.discount_type),
            value=Decimal(promo_code.value),
            usage_limit=promo_code.usage_limit,
            min_order_amount=Decimal(promo_code.min_order_amount) if promo_code.min_order_amount is not None else None,
            valid_until=as_utc(promo_code.valid_until),
            influencer_id=promo_code.influencer_id,
        )
        # Close the read transaction before talking to Stripe.
        await self._session.commit()

        try:
            result = await self._project(self._provider, terms)
        except Exception as exc:  # noqa: BLE001 - mirroring is best-effort
            logger.exception("Coupon mirror sync failed", promo_code_id=str(promo_code_id), error=str(exc))
            get_commerce_store().record_coupon_sync(False, str(exc))
            await self._record_failure(promo_code_id, str(exc))
            return CouponSyncResult(promo_code_id=promo_code_id, status="failed", error=str(exc))

        await self._session.execute(
            update(PromoCode)
            .where(PromoCode.id == promo_code_id)
            .values(
                stripe_coupon_id=result.coupon_id,
                stripe_promotion_code_id=result.promotion_code_id,
                sync_status=CouponSyncStatusEnum.SYNCED,
                sync_attempts=PromoCode.sync_attempts + 1,
                last_sync_error=None,
                synced_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        await self._session.commit()
        await self._session.refresh(promo_code)

        get_commerce_store().record_coupon_sync(True)
        logger.info(
            "Coupon mirror synced",
            promo_code_id=str(promo_code_id),
            coupon_id=result.coupon_id,
            promotion_code_id=result.promotion_code_id,
            created_coupon=result.created_coupon,
            created_promotion_code=result.created_promotion_code,
        )
        return result

    async def sync_pending(self, *, limit: int | None = None, max_attempts: int | None = None) -> Dict[str, int]:
        """Retry active codes whose mirror is pending or failed."""

        stmt = (
            select(PromoCode.id)
            .where(
                PromoCode.status == PromoCodeStatusEnum.ACTIVE,
                PromoCode.sync_status.in_((CouponSyncStatusEnum.PENDING, CouponSyncStatusEnum.FAILED)),
                PromoCode.sync_attempts < (max_attempts or settings.coupon_sync_max_attempts),
            )
            .order_by(PromoCode.updated_at.asc())
            .limit(limit or settings.coupon_sync_batch_size)
        )
        promo_code_ids = list((await self._session.execute(stmt)).scalars().all())
        summary: Dict[str, int] = {"synced": 0, "failed": 0, "skipped": 0}
        for promo_code_id in promo_code_ids:
            result = await self.sync(promo_code_id)
            bucket = result.status if result.status in summary else "skipped"
            summary[bucket] += 1
        return summary

    @staticmethod
    async def _project(provider: StripeCommerceProvider, terms: _MirrorTerms) -> CouponSyncResult:
        key = str(terms.promo_code_id)

        for record in await provider.list_promotion_codes():
            if record.metadata.get(METADATA_KEY) == key:
                return CouponSyncResult(
                    promo_code_id=terms.promo_code_id,
                    status="synced",
                    coupon_id=record.coupon_id,
                    promotion_code_id=record.promotion_code_id,
                )

        coupon_id: str | None = None
        created_coupon = False
        for coupon in await provider.list_coupons():
            if coupon.metadata.get(METADATA_KEY) == key:
                coupon_id = coupon.coupon_id
                break
        if coupon_id is None:
            coupon_kwargs: dict[str, Any] = {}
            if terms.discount_type is DiscountTypeEnum.PERCENTAGE:
                coupon_kwargs["percent_off"] = terms.value
            else:
                coupon_kwargs["amount_off"] = terms.value
                coupon_kwargs["currency"] = settings.default_currency
            coupon = await provider.create_coupon(
                name=terms.code,
                metadata=terms.metadata(),
                idempotency_key=f"promo-coupon-{key}-{terms.fingerprint}",
                **coupon_kwargs,
            )
            coupon_id = coupon.coupon_id
            created_coupon = True

        promotion_code = await provider.create_promotion_code(
            coupon_id=coupon_id,
            code=terms.code,
            max_redemptions=terms.usage_limit,
            expires_at=terms.valid_until,
            minimum_amount=terms.min_order_amount,
            currency=settings.default_currency,
            metadata=terms.metadata(),
            idempotency_key=f"promo-code-{key}-{terms.fingerprint}",
        )
        return CouponSyncResult(
            promo_code_id=terms.promo_code_id,
            status="synced",
            coupon_id=coupon_id,
            promotion_code_id=promotion_code.promotion_code_id,
            created_coupon=created_coupon,
            created_promotion_code=True,
        )

    async def _record_failure(self, promo_code_id: UUID, error: str) -> None:
        try:
            await self._session.rollback()
            await self._session.execute(
                update(PromoCode)
                .where(PromoCode.id == promo_code_id)
                .values(
                    sync_status=CouponSyncStatusEnum.FAILED,
                    sync_attempts=PromoCode.sync_attempts + 1,
                    last_sync_error=error[:2000],
                )
                .execution_options(synchronize_session=False)
            )
            await self._session.commit()
        except Exception as exc:  # noqa: BLE001 - mirroring is best-effort
            await self._session.rollback()
            logger.exception("Failed to record coupon mirror failure", promo_code_id=str(promo_code_id), error=str(exc))


__all__ = ["CouponMirror", "CouponSyncResult", "METADATA_KEY"]
