"""Promo code validation and idempotent redemption."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import NoReturn
from uuid import UUID

from loguru import logger
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from coachly_api.core.clock import as_utc, utcnow
from coachly_api.core.money import ZERO, quantize_cents
from coachly_api.core.settings import settings
from coachly_api.models.commission import Commission
from coachly_api.models.influencer import Influencer, InfluencerStatusEnum
from coachly_api.models.promo_code import DiscountTypeEnum, PromoCode, PromoCodeRedemption, PromoCodeStatusEnum
from coachly_api.observability.commerce import get_commerce_store
from coachly_api.services.commissions.ledger import CommissionLedger
from coachly_api.services.errors import ValidationError, ValidationReason
from coachly_api.services.promotions.discounts import compute_discount
from coachly_api.services.promotions.store import PromoCodeStore

_MESSAGES: dict[ValidationReason, str] = {
    ValidationReason.NOT_FOUND: "Promo code not found",
    ValidationReason.INACTIVE: "Promo code is not active",
    ValidationReason.EXPIRED: "Promo code has expired",
    ValidationReason.NOT_YET_VALID: "Promo code is not yet valid",
    ValidationReason.BELOW_MINIMUM: "Order amount is below the minimum required for this promo code",
    ValidationReason.USAGE_EXCEEDED: "Promo code usage limit has been reached",
    ValidationReason.INVALID_AMOUNT: "Order amount must be positive",
}


@dataclass(slots=True, frozen=True)
class PromoCodeSnapshot:
    id: UUID
    code: str
    discount_type: DiscountTypeEnum
    value: Decimal
    max_discount: Decimal | None
    min_order_amount: Decimal | None
    usage_limit: int | None
    used_count: int
    influencer_id: UUID | None

    @classmethod
    def of(cls, promo_code: PromoCode) -> "PromoCodeSnapshot":
        return cls(
            id=promo_code.id,
            code=promo_code.code,
            discount_type=DiscountTypeEnum(promo_code.discount_type),
            value=quantize_cents(promo_code.value),
            max_discount=quantize_cents(promo_code.max_discount) if promo_code.max_discount is not None else None,
            min_order_amount=(
                quantize_cents(promo_code.min_order_amount) if promo_code.min_order_amount is not None else None
            ),
            usage_limit=promo_code.usage_limit,
            used_count=promo_code.used_count,
            influencer_id=promo_code.influencer_id,
        )


@dataclass(slots=True)
class PromoCodeValidation:
    valid: bool
    reason: ValidationReason | None = None
    message: str | None = None
    discount_amount: Decimal | None = None
    final_amount: Decimal | None = None
    promo_code: PromoCodeSnapshot | None = None

    @classmethod
    def rejected(cls, reason: ValidationReason, promo_code: PromoCode | None = None) -> "PromoCodeValidation":
        return cls(
            valid=False,
            reason=reason,
            message=_MESSAGES[reason],
            promo_code=PromoCodeSnapshot.of(promo_code) if promo_code is not None else None,
        )


@dataclass(slots=True)
class RedemptionOutcome:
    redemption: PromoCodeRedemption
    commission: Commission | None
    created: bool


class RedemptionService:
    """Validates promo codes against orders and redeems them once per purchase."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session
        self._store = PromoCodeStore(session)
        self._ledger = CommissionLedger(session)

    async def validate(
        self,
        code: str,
        order_amount: Decimal,
        *,
        now: datetime | None = None,
    ) -> PromoCodeValidation:
        """Read-only eligibility check; the first failing rule wins."""

        promo_code = await self._store.find_by_code(code)
        return self._evaluate(promo_code, order_amount, now or utcnow())

    async def redeem(
        self,
        code: str,
        purchase_id: str,
        subscription_amount: Decimal,
        *,
        currency: str | None = None,
        now: datetime | None = None,
    ) -> RedemptionOutcome:
        """Consume one use of ``code`` for ``purchase_id`` and commit.

        Repeated calls with the same ``purchase_id`` return the original
        outcome without touching counters or balances.
        """

        existing = await self._load_outcome(purchase_id)
        if existing is not None:
            get_commerce_store().record_redemption("replayed")
            logger.info("Redemption already recorded", purchase_id=purchase_id, code=code)
            return existing

        current = now or utcnow()
        promo_code = await self._store.find_by_code(code)
        validation = self._evaluate(promo_code, subscription_amount, current)
        if not validation.valid:
            self._reject(validation, code=code, purchase_id=purchase_id)

        if not await self._store.try_increment_usage(promo_code.id):
            await self._session.rollback()
            # Lost the race for the last slot, or the code changed underneath us.
            await self._session.refresh(promo_code)
            latest = self._evaluate(promo_code, subscription_amount, current)
            if latest.valid:
                latest = PromoCodeValidation.rejected(ValidationReason.USAGE_EXCEEDED, promo_code)
            self._reject(latest, code=code, purchase_id=purchase_id)

        order_amount = quantize_cents(subscription_amount)
        redemption = PromoCodeRedemption(
            purchase_id=purchase_id,
            promo_code_id=promo_code.id,
            order_amount=order_amount,
            discount_amount=validation.discount_amount,
            final_amount=validation.final_amount,
            currency=(currency or settings.default_currency).lower(),
            redeemed_at=current,
        )
        self._session.add(redemption)
        try:
            await self._session.flush()
        except IntegrityError:
            await self._session.rollback()
            logger.warning("Detected concurrent redemption for purchase", purchase_id=purchase_id)
            winner = await self._load_outcome(purchase_id)
            if winner is None:
                raise
            get_commerce_store().record_redemption("replayed")
            return winner

        commission = await self._attribute_commission(promo_code, redemption, order_amount)
        await self._session.commit()

        get_commerce_store().record_redemption("redeemed")
        logger.info(
            "Redeemed promo code",
            code=code,
            promo_code_id=str(promo_code.id),
            purchase_id=purchase_id,
            discount_amount=str(redemption.discount_amount),
            commission_id=str(commission.id) if commission else None,
        )
        return RedemptionOutcome(redemption=redemption, commission=commission, created=True)

    async def _attribute_commission(
        self,
        promo_code: PromoCode,
        redemption: PromoCodeRedemption,
        subscription_amount: Decimal,
    ) -> Commission | None:
        if promo_code.influencer_id is None:
            return None

        await self._session.execute(
            update(Influencer)
            .where(Influencer.id == promo_code.influencer_id)
            .values(total_referrals=Influencer.total_referrals + 1)
            .execution_options(synchronize_session=False)
        )
        influencer = await self._session.get(Influencer, promo_code.influencer_id)
        if influencer is None or influencer.status != InfluencerStatusEnum.APPROVED:
            logger.info(
                "Skipping commission for non-approved influencer",
                promo_code_id=str(promo_code.id),
                influencer_id=str(promo_code.influencer_id),
            )
            return None

        rate = promo_code.commission_rate
        if rate is None:
            rate = influencer.commission_rate
        if rate is None:
            rate = settings.default_commission_rate

        commission = await self._ledger.record_commission(
            influencer_id=influencer.id,
            subscription_amount=subscription_amount,
            rate=rate,
            purchase_id=redemption.purchase_id,
            currency=redemption.currency,
            promo_code_id=promo_code.id,
        )
        redemption.commission_id = commission.id
        await self._session.flush()
        return commission

    async def _load_outcome(self, purchase_id: str) -> RedemptionOutcome | None:
        stmt = select(PromoCodeRedemption).where(PromoCodeRedemption.purchase_id == purchase_id)
        redemption = (await self._session.execute(stmt)).scalar_one_or_none()
        if redemption is None:
            return None
        commission = None
        if redemption.commission_id is not None:
            commission = await self._session.get(Commission, redemption.commission_id)
        return RedemptionOutcome(redemption=redemption, commission=commission, created=False)

    @staticmethod
    def _evaluate(promo_code: PromoCode | None, order_amount: Decimal, now: datetime) -> PromoCodeValidation:
        if promo_code is None:
            return PromoCodeValidation.rejected(ValidationReason.NOT_FOUND)
        if promo_code.status != PromoCodeStatusEnum.ACTIVE:
            return PromoCodeValidation.rejected(ValidationReason.INACTIVE, promo_code)

        valid_until = as_utc(promo_code.valid_until)
        if valid_until is not None and now > valid_until:
            return PromoCodeValidation.rejected(ValidationReason.EXPIRED, promo_code)
        valid_from = as_utc(promo_code.valid_from)
        if valid_from is not None and now < valid_from:
            return PromoCodeValidation.rejected(ValidationReason.NOT_YET_VALID, promo_code)

        amount = quantize_cents(order_amount)
        if promo_code.min_order_amount is not None and amount < quantize_cents(promo_code.min_order_amount):
            return PromoCodeValidation.rejected(ValidationReason.BELOW_MINIMUM, promo_code)
        if promo_code.usage_limit is not None and promo_code.used_count >= promo_code.usage_limit:
            return PromoCodeValidation.rejected(ValidationReason.USAGE_EXCEEDED, promo_code)
        if amount <= ZERO:
            return PromoCodeValidation.rejected(ValidationReason.INVALID_AMOUNT, promo_code)

        quote = compute_discount(promo_code, amount)
        return PromoCodeValidation(
            valid=True,
            discount_amount=quote.discount_amount,
            final_amount=quote.final_amount,
            promo_code=PromoCodeSnapshot.of(promo_code),
        )

    @staticmethod
    def _reject(validation: PromoCodeValidation, *, code: str, purchase_id: str) -> NoReturn:
        reason = validation.reason or ValidationReason.NOT_FOUND
        get_commerce_store().record_redemption(reason.value)
        logger.info("Promo code redemption rejected", code=code, purchase_id=purchase_id, reason=reason.value)
        raise ValidationError(validation.message or _MESSAGES[reason], reason=reason)


__all__ = [
    "PromoCodeSnapshot",
    "PromoCodeValidation",
    "RedemptionOutcome",
    "RedemptionService",
]
