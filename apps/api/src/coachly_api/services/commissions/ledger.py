"""Commission records and influencer earning aggregates."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from loguru import logger
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from coachly_api.core.clock import utcnow
from coachly_api.core.money import HUNDRED, ZERO, percentage_of, quantize_cents, to_decimal
from coachly_api.core.settings import settings
from coachly_api.models.commission import Commission, CommissionStatusEnum
from coachly_api.models.influencer import Influencer
from coachly_api.models.promo_code import PromoCode
from coachly_api.services.errors import ConflictError, NotFoundError, ValidationError, ValidationReason

_ALLOWED_TRANSITIONS: dict[CommissionStatusEnum, frozenset[CommissionStatusEnum]] = {
    CommissionStatusEnum.PENDING: frozenset(
        {CommissionStatusEnum.APPROVED, CommissionStatusEnum.PAID, CommissionStatusEnum.CANCELLED}
    ),
    CommissionStatusEnum.APPROVED: frozenset({CommissionStatusEnum.PAID, CommissionStatusEnum.CANCELLED}),
    CommissionStatusEnum.PAID: frozenset(),
    CommissionStatusEnum.CANCELLED: frozenset(),
}


@dataclass(slots=True)
class InfluencerEarningsSummary:
    influencer_id: UUID
    total_earnings: Decimal
    available_balance: Decimal
    total_withdrawn: Decimal
    total_referrals: int
    successful_referrals: int
    conversion_rate: Decimal
    average_commission: Decimal
    commission_counts: dict[str, int] = field(default_factory=dict)
    commission_totals: dict[str, Decimal] = field(default_factory=dict)


class CommissionLedger:
    """Owns commission rows and the earning side of influencer balances."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def record_commission(
        self,
        *,
        influencer_id: UUID,
        subscription_amount: Decimal,
        rate: Decimal,
        purchase_id: str,
        currency: str | None = None,
        promo_code_id: UUID | None = None,
    ) -> Commission:
        """Insert a commission and credit the influencer in the caller's transaction.

        The balance delta is applied with an UPDATE expression rather than a
        read-modify-write, so concurrent credits never overwrite each other.
        The caller commits.
        """

        amount_base = quantize_cents(subscription_amount)
        rate_snapshot = quantize_cents(rate)
        if amount_base <= ZERO:
            raise ValidationError("Subscription amount must be positive", reason=ValidationReason.INVALID_AMOUNT)
        if not (ZERO <= rate_snapshot <= HUNDRED):
            raise ValidationError("Commission rate must be between 0 and 100", reason=ValidationReason.INVALID_AMOUNT)

        commission_amount = percentage_of(amount_base, rate_snapshot)
        commission = Commission(
            influencer_id=influencer_id,
            promo_code_id=promo_code_id,
            purchase_id=purchase_id,
            subscription_amount=amount_base,
            commission_rate=rate_snapshot,
            commission_amount=commission_amount,
            currency=(currency or settings.default_currency).lower(),
            status=CommissionStatusEnum.PENDING,
        )
        self._session.add(commission)
        await self._session.flush()

        credited = await self._session.execute(
            update(Influencer)
            .where(Influencer.id == influencer_id)
            .values(
                total_earnings=Influencer.total_earnings + commission_amount,
                available_balance=Influencer.available_balance + commission_amount,
                successful_referrals=Influencer.successful_referrals + 1,
            )
            .execution_options(synchronize_session=False)
        )
        if credited.rowcount != 1:
            raise NotFoundError(f"Influencer {influencer_id} not found")

        if promo_code_id is not None:
            await self._session.execute(
                update(PromoCode)
                .where(PromoCode.id == promo_code_id)
                .values(total_commissions=PromoCode.total_commissions + commission_amount)
                .execution_options(synchronize_session=False)
            )

        logger.info(
            "Recorded commission",
            commission_id=str(commission.id),
            influencer_id=str(influencer_id),
            purchase_id=purchase_id,
            commission_amount=str(commission_amount),
            commission_rate=str(rate_snapshot),
        )
        return commission

    async def get(self, commission_id: UUID) -> Commission:
        commission = await self._session.get(Commission, commission_id)
        if commission is None:
            raise NotFoundError(f"Commission {commission_id} not found")
        return commission

    async def update_commission_status(
        self,
        commission_id: UUID,
        status: CommissionStatusEnum,
        *,
        notes: str | None = None,
        now: datetime | None = None,
    ) -> Commission:
        """Advance a commission through its eligibility lifecycle and commit.

        Status is bookkeeping for payout batching only; balances are moved by
        the withdrawal pipeline, never here.
        """

        target = CommissionStatusEnum(status)
        commission = await self.get(commission_id)
        current = CommissionStatusEnum(commission.status)
        if current == target:
            return commission
        if target not in _ALLOWED_TRANSITIONS[current]:
            raise ConflictError(
                f"Cannot transition commission from {current.value} to {target.value}",
                reason="INVALID_TRANSITION",
            )

        values: dict[str, object] = {"status": target}
        if target == CommissionStatusEnum.PAID:
            values["paid_at"] = now or utcnow()
        if notes is not None:
            values["notes"] = notes

        result = await self._session.execute(
            update(Commission)
            .where(Commission.id == commission_id, Commission.status == current)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self._session.rollback()
            raise ConflictError("Commission was modified concurrently", reason="INVALID_TRANSITION")

        await self._session.commit()
        await self._session.refresh(commission)
        logger.info(
            "Updated commission status",
            commission_id=str(commission_id),
            from_status=current.value,
            to_status=target.value,
        )
        return commission

    async def list_commissions(
        self,
        *,
        influencer_id: UUID | None = None,
        status: CommissionStatusEnum | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Commission]:
        stmt = select(Commission).order_by(Commission.created_at.desc())
        if influencer_id is not None:
            stmt = stmt.where(Commission.influencer_id == influencer_id)
        if status is not None:
            stmt = stmt.where(Commission.status == status)
        result = await self._session.execute(stmt.limit(limit).offset(offset))
        return list(result.scalars().all())

    async def influencer_summary(self, influencer_id: UUID) -> InfluencerEarningsSummary:
        influencer = await self._session.get(Influencer, influencer_id, populate_existing=True)
        if influencer is None:
            raise NotFoundError(f"Influencer {influencer_id} not found")

        stmt = (
            select(Commission.status, func.count(Commission.id), func.sum(Commission.commission_amount))
            .where(Commission.influencer_id == influencer_id)
            .group_by(Commission.status)
        )
        rows = (await self._session.execute(stmt)).all()
        counts = {status.value: 0 for status in CommissionStatusEnum}
        totals = {status.value: ZERO for status in CommissionStatusEnum}
        for status, count, total in rows:
            key = CommissionStatusEnum(status).value
            counts[key] = int(count)
            totals[key] = quantize_cents(total)

        commission_count = sum(counts.values())
        earned = sum(totals.values(), ZERO)
        average = quantize_cents(earned / commission_count) if commission_count else ZERO
        conversion = ZERO
        if influencer.total_referrals:
            conversion = quantize_cents(
                to_decimal(influencer.successful_referrals) * HUNDRED / to_decimal(influencer.total_referrals)
            )

        return InfluencerEarningsSummary(
            influencer_id=influencer.id,
            total_earnings=quantize_cents(influencer.total_earnings),
            available_balance=quantize_cents(influencer.available_balance),
            total_withdrawn=quantize_cents(influencer.total_withdrawn),
            total_referrals=influencer.total_referrals,
            successful_referrals=influencer.successful_referrals,
            conversion_rate=conversion,
            average_commission=average,
            commission_counts=counts,
            commission_totals=totals,
        )


__all__ = ["CommissionLedger", "InfluencerEarningsSummary"]
