"""Influencer onboarding and payout profile management."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from loguru import logger
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from coachly_api.core.clock import utcnow
from coachly_api.core.money import HUNDRED, ZERO, quantize_cents
from coachly_api.core.settings import settings
from coachly_api.models.influencer import BankAccountTypeEnum, Influencer, InfluencerStatusEnum
from coachly_api.services.banking import BankAccountDetails, validate_bank_account
from coachly_api.services.errors import (
    BankValidationError,
    ConflictError,
    NotFoundError,
    ValidationError,
    ValidationReason,
)


def bank_details_of(influencer: Influencer) -> BankAccountDetails:
    account_type = influencer.bank_account_type
    return BankAccountDetails(
        routing_number=influencer.bank_routing_number,
        account_number=influencer.bank_account_number,
        bank_name=influencer.bank_name,
        account_holder_name=influencer.bank_account_holder_name,
        account_type=account_type.value if isinstance(account_type, BankAccountTypeEnum) else account_type,
    )


class InfluencerService:
    """Creates influencers and manages their approval and bank profile.

    Balance fields are read-only here; see ``CommissionLedger`` and
    ``WithdrawalPipeline``.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, influencer_id: UUID) -> Influencer:
        influencer = await self._session.get(Influencer, influencer_id, populate_existing=True)
        if influencer is None:
            raise NotFoundError(f"Influencer {influencer_id} not found")
        return influencer

    async def get_by_user(self, user_id: UUID) -> Influencer:
        stmt = select(Influencer).where(Influencer.user_id == user_id)
        influencer = (await self._session.execute(stmt)).scalar_one_or_none()
        if influencer is None:
            raise NotFoundError(f"No influencer profile for user {user_id}")
        return influencer

    async def list_influencers(
        self,
        *,
        status: InfluencerStatusEnum | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Influencer]:
        stmt = select(Influencer).order_by(Influencer.created_at.desc())
        if status is not None:
            stmt = stmt.where(Influencer.status == status)
        result = await self._session.execute(stmt.limit(limit).offset(offset))
        return list(result.scalars().all())

    async def create(
        self,
        *,
        user_id: UUID,
        display_name: str,
        email: str | None = None,
        commission_rate: Decimal | None = None,
        bank: BankAccountDetails | None = None,
        stripe_account_id: str | None = None,
        notes: str | None = None,
    ) -> Influencer:
        existing = (
            await self._session.execute(select(Influencer).where(Influencer.user_id == user_id))
        ).scalar_one_or_none()
        if existing is not None:
            raise ConflictError(f"User {user_id} is already registered as an influencer")

        rate = quantize_cents(commission_rate if commission_rate is not None else settings.default_commission_rate)
        if not (ZERO <= rate <= HUNDRED):
            raise ValidationError("Commission rate must be between 0 and 100", reason=ValidationReason.INVALID_AMOUNT)

        influencer = Influencer(
            user_id=user_id,
            display_name=display_name,
            email=email,
            commission_rate=rate,
            status=InfluencerStatusEnum.PENDING,
            stripe_account_id=stripe_account_id,
            notes=notes,
            total_earnings=ZERO,
            available_balance=ZERO,
            total_withdrawn=ZERO,
            total_referrals=0,
            successful_referrals=0,
        )
        if bank is not None:
            self._apply_bank(influencer, bank)
        self._session.add(influencer)
        try:
            await self._session.commit()
        except IntegrityError as exc:
            await self._session.rollback()
            logger.warning("Detected race when creating influencer", user_id=str(user_id))
            raise ConflictError(f"User {user_id} is already registered as an influencer") from exc

        await self._session.refresh(influencer)
        logger.info("Created influencer", influencer_id=str(influencer.id), user_id=str(user_id))
        return influencer

    async def update_bank_details(
        self,
        influencer_id: UUID,
        bank: BankAccountDetails,
        *,
        stripe_account_id: str | None = None,
    ) -> Influencer:
        influencer = await self.get(influencer_id)
        self._apply_bank(influencer, bank)
        if stripe_account_id is not None:
            influencer.stripe_account_id = stripe_account_id
        await self._session.commit()
        await self._session.refresh(influencer)
        logger.info(
            "Updated influencer bank details",
            influencer_id=str(influencer_id),
            bank_account_last4=(bank.account_number or "")[-4:],
        )
        return influencer

    async def update_commission_rate(self, influencer_id: UUID, rate: Decimal) -> Influencer:
        """Change the default rate; existing commissions keep their snapshot."""

        normalized = quantize_cents(rate)
        if not (ZERO <= normalized <= HUNDRED):
            raise ValidationError("Commission rate must be between 0 and 100", reason=ValidationReason.INVALID_AMOUNT)
        influencer = await self.get(influencer_id)
        influencer.commission_rate = normalized
        await self._session.commit()
        await self._session.refresh(influencer)
        return influencer

    async def approve(self, influencer_id: UUID, *, now: datetime | None = None) -> Influencer:
        influencer = await self.get(influencer_id)
        if influencer.status == InfluencerStatusEnum.APPROVED:
            return influencer
        influencer.status = InfluencerStatusEnum.APPROVED
        influencer.approved_at = now or utcnow()
        await self._session.commit()
        await self._session.refresh(influencer)
        logger.info("Approved influencer", influencer_id=str(influencer_id))
        return influencer

    async def reject(self, influencer_id: UUID, *, reason: str | None = None) -> Influencer:
        influencer = await self.get(influencer_id)
        if influencer.status == InfluencerStatusEnum.APPROVED:
            raise ConflictError("Approved influencers cannot be rejected", reason="INVALID_TRANSITION")
        influencer.status = InfluencerStatusEnum.REJECTED
        if reason:
            influencer.notes = reason
        await self._session.commit()
        await self._session.refresh(influencer)
        logger.info("Rejected influencer", influencer_id=str(influencer_id), reason=reason)
        return influencer

    @staticmethod
    def _apply_bank(influencer: Influencer, bank: BankAccountDetails) -> None:
        result = validate_bank_account(bank)
        if not result.is_valid:
            raise BankValidationError(result.errors)
        influencer.bank_routing_number = bank.routing_number
        influencer.bank_account_number = bank.account_number
        influencer.bank_name = bank.bank_name
        influencer.bank_account_holder_name = bank.account_holder_name
        influencer.bank_account_type = BankAccountTypeEnum((bank.account_type or "checking").lower())


__all__ = ["InfluencerService", "bank_details_of"]
