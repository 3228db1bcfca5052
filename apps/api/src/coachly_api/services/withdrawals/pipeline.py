"""Influencer withdrawal requests, approvals, and payouts."""

from __future__ import annotations

from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any
from uuid import UUID

from loguru import logger
from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from coachly_api.core.clock import utcnow
from coachly_api.core.money import ZERO, quantize_cents
from coachly_api.core.settings import settings
from coachly_api.models.influencer import BankAccountTypeEnum, Influencer, InfluencerStatusEnum
from coachly_api.models.withdrawal import WithdrawalRequest, WithdrawalStatusEnum
from coachly_api.observability.commerce import get_commerce_store
from coachly_api.services.banking import BankAccountDetails, validate_bank_account
from coachly_api.services.billing.providers.stripe import StripeCommerceProvider
from coachly_api.services.commissions.influencers import bank_details_of
from coachly_api.services.errors import (
    BankValidationError,
    ConflictError,
    ExternalServiceError,
    InsufficientBalanceError,
    NotFoundError,
    OutcomeUnknownError,
    ValidationError,
    ValidationReason,
)
from coachly_api.services.notifications import EmailNotifier


class WithdrawalPipeline:
    """State machine for withdrawals: pending, approved, paid, or rejected.

    ``processing`` is a leased claim taken while the payout call is in
    flight. Balances move only in ``process``: the debit is committed before
    the external call and reversed by a compensating transaction only when
    Stripe rejects the payout. An unknown outcome keeps the debit and the
    request stays ``processing`` until a later ``process`` call settles it
    under the same idempotency key. No lock is held across network I/O and
    ``total_earnings == available_balance + total_withdrawn`` holds at every
    commit.
    """

    def __init__(
        self,
        session: AsyncSession,
        *,
        provider: StripeCommerceProvider | None = None,
        notifier: EmailNotifier | None = None,
    ) -> None:
        self._session = session
        self._provider = provider
        self._notifier = notifier or EmailNotifier()

    async def get(self, withdrawal_id: UUID) -> WithdrawalRequest:
        stmt = (
            select(WithdrawalRequest)
            .where(WithdrawalRequest.id == withdrawal_id)
            .execution_options(populate_existing=True)
        )
        withdrawal = (await self._session.execute(stmt)).scalar_one_or_none()
        if withdrawal is None:
            raise NotFoundError(f"Withdrawal request {withdrawal_id} not found")
        return withdrawal

    async def list_requests(
        self,
        *,
        influencer_id: UUID | None = None,
        status: WithdrawalStatusEnum | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[WithdrawalRequest]:
        stmt = select(WithdrawalRequest).order_by(WithdrawalRequest.requested_at.desc())
        if influencer_id is not None:
            stmt = stmt.where(WithdrawalRequest.influencer_id == influencer_id)
        if status is not None:
            stmt = stmt.where(WithdrawalRequest.status == status)
        result = await self._session.execute(stmt.limit(limit).offset(offset))
        return list(result.scalars().all())

    async def request(
        self,
        influencer_id: UUID,
        amount: Decimal,
        *,
        bank: BankAccountDetails | None = None,
        notes: str | None = None,
        currency: str | None = None,
    ) -> WithdrawalRequest:
        """File a pending request; no balance changes until it is paid."""

        influencer = await self._load_influencer(influencer_id)
        if influencer.status != InfluencerStatusEnum.APPROVED:
            raise ValidationError(
                "Only approved influencers can request withdrawals",
                reason=ValidationReason.INFLUENCER_NOT_APPROVED,
            )

        requested = quantize_cents(amount)
        minimum = quantize_cents(settings.withdrawal_minimum_amount)
        if requested <= ZERO or requested < minimum:
            raise ValidationError(
                f"Minimum withdrawal amount is {minimum}",
                reason=ValidationReason.BELOW_WITHDRAWAL_MINIMUM,
            )
        available = quantize_cents(influencer.available_balance)
        if requested > available:
            raise InsufficientBalanceError(f"Requested {requested} exceeds available balance {available}")

        snapshot = bank or bank_details_of(influencer)
        validation = validate_bank_account(snapshot)
        if not validation.is_valid:
            raise BankValidationError(validation.errors)

        withdrawal = WithdrawalRequest(
            influencer_id=influencer.id,
            amount=requested,
            currency=(currency or settings.payout_currency).lower(),
            status=WithdrawalStatusEnum.PENDING,
            bank_routing_number=snapshot.routing_number,
            bank_account_number=snapshot.account_number,
            bank_name=snapshot.bank_name,
            bank_account_holder_name=snapshot.account_holder_name,
            bank_account_type=BankAccountTypeEnum(str(snapshot.account_type).lower()),
            notes=notes,
            payout_attempts=0,
        )
        self._session.add(withdrawal)
        await self._session.commit()
        await self._session.refresh(withdrawal)

        logger.info(
            "Withdrawal requested",
            withdrawal_id=str(withdrawal.id),
            influencer_id=str(influencer.id),
            amount=str(requested),
            bank_account_last4=(snapshot.account_number or "")[-4:],
        )
        await self._notify("withdrawal_requested", influencer, withdrawal)
        return withdrawal

    async def approve(self, withdrawal_id: UUID, *, now: datetime | None = None) -> WithdrawalRequest:
        withdrawal = await self._transition(
            withdrawal_id,
            expected=WithdrawalStatusEnum.PENDING,
            values={"status": WithdrawalStatusEnum.APPROVED, "approved_at": now or utcnow()},
        )
        logger.info("Withdrawal approved", withdrawal_id=str(withdrawal_id))
        await self._notify("withdrawal_approved", await self._load_influencer(withdrawal.influencer_id), withdrawal)
        return withdrawal

    async def reject(self, withdrawal_id: UUID, reason: str) -> WithdrawalRequest:
        if not reason or not reason.strip():
            raise ValidationError("A rejection reason is required", reason="REJECTION_REASON_REQUIRED")
        withdrawal = await self._transition(
            withdrawal_id,
            expected=WithdrawalStatusEnum.PENDING,
            values={"status": WithdrawalStatusEnum.REJECTED, "rejection_reason": reason.strip()},
        )
        logger.info("Withdrawal rejected", withdrawal_id=str(withdrawal_id), reason=reason)
        await self._notify(
            "withdrawal_rejected",
            await self._load_influencer(withdrawal.influencer_id),
            withdrawal,
            reason=withdrawal.rejection_reason,
        )
        return withdrawal

    async def process(self, withdrawal_id: UUID, *, now: datetime | None = None) -> WithdrawalRequest:
        """Pay out an approved request, or resume one whose payout never settled.

        Fails with ``InsufficientBalanceError`` (nothing changed) when the
        balance no longer covers the amount, and with ``ExternalServiceError``
        (request back to ``approved``, balances restored) when Stripe rejects
        the payout. ``OutcomeUnknownError`` leaves the request ``processing``
        with the debit held; calling ``process`` again re-issues the Transfer
        under the same idempotency key.
        """

        now = now or utcnow()
        withdrawal = await self.get(withdrawal_id)
        current_status = WithdrawalStatusEnum(withdrawal.status)
        if current_status not in (WithdrawalStatusEnum.APPROVED, WithdrawalStatusEnum.PROCESSING):
            raise ConflictError(
                f"Withdrawal is {current_status.value}; only approved requests can be processed",
                reason="INVALID_TRANSITION",
            )
        resuming = current_status == WithdrawalStatusEnum.PROCESSING
        influencer = await self._load_influencer(withdrawal.influencer_id)
        amount = quantize_cents(withdrawal.amount)
        if not resuming and amount > quantize_cents(influencer.available_balance):
            raise InsufficientBalanceError(
                f"Withdrawal of {amount} exceeds available balance {quantize_cents(influencer.available_balance)}"
            )
        if not influencer.stripe_account_id:
            raise ValidationError(
                "Influencer has no payout destination configured",
                reason=ValidationReason.PAYOUT_DESTINATION_MISSING,
            )
        if self._provider is None:
            raise ExternalServiceError("Payout provider is not configured")

        if resuming:
            await self._reclaim(withdrawal, now)
        else:
            await self._claim_and_debit(withdrawal, amount, now)

        try:
            payout = await self._provider.create_payout(
                destination_account_id=influencer.stripe_account_id,
                amount=amount,
                currency=withdrawal.currency,
                description=f"{settings.payout_statement_descriptor} {withdrawal.id}",
                metadata={"withdrawal_id": str(withdrawal.id), "influencer_id": str(influencer.id)},
                idempotency_key=f"withdrawal-{withdrawal.id}",
            )
        except OutcomeUnknownError as exc:
            await self._hold(withdrawal, str(exc))
            get_commerce_store().record_payout(False, str(exc))
            raise
        except Exception as exc:
            await self._compensate(withdrawal, amount, str(exc))
            get_commerce_store().record_payout(False, str(exc))
            if isinstance(exc, ExternalServiceError):
                raise
            raise ExternalServiceError(f"Payout failed: {exc}") from exc
        except BaseException:
            # Cancelled mid-call: the Transfer may be in flight, so the debit
            # stays and the lease lets a later process() settle it.
            logger.warning(
                "Withdrawal payout interrupted; left processing",
                withdrawal_id=str(withdrawal.id),
                influencer_id=str(influencer.id),
            )
            raise

        settled = await self._session.execute(
            update(WithdrawalRequest)
            .where(
                WithdrawalRequest.id == withdrawal.id,
                WithdrawalRequest.status == WithdrawalStatusEnum.PROCESSING,
            )
            .values(
                status=WithdrawalStatusEnum.PAID,
                payout_id=payout.payout_id,
                processed_at=now,
                payout_started_at=None,
                last_payout_error=None,
            )
            .execution_options(synchronize_session=False)
        )
        await self._session.commit()
        withdrawal = await self.get(withdrawal.id)
        if settled.rowcount != 1:
            # A concurrent resume recorded the same Transfer first.
            if WithdrawalStatusEnum(withdrawal.status) == WithdrawalStatusEnum.PAID:
                return withdrawal
            raise ConflictError(
                f"Withdrawal is {WithdrawalStatusEnum(withdrawal.status).value}; payout {payout.payout_id} not recorded",
                reason="INVALID_TRANSITION",
            )

        get_commerce_store().record_payout(True)
        logger.info(
            "Withdrawal paid",
            withdrawal_id=str(withdrawal.id),
            influencer_id=str(influencer.id),
            payout_id=payout.payout_id,
            amount=str(amount),
            resumed=resuming,
        )
        await self._notify("withdrawal_paid", influencer, withdrawal, payout_id=payout.payout_id)
        return withdrawal

    async def list_stalled(self, *, now: datetime | None = None, limit: int = 25) -> list[WithdrawalRequest]:
        """Processing requests whose payout lease is released or expired."""

        cutoff = (now or utcnow()) - timedelta(seconds=settings.withdrawal_payout_lease_seconds)
        stmt = (
            select(WithdrawalRequest)
            .where(
                WithdrawalRequest.status == WithdrawalStatusEnum.PROCESSING,
                or_(
                    WithdrawalRequest.payout_started_at.is_(None),
                    WithdrawalRequest.payout_started_at <= cutoff,
                ),
            )
            .order_by(WithdrawalRequest.requested_at)
            .limit(limit)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def _claim_and_debit(self, withdrawal: WithdrawalRequest, amount: Decimal, now: datetime) -> None:
        withdrawal_id = withdrawal.id
        influencer_id = withdrawal.influencer_id
        claimed = await self._session.execute(
            update(WithdrawalRequest)
            .where(
                WithdrawalRequest.id == withdrawal_id,
                WithdrawalRequest.status == WithdrawalStatusEnum.APPROVED,
            )
            .values(
                status=WithdrawalStatusEnum.PROCESSING,
                payout_attempts=WithdrawalRequest.payout_attempts + 1,
                payout_started_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if claimed.rowcount != 1:
            await self._session.rollback()
            raise ConflictError("Withdrawal is already being processed", reason="INVALID_TRANSITION")

        debited = await self._session.execute(
            update(Influencer)
            .where(Influencer.id == influencer_id, Influencer.available_balance >= amount)
            .values(
                available_balance=Influencer.available_balance - amount,
                total_withdrawn=Influencer.total_withdrawn + amount,
            )
            .execution_options(synchronize_session=False)
        )
        if debited.rowcount != 1:
            await self._session.rollback()
            logger.warning(
                "Withdrawal exceeds available balance at processing time",
                withdrawal_id=str(withdrawal_id),
                influencer_id=str(influencer_id),
                amount=str(amount),
            )
            raise InsufficientBalanceError(f"Withdrawal of {amount} exceeds available balance")

        await self._session.commit()

    async def _reclaim(self, withdrawal: WithdrawalRequest, now: datetime) -> None:
        """Take over a processing request; its debit is already committed."""

        withdrawal_id = withdrawal.id
        cutoff = now - timedelta(seconds=settings.withdrawal_payout_lease_seconds)
        reclaimed = await self._session.execute(
            update(WithdrawalRequest)
            .where(
                WithdrawalRequest.id == withdrawal_id,
                WithdrawalRequest.status == WithdrawalStatusEnum.PROCESSING,
                or_(
                    WithdrawalRequest.payout_started_at.is_(None),
                    WithdrawalRequest.payout_started_at <= cutoff,
                ),
            )
            .values(
                payout_attempts=WithdrawalRequest.payout_attempts + 1,
                payout_started_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if reclaimed.rowcount != 1:
            await self._session.rollback()
            raise ConflictError("Withdrawal payout is already in flight", reason="INVALID_TRANSITION")
        await self._session.commit()
        logger.info("Resuming withdrawal payout", withdrawal_id=str(withdrawal_id))

    async def _hold(self, withdrawal: WithdrawalRequest, error: str) -> None:
        withdrawal_id = withdrawal.id
        influencer_id = withdrawal.influencer_id
        await self._session.rollback()
        await self._session.execute(
            update(WithdrawalRequest)
            .where(
                WithdrawalRequest.id == withdrawal_id,
                WithdrawalRequest.status == WithdrawalStatusEnum.PROCESSING,
            )
            .values(payout_started_at=None, last_payout_error=error[:2000])
            .execution_options(synchronize_session=False)
        )
        await self._session.commit()
        logger.warning(
            "Withdrawal payout outcome unknown; debit held until resumed",
            withdrawal_id=str(withdrawal_id),
            influencer_id=str(influencer_id),
            error=error,
        )

    async def _compensate(self, withdrawal: WithdrawalRequest, amount: Decimal, error: str) -> None:
        withdrawal_id = withdrawal.id
        influencer_id = withdrawal.influencer_id
        await self._session.rollback()
        released = await self._session.execute(
            update(WithdrawalRequest)
            .where(
                WithdrawalRequest.id == withdrawal_id,
                WithdrawalRequest.status == WithdrawalStatusEnum.PROCESSING,
            )
            .values(
                status=WithdrawalStatusEnum.APPROVED,
                payout_started_at=None,
                last_payout_error=error[:2000],
            )
            .execution_options(synchronize_session=False)
        )
        if released.rowcount == 1:
            await self._session.execute(
                update(Influencer)
                .where(Influencer.id == influencer_id)
                .values(
                    available_balance=Influencer.available_balance + amount,
                    total_withdrawn=Influencer.total_withdrawn - amount,
                )
                .execution_options(synchronize_session=False)
            )
        await self._session.commit()
        logger.warning(
            "Withdrawal payout failed; balance restored",
            withdrawal_id=str(withdrawal_id),
            influencer_id=str(influencer_id),
            amount=str(amount),
            error=error,
        )

    async def _transition(
        self,
        withdrawal_id: UUID,
        *,
        expected: WithdrawalStatusEnum,
        values: dict[str, Any],
    ) -> WithdrawalRequest:
        result = await self._session.execute(
            update(WithdrawalRequest)
            .where(WithdrawalRequest.id == withdrawal_id, WithdrawalRequest.status == expected)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self._session.rollback()
            current = await self.get(withdrawal_id)
            raise ConflictError(
                f"Withdrawal is {WithdrawalStatusEnum(current.status).value}; expected {expected.value}",
                reason="INVALID_TRANSITION",
            )
        await self._session.commit()
        return await self.get(withdrawal_id)

    async def _load_influencer(self, influencer_id: UUID) -> Influencer:
        stmt = select(Influencer).where(Influencer.id == influencer_id).execution_options(populate_existing=True)
        influencer = (await self._session.execute(stmt)).scalar_one_or_none()
        if influencer is None:
            raise NotFoundError(f"Influencer {influencer_id} not found")
        return influencer

    async def _notify(
        self,
        template_type: str,
        influencer: Influencer,
        withdrawal: WithdrawalRequest,
        **extra: Any,
    ) -> None:
        await self._notifier.send(
            template_type,
            {
                "recipient": influencer.email,
                "display_name": influencer.display_name,
                "amount": withdrawal.amount,
                "currency": withdrawal.currency,
                "account_last4": (withdrawal.bank_account_number or "")[-4:],
                **extra,
            },
        )


__all__ = ["WithdrawalPipeline"]
