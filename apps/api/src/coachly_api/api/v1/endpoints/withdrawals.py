"""Withdrawal requests for influencers and the admin payout queue."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Literal, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from coachly_api.api.dependencies.providers import get_email_notifier, get_stripe_provider
from coachly_api.api.dependencies.security import require_admin_api_key
from coachly_api.api.dependencies.session import require_influencer_session
from coachly_api.db.session import get_session
from coachly_api.models.influencer import Influencer
from coachly_api.models.withdrawal import WithdrawalRequest, WithdrawalStatusEnum
from coachly_api.schemas.banking import BankAccountPayload, BankAccountSummary
from coachly_api.services.billing.providers import StripeCommerceProvider
from coachly_api.services.notifications import EmailNotifier
from coachly_api.services.withdrawals import WithdrawalPipeline


router = APIRouter(prefix="/withdrawals", tags=["withdrawals"])

WithdrawalStatusLiteral = Literal["pending", "approved", "processing", "paid", "rejected"]


class WithdrawalCreateRequest(BaseModel):
    amount: Decimal = Field(..., gt=0)
    bankAccount: Optional[BankAccountPayload] = Field(
        None, description="Defaults to the bank account on the influencer profile"
    )
    notes: Optional[str] = None


class WithdrawalRejectRequest(BaseModel):
    reason: str = Field(..., min_length=1)


class WithdrawalResponse(BaseModel):
    id: UUID
    influencerId: UUID
    amount: float
    currency: str
    status: str
    bankAccount: Optional[BankAccountSummary]
    rejectionReason: Optional[str]
    notes: Optional[str]
    payoutId: Optional[str]
    payoutAttempts: int
    lastPayoutError: Optional[str]
    requestedAt: Optional[datetime]
    approvedAt: Optional[datetime]
    processedAt: Optional[datetime]


def _serialize_withdrawal(withdrawal: WithdrawalRequest) -> WithdrawalResponse:
    return WithdrawalResponse(
        id=withdrawal.id,
        influencerId=withdrawal.influencer_id,
        amount=float(withdrawal.amount),
        currency=withdrawal.currency,
        status=WithdrawalStatusEnum(withdrawal.status).value,
        bankAccount=BankAccountSummary.build(
            bank_name=withdrawal.bank_name,
            account_holder_name=withdrawal.bank_account_holder_name,
            account_type=withdrawal.bank_account_type,
            account_number=withdrawal.bank_account_number,
            routing_number=withdrawal.bank_routing_number,
        ),
        rejectionReason=withdrawal.rejection_reason,
        notes=withdrawal.notes,
        payoutId=withdrawal.payout_id,
        payoutAttempts=withdrawal.payout_attempts or 0,
        lastPayoutError=withdrawal.last_payout_error,
        requestedAt=withdrawal.requested_at,
        approvedAt=withdrawal.approved_at,
        processedAt=withdrawal.processed_at,
    )


def _pipeline(
    db: AsyncSession = Depends(get_session),
    provider: StripeCommerceProvider | None = Depends(get_stripe_provider),
    notifier: EmailNotifier = Depends(get_email_notifier),
) -> WithdrawalPipeline:
    return WithdrawalPipeline(db, provider=provider, notifier=notifier)


@router.post("", response_model=WithdrawalResponse, status_code=status.HTTP_201_CREATED)
async def request_withdrawal(
    payload: WithdrawalCreateRequest,
    influencer: Influencer = Depends(require_influencer_session),
    pipeline: WithdrawalPipeline = Depends(_pipeline),
) -> WithdrawalResponse:
    """File a withdrawal for the session influencer; balances move only when it is paid."""

    withdrawal = await pipeline.request(
        influencer.id,
        payload.amount,
        bank=payload.bankAccount.to_details() if payload.bankAccount else None,
        notes=payload.notes,
    )
    return _serialize_withdrawal(withdrawal)


@router.get("/me", response_model=List[WithdrawalResponse])
async def list_my_withdrawals(
    status_filter: Optional[WithdrawalStatusLiteral] = Query(None, alias="status"),
    influencer: Influencer = Depends(require_influencer_session),
    pipeline: WithdrawalPipeline = Depends(_pipeline),
) -> List[WithdrawalResponse]:
    withdrawals = await pipeline.list_requests(
        influencer_id=influencer.id,
        status=WithdrawalStatusEnum(status_filter) if status_filter else None,
    )
    return [_serialize_withdrawal(withdrawal) for withdrawal in withdrawals]


@router.get(
    "",
    response_model=List[WithdrawalResponse],
    dependencies=[Depends(require_admin_api_key)],
)
async def list_withdrawals(
    status_filter: Optional[WithdrawalStatusLiteral] = Query(None, alias="status"),
    influencer_id: Optional[UUID] = Query(None, alias="influencerId"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    pipeline: WithdrawalPipeline = Depends(_pipeline),
) -> List[WithdrawalResponse]:
    withdrawals = await pipeline.list_requests(
        influencer_id=influencer_id,
        status=WithdrawalStatusEnum(status_filter) if status_filter else None,
        limit=limit,
        offset=offset,
    )
    return [_serialize_withdrawal(withdrawal) for withdrawal in withdrawals]


@router.get(
    "/{withdrawal_id}",
    response_model=WithdrawalResponse,
    dependencies=[Depends(require_admin_api_key)],
)
async def get_withdrawal(
    withdrawal_id: UUID,
    pipeline: WithdrawalPipeline = Depends(_pipeline),
) -> WithdrawalResponse:
    return _serialize_withdrawal(await pipeline.get(withdrawal_id))


@router.post(
    "/{withdrawal_id}/approve",
    response_model=WithdrawalResponse,
    dependencies=[Depends(require_admin_api_key)],
)
async def approve_withdrawal(
    withdrawal_id: UUID,
    pipeline: WithdrawalPipeline = Depends(_pipeline),
) -> WithdrawalResponse:
    return _serialize_withdrawal(await pipeline.approve(withdrawal_id))


@router.post(
    "/{withdrawal_id}/reject",
    response_model=WithdrawalResponse,
    dependencies=[Depends(require_admin_api_key)],
)
async def reject_withdrawal(
    withdrawal_id: UUID,
    payload: WithdrawalRejectRequest,
    pipeline: WithdrawalPipeline = Depends(_pipeline),
) -> WithdrawalResponse:
    return _serialize_withdrawal(await pipeline.reject(withdrawal_id, payload.reason))


@router.post(
    "/{withdrawal_id}/process",
    response_model=WithdrawalResponse,
    dependencies=[Depends(require_admin_api_key)],
)
async def process_withdrawal(
    withdrawal_id: UUID,
    pipeline: WithdrawalPipeline = Depends(_pipeline),
) -> WithdrawalResponse:
    """Pay an approved request out to the influencer's connected Stripe account."""

    return _serialize_withdrawal(await pipeline.process(withdrawal_id))
