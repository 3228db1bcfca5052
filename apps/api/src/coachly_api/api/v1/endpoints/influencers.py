"""Influencer onboarding, earnings, and commission administration."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Literal, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from coachly_api.api.dependencies.security import require_admin_api_key
from coachly_api.api.dependencies.session import require_influencer_session
from coachly_api.db.session import get_session
from coachly_api.models.commission import Commission, CommissionStatusEnum
from coachly_api.models.influencer import Influencer, InfluencerStatusEnum
from coachly_api.schemas.banking import BankAccountPayload, BankAccountSummary
from coachly_api.services.commissions import CommissionLedger, InfluencerEarningsSummary, InfluencerService
from coachly_api.services.promotions import PromoCodeStore


router = APIRouter(prefix="/influencers", tags=["influencers"])

CommissionStatusLiteral = Literal["pending", "approved", "paid", "cancelled"]


class InfluencerCreateRequest(BaseModel):
    userId: UUID
    displayName: str = Field(..., min_length=1, max_length=255)
    email: Optional[str] = None
    commissionRate: Optional[Decimal] = Field(None, ge=0, le=100)
    bankAccount: Optional[BankAccountPayload] = None
    stripeAccountId: Optional[str] = None
    notes: Optional[str] = None


class InfluencerRejectRequest(BaseModel):
    reason: Optional[str] = None


class CommissionRateRequest(BaseModel):
    commissionRate: Decimal = Field(..., ge=0, le=100)


class BankAccountUpdateRequest(BaseModel):
    bankAccount: BankAccountPayload
    stripeAccountId: Optional[str] = None


class CommissionStatusRequest(BaseModel):
    status: CommissionStatusLiteral
    notes: Optional[str] = None


class InfluencerResponse(BaseModel):
    id: UUID
    userId: UUID
    displayName: str
    email: Optional[str]
    status: str
    commissionRate: float
    totalEarnings: float
    availableBalance: float
    totalWithdrawn: float
    totalReferrals: int
    successfulReferrals: int
    bankAccount: Optional[BankAccountSummary]
    payoutDestinationConfigured: bool
    approvedAt: Optional[datetime]
    createdAt: Optional[datetime]


class CommissionResponse(BaseModel):
    id: UUID
    influencerId: UUID
    promoCodeId: Optional[UUID]
    purchaseId: str
    subscriptionAmount: float
    commissionRate: float
    commissionAmount: float
    currency: str
    status: str
    notes: Optional[str]
    paidAt: Optional[datetime]
    createdAt: Optional[datetime]


class EarningsSummaryResponse(BaseModel):
    influencerId: UUID
    totalEarnings: float
    availableBalance: float
    totalWithdrawn: float
    totalReferrals: int
    successfulReferrals: int
    conversionRate: float
    averageCommission: float
    commissionCounts: dict[str, int]
    commissionTotals: dict[str, float]


class InfluencerPromoCodeResponse(BaseModel):
    id: UUID
    code: str
    status: str
    usedCount: int
    usageLimit: Optional[int]
    totalCommissions: float


def _serialize_influencer(influencer: Influencer) -> InfluencerResponse:
    return InfluencerResponse(
        id=influencer.id,
        userId=influencer.user_id,
        displayName=influencer.display_name,
        email=influencer.email,
        status=InfluencerStatusEnum(influencer.status).value,
        commissionRate=float(influencer.commission_rate),
        totalEarnings=float(influencer.total_earnings),
        availableBalance=float(influencer.available_balance),
        totalWithdrawn=float(influencer.total_withdrawn),
        totalReferrals=influencer.total_referrals,
        successfulReferrals=influencer.successful_referrals,
        bankAccount=BankAccountSummary.build(
            bank_name=influencer.bank_name,
            account_holder_name=influencer.bank_account_holder_name,
            account_type=influencer.bank_account_type,
            account_number=influencer.bank_account_number,
            routing_number=influencer.bank_routing_number,
        ),
        payoutDestinationConfigured=bool(influencer.stripe_account_id),
        approvedAt=influencer.approved_at,
        createdAt=influencer.created_at,
    )


def _serialize_commission(commission: Commission) -> CommissionResponse:
    return CommissionResponse(
        id=commission.id,
        influencerId=commission.influencer_id,
        promoCodeId=commission.promo_code_id,
        purchaseId=commission.purchase_id,
        subscriptionAmount=float(commission.subscription_amount),
        commissionRate=float(commission.commission_rate),
        commissionAmount=float(commission.commission_amount),
        currency=commission.currency,
        status=CommissionStatusEnum(commission.status).value,
        notes=commission.notes,
        paidAt=commission.paid_at,
        createdAt=commission.created_at,
    )


def _serialize_summary(summary: InfluencerEarningsSummary) -> EarningsSummaryResponse:
    return EarningsSummaryResponse(
        influencerId=summary.influencer_id,
        totalEarnings=float(summary.total_earnings),
        availableBalance=float(summary.available_balance),
        totalWithdrawn=float(summary.total_withdrawn),
        totalReferrals=summary.total_referrals,
        successfulReferrals=summary.successful_referrals,
        conversionRate=float(summary.conversion_rate),
        averageCommission=float(summary.average_commission),
        commissionCounts=dict(summary.commission_counts),
        commissionTotals={key: float(value) for key, value in summary.commission_totals.items()},
    )


# Session-scoped routes are declared before ``/{influencer_id}`` so ``me`` is not parsed as an id.


@router.get("/me", response_model=InfluencerResponse)
async def get_my_profile(influencer: Influencer = Depends(require_influencer_session)) -> InfluencerResponse:
    return _serialize_influencer(influencer)


@router.put("/me/bank-account", response_model=InfluencerResponse)
async def update_my_bank_account(
    payload: BankAccountUpdateRequest,
    influencer: Influencer = Depends(require_influencer_session),
    db: AsyncSession = Depends(get_session),
) -> InfluencerResponse:
    """Replace the influencer's payout bank details after validating them."""

    updated = await InfluencerService(db).update_bank_details(
        influencer.id,
        payload.bankAccount.to_details(),
        stripe_account_id=payload.stripeAccountId,
    )
    return _serialize_influencer(updated)


@router.get("/me/summary", response_model=EarningsSummaryResponse)
async def get_my_summary(
    influencer: Influencer = Depends(require_influencer_session),
    db: AsyncSession = Depends(get_session),
) -> EarningsSummaryResponse:
    return _serialize_summary(await CommissionLedger(db).influencer_summary(influencer.id))


@router.get("/me/commissions", response_model=List[CommissionResponse])
async def list_my_commissions(
    status_filter: Optional[CommissionStatusLiteral] = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    influencer: Influencer = Depends(require_influencer_session),
    db: AsyncSession = Depends(get_session),
) -> List[CommissionResponse]:
    commissions = await CommissionLedger(db).list_commissions(
        influencer_id=influencer.id,
        status=CommissionStatusEnum(status_filter) if status_filter else None,
        limit=limit,
        offset=offset,
    )
    return [_serialize_commission(commission) for commission in commissions]


@router.get("/me/promo-codes", response_model=List[InfluencerPromoCodeResponse])
async def list_my_promo_codes(
    influencer: Influencer = Depends(require_influencer_session),
    db: AsyncSession = Depends(get_session),
) -> List[InfluencerPromoCodeResponse]:
    promo_codes = await PromoCodeStore(db).list_codes(influencer_id=influencer.id, limit=200)
    return [
        InfluencerPromoCodeResponse(
            id=promo_code.id,
            code=promo_code.code,
            status=promo_code.status.value,
            usedCount=promo_code.used_count,
            usageLimit=promo_code.usage_limit,
            totalCommissions=float(promo_code.total_commissions or 0),
        )
        for promo_code in promo_codes
    ]


@router.post(
    "",
    response_model=InfluencerResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_admin_api_key)],
)
async def create_influencer(
    payload: InfluencerCreateRequest,
    db: AsyncSession = Depends(get_session),
) -> InfluencerResponse:
    influencer = await InfluencerService(db).create(
        user_id=payload.userId,
        display_name=payload.displayName,
        email=payload.email,
        commission_rate=payload.commissionRate,
        bank=payload.bankAccount.to_details() if payload.bankAccount else None,
        stripe_account_id=payload.stripeAccountId,
        notes=payload.notes,
    )
    return _serialize_influencer(influencer)


@router.get(
    "",
    response_model=List[InfluencerResponse],
    dependencies=[Depends(require_admin_api_key)],
)
async def list_influencers(
    status_filter: Optional[Literal["pending", "approved", "rejected"]] = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_session),
) -> List[InfluencerResponse]:
    influencers = await InfluencerService(db).list_influencers(
        status=InfluencerStatusEnum(status_filter) if status_filter else None,
        limit=limit,
        offset=offset,
    )
    return [_serialize_influencer(influencer) for influencer in influencers]


@router.patch(
    "/commissions/{commission_id}",
    response_model=CommissionResponse,
    dependencies=[Depends(require_admin_api_key)],
)
async def update_commission_status(
    commission_id: UUID,
    payload: CommissionStatusRequest,
    db: AsyncSession = Depends(get_session),
) -> CommissionResponse:
    """Move a commission along pending, approved, paid, or cancel it."""

    commission = await CommissionLedger(db).update_commission_status(
        commission_id,
        CommissionStatusEnum(payload.status),
        notes=payload.notes,
    )
    return _serialize_commission(commission)


@router.get(
    "/{influencer_id}",
    response_model=InfluencerResponse,
    dependencies=[Depends(require_admin_api_key)],
)
async def get_influencer(influencer_id: UUID, db: AsyncSession = Depends(get_session)) -> InfluencerResponse:
    return _serialize_influencer(await InfluencerService(db).get(influencer_id))


@router.post(
    "/{influencer_id}/approve",
    response_model=InfluencerResponse,
    dependencies=[Depends(require_admin_api_key)],
)
async def approve_influencer(influencer_id: UUID, db: AsyncSession = Depends(get_session)) -> InfluencerResponse:
    return _serialize_influencer(await InfluencerService(db).approve(influencer_id))


@router.post(
    "/{influencer_id}/reject",
    response_model=InfluencerResponse,
    dependencies=[Depends(require_admin_api_key)],
)
async def reject_influencer(
    influencer_id: UUID,
    payload: InfluencerRejectRequest | None = None,
    db: AsyncSession = Depends(get_session),
) -> InfluencerResponse:
    influencer = await InfluencerService(db).reject(influencer_id, reason=payload.reason if payload else None)
    return _serialize_influencer(influencer)


@router.put(
    "/{influencer_id}/commission-rate",
    response_model=InfluencerResponse,
    dependencies=[Depends(require_admin_api_key)],
)
async def update_commission_rate(
    influencer_id: UUID,
    payload: CommissionRateRequest,
    db: AsyncSession = Depends(get_session),
) -> InfluencerResponse:
    influencer = await InfluencerService(db).update_commission_rate(influencer_id, payload.commissionRate)
    return _serialize_influencer(influencer)


@router.get(
    "/{influencer_id}/summary",
    response_model=EarningsSummaryResponse,
    dependencies=[Depends(require_admin_api_key)],
)
async def get_influencer_summary(
    influencer_id: UUID,
    db: AsyncSession = Depends(get_session),
) -> EarningsSummaryResponse:
    return _serialize_summary(await CommissionLedger(db).influencer_summary(influencer_id))


@router.get(
    "/{influencer_id}/commissions",
    response_model=List[CommissionResponse],
    dependencies=[Depends(require_admin_api_key)],
)
async def list_influencer_commissions(
    influencer_id: UUID,
    status_filter: Optional[CommissionStatusLiteral] = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_session),
) -> List[CommissionResponse]:
    await InfluencerService(db).get(influencer_id)
    commissions = await CommissionLedger(db).list_commissions(
        influencer_id=influencer_id,
        status=CommissionStatusEnum(status_filter) if status_filter else None,
        limit=limit,
        offset=offset,
    )
    return [_serialize_commission(commission) for commission in commissions]
