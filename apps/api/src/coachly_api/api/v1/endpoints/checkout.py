"""Checkout-facing promo code redemption."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Response, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from coachly_api.api.dependencies.security import require_checkout_api_key
from coachly_api.db.session import get_session
from coachly_api.models.commission import Commission, CommissionStatusEnum
from coachly_api.services.promotions import RedemptionOutcome, RedemptionService


router = APIRouter(
    prefix="/checkout",
    tags=["checkout"],
    dependencies=[Depends(require_checkout_api_key)],
)


class PurchaseRedemptionRequest(BaseModel):
    promoCode: str = Field(..., min_length=1, description="Code entered at checkout")
    purchaseId: str = Field(..., min_length=1, max_length=255, description="Idempotency key for the purchase")
    subscriptionAmount: Decimal = Field(..., description="Order total before discount")
    currency: Optional[str] = Field(None, min_length=3, max_length=3)


class CommissionSummary(BaseModel):
    id: UUID
    influencerId: UUID
    commissionRate: float
    commissionAmount: float
    status: str


class PurchaseRedemptionResponse(BaseModel):
    redemptionId: UUID
    purchaseId: str
    promoCodeId: UUID
    orderAmount: float
    discountAmount: float
    finalAmount: float
    currency: str
    redeemedAt: Optional[datetime]
    replayed: bool
    commission: Optional[CommissionSummary]


def _serialize_commission(commission: Commission | None) -> CommissionSummary | None:
    if commission is None:
        return None
    return CommissionSummary(
        id=commission.id,
        influencerId=commission.influencer_id,
        commissionRate=float(commission.commission_rate),
        commissionAmount=float(commission.commission_amount),
        status=CommissionStatusEnum(commission.status).value,
    )


def _serialize_outcome(outcome: RedemptionOutcome) -> PurchaseRedemptionResponse:
    redemption = outcome.redemption
    return PurchaseRedemptionResponse(
        redemptionId=redemption.id,
        purchaseId=redemption.purchase_id,
        promoCodeId=redemption.promo_code_id,
        orderAmount=float(redemption.order_amount),
        discountAmount=float(redemption.discount_amount),
        finalAmount=float(redemption.final_amount),
        currency=redemption.currency,
        redeemedAt=redemption.redeemed_at,
        replayed=not outcome.created,
        commission=_serialize_commission(outcome.commission),
    )


@router.post(
    "/purchases",
    response_model=PurchaseRedemptionResponse,
    status_code=status.HTTP_201_CREATED,
)
async def redeem_purchase(
    payload: PurchaseRedemptionRequest,
    response: Response,
    db: AsyncSession = Depends(get_session),
) -> PurchaseRedemptionResponse:
    """Redeem a promo code for a completed purchase.

    Replaying the same ``purchaseId`` returns the original redemption with
    ``200`` instead of consuming another use.
    """

    outcome = await RedemptionService(db).redeem(
        payload.promoCode.strip(),
        payload.purchaseId,
        payload.subscriptionAmount,
        currency=payload.currency,
    )
    if not outcome.created:
        response.status_code = status.HTTP_200_OK
    return _serialize_outcome(outcome)
