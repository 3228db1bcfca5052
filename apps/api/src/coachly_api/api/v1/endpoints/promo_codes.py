"""Admin promo code catalog and storefront validation endpoints."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Literal, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from coachly_api.api.dependencies.providers import get_stripe_provider
from coachly_api.api.dependencies.security import require_admin_api_key, require_checkout_api_key
from coachly_api.db.session import get_session
from coachly_api.models.promo_code import DiscountTypeEnum, PromoCode, PromoCodeStatusEnum
from coachly_api.services.billing.providers import StripeCommerceProvider
from coachly_api.services.promotions import (
    CouponMirror,
    CouponSyncResult,
    PromoCodeStore,
    PromoCodeValidation,
    RedemptionService,
)


router = APIRouter(prefix="/promo-codes", tags=["promo-codes"])


class PromoCodeCreateRequest(BaseModel):
    code: Optional[str] = Field(None, max_length=64, description="Generated when omitted")
    discountType: Literal["percentage", "fixed_amount"]
    value: Decimal = Field(..., gt=0)
    maxDiscount: Optional[Decimal] = Field(None, ge=0)
    minOrderAmount: Optional[Decimal] = Field(None, ge=0)
    usageLimit: Optional[int] = Field(None, ge=1, description="Omit for unlimited uses")
    validFrom: Optional[datetime] = None
    validUntil: Optional[datetime] = None
    influencerId: Optional[UUID] = None
    commissionRate: Optional[Decimal] = Field(None, ge=0, le=100)
    description: Optional[str] = None
    campaignName: Optional[str] = None
    notes: Optional[str] = None
    createdBy: Optional[str] = None


class PromoCodeUpdateRequest(BaseModel):
    code: Optional[str] = Field(None, max_length=64)
    discountType: Optional[Literal["percentage", "fixed_amount"]] = None
    value: Optional[Decimal] = Field(None, gt=0)
    maxDiscount: Optional[Decimal] = Field(None, ge=0)
    minOrderAmount: Optional[Decimal] = Field(None, ge=0)
    usageLimit: Optional[int] = Field(None, ge=1)
    validFrom: Optional[datetime] = None
    validUntil: Optional[datetime] = None
    status: Optional[Literal["active", "inactive", "expired"]] = None
    influencerId: Optional[UUID] = None
    commissionRate: Optional[Decimal] = Field(None, ge=0, le=100)
    description: Optional[str] = None
    campaignName: Optional[str] = None
    notes: Optional[str] = None


_UPDATE_FIELDS = {
    "code": "code",
    "discountType": "discount_type",
    "value": "value",
    "maxDiscount": "max_discount",
    "minOrderAmount": "min_order_amount",
    "usageLimit": "usage_limit",
    "validFrom": "valid_from",
    "validUntil": "valid_until",
    "status": "status",
    "influencerId": "influencer_id",
    "commissionRate": "commission_rate",
    "description": "description",
    "campaignName": "campaign_name",
    "notes": "notes",
}


class PromoCodeResponse(BaseModel):
    id: UUID
    code: str
    discountType: str
    value: float
    maxDiscount: Optional[float]
    minOrderAmount: Optional[float]
    usageLimit: Optional[int]
    usedCount: int
    validFrom: Optional[datetime]
    validUntil: Optional[datetime]
    status: str
    influencerId: Optional[UUID]
    commissionRate: Optional[float]
    totalCommissions: float
    description: Optional[str]
    campaignName: Optional[str]
    notes: Optional[str]
    stripeCouponId: Optional[str]
    stripePromotionCodeId: Optional[str]
    syncStatus: str
    lastSyncError: Optional[str]
    createdAt: Optional[datetime]


class PromoCodeStatsResponse(BaseModel):
    promoCodeId: UUID
    code: str
    totalUses: int
    usageLimit: Optional[int]
    remainingUses: Optional[int]
    totalCommissions: float
    isActive: bool
    isExpired: bool


class PromoCodeDeletionResponse(BaseModel):
    promoCodeId: UUID
    deleted: bool
    deactivated: bool


class PromoCodeValidateRequest(BaseModel):
    code: str = Field(..., min_length=1)
    orderAmount: Decimal


class PromoCodeValidationResponse(BaseModel):
    valid: bool
    reason: Optional[str]
    message: Optional[str]
    discountAmount: Optional[float]
    finalAmount: Optional[float]
    promoCodeId: Optional[UUID]
    code: Optional[str]


class CouponSyncResponse(BaseModel):
    promoCodeId: UUID
    status: str
    couponId: Optional[str]
    promotionCodeId: Optional[str]
    createdCoupon: bool
    createdPromotionCode: bool
    error: Optional[str]


def _optional_float(value: Decimal | None) -> float | None:
    return float(value) if value is not None else None


def _serialize_promo_code(promo_code: PromoCode) -> PromoCodeResponse:
    return PromoCodeResponse(
        id=promo_code.id,
        code=promo_code.code,
        discountType=DiscountTypeEnum(promo_code.discount_type).value,
        value=float(promo_code.value),
        maxDiscount=_optional_float(promo_code.max_discount),
        minOrderAmount=_optional_float(promo_code.min_order_amount),
        usageLimit=promo_code.usage_limit,
        usedCount=promo_code.used_count,
        validFrom=promo_code.valid_from,
        validUntil=promo_code.valid_until,
        status=PromoCodeStatusEnum(promo_code.status).value,
        influencerId=promo_code.influencer_id,
        commissionRate=_optional_float(promo_code.commission_rate),
        totalCommissions=float(promo_code.total_commissions or 0),
        description=promo_code.description,
        campaignName=promo_code.campaign_name,
        notes=promo_code.notes,
        stripeCouponId=promo_code.stripe_coupon_id,
        stripePromotionCodeId=promo_code.stripe_promotion_code_id,
        syncStatus=promo_code.sync_status.value,
        lastSyncError=promo_code.last_sync_error,
        createdAt=promo_code.created_at,
    )


def _serialize_validation(validation: PromoCodeValidation) -> PromoCodeValidationResponse:
    snapshot = validation.promo_code
    return PromoCodeValidationResponse(
        valid=validation.valid,
        reason=validation.reason.value if validation.reason else None,
        message=validation.message,
        discountAmount=_optional_float(validation.discount_amount),
        finalAmount=_optional_float(validation.final_amount),
        promoCodeId=snapshot.id if snapshot else None,
        code=snapshot.code if snapshot else None,
    )


def _serialize_sync(result: CouponSyncResult) -> CouponSyncResponse:
    return CouponSyncResponse(
        promoCodeId=result.promo_code_id,
        status=result.status,
        couponId=result.coupon_id,
        promotionCodeId=result.promotion_code_id,
        createdCoupon=result.created_coupon,
        createdPromotionCode=result.created_promotion_code,
        error=result.error,
    )


async def _mirror(
    db: AsyncSession,
    provider: StripeCommerceProvider | None,
    promo_code: PromoCode,
) -> PromoCode:
    """Best-effort push to Stripe; the stored promo code is returned either way."""

    await CouponMirror(db, provider).sync(promo_code.id)
    await db.refresh(promo_code)
    return promo_code


@router.post(
    "",
    response_model=PromoCodeResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_admin_api_key)],
)
async def create_promo_code(
    payload: PromoCodeCreateRequest,
    db: AsyncSession = Depends(get_session),
    provider: StripeCommerceProvider | None = Depends(get_stripe_provider),
) -> PromoCodeResponse:
    """Create a promo code and mirror it to Stripe."""

    promo_code = await PromoCodeStore(db).create(
        code=payload.code,
        discount_type=DiscountTypeEnum(payload.discountType),
        value=payload.value,
        max_discount=payload.maxDiscount,
        min_order_amount=payload.minOrderAmount,
        usage_limit=payload.usageLimit,
        valid_from=payload.validFrom,
        valid_until=payload.validUntil,
        influencer_id=payload.influencerId,
        commission_rate=payload.commissionRate,
        description=payload.description,
        campaign_name=payload.campaignName,
        notes=payload.notes,
        created_by=payload.createdBy,
    )
    promo_code = await _mirror(db, provider, promo_code)
    return _serialize_promo_code(promo_code)


@router.get(
    "",
    response_model=List[PromoCodeResponse],
    dependencies=[Depends(require_admin_api_key)],
)
async def list_promo_codes(
    status_filter: Optional[Literal["active", "inactive", "expired"]] = Query(None, alias="status"),
    influencer_id: Optional[UUID] = Query(None, alias="influencerId"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_session),
) -> List[PromoCodeResponse]:
    promo_codes = await PromoCodeStore(db).list_codes(
        status=PromoCodeStatusEnum(status_filter) if status_filter else None,
        influencer_id=influencer_id,
        limit=limit,
        offset=offset,
    )
    return [_serialize_promo_code(promo_code) for promo_code in promo_codes]


@router.post(
    "/validate",
    response_model=PromoCodeValidationResponse,
    dependencies=[Depends(require_checkout_api_key)],
)
async def validate_promo_code(
    payload: PromoCodeValidateRequest,
    db: AsyncSession = Depends(get_session),
) -> PromoCodeValidationResponse:
    """Check a code against an order total without consuming a use."""

    validation = await RedemptionService(db).validate(payload.code.strip(), payload.orderAmount)
    return _serialize_validation(validation)


@router.post(
    "/sync",
    dependencies=[Depends(require_admin_api_key)],
)
async def sync_pending_promo_codes(
    limit: int = Query(25, ge=1, le=200),
    db: AsyncSession = Depends(get_session),
    provider: StripeCommerceProvider | None = Depends(get_stripe_provider),
) -> dict[str, int]:
    """Retry every pending or failed coupon mirror."""

    return await CouponMirror(db, provider).sync_pending(limit=limit)


@router.get(
    "/{promo_code_id}",
    response_model=PromoCodeResponse,
    dependencies=[Depends(require_admin_api_key)],
)
async def get_promo_code(promo_code_id: UUID, db: AsyncSession = Depends(get_session)) -> PromoCodeResponse:
    return _serialize_promo_code(await PromoCodeStore(db).get(promo_code_id))


@router.patch(
    "/{promo_code_id}",
    response_model=PromoCodeResponse,
    dependencies=[Depends(require_admin_api_key)],
)
async def update_promo_code(
    promo_code_id: UUID,
    payload: PromoCodeUpdateRequest,
    db: AsyncSession = Depends(get_session),
    provider: StripeCommerceProvider | None = Depends(get_stripe_provider),
) -> PromoCodeResponse:
    changes = {_UPDATE_FIELDS[key]: value for key, value in payload.model_dump(exclude_unset=True).items()}
    promo_code = await PromoCodeStore(db).update(promo_code_id, changes)
    promo_code = await _mirror(db, provider, promo_code)
    return _serialize_promo_code(promo_code)


@router.delete(
    "/{promo_code_id}",
    response_model=PromoCodeDeletionResponse,
    dependencies=[Depends(require_admin_api_key)],
)
async def delete_promo_code(promo_code_id: UUID, db: AsyncSession = Depends(get_session)) -> PromoCodeDeletionResponse:
    """Delete an unused code; codes with recorded uses are deactivated instead."""

    result = await PromoCodeStore(db).delete(promo_code_id)
    return PromoCodeDeletionResponse(
        promoCodeId=result.promo_code_id,
        deleted=result.deleted,
        deactivated=result.deactivated,
    )


@router.get(
    "/{promo_code_id}/stats",
    response_model=PromoCodeStatsResponse,
    dependencies=[Depends(require_admin_api_key)],
)
async def get_promo_code_stats(promo_code_id: UUID, db: AsyncSession = Depends(get_session)) -> PromoCodeStatsResponse:
    stats = await PromoCodeStore(db).stats(promo_code_id)
    return PromoCodeStatsResponse(
        promoCodeId=stats.promo_code_id,
        code=stats.code,
        totalUses=stats.total_uses,
        usageLimit=stats.usage_limit,
        remainingUses=stats.remaining_uses,
        totalCommissions=float(stats.total_commissions),
        isActive=stats.is_active,
        isExpired=stats.is_expired,
    )


@router.post(
    "/{promo_code_id}/sync",
    response_model=CouponSyncResponse,
    dependencies=[Depends(require_admin_api_key)],
)
async def sync_promo_code(
    promo_code_id: UUID,
    db: AsyncSession = Depends(get_session),
    provider: StripeCommerceProvider | None = Depends(get_stripe_provider),
) -> CouponSyncResponse:
    await PromoCodeStore(db).get(promo_code_id)
    return _serialize_sync(await CouponMirror(db, provider).sync(promo_code_id))
