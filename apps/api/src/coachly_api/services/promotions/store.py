"""Canonical promo code records and their usage counters."""

from __future__ import annotations

import secrets
import string
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Mapping
from uuid import UUID

from loguru import logger
from sqlalchemy import and_, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from coachly_api.core.clock import as_utc, utcnow
from coachly_api.core.money import HUNDRED, quantize_cents, to_decimal
from coachly_api.core.settings import settings
from coachly_api.models.influencer import Influencer, InfluencerStatusEnum
from coachly_api.models.promo_code import (
    CouponSyncStatusEnum,
    DiscountTypeEnum,
    PromoCode,
    PromoCodeStatusEnum,
)
from coachly_api.services.errors import ConflictError, NotFoundError, ValidationError, ValidationReason

_CODE_ALPHABET = string.ascii_uppercase + string.digits
_MAX_CODE_ATTEMPTS = 10

# Fields an admin may edit after creation. ``used_count`` is deliberately absent.
EDITABLE_FIELDS: frozenset[str] = frozenset(
    {
        "code",
        "discount_type",
        "value",
        "max_discount",
        "min_order_amount",
        "usage_limit",
        "valid_from",
        "valid_until",
        "status",
        "influencer_id",
        "commission_rate",
        "description",
        "campaign_name",
        "notes",
    }
)
_MIRRORED_FIELDS = frozenset({"code", "discount_type", "value", "usage_limit", "valid_until", "min_order_amount"})


@dataclass(slots=True)
class PromoCodeStats:
    promo_code_id: UUID
    code: str
    total_uses: int
    usage_limit: int | None
    remaining_uses: int | None
    total_commissions: Decimal
    is_active: bool
    is_expired: bool


@dataclass(slots=True)
class PromoCodeDeletion:
    promo_code_id: UUID
    deleted: bool
    deactivated: bool


def generate_promo_code(length: int | None = None) -> str:
    """Random uppercase alphanumeric code."""

    size = length or settings.promo_code_length
    return "".join(secrets.choice(_CODE_ALPHABET) for _ in range(size))


class PromoCodeStore:
    """Admin CRUD plus the atomic usage increment used by redemption."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, promo_code_id: UUID) -> PromoCode:
        promo_code = await self._session.get(PromoCode, promo_code_id, populate_existing=True)
        if promo_code is None:
            raise NotFoundError(f"Promo code {promo_code_id} not found", reason=ValidationReason.NOT_FOUND)
        return promo_code

    async def find_by_code(self, code: str) -> PromoCode | None:
        stmt = select(PromoCode).where(PromoCode.code == code).execution_options(populate_existing=True)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_codes(
        self,
        *,
        status: PromoCodeStatusEnum | None = None,
        influencer_id: UUID | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[PromoCode]:
        stmt = select(PromoCode).order_by(PromoCode.created_at.desc(), PromoCode.code)
        if status is not None:
            stmt = stmt.where(PromoCode.status == status)
        if influencer_id is not None:
            stmt = stmt.where(PromoCode.influencer_id == influencer_id)
        result = await self._session.execute(stmt.limit(limit).offset(offset))
        return list(result.scalars().all())

    async def create(
        self,
        *,
        discount_type: DiscountTypeEnum,
        value: Decimal,
        code: str | None = None,
        max_discount: Decimal | None = None,
        min_order_amount: Decimal | None = None,
        usage_limit: int | None = None,
        valid_from: datetime | None = None,
        valid_until: datetime | None = None,
        influencer_id: UUID | None = None,
        commission_rate: Decimal | None = None,
        description: str | None = None,
        campaign_name: str | None = None,
        notes: str | None = None,
        created_by: str | None = None,
    ) -> PromoCode:
        """Persist a new promo code and commit.

        When ``code`` is omitted a random one is generated.
        """

        fields: dict[str, Any] = {
            "discount_type": DiscountTypeEnum(discount_type),
            "value": value,
            "max_discount": max_discount,
            "min_order_amount": min_order_amount,
            "usage_limit": usage_limit,
            "valid_from": valid_from,
            "valid_until": valid_until,
            "influencer_id": influencer_id,
            "commission_rate": commission_rate,
        }
        self._validate_terms(fields)
        if influencer_id is not None:
            await self._require_approved_influencer(influencer_id)

        if code is not None:
            code = code.strip()
            if not code:
                raise ValidationError("Promo code cannot be blank", reason=ValidationReason.INVALID_PROMO_CODE)
            if await self.find_by_code(code) is not None:
                raise ConflictError(f"Promo code {code} already exists")
        else:
            code = await self._generate_unique_code()

        promo_code = PromoCode(
            code=code,
            status=PromoCodeStatusEnum.ACTIVE,
            used_count=0,
            total_commissions=Decimal("0"),
            sync_status=CouponSyncStatusEnum.PENDING,
            description=description,
            campaign_name=campaign_name,
            notes=notes,
            created_by=created_by,
            **self._normalize_money(fields),
        )
        self._session.add(promo_code)
        try:
            await self._session.commit()
        except IntegrityError as exc:
            await self._session.rollback()
            raise ConflictError(f"Promo code {code} already exists") from exc

        await self._session.refresh(promo_code)
        logger.info(
            "Created promo code",
            promo_code_id=str(promo_code.id),
            code=promo_code.code,
            discount_type=promo_code.discount_type.value,
            influencer_id=str(influencer_id) if influencer_id else None,
        )
        return promo_code

    async def update(self, promo_code_id: UUID, changes: Mapping[str, Any]) -> PromoCode:
        unknown = set(changes) - EDITABLE_FIELDS
        if unknown:
            raise ValidationError(
                f"Fields cannot be edited: {', '.join(sorted(unknown))}",
                reason=ValidationReason.INVALID_PROMO_CODE,
            )

        promo_code = await self.get(promo_code_id)
        merged: dict[str, Any] = {
            name: getattr(promo_code, name)
            for name in (
                "discount_type",
                "value",
                "max_discount",
                "min_order_amount",
                "usage_limit",
                "valid_from",
                "valid_until",
                "influencer_id",
                "commission_rate",
            )
        }
        merged.update({key: value for key, value in changes.items() if key in merged})
        self._validate_terms(merged)

        usage_limit = merged["usage_limit"]
        if usage_limit is not None and usage_limit < promo_code.used_count:
            raise ValidationError(
                "Usage limit cannot be lower than the number of recorded uses",
                reason=ValidationReason.INVALID_PROMO_CODE,
            )
        if "influencer_id" in changes and changes["influencer_id"] is not None:
            await self._require_approved_influencer(changes["influencer_id"])

        if "code" in changes:
            new_code = (changes["code"] or "").strip()
            if not new_code:
                raise ValidationError("Promo code cannot be blank", reason=ValidationReason.INVALID_PROMO_CODE)
            if new_code != promo_code.code and await self.find_by_code(new_code) is not None:
                raise ConflictError(f"Promo code {new_code} already exists")
            promo_code.code = new_code

        for name, value in self._normalize_money(merged).items():
            setattr(promo_code, name, value)
        for name in ("status", "description", "campaign_name", "notes"):
            if name in changes:
                value = changes[name]
                setattr(promo_code, name, PromoCodeStatusEnum(value) if name == "status" else value)

        if _MIRRORED_FIELDS & set(changes) and promo_code.sync_status != CouponSyncStatusEnum.SYNCED:
            promo_code.sync_status = CouponSyncStatusEnum.PENDING

        try:
            await self._session.commit()
        except IntegrityError as exc:
            await self._session.rollback()
            raise ConflictError(f"Promo code {changes.get('code')} already exists") from exc

        await self._session.refresh(promo_code)
        logger.info("Updated promo code", promo_code_id=str(promo_code.id), fields=sorted(changes))
        return promo_code

    async def delete(self, promo_code_id: UUID) -> PromoCodeDeletion:
        """Hard-delete unused codes; codes with recorded uses are deactivated instead."""

        promo_code = await self.get(promo_code_id)
        if promo_code.used_count > 0:
            promo_code.status = PromoCodeStatusEnum.INACTIVE
            await self._session.commit()
            logger.info(
                "Deactivated used promo code instead of deleting",
                promo_code_id=str(promo_code_id),
                used_count=promo_code.used_count,
            )
            return PromoCodeDeletion(promo_code_id=promo_code_id, deleted=False, deactivated=True)

        await self._session.delete(promo_code)
        await self._session.commit()
        logger.info("Deleted promo code", promo_code_id=str(promo_code_id))
        return PromoCodeDeletion(promo_code_id=promo_code_id, deleted=True, deactivated=False)

    async def try_increment_usage(self, promo_code_id: UUID) -> bool:
        """Consume one usage slot if one is left.

        Issued as a single conditional UPDATE so concurrent redemptions cannot
        push ``used_count`` past ``usage_limit``. Does not commit.
        """

        stmt = (
            update(PromoCode)
            .where(
                PromoCode.id == promo_code_id,
                PromoCode.status == PromoCodeStatusEnum.ACTIVE,
                or_(PromoCode.usage_limit.is_(None), PromoCode.used_count < PromoCode.usage_limit),
            )
            .values(used_count=PromoCode.used_count + 1)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount == 1

    async def stats(self, promo_code_id: UUID, *, now: datetime | None = None) -> PromoCodeStats:
        promo_code = await self.get(promo_code_id)
        current = now or utcnow()
        valid_until = as_utc(promo_code.valid_until)
        remaining = None
        if promo_code.usage_limit is not None:
            remaining = max(promo_code.usage_limit - promo_code.used_count, 0)
        return PromoCodeStats(
            promo_code_id=promo_code.id,
            code=promo_code.code,
            total_uses=promo_code.used_count,
            usage_limit=promo_code.usage_limit,
            remaining_uses=remaining,
            total_commissions=quantize_cents(promo_code.total_commissions),
            is_active=promo_code.status == PromoCodeStatusEnum.ACTIVE,
            is_expired=promo_code.status == PromoCodeStatusEnum.EXPIRED
            or (valid_until is not None and current > valid_until),
        )

    async def expire_lapsed(self, *, now: datetime | None = None) -> int:
        """Flip active codes whose validity window has closed to ``expired``."""

        stmt = (
            update(PromoCode)
            .where(
                and_(
                    PromoCode.status == PromoCodeStatusEnum.ACTIVE,
                    PromoCode.valid_until.is_not(None),
                    PromoCode.valid_until < (now or utcnow()),
                )
            )
            .values(status=PromoCodeStatusEnum.EXPIRED)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        await self._session.commit()
        if result.rowcount:
            logger.info("Expired lapsed promo codes", count=result.rowcount)
        return result.rowcount or 0

    async def _require_approved_influencer(self, influencer_id: UUID) -> Influencer:
        influencer = await self._session.get(Influencer, influencer_id)
        if influencer is None:
            raise NotFoundError(f"Influencer {influencer_id} not found")
        if influencer.status != InfluencerStatusEnum.APPROVED:
            raise ValidationError(
                "Promo codes can only be assigned to approved influencers",
                reason=ValidationReason.INFLUENCER_NOT_APPROVED,
            )
        return influencer

    async def _generate_unique_code(self) -> str:
        for _ in range(_MAX_CODE_ATTEMPTS):
            candidate = generate_promo_code()
            if await self.find_by_code(candidate) is None:
                return candidate
        raise ConflictError("Unable to generate a unique promo code")

    @staticmethod
    def _validate_terms(fields: Mapping[str, Any]) -> None:
        discount_type = DiscountTypeEnum(fields["discount_type"])
        value = to_decimal(fields["value"])
        if value <= 0:
            raise ValidationError("Discount value must be positive", reason=ValidationReason.INVALID_PROMO_CODE)
        if discount_type is DiscountTypeEnum.PERCENTAGE and value > HUNDRED:
            raise ValidationError(
                "Percentage discount cannot exceed 100%",
                reason=ValidationReason.INVALID_PROMO_CODE,
            )
        for name in ("max_discount", "min_order_amount"):
            amount = fields.get(name)
            if amount is not None and to_decimal(amount) < 0:
                raise ValidationError(f"{name} cannot be negative", reason=ValidationReason.INVALID_PROMO_CODE)
        usage_limit = fields.get("usage_limit")
        if usage_limit is not None and usage_limit < 1:
            raise ValidationError("Usage limit must be at least 1", reason=ValidationReason.INVALID_PROMO_CODE)
        rate = fields.get("commission_rate")
        if rate is not None and not (0 <= to_decimal(rate) <= HUNDRED):
            raise ValidationError(
                "Commission rate must be between 0 and 100",
                reason=ValidationReason.INVALID_PROMO_CODE,
            )
        valid_from = as_utc(fields.get("valid_from"))
        valid_until = as_utc(fields.get("valid_until"))
        if valid_from and valid_until and valid_from >= valid_until:
            raise ValidationError(
                "valid_from must be earlier than valid_until",
                reason=ValidationReason.INVALID_PROMO_CODE,
            )

    @staticmethod
    def _normalize_money(fields: Mapping[str, Any]) -> dict[str, Any]:
        normalized = dict(fields)
        normalized["discount_type"] = DiscountTypeEnum(fields["discount_type"])
        normalized["value"] = quantize_cents(fields["value"])
        for name in ("max_discount", "min_order_amount", "commission_rate"):
            if fields.get(name) is not None:
                normalized[name] = quantize_cents(fields[name])
        return normalized


__all__ = [
    "EDITABLE_FIELDS",
    "PromoCodeDeletion",
    "PromoCodeStats",
    "PromoCodeStore",
    "generate_promo_code",
]
