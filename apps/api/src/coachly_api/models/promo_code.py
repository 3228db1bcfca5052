"""Promo code catalog and redemption ledger models."""

from __future__ import annotations

from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    Column,
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import UUID

from coachly_api.db.base import Base


class DiscountTypeEnum(str, Enum):
    PERCENTAGE = "percentage"
    FIXED_AMOUNT = "fixed_amount"


class PromoCodeStatusEnum(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    EXPIRED = "expired"


class CouponSyncStatusEnum(str, Enum):
    """Lifecycle of the processor-side coupon projection."""

    PENDING = "pending"
    SYNCED = "synced"
    FAILED = "failed"


class PromoCode(Base):
    """Discount code, optionally owned by an influencer."""

    __tablename__ = "promo_codes"
    __table_args__ = (UniqueConstraint("code", name="uq_promo_codes_code"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    code = Column(String(64), nullable=False)
    discount_type = Column(SqlEnum(DiscountTypeEnum, name="discount_type_enum"), nullable=False)
    value = Column(Numeric(12, 2), nullable=False)
    max_discount = Column(Numeric(12, 2), nullable=True)
    min_order_amount = Column(Numeric(12, 2), nullable=True)
    usage_limit = Column(Integer, nullable=True)
    used_count = Column(Integer, nullable=False, default=0, server_default="0")
    valid_from = Column(DateTime(timezone=True), nullable=True)
    valid_until = Column(DateTime(timezone=True), nullable=True)
    status = Column(
        SqlEnum(PromoCodeStatusEnum, name="promo_code_status_enum"),
        nullable=False,
        default=PromoCodeStatusEnum.ACTIVE,
        server_default=PromoCodeStatusEnum.ACTIVE.name,
    )
    influencer_id = Column(UUID(as_uuid=True), ForeignKey("influencers.id", ondelete="SET NULL"), nullable=True)
    commission_rate = Column(Numeric(5, 2), nullable=True)
    total_commissions = Column(Numeric(12, 2), nullable=False, default=0, server_default="0")
    description = Column(Text, nullable=True)
    campaign_name = Column(String(255), nullable=True)
    notes = Column(Text, nullable=True)
    created_by = Column(String(128), nullable=True)

    stripe_coupon_id = Column(String(128), nullable=True)
    stripe_promotion_code_id = Column(String(128), nullable=True)
    sync_status = Column(
        SqlEnum(CouponSyncStatusEnum, name="coupon_sync_status_enum"),
        nullable=False,
        default=CouponSyncStatusEnum.PENDING,
        server_default=CouponSyncStatusEnum.PENDING.name,
    )
    sync_attempts = Column(Integer, nullable=False, default=0, server_default="0")
    last_sync_error = Column(Text, nullable=True)
    synced_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)


class PromoCodeRedemption(Base):
    """One row per purchase that consumed a promo code."""

    __tablename__ = "promo_code_redemptions"
    __table_args__ = (UniqueConstraint("purchase_id", name="uq_promo_code_redemptions_purchase"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    purchase_id = Column(String(255), nullable=False)
    promo_code_id = Column(UUID(as_uuid=True), ForeignKey("promo_codes.id", ondelete="CASCADE"), nullable=False)
    order_amount = Column(Numeric(12, 2), nullable=False)
    discount_amount = Column(Numeric(12, 2), nullable=False)
    final_amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(3), nullable=False)
    commission_id = Column(UUID(as_uuid=True), ForeignKey("commissions.id", ondelete="SET NULL"), nullable=True)
    redeemed_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


__all__ = [
    "CouponSyncStatusEnum",
    "DiscountTypeEnum",
    "PromoCode",
    "PromoCodeRedemption",
    "PromoCodeStatusEnum",
]
