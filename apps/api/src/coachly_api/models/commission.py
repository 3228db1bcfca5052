"""Commission records earned by influencers."""

from __future__ import annotations

from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    Column,
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import UUID

from coachly_api.db.base import Base


class CommissionStatusEnum(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    PAID = "paid"
    CANCELLED = "cancelled"


class Commission(Base):
    """Credit owed to an influencer for exactly one purchase."""

    __tablename__ = "commissions"
    __table_args__ = (UniqueConstraint("purchase_id", name="uq_commissions_purchase"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    influencer_id = Column(UUID(as_uuid=True), ForeignKey("influencers.id", ondelete="CASCADE"), nullable=False)
    promo_code_id = Column(UUID(as_uuid=True), ForeignKey("promo_codes.id", ondelete="SET NULL"), nullable=True)
    purchase_id = Column(String(255), nullable=False)
    subscription_amount = Column(Numeric(12, 2), nullable=False)
    # Snapshot at earning time; later rate changes never touch existing rows.
    commission_rate = Column(Numeric(5, 2), nullable=False)
    commission_amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(3), nullable=False)
    status = Column(
        SqlEnum(CommissionStatusEnum, name="commission_status_enum"),
        nullable=False,
        default=CommissionStatusEnum.PENDING,
        server_default=CommissionStatusEnum.PENDING.name,
    )
    notes = Column(Text, nullable=True)
    paid_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)


__all__ = ["Commission", "CommissionStatusEnum"]
