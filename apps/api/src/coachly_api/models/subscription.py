"""Local mirror of processor-managed coaching subscriptions."""

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


class SubscriptionStatusEnum(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class Subscription(Base):
    __tablename__ = "subscriptions"
    __table_args__ = (
        UniqueConstraint("processor_subscription_id", name="uq_subscriptions_processor_subscription"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    processor_subscription_id = Column(String(128), nullable=False)
    processor_customer_id = Column(String(128), nullable=True)
    status = Column(
        SqlEnum(SubscriptionStatusEnum, name="subscription_status_enum"),
        nullable=False,
        default=SubscriptionStatusEnum.PENDING,
        server_default=SubscriptionStatusEnum.PENDING.name,
    )
    amount = Column(Numeric(12, 2), nullable=True)
    currency = Column(String(3), nullable=True)
    promo_code_id = Column(UUID(as_uuid=True), ForeignKey("promo_codes.id", ondelete="SET NULL"), nullable=True)
    current_period_end = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    last_payment_error = Column(Text, nullable=True)
    last_event_id = Column(String(128), nullable=True)
    last_event_created_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)


__all__ = ["Subscription", "SubscriptionStatusEnum"]
