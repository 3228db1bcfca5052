"""Influencer withdrawal requests."""

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
    func,
)
from sqlalchemy.dialects.postgresql import UUID

from coachly_api.db.base import Base
from coachly_api.models.influencer import BankAccountTypeEnum


class WithdrawalStatusEnum(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    PROCESSING = "processing"
    PAID = "paid"
    REJECTED = "rejected"


class WithdrawalRequest(Base):
    """Payout request carrying a bank snapshot taken when it was filed."""

    __tablename__ = "withdrawal_requests"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    influencer_id = Column(UUID(as_uuid=True), ForeignKey("influencers.id", ondelete="CASCADE"), nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(3), nullable=False)
    status = Column(
        SqlEnum(WithdrawalStatusEnum, name="withdrawal_status_enum"),
        nullable=False,
        default=WithdrawalStatusEnum.PENDING,
        server_default=WithdrawalStatusEnum.PENDING.name,
    )

    bank_routing_number = Column(String(9), nullable=False)
    bank_account_number = Column(String(17), nullable=False)
    bank_name = Column(String(255), nullable=False)
    bank_account_holder_name = Column(String(255), nullable=False)
    bank_account_type = Column(SqlEnum(BankAccountTypeEnum, name="bank_account_type_enum"), nullable=False)

    rejection_reason = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)
    payout_id = Column(String(128), nullable=True)
    payout_attempts = Column(Integer, nullable=False, default=0, server_default="0")
    last_payout_error = Column(Text, nullable=True)
    payout_started_at = Column(DateTime(timezone=True), nullable=True)

    requested_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    approved_at = Column(DateTime(timezone=True), nullable=True)
    processed_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)


__all__ = ["WithdrawalRequest", "WithdrawalStatusEnum"]
