"""Influencer accounts and their commission balances."""

from __future__ import annotations

from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    Enum as SqlEnum,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import UUID

from coachly_api.db.base import Base


class InfluencerStatusEnum(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class BankAccountTypeEnum(str, Enum):
    CHECKING = "checking"
    SAVINGS = "savings"


class Influencer(Base):
    """Referral partner earning commission on promo code redemptions.

    ``total_earnings`` always equals ``available_balance + total_withdrawn``.
    The three aggregates are only changed through atomic UPDATE statements
    issued by the commission ledger and the withdrawal pipeline.
    """

    __tablename__ = "influencers"
    __table_args__ = (
        UniqueConstraint("user_id", name="uq_influencers_user_id"),
        CheckConstraint("available_balance >= 0", name="ck_influencers_available_balance_non_negative"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(UUID(as_uuid=True), nullable=False)
    display_name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=True)
    status = Column(
        SqlEnum(InfluencerStatusEnum, name="influencer_status_enum"),
        nullable=False,
        default=InfluencerStatusEnum.PENDING,
        server_default=InfluencerStatusEnum.PENDING.name,
    )
    commission_rate = Column(Numeric(5, 2), nullable=False, default=10, server_default="10")

    bank_routing_number = Column(String(9), nullable=True)
    bank_account_number = Column(String(17), nullable=True)
    bank_name = Column(String(255), nullable=True)
    bank_account_holder_name = Column(String(255), nullable=True)
    bank_account_type = Column(SqlEnum(BankAccountTypeEnum, name="bank_account_type_enum"), nullable=True)
    stripe_account_id = Column(String(128), nullable=True)

    total_earnings = Column(Numeric(12, 2), nullable=False, default=0, server_default="0")
    available_balance = Column(Numeric(12, 2), nullable=False, default=0, server_default="0")
    total_withdrawn = Column(Numeric(12, 2), nullable=False, default=0, server_default="0")
    total_referrals = Column(Integer, nullable=False, default=0, server_default="0")
    successful_referrals = Column(Integer, nullable=False, default=0, server_default="0")

    notes = Column(Text, nullable=True)
    approved_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)


__all__ = ["BankAccountTypeEnum", "Influencer", "InfluencerStatusEnum"]
