"""Create promo code, influencer commission, withdrawal, and webhook ledger tables."""

from __future__ import annotations

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql


revision: str = "20261019_01"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


# Enum columns store member names, matching SQLAlchemy's default for Python enums.
discount_type_enum = sa.Enum("PERCENTAGE", "FIXED_AMOUNT", name="discount_type_enum")
promo_code_status_enum = sa.Enum("ACTIVE", "INACTIVE", "EXPIRED", name="promo_code_status_enum")
coupon_sync_status_enum = sa.Enum("PENDING", "SYNCED", "FAILED", name="coupon_sync_status_enum")
influencer_status_enum = sa.Enum("PENDING", "APPROVED", "REJECTED", name="influencer_status_enum")
bank_account_type_enum = sa.Enum("CHECKING", "SAVINGS", name="bank_account_type_enum")
commission_status_enum = sa.Enum("PENDING", "APPROVED", "PAID", "CANCELLED", name="commission_status_enum")
withdrawal_status_enum = sa.Enum(
    "PENDING", "APPROVED", "PROCESSING", "PAID", "REJECTED", name="withdrawal_status_enum"
)
subscription_status_enum = sa.Enum(
    "PENDING", "ACTIVE", "PAST_DUE", "CANCELLED", "EXPIRED", name="subscription_status_enum"
)
processor_provider_enum = sa.Enum("STRIPE", name="processor_provider_enum")


def _uuid() -> postgresql.UUID:
    return postgresql.UUID(as_uuid=True)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "influencers",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("user_id", _uuid(), nullable=False),
        sa.Column("display_name", sa.String(length=255), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("status", influencer_status_enum, server_default="PENDING", nullable=False),
        sa.Column("commission_rate", sa.Numeric(5, 2), server_default="10", nullable=False),
        sa.Column("bank_routing_number", sa.String(length=9), nullable=True),
        sa.Column("bank_account_number", sa.String(length=17), nullable=True),
        sa.Column("bank_name", sa.String(length=255), nullable=True),
        sa.Column("bank_account_holder_name", sa.String(length=255), nullable=True),
        sa.Column("bank_account_type", bank_account_type_enum, nullable=True),
        sa.Column("stripe_account_id", sa.String(length=128), nullable=True),
        sa.Column("total_earnings", sa.Numeric(12, 2), server_default="0", nullable=False),
        sa.Column("available_balance", sa.Numeric(12, 2), server_default="0", nullable=False),
        sa.Column("total_withdrawn", sa.Numeric(12, 2), server_default="0", nullable=False),
        sa.Column("total_referrals", sa.Integer(), server_default="0", nullable=False),
        sa.Column("successful_referrals", sa.Integer(), server_default="0", nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("user_id", name="uq_influencers_user_id"),
        sa.CheckConstraint("available_balance >= 0", name="ck_influencers_available_balance_non_negative"),
    )

    op.create_table(
        "promo_codes",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("code", sa.String(length=64), nullable=False),
        sa.Column("discount_type", discount_type_enum, nullable=False),
        sa.Column("value", sa.Numeric(12, 2), nullable=False),
        sa.Column("max_discount", sa.Numeric(12, 2), nullable=True),
        sa.Column("min_order_amount", sa.Numeric(12, 2), nullable=True),
        sa.Column("usage_limit", sa.Integer(), nullable=True),
        sa.Column("used_count", sa.Integer(), server_default="0", nullable=False),
        sa.Column("valid_from", sa.DateTime(timezone=True), nullable=True),
        sa.Column("valid_until", sa.DateTime(timezone=True), nullable=True),
        sa.Column("status", promo_code_status_enum, server_default="ACTIVE", nullable=False),
        sa.Column("influencer_id", _uuid(), nullable=True),
        sa.Column("commission_rate", sa.Numeric(5, 2), nullable=True),
        sa.Column("total_commissions", sa.Numeric(12, 2), server_default="0", nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("campaign_name", sa.String(length=255), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_by", sa.String(length=128), nullable=True),
        sa.Column("stripe_coupon_id", sa.String(length=128), nullable=True),
        sa.Column("stripe_promotion_code_id", sa.String(length=128), nullable=True),
        sa.Column("sync_status", coupon_sync_status_enum, server_default="PENDING", nullable=False),
        sa.Column("sync_attempts", sa.Integer(), server_default="0", nullable=False),
        sa.Column("last_sync_error", sa.Text(), nullable=True),
        sa.Column("synced_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["influencer_id"], ["influencers.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("code", name="uq_promo_codes_code"),
    )
    op.create_index("ix_promo_codes_influencer_id", "promo_codes", ["influencer_id"])
    op.create_index("ix_promo_codes_sync_status", "promo_codes", ["status", "sync_status"])

    op.create_table(
        "commissions",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("influencer_id", _uuid(), nullable=False),
        sa.Column("promo_code_id", _uuid(), nullable=True),
        sa.Column("purchase_id", sa.String(length=255), nullable=False),
        sa.Column("subscription_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("commission_rate", sa.Numeric(5, 2), nullable=False),
        sa.Column("commission_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("status", commission_status_enum, server_default="PENDING", nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["influencer_id"], ["influencers.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["promo_code_id"], ["promo_codes.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("purchase_id", name="uq_commissions_purchase"),
    )
    op.create_index("ix_commissions_influencer_status", "commissions", ["influencer_id", "status"])

    op.create_table(
        "promo_code_redemptions",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("purchase_id", sa.String(length=255), nullable=False),
        sa.Column("promo_code_id", _uuid(), nullable=False),
        sa.Column("order_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("discount_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("final_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("commission_id", _uuid(), nullable=True),
        sa.Column("redeemed_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(["promo_code_id"], ["promo_codes.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["commission_id"], ["commissions.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("purchase_id", name="uq_promo_code_redemptions_purchase"),
    )

    op.create_table(
        "withdrawal_requests",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("influencer_id", _uuid(), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("status", withdrawal_status_enum, server_default="PENDING", nullable=False),
        sa.Column("bank_routing_number", sa.String(length=9), nullable=False),
        sa.Column("bank_account_number", sa.String(length=17), nullable=False),
        sa.Column("bank_name", sa.String(length=255), nullable=False),
        sa.Column("bank_account_holder_name", sa.String(length=255), nullable=False),
        sa.Column(
            "bank_account_type",
            postgresql.ENUM("CHECKING", "SAVINGS", name="bank_account_type_enum", create_type=False),
            nullable=False,
        ),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("payout_id", sa.String(length=128), nullable=True),
        sa.Column("payout_attempts", sa.Integer(), server_default="0", nullable=False),
        sa.Column("last_payout_error", sa.Text(), nullable=True),
        sa.Column("payout_started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("requested_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(["influencer_id"], ["influencers.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_withdrawal_requests_influencer_status", "withdrawal_requests", ["influencer_id", "status"])

    op.create_table(
        "subscriptions",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("processor_subscription_id", sa.String(length=128), nullable=False),
        sa.Column("processor_customer_id", sa.String(length=128), nullable=True),
        sa.Column("status", subscription_status_enum, server_default="PENDING", nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=True),
        sa.Column("currency", sa.String(length=3), nullable=True),
        sa.Column("promo_code_id", _uuid(), nullable=True),
        sa.Column("current_period_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_payment_error", sa.Text(), nullable=True),
        sa.Column("last_event_id", sa.String(length=128), nullable=True),
        sa.Column("last_event_created_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["promo_code_id"], ["promo_codes.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("processor_subscription_id", name="uq_subscriptions_processor_subscription"),
    )

    op.create_table(
        "processor_events",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("provider", processor_provider_enum, nullable=False),
        sa.Column("external_id", sa.String(length=128), nullable=False),
        sa.Column("event_type", sa.String(length=128), nullable=False),
        sa.Column("payload_hash", sa.String(length=128), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=True),
        sa.Column("received_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("attempts", sa.Integer(), server_default="0", nullable=False),
        sa.Column("outcome", sa.String(length=64), nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("provider", "external_id", name="uq_processor_event_provider_external"),
    )


def downgrade() -> None:
    op.drop_table("processor_events")
    op.drop_table("subscriptions")
    op.drop_index("ix_withdrawal_requests_influencer_status", table_name="withdrawal_requests")
    op.drop_table("withdrawal_requests")
    op.drop_table("promo_code_redemptions")
    op.drop_index("ix_commissions_influencer_status", table_name="commissions")
    op.drop_table("commissions")
    op.drop_index("ix_promo_codes_sync_status", table_name="promo_codes")
    op.drop_index("ix_promo_codes_influencer_id", table_name="promo_codes")
    op.drop_table("promo_codes")
    op.drop_table("influencers")

    bind = op.get_bind()
    for enum in (
        processor_provider_enum,
        subscription_status_enum,
        withdrawal_status_enum,
        commission_status_enum,
        bank_account_type_enum,
        influencer_status_enum,
        coupon_sync_status_enum,
        promo_code_status_enum,
        discount_type_enum,
    ):
        enum.drop(bind, checkfirst=True)
