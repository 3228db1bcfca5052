import sys
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any, Mapping
from uuid import UUID, uuid4

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine


def _configure_path() -> None:
    src_path = Path(__file__).resolve().parents[1] / "src"
    if src_path.exists():
        sys.path.insert(0, str(src_path))


_configure_path()

import coachly_api.models  # noqa: E402,F401  (register tables on Base.metadata)
from coachly_api.api.dependencies.providers import get_email_notifier, get_stripe_provider  # noqa: E402
from coachly_api.app import create_app  # noqa: E402
from coachly_api.db.base import Base  # noqa: E402
from coachly_api.db.session import get_session  # noqa: E402
from coachly_api.models.influencer import BankAccountTypeEnum, Influencer, InfluencerStatusEnum  # noqa: E402
from coachly_api.observability.commerce import get_commerce_store  # noqa: E402
from coachly_api.services.billing.providers import (  # noqa: E402
    StripeCouponRecord,
    StripePayoutRecord,
    StripePromotionCodeRecord,
)
from coachly_api.services.errors import ExternalServiceError  # noqa: E402
from coachly_api.services.notifications import EmailNotifier, InMemoryEmailBackend  # noqa: E402


@pytest_asyncio.fixture
async def session_factory():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", future=True)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    try:
        yield factory
    finally:
        await engine.dispose()


@pytest_asyncio.fixture
async def file_session_factory(tmp_path):
    """File-backed database so concurrent sessions get independent connections."""

    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'commerce.db'}",
        future=True,
        connect_args={"timeout": 30},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    try:
        yield factory
    finally:
        await engine.dispose()


@pytest.fixture(autouse=True)
def reset_commerce_store():
    get_commerce_store().reset()
    yield
    get_commerce_store().reset()


@dataclass
class StubCommerceProvider:
    """In-memory stand-in for the Stripe coupon and payout primitives."""

    coupons: list[StripeCouponRecord] = field(default_factory=list)
    promotion_codes: list[StripePromotionCodeRecord] = field(default_factory=list)
    payouts: list[StripePayoutRecord] = field(default_factory=list)
    idempotency_keys: list[str] = field(default_factory=list)
    fail_coupon_creation: bool = False
    fail_payouts: bool = False
    # Raised after the transfer is recorded, as when Stripe applied it but the reply was lost.
    interrupt_payouts: BaseException | None = None
    transfers_by_key: dict[str, StripePayoutRecord] = field(default_factory=dict)
    webhook_secret: str | None = None

    async def list_coupons(self) -> list[StripeCouponRecord]:
        return list(self.coupons)

    async def create_coupon(
        self,
        *,
        percent_off: Decimal | None = None,
        amount_off: Decimal | None = None,
        currency: str | None = None,
        name: str | None = None,
        metadata: Mapping[str, str],
        idempotency_key: str,
    ) -> StripeCouponRecord:
        if self.fail_coupon_creation:
            raise ExternalServiceError("Stripe coupon creation failed")
        self.idempotency_keys.append(idempotency_key)
        record = StripeCouponRecord(
            coupon_id=f"coupon_{len(self.coupons) + 1}",
            percent_off=percent_off,
            amount_off=amount_off,
            currency=currency,
            metadata=dict(metadata),
        )
        self.coupons.append(record)
        return record

    async def list_promotion_codes(self) -> list[StripePromotionCodeRecord]:
        return list(self.promotion_codes)

    async def create_promotion_code(
        self,
        *,
        coupon_id: str,
        code: str,
        max_redemptions: int | None,
        expires_at: datetime | None,
        minimum_amount: Decimal | None,
        currency: str,
        metadata: Mapping[str, str],
        idempotency_key: str,
    ) -> StripePromotionCodeRecord:
        self.idempotency_keys.append(idempotency_key)
        record = StripePromotionCodeRecord(
            promotion_code_id=f"promo_{len(self.promotion_codes) + 1}",
            code=code,
            coupon_id=coupon_id,
            active=True,
            max_redemptions=max_redemptions,
            metadata=dict(metadata),
        )
        self.promotion_codes.append(record)
        return record

    async def create_payout(
        self,
        *,
        destination_account_id: str,
        amount: Decimal,
        currency: str,
        description: str | None,
        metadata: Mapping[str, str],
        idempotency_key: str,
    ) -> StripePayoutRecord:
        self.idempotency_keys.append(idempotency_key)
        if self.fail_payouts:
            raise ExternalServiceError("Stripe transfer failed: insufficient platform funds")
        record = self.transfers_by_key.get(idempotency_key)
        if record is None:
            record = StripePayoutRecord(
                payout_id=f"tr_{len(self.payouts) + 1}",
                status="paid",
                amount=amount,
                currency=currency,
                destination=destination_account_id,
                created_at=datetime.now(timezone.utc),
            )
            self.payouts.append(record)
            self.transfers_by_key[idempotency_key] = record
        if self.interrupt_payouts is not None:
            raise self.interrupt_payouts
        return record

    def construct_event(self, payload: str, signature: str | None) -> Mapping[str, Any]:
        raise NotImplementedError


@pytest.fixture
def stub_provider() -> StubCommerceProvider:
    return StubCommerceProvider()


@pytest.fixture
def notifier() -> EmailNotifier:
    return EmailNotifier(backend=InMemoryEmailBackend())


VALID_BANK = {
    "bank_routing_number": "021000021",
    "bank_account_number": "000123456789",
    "bank_name": "Chase Bank",
    "bank_account_holder_name": "Jordan Rivera",
    "bank_account_type": BankAccountTypeEnum.CHECKING,
}


@pytest.fixture
def make_influencer():
    """Insert an influencer directly; balances must satisfy earnings = available + withdrawn."""

    async def _make(
        session: AsyncSession,
        *,
        status: InfluencerStatusEnum = InfluencerStatusEnum.APPROVED,
        commission_rate: Decimal = Decimal("10"),
        available_balance: Decimal = Decimal("0"),
        total_withdrawn: Decimal = Decimal("0"),
        with_bank: bool = True,
        stripe_account_id: str | None = "acct_test_123",
        user_id: UUID | None = None,
        email: str | None = "coach@example.com",
    ) -> Influencer:
        influencer = Influencer(
            user_id=user_id or uuid4(),
            display_name="Jordan Rivera",
            email=email,
            status=status,
            commission_rate=commission_rate,
            stripe_account_id=stripe_account_id,
            total_earnings=available_balance + total_withdrawn,
            available_balance=available_balance,
            total_withdrawn=total_withdrawn,
            total_referrals=0,
            successful_referrals=0,
            **(VALID_BANK if with_bank else {}),
        )
        session.add(influencer)
        await session.commit()
        await session.refresh(influencer)
        return influencer

    return _make


@pytest_asyncio.fixture
async def app_with_db(session_factory, stub_provider, notifier):
    app = create_app()

    async def override_get_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_stripe_provider] = lambda: stub_provider
    app.dependency_overrides[get_email_notifier] = lambda: notifier

    try:
        yield app, session_factory
    finally:
        app.dependency_overrides.clear()
