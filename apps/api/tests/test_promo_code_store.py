from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from coachly_api.models.influencer import InfluencerStatusEnum
from coachly_api.models.promo_code import (
    CouponSyncStatusEnum,
    DiscountTypeEnum,
    PromoCode,
    PromoCodeStatusEnum,
)
from coachly_api.services.errors import ConflictError, NotFoundError, ValidationError
from coachly_api.services.promotions import PromoCodeStore, generate_promo_code


def test_generate_promo_code_is_uppercase_alphanumeric():
    code = generate_promo_code()

    assert len(code) == 8
    assert code.isalnum()
    assert code == code.upper()
    assert len(generate_promo_code(12)) == 12


@pytest.mark.asyncio
async def test_create_generates_code_and_defaults(session_factory):
    async with session_factory() as session:
        promo_code = await PromoCodeStore(session).create(
            discount_type=DiscountTypeEnum.FIXED_AMOUNT,
            value=Decimal("5"),
        )

        assert len(promo_code.code) == 8
        assert promo_code.status == PromoCodeStatusEnum.ACTIVE
        assert promo_code.used_count == 0
        assert promo_code.value == Decimal("5.00")
        assert promo_code.usage_limit is None
        assert promo_code.sync_status == CouponSyncStatusEnum.PENDING


@pytest.mark.asyncio
async def test_create_rejects_duplicate_code(session_factory):
    async with session_factory() as session:
        store = PromoCodeStore(session)
        await store.create(code="SPRING10", discount_type=DiscountTypeEnum.PERCENTAGE, value=Decimal("10"))

        with pytest.raises(ConflictError):
            await store.create(code="SPRING10", discount_type=DiscountTypeEnum.PERCENTAGE, value=Decimal("20"))


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "overrides",
    [
        {"discount_type": DiscountTypeEnum.PERCENTAGE, "value": Decimal("101")},
        {"discount_type": DiscountTypeEnum.FIXED_AMOUNT, "value": Decimal("0")},
        {"discount_type": DiscountTypeEnum.FIXED_AMOUNT, "value": Decimal("5"), "usage_limit": 0},
        {"discount_type": DiscountTypeEnum.FIXED_AMOUNT, "value": Decimal("5"), "commission_rate": Decimal("120")},
        {
            "discount_type": DiscountTypeEnum.FIXED_AMOUNT,
            "value": Decimal("5"),
            "valid_from": datetime(2026, 6, 1, tzinfo=timezone.utc),
            "valid_until": datetime(2026, 5, 1, tzinfo=timezone.utc),
        },
    ],
)
async def test_create_rejects_invalid_terms(session_factory, overrides):
    async with session_factory() as session:
        with pytest.raises(ValidationError) as exc_info:
            await PromoCodeStore(session).create(**overrides)

        assert exc_info.value.reason == "INVALID_PROMO_CODE"


@pytest.mark.asyncio
async def test_create_requires_approved_influencer(session_factory, make_influencer):
    async with session_factory() as session:
        pending = await make_influencer(session, status=InfluencerStatusEnum.PENDING)
        store = PromoCodeStore(session)

        with pytest.raises(ValidationError) as exc_info:
            await store.create(
                discount_type=DiscountTypeEnum.PERCENTAGE,
                value=Decimal("10"),
                influencer_id=pending.id,
            )
        assert exc_info.value.reason == "INFLUENCER_NOT_APPROVED"

        with pytest.raises(NotFoundError):
            await store.create(discount_type=DiscountTypeEnum.PERCENTAGE, value=Decimal("10"), influencer_id=uuid4())


@pytest.mark.asyncio
async def test_update_applies_changes_and_guards_used_count(session_factory):
    async with session_factory() as session:
        store = PromoCodeStore(session)
        promo_code = await store.create(
            code="COACH5",
            discount_type=DiscountTypeEnum.FIXED_AMOUNT,
            value=Decimal("5"),
            usage_limit=10,
        )
        promo_code.used_count = 3
        await session.commit()

        updated = await store.update(promo_code.id, {"value": Decimal("7.5"), "campaign_name": "Spring"})
        assert updated.value == Decimal("7.50")
        assert updated.campaign_name == "Spring"

        with pytest.raises(ValidationError):
            await store.update(promo_code.id, {"usage_limit": 2})
        with pytest.raises(ValidationError):
            await store.update(promo_code.id, {"used_count": 0})


@pytest.mark.asyncio
async def test_update_rejects_taken_code(session_factory):
    async with session_factory() as session:
        store = PromoCodeStore(session)
        await store.create(code="TAKEN", discount_type=DiscountTypeEnum.FIXED_AMOUNT, value=Decimal("5"))
        other = await store.create(code="OTHER", discount_type=DiscountTypeEnum.FIXED_AMOUNT, value=Decimal("5"))

        with pytest.raises(ConflictError):
            await store.update(other.id, {"code": "TAKEN"})


@pytest.mark.asyncio
async def test_delete_hard_deletes_unused_and_deactivates_used(session_factory):
    async with session_factory() as session:
        store = PromoCodeStore(session)
        unused = await store.create(code="UNUSED", discount_type=DiscountTypeEnum.FIXED_AMOUNT, value=Decimal("5"))
        used = await store.create(code="USED", discount_type=DiscountTypeEnum.FIXED_AMOUNT, value=Decimal("5"))
        used.used_count = 1
        await session.commit()

        removed = await store.delete(unused.id)
        kept = await store.delete(used.id)

        assert removed.deleted and not removed.deactivated
        assert kept.deactivated and not kept.deleted
        assert await session.get(PromoCode, unused.id) is None
        assert (await store.get(used.id)).status == PromoCodeStatusEnum.INACTIVE


@pytest.mark.asyncio
async def test_try_increment_usage_stops_at_limit(session_factory):
    async with session_factory() as session:
        store = PromoCodeStore(session)
        promo_code = await store.create(
            code="TWICE",
            discount_type=DiscountTypeEnum.FIXED_AMOUNT,
            value=Decimal("5"),
            usage_limit=2,
        )

        results = [await store.try_increment_usage(promo_code.id) for _ in range(3)]
        await session.commit()
        await session.refresh(promo_code)

        assert results == [True, True, False]
        assert promo_code.used_count == 2


@pytest.mark.asyncio
async def test_stats_reports_remaining_uses_and_expiry(session_factory):
    now = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)
    async with session_factory() as session:
        store = PromoCodeStore(session)
        promo_code = await store.create(
            code="STATS",
            discount_type=DiscountTypeEnum.PERCENTAGE,
            value=Decimal("10"),
            usage_limit=5,
            valid_until=now - timedelta(days=1),
        )
        promo_code.used_count = 2
        await session.commit()

        stats = await store.stats(promo_code.id, now=now)

        assert stats.total_uses == 2
        assert stats.remaining_uses == 3
        assert stats.is_active
        assert stats.is_expired
        assert stats.total_commissions == Decimal("0.00")


@pytest.mark.asyncio
async def test_expire_lapsed_flips_only_past_codes(session_factory):
    now = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)
    async with session_factory() as session:
        store = PromoCodeStore(session)
        lapsed = await store.create(
            code="LAPSED",
            discount_type=DiscountTypeEnum.FIXED_AMOUNT,
            value=Decimal("5"),
            valid_until=now - timedelta(hours=1),
        )
        current = await store.create(
            code="CURRENT",
            discount_type=DiscountTypeEnum.FIXED_AMOUNT,
            value=Decimal("5"),
            valid_until=now + timedelta(days=30),
        )
        open_ended = await store.create(code="FOREVER", discount_type=DiscountTypeEnum.FIXED_AMOUNT, value=Decimal("5"))

        expired = await store.expire_lapsed(now=now)

    assert expired == 1
    async with session_factory() as session:
        assert (await session.get(PromoCode, lapsed.id)).status == PromoCodeStatusEnum.EXPIRED
        assert (await session.get(PromoCode, current.id)).status == PromoCodeStatusEnum.ACTIVE
        assert (await session.get(PromoCode, open_ended.id)).status == PromoCodeStatusEnum.ACTIVE


@pytest.mark.asyncio
async def test_list_codes_filters_by_status_and_influencer(session_factory, make_influencer):
    async with session_factory() as session:
        influencer = await make_influencer(session)
        store = PromoCodeStore(session)
        owned = await store.create(
            code="OWNED",
            discount_type=DiscountTypeEnum.PERCENTAGE,
            value=Decimal("10"),
            influencer_id=influencer.id,
        )
        await store.create(code="HOUSE", discount_type=DiscountTypeEnum.PERCENTAGE, value=Decimal("10"))
        inactive = await store.create(code="OFF", discount_type=DiscountTypeEnum.PERCENTAGE, value=Decimal("10"))
        await store.update(inactive.id, {"status": "inactive"})

        by_influencer = await store.list_codes(influencer_id=influencer.id)
        inactive_codes = await store.list_codes(status=PromoCodeStatusEnum.INACTIVE)

        assert [code.id for code in by_influencer] == [owned.id]
        assert [code.code for code in inactive_codes] == ["OFF"]
