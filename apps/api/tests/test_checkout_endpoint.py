from decimal import Decimal

import pytest
from httpx import ASGITransport, AsyncClient

from coachly_api.core.settings import settings
from coachly_api.models.influencer import Influencer
from coachly_api.models.promo_code import DiscountTypeEnum
from coachly_api.services.promotions import PromoCodeStore


@pytest.mark.asyncio
async def test_purchase_redemption_and_replay(app_with_db, make_influencer):
    app, session_factory = app_with_db
    async with session_factory() as session:
        influencer = await make_influencer(session, commission_rate=Decimal("10"))
        await PromoCodeStore(session).create(
            code="RIVERA5",
            discount_type=DiscountTypeEnum.FIXED_AMOUNT,
            value=Decimal("5"),
            influencer_id=influencer.id,
        )

    request = {"promoCode": "RIVERA5", "purchaseId": "order-1001", "subscriptionAmount": 30}
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        first = await client.post("/api/v1/checkout/purchases", json=request)
        replay = await client.post("/api/v1/checkout/purchases", json=request)

    assert first.status_code == 201
    body = first.json()
    assert body["orderAmount"] == 30.0
    assert body["discountAmount"] == 5.0
    assert body["finalAmount"] == 25.0
    assert body["currency"] == "usd"
    assert body["replayed"] is False
    assert body["commission"]["commissionAmount"] == 3.0
    assert body["commission"]["commissionRate"] == 10.0
    assert body["commission"]["status"] == "pending"

    assert replay.status_code == 200
    assert replay.json()["replayed"] is True
    assert replay.json()["redemptionId"] == body["redemptionId"]

    async with session_factory() as session:
        stored = await session.get(Influencer, influencer.id)
        assert stored.available_balance == Decimal("3.00")


@pytest.mark.asyncio
async def test_purchase_rejections_carry_reason(app_with_db):
    app, session_factory = app_with_db
    async with session_factory() as session:
        await PromoCodeStore(session).create(
            code="ONCE",
            discount_type=DiscountTypeEnum.PERCENTAGE,
            value=Decimal("10"),
            usage_limit=1,
        )

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        await client.post(
            "/api/v1/checkout/purchases",
            json={"promoCode": "ONCE", "purchaseId": "order-1", "subscriptionAmount": 20},
        )
        exhausted = await client.post(
            "/api/v1/checkout/purchases",
            json={"promoCode": "ONCE", "purchaseId": "order-2", "subscriptionAmount": 20},
        )
        unknown = await client.post(
            "/api/v1/checkout/purchases",
            json={"promoCode": "MISSING", "purchaseId": "order-3", "subscriptionAmount": 20},
        )

    assert exhausted.status_code == 422
    assert exhausted.json() == {
        "reason": "USAGE_EXCEEDED",
        "message": "Promo code usage limit has been reached",
        "retryable": False,
    }
    assert unknown.status_code == 422
    assert unknown.json()["reason"] == "NOT_FOUND"


@pytest.mark.asyncio
async def test_checkout_requires_api_key_when_configured(app_with_db):
    app, _ = app_with_db
    previous = settings.checkout_api_key
    settings.checkout_api_key = "test-key"
    try:
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            denied = await client.post(
                "/api/v1/checkout/purchases",
                json={"promoCode": "X", "purchaseId": "order-9", "subscriptionAmount": 20},
            )
            validate = await client.post(
                "/api/v1/promo-codes/validate",
                json={"code": "X", "orderAmount": 20},
                headers={"X-API-Key": "test-key"},
            )
    finally:
        settings.checkout_api_key = previous

    assert denied.status_code == 401
    assert validate.status_code == 200
    assert validate.json()["reason"] == "NOT_FOUND"
