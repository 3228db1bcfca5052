from decimal import Decimal

import pytest
from httpx import ASGITransport, AsyncClient

from coachly_api.core.settings import settings
from coachly_api.models.promo_code import DiscountTypeEnum
from coachly_api.services.promotions import PromoCodeStore


def _client(app) -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


@pytest.mark.asyncio
async def test_create_promo_code_mirrors_to_stripe(app_with_db, stub_provider, make_influencer):
    app, session_factory = app_with_db
    async with session_factory() as session:
        influencer = await make_influencer(session)

    async with _client(app) as client:
        response = await client.post(
            "/api/v1/promo-codes",
            json={
                "code": "RIVERA20",
                "discountType": "percentage",
                "value": 20,
                "maxDiscount": 15,
                "usageLimit": 50,
                "influencerId": str(influencer.id),
                "campaignName": "Fall launch",
            },
        )

    assert response.status_code == 201
    body = response.json()
    assert body["code"] == "RIVERA20"
    assert body["value"] == 20.0
    assert body["usedCount"] == 0
    assert body["status"] == "active"
    assert body["syncStatus"] == "synced"
    assert body["stripePromotionCodeId"] == "promo_1"
    assert body["influencerId"] == str(influencer.id)
    assert stub_provider.promotion_codes[0].code == "RIVERA20"


@pytest.mark.asyncio
async def test_create_promo_code_survives_stripe_outage(app_with_db, stub_provider):
    app, _ = app_with_db
    stub_provider.fail_coupon_creation = True

    async with _client(app) as client:
        response = await client.post(
            "/api/v1/promo-codes",
            json={"code": "OUTAGE", "discountType": "fixed_amount", "value": 5},
        )

    assert response.status_code == 201
    assert response.json()["syncStatus"] == "failed"
    assert "coupon creation failed" in response.json()["lastSyncError"]


@pytest.mark.asyncio
async def test_create_promo_code_validation_errors(app_with_db):
    app, _ = app_with_db

    async with _client(app) as client:
        over_hundred = await client.post(
            "/api/v1/promo-codes",
            json={"code": "TOOMUCH", "discountType": "percentage", "value": 150},
        )
        await client.post("/api/v1/promo-codes", json={"code": "DUPE", "discountType": "fixed_amount", "value": 5})
        duplicate = await client.post(
            "/api/v1/promo-codes",
            json={"code": "DUPE", "discountType": "fixed_amount", "value": 5},
        )

    assert over_hundred.status_code == 422
    assert over_hundred.json()["reason"] == "INVALID_PROMO_CODE"
    assert duplicate.status_code == 409


@pytest.mark.asyncio
async def test_validate_endpoint_quotes_discount(app_with_db):
    app, session_factory = app_with_db
    async with session_factory() as session:
        await PromoCodeStore(session).create(
            code="COACH5",
            discount_type=DiscountTypeEnum.FIXED_AMOUNT,
            value=Decimal("5"),
            min_order_amount=Decimal("10"),
        )

    async with _client(app) as client:
        ok = await client.post("/api/v1/promo-codes/validate", json={"code": "COACH5", "orderAmount": 30})
        below = await client.post("/api/v1/promo-codes/validate", json={"code": "COACH5", "orderAmount": 8})
        missing = await client.post("/api/v1/promo-codes/validate", json={"code": "NOPE", "orderAmount": 30})

    assert ok.status_code == 200
    assert ok.json()["valid"] is True
    assert ok.json()["discountAmount"] == 5.0
    assert ok.json()["finalAmount"] == 25.0
    assert below.json() == {
        "valid": False,
        "reason": "BELOW_MINIMUM",
        "message": "Order amount is below the minimum required for this promo code",
        "discountAmount": None,
        "finalAmount": None,
        "promoCodeId": ok.json()["promoCodeId"],
        "code": "COACH5",
    }
    assert missing.json()["reason"] == "NOT_FOUND"


@pytest.mark.asyncio
async def test_update_stats_and_delete(app_with_db):
    app, _ = app_with_db

    async with _client(app) as client:
        created = await client.post(
            "/api/v1/promo-codes",
            json={"code": "EDITME", "discountType": "fixed_amount", "value": 5, "usageLimit": 10},
        )
        promo_code_id = created.json()["id"]

        updated = await client.patch(
            f"/api/v1/promo-codes/{promo_code_id}",
            json={"notes": "Creator swap", "status": "inactive"},
        )
        stats = await client.get(f"/api/v1/promo-codes/{promo_code_id}/stats")
        listed = await client.get("/api/v1/promo-codes", params={"status": "inactive"})
        deleted = await client.delete(f"/api/v1/promo-codes/{promo_code_id}")
        missing = await client.get(f"/api/v1/promo-codes/{promo_code_id}")

    assert updated.status_code == 200
    assert updated.json()["notes"] == "Creator swap"
    assert updated.json()["status"] == "inactive"
    assert stats.json()["remainingUses"] == 10
    assert stats.json()["isActive"] is False
    assert [item["code"] for item in listed.json()] == ["EDITME"]
    assert deleted.json() == {"promoCodeId": promo_code_id, "deleted": True, "deactivated": False}
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_manual_sync_endpoints(app_with_db, stub_provider):
    app, session_factory = app_with_db
    async with session_factory() as session:
        promo_code = await PromoCodeStore(session).create(
            code="LATER",
            discount_type=DiscountTypeEnum.PERCENTAGE,
            value=Decimal("10"),
        )

    async with _client(app) as client:
        single = await client.post(f"/api/v1/promo-codes/{promo_code.id}/sync")
        batch = await client.post("/api/v1/promo-codes/sync")

    assert single.status_code == 200
    assert single.json()["status"] == "synced"
    assert single.json()["createdCoupon"] is True
    assert batch.json() == {"synced": 0, "failed": 0, "skipped": 0}


@pytest.mark.asyncio
async def test_admin_routes_require_api_key(app_with_db):
    app, _ = app_with_db
    previous = settings.admin_api_key
    settings.admin_api_key = "admin-secret"
    try:
        async with _client(app) as client:
            denied = await client.get("/api/v1/promo-codes")
            allowed = await client.get("/api/v1/promo-codes", headers={"X-API-Key": "admin-secret"})
    finally:
        settings.admin_api_key = previous

    assert denied.status_code == 401
    assert allowed.status_code == 200
    assert allowed.json() == []
