import time
from decimal import Decimal

import pytest
import stripe

from coachly_api.services.billing.providers import StripeCommerceProvider
from coachly_api.services.errors import ExternalServiceError, OutcomeUnknownError


def _provider(timeout_seconds: float = 5.0) -> StripeCommerceProvider:
    return StripeCommerceProvider("sk_test_123", timeout_seconds=timeout_seconds, max_network_retries=0)


async def _create_payout(provider: StripeCommerceProvider):
    return await provider.create_payout(
        destination_account_id="acct_test_123",
        amount=Decimal("30.00"),
        currency="usd",
        description="COACHLY PAYOUT",
        metadata={"withdrawal_id": "w-1"},
        idempotency_key="withdrawal-w-1",
    )


@pytest.mark.asyncio
async def test_create_payout_maps_transfer(monkeypatch):
    captured = {}

    def fake_create(**kwargs):
        captured.update(kwargs)
        return {"id": "tr_123", "amount": 3000, "currency": "usd", "created": 1760832000, "reversed": False}

    monkeypatch.setattr(stripe.Transfer, "create", staticmethod(fake_create))

    payout = await _create_payout(_provider())

    assert payout.payout_id == "tr_123"
    assert payout.amount == Decimal("30.00")
    assert payout.status == "paid"
    assert captured["amount"] == 3000
    assert captured["idempotency_key"] == "withdrawal-w-1"


@pytest.mark.asyncio
async def test_rejected_transfer_is_a_definitive_failure(monkeypatch):
    def fake_create(**kwargs):
        raise stripe.InvalidRequestError("Insufficient funds in Stripe account", param="amount")

    monkeypatch.setattr(stripe.Transfer, "create", staticmethod(fake_create))

    with pytest.raises(ExternalServiceError) as exc_info:
        await _create_payout(_provider())

    assert not isinstance(exc_info.value, OutcomeUnknownError)
    assert "Insufficient funds" in exc_info.value.message


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "error",
    [
        stripe.APIConnectionError("Connection reset by peer"),
        stripe.APIError("Internal server error"),
    ],
)
async def test_connection_and_server_errors_leave_outcome_unknown(monkeypatch, error):
    def fake_create(**kwargs):
        raise error

    monkeypatch.setattr(stripe.Transfer, "create", staticmethod(fake_create))

    with pytest.raises(OutcomeUnknownError) as exc_info:
        await _create_payout(_provider())

    assert exc_info.value.reason == "OUTCOME_UNKNOWN"
    assert exc_info.value.retryable is True


@pytest.mark.asyncio
async def test_timeout_leaves_outcome_unknown(monkeypatch):
    def slow_create(**kwargs):
        time.sleep(0.2)
        return {"id": "tr_late", "amount": 3000, "currency": "usd", "created": 1760832000}

    monkeypatch.setattr(stripe.Transfer, "create", staticmethod(slow_create))

    with pytest.raises(OutcomeUnknownError) as exc_info:
        await _create_payout(_provider(timeout_seconds=0.01))

    assert "timed out" in exc_info.value.message
