import asyncio
from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from coachly_api.core.clock import utcnow
from coachly_api.core.settings import settings
from coachly_api.models.influencer import Influencer, InfluencerStatusEnum
from coachly_api.models.withdrawal import WithdrawalRequest, WithdrawalStatusEnum
from coachly_api.observability.commerce import get_commerce_store
from coachly_api.services.banking import BankAccountDetails
from coachly_api.services.errors import (
    BankValidationError,
    ConflictError,
    ExternalServiceError,
    InsufficientBalanceError,
    OutcomeUnknownError,
    ValidationError,
)
from coachly_api.services.withdrawals import WithdrawalPipeline


def _assert_balanced(influencer: Influencer) -> None:
    assert influencer.total_earnings == influencer.available_balance + influencer.total_withdrawn


async def _approved_request(session, pipeline, influencer, amount="30.00"):
    withdrawal = await pipeline.request(influencer.id, Decimal(amount))
    return await pipeline.approve(withdrawal.id)


@pytest.mark.asyncio
async def test_request_exceeding_balance_is_rejected_without_side_effects(
    session_factory, make_influencer, stub_provider, notifier
):
    async with session_factory() as session:
        influencer = await make_influencer(session, available_balance=Decimal("30.00"))
        pipeline = WithdrawalPipeline(session, provider=stub_provider, notifier=notifier)

        with pytest.raises(InsufficientBalanceError):
            await pipeline.request(influencer.id, Decimal("50.00"))

    async with session_factory() as session:
        stored = await session.get(Influencer, influencer.id)
        requests = await session.scalar(select(func.count(WithdrawalRequest.id)))
        assert stored.available_balance == Decimal("30.00")
        assert stored.total_withdrawn == Decimal("0.00")
        assert requests == 0
    assert notifier.sent_events == []


@pytest.mark.asyncio
async def test_request_validates_influencer_and_amount(session_factory, make_influencer, notifier):
    async with session_factory() as session:
        pending = await make_influencer(session, status=InfluencerStatusEnum.PENDING, available_balance=Decimal("90"))
        approved = await make_influencer(session, available_balance=Decimal("90"))
        no_bank = await make_influencer(session, available_balance=Decimal("90"), with_bank=False)
        pipeline = WithdrawalPipeline(session, notifier=notifier)

        with pytest.raises(ValidationError) as not_approved:
            await pipeline.request(pending.id, Decimal("20"))
        with pytest.raises(ValidationError) as below_minimum:
            await pipeline.request(approved.id, Decimal("5"))
        with pytest.raises(BankValidationError):
            await pipeline.request(no_bank.id, Decimal("20"))

    assert not_approved.value.reason == "INFLUENCER_NOT_APPROVED"
    assert below_minimum.value.reason == "BELOW_WITHDRAWAL_MINIMUM"


@pytest.mark.asyncio
async def test_request_snapshots_bank_and_leaves_balance_untouched(session_factory, make_influencer, notifier):
    override = BankAccountDetails(
        routing_number="011000015",
        account_number="99887766",
        bank_name="Citibank",
        account_holder_name="Jordan Rivera",
        account_type="savings",
    )
    async with session_factory() as session:
        influencer = await make_influencer(session, available_balance=Decimal("50.00"))
        pipeline = WithdrawalPipeline(session, notifier=notifier)

        withdrawal = await pipeline.request(influencer.id, Decimal("30.00"), bank=override, notes="rent")

    assert withdrawal.status == WithdrawalStatusEnum.PENDING
    assert withdrawal.bank_account_number == "99887766"
    assert withdrawal.bank_name == "Citibank"
    assert withdrawal.currency == "usd"
    async with session_factory() as session:
        stored = await session.get(Influencer, influencer.id)
        assert stored.available_balance == Decimal("50.00")
        assert stored.bank_account_number == "000123456789"
    assert [event.template_type for event in notifier.sent_events] == ["withdrawal_requested"]


@pytest.mark.asyncio
async def test_approve_and_reject_only_from_pending(session_factory, make_influencer, notifier):
    async with session_factory() as session:
        influencer = await make_influencer(session, available_balance=Decimal("100.00"))
        pipeline = WithdrawalPipeline(session, notifier=notifier)
        first = await pipeline.request(influencer.id, Decimal("20.00"))
        second = await pipeline.request(influencer.id, Decimal("20.00"))

        approved = await pipeline.approve(first.id)
        rejected = await pipeline.reject(second.id, "Bank details need review")

        assert approved.status == WithdrawalStatusEnum.APPROVED
        assert approved.approved_at is not None
        assert rejected.status == WithdrawalStatusEnum.REJECTED
        assert rejected.rejection_reason == "Bank details need review"

        with pytest.raises(ConflictError):
            await pipeline.approve(first.id)
        with pytest.raises(ConflictError):
            await pipeline.reject(first.id, "too late")
        with pytest.raises(ValidationError):
            await pipeline.reject(first.id, "   ")

    templates = [event.template_type for event in notifier.sent_events]
    assert templates.count("withdrawal_approved") == 1
    assert templates.count("withdrawal_rejected") == 1


@pytest.mark.asyncio
async def test_process_pays_out_and_moves_balance(session_factory, make_influencer, stub_provider, notifier):
    async with session_factory() as session:
        influencer = await make_influencer(session, available_balance=Decimal("50.00"))
        pipeline = WithdrawalPipeline(session, provider=stub_provider, notifier=notifier)
        withdrawal = await _approved_request(session, pipeline, influencer)

        paid = await pipeline.process(withdrawal.id)

    assert paid.status == WithdrawalStatusEnum.PAID
    assert paid.payout_id == "tr_1"
    assert paid.processed_at is not None
    assert paid.payout_attempts == 1
    assert stub_provider.payouts[0].amount == Decimal("30.00")
    assert stub_provider.payouts[0].destination == "acct_test_123"
    assert stub_provider.idempotency_keys == [f"withdrawal-{withdrawal.id}"]

    async with session_factory() as session:
        stored = await session.get(Influencer, influencer.id)
        assert stored.available_balance == Decimal("20.00")
        assert stored.total_withdrawn == Decimal("30.00")
        _assert_balanced(stored)
    assert get_commerce_store().snapshot().payouts == {"paid": 1}
    assert notifier.sent_events[-1].template_type == "withdrawal_paid"
    assert notifier.sent_events[-1].metadata["account_last4"] == "6789"


@pytest.mark.asyncio
async def test_process_requires_approved_status(session_factory, make_influencer, stub_provider, notifier):
    async with session_factory() as session:
        influencer = await make_influencer(session, available_balance=Decimal("50.00"))
        pipeline = WithdrawalPipeline(session, provider=stub_provider, notifier=notifier)
        withdrawal = await pipeline.request(influencer.id, Decimal("30.00"))

        with pytest.raises(ConflictError):
            await pipeline.process(withdrawal.id)

    assert stub_provider.payouts == []


@pytest.mark.asyncio
async def test_process_checks_balance_again(session_factory, make_influencer, stub_provider, notifier):
    async with session_factory() as session:
        influencer = await make_influencer(session, available_balance=Decimal("50.00"))
        pipeline = WithdrawalPipeline(session, provider=stub_provider, notifier=notifier)
        first = await _approved_request(session, pipeline, influencer)
        second = await _approved_request(session, pipeline, influencer)

        await pipeline.process(first.id)
        with pytest.raises(InsufficientBalanceError):
            await pipeline.process(second.id)

        still_approved = await pipeline.get(second.id)
        assert still_approved.status == WithdrawalStatusEnum.APPROVED

    async with session_factory() as session:
        stored = await session.get(Influencer, influencer.id)
        assert stored.available_balance == Decimal("20.00")
        _assert_balanced(stored)
    assert len(stub_provider.payouts) == 1


@pytest.mark.asyncio
async def test_process_requires_payout_destination(session_factory, make_influencer, stub_provider, notifier):
    async with session_factory() as session:
        influencer = await make_influencer(session, available_balance=Decimal("50.00"), stripe_account_id=None)
        pipeline = WithdrawalPipeline(session, provider=stub_provider, notifier=notifier)
        withdrawal = await _approved_request(session, pipeline, influencer)

        with pytest.raises(ValidationError) as exc_info:
            await pipeline.process(withdrawal.id)

    assert exc_info.value.reason == "PAYOUT_DESTINATION_MISSING"


@pytest.mark.asyncio
async def test_failed_payout_restores_balance_and_status(session_factory, make_influencer, stub_provider, notifier):
    stub_provider.fail_payouts = True
    async with session_factory() as session:
        influencer = await make_influencer(session, available_balance=Decimal("50.00"))
        pipeline = WithdrawalPipeline(session, provider=stub_provider, notifier=notifier)
        withdrawal = await _approved_request(session, pipeline, influencer)

        with pytest.raises(ExternalServiceError):
            await pipeline.process(withdrawal.id)

        failed = await pipeline.get(withdrawal.id)
        assert failed.status == WithdrawalStatusEnum.APPROVED
        assert failed.payout_attempts == 1
        assert "insufficient platform funds" in failed.last_payout_error

    async with session_factory() as session:
        stored = await session.get(Influencer, influencer.id)
        assert stored.available_balance == Decimal("50.00")
        assert stored.total_withdrawn == Decimal("0.00")
        _assert_balanced(stored)
    assert get_commerce_store().snapshot().payouts == {"failed": 1}

    stub_provider.fail_payouts = False
    async with session_factory() as session:
        pipeline = WithdrawalPipeline(session, provider=stub_provider, notifier=notifier)
        retried = await pipeline.process(withdrawal.id)

    assert retried.status == WithdrawalStatusEnum.PAID
    assert retried.payout_attempts == 2
    assert stub_provider.idempotency_keys == [f"withdrawal-{withdrawal.id}"] * 2


@pytest.mark.asyncio
async def test_process_without_provider_changes_nothing(session_factory, make_influencer, notifier):
    async with session_factory() as session:
        influencer = await make_influencer(session, available_balance=Decimal("50.00"))
        pipeline = WithdrawalPipeline(session, provider=None, notifier=notifier)
        withdrawal = await _approved_request(session, pipeline, influencer)

        with pytest.raises(ExternalServiceError):
            await pipeline.process(withdrawal.id)

        assert (await pipeline.get(withdrawal.id)).status == WithdrawalStatusEnum.APPROVED


@pytest.mark.asyncio
async def test_concurrent_processing_pays_once(file_session_factory, make_influencer, stub_provider, notifier):
    async with file_session_factory() as session:
        influencer = await make_influencer(session, available_balance=Decimal("50.00"))
        pipeline = WithdrawalPipeline(session, provider=stub_provider, notifier=notifier)
        withdrawal = await _approved_request(session, pipeline, influencer)

    async def attempt():
        async with file_session_factory() as session:
            pipeline = WithdrawalPipeline(session, provider=stub_provider, notifier=notifier)
            try:
                await pipeline.process(withdrawal.id)
            except (ConflictError, InsufficientBalanceError):
                return "refused"
            return "paid"

    results = await asyncio.gather(attempt(), attempt(), attempt())

    assert results.count("paid") == 1
    assert results.count("refused") == 2
    assert len(stub_provider.payouts) == 1
    async with file_session_factory() as session:
        stored = await session.get(Influencer, influencer.id)
        assert stored.available_balance == Decimal("20.00")
        assert stored.total_withdrawn == Decimal("30.00")
        _assert_balanced(stored)


@pytest.mark.asyncio
async def test_concurrent_withdrawals_cannot_overdraw(file_session_factory, make_influencer, stub_provider, notifier):
    async with file_session_factory() as session:
        influencer = await make_influencer(session, available_balance=Decimal("50.00"))
        pipeline = WithdrawalPipeline(session, provider=stub_provider, notifier=notifier)
        first = await _approved_request(session, pipeline, influencer)
        second = await _approved_request(session, pipeline, influencer)

    async def attempt(withdrawal_id):
        async with file_session_factory() as session:
            pipeline = WithdrawalPipeline(session, provider=stub_provider, notifier=notifier)
            try:
                await pipeline.process(withdrawal_id)
            except InsufficientBalanceError:
                return "insufficient"
            return "paid"

    results = await asyncio.gather(attempt(first.id), attempt(second.id))

    assert sorted(results) == ["insufficient", "paid"]
    async with file_session_factory() as session:
        stored = await session.get(Influencer, influencer.id)
        assert stored.available_balance == Decimal("20.00")
        _assert_balanced(stored)
        statuses = sorted(
            status.value
            for status in (await session.execute(select(WithdrawalRequest.status))).scalars().all()
        )
    assert statuses == ["approved", "paid"]


@pytest.mark.asyncio
async def test_unknown_payout_outcome_holds_debit_until_settled(
    session_factory, make_influencer, stub_provider, notifier
):
    stub_provider.interrupt_payouts = OutcomeUnknownError("Stripe Transfer.create timed out")
    async with session_factory() as session:
        influencer = await make_influencer(session, available_balance=Decimal("50.00"))
        pipeline = WithdrawalPipeline(session, provider=stub_provider, notifier=notifier)
        withdrawal = await _approved_request(session, pipeline, influencer)

        with pytest.raises(OutcomeUnknownError) as exc_info:
            await pipeline.process(withdrawal.id)

        held = await pipeline.get(withdrawal.id)
        assert held.status == WithdrawalStatusEnum.PROCESSING
        assert held.payout_started_at is None
        assert "timed out" in held.last_payout_error
        with pytest.raises(InsufficientBalanceError):
            await pipeline.request(influencer.id, Decimal("30.00"))

    assert exc_info.value.retryable is True
    async with session_factory() as session:
        stored = await session.get(Influencer, influencer.id)
        assert stored.available_balance == Decimal("20.00")
        assert stored.total_withdrawn == Decimal("30.00")
        _assert_balanced(stored)

    stub_provider.interrupt_payouts = None
    async with session_factory() as session:
        pipeline = WithdrawalPipeline(session, provider=stub_provider, notifier=notifier)
        settled = await pipeline.process(withdrawal.id)

    assert settled.status == WithdrawalStatusEnum.PAID
    assert settled.payout_id == "tr_1"
    assert settled.payout_attempts == 2
    assert len(stub_provider.payouts) == 1
    assert stub_provider.idempotency_keys == [f"withdrawal-{withdrawal.id}"] * 2
    async with session_factory() as session:
        stored = await session.get(Influencer, influencer.id)
        assert sum(payout.amount for payout in stub_provider.payouts) <= stored.total_earnings
        assert stored.available_balance == Decimal("20.00")
        _assert_balanced(stored)


@pytest.mark.asyncio
async def test_interrupted_payout_resumes_after_lease(session_factory, make_influencer, stub_provider, notifier):
    stub_provider.interrupt_payouts = asyncio.CancelledError()
    async with session_factory() as session:
        influencer = await make_influencer(session, available_balance=Decimal("50.00"))
        pipeline = WithdrawalPipeline(session, provider=stub_provider, notifier=notifier)
        withdrawal = await _approved_request(session, pipeline, influencer)

        with pytest.raises(asyncio.CancelledError):
            await pipeline.process(withdrawal.id)

    stub_provider.interrupt_payouts = None
    async with session_factory() as session:
        pipeline = WithdrawalPipeline(session, provider=stub_provider, notifier=notifier)
        stuck = await pipeline.get(withdrawal.id)
        assert stuck.status == WithdrawalStatusEnum.PROCESSING
        assert stuck.payout_started_at is not None
        assert await pipeline.list_stalled() == []

        with pytest.raises(ConflictError):
            await pipeline.process(withdrawal.id)
        with pytest.raises(ConflictError):
            await pipeline.approve(withdrawal.id)

        later = utcnow() + timedelta(seconds=settings.withdrawal_payout_lease_seconds + 1)
        assert [item.id for item in await pipeline.list_stalled(now=later)] == [withdrawal.id]
        resumed = await pipeline.process(withdrawal.id, now=later)

    assert resumed.status == WithdrawalStatusEnum.PAID
    assert resumed.payout_id == "tr_1"
    assert len(stub_provider.payouts) == 1
    async with session_factory() as session:
        stored = await session.get(Influencer, influencer.id)
        assert stored.available_balance == Decimal("20.00")
        assert stored.total_withdrawn == Decimal("30.00")
        _assert_balanced(stored)
    assert notifier.sent_events[-1].template_type == "withdrawal_paid"


@pytest.mark.asyncio
async def test_rejection_after_unknown_outcome_restores_balance(
    session_factory, make_influencer, stub_provider, notifier
):
    async with session_factory() as session:
        influencer = await make_influencer(session, available_balance=Decimal("50.00"))
        pipeline = WithdrawalPipeline(session, provider=stub_provider, notifier=notifier)
        withdrawal = await _approved_request(session, pipeline, influencer)

        stub_provider.fail_payouts = True
        original_create = stub_provider.create_payout
        calls = []

        async def flaky_create(**kwargs):
            calls.append(kwargs["idempotency_key"])
            if len(calls) == 1:
                raise OutcomeUnknownError("Stripe Transfer.create outcome unknown")
            return await original_create(**kwargs)

        stub_provider.create_payout = flaky_create
        with pytest.raises(OutcomeUnknownError):
            await pipeline.process(withdrawal.id)
        with pytest.raises(ExternalServiceError) as rejected:
            await pipeline.process(withdrawal.id)

        restored = await pipeline.get(withdrawal.id)

    assert not isinstance(rejected.value, OutcomeUnknownError)
    assert restored.status == WithdrawalStatusEnum.APPROVED
    assert restored.payout_started_at is None
    assert stub_provider.payouts == []
    async with session_factory() as session:
        stored = await session.get(Influencer, influencer.id)
        assert stored.available_balance == Decimal("50.00")
        assert stored.total_withdrawn == Decimal("0.00")
        _assert_balanced(stored)
