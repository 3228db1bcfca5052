"""Stripe webhook reconciliation onto local subscriptions and redemptions."""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Mapping

from loguru import logger
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from coachly_api.core.clock import as_utc, utcnow
from coachly_api.core.money import from_cents
from coachly_api.models.processor_event import ProcessorProviderEnum
from coachly_api.models.subscription import Subscription, SubscriptionStatusEnum
from coachly_api.observability.commerce import get_commerce_store
from coachly_api.services.billing.providers.stripe import StripeCommerceProvider
from coachly_api.services.errors import ValidationError, WebhookSignatureError
from coachly_api.services.promotions.redemption import RedemptionService

from .ledger import ProcessedEventLedger

_STRIPE_SUBSCRIPTION_STATUS: dict[str, SubscriptionStatusEnum] = {
    "active": SubscriptionStatusEnum.ACTIVE,
    "trialing": SubscriptionStatusEnum.ACTIVE,
    "past_due": SubscriptionStatusEnum.PAST_DUE,
    "unpaid": SubscriptionStatusEnum.PAST_DUE,
    "canceled": SubscriptionStatusEnum.CANCELLED,
    "incomplete": SubscriptionStatusEnum.PENDING,
    "incomplete_expired": SubscriptionStatusEnum.EXPIRED,
    "paused": SubscriptionStatusEnum.PAST_DUE,
}


@dataclass(slots=True)
class WebhookOutcome:
    status: str
    event_id: str
    event_type: str
    detail: str | None = None


@dataclass(slots=True)
class _EventContext:
    event_id: str
    event_type: str
    created_at: datetime | None
    data_object: Mapping[str, Any]


def _timestamp(value: Any) -> datetime | None:
    if value in (None, ""):
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


def _invoice_subscription_id(invoice: Mapping[str, Any]) -> str | None:
    subscription = invoice.get("subscription")
    if subscription:
        return subscription.get("id") if isinstance(subscription, Mapping) else str(subscription)
    parent = invoice.get("parent") or {}
    details = parent.get("subscription_details") or {}
    found = details.get("subscription")
    return str(found) if found else None


class WebhookReconciler:
    """Verifies, deduplicates, and applies Stripe events.

    Each event id is recorded in the processed-event ledger; an event whose
    handler completed is acknowledged as a duplicate on redelivery. A handler
    crash leaves the event unprocessed so Stripe's retry runs it again.
    """

    def __init__(
        self,
        session: AsyncSession,
        provider: StripeCommerceProvider | None,
        *,
        redemption_service: RedemptionService | None = None,
    ) -> None:
        self._session = session
        self._provider = provider
        self._redemptions = redemption_service or RedemptionService(session)
        self._ledger = ProcessedEventLedger(session)
        self._handlers: dict[str, Callable[[_EventContext], Awaitable[str]]] = {
            "checkout.session.completed": self._handle_checkout_completed,
            "customer.subscription.created": self._handle_subscription_changed,
            "customer.subscription.updated": self._handle_subscription_changed,
            "customer.subscription.deleted": self._handle_subscription_deleted,
            "invoice.payment_succeeded": self._handle_invoice_paid,
            "invoice.paid": self._handle_invoice_paid,
            "invoice.payment_failed": self._handle_invoice_failed,
        }

    async def handle(self, payload: bytes, signature: str | None) -> WebhookOutcome:
        if self._provider is None or not self._provider.webhook_secret:
            raise WebhookSignatureError("Stripe webhook secret not configured", reason="WEBHOOK_NOT_CONFIGURED")

        payload_text = payload.decode("utf-8")
        event = self._provider.construct_event(payload_text, signature)
        try:
            payload_dict = json.loads(payload_text)
        except json.JSONDecodeError as exc:
            raise WebhookSignatureError("Invalid payload body", reason="INVALID_PAYLOAD") from exc

        context = _EventContext(
            event_id=str(event["id"]),
            event_type=str(event["type"]),
            created_at=_timestamp(event.get("created")),
            data_object=event["data"]["object"],
        )

        record = await self._ledger.record(
            provider=ProcessorProviderEnum.STRIPE,
            external_id=context.event_id,
            event_type=context.event_type,
            payload_hash=hashlib.sha256(payload).hexdigest(),
            payload=payload_dict,
        )
        await self._session.commit()
        if record.already_processed:
            get_commerce_store().record_webhook(context.event_type, "duplicate")
            logger.info("Duplicate Stripe event ignored", event_id=context.event_id, event_type=context.event_type)
            return WebhookOutcome(status="duplicate", event_id=context.event_id, event_type=context.event_type)

        handler = self._handlers.get(context.event_type)
        try:
            outcome = await handler(context) if handler is not None else "ignored"
        except Exception as exc:
            await self._session.rollback()
            await self._ledger.mark_attempt(record.event, attempted_at=utcnow(), error=str(exc))
            await self._session.commit()
            get_commerce_store().record_webhook(context.event_type, "failed")
            logger.exception(
                "Stripe event handling failed",
                event_id=context.event_id,
                event_type=context.event_type,
                error=str(exc),
            )
            raise

        await self._ledger.mark_attempt(record.event, attempted_at=utcnow(), outcome=outcome)
        await self._session.commit()

        status = "ignored" if outcome == "ignored" else "processed"
        get_commerce_store().record_webhook(context.event_type, "processed")
        logger.info(
            "Stripe event reconciled",
            event_id=context.event_id,
            event_type=context.event_type,
            outcome=outcome,
        )
        return WebhookOutcome(status=status, event_id=context.event_id, event_type=context.event_type, detail=outcome)

    async def _handle_checkout_completed(self, context: _EventContext) -> str:
        checkout = context.data_object
        metadata = checkout.get("metadata") or {}
        promo_code = metadata.get("promo_code") or metadata.get("promoCode")
        outcome = "no_promo_code"
        promo_code_id = None

        if promo_code:
            amount_cents = checkout.get("amount_subtotal")
            if amount_cents is None:
                amount_cents = checkout.get("amount_total")
            try:
                result = await self._redemptions.redeem(
                    str(promo_code),
                    str(checkout["id"]),
                    from_cents(amount_cents),
                    currency=checkout.get("currency"),
                )
            except ValidationError as exc:
                # Permanent rejection: acknowledge so Stripe stops retrying.
                outcome = f"redemption_rejected:{exc.reason}"
                logger.warning(
                    "Checkout promo code rejected",
                    checkout_session_id=checkout.get("id"),
                    code=promo_code,
                    reason=exc.reason,
                )
            else:
                promo_code_id = result.redemption.promo_code_id
                outcome = "redeemed" if result.created else "redemption_replayed"

        subscription_id = checkout.get("subscription")
        if subscription_id:
            await self._upsert_subscription(
                str(subscription_id),
                context,
                status=SubscriptionStatusEnum.ACTIVE,
                processor_customer_id=checkout.get("customer"),
                amount=from_cents(checkout.get("amount_total")) if checkout.get("amount_total") is not None else None,
                currency=checkout.get("currency"),
                promo_code_id=promo_code_id,
            )
        return outcome

    async def _handle_subscription_changed(self, context: _EventContext) -> str:
        subscription = context.data_object
        status = _STRIPE_SUBSCRIPTION_STATUS.get(str(subscription.get("status")), SubscriptionStatusEnum.PENDING)
        period_end = subscription.get("current_period_end")
        if period_end is None:
            items = (subscription.get("items") or {}).get("data") or []
            period_end = items[0].get("current_period_end") if items else None
        return await self._upsert_subscription(
            str(subscription["id"]),
            context,
            status=status,
            processor_customer_id=subscription.get("customer"),
            current_period_end=_timestamp(period_end),
            cancelled_at=_timestamp(subscription.get("canceled_at")),
        )

    async def _handle_subscription_deleted(self, context: _EventContext) -> str:
        subscription = context.data_object
        return await self._upsert_subscription(
            str(subscription["id"]),
            context,
            status=SubscriptionStatusEnum.CANCELLED,
            processor_customer_id=subscription.get("customer"),
            cancelled_at=_timestamp(subscription.get("canceled_at")) or context.created_at or utcnow(),
        )

    async def _handle_invoice_paid(self, context: _EventContext) -> str:
        subscription_id = _invoice_subscription_id(context.data_object)
        if not subscription_id:
            return "ignored"
        return await self._upsert_subscription(
            subscription_id,
            context,
            status=SubscriptionStatusEnum.ACTIVE,
            processor_customer_id=context.data_object.get("customer"),
            last_payment_error=None,
        )

    async def _handle_invoice_failed(self, context: _EventContext) -> str:
        invoice = context.data_object
        subscription_id = _invoice_subscription_id(invoice)
        if not subscription_id:
            return "ignored"
        error = (invoice.get("last_finalization_error") or {}).get("message") or "payment_failed"
        return await self._upsert_subscription(
            subscription_id,
            context,
            status=SubscriptionStatusEnum.PAST_DUE,
            processor_customer_id=invoice.get("customer"),
            last_payment_error=error,
        )

    async def _upsert_subscription(
        self,
        processor_subscription_id: str,
        context: _EventContext,
        *,
        status: SubscriptionStatusEnum,
        **fields: Any,
    ) -> str:
        """Apply ``status`` unless a newer event already touched the subscription."""

        stmt = select(Subscription).where(Subscription.processor_subscription_id == processor_subscription_id)
        subscription = (await self._session.execute(stmt)).scalar_one_or_none()
        if subscription is None:
            subscription = Subscription(processor_subscription_id=processor_subscription_id, status=status)
            self._session.add(subscription)
            try:
                await self._session.flush()
            except IntegrityError:
                await self._session.rollback()
                subscription = (await self._session.execute(stmt)).scalar_one()

        last_applied = as_utc(subscription.last_event_created_at)
        if last_applied is not None and context.created_at is not None and context.created_at < last_applied:
            logger.info(
                "Skipping stale subscription event",
                processor_subscription_id=processor_subscription_id,
                event_id=context.event_id,
            )
            return "stale"

        subscription.status = status
        for name, value in fields.items():
            if value is None and name not in {"last_payment_error"}:
                continue
            setattr(subscription, name, value)
        subscription.last_event_id = context.event_id
        subscription.last_event_created_at = context.created_at
        await self._session.commit()
        return f"subscription_{status.value}"


__all__ = ["WebhookOutcome", "WebhookReconciler"]
