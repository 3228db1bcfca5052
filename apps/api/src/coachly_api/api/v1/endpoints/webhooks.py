"""Webhook endpoints for payment processor callbacks."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from coachly_api.api.dependencies.providers import get_stripe_provider
from coachly_api.db.session import get_session
from coachly_api.services.billing.providers import StripeCommerceProvider
from coachly_api.services.webhooks import WebhookReconciler

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/stripe", status_code=status.HTTP_202_ACCEPTED)
async def stripe_webhook(
    request: Request,
    db: AsyncSession = Depends(get_session),
    provider: StripeCommerceProvider | None = Depends(get_stripe_provider),
) -> dict[str, str | None]:
    """Verify and reconcile a Stripe event; replays of a processed event are no-ops."""

    payload = await request.body()
    signature = request.headers.get("Stripe-Signature")
    outcome = await WebhookReconciler(db, provider).handle(payload, signature)
    return {
        "status": outcome.status,
        "eventId": outcome.event_id,
        "eventType": outcome.event_type,
        "outcome": outcome.detail,
    }
