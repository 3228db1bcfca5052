"""Observability endpoints for redemption, coupon mirror, payout, and webhook counters."""

from __future__ import annotations

from typing import Iterable, Mapping

from fastapi import APIRouter, Depends
from fastapi.responses import PlainTextResponse

from coachly_api.api.dependencies.security import require_checkout_api_key
from coachly_api.observability.commerce import CommerceObservabilitySnapshot, get_commerce_store


router = APIRouter(
    prefix="/commerce",
    tags=["observability"],
    dependencies=[Depends(require_checkout_api_key)],
)

LabelledSamples = Iterable[tuple[Mapping[str, str], int]]
MetricFamily = tuple[str, str, list[tuple[Mapping[str, str], int]]]


@router.get("/observability", summary="Commerce observability snapshot")
async def get_commerce_snapshot() -> dict[str, object]:
    return get_commerce_store().snapshot().as_dict()


def _flat(counts: Mapping[str, int], label: str) -> LabelledSamples:
    return (({label: key}, value) for key, value in sorted(counts.items()))


def _metric_families(snapshot: CommerceObservabilitySnapshot) -> list[MetricFamily]:
    webhook_samples = [
        ({"bucket": bucket, "event_type": event_type}, value)
        for bucket, counts in sorted(snapshot.webhooks.items())
        for event_type, value in sorted(counts.items())
    ]
    return [
        (
            "coachly_promo_redemptions_total",
            "Promo code redemption attempts by outcome",
            list(_flat(snapshot.redemptions, "outcome")),
        ),
        (
            "coachly_coupon_sync_total",
            "Stripe coupon mirror attempts by status",
            list(_flat(snapshot.coupon_sync, "status")),
        ),
        (
            "coachly_withdrawal_payouts_total",
            "Withdrawal payouts by status",
            list(_flat(snapshot.payouts, "status")),
        ),
        ("coachly_stripe_webhooks_total", "Stripe webhook deliveries by outcome", webhook_samples),
    ]


def render_prometheus(snapshot: CommerceObservabilitySnapshot) -> str:
    lines: list[str] = []
    for name, description, samples in _metric_families(snapshot):
        if not samples:
            continue
        lines.append(f"# HELP {name} {description}")
        lines.append(f"# TYPE {name} counter")
        for labels, value in samples:
            rendered = ",".join(f'{key}="{val}"' for key, val in sorted(labels.items()))
            lines.append(f"{name}{{{rendered}}} {value}")
    return "\n".join(lines) + "\n" if lines else ""


@router.get(
    "/observability/prometheus",
    summary="Prometheus-formatted commerce counters",
    response_class=PlainTextResponse,
)
async def get_commerce_prometheus_metrics() -> PlainTextResponse:
    return PlainTextResponse(render_prometheus(get_commerce_store().snapshot()))
