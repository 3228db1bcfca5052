"""In-memory observability helper for redemption, coupon mirror, payout, and webhook flows."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import Lock
from typing import Dict


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


@dataclass
class FailureLog:
    last_success_at: datetime | None = None
    last_failure_at: datetime | None = None
    last_failure_reason: str | None = None


@dataclass
class CommerceObservabilitySnapshot:
    redemptions: Dict[str, int]
    coupon_sync: Dict[str, int]
    payouts: Dict[str, int]
    webhooks: Dict[str, Dict[str, int]]
    coupon_sync_log: FailureLog
    payout_log: FailureLog

    def as_dict(self) -> Dict[str, object]:
        return {
            "redemptions": {"totals": self.redemptions},
            "coupon_sync": {
                "totals": self.coupon_sync,
                "events": {
                    "last_success_at": _iso(self.coupon_sync_log.last_success_at),
                    "last_failure_at": _iso(self.coupon_sync_log.last_failure_at),
                    "last_failure_reason": self.coupon_sync_log.last_failure_reason,
                },
            },
            "payouts": {
                "totals": self.payouts,
                "events": {
                    "last_success_at": _iso(self.payout_log.last_success_at),
                    "last_failure_at": _iso(self.payout_log.last_failure_at),
                    "last_failure_reason": self.payout_log.last_failure_reason,
                },
            },
            "webhooks": {"totals": self.webhooks},
        }


@dataclass
class CommerceObservabilityStore:
    _lock: Lock = field(default_factory=Lock)
    _redemptions: Counter = field(default_factory=Counter)
    _coupon_sync: Counter = field(default_factory=Counter)
    _payouts: Counter = field(default_factory=Counter)
    _webhooks: Dict[str, Counter] = field(
        default_factory=lambda: {"processed": Counter(), "duplicate": Counter(), "failed": Counter()}
    )
    _coupon_sync_log: FailureLog = field(default_factory=FailureLog)
    _payout_log: FailureLog = field(default_factory=FailureLog)

    def record_redemption(self, outcome: str) -> None:
        """``outcome`` is ``redeemed``, ``replayed`` or a validation reason code."""

        with self._lock:
            self._redemptions[outcome] += 1

    def record_coupon_sync(self, success: bool, error: str | None = None) -> None:
        with self._lock:
            if success:
                self._coupon_sync["synced"] += 1
                self._coupon_sync_log.last_success_at = _utcnow()
            else:
                self._coupon_sync["failed"] += 1
                self._coupon_sync_log.last_failure_at = _utcnow()
                self._coupon_sync_log.last_failure_reason = error

    def record_payout(self, success: bool, error: str | None = None) -> None:
        with self._lock:
            if success:
                self._payouts["paid"] += 1
                self._payout_log.last_success_at = _utcnow()
            else:
                self._payouts["failed"] += 1
                self._payout_log.last_failure_at = _utcnow()
                self._payout_log.last_failure_reason = error

    def record_webhook(self, event_type: str, outcome: str) -> None:
        with self._lock:
            bucket = outcome if outcome in self._webhooks else "processed"
            self._webhooks[bucket][event_type] += 1

    def snapshot(self) -> CommerceObservabilitySnapshot:
        with self._lock:
            return CommerceObservabilitySnapshot(
                redemptions=dict(self._redemptions),
                coupon_sync=dict(self._coupon_sync),
                payouts=dict(self._payouts),
                webhooks={bucket: dict(counter) for bucket, counter in self._webhooks.items()},
                coupon_sync_log=FailureLog(**vars(self._coupon_sync_log)),
                payout_log=FailureLog(**vars(self._payout_log)),
            )

    def reset(self) -> None:
        with self._lock:
            self._redemptions.clear()
            self._coupon_sync.clear()
            self._payouts.clear()
            for counter in self._webhooks.values():
                counter.clear()
            self._coupon_sync_log = FailureLog()
            self._payout_log = FailureLog()


_COMMERCE_STORE = CommerceObservabilityStore()


def get_commerce_store() -> CommerceObservabilityStore:
    return _COMMERCE_STORE
