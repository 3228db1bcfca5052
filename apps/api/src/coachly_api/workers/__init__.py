"""Background workers."""

from .coupon_sync import CouponSyncWorker
from .payout_recovery import PayoutRecoveryWorker

__all__ = ["CouponSyncWorker", "PayoutRecoveryWorker"]
