"""Promo code catalog, redemption, and Stripe coupon mirroring."""

from .coupon_mirror import CouponMirror, CouponSyncResult
from .discounts import DiscountQuote, compute_discount
from .redemption import PromoCodeSnapshot, PromoCodeValidation, RedemptionOutcome, RedemptionService
from .store import PromoCodeDeletion, PromoCodeStats, PromoCodeStore, generate_promo_code

__all__ = [
    "CouponMirror",
    "CouponSyncResult",
    "DiscountQuote",
    "PromoCodeDeletion",
    "PromoCodeSnapshot",
    "PromoCodeStats",
    "PromoCodeStore",
    "PromoCodeValidation",
    "RedemptionOutcome",
    "RedemptionService",
    "compute_discount",
    "generate_promo_code",
]
