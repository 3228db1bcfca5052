"""Payment processor provider adapters."""

from .stripe import (
    StripeCommerceProvider,
    StripeCouponRecord,
    StripePayoutRecord,
    StripePromotionCodeRecord,
)

__all__ = [
    "StripeCommerceProvider",
    "StripeCouponRecord",
    "StripePayoutRecord",
    "StripePromotionCodeRecord",
]
