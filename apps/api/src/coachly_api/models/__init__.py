"""SQLAlchemy models package."""

from .commission import Commission, CommissionStatusEnum  # noqa: F401
from .influencer import BankAccountTypeEnum, Influencer, InfluencerStatusEnum  # noqa: F401
from .processor_event import ProcessorEvent, ProcessorProviderEnum  # noqa: F401
from .promo_code import (  # noqa: F401
    CouponSyncStatusEnum,
    DiscountTypeEnum,
    PromoCode,
    PromoCodeRedemption,
    PromoCodeStatusEnum,
)
from .subscription import Subscription, SubscriptionStatusEnum  # noqa: F401
from .withdrawal import WithdrawalRequest, WithdrawalStatusEnum  # noqa: F401
