"""Discount math for promo codes."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Protocol

from coachly_api.core.money import ZERO, percentage_of, quantize_cents, to_decimal
from coachly_api.models.promo_code import DiscountTypeEnum


class DiscountTerms(Protocol):
    discount_type: DiscountTypeEnum
    value: Decimal
    max_discount: Decimal | None


@dataclass(slots=True, frozen=True)
class DiscountQuote:
    discount_amount: Decimal
    final_amount: Decimal


def compute_discount(promo_code: DiscountTerms, order_amount: Decimal) -> DiscountQuote:
    """Price ``order_amount`` against ``promo_code``.

    Eligibility (status, validity window, minimum order, usage) is the
    caller's concern; this only does the arithmetic. The discount never
    exceeds the order, so the final amount is never negative.
    """

    order = quantize_cents(order_amount)
    discount_type = DiscountTypeEnum(promo_code.discount_type)

    if discount_type is DiscountTypeEnum.PERCENTAGE:
        discount = percentage_of(order, to_decimal(promo_code.value))
        if promo_code.max_discount is not None:
            discount = min(discount, quantize_cents(promo_code.max_discount))
    else:
        discount = quantize_cents(promo_code.value)

    discount = max(min(discount, order), ZERO)
    return DiscountQuote(discount_amount=discount, final_amount=quantize_cents(order - discount))


__all__ = ["DiscountQuote", "DiscountTerms", "compute_discount"]
