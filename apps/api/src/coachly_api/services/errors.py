"""Exception taxonomy shared by the promotions, commission, and payout services."""

from __future__ import annotations

from enum import Enum
from typing import Sequence


class ValidationReason(str, Enum):
    """Machine-readable reasons surfaced to API callers."""

    NOT_FOUND = "NOT_FOUND"
    INACTIVE = "INACTIVE"
    EXPIRED = "EXPIRED"
    NOT_YET_VALID = "NOT_YET_VALID"
    BELOW_MINIMUM = "BELOW_MINIMUM"
    USAGE_EXCEEDED = "USAGE_EXCEEDED"
    INVALID_AMOUNT = "INVALID_AMOUNT"
    INVALID_PROMO_CODE = "INVALID_PROMO_CODE"
    BELOW_WITHDRAWAL_MINIMUM = "BELOW_WITHDRAWAL_MINIMUM"
    INFLUENCER_NOT_APPROVED = "INFLUENCER_NOT_APPROVED"
    PAYOUT_DESTINATION_MISSING = "PAYOUT_DESTINATION_MISSING"


class CommerceError(RuntimeError):
    """Base exception for promo code, commission, and withdrawal failures."""

    reason: str = "ERROR"
    retryable: bool = False

    def __init__(self, message: str, *, reason: str | Enum | None = None) -> None:
        super().__init__(message)
        self.message = message
        if reason is not None:
            self.reason = reason.value if isinstance(reason, Enum) else reason

    def as_dict(self) -> dict[str, object]:
        return {"reason": self.reason, "message": self.message, "retryable": self.retryable}


class ValidationError(CommerceError):
    """User-facing business rule violation; never retried automatically."""

    reason = "VALIDATION_FAILED"


class NotFoundError(CommerceError):
    reason = "NOT_FOUND"


class ConflictError(CommerceError):
    """Duplicate resources or a state transition that is no longer allowed."""

    reason = "CONFLICT"


class InsufficientBalanceError(CommerceError):
    """Withdrawal exceeds the influencer's available balance."""

    reason = "INSUFFICIENT_BALANCE"
    retryable = True


class ExternalServiceError(CommerceError):
    """Payment processor unreachable or rejected the request."""

    reason = "EXTERNAL_SERVICE_ERROR"
    retryable = True


class OutcomeUnknownError(ExternalServiceError):
    """The processor call ended without a definitive answer; it may have been applied.

    Callers must not undo local effects. Retrying with the same idempotency
    key settles the outcome.
    """

    reason = "OUTCOME_UNKNOWN"


class BankValidationError(CommerceError):
    """Bank details failed validation; carries every failing reason."""

    reason = "BANK_VALIDATION_FAILED"

    def __init__(self, errors: Sequence[str]) -> None:
        self.errors = list(errors)
        super().__init__("Bank account validation failed: " + "; ".join(self.errors))

    def as_dict(self) -> dict[str, object]:
        payload = super().as_dict()
        payload["errors"] = self.errors
        return payload


class WebhookSignatureError(CommerceError):
    reason = "INVALID_SIGNATURE"


__all__ = [
    "BankValidationError",
    "CommerceError",
    "ConflictError",
    "ExternalServiceError",
    "InsufficientBalanceError",
    "NotFoundError",
    "OutcomeUnknownError",
    "ValidationError",
    "ValidationReason",
    "WebhookSignatureError",
]
