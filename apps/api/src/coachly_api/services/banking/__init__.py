"""Bank account validation helpers."""

from .validator import (
    BankAccountDetails,
    BankValidationResult,
    validate_account_holder_name,
    validate_account_number,
    validate_account_type,
    validate_bank_account,
    validate_bank_name,
    validate_routing_number,
)

__all__ = [
    "BankAccountDetails",
    "BankValidationResult",
    "validate_account_holder_name",
    "validate_account_number",
    "validate_account_type",
    "validate_bank_account",
    "validate_bank_name",
    "validate_routing_number",
]
