"""Bank account validation for influencer payouts.

Every function here is pure and returns a result instead of raising, so
callers can collect all problems with a bank record in one pass.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Mapping

ROUTING_NUMBER_WEIGHTS: tuple[int, ...] = (3, 7, 1, 3, 7, 1, 3, 7, 1)

# Best-effort heuristic, not an exhaustive registry of US institutions.
KNOWN_BANK_NAME_FRAGMENTS: tuple[str, ...] = (
    "chase",
    "bank of america",
    "wells fargo",
    "citibank",
    "us bank",
    "pnc",
    "capital one",
    "td bank",
    "regions",
    "suntrust",
    "huntington",
    "keybank",
    "comerica",
    "m&t bank",
    "bb&t",
    "first national",
    "citizens bank",
    "bmo harris",
    "union bank",
    "bank of the west",
    "first republic",
    "east west bank",
)

ACCOUNT_TYPES: frozenset[str] = frozenset({"checking", "savings"})

INVALID_ROUTING_NUMBER = "Invalid routing number"
INVALID_ACCOUNT_NUMBER = "Invalid account number"
INVALID_BANK_NAME = "Invalid bank name"
INVALID_ACCOUNT_HOLDER_NAME = "Invalid account holder name"
INVALID_ACCOUNT_TYPE = "Invalid account type"

_ROUTING_PATTERN = re.compile(r"[0-9]{9}")
_ACCOUNT_PATTERN = re.compile(r"[0-9]{4,17}")
_HOLDER_PATTERN = re.compile(r"[A-Za-z ]+")


@dataclass(slots=True)
class BankAccountDetails:
    routing_number: str | None
    account_number: str | None
    bank_name: str | None
    account_holder_name: str | None
    account_type: str | None = "checking"

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> "BankAccountDetails":
        return cls(
            routing_number=payload.get("routing_number"),
            account_number=payload.get("account_number"),
            bank_name=payload.get("bank_name"),
            account_holder_name=payload.get("account_holder_name"),
            account_type=payload.get("account_type", "checking"),
        )


@dataclass(slots=True)
class BankValidationResult:
    is_valid: bool
    errors: list[str] = field(default_factory=list)


def validate_routing_number(value: str | None) -> bool:
    """ABA check: weighted digit sum must be a multiple of ten."""

    if not isinstance(value, str) or not _ROUTING_PATTERN.fullmatch(value):
        return False
    checksum = sum(int(digit) * weight for digit, weight in zip(value, ROUTING_NUMBER_WEIGHTS))
    return checksum % 10 == 0


def validate_account_number(value: str | None) -> bool:
    return isinstance(value, str) and _ACCOUNT_PATTERN.fullmatch(value) is not None


def validate_bank_name(value: str | None) -> bool:
    if not isinstance(value, str) or not value.strip():
        return False
    lowered = value.lower()
    return any(fragment in lowered for fragment in KNOWN_BANK_NAME_FRAGMENTS)


def validate_account_holder_name(value: str | None) -> bool:
    if not isinstance(value, str) or not _HOLDER_PATTERN.fullmatch(value):
        return False
    tokens = value.strip().split(" ")
    return len(tokens) >= 2 and all(len(token) >= 2 for token in tokens)


def validate_account_type(value: str | None) -> bool:
    return isinstance(value, str) and value in ACCOUNT_TYPES


def validate_bank_account(details: BankAccountDetails) -> BankValidationResult:
    """Run every check and report all failures in a stable order."""

    errors: list[str] = []
    if not validate_routing_number(details.routing_number):
        errors.append(INVALID_ROUTING_NUMBER)
    if not validate_account_number(details.account_number):
        errors.append(INVALID_ACCOUNT_NUMBER)
    if not validate_bank_name(details.bank_name):
        errors.append(INVALID_BANK_NAME)
    if not validate_account_holder_name(details.account_holder_name):
        errors.append(INVALID_ACCOUNT_HOLDER_NAME)
    if not validate_account_type(details.account_type):
        errors.append(INVALID_ACCOUNT_TYPE)
    return BankValidationResult(is_valid=not errors, errors=errors)


__all__ = [
    "BankAccountDetails",
    "BankValidationResult",
    "KNOWN_BANK_NAME_FRAGMENTS",
    "ROUTING_NUMBER_WEIGHTS",
    "validate_account_holder_name",
    "validate_account_number",
    "validate_account_type",
    "validate_bank_account",
    "validate_bank_name",
    "validate_routing_number",
]
