import pytest

from coachly_api.services.banking import (
    BankAccountDetails,
    validate_account_holder_name,
    validate_account_number,
    validate_account_type,
    validate_bank_account,
    validate_bank_name,
    validate_routing_number,
)


@pytest.mark.parametrize(
    "routing_number, expected",
    [
        ("021000021", True),
        ("011000015", True),
        ("021000022", False),
        ("02100002", False),
        ("0210000211", False),
        ("02100002A", False),
        ("", False),
        (None, False),
    ],
)
def test_routing_number_checksum(routing_number, expected):
    assert validate_routing_number(routing_number) is expected


@pytest.mark.parametrize(
    "account_number, expected",
    [("1234", True), ("12345678901234567", True), ("123", False), ("123456789012345678", False), ("12-34", False)],
)
def test_account_number_length_and_digits(account_number, expected):
    assert validate_account_number(account_number) is expected


def test_bank_name_matches_known_institutions_case_insensitively():
    assert validate_bank_name("JPMorgan CHASE Bank, N.A.")
    assert validate_bank_name("Wells Fargo")
    assert not validate_bank_name("Neighborhood Piggy Bank")
    assert not validate_bank_name("   ")


def test_account_holder_name_requires_two_alphabetic_tokens():
    assert validate_account_holder_name("Jordan Rivera")
    assert validate_account_holder_name("Mary Ann Smith")
    assert not validate_account_holder_name("Jordan")
    assert not validate_account_holder_name("J Rivera")
    assert not validate_account_holder_name("Jordan Rivera-Smith")
    assert not validate_account_holder_name("O'Brien Kelly")
    assert not validate_account_holder_name("Jordan  Rivera")
    assert validate_account_holder_name(" Jordan Rivera")
    assert validate_account_holder_name("Jordan Rivera ")


def test_account_type_accepts_checking_and_savings():
    assert validate_account_type("checking")
    assert validate_account_type("savings")
    assert not validate_account_type("Savings")
    assert not validate_account_type("CHECKING")
    assert not validate_account_type("brokerage")
    assert not validate_account_type(None)


def test_validate_bank_account_reports_every_failure():
    result = validate_bank_account(
        BankAccountDetails(
            routing_number="021000022",
            account_number="12",
            bank_name="Piggy Bank",
            account_holder_name="Jordan",
            account_type="brokerage",
        )
    )

    assert not result.is_valid
    assert result.errors == [
        "Invalid routing number",
        "Invalid account number",
        "Invalid bank name",
        "Invalid account holder name",
        "Invalid account type",
    ]


def test_validate_bank_account_accepts_valid_details():
    details = BankAccountDetails.from_mapping(
        {
            "routing_number": "021000021",
            "account_number": "000123456789",
            "bank_name": "Chase Bank",
            "account_holder_name": "Jordan Rivera",
        }
    )

    result = validate_bank_account(details)

    assert details.account_type == "checking"
    assert result.is_valid
    assert result.errors == []
