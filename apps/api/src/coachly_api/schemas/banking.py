from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from coachly_api.services.banking import BankAccountDetails


class BankAccountPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    routing_number: str = Field(..., alias="routingNumber")
    account_number: str = Field(..., alias="accountNumber")
    bank_name: str = Field(..., alias="bankName")
    account_holder_name: str = Field(..., alias="accountHolderName")
    account_type: Literal["checking", "savings"] = Field("checking", alias="accountType")

    def to_details(self) -> BankAccountDetails:
        return BankAccountDetails(
            routing_number=self.routing_number,
            account_number=self.account_number,
            bank_name=self.bank_name,
            account_holder_name=self.account_holder_name,
            account_type=self.account_type,
        )


class BankAccountSummary(BaseModel):
    """Bank details as shown back to clients; only the last four digits leave the API."""

    model_config = ConfigDict(populate_by_name=True)

    bank_name: str | None = Field(None, alias="bankName")
    account_holder_name: str | None = Field(None, alias="accountHolderName")
    account_type: str | None = Field(None, alias="accountType")
    account_last4: str | None = Field(None, alias="accountLast4")
    routing_number: str | None = Field(None, alias="routingNumber")

    @classmethod
    def build(
        cls,
        *,
        bank_name: str | None,
        account_holder_name: str | None,
        account_type: object | None,
        account_number: str | None,
        routing_number: str | None,
    ) -> "BankAccountSummary | None":
        if not account_number and not bank_name:
            return None
        return cls(
            bank_name=bank_name,
            account_holder_name=account_holder_name,
            account_type=getattr(account_type, "value", account_type),
            account_last4=account_number[-4:] if account_number else None,
            routing_number=routing_number,
        )
