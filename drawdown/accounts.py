"""Account types, point-in-time snapshots and realized withdrawals."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from types import MappingProxyType
from typing import Any, Mapping

from .errors import MissingRequiredField, ValidationFailure, require
from .money import ZERO, non_negative, to_decimal

PRE_TAX = "pre_tax"
ROTH = "roth"
HSA = "hsa"
TAXABLE = "taxable"

TAX_TREATMENTS = (TAXABLE, ROTH, HSA, PRE_TAX)

# account type -> (tax treatment, subject to RMDs)
ACCOUNT_TYPES: dict[str, tuple[str, bool]] = {
    "401k": (PRE_TAX, True),
    "403b": (PRE_TAX, True),
    "457b": (PRE_TAX, True),
    "traditional_ira": (PRE_TAX, True),
    "sep_ira": (PRE_TAX, True),
    "simple_ira": (PRE_TAX, True),
    "roth_401k": (ROTH, False),
    "roth_ira": (ROTH, False),
    "hsa": (HSA, False),
    "taxable_brokerage": (TAXABLE, False),
    "cash": (TAXABLE, False),
}


def tax_treatment_for(account_type: str) -> str:
    if account_type in ACCOUNT_TYPES:
        return ACCOUNT_TYPES[account_type][0]
    if account_type in TAX_TREATMENTS:
        return account_type
    expected = ", ".join(sorted(ACCOUNT_TYPES))
    raise ValidationFailure(f"account_type: '{account_type}' is not valid; expected one of [{expected}]", field="account_type")


def is_rmd_type(account_type: str) -> bool:
    entry = ACCOUNT_TYPES.get(account_type)
    if entry is None:
        return tax_treatment_for(account_type) == PRE_TAX
    return entry[1]


@dataclass(frozen=True, slots=True)
class AccountSnapshot:
    """Immutable view of one account at the moment a plan is computed."""

    account_id: str
    account_name: str
    account_type: str
    balance: Decimal
    subject_to_rmd: bool | None = None
    allocation: Mapping[str, Decimal] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.account_id:
            raise MissingRequiredField("account_id")
        require(self.account_type, "account_type")
        tax_treatment_for(self.account_type)
        object.__setattr__(self, "account_name", self.account_name or self.account_id)
        object.__setattr__(self, "balance", non_negative(require(self.balance, "balance"), "balance"))
        if self.subject_to_rmd is None:
            object.__setattr__(self, "subject_to_rmd", is_rmd_type(self.account_type))
        allocation = {key: to_decimal(value, f"allocation.{key}") for key, value in self.allocation.items()}
        object.__setattr__(self, "allocation", MappingProxyType(allocation))

    @property
    def tax_treatment(self) -> str:
        return tax_treatment_for(self.account_type)

    @property
    def has_balance(self) -> bool:
        return self.balance > 0

    def with_balance(self, balance: Any) -> "AccountSnapshot":
        return AccountSnapshot(
            account_id=self.account_id,
            account_name=self.account_name,
            account_type=self.account_type,
            balance=to_decimal(balance, "balance"),
            subject_to_rmd=self.subject_to_rmd,
            allocation=dict(self.allocation),
        )


@dataclass(frozen=True, slots=True)
class AccountWithdrawal:
    """One realized draw from one account."""

    account_id: str
    account_name: str
    account_type: str
    amount: Decimal
    prior_balance: Decimal
    requested_amount: Decimal | None = None

    def __post_init__(self) -> None:
        if not self.account_id:
            raise MissingRequiredField("account_id")
        require(self.account_type, "account_type")
        object.__setattr__(self, "amount", non_negative(self.amount, "amount"))
        object.__setattr__(self, "prior_balance", non_negative(self.prior_balance, "prior_balance"))
        requested = self.amount if self.requested_amount is None else non_negative(self.requested_amount, "requested_amount")
        object.__setattr__(self, "requested_amount", requested)

    @classmethod
    def from_snapshot(cls, account: AccountSnapshot, amount: Decimal, requested: Decimal | None = None) -> "AccountWithdrawal":
        return cls(
            account_id=account.account_id,
            account_name=account.account_name,
            account_type=account.account_type,
            amount=amount,
            prior_balance=account.balance,
            requested_amount=requested,
        )

    @property
    def new_balance(self) -> Decimal:
        return max(ZERO, self.prior_balance - self.amount)

    @property
    def is_partial(self) -> bool:
        return self.requested_amount > self.amount

    @property
    def is_depleted(self) -> bool:
        return self.new_balance == 0

    @property
    def tax_treatment(self) -> str:
        return tax_treatment_for(self.account_type)

    @property
    def is_taxable(self) -> bool:
        return self.tax_treatment == PRE_TAX
