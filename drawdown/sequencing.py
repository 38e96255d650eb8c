"""Account ordering for withdrawals."""

from __future__ import annotations

from typing import Protocol

from .accounts import HSA, PRE_TAX, ROTH, TAXABLE, AccountSnapshot
from .context import SpendingContext
from .errors import require
from .rmd import RmdCalculator

TAX_EFFICIENT_PRIORITY: dict[str, int] = {
    TAXABLE: 0,
    ROTH: 1,
    HSA: 2,
    PRE_TAX: 3,
}


class AccountSequencer(Protocol):
    name: str
    description: str

    def sequence(self, context: SpendingContext) -> list[AccountSnapshot]:
        ...


def _funded(context: SpendingContext) -> list[AccountSnapshot]:
    require(context, "context")
    return [account for account in context.portfolio.accounts if account.balance > 0]


def tax_efficient_order(accounts: list[AccountSnapshot]) -> list[AccountSnapshot]:
    # sorted() is stable, so accounts in one category keep their relative order.
    return sorted(accounts, key=lambda account: TAX_EFFICIENT_PRIORITY[account.tax_treatment])


class TaxEfficientSequencer:
    name = "Tax-Efficient"
    description = "Taxable first, then Roth, then HSA, then pre-tax"

    def sequence(self, context: SpendingContext) -> list[AccountSnapshot]:
        return tax_efficient_order(_funded(context))


class RmdFirstSequencer:
    name = "RMD-First"
    description = "RMD-subject accounts by balance descending, then tax-efficient order"

    def __init__(self, calculator: RmdCalculator) -> None:
        self.calculator = require(calculator, "calculator")

    def sequence(self, context: SpendingContext) -> list[AccountSnapshot]:
        accounts = _funded(context)
        if not self.calculator.is_subject_to_rmd(context.age, context.birth_year):
            return tax_efficient_order(accounts)

        rmd_accounts = [a for a in accounts if a.subject_to_rmd]
        others = [a for a in accounts if not a.subject_to_rmd]
        rmd_accounts.sort(key=lambda account: account.balance, reverse=True)
        return rmd_accounts + tax_efficient_order(others)
