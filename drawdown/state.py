"""Mutable per-run simulation state."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Iterable

from .accounts import AccountSnapshot
from .context import PortfolioView
from .errors import ValidationFailure
from .money import ZERO
from .months import YearMonth
from .timeseries import DISTRIBUTION, TimeSeries


@dataclass(slots=True)
class AccountState:
    template: AccountSnapshot
    balance: Decimal
    monthly_contribution: Decimal = ZERO

    @property
    def account_id(self) -> str:
        return self.template.account_id

    def snapshot(self) -> AccountSnapshot:
        return self.template.with_balance(self.balance)

    def withdraw(self, amount: Decimal) -> Decimal:
        taken = min(self.balance, amount)
        self.balance -= taken
        return taken


@dataclass(slots=True)
class SimulationState:
    """Balances and history for one run; owned by exactly one engine pass."""

    accounts: dict[str, AccountState]
    series: TimeSeries = field(default_factory=TimeSeries)
    initial_balance: Decimal = ZERO
    high_water_mark: Decimal = ZERO
    cumulative_withdrawals: Decimal = ZERO
    last_ratchet_month: YearMonth | None = None
    rmd_started: bool = False
    retired: bool = False

    @classmethod
    def start(cls, accounts: Iterable[AccountState]) -> "SimulationState":
        by_id: dict[str, AccountState] = {}
        for account in accounts:
            if account.account_id in by_id:
                raise ValidationFailure(f"accounts: duplicate account id '{account.account_id}'", field="accounts")
            by_id[account.account_id] = account
        total = sum((a.balance for a in by_id.values()), ZERO)
        return cls(accounts=by_id, initial_balance=total, high_water_mark=total)

    @property
    def total_balance(self) -> Decimal:
        return sum((a.balance for a in self.accounts.values()), ZERO)

    def observe_balance(self) -> None:
        self.high_water_mark = max(self.high_water_mark, self.total_balance)

    def prior_year_spending(self, month: YearMonth) -> Decimal:
        """Last calendar year's withdrawals, annualized over its distribution months."""
        snapshots = [s for s in self.series.get_snapshots_for_year(month.year - 1) if s.phase == DISTRIBUTION]
        if not snapshots:
            return ZERO
        spent = sum((s.total_withdrawals for s in snapshots), ZERO)
        if len(snapshots) == 12:
            return spent
        return spent * 12 / len(snapshots)

    def prior_year_return(self, month: YearMonth) -> Decimal:
        snapshots = self.series.get_snapshots_for_year(month.year - 1)
        if not snapshots:
            return ZERO
        returns = sum((s.total_returns for s in snapshots), ZERO)
        before = self.series.get_snapshot(YearMonth(month.year - 2, 12))
        base = before.total_portfolio_balance if before is not None else self.initial_balance
        if base == 0:
            return ZERO
        return returns / base

    def portfolio_view(self, month: YearMonth) -> PortfolioView:
        return PortfolioView(
            accounts=tuple(a.snapshot() for a in self.accounts.values()),
            initial_balance=self.initial_balance,
            high_water_mark=self.high_water_mark,
            prior_year_spending=self.prior_year_spending(month),
            prior_year_return=self.prior_year_return(month),
            cumulative_withdrawals=self.cumulative_withdrawals,
            last_ratchet_month=self.last_ratchet_month,
        )
