"""Read-only simulation state handed to strategies and sequencers."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from types import MappingProxyType
from typing import Any, Iterable, Mapping

from .accounts import AccountSnapshot
from .errors import ValidationFailure, require
from .money import ZERO, non_negative, to_decimal
from .months import YearMonth


def _as_month(value: YearMonth | date | str, field_name: str) -> YearMonth:
    if isinstance(value, YearMonth):
        return value
    if isinstance(value, date):
        return YearMonth.from_date(value)
    if isinstance(value, str):
        return YearMonth.parse(value)
    raise ValidationFailure(f"{field_name}: expected a month, got {type(value).__name__}", field=field_name)


@dataclass(frozen=True, slots=True)
class PortfolioView:
    """Account snapshots plus history-derived aggregates."""

    accounts: tuple[AccountSnapshot, ...] = ()
    initial_balance: Decimal = ZERO
    high_water_mark: Decimal = ZERO
    prior_year_spending: Decimal = ZERO
    prior_year_return: Decimal = ZERO
    cumulative_withdrawals: Decimal = ZERO
    last_ratchet_month: YearMonth | None = None

    def __post_init__(self) -> None:
        accounts = tuple(require(self.accounts, "accounts"))
        for account in accounts:
            if not isinstance(account, AccountSnapshot):
                raise ValidationFailure("accounts: expected AccountSnapshot entries", field="accounts")
        object.__setattr__(self, "accounts", accounts)
        for name in ("initial_balance", "high_water_mark", "prior_year_spending", "cumulative_withdrawals"):
            object.__setattr__(self, name, non_negative(getattr(self, name), name))
        object.__setattr__(self, "prior_year_return", to_decimal(self.prior_year_return, "prior_year_return"))

    @classmethod
    def of(cls, accounts: Iterable[AccountSnapshot], **aggregates: Any) -> "PortfolioView":
        """Build a view whose initial balance and high-water mark default to the current total."""
        accounts = tuple(accounts)
        total = sum((a.balance for a in accounts), ZERO)
        aggregates.setdefault("initial_balance", total)
        aggregates.setdefault("high_water_mark", max(total, to_decimal(aggregates["initial_balance"])))
        return cls(accounts=accounts, **aggregates)

    @property
    def total_balance(self) -> Decimal:
        return sum((a.balance for a in self.accounts), ZERO)

    def account(self, account_id: str) -> AccountSnapshot | None:
        for snapshot in self.accounts:
            if snapshot.account_id == account_id:
                return snapshot
        return None


@dataclass(frozen=True, slots=True)
class SpendingContext:
    """Everything a strategy or sequencer may read for one period."""

    portfolio: PortfolioView
    date: YearMonth
    age: int = 0
    birth_year: int = 0
    retirement_start: YearMonth | None = None
    total_expenses: Decimal = ZERO
    other_income: Decimal = ZERO
    strategy_params: Mapping[str, Any] = field(default_factory=dict)
    filing_status: str | None = None
    current_taxable_income: Decimal = ZERO

    def __post_init__(self) -> None:
        require(self.portfolio, "portfolio")
        month = _as_month(require(self.date, "date"), "date")
        object.__setattr__(self, "date", month)
        start = month if self.retirement_start is None else _as_month(self.retirement_start, "retirement_start")
        object.__setattr__(self, "retirement_start", start)
        require(self.age, "age")
        require(self.birth_year, "birth_year")
        if self.age < 0:
            raise ValidationFailure(f"age: must be >= 0, got {self.age}", field="age")
        for name in ("total_expenses", "other_income", "current_taxable_income"):
            object.__setattr__(self, name, non_negative(getattr(self, name), name))
        object.__setattr__(self, "strategy_params", MappingProxyType(dict(self.strategy_params or {})))

    @property
    def income_gap(self) -> Decimal:
        return max(ZERO, self.total_expenses - self.other_income)

    @property
    def current_portfolio_balance(self) -> Decimal:
        return self.portfolio.total_balance

    @property
    def initial_portfolio_balance(self) -> Decimal:
        return self.portfolio.initial_balance

    @property
    def months_in_retirement(self) -> int:
        return max(0, self.retirement_start.months_until(self.date))

    @property
    def years_in_retirement(self) -> int:
        return self.months_in_retirement // 12

    @property
    def current_withdrawal_rate(self) -> Decimal:
        """Prior-year spending as a share of the current balance."""
        balance = self.current_portfolio_balance
        if balance == 0:
            return ZERO
        return (self.portfolio.prior_year_spending / balance).quantize(Decimal("0.0001"), rounding=ROUND_HALF_UP)

    def strategy_param(self, key: str, default: Any = None) -> Any:
        if key not in self.strategy_params:
            return default
        value = self.strategy_params[key]
        if isinstance(default, Decimal):
            return to_decimal(value, key)
        return value
