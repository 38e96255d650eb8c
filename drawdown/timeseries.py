"""Monthly ledger snapshots, the time series that holds them, and annual roll-ups."""

from __future__ import annotations

from bisect import bisect_left, bisect_right, insort
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from types import MappingProxyType
from typing import Iterable, Iterator, Mapping

from .errors import InvalidDateRange, MissingRequiredField, ValidationFailure, require
from .money import ZERO, non_negative, quantize_cents, to_decimal
from .months import YearMonth

ACCUMULATION = "accumulation"
TRANSITION = "transition"
DISTRIBUTION = "distribution"
SURVIVOR = "survivor"
PHASES = {ACCUMULATION, TRANSITION, DISTRIBUTION, SURVIVOR}

SALARY = "salary"
SOCIAL_SECURITY = "social_security"
PENSION = "pension"
OTHER = "other"
INCOME_SOURCES = {SALARY, SOCIAL_SECURITY, PENSION, OTHER}

PERCENT_PLACES = Decimal("0.0001")


def _sum(values: Iterable[Decimal]) -> Decimal:
    return sum(values, ZERO)


@dataclass(frozen=True, slots=True)
class AccountMonthlyFlow:
    account_id: str
    account_name: str
    starting_balance: Decimal = ZERO
    contributions: Decimal = ZERO
    withdrawals: Decimal = ZERO
    returns: Decimal = ZERO

    def __post_init__(self) -> None:
        require(self.account_id, "account_id")
        if not self.account_name:
            raise MissingRequiredField("account_name")
        object.__setattr__(self, "starting_balance", non_negative(self.starting_balance, "starting_balance"))
        object.__setattr__(self, "contributions", non_negative(self.contributions, "contributions"))
        object.__setattr__(self, "withdrawals", non_negative(self.withdrawals, "withdrawals"))
        object.__setattr__(self, "returns", to_decimal(self.returns, "returns"))

    @property
    def ending_balance(self) -> Decimal:
        return self.starting_balance + self.contributions - self.withdrawals + self.returns

    @property
    def net_contribution(self) -> Decimal:
        return self.contributions - self.withdrawals

    @property
    def net_flow(self) -> Decimal:
        return self.contributions - self.withdrawals + self.returns

    @property
    def has_activity(self) -> bool:
        return any(value != 0 for value in (self.contributions, self.withdrawals, self.returns))

    @property
    def return_percentage(self) -> Decimal:
        invested = self.starting_balance + self.contributions - self.withdrawals
        if invested == 0:
            return ZERO
        return (self.returns / invested).quantize(Decimal("0.000001"), rounding=ROUND_HALF_UP)


@dataclass(frozen=True, slots=True)
class TaxSummary:
    taxable_income: Decimal = ZERO
    taxable_withdrawals: Decimal = ZERO
    tax_free_withdrawals: Decimal = ZERO
    federal_tax: Decimal = ZERO
    marginal_rate: Decimal = ZERO

    def __post_init__(self) -> None:
        for name in ("taxable_income", "taxable_withdrawals", "tax_free_withdrawals", "federal_tax", "marginal_rate"):
            object.__setattr__(self, name, non_negative(getattr(self, name), name))

    @property
    def total_withdrawals(self) -> Decimal:
        return self.taxable_withdrawals + self.tax_free_withdrawals

    @property
    def total_tax(self) -> Decimal:
        return self.federal_tax

    @property
    def taxable_withdrawal_share(self) -> Decimal:
        total = self.total_withdrawals
        if total == 0:
            return ZERO
        return (self.taxable_withdrawals / total).quantize(PERCENT_PLACES, rounding=ROUND_HALF_UP)


@dataclass(frozen=True, slots=True)
class MonthlySnapshot:
    """One calendar month of the simulation ledger."""

    month: YearMonth
    account_flows: Mapping[str, AccountMonthlyFlow] = field(default_factory=dict)
    income: Mapping[str, Decimal] = field(default_factory=dict)
    total_expenses: Decimal = ZERO
    taxes: TaxSummary = field(default_factory=TaxSummary)
    phase: str = ACCUMULATION
    events: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        require(self.month, "month")
        if self.phase not in PHASES:
            expected = ", ".join(sorted(PHASES))
            raise ValidationFailure(f"phase: '{self.phase}' is not valid; expected one of [{expected}]", field="phase")
        income = {source: non_negative(amount, f"income.{source}") for source, amount in self.income.items()}
        object.__setattr__(self, "account_flows", MappingProxyType(dict(self.account_flows)))
        object.__setattr__(self, "income", MappingProxyType(income))
        object.__setattr__(self, "total_expenses", non_negative(self.total_expenses, "total_expenses"))
        object.__setattr__(self, "taxes", self.taxes if self.taxes is not None else TaxSummary())
        object.__setattr__(self, "events", tuple(self.events))

    @property
    def year(self) -> int:
        return self.month.year

    @property
    def total_portfolio_balance(self) -> Decimal:
        return _sum(flow.ending_balance for flow in self.account_flows.values())

    @property
    def total_contributions(self) -> Decimal:
        return _sum(flow.contributions for flow in self.account_flows.values())

    @property
    def total_withdrawals(self) -> Decimal:
        return _sum(flow.withdrawals for flow in self.account_flows.values())

    @property
    def total_returns(self) -> Decimal:
        return _sum(flow.returns for flow in self.account_flows.values())

    @property
    def total_income(self) -> Decimal:
        return _sum(self.income.values())

    @property
    def non_salary_income(self) -> Decimal:
        return self.total_income - self.income.get(SALARY, ZERO)

    @property
    def net_cash_flow(self) -> Decimal:
        return self.total_income - self.total_expenses

    @property
    def income_gap(self) -> Decimal:
        return max(ZERO, self.total_expenses - self.non_salary_income)

    def account_flow(self, account_id: str) -> AccountMonthlyFlow | None:
        return self.account_flows.get(account_id)


@dataclass(frozen=True, slots=True)
class AnnualSummary:
    year: int
    starting_balance: Decimal
    ending_balance: Decimal
    total_contributions: Decimal
    total_withdrawals: Decimal
    total_income: Decimal
    total_expenses: Decimal
    total_taxes: Decimal
    annual_return: Decimal
    annual_return_percent: Decimal
    events: tuple[str, ...] = ()

    @property
    def net_balance_change(self) -> Decimal:
        return self.ending_balance - self.starting_balance

    @property
    def net_contributions(self) -> Decimal:
        return self.total_contributions - self.total_withdrawals

    @property
    def net_savings(self) -> Decimal:
        return self.total_income - self.total_expenses

    @property
    def effective_tax_rate(self) -> Decimal:
        if self.total_income == 0:
            return ZERO
        return (self.total_taxes / self.total_income).quantize(PERCENT_PLACES, rounding=ROUND_HALF_UP)

    @property
    def had_growth(self) -> bool:
        return self.ending_balance > self.starting_balance

    @property
    def is_accumulating(self) -> bool:
        return self.total_contributions > self.total_withdrawals

    @property
    def is_distributing(self) -> bool:
        return self.total_withdrawals > self.total_contributions


def summarize_year(year: int, snapshots: list[MonthlySnapshot]) -> AnnualSummary:
    """Fold one year's snapshots, already in month order, into an AnnualSummary."""
    first = snapshots[0]
    last = snapshots[-1]
    starting = first.total_portfolio_balance - first.total_contributions + first.total_withdrawals - first.total_returns
    ending = last.total_portfolio_balance
    returns = _sum(s.total_returns for s in snapshots)
    average = quantize_cents((starting + ending) / 2)
    percent = ZERO if average == 0 else (returns / average).quantize(PERCENT_PLACES, rounding=ROUND_HALF_UP)

    events: list[str] = []
    for snapshot in snapshots:
        for label in snapshot.events:
            if label not in events:
                events.append(label)

    return AnnualSummary(
        year=year,
        starting_balance=quantize_cents(starting),
        ending_balance=quantize_cents(ending),
        total_contributions=quantize_cents(_sum(s.total_contributions for s in snapshots)),
        total_withdrawals=quantize_cents(_sum(s.total_withdrawals for s in snapshots)),
        total_income=quantize_cents(_sum(s.total_income for s in snapshots)),
        total_expenses=quantize_cents(_sum(s.total_expenses for s in snapshots)),
        total_taxes=quantize_cents(_sum(s.taxes.total_tax for s in snapshots)),
        annual_return=quantize_cents(returns),
        annual_return_percent=percent,
        events=tuple(events),
    )


class TimeSeries:
    """Append-only monthly snapshots kept in ascending month order."""

    def __init__(self, snapshots: Iterable[MonthlySnapshot] = ()) -> None:
        self._months: list[YearMonth] = []
        self._by_month: dict[YearMonth, MonthlySnapshot] = {}
        for snapshot in snapshots:
            self.add(snapshot)

    @classmethod
    def from_snapshots(cls, snapshots: Iterable[MonthlySnapshot]) -> "TimeSeries":
        return cls(snapshots)

    def add(self, snapshot: MonthlySnapshot) -> None:
        require(snapshot, "snapshot")
        if snapshot.month in self._by_month:
            raise ValidationFailure(f"month: duplicate snapshot for {snapshot.month}", field="month")
        self._by_month[snapshot.month] = snapshot
        if not self._months or self._months[-1] < snapshot.month:
            self._months.append(snapshot.month)
        else:
            insort(self._months, snapshot.month)

    def __len__(self) -> int:
        return len(self._months)

    def __iter__(self) -> Iterator[MonthlySnapshot]:
        return (self._by_month[month] for month in list(self._months))

    def __contains__(self, month: object) -> bool:
        return month in self._by_month

    @property
    def is_empty(self) -> bool:
        return not self._months

    @property
    def months(self) -> tuple[YearMonth, ...]:
        return tuple(self._months)

    def snapshots(self) -> tuple[MonthlySnapshot, ...]:
        return tuple(self)

    def first(self) -> MonthlySnapshot | None:
        return self._by_month[self._months[0]] if self._months else None

    def last(self) -> MonthlySnapshot | None:
        return self._by_month[self._months[-1]] if self._months else None

    def get_snapshot(self, month: YearMonth) -> MonthlySnapshot | None:
        return self._by_month.get(month)

    def get_range(self, start: YearMonth, end: YearMonth) -> tuple[MonthlySnapshot, ...]:
        require(start, "start")
        require(end, "end")
        if start > end:
            raise InvalidDateRange(start, end)
        lo = bisect_left(self._months, start)
        hi = bisect_right(self._months, end)
        return tuple(self._by_month[month] for month in self._months[lo:hi])

    def get_snapshots_for_year(self, year: int) -> tuple[MonthlySnapshot, ...]:
        return self.get_range(YearMonth(year, 1), YearMonth(year, 12))

    def get_annual_summary(self, year: int) -> AnnualSummary | None:
        snapshots = self.get_snapshots_for_year(year)
        if not snapshots:
            return None
        return summarize_year(year, list(snapshots))

    def get_all_annual_summaries(self) -> list[AnnualSummary]:
        return [summarize_year(year, list(self.get_snapshots_for_year(year))) for year in self.get_years()]

    def get_years(self) -> list[int]:
        years: list[int] = []
        for month in self._months:
            if not years or years[-1] != month.year:
                years.append(month.year)
        return years
