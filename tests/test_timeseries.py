from decimal import Decimal

import pytest

from drawdown.errors import InvalidDateRange, MissingRequiredField, ValidationFailure
from drawdown.months import YearMonth
from drawdown.timeseries import (
    AccountMonthlyFlow,
    MonthlySnapshot,
    TaxSummary,
    TimeSeries,
)


def _flow(start, contributions=0, withdrawals=0, returns=0, account_id="k401"):
    return AccountMonthlyFlow(
        account_id=account_id,
        account_name=account_id.upper(),
        starting_balance=Decimal(str(start)),
        contributions=Decimal(str(contributions)),
        withdrawals=Decimal(str(withdrawals)),
        returns=Decimal(str(returns)),
    )


def _snapshot(year, month, *, flows=None, income=None, expenses=0, events=(), taxes=None):
    return MonthlySnapshot(
        month=YearMonth(year, month),
        account_flows=flows or {"k401": _flow(1000)},
        income=income or {},
        total_expenses=Decimal(str(expenses)),
        taxes=taxes or TaxSummary(),
        events=events,
    )


def test_account_flow_ending_balance():
    flow = _flow(1000, contributions=100, withdrawals=50, returns=10)
    assert flow.ending_balance == Decimal("1060")
    assert flow.net_flow == Decimal("60")
    assert flow.net_contribution == Decimal("50")
    assert flow.has_activity


def test_account_flow_requires_name():
    with pytest.raises(MissingRequiredField):
        AccountMonthlyFlow(account_id="x", account_name="")


def test_snapshot_derived_totals():
    snapshot = _snapshot(
        2030,
        1,
        flows={"a": _flow(1000, returns=5, account_id="a"), "b": _flow(500, withdrawals=100, account_id="b")},
        income={"salary": Decimal("4000"), "social_security": Decimal("1000")},
        expenses=3000,
    )
    assert snapshot.total_portfolio_balance == Decimal("1405")
    assert snapshot.total_income == Decimal("5000")
    assert snapshot.net_cash_flow == Decimal("2000")
    assert snapshot.income_gap == Decimal("2000")


def test_snapshot_rejects_unknown_phase():
    with pytest.raises(ValidationFailure):
        MonthlySnapshot(month=YearMonth(2030, 1), phase="retired-ish")


def test_add_keeps_months_sorted_regardless_of_insert_order():
    series = TimeSeries()
    for month in (3, 1, 2):
        series.add(_snapshot(2025, month))
    assert [s.month for s in series] == [YearMonth(2025, 1), YearMonth(2025, 2), YearMonth(2025, 3)]
    assert series.first().month == YearMonth(2025, 1)
    assert series.last().month == YearMonth(2025, 3)
    assert len(series) == 3


def test_duplicate_month_rejected():
    series = TimeSeries([_snapshot(2025, 1)])
    with pytest.raises(ValidationFailure):
        series.add(_snapshot(2025, 1))
    assert len(series) == 1


def test_none_snapshot_rejected():
    with pytest.raises(MissingRequiredField):
        TimeSeries().add(None)


def test_get_range_is_inclusive():
    series = TimeSeries(_snapshot(2025, m) for m in range(1, 13))
    months = [s.month.month for s in series.get_range(YearMonth(2025, 3), YearMonth(2025, 5))]
    assert months == [3, 4, 5]


def test_get_range_rejects_inverted_bounds():
    series = TimeSeries([_snapshot(2025, 1)])
    with pytest.raises(InvalidDateRange):
        series.get_range(YearMonth(2025, 6), YearMonth(2025, 1))


def test_get_years_sorted_and_distinct():
    series = TimeSeries()
    for year, month in [(2026, 5), (2024, 2), (2025, 1), (2024, 1), (2026, 1)]:
        series.add(_snapshot(year, month))
    assert series.get_years() == [2024, 2025, 2026]


def test_get_snapshot_and_missing_year():
    series = TimeSeries([_snapshot(2025, 4)])
    assert series.get_snapshot(YearMonth(2025, 4)) is not None
    assert series.get_snapshot(YearMonth(2025, 5)) is None
    assert series.get_annual_summary(2030) is None
    assert series.get_all_annual_summaries()[0].year == 2025


def test_annual_summary_aggregates_months():
    jan = _snapshot(
        2030,
        1,
        flows={"k401": _flow(1000, contributions=100, returns=10)},
        income={"social_security": Decimal("2000")},
        expenses=3000,
        events=("a", "b"),
        taxes=TaxSummary(federal_tax=Decimal("100")),
    )
    feb = _snapshot(
        2030,
        2,
        flows={"k401": _flow(1110, withdrawals=200, returns=5)},
        income={"pension": Decimal("500")},
        expenses=3000,
        events=("b", "c"),
        taxes=TaxSummary(federal_tax=Decimal("50")),
    )
    summary = TimeSeries([feb, jan]).get_annual_summary(2030)

    assert summary.starting_balance == Decimal("1000.00")
    assert summary.ending_balance == Decimal("915.00")
    assert summary.total_contributions == Decimal("100.00")
    assert summary.total_withdrawals == Decimal("200.00")
    assert summary.total_income == Decimal("2500.00")
    assert summary.total_expenses == Decimal("6000.00")
    assert summary.total_taxes == Decimal("150.00")
    assert summary.annual_return == Decimal("15.00")
    assert summary.annual_return_percent == Decimal("0.0157")
    assert summary.events == ("a", "b", "c")
    assert summary.net_balance_change == Decimal("-85.00")
    assert summary.net_savings == Decimal("-3500.00")
    assert summary.effective_tax_rate == Decimal("0.0600")
    assert summary.is_distributing
    assert not summary.is_accumulating


def test_consecutive_years_chain_balances():
    series = TimeSeries(
        [
            _snapshot(2030, 12, flows={"k401": _flow(1000, returns=20)}),
            _snapshot(2031, 1, flows={"k401": _flow(1020, contributions=30, returns=2)}),
        ]
    )
    first, second = series.get_all_annual_summaries()
    assert first.ending_balance == second.starting_balance == Decimal("1020.00")


def test_tax_summary_share():
    taxes = TaxSummary(taxable_withdrawals=Decimal("300"), tax_free_withdrawals=Decimal("100"))
    assert taxes.total_withdrawals == Decimal("400")
    assert taxes.taxable_withdrawal_share == Decimal("0.7500")
