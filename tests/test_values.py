from decimal import Decimal

import pytest

from drawdown.accounts import AccountSnapshot, AccountWithdrawal
from drawdown.context import PortfolioView, SpendingContext
from drawdown.errors import MissingRequiredField, ValidationFailure
from drawdown.months import YearMonth, iter_months
from drawdown.plan import SpendingPlan, WithdrawalTarget
from tests.helpers import make_context, snap


def test_snapshot_rejects_negative_balance():
    with pytest.raises(ValidationFailure):
        snap("a", "roth_ira", -1)


def test_snapshot_requires_id_and_type():
    with pytest.raises(MissingRequiredField):
        AccountSnapshot(account_id=None, account_name="x", account_type="roth_ira", balance=Decimal("1"))
    with pytest.raises(MissingRequiredField):
        AccountSnapshot(account_id="x", account_name="x", account_type=None, balance=Decimal("1"))


def test_snapshot_unknown_type_rejected():
    with pytest.raises(ValidationFailure):
        snap("a", "pillow", 10)


def test_snapshot_rmd_flag_defaults_from_type():
    assert snap("a", "traditional_ira", 1).subject_to_rmd
    assert not snap("b", "roth_ira", 1).subject_to_rmd
    override = AccountSnapshot("c", "c", "401k", Decimal("1"), subject_to_rmd=False)
    assert not override.subject_to_rmd


def test_snapshot_is_immutable():
    account = snap("a", "hsa", 1)
    with pytest.raises(AttributeError):
        account.balance = Decimal("5")


def test_withdrawal_floor_and_flags():
    full = AccountWithdrawal("a", "A", "hsa", Decimal("40"), Decimal("100"), requested_amount=Decimal("40"))
    assert full.new_balance == Decimal("60")
    assert not full.is_partial
    assert not full.is_depleted

    partial = AccountWithdrawal("a", "A", "hsa", Decimal("100"), Decimal("100"), requested_amount=Decimal("250"))
    assert partial.new_balance == Decimal("0")
    assert partial.is_partial
    assert partial.is_depleted


def test_withdrawal_rejects_negative_amount():
    with pytest.raises(ValidationFailure):
        AccountWithdrawal("a", "A", "hsa", Decimal("-1"), Decimal("100"))


def test_context_defaults_to_zero():
    context = SpendingContext(portfolio=PortfolioView(), date=YearMonth(2030, 1))
    assert context.total_expenses == Decimal("0")
    assert context.other_income == Decimal("0")
    assert context.income_gap == Decimal("0")
    assert context.current_withdrawal_rate == Decimal("0")
    assert context.retirement_start == YearMonth(2030, 1)


def test_context_requires_portfolio_and_date():
    with pytest.raises(MissingRequiredField):
        SpendingContext(portfolio=None, date=YearMonth(2030, 1))
    with pytest.raises(MissingRequiredField):
        SpendingContext(portfolio=PortfolioView(), date=None)


def test_context_params_are_read_only():
    context = make_context(params={"inflation_rate": "0.02"})
    assert context.strategy_param("inflation_rate", Decimal("0.03")) == Decimal("0.02")
    assert context.strategy_param("missing", 7) == 7
    with pytest.raises(TypeError):
        context.strategy_params["x"] = 1


def test_context_years_in_retirement():
    context = make_context(date=YearMonth(2033, 11), retirement_start=YearMonth(2030, 1))
    assert context.months_in_retirement == 46
    assert context.years_in_retirement == 3


def test_portfolio_view_defaults_initial_to_current_total():
    view = PortfolioView.of([snap("a", "hsa", 10), snap("b", "roth_ira", 15)])
    assert view.total_balance == Decimal("25")
    assert view.initial_balance == Decimal("25")
    assert view.high_water_mark == Decimal("25")


def test_plan_rejects_withdrawals_that_do_not_sum_to_adjusted():
    withdrawal = AccountWithdrawal("a", "A", "hsa", Decimal("10"), Decimal("100"))
    with pytest.raises(ValidationFailure):
        SpendingPlan(target=Decimal("20"), adjusted=Decimal("20"), withdrawals=(withdrawal,))


def test_plan_rejects_adjusted_above_target():
    with pytest.raises(ValidationFailure):
        SpendingPlan(target=Decimal("10"), adjusted=Decimal("20"))


def test_no_withdrawal_plan():
    plan = SpendingPlan.no_withdrawal_needed("Static 4%")
    assert plan.meets_target
    assert plan.shortfall == Decimal("0")
    assert plan.withdrawals == ()
    assert not plan.has_depleted_accounts


def test_withdrawal_target_rejects_negative():
    with pytest.raises(ValidationFailure):
        WithdrawalTarget(amount=Decimal("-5"), strategy_name="x")


def test_year_month_parsing_and_arithmetic():
    month = YearMonth.parse("2030-11")
    assert month.plus_months(3) == YearMonth(2031, 2)
    assert month.months_until(YearMonth(2031, 2)) == 3
    assert str(YearMonth(2031, 2)) == "2031-02"
    with pytest.raises(ValidationFailure):
        YearMonth.parse("2030-13")
    assert len(list(iter_months(YearMonth(2030, 1), YearMonth(2030, 12)))) == 12


@pytest.mark.parametrize("missing", ["age", "birth_year"])
def test_context_requires_age_and_birth_year(missing):
    kwargs = {"portfolio": PortfolioView(), "date": YearMonth(2030, 1), "age": 65, "birth_year": 1965}
    kwargs[missing] = None
    with pytest.raises(MissingRequiredField, match=missing):
        SpendingContext(**kwargs)


def test_empty_account_id_rejected():
    with pytest.raises(MissingRequiredField, match="account_id"):
        AccountSnapshot(account_id="", account_name="x", account_type="roth_ira", balance=Decimal("1"))
    with pytest.raises(MissingRequiredField, match="account_id"):
        AccountWithdrawal("", "A", "hsa", Decimal("1"), Decimal("10"))
