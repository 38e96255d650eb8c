from decimal import Decimal

import pytest

from drawdown.errors import MissingRequiredField
from drawdown.orchestrator import RmdAwareOrchestrator, SpendingOrchestrator
from drawdown.rmd import RmdCalculator
from drawdown.sequencing import RmdFirstSequencer, TaxEfficientSequencer
from drawdown.strategies import IncomeGapStrategy
from tests.helpers import FixedTarget, make_context, snap


def _scenario_accounts():
    return [
        snap("k401", "401k", 200000),
        snap("roth", "roth_ira", 100000),
        snap("brokerage", "taxable_brokerage", 50000),
    ]


class ExplodingSequencer:
    name = "Exploding"
    description = "fails if consulted"

    def sequence(self, context):
        raise AssertionError("sequencer should not be consulted")


def test_target_met_from_multiple_accounts():
    context = make_context(_scenario_accounts())
    plan = SpendingOrchestrator().execute(FixedTarget(75000), TaxEfficientSequencer(), context)

    assert plan.meets_target
    assert plan.adjusted == Decimal("75000")
    assert plan.shortfall == Decimal("0")
    assert [w.account_id for w in plan.withdrawals] == ["brokerage", "roth"]
    assert [w.amount for w in plan.withdrawals] == [Decimal("50000"), Decimal("25000")]
    assert plan.metadata["sequencer"] == "Tax-Efficient"
    assert plan.metadata["accounts_used"] == 2

    brokerage, roth = plan.withdrawals
    assert brokerage.is_depleted
    assert brokerage.is_partial
    assert roth.new_balance == Decimal("75000")
    assert not roth.is_depleted
    assert not roth.is_partial


def test_insufficient_portfolio_reports_shortfall():
    context = make_context(_scenario_accounts())
    plan = SpendingOrchestrator().execute(FixedTarget(500000), TaxEfficientSequencer(), context)

    assert not plan.meets_target
    assert plan.target == Decimal("500000")
    assert plan.adjusted == Decimal("350000")
    assert plan.shortfall == Decimal("150000")
    assert plan.depleted_account_count == 3
    assert all(w.new_balance == Decimal("0") for w in plan.withdrawals)


def test_zero_target_skips_sequencer():
    context = make_context(_scenario_accounts())
    plan = SpendingOrchestrator().execute(FixedTarget(0), ExplodingSequencer(), context)
    assert plan.meets_target
    assert plan.withdrawals == ()
    assert plan.adjusted == Decimal("0")


def test_income_covering_expenses_needs_no_withdrawal():
    context = make_context(_scenario_accounts(), expenses=3000, other_income=4000)
    plan = SpendingOrchestrator().execute(IncomeGapStrategy(), ExplodingSequencer(), context)
    assert plan.meets_target
    assert plan.strategy_name == "Income Gap"


@pytest.mark.parametrize("missing", ["strategy", "sequencer", "context"])
def test_missing_collaborators_fail_fast(missing):
    args = {
        "strategy": FixedTarget(100),
        "sequencer": TaxEfficientSequencer(),
        "context": make_context(_scenario_accounts()),
    }
    args[missing] = None
    with pytest.raises(MissingRequiredField):
        SpendingOrchestrator().execute(args["strategy"], args["sequencer"], args["context"])


@pytest.mark.parametrize(
    "target",
    ["0.01", "49999.99", "50000", "150000", "349999.99", "350000", "350000.01", "1000000"],
)
def test_conservation_and_floor(target):
    context = make_context(_scenario_accounts())
    plan = SpendingOrchestrator().execute(FixedTarget(target), TaxEfficientSequencer(), context)
    total = context.portfolio.total_balance

    assert sum((w.amount for w in plan.withdrawals), Decimal("0")) == plan.adjusted
    assert plan.adjusted + plan.shortfall == plan.target
    assert plan.adjusted <= total
    for w in plan.withdrawals:
        assert w.new_balance >= 0
        if not w.is_depleted:
            assert w.new_balance == w.prior_balance - w.amount


def test_same_context_same_plan():
    context = make_context(_scenario_accounts(), age=75, birth_year=1950)
    orchestrator = SpendingOrchestrator()
    first = orchestrator.execute_default(FixedTarget(120000), context)
    second = orchestrator.execute_default(FixedTarget(120000), context)
    assert first.withdrawals == second.withdrawals
    assert dict(first.metadata) == dict(second.metadata)


def test_default_sequencer_depends_on_rmd_age():
    orchestrator = SpendingOrchestrator()
    assert isinstance(orchestrator.select_default_sequencer(make_context([], age=75, birth_year=1950)), RmdFirstSequencer)
    assert isinstance(orchestrator.select_default_sequencer(make_context([], age=60, birth_year=1965)), TaxEfficientSequencer)


def test_execute_default_draws_rmd_accounts_first_at_rmd_age():
    context = make_context(_scenario_accounts(), age=75, birth_year=1950)
    plan = SpendingOrchestrator().execute_default(FixedTarget(1000), context)
    assert [w.account_id for w in plan.withdrawals] == ["k401"]
    assert plan.metadata["sequencer"] == "RMD-First"


def test_plan_tax_split():
    context = make_context(_scenario_accounts())
    plan = SpendingOrchestrator().execute(FixedTarget(300000), TaxEfficientSequencer(), context)
    assert plan.total_tax_free_amount == Decimal("150000")
    assert plan.total_taxable_amount == Decimal("150000")


def test_rmd_aware_raises_target_to_monthly_rmd():
    accounts = [snap("k401", "401k", 265000), snap("brokerage", "taxable_brokerage", 50000)]
    context = make_context(accounts, age=73, birth_year=1951)
    plan = RmdAwareOrchestrator().execute(FixedTarget(500), TaxEfficientSequencer(), context)

    assert plan.target == Decimal("833.33")
    assert plan.meets_target
    assert [w.account_id for w in plan.withdrawals] == ["k401"]
    assert plan.metadata["rmd_forced"] is True
    assert plan.metadata["rmd_withdrawn"] == Decimal("833.33")
    assert plan.metadata["discretionary_withdrawn"] == Decimal("0")
    assert plan.metadata["strategy_target"] == Decimal("500")


def test_rmd_aware_fills_remaining_need_tax_efficiently():
    accounts = [snap("k401", "401k", 265000), snap("brokerage", "taxable_brokerage", 50000)]
    context = make_context(accounts, age=73, birth_year=1951)
    plan = RmdAwareOrchestrator().execute(FixedTarget(2000), TaxEfficientSequencer(), context)

    assert plan.adjusted == Decimal("2000")
    assert [(w.account_id, w.amount) for w in plan.withdrawals] == [
        ("k401", Decimal("833.33")),
        ("brokerage", Decimal("1166.67")),
    ]
    assert plan.metadata["rmd_forced"] is False
    assert plan.metadata["discretionary_withdrawn"] == Decimal("1166.67")


def test_rmd_aware_merges_repeat_draws_on_one_account():
    context = make_context([snap("k401", "401k", 265000)], age=73, birth_year=1951)
    plan = RmdAwareOrchestrator().execute(FixedTarget(2000), TaxEfficientSequencer(), context)
    assert len(plan.withdrawals) == 1
    only = plan.withdrawals[0]
    assert only.amount == Decimal("2000")
    assert only.prior_balance == Decimal("265000")
    assert only.new_balance == Decimal("263000")


def test_rmd_aware_before_rmd_age_matches_plain_orchestrator():
    context = make_context(_scenario_accounts(), age=70, birth_year=1951)
    plain = SpendingOrchestrator().execute(FixedTarget(75000), TaxEfficientSequencer(), context)
    aware = RmdAwareOrchestrator().execute(FixedTarget(75000), TaxEfficientSequencer(), context)
    assert aware.withdrawals == plain.withdrawals
    assert "rmd_required" not in aware.metadata


def test_custom_calculator_drives_default_sequencer():
    from drawdown.rmd import StartAgeRule

    calc = RmdCalculator(start_age_rules=(StartAgeRule(start_age=60),))
    orchestrator = SpendingOrchestrator(calc)
    context = make_context(_scenario_accounts(), age=61, birth_year=1969)
    assert isinstance(orchestrator.select_default_sequencer(context), RmdFirstSequencer)


def test_rmd_draws_are_not_partial_when_each_account_covers_its_share():
    accounts = [snap("k401", "401k", 265000), snap("ira", "traditional_ira", 26500)]
    context = make_context(accounts, age=73, birth_year=1951)
    plan = RmdAwareOrchestrator().execute(FixedTarget(500), TaxEfficientSequencer(), context)

    assert plan.target == Decimal("916.66")
    assert [(w.account_id, w.amount) for w in plan.withdrawals] == [
        ("k401", Decimal("833.33")),
        ("ira", Decimal("83.33")),
    ]
    assert not any(w.is_partial for w in plan.withdrawals)
    assert plan.withdrawals[0].requested_amount == Decimal("833.33")
