import pytest

from drawdown.accounts import HSA, PRE_TAX, ROTH, TAXABLE
from drawdown.errors import MissingRequiredField
from drawdown.rmd import RmdCalculator
from drawdown.sequencing import RmdFirstSequencer, TaxEfficientSequencer
from tests.helpers import make_context, snap

PRIORITY = {TAXABLE: 0, ROTH: 1, HSA: 2, PRE_TAX: 3}


def _ids(accounts):
    return [a.account_id for a in accounts]


def test_tax_efficient_orders_by_category():
    context = make_context(
        [
            snap("k401", "401k", 1000),
            snap("hsa", "hsa", 1000),
            snap("roth", "roth_ira", 1000),
            snap("brokerage", "taxable_brokerage", 1000),
        ]
    )
    assert _ids(TaxEfficientSequencer().sequence(context)) == ["brokerage", "roth", "hsa", "k401"]


def test_tax_efficient_keeps_relative_order_within_category():
    context = make_context(
        [
            snap("roth_small", "roth_ira", 10),
            snap("ira", "traditional_ira", 500),
            snap("roth_large", "roth_401k", 1000),
            snap("k401", "401k", 50),
        ]
    )
    assert _ids(TaxEfficientSequencer().sequence(context)) == ["roth_small", "roth_large", "ira", "k401"]


def test_zero_balance_accounts_are_excluded():
    context = make_context([snap("empty", "taxable_brokerage", 0), snap("roth", "roth_ira", 5)])
    assert _ids(TaxEfficientSequencer().sequence(context)) == ["roth"]
    assert _ids(RmdFirstSequencer(RmdCalculator()).sequence(context)) == ["roth"]


def test_empty_portfolio_yields_empty_sequence():
    context = make_context([])
    assert TaxEfficientSequencer().sequence(context) == []
    assert RmdFirstSequencer(RmdCalculator()).sequence(context) == []


@pytest.mark.parametrize("balances", [(1, 2, 3, 4), (4, 3, 2, 1), (0, 7, 0, 7), (9, 0, 9, 0)])
def test_tax_efficient_category_order_holds(balances):
    types = ["401k", "roth_ira", "hsa", "taxable_brokerage"]
    accounts = [snap(f"a{idx}", kind, bal) for idx, (kind, bal) in enumerate(zip(types, balances))]
    ordered = TaxEfficientSequencer().sequence(make_context(accounts))
    ranks = [PRIORITY[a.tax_treatment] for a in ordered]
    assert ranks == sorted(ranks)
    assert all(a.balance > 0 for a in ordered)


def test_rmd_first_puts_largest_rmd_account_first():
    context = make_context(
        [
            snap("ira", "traditional_ira", 50000),
            snap("k401", "401k", 500000),
            snap("roth", "roth_ira", 100000),
        ],
        age=75,
        birth_year=1950,
    )
    assert _ids(RmdFirstSequencer(RmdCalculator()).sequence(context)) == ["k401", "ira", "roth"]


def test_rmd_first_orders_remaining_accounts_tax_efficiently():
    context = make_context(
        [
            snap("hsa", "hsa", 9000),
            snap("ira", "traditional_ira", 1000),
            snap("roth", "roth_ira", 5000),
            snap("brokerage", "taxable_brokerage", 100),
            snap("k401", "401k", 3000),
        ],
        age=80,
        birth_year=1950,
    )
    ordered = RmdFirstSequencer(RmdCalculator()).sequence(context)
    assert _ids(ordered) == ["k401", "ira", "brokerage", "roth", "hsa"]
    rmd_flags = [a.subject_to_rmd for a in ordered]
    assert rmd_flags == sorted(rmd_flags, reverse=True)


def test_rmd_first_falls_back_to_tax_efficient_before_rmd_age():
    accounts = [
        snap("ira", "traditional_ira", 50000),
        snap("k401", "401k", 500000),
        snap("roth", "roth_ira", 100000),
    ]
    context = make_context(accounts, age=65, birth_year=1960)
    expected = _ids(TaxEfficientSequencer().sequence(context))
    assert _ids(RmdFirstSequencer(RmdCalculator()).sequence(context)) == expected == ["roth", "ira", "k401"]


def test_rmd_first_requires_calculator_and_context():
    with pytest.raises(MissingRequiredField):
        RmdFirstSequencer(None)
    with pytest.raises(MissingRequiredField):
        RmdFirstSequencer(RmdCalculator()).sequence(None)
    with pytest.raises(MissingRequiredField):
        TaxEfficientSequencer().sequence(None)


def test_sequencers_have_display_names():
    assert TaxEfficientSequencer().name == "Tax-Efficient"
    assert RmdFirstSequencer(RmdCalculator()).name == "RMD-First"
