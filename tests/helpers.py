import copy
from decimal import Decimal
import json
from pathlib import Path

from drawdown.accounts import AccountSnapshot
from drawdown.context import PortfolioView, SpendingContext
from drawdown.months import YearMonth
from drawdown.plan import WithdrawalTarget


def write_plan(tmp_path: Path, data: dict, filename: str = "plan.json") -> Path:
    path = tmp_path / filename
    path.write_text(json.dumps(data), encoding="utf-8")
    return path


def clone_plan(data: dict) -> dict:
    return copy.deepcopy(data)


def snap(account_id: str, account_type: str, balance, name: str | None = None) -> AccountSnapshot:
    return AccountSnapshot(
        account_id=account_id,
        account_name=name or account_id,
        account_type=account_type,
        balance=Decimal(str(balance)),
    )


def make_context(
    accounts=(),
    *,
    date=YearMonth(2030, 1),
    age: int = 65,
    birth_year: int = 1965,
    retirement_start=None,
    expenses=0,
    other_income=0,
    params=None,
    **aggregates,
) -> SpendingContext:
    aggregates = {key: Decimal(str(value)) if isinstance(value, (int, float)) else value for key, value in aggregates.items()}
    return SpendingContext(
        portfolio=PortfolioView.of(accounts, **aggregates),
        date=date,
        age=age,
        birth_year=birth_year,
        retirement_start=retirement_start,
        total_expenses=Decimal(str(expenses)),
        other_income=Decimal(str(other_income)),
        strategy_params=params or {},
    )


class FixedTarget:
    """Strategy stub that always asks for the same amount."""

    is_dynamic = False
    requires_prior_year_state = False
    description = "fixed"

    def __init__(self, amount, name: str = "Fixed") -> None:
        self.amount = Decimal(str(amount))
        self.name = name

    def calculate_withdrawal(self, context: SpendingContext) -> WithdrawalTarget:
        return WithdrawalTarget(amount=self.amount, strategy_name=self.name)


def minimal_plan(**overrides) -> dict:
    """One taxable account drawn down over a single calendar year."""
    data = {
        "person": {"name": "Sam", "birth_year": 1965, "retirement_date": "2030-01"},
        "accounts": [{"id": "cash", "name": "Savings", "type": "taxable_brokerage", "balance": 10000}],
        "expenses": [{"name": "Living", "monthly_amount": 1000}],
        "income": [],
        "spending_strategy": {"type": "income_gap"},
        "simulation_settings": {
            "start": "2030-01",
            "end": "2030-12",
            "expected_return": 0,
            "inflation_rate": 0,
            "enforce_rmds": False,
            "monte_carlo": {"num_simulations": 3, "mean_return": 0.05, "std_dev": 0.1},
        },
    }
    data.update(overrides)
    return data
