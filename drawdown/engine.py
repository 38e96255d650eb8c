"""Core month-by-month deterministic simulation engine."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from .accounts import AccountSnapshot
from .context import SpendingContext
from .money import ONE, ZERO, quantize_cents
from .months import YearMonth, iter_months
from .orchestrator import RmdAwareOrchestrator, SpendingOrchestrator
from .plan import SpendingPlan
from .rmd import RmdCalculator, StartAgeRule, UNIFORM_LIFETIME_DIVISORS, DEFAULT_START_AGE_RULES
from .schema import Expense, Income, Plan
from .sequencing import AccountSequencer, RmdFirstSequencer, TaxEfficientSequencer
from .state import AccountState, SimulationState
from .strategies import INFLATION_PARAM, SpendingStrategy, build_strategy
from .timeseries import (
    ACCUMULATION,
    DISTRIBUTION,
    AccountMonthlyFlow,
    MonthlySnapshot,
    TaxSummary,
    TimeSeries,
)

logger = logging.getLogger(__name__)

EVENT_RETIREMENT = "retirement_start"
EVENT_RMD_START = "rmd_start"
EVENT_SHORTFALL = "plan_shortfall"
EVENT_RATCHET = "spending_ratchet"
EVENT_DEPLETED = "account_depleted"

# Prevent invalid monthly geometric conversion for returns <= -100%.
MIN_ANNUAL_RETURN = Decimal("-0.95")


@dataclass(slots=True)
class EngineResult:
    series: TimeSeries
    shortfall_months: list[YearMonth]
    ending_balance: Decimal

    @property
    def succeeded(self) -> bool:
        return not self.shortfall_months

    @property
    def shortfall_years(self) -> list[int]:
        return sorted({month.year for month in self.shortfall_months})


def build_calculator(plan: Plan) -> RmdCalculator:
    if plan.rmd_rules is None:
        return RmdCalculator()
    rules = tuple(
        StartAgeRule(start_age=entry.start_age, birth_year_min=entry.birth_year_min, birth_year_max=entry.birth_year_max)
        for entry in plan.rmd_rules.start_ages
    ) or DEFAULT_START_AGE_RULES
    divisors = plan.rmd_rules.divisors or dict(UNIFORM_LIFETIME_DIVISORS)
    return RmdCalculator(start_age_rules=rules, divisors=divisors)


def build_sequencer(plan: Plan, calculator: RmdCalculator) -> AccountSequencer | None:
    """None means the orchestrator picks one each month."""
    if plan.sequencer == "tax_efficient":
        return TaxEfficientSequencer()
    if plan.sequencer == "rmd_first":
        return RmdFirstSequencer(calculator)
    return None


def _strategy_options(plan: Plan, strategy_params: dict[str, Any]) -> dict[str, Any]:
    """Income-gap gross-up falls back to the plan-wide marginal rate."""
    options = dict(strategy_params)
    if plan.spending_strategy.type == "income_gap" and "marginal_tax_rate" not in options:
        tax_rate = plan.tax_settings.marginal_tax_rate
        options["tax_rate_provider"] = lambda context: tax_rate
    return options


def _monthly_rate(annual_return: Decimal) -> Decimal:
    annual = max(MIN_ANNUAL_RETURN, annual_return)
    return (ONE + annual) ** (ONE / 12) - ONE


def _age_at(plan: Plan, month: YearMonth) -> int:
    person = plan.person
    age = month.year - person.birth_year
    if month.month < person.birth_month:
        age -= 1
    return max(0, age)


def _is_active(start: str | None, end: str | None, month: YearMonth) -> bool:
    if start is not None and month < YearMonth.parse(start):
        return False
    if end is not None and month > YearMonth.parse(end):
        return False
    return True


def _growth_years(start: str | None, plan_start: YearMonth, month: YearMonth) -> int:
    anchor = YearMonth.parse(start) if start is not None else plan_start
    return max(0, anchor.months_until(month)) // 12


def _income_for_month(items: list[Income], plan_start: YearMonth, month: YearMonth) -> dict[str, Decimal]:
    by_source: dict[str, Decimal] = {}
    for item in items:
        if not _is_active(item.start, item.end, month):
            continue
        years = _growth_years(item.start, plan_start, month)
        amount = quantize_cents(item.monthly_amount * (ONE + item.cola) ** years)
        by_source[item.source] = by_source.get(item.source, ZERO) + amount
    return by_source


def _expenses_for_month(items: list[Expense], plan_start: YearMonth, month: YearMonth, inflation: Decimal) -> Decimal:
    total = ZERO
    for item in items:
        if not _is_active(item.start, item.end, month):
            continue
        amount = item.monthly_amount
        if item.inflation_adjusted:
            amount = amount * (ONE + inflation) ** _growth_years(None, plan_start, month)
        total += quantize_cents(amount)
    return total


def _initial_accounts(plan: Plan) -> list[AccountState]:
    return [
        AccountState(
            template=AccountSnapshot(
                account_id=account.id,
                account_name=account.name,
                account_type=account.type,
                balance=account.balance,
                allocation=account.allocation,
            ),
            balance=account.balance,
            monthly_contribution=account.monthly_contribution,
        )
        for account in plan.accounts
    ]


def run_deterministic(
    plan: Plan,
    *,
    annual_return_overrides: dict[int, Decimal] | None = None,
    strategy: SpendingStrategy | None = None,
) -> EngineResult:
    """Simulate the plan month by month; annual_return_overrides replaces expected_return per year."""
    settings = plan.simulation_settings
    plan_start = YearMonth.parse(settings.start)
    plan_end = YearMonth.parse(settings.end)
    retirement = YearMonth.parse(plan.person.retirement_date)

    calculator = build_calculator(plan)
    orchestrator = RmdAwareOrchestrator(calculator) if settings.enforce_rmds else SpendingOrchestrator(calculator)
    sequencer = build_sequencer(plan, calculator)
    strategy_params = {INFLATION_PARAM: settings.inflation_rate, **plan.spending_strategy.params}
    if strategy is None:
        strategy = build_strategy(plan.spending_strategy.type, **_strategy_options(plan, strategy_params))

    state = SimulationState.start(_initial_accounts(plan))
    shortfall_months: list[YearMonth] = []
    logger.info("Simulating %s to %s with %s", plan_start, plan_end, strategy.name)

    for month in iter_months(plan_start, plan_end):
        age = _age_at(plan, month)
        events: list[str] = []
        income = _income_for_month(plan.income, plan_start, month)
        expenses = _expenses_for_month(plan.expenses, plan_start, month, settings.inflation_rate)
        starting = {account_id: account.balance for account_id, account in state.accounts.items()}
        contributions: dict[str, Decimal] = {}
        withdrawn: dict[str, Decimal] = {}
        plan_result: SpendingPlan | None = None

        phase = DISTRIBUTION if month >= retirement else ACCUMULATION
        if phase == DISTRIBUTION and not state.retired:
            state.retired = True
            state.initial_balance = state.total_balance
            state.high_water_mark = state.total_balance
            events.append(EVENT_RETIREMENT)

        if calculator.is_subject_to_rmd(age, plan.person.birth_year) and not state.rmd_started:
            state.rmd_started = True
            events.append(EVENT_RMD_START)

        if phase == ACCUMULATION:
            for account_id, account in state.accounts.items():
                if account.monthly_contribution > 0:
                    account.balance += account.monthly_contribution
                    contributions[account_id] = account.monthly_contribution
        else:
            context = SpendingContext(
                portfolio=state.portfolio_view(month),
                date=month,
                age=age,
                birth_year=plan.person.birth_year,
                retirement_start=retirement,
                total_expenses=expenses,
                other_income=sum(income.values(), ZERO),
                strategy_params=strategy_params,
                filing_status=plan.tax_settings.filing_status,
            )
            if sequencer is None:
                plan_result = orchestrator.execute_default(strategy, context)
            else:
                plan_result = orchestrator.execute(strategy, sequencer, context)
            for withdrawal in plan_result.withdrawals:
                taken = state.accounts[withdrawal.account_id].withdraw(withdrawal.amount)
                withdrawn[withdrawal.account_id] = withdrawn.get(withdrawal.account_id, ZERO) + taken
                if withdrawal.is_depleted:
                    events.append(f"{EVENT_DEPLETED}:{withdrawal.account_name}")
            state.cumulative_withdrawals += plan_result.adjusted
            if not plan_result.meets_target:
                shortfall_months.append(month)
                events.append(EVENT_SHORTFALL)
                logger.debug("%s: shortfall of %s", month, quantize_cents(plan_result.shortfall))
            if plan_result.metadata.get("ratcheted"):
                state.last_ratchet_month = month
                events.append(EVENT_RATCHET)

        annual_return = settings.expected_return
        if annual_return_overrides is not None and month.year in annual_return_overrides:
            annual_return = annual_return_overrides[month.year]
        rate = _monthly_rate(annual_return)

        flows: dict[str, AccountMonthlyFlow] = {}
        for account_id, account in state.accounts.items():
            growth = quantize_cents(account.balance * rate)
            account.balance += growth
            flows[account_id] = AccountMonthlyFlow(
                account_id=account_id,
                account_name=account.template.account_name,
                starting_balance=starting[account_id],
                contributions=contributions.get(account_id, ZERO),
                withdrawals=withdrawn.get(account_id, ZERO),
                returns=growth,
            )
        state.observe_balance()

        state.series.add(
            MonthlySnapshot(
                month=month,
                account_flows=flows,
                income=income,
                total_expenses=expenses,
                taxes=_estimate_taxes(plan, income, plan_result),
                phase=phase,
                events=tuple(events),
            )
        )

    logger.info("Finished with %d shortfall months", len(shortfall_months))
    return EngineResult(series=state.series, shortfall_months=shortfall_months, ending_balance=state.total_balance)


def _estimate_taxes(plan: Plan, income: dict[str, Decimal], plan_result: SpendingPlan | None) -> TaxSummary:
    """Flat marginal-rate estimate over income plus pre-tax withdrawals."""
    rate = plan.tax_settings.marginal_tax_rate
    taxable_withdrawals = plan_result.total_taxable_amount if plan_result is not None else ZERO
    tax_free_withdrawals = plan_result.total_tax_free_amount if plan_result is not None else ZERO
    taxable_income = sum(income.values(), ZERO) + taxable_withdrawals
    return TaxSummary(
        taxable_income=taxable_income,
        taxable_withdrawals=taxable_withdrawals,
        tax_free_withdrawals=tax_free_withdrawals,
        federal_tax=quantize_cents(taxable_income * rate),
        marginal_rate=rate,
    )
