"""Semantic and cross-reference validation for plans."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
import re
from typing import Iterable

from .accounts import ACCOUNT_TYPES
from .schema import Plan
from .simulation import SIM_MODES
from .strategies import GuardrailsConfig
from .timeseries import INCOME_SOURCES

DATE_RE = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")

FILING_STATUS = {
    "single",
    "married_filing_jointly",
    "married_filing_separately",
    "head_of_household",
    "qualifying_surviving_spouse",
}

STRATEGY_TYPES = {"static", "income_gap", "guardrails", "ratcheting"}
GUARDRAIL_PRESETS = {"guyton_klinger", "vanguard_dynamic", "kitces_ratcheting"}
SEQUENCERS = {"default", "tax_efficient", "rmd_first"}
RATE_PARAMS = ("withdrawal_rate", "inflation_rate", "ratchet_increase")


@dataclass(slots=True)
class ValidationResult:
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors


def _is_date(value: str | None) -> bool:
    return isinstance(value, str) and bool(DATE_RE.match(value))


def _check_enum(result: ValidationResult, path: str, value: str, allowed: Iterable[str]) -> None:
    allowed_set = set(allowed)
    if value not in allowed_set:
        expected = ", ".join(sorted(allowed_set))
        result.errors.append(f"{path}: '{value}' is not valid; expected one of [{expected}]")


def _check_date(result: ValidationResult, path: str, value: str | None, allow_null: bool = False) -> None:
    if value is None:
        if not allow_null:
            result.errors.append(f"{path}: date is required")
        return
    if not _is_date(value):
        result.errors.append(f"{path}: '{value}' is not valid; expected YYYY-MM")


def _check_date_range(result: ValidationResult, start_path: str, start: str | None, end_path: str, end: str | None) -> None:
    if not _is_date(start) or not _is_date(end):
        return
    if start > end:
        result.errors.append(f"{start_path}/{end_path}: start must be <= end")


def _check_non_negative(result: ValidationResult, path: str, value: Decimal) -> None:
    if value < 0:
        result.errors.append(f"{path}: must be >= 0")


def _check_rate(result: ValidationResult, path: str, value: Decimal, *, upper_exclusive: bool = False) -> None:
    if value < 0 or value > 1 or (upper_exclusive and value == 1):
        bound = "1)" if upper_exclusive else "1]"
        result.errors.append(f"{path}: {value} is out of range [0, {bound}")


def validate_plan(plan: Plan) -> ValidationResult:
    result = ValidationResult()
    settings = plan.simulation_settings

    _check_date(result, "person.retirement_date", plan.person.retirement_date)
    if not 1 <= plan.person.birth_month <= 12:
        result.errors.append(f"person.birth_month: {plan.person.birth_month} is not in 1..12")
    _check_date(result, "simulation_settings.start", settings.start)
    _check_date(result, "simulation_settings.end", settings.end)
    _check_date_range(result, "simulation_settings.start", settings.start, "simulation_settings.end", settings.end)
    _check_enum(result, "simulation_settings.mode", settings.mode, SIM_MODES)
    _check_rate(result, "simulation_settings.inflation_rate", settings.inflation_rate)
    if settings.monte_carlo.num_simulations <= 0:
        result.errors.append("simulation_settings.monte_carlo.num_simulations: must be > 0")
    _check_non_negative(result, "simulation_settings.monte_carlo.std_dev", settings.monte_carlo.std_dev)
    if settings.expected_return <= -1:
        result.errors.append("simulation_settings.expected_return: must be > -1")

    _check_enum(result, "tax_settings.filing_status", plan.tax_settings.filing_status, FILING_STATUS)
    _check_rate(result, "tax_settings.marginal_tax_rate", plan.tax_settings.marginal_tax_rate, upper_exclusive=True)
    _check_enum(result, "sequencer", plan.sequencer, SEQUENCERS)

    if not plan.accounts:
        result.errors.append("accounts: at least one account is required")
    account_ids: set[str] = set()
    for idx, account in enumerate(plan.accounts):
        base = f"accounts[{idx}]"
        if account.id in account_ids:
            result.errors.append(f"{base}.id: duplicate account id '{account.id}'")
        account_ids.add(account.id)
        _check_enum(result, f"{base}.type", account.type, ACCOUNT_TYPES)
        _check_non_negative(result, f"{base}.balance", account.balance)
        _check_non_negative(result, f"{base}.monthly_contribution", account.monthly_contribution)
        if account.allocation and sum(account.allocation.values()) != 100:
            result.warnings.append(f"{base}.allocation: percentages sum to {sum(account.allocation.values())}, not 100")

    for idx, item in enumerate(plan.expenses):
        base = f"expenses[{idx}]"
        _check_non_negative(result, f"{base}.monthly_amount", item.monthly_amount)
        _check_date(result, f"{base}.start", item.start, allow_null=True)
        _check_date(result, f"{base}.end", item.end, allow_null=True)
        _check_date_range(result, f"{base}.start", item.start, f"{base}.end", item.end)

    for idx, item in enumerate(plan.income):
        base = f"income[{idx}]"
        _check_enum(result, f"{base}.source", item.source, INCOME_SOURCES)
        _check_non_negative(result, f"{base}.monthly_amount", item.monthly_amount)
        _check_rate(result, f"{base}.cola", item.cola)
        _check_date(result, f"{base}.start", item.start, allow_null=True)
        _check_date(result, f"{base}.end", item.end, allow_null=True)
        _check_date_range(result, f"{base}.start", item.start, f"{base}.end", item.end)

    _validate_strategy(result, plan)

    if plan.rmd_rules is not None:
        ages = sorted(plan.rmd_rules.divisors)
        factors = [plan.rmd_rules.divisors[age] for age in ages]
        if any(factor <= 0 for factor in factors):
            result.errors.append("rmd_rules.divisors: factors must be > 0")
        if any(later > earlier for earlier, later in zip(factors, factors[1:])):
            result.errors.append("rmd_rules.divisors: factors must not increase with age")

    if _is_date(plan.person.retirement_date) and _is_date(settings.end) and plan.person.retirement_date > settings.end:
        result.warnings.append("person.retirement_date: falls after simulation_settings.end; no withdrawals will be simulated")
    if not plan.expenses:
        result.warnings.append("expenses: no expenses defined; income-gap style strategies will withdraw nothing")
    return result


def _validate_strategy(result: ValidationResult, plan: Plan) -> None:
    strategy = plan.spending_strategy
    _check_enum(result, "spending_strategy.type", strategy.type, STRATEGY_TYPES)
    for key in RATE_PARAMS:
        value = strategy.params.get(key)
        if isinstance(value, Decimal):
            _check_rate(result, f"spending_strategy.{key}", value)
    tax_rate = strategy.params.get("marginal_tax_rate")
    if isinstance(tax_rate, Decimal):
        _check_rate(result, "spending_strategy.marginal_tax_rate", tax_rate, upper_exclusive=True)
    if strategy.type == "guardrails":
        preset = strategy.params.get("preset", "guyton_klinger")
        _check_enum(result, "spending_strategy.preset", preset, GUARDRAIL_PRESETS)
    if strategy.type == "ratcheting":
        multiple = strategy.params.get("trigger_multiple")
        if isinstance(multiple, Decimal) and multiple < 1:
            result.errors.append("spending_strategy.trigger_multiple: must be >= 1")


def check_plan_sanity(plan: Plan) -> list[str]:
    """Soft warnings about plans that are valid but probably unintended."""
    warnings: list[str] = []
    total = sum((account.balance for account in plan.accounts), Decimal("0"))
    monthly_expenses = sum((item.monthly_amount for item in plan.expenses), Decimal("0"))
    if total == 0 and monthly_expenses > 0:
        warnings.append("accounts: all balances are zero; every distribution month will fall short")
    if plan.spending_strategy.type == "guardrails":
        preset = plan.spending_strategy.params.get("preset", "guyton_klinger")
        if preset in GUARDRAIL_PRESETS:
            rate = GuardrailsConfig.preset(preset).initial_withdrawal_rate
            if total > 0 and monthly_expenses * 12 > total * rate * 2:
                warnings.append(
                    f"spending_strategy: annual expenses exceed twice the {preset} initial withdrawal of {rate:%}; expect shortfalls"
                )
    return warnings
