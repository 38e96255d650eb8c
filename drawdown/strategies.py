"""Spending strategies: how much to withdraw this period."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Callable, Protocol

from .context import SpendingContext
from .errors import ValidationFailure, require
from .money import ONE, TWELVE, ZERO, quantize_cents, quantize_rate, to_decimal
from .plan import WithdrawalTarget

INFLATION_PARAM = "inflation_rate"
DEFAULT_INFLATION = Decimal("0.025")

TaxRateProvider = Callable[[SpendingContext], Decimal]


class SpendingStrategy(Protocol):
    name: str
    description: str
    is_dynamic: bool
    requires_prior_year_state: bool

    def calculate_withdrawal(self, context: SpendingContext) -> WithdrawalTarget:
        ...


def _rate(value: Any, field: str, *, upper_inclusive: bool = True) -> Decimal:
    rate = to_decimal(value, field)
    too_high = rate > 1 if upper_inclusive else rate >= 1
    if rate < 0 or too_high:
        bound = "1]" if upper_inclusive else "1)"
        raise ValidationFailure(f"{field}: {rate} is out of range [0, {bound}", field=field)
    return rate


def _monthly(annual: Decimal) -> Decimal:
    return quantize_rate(annual / TWELVE)


def _inflation(context: SpendingContext, default: Decimal) -> Decimal:
    return context.strategy_param(INFLATION_PARAM, default)


class StaticSpendingStrategy:
    """Fixed share of the initial balance, inflated each retirement year."""

    is_dynamic = False
    requires_prior_year_state = False

    def __init__(
        self,
        withdrawal_rate: Any = Decimal("0.04"),
        inflation_rate: Any = DEFAULT_INFLATION,
        *,
        adjust_for_inflation: bool = True,
        periods_per_year: int = 12,
        cap_at_income_gap: bool = True,
    ) -> None:
        self.withdrawal_rate = _rate(withdrawal_rate, "withdrawal_rate")
        self.inflation_rate = _rate(inflation_rate, "inflation_rate")
        self.adjust_for_inflation = adjust_for_inflation
        if periods_per_year <= 0:
            raise ValidationFailure("periods_per_year: must be > 0", field="periods_per_year")
        self.periods_per_year = periods_per_year
        self.cap_at_income_gap = cap_at_income_gap

    @property
    def name(self) -> str:
        return f"Static {quantize_cents(self.withdrawal_rate * 100).normalize():f}%"

    @property
    def description(self) -> str:
        base = f"Withdraws {self.withdrawal_rate * 100:.1f}% of initial portfolio balance annually"
        if self.adjust_for_inflation:
            return f"{base}, adjusted for {self.inflation_rate * 100:.1f}% inflation"
        return base

    def calculate_withdrawal(self, context: SpendingContext) -> WithdrawalTarget:
        require(context, "context")
        first_year = context.initial_portfolio_balance * self.withdrawal_rate
        years = context.years_in_retirement
        annual = first_year
        if self.adjust_for_inflation and years > 0:
            annual = first_year * (ONE + self.inflation_rate) ** years
        per_period = quantize_rate(annual / self.periods_per_year)
        target = min(per_period, context.income_gap) if self.cap_at_income_gap else per_period
        return WithdrawalTarget(
            amount=target,
            strategy_name=self.name,
            metadata={
                "withdrawal_rate": self.withdrawal_rate,
                "years_in_retirement": years,
                "first_year_annual_amount": quantize_cents(first_year),
                "current_annual_amount": quantize_cents(annual),
                "income_gap": quantize_cents(context.income_gap),
            },
        )


class IncomeGapStrategy:
    """Withdraw exactly expenses minus other income, optionally grossed up for tax."""

    name = "Income Gap"
    is_dynamic = False
    requires_prior_year_state = False

    def __init__(self, marginal_tax_rate: Any = ZERO, *, tax_rate_provider: TaxRateProvider | None = None) -> None:
        self.marginal_tax_rate = _rate(marginal_tax_rate, "marginal_tax_rate", upper_inclusive=False)
        self.tax_rate_provider = tax_rate_provider

    @property
    def description(self) -> str:
        base = "Withdraws exactly the gap between expenses and other income"
        if self.tax_rate_provider is not None:
            return f"{base}, grossed up at the filer's marginal rate"
        if self.marginal_tax_rate > 0:
            return f"{base}, grossed up for {self.marginal_tax_rate * 100:.0f}% taxes"
        return base

    def tax_rate_for(self, context: SpendingContext) -> Decimal:
        if self.tax_rate_provider is None:
            return self.marginal_tax_rate
        return _rate(self.tax_rate_provider(context), "marginal_tax_rate", upper_inclusive=False)

    def calculate_withdrawal(self, context: SpendingContext) -> WithdrawalTarget:
        require(context, "context")
        gap = context.income_gap
        tax_rate = self.tax_rate_for(context)
        gross_up = tax_rate > 0 and gap > 0
        target = quantize_rate(gap / (ONE - tax_rate)) if gross_up else gap
        return WithdrawalTarget(
            amount=target,
            strategy_name=self.name,
            metadata={
                "income_gap": quantize_cents(gap),
                "total_expenses": quantize_cents(context.total_expenses),
                "other_income": quantize_cents(context.other_income),
                "gross_up_for_taxes": gross_up,
                "marginal_tax_rate": tax_rate,
            },
        )


@dataclass(frozen=True, slots=True)
class GuardrailsConfig:
    """Rate thresholds and adjustments; a None multiplier disables that guardrail."""

    initial_withdrawal_rate: Decimal = Decimal("0.04")
    upper_threshold_multiplier: Decimal | None = None
    increase_adjustment: Decimal = Decimal("0.10")
    lower_threshold_multiplier: Decimal | None = None
    decrease_adjustment: Decimal = Decimal("0.10")
    absolute_floor: Decimal | None = None
    absolute_ceiling: Decimal | None = None
    allow_spending_cuts: bool = True
    skip_inflation_on_down_years: bool = False
    minimum_years_between_ratchets: int = 1
    years_before_cap_preservation_ends: int = 0

    def __post_init__(self) -> None:
        object.__setattr__(self, "initial_withdrawal_rate", _rate(self.initial_withdrawal_rate, "initial_withdrawal_rate"))
        object.__setattr__(self, "increase_adjustment", _rate(self.increase_adjustment, "increase_adjustment"))
        object.__setattr__(self, "decrease_adjustment", _rate(self.decrease_adjustment, "decrease_adjustment"))
        for name in ("upper_threshold_multiplier", "lower_threshold_multiplier", "absolute_floor", "absolute_ceiling"):
            value = getattr(self, name)
            if value is not None:
                value = to_decimal(value, name)
                if value < 0:
                    raise ValidationFailure(f"{name}: must be >= 0, got {value}", field=name)
                object.__setattr__(self, name, value)
        if (
            self.absolute_floor is not None
            and self.absolute_ceiling is not None
            and self.absolute_floor > self.absolute_ceiling
        ):
            raise ValidationFailure("absolute_floor: must be <= absolute_ceiling", field="absolute_floor")
        if self.minimum_years_between_ratchets < 0 or self.years_before_cap_preservation_ends < 0:
            raise ValidationFailure("guardrail year counts must be >= 0")

    @classmethod
    def guyton_klinger(cls) -> "GuardrailsConfig":
        return cls(
            initial_withdrawal_rate=Decimal("0.052"),
            upper_threshold_multiplier=Decimal("0.80"),
            increase_adjustment=Decimal("0.10"),
            lower_threshold_multiplier=Decimal("1.20"),
            decrease_adjustment=Decimal("0.10"),
            skip_inflation_on_down_years=True,
            years_before_cap_preservation_ends=15,
        )

    @classmethod
    def vanguard_dynamic(cls) -> "GuardrailsConfig":
        return cls(
            initial_withdrawal_rate=Decimal("0.04"),
            increase_adjustment=Decimal("0.05"),
            decrease_adjustment=Decimal("0.025"),
        )

    @classmethod
    def kitces_ratcheting(cls) -> "GuardrailsConfig":
        return cls(
            initial_withdrawal_rate=Decimal("0.04"),
            upper_threshold_multiplier=Decimal("0.667"),
            increase_adjustment=Decimal("0.10"),
            decrease_adjustment=ZERO,
            allow_spending_cuts=False,
            minimum_years_between_ratchets=3,
        )

    @classmethod
    def preset(cls, name: str) -> "GuardrailsConfig":
        factories = {
            "guyton_klinger": cls.guyton_klinger,
            "vanguard_dynamic": cls.vanguard_dynamic,
            "kitces_ratcheting": cls.kitces_ratcheting,
        }
        if name not in factories:
            expected = ", ".join(sorted(factories))
            raise ValidationFailure(f"preset: '{name}' is not valid; expected one of [{expected}]", field="preset")
        return factories[name]()

    @property
    def has_upper_guardrail(self) -> bool:
        return self.upper_threshold_multiplier is not None

    @property
    def has_lower_guardrail(self) -> bool:
        return self.lower_threshold_multiplier is not None and self.allow_spending_cuts


def _ratchet_in_effect(context: SpendingContext) -> bool:
    """A ratchet taken earlier this calendar year holds until the year ends."""
    last = context.portfolio.last_ratchet_month
    return last is not None and last.year == context.date.year and last <= context.date


def _can_ratchet(context: SpendingContext, minimum_years: int) -> bool:
    if minimum_years <= 1:
        return True
    last = context.portfolio.last_ratchet_month
    if last is None:
        return True
    return last.months_until(context.date) >= minimum_years * 12


class GuardrailsSpendingStrategy:
    """Inflate last year's spending, then adjust when the withdrawal rate drifts out of band."""

    name = "Guardrails"
    description = "Dynamic spending with guardrails-based adjustments for portfolio performance"
    is_dynamic = True
    requires_prior_year_state = True

    def __init__(self, config: GuardrailsConfig | None = None) -> None:
        self.config = config if config is not None else GuardrailsConfig.guyton_klinger()

    def calculate_withdrawal(self, context: SpendingContext) -> WithdrawalTarget:
        require(context, "context")
        inflation = _inflation(context, DEFAULT_INFLATION)
        prior = context.portfolio.prior_year_spending
        if prior == 0:
            annual = context.initial_portfolio_balance * self.config.initial_withdrawal_rate
            return WithdrawalTarget(
                amount=min(_monthly(annual), context.income_gap),
                strategy_name=self.name,
                metadata={
                    "first_year": True,
                    "initial_rate": self.config.initial_withdrawal_rate,
                    "inflation_rate": inflation,
                },
            )

        metadata: dict[str, Any] = {"prior_year_spending": quantize_cents(prior)}
        base = self._apply_inflation(prior, context, inflation)
        metadata["base_after_inflation"] = quantize_cents(base)

        balance = context.current_portfolio_balance
        if balance == 0:
            adjusted = base
        else:
            current_rate = quantize_rate(base / balance)
            metadata["current_rate"] = current_rate.quantize(Decimal("0.0001"))
            adjusted = self._apply_guardrails(base, current_rate, context, metadata)
        adjusted = self._apply_limits(adjusted, metadata)
        return WithdrawalTarget(
            amount=min(_monthly(adjusted), context.income_gap),
            strategy_name=self.name,
            metadata=metadata,
        )

    def _apply_inflation(self, prior: Decimal, context: SpendingContext, inflation: Decimal) -> Decimal:
        if (
            self.config.skip_inflation_on_down_years
            and context.portfolio.prior_year_return < 0
            and context.current_withdrawal_rate > self.config.initial_withdrawal_rate
        ):
            return prior
        return prior * (ONE + inflation)

    def _apply_guardrails(self, base: Decimal, current_rate: Decimal, context: SpendingContext, metadata: dict[str, Any]) -> Decimal:
        config = self.config
        adjusted = base
        if config.has_upper_guardrail:
            upper = config.initial_withdrawal_rate * config.upper_threshold_multiplier
            if _ratchet_in_effect(context):
                adjusted = base * (ONE + config.increase_adjustment)
                metadata["adjustment"] = "increase"
                metadata["reason"] = "prosperity increase in effect"
            elif current_rate < upper and _can_ratchet(context, config.minimum_years_between_ratchets):
                adjusted = base * (ONE + config.increase_adjustment)
                metadata["adjustment"] = "increase"
                metadata["reason"] = "prosperity rule triggered"
                metadata["ratcheted"] = True

        if config.has_lower_guardrail:
            lower = config.initial_withdrawal_rate * config.lower_threshold_multiplier
            ends = config.years_before_cap_preservation_ends
            active = ends == 0 or context.years_in_retirement < ends
            if current_rate > lower and active:
                adjusted = base * (ONE - config.decrease_adjustment)
                metadata["adjustment"] = "decrease"
                metadata["reason"] = "capital preservation rule triggered"
                metadata.pop("ratcheted", None)
        return adjusted

    def _apply_limits(self, adjusted: Decimal, metadata: dict[str, Any]) -> Decimal:
        if self.config.absolute_floor is not None and adjusted < self.config.absolute_floor:
            metadata["constraint"] = "floor applied"
            return self.config.absolute_floor
        if self.config.absolute_ceiling is not None and adjusted > self.config.absolute_ceiling:
            metadata["constraint"] = "ceiling applied"
            return self.config.absolute_ceiling
        return adjusted


class RatchetingSpendingStrategy:
    """Never-decreasing spending that steps up when the portfolio sets a new high well above its start."""

    name = "Ratcheting"
    is_dynamic = True
    requires_prior_year_state = True

    def __init__(
        self,
        initial_withdrawal_rate: Any = Decimal("0.04"),
        *,
        ratchet_increase: Any = Decimal("0.10"),
        trigger_multiple: Any = Decimal("1.50"),
        minimum_years_between_ratchets: int = 3,
    ) -> None:
        self.initial_withdrawal_rate = _rate(initial_withdrawal_rate, "initial_withdrawal_rate")
        self.ratchet_increase = _rate(ratchet_increase, "ratchet_increase")
        self.trigger_multiple = to_decimal(trigger_multiple, "trigger_multiple")
        if self.trigger_multiple < 1:
            raise ValidationFailure("trigger_multiple: must be >= 1", field="trigger_multiple")
        if minimum_years_between_ratchets < 0:
            raise ValidationFailure("minimum_years_between_ratchets: must be >= 0", field="minimum_years_between_ratchets")
        self.minimum_years_between_ratchets = minimum_years_between_ratchets

    @property
    def description(self) -> str:
        return (
            f"Starts at {self.initial_withdrawal_rate * 100:.1f}% and raises spending "
            f"{self.ratchet_increase * 100:.0f}% when the portfolio reaches a new high "
            f"{self.trigger_multiple}x its starting value"
        )

    def should_ratchet(self, context: SpendingContext) -> bool:
        portfolio = context.portfolio
        balance = portfolio.total_balance
        if portfolio.initial_balance == 0 or balance < portfolio.high_water_mark:
            return False
        if balance < portfolio.initial_balance * self.trigger_multiple:
            return False
        return _can_ratchet(context, self.minimum_years_between_ratchets)

    def calculate_withdrawal(self, context: SpendingContext) -> WithdrawalTarget:
        require(context, "context")
        inflation = _inflation(context, DEFAULT_INFLATION)
        prior = context.portfolio.prior_year_spending
        metadata: dict[str, Any] = {"inflation_rate": inflation}
        if prior == 0:
            annual = context.initial_portfolio_balance * self.initial_withdrawal_rate
            metadata["first_year"] = True
        else:
            annual = prior * (ONE + inflation)
            metadata["prior_year_spending"] = quantize_cents(prior)
            if _ratchet_in_effect(context):
                annual = annual * (ONE + self.ratchet_increase)
                metadata["ratchet_in_effect"] = True
            elif self.should_ratchet(context):
                annual = annual * (ONE + self.ratchet_increase)
                metadata["ratcheted"] = True
        return WithdrawalTarget(
            amount=min(_monthly(annual), context.income_gap),
            strategy_name=self.name,
            metadata=metadata,
        )


def build_strategy(kind: str, **params: Any) -> SpendingStrategy:
    """Construct a strategy from a plan-file style type name and parameters."""
    if kind == "static":
        return StaticSpendingStrategy(
            params.get("withdrawal_rate", Decimal("0.04")),
            params.get("inflation_rate", DEFAULT_INFLATION),
            adjust_for_inflation=params.get("adjust_for_inflation", True),
        )
    if kind == "income_gap":
        return IncomeGapStrategy(params.get("marginal_tax_rate", ZERO), tax_rate_provider=params.get("tax_rate_provider"))
    if kind == "guardrails":
        preset = params.get("preset", "guyton_klinger")
        return GuardrailsSpendingStrategy(GuardrailsConfig.preset(preset))
    if kind == "ratcheting":
        return RatchetingSpendingStrategy(
            params.get("withdrawal_rate", Decimal("0.04")),
            ratchet_increase=params.get("ratchet_increase", Decimal("0.10")),
            trigger_multiple=params.get("trigger_multiple", Decimal("1.50")),
            minimum_years_between_ratchets=int(params.get("minimum_years_between_ratchets", 3)),
        )
    raise ValidationFailure(f"spending_strategy.type: '{kind}' is not valid; expected one of [guardrails, income_gap, ratcheting, static]", field="type")
