"""Required Minimum Distribution rules and calculator."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, Mapping

from .errors import ValidationFailure, require
from .money import ZERO, non_negative, quantize_cents, to_decimal

# IRS Uniform Lifetime Table.
UNIFORM_LIFETIME_DIVISORS: dict[int, Decimal] = {
    age: Decimal(factor)
    for age, factor in {
        72: "27.4",
        73: "26.5",
        74: "25.5",
        75: "24.6",
        76: "23.7",
        77: "22.9",
        78: "22.0",
        79: "21.1",
        80: "20.2",
        81: "19.4",
        82: "18.5",
        83: "17.7",
        84: "16.8",
        85: "16.0",
        86: "15.2",
        87: "14.4",
        88: "13.7",
        89: "12.9",
        90: "12.2",
        91: "11.5",
        92: "10.8",
        93: "10.1",
        94: "9.5",
        95: "8.9",
        96: "8.4",
        97: "7.8",
        98: "7.3",
        99: "6.8",
        100: "6.4",
        101: "6.0",
        102: "5.6",
        103: "5.2",
        104: "4.9",
        105: "4.6",
        106: "4.3",
        107: "4.1",
        108: "3.9",
        109: "3.7",
        110: "3.5",
        111: "3.4",
        112: "3.3",
        113: "3.1",
        114: "3.0",
        115: "2.9",
        116: "2.8",
        117: "2.7",
        118: "2.5",
        119: "2.3",
        120: "2.0",
    }.items()
}

DEFAULT_START_AGE = 75


@dataclass(frozen=True, slots=True)
class StartAgeRule:
    """RMD start age for birth years in [birth_year_min, birth_year_max]; None bounds are open."""

    start_age: int
    birth_year_min: int | None = None
    birth_year_max: int | None = None

    def matches(self, birth_year: int) -> bool:
        if self.birth_year_min is not None and birth_year < self.birth_year_min:
            return False
        if self.birth_year_max is not None and birth_year > self.birth_year_max:
            return False
        return True

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "StartAgeRule":
        return cls(
            start_age=int(data["start_age"]),
            birth_year_min=data.get("birth_year_min"),
            birth_year_max=data.get("birth_year_max"),
        )


# SECURE Act 2.0 schedule.
DEFAULT_START_AGE_RULES: tuple[StartAgeRule, ...] = (
    StartAgeRule(start_age=72, birth_year_max=1950),
    StartAgeRule(start_age=73, birth_year_min=1951, birth_year_max=1959),
    StartAgeRule(start_age=75, birth_year_min=1960),
)


@dataclass(frozen=True, slots=True)
class RmdProjection:
    year: int
    age: int
    account_balance: Decimal
    rmd_amount: Decimal
    distribution_factor: Decimal
    deadline: date | None
    is_first_rmd: bool = False

    @property
    def is_required(self) -> bool:
        return self.rmd_amount > 0

    @property
    def withdrawal_percentage(self) -> Decimal:
        if self.account_balance == 0:
            return ZERO
        return (self.rmd_amount / self.account_balance).quantize(Decimal("0.000001"))


@dataclass(frozen=True, slots=True)
class RmdCalculator:
    """Pure RMD lookups over an injectable start-age schedule and divisor table."""

    start_age_rules: tuple[StartAgeRule, ...] = DEFAULT_START_AGE_RULES
    divisors: Mapping[int, Decimal] = field(default_factory=lambda: dict(UNIFORM_LIFETIME_DIVISORS))

    def __post_init__(self) -> None:
        if not self.divisors:
            raise ValidationFailure("divisors: table must not be empty", field="divisors")
        table = {int(age): to_decimal(factor, f"divisors[{age}]") for age, factor in self.divisors.items()}
        ordered = [table[age] for age in sorted(table)]
        if any(factor <= 0 for factor in ordered):
            raise ValidationFailure("divisors: factors must be > 0", field="divisors")
        if any(later > earlier for earlier, later in zip(ordered, ordered[1:])):
            raise ValidationFailure("divisors: factors must not increase with age", field="divisors")
        object.__setattr__(self, "divisors", table)
        object.__setattr__(self, "start_age_rules", tuple(self.start_age_rules))

    def start_age(self, birth_year: int) -> int:
        for rule in self.start_age_rules:
            if rule.matches(birth_year):
                return rule.start_age
        return DEFAULT_START_AGE

    def is_subject_to_rmd(self, age: int, birth_year: int) -> bool:
        require(age, "age")
        require(birth_year, "birth_year")
        return age >= self.start_age(birth_year)

    def divisor(self, age: int) -> Decimal | None:
        if age in self.divisors:
            return self.divisors[age]
        if age > max(self.divisors):
            return self.divisors[max(self.divisors)]
        return None

    def minimum_distribution(self, balance: Any, age: int | None) -> Decimal:
        """Return balance / divisor(age) rounded to cents; zero below the table."""
        amount = non_negative(require(balance, "balance"), "balance")
        require(age, "age")
        divisor = self.divisor(age)
        if divisor is None or amount == 0:
            return ZERO
        return min(amount, quantize_cents(amount / divisor))

    def project(self, prior_year_end_balance: Any, age: int, birth_year: int, year: int) -> RmdProjection:
        balance = non_negative(require(prior_year_end_balance, "prior_year_end_balance"), "prior_year_end_balance")
        start = self.start_age(birth_year)
        if age < start:
            return RmdProjection(
                year=year,
                age=age,
                account_balance=balance,
                rmd_amount=ZERO,
                distribution_factor=ZERO,
                deadline=None,
            )

        first = age == start
        return RmdProjection(
            year=year,
            age=age,
            account_balance=balance,
            rmd_amount=self.minimum_distribution(balance, age),
            distribution_factor=self.divisor(age) or ZERO,
            deadline=date(year + 1, 4, 1) if first else date(year, 12, 31),
            is_first_rmd=first,
        )


DEFAULT_CALCULATOR = RmdCalculator()


def compute_rmd_amount(prior_year_end_balance: Any, age: int) -> Decimal:
    return DEFAULT_CALCULATOR.minimum_distribution(prior_year_end_balance, age)
