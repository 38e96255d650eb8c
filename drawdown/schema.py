"""Plan schema dataclasses and JSON loading."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
import json
from pathlib import Path
from typing import Any

from .errors import ValidationFailure
from .money import ZERO, to_decimal


class SchemaError(ValidationFailure):
    """Raised when raw JSON cannot be parsed into schema objects."""


def _expect_dict(value: Any, path: str) -> dict[str, Any]:
    if not isinstance(value, dict):
        raise SchemaError(f"{path}: expected object")
    return value


def _expect_list(value: Any, path: str) -> list[Any]:
    if not isinstance(value, list):
        raise SchemaError(f"{path}: expected array")
    return value


def _require(data: dict[str, Any], key: str, path: str) -> Any:
    if key not in data:
        raise SchemaError(f"{path}.{key}: missing required field")
    return data[key]


def _optional(data: dict[str, Any], key: str, default: Any = None) -> Any:
    return data.get(key, default)


def _number(value: Any, path: str) -> Decimal:
    try:
        return to_decimal(value, path)
    except ValidationFailure as exc:
        raise SchemaError(str(exc)) from exc


def _optional_number(data: dict[str, Any], key: str, path: str, default: Decimal | None = None) -> Decimal | None:
    value = _optional(data, key)
    if value is None:
        return default
    return _number(value, f"{path}.{key}")


@dataclass(slots=True)
class Person:
    name: str
    birth_year: int
    retirement_date: str
    birth_month: int = 1

    @classmethod
    def from_dict(cls, data: dict[str, Any], path: str = "person") -> "Person":
        return cls(
            name=_require(data, "name", path),
            birth_year=int(_require(data, "birth_year", path)),
            retirement_date=_require(data, "retirement_date", path),
            birth_month=int(_optional(data, "birth_month", 1)),
        )


@dataclass(slots=True)
class Account:
    id: str
    name: str
    type: str
    balance: Decimal
    monthly_contribution: Decimal = ZERO
    allocation: dict[str, Decimal] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any], path: str) -> "Account":
        allocation_raw = _expect_dict(_optional(data, "allocation", {}), f"{path}.allocation")
        return cls(
            id=_require(data, "id", path),
            name=_optional(data, "name") or data.get("id", ""),
            type=_require(data, "type", path),
            balance=_number(_require(data, "balance", path), f"{path}.balance"),
            monthly_contribution=_optional_number(data, "monthly_contribution", path, ZERO),
            allocation={key: _number(value, f"{path}.allocation.{key}") for key, value in allocation_raw.items()},
        )


@dataclass(slots=True)
class Expense:
    name: str
    monthly_amount: Decimal
    start: str | None = None
    end: str | None = None
    inflation_adjusted: bool = True

    @classmethod
    def from_dict(cls, data: dict[str, Any], path: str) -> "Expense":
        return cls(
            name=_require(data, "name", path),
            monthly_amount=_number(_require(data, "monthly_amount", path), f"{path}.monthly_amount"),
            start=_optional(data, "start"),
            end=_optional(data, "end"),
            inflation_adjusted=bool(_optional(data, "inflation_adjusted", True)),
        )


@dataclass(slots=True)
class Income:
    name: str
    source: str
    monthly_amount: Decimal
    start: str | None = None
    end: str | None = None
    cola: Decimal = ZERO

    @classmethod
    def from_dict(cls, data: dict[str, Any], path: str) -> "Income":
        return cls(
            name=_require(data, "name", path),
            source=_require(data, "source", path),
            monthly_amount=_number(_require(data, "monthly_amount", path), f"{path}.monthly_amount"),
            start=_optional(data, "start"),
            end=_optional(data, "end"),
            cola=_optional_number(data, "cola", path, ZERO),
        )


@dataclass(slots=True)
class SpendingStrategySettings:
    type: str
    params: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any], path: str = "spending_strategy") -> "SpendingStrategySettings":
        kind = _require(data, "type", path)
        params: dict[str, Any] = {}
        for key, value in data.items():
            if key == "type":
                continue
            params[key] = _number(value, f"{path}.{key}") if isinstance(value, (int, float)) and not isinstance(value, bool) else value
        return cls(type=kind, params=params)


@dataclass(slots=True)
class StartAgeEntry:
    start_age: int
    birth_year_min: int | None = None
    birth_year_max: int | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any], path: str) -> "StartAgeEntry":
        return cls(
            start_age=int(_require(data, "start_age", path)),
            birth_year_min=_optional(data, "birth_year_min"),
            birth_year_max=_optional(data, "birth_year_max"),
        )


@dataclass(slots=True)
class RmdRulesSettings:
    start_ages: list[StartAgeEntry] = field(default_factory=list)
    divisors: dict[int, Decimal] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any], path: str = "rmd_rules") -> "RmdRulesSettings":
        divisors_raw = _expect_dict(_optional(data, "divisors", {}), f"{path}.divisors")
        divisors: dict[int, Decimal] = {}
        for key, value in divisors_raw.items():
            try:
                age = int(key)
            except ValueError as exc:
                raise SchemaError(f"{path}.divisors.{key}: expected an integer age") from exc
            divisors[age] = _number(value, f"{path}.divisors.{key}")
        return cls(
            start_ages=[
                StartAgeEntry.from_dict(_expect_dict(item, f"{path}.start_ages[{idx}]"), f"{path}.start_ages[{idx}]")
                for idx, item in enumerate(_expect_list(_optional(data, "start_ages", []), f"{path}.start_ages"))
            ],
            divisors=divisors,
        )


@dataclass(slots=True)
class TaxSettings:
    filing_status: str = "single"
    marginal_tax_rate: Decimal = ZERO

    @classmethod
    def from_dict(cls, data: dict[str, Any], path: str = "tax_settings") -> "TaxSettings":
        return cls(
            filing_status=_optional(data, "filing_status", "single"),
            marginal_tax_rate=_optional_number(data, "marginal_tax_rate", path, ZERO),
        )


@dataclass(slots=True)
class MonteCarloSettings:
    num_simulations: int = 500
    mean_return: Decimal = Decimal("0.06")
    std_dev: Decimal = Decimal("0.12")

    @classmethod
    def from_dict(cls, data: dict[str, Any], path: str = "simulation_settings.monte_carlo") -> "MonteCarloSettings":
        return cls(
            num_simulations=int(_optional(data, "num_simulations", 500)),
            mean_return=_optional_number(data, "mean_return", path, Decimal("0.06")),
            std_dev=_optional_number(data, "std_dev", path, Decimal("0.12")),
        )


@dataclass(slots=True)
class SimulationSettings:
    start: str
    end: str
    mode: str = "deterministic"
    expected_return: Decimal = Decimal("0.05")
    inflation_rate: Decimal = Decimal("0.025")
    enforce_rmds: bool = True
    monte_carlo: MonteCarloSettings = field(default_factory=MonteCarloSettings)

    @classmethod
    def from_dict(cls, data: dict[str, Any], path: str = "simulation_settings") -> "SimulationSettings":
        return cls(
            start=_require(data, "start", path),
            end=_require(data, "end", path),
            mode=_optional(data, "mode", "deterministic"),
            expected_return=_optional_number(data, "expected_return", path, Decimal("0.05")),
            inflation_rate=_optional_number(data, "inflation_rate", path, Decimal("0.025")),
            enforce_rmds=bool(_optional(data, "enforce_rmds", True)),
            monte_carlo=MonteCarloSettings.from_dict(
                _expect_dict(_optional(data, "monte_carlo", {}), f"{path}.monte_carlo"), f"{path}.monte_carlo"
            ),
        )


@dataclass(slots=True)
class Plan:
    person: Person
    accounts: list[Account]
    expenses: list[Expense]
    income: list[Income]
    spending_strategy: SpendingStrategySettings
    simulation_settings: SimulationSettings
    sequencer: str = "default"
    tax_settings: TaxSettings = field(default_factory=TaxSettings)
    rmd_rules: RmdRulesSettings | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Plan":
        rmd_raw = _optional(data, "rmd_rules")
        return cls(
            person=Person.from_dict(_expect_dict(_require(data, "person", "plan"), "person")),
            accounts=[
                Account.from_dict(_expect_dict(item, f"accounts[{idx}]"), f"accounts[{idx}]")
                for idx, item in enumerate(_expect_list(_require(data, "accounts", "plan"), "accounts"))
            ],
            expenses=[
                Expense.from_dict(_expect_dict(item, f"expenses[{idx}]"), f"expenses[{idx}]")
                for idx, item in enumerate(_expect_list(_optional(data, "expenses", []), "expenses"))
            ],
            income=[
                Income.from_dict(_expect_dict(item, f"income[{idx}]"), f"income[{idx}]")
                for idx, item in enumerate(_expect_list(_optional(data, "income", []), "income"))
            ],
            spending_strategy=SpendingStrategySettings.from_dict(
                _expect_dict(_require(data, "spending_strategy", "plan"), "spending_strategy")
            ),
            simulation_settings=SimulationSettings.from_dict(
                _expect_dict(_require(data, "simulation_settings", "plan"), "simulation_settings")
            ),
            sequencer=_optional(data, "sequencer", "default"),
            tax_settings=TaxSettings.from_dict(_expect_dict(_optional(data, "tax_settings", {}), "tax_settings")),
            rmd_rules=None if rmd_raw is None else RmdRulesSettings.from_dict(_expect_dict(rmd_raw, "rmd_rules")),
        )


def load_plan(path: str | Path) -> Plan:
    """Load plan JSON into strongly-typed dataclasses."""
    source = Path(path)
    raw = json.loads(source.read_text(encoding="utf-8"))
    if not isinstance(raw, dict):
        raise SchemaError("plan: root must be a JSON object")
    return Plan.from_dict(raw)
