"""Simulation orchestration: deterministic and Monte Carlo runs."""

from __future__ import annotations

import logging
import math
import random
from dataclasses import dataclass
from decimal import Decimal

from .engine import EngineResult, run_deterministic
from .money import ZERO, quantize_cents
from .months import YearMonth
from .schema import Plan
from .timeseries import AnnualSummary

logger = logging.getLogger(__name__)

SIM_MODES = {"deterministic", "monte_carlo"}


@dataclass(slots=True)
class BalancePercentiles:
    year: int
    p10: Decimal
    p25: Decimal
    p50: Decimal
    p75: Decimal
    p90: Decimal


@dataclass(slots=True)
class SimulationResult:
    mode: str
    seed: int | None
    annual: list[AnnualSummary]
    shortfall_years: list[int]
    scenario_count: int = 1
    success_rate: float | None = None
    balance_percentiles: list[BalancePercentiles] | None = None
    baseline: EngineResult | None = None


def _percentile(values: list[Decimal], pct: Decimal) -> Decimal:
    ordered = sorted(values)
    if not ordered:
        return ZERO
    if len(ordered) == 1:
        return ordered[0]
    position = (len(ordered) - 1) * pct
    low = int(math.floor(position))
    high = int(math.ceil(position))
    if low == high:
        return ordered[low]
    weight = position - low
    return quantize_cents((ordered[low] * (1 - weight)) + (ordered[high] * weight))


def _plan_years(plan: Plan) -> list[int]:
    start = YearMonth.parse(plan.simulation_settings.start).year
    end = YearMonth.parse(plan.simulation_settings.end).year
    return list(range(start, end + 1))


def _monte_carlo_paths(plan: Plan, rng: random.Random, runs: int) -> list[dict[int, Decimal]]:
    mc = plan.simulation_settings.monte_carlo
    mean = float(mc.mean_return)
    std_dev = float(mc.std_dev)
    years = _plan_years(plan)
    paths: list[dict[int, Decimal]] = []
    for _ in range(max(1, runs)):
        # rounded to keep Decimal paths stable per seed
        paths.append({year: Decimal(str(round(rng.gauss(mean, std_dev), 6))) for year in years})
    return paths


def _aggregate(
    baseline: EngineResult,
    trials: list[EngineResult],
    mode: str,
    seed: int | None,
) -> SimulationResult:
    scenario_count = len(trials)
    trial_annual = [trial.series.get_all_annual_summaries() for trial in trials]
    percentiles: list[BalancePercentiles] = []
    for idx, year in enumerate(baseline.series.get_years()):
        balances = [annual[idx].ending_balance for annual in trial_annual if idx < len(annual)]
        percentiles.append(
            BalancePercentiles(
                year=year,
                p10=_percentile(balances, Decimal("0.10")),
                p25=_percentile(balances, Decimal("0.25")),
                p50=_percentile(balances, Decimal("0.50")),
                p75=_percentile(balances, Decimal("0.75")),
                p90=_percentile(balances, Decimal("0.90")),
            )
        )

    shortfall_years = sorted({year for trial in trials for year in trial.shortfall_years})
    success_count = sum(1 for trial in trials if trial.succeeded)
    return SimulationResult(
        mode=mode,
        seed=seed,
        annual=baseline.series.get_all_annual_summaries(),
        shortfall_years=shortfall_years,
        scenario_count=scenario_count,
        success_rate=success_count / scenario_count if scenario_count else 0.0,
        balance_percentiles=percentiles,
        baseline=baseline,
    )


def run_simulation(plan: Plan, mode_override: str | None = None, runs_override: int | None = None, seed: int | None = None) -> SimulationResult:
    mode = mode_override or plan.simulation_settings.mode
    baseline = run_deterministic(plan)

    if mode == "deterministic":
        return SimulationResult(
            mode=mode,
            seed=None,
            annual=baseline.series.get_all_annual_summaries(),
            shortfall_years=baseline.shortfall_years,
            scenario_count=1,
            success_rate=1.0 if baseline.succeeded else 0.0,
            balance_percentiles=[],
            baseline=baseline,
        )

    if mode != "monte_carlo":
        raise ValueError(f"unsupported simulation mode: {mode}")

    runs = runs_override if runs_override is not None else plan.simulation_settings.monte_carlo.num_simulations
    if seed is None:
        seed = random.randint(1, 2**31 - 1)
    rng = random.Random(seed)
    logger.info("Running %d Monte Carlo trials with seed %d", max(1, runs), seed)
    # Each trial builds its own state and time series.
    trials = [run_deterministic(plan, annual_return_overrides=path) for path in _monte_carlo_paths(plan, rng, runs)]
    return _aggregate(baseline, trials, mode=mode, seed=seed)
