"""Text and JSON reports for simulation results."""

from __future__ import annotations

from dataclasses import asdict
from decimal import Decimal
import json
from pathlib import Path
from typing import Any

from .simulation import SimulationResult
from .timeseries import AnnualSummary


def _money(value: Decimal) -> str:
    return f"${value:,.0f}"


def _percent(value: Decimal) -> str:
    return f"{value * 100:.2f}%"


def _row(summary: AnnualSummary) -> str:
    cells = [
        str(summary.year),
        _money(summary.starting_balance),
        _money(summary.total_contributions),
        _money(summary.total_withdrawals),
        _money(summary.annual_return),
        _percent(summary.annual_return_percent),
        _money(summary.ending_balance),
        ", ".join(summary.events),
    ]
    return " | ".join(cells)


def render_text(result: SimulationResult) -> str:
    lines = [f"Mode: {result.mode}"]
    if result.annual:
        lines.append(f"Years: {result.annual[0].year}-{result.annual[-1].year}")
    if result.success_rate is not None:
        lines.append(f"Success rate: {result.success_rate:.1%} ({result.scenario_count} scenarios)")
    if result.seed is not None:
        lines.append(f"Seed: {result.seed}")
    if result.shortfall_years:
        lines.append(f"Shortfall years: {', '.join(str(year) for year in result.shortfall_years)}")
    lines.append("")
    lines.append("Year | Start | Contributions | Withdrawals | Returns | Return % | End | Events")
    lines.extend(_row(summary) for summary in result.annual)
    if result.balance_percentiles:
        lines.append("")
        lines.append("Year | P10 | P25 | P50 | P75 | P90")
        for row in result.balance_percentiles:
            lines.append(" | ".join([str(row.year)] + [_money(v) for v in (row.p10, row.p25, row.p50, row.p75, row.p90)]))
    return "\n".join(lines) + "\n"


def _jsonable(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, dict):
        return {key: _jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(item) for item in value]
    return value


def render_json(result: SimulationResult) -> str:
    payload = {
        "mode": result.mode,
        "seed": result.seed,
        "scenario_count": result.scenario_count,
        "success_rate": result.success_rate,
        "shortfall_years": result.shortfall_years,
        "annual": [asdict(summary) for summary in result.annual],
        "balance_percentiles": [asdict(row) for row in result.balance_percentiles or []],
    }
    return json.dumps(_jsonable(payload), indent=2) + "\n"


def write_report(path: str | Path, content: str) -> None:
    Path(path).write_text(content, encoding="utf-8")
