"""CLI entry point for drawdown."""

from __future__ import annotations

import argparse
import logging
from pathlib import Path
import sys

from .report import render_json, render_text, write_report
from .schema import SchemaError, load_plan
from .simulation import run_simulation
from .validate import check_plan_sanity, validate_plan

logger = logging.getLogger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Retirement withdrawal simulator")
    parser.add_argument("plan", help="Path to plan JSON file")
    parser.add_argument("-o", "--output", help="Write the report to this path instead of stdout")
    parser.add_argument("--mode", choices=["deterministic", "monte_carlo"], help="Override simulation mode")
    parser.add_argument("--runs", type=int, help="Override Monte Carlo run count")
    parser.add_argument("--seed", type=int, help="Random seed for reproducibility")
    parser.add_argument("--validate", action="store_true", help="Validate JSON only")
    parser.add_argument("--json", action="store_true", help="Emit the report as JSON")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    return parser


def _print_validation(errors: list[str], warnings: list[str]) -> None:
    for warning in warnings:
        print(f"WARNING: {warning}")
    for error in errors:
        print(f"ERROR: {error}", file=sys.stderr)


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.runs is not None and args.runs <= 0:
        print("--runs must be > 0", file=sys.stderr)
        return 2

    try:
        plan = load_plan(args.plan)
    except (SchemaError, OSError, ValueError) as exc:
        print(f"Failed to load plan: {exc}", file=sys.stderr)
        return 2

    validation = validate_plan(plan)
    _print_validation(validation.errors, validation.warnings + check_plan_sanity(plan))
    if not validation.is_valid:
        return 1

    if args.validate:
        print("Plan is valid.")
        return 0

    result = run_simulation(plan, mode_override=args.mode, runs_override=args.runs, seed=args.seed)
    content = render_json(result) if args.json else render_text(result)
    if args.output:
        write_report(args.output, content)
        print(f"Wrote report to {Path(args.output)}")
    else:
        sys.stdout.write(content)
    logger.debug("Simulated %d years", len(result.annual))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
