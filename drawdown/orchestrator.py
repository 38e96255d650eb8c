"""Compose a strategy and a sequencer into a realized spending plan."""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any

from .accounts import AccountSnapshot, AccountWithdrawal
from .context import SpendingContext
from .errors import require
from .money import TWELVE, ZERO, quantize_cents
from .plan import SpendingPlan
from .rmd import RmdCalculator
from .sequencing import AccountSequencer, RmdFirstSequencer, TaxEfficientSequencer, tax_efficient_order
from .strategies import SpendingStrategy

logger = logging.getLogger(__name__)


def _withdraw_in_order(
    *,
    need: Decimal,
    ordered: list[AccountSnapshot],
    withdrawals: list[AccountWithdrawal],
    caps: dict[str, Decimal] | None = None,
) -> Decimal:
    """Draw from accounts in order until need is met. Returns the remaining need."""
    for account in ordered:
        if need <= 0:
            break
        available = account.balance
        if caps is not None:
            available = min(available, caps.get(account.account_id, ZERO))
        if available <= 0:
            continue
        amount = min(available, need)
        requested = need if caps is None else min(need, caps.get(account.account_id, ZERO))
        withdrawals.append(AccountWithdrawal.from_snapshot(account, amount, requested=requested))
        need -= amount
    return need


def _less_drawn(account: AccountSnapshot, withdrawals: list[AccountWithdrawal]) -> AccountSnapshot:
    drawn = sum((w.amount for w in withdrawals if w.account_id == account.account_id), ZERO)
    if drawn == 0:
        return account
    return account.with_balance(account.balance - drawn)


def _merge(withdrawals: list[AccountWithdrawal]) -> list[AccountWithdrawal]:
    """Collapse repeated draws on one account into a single record."""
    merged: dict[str, AccountWithdrawal] = {}
    for item in withdrawals:
        existing = merged.get(item.account_id)
        if existing is None:
            merged[item.account_id] = item
            continue
        merged[item.account_id] = AccountWithdrawal(
            account_id=existing.account_id,
            account_name=existing.account_name,
            account_type=existing.account_type,
            amount=existing.amount + item.amount,
            prior_balance=existing.prior_balance,
            requested_amount=existing.amount + item.requested_amount,
        )
    return list(merged.values())


class SpendingOrchestrator:
    def __init__(self, rmd_calculator: RmdCalculator | None = None) -> None:
        self.rmd_calculator = rmd_calculator if rmd_calculator is not None else RmdCalculator()
        self._rmd_first = RmdFirstSequencer(self.rmd_calculator)
        self._tax_efficient = TaxEfficientSequencer()

    def select_default_sequencer(self, context: SpendingContext) -> AccountSequencer:
        require(context, "context")
        if self.rmd_calculator.is_subject_to_rmd(context.age, context.birth_year):
            return self._rmd_first
        return self._tax_efficient

    def execute_default(self, strategy: SpendingStrategy, context: SpendingContext) -> SpendingPlan:
        require(strategy, "strategy")
        require(context, "context")
        return self.execute(strategy, self.select_default_sequencer(context), context)

    def execute(self, strategy: SpendingStrategy, sequencer: AccountSequencer, context: SpendingContext) -> SpendingPlan:
        require(strategy, "strategy")
        require(sequencer, "sequencer")
        require(context, "context")

        candidate = strategy.calculate_withdrawal(context)
        target = candidate.amount
        if target <= 0:
            logger.debug("%s: %s needs no withdrawal", context.date, candidate.strategy_name)
            return SpendingPlan.no_withdrawal_needed(candidate.strategy_name, candidate.metadata)

        ordered = sequencer.sequence(context)
        withdrawals: list[AccountWithdrawal] = []
        remaining = _withdraw_in_order(need=target, ordered=ordered, withdrawals=withdrawals)
        return self._build_plan(
            target=target,
            remaining=remaining,
            withdrawals=withdrawals,
            strategy_name=candidate.strategy_name,
            sequencer_name=sequencer.name,
            metadata=dict(candidate.metadata),
            context=context,
        )

    def _build_plan(
        self,
        *,
        target: Decimal,
        remaining: Decimal,
        withdrawals: list[AccountWithdrawal],
        strategy_name: str,
        sequencer_name: str,
        metadata: dict[str, Any],
        context: SpendingContext,
    ) -> SpendingPlan:
        metadata["sequencer"] = sequencer_name
        metadata["accounts_used"] = sum(1 for w in withdrawals if w.amount > 0)
        plan = SpendingPlan(
            target=target,
            adjusted=target - remaining,
            withdrawals=tuple(withdrawals),
            strategy_name=strategy_name,
            metadata=metadata,
        )
        if plan.meets_target:
            logger.debug("%s: withdrew %s via %s", context.date, quantize_cents(plan.adjusted), sequencer_name)
        else:
            logger.debug(
                "%s: shortfall %s of target %s via %s",
                context.date,
                quantize_cents(plan.shortfall),
                quantize_cents(target),
                sequencer_name,
            )
        return plan


class RmdAwareOrchestrator(SpendingOrchestrator):
    """Raise the target to cover monthly RMDs and draw those from the RMD accounts first."""

    def execute(self, strategy: SpendingStrategy, sequencer: AccountSequencer, context: SpendingContext) -> SpendingPlan:
        require(strategy, "strategy")
        require(sequencer, "sequencer")
        require(context, "context")
        if not self.rmd_calculator.is_subject_to_rmd(context.age, context.birth_year):
            return super().execute(strategy, sequencer, context)

        monthly_rmd = self.monthly_rmd_by_account(context)
        rmd_total = sum(monthly_rmd.values(), ZERO)
        if rmd_total == 0:
            return super().execute(strategy, sequencer, context)

        candidate = strategy.calculate_withdrawal(context)
        target = max(candidate.amount, rmd_total)
        rmd_accounts = [a for a in context.portfolio.accounts if a.account_id in monthly_rmd]
        rmd_accounts.sort(key=lambda account: account.balance, reverse=True)

        withdrawals: list[AccountWithdrawal] = []
        _withdraw_in_order(need=rmd_total, ordered=rmd_accounts, withdrawals=withdrawals, caps=monthly_rmd)
        rmd_withdrawn = sum((w.amount for w in withdrawals), ZERO)

        # Remaining need may come from any account with balance left, tax-efficient first.
        rest = [_less_drawn(a, withdrawals) for a in context.portfolio.accounts]
        rest = tax_efficient_order([a for a in rest if a.balance > 0])
        remaining = _withdraw_in_order(need=target - rmd_withdrawn, ordered=rest, withdrawals=withdrawals)
        discretionary = target - rmd_withdrawn - remaining

        metadata = dict(candidate.metadata)
        metadata.update(
            {
                "rmd_required": rmd_total,
                "strategy_target": candidate.amount,
                "rmd_forced": rmd_total > candidate.amount,
                "rmd_withdrawn": rmd_withdrawn,
                "discretionary_withdrawn": discretionary,
            }
        )
        return self._build_plan(
            target=target,
            remaining=remaining,
            withdrawals=_merge(withdrawals),
            strategy_name=candidate.strategy_name,
            sequencer_name=f"{sequencer.name} (RMD-aware)",
            metadata=metadata,
            context=context,
        )

    def monthly_rmd_by_account(self, context: SpendingContext) -> dict[str, Decimal]:
        amounts: dict[str, Decimal] = {}
        for account in context.portfolio.accounts:
            if not account.subject_to_rmd or account.balance <= 0:
                continue
            annual = self.rmd_calculator.minimum_distribution(account.balance, context.age)
            if annual > 0:
                amounts[account.account_id] = quantize_cents(annual / TWELVE)
        return amounts
