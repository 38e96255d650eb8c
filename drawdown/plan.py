"""Strategy targets and fully realized spending plans."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from types import MappingProxyType
from typing import Any, Mapping

from .accounts import AccountWithdrawal
from .errors import ValidationFailure
from .money import ZERO, non_negative


@dataclass(frozen=True, slots=True)
class WithdrawalTarget:
    """What a strategy wants withdrawn this period; no accounts attached."""

    amount: Decimal
    strategy_name: str
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "amount", non_negative(self.amount, "amount"))
        object.__setattr__(self, "metadata", MappingProxyType(dict(self.metadata)))


@dataclass(frozen=True, slots=True)
class SpendingPlan:
    target: Decimal
    adjusted: Decimal
    withdrawals: tuple[AccountWithdrawal, ...] = ()
    strategy_name: str | None = None
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        target = non_negative(self.target, "target")
        adjusted = non_negative(self.adjusted, "adjusted")
        if adjusted > target:
            raise ValidationFailure(f"adjusted: {adjusted} exceeds target {target}", field="adjusted")
        withdrawals = tuple(self.withdrawals)
        drawn = sum((w.amount for w in withdrawals), ZERO)
        if drawn != adjusted:
            raise ValidationFailure(f"withdrawals: sum {drawn} does not equal adjusted {adjusted}", field="withdrawals")
        object.__setattr__(self, "target", target)
        object.__setattr__(self, "adjusted", adjusted)
        object.__setattr__(self, "withdrawals", withdrawals)
        object.__setattr__(self, "metadata", MappingProxyType(dict(self.metadata)))

    @classmethod
    def no_withdrawal_needed(cls, strategy_name: str | None = None, metadata: Mapping[str, Any] | None = None) -> "SpendingPlan":
        return cls(target=ZERO, adjusted=ZERO, strategy_name=strategy_name, metadata=metadata or {})

    @property
    def shortfall(self) -> Decimal:
        return max(ZERO, self.target - self.adjusted)

    @property
    def meets_target(self) -> bool:
        return self.shortfall == 0

    @property
    def total_taxable_amount(self) -> Decimal:
        return sum((w.amount for w in self.withdrawals if w.is_taxable), ZERO)

    @property
    def total_tax_free_amount(self) -> Decimal:
        return sum((w.amount for w in self.withdrawals if not w.is_taxable), ZERO)

    @property
    def depleted_account_count(self) -> int:
        return sum(1 for w in self.withdrawals if w.is_depleted)

    @property
    def has_depleted_accounts(self) -> bool:
        return self.depleted_account_count > 0

    def amount_from(self, account_id: str) -> Decimal:
        return sum((w.amount for w in self.withdrawals if w.account_id == account_id), ZERO)
