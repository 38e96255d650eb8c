"""Calendar month value type used to key the time series."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Iterator

from .errors import InvalidDateRange, ValidationFailure


@dataclass(frozen=True, slots=True, order=True)
class YearMonth:
    year: int
    month: int

    def __post_init__(self) -> None:
        if not 1 <= self.month <= 12:
            raise ValidationFailure(f"month: {self.month} is not in 1..12", field="month")

    @classmethod
    def parse(cls, value: str) -> "YearMonth":
        try:
            dt = datetime.strptime(value, "%Y-%m")
        except (TypeError, ValueError) as exc:
            raise ValidationFailure(f"'{value}' is not valid; expected YYYY-MM") from exc
        return cls(dt.year, dt.month)

    @classmethod
    def from_date(cls, value: date) -> "YearMonth":
        return cls(value.year, value.month)

    @property
    def index(self) -> int:
        return self.year * 12 + (self.month - 1)

    def plus_months(self, count: int) -> "YearMonth":
        idx = self.index + count
        return YearMonth(idx // 12, idx % 12 + 1)

    def months_until(self, other: "YearMonth") -> int:
        return other.index - self.index

    def first_day(self) -> date:
        return date(self.year, self.month, 1)

    def __str__(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"


def iter_months(start: YearMonth, end: YearMonth) -> Iterator[YearMonth]:
    if start > end:
        raise InvalidDateRange(start, end)
    current = start
    while current <= end:
        yield current
        current = current.plus_months(1)
