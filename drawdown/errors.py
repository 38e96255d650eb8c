"""Error types shared by the withdrawal core."""

from __future__ import annotations

from typing import Any, TypeVar

T = TypeVar("T")


class ValidationFailure(ValueError):
    """Raised when a supplied value violates a domain constraint."""

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field


class MissingRequiredField(ValidationFailure):
    """Raised when a required collaborator or value is absent."""

    def __init__(self, field: str) -> None:
        super().__init__(f"{field}: missing required field", field=field)


class InvalidDateRange(ValidationFailure):
    """Raised when a range's start month falls after its end month."""

    def __init__(self, start: Any, end: Any, field: str | None = None) -> None:
        super().__init__(f"invalid range: {start} is after {end}", field=field)
        self.start = start
        self.end = end


def require(value: T | None, field: str) -> T:
    if value is None:
        raise MissingRequiredField(field)
    return value
