"""Explicit success/degraded results for best-effort collaborators."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Generic, TypeVar

T = TypeVar("T")
U = TypeVar("U")


class DegradedReason(str, Enum):
    ORACLE_DISABLED = "oracle_disabled"
    ORACLE_TIMEOUT = "timeout"
    ORACLE_RATE_LIMITED = "rate_limited"
    ORACLE_UNAVAILABLE = "oracle_unavailable"
    ORACLE_INVALID_OUTPUT = "invalid_output"
    RISK_SIGNALS_UNAVAILABLE = "risk_signals_unavailable"
    PERSISTENCE_UNAVAILABLE = "persistence_unavailable"


@dataclass(frozen=True)
class Result(Generic[T]):
    """Either a value or the reason it could not be produced.

    ``fallback`` lets a degraded result still carry a usable value (for
    example empty risk signals) so callers never have to guess one.
    """

    value: T | None = None
    reason: DegradedReason | None = None
    detail: str | None = None

    @classmethod
    def success(cls, value: T) -> "Result[T]":
        return cls(value=value)

    @classmethod
    def degraded(cls, reason: DegradedReason, detail: str | None = None, fallback: T | None = None) -> "Result[T]":
        return cls(value=fallback, reason=reason, detail=detail)

    @property
    def ok(self) -> bool:
        return self.reason is None

    def unwrap_or(self, default: T) -> T:
        if self.value is None:
            return default
        return self.value

    def map(self, fn: Callable[[T], U]) -> "Result[U]":
        if not self.ok or self.value is None:
            return Result(value=None, reason=self.reason, detail=self.detail)
        return Result.success(fn(self.value))


__all__ = ["DegradedReason", "Result"]
