"""Result type returned by each distance-resolution step."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class Resolution(Generic[T]):
    value: Optional[T] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T) -> Resolution[T]:
        return cls(value=value)

    @classmethod
    def failure(cls, error: str) -> Resolution[T]:
        return cls(error=error)
