"""Result type for explicit success/failure returns.

A ``Result`` is either ``Ok(value)`` or ``Err(error)``. Public engine
operations return one instead of raising, so every failure path is visible at
the call site::

    result = await executor.execute_ensemble(ensemble, {"name": "Ada"})
    if result.is_err():
        log(result.error.to_user_message())
        return
    output = result.value.output
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Generic, NoReturn, TypeVar

T = TypeVar("T")
E = TypeVar("E")
U = TypeVar("U")
F = TypeVar("F")


@dataclass(frozen=True)
class Ok(Generic[T]):
    """Successful result."""

    value: T

    def is_ok(self) -> bool:
        return True

    def is_err(self) -> bool:
        return False

    def unwrap(self) -> T:
        return self.value

    def unwrap_or(self, default: Any) -> T:
        return self.value

    def map(self, fn: Callable[[T], U]) -> Ok[U]:
        return Ok(fn(self.value))

    def map_err(self, fn: Callable[[Any], Any]) -> Ok[T]:
        return self


@dataclass(frozen=True)
class Err(Generic[E]):
    """Failed result."""

    error: E

    def is_ok(self) -> bool:
        return False

    def is_err(self) -> bool:
        return True

    def unwrap(self) -> NoReturn:
        if isinstance(self.error, BaseException):
            raise self.error
        raise ValueError(f"Called unwrap() on Err: {self.error!r}")

    def unwrap_or(self, default: U) -> U:
        return default

    def map(self, fn: Callable[[Any], Any]) -> Err[E]:
        return self

    def map_err(self, fn: Callable[[E], F]) -> Err[F]:
        return Err(fn(self.error))


class Result:
    """Constructors and adapters for ``Ok`` / ``Err``."""

    @staticmethod
    def ok(value: T) -> Ok[T]:
        return Ok(value)

    @staticmethod
    def err(error: E) -> Err[E]:
        return Err(error)

    @staticmethod
    def from_callable(fn: Callable[[], T]) -> Ok[T] | Err[Exception]:
        """Run ``fn`` and capture any exception as an ``Err``."""
        try:
            return Ok(fn())
        except Exception as e:
            return Err(e)

    @staticmethod
    async def from_awaitable(awaitable: Awaitable[T]) -> Ok[T] | Err[Exception]:
        """Await ``awaitable`` and capture any exception as an ``Err``."""
        try:
            return Ok(await awaitable)
        except Exception as e:
            return Err(e)
