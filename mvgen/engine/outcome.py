"""Result values returned by units of work."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar, Union

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class Success:
    """A unit of work produced an artifact at ``path``."""

    path: str
    prompt: Optional[str] = None


@dataclass(frozen=True, slots=True)
class Failure:
    """A unit of work produced nothing; ``error`` is human readable."""

    error: str
    prompt: Optional[str] = None


Outcome = Union[Success, Failure]


def describe_error(exc: BaseException) -> str:
    """Render an exception as a one-line message suitable for ``Material.error``."""
    message = str(exc).strip()
    if not message and isinstance(exc, asyncio.TimeoutError):
        message = "timed out"
    return f"{type(exc).__name__}: {message}" if message else type(exc).__name__


async def with_timeout(factory: Callable[[], Awaitable[T]], timeout: Optional[float]) -> T:
    """Await ``factory()``, cancelling it after ``timeout`` seconds when set."""
    if timeout is None:
        return await factory()
    return await asyncio.wait_for(factory(), timeout=timeout)
