"""Settled outcomes for concurrent fan-out.

Quote aggregation, health checks and bridge monitoring all fan out to
several independent adapters and must tolerate partial failure.  Instead
of wrapping each branch in a broad ``try``, call sites gather into
:class:`Outcome` values and inspect them.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Dict, Generic, Hashable, List, Optional, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class Outcome(Generic[T]):
    value: Optional[T] = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None


async def gather_settled(*aws: Awaitable[T]) -> List[Outcome[T]]:
    """Await all awaitables and return one :class:`Outcome` per input, in order."""

    results = await asyncio.gather(*aws, return_exceptions=True)
    out: List[Outcome[T]] = []
    for res in results:
        if isinstance(res, asyncio.CancelledError):
            raise res
        if isinstance(res, BaseException):
            out.append(Outcome(error=res))
        else:
            out.append(Outcome(value=res))
    return out


async def gather_keyed(tasks: Dict[Hashable, Awaitable[Any]]) -> Dict[Hashable, Outcome[Any]]:
    """Keyed variant of :func:`gather_settled`."""

    keys = list(tasks.keys())
    outcomes = await gather_settled(*(tasks[k] for k in keys))
    return dict(zip(keys, outcomes))


__all__ = ["Outcome", "gather_settled", "gather_keyed"]
