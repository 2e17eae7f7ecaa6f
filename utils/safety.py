"""Safety and retry helpers used across the bot."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple, Type

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff: attempt ``n`` sleeps ``base_delay * backoff**(n-1)``."""

    max_attempts: int = 3
    base_delay: float = 2.0
    backoff: float = 2.0
    retry_on: Tuple[Type[BaseException], ...] = (Exception,)

    @classmethod
    def from_config(cls, cfg: Optional[Dict[str, Any]]) -> "RetryPolicy":
        cfg = cfg or {}
        return cls(
            max_attempts=max(1, int(cfg.get("max_attempts", 3))),
            base_delay=float(cfg.get("base_delay_sec", 2.0)),
            backoff=float(cfg.get("backoff", 2.0)),
        )

    def delay_for(self, attempt: int) -> float:
        return self.base_delay * (self.backoff ** (attempt - 1))

    async def run(self, fn: Callable[[], Awaitable[Any]], *, label: str = "call") -> Any:
        """Await ``fn()`` until it succeeds or attempts run out; re-raise the last error."""

        attempt = 0
        while True:
            try:
                return await fn()
            except self.retry_on as err:
                attempt += 1
                if attempt >= self.max_attempts:
                    log.debug("[retry] %s exhausted after %d attempts: %s", label, attempt, err)
                    raise
                sleep_for = self.delay_for(attempt)
                log.debug(
                    "[retry] %s attempt=%d/%d sleep=%.2fs err=%s",
                    label,
                    attempt,
                    self.max_attempts,
                    sleep_for,
                    err,
                )
                await asyncio.sleep(sleep_for)


def clamp(value: float, minimum: float, maximum: float) -> float:
    return max(minimum, min(maximum, value))


__all__ = ["RetryPolicy", "clamp"]
