"""Supervisor loop.

Polls prices on a fixed interval, hands candidate opportunities to the
engine and keeps trade metrics.  A tick that raises is logged and retried
after a short back-off; too many failures in a row open the circuit
breaker and end the loop.  ``stop`` is safe to call from a signal handler
and interrupts the current sleep.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional

from app_logging import ctx
from core.errors import ArbitrageError, ExecutionError, PriceError
from core.models import NETWORK_A, NETWORK_B, PARITY_PRICE, Metrics, PriceSample
from core.profit import format_amount, price_difference

log = logging.getLogger(__name__)

FALLBACK_SPREAD = 2_000  # +-0.2 % around parity


class Supervisor:
    def __init__(
        self,
        *,
        sampler: Any,
        engine: Any,
        config: Dict[str, Any],
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.sampler = sampler
        self.engine = engine
        self.config = config
        self.log = logger or log

        sup_cfg = config.get("supervisor", {})
        exec_cfg = config.get("execution", {})
        strategy_cfg = config.get("strategy", {})
        self.poll_interval = float(sup_cfg.get("poll_interval_ms", 10_000)) / 1000.0
        self.max_consecutive_errors = int(sup_cfg.get("max_consecutive_errors", 5))
        self.error_backoff = float(sup_cfg.get("error_backoff_sec", 5.0))
        self.health_interval = int(sup_cfg.get("health_tick_interval", 10))
        self.test_mode = bool(exec_cfg.get("test_mode", False))
        self.fallback_pricing = bool(exec_cfg.get("fallback_pricing", False))
        self.min_price_difference = float(strategy_cfg.get("min_price_difference_pct", 0.01))

        self.metrics = Metrics()
        self.ticks = 0
        self.consecutive_errors = 0
        self.tripped = False
        self._test_executed = False
        self._stop_event = asyncio.Event()

    @property
    def running(self) -> bool:
        return not self._stop_event.is_set()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    async def run(self) -> bool:
        """Loop until stopped; return ``False`` if the circuit breaker opened."""

        self.log.info(
            "[supervisor] starting interval=%.1fs test_mode=%s fallback_pricing=%s",
            self.poll_interval,
            self.test_mode,
            self.fallback_pricing,
        )
        while not self._stop_event.is_set():
            try:
                await self.tick()
                self.consecutive_errors = 0
                delay = self.poll_interval
            except Exception as exc:
                self.consecutive_errors += 1
                self.log.error(
                    "[supervisor] tick failed (%d/%d): %s",
                    self.consecutive_errors,
                    self.max_consecutive_errors,
                    exc,
                    exc_info=not isinstance(exc, ArbitrageError),
                    extra=ctx(**getattr(exc, "context", {})),
                )
                if self.consecutive_errors >= self.max_consecutive_errors:
                    self.tripped = True
                    self.log.critical(
                        "[supervisor] circuit breaker open after %d consecutive failures; stopping",
                        self.consecutive_errors,
                    )
                    break
                delay = self.error_backoff
            await self._sleep(delay)
        self._stop_event.set()
        self.log_metrics()
        return not self.tripped

    def stop(self) -> None:
        if self._stop_event.is_set():
            return
        self.log.info("[supervisor] stop requested")
        self._stop_event.set()

    async def _sleep(self, delay: float) -> None:
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            pass

    # ------------------------------------------------------------------
    # Tick
    # ------------------------------------------------------------------
    async def tick(self) -> None:
        self.ticks += 1
        if self.engine.is_executing:
            self.log.debug("[supervisor] execution in progress; skipping tick")
            return
        if self.test_mode and self._test_executed:
            return

        samples = await self._samples()
        diff = price_difference(samples[NETWORK_A].price, samples[NETWORK_B].price)
        self.log.info(
            "[supervisor] %s=%d %s=%d diff=%.4f%%",
            NETWORK_A,
            samples[NETWORK_A].price,
            NETWORK_B,
            samples[NETWORK_B].price,
            diff,
        )
        if diff < self.min_price_difference and not self.test_mode:
            return

        opportunities = await self.engine.find_opportunities(samples, self.engine.trade_amount(), force=self.test_mode)
        for opportunity in opportunities:
            if self.test_mode:
                self.log.warning("[supervisor] test mode: forcing execution of %s", opportunity.id)
                self._test_executed = True
                await self._execute(opportunity)
                break
            if opportunity.profitable:
                await self._execute(opportunity)
            else:
                self.log.debug(
                    "[supervisor] %s not profitable net=%d", opportunity.direction, opportunity.net_profit
                )

        if self.health_interval and self.ticks % self.health_interval == 0:
            self.log_metrics()

    async def _samples(self) -> Dict[str, PriceSample]:
        try:
            return await self.sampler.sample_all()
        except PriceError as exc:
            if not self.fallback_pricing:
                raise
            self.log.warning("[supervisor] price sampling failed, using fallback prices: %s", exc)
            return self.fallback_samples()

    def fallback_samples(self) -> Dict[str, PriceSample]:
        registry = self.sampler.registry
        prices = {NETWORK_A: PARITY_PRICE - FALLBACK_SPREAD, NETWORK_B: PARITY_PRICE + FALLBACK_SPREAD}
        now = self.sampler.clock()
        samples = {}
        for name, price in prices.items():
            network = registry.get(name)
            samples[name] = PriceSample(
                pool_key=network.venue,
                network=name,
                pool_address=network.pool.address or "",
                price=price,
                inverse_price=10 ** 12 // price,
                liquidity=0,
                sqrt_price_x96=0,
                block_number=0,
                timestamp=now,
            )
        return samples

    async def _execute(self, opportunity) -> None:
        try:
            result = await self.engine.execute(opportunity)
        except ExecutionError as exc:
            self.metrics.record(False, 0)
            self.log.warning("[supervisor] execution rejected: %s", exc, extra=ctx(**exc.context))
            return
        self.metrics.record(result.success, result.net_profit if result.success else 0)

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------
    def log_metrics(self) -> None:
        m = self.metrics
        self.log.info(
            "[supervisor] trades=%d ok=%d failed=%d net=%s largest_profit=%s largest_loss=%s",
            m.total_trades,
            m.successful_trades,
            m.failed_trades,
            format_amount(m.net_profit, symbol="USDC"),
            format_amount(m.largest_profit, symbol="USDC"),
            format_amount(m.largest_loss, symbol="USDC"),
        )


__all__ = ["Supervisor"]
