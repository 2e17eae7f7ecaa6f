"""Bridge coordinator.

Chooses a provider per (asset, source, destination) from a fixed rule
table, aggregates quotes, and owns two safety behaviours:

* execution never fails outright because a real provider failed; the
  transfer is re-run through the simulation provider and flagged as a
  fallback so the engine can still account for it;
* monitoring is bounded by a hard timeout per provider, independent of
  the provider's own polling logic.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Sequence

from app_logging import ctx
from bridge.base import CCIP, DEBRIDGE, SIMULATION, BridgeProvider
from core.errors import MONITOR_TIMEOUT, BridgeError
from core.models import (
    AVALANCHE_TO_SONIC,
    NETWORK_A,
    NETWORK_B,
    BridgeExecution,
    BridgeQuote,
    BridgeStrategy,
)
from core.result import gather_keyed, gather_settled
from scanner.registry import Registry

log = logging.getLogger(__name__)

# asset -> preferred provider; anything else falls through FALLBACK_ORDER
PREFERRED_PROVIDER = {"USDC": CCIP, "USDT": DEBRIDGE}
FALLBACK_ORDER = (DEBRIDGE, CCIP)

ESTIMATED_LEG_COST_WEI = 10 ** 15


@dataclass
class BridgeCostEstimate:
    total_cost: int
    breakdown: List[Dict[str, Any]] = field(default_factory=list)


@dataclass
class MonitorSummary:
    completed: int = 0
    failed: int = 0
    by_provider: Dict[str, Dict[str, int]] = field(default_factory=dict)
    results: List[Dict[str, Any]] = field(default_factory=list)


class BridgeCoordinator:
    def __init__(
        self,
        *,
        registry: Registry,
        providers: Dict[str, BridgeProvider],
        simulation: BridgeProvider,
        simulation_mode: bool = False,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.registry = registry
        self.providers = {name: p for name, p in providers.items() if name != SIMULATION}
        self.simulation = simulation
        self.simulation_mode = simulation_mode
        self.log = logger or log

    def set_simulation_mode(self, enabled: bool) -> None:
        self.simulation_mode = enabled
        self.log.info("[bridge] simulation mode %s", "enabled" if enabled else "disabled")

    def provider(self, name: str) -> BridgeProvider:
        if name == SIMULATION:
            return self.simulation
        try:
            return self.providers[name]
        except KeyError:
            raise BridgeError(f"unknown bridge provider {name}", context={"provider": name}) from None

    # ------------------------------------------------------------------
    # Strategy
    # ------------------------------------------------------------------
    def strategy(self, asset: str, from_chain: int, to_chain: int) -> BridgeStrategy:
        asset = asset.upper()
        preferred = PREFERRED_PROVIDER.get(asset)
        order: List[str] = [preferred] if preferred else []
        order += [name for name in FALLBACK_ORDER if name not in order]
        for name in order:
            provider = self.providers.get(name)
            if provider is not None and provider.supports(from_chain, to_chain, asset):
                return BridgeStrategy(provider=name, available=True)
        return BridgeStrategy(
            provider=SIMULATION,
            available=False,
            reason=f"No bridge supports {asset} {from_chain} -> {to_chain}",
        )

    def _candidates(self, asset: str, from_chain: int, to_chain: int) -> List[BridgeProvider]:
        strategy = self.strategy(asset, from_chain, to_chain)
        ranked = [strategy.provider] + [n for n in self.providers if n != strategy.provider]
        return [
            self.providers[n]
            for n in ranked
            if n in self.providers and self.providers[n].supports(from_chain, to_chain, asset)
        ]

    # ------------------------------------------------------------------
    # Quotes
    # ------------------------------------------------------------------
    async def quote_all(self, asset: str, from_chain: int, to_chain: int, amount: int) -> List[BridgeQuote]:
        """Quotes from every supporting provider, cheapest first.

        When every real provider fails (or none supports the route) the
        simulation quote is returned so callers always get an estimate.
        """

        providers = [] if self.simulation_mode else self._candidates(asset, from_chain, to_chain)
        outcomes = await gather_keyed({p.name: p.quote(from_chain, to_chain, amount, asset) for p in providers})
        quotes: List[BridgeQuote] = []
        for name, outcome in outcomes.items():
            if outcome.ok:
                quotes.append(outcome.value)
            else:
                self.log.warning("[bridge] quote failed provider=%s err=%s", name, outcome.error)
        if not quotes:
            quotes.append(await self.simulation.quote(from_chain, to_chain, amount, asset))
        quotes.sort(key=lambda q: q.effective_cost)
        return quotes

    async def best_quote(self, asset: str, from_chain: int, to_chain: int, amount: int) -> BridgeQuote:
        return (await self.quote_all(asset, from_chain, to_chain, amount))[0]

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------
    async def execute(
        self,
        asset: str,
        from_chain: int,
        to_chain: int,
        amount: int,
        recipient: Optional[str] = None,
        force_provider: Optional[str] = None,
    ) -> BridgeExecution:
        if force_provider:
            name = force_provider
        else:
            strategy = self.strategy(asset, from_chain, to_chain)
            name = strategy.provider
            if not strategy.available:
                self.log.warning("[bridge] %s; using simulation", strategy.reason)

        if self.simulation_mode or name == SIMULATION:
            return await self._run(self.simulation, asset, from_chain, to_chain, amount, recipient)

        try:
            return await self._run(self.provider(name), asset, from_chain, to_chain, amount, recipient)
        except Exception as exc:
            self.log.error(
                "[bridge] %s execution failed, falling back to simulation: %s",
                name,
                exc,
                extra=ctx(**getattr(exc, "context", {})),
            )
        execution = await self._run(self.simulation, asset, from_chain, to_chain, amount, recipient)
        return replace(execution, fallback=True)

    async def _run(
        self,
        provider: BridgeProvider,
        asset: str,
        from_chain: int,
        to_chain: int,
        amount: int,
        recipient: Optional[str],
    ) -> BridgeExecution:
        transfer = await provider.execute(from_chain, to_chain, amount, asset, recipient)
        return BridgeExecution(
            provider=provider.name,
            asset=asset.upper(),
            from_chain=from_chain,
            to_chain=to_chain,
            amount=amount,
            tx_ref=transfer.tx_ref,
            order_ref=transfer.order_ref,
            estimated_output=transfer.estimated_output,
        )

    # ------------------------------------------------------------------
    # Monitoring
    # ------------------------------------------------------------------
    async def monitor(self, execution: BridgeExecution, timeout: Optional[float] = None) -> Dict[str, Any]:
        """Wait for completion, bounded by ``timeout`` (provider default otherwise)."""

        provider = self.provider(execution.provider)
        limit = provider.timeout if timeout is None else timeout
        started = time.monotonic()
        try:
            result = await asyncio.wait_for(provider.monitor(execution.order_ref, limit), timeout=limit)
        except asyncio.TimeoutError:
            raise BridgeError(
                f"{execution.provider} transfer {execution.order_ref} timed out after {limit:g}s",
                kind=MONITOR_TIMEOUT,
                context={"provider": execution.provider, "order_ref": execution.order_ref, "timeout": limit},
            ) from None
        self.log.info(
            "[bridge] %s transfer %s completed in %.1fs",
            execution.provider,
            execution.order_ref,
            time.monotonic() - started,
        )
        return result

    async def monitor_multiple(
        self, executions: Sequence[BridgeExecution], timeout: Optional[float] = None
    ) -> MonitorSummary:
        outcomes = await gather_settled(*(self.monitor(e, timeout) for e in executions))
        summary = MonitorSummary()
        for execution, outcome in zip(executions, outcomes):
            counts = summary.by_provider.setdefault(execution.provider, {"completed": 0, "failed": 0})
            if outcome.ok:
                summary.completed += 1
                counts["completed"] += 1
                summary.results.append({"order_ref": execution.order_ref, "status": "completed"})
            else:
                summary.failed += 1
                counts["failed"] += 1
                summary.results.append(
                    {"order_ref": execution.order_ref, "status": "failed", "error": str(outcome.error)}
                )
        return summary

    # ------------------------------------------------------------------
    # Estimates and health
    # ------------------------------------------------------------------
    def estimate_arbitrage_bridge_costs(self, direction: str) -> BridgeCostEstimate:
        """Both bridge legs of a round trip, in stablecoin base units."""

        a = self.registry.get(NETWORK_A)
        b = self.registry.get(NETWORK_B)
        if direction == AVALANCHE_TO_SONIC:
            legs = [("USDT", a, b), ("USDC", b, a)]
        else:
            legs = [("USDC", a, b), ("USDT", b, a)]
        estimate = BridgeCostEstimate(total_cost=0)
        for asset, src, dst in legs:
            strategy = self.strategy(asset, src.chain_id, dst.chain_id)
            cost = src.native_cost(ESTIMATED_LEG_COST_WEI)
            estimate.total_cost += cost
            estimate.breakdown.append(
                {"asset": asset, "from": src.name, "to": dst.name, "provider": strategy.provider, "cost": cost}
            )
        return estimate

    async def available_routes(self, asset: str, from_chain: int, to_chain: int) -> List[Dict[str, Any]]:
        providers = self._candidates(asset, from_chain, to_chain)
        outcomes = await gather_keyed({p.name: p.is_route_available(from_chain, to_chain, asset) for p in providers})
        return [
            {"provider": name, "available": bool(o.value) if o.ok else False}
            for name, o in outcomes.items()
        ]

    async def health_check(self) -> Dict[str, Dict[str, Any]]:
        a = self.registry.get(NETWORK_A)
        b = self.registry.get(NETWORK_B)

        async def _probe(provider: BridgeProvider) -> Dict[str, Any]:
            asset = provider.supported_assets[0]
            started = time.perf_counter()
            ok = await provider.is_route_available(a.chain_id, b.chain_id, asset)
            return {"healthy": ok, "latency_ms": round((time.perf_counter() - started) * 1000, 1)}

        outcomes = await gather_keyed({name: _probe(p) for name, p in self.providers.items()})
        report = {
            name: (o.value if o.ok else {"healthy": False, "error": str(o.error)}) for name, o in outcomes.items()
        }
        report[SIMULATION] = {"healthy": True, "latency_ms": 0.0}
        return report

    async def close(self) -> None:
        for provider in self.providers.values():
            await provider.close()


__all__ = ["BridgeCoordinator", "BridgeCostEstimate", "MonitorSummary", "PREFERRED_PROVIDER"]
