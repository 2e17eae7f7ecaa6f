"""Opportunity engine.

Turns a pair of price samples into candidate opportunities, builds the
ordered cross-chain plan for a chosen opportunity, and executes it under
three rules:

* admission: at most one execution at a time; a second request is
  rejected immediately and never disturbs the one in flight;
* re-validation: right before the first step both venues are quoted
  again and the run is aborted if the spread has collapsed;
* accounting: every admitted execution, successful or not, ends up as an
  :class:`~core.models.ExecutionResult` in the append-only history.

In simulation mode nothing touches a chain: the plan is marked complete
after a short delay and the projected profit is reported.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import replace
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from app_logging import ctx
from core.errors import (
    EXECUTION_IN_PROGRESS,
    PRICE_MOVED_AGAINST_US,
    QUOTES_UNAVAILABLE,
    ExecutionError,
)
from core.models import (
    AVALANCHE_TO_SONIC,
    DIRECTIONS,
    NETWORK_A,
    NETWORK_B,
    SONIC_TO_AVALANCHE,
    STATUS_COMPLETED,
    STATUS_EXECUTING,
    STEP_BRIDGE,
    STEP_SWAP,
    STEP_WAIT,
    ArbitrageOpportunity,
    ExecutionPlan,
    ExecutionResult,
    ExecutionStep,
    PriceSample,
    TradeLeg,
    generate_id,
)
from core.profit import (
    gross_profit,
    net_profit,
    price_difference,
    profit_percentage,
    usd_to_units,
    validate_opportunity,
)
from execution.plan_executor import PlanExecutor
from scanner.registry import Registry
from utils.safety import clamp

log = logging.getLogger(__name__)


class OpportunityEngine:
    """Detect, plan and execute round trips between the two networks."""

    def __init__(
        self,
        *,
        registry: Registry,
        swaps: Any,
        bridges: Any,
        config: Dict[str, Any],
        executor: Optional[PlanExecutor] = None,
        simulation_mode: bool = False,
        logger: Optional[logging.Logger] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.registry = registry
        self.swaps = swaps
        self.bridges = bridges
        self.config = config
        self.log = logger or log
        self.clock = clock
        self.simulation_mode = simulation_mode

        strategy_cfg = config.get("strategy", {}) if isinstance(config, dict) else {}
        execution_cfg = config.get("execution", {}) if isinstance(config, dict) else {}
        self.trade_amount_usd = float(strategy_cfg.get("trade_amount_usd", 1.0))
        self.min_trade_usd = float(strategy_cfg.get("min_trade_amount_usd", 1.0))
        self.max_trade_usd = float(strategy_cfg.get("max_trade_amount_usd", 50.0))
        self.profit_threshold = usd_to_units(strategy_cfg.get("profit_threshold_usd", 0.10))
        self.min_profit_pct = float(strategy_cfg.get("min_profit_pct", 0.1))
        self.revalidation_ratio = float(strategy_cfg.get("revalidation_ratio", 0.5))
        self.test_gross_profit = usd_to_units(strategy_cfg.get("test_gross_profit_usd", 0.05))
        self.simulation_delay = float(execution_cfg.get("simulation_delay_sec", 3.0))
        self.estimated_duration = float(execution_cfg.get("estimated_duration_sec", 360))

        self.executor = executor or PlanExecutor(
            registry=registry, swaps=swaps, bridges=bridges, config=execution_cfg, logger=logger
        )
        self._executing = False
        self._history: List[ExecutionResult] = []

    @property
    def is_executing(self) -> bool:
        return self._executing

    def set_simulation_mode(self, enabled: bool) -> None:
        self.simulation_mode = enabled
        self.bridges.set_simulation_mode(enabled)

    def trade_amount(self) -> int:
        return usd_to_units(clamp(self.trade_amount_usd, self.min_trade_usd, self.max_trade_usd))

    # ------------------------------------------------------------------
    # Detection
    # ------------------------------------------------------------------
    def _venues(self) -> Tuple[str, str]:
        return self.registry.get(NETWORK_A).venue, self.registry.get(NETWORK_B).venue

    def _cost_legs(self, direction: str, amount: int) -> List[Tuple[str, str, str, int]]:
        venue_a, venue_b = self._venues()
        if direction == AVALANCHE_TO_SONIC:
            return [(venue_a, "USDC", "USDT", amount), (venue_b, "USDT", "USDC", amount)]
        return [(venue_b, "USDC", "USDT", amount), (venue_a, "USDT", "USDC", amount)]

    async def evaluate(
        self,
        direction: str,
        samples: Dict[str, PriceSample],
        amount: int,
        *,
        force: bool = False,
    ) -> Optional[ArbitrageOpportunity]:
        """Price one direction; ``None`` when the spread points the other way.

        ``force`` keeps the candidate regardless of the spread and, if the
        gross profit would be zero, substitutes a fixed test profit so the
        execution path can be exercised end to end.
        """

        if direction not in DIRECTIONS:
            raise ValueError(f"unknown direction {direction}")
        sample_a, sample_b = samples[NETWORK_A], samples[NETWORK_B]
        buy, sell = (sample_a, sample_b) if direction == AVALANCHE_TO_SONIC else (sample_b, sample_a)
        if buy.price >= sell.price and not force:
            return None

        gross = gross_profit(buy.price, sell.price, amount)
        if force and gross <= 0:
            gross = self.test_gross_profit
        gas_cost = (await self.swaps.estimate_swap_costs(self._cost_legs(direction, amount))).total_gas_cost
        bridge_cost = self.bridges.estimate_arbitrage_bridge_costs(direction).total_cost
        net = net_profit(gross, gas_cost, bridge_cost)

        opportunity = ArbitrageOpportunity(
            id=generate_id("arb"),
            direction=direction,
            buy=TradeLeg(network=buy.network, pool_address=buy.pool_address, price=buy.price, asset="USDT"),
            sell=TradeLeg(network=sell.network, pool_address=sell.pool_address, price=sell.price, asset="USDC"),
            amount=amount,
            estimated_gas_cost=gas_cost,
            estimated_bridge_cost=bridge_cost,
            gross_profit=gross,
            net_profit=net,
            profit_percentage=profit_percentage(net, amount),
            profitable=False,
            created_at=self.clock(),
        )
        profitable = net > self.profit_threshold and validate_opportunity(opportunity, self.min_profit_pct)
        opportunity = replace(opportunity, profitable=profitable)
        self.log.debug(
            "[engine] %s buy=%d sell=%d gross=%d gas=%d bridge=%d net=%d profitable=%s",
            direction,
            buy.price,
            sell.price,
            gross,
            gas_cost,
            bridge_cost,
            net,
            profitable,
        )
        return opportunity

    async def find_opportunities(
        self, samples: Dict[str, PriceSample], amount: int, *, force: bool = False
    ) -> List[ArbitrageOpportunity]:
        found: List[ArbitrageOpportunity] = []
        for direction in DIRECTIONS:
            opportunity = await self.evaluate(direction, samples, amount, force=force)
            if opportunity is not None:
                found.append(opportunity)
        return found

    # ------------------------------------------------------------------
    # Planning
    # ------------------------------------------------------------------
    def _swap(self, network: str, token_in: str, token_out: str) -> ExecutionStep:
        venue = self.registry.get(network).venue
        return ExecutionStep(
            kind=STEP_SWAP,
            network=network,
            description=f"Swap {token_in} -> {token_out} on {venue.capitalize()} ({network})",
            token_in=token_in,
            token_out=token_out,
            venue=venue,
        )

    @staticmethod
    def _bridge(asset: str, src: str, dst: str) -> ExecutionStep:
        return ExecutionStep(
            kind=STEP_BRIDGE,
            network=src,
            description=f"Bridge {asset} from {src} to {dst}",
            token_in=asset,
            token_out=asset,
            destination=dst,
        )

    @staticmethod
    def _wait(asset: str, network: str) -> ExecutionStep:
        return ExecutionStep(kind=STEP_WAIT, network=network, description=f"Wait for {asset} to arrive on {network}")

    def build_plan(self, opportunity: ArbitrageOpportunity) -> ExecutionPlan:
        a, b = NETWORK_A, NETWORK_B
        if opportunity.direction == AVALANCHE_TO_SONIC:
            steps = [
                self._swap(a, "USDC", "USDT"),
                self._bridge("USDT", a, b),
                self._wait("USDT", b),
                self._swap(b, "USDT", "USDC"),
                self._bridge("USDC", b, a),
                self._wait("USDC", a),
            ]
        elif opportunity.direction == SONIC_TO_AVALANCHE:
            steps = [
                self._bridge("USDC", a, b),
                self._wait("USDC", b),
                self._swap(b, "USDC", "USDT"),
                self._bridge("USDT", b, a),
                self._wait("USDT", a),
                self._swap(a, "USDT", "USDC"),
            ]
        else:
            raise ValueError(f"unknown direction {opportunity.direction}")
        return ExecutionPlan(
            opportunity_id=opportunity.id,
            direction=opportunity.direction,
            steps=steps,
            estimated_gas_cost=opportunity.estimated_gas_cost,
            estimated_bridge_cost=self.bridges.estimate_arbitrage_bridge_costs(opportunity.direction).total_cost,
            estimated_duration=self.estimated_duration,
            expected_profit=opportunity.net_profit,
        )

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------
    async def execute(self, opportunity: ArbitrageOpportunity) -> ExecutionResult:
        """Run one opportunity.

        Raises :class:`ExecutionError` for admission conflicts
        (``EXECUTION_IN_PROGRESS``, nothing recorded) and for a failed
        re-validation (``PRICE_MOVED_AGAINST_US`` / ``QUOTES_UNAVAILABLE``,
        recorded as a failed result first).  Step failures do not raise;
        they come back as an unsuccessful result.
        """

        if self._executing:
            raise ExecutionError(
                "another execution is already in progress",
                kind=EXECUTION_IN_PROGRESS,
                context={"opportunity_id": opportunity.id},
                recoverable=True,
            )
        self._executing = True
        started = self.clock()
        try:
            plan = self.build_plan(opportunity)
            self.log.info(
                "[engine] executing %s direction=%s amount=%d expected_net=%d simulation=%s",
                opportunity.id,
                opportunity.direction,
                opportunity.amount,
                opportunity.net_profit,
                self.simulation_mode,
            )
            if self.simulation_mode:
                return self._record(await self._simulate_run(plan, opportunity, started))

            try:
                await self._revalidate(opportunity)
            except ExecutionError as exc:
                self._record(self._result(plan, started, success=False, net=0, error=str(exc)))
                raise

            run = await self.executor.run(plan, opportunity.amount)
            result = ExecutionResult(
                opportunity_id=opportunity.id,
                success=run.success,
                plan=plan,
                completed_steps=tuple(run.completed),
                failed_step=run.failed,
                net_profit=run.net_profit if run.success else 0,
                total_gas_cost=run.gas_cost,
                total_bridge_cost=plan.estimated_bridge_cost,
                execution_time=self.clock() - started,
                tx_refs=tuple(run.tx_refs),
                error=run.error,
            )
            return self._record(result)
        finally:
            self._executing = False

    async def _revalidate(self, opportunity: ArbitrageOpportunity) -> None:
        venue_a, venue_b = self._venues()
        quotes = await self.swaps.quote_all("USDC", "USDT", opportunity.amount)
        missing = [v for v in (venue_a, venue_b) if v not in quotes]
        if missing:
            raise ExecutionError(
                "cannot re-validate: venue quotes unavailable",
                kind=QUOTES_UNAVAILABLE,
                context={"opportunity_id": opportunity.id, "missing": missing},
            )
        detected = price_difference(opportunity.buy.price, opportunity.sell.price)
        current = price_difference(quotes[venue_a].amount_out, quotes[venue_b].amount_out)
        if current <= detected * self.revalidation_ratio:
            raise ExecutionError(
                "price moved against us",
                kind=PRICE_MOVED_AGAINST_US,
                context={
                    "opportunity_id": opportunity.id,
                    "detected_diff_pct": round(detected, 6),
                    "current_diff_pct": round(current, 6),
                },
            )
        self.log.debug("[engine] re-validated %s detected=%.4f%% current=%.4f%%", opportunity.id, detected, current)

    async def _simulate_run(
        self, plan: ExecutionPlan, opportunity: ArbitrageOpportunity, started: float
    ) -> ExecutionResult:
        await asyncio.sleep(self.simulation_delay)
        completed = []
        for step in plan.steps:
            step.advance(STATUS_EXECUTING)
            step.advance(STATUS_COMPLETED)
            completed.append(step.snapshot())
        return self._result(
            plan,
            started,
            success=True,
            net=opportunity.net_profit,
            completed=completed,
            gas=opportunity.estimated_gas_cost,
            simulated=True,
        )

    def _result(
        self,
        plan: ExecutionPlan,
        started: float,
        *,
        success: bool,
        net: int,
        completed: Sequence[ExecutionStep] = (),
        gas: int = 0,
        error: Optional[str] = None,
        simulated: bool = False,
    ) -> ExecutionResult:
        return ExecutionResult(
            opportunity_id=plan.opportunity_id,
            success=success,
            plan=plan,
            completed_steps=tuple(completed),
            failed_step=None,
            net_profit=net,
            total_gas_cost=gas,
            total_bridge_cost=plan.estimated_bridge_cost if success else 0,
            execution_time=self.clock() - started,
            tx_refs=(),
            error=error,
            simulated=simulated,
        )

    def _record(self, result: ExecutionResult) -> ExecutionResult:
        self._history.append(result)
        if result.success:
            self.log.info(
                "[engine] %s completed net=%d time=%.1fs",
                result.opportunity_id,
                result.net_profit,
                result.execution_time,
                extra=ctx(**result.to_dict()),
            )
        else:
            self.log.warning(
                "[engine] %s failed: %s",
                result.opportunity_id,
                result.error,
                extra=ctx(**result.to_dict()),
            )
        return result

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------
    async def simulate(self, opportunity: ArbitrageOpportunity) -> Dict[str, Any]:
        """Dry feasibility check: projected profit plus a list of risks."""

        risks: List[str] = []
        spread = price_difference(opportunity.buy.price, opportunity.sell.price)
        if spread < 0.1:
            risks.append(f"low price difference {spread:.4f}%")
        if opportunity.net_profit <= 0:
            risks.append("net profit after costs is not positive")
        if opportunity.estimated_bridge_cost > opportunity.gross_profit:
            risks.append("bridge costs exceed gross profit")
        plan = self.build_plan(opportunity)
        for step in plan.steps:
            if step.kind != STEP_BRIDGE:
                continue
            src = self.registry.get(step.network)
            dst = self.registry.get(step.destination)
            strategy = self.bridges.strategy(step.token_in, src.chain_id, dst.chain_id)
            if not strategy.available:
                risks.append(strategy.reason)
        for venue_name, token_in, token_out, amount in self._cost_legs(opportunity.direction, opportunity.amount):
            if not self.swaps.venue(venue_name).is_available(token_in, token_out, amount):
                risks.append(f"{venue_name} cannot swap {amount} {token_in} -> {token_out}")
        return {
            "opportunity_id": opportunity.id,
            "feasible": opportunity.net_profit > 0 and not any("cannot swap" in r for r in risks),
            "estimated_profit": opportunity.net_profit,
            "estimated_duration": plan.estimated_duration,
            "steps": [s.description for s in plan.steps],
            "risks": risks,
        }

    def history(self, limit: Optional[int] = None) -> List[ExecutionResult]:
        newest_first = list(reversed(self._history))
        return newest_first[:limit] if limit else newest_first

    def stats(self) -> Dict[str, Any]:
        total = len(self._history)
        successful = [r for r in self._history if r.success]
        return {
            "total_executions": total,
            "successful": len(successful),
            "failed": total - len(successful),
            "success_rate": len(successful) / total * 100 if total else 0.0,
            "total_profit": sum(r.net_profit for r in successful),
            "average_execution_time": sum(r.execution_time for r in self._history) / total if total else 0.0,
        }

    async def health_check(self) -> Dict[str, Any]:
        swaps = await self.swaps.health_check()
        bridges = await self.bridges.health_check()
        healthy = any(v.get("healthy") for v in swaps.values()) and any(v.get("healthy") for v in bridges.values())
        return {
            "healthy": healthy,
            "executing": self._executing,
            "simulation_mode": self.simulation_mode,
            "executions": len(self._history),
            "swaps": swaps,
            "bridges": bridges,
        }


__all__ = ["OpportunityEngine"]
