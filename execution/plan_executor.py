"""Sequential plan execution.

Steps run strictly one after another: a swap consumes the amount the
previous step produced, a bridge is initiated and then awaited until its
monitor reports completion, and a wait step pauses briefly for balances
to settle.  The first failing step stops the plan; everything completed
so far is reported alongside it.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from app_logging import ctx
from core.models import (
    STATUS_COMPLETED,
    STATUS_EXECUTING,
    STATUS_FAILED,
    STEP_BRIDGE,
    STEP_SWAP,
    ExecutionPlan,
    ExecutionStep,
)
from scanner.registry import Registry

log = logging.getLogger(__name__)


@dataclass
class PlanRun:
    """Running totals while a plan executes."""

    amount_in: int
    current_amount: int
    gas_cost: int = 0
    tx_refs: List[str] = field(default_factory=list)
    completed: List[ExecutionStep] = field(default_factory=list)
    failed: Optional[ExecutionStep] = None
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.failed is None

    @property
    def net_profit(self) -> int:
        return self.current_amount - self.amount_in - self.gas_cost


class PlanExecutor:
    def __init__(
        self,
        *,
        registry: Registry,
        swaps: Any,
        bridges: Any,
        config: Optional[Dict[str, Any]] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.registry = registry
        self.swaps = swaps
        self.bridges = bridges
        self.config = config or {}
        self.log = logger or log
        self.step_wait = float(self.config.get("step_wait_sec", 1.0))

    async def run(self, plan: ExecutionPlan, amount: int) -> PlanRun:
        run = PlanRun(amount_in=amount, current_amount=amount)
        total = len(plan.steps)
        for index, step in enumerate(plan.steps, start=1):
            step.advance(STATUS_EXECUTING)
            self.log.info("[executor] step %d/%d %s", index, total, step.description)
            try:
                gas_used = await self._run_step(step, run)
            except Exception as exc:
                step.advance(STATUS_FAILED)
                run.failed = step.snapshot()
                run.error = str(exc)
                self.log.error(
                    "[executor] step %d/%d failed: %s tx=%s err=%s",
                    index,
                    total,
                    step.description,
                    step.tx_ref,
                    exc,
                    extra=ctx(**getattr(exc, "context", {})),
                )
                break
            step.advance(STATUS_COMPLETED, gas_used=gas_used)
            run.completed.append(step.snapshot())
        return run

    @staticmethod
    def _submitted(step: ExecutionStep, run: PlanRun, tx_ref: Optional[str]) -> None:
        # recorded as soon as the transaction exists, before waiting on it
        if tx_ref:
            step.advance(STATUS_EXECUTING, tx_ref=tx_ref)
            run.tx_refs.append(tx_ref)

    async def _run_step(self, step: ExecutionStep, run: PlanRun) -> Optional[int]:
        if step.kind == STEP_SWAP:
            venue = self.swaps.venue_for_network(step.network)
            result = await self.swaps.execute(venue.name, step.token_in, step.token_out, run.current_amount)
            self._submitted(step, run, result.tx_ref)
            run.current_amount = result.amount_out
            run.gas_cost += self.registry.get(step.network).gas_cost(result.gas_used)
            return result.gas_used

        if step.kind == STEP_BRIDGE:
            src = self.registry.get(step.network)
            dst = self.registry.get(step.destination)
            execution = await self.bridges.execute(step.token_in, src.chain_id, dst.chain_id, run.current_amount)
            self._submitted(step, run, execution.tx_ref)
            run.current_amount = execution.estimated_output
            await self.bridges.monitor(execution)
            return None

        await asyncio.sleep(self.step_wait)
        return None


__all__ = ["PlanExecutor", "PlanRun"]
