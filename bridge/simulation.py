"""Network-free bridge used in simulation mode and as the execution fallback."""
from __future__ import annotations

import asyncio
import itertools
import random
import time
from typing import Any, Dict, Optional

from core.errors import BridgeError
from core.models import BridgeQuote, BridgeTransfer
from bridge.base import SIMULATION, BridgeProvider

SIMULATED_LOSS_DIVISOR = 1000  # 0.1 %
SIMULATED_SLIPPAGE_PCT = 0.1


class SimulationBridge(BridgeProvider):
    name = SIMULATION

    def __init__(self, *, rng: Optional[random.Random] = None, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.rng = rng or random.Random()
        self.fee_wei = int(self.config.get("fee_wei", 10 ** 15))
        self.min_dwell = float(self.config.get("min_dwell_sec", 60))
        self.max_dwell = float(self.config.get("max_dwell_sec", 180))
        self._orders: Dict[str, int] = {}
        self._seq = itertools.count(1)

    def supports(self, from_chain: int, to_chain: int, asset: str) -> bool:
        return from_chain != to_chain

    @staticmethod
    def simulated_output(amount: int) -> int:
        return amount - amount // SIMULATED_LOSS_DIVISOR

    async def quote(self, from_chain: int, to_chain: int, amount: int, asset: str) -> BridgeQuote:
        try:
            cost = self.registry.by_chain_id(from_chain).native_cost(self.fee_wei)
        except KeyError:
            cost = 0
        return BridgeQuote(
            provider=self.name,
            from_chain=from_chain,
            to_chain=to_chain,
            asset=asset.upper(),
            amount_in=amount,
            estimated_output=self.simulated_output(amount),
            estimated_cost=cost,
            estimated_time=self.average_time,
            slippage=SIMULATED_SLIPPAGE_PCT,
        )

    async def execute(
        self, from_chain: int, to_chain: int, amount: int, asset: str, recipient: Optional[str] = None
    ) -> BridgeTransfer:
        stamp = int(time.time() * 1000)
        seq = next(self._seq)
        tx_ref = f"0x{stamp:048x}{seq:016x}"
        order_ref = f"sim_{stamp}_{seq}"
        output = self.simulated_output(amount)
        self._orders[order_ref] = output
        self.log.info(
            "[bridge] simulation %s %d -> %d amount=%d out=%d order=%s",
            asset,
            from_chain,
            to_chain,
            amount,
            output,
            order_ref,
        )
        return BridgeTransfer(tx_ref=tx_ref, order_ref=order_ref, estimated_output=output)

    async def monitor(self, order_ref: str, timeout: Optional[float] = None) -> Dict[str, Any]:
        if order_ref not in self._orders:
            raise BridgeError(f"unknown simulated order {order_ref}", context={"order_ref": order_ref})
        dwell = self.rng.uniform(self.min_dwell, self.max_dwell)
        try:
            await asyncio.sleep(dwell)
        finally:
            output = self._orders.pop(order_ref, 0)
        self.log.info("[bridge] simulation order=%s completed after %.1fs", order_ref, dwell)
        return {"status": "completed", "order_ref": order_ref, "output": output, "elapsed": dwell}


__all__ = ["SimulationBridge", "SIMULATED_LOSS_DIVISOR"]
