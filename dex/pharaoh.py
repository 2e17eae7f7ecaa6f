"""Pharaoh USDC/USDT pool on Avalanche (0.05 % fee tier)."""
from __future__ import annotations

from typing import Any, Dict

from dex.base import SwapVenue

PHARAOH = "pharaoh"


class PharaohVenue(SwapVenue):
    name = PHARAOH
    fee_bps = 5
    gas_estimate = 872_000
    gas_limit = 900_000
    min_liquidity = 10 ** 15
    pool_fee_tier = 500

    async def pool_info(self) -> Dict[str, Any]:
        health = await self.health()
        return {
            "venue": self.name,
            "network": self.network.name,
            "address": self.network.pool.address,
            "fee_tier": self.pool_fee_tier,
            "liquidity": health["liquidity"],
            "price": health["price"],
        }


__all__ = ["PharaohVenue", "PHARAOH"]
