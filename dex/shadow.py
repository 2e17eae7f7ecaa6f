"""Shadow USDC/USDT pool on Sonic (0.08 % fee)."""
from __future__ import annotations

from dex.base import SwapVenue

SHADOW = "shadow"


class ShadowVenue(SwapVenue):
    name = SHADOW
    fee_bps = 8
    gas_estimate = 85_000
    gas_limit = 100_000
    min_liquidity = 10 ** 14


__all__ = ["ShadowVenue", "SHADOW"]
