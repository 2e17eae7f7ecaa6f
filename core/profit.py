"""Profit arithmetic.

Pure functions only, so they can be unit-tested in isolation and composed
by the opportunity engine.  Money stays in integer base units the whole
way; floats appear only in percentages, and ``Decimal`` is used where a
fractional USD value has to be turned into units.
"""
from __future__ import annotations

from decimal import ROUND_DOWN, Decimal
from typing import Iterable, Optional, Tuple, Union

from core.models import PRICE_DECIMALS, ArbitrageOpportunity

FEE_DENOMINATOR = 10_000
WEI_PER_NATIVE = 10 ** 18
GWEI = 10 ** 9

Number = Union[int, float, str, Decimal]


def _dec(value: Number) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value))


def price_difference(price_a: int, price_b: int) -> float:
    """Relative spread between two prices, in percent of the lower one.

    Symmetric in its arguments and never negative.
    """

    low = min(price_a, price_b)
    if low <= 0:
        return 0.0
    return abs(price_a - price_b) / low * 100


def gross_profit(buy_price: int, sell_price: int, amount: int, decimals: int = PRICE_DECIMALS) -> int:
    if sell_price <= buy_price or amount <= 0:
        return 0
    return amount * (sell_price - buy_price) // (10 ** decimals)


def net_profit(gross: int, gas_cost: int, bridge_cost: int = 0, slippage_cost: int = 0) -> int:
    return max(0, gross - gas_cost - bridge_cost - slippage_cost)


def profit_percentage(net: int, investment: int) -> float:
    if investment <= 0:
        return 0.0
    return net / investment * 100


def apply_fee(amount: int, fee_bps: int) -> int:
    return amount * (FEE_DENOMINATOR - fee_bps) // FEE_DENOMINATOR


def twap(points: Iterable[Tuple[int, float]], window: float, now: float) -> Optional[int]:
    """Time-weighted average of ``(price, timestamp)`` points.

    Each point is weighted by ``window - age``, so fresher samples count
    more and samples older than ``window`` are ignored.  Returns ``None``
    when nothing qualifies.
    """

    weighted = 0.0
    total_weight = 0.0
    for price, ts in points:
        age = now - ts
        if age > window:
            continue
        weight = window - max(age, 0.0)
        weighted += price * weight
        total_weight += weight
    if total_weight <= 0:
        return None
    return int(weighted / total_weight)


def usd_to_units(usd: Number, decimals: int = PRICE_DECIMALS) -> int:
    return int((_dec(usd) * (10 ** decimals)).to_integral_value(rounding=ROUND_DOWN))


def native_to_asset_units(wei: int, native_usd: Number, decimals: int = PRICE_DECIMALS) -> int:
    """Convert a native-currency amount (wei) to stablecoin base units."""

    if wei <= 0:
        return 0
    value = Decimal(wei) * _dec(native_usd) * (10 ** decimals) / WEI_PER_NATIVE
    return int(value.to_integral_value(rounding=ROUND_DOWN))


def gas_cost_units(gas_used: int, gas_price_wei: int, native_usd: Number, decimals: int = PRICE_DECIMALS) -> int:
    return native_to_asset_units(gas_used * gas_price_wei, native_usd, decimals)


def format_amount(amount: int, decimals: int = PRICE_DECIMALS, symbol: str = "") -> str:
    value = Decimal(amount) / (10 ** decimals)
    text = f"{value:.{decimals}f}"
    return f"{text} {symbol}" if symbol else text


def validate_opportunity(opportunity: ArbitrageOpportunity, min_profit_pct: float = 0.1) -> bool:
    return (
        opportunity.net_profit > 0
        and opportunity.profit_percentage >= min_profit_pct
        and opportunity.amount > 0
    )


__all__ = [
    "FEE_DENOMINATOR",
    "GWEI",
    "WEI_PER_NATIVE",
    "price_difference",
    "gross_profit",
    "net_profit",
    "profit_percentage",
    "apply_fee",
    "twap",
    "usd_to_units",
    "native_to_asset_units",
    "gas_cost_units",
    "format_amount",
    "validate_opportunity",
]
