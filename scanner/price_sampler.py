"""Pool price sampling for the two concentrated-liquidity pools.

Each sample reads ``slot0``, liquidity and the token pair of a pool in
one round trip and converts the Q64.96 square-root price into an integer
price with six implied decimals.  Samples are kept in a bounded per-pool
history (oldest evicted first) that feeds the freshness checks and the
time-weighted average price.  The supervisor drives sampling through
:meth:`PriceSampler.sample_all` once per tick.
"""
from __future__ import annotations

import logging
import time
from collections import deque
from dataclasses import replace
from typing import Callable, Deque, Dict, List, Optional, Tuple

from core.errors import PriceError
from core.models import PARITY_PRICE, PRICE_DECIMALS, PriceSample
from core.profit import price_difference, twap
from core.result import gather_settled
from scanner.registry import Network, Registry

log = logging.getLogger(__name__)

Q96 = 2 ** 96
Q192 = 2 ** 192
INVERSE_SCALE = 10 ** (2 * PRICE_DECIMALS)
DEFAULT_BAND = (500_000, 2_000_000)


def _primary_price(sqrt_price_x96: int, decimals0: int, decimals1: int) -> int:
    numerator = sqrt_price_x96 * sqrt_price_x96 * (10 ** PRICE_DECIMALS)
    denominator = Q192
    shift = decimals0 - decimals1
    if shift >= 0:
        numerator *= 10 ** shift
    else:
        denominator *= 10 ** (-shift)
    return numerator // denominator


def _integer_ratio_price(sqrt_price_x96: int) -> int:
    squared = sqrt_price_x96 * sqrt_price_x96
    ratio = squared // Q192
    if ratio == 0:
        return (Q192 // squared) * (10 ** PRICE_DECIMALS)
    return ratio * (10 ** PRICE_DECIMALS)


def sqrt_price_to_price(
    sqrt_price_x96: int,
    decimals0: int = PRICE_DECIMALS,
    decimals1: int = PRICE_DECIMALS,
    *,
    band: Tuple[int, int] = DEFAULT_BAND,
) -> int:
    """Convert a pool's ``sqrtPriceX96`` to a 6-decimal integer price.

    A result outside ``band`` is treated as suspect and the coarser
    integer-ratio conversion is tried instead; parity is the last resort.
    """

    if sqrt_price_x96 <= 0:
        return PARITY_PRICE
    try:
        primary = _primary_price(sqrt_price_x96, decimals0, decimals1)
        low, high = band
        if low <= primary <= high:
            return primary
        alternative = _integer_ratio_price(sqrt_price_x96)
        log.debug(
            "[price] primary=%d outside band %d..%d, alternative=%d",
            primary,
            low,
            high,
            alternative,
        )
        if alternative > 0:
            return alternative
        if primary > 0:
            return primary
    except (ArithmeticError, ValueError) as exc:
        log.warning("[price] sqrt price conversion failed sqrt=%s err=%s", sqrt_price_x96, exc)
    return PARITY_PRICE


def inverse_price(price: int) -> int:
    return INVERSE_SCALE // price if price > 0 else 0


class PriceSampler:
    """Sample both pools and keep a bounded, per-pool price history."""

    def __init__(
        self,
        *,
        registry: Registry,
        clients: Dict[str, object],
        config: Optional[Dict[str, object]] = None,
        logger: Optional[logging.Logger] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.registry = registry
        self.clients = clients
        self.config = config or {}
        self.log = logger or log
        self.clock = clock
        self.staleness = float(self.config.get("staleness_sec", 30))
        self.history_size = int(self.config.get("history_size", 100))
        self.twap_window = float(self.config.get("twap_window_sec", 300))
        self.band = (
            int(self.config.get("sanity_min", DEFAULT_BAND[0])),
            int(self.config.get("sanity_max", DEFAULT_BAND[1])),
        )

        self._history: Dict[str, Deque[PriceSample]] = {}

    # ------------------------------------------------------------------
    # Sampling
    # ------------------------------------------------------------------
    async def sample(self, network_name: str) -> PriceSample:
        network = self.registry.get(network_name)
        pool = network.pool
        context = {"network": network_name, "pool": pool.address}
        if not pool.address:
            raise PriceError(f"no pool address configured for {network_name}", context=context)
        client = self.clients.get(network_name)
        if client is None:
            raise PriceError(f"no chain client for {network_name}", context=context)

        try:
            state = await client.read_pool_state(pool.address)
        except Exception as exc:
            raise PriceError(f"failed to read pool state on {network_name}: {exc}", context=context) from exc

        dec0, dec1 = self._pool_decimals(network, state.token0, state.token1)
        price = sqrt_price_to_price(state.sqrt_price_x96, dec0, dec1, band=self.band)
        sample = PriceSample(
            pool_key=pool.venue,
            network=network_name,
            pool_address=pool.address,
            price=price,
            inverse_price=inverse_price(price),
            liquidity=state.liquidity,
            sqrt_price_x96=state.sqrt_price_x96,
            block_number=state.block_number,
            timestamp=self.clock(),
        )
        self.record(sample)
        self.log.debug(
            "[price] %s price=%d liquidity=%d block=%d",
            sample.pool_key,
            sample.price,
            sample.liquidity,
            sample.block_number,
        )
        return sample

    async def sample_all(self) -> Dict[str, PriceSample]:
        """Sample every configured network; fail if any of them fails."""

        names = list(self.registry.networks)
        outcomes = await gather_settled(*(self.sample(name) for name in names))
        failed = {name: str(o.error) for name, o in zip(names, outcomes) if not o.ok}
        if failed:
            raise PriceError("price sampling failed", context={"failed": failed})
        return {name: o.value for name, o in zip(names, outcomes)}

    def record(self, sample: PriceSample) -> None:
        history = self._history.get(sample.pool_key)
        if history is None:
            history = deque(maxlen=self.history_size)
            self._history[sample.pool_key] = history
        history.append(sample)

    @staticmethod
    def _pool_decimals(network: Network, token0: str, token1: str) -> Tuple[int, int]:
        by_address = {
            (tok.address or "").lower(): tok.decimals for tok in network.tokens.values() if tok.address
        }
        return (
            by_address.get((token0 or "").lower(), PRICE_DECIMALS),
            by_address.get((token1 or "").lower(), PRICE_DECIMALS),
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def is_stale(self, sample: PriceSample) -> bool:
        return sample.age(self.clock()) > self.staleness

    def latest(self, pool_key: str) -> Optional[PriceSample]:
        history = self._history.get(pool_key)
        if not history:
            return None
        sample = history[-1]
        if self.is_stale(sample):
            self.log.warning(
                "[price] %s sample is stale age=%.1fs threshold=%.1fs",
                pool_key,
                sample.age(self.clock()),
                self.staleness,
            )
            return replace(sample, stale=True)
        return sample

    def latest_all(self) -> Dict[str, Optional[PriceSample]]:
        return {name: self.latest(n.pool.venue) for name, n in self.registry.networks.items()}

    def history(self, pool_key: str, max_age: Optional[float] = None) -> List[PriceSample]:
        samples = list(self._history.get(pool_key, ()))
        if max_age is None:
            return samples
        now = self.clock()
        return [s for s in samples if now - s.timestamp <= max_age]

    def twap(self, pool_key: str, window: Optional[float] = None) -> Optional[int]:
        window = self.twap_window if window is None else window
        points = [(s.price, s.timestamp) for s in self._history.get(pool_key, ())]
        return twap(points, window, self.clock())

    def price_difference(self) -> Optional[float]:
        latest = [s for s in self.latest_all().values() if s is not None]
        if len(latest) < 2:
            return None
        return price_difference(latest[0].price, latest[1].price)

    def is_fresh(self, max_age: Optional[float] = None) -> bool:
        limit = self.staleness if max_age is None else max_age
        now = self.clock()
        for network in self.registry.networks.values():
            history = self._history.get(network.pool.venue)
            if not history or now - history[-1].timestamp > limit:
                return False
        return True

    async def pool_info(self, network_name: str) -> Dict[str, object]:
        network = self.registry.get(network_name)
        sample = await self.sample(network_name)
        return {
            "network": network_name,
            "venue": network.pool.venue,
            "address": network.pool.address,
            "fee_bps": network.pool.fee_bps,
            "price": sample.price,
            "inverse_price": sample.inverse_price,
            "liquidity": sample.liquidity,
            "block_number": sample.block_number,
        }


__all__ = ["PriceSampler", "sqrt_price_to_price", "inverse_price", "Q96", "Q192"]
