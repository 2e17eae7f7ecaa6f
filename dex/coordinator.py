"""Swap coordinator: one front for both venues.

Quotes fan out to every venue concurrently and tolerate partial failure;
the caller gets whatever subset answered.  Execution re-quotes for the
price impact figure, delegates to the venue and reshapes the outcome into
the uniform :class:`~core.models.SwapResult`.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from app_logging import ctx
from core.errors import NO_QUOTES, SwapError
from core.models import SwapQuote, SwapResult
from core.result import gather_keyed
from dex.base import SwapVenue
from dex.pharaoh import PHARAOH, PharaohVenue
from dex.shadow import SHADOW, ShadowVenue
from scanner.registry import Registry

log = logging.getLogger(__name__)

VENUE_CLASSES = {PHARAOH: PharaohVenue, SHADOW: ShadowVenue}

# Used when a leg cannot be quoted: 0.004 native per leg, 1 % impact.
FALLBACK_LEG_GAS_WEI = 4 * 10 ** 15
FALLBACK_LEG_IMPACT_PCT = 1.0


@dataclass
class SwapCostEstimate:
    total_gas_cost: int
    total_price_impact: float
    breakdown: List[Dict[str, Any]] = field(default_factory=list)


def build_venues(
    registry: Registry, clients: Dict[str, Any], config: Optional[Dict[str, Any]] = None, logger: Optional[logging.Logger] = None
) -> Dict[str, SwapVenue]:
    venues: Dict[str, SwapVenue] = {}
    for name, network in registry.networks.items():
        cls = VENUE_CLASSES.get(network.venue)
        if cls is None:
            log.warning("[dex] no venue implementation for %s on %s", network.venue, name)
            continue
        venues[network.venue] = cls(network=network, client=clients.get(name), config=config, logger=logger)
    return venues


class SwapCoordinator:
    def __init__(self, *, venues: Dict[str, SwapVenue], logger: Optional[logging.Logger] = None) -> None:
        self.venues = venues
        self.log = logger or log

    def venue(self, name: str) -> SwapVenue:
        try:
            return self.venues[name]
        except KeyError:
            raise SwapError(f"unknown venue {name}", context={"venue": name}) from None

    def venue_for_network(self, network: str) -> SwapVenue:
        for venue in self.venues.values():
            if venue.network.name == network:
                return venue
        raise SwapError(f"no venue on network {network}", context={"network": network})

    def _select(self, networks: Optional[Iterable[str]]) -> Dict[str, SwapVenue]:
        if networks is None:
            return dict(self.venues)
        wanted = set(networks)
        return {name: v for name, v in self.venues.items() if v.network.name in wanted}

    # ------------------------------------------------------------------
    # Quotes
    # ------------------------------------------------------------------
    async def quote_all(
        self, token_in: str, token_out: str, amount: int, networks: Optional[Iterable[str]] = None
    ) -> Dict[str, SwapQuote]:
        """Quote on every (selected) venue; failed venues are left out."""

        selected = self._select(networks)
        outcomes = await gather_keyed({name: v.quote(token_in, token_out, amount) for name, v in selected.items()})
        quotes: Dict[str, SwapQuote] = {}
        for name, outcome in outcomes.items():
            if outcome.ok:
                quotes[name] = outcome.value
            else:
                self.log.warning("[dex] quote failed venue=%s err=%s", name, outcome.error)
        return quotes

    async def best(
        self, token_in: str, token_out: str, amount: int, networks: Optional[Iterable[str]] = None
    ) -> SwapQuote:
        quotes = await self.quote_all(token_in, token_out, amount, networks)
        if not quotes:
            raise SwapError(
                "no venue returned a quote",
                kind=NO_QUOTES,
                context={"token_in": token_in, "token_out": token_out, "amount": amount},
                recoverable=True,
            )
        return sorted(quotes.values(), key=lambda q: q.amount_out, reverse=True)[0]

    async def compare_prices(self, token_in: str, token_out: str, amount: int) -> Dict[str, Any]:
        quotes = await self.quote_all(token_in, token_out, amount)
        if not quotes:
            return {"quotes": {}, "best": None, "worst": None, "spread_pct": 0.0}
        ranked = sorted(quotes.values(), key=lambda q: q.amount_out, reverse=True)
        best, worst = ranked[0], ranked[-1]
        spread = (best.amount_out - worst.amount_out) / worst.amount_out * 100 if worst.amount_out else 0.0
        return {"quotes": quotes, "best": best.venue, "worst": worst.venue, "spread_pct": spread}

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------
    async def execute(self, venue_name: str, token_in: str, token_out: str, amount: int) -> SwapResult:
        venue = self.venue(venue_name)
        context = {"venue": venue_name, "token_in": token_in, "token_out": token_out, "amount": amount}
        try:
            quote = await venue.quote(token_in, token_out, amount)
            execution = await venue.execute(token_in, token_out, amount)
        except SwapError as exc:
            self.log.error("[dex] swap failed venue=%s err=%s", venue_name, exc, extra=ctx(**exc.context))
            raise
        except Exception as exc:
            raise SwapError(f"{venue_name} swap failed: {exc}", context=context) from exc
        return SwapResult(
            venue=venue_name,
            network=venue.network.name,
            tx_ref=execution.tx_ref,
            amount_in=amount,
            amount_out=execution.amount_out,
            gas_used=execution.gas_used,
            price_impact=quote.price_impact,
        )

    # ------------------------------------------------------------------
    # Scoring and costs
    # ------------------------------------------------------------------
    def health_score(self, quote: SwapQuote) -> int:
        score = 100
        if quote.price_impact > 2:
            score -= 30
        elif quote.price_impact > 1:
            score -= 15
        elif quote.price_impact > 0.5:
            score -= 5
        venue = self.venues.get(quote.venue)
        if venue is not None:
            gas_usd = venue.network.gas_cost(quote.gas_estimate) / 1_000_000
            if gas_usd > 10:
                score -= 20
            elif gas_usd > 5:
                score -= 10
        return max(0, score)

    async def available_routes(self, token_in: str, token_out: str, amount: int) -> List[Dict[str, Any]]:
        quotes = await self.quote_all(token_in, token_out, amount)
        routes = []
        for name, quote in quotes.items():
            if not self.venues[name].is_available(token_in, token_out, amount):
                continue
            routes.append(
                {
                    "venue": name,
                    "network": quote.network,
                    "amount_out": quote.amount_out,
                    "price_impact": quote.price_impact,
                    "health_score": self.health_score(quote),
                }
            )
        routes.sort(key=lambda r: r["health_score"], reverse=True)
        return routes

    async def estimate_swap_costs(self, legs: Sequence[Tuple[str, str, str, int]]) -> SwapCostEstimate:
        """Gas and impact for ``(venue, token_in, token_out, amount)`` legs.

        A leg that cannot be quoted contributes a fixed fallback cost
        instead of failing the whole estimate.
        """

        estimate = SwapCostEstimate(total_gas_cost=0, total_price_impact=0.0)
        for venue_name, token_in, token_out, amount in legs:
            venue = self.venues.get(venue_name)
            try:
                if venue is None:
                    raise SwapError(f"unknown venue {venue_name}")
                quote = await venue.quote(token_in, token_out, amount)
                gas_cost = venue.network.gas_cost(quote.gas_estimate)
                impact = quote.price_impact
            except SwapError as exc:
                self.log.warning("[dex] cost estimate fallback venue=%s err=%s", venue_name, exc)
                gas_cost = venue.network.native_cost(FALLBACK_LEG_GAS_WEI) if venue else 0
                impact = FALLBACK_LEG_IMPACT_PCT
            estimate.total_gas_cost += gas_cost
            estimate.total_price_impact += impact
            estimate.breakdown.append({"venue": venue_name, "gas_cost": gas_cost, "price_impact": impact})
        return estimate

    async def health_check(self) -> Dict[str, Dict[str, Any]]:
        async def _probe(venue: SwapVenue) -> Dict[str, Any]:
            started = time.perf_counter()
            health = await venue.health()
            health["latency_ms"] = round((time.perf_counter() - started) * 1000, 1)
            return health

        outcomes = await gather_keyed({name: _probe(v) for name, v in self.venues.items()})
        report: Dict[str, Dict[str, Any]] = {}
        for name, outcome in outcomes.items():
            report[name] = outcome.value if outcome.ok else {"healthy": False, "issues": [str(outcome.error)]}
        return report


__all__ = ["SwapCoordinator", "SwapCostEstimate", "build_venues", "VENUE_CLASSES"]
