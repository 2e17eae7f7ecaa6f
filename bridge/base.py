"""Bridge provider capability.

A provider quotes, initiates and monitors a transfer of one stablecoin
between the two chains.  Initiation returns as soon as the source-chain
transaction is accepted; completion is observed separately through
:meth:`BridgeProvider.monitor`, which the coordinator bounds with a hard
timeout.
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Sequence

from core.errors import UNSUPPORTED_ROUTE, BridgeError
from core.models import BridgeQuote, BridgeTransfer
from scanner.registry import Network, Registry

log = logging.getLogger(__name__)

DEBRIDGE = "debridge"
CCIP = "ccip"
SIMULATION = "simulation"

ROUTE_PROBE_AMOUNT = 1_000_000


class BridgeProvider(ABC):
    name: str = ""
    default_assets: Sequence[str] = ("USDC", "USDT")

    def __init__(
        self,
        *,
        registry: Registry,
        config: Optional[Dict[str, Any]] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.registry = registry
        self.config = config or {}
        self.log = logger or log
        self.supported_assets = tuple(a.upper() for a in self.config.get("supported_assets", self.default_assets))
        self.supported_chains = tuple(
            int(c) for c in self.config.get("supported_chains", [n.chain_id for n in registry.networks.values()])
        )
        self.timeout = float(self.config.get("timeout_sec", 300))
        self.average_time = float(self.config.get("average_time_sec", 180))

    def supports(self, from_chain: int, to_chain: int, asset: str) -> bool:
        return (
            from_chain != to_chain
            and from_chain in self.supported_chains
            and to_chain in self.supported_chains
            and asset.upper() in self.supported_assets
        )

    def _network(self, chain_id: int) -> Network:
        try:
            return self.registry.by_chain_id(chain_id)
        except KeyError:
            raise BridgeError(f"{self.name}: unknown chain {chain_id}", context={"chain_id": chain_id}) from None

    def _check_route(self, from_chain: int, to_chain: int, asset: str) -> None:
        if not self.supports(from_chain, to_chain, asset):
            raise BridgeError(
                f"{self.name} does not support {asset} {from_chain} -> {to_chain}",
                kind=UNSUPPORTED_ROUTE,
                context={"provider": self.name, "from_chain": from_chain, "to_chain": to_chain, "asset": asset},
            )

    @abstractmethod
    async def quote(self, from_chain: int, to_chain: int, amount: int, asset: str) -> BridgeQuote:
        ...

    @abstractmethod
    async def execute(
        self, from_chain: int, to_chain: int, amount: int, asset: str, recipient: Optional[str] = None
    ) -> BridgeTransfer:
        ...

    @abstractmethod
    async def monitor(self, order_ref: str, timeout: Optional[float] = None) -> Dict[str, Any]:
        """Block until the transfer completes; raise :class:`BridgeError` otherwise."""

    async def is_route_available(self, from_chain: int, to_chain: int, asset: str) -> bool:
        if not self.supports(from_chain, to_chain, asset):
            return False
        try:
            await self.quote(from_chain, to_chain, ROUTE_PROBE_AMOUNT, asset)
        except BridgeError as exc:
            self.log.debug("[bridge] %s route probe failed: %s", self.name, exc)
            return False
        return True

    async def close(self) -> None:
        return None


__all__ = ["BridgeProvider", "DEBRIDGE", "CCIP", "SIMULATION", "ROUTE_PROBE_AMOUNT"]
