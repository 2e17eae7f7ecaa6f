"""In-memory registry of the two networks, their pools and tokens.

Everything chain-specific the bot needs (chain ids, token addresses and
decimals, pool and router addresses, gas pricing used for cost
conversion) is resolved here once from configuration.  The sampler, the
swap venues and the bridge providers look networks up by name or chain
id instead of reading configuration themselves.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, List, Optional

from core.profit import GWEI, WEI_PER_NATIVE, gas_cost_units, native_to_asset_units


@dataclass
class Token:
    address: Optional[str]
    symbol: str
    decimals: int


@dataclass
class Pool:
    address: Optional[str]
    venue: str
    network: str
    fee_bps: int


@dataclass
class Network:
    name: str
    chain_id: int
    rpc_url: Optional[str]
    native_symbol: str
    native_usd: float
    gas_price_gwei: float
    pool: Pool
    router: Optional[str] = None
    ccip_router: Optional[str] = None
    tokens: Dict[str, Token] = field(default_factory=dict)
    min_native_balance: float = 0.0

    @property
    def venue(self) -> str:
        return self.pool.venue

    @property
    def gas_price_wei(self) -> int:
        return int(self.gas_price_gwei * GWEI)

    @property
    def min_native_balance_wei(self) -> int:
        return int(Decimal(str(self.min_native_balance)) * WEI_PER_NATIVE)

    def token(self, symbol: str) -> Token:
        try:
            return self.tokens[symbol.upper()]
        except KeyError:
            raise KeyError(f"token {symbol} not configured on {self.name}") from None

    def token_address(self, symbol: str) -> Optional[str]:
        tok = self.tokens.get(symbol.upper())
        return tok.address if tok else None

    def gas_cost(self, gas_used: int) -> int:
        """Gas used at the configured gas price, in stablecoin base units."""

        return gas_cost_units(gas_used, self.gas_price_wei, self.native_usd)

    def native_cost(self, wei: int) -> int:
        return native_to_asset_units(wei, self.native_usd)


@dataclass
class Registry:
    networks: Dict[str, Network] = field(default_factory=dict)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------
    def add_network(self, network: Network) -> None:
        self.networks[network.name] = network

    def get(self, name: str) -> Network:
        try:
            return self.networks[name]
        except KeyError:
            raise KeyError(f"unknown network {name}") from None

    def by_chain_id(self, chain_id: int) -> Network:
        for network in self.networks.values():
            if network.chain_id == chain_id:
                return network
        raise KeyError(f"unknown chain id {chain_id}")

    def by_venue(self, venue: str) -> Network:
        for network in self.networks.values():
            if network.venue == venue:
                return network
        raise KeyError(f"no network hosts venue {venue}")

    def pools(self) -> List[Pool]:
        return [n.pool for n in self.networks.values()]

    # ------------------------------------------------------------------
    # Construction helpers
    # ------------------------------------------------------------------
    @classmethod
    def from_config(cls, config: Dict[str, object]) -> "Registry":
        registry = cls()
        networks_cfg = config.get("networks", {}) if isinstance(config, dict) else {}
        for name, meta in networks_cfg.items():
            if not isinstance(meta, dict):
                continue
            pool_cfg = meta.get("pool") or {}
            tokens: Dict[str, Token] = {}
            for symbol, tok in (meta.get("tokens") or {}).items():
                if not isinstance(tok, dict):
                    continue
                tokens[symbol.upper()] = Token(
                    address=tok.get("address"),
                    symbol=symbol.upper(),
                    decimals=int(tok.get("decimals", 6)),
                )
            registry.add_network(
                Network(
                    name=name,
                    chain_id=int(meta["chain_id"]),
                    rpc_url=meta.get("rpc_url"),
                    native_symbol=str(meta.get("native_symbol", "ETH")),
                    native_usd=float(meta.get("native_usd", 0.0)),
                    gas_price_gwei=float(meta.get("gas_price_gwei", 0.0)),
                    pool=Pool(
                        address=pool_cfg.get("address"),
                        venue=str(meta.get("venue", name)),
                        network=name,
                        fee_bps=int(pool_cfg.get("fee_bps", 0)),
                    ),
                    router=meta.get("router"),
                    ccip_router=meta.get("ccip_router"),
                    tokens=tokens,
                    min_native_balance=float(meta.get("min_native_balance", 0.0)),
                )
            )
        return registry


__all__ = ["Registry", "Network", "Pool", "Token"]
