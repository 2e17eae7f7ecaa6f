"""Chainlink CCIP provider.

Transfers go straight through the on-chain router: the fee is read with
``getFee`` and paid in the native token with ``ccipSend``.  The bot does
not track CCIP message execution on the destination chain; completion is
assumed once a fixed dwell time has passed while the destination chain
keeps producing blocks.
"""
from __future__ import annotations

import asyncio
import time
from typing import Any, Dict, Optional, Tuple

from eth_abi import encode as abi_encode
from web3 import Web3

from bridge.base import CCIP, BridgeProvider
from chain.abi import CCIP_ROUTER_ABI, ZERO_ADDRESS
from core.errors import MONITOR_TIMEOUT, BridgeError
from core.models import BridgeQuote, BridgeTransfer
from utils.safety import RetryPolicy

CHAIN_SELECTORS = {
    43114: 6433500567565415381,
    146: 1673871237479749969,
}
DEFAULT_GAS_LIMIT = 200_000


class CCIPProvider(BridgeProvider):
    name = CCIP
    default_assets = ("USDC",)

    def __init__(self, *, clients: Dict[str, Any], retry: Optional[RetryPolicy] = None, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.clients = clients
        self.retry = retry or RetryPolicy()
        self.completion_dwell = float(self.config.get("completion_dwell_sec", 600))
        self.poll_interval = float(self.config.get("poll_interval_sec", 30))
        self.gas_limit = int(self.config.get("gas_limit", DEFAULT_GAS_LIMIT))
        self.fallback_fee_wei = int(self.config.get("fallback_fee_wei", 3 * 10 ** 15))
        # order_ref -> destination chain id
        self._pending: Dict[str, int] = {}

    @staticmethod
    def selector(chain_id: int) -> int:
        try:
            return CHAIN_SELECTORS[chain_id]
        except KeyError:
            raise BridgeError(f"no CCIP chain selector for chain {chain_id}", context={"chain_id": chain_id}) from None

    def _router_and_client(self, chain_id: int) -> Tuple[str, Any]:
        network = self._network(chain_id)
        if not network.ccip_router:
            raise BridgeError(f"no CCIP router configured on {network.name}", context={"chain_id": chain_id})
        client = self.clients.get(network.name)
        if client is None:
            raise BridgeError(f"no chain client for {network.name}", context={"chain_id": chain_id})
        return network.ccip_router, client

    def _message(self, receiver: str, token: str, amount: int) -> Tuple[bytes, bytes, list, str, bytes]:
        return (
            abi_encode(["address"], [Web3.to_checksum_address(receiver)]),
            b"",
            [(Web3.to_checksum_address(token), amount)],
            ZERO_ADDRESS,
            abi_encode(["uint256", "bool"], [self.gas_limit, False]),
        )

    async def _fee(self, from_chain: int, to_chain: int, amount: int, asset: str, receiver: str) -> int:
        router, client = self._router_and_client(from_chain)
        token = self._network(from_chain).token_address(asset)
        message = self._message(receiver, token, amount)
        selector = self.selector(to_chain)
        try:
            fee = await self.retry.run(
                lambda: client.call(router, CCIP_ROUTER_ABI, "getFee", selector, message), label="ccip getFee"
            )
        except Exception as exc:
            raise BridgeError(f"CCIP getFee failed: {exc}", context={"from_chain": from_chain, "to_chain": to_chain}) from exc
        return int(fee)

    # ------------------------------------------------------------------
    # Provider API
    # ------------------------------------------------------------------
    async def quote(self, from_chain: int, to_chain: int, amount: int, asset: str) -> BridgeQuote:
        self._check_route(from_chain, to_chain, asset)
        _, client = self._router_and_client(from_chain)
        fee_wei = await self._fee(from_chain, to_chain, amount, asset, client.address)
        return BridgeQuote(
            provider=self.name,
            from_chain=from_chain,
            to_chain=to_chain,
            asset=asset.upper(),
            amount_in=amount,
            estimated_output=amount,
            estimated_cost=self._network(from_chain).native_cost(fee_wei),
            estimated_time=self.average_time,
            slippage=0.0,
        )

    async def estimate_fee(self, from_chain: int, to_chain: int, amount: int, asset: str = "USDC") -> int:
        """Native fee in wei, or the configured fallback when the router cannot be read."""

        try:
            _, client = self._router_and_client(from_chain)
            return await self._fee(from_chain, to_chain, amount, asset, client.address)
        except BridgeError as exc:
            self.log.warning("[bridge] ccip fee estimate fallback: %s", exc)
            return self.fallback_fee_wei

    async def execute(
        self, from_chain: int, to_chain: int, amount: int, asset: str, recipient: Optional[str] = None
    ) -> BridgeTransfer:
        self._check_route(from_chain, to_chain, asset)
        router, client = self._router_and_client(from_chain)
        token = self._network(from_chain).token_address(asset)
        receiver = recipient or client.address
        try:
            if await client.allowance(token, router) < amount:
                approve_ref = await client.approve(token, router, amount)
                await client.wait_for_receipt(approve_ref)
            fee_wei = await self._fee(from_chain, to_chain, amount, asset, receiver)
            message = self._message(receiver, token, amount)
            tx_ref = await client.transact(
                router, CCIP_ROUTER_ABI, "ccipSend", self.selector(to_chain), message, value=fee_wei
            )
            receipt = await client.wait_for_receipt(tx_ref)
        except BridgeError:
            raise
        except Exception as exc:
            raise BridgeError(f"CCIP send failed: {exc}", context={"from_chain": from_chain, "to_chain": to_chain}) from exc
        if not receipt.ok:
            raise BridgeError(f"CCIP send reverted tx={tx_ref}", context={"tx": tx_ref})

        message_id = tx_ref
        if receipt.logs and len(receipt.logs[0].get("topics", [])) > 1:
            message_id = receipt.logs[0]["topics"][1]
        self._pending[message_id] = to_chain
        self.log.info("[bridge] ccip %s sent tx=%s message=%s fee_wei=%d", asset, tx_ref, message_id, fee_wei)
        return BridgeTransfer(tx_ref=tx_ref, order_ref=message_id, estimated_output=amount)

    async def monitor(self, order_ref: str, timeout: Optional[float] = None) -> Dict[str, Any]:
        limit = self.timeout if timeout is None else timeout
        to_chain = self._pending.get(order_ref)
        client = None
        if to_chain is not None:
            client = self.clients.get(self._network(to_chain).name)
        started = time.monotonic()
        try:
            while True:
                elapsed = time.monotonic() - started
                if elapsed >= self.completion_dwell:
                    return {"status": "completed", "order_ref": order_ref, "assumed": True, "elapsed": elapsed}
                if elapsed >= limit:
                    raise BridgeError(
                        f"CCIP message {order_ref} not confirmed within {limit:g}s",
                        kind=MONITOR_TIMEOUT,
                        context={"order_ref": order_ref, "timeout": limit},
                    )
                if client is not None:
                    try:
                        block = await client.block_number()
                        self.log.debug("[bridge] ccip message=%s waiting, destination block=%d", order_ref, block)
                    except Exception as exc:
                        self.log.warning("[bridge] ccip destination block check failed: %s", exc)
                await asyncio.sleep(min(self.poll_interval, max(self.completion_dwell - elapsed, 0.0)))
        finally:
            self._pending.pop(order_ref, None)

    async def is_route_available(self, from_chain: int, to_chain: int, asset: str = "USDC") -> bool:
        if not self.supports(from_chain, to_chain, asset):
            return False
        try:
            router, client = self._router_and_client(from_chain)
            return bool(await client.call(router, CCIP_ROUTER_ABI, "isChainSupported", self.selector(to_chain)))
        except Exception as exc:
            self.log.debug("[bridge] ccip route check failed: %s", exc)
            return False


__all__ = ["CCIPProvider", "CHAIN_SELECTORS"]
