"""DeBridge (DLN) provider.

Quotes and transaction payloads come from the DLN HTTP API; the returned
transaction is signed and submitted on the source chain through the chain
client.  Completion is observed by polling the order status endpoint.
"""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Dict, Optional

import aiohttp

from bridge.base import DEBRIDGE, BridgeProvider
from core.errors import MONITOR_TIMEOUT, ORDER_CANCELLED, BridgeError
from core.models import BridgeQuote, BridgeTransfer
from utils.safety import RetryPolicy

log = logging.getLogger(__name__)

COMPLETED_STATUSES = {"OrderCompleted", "ClaimCompleted"}
CANCELLED_STATUSES = {"Cancelled", "OrderCancelled"}
DEBRIDGE_SLIPPAGE_PCT = 0.5


class DeBridgeHTTPError(RuntimeError):
    pass


class DeBridgeProvider(BridgeProvider):
    name = DEBRIDGE

    def __init__(
        self,
        *,
        clients: Dict[str, Any],
        retry: Optional[RetryPolicy] = None,
        session: Optional[aiohttp.ClientSession] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(**kwargs)
        self.clients = clients
        self.retry = retry or RetryPolicy()
        self.api_url = str(self.config.get("api_url", "")).rstrip("/")
        self.fixed_fee_wei = int(self.config.get("fixed_fee_wei", 10 ** 15))
        self.poll_interval = float(self.config.get("poll_interval_sec", 15))
        self.http_timeout = float(self.config.get("http_timeout_sec", 15))
        self.slippage_bps = int(self.config.get("slippage_bps", 50))
        self._session = session
        self._owns_session = session is None

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------
    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.http_timeout))
            self._owns_session = True
        return self._session

    async def _request(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        if not self.api_url:
            raise BridgeError("debridge api_url not configured")
        url = f"{self.api_url}{path}"

        async def _once() -> Dict[str, Any]:
            session = await self._get_session()
            async with session.request(method, url, json=payload) as resp:
                if resp.status != 200:
                    body = await resp.text()
                    raise DeBridgeHTTPError(f"DeBridge API {resp.status}: {body[:200]}")
                return await resp.json()

        try:
            return await self.retry.run(_once, label=f"debridge {method} {path}")
        except (aiohttp.ClientError, asyncio.TimeoutError, DeBridgeHTTPError, ValueError) as exc:
            raise BridgeError(f"DeBridge request failed: {exc}", context={"path": path}) from exc

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()

    def _order_payload(self, from_chain: int, to_chain: int, amount: int, asset: str) -> Dict[str, Any]:
        src = self._network(from_chain)
        dst = self._network(to_chain)
        return {
            "srcChainId": from_chain,
            "srcChainTokenIn": src.token_address(asset),
            "srcChainTokenInAmount": str(amount),
            "dstChainId": to_chain,
            "dstChainTokenOut": dst.token_address(asset),
            "prependOperatingExpenses": False,
            "bridgeSlippage": str(self.slippage_bps),
        }

    # ------------------------------------------------------------------
    # Provider API
    # ------------------------------------------------------------------
    async def quote(self, from_chain: int, to_chain: int, amount: int, asset: str) -> BridgeQuote:
        self._check_route(from_chain, to_chain, asset)
        response = await self._request("POST", "/order/quote", self._order_payload(from_chain, to_chain, amount, asset))
        try:
            estimated_output = int(response["estimation"]["dstChainTokenOut"]["amount"])
        except (KeyError, TypeError, ValueError) as exc:
            raise BridgeError("DeBridge quote missing estimation", context={"response": response}) from exc
        cost = self._network(from_chain).native_cost(self.fixed_fee_wei)
        self.log.debug(
            "[bridge] debridge quote %s %d -> %d in=%d out=%d cost=%d",
            asset,
            from_chain,
            to_chain,
            amount,
            estimated_output,
            cost,
        )
        return BridgeQuote(
            provider=self.name,
            from_chain=from_chain,
            to_chain=to_chain,
            asset=asset.upper(),
            amount_in=amount,
            estimated_output=estimated_output,
            estimated_cost=cost,
            estimated_time=self.average_time,
            slippage=DEBRIDGE_SLIPPAGE_PCT,
        )

    async def execute(
        self, from_chain: int, to_chain: int, amount: int, asset: str, recipient: Optional[str] = None
    ) -> BridgeTransfer:
        self._check_route(from_chain, to_chain, asset)
        src = self._network(from_chain)
        client = self.clients.get(src.name)
        if client is None:
            raise BridgeError(f"no chain client for {src.name}", context={"chain_id": from_chain})

        payload = self._order_payload(from_chain, to_chain, amount, asset)
        payload["senderAddress"] = client.address
        payload["dstChainTokenOutRecipient"] = recipient or client.address
        response = await self._request("POST", "/order/create-tx", payload)
        tx = response.get("tx") or {}
        if not tx.get("to") or not tx.get("data"):
            raise BridgeError("DeBridge create-tx returned no transaction", context={"response": response})

        try:
            token = src.token_address(asset)
            if await client.allowance(token, tx["to"]) < amount:
                approve_ref = await client.approve(token, tx["to"], amount * 2)
                await client.wait_for_receipt(approve_ref)
            tx_ref = await client.send_transaction(
                tx["to"],
                tx["data"],
                value=int(tx.get("value") or 0),
                gas=int(tx["gasLimit"]) if tx.get("gasLimit") else None,
                gas_price=int(tx["gasPrice"]) if tx.get("gasPrice") else None,
            )
        except BridgeError:
            raise
        except Exception as exc:
            raise BridgeError(f"DeBridge transaction failed: {exc}", context={"chain_id": from_chain}) from exc

        order_ref = response.get("orderId") or f"debridge_{int(time.time() * 1000)}"
        estimated_output = int(((response.get("estimation") or {}).get("dstChainTokenOut") or {}).get("amount", amount))
        self.log.info("[bridge] debridge %s sent tx=%s order=%s", asset, tx_ref, order_ref)
        return BridgeTransfer(tx_ref=tx_ref, order_ref=order_ref, estimated_output=estimated_output)

    async def monitor(self, order_ref: str, timeout: Optional[float] = None) -> Dict[str, Any]:
        limit = self.timeout if timeout is None else timeout
        started = time.monotonic()
        while time.monotonic() - started < limit:
            try:
                status = await self._request("GET", f"/order/{order_ref}")
            except BridgeError as exc:
                self.log.warning("[bridge] debridge status check failed order=%s err=%s", order_ref, exc)
            else:
                state = status.get("status")
                self.log.debug("[bridge] debridge order=%s status=%s", order_ref, state)
                if state in COMPLETED_STATUSES:
                    return {"status": "completed", "order_ref": order_ref, "provider_status": state}
                if state in CANCELLED_STATUSES:
                    raise BridgeError(
                        f"DeBridge order {order_ref} cancelled",
                        kind=ORDER_CANCELLED,
                        context={"order_ref": order_ref},
                    )
            await asyncio.sleep(self.poll_interval)
        raise BridgeError(
            f"DeBridge order {order_ref} not completed within {limit:g}s",
            kind=MONITOR_TIMEOUT,
            context={"order_ref": order_ref, "timeout": limit},
        )


__all__ = ["DeBridgeProvider", "COMPLETED_STATUSES", "CANCELLED_STATUSES"]
