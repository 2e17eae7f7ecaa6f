"""Swap venue capability.

A venue quotes and executes USDC<->USDT swaps on one network.  Quotes are
computed locally from the venue's fixed fee tier (the pools are stable
pairs, so price impact at our trade sizes is bounded by the fee); only
execution touches the chain, through the injected chain client.

Execution order is fixed: make sure the router may spend the input token,
take a fresh quote, sign the swap authorization, submit through the
router with the venue's gas limit and wait for the receipt.
"""
from __future__ import annotations

import logging
import time
from abc import ABC
from typing import Any, Dict, List, Optional, Tuple

from eth_abi import encode as abi_encode
from web3 import Web3

from chain.abi import SWAP_ROUTER_ABI
from core.errors import SwapError
from core.models import SwapExecution, SwapQuote
from core.profit import FEE_DENOMINATOR, apply_fee
from scanner.price_sampler import sqrt_price_to_price
from scanner.registry import Network
from utils.safety import clamp

log = logging.getLogger(__name__)

MAX_SWAP_AMOUNT = 1_000_000_000  # 1000 tokens at 6 decimals
MAX_PRICE_IMPACT_PCT = 1.0
SWAP_DEADLINE_SEC = 300

_SWAP_TYPES = {
    "EIP712Domain": [
        {"name": "name", "type": "string"},
        {"name": "version", "type": "string"},
        {"name": "chainId", "type": "uint256"},
        {"name": "verifyingContract", "type": "address"},
    ],
    "Swap": [
        {"name": "router", "type": "address"},
        {"name": "sender", "type": "address"},
        {"name": "recipient", "type": "address"},
        {"name": "fromAsset", "type": "address"},
        {"name": "toAsset", "type": "address"},
        {"name": "deadline", "type": "uint256"},
        {"name": "amountOutMin", "type": "uint256"},
        {"name": "swapFee", "type": "uint256"},
        {"name": "amountIn", "type": "uint256"},
    ],
}


class SwapVenue(ABC):
    """Base class for the stable-pair venues."""

    name: str = ""
    fee_bps: int = 0
    gas_estimate: int = 0
    gas_limit: int = 0
    min_liquidity: int = 0

    def __init__(
        self,
        *,
        network: Network,
        client: Any,
        config: Optional[Dict[str, Any]] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.network = network
        self.client = client
        self.config = config or {}
        self.log = logger or log
        self.slippage_bps = int(float(self.config.get("slippage_tolerance", 0.005)) * FEE_DENOMINATOR)
        self.receipt_timeout = float(self.config.get("receipt_timeout_sec", 120))

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _context(self, token_in: str, token_out: str, amount: int) -> Dict[str, Any]:
        return {"venue": self.name, "network": self.network.name, "token_in": token_in, "token_out": token_out, "amount": amount}

    def _addresses(self, token_in: str, token_out: str) -> Tuple[str, str]:
        addr_in = self.network.token_address(token_in)
        addr_out = self.network.token_address(token_out)
        if not addr_in or not addr_out:
            raise SwapError(
                f"{self.name}: token not configured",
                context=self._context(token_in, token_out, 0),
            )
        return addr_in, addr_out

    @staticmethod
    def price_impact(amount_in: int, amount_out: int) -> float:
        if amount_in <= 0:
            return 0.0
        return clamp(abs(1 - amount_out / amount_in) * 100, 0.0, MAX_PRICE_IMPACT_PCT)

    # ------------------------------------------------------------------
    # Quotes
    # ------------------------------------------------------------------
    async def quote(self, token_in: str, token_out: str, amount_in: int) -> SwapQuote:
        if token_in.upper() == token_out.upper():
            raise SwapError(f"{self.name}: token in and out are identical", context=self._context(token_in, token_out, amount_in))
        if amount_in <= 0:
            raise SwapError(f"{self.name}: amount must be positive", context=self._context(token_in, token_out, amount_in))
        amount_out = apply_fee(amount_in, self.fee_bps)
        return SwapQuote(
            venue=self.name,
            network=self.network.name,
            token_in=token_in,
            token_out=token_out,
            amount_in=amount_in,
            amount_out=amount_out,
            price_impact=self.price_impact(amount_in, amount_out),
            fee=amount_in - amount_out,
            gas_estimate=self.gas_estimate,
        )

    async def quote_exact_out(self, token_in: str, token_out: str, amount_out: int) -> SwapQuote:
        """Quote the input needed to receive ``amount_out``."""

        if token_in.upper() == token_out.upper():
            raise SwapError(f"{self.name}: token in and out are identical", context=self._context(token_in, token_out, amount_out))
        if amount_out <= 0:
            raise SwapError(f"{self.name}: amount must be positive", context=self._context(token_in, token_out, amount_out))
        denom = FEE_DENOMINATOR - self.fee_bps
        amount_in = -(-amount_out * FEE_DENOMINATOR // denom)
        return SwapQuote(
            venue=self.name,
            network=self.network.name,
            token_in=token_in,
            token_out=token_out,
            amount_in=amount_in,
            amount_out=amount_out,
            price_impact=self.price_impact(amount_in, amount_out),
            fee=amount_in - amount_out,
            gas_estimate=self.gas_estimate,
        )

    def is_available(self, token_in: str, token_out: str, amount: int) -> bool:
        if not 0 < amount <= MAX_SWAP_AMOUNT:
            return False
        addr_in = self.network.token_address(token_in)
        addr_out = self.network.token_address(token_out)
        if not addr_in or not addr_out:
            return False
        if not (Web3.is_address(addr_in) and Web3.is_address(addr_out)):
            return False
        return addr_in.lower() != addr_out.lower()

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------
    async def execute(self, token_in: str, token_out: str, amount_in: int) -> SwapExecution:
        context = self._context(token_in, token_out, amount_in)
        router = self.network.router
        if not router:
            raise SwapError(f"{self.name}: no router configured", context=context)
        addr_in, addr_out = self._addresses(token_in, token_out)

        try:
            await self._ensure_allowance(addr_in, router, amount_in)
            quote = await self.quote(token_in, token_out, amount_in)
            min_out = apply_fee(quote.amount_out, self.slippage_bps)
            swap_data = await self._build_swap_data(router, addr_in, addr_out, amount_in, min_out)
            tx_ref = await self.client.transact(
                router, SWAP_ROUTER_ABI, "swapWithUserSignature", swap_data, gas=self.gas_limit
            )
            receipt = await self.client.wait_for_receipt(tx_ref, timeout=self.receipt_timeout)
        except SwapError:
            raise
        except Exception as exc:
            raise SwapError(f"{self.name} swap failed: {exc}", context=context) from exc

        if not receipt.ok:
            raise SwapError(f"{self.name} swap reverted tx={tx_ref}", context=dict(context, tx=tx_ref))
        self.log.info(
            "[dex] %s swap %s->%s in=%d out=%d gas=%d tx=%s",
            self.name,
            token_in,
            token_out,
            amount_in,
            quote.amount_out,
            receipt.gas_used,
            tx_ref,
        )
        return SwapExecution(tx_ref=tx_ref, amount_out=quote.amount_out, gas_used=receipt.gas_used)

    async def _ensure_allowance(self, token: str, spender: str, amount: int) -> None:
        current = await self.client.allowance(token, spender)
        if current >= amount:
            return
        # approve twice the amount so the next leg in the same direction skips this
        tx_ref = await self.client.approve(token, spender, amount * 2)
        receipt = await self.client.wait_for_receipt(tx_ref, timeout=self.receipt_timeout)
        if not receipt.ok:
            raise SwapError(f"{self.name}: approval reverted tx={tx_ref}", context={"token": token, "spender": spender})
        self.log.info("[dex] %s approved %d of %s for router tx=%s", self.name, amount * 2, token, tx_ref)

    async def _build_swap_data(self, router: str, addr_in: str, addr_out: str, amount_in: int, min_out: int) -> bytes:
        sender = self.client.address
        deadline = int(time.time()) + SWAP_DEADLINE_SEC
        message = {
            "router": router,
            "sender": sender,
            "recipient": sender,
            "fromAsset": addr_in,
            "toAsset": addr_out,
            "deadline": deadline,
            "amountOutMin": min_out,
            "swapFee": 0,
            "amountIn": amount_in,
        }
        typed = {
            "types": _SWAP_TYPES,
            "primaryType": "Swap",
            "domain": {
                "name": "Magpie Router",
                "version": "3",
                "chainId": self.network.chain_id,
                "verifyingContract": router,
            },
            "message": message,
        }
        signature = await self.client.sign_typed_data(typed)
        return abi_encode(
            ["address", "address", "address", "address", "uint256", "uint256", "uint256", "uint256", "bytes"],
            [
                Web3.to_checksum_address(sender),
                Web3.to_checksum_address(sender),
                Web3.to_checksum_address(addr_in),
                Web3.to_checksum_address(addr_out),
                deadline,
                min_out,
                0,
                amount_in,
                bytes.fromhex(signature[2:] if signature.startswith("0x") else signature),
            ],
        )

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------
    async def current_price(self) -> int:
        state = await self.client.read_pool_state(self.network.pool.address)
        return sqrt_price_to_price(state.sqrt_price_x96)

    async def health(self) -> Dict[str, Any]:
        """Pool liquidity and price with a list of issues; never raises."""

        issues: List[str] = []
        if not self.network.pool.address:
            return {"healthy": False, "liquidity": 0, "price": None, "issues": ["pool address not configured"]}
        try:
            state = await self.client.read_pool_state(self.network.pool.address)
        except Exception as exc:
            return {"healthy": False, "liquidity": 0, "price": None, "issues": [f"pool read failed: {exc}"]}
        price = sqrt_price_to_price(state.sqrt_price_x96)
        if state.liquidity < self.min_liquidity:
            issues.append(f"low liquidity {state.liquidity}")
        deviation = abs(price - 1_000_000) / 1_000_000 * 100
        if deviation > 2.0:
            issues.append(f"price deviates {deviation:.2f}% from parity")
        return {"healthy": not issues, "liquidity": state.liquidity, "price": price, "issues": issues}


__all__ = ["SwapVenue", "MAX_SWAP_AMOUNT", "MAX_PRICE_IMPACT_PCT"]
