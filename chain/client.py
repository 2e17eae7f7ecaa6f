"""Chain access capability.

The core never talks to a node directly.  It depends on the narrow
:class:`ChainClient` protocol below (pool reads, balances and
allowances, contract calls and transactions, receipts, typed-data
signing), one instance per network.  :class:`Web3ChainClient` is the
production implementation on top of ``web3``'s async provider with a
local ``eth_account`` signer; tests substitute an in-memory fake.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Protocol, Sequence

import aiohttp
from eth_account import Account
from eth_account.messages import encode_typed_data
from web3 import AsyncWeb3, Web3

from chain.abi import CL_POOL_ABI, ERC20_ABI, ZERO_ADDRESS

if TYPE_CHECKING:
    from scanner.registry import Network

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class PoolState:
    sqrt_price_x96: int
    tick: int
    liquidity: int
    token0: str
    token1: str
    block_number: int


@dataclass(frozen=True)
class Receipt:
    tx_hash: str
    status: int
    gas_used: int
    block_number: int
    logs: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.status == 1


class ChainClient(Protocol):
    network: Network

    @property
    def address(self) -> str: ...

    async def block_number(self) -> int: ...

    async def balance(self, address: Optional[str] = None) -> int: ...

    async def read_pool_state(self, pool_address: str) -> PoolState: ...

    async def allowance(self, token: str, spender: str) -> int: ...

    async def approve(self, token: str, spender: str, amount: int) -> str: ...

    async def call(self, address: str, abi: Sequence[Dict[str, Any]], fn_name: str, *args: Any) -> Any: ...

    async def transact(
        self,
        address: str,
        abi: Sequence[Dict[str, Any]],
        fn_name: str,
        *args: Any,
        value: int = 0,
        gas: Optional[int] = None,
    ) -> str: ...

    async def send_transaction(
        self, to: str, data: str, *, value: int = 0, gas: Optional[int] = None, gas_price: Optional[int] = None
    ) -> str: ...

    async def wait_for_receipt(self, tx_hash: str, timeout: float = 120.0) -> Receipt: ...

    async def sign_typed_data(self, typed_data: Dict[str, Any]) -> str: ...


class Web3ChainClient:
    """:class:`ChainClient` backed by ``AsyncWeb3`` and a local private key."""

    def __init__(
        self,
        *,
        network: Network,
        private_key: Optional[str] = None,
        timeout: float = 10.0,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        if not network.rpc_url:
            raise ValueError(f"no rpc_url configured for {network.name}")
        self.network = network
        self.log = logger or log
        provider = AsyncWeb3.AsyncHTTPProvider(
            network.rpc_url, request_kwargs={"timeout": aiohttp.ClientTimeout(total=timeout)}
        )
        self.w3 = AsyncWeb3(provider)
        self.account = Account.from_key(private_key) if private_key else None
        self._nonce_lock = asyncio.Lock()

    @property
    def address(self) -> str:
        return self.account.address if self.account else ZERO_ADDRESS

    def _require_signer(self) -> None:
        if self.account is None:
            raise RuntimeError(f"no signing key configured for {self.network.name}")

    def _contract(self, address: str, abi: Sequence[Dict[str, Any]]):
        return self.w3.eth.contract(address=Web3.to_checksum_address(address), abi=list(abi))

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    async def block_number(self) -> int:
        return int(await self.w3.eth.block_number)

    async def balance(self, address: Optional[str] = None) -> int:
        """Native balance in wei of ``address`` (the signer by default)."""

        return int(await self.w3.eth.get_balance(Web3.to_checksum_address(address or self.address)))

    async def read_pool_state(self, pool_address: str) -> PoolState:
        pool = self._contract(pool_address, CL_POOL_ABI)
        slot0, liquidity, token0, token1, block = await asyncio.gather(
            pool.functions.slot0().call(),
            pool.functions.liquidity().call(),
            pool.functions.token0().call(),
            pool.functions.token1().call(),
            self.block_number(),
        )
        return PoolState(
            sqrt_price_x96=int(slot0[0]),
            tick=int(slot0[1]),
            liquidity=int(liquidity),
            token0=str(token0),
            token1=str(token1),
            block_number=block,
        )

    async def allowance(self, token: str, spender: str) -> int:
        erc20 = self._contract(token, ERC20_ABI)
        return int(await erc20.functions.allowance(self.address, Web3.to_checksum_address(spender)).call())

    async def call(self, address: str, abi: Sequence[Dict[str, Any]], fn_name: str, *args: Any) -> Any:
        contract = self._contract(address, abi)
        return await getattr(contract.functions, fn_name)(*args).call()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------
    async def approve(self, token: str, spender: str, amount: int) -> str:
        return await self.transact(token, ERC20_ABI, "approve", Web3.to_checksum_address(spender), amount)

    async def transact(
        self,
        address: str,
        abi: Sequence[Dict[str, Any]],
        fn_name: str,
        *args: Any,
        value: int = 0,
        gas: Optional[int] = None,
    ) -> str:
        self._require_signer()
        contract = self._contract(address, abi)
        fn = getattr(contract.functions, fn_name)(*args)
        async with self._nonce_lock:
            params: Dict[str, Any] = {
                "from": self.address,
                "nonce": await self.w3.eth.get_transaction_count(self.address, "pending"),
                "value": value,
                "chainId": self.network.chain_id,
            }
            if gas:
                params["gas"] = gas
            tx = await fn.build_transaction(params)
            signed = self.account.sign_transaction(tx)
            tx_hash = await self.w3.eth.send_raw_transaction(signed.raw_transaction)
        self.log.info("[chain] %s sent %s tx=%s", self.network.name, fn_name, Web3.to_hex(tx_hash))
        return Web3.to_hex(tx_hash)

    async def send_transaction(
        self, to: str, data: str, *, value: int = 0, gas: Optional[int] = None, gas_price: Optional[int] = None
    ) -> str:
        self._require_signer()
        async with self._nonce_lock:
            tx: Dict[str, Any] = {
                "from": self.address,
                "to": Web3.to_checksum_address(to),
                "data": data,
                "value": value,
                "nonce": await self.w3.eth.get_transaction_count(self.address, "pending"),
                "chainId": self.network.chain_id,
                "gasPrice": gas_price or await self.w3.eth.gas_price,
            }
            tx["gas"] = gas or await self.w3.eth.estimate_gas(tx)
            signed = self.account.sign_transaction(tx)
            tx_hash = await self.w3.eth.send_raw_transaction(signed.raw_transaction)
        self.log.info("[chain] %s sent raw tx=%s", self.network.name, Web3.to_hex(tx_hash))
        return Web3.to_hex(tx_hash)

    async def wait_for_receipt(self, tx_hash: str, timeout: float = 120.0) -> Receipt:
        raw = await self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=timeout)
        logs = [
            {
                "address": entry["address"],
                "topics": [Web3.to_hex(t) for t in entry["topics"]],
                "data": Web3.to_hex(entry["data"]),
            }
            for entry in raw["logs"]
        ]
        return Receipt(
            tx_hash=tx_hash,
            status=int(raw["status"]),
            gas_used=int(raw["gasUsed"]),
            block_number=int(raw["blockNumber"]),
            logs=logs,
        )

    async def sign_typed_data(self, typed_data: Dict[str, Any]) -> str:
        self._require_signer()
        signable = encode_typed_data(full_message=typed_data)
        return Web3.to_hex(self.account.sign_message(signable).signature)


__all__ = ["ChainClient", "Web3ChainClient", "PoolState", "Receipt"]
