"""
Shared fixtures: a fast configuration, the network registry and an
in-memory chain client standing in for the web3-backed one.
"""

import pytest

from chain.client import PoolState, Receipt
from config.loader import load_bot_config
from scanner.registry import Registry

Q96 = 2 ** 96

POOL_A = "0x" + "aa" * 20
POOL_B = "0x" + "bb" * 20
ROUTER_A = "0x" + "a1" * 20
ROUTER_B = "0x" + "b1" * 20
CCIP_A = "0x" + "a2" * 20
CCIP_B = "0x" + "b2" * 20
WALLET = "0x" + "11" * 20


def make_config(**sections):
    """Defaults with deployment addresses filled in and every delay near zero."""

    cfg = load_bot_config(None, env={})
    cfg["networks"]["avalanche"] = dict(
        cfg["networks"]["avalanche"], pool={"address": POOL_A, "fee_bps": 5}, router=ROUTER_A, ccip_router=CCIP_A
    )
    cfg["networks"]["sonic"] = dict(
        cfg["networks"]["sonic"], pool={"address": POOL_B, "fee_bps": 8}, router=ROUTER_B, ccip_router=CCIP_B
    )
    cfg["execution"] = dict(cfg["execution"], step_wait_sec=0, simulation_delay_sec=0, receipt_timeout_sec=1)
    cfg["supervisor"] = dict(cfg["supervisor"], poll_interval_ms=1, error_backoff_sec=0)
    cfg["bridges"] = {
        "debridge": dict(cfg["bridges"]["debridge"], api_url="https://dln.test/v1.0/dln", poll_interval_sec=0.01),
        "ccip": dict(cfg["bridges"]["ccip"], poll_interval_sec=0.01, completion_dwell_sec=0.05),
        "simulation": dict(cfg["bridges"]["simulation"], min_dwell_sec=0.01, max_dwell_sec=0.02),
    }
    cfg["retry"] = {"max_attempts": 2, "base_delay_sec": 0, "backoff": 1}
    for name, values in sections.items():
        cfg[name] = dict(cfg.get(name, {}), **values)
    return cfg


class FakeChainClient:
    """Records every write and answers reads from fixed values."""

    def __init__(self, network, *, sqrt_price_x96=Q96, liquidity=10 ** 18, allowance=0, gas_used=100_000):
        self.network = network
        self.address = WALLET
        self.sqrt_price_x96 = sqrt_price_x96
        self.liquidity = liquidity
        self.current_allowance = allowance
        self.gas_used = gas_used
        self.receipt_status = 1
        self.receipt_logs = []
        self.call_results = {}
        self.fail_reads = False
        self.approvals = []
        self.transactions = []
        self.raw_transactions = []
        self.signed = []
        self.calls = []
        self.native_balance = 10 ** 18

    async def block_number(self):
        return 1234

    async def balance(self, address=None):
        if self.fail_reads:
            raise ConnectionError("rpc unavailable")
        return self.native_balance

    async def read_pool_state(self, pool_address):
        if self.fail_reads:
            raise ConnectionError("rpc unavailable")
        return PoolState(
            sqrt_price_x96=self.sqrt_price_x96,
            tick=0,
            liquidity=self.liquidity,
            token0=self.network.token_address("USDC"),
            token1=self.network.token_address("USDT"),
            block_number=1234,
        )

    async def allowance(self, token, spender):
        return self.current_allowance

    async def approve(self, token, spender, amount):
        self.approvals.append((token, spender, amount))
        self.current_allowance = amount
        return "0xapprove"

    async def call(self, address, abi, fn_name, *args):
        self.calls.append((fn_name, args))
        result = self.call_results.get(fn_name)
        if isinstance(result, Exception):
            raise result
        return result

    async def transact(self, address, abi, fn_name, *args, value=0, gas=None):
        self.transactions.append({"to": address, "fn": fn_name, "args": args, "value": value, "gas": gas})
        return f"0xtx{len(self.transactions)}"

    async def send_transaction(self, to, data, *, value=0, gas=None, gas_price=None):
        self.raw_transactions.append({"to": to, "data": data, "value": value, "gas": gas})
        return f"0xraw{len(self.raw_transactions)}"

    async def wait_for_receipt(self, tx_hash, timeout=120.0):
        return Receipt(
            tx_hash=tx_hash,
            status=self.receipt_status,
            gas_used=self.gas_used,
            block_number=1234,
            logs=list(self.receipt_logs),
        )

    async def sign_typed_data(self, typed_data):
        self.signed.append(typed_data)
        return "0x" + "22" * 65


@pytest.fixture
def config():
    return make_config()


@pytest.fixture
def registry(config):
    return Registry.from_config(config)


@pytest.fixture
def clients(registry):
    return {name: FakeChainClient(network) for name, network in registry.networks.items()}
