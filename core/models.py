"""Data model shared by the sampler, coordinators and engine.

All token amounts are plain ``int`` values in the asset's base units
(six implied decimals for USDC/USDT).  Prices follow the same convention:
``1_000_000`` means parity.  Gas and bridge fees are converted into the
same units before they reach an opportunity, plan or result, so the
arithmetic never mixes native currency with stablecoin amounts.
"""
from __future__ import annotations

import itertools
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

PRICE_DECIMALS = 6
PARITY_PRICE = 10 ** PRICE_DECIMALS

NETWORK_A = "avalanche"
NETWORK_B = "sonic"

AVALANCHE_TO_SONIC = "avalanche-to-sonic"
SONIC_TO_AVALANCHE = "sonic-to-avalanche"
DIRECTIONS = (AVALANCHE_TO_SONIC, SONIC_TO_AVALANCHE)

STEP_SWAP = "swap"
STEP_BRIDGE = "bridge"
STEP_WAIT = "wait"

STATUS_PENDING = "pending"
STATUS_EXECUTING = "executing"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"

_STATUS_RANK = {STATUS_PENDING: 0, STATUS_EXECUTING: 1, STATUS_COMPLETED: 2, STATUS_FAILED: 2}
_TERMINAL = {STATUS_COMPLETED, STATUS_FAILED}

_id_counter = itertools.count(1)


def generate_id(prefix: str) -> str:
    """Return a process-unique id such as ``arb_1718000000000_3``."""

    return f"{prefix}_{int(time.time() * 1000)}_{next(_id_counter)}"


# ----------------------------------------------------------------------
# Prices
# ----------------------------------------------------------------------
@dataclass(frozen=True)
class PriceSample:
    pool_key: str
    network: str
    pool_address: str
    price: int
    inverse_price: int
    liquidity: int
    sqrt_price_x96: int
    block_number: int
    timestamp: float
    stale: bool = False

    def age(self, now: Optional[float] = None) -> float:
        return (time.time() if now is None else now) - self.timestamp


# ----------------------------------------------------------------------
# Opportunities
# ----------------------------------------------------------------------
@dataclass(frozen=True)
class TradeLeg:
    network: str
    pool_address: str
    price: int
    asset: str


@dataclass(frozen=True)
class ArbitrageOpportunity:
    id: str
    direction: str
    buy: TradeLeg
    sell: TradeLeg
    amount: int
    estimated_gas_cost: int
    estimated_bridge_cost: int
    gross_profit: int
    net_profit: int
    profit_percentage: float
    profitable: bool
    created_at: float = field(default_factory=time.time)


# ----------------------------------------------------------------------
# Plans
# ----------------------------------------------------------------------
@dataclass
class ExecutionStep:
    """One leg of a plan.

    Status only moves forward: ``pending -> executing -> completed|failed``.
    A step that reached a terminal status is never rewritten; callers take
    a snapshot with :meth:`snapshot` when they need to keep it.
    """

    kind: str
    network: str
    description: str
    token_in: Optional[str] = None
    token_out: Optional[str] = None
    destination: Optional[str] = None
    venue: Optional[str] = None
    status: str = STATUS_PENDING
    tx_ref: Optional[str] = None
    gas_used: Optional[int] = None
    timestamp: Optional[float] = None

    def advance(self, status: str, *, tx_ref: Optional[str] = None, gas_used: Optional[int] = None) -> None:
        if self.status in _TERMINAL:
            raise ValueError(f"step already {self.status}: {self.description}")
        if _STATUS_RANK[status] < _STATUS_RANK[self.status]:
            raise ValueError(f"step status cannot move {self.status} -> {status}")
        self.status = status
        if tx_ref is not None:
            self.tx_ref = tx_ref
        if gas_used is not None:
            self.gas_used = gas_used
        self.timestamp = time.time()

    def snapshot(self) -> "ExecutionStep":
        return ExecutionStep(**self.__dict__)


@dataclass
class ExecutionPlan:
    opportunity_id: str
    direction: str
    steps: List[ExecutionStep]
    estimated_gas_cost: int
    estimated_bridge_cost: int
    estimated_duration: float
    expected_profit: int


# ----------------------------------------------------------------------
# Quotes and leg results
# ----------------------------------------------------------------------
@dataclass(frozen=True)
class SwapQuote:
    venue: str
    network: str
    token_in: str
    token_out: str
    amount_in: int
    amount_out: int
    price_impact: float
    fee: int
    gas_estimate: int


@dataclass(frozen=True)
class SwapExecution:
    tx_ref: str
    amount_out: int
    gas_used: int


@dataclass(frozen=True)
class SwapResult:
    venue: str
    network: str
    tx_ref: str
    amount_in: int
    amount_out: int
    gas_used: int
    price_impact: float


@dataclass(frozen=True)
class BridgeQuote:
    provider: str
    from_chain: int
    to_chain: int
    asset: str
    amount_in: int
    estimated_output: int
    estimated_cost: int
    estimated_time: float
    slippage: float

    @property
    def effective_cost(self) -> int:
        return self.estimated_cost + (self.amount_in - self.estimated_output)


@dataclass(frozen=True)
class BridgeTransfer:
    tx_ref: str
    order_ref: str
    estimated_output: int


@dataclass(frozen=True)
class BridgeExecution:
    provider: str
    asset: str
    from_chain: int
    to_chain: int
    amount: int
    tx_ref: str
    order_ref: str
    estimated_output: int
    fallback: bool = False


@dataclass(frozen=True)
class BridgeStrategy:
    provider: str
    available: bool
    reason: Optional[str] = None


# ----------------------------------------------------------------------
# Results
# ----------------------------------------------------------------------
@dataclass(frozen=True)
class ExecutionResult:
    opportunity_id: str
    success: bool
    plan: ExecutionPlan
    completed_steps: Tuple[ExecutionStep, ...]
    failed_step: Optional[ExecutionStep]
    net_profit: int
    total_gas_cost: int
    total_bridge_cost: int
    execution_time: float
    tx_refs: Tuple[str, ...]
    error: Optional[str] = None
    simulated: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "opportunity_id": self.opportunity_id,
            "success": self.success,
            "completed_steps": len(self.completed_steps),
            "failed_step": self.failed_step.description if self.failed_step else None,
            "net_profit": self.net_profit,
            "total_gas_cost": self.total_gas_cost,
            "total_bridge_cost": self.total_bridge_cost,
            "execution_time": round(self.execution_time, 3),
            "tx_refs": list(self.tx_refs),
            "error": self.error,
            "simulated": self.simulated,
        }


@dataclass
class Metrics:
    total_trades: int = 0
    successful_trades: int = 0
    failed_trades: int = 0
    total_profit: int = 0
    total_loss: int = 0
    net_profit: int = 0
    average_profit: float = 0.0
    largest_profit: int = 0
    largest_loss: int = 0
    last_update: float = field(default_factory=time.time)

    def record(self, success: bool, profit: int) -> None:
        self.total_trades += 1
        if success:
            self.successful_trades += 1
            if profit >= 0:
                self.total_profit += profit
                self.largest_profit = max(self.largest_profit, profit)
            else:
                self.total_loss += -profit
                self.largest_loss = max(self.largest_loss, -profit)
        else:
            self.failed_trades += 1
        self.net_profit = self.total_profit - self.total_loss
        self.average_profit = self.net_profit / self.total_trades if self.total_trades else 0.0
        self.last_update = time.time()

    @property
    def success_rate(self) -> float:
        return self.successful_trades / self.total_trades * 100 if self.total_trades else 0.0


__all__ = [
    "PRICE_DECIMALS",
    "PARITY_PRICE",
    "NETWORK_A",
    "NETWORK_B",
    "AVALANCHE_TO_SONIC",
    "SONIC_TO_AVALANCHE",
    "DIRECTIONS",
    "STEP_SWAP",
    "STEP_BRIDGE",
    "STEP_WAIT",
    "STATUS_PENDING",
    "STATUS_EXECUTING",
    "STATUS_COMPLETED",
    "STATUS_FAILED",
    "generate_id",
    "PriceSample",
    "TradeLeg",
    "ArbitrageOpportunity",
    "ExecutionStep",
    "ExecutionPlan",
    "SwapQuote",
    "SwapExecution",
    "SwapResult",
    "BridgeQuote",
    "BridgeTransfer",
    "BridgeExecution",
    "BridgeStrategy",
    "ExecutionResult",
    "Metrics",
]
