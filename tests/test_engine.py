"""
Opportunity engine tests.

Detection arithmetic, plan ordering per direction, and the execution
rules: a single execution at a time, re-validation right before the
first step, step failure reporting and simulation mode.
"""

import asyncio
from types import SimpleNamespace
from typing import Dict, List, Optional

import pytest

from bridge import BridgeCoordinator, SimulationBridge
from bridge.coordinator import BridgeCostEstimate
from core.arbitrage_engine import OpportunityEngine
from core.errors import (
    EXECUTION_IN_PROGRESS,
    MONITOR_TIMEOUT,
    PRICE_MOVED_AGAINST_US,
    QUOTES_UNAVAILABLE,
    BridgeError,
    ExecutionError,
)
from core.models import (
    AVALANCHE_TO_SONIC,
    SONIC_TO_AVALANCHE,
    STATUS_COMPLETED,
    STEP_BRIDGE,
    STEP_SWAP,
    STEP_WAIT,
    BridgeExecution,
    BridgeStrategy,
    PriceSample,
    SwapQuote,
    SwapResult,
)
from dex.coordinator import SwapCostEstimate


class FakeSwaps:
    """Swap coordinator stand-in: fixed costs, scripted re-validation quotes."""

    def __init__(self, registry, quotes: Optional[Dict[str, int]] = None, gain: int = 0):
        self.registry = registry
        self.quotes = quotes if quotes is not None else {"pharaoh": 1_000_000, "shadow": 1_010_000}
        self.gain = gain
        self.executed: List[tuple] = []

    async def estimate_swap_costs(self, legs):
        return SwapCostEstimate(total_gas_cost=400, total_price_impact=0.1)

    async def quote_all(self, token_in, token_out, amount, networks=None):
        return {
            venue: SwapQuote(
                venue=venue,
                network=self.registry.by_venue(venue).name,
                token_in=token_in,
                token_out=token_out,
                amount_in=amount,
                amount_out=out,
                price_impact=0.0,
                fee=0,
                gas_estimate=0,
            )
            for venue, out in self.quotes.items()
        }

    def venue_for_network(self, network):
        return SimpleNamespace(name=self.registry.get(network).venue)

    def venue(self, name):
        return SimpleNamespace(name=name, is_available=lambda *args: True)

    async def execute(self, venue, token_in, token_out, amount):
        self.executed.append((venue, token_in, token_out, amount))
        return SwapResult(
            venue=venue,
            network=self.registry.by_venue(venue).name,
            tx_ref=f"0xswap{len(self.executed)}",
            amount_in=amount,
            amount_out=amount + self.gain,
            gas_used=0,
            price_impact=0.0,
        )

    async def health_check(self):
        return {"pharaoh": {"healthy": True}, "shadow": {"healthy": True}}


class FakeBridges:
    """Lossless bridge; monitoring can be held open or made to fail."""

    def __init__(self, gate: Optional[asyncio.Event] = None, monitor_error: Optional[Exception] = None):
        self.gate = gate
        self.monitor_error = monitor_error
        self.executed: List[tuple] = []
        self.simulation_mode = False

    def estimate_arbitrage_bridge_costs(self, direction):
        return BridgeCostEstimate(total_cost=500)

    def strategy(self, asset, from_chain, to_chain):
        return BridgeStrategy(provider="ccip", available=True)

    def set_simulation_mode(self, enabled):
        self.simulation_mode = enabled

    async def execute(self, asset, from_chain, to_chain, amount, recipient=None, force_provider=None):
        self.executed.append((asset, from_chain, to_chain, amount))
        return BridgeExecution(
            provider="ccip",
            asset=asset,
            from_chain=from_chain,
            to_chain=to_chain,
            amount=amount,
            tx_ref=f"0xbridge{len(self.executed)}",
            order_ref=f"order{len(self.executed)}",
            estimated_output=amount,
        )

    async def monitor(self, execution, timeout=None):
        if self.gate is not None:
            await self.gate.wait()
        if self.monitor_error is not None:
            raise self.monitor_error
        return {"status": "completed"}

    async def health_check(self):
        return {"simulation": {"healthy": True}}


def make_samples(price_a: int, price_b: int) -> Dict[str, PriceSample]:
    def sample(pool_key, network, price):
        return PriceSample(
            pool_key=pool_key,
            network=network,
            pool_address=f"0x{network}",
            price=price,
            inverse_price=10 ** 12 // price,
            liquidity=10 ** 18,
            sqrt_price_x96=0,
            block_number=1,
            timestamp=1_000.0,
        )

    return {"avalanche": sample("pharaoh", "avalanche", price_a), "sonic": sample("shadow", "sonic", price_b)}


def make_engine(config, registry, swaps=None, bridges=None, simulation_mode=False):
    return OpportunityEngine(
        registry=registry,
        swaps=swaps or FakeSwaps(registry),
        bridges=bridges or FakeBridges(),
        config=config,
        simulation_mode=simulation_mode,
    )


async def make_opportunity(engine, price_a=1_000_000, price_b=1_010_000, amount=10_000_000):
    """A 1% spread bought on avalanche and sold on sonic."""
    return await engine.evaluate(AVALANCHE_TO_SONIC, make_samples(price_a, price_b), amount)


class TestDetection:
    @pytest.mark.asyncio
    async def test_net_profit_after_costs(self, config, registry):
        """1 USD at a 0.1% spread: gross 1000, minus 400 gas and 500 bridge."""
        engine = make_engine(config, registry)

        opportunity = await engine.evaluate(AVALANCHE_TO_SONIC, make_samples(999_500, 1_000_500), 1_000_000)

        assert opportunity.buy.network == "avalanche"
        assert opportunity.sell.network == "sonic"
        assert opportunity.gross_profit == 1_000
        assert opportunity.estimated_gas_cost == 400
        assert opportunity.estimated_bridge_cost == 500
        assert opportunity.net_profit == 100
        assert opportunity.profit_percentage == pytest.approx(0.01)
        assert opportunity.profitable is False

    @pytest.mark.asyncio
    async def test_profitable_above_threshold(self, config, registry):
        engine = make_engine(config, registry)

        opportunity = await engine.evaluate(AVALANCHE_TO_SONIC, make_samples(990_000, 1_010_000), 10_000_000)

        assert opportunity.gross_profit == 200_000
        assert opportunity.net_profit == 199_100
        assert opportunity.profitable is True

    @pytest.mark.asyncio
    async def test_wrong_direction_is_skipped(self, config, registry):
        engine = make_engine(config, registry)
        samples = make_samples(999_500, 1_000_500)

        assert await engine.evaluate(SONIC_TO_AVALANCHE, samples, 1_000_000) is None
        found = await engine.find_opportunities(samples, 1_000_000)
        assert [o.direction for o in found] == [AVALANCHE_TO_SONIC]

    @pytest.mark.asyncio
    async def test_forced_detection_uses_test_profit(self, config, registry):
        """Forcing keeps both directions and substitutes a fixed gross profit."""
        engine = make_engine(config, registry)

        found = await engine.find_opportunities(make_samples(1_000_000, 1_000_000), 1_000_000, force=True)

        assert [o.direction for o in found] == [AVALANCHE_TO_SONIC, SONIC_TO_AVALANCHE]
        assert all(o.gross_profit == 50_000 for o in found)
        assert all(o.net_profit == 49_100 for o in found)

    @pytest.mark.asyncio
    async def test_unknown_direction(self, config, registry):
        engine = make_engine(config, registry)
        with pytest.raises(ValueError):
            await engine.evaluate("ethereum-to-sonic", make_samples(1, 2), 1)

    def test_trade_amount_is_clamped(self, config, registry):
        engine = make_engine(config, registry)
        assert engine.trade_amount() == 1_000_000

        engine.trade_amount_usd = 500.0
        assert engine.trade_amount() == 50_000_000


class TestPlans:
    @pytest.mark.asyncio
    async def test_avalanche_to_sonic_order(self, config, registry):
        engine = make_engine(config, registry)
        plan = engine.build_plan(await make_opportunity(engine))

        assert [s.kind for s in plan.steps] == [STEP_SWAP, STEP_BRIDGE, STEP_WAIT, STEP_SWAP, STEP_BRIDGE, STEP_WAIT]
        assert [s.network for s in plan.steps] == ["avalanche", "avalanche", "sonic", "sonic", "sonic", "avalanche"]
        assert plan.steps[0].description == "Swap USDC -> USDT on Pharaoh (avalanche)"
        assert plan.steps[1].description == "Bridge USDT from avalanche to sonic"
        assert plan.steps[2].description == "Wait for USDT to arrive on sonic"
        assert plan.estimated_bridge_cost == 500
        assert plan.estimated_duration == 360

    @pytest.mark.asyncio
    async def test_sonic_to_avalanche_order(self, config, registry):
        engine = make_engine(config, registry)
        opportunity = await engine.evaluate(SONIC_TO_AVALANCHE, make_samples(1_010_000, 1_000_000), 10_000_000)

        plan = engine.build_plan(opportunity)

        assert [s.kind for s in plan.steps] == [STEP_BRIDGE, STEP_WAIT, STEP_SWAP, STEP_BRIDGE, STEP_WAIT, STEP_SWAP]
        assert plan.steps[0].description == "Bridge USDC from avalanche to sonic"
        assert plan.steps[2].description == "Swap USDC -> USDT on Shadow (sonic)"
        assert plan.steps[5].token_out == "USDC"


class TestExecution:
    @pytest.mark.asyncio
    async def test_successful_run(self, config, registry):
        """Every step completes; net is final amount minus input and gas."""
        swaps = FakeSwaps(registry, gain=100)
        bridges = FakeBridges()
        engine = make_engine(config, registry, swaps=swaps, bridges=bridges)
        opportunity = await make_opportunity(engine)

        result = await engine.execute(opportunity)

        assert result.success is True
        assert result.net_profit == 200
        assert len(result.completed_steps) == 6
        assert all(s.status == STATUS_COMPLETED for s in result.completed_steps)
        assert result.tx_refs == ("0xswap1", "0xbridge1", "0xswap2", "0xbridge2")
        assert result.total_bridge_cost == 500
        assert [s[0] for s in swaps.executed] == ["pharaoh", "shadow"]
        assert engine.is_executing is False

    @pytest.mark.asyncio
    async def test_concurrent_request_rejected(self, config, registry):
        """A second request while one is in flight is refused and not recorded."""
        gate = asyncio.Event()
        bridges = FakeBridges(gate=gate)
        engine = make_engine(config, registry, bridges=bridges)
        first = await make_opportunity(engine)
        second = await make_opportunity(engine)

        task = asyncio.create_task(engine.execute(first))
        for _ in range(50):
            await asyncio.sleep(0)
            if bridges.executed:
                break
        assert engine.is_executing is True

        with pytest.raises(ExecutionError) as exc_info:
            await engine.execute(second)
        assert exc_info.value.kind == EXECUTION_IN_PROGRESS
        assert engine.history() == []

        gate.set()
        result = await task
        assert result.success is True
        assert [r.opportunity_id for r in engine.history()] == [first.id]
        assert engine.is_executing is False

    @pytest.mark.asyncio
    async def test_revalidation_aborts_when_spread_collapsed(self, config, registry):
        """1.0% at detection, 0.4% now: aborted and recorded as failed."""
        swaps = FakeSwaps(registry, quotes={"pharaoh": 1_000_000, "shadow": 1_004_000})
        engine = make_engine(config, registry, swaps=swaps)
        opportunity = await make_opportunity(engine)

        with pytest.raises(ExecutionError) as exc_info:
            await engine.execute(opportunity)

        assert exc_info.value.kind == PRICE_MOVED_AGAINST_US
        assert swaps.executed == []
        history = engine.history()
        assert len(history) == 1
        assert history[0].success is False
        assert history[0].net_profit == 0
        assert engine.is_executing is False

    @pytest.mark.asyncio
    async def test_revalidation_passes_with_most_of_spread(self, config, registry):
        swaps = FakeSwaps(registry, quotes={"pharaoh": 1_000_000, "shadow": 1_008_000})
        engine = make_engine(config, registry, swaps=swaps)

        result = await engine.execute(await make_opportunity(engine))

        assert result.success is True
        assert len(swaps.executed) == 2

    @pytest.mark.asyncio
    async def test_revalidation_without_quotes(self, config, registry):
        swaps = FakeSwaps(registry, quotes={"pharaoh": 1_000_000})
        engine = make_engine(config, registry, swaps=swaps)

        with pytest.raises(ExecutionError) as exc_info:
            await engine.execute(await make_opportunity(engine))

        assert exc_info.value.kind == QUOTES_UNAVAILABLE
        assert exc_info.value.context["missing"] == ["shadow"]
        assert engine.history()[0].success is False

    @pytest.mark.asyncio
    async def test_bridge_timeout_fails_at_bridge_step(self, config, registry):
        """The swap before the bridge is reported; the bridge step is the failure."""
        bridges = FakeBridges(monitor_error=BridgeError("no confirmation", kind=MONITOR_TIMEOUT))
        engine = make_engine(config, registry, bridges=bridges)

        result = await engine.execute(await make_opportunity(engine))

        assert result.success is False
        assert [s.kind for s in result.completed_steps] == [STEP_SWAP]
        assert result.failed_step.kind == STEP_BRIDGE
        assert result.failed_step.status == "failed"
        assert MONITOR_TIMEOUT in result.error
        assert result.net_profit == 0
        assert result.tx_refs == ("0xswap1", "0xbridge1")
        assert result.failed_step.tx_ref == "0xbridge1"
        assert engine.is_executing is False
        assert engine.history()[0] is result

    @pytest.mark.asyncio
    async def test_in_flight_bridge_transfer_is_reported(self, config, registry):
        """A transfer whose monitoring times out keeps its source-chain tx in the result."""
        bridges = BridgeCoordinator(
            registry=registry,
            providers={},
            simulation=SimulationBridge(
                registry=registry, config={"min_dwell_sec": 5, "max_dwell_sec": 5, "timeout_sec": 0.05}
            ),
            simulation_mode=True,
        )
        engine = make_engine(config, registry, bridges=bridges)

        result = await engine.execute(await make_opportunity(engine))

        assert result.success is False
        assert MONITOR_TIMEOUT in result.error
        assert result.failed_step.kind == STEP_BRIDGE
        assert result.failed_step.tx_ref is not None
        assert result.failed_step.tx_ref.startswith("0x")
        assert result.tx_refs == ("0xswap1", result.failed_step.tx_ref)
        assert bridges.simulation._orders == {}

    @pytest.mark.asyncio
    async def test_simulation_mode(self, config, registry):
        """Nothing touches the coordinators; projected profit is reported."""
        swaps = FakeSwaps(registry)
        bridges = FakeBridges()
        engine = make_engine(config, registry, swaps=swaps, bridges=bridges, simulation_mode=True)
        opportunity = await make_opportunity(engine)

        result = await engine.execute(opportunity)

        assert result.success is True
        assert result.simulated is True
        assert result.net_profit == opportunity.net_profit
        assert len(result.completed_steps) == 6
        assert swaps.executed == []
        assert bridges.executed == []

    def test_set_simulation_mode_propagates(self, config, registry):
        bridges = FakeBridges()
        engine = make_engine(config, registry, bridges=bridges)

        engine.set_simulation_mode(True)

        assert engine.simulation_mode is True
        assert bridges.simulation_mode is True


class TestReporting:
    @pytest.mark.asyncio
    async def test_history_and_stats(self, config, registry):
        engine = make_engine(config, registry, simulation_mode=True)
        first = await make_opportunity(engine)
        second = await make_opportunity(engine)

        await engine.execute(first)
        await engine.execute(second)

        assert [r.opportunity_id for r in engine.history()] == [second.id, first.id]
        assert len(engine.history(1)) == 1
        stats = engine.stats()
        assert stats["total_executions"] == 2
        assert stats["successful"] == 2
        assert stats["success_rate"] == 100.0
        assert stats["total_profit"] == first.net_profit + second.net_profit

    @pytest.mark.asyncio
    async def test_simulate_lists_risks(self, config, registry):
        engine = make_engine(config, registry)
        opportunity = await engine.evaluate(AVALANCHE_TO_SONIC, make_samples(1_000_000, 1_000_500), 10_000_000)

        report = await engine.simulate(opportunity)

        assert report["feasible"] is True
        assert report["estimated_profit"] == 4_100
        assert len(report["steps"]) == 6
        assert any("low price difference" in r for r in report["risks"])

    @pytest.mark.asyncio
    async def test_health_check(self, config, registry):
        engine = make_engine(config, registry)
        health = await engine.health_check()
        assert health["healthy"] is True
        assert health["executing"] is False
