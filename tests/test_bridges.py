"""
Bridge provider and bridge coordinator tests.

Provider strategy table, simulation fallback on execution failure, the
hard monitoring timeout, and the DeBridge/CCIP adapters driven through a
patched HTTP layer and the in-memory chain client.
"""

import asyncio
import random

import pytest
from unittest.mock import AsyncMock

from bridge import CCIP, DEBRIDGE, SIMULATION, BridgeCoordinator, CCIPProvider, DeBridgeProvider, SimulationBridge
from conftest import CCIP_A, WALLET
from core.errors import MONITOR_TIMEOUT, ORDER_CANCELLED, UNSUPPORTED_ROUTE, BridgeError
from core.models import AVALANCHE_TO_SONIC, SONIC_TO_AVALANCHE, BridgeExecution, BridgeQuote
from utils.safety import RetryPolicy

AVAX = 43114
SONIC = 146
USDC_AVAX = "0xB97EF9Ef8734C71904D8002F8b6Bc66Dd9c48a6E"
FAST_RETRY = RetryPolicy(max_attempts=1, base_delay=0)


@pytest.fixture
def simulation(config, registry):
    return SimulationBridge(registry=registry, config=config["bridges"]["simulation"], rng=random.Random(7))


@pytest.fixture
def debridge(config, registry, clients):
    return DeBridgeProvider(registry=registry, clients=clients, retry=FAST_RETRY, config=config["bridges"]["debridge"])


@pytest.fixture
def ccip(config, registry, clients):
    return CCIPProvider(registry=registry, clients=clients, retry=FAST_RETRY, config=config["bridges"]["ccip"])


@pytest.fixture
def coordinator(registry, simulation, debridge, ccip):
    return BridgeCoordinator(
        registry=registry,
        providers={DEBRIDGE: debridge, CCIP: ccip},
        simulation=simulation,
        simulation_mode=False,
    )


def make_quote(provider: str, cost: int, output: int, amount: int = 1_000_000) -> BridgeQuote:
    return BridgeQuote(
        provider=provider,
        from_chain=AVAX,
        to_chain=SONIC,
        asset="USDC",
        amount_in=amount,
        estimated_output=output,
        estimated_cost=cost,
        estimated_time=60,
        slippage=0.0,
    )


class TestSimulationBridge:
    @pytest.mark.asyncio
    async def test_quote(self, simulation):
        """0.1% haircut and a fee of 0.001 native on the source chain."""
        quote = await simulation.quote(AVAX, SONIC, 1_000_000, "usdt")

        assert quote.asset == "USDT"
        assert quote.estimated_output == 999_000
        assert quote.estimated_cost == 25_000
        assert quote.effective_cost == 26_000

    @pytest.mark.asyncio
    async def test_execute_and_monitor(self, simulation):
        """Completion arrives after a dwell inside the configured window."""
        transfer = await simulation.execute(AVAX, SONIC, 1_000_000, "USDC")

        assert transfer.order_ref.startswith("sim_")
        assert transfer.tx_ref.startswith("0x")
        assert len(transfer.tx_ref) == 66
        assert transfer.estimated_output == 999_000

        status = await simulation.monitor(transfer.order_ref)
        assert status["status"] == "completed"
        assert 0.01 <= status["elapsed"] <= 0.02
        assert simulation._orders == {}

    @pytest.mark.asyncio
    async def test_monitor_unknown_order(self, simulation):
        with pytest.raises(BridgeError):
            await simulation.monitor("sim_missing")

    @pytest.mark.asyncio
    async def test_abandoned_monitor_releases_order(self, simulation):
        """An order whose monitor is cut off is not kept around."""
        simulation.min_dwell = simulation.max_dwell = 5.0
        transfer = await simulation.execute(AVAX, SONIC, 1_000_000, "USDC")

        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(simulation.monitor(transfer.order_ref), timeout=0.01)

        assert simulation._orders == {}

    def test_supports_any_distinct_chains(self, simulation):
        assert simulation.supports(AVAX, SONIC, "DAI")
        assert not simulation.supports(AVAX, AVAX, "USDC")


class TestStrategy:
    def test_preferred_providers(self, coordinator):
        """USDC goes over CCIP, USDT over DeBridge."""
        usdc = coordinator.strategy("USDC", AVAX, SONIC)
        usdt = coordinator.strategy("usdt", SONIC, AVAX)

        assert (usdc.provider, usdc.available) == (CCIP, True)
        assert (usdt.provider, usdt.available) == (DEBRIDGE, True)

    def test_fallback_order(self, coordinator):
        """Without the preferred provider the fallback order applies."""
        del coordinator.providers[CCIP]
        assert coordinator.strategy("USDC", AVAX, SONIC).provider == DEBRIDGE

    def test_unsupported_route(self, coordinator):
        strategy = coordinator.strategy("DAI", AVAX, SONIC)

        assert strategy.provider == SIMULATION
        assert strategy.available is False
        assert "DAI" in strategy.reason

    def test_arbitrage_bridge_costs(self, coordinator):
        """Leg fees are charged on each leg's source chain."""
        estimate = coordinator.estimate_arbitrage_bridge_costs(AVALANCHE_TO_SONIC)

        assert [(leg["asset"], leg["from"], leg["provider"]) for leg in estimate.breakdown] == [
            ("USDT", "avalanche", DEBRIDGE),
            ("USDC", "sonic", CCIP),
        ]
        assert estimate.total_cost == 25_000 + 500

        reverse = coordinator.estimate_arbitrage_bridge_costs(SONIC_TO_AVALANCHE)
        assert [leg["asset"] for leg in reverse.breakdown] == ["USDC", "USDT"]
        assert reverse.total_cost == 25_500


class TestCoordinatorQuotes:
    @pytest.mark.asyncio
    async def test_quotes_sorted_by_effective_cost(self, coordinator, debridge, ccip):
        debridge.quote = AsyncMock(return_value=make_quote(DEBRIDGE, cost=25_000, output=999_900))
        ccip.quote = AsyncMock(return_value=make_quote(CCIP, cost=3_000, output=1_000_000))

        quotes = await coordinator.quote_all("USDC", AVAX, SONIC, 1_000_000)

        assert [q.provider for q in quotes] == [CCIP, DEBRIDGE]
        best = await coordinator.best_quote("USDC", AVAX, SONIC, 1_000_000)
        assert best.provider == CCIP

    @pytest.mark.asyncio
    async def test_simulation_quote_when_all_fail(self, coordinator, debridge, ccip):
        debridge.quote = AsyncMock(side_effect=BridgeError("api down"))
        ccip.quote = AsyncMock(side_effect=BridgeError("rpc down"))

        quotes = await coordinator.quote_all("USDC", AVAX, SONIC, 1_000_000)

        assert [q.provider for q in quotes] == [SIMULATION]

    @pytest.mark.asyncio
    async def test_simulation_mode_skips_real_providers(self, coordinator, debridge):
        debridge.quote = AsyncMock()
        coordinator.set_simulation_mode(True)

        quotes = await coordinator.quote_all("USDT", AVAX, SONIC, 1_000_000)

        assert [q.provider for q in quotes] == [SIMULATION]
        debridge.quote.assert_not_awaited()


class TestCoordinatorExecution:
    @pytest.mark.asyncio
    async def test_failed_provider_falls_back_to_simulation(self, coordinator, debridge):
        """A real provider failure never fails the bridge step outright."""
        debridge.execute = AsyncMock(side_effect=BridgeError("api down"))

        execution = await coordinator.execute("USDT", AVAX, SONIC, 1_000_000)

        debridge.execute.assert_awaited_once()
        assert execution.provider == SIMULATION
        assert execution.fallback is True
        assert execution.estimated_output == 999_000

    @pytest.mark.asyncio
    async def test_simulation_mode_uses_simulation(self, coordinator, debridge):
        debridge.execute = AsyncMock()
        coordinator.set_simulation_mode(True)

        execution = await coordinator.execute("USDT", AVAX, SONIC, 1_000_000)

        debridge.execute.assert_not_awaited()
        assert execution.provider == SIMULATION
        assert execution.fallback is False

    @pytest.mark.asyncio
    async def test_unsupported_asset_runs_simulation(self, coordinator):
        execution = await coordinator.execute("DAI", AVAX, SONIC, 1_000_000)
        assert execution.provider == SIMULATION
        assert execution.fallback is False

    @pytest.mark.asyncio
    async def test_monitor_hard_timeout(self, coordinator, simulation):
        """A provider that never reports back is cut off by the coordinator."""

        async def never_completes(order_ref, timeout=None):
            await asyncio.Event().wait()

        simulation.monitor = never_completes
        execution = await coordinator.execute("DAI", AVAX, SONIC, 1_000_000)

        with pytest.raises(BridgeError) as exc_info:
            await coordinator.monitor(execution, timeout=0.05)

        assert exc_info.value.kind == MONITOR_TIMEOUT
        assert exc_info.value.context["order_ref"] == execution.order_ref
        assert "after 0.05s" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_monitor_multiple(self, coordinator):
        done = await coordinator.execute("DAI", AVAX, SONIC, 1_000_000)
        missing = BridgeExecution(
            provider=SIMULATION,
            asset="DAI",
            from_chain=AVAX,
            to_chain=SONIC,
            amount=1,
            tx_ref="0x0",
            order_ref="sim_missing",
            estimated_output=1,
        )

        summary = await coordinator.monitor_multiple([done, missing], timeout=1.0)

        assert summary.completed == 1
        assert summary.failed == 1
        assert summary.by_provider[SIMULATION] == {"completed": 1, "failed": 1}

    @pytest.mark.asyncio
    async def test_health_check(self, coordinator, clients):
        clients["avalanche"].call_results["isChainSupported"] = True
        coordinator.providers[DEBRIDGE]._request = AsyncMock(side_effect=BridgeError("api down"))

        report = await coordinator.health_check()

        assert report[CCIP]["healthy"] is True
        assert report[DEBRIDGE]["healthy"] is False
        assert report[SIMULATION]["healthy"] is True


class TestDeBridge:
    @pytest.mark.asyncio
    async def test_quote(self, debridge):
        debridge._request = AsyncMock(return_value={"estimation": {"dstChainTokenOut": {"amount": "999000"}}})

        quote = await debridge.quote(AVAX, SONIC, 1_000_000, "USDT")

        method, path, payload = debridge._request.await_args.args
        assert (method, path) == ("POST", "/order/quote")
        assert payload["srcChainTokenInAmount"] == "1000000"
        assert payload["dstChainId"] == SONIC
        assert quote.estimated_output == 999_000
        assert quote.estimated_cost == 25_000

    @pytest.mark.asyncio
    async def test_quote_missing_estimation(self, debridge):
        debridge._request = AsyncMock(return_value={})
        with pytest.raises(BridgeError):
            await debridge.quote(AVAX, SONIC, 1_000_000, "USDT")

    @pytest.mark.asyncio
    async def test_quote_unsupported_asset(self, debridge):
        debridge._request = AsyncMock()
        with pytest.raises(BridgeError) as exc_info:
            await debridge.quote(AVAX, SONIC, 1_000_000, "DAI")
        assert exc_info.value.kind == UNSUPPORTED_ROUTE
        debridge._request.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_execute_submits_api_transaction(self, debridge, clients):
        spender = "0x" + "cd" * 20
        debridge._request = AsyncMock(
            return_value={
                "tx": {"to": spender, "data": "0xabcdef", "value": "1000"},
                "orderId": "0xorder",
                "estimation": {"dstChainTokenOut": {"amount": "998000"}},
            }
        )
        client = clients["avalanche"]

        transfer = await debridge.execute(AVAX, SONIC, 1_000_000, "USDC")

        payload = debridge._request.await_args.args[2]
        assert payload["senderAddress"] == WALLET
        assert payload["dstChainTokenOutRecipient"] == WALLET
        assert client.approvals == [(USDC_AVAX, spender, 2_000_000)]
        assert client.raw_transactions[0]["value"] == 1000
        assert transfer.order_ref == "0xorder"
        assert transfer.estimated_output == 998_000

    @pytest.mark.asyncio
    async def test_monitor_completed(self, debridge):
        debridge._request = AsyncMock(side_effect=[{"status": "Created"}, {"status": "OrderCompleted"}])

        status = await debridge.monitor("0xorder", timeout=5)

        assert status["status"] == "completed"
        assert status["provider_status"] == "OrderCompleted"
        assert debridge._request.await_count == 2

    @pytest.mark.asyncio
    async def test_monitor_cancelled(self, debridge):
        debridge._request = AsyncMock(return_value={"status": "Cancelled"})

        with pytest.raises(BridgeError) as exc_info:
            await debridge.monitor("0xorder", timeout=5)

        assert exc_info.value.kind == ORDER_CANCELLED

    @pytest.mark.asyncio
    async def test_monitor_times_out(self, debridge):
        debridge._request = AsyncMock(return_value={"status": "Created"})

        with pytest.raises(BridgeError) as exc_info:
            await debridge.monitor("0xorder", timeout=0.05)

        assert exc_info.value.kind == MONITOR_TIMEOUT


class TestCCIP:
    def test_supports_usdc_only(self, ccip):
        assert ccip.supports(AVAX, SONIC, "USDC")
        assert not ccip.supports(AVAX, SONIC, "USDT")

    def test_unknown_selector(self):
        with pytest.raises(BridgeError):
            CCIPProvider.selector(1)

    @pytest.mark.asyncio
    async def test_quote_prices_native_fee(self, ccip, clients):
        clients["avalanche"].call_results["getFee"] = 2 * 10 ** 15

        quote = await ccip.quote(AVAX, SONIC, 1_000_000, "USDC")

        assert quote.estimated_output == 1_000_000
        assert quote.estimated_cost == 50_000
        fn_name, args = clients["avalanche"].calls[0]
        assert fn_name == "getFee"
        assert args[0] == 1673871237479749969

    @pytest.mark.asyncio
    async def test_estimate_fee_fallback(self, ccip, clients):
        clients["avalanche"].call_results["getFee"] = ConnectionError("rpc down")
        assert await ccip.estimate_fee(AVAX, SONIC, 1_000_000) == 3 * 10 ** 15

    @pytest.mark.asyncio
    async def test_execute_and_monitor(self, ccip, clients):
        """The message id comes from the send receipt; completion is assumed after the dwell."""
        client = clients["avalanche"]
        client.call_results["getFee"] = 2 * 10 ** 15
        client.receipt_logs = [{"topics": ["0xevent", "0xmessage"]}]

        transfer = await ccip.execute(AVAX, SONIC, 1_000_000, "USDC")

        assert client.approvals == [(USDC_AVAX, CCIP_A, 1_000_000)]
        tx = client.transactions[0]
        assert tx["fn"] == "ccipSend"
        assert tx["value"] == 2 * 10 ** 15
        assert transfer.order_ref == "0xmessage"
        assert transfer.estimated_output == 1_000_000

        status = await ccip.monitor(transfer.order_ref)
        assert status["status"] == "completed"
        assert status["assumed"] is True

    @pytest.mark.asyncio
    async def test_monitor_timeout_before_dwell(self, ccip, clients):
        """A message that times out is dropped from the pending set."""
        clients["avalanche"].call_results["getFee"] = 2 * 10 ** 15
        clients["avalanche"].receipt_logs = [{"topics": ["0xevent", "0xmessage"]}]
        await ccip.execute(AVAX, SONIC, 1_000_000, "USDC")
        ccip.completion_dwell = 10.0

        with pytest.raises(BridgeError) as exc_info:
            await ccip.monitor("0xmessage", timeout=0.03)

        assert exc_info.value.kind == MONITOR_TIMEOUT
        assert "within 0.03s" in str(exc_info.value)
        assert ccip._pending == {}

    @pytest.mark.asyncio
    async def test_route_availability(self, ccip, clients):
        clients["avalanche"].call_results["isChainSupported"] = True
        assert await ccip.is_route_available(AVAX, SONIC, "USDC") is True
        assert await ccip.is_route_available(AVAX, SONIC, "USDT") is False
