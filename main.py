"""
Entry point for the Avalanche/Sonic stable-pair arbitrage bot.

Wires the components bottom-up (registry -> chain clients -> sampler ->
venues and bridges -> engine -> supervisor), logs the configuration,
wallet gas balances, component health and pool state, then runs the
supervisor until a signal stops it.  The exit code is 0 after a
requested stop and 1 when the circuit breaker opened or startup failed.
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
from pathlib import Path
from typing import Any, Dict, Optional

from app_logging import ctx, setup_logging
from bridge import CCIP, DEBRIDGE, BridgeCoordinator, CCIPProvider, DeBridgeProvider, SimulationBridge
from chain import Web3ChainClient
from chain.abi import ZERO_ADDRESS
from config.loader import load_bot_config
from core.arbitrage_engine import OpportunityEngine
from core.profit import format_amount
from core.result import gather_keyed
from core.supervisor import Supervisor
from dex import SwapCoordinator, build_venues
from scanner import PriceSampler, Registry
from utils.safety import RetryPolicy

log = logging.getLogger(__name__)


# ======================================================================
# WIRING
# ======================================================================
def build_components(cfg: Dict[str, Any]) -> Dict[str, Any]:
    registry = Registry.from_config(cfg)
    private_key = (cfg.get("wallet") or {}).get("private_key")
    clients = {
        name: Web3ChainClient(network=network, private_key=private_key)
        for name, network in registry.networks.items()
    }
    retry = RetryPolicy.from_config(cfg.get("retry"))
    strategy_cfg = cfg.get("strategy", {})
    execution_cfg = cfg.get("execution", {})
    bridges_cfg = cfg.get("bridges", {})
    simulation_mode = bool(execution_cfg.get("simulation_mode", True))

    sampler = PriceSampler(registry=registry, clients=clients, config=cfg.get("price", {}))
    swaps = SwapCoordinator(venues=build_venues(registry, clients, {**strategy_cfg, **execution_cfg}))
    bridges = BridgeCoordinator(
        registry=registry,
        providers={
            DEBRIDGE: DeBridgeProvider(
                registry=registry, clients=clients, retry=retry, config=bridges_cfg.get("debridge", {})
            ),
            CCIP: CCIPProvider(registry=registry, clients=clients, retry=retry, config=bridges_cfg.get("ccip", {})),
        },
        simulation=SimulationBridge(registry=registry, config=bridges_cfg.get("simulation", {})),
        simulation_mode=simulation_mode,
    )
    engine = OpportunityEngine(
        registry=registry, swaps=swaps, bridges=bridges, config=cfg, simulation_mode=simulation_mode
    )
    supervisor = Supervisor(sampler=sampler, engine=engine, config=cfg)
    return {
        "registry": registry,
        "clients": clients,
        "sampler": sampler,
        "swaps": swaps,
        "bridges": bridges,
        "engine": engine,
        "supervisor": supervisor,
    }


# ======================================================================
# STARTUP CHECKS
# ======================================================================
def log_configuration(cfg: Dict[str, Any], registry: Registry) -> None:
    strategy = cfg.get("strategy", {})
    execution = cfg.get("execution", {})
    supervisor = cfg.get("supervisor", {})
    log.info(
        "[main] mode=%s test_mode=%s fallback_pricing=%s",
        "SIMULATION" if execution.get("simulation_mode", True) else "LIVE",
        bool(execution.get("test_mode")),
        bool(execution.get("fallback_pricing")),
    )
    log.info(
        "[main] trade=%.2f USD (min %.2f, max %.2f) threshold=%.2f USD min_profit=%.2f%% interval=%dms",
        float(strategy.get("trade_amount_usd", 0.0)),
        float(strategy.get("min_trade_amount_usd", 0.0)),
        float(strategy.get("max_trade_amount_usd", 0.0)),
        float(strategy.get("profit_threshold_usd", 0.0)),
        float(strategy.get("min_profit_pct", 0.0)),
        int(supervisor.get("poll_interval_ms", 0)),
    )
    for network in registry.networks.values():
        log.info(
            "[main] %s chain=%d venue=%s pool=%s router=%s ccip_router=%s",
            network.name,
            network.chain_id,
            network.venue,
            network.pool.address,
            network.router,
            network.ccip_router,
        )


async def check_balances(registry: Registry, clients: Dict[str, Any]) -> Dict[str, int]:
    """Native gas balance per network; low balances only warn."""

    wallets = {name: c for name, c in clients.items() if c.address != ZERO_ADDRESS}
    if not wallets:
        log.info("[main] no wallet configured; skipping balance check")
        return {}
    outcomes = await gather_keyed({name: c.balance() for name, c in wallets.items()})
    balances: Dict[str, int] = {}
    for name, outcome in outcomes.items():
        if not outcome.ok:
            log.warning("[main] %s balance check failed: %s", name, outcome.error)
            continue
        network = registry.get(name)
        balances[name] = outcome.value
        log.info("[main] %s balance %s", name, format_amount(outcome.value, 18, network.native_symbol))
        if outcome.value < network.min_native_balance_wei:
            log.warning(
                "[main] low %s balance on %s for gas fees",
                network.native_symbol,
                name,
                extra=ctx(balance=outcome.value, minimum=network.min_native_balance_wei),
            )
    return balances


async def run_health_check(engine: OpportunityEngine) -> Optional[Dict[str, Any]]:
    try:
        report = await engine.health_check()
    except Exception as exc:
        log.warning("[main] health check failed, continuing: %s", exc)
        return None
    log.info("[main] health healthy=%s simulation_mode=%s", report["healthy"], report["simulation_mode"])
    for section in ("swaps", "bridges"):
        for name, status in (report.get(section) or {}).items():
            if status.get("healthy"):
                log.info("[main] %s %s healthy", section, name)
            else:
                log.warning("[main] %s %s unhealthy", section, name, extra=ctx(**status))
    return report


async def log_pool_info(registry: Registry, sampler: PriceSampler) -> Dict[str, Dict[str, object]]:
    outcomes = await gather_keyed({name: sampler.pool_info(name) for name in registry.networks})
    pools: Dict[str, Dict[str, object]] = {}
    for name, outcome in outcomes.items():
        if not outcome.ok:
            log.warning("[main] %s pool info unavailable: %s", name, outcome.error)
            continue
        info = outcome.value
        pools[name] = info
        log.info(
            "[main] %s pool %s venue=%s price=%s liquidity=%d",
            name,
            info["address"],
            info["venue"],
            format_amount(int(info["price"])),
            int(info["liquidity"]),
        )
    return pools


async def startup_checks(cfg: Dict[str, Any], components: Dict[str, Any]) -> Dict[str, Any]:
    registry: Registry = components["registry"]
    log_configuration(cfg, registry)
    balances = await check_balances(registry, components["clients"])
    health = await run_health_check(components["engine"])
    pools = await log_pool_info(registry, components["sampler"])
    return {"balances": balances, "health": health, "pools": pools}


# ======================================================================
# ASYNC MAIN
# ======================================================================
async def async_main() -> int:
    repo_root = Path(__file__).resolve().parent
    cfg = load_bot_config(repo_root / "config" / "config.yaml")
    log_cfg = cfg.get("logging", {})
    setup_logging(log_cfg.get("level", "INFO"), terse=bool(log_cfg.get("terse", False)))

    try:
        components = build_components(cfg)
    except (KeyError, ValueError) as exc:
        log.critical("[main] startup failed: %s", exc)
        return 1

    supervisor: Supervisor = components["supervisor"]

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, supervisor.stop)
        except NotImplementedError:  # pragma: no cover - Windows event loop
            signal.signal(sig, lambda *_: loop.call_soon_threadsafe(supervisor.stop))

    try:
        await startup_checks(cfg, components)
        clean = await supervisor.run()
    finally:
        await components["bridges"].close()
    return 0 if clean else 1


def main() -> None:
    sys.exit(asyncio.run(async_main()))


if __name__ == "__main__":
    main()
