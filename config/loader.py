"""Configuration loader with sane defaults.

YAML is preferred but JSON is accepted.  Missing keys are filled from
``DEFAULTS`` so the bot can boot in simulation mode with minimal setup.
After the file is merged, a small set of environment variables (read
from the process and from a ``.env`` file via python-dotenv) override the
file values: mode toggles, trade sizing, RPC URLs, contract addresses and
the signing key, which should never live in the YAML file.

Configuration is read once at startup; components receive their section
as a plain dict.
"""
from __future__ import annotations

import copy
import json
import logging
import os
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Optional, Sequence, Tuple

import yaml
from dotenv import load_dotenv

log = logging.getLogger(__name__)

DEFAULTS: Dict[str, Any] = {
    "networks": {
        "avalanche": {
            "chain_id": 43114,
            "rpc_url": "https://api.avax.network/ext/bc/C/rpc",
            "native_symbol": "AVAX",
            "native_usd": 25.0,
            "gas_price_gwei": 25.0,
            "min_native_balance": 0.05,
            "venue": "pharaoh",
            "pool": {"address": None, "fee_bps": 5},
            "router": None,
            "ccip_router": None,
            "tokens": {
                "USDC": {"address": "0xB97EF9Ef8734C71904D8002F8b6Bc66Dd9c48a6E", "decimals": 6},
                "USDT": {"address": "0x9702230A8Ea53601f5cD2dc00fDBc13d4dF4A8c7", "decimals": 6},
            },
        },
        "sonic": {
            "chain_id": 146,
            "rpc_url": "https://rpc.soniclabs.com",
            "native_symbol": "S",
            "native_usd": 0.5,
            "gas_price_gwei": 55.0,
            "min_native_balance": 0.5,
            "venue": "shadow",
            "pool": {"address": None, "fee_bps": 8},
            "router": None,
            "ccip_router": None,
            "tokens": {
                "USDC": {"address": "0x29219dd400f2Bf60E5a23d13Be72B486D4038894", "decimals": 6},
                "USDT": {"address": "0x6047828dc181963ba44974801FF68e538dA5eaF9", "decimals": 6},
            },
        },
    },
    "strategy": {
        "trade_amount_usd": 1.0,
        "min_trade_amount_usd": 1.0,
        "max_trade_amount_usd": 50.0,
        "profit_threshold_usd": 0.10,
        "min_profit_pct": 0.1,
        "min_price_difference_pct": 0.01,
        "slippage_tolerance": 0.005,
        "revalidation_ratio": 0.5,
        "test_gross_profit_usd": 0.05,
    },
    "price": {
        "staleness_sec": 30,
        "history_size": 100,
        "twap_window_sec": 300,
        "sanity_min": 500_000,
        "sanity_max": 2_000_000,
    },
    "execution": {
        "simulation_mode": True,
        "test_mode": False,
        "fallback_pricing": False,
        "step_wait_sec": 1.0,
        "simulation_delay_sec": 3.0,
        "estimated_duration_sec": 360,
        "receipt_timeout_sec": 120,
    },
    "supervisor": {
        "poll_interval_ms": 10_000,
        "max_consecutive_errors": 5,
        "error_backoff_sec": 5.0,
        "health_tick_interval": 10,
    },
    "bridges": {
        "debridge": {
            "api_url": "https://dln.debridge.finance/v1.0/dln",
            "fixed_fee_wei": 10 ** 15,
            "average_time_sec": 180,
            "poll_interval_sec": 15,
            "timeout_sec": 300,
            "http_timeout_sec": 15,
            "slippage_bps": 50,
        },
        "ccip": {
            "average_time_sec": 900,
            "completion_dwell_sec": 600,
            "poll_interval_sec": 30,
            "timeout_sec": 900,
            "gas_limit": 200_000,
            "fallback_fee_wei": 3 * 10 ** 15,
            "supported_assets": ["USDC"],
        },
        "simulation": {
            "fee_wei": 10 ** 15,
            "min_dwell_sec": 60,
            "max_dwell_sec": 180,
            "timeout_sec": 300,
        },
    },
    "retry": {"max_attempts": 3, "base_delay_sec": 2.0, "backoff": 2.0},
    "wallet": {"private_key": None},
    "logging": {"level": "INFO", "terse": False},
}


def _as_bool(value: str) -> bool:
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


# env var -> (config path, parser)
ENV_OVERRIDES: Dict[str, Tuple[Sequence[str], Callable[[str], Any]]] = {
    "SIMULATION_MODE": (("execution", "simulation_mode"), _as_bool),
    "ENABLE_TEST_MODE": (("execution", "test_mode"), _as_bool),
    "USE_FALLBACK_PRICING": (("execution", "fallback_pricing"), _as_bool),
    "PROFIT_THRESHOLD_USD": (("strategy", "profit_threshold_usd"), float),
    "MIN_TRADE_AMOUNT_USD": (("strategy", "min_trade_amount_usd"), float),
    "MAX_TRADE_AMOUNT_USD": (("strategy", "max_trade_amount_usd"), float),
    "TRADE_AMOUNT_USD": (("strategy", "trade_amount_usd"), float),
    "SLIPPAGE_TOLERANCE": (("strategy", "slippage_tolerance"), float),
    "MONITORING_INTERVAL_MS": (("supervisor", "poll_interval_ms"), int),
    "LOG_LEVEL": (("logging", "level"), str),
    "PRIVATE_KEY": (("wallet", "private_key"), str),
    "DEBRIDGE_API_URL": (("bridges", "debridge", "api_url"), str),
    "AVALANCHE_RPC_URL": (("networks", "avalanche", "rpc_url"), str),
    "SONIC_RPC_URL": (("networks", "sonic", "rpc_url"), str),
    "AVALANCHE_USDC": (("networks", "avalanche", "tokens", "USDC", "address"), str),
    "AVALANCHE_USDT": (("networks", "avalanche", "tokens", "USDT", "address"), str),
    "SONIC_USDC": (("networks", "sonic", "tokens", "USDC", "address"), str),
    "SONIC_USDT": (("networks", "sonic", "tokens", "USDT", "address"), str),
    "PHARAOH_USDC_USDT_POOL": (("networks", "avalanche", "pool", "address"), str),
    "SHADOW_USDC_USDT_POOL": (("networks", "sonic", "pool", "address"), str),
    "PHARAOH_ROUTER": (("networks", "avalanche", "router"), str),
    "SHADOW_ROUTER": (("networks", "sonic", "router"), str),
    "CCIP_ROUTER_AVALANCHE": (("networks", "avalanche", "ccip_router"), str),
    "CCIP_ROUTER_SONIC": (("networks", "sonic", "ccip_router"), str),
}


def _load_file(path: Path) -> Dict[str, Any]:
    if not path.exists():
        log.warning("[config] config file not found: %s; using defaults", path)
        return {}
    if path.suffix.lower() in {".yaml", ".yml"}:
        return yaml.safe_load(path.read_text()) or {}
    return json.loads(path.read_text())


def _merge_dict(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    out = dict(base)
    for k, v in override.items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = _merge_dict(out[k], v)
        else:
            out[k] = v
    return out


def _set_path(cfg: Dict[str, Any], path: Sequence[str], value: Any) -> None:
    node = cfg
    for key in path[:-1]:
        child = node.get(key)
        if not isinstance(child, dict):
            child = {}
        else:
            child = dict(child)
        node[key] = child
        node = child
    node[path[-1]] = value


def apply_env_overrides(cfg: Dict[str, Any], environ: Mapping[str, str]) -> Dict[str, Any]:
    """Return a copy of ``cfg`` with recognised environment variables applied."""

    out = dict(cfg)
    for name, (path, parse) in ENV_OVERRIDES.items():
        raw = environ.get(name)
        if raw is None or raw == "":
            continue
        try:
            value = parse(raw)
        except ValueError:
            log.warning("[config] ignoring %s=%r: not a valid %s", name, raw, parse.__name__)
            continue
        _set_path(out, path, value)
        if name != "PRIVATE_KEY":
            log.debug("[config] override %s -> %s", name, ".".join(path))
    return out


def load_bot_config(
    path: str | Path | None,
    *,
    env: Optional[Mapping[str, str]] = None,
    dotenv_path: str | Path | None = None,
) -> Dict[str, Any]:
    """Load configuration file, merge with defaults and apply env overrides.

    When ``env`` is omitted the process environment is used after loading
    ``.env`` (``dotenv_path`` if given).  Pass an explicit mapping to keep
    the process environment out of the picture.
    """

    raw = _load_file(Path(path)) if path else {}
    cfg = _merge_dict(copy.deepcopy(DEFAULTS), raw)
    if env is None:
        load_dotenv(dotenv_path)
        env = os.environ
    return apply_env_overrides(cfg, env)


__all__ = ["load_bot_config", "apply_env_overrides", "DEFAULTS", "ENV_OVERRIDES"]
