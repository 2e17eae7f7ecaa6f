"""Structured, colored logging utilities for the arbitrage bot.

Components log with the usual ``[component] message`` prefix and may
attach structured context through ``extra={"ctx": {...}}``; the formatter
renders it as a compact JSON suffix so the record stays greppable.
"""
from __future__ import annotations

import json
import logging
import sys
from typing import Any, Dict, Optional

# Simple ANSI color map
LEVEL_COLORS = {
    "DEBUG": "\033[36m",
    "INFO": "\033[32m",
    "WARNING": "\033[33m",
    "ERROR": "\033[31m",
    "CRITICAL": "\033[35m",
}
RESET = "\033[0m"

NOISY_LOGGERS = ("web3", "urllib3", "aiohttp", "asyncio")


def _render_ctx(ctx: Any) -> str:
    if not ctx:
        return ""
    try:
        return " " + json.dumps(ctx, sort_keys=True, default=str, separators=(",", ":"))
    except (TypeError, ValueError):
        return f" {ctx!r}"


class ColorFormatter(logging.Formatter):
    def __init__(self, fmt: Optional[str] = None, *, color: bool = True) -> None:
        super().__init__(fmt)
        self.color = color

    def format(self, record: logging.LogRecord) -> str:
        base = super().format(record) + _render_ctx(getattr(record, "ctx", None))
        color = LEVEL_COLORS.get(record.levelname, "") if self.color else ""
        return f"{color}{base}{RESET}" if color else base


def ctx(**fields: Any) -> Dict[str, Any]:
    """Shorthand for ``extra={"ctx": {...}}``."""

    return {"ctx": fields}


def setup_logging(level: int | str = logging.INFO, terse: bool = False) -> None:
    """Install a colored stream handler if none exists."""

    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    root = logging.getLogger()
    root.setLevel(level)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    if root.handlers:
        return

    handler = logging.StreamHandler(sys.stdout)
    fmt = "%(asctime)s [%(levelname)s] %(name)s: %(message)s" if not terse else "[%(levelname)s] %(message)s"
    handler.setFormatter(ColorFormatter(fmt, color=sys.stdout.isatty()))
    root.addHandler(handler)


__all__ = ["setup_logging", "ColorFormatter", "ctx"]
