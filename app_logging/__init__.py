"""Logging package entrypoint."""
from .structured import ColorFormatter, ctx, setup_logging

__all__ = ["setup_logging", "ColorFormatter", "ctx"]
