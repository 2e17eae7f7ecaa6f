"""Configuration package entrypoint."""
from .loader import DEFAULTS, load_bot_config

__all__ = ["load_bot_config", "DEFAULTS"]
