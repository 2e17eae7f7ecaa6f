"""Shared helpers."""
from .safety import RetryPolicy, clamp

__all__ = ["RetryPolicy", "clamp"]
