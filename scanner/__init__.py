from .price_sampler import PriceSampler, sqrt_price_to_price
from .registry import Network, Pool, Registry, Token

__all__ = [
    "PriceSampler",
    "sqrt_price_to_price",
    "Registry",
    "Network",
    "Pool",
    "Token",
]
