from .client import ChainClient, PoolState, Receipt, Web3ChainClient

__all__ = ["ChainClient", "PoolState", "Receipt", "Web3ChainClient"]
