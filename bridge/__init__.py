from .base import CCIP, DEBRIDGE, SIMULATION, BridgeProvider
from .ccip import CCIPProvider
from .coordinator import BridgeCoordinator
from .debridge import DeBridgeProvider
from .simulation import SimulationBridge

__all__ = [
    "BridgeProvider",
    "BridgeCoordinator",
    "CCIPProvider",
    "DeBridgeProvider",
    "SimulationBridge",
    "CCIP",
    "DEBRIDGE",
    "SIMULATION",
]
