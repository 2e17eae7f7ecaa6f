from .base import SwapVenue
from .coordinator import SwapCoordinator, build_venues
from .pharaoh import PHARAOH, PharaohVenue
from .shadow import SHADOW, ShadowVenue

__all__ = [
    "SwapVenue",
    "SwapCoordinator",
    "build_venues",
    "PharaohVenue",
    "ShadowVenue",
    "PHARAOH",
    "SHADOW",
]
