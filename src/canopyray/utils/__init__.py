from .logging import get_logger
from .spectral import calculate_ppfd, band_energy, daily_light_integral

__all__ = [
    "get_logger",
    "calculate_ppfd",
    "band_energy",
    "daily_light_integral",
]
