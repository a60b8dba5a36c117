from .api import build_tracer, run_scene
from .placement import PlantingPattern, PlantPlacementSystem, create_standard_tray
from .species import SPECIES_DATABASE, get_species

__all__ = [
    "build_tracer",
    "run_scene",
    "PlantingPattern",
    "PlantPlacementSystem",
    "create_standard_tray",
    "SPECIES_DATABASE",
    "get_species",
]
