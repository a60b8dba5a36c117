"""Multi-layer canopy ray tracing for controlled-environment horticulture."""

__version__ = "0.1.0"

from .errors import CanopyRayError, ConfigurationError, ProcessingError, VisualizationError
from .models import (
    CanopyLayer,
    LeafAngleDistribution,
    LeafAngleType,
    LeafOpticalProperties,
    LightSource,
    PlantPlacement,
    Room,
    SpectralFunction,
    TracerConfig,
    TracingResult,
    make_tracer_config,
)
from .simulator.canopy.tracer import CanopyRayTracer
from .generator.api import build_tracer, run_scene
from .utils.spectral import calculate_ppfd

__all__ = [
    "CanopyRayError",
    "ConfigurationError",
    "ProcessingError",
    "VisualizationError",
    "CanopyLayer",
    "LeafAngleDistribution",
    "LeafAngleType",
    "LeafOpticalProperties",
    "LightSource",
    "PlantPlacement",
    "Room",
    "SpectralFunction",
    "TracerConfig",
    "TracingResult",
    "make_tracer_config",
    "CanopyRayTracer",
    "build_tracer",
    "run_scene",
    "calculate_ppfd",
]
