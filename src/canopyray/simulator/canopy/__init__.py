"""Multi-layer canopy radiative transfer."""

from .attenuation import SpeciesProfile, apply_beer_lambert, vertical_weight
from .leaf_angle import LeafAngleSampler, angle_density, projection_function
from .tracer import CanopyRayTracer, RayTask

__all__ = [
    "CanopyRayTracer",
    "RayTask",
    "LeafAngleSampler",
    "angle_density",
    "projection_function",
    "SpeciesProfile",
    "apply_beer_lambert",
    "vertical_weight",
]
