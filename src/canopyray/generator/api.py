"""
Build ready-to-trace scenes from plain dictionaries.

The scene dictionary mirrors the tracer API::

    {
        "config": {"rays_per_pixel": 200, "seed": 7},
        "room": {"width": 10, "length": 10, "height": 5, "wall_reflectance": 0.7},
        "layers": [
            {"id": "top", "height": 2.0, "thickness": 1.0, "lai": 3.0,
             "leaf_angle": "spherical", "optics": "generic",
             "tray": {"kind": "production", "species": "lettuce-butterhead",
                      "position": [0, 0, 0], "height": 1.5, "age_days": 30}},
        ],
        "light_sources": [
            {"position": [5, 5, 4.5], "spectrum": "flat", "intensity": 1000,
             "distribution": "lambertian"},
        ],
        "grid_resolution": 0.5,
    }

Persistence is left to the caller; only already-parsed structures are
accepted.
"""

from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional

import numpy as np

from ..errors import ConfigurationError
from ..models import (
    CanopyLayer,
    LeafAngleDistribution,
    LeafOpticalProperties,
    LightSource,
    PlantPlacement,
    Room,
    SpectralFunction,
    TracerConfig,
    TracingResult,
    make_tracer_config,
)
from ..simulator.canopy.tracer import CanopyRayTracer
from ..utils.logging import get_logger
from ..utils.spectral import led_spectrum
from .placement import PlantPlacementSystem, create_standard_tray

_logger = get_logger(__name__)

_PIGMENT_KEYS = ("chlorophyll_content", "carotenoid_content", "water_content", "dry_matter")


def build_tracer(scene: Dict[str, Any]) -> CanopyRayTracer:
    """
    Create a :class:`CanopyRayTracer` with the room, layers and sources of ``scene``.

    Layers are added in list order and sources in list order.

    Raises:
        ConfigurationError: If a section is missing or malformed.
    """
    if not isinstance(scene, dict):
        raise ConfigurationError("Scene description must be a dict")
    config = make_tracer_config(**scene.get("config", {}))
    tracer = CanopyRayTracer(config)

    if "room" not in scene:
        raise ConfigurationError("Scene description needs a 'room' section")
    tracer.set_room(_build_room(scene["room"]))

    placement_system = None
    for index, layer_def in enumerate(scene.get("layers", [])):
        if "tray" in layer_def and placement_system is None:
            placement_system = PlantPlacementSystem(seed=config.seed)
        tracer.add_layer(_build_layer(layer_def, index, config, placement_system))

    for source_def in scene.get("light_sources", []):
        tracer.add_light_source(_build_source(source_def, config))

    _logger.info("Built scene with %d layer(s) and %d light source(s)",
                 len(tracer.layers), len(tracer.light_sources))
    return tracer


def run_scene(scene: Dict[str, Any],
              progress_callback: Optional[Callable[[float], None]] = None) -> TracingResult:
    """Build the scene and trace it at ``scene['grid_resolution']`` (default 0.1 m)."""
    tracer = build_tracer(scene)
    return tracer.trace(grid_resolution=float(scene.get("grid_resolution", 0.1)),
                        progress_callback=progress_callback)


def _require(section: Dict[str, Any], key: str, where: str):
    try:
        return section[key]
    except KeyError:
        raise ConfigurationError(f"{where} is missing required key {key!r}") from None


def _build_room(room_def: Dict[str, Any]) -> Room:
    return Room(
        width=float(_require(room_def, "width", "room")),
        length=float(_require(room_def, "length", "room")),
        height=float(_require(room_def, "height", "room")),
        wall_reflectance=room_def.get("wall_reflectance", 0.7),
        diffuse=bool(room_def.get("diffuse", True)),
    )


def _build_leaf_angle(value) -> LeafAngleDistribution:
    if value is None:
        return LeafAngleDistribution()
    if isinstance(value, LeafAngleDistribution):
        return value
    if isinstance(value, str):
        return LeafAngleDistribution(value)
    return LeafAngleDistribution(
        kind=value.get("kind", "custom"),
        mean_angle=value.get("mean_angle"),
        beta=value.get("beta"),
    )


def _build_optics(value, config: TracerConfig) -> Optional[LeafOpticalProperties]:
    n = config.wavelength_samples
    if value is None or isinstance(value, LeafOpticalProperties):
        return value
    if isinstance(value, str):
        if value == "generic":
            return LeafOpticalProperties.generic_leaf(n, config.min_wavelength)
        if value == "full_absorber":
            return LeafOpticalProperties.full_absorber(n)
        raise ConfigurationError(f"Unknown optics preset {value!r}")
    if not isinstance(value, dict):
        raise ConfigurationError(f"Unsupported optics description: {value!r}")

    pigments = {key: float(value[key]) for key in _PIGMENT_KEYS if key in value}
    bands = [value.get(name) for name in ("reflectance", "transmittance", "absorptance")]
    if any(band is None for band in bands):
        raise ConfigurationError("Optics need reflectance, transmittance and absorptance")
    if all(np.isscalar(band) for band in bands):
        return LeafOpticalProperties.uniform(*bands, n_samples=n, **pigments)
    return LeafOpticalProperties(*bands, **pigments)


def _build_layer(layer_def: Dict[str, Any], index: int, config: TracerConfig,
                 placement_system: Optional[PlantPlacementSystem]) -> CanopyLayer:
    where = f"layers[{index}]"
    species = layer_def.get("species")
    growth_stage = layer_def.get("growth_stage")
    placement = None

    if "plant_placement" in layer_def:
        arrays = layer_def["plant_placement"]
        placement = PlantPlacement(
            positions=_require(arrays, "positions", where + ".plant_placement"),
            sizes=_require(arrays, "sizes", where + ".plant_placement"),
            properties=_require(arrays, "properties", where + ".plant_placement"),
        )
    elif "tray" in layer_def:
        tray_def = layer_def["tray"]
        now = datetime.now()
        planting_date = now - timedelta(days=float(tray_def.get("age_days", 0)))
        tray = create_standard_tray(
            tray_def.get("kind", "production"),
            _require(tray_def, "species", where + ".tray"),
            tray_def.get("position", (0.0, 0.0, 0.0)),
            float(tray_def.get("height", 0.0)),
            system=placement_system,
            planting_date=planting_date,
            now=now,
        )
        placement = placement_system.export_for_ray_tracer(tray.id)
        species = species or tray.species
        growth_stage = growth_stage or tray.dominant_stage

    return CanopyLayer(
        id=str(layer_def.get("id", f"layer-{index}")),
        height=float(_require(layer_def, "height", where)),
        thickness=float(_require(layer_def, "thickness", where)),
        lai=float(_require(layer_def, "lai", where)),
        leaf_angle_distribution=_build_leaf_angle(layer_def.get("leaf_angle")),
        optics=_build_optics(layer_def.get("optics"), config),
        plant_density=float(layer_def.get("plant_density", 0.0)),
        growth_stage=growth_stage or "vegetative",
        species=species or "generic",
        plant_placement=placement,
    )


def _build_spectrum(value, config: TracerConfig) -> np.ndarray:
    n = config.wavelength_samples
    if value is None:
        return SpectralFunction.flat(1.0, n, config.min_wavelength).values
    if isinstance(value, str):
        if value != "flat":
            raise ConfigurationError(f"Unknown spectrum preset {value!r}")
        return SpectralFunction.flat(1.0, n, config.min_wavelength).values
    if isinstance(value, SpectralFunction):
        return value.values
    if isinstance(value, dict):
        if "leds" in value:
            return led_spectrum(value["leds"], n, config.min_wavelength)
        if "gaussian" in value:
            params = value["gaussian"]
            return SpectralFunction.gaussian(params["center"], params["sigma"], params.get("peak", 1.0),
                                             n, config.min_wavelength).values
        if "monochromatic" in value:
            return SpectralFunction.monochromatic(value["monochromatic"], 1.0, n,
                                                  config.min_wavelength).values
        raise ConfigurationError(f"Unsupported spectrum description: {sorted(value)}")
    return np.asarray(value, dtype=np.float64)


def _build_source(source_def: Dict[str, Any], config: TracerConfig) -> LightSource:
    return LightSource(
        position=_require(source_def, "position", "light source"),
        spectrum=_build_spectrum(source_def.get("spectrum"), config),
        intensity=float(_require(source_def, "intensity", "light source")),
        distribution=source_def.get("distribution", "lambertian"),
        beam_angle=float(source_def.get("beam_angle", 120.0)),
        id=source_def.get("id"),
    )


__all__ = ["build_tracer", "run_scene"]
