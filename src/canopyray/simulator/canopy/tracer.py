"""
Multi-layer canopy ray tracer.

Monte Carlo transport of spectral light through a stack of horizontal canopy
slabs inside a reflective grow room. Every grid cell fires
``rays_per_pixel`` primary rays per light source; secondaries from leaf
scattering, chlorophyll fluorescence and wall reflection are drained from an
explicit per-cell work stack.

Example:
    >>> tracer = CanopyRayTracer(make_tracer_config(rays_per_pixel=50, seed=1))
    >>> tracer.set_room(4.0, 4.0, 3.0)
    >>> tracer.add_layer(CanopyLayer(id="bench", height=1.0, thickness=0.5, lai=2.5))
    >>> tracer.add_light_source(LightSource((2.0, 2.0, 2.8), SpectralFunction.flat(), 600.0))
    >>> result = tracer.trace(grid_resolution=0.5)
"""

import math
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

import numpy as np

from ...errors import ConfigurationError
from ...models import (
    CanopyLayer,
    LeafOpticalProperties,
    LightSource,
    Room,
    TracerConfig,
    TracingResult,
    make_tracer_config,
)
from ...utils.logging import get_logger
from ..common.geometry import (
    angle_from_nadir,
    intersect_slab,
    jitter_direction,
    normalize,
    random_hemisphere_direction,
    ray_exit_box,
    specular_reflection,
)
from .aggregation import LayerAccumulator, ResultAggregator
from .attenuation import (
    SpeciesProfile,
    apply_beer_lambert,
    extinction_coefficient,
    fluorescence_spectrum,
    local_lai,
    resolve_species_profile,
)
from .leaf_angle import LeafAngleSampler, projection_function

_logger = get_logger(__name__)

MAX_SCATTER_RAYS = 5
LAI_RANGE = (0.0, 20.0)
THICKNESS_RANGE = (0.01, 5.0)
_DOWN = np.array([0.0, 0.0, -1.0])
_EPS = 1e-12


@dataclass
class RayTask:
    """A ray waiting on the work stack."""
    origin: np.ndarray
    direction: np.ndarray
    spectrum: np.ndarray
    bounce: int = 0
    kind: str = "primary"
    reference_energy: float = 0.0


@dataclass
class _PreparedLayer:
    layer: CanopyLayer
    index: int
    sampler: LeafAngleSampler
    projection: float
    profile: SpeciesProfile
    reflectance: np.ndarray
    transmittance: np.ndarray
    absorptance: np.ndarray
    chlorophyll: float

    @property
    def top(self) -> float:
        return self.layer.top

    @property
    def bottom(self) -> float:
        return self.layer.bottom


class CanopyRayTracer:
    """
    Owns one scene (room, layers, light sources) and traces it on demand.

    Args:
        config: Tracer settings. Defaults to :func:`make_tracer_config`.
    """

    def __init__(self, config: Optional[TracerConfig] = None):
        self.config = config if config is not None else make_tracer_config()
        self.room: Optional[Room] = None
        self.layers: List[_PreparedLayer] = []
        self.light_sources: List[LightSource] = []

    # ------------------------------------------------------------------
    # Scene setup
    # ------------------------------------------------------------------
    def set_room(self, width, length: Optional[float] = None, height: Optional[float] = None,
                 wall_reflectance=0.7, diffuse: bool = True) -> Room:
        """Set the room either from a :class:`Room` or from its dimensions."""
        if isinstance(width, Room):
            room = width
        else:
            if length is None or height is None:
                raise ConfigurationError("set_room requires width, length and height")
            room = Room(float(width), float(length), float(height), wall_reflectance, diffuse)
        room.reflectance_spectrum(self.config.wavelength_samples)
        self.room = room
        return room

    def add_layer(self, layer: CanopyLayer) -> None:
        cfg = self.config
        if any(prepared.layer.id == layer.id for prepared in self.layers):
            raise ConfigurationError(f"Duplicate layer id: {layer.id!r}")
        if layer.thickness <= 0:
            raise ConfigurationError(f"Layer {layer.id!r} thickness must be positive, got {layer.thickness}")
        if not LAI_RANGE[0] <= layer.lai <= LAI_RANGE[1]:
            _logger.warning("Layer %s LAI %.3f is outside the typical range %s", layer.id, layer.lai, LAI_RANGE)
        if not THICKNESS_RANGE[0] <= layer.thickness <= THICKNESS_RANGE[1]:
            _logger.warning("Layer %s thickness %.3f m is outside the typical range %s",
                            layer.id, layer.thickness, THICKNESS_RANGE)

        optics = layer.optics
        if optics is None:
            optics = LeafOpticalProperties.generic_leaf(cfg.wavelength_samples, cfg.min_wavelength)
        if optics.n_samples != cfg.wavelength_samples:
            raise ConfigurationError(
                f"Layer {layer.id!r} optics have {optics.n_samples} samples, "
                f"expected {cfg.wavelength_samples}"
            )

        prepared = _PreparedLayer(
            layer=layer,
            index=len(self.layers),
            sampler=LeafAngleSampler(layer.leaf_angle_distribution),
            projection=projection_function(layer.leaf_angle_distribution),
            profile=resolve_species_profile(layer.species),
            reflectance=np.ascontiguousarray(optics.reflectance),
            transmittance=np.ascontiguousarray(optics.transmittance),
            absorptance=np.ascontiguousarray(optics.absorptance),
            chlorophyll=float(optics.chlorophyll_content),
        )
        self.layers.append(prepared)
        _logger.debug("Added layer %s at %.2f m (LAI %.2f, G %.2f)",
                      layer.id, layer.height, layer.lai, prepared.projection)

    def add_light_source(self, source: LightSource) -> None:
        if len(source.spectrum) != self.config.wavelength_samples:
            raise ConfigurationError(
                f"Light source spectrum has {len(source.spectrum)} samples, "
                f"expected {self.config.wavelength_samples}"
            )
        self.light_sources.append(source)

    # ------------------------------------------------------------------
    # Tracing
    # ------------------------------------------------------------------
    def trace(self, grid_resolution: float = 0.1,
              progress_callback: Optional[Callable[[float], None]] = None) -> TracingResult:
        """
        Trace the scene over a regular grid of cells.

        Args:
            grid_resolution: Cell edge length in metres.
            progress_callback: Called with the completed fraction after each grid row.

        Returns:
            TracingResult: Cell-mean values per layer plus the penetration profile.

        Raises:
            ConfigurationError: If the room or layers are missing or the resolution is not positive.
        """
        cfg = self.config
        if self.room is None:
            raise ConfigurationError("Room must be set before tracing")
        if not self.layers:
            raise ConfigurationError("At least one canopy layer is required")
        if grid_resolution <= 0:
            raise ConfigurationError(f"grid_resolution must be positive, got {grid_resolution}")

        room = self.room
        gx = max(1, math.ceil(round(room.width / grid_resolution, 9)))
        gy = max(1, math.ceil(round(room.length / grid_resolution, 9)))
        layer_ids = [prepared.layer.id for prepared in self.layers]
        layers = [prepared.layer for prepared in self.layers]
        aggregator = ResultAggregator(layer_ids, cfg.wavelength_samples, cfg.min_wavelength, (gx, gy))

        if not self.light_sources:
            _logger.warning("No light sources configured; returning an empty result")
            return aggregator.finalize(room, layers, grid_resolution, 0)

        run = _TraceRun(self, grid_resolution)
        cells = [(ix, iy) for ix in range(gx) for iy in range(gy)]
        seeds = np.random.SeedSequence(cfg.seed).spawn(len(cells))
        _logger.info("Tracing %d x %d cells, %d rays per cell per source, %d source(s), %d layer(s)",
                     gx, gy, cfg.rays_per_pixel, len(self.light_sources), len(self.layers))

        total_rays = 0

        def _reduce(results):
            nonlocal total_rays
            for n_done, (accumulator, n_rays) in enumerate(results, start=1):
                ix, iy = cells[n_done - 1]
                aggregator.add_cell(ix, iy, accumulator, cfg.rays_per_pixel)
                total_rays += n_rays
                if n_done % gy == 0:
                    fraction = n_done / len(cells)
                    _logger.debug("Traced row %d/%d", n_done // gy, gx)
                    if progress_callback is not None:
                        progress_callback(fraction)

        if cfg.n_workers > 1:
            with ThreadPoolExecutor(max_workers=cfg.n_workers) as executor:
                _reduce(executor.map(run.trace_cell, cells, seeds))
        else:
            _reduce(map(run.trace_cell, cells, seeds))

        _logger.info("Traced %d rays", total_rays)
        return aggregator.finalize(room, layers, grid_resolution, total_rays)


class _TraceRun:
    """Read-only state shared by every cell of one ``trace`` call."""

    def __init__(self, tracer: CanopyRayTracer, grid_resolution: float):
        cfg = tracer.config
        room = tracer.room
        self.config = cfg
        self.room = room
        self.resolution = grid_resolution
        self.size = np.array([room.width, room.length, room.height])
        self.wall_reflectance = room.reflectance_spectrum(cfg.wavelength_samples)
        self.layers = tracer.layers
        self.walk_down = sorted(tracer.layers, key=lambda p: p.layer.height, reverse=True)
        self.walk_up = self.walk_down[::-1]
        self.aim_height = self.walk_down[0].layer.height
        self.sources = [(source, source.emitted_spectrum(cfg.min_wavelength))
                        for source in tracer.light_sources]

    def trace_cell(self, cell: Tuple[int, int],
                   seed: np.random.SeedSequence) -> Tuple[LayerAccumulator, int]:
        ix, iy = cell
        rng = np.random.default_rng(seed)
        accumulator = LayerAccumulator(len(self.layers), self.config.wavelength_samples)
        x = (ix + 0.5) * self.resolution
        y = (iy + 0.5) * self.resolution
        n_rays = 0
        for source, emitted in self.sources:
            for _ in range(self.config.rays_per_pixel):
                task = self.primary_ray(source, emitted, x, y, rng)
                if task is not None:
                    n_rays += self.run(task, accumulator, rng)
        return accumulator, n_rays

    def primary_ray(self, source: LightSource, emitted: np.ndarray, x: float, y: float,
                    rng: np.random.Generator) -> Optional[RayTask]:
        jitter = self.config.jitter
        spectrum = emitted
        if source.distribution in ("lambertian", "gaussian"):
            origin = source.position.copy()
            target = np.array([x, y, self.aim_height])
            aim = normalize(target - origin)
            if aim is None:
                return None
            direction = jitter_direction(aim, jitter, rng)
            if direction is None:
                return None
            if source.distribution == "gaussian":
                sigma = max(math.radians(source.beam_angle) / 2.0, _EPS)
                theta = angle_from_nadir(direction)
                spectrum = emitted * math.exp(-theta * theta / (2.0 * sigma * sigma))
        elif source.distribution == "collimated":
            origin = np.array([x, y, source.position[2]])
            direction = jitter_direction(_DOWN, jitter, rng)
        else:
            origin = np.array([x, y, source.position[2]])
            direction = random_hemisphere_direction(_DOWN, rng)
        if direction is None:
            return None
        return RayTask(origin, direction, spectrum, 0, "primary", float(spectrum.sum()))

    def run(self, task: RayTask, accumulator: LayerAccumulator, rng: np.random.Generator) -> int:
        """Drain the work stack seeded with ``task``; returns the number of rays traced."""
        stack = [task]
        traced = 0
        while stack:
            if self.propagate(stack.pop(), stack, accumulator, rng):
                traced += 1
        return traced

    def propagate(self, task: RayTask, stack: List[RayTask], accumulator: LayerAccumulator,
                  rng: np.random.Generator) -> bool:
        cfg = self.config
        if task.bounce > cfg.max_bounces:
            return False
        spectrum = task.spectrum
        energy = float(spectrum.sum())
        if energy <= 0.0:
            return False
        direction = normalize(task.direction)
        if direction is None:
            return False

        if task.kind != "primary" and cfg.roulette_threshold > 0.0 and task.reference_energy > 0.0:
            if energy < cfg.roulette_threshold * task.reference_energy:
                if rng.random() >= cfg.roulette_survival:
                    return False
                spectrum = spectrum / cfg.roulette_survival

        origin = np.asarray(task.origin, dtype=np.float64)
        if direction[2] < -_EPS:
            walk = self.walk_down
        elif direction[2] > _EPS:
            walk = self.walk_up
        else:
            walk = ()

        for prepared in walk:
            hit = intersect_slab(origin, direction, prepared.bottom, prepared.top)
            if hit is None:
                continue
            t_entry, t_exit = hit
            entry = origin + t_entry * direction
            if not (0.0 <= entry[0] <= self.room.width and 0.0 <= entry[1] <= self.room.length):
                continue
            exit_point = origin + t_exit * direction
            spectrum = self.attenuate(prepared, task, entry, exit_point, spectrum,
                                      stack, accumulator, rng)
            origin = exit_point
            if float(spectrum.sum()) <= 0.0:
                return True

        if task.bounce >= cfg.max_bounces:
            return True
        exit_hit = ray_exit_box(origin, direction, self.size)
        if exit_hit is None:
            return True
        hit_point, inward = exit_hit
        if self.room.diffuse:
            reflected_direction = random_hemisphere_direction(inward, rng)
        else:
            reflected_direction = specular_reflection(direction, inward)
        stack.append(RayTask(hit_point, reflected_direction, spectrum * self.wall_reflectance,
                             task.bounce + 1, "wall", task.reference_energy))
        return True

    def attenuate(self, prepared: _PreparedLayer, task: RayTask, entry: np.ndarray,
                  exit_point: np.ndarray, spectrum: np.ndarray, stack: List[RayTask],
                  accumulator: LayerAccumulator, rng: np.random.Generator) -> np.ndarray:
        cfg = self.config
        layer = prepared.layer
        if cfg.path_length == "vertical":
            path = abs(exit_point[2] - entry[2])
        else:
            path = float(np.linalg.norm(exit_point - entry))
        midpoint = 0.5 * (entry + exit_point)
        lai = local_lai(midpoint, layer.plant_placement, prepared.profile, layer.growth_stage, layer.lai)
        extinction = extinction_coefficient(prepared.projection, lai, layer.thickness)
        result = apply_beer_lambert(spectrum, path, extinction, prepared.reflectance,
                                    prepared.transmittance, prepared.absorptance)
        accumulator.add(prepared.index, spectrum, result.absorbed, result.transmitted, task.kind)

        if cfg.enable_scattering:
            scattered_energy = float(result.scattered.sum())
            if scattered_energy > 0.0:
                self.scatter(prepared, task, entry, result.scattered, scattered_energy, stack, rng)

        if cfg.enable_fluorescence and prepared.chlorophyll > 0.0:
            emission = fluorescence_spectrum(result.absorbed, cfg.min_wavelength)
            if float(emission.sum()) > 0.0:
                stack.append(RayTask(entry.copy(), random_hemisphere_direction(_DOWN, rng), emission,
                                     task.bounce + 1, "fluorescence", task.reference_energy))
        return result.transmitted

    def scatter(self, prepared: _PreparedLayer, task: RayTask, entry: np.ndarray,
                scattered: np.ndarray, scattered_energy: float, stack: List[RayTask],
                rng: np.random.Generator) -> None:
        # 50/50 reflection/transmission regardless of the leaf's R:T ratio.
        n_rays = min(math.ceil(10.0 * scattered_energy), MAX_SCATTER_RAYS)
        share = scattered / n_rays
        for _ in range(n_rays):
            normal = prepared.sampler.sample_normal(rng)
            if rng.random() < 0.5:
                direction = random_hemisphere_direction(normal, rng)
            else:
                direction = random_hemisphere_direction(-normal, rng)
            stack.append(RayTask(entry.copy(), direction, share, task.bounce + 1, "scatter",
                                 task.reference_energy))


__all__ = [
    "CanopyRayTracer",
    "RayTask",
]
