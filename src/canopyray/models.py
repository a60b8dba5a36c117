"""
Data model for canopy ray tracing.

Scene description (spectra, leaf optics, layers, sources, room), the tracer
configuration and the immutable result returned by
:meth:`canopyray.simulator.canopy.tracer.CanopyRayTracer.trace`.
"""

from dataclasses import dataclass, field, fields
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from .errors import ConfigurationError
from .utils.spectral import (
    DEFAULT_MIN_WAVELENGTH,
    DEFAULT_WAVELENGTH_SAMPLES,
    calculate_ppfd,
    gaussian_spectrum,
    generic_leaf_optics,
    scale_to_photon_flux,
    wavelength_grid,
)


def _as_spectrum_array(values, name: str) -> np.ndarray:
    if isinstance(values, SpectralFunction):
        values = values.values
    array = np.array(values, dtype=np.float64, copy=True)
    if array.ndim != 1:
        raise ConfigurationError(f"{name} must be a 1-D spectrum, got shape {array.shape}")
    return array


def _readonly(array: np.ndarray) -> np.ndarray:
    array = np.array(array, dtype=np.float64, copy=True)
    array.setflags(write=False)
    return array


# =============================================================================
# Spectra and leaf optics
# =============================================================================

@dataclass
class SpectralFunction:
    """
    Spectral irradiance sampled on a 1 nm grid.

    Bin ``i`` holds the value at ``min_wavelength + i`` nm. The number of bins
    is fixed at construction.
    """
    values: np.ndarray
    min_wavelength: float = DEFAULT_MIN_WAVELENGTH

    def __post_init__(self):
        self.values = _as_spectrum_array(self.values, "SpectralFunction.values")
        if np.any(self.values < 0):
            raise ConfigurationError("SpectralFunction values must be non-negative")

    def __len__(self) -> int:
        return int(self.values.shape[0])

    def wavelength(self, index: int) -> float:
        return self.min_wavelength + index

    @property
    def wavelengths(self) -> np.ndarray:
        return wavelength_grid(len(self), self.min_wavelength)

    def ppfd(self) -> float:
        """Photosynthetic photon flux density (µmol/m²/s) of this spectrum."""
        return calculate_ppfd(self.values, self.min_wavelength)

    @classmethod
    def zeros(cls, n_samples: int = DEFAULT_WAVELENGTH_SAMPLES,
              min_wavelength: float = DEFAULT_MIN_WAVELENGTH) -> "SpectralFunction":
        return cls(np.zeros(n_samples), min_wavelength)

    @classmethod
    def flat(cls, value: float = 1.0, n_samples: int = DEFAULT_WAVELENGTH_SAMPLES,
             min_wavelength: float = DEFAULT_MIN_WAVELENGTH) -> "SpectralFunction":
        return cls(np.full(n_samples, float(value)), min_wavelength)

    @classmethod
    def gaussian(cls, center: float, sigma: float, peak: float = 1.0,
                 n_samples: int = DEFAULT_WAVELENGTH_SAMPLES,
                 min_wavelength: float = DEFAULT_MIN_WAVELENGTH) -> "SpectralFunction":
        return cls(gaussian_spectrum(center, sigma, peak, n_samples, min_wavelength), min_wavelength)

    @classmethod
    def monochromatic(cls, wavelength: float, value: float = 1.0,
                      n_samples: int = DEFAULT_WAVELENGTH_SAMPLES,
                      min_wavelength: float = DEFAULT_MIN_WAVELENGTH) -> "SpectralFunction":
        index = int(round(wavelength - min_wavelength))
        if not 0 <= index < n_samples:
            raise ConfigurationError(
                f"Wavelength {wavelength} nm is outside the sampled range "
                f"[{min_wavelength}, {min_wavelength + n_samples - 1}]"
            )
        values = np.zeros(n_samples)
        values[index] = value
        return cls(values, min_wavelength)


@dataclass
class LeafOpticalProperties:
    """
    Spectral reflectance, transmittance and absorptance of a leaf.

    The three spectra are expected to sum to ~1 in every bin. Pigment contents
    are metadata; ``chlorophyll_content`` above zero enables fluorescence.
    """
    reflectance: np.ndarray
    transmittance: np.ndarray
    absorptance: np.ndarray
    chlorophyll_content: float = 450.0   # mg/m²
    carotenoid_content: float = 90.0     # mg/m²
    water_content: float = 150.0         # g/m²
    dry_matter: float = 40.0             # g/m²

    def __post_init__(self):
        self.reflectance = _as_spectrum_array(self.reflectance, "reflectance")
        self.transmittance = _as_spectrum_array(self.transmittance, "transmittance")
        self.absorptance = _as_spectrum_array(self.absorptance, "absorptance")
        lengths = {len(self.reflectance), len(self.transmittance), len(self.absorptance)}
        if len(lengths) != 1:
            raise ConfigurationError(
                "Leaf reflectance, transmittance and absorptance must have the same length"
            )

    @property
    def n_samples(self) -> int:
        return int(self.reflectance.shape[0])

    @classmethod
    def uniform(cls, reflectance: float, transmittance: float, absorptance: float,
                n_samples: int = DEFAULT_WAVELENGTH_SAMPLES, **pigments) -> "LeafOpticalProperties":
        """Wavelength-independent optics (useful for closed-form checks)."""
        return cls(
            reflectance=np.full(n_samples, float(reflectance)),
            transmittance=np.full(n_samples, float(transmittance)),
            absorptance=np.full(n_samples, float(absorptance)),
            **pigments,
        )

    @classmethod
    def full_absorber(cls, n_samples: int = DEFAULT_WAVELENGTH_SAMPLES, **pigments) -> "LeafOpticalProperties":
        """Black leaf (A=1, R=T=0) without chlorophyll, so it neither scatters nor fluoresces."""
        pigments.setdefault("chlorophyll_content", 0.0)
        return cls.uniform(0.0, 0.0, 1.0, n_samples, **pigments)

    @classmethod
    def generic_leaf(cls, n_samples: int = DEFAULT_WAVELENGTH_SAMPLES,
                     min_wavelength: float = DEFAULT_MIN_WAVELENGTH, **pigments) -> "LeafOpticalProperties":
        reflectance, transmittance, absorptance = generic_leaf_optics(n_samples, min_wavelength)
        return cls(reflectance, transmittance, absorptance, **pigments)


# =============================================================================
# Canopy description
# =============================================================================

class LeafAngleType(str, Enum):
    SPHERICAL = "spherical"
    UNIFORM = "uniform"
    PLANOPHILE = "planophile"
    ERECTOPHILE = "erectophile"
    PLAGIOPHILE = "plagiophile"
    EXTREMOPHILE = "extremophile"
    CUSTOM = "custom"


@dataclass(frozen=True)
class LeafAngleDistribution:
    """Leaf inclination family; ``mean_angle`` (deg) and ``beta`` only apply to CUSTOM."""
    kind: LeafAngleType = LeafAngleType.SPHERICAL
    mean_angle: Optional[float] = None
    beta: Optional[float] = None

    def __post_init__(self):
        if not isinstance(self.kind, LeafAngleType):
            try:
                object.__setattr__(self, "kind", LeafAngleType(str(self.kind).lower()))
            except ValueError:
                raise ConfigurationError(f"Unknown leaf angle distribution: {self.kind!r}") from None


@dataclass
class PlantPlacement:
    """
    Explicit plant positions inside a canopy layer.

    ``positions`` is (n, 3) in metres, ``sizes`` is (n, 2) holding height and
    canopy diameter in metres, ``properties`` is (n, 2) holding LAI and a
    0-1 health factor.
    """
    positions: np.ndarray
    sizes: np.ndarray
    properties: np.ndarray

    def __post_init__(self):
        self.positions = self._as_table(self.positions, 3)
        self.sizes = self._as_table(self.sizes, 2)
        self.properties = self._as_table(self.properties, 2)
        n = self.positions.shape[0]
        if (self.positions.shape != (n, 3) or self.sizes.shape != (n, 2)
                or self.properties.shape != (n, 2)):
            raise ConfigurationError(
                f"PlantPlacement shape mismatch: positions {self.positions.shape}, "
                f"sizes {self.sizes.shape}, properties {self.properties.shape}"
            )

    @staticmethod
    def _as_table(values, columns: int) -> np.ndarray:
        array = np.ascontiguousarray(values, dtype=np.float64)
        if array.size == 0:
            return np.zeros((0, columns))
        return np.atleast_2d(array)

    def __len__(self) -> int:
        return int(self.positions.shape[0])


@dataclass
class CanopyLayer:
    """
    Horizontal canopy slab centred at ``height`` (m) with the given ``thickness``.

    When ``optics`` is None the tracer substitutes a generic green leaf sized
    to its wavelength grid.
    """
    id: str
    height: float
    thickness: float
    lai: float
    leaf_angle_distribution: LeafAngleDistribution = field(default_factory=LeafAngleDistribution)
    optics: Optional[LeafOpticalProperties] = None
    plant_density: float = 0.0
    growth_stage: str = "vegetative"
    species: str = "generic"
    plant_placement: Optional[PlantPlacement] = None

    @property
    def top(self) -> float:
        return self.height + self.thickness / 2.0

    @property
    def bottom(self) -> float:
        return self.height - self.thickness / 2.0


LIGHT_DISTRIBUTIONS = ("lambertian", "gaussian", "collimated", "diffuse")


@dataclass
class LightSource:
    """
    A fixture emitting ``spectrum`` (shape only) scaled to ``intensity`` µmol/m²/s PPFD.

    ``beam_angle`` (deg) is the full beam width used by the gaussian
    distribution.
    """
    position: Sequence[float]
    spectrum: Union[np.ndarray, SpectralFunction]
    intensity: float
    distribution: str = "lambertian"
    beam_angle: float = 120.0
    id: Optional[str] = None

    def __post_init__(self):
        self.position = np.asarray(self.position, dtype=np.float64).reshape(3)
        self.spectrum = _as_spectrum_array(self.spectrum, "LightSource.spectrum")
        self.distribution = str(self.distribution).lower()
        if self.distribution not in LIGHT_DISTRIBUTIONS:
            raise ConfigurationError(
                f"Unknown light distribution {self.distribution!r}; "
                f"expected one of {', '.join(LIGHT_DISTRIBUTIONS)}"
            )
        if self.intensity < 0:
            raise ConfigurationError("LightSource intensity must be non-negative")

    def emitted_spectrum(self, min_wavelength: float = DEFAULT_MIN_WAVELENGTH) -> np.ndarray:
        """Spectral irradiance (W/m²/nm) whose PPFD equals ``intensity``."""
        return scale_to_photon_flux(self.spectrum, self.intensity, min_wavelength)


@dataclass
class Room:
    """Axis-aligned grow room spanning ``[0, width] × [0, length] × [0, height]``."""
    width: float
    length: float
    height: float
    wall_reflectance: Union[float, np.ndarray] = 0.7
    diffuse: bool = True

    def __post_init__(self):
        for name in ("width", "length", "height"):
            if getattr(self, name) <= 0:
                raise ConfigurationError(f"Room {name} must be positive")
        if not np.isscalar(self.wall_reflectance):
            self.wall_reflectance = _as_spectrum_array(self.wall_reflectance, "wall_reflectance")

    def reflectance_spectrum(self, n_samples: int) -> np.ndarray:
        if np.isscalar(self.wall_reflectance):
            return np.full(n_samples, float(self.wall_reflectance))
        if len(self.wall_reflectance) != n_samples:
            raise ConfigurationError(
                f"Wall reflectance has {len(self.wall_reflectance)} samples, expected {n_samples}"
            )
        return np.asarray(self.wall_reflectance, dtype=np.float64)


# =============================================================================
# Tracer configuration
# =============================================================================

PATH_LENGTH_MODES = ("vertical", "slant")


@dataclass
class TracerConfig:
    """
    Monte Carlo tracer settings.

    ``convergence_threshold`` is accepted but not read; the number of rays
    is fixed by ``rays_per_pixel``. Attenuation uses the slant segment length
    unless ``path_length`` is ``"vertical"``. Russian roulette is off by
    default; with ``roulette_threshold > 0`` secondary rays whose energy drops
    below that fraction of their primary's energy survive with probability
    ``roulette_survival``.
    """
    rays_per_pixel: int = 100
    max_bounces: int = 10
    wavelength_samples: int = DEFAULT_WAVELENGTH_SAMPLES
    min_wavelength: float = DEFAULT_MIN_WAVELENGTH
    enable_scattering: bool = True
    enable_fluorescence: bool = True
    convergence_threshold: float = 0.01
    path_length: str = "slant"
    jitter: float = 0.01
    seed: Optional[int] = None
    n_workers: int = 1
    roulette_threshold: float = 0.0
    roulette_survival: float = 0.1

    def __post_init__(self):
        if self.rays_per_pixel < 1:
            raise ConfigurationError("rays_per_pixel must be at least 1")
        if self.max_bounces < 0:
            raise ConfigurationError("max_bounces must be non-negative")
        if self.wavelength_samples < 1:
            raise ConfigurationError("wavelength_samples must be at least 1")
        if self.path_length not in PATH_LENGTH_MODES:
            raise ConfigurationError(
                f"path_length must be one of {PATH_LENGTH_MODES}, got {self.path_length!r}"
            )
        if self.n_workers < 1:
            raise ConfigurationError("n_workers must be at least 1")
        if self.roulette_threshold < 0.0:
            raise ConfigurationError("roulette_threshold must be non-negative")
        if not 0.0 < self.roulette_survival <= 1.0:
            raise ConfigurationError("roulette_survival must be in (0, 1]")


def make_tracer_config(**kwargs) -> TracerConfig:
    """
    Build a :class:`TracerConfig` from the defaults and keyword overrides.

    Raises:
        ConfigurationError: If an override names an unknown setting.
    """
    known = {f.name for f in fields(TracerConfig)}
    unknown = sorted(set(kwargs) - known)
    if unknown:
        raise ConfigurationError(f"Unknown tracer config keys: {', '.join(unknown)}")
    defaults = {f.name: f.default for f in fields(TracerConfig)}
    defaults.update(kwargs)
    return TracerConfig(**defaults)


# =============================================================================
# Results
# =============================================================================

@dataclass(frozen=True)
class BandAbsorption:
    """Absorbed irradiance (W/m²) per band."""
    par: float = 0.0
    blue: float = 0.0
    red: float = 0.0
    far_red: float = 0.0


@dataclass(frozen=True)
class UniformityStats:
    min: float = 0.0
    max: float = 0.0
    avg: float = 0.0
    cv: float = 0.0


@dataclass(frozen=True)
class ProfileSample:
    depth: float
    height: float
    ppfd: float
    spectrum: np.ndarray

    def __post_init__(self):
        object.__setattr__(self, "spectrum", _readonly(self.spectrum))


@dataclass(frozen=True)
class TracingResult:
    """
    Immutable outcome of a trace.

    Per-layer mappings are keyed by layer id in the order the layers were
    added and hold means over all grid cells.
    """
    ppfd_by_layer: Mapping[str, float]
    transmitted_ppfd_by_layer: Mapping[str, float]
    spectral_irradiance_by_layer: Mapping[str, np.ndarray]
    absorption_by_layer: Mapping[str, BandAbsorption]
    uniformity_by_layer: Mapping[str, UniformityStats]
    ppfd_maps: Mapping[str, np.ndarray]
    penetration_profile: Tuple[ProfileSample, ...]
    scattering_contribution: float
    grid_shape: Tuple[int, int]
    grid_resolution: float
    total_rays: int

    def __post_init__(self):
        for name in ("ppfd_by_layer", "transmitted_ppfd_by_layer",
                     "absorption_by_layer", "uniformity_by_layer"):
            object.__setattr__(self, name, MappingProxyType(dict(getattr(self, name))))
        for name in ("spectral_irradiance_by_layer", "ppfd_maps"):
            frozen = {key: _readonly(value) for key, value in getattr(self, name).items()}
            object.__setattr__(self, name, MappingProxyType(frozen))
        object.__setattr__(self, "penetration_profile", tuple(self.penetration_profile))
        object.__setattr__(self, "grid_shape", tuple(int(v) for v in self.grid_shape))

    @property
    def layer_ids(self) -> Tuple[str, ...]:
        return tuple(self.ppfd_by_layer.keys())

    def summary_dataframe(self) -> pd.DataFrame:
        """One row per layer with PPFD, band absorption and uniformity columns."""
        rows = []
        for layer_id in self.layer_ids:
            absorption = self.absorption_by_layer[layer_id]
            uniformity = self.uniformity_by_layer[layer_id]
            rows.append({
                "layer_id": layer_id,
                "ppfd": self.ppfd_by_layer[layer_id],
                "transmitted_ppfd": self.transmitted_ppfd_by_layer[layer_id],
                "par_absorbed": absorption.par,
                "blue_absorbed": absorption.blue,
                "red_absorbed": absorption.red,
                "far_red_absorbed": absorption.far_red,
                "ppfd_min": uniformity.min,
                "ppfd_max": uniformity.max,
                "ppfd_avg": uniformity.avg,
                "cv": uniformity.cv,
            })
        columns = ["layer_id", "ppfd", "transmitted_ppfd", "par_absorbed", "blue_absorbed",
                   "red_absorbed", "far_red_absorbed", "ppfd_min", "ppfd_max", "ppfd_avg", "cv"]
        return pd.DataFrame(rows, columns=columns)

    def profile_dataframe(self) -> pd.DataFrame:
        return pd.DataFrame(
            [(s.depth, s.height, s.ppfd) for s in self.penetration_profile],
            columns=["depth", "height", "ppfd"],
        )

    def to_dict(self) -> Dict[str, Any]:
        """Plain-Python representation suitable for JSON serialisation."""
        return {
            "ppfd_by_layer": dict(self.ppfd_by_layer),
            "transmitted_ppfd_by_layer": dict(self.transmitted_ppfd_by_layer),
            "spectral_irradiance_by_layer": {
                k: v.tolist() for k, v in self.spectral_irradiance_by_layer.items()
            },
            "absorption_by_layer": {
                k: {"par": v.par, "blue": v.blue, "red": v.red, "far_red": v.far_red}
                for k, v in self.absorption_by_layer.items()
            },
            "uniformity_by_layer": {
                k: {"min": v.min, "max": v.max, "avg": v.avg, "cv": v.cv}
                for k, v in self.uniformity_by_layer.items()
            },
            "ppfd_maps": {k: v.tolist() for k, v in self.ppfd_maps.items()},
            "penetration_profile": [
                {"depth": s.depth, "height": s.height, "ppfd": s.ppfd, "spectrum": s.spectrum.tolist()}
                for s in self.penetration_profile
            ],
            "scattering_contribution": self.scattering_contribution,
            "grid_shape": list(self.grid_shape),
            "grid_resolution": self.grid_resolution,
            "total_rays": self.total_rays,
        }


__all__ = [
    "SpectralFunction",
    "LeafOpticalProperties",
    "LeafAngleType",
    "LeafAngleDistribution",
    "PlantPlacement",
    "CanopyLayer",
    "LightSource",
    "LIGHT_DISTRIBUTIONS",
    "Room",
    "TracerConfig",
    "PATH_LENGTH_MODES",
    "make_tracer_config",
    "BandAbsorption",
    "UniformityStats",
    "ProfileSample",
    "TracingResult",
]
