"""
Canopy attenuation kernels.

Numba kernels for the modified Beer-Lambert law, per-plant local LAI with
species vertical profiles, and chlorophyll fluorescence re-emission. The
kernels release the GIL so grid cells can be traced from worker threads.
"""

import math
from enum import IntEnum
from functools import lru_cache
from typing import NamedTuple, Optional

import numpy as np
from numba import njit

from ...models import PlantPlacement
from ...utils.spectral import (
    FLUORESCENCE_QUANTUM_YIELD,
    fluorescence_emission,
    fluorescence_excitation,
)


class SpeciesProfile(IntEnum):
    """Vertical leaf-area profile family; values are passed into the kernels."""
    DEFAULT = 0
    CANNABIS = 1
    TOMATO = 2
    CUCUMBER = 3
    LEAFY = 4


SPECIES_PROFILES = {
    "cannabis": SpeciesProfile.CANNABIS,
    "cannabis-sativa": SpeciesProfile.CANNABIS,
    "hemp": SpeciesProfile.CANNABIS,
    "tomato": SpeciesProfile.TOMATO,
    "tomato-indeterminate": SpeciesProfile.TOMATO,
    "cucumber": SpeciesProfile.CUCUMBER,
    "cucumber-vine": SpeciesProfile.CUCUMBER,
    "lettuce": SpeciesProfile.LEAFY,
    "lettuce-butterhead": SpeciesProfile.LEAFY,
    "leafy": SpeciesProfile.LEAFY,
    "leafy-greens": SpeciesProfile.LEAFY,
}

FLOWERING_PEAK = 0.65
DEFAULT_PEAK = 0.5


def resolve_species_profile(species: Optional[str]) -> SpeciesProfile:
    """Map a species identifier to its vertical profile (DEFAULT when unknown)."""
    if not species:
        return SpeciesProfile.DEFAULT
    key = str(species).strip().lower().replace("_", "-").replace(" ", "-")
    return SPECIES_PROFILES.get(key, SpeciesProfile.DEFAULT)


def profile_peak(profile: SpeciesProfile, growth_stage: Optional[str]) -> float:
    if profile == SpeciesProfile.CANNABIS and (growth_stage or "").lower() == "flowering":
        return FLOWERING_PEAK
    return DEFAULT_PEAK


# =============================================================================
# Kernels
# =============================================================================

@njit(nogil=True, cache=False)
def beer_lambert_kernel(spectrum, path_length, extinction, reflectance, transmittance, absorptance):
    """
    Modified Beer-Lambert attenuation of one spectrum across one segment.

    Returns (transmitted, absorbed, scattered) spectra.
    """
    n = spectrum.shape[0]
    transmitted = np.empty(n)
    absorbed = np.empty(n)
    scattered = np.empty(n)
    t_direct = math.exp(-extinction * path_length)
    for i in range(n):
        leaf_rt = reflectance[i] + transmittance[i]
        t_eff = t_direct + (1.0 - t_direct) * leaf_rt * 0.5
        intercepted = spectrum[i] * (1.0 - t_eff)
        transmitted[i] = spectrum[i] * t_eff
        absorbed[i] = intercepted * absorptance[i]
        scattered[i] = intercepted * leaf_rt
    return transmitted, absorbed, scattered


@njit(nogil=True, cache=False)
def _raw_vertical_weight(rel_height, profile, peak):
    if profile == 1:
        x = (rel_height - peak) * 3.0
        return math.exp(-x * x)
    if profile == 2:
        if rel_height < 0.2:
            return 0.3
        return 0.8 + 0.2 * rel_height
    if profile == 3:
        return 0.9 + 0.1 * math.sin(math.pi * rel_height)
    if profile == 4:
        return math.exp(-2.0 * rel_height)
    x = (rel_height - 0.5) * 2.0
    return math.exp(-x * x)


@njit(nogil=True, cache=False)
def local_lai_kernel(x, y, z, positions, sizes, properties, profile, peak, norm, layer_lai):
    """
    LAI seen at (x, y, z) from explicitly placed plants.

    Each plant whose canopy disc and height range cover the point adds
    ``LAI * health * exp(-2 (d/r)^2) * w_v(rel_height)``. Falls back to
    ``layer_lai`` when no plant covers the point.
    """
    total = 0.0
    covered = False
    for i in range(positions.shape[0]):
        plant_height = sizes[i, 0]
        radius = 0.5 * sizes[i, 1]
        if plant_height <= 0.0 or radius <= 0.0:
            continue
        dx = x - positions[i, 0]
        dy = y - positions[i, 1]
        distance = math.sqrt(dx * dx + dy * dy)
        if distance > radius:
            continue
        rel_height = (z - positions[i, 2]) / plant_height
        if rel_height < 0.0 or rel_height > 1.0:
            continue
        ratio = distance / radius
        w_h = math.exp(-2.0 * ratio * ratio)
        w_v = _raw_vertical_weight(rel_height, profile, peak) / norm
        total += properties[i, 0] * properties[i, 1] * w_h * w_v
        covered = True
    if not covered:
        return layer_lai
    return total


@njit(nogil=True, cache=False)
def fluorescence_kernel(absorbed, excitation_weights, emission_shape, quantum_yield):
    """Chlorophyll fluorescence emitted for an absorbed spectrum."""
    n = absorbed.shape[0]
    excitation = 0.0
    for i in range(n):
        excitation += absorbed[i] * excitation_weights[i]
    emission = np.zeros(n)
    if excitation <= 0.0:
        return emission
    scale = excitation * quantum_yield
    for i in range(n):
        emission[i] = scale * emission_shape[i]
    return emission


# =============================================================================
# Python wrappers
# =============================================================================

class Attenuation(NamedTuple):
    transmitted: np.ndarray
    absorbed: np.ndarray
    scattered: np.ndarray


def extinction_coefficient(projection: float, lai: float, thickness: float) -> float:
    """Per-metre extinction ``k = G * LAI / thickness``."""
    return projection * lai / thickness


def apply_beer_lambert(spectrum, path_length, extinction, reflectance, transmittance, absorptance) -> Attenuation:
    transmitted, absorbed, scattered = beer_lambert_kernel(
        np.ascontiguousarray(spectrum, dtype=np.float64),
        float(path_length),
        float(extinction),
        np.ascontiguousarray(reflectance, dtype=np.float64),
        np.ascontiguousarray(transmittance, dtype=np.float64),
        np.ascontiguousarray(absorptance, dtype=np.float64),
    )
    return Attenuation(transmitted, absorbed, scattered)


@lru_cache(maxsize=64)
def profile_normalization(profile: int, peak: float, samples: int = 2001) -> float:
    """Mean of the raw vertical profile over relative height [0, 1]."""
    heights = np.linspace(0.0, 1.0, samples)
    values = np.array([_raw_vertical_weight(h, int(profile), float(peak)) for h in heights])
    step = heights[1] - heights[0]
    return float(0.5 * step * (values[:-1] + values[1:]).sum())


def vertical_weight(rel_height: float, profile, growth_stage: Optional[str] = None,
                    normalized: bool = True) -> float:
    """
    Species vertical leaf-area weight at a relative height in [0, 1].

    ``profile`` is a :class:`SpeciesProfile` or a species identifier. With
    ``normalized`` the profile integrates to 1 over the plant height.
    """
    if not isinstance(profile, SpeciesProfile):
        profile = resolve_species_profile(profile)
    peak = profile_peak(profile, growth_stage)
    raw = _raw_vertical_weight(float(rel_height), int(profile), peak)
    if not normalized:
        return raw
    return raw / profile_normalization(int(profile), peak)


def local_lai(point, placement: Optional[PlantPlacement], profile: SpeciesProfile,
              growth_stage: Optional[str], layer_lai: float) -> float:
    """LAI at ``point`` for a layer, using its plant placement when present."""
    if placement is None or len(placement) == 0:
        return float(layer_lai)
    peak = profile_peak(profile, growth_stage)
    return float(local_lai_kernel(
        float(point[0]), float(point[1]), float(point[2]),
        placement.positions, placement.sizes, placement.properties,
        int(profile), peak, profile_normalization(int(profile), peak), float(layer_lai),
    ))


@lru_cache(maxsize=8)
def _fluorescence_tables(n_samples: int, min_wavelength: float):
    return (fluorescence_excitation(n_samples, min_wavelength),
            fluorescence_emission(n_samples, min_wavelength))


def fluorescence_spectrum(absorbed, min_wavelength: float,
                          quantum_yield: float = FLUORESCENCE_QUANTUM_YIELD) -> np.ndarray:
    absorbed = np.ascontiguousarray(absorbed, dtype=np.float64)
    excitation, shape = _fluorescence_tables(absorbed.shape[0], float(min_wavelength))
    return fluorescence_kernel(absorbed, excitation, shape, float(quantum_yield))


__all__ = [
    "SpeciesProfile",
    "SPECIES_PROFILES",
    "resolve_species_profile",
    "profile_peak",
    "beer_lambert_kernel",
    "local_lai_kernel",
    "fluorescence_kernel",
    "Attenuation",
    "extinction_coefficient",
    "apply_beer_lambert",
    "profile_normalization",
    "vertical_weight",
    "local_lai",
    "fluorescence_spectrum",
]
