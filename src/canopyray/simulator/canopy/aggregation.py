"""
Per-cell accumulation and grid-level reduction of traced energy.

Each grid cell is traced into its own :class:`LayerAccumulator`. The main
thread folds the accumulators into a :class:`ResultAggregator` in cell order
and finalises them into an immutable :class:`~canopyray.models.TracingResult`.
"""

import math
from typing import Dict, List, Mapping, Sequence, Tuple

import numpy as np

from ...errors import ProcessingError
from ...models import (
    BandAbsorption,
    CanopyLayer,
    ProfileSample,
    Room,
    TracingResult,
    UniformityStats,
)
from ...utils.spectral import (
    BLUE_BAND,
    FAR_RED_BAND,
    PAR_BAND,
    RED_BAND,
    band_mask,
    photon_flux_weights,
)

PROFILE_STEP = 0.1


class LayerAccumulator:
    """Spectral sums for one grid cell, one row per layer."""

    def __init__(self, n_layers: int, n_samples: int):
        self.incident = np.zeros((n_layers, n_samples))
        self.absorbed = np.zeros((n_layers, n_samples))
        self.transmitted = np.zeros((n_layers, n_samples))
        self.scattered_energy = 0.0
        self.incident_energy = 0.0

    def add(self, layer_index: int, incident: np.ndarray, absorbed: np.ndarray,
            transmitted: np.ndarray, kind: str = "primary") -> None:
        self.incident[layer_index] += incident
        self.absorbed[layer_index] += absorbed
        self.transmitted[layer_index] += transmitted
        energy = float(incident.sum())
        self.incident_energy += energy
        if kind == "scatter":
            self.scattered_energy += energy


class ResultAggregator:
    """Running sums over grid cells."""

    def __init__(self, layer_ids: Sequence[str], n_samples: int, min_wavelength: float,
                 grid_shape: Tuple[int, int]):
        self.layer_ids = list(layer_ids)
        self.n_samples = n_samples
        self.min_wavelength = min_wavelength
        self.grid_shape = (int(grid_shape[0]), int(grid_shape[1]))
        n_layers = len(self.layer_ids)

        self._ppfd_weights = photon_flux_weights(n_samples, min_wavelength, PAR_BAND)
        self._band_masks = {
            name: band_mask(n_samples, min_wavelength, band)
            for name, band in (("par", PAR_BAND), ("blue", BLUE_BAND),
                               ("red", RED_BAND), ("far_red", FAR_RED_BAND))
        }

        self.ppfd_sum = np.zeros(n_layers)
        self.transmitted_ppfd_sum = np.zeros(n_layers)
        self.spectral_sum = np.zeros((n_layers, n_samples))
        self.band_sums = {name: np.zeros(n_layers) for name in self._band_masks}
        self.ppfd_min = np.full(n_layers, math.inf)
        self.ppfd_max = np.full(n_layers, -math.inf)
        self.ppfd_maps = np.zeros((n_layers,) + self.grid_shape)
        self.scattered_energy = 0.0
        self.incident_energy = 0.0
        self.n_cells = 0

    def add_cell(self, ix: int, iy: int, accumulator: LayerAccumulator, rays_per_pixel: int) -> None:
        expected = (len(self.layer_ids), self.n_samples)
        if accumulator.incident.shape != expected:
            raise ProcessingError(
                f"Cell ({ix}, {iy}) accumulator has shape {accumulator.incident.shape}, expected {expected}"
            )
        scale = 1.0 / rays_per_pixel
        incident = accumulator.incident * scale
        absorbed = accumulator.absorbed * scale
        transmitted = accumulator.transmitted * scale

        ppfd = incident @ self._ppfd_weights
        self.ppfd_sum += ppfd
        self.transmitted_ppfd_sum += transmitted @ self._ppfd_weights
        self.spectral_sum += incident
        for name, mask in self._band_masks.items():
            self.band_sums[name] += absorbed[:, mask].sum(axis=1)
        self.ppfd_min = np.minimum(self.ppfd_min, ppfd)
        self.ppfd_max = np.maximum(self.ppfd_max, ppfd)
        self.ppfd_maps[:, ix, iy] = ppfd
        self.scattered_energy += accumulator.scattered_energy * scale
        self.incident_energy += accumulator.incident_energy * scale
        self.n_cells += 1

    def finalize(self, room: Room, layers: Sequence[CanopyLayer], grid_resolution: float,
                 total_rays: int) -> TracingResult:
        """Convert the running sums into per-layer cell means."""
        n_cells = max(self.n_cells, 1)
        ppfd_by_layer: Dict[str, float] = {}
        transmitted_by_layer: Dict[str, float] = {}
        spectra: Dict[str, np.ndarray] = {}
        absorption: Dict[str, BandAbsorption] = {}
        uniformity: Dict[str, UniformityStats] = {}
        maps: Dict[str, np.ndarray] = {}

        for index, layer_id in enumerate(self.layer_ids):
            avg = float(self.ppfd_sum[index] / n_cells)
            ppfd_by_layer[layer_id] = avg
            transmitted_by_layer[layer_id] = float(self.transmitted_ppfd_sum[index] / n_cells)
            spectra[layer_id] = self.spectral_sum[index] / n_cells
            absorption[layer_id] = BandAbsorption(
                par=float(self.band_sums["par"][index] / n_cells),
                blue=float(self.band_sums["blue"][index] / n_cells),
                red=float(self.band_sums["red"][index] / n_cells),
                far_red=float(self.band_sums["far_red"][index] / n_cells),
            )
            uniformity[layer_id] = uniformity_stats(
                self.ppfd_min[index] if self.n_cells else 0.0,
                self.ppfd_max[index] if self.n_cells else 0.0,
                avg,
            )
            maps[layer_id] = self.ppfd_maps[index].copy()

        profile = build_penetration_profile(
            room.height, layers, ppfd_by_layer, spectra, self.n_samples
        )
        contribution = self.scattered_energy / self.incident_energy if self.incident_energy > 0 else 0.0

        return TracingResult(
            ppfd_by_layer=ppfd_by_layer,
            transmitted_ppfd_by_layer=transmitted_by_layer,
            spectral_irradiance_by_layer=spectra,
            absorption_by_layer=absorption,
            uniformity_by_layer=uniformity,
            ppfd_maps=maps,
            penetration_profile=profile,
            scattering_contribution=float(contribution),
            grid_shape=self.grid_shape,
            grid_resolution=float(grid_resolution),
            total_rays=int(total_rays),
        )


def uniformity_stats(ppfd_min: float, ppfd_max: float, ppfd_avg: float) -> UniformityStats:
    """Range-over-mean uniformity; ``cv`` is 0 when the mean is 0."""
    cv = (ppfd_max - ppfd_min) / ppfd_avg if ppfd_avg > 0 else 0.0
    return UniformityStats(min=float(ppfd_min), max=float(ppfd_max), avg=float(ppfd_avg), cv=float(cv))


def build_penetration_profile(room_height: float, layers: Sequence[CanopyLayer],
                              ppfd_by_layer: Mapping[str, float],
                              spectra_by_layer: Mapping[str, np.ndarray],
                              n_samples: int, step: float = PROFILE_STEP) -> List[ProfileSample]:
    """
    Sample PPFD from the ceiling down to the floor every ``step`` metres.

    Each height reports the first layer (top to bottom) that contains it, or
    zero PPFD and a zero spectrum when no layer does.
    """
    ordered = sorted(layers, key=lambda layer: layer.top, reverse=True)
    n_steps = int(math.floor(room_height / step + 1e-9))
    samples = []
    for k in range(n_steps + 1):
        height = room_height - k * step
        occupant = None
        for layer in ordered:
            if layer.bottom - 1e-9 <= height <= layer.top + 1e-9:
                occupant = layer
                break
        if occupant is None:
            ppfd, spectrum = 0.0, np.zeros(n_samples)
        else:
            ppfd = ppfd_by_layer.get(occupant.id, 0.0)
            spectrum = spectra_by_layer.get(occupant.id, np.zeros(n_samples))
        samples.append(ProfileSample(depth=room_height - height, height=height,
                                     ppfd=float(ppfd), spectrum=spectrum))
    return samples


__all__ = [
    "LayerAccumulator",
    "ResultAggregator",
    "uniformity_stats",
    "build_penetration_profile",
]
