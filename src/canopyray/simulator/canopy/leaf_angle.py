"""
Leaf angle distributions.

Projection functions (G) and inclination densities for the de Wit (1965)
leaf-angle families, plus a tabulated sampler that draws leaf normals for
scattering.
"""

import math

import numpy as np

from ...models import LeafAngleDistribution, LeafAngleType

MAX_ZENITH_DEG = 89.9
CUSTOM_SIGMA_DEG = 15.0

_G_TABLE = {
    LeafAngleType.SPHERICAL: 0.5,
    LeafAngleType.UNIFORM: 0.5,
    LeafAngleType.PLANOPHILE: 0.88,
    LeafAngleType.ERECTOPHILE: 0.32,
    LeafAngleType.PLAGIOPHILE: 0.66,
    LeafAngleType.EXTREMOPHILE: 0.6,
}


def projection_function(dist: LeafAngleDistribution) -> float:
    """
    Mean projection of unit leaf area onto the plane normal to the beam (G).

    Custom distributions use ``0.5 / cos(mean_angle)`` with the angle capped at
    89.9°, or the spherical value when no mean angle is given.
    """
    kind = dist.kind
    if kind is LeafAngleType.CUSTOM:
        if dist.mean_angle is None:
            return 0.5
        mean = min(float(dist.mean_angle), MAX_ZENITH_DEG)
        return 0.5 / math.cos(math.radians(mean))
    if kind in _G_TABLE:
        return _G_TABLE[kind]
    raise ValueError(f"Unhandled leaf angle type: {kind!r}")


def angle_density(theta_deg, dist: LeafAngleDistribution) -> np.ndarray:
    """Unnormalised leaf inclination density at ``theta_deg`` (degrees, 0-90)."""
    theta = np.radians(np.asarray(theta_deg, dtype=np.float64))
    kind = dist.kind
    if kind is LeafAngleType.SPHERICAL:
        return np.sin(theta)
    if kind is LeafAngleType.UNIFORM:
        return np.full_like(theta, 2.0 / np.pi)
    if kind is LeafAngleType.PLANOPHILE:
        return 2.0 / np.pi * (1.0 + np.cos(2.0 * theta))
    if kind is LeafAngleType.ERECTOPHILE:
        return 2.0 / np.pi * (1.0 - np.cos(2.0 * theta))
    if kind is LeafAngleType.PLAGIOPHILE:
        return 2.0 / np.pi * (1.0 - np.cos(4.0 * theta))
    if kind is LeafAngleType.EXTREMOPHILE:
        return 2.0 / np.pi * (1.0 + np.cos(4.0 * theta))
    if kind is LeafAngleType.CUSTOM:
        beta = 1.0 if dist.beta is None else float(dist.beta)
        density = np.sin(theta) ** beta
        if dist.mean_angle is not None:
            offset = np.degrees(theta) - float(dist.mean_angle)
            density = density * np.exp(-0.5 * (offset / CUSTOM_SIGMA_DEG) ** 2)
        return density
    raise ValueError(f"Unhandled leaf angle type: {kind!r}")


class LeafAngleSampler:
    """
    Inverse-CDF sampler over one-degree inclination bins.

    The pdf and cdf tables are computed once and made read-only so that a
    sampler can be shared between worker threads.
    """

    def __init__(self, dist: LeafAngleDistribution, bins: int = 90):
        self.distribution = dist
        self.bins = int(bins)
        self.bin_width = 90.0 / self.bins
        centres = (np.arange(self.bins) + 0.5) * self.bin_width
        pdf = np.clip(angle_density(centres, dist), 0.0, None)
        total = pdf.sum()
        if total <= 0.0:
            pdf = np.full(self.bins, 1.0 / self.bins)
        else:
            pdf = pdf / total
        cdf = np.cumsum(pdf)
        cdf[-1] = 1.0
        pdf.setflags(write=False)
        cdf.setflags(write=False)
        self.pdf = pdf
        self.cdf = cdf

    def sample_zenith(self, rng: np.random.Generator) -> float:
        """Leaf inclination in degrees, clamped below 90°."""
        u, jitter = rng.random(2)
        index = min(int(np.searchsorted(self.cdf, u, side="right")), self.bins - 1)
        theta = (index + jitter) * self.bin_width
        return min(theta, MAX_ZENITH_DEG)

    def sample_normal(self, rng: np.random.Generator) -> np.ndarray:
        """Unit leaf normal with sampled inclination and uniform azimuth."""
        theta = math.radians(self.sample_zenith(rng))
        phi = 2.0 * math.pi * rng.random()
        sin_theta = math.sin(theta)
        return np.array([sin_theta * math.cos(phi), sin_theta * math.sin(phi), math.cos(theta)])


__all__ = [
    "projection_function",
    "angle_density",
    "LeafAngleSampler",
    "MAX_ZENITH_DEG",
]
