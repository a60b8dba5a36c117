"""
Spectral Utilities
==================

Wavelength grids, radiometric-to-quantum conversions and spectrum presets used
by the canopy tracer. Spectra are plain ``float64`` arrays of spectral
irradiance (W/m²/nm) sampled on a 1 nm grid starting at ``min_wavelength``.
"""

from typing import Iterable, Optional, Sequence, Tuple

import numpy as np

# =============================================================================
# Physical constants
# =============================================================================

PLANCK_CONSTANT = 6.626e-34
"""Planck's constant (J·s)."""

SPEED_OF_LIGHT = 2.998e8
"""Speed of light (m/s)."""

AVOGADRO_NUMBER = 6.022e23
"""Avogadro's number (1/mol)."""

MICROMOLE = AVOGADRO_NUMBER / 1e6
"""Photons per micromole."""


# =============================================================================
# Wavelength grid and bands
# =============================================================================

DEFAULT_MIN_WAVELENGTH = 380
DEFAULT_WAVELENGTH_SAMPLES = 401  # 380-780 nm at 1 nm

PAR_BAND = (400, 700)
BLUE_BAND = (400, 500)
RED_BAND = (600, 700)
FAR_RED_BAND = (700, 800)

FLUORESCENCE_BLUE_BAND = (400, 500)
FLUORESCENCE_RED_BAND = (600, 680)
FLUORESCENCE_BLUE_WEIGHT = 1.2  # blue photons excite more strongly than red
FLUORESCENCE_QUANTUM_YIELD = 0.05
FLUORESCENCE_PEAKS = ((685.0, 15.0, 0.7), (740.0, 25.0, 0.3))  # (center nm, sigma nm, weight)


def wavelength_grid(n_samples: int = DEFAULT_WAVELENGTH_SAMPLES,
                    min_wavelength: float = DEFAULT_MIN_WAVELENGTH) -> np.ndarray:
    """Return bin wavelengths in nm (``min_wavelength + index``)."""
    return min_wavelength + np.arange(n_samples, dtype=np.float64)


def band_mask(n_samples: int, min_wavelength: float, band: Tuple[float, float]) -> np.ndarray:
    """Boolean mask of bins whose wavelength lies inside ``band`` (inclusive)."""
    wavelengths = wavelength_grid(n_samples, min_wavelength)
    return (wavelengths >= band[0]) & (wavelengths <= band[1])


def photon_energy(wavelength_nm) -> np.ndarray:
    """Energy of a single photon (J) at the given wavelength(s)."""
    wavelength_m = np.asarray(wavelength_nm, dtype=np.float64) * 1e-9
    return PLANCK_CONSTANT * SPEED_OF_LIGHT / wavelength_m


def photon_flux_weights(n_samples: int,
                        min_wavelength: float = DEFAULT_MIN_WAVELENGTH,
                        band: Optional[Tuple[float, float]] = PAR_BAND) -> np.ndarray:
    """
    Per-bin conversion factors from W/m²/nm to µmol/m²/s.

    Bins outside ``band`` get a weight of zero. Pass ``band=None`` to weight
    every bin. The dot product of a spectrum with these weights is its
    photon flux density over the band.
    """
    wavelengths = wavelength_grid(n_samples, min_wavelength)
    weights = 1.0 / photon_energy(wavelengths) / MICROMOLE
    if band is not None:
        weights[~band_mask(n_samples, min_wavelength, band)] = 0.0
    return weights


def calculate_ppfd(spectrum, min_wavelength: float = DEFAULT_MIN_WAVELENGTH) -> float:
    """
    Convert spectral irradiance (W/m²/nm) to PPFD (µmol/m²/s).

    Integrates strictly over 400-700 nm inclusive. Each 1 nm bin is converted
    to photon flux with ``E / (h·c/λ)`` and then to micromoles by dividing by
    ``N_A / 1e6``.

    Example:
        >>> spectrum = np.zeros(401); spectrum[550 - 380] = 1.0
        >>> round(calculate_ppfd(spectrum), 2)
        4.6
    """
    values = np.asarray(spectrum, dtype=np.float64)
    weights = photon_flux_weights(values.shape[-1], min_wavelength, PAR_BAND)
    return float(values @ weights)


def photon_flux(spectrum, min_wavelength: float = DEFAULT_MIN_WAVELENGTH,
                band: Optional[Tuple[float, float]] = None) -> float:
    """Photon flux density (µmol/m²/s) of a spectrum over ``band`` (all bins if None)."""
    values = np.asarray(spectrum, dtype=np.float64)
    weights = photon_flux_weights(values.shape[-1], min_wavelength, band)
    return float(values @ weights)


def band_energy(spectrum, lo: float, hi: float,
                min_wavelength: float = DEFAULT_MIN_WAVELENGTH) -> float:
    """Integrated irradiance (W/m²) of a spectrum over the inclusive band [lo, hi]."""
    values = np.asarray(spectrum, dtype=np.float64)
    mask = band_mask(values.shape[-1], min_wavelength, (lo, hi))
    return float(values[..., mask].sum())


def photon_flux_to_energy(flux, wavelength_nm) -> np.ndarray:
    """Irradiance (W/m²) carried by a photon flux (µmol/m²/s) at the given wavelength(s)."""
    return np.asarray(flux, dtype=np.float64) * MICROMOLE * photon_energy(wavelength_nm)


def scale_to_photon_flux(shape, target: float,
                         min_wavelength: float = DEFAULT_MIN_WAVELENGTH) -> np.ndarray:
    """
    Scale a spectral shape so that its PPFD equals ``target``.

    Shapes with no PAR content (e.g. far-red only emitters) are scaled on
    their photon flux over the whole sampled range instead.
    """
    values = np.asarray(shape, dtype=np.float64)
    flux = calculate_ppfd(values, min_wavelength)
    if flux <= 0.0:
        flux = photon_flux(values, min_wavelength, band=None)
    if flux <= 0.0:
        return np.zeros_like(values)
    return values * (target / flux)


def daily_light_integral(ppfd: float, photoperiod_hours: float) -> float:
    """Daily light integral (mol/m²/day) for a constant PPFD."""
    return ppfd * photoperiod_hours * 3600.0 / 1e6


# =============================================================================
# Spectrum presets
# =============================================================================

def gaussian_spectrum(center: float, sigma: float, peak: float = 1.0,
                      n_samples: int = DEFAULT_WAVELENGTH_SAMPLES,
                      min_wavelength: float = DEFAULT_MIN_WAVELENGTH) -> np.ndarray:
    wavelengths = wavelength_grid(n_samples, min_wavelength)
    return peak * np.exp(-((wavelengths - center) ** 2) / (2.0 * sigma * sigma))


def led_spectrum(peaks: Iterable[Sequence[float]],
                 n_samples: int = DEFAULT_WAVELENGTH_SAMPLES,
                 min_wavelength: float = DEFAULT_MIN_WAVELENGTH) -> np.ndarray:
    """
    Sum of Gaussian LED emission lines.

    Args:
        peaks: Iterable of ``(center_nm, fwhm_nm, relative_weight)``.
    """
    spectrum = np.zeros(n_samples, dtype=np.float64)
    for center, fwhm, weight in peaks:
        sigma = fwhm / 2.3548
        spectrum += gaussian_spectrum(center, sigma, weight, n_samples, min_wavelength)
    return spectrum


def fluorescence_emission(n_samples: int = DEFAULT_WAVELENGTH_SAMPLES,
                          min_wavelength: float = DEFAULT_MIN_WAVELENGTH) -> np.ndarray:
    """Unit-excitation chlorophyll fluorescence shape (685/740 nm bimodal)."""
    spectrum = np.zeros(n_samples, dtype=np.float64)
    sigma_sum = 0.0
    for center, sigma, weight in FLUORESCENCE_PEAKS:
        spectrum += gaussian_spectrum(center, sigma, weight, n_samples, min_wavelength)
        sigma_sum += sigma
    return spectrum / sigma_sum


def fluorescence_excitation(n_samples: int = DEFAULT_WAVELENGTH_SAMPLES,
                            min_wavelength: float = DEFAULT_MIN_WAVELENGTH) -> np.ndarray:
    """Per-bin weight of absorbed energy that drives fluorescence."""
    weights = np.zeros(n_samples, dtype=np.float64)
    weights[band_mask(n_samples, min_wavelength, FLUORESCENCE_RED_BAND)] = 1.0
    weights[band_mask(n_samples, min_wavelength, FLUORESCENCE_BLUE_BAND)] = FLUORESCENCE_BLUE_WEIGHT
    return weights


def generic_leaf_optics(n_samples: int = DEFAULT_WAVELENGTH_SAMPLES,
                         min_wavelength: float = DEFAULT_MIN_WAVELENGTH
                         ) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Reflectance, transmittance and absorptance of a typical green leaf.

    Absorptance is ~0.92 in the blue and red, dips to ~0.75 around 550 nm and
    falls to ~0.06 past the red edge (~705 nm). The remainder is split between
    reflectance (52%) and transmittance (48%), so R+T+A = 1 in every bin.
    """
    wavelengths = wavelength_grid(n_samples, min_wavelength)
    green_dip = 0.17 * np.exp(-(((wavelengths - 550.0) / 30.0) ** 2))
    red_edge = 1.0 / (1.0 + np.exp((wavelengths - 705.0) / 10.0))
    absorptance = (0.92 - green_dip) * red_edge + 0.06 * (1.0 - red_edge)
    reflectance = (1.0 - absorptance) * 0.52
    transmittance = 1.0 - absorptance - reflectance
    return reflectance, transmittance, absorptance


__all__ = [
    "PLANCK_CONSTANT",
    "SPEED_OF_LIGHT",
    "AVOGADRO_NUMBER",
    "DEFAULT_MIN_WAVELENGTH",
    "DEFAULT_WAVELENGTH_SAMPLES",
    "PAR_BAND",
    "BLUE_BAND",
    "RED_BAND",
    "FAR_RED_BAND",
    "FLUORESCENCE_BLUE_BAND",
    "FLUORESCENCE_RED_BAND",
    "FLUORESCENCE_BLUE_WEIGHT",
    "FLUORESCENCE_QUANTUM_YIELD",
    "FLUORESCENCE_PEAKS",
    "wavelength_grid",
    "band_mask",
    "photon_energy",
    "photon_flux_weights",
    "calculate_ppfd",
    "photon_flux",
    "band_energy",
    "photon_flux_to_energy",
    "scale_to_photon_flux",
    "daily_light_integral",
    "gaussian_spectrum",
    "led_spectrum",
    "fluorescence_emission",
    "fluorescence_excitation",
    "generic_leaf_optics",
]
