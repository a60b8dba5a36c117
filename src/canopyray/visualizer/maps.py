"""
Matplotlib views of tracing results.

Each function builds and returns a figure; ``show_plot=True`` also calls
``plt.show()``. Styling keyword arguments (``colormap``, ``vmin``, ``vmax``,
``figsize``, ``title``) are optional.
"""

import matplotlib.pyplot as plt
import numpy as np

from ..errors import VisualizationError
from ..models import TracingResult
from ..utils.spectral import DEFAULT_MIN_WAVELENGTH, wavelength_grid


def _layer_or_raise(result: TracingResult, layer_id: str) -> None:
    if layer_id not in result.ppfd_maps:
        raise VisualizationError(
            f"Unknown layer {layer_id!r}; available: {', '.join(result.layer_ids) or 'none'}"
        )


def plot_ppfd_map(result: TracingResult, layer_id: str, show_plot: bool = False, **kwargs):
    """Heatmap of incident PPFD over the grid cells of one layer."""
    _layer_or_raise(result, layer_id)
    ppfd_map = result.ppfd_maps[layer_id]
    colormap = kwargs.get("colormap", "viridis")
    vmin = kwargs.get("vmin", 0.0)
    vmax = kwargs.get("vmax", float(ppfd_map.max()) if ppfd_map.size else 1.0)
    res = result.grid_resolution
    extent = (0.0, ppfd_map.shape[0] * res, 0.0, ppfd_map.shape[1] * res)

    fig, ax = plt.subplots(figsize=kwargs.get("figsize", (8, 6)))
    # Cells are indexed (ix, iy); transpose so x runs along the horizontal axis.
    image = ax.imshow(ppfd_map.T, origin="lower", cmap=colormap, vmin=vmin, vmax=vmax, extent=extent)
    fig.colorbar(image, ax=ax, label="PPFD (µmol/m²/s)")
    ax.set_xlabel("x (m)")
    ax.set_ylabel("y (m)")
    ax.set_title(kwargs.get("title", f"Incident PPFD: {layer_id}"))
    if show_plot:
        plt.show()
    return fig


def plot_penetration_profile(result: TracingResult, show_plot: bool = False, **kwargs):
    """PPFD against height from the ceiling to the floor."""
    if not result.penetration_profile:
        raise VisualizationError("Result has no penetration profile")
    heights = [sample.height for sample in result.penetration_profile]
    ppfd = [sample.ppfd for sample in result.penetration_profile]

    fig, ax = plt.subplots(figsize=kwargs.get("figsize", (5, 7)))
    ax.plot(ppfd, heights, marker="o", color=kwargs.get("color", "tab:green"))
    ax.set_xlabel("PPFD (µmol/m²/s)")
    ax.set_ylabel("Height (m)")
    ax.set_title(kwargs.get("title", "Light penetration profile"))
    ax.grid(True, alpha=0.3)
    if show_plot:
        plt.show()
    return fig


def plot_layer_spectra(result: TracingResult, min_wavelength: float = DEFAULT_MIN_WAVELENGTH,
                       show_plot: bool = False, **kwargs):
    """Mean incident spectral irradiance of every layer."""
    if not result.spectral_irradiance_by_layer:
        raise VisualizationError("Result has no layers to plot")
    fig, ax = plt.subplots(figsize=kwargs.get("figsize", (9, 5)))
    for layer_id, spectrum in result.spectral_irradiance_by_layer.items():
        ax.plot(wavelength_grid(len(spectrum), min_wavelength), np.asarray(spectrum), label=layer_id)
    ax.set_xlabel("Wavelength (nm)")
    ax.set_ylabel("Irradiance (W/m²/nm)")
    ax.set_title(kwargs.get("title", "Incident spectra by layer"))
    ax.legend()
    if show_plot:
        plt.show()
    return fig


__all__ = ["plot_ppfd_map", "plot_penetration_profile", "plot_layer_spectra"]
