from .maps import plot_layer_spectra, plot_penetration_profile, plot_ppfd_map

__all__ = ["plot_ppfd_map", "plot_penetration_profile", "plot_layer_spectra"]
