import pytest
import os
import sys
import logging

import matplotlib
import numpy as np

matplotlib.use("Agg")

# Add the src directory to the Python path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '../src')))

from canopyray.models import (  # noqa: E402
    CanopyLayer,
    LeafOpticalProperties,
    LightSource,
    SpectralFunction,
    make_tracer_config,
)
from canopyray.simulator.canopy.tracer import CanopyRayTracer  # noqa: E402


@pytest.fixture
def flat_spectrum():
    """Flat 380-780 nm emission shape."""
    return SpectralFunction.flat().values


@pytest.fixture
def black_optics():
    """Leaf optics that absorb everything and never fluoresce."""
    return LeafOpticalProperties.full_absorber()


@pytest.fixture
def parity_config():
    """Tracer settings with no secondary rays, for closed-form comparisons."""
    return make_tracer_config(rays_per_pixel=10, max_bounces=0, enable_scattering=False,
                              enable_fluorescence=False, path_length="vertical", seed=42)


@pytest.fixture
def make_single_layer_tracer(flat_spectrum, black_optics):
    """Factory for a 2 x 2 x 3 m room with one black layer under a collimated source."""
    def _make(config, lai=3.0, distribution="collimated", optics=None, **layer_kwargs):
        tracer = CanopyRayTracer(config)
        tracer.set_room(2.0, 2.0, 3.0, wall_reflectance=0.0)
        tracer.add_layer(CanopyLayer(id="canopy", height=1.0, thickness=0.5, lai=lai,
                                     optics=optics if optics is not None else black_optics,
                                     **layer_kwargs))
        tracer.add_light_source(LightSource((1.0, 1.0, 2.8), flat_spectrum, 1000.0,
                                            distribution=distribution))
        return tracer
    return _make


@pytest.fixture
def canopyray_caplog(caplog):
    """caplog wired to the non-propagating ``canopyray`` logger."""
    logger = logging.getLogger("canopyray")
    logger.addHandler(caplog.handler)
    caplog.set_level(logging.DEBUG, logger="canopyray")
    yield caplog
    logger.removeHandler(caplog.handler)


@pytest.fixture
def rng():
    return np.random.default_rng(1234)
