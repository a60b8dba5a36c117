"""Exception hierarchy shared across canopyray."""


class CanopyRayError(Exception):
    """Base error for all canopyray failures."""


class ConfigurationError(CanopyRayError):
    """Invalid scene, layer, source or tracer configuration."""


class ProcessingError(CanopyRayError):
    """Failure while tracing or aggregating results."""


class VisualizationError(CanopyRayError):
    """Failure while plotting results."""


__all__ = [
    "CanopyRayError",
    "ConfigurationError",
    "ProcessingError",
    "VisualizationError",
]
