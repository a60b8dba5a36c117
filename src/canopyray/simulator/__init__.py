from .canopy import CanopyRayTracer, RayTask

__all__ = ["CanopyRayTracer", "RayTask"]
