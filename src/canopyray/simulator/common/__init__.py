from .geometry import (
    intersect_slab,
    normalize,
    random_hemisphere_direction,
    ray_exit_box,
    specular_reflection,
)

__all__ = [
    "intersect_slab",
    "normalize",
    "random_hemisphere_direction",
    "ray_exit_box",
    "specular_reflection",
]
