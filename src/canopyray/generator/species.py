"""
Crop Species Database
=====================

Growth timings, per-stage plant sizes, light requirements and planting
densities for the crops supported by the placement generator.

Sizes are in centimetres and given as ``(min, max, typical)``; growth stage
durations are in days; spacings are ``(x, y)`` in centimetres.
"""

from typing import Dict, List

from ..errors import ConfigurationError

# =============================================================================
# Growth stages
# =============================================================================

GROWTH_STAGES = ("germination", "seedling", "vegetative", "flowering", "fruiting", "harvest")
"""Ordered lifecycle stages a plant passes through."""

FALLBACK_STAGE = "seedling"
"""Size profile used when a species has none for the current stage."""


# =============================================================================
# Species
# =============================================================================

SPECIES_DATABASE: Dict[str, dict] = {
    "lettuce-butterhead": {
        "name": "Butterhead Lettuce",
        "scientific_name": "Lactuca sativa var. capitata",
        "category": "leafy",
        "growth_rate": {"germination": 7, "seedling": 14, "vegetative": 21, "total_cycle": 42},
        "size_profile": {
            "seedling": {"height": (2, 5, 3), "canopy_diameter": (3, 8, 5), "lai": (0.5, 1.5, 1.0)},
            "vegetative": {"height": (10, 20, 15), "canopy_diameter": (15, 30, 25), "lai": (2.0, 4.0, 3.0)},
        },
        "light": {
            "ppfd_optimal": (150, 250),
            "ppfd_tolerance": (100, 400),
            "photoperiod": (14, 18),
            "dli_target": 12,
            "spectrum_preference": {"blue": 20, "green": 20, "red": 50, "far_red": 10},
        },
        "spacing": {"seedling": (5, 5), "vegetative": (15, 15), "mature": (25, 25)},
    },
    "basil-genovese": {
        "name": "Genovese Basil",
        "scientific_name": "Ocimum basilicum",
        "category": "herb",
        "growth_rate": {"germination": 5, "seedling": 14, "vegetative": 28, "flowering": 14, "total_cycle": 56},
        "size_profile": {
            "seedling": {"height": (3, 8, 5), "canopy_diameter": (2, 5, 3), "lai": (0.8, 1.5, 1.2)},
            "vegetative": {"height": (20, 40, 30), "canopy_diameter": (15, 25, 20), "lai": (3.0, 5.0, 4.0)},
        },
        "light": {
            "ppfd_optimal": (200, 350),
            "ppfd_tolerance": (150, 500),
            "photoperiod": (14, 16),
            "dli_target": 15,
            "spectrum_preference": {"blue": 25, "green": 15, "red": 50, "far_red": 10},
        },
        "spacing": {"seedling": (5, 5), "vegetative": (20, 20), "mature": (25, 25)},
    },
    "microgreens-mix": {
        "name": "Microgreens Mix",
        "scientific_name": "Various",
        "category": "leafy",
        "growth_rate": {"germination": 2, "seedling": 5, "vegetative": 7, "total_cycle": 14},
        "size_profile": {
            "seedling": {"height": (1, 3, 2), "canopy_diameter": (1, 2, 1.5), "lai": (1.0, 2.0, 1.5)},
            "vegetative": {"height": (5, 10, 7), "canopy_diameter": (2, 4, 3), "lai": (2.0, 3.0, 2.5)},
        },
        "light": {
            "ppfd_optimal": (100, 200),
            "ppfd_tolerance": (50, 300),
            "photoperiod": (12, 16),
            "dli_target": 8,
            "spectrum_preference": {"blue": 30, "green": 20, "red": 40, "far_red": 10},
        },
        "spacing": {"seedling": (1, 1), "vegetative": (2, 2), "mature": (3, 3)},
    },
    "tomato-indeterminate": {
        "name": "Indeterminate Tomato",
        "scientific_name": "Solanum lycopersicum",
        "category": "fruiting",
        "growth_rate": {"germination": 7, "seedling": 21, "vegetative": 35, "flowering": 21,
                        "fruiting": 60, "total_cycle": 144},
        "size_profile": {
            "seedling": {"height": (10, 20, 15), "canopy_diameter": (10, 20, 15), "lai": (1.0, 2.0, 1.5)},
            "vegetative": {"height": (50, 100, 75), "canopy_diameter": (30, 50, 40), "lai": (3.0, 5.0, 4.0)},
            "flowering": {"height": (100, 200, 150), "canopy_diameter": (40, 60, 50), "lai": (4.0, 6.0, 5.0)},
            "fruiting": {"height": (150, 300, 200), "canopy_diameter": (50, 80, 60), "lai": (3.5, 5.5, 4.5)},
        },
        "light": {
            "ppfd_optimal": (400, 600),
            "ppfd_tolerance": (200, 800),
            "photoperiod": (12, 16),
            "dli_target": 20,
            "spectrum_preference": {"blue": 15, "green": 10, "red": 60, "far_red": 15},
        },
        "spacing": {"seedling": (15, 15), "vegetative": (45, 45), "mature": (60, 60)},
    },
    "cannabis-sativa": {
        "name": "Cannabis Sativa",
        "scientific_name": "Cannabis sativa",
        "category": "flower",
        "growth_rate": {"germination": 5, "seedling": 14, "vegetative": 42, "flowering": 63, "total_cycle": 124},
        "size_profile": {
            "seedling": {"height": (10, 20, 15), "canopy_diameter": (10, 20, 15), "lai": (1.5, 2.5, 2.0)},
            "vegetative": {"height": (60, 120, 90), "canopy_diameter": (60, 100, 80), "lai": (4.0, 7.0, 5.5)},
            "flowering": {"height": (100, 200, 150), "canopy_diameter": (80, 120, 100), "lai": (5.0, 8.0, 6.5)},
        },
        "light": {
            "ppfd_optimal": (600, 900),
            "ppfd_tolerance": (400, 1200),
            "photoperiod": (12, 18),
            "dli_target": 35,
            "spectrum_preference": {"blue": 20, "green": 10, "red": 55, "far_red": 15},
        },
        "spacing": {"seedling": (20, 20), "vegetative": (60, 60), "mature": (100, 100)},
    },
    "cucumber-vine": {
        "name": "Cucumber (Vine)",
        "scientific_name": "Cucumis sativus",
        "category": "fruiting",
        "growth_rate": {"germination": 4, "seedling": 14, "vegetative": 21, "flowering": 14,
                        "fruiting": 42, "total_cycle": 95},
        "size_profile": {
            "vegetative": {"height": (50, 150, 100), "canopy_diameter": (30, 50, 40), "lai": (2.5, 4.0, 3.2)},
            "fruiting": {"height": (150, 300, 200), "canopy_diameter": (40, 60, 50), "lai": (3.0, 5.0, 4.0)},
        },
        "light": {
            "ppfd_optimal": (300, 500),
            "ppfd_tolerance": (200, 700),
            "photoperiod": (12, 16),
            "dli_target": 18,
            "spectrum_preference": {"blue": 20, "green": 15, "red": 50, "far_red": 15},
        },
        "spacing": {"seedling": (20, 20), "vegetative": (40, 40), "mature": (50, 50)},
    },
}


def list_species() -> List[str]:
    return sorted(SPECIES_DATABASE)


def get_species(key: str) -> dict:
    """Return the database entry for ``key``; unknown keys raise ConfigurationError."""
    try:
        return SPECIES_DATABASE[key]
    except KeyError:
        raise ConfigurationError(
            f"Unknown species {key!r}; available: {', '.join(list_species())}"
        ) from None


def stage_profile(species: dict, stage: str) -> dict:
    """
    Size profile for a growth stage.

    Falls back to the seedling profile, then to the first profile listed
    (cucumber has no seedling entry).
    """
    profiles = species["size_profile"]
    if stage in profiles:
        return profiles[stage]
    if FALLBACK_STAGE in profiles:
        return profiles[FALLBACK_STAGE]
    return next(iter(profiles.values()))


def determine_growth_stage(age_days: float, species: dict) -> str:
    """Lifecycle stage of a plant ``age_days`` after planting."""
    rate = species["growth_rate"]
    elapsed = rate["germination"]
    if age_days < elapsed:
        return "germination"
    elapsed += rate["seedling"]
    if age_days < elapsed:
        return "seedling"
    elapsed += rate["vegetative"]
    if age_days < elapsed:
        return "vegetative"
    if rate.get("flowering") and age_days < rate["total_cycle"] - rate.get("fruiting", 0):
        return "flowering"
    if rate.get("fruiting") and age_days < rate["total_cycle"]:
        return "fruiting"
    return "harvest"
