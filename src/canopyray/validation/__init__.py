from .checks import (
    ValidationResult,
    run_validation_suite,
    validate_beer_lambert,
    validate_par_bounds,
    validate_ppfd_conversion,
    validate_projection_functions,
    validate_published_tomato,
    validate_room_scenario,
    validate_vertical_lai_integral,
    validation_dataframe,
)

__all__ = [
    "ValidationResult",
    "run_validation_suite",
    "validate_beer_lambert",
    "validate_par_bounds",
    "validate_ppfd_conversion",
    "validate_projection_functions",
    "validate_published_tomato",
    "validate_room_scenario",
    "validate_vertical_lai_integral",
    "validation_dataframe",
]
