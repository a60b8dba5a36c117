"""
Plant placement on growing trays.

Lays plants out on trays in grid, hexagonal or row patterns, sizes them from
the species database according to their age, and exports the result as a
:class:`~canopyray.models.PlantPlacement` for a canopy layer.

Tray and pattern dimensions follow horticultural convention: tray sizes in
metres, planting spacings and plant sizes in centimetres. Exports are in
metres.
"""

import itertools
import math
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from ..errors import ConfigurationError
from ..models import PlantPlacement
from ..utils.logging import get_logger
from .species import SPECIES_DATABASE, determine_growth_stage, get_species, stage_profile

_logger = get_logger(__name__)

PATTERN_TYPES = ("grid", "hexagonal", "row")
MEDIUM_TYPES = ("rockwool", "coco", "perlite", "dwc", "nft", "aeroponic")
HEX_ROW_FACTOR = 0.866

STANDARD_TRAYS = {
    "seedling": {"width": 1.2, "length": 0.6, "pattern": "grid", "spacing": (5, 5), "medium_type": "rockwool"},
    "vegetative": {"width": 2.4, "length": 1.2, "pattern": "grid", "spacing": (15, 15), "medium_type": "coco"},
    "production": {"width": 3.6, "length": 1.2, "pattern": "hexagonal", "spacing": (25, 25), "medium_type": "nft"},
}


@dataclass
class PlantingPattern:
    type: str = "grid"
    spacing: Tuple[float, float] = (25.0, 25.0)  # cm
    offset: Tuple[float, float] = (0.0, 0.0)     # cm

    def __post_init__(self):
        if self.type not in PATTERN_TYPES:
            raise ConfigurationError(f"Unknown planting pattern {self.type!r}; expected one of {PATTERN_TYPES}")
        if self.spacing[0] <= 0 or self.spacing[1] <= 0:
            raise ConfigurationError("Planting spacing must be positive")


@dataclass
class PlantInstance:
    id: str
    position: np.ndarray          # tray-local, m
    species: str
    planting_date: datetime
    age_days: int
    growth_stage: str
    height_cm: float
    canopy_diameter_cm: float
    lai: float
    root_zone_radius_cm: float
    health: float


@dataclass
class GrowingTray:
    id: str
    width: float
    length: float
    position: np.ndarray
    height: float
    medium_type: str
    pattern: PlantingPattern
    species: str
    medium_depth: float = 5.0  # cm
    plants: List[PlantInstance] = field(default_factory=list)

    @property
    def dominant_stage(self) -> Optional[str]:
        """Most common growth stage on the tray, or None when empty."""
        if not self.plants:
            return None
        return Counter(plant.growth_stage for plant in self.plants).most_common(1)[0][0]


class PlantPlacementSystem:
    """
    Registry of growing trays and their plants.

    Args:
        seed: Seed for the natural size and health variation.
        species_db: Species entries keyed by identifier. Defaults to the built-in database.
    """

    def __init__(self, seed: Optional[int] = None, species_db: Optional[Dict[str, dict]] = None):
        self.rng = np.random.default_rng(seed)
        self.species_db = dict(SPECIES_DATABASE if species_db is None else species_db)
        self.trays: Dict[str, GrowingTray] = {}
        self._tray_ids = itertools.count(1)
        self._plant_ids = itertools.count(1)

    def _species(self, key: str) -> dict:
        if key in self.species_db:
            return self.species_db[key]
        return get_species(key)

    def create_tray(self, width: float, length: float, position: Sequence[float], height: float,
                    medium_type: str, pattern: PlantingPattern, species: str,
                    planting_date: Optional[datetime] = None,
                    now: Optional[datetime] = None) -> GrowingTray:
        """
        Create a tray and fill it with plants following ``pattern``.

        Args:
            width, length: Tray size in metres.
            position: Tray origin in room coordinates (m).
            height: Growing surface height above the floor (m).
            planting_date: Defaults to ``now``, so plants start at age zero.
            now: Reference time for plant ages. Defaults to the current time.
        """
        if width <= 0 or length <= 0:
            raise ConfigurationError("Tray dimensions must be positive")
        if medium_type not in MEDIUM_TYPES:
            raise ConfigurationError(f"Unknown growing medium {medium_type!r}; expected one of {MEDIUM_TYPES}")
        species_entry = self._species(species)
        now = now or datetime.now()
        planting_date = planting_date or now

        tray = GrowingTray(
            id=f"tray-{next(self._tray_ids)}",
            width=float(width),
            length=float(length),
            position=np.asarray(position, dtype=np.float64).reshape(3),
            height=float(height),
            medium_type=medium_type,
            pattern=pattern,
            species=species,
        )
        for x, y in self._pattern_positions(tray):
            tray.plants.append(self._create_plant((x, y), species, species_entry, planting_date, now))
        self.trays[tray.id] = tray
        _logger.debug("Created %s with %d %s plants (%s pattern)", tray.id, len(tray.plants), species, pattern.type)
        return tray

    def _pattern_positions(self, tray: GrowingTray) -> List[Tuple[float, float]]:
        """Plant centres in tray-local metres."""
        pattern = tray.pattern
        sx, sy = pattern.spacing
        ox, oy = pattern.offset
        width_cm = tray.width * 100.0
        length_cm = tray.length * 100.0
        positions = []

        if pattern.type == "grid":
            cols = math.floor(width_cm / sx)
            rows = math.floor(length_cm / sy)
            for row in range(rows):
                for col in range(cols):
                    x = (col + 0.5) * sx + ox
                    y = (row + 0.5) * sy + oy
                    if x < width_cm and y < length_cm:
                        positions.append((x / 100.0, y / 100.0))
        elif pattern.type == "hexagonal":
            cols = math.floor(width_cm / sx)
            rows = math.floor(length_cm / (sy * HEX_ROW_FACTOR))
            for row in range(rows):
                row_shift = (row % 2) * (sx / 2.0)
                for col in range(cols):
                    x = col * sx + row_shift + ox
                    y = row * sy * HEX_ROW_FACTOR + oy
                    if x < width_cm and y < length_cm:
                        positions.append((x / 100.0, y / 100.0))
        else:
            # Rows ignore the offset.
            rows = math.floor(length_cm / sy)
            per_row = math.floor(width_cm / sx)
            for row in range(rows):
                for col in range(per_row):
                    positions.append(((col + 0.5) * sx / 100.0, (row + 0.5) * sy / 100.0))
        return positions

    def _create_plant(self, position: Tuple[float, float], species_key: str, species: dict,
                      planting_date: datetime, now: datetime) -> PlantInstance:
        age = max(0, (now - planting_date).days)
        stage = determine_growth_stage(age, species)
        profile = stage_profile(species, stage)
        height_variation = 0.8 + self.rng.random() * 0.4
        canopy_variation = 0.9 + self.rng.random() * 0.2
        return PlantInstance(
            id=f"plant-{next(self._plant_ids)}",
            position=np.array([position[0], position[1], 0.0]),
            species=species_key,
            planting_date=planting_date,
            age_days=age,
            growth_stage=stage,
            height_cm=profile["height"][2] * height_variation,
            canopy_diameter_cm=profile["canopy_diameter"][2] * canopy_variation,
            lai=profile["lai"][2],
            root_zone_radius_cm=profile["canopy_diameter"][2] * 0.3,
            health=0.9 + self.rng.random() * 0.1,
        )

    def update_plant_growth(self, days: int = 1) -> None:
        """
        Age every plant by ``days``.

        Plants that enter a new stage with a size profile are resized to that
        profile with ±10% variation, scaled by their health.
        """
        for tray in self.trays.values():
            for plant in tray.plants:
                plant.age_days += days
                species = self._species(plant.species)
                previous = plant.growth_stage
                plant.growth_stage = determine_growth_stage(plant.age_days, species)
                if plant.growth_stage == previous:
                    continue
                profile = species["size_profile"].get(plant.growth_stage)
                if profile is None:
                    continue
                factor = 1.0 + (self.rng.random() * 0.2 - 0.1)
                plant.height_cm = profile["height"][2] * factor * plant.health
                plant.canopy_diameter_cm = profile["canopy_diameter"][2] * factor * plant.health
                plant.lai = profile["lai"][2] * plant.health

    def get_plants_in_area(self, center: Sequence[float], radius: float,
                           height_range: Optional[Tuple[float, float]] = None) -> List[PlantInstance]:
        """Plants whose room-coordinate base lies within ``radius`` of ``center``."""
        center = np.asarray(center, dtype=np.float64)
        found = []
        for tray in self.trays.values():
            if height_range is not None and not height_range[0] <= tray.height <= height_range[1]:
                continue
            for plant in tray.plants:
                base = self._room_position(tray, plant)
                if np.linalg.norm(base - center) <= radius:
                    found.append(plant)
        return found

    def calculate_local_lai(self, position: Sequence[float], layer_height: float) -> float:
        """
        LAI at ``position`` summed over plants of the trays at ``layer_height``.

        Trays within 0.1 m of the layer height count. Each plant whose canopy
        radius covers the point adds ``LAI * (1 - (d/r)^2)``.
        """
        position = np.asarray(position, dtype=np.float64)
        total = 0.0
        for tray in self.trays.values():
            if abs(tray.height - layer_height) >= 0.1:
                continue
            for plant in tray.plants:
                radius = plant.canopy_diameter_cm / 200.0
                distance = float(np.linalg.norm(position - self._room_position(tray, plant)))
                if distance < radius:
                    total += max(0.0, plant.lai * (1.0 - (distance / radius) ** 2))
        return total

    def optimize_spacing(self, tray_id: str) -> None:
        """Re-grid the plants of a tray using each growth stage's recommended spacing."""
        tray = self._tray(tray_id)
        groups: Dict[str, List[PlantInstance]] = {}
        for plant in tray.plants:
            groups.setdefault(plant.growth_stage, []).append(plant)
        for stage, plants in groups.items():
            for index, plant in enumerate(plants):
                spacing = self._species(plant.species)["spacing"]
                sx, sy = spacing.get(stage, spacing["mature"])
                cols = max(1, math.floor(tray.width * 100.0 / sx))
                row, col = divmod(index, cols)
                plant.position[0] = (col + 0.5) * sx / 100.0
                plant.position[1] = (row + 0.5) * sy / 100.0

    def export_for_ray_tracer(self, tray_id: str) -> PlantPlacement:
        """Plant arrays in room coordinates (m) for a canopy layer."""
        tray = self._tray(tray_id)
        n = len(tray.plants)
        positions = np.zeros((n, 3))
        sizes = np.zeros((n, 2))
        properties = np.zeros((n, 2))
        for index, plant in enumerate(tray.plants):
            positions[index] = self._room_position(tray, plant)
            sizes[index] = (plant.height_cm / 100.0, plant.canopy_diameter_cm / 100.0)
            properties[index] = (plant.lai, plant.health)
        return PlantPlacement(positions, sizes, properties)

    def _tray(self, tray_id: str) -> GrowingTray:
        try:
            return self.trays[tray_id]
        except KeyError:
            raise ConfigurationError(f"Unknown tray {tray_id!r}") from None

    @staticmethod
    def _room_position(tray: GrowingTray, plant: PlantInstance) -> np.ndarray:
        return np.array([tray.position[0] + plant.position[0],
                         tray.position[1] + plant.position[1],
                         tray.height])


def create_standard_tray(kind: str, species: str, position: Sequence[float], height: float,
                         system: Optional[PlantPlacementSystem] = None, **kwargs) -> GrowingTray:
    """
    Create one of the standard tray layouts (``seedling``, ``vegetative``, ``production``).

    Extra keyword arguments (``planting_date``, ``now``) are passed to
    :meth:`PlantPlacementSystem.create_tray`.
    """
    if kind not in STANDARD_TRAYS:
        raise ConfigurationError(f"Unknown standard tray {kind!r}; expected one of {tuple(STANDARD_TRAYS)}")
    layout = STANDARD_TRAYS[kind]
    system = system if system is not None else PlantPlacementSystem()
    return system.create_tray(
        width=layout["width"],
        length=layout["length"],
        position=position,
        height=height,
        medium_type=layout["medium_type"],
        pattern=PlantingPattern(layout["pattern"], layout["spacing"]),
        species=species,
        **kwargs,
    )


__all__ = [
    "PlantingPattern",
    "PlantInstance",
    "GrowingTray",
    "PlantPlacementSystem",
    "create_standard_tray",
    "STANDARD_TRAYS",
]
