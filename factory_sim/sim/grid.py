from __future__ import annotations

"""
File: factory_sim/sim/grid.py
Purpose: Static spatial model of the factory floor.
Key responsibilities:
- Cell grid with walkability and wall/obstacle drawing helpers.
- Rectangular zones with type, capacity, and hazard flags.
- Non-overlapping zone registry with per-cell lookup.
"""

from dataclasses import dataclass
import random
from typing import Iterator, Literal, get_args

from factory_sim.sim.entities import ZONE_TYPES, Position, ZoneType
from factory_sim.sim.errors import ConfigurationError


CellType = Literal["FLOOR", "WALL", "OBSTACLE", "DOOR", "DANGER"]
DangerLevel = Literal["LOW", "MEDIUM", "HIGH", "CRITICAL"]

CELL_TYPES: tuple[str, ...] = get_args(CellType)
WALKABLE_CELLS = frozenset({"FLOOR", "DOOR", "DANGER"})
CELL_GLYPHS = {"WALL": "#", "OBSTACLE": "X", "DOOR": "D", "DANGER": "!", "FLOOR": "."}


@dataclass(frozen=True)
class Zone:
    """Named rectangular region; both corners are inclusive."""
    zone_id: str
    name: str
    zone_type: ZoneType
    top_left: Position
    bottom_right: Position
    capacity: int = 50
    hazardous: bool = False
    danger_level: DangerLevel = "LOW"

    def __post_init__(self) -> None:
        if self.zone_type not in ZONE_TYPES:
            raise ConfigurationError(f"unknown zone type: {self.zone_type}")
        if self.bottom_right.x < self.top_left.x or self.bottom_right.y < self.top_left.y:
            raise ConfigurationError(f"zone {self.zone_id} has inverted corners")
        if self.capacity < 0:
            raise ConfigurationError(f"zone {self.zone_id} has negative capacity")

    @property
    def width(self) -> int:
        return self.bottom_right.x - self.top_left.x + 1

    @property
    def height(self) -> int:
        return self.bottom_right.y - self.top_left.y + 1

    def contains(self, position: Position) -> bool:
        return (
            self.top_left.x <= position.x <= self.bottom_right.x
            and self.top_left.y <= position.y <= self.bottom_right.y
        )

    def overlaps(self, other: Zone) -> bool:
        return not (
            other.top_left.x > self.bottom_right.x
            or other.bottom_right.x < self.top_left.x
            or other.top_left.y > self.bottom_right.y
            or other.bottom_right.y < self.top_left.y
        )

    def center(self) -> Position:
        """Representative cell used as the rally point for the zone."""
        return Position(
            self.top_left.x + (self.bottom_right.x - self.top_left.x) // 2,
            self.top_left.y + (self.bottom_right.y - self.top_left.y) // 2,
        )

    def cells(self) -> Iterator[Position]:
        for y in range(self.top_left.y, self.bottom_right.y + 1):
            for x in range(self.top_left.x, self.bottom_right.x + 1):
                yield Position(x, y)

    def random_position(self, rng: random.Random) -> Position:
        return Position(
            rng.randint(self.top_left.x, self.bottom_right.x),
            rng.randint(self.top_left.y, self.bottom_right.y),
        )

    def has_capacity(self, occupancy: int) -> bool:
        return occupancy < self.capacity


class GridMap:
    """Fixed-size cell grid owning the zone definitions."""
    def __init__(self, width: int, height: int) -> None:
        if width <= 0 or height <= 0:
            raise ValueError(f"invalid grid size: {width}x{height}")
        self.width = width
        self.height = height
        self._cells: list[list[str]] = [["FLOOR"] * width for _ in range(height)]
        self._zones: dict[str, Zone] = {}
        self._zone_index: dict[Position, str] = {}

    def in_bounds(self, position: Position) -> bool:
        return 0 <= position.x < self.width and 0 <= position.y < self.height

    def cell(self, position: Position) -> CellType:
        """Cell type at `position`; anything outside the grid reads as WALL."""
        if not self.in_bounds(position):
            return "WALL"
        return self._cells[position.y][position.x]  # type: ignore[return-value]

    def set_cell(self, position: Position, cell_type: CellType) -> None:
        if cell_type not in CELL_TYPES:
            raise ValueError(f"invalid cell type: {cell_type}")
        if self.in_bounds(position):
            self._cells[position.y][position.x] = cell_type

    def fill_rect(self, top_left: Position, bottom_right: Position, cell_type: CellType) -> None:
        for y in range(top_left.y, bottom_right.y + 1):
            for x in range(top_left.x, bottom_right.x + 1):
                self.set_cell(Position(x, y), cell_type)

    def horizontal_wall(self, y: int, x_start: int, x_end: int) -> None:
        self.fill_rect(Position(x_start, y), Position(x_end, y), "WALL")

    def vertical_wall(self, x: int, y_start: int, y_end: int) -> None:
        self.fill_rect(Position(x, y_start), Position(x, y_end), "WALL")

    def outer_walls(self) -> None:
        self.horizontal_wall(0, 0, self.width - 1)
        self.horizontal_wall(self.height - 1, 0, self.width - 1)
        self.vertical_wall(0, 0, self.height - 1)
        self.vertical_wall(self.width - 1, 0, self.height - 1)

    def is_walkable(self, position: Position) -> bool:
        return self.cell(position) in WALKABLE_CELLS

    def neighbours(self, position: Position) -> list[Position]:
        """Walkable 4-neighbours in a fixed E, W, S, N order."""
        candidates = (
            position.offset(1, 0),
            position.offset(-1, 0),
            position.offset(0, 1),
            position.offset(0, -1),
        )
        return [p for p in candidates if self.is_walkable(p)]

    def add_zone(self, zone: Zone) -> None:
        """Register a zone; zones must stay inside the grid and must not overlap."""
        if not (self.in_bounds(zone.top_left) and self.in_bounds(zone.bottom_right)):
            raise ConfigurationError(f"zone {zone.zone_id} lies outside the {self.width}x{self.height} grid")
        if zone.zone_id in self._zones:
            raise ConfigurationError(f"duplicate zone id: {zone.zone_id}")
        for existing in self._zones.values():
            if existing.overlaps(zone):
                raise ConfigurationError(f"zone {zone.zone_id} overlaps {existing.zone_id}")
        self._zones[zone.zone_id] = zone
        for position in zone.cells():
            self._zone_index[position] = zone.zone_id

    def zone(self, zone_id: str) -> Zone | None:
        return self._zones.get(zone_id)

    def zones(self) -> list[Zone]:
        return [self._zones[key] for key in sorted(self._zones)]

    def zone_id_at(self, position: Position) -> str | None:
        return self._zone_index.get(position)

    def walkable_cells(self, zone: Zone) -> list[Position]:
        return [p for p in zone.cells() if self.is_walkable(p)]

    def to_ascii(self) -> str:
        return "\n".join("".join(CELL_GLYPHS[cell] for cell in row) for row in self._cells)
