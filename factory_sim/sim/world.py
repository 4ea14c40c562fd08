from __future__ import annotations

"""
File: factory_sim/sim/world.py
Purpose: Virtual factory world shared by the behavior engine and scenario engine.
Key responsibilities:
- Authoritative robot registry with lock-guarded zone occupancy.
- Spatial queries (zone lookup, nearest zone, path search).
- Simulation clock and emergency/hazard flags.
- Standard factory layout and deterministic robot spawning.
"""

from dataclasses import replace
from datetime import datetime, timedelta
import logging
import random
import threading

from factory_sim.sim.entities import BatteryStatus, HealthStatus, Position, RobotSchedule, RobotWorker, ZoneType
from factory_sim.sim.errors import ConfigurationError
from factory_sim.sim.grid import GridMap, Zone
from factory_sim.sim.pathfinder import distance_field, find_path

logger = logging.getLogger("factory-sim.world")

DEFAULT_START = datetime(2024, 1, 1, 8, 0, 0)
ALL_ZONES = "ALL"


def build_standard_factory(width: int = 100, height: int = 50) -> GridMap:
    """Return the default floor: outer walls, four work areas, a corridor and five service zones."""
    if width < 100 or height < 50:
        raise ConfigurationError(f"standard factory needs at least 100x50 cells, got {width}x{height}")
    grid = GridMap(width, height)
    grid.outer_walls()
    layout = (
        ("ZONE-A", "Work Area 1", "WORK_AREA", "MEDIUM", 50, (5, 5), (25, 20), False),
        ("ZONE-B", "Work Area 2", "WORK_AREA", "MEDIUM", 50, (30, 5), (50, 20), False),
        ("ZONE-C", "Danger Zone", "DANGER_ZONE", "HIGH", 10, (55, 5), (70, 20), True),
        ("ZONE-D", "Warehouse", "WORK_AREA", "LOW", 30, (75, 5), (94, 20), False),
        ("ZONE-CORRIDOR", "Main Corridor", "CORRIDOR", "LOW", 100, (5, 22), (94, 28), False),
        ("ZONE-E", "Rest Area", "REST_AREA", "LOW", 20, (5, 30), (25, 44), False),
        ("ZONE-F", "Cafeteria", "CAFETERIA", "LOW", 50, (30, 30), (50, 44), False),
        ("ZONE-G", "Medical Room", "MEDICAL", "LOW", 5, (55, 30), (70, 44), False),
        ("ZONE-H", "Assembly Point", "ASSEMBLY_POINT", "LOW", 200, (75, 30), (94, 44), False),
    )
    for zone_id, name, zone_type, danger, capacity, top_left, bottom_right, hazardous in layout:
        zone = Zone(
            zone_id=zone_id,
            name=name,
            zone_type=zone_type,
            top_left=Position(*top_left),
            bottom_right=Position(*bottom_right),
            capacity=capacity,
            hazardous=hazardous,
            danger_level=danger,
        )
        grid.add_zone(zone)
        if hazardous:
            grid.fill_rect(zone.top_left, zone.bottom_right, "DANGER")
    return grid


class VirtualWorld:
    """Registry, clock, and spatial index for one simulation run."""
    def __init__(self, grid: GridMap, start_time: datetime = DEFAULT_START) -> None:
        self.grid = grid
        self._lock = threading.RLock()
        self._robots: dict[str, RobotWorker] = {}
        self._occupants: dict[str, set[str]] = {zone.zone_id: set() for zone in grid.zones()}
        self._walkable: dict[str, list[Position]] = {
            zone.zone_id: grid.walkable_cells(zone) for zone in grid.zones()
        }
        self._clock = start_time
        self._emergency_active = False
        self._emergency_zones: set[str] = set()
        self._shutdown_zones: set[str] = set()
        self._fields: dict[Position, dict[Position, int]] = {}

    # clock

    @property
    def clock(self) -> datetime:
        return self._clock

    def set_clock(self, moment: datetime) -> None:
        self._clock = moment

    def advance_clock(self, seconds: float) -> datetime:
        self._clock = self._clock + timedelta(seconds=seconds)
        return self._clock

    def reset(self, start_time: datetime = DEFAULT_START) -> None:
        """Drop every robot and flag; used when a new scenario is loaded."""
        with self._lock:
            self._robots.clear()
            for members in self._occupants.values():
                members.clear()
            self._emergency_active = False
            self._emergency_zones.clear()
            self._shutdown_zones.clear()
            self._clock = start_time

    # registry

    def add_robot(self, robot: RobotWorker) -> RobotWorker:
        """Register a robot, deriving its zone from its position."""
        with self._lock:
            if robot.robot_id in self._robots:
                raise ConfigurationError(f"duplicate robot id: {robot.robot_id}")
            zone_id = self.grid.zone_id_at(robot.position)
            robot = replace(robot, zone_id=zone_id)
            self._robots[robot.robot_id] = robot
            if zone_id is not None:
                self._occupants[zone_id].add(robot.robot_id)
            return robot

    def remove_robot(self, robot_id: str) -> RobotWorker | None:
        with self._lock:
            robot = self._robots.pop(robot_id, None)
            if robot is not None and robot.zone_id is not None:
                self._occupants[robot.zone_id].discard(robot_id)
            return robot

    def get_robot(self, robot_id: str) -> RobotWorker | None:
        return self._robots.get(robot_id)

    def robots(self) -> list[RobotWorker]:
        """Registry snapshot ordered by robot id."""
        with self._lock:
            return [self._robots[key] for key in sorted(self._robots)]

    def update_robot_position(self, robot_id: str, position: Position) -> str | None:
        """Move a registered robot and return the zone it now occupies."""
        with self._lock:
            current = self._robots[robot_id]
            zone_id = self.grid.zone_id_at(position)
            self._move_occupant(robot_id, current.zone_id, zone_id)
            self._robots[robot_id] = current.moved_to(position, zone_id, at=self._clock)
            return zone_id

    def put_robot(self, robot: RobotWorker) -> RobotWorker:
        """Commit a robot snapshot as the authoritative registry entry."""
        with self._lock:
            current = self._robots.get(robot.robot_id)
            if current is None:
                raise KeyError(robot.robot_id)
            zone_id = self.grid.zone_id_at(robot.position)
            if robot.zone_id != zone_id:
                robot = replace(robot, zone_id=zone_id)
            self._move_occupant(robot.robot_id, current.zone_id, zone_id)
            self._robots[robot.robot_id] = robot
            return robot

    def _move_occupant(self, robot_id: str, old_zone: str | None, new_zone: str | None) -> None:
        if old_zone == new_zone:
            return
        if old_zone is not None:
            self._occupants[old_zone].discard(robot_id)
        if new_zone is not None:
            self._occupants[new_zone].add(robot_id)

    def spawn_robots(
        self,
        count: int,
        rng: random.Random,
        spawn_zones: list[str] | None = None,
        schedule: RobotSchedule | None = None,
    ) -> list[RobotWorker]:
        """Create `count` OFFLINE robots spread round-robin over the spawn zones."""
        if count < 0:
            raise ValueError(f"invalid robot count: {count}")
        if spawn_zones:
            unknown = [zone_id for zone_id in spawn_zones if self.grid.zone(zone_id) is None]
            if unknown:
                raise ConfigurationError(f"unknown spawn zones: {', '.join(unknown)}")
            zone_ids = list(spawn_zones)
        else:
            zone_ids = [zone.zone_id for zone in self.zones_by_type("WORK_AREA")]
        zone_ids = [zone_id for zone_id in zone_ids if self._walkable[zone_id]]
        if count and not zone_ids:
            raise ConfigurationError("no walkable spawn zone available")

        start = len(self._robots)
        spawned: list[RobotWorker] = []
        for idx in range(start + 1, start + count + 1):
            zone_id = zone_ids[(idx - 1) % len(zone_ids)]
            robot = RobotWorker(
                robot_id=f"ROBOT-{idx:04d}",
                name=f"Worker-{idx:04d}",
                position=rng.choice(self._walkable[zone_id]),
                health=HealthStatus.normal(rng),
                battery=BatteryStatus.randomized(rng),
                schedule=schedule or RobotSchedule.default(),
                assigned_zone_id=zone_id,
                updated_at=self._clock,
            )
            spawned.append(self.add_robot(robot))
        logger.info("spawned robots=%s zones=%s", len(spawned), ",".join(zone_ids))
        return spawned

    # spatial queries

    def zones(self) -> list[Zone]:
        return self.grid.zones()

    def zone(self, zone_id: str) -> Zone | None:
        return self.grid.zone(zone_id)

    def zones_by_type(self, zone_type: ZoneType) -> list[Zone]:
        return [zone for zone in self.grid.zones() if zone.zone_type == zone_type]

    def find_zone_at_position(self, position: Position) -> str | None:
        return self.grid.zone_id_at(position)

    def find_nearest_zone(self, position: Position, zone_type: ZoneType) -> Zone | None:
        """Closest zone of a type by Manhattan distance to its centre; ties go to the lower id."""
        candidates = self.zones_by_type(zone_type)
        if not candidates:
            return None
        return min(candidates, key=lambda zone: (position.manhattan(zone.center()), zone.zone_id))

    def find_path(self, start: Position, goal: Position) -> list[Position]:
        return find_path(self.grid, start, goal)

    def distance_field_to(self, goal: Position) -> dict[Position, int]:
        """Cached walking distances to `goal`; the grid never changes after construction."""
        field = self._fields.get(goal)
        if field is None:
            with self._lock:
                field = self._fields.get(goal)
                if field is None:
                    field = distance_field(self.grid, goal)
                    self._fields[goal] = field
        return field

    def random_walkable_position(self, zone: Zone, rng: random.Random) -> Position | None:
        cells = self._walkable.get(zone.zone_id) or []
        if not cells:
            return None
        return rng.choice(cells)

    def get_assembly_point(self) -> Zone | None:
        zones = self.zones_by_type("ASSEMBLY_POINT")
        return zones[0] if zones else None

    def require_assembly_point(self) -> Zone:
        zone = self.get_assembly_point()
        if zone is None:
            raise ConfigurationError("world has no ASSEMBLY_POINT zone")
        return zone

    # occupancy

    def robots_in_zone(self, zone_id: str) -> list[RobotWorker]:
        with self._lock:
            return [self._robots[key] for key in sorted(self._occupants.get(zone_id, ()))]

    def occupancy_of(self, zone_id: str) -> int:
        with self._lock:
            return len(self._occupants.get(zone_id, ()))

    def zone_occupancy(self) -> dict[str, int]:
        with self._lock:
            return {zone_id: len(members) for zone_id, members in sorted(self._occupants.items())}

    def robots_in_emergency(self) -> list[RobotWorker]:
        return [robot for robot in self.robots() if robot.is_in_danger]

    def evacuated_count(self) -> int:
        assembly = self.get_assembly_point()
        if assembly is None:
            return 0
        return self.occupancy_of(assembly.zone_id)

    # emergencies

    @property
    def emergency_active(self) -> bool:
        return self._emergency_active

    def emergency_zone_ids(self) -> list[str]:
        return sorted(self._emergency_zones)

    def trigger_emergency(self, zone_id: str | None = None) -> None:
        """Raise the world emergency flag and mark `zone_id` hazardous."""
        with self._lock:
            if zone_id not in (None, ALL_ZONES) and self.grid.zone(zone_id) is None:
                raise ConfigurationError(f"unknown zone: {zone_id}")
            self._emergency_active = True
            if zone_id not in (None, ALL_ZONES):
                self._emergency_zones.add(zone_id)
        logger.warning("emergency triggered zone=%s", zone_id or ALL_ZONES)

    def clear_emergency(self) -> None:
        with self._lock:
            was_active = self._emergency_active
            self._emergency_active = False
            self._emergency_zones.clear()
            self._shutdown_zones.clear()
        if was_active:
            logger.info("emergency cleared")

    def shutdown_equipment(self, zone_id: str) -> None:
        with self._lock:
            if self.grid.zone(zone_id) is None:
                raise ConfigurationError(f"unknown zone: {zone_id}")
            self._shutdown_zones.add(zone_id)
        logger.warning("equipment shutdown zone=%s", zone_id)

    def is_equipment_shutdown(self, zone_id: str) -> bool:
        return zone_id in self._shutdown_zones

    def is_zone_hazardous(self, zone_id: str | None) -> bool:
        if zone_id is None:
            return False
        zone = self.grid.zone(zone_id)
        return zone is not None and (zone.hazardous or zone_id in self._emergency_zones)

    def snapshot(self) -> dict:
        """Return a serializable summary of the world."""
        return {
            "clock": self._clock.isoformat(),
            "width": self.grid.width,
            "height": self.grid.height,
            "robot_count": len(self._robots),
            "emergency_active": self._emergency_active,
            "emergency_zones": self.emergency_zone_ids(),
            "shutdown_zones": sorted(self._shutdown_zones),
            "zone_occupancy": self.zone_occupancy(),
            "evacuated": self.evacuated_count(),
        }
