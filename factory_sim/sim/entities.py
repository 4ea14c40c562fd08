from __future__ import annotations

"""
File: factory_sim/sim/entities.py
Purpose: Immutable value types describing robot workers.
Key responsibilities:
- Grid positions with distance helpers and map projection.
- Health and battery models with derived levels.
- Daily schedules and RobotWorker copy-with transitions.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, time
import math
import random
from typing import Literal, get_args


RobotState = Literal[
    "OFFLINE",
    "IDLE",
    "MOVING",
    "WORKING",
    "RESTING",
    "EATING",
    "EVACUATING",
    "EMERGENCY",
    "CHARGING",
]
HealthLevel = Literal["NORMAL", "WARNING", "DANGER", "CRITICAL"]
ZoneType = Literal[
    "WORK_AREA",
    "REST_AREA",
    "CAFETERIA",
    "ASSEMBLY_POINT",
    "DANGER_ZONE",
    "CORRIDOR",
    "MEDICAL",
    "ENTRANCE",
    "CHARGING_STATION",
]
DrainRate = Literal["IDLE", "WORKING", "CHARGING"]

ROBOT_STATES: tuple[str, ...] = get_args(RobotState)
ZONE_TYPES: tuple[str, ...] = get_args(ZoneType)
HEALTH_SEVERITY: dict[str, int] = {"NORMAL": 0, "WARNING": 1, "DANGER": 2, "CRITICAL": 3}
DRAIN_RATE_PER_HOUR: dict[str, float] = {"IDLE": 1.0, "WORKING": 2.0, "CHARGING": -20.0}

# Map origin used by dashboards that plot the floor on a geographic map.
LAT_ORIGIN = 37.5665
LON_ORIGIN = 126.9780
LAT_PER_CELL = 0.00009
LON_PER_CELL = 0.00011


@dataclass(frozen=True, order=True)
class Position:
    """Integer grid cell."""
    x: int
    y: int

    def manhattan(self, other: Position) -> int:
        return abs(self.x - other.x) + abs(self.y - other.y)

    def euclidean(self, other: Position) -> float:
        return math.hypot(self.x - other.x, self.y - other.y)

    def is_adjacent_to(self, other: Position) -> bool:
        """True for 4-neighbours only."""
        return self.manhattan(other) == 1

    def offset(self, dx: int, dy: int) -> Position:
        return Position(self.x + dx, self.y + dy)

    def latitude(self) -> float:
        return LAT_ORIGIN + self.y * LAT_PER_CELL

    def longitude(self) -> float:
        return LON_ORIGIN + self.x * LON_PER_CELL


@dataclass(frozen=True)
class HealthStatus:
    """Vital signs of a worker plus the level derived from them."""
    heart_rate: int = 75
    temperature: float = 36.6
    oxygen_level: int = 98
    stress_level: int = 10
    fallen: bool = False

    @classmethod
    def normal(cls, rng: random.Random) -> HealthStatus:
        """Resting profile."""
        return cls(
            heart_rate=70 + rng.randrange(20),
            temperature=round(36.5 + rng.random() * 0.5, 2),
            oxygen_level=96 + rng.randrange(4),
            stress_level=rng.randrange(30),
        )

    @classmethod
    def working(cls, rng: random.Random) -> HealthStatus:
        """Slightly elevated profile under physical load."""
        return cls(
            heart_rate=80 + rng.randrange(30),
            temperature=round(36.8 + rng.random() * 0.7, 2),
            oxygen_level=95 + rng.randrange(4),
            stress_level=20 + rng.randrange(40),
        )

    @classmethod
    def danger(cls, rng: random.Random) -> HealthStatus:
        """One of three incident profiles: cardiac, fever, or fall."""
        kind = rng.randrange(3)
        if kind == 0:
            return cls(
                heart_rate=130 + rng.randrange(50),
                temperature=round(37.0 + rng.random(), 2),
                oxygen_level=90 + rng.randrange(5),
                stress_level=80 + rng.randrange(20),
            )
        if kind == 1:
            return cls(
                heart_rate=90 + rng.randrange(30),
                temperature=round(38.5 + rng.random() * 1.5, 2),
                oxygen_level=92 + rng.randrange(5),
                stress_level=70 + rng.randrange(20),
            )
        return cls.fall(rng)

    @classmethod
    def fall(cls, rng: random.Random) -> HealthStatus:
        return cls(
            heart_rate=100 + rng.randrange(40),
            temperature=round(36.5 + rng.random(), 2),
            oxygen_level=93 + rng.randrange(5),
            stress_level=90 + rng.randrange(10),
            fallen=True,
        )

    @property
    def is_dangerous(self) -> bool:
        return (
            self.heart_rate > 120
            or self.heart_rate < 50
            or self.temperature > 38.0
            or self.temperature < 35.5
            or self.oxygen_level < 92
            or self.stress_level > 80
            or self.fallen
        )

    @property
    def level(self) -> HealthLevel:
        if self.fallen:
            return "CRITICAL"
        if self.is_dangerous:
            return "DANGER"
        if self.heart_rate > 100 or self.stress_level > 60:
            return "WARNING"
        return "NORMAL"

    @property
    def severity(self) -> int:
        return HEALTH_SEVERITY[self.level]

    @property
    def is_emergency(self) -> bool:
        return self.level in ("DANGER", "CRITICAL")


@dataclass(frozen=True)
class BatteryStatus:
    """Battery percentage and the rate class it is currently drained at."""
    level: float = 100.0
    drain_rate: DrainRate = "IDLE"

    @classmethod
    def randomized(cls, rng: random.Random) -> BatteryStatus:
        return cls(level=float(50 + rng.randrange(51)))

    def drain(self, rate: DrainRate, seconds: float) -> BatteryStatus:
        """Apply `seconds` of consumption at the given rate class."""
        delta = DRAIN_RATE_PER_HOUR[rate] * seconds / 3600.0
        level = min(100.0, max(0.0, self.level - delta))
        return BatteryStatus(level=round(level, 6), drain_rate=rate)

    @property
    def is_low(self) -> bool:
        return self.level <= 20.0

    @property
    def is_critical(self) -> bool:
        return self.level <= 10.0

    @property
    def is_charging(self) -> bool:
        return self.drain_rate == "CHARGING"


@dataclass(frozen=True)
class ScheduleEntry:
    """Half-open [start, end) time-of-day slot."""
    start: time
    end: time
    state: RobotState
    zone_type: ZoneType | None = None

    def covers(self, moment: time) -> bool:
        return self.start <= moment < self.end


@dataclass(frozen=True)
class RobotSchedule:
    """Ordered daily plan of intended states."""
    entries: tuple[ScheduleEntry, ...] = ()

    @classmethod
    def default(cls) -> RobotSchedule:
        """Standard shift 08:00-17:00 with breaks and lunch."""
        return cls(
            entries=(
                ScheduleEntry(time(8, 0), time(10, 0), "WORKING", "WORK_AREA"),
                ScheduleEntry(time(10, 0), time(10, 15), "RESTING", "REST_AREA"),
                ScheduleEntry(time(10, 15), time(12, 0), "WORKING", "WORK_AREA"),
                ScheduleEntry(time(12, 0), time(13, 0), "EATING", "CAFETERIA"),
                ScheduleEntry(time(13, 0), time(15, 0), "WORKING", "WORK_AREA"),
                ScheduleEntry(time(15, 0), time(15, 15), "RESTING", "REST_AREA"),
                ScheduleEntry(time(15, 15), time(17, 0), "WORKING", "WORK_AREA"),
            )
        )

    def entry_at(self, moment: time) -> ScheduleEntry | None:
        for entry in self.entries:
            if entry.covers(moment):
                return entry
        return None

    def state_at(self, moment: time) -> RobotState | None:
        entry = self.entry_at(moment)
        return entry.state if entry is not None else None


@dataclass(frozen=True)
class RobotWorker:
    """Immutable per-tick snapshot of one simulated worker."""
    robot_id: str
    name: str
    position: Position
    state: RobotState = "OFFLINE"
    health: HealthStatus = field(default_factory=HealthStatus)
    battery: BatteryStatus = field(default_factory=BatteryStatus)
    zone_id: str | None = None
    target: Position | None = None
    schedule: RobotSchedule = field(default_factory=RobotSchedule.default)
    assigned_zone_id: str | None = None
    updated_at: datetime | None = None

    def with_state(self, state: RobotState, at: datetime | None = None) -> RobotWorker:
        """Change state; the travel target only survives into travelling states."""
        target = self.target if state in ("MOVING", "EVACUATING") else None
        return replace(self, state=state, target=target, updated_at=at or self.updated_at)

    def moved_to(self, position: Position, zone_id: str | None, at: datetime | None = None) -> RobotWorker:
        return replace(self, position=position, zone_id=zone_id, updated_at=at or self.updated_at)

    def heading_to(self, target: Position, at: datetime | None = None) -> RobotWorker:
        """Start moving toward `target`."""
        return replace(self, state="MOVING", target=target, updated_at=at or self.updated_at)

    def evacuating_to(self, target: Position | None, at: datetime | None = None) -> RobotWorker:
        return replace(self, state="EVACUATING", target=target, updated_at=at or self.updated_at)

    def in_emergency(self, health: HealthStatus | None = None, at: datetime | None = None) -> RobotWorker:
        return replace(
            self,
            state="EMERGENCY",
            target=None,
            health=health or self.health,
            updated_at=at or self.updated_at,
        )

    def with_health(self, health: HealthStatus, at: datetime | None = None) -> RobotWorker:
        return replace(self, health=health, updated_at=at or self.updated_at)

    def with_battery(self, battery: BatteryStatus, at: datetime | None = None) -> RobotWorker:
        return replace(self, battery=battery, updated_at=at or self.updated_at)

    def scheduled_state(self, moment: time) -> RobotState | None:
        return self.schedule.state_at(moment)

    @property
    def has_reached_target(self) -> bool:
        return self.target is None or self.position == self.target

    @property
    def needs_to_move(self) -> bool:
        return self.target is not None and self.position != self.target

    @property
    def is_online(self) -> bool:
        return self.state != "OFFLINE"

    @property
    def is_in_danger(self) -> bool:
        """Emergency-classified condition used by telemetry and queries."""
        return self.state == "EMERGENCY" or self.health.is_emergency
