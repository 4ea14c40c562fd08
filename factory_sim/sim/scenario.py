from __future__ import annotations

"""
File: factory_sim/sim/scenario.py
Purpose: Scenario definitions, timeline events, and document parsing.
Key responsibilities:
- Immutable Scenario/TimelineEvent values ordered by offset.
- Pydantic validation of scenario documents (mappings or YAML).
- Built-in presets (daily operation, fire, fall, gas leak, load test).
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal, Mapping, Optional, get_args

from pydantic import BaseModel, ConfigDict, Field, ValidationError
import yaml

from factory_sim.sim.errors import ConfigurationError


TimelineEventType = Literal[
    "FIRE_DETECTED",
    "GAS_DETECTED",
    "EVACUATION_ORDER",
    "EQUIPMENT_SHUTDOWN",
    "CALL_EMERGENCY_SERVICES",
    "FALL_DETECTED",
    "HEALTH_EMERGENCY",
    "CLEAR_EMERGENCY",
]
TIMELINE_EVENT_TYPES: tuple[str, ...] = get_args(TimelineEventType)
DEFAULT_ROBOT_COUNT = 100
DEFAULT_DURATION_S = 3600.0


@dataclass(frozen=True)
class TimelineEvent:
    """Scripted incident applied once when elapsed time reaches `offset_s`."""
    offset_s: float
    event_type: TimelineEventType
    target_zone: str | None = None
    description: str = ""
    params: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Scenario:
    """Complete run definition: fleet size, duration, timeline and config."""
    name: str
    robot_count: int = DEFAULT_ROBOT_COUNT
    duration_s: float = DEFAULT_DURATION_S
    events: tuple[TimelineEvent, ...] = ()
    config: dict[str, Any] = field(default_factory=dict)
    description: str = ""
    scenario_id: str | None = None

    def __post_init__(self) -> None:
        if self.robot_count < 0:
            raise ConfigurationError(f"invalid robot count: {self.robot_count}")
        if self.duration_s <= 0:
            raise ConfigurationError(f"invalid duration: {self.duration_s}")
        for event in self.events:
            if event.offset_s < 0:
                raise ConfigurationError(f"negative offset for {event.event_type}")
            if event.event_type not in TIMELINE_EVENT_TYPES:
                raise ConfigurationError(f"unknown timeline event type: {event.event_type}")
        # Stable sort keeps authoring order among events sharing an offset.
        object.__setattr__(self, "events", tuple(sorted(self.events, key=lambda e: e.offset_s)))


class TimelineEventDocument(BaseModel):
    """Timeline entry as written in a scenario document."""
    offset_seconds: float = Field(default=0.0, ge=0)
    type: TimelineEventType
    target_zone: Optional[str] = None
    description: str = ""
    params: dict[str, Any] = Field(default_factory=dict)


class ScenarioConfig(BaseModel):
    """Recognized engine overrides; unknown keys are kept as free-form config."""
    model_config = ConfigDict(extra="allow")

    seed: Optional[int] = None
    emergency_probability: Optional[float] = Field(default=None, ge=0, le=1)
    health_issue_probability: Optional[float] = Field(default=None, ge=0, le=1)
    work_move_probability: Optional[float] = Field(default=None, ge=0, le=1)
    location_update_interval: Optional[int] = Field(default=None, ge=1)
    heartbeat_interval: Optional[int] = Field(default=None, ge=1)
    tick_seconds: Optional[float] = Field(default=None, gt=0)
    spawn_zones: Optional[list[str]] = None
    start_time: Optional[str] = Field(default=None, pattern=r"^\d{2}:\d{2}(:\d{2})?$")


class ScenarioDocument(BaseModel):
    """Top-level scenario document."""
    id: Optional[str] = None
    name: str
    description: str = ""
    robot_count: int = Field(default=DEFAULT_ROBOT_COUNT, ge=0)
    duration_seconds: Optional[float] = Field(default=None, gt=0)
    duration_minutes: Optional[float] = Field(default=None, gt=0)
    events: list[TimelineEventDocument] = Field(default_factory=list)
    config: ScenarioConfig = Field(default_factory=ScenarioConfig)

    def to_scenario(self) -> Scenario:
        if self.duration_seconds is not None:
            duration_s = self.duration_seconds
        elif self.duration_minutes is not None:
            duration_s = self.duration_minutes * 60.0
        else:
            duration_s = DEFAULT_DURATION_S
        return Scenario(
            name=self.name,
            robot_count=self.robot_count,
            duration_s=duration_s,
            events=tuple(
                TimelineEvent(
                    offset_s=event.offset_seconds,
                    event_type=event.type,
                    target_zone=event.target_zone,
                    description=event.description,
                    params=dict(event.params),
                )
                for event in self.events
            ),
            config=self.config.model_dump(exclude_none=True),
            description=self.description,
            scenario_id=self.id,
        )


def validate_config(config: Mapping[str, Any]) -> ScenarioConfig:
    try:
        return ScenarioConfig.model_validate(dict(config))
    except ValidationError as exc:
        raise ConfigurationError(f"invalid scenario config: {exc}") from exc


def scenario_from_document(data: Any) -> Scenario:
    """Validate a parsed document and build a Scenario."""
    if not isinstance(data, Mapping):
        raise ConfigurationError("scenario document must be a mapping")
    try:
        document = ScenarioDocument.model_validate(dict(data))
    except ValidationError as exc:
        raise ConfigurationError(f"invalid scenario document: {exc}") from exc
    return document.to_scenario()


def parse_scenario_yaml(text: str) -> Scenario:
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"unparseable scenario YAML: {exc}") from exc
    return scenario_from_document(data)


def load_scenario_file(path: str | Path) -> Scenario:
    try:
        text = Path(path).read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigurationError(f"cannot read scenario file {path}: {exc}") from exc
    return parse_scenario_yaml(text)


def daily_operation(robot_count: int = DEFAULT_ROBOT_COUNT) -> Scenario:
    return Scenario(
        name="daily_operation",
        description="Regular factory shift",
        robot_count=robot_count,
        duration_s=8 * 3600.0,
        config={"emergency_probability": 0.0001, "health_issue_probability": 0.0005},
    )


def fire_emergency(robot_count: int = DEFAULT_ROBOT_COUNT) -> Scenario:
    return Scenario(
        name="fire_emergency",
        description="Fire in ZONE-C followed by a full evacuation",
        robot_count=robot_count,
        duration_s=30 * 60.0,
        events=(
            TimelineEvent(0.0, "FIRE_DETECTED", "ZONE-C", "Fire detected in ZONE-C"),
            TimelineEvent(60.0, "EVACUATION_ORDER", "ALL", "Evacuate all zones"),
            TimelineEvent(300.0, "CALL_EMERGENCY_SERVICES", None, "Automatic call to emergency services"),
        ),
        config={"emergency_zone": "ZONE-C", "emergency_type": "FIRE"},
    )


def worker_fall(robot_count: int = DEFAULT_ROBOT_COUNT) -> Scenario:
    return Scenario(
        name="worker_fall",
        description="A single worker falls",
        robot_count=robot_count,
        duration_s=10 * 60.0,
        events=(TimelineEvent(0.0, "FALL_DETECTED", None, "Worker fall detected"),),
        config={"emergency_type": "FALL"},
    )


def gas_leak(robot_count: int = DEFAULT_ROBOT_COUNT) -> Scenario:
    return Scenario(
        name="gas_leak",
        description="Toxic gas leak in ZONE-C",
        robot_count=robot_count,
        duration_s=20 * 60.0,
        events=(
            TimelineEvent(0.0, "GAS_DETECTED", "ZONE-C", "Gas concentration rising in ZONE-C"),
            TimelineEvent(1.0, "EQUIPMENT_SHUTDOWN", "ZONE-C", "Immediate equipment shutdown"),
            TimelineEvent(60.0, "EVACUATION_ORDER", "ZONE-C", "Evacuate ZONE-C"),
        ),
        config={"emergency_zone": "ZONE-C", "emergency_type": "GAS_LEAK"},
    )


def load_test(robot_count: int = 1000) -> Scenario:
    return Scenario(
        name="load_test",
        description=f"{robot_count} concurrent robots",
        robot_count=robot_count,
        duration_s=3600.0,
        config={"location_update_interval": 1, "heartbeat_interval": 10},
    )


BUILTIN_SCENARIOS = {
    "daily_operation": daily_operation,
    "fire_emergency": fire_emergency,
    "worker_fall": worker_fall,
    "gas_leak": gas_leak,
    "load_test": load_test,
}


def builtin_scenario(name: str, robot_count: int | None = None) -> Scenario:
    factory = BUILTIN_SCENARIOS.get(name)
    if factory is None:
        raise ConfigurationError(f"unknown scenario: {name}")
    return factory() if robot_count is None else factory(robot_count)
