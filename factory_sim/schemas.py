from __future__ import annotations

"""
File: factory_sim/schemas.py
Purpose: Pydantic models for the query and control contracts.
Key responsibilities:
- Serialize robots, zones, scenarios and engine status.
- Validate control commands from HTTP and RabbitMQ.
Key entrypoints:
- RobotView, ZoneView, StatusView, ControlCommand, CommandResult
"""

from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field

from factory_sim.sim.entities import HealthLevel, RobotState, RobotWorker, ZoneType


EngineState = Literal["LOADED", "RUNNING", "PAUSED", "STOPPED"]
CommandName = Literal["load", "start", "stop", "pause", "resume", "emergency", "clear_emergency", "evacuate"]


class RobotView(BaseModel):
    """Robot snapshot exposed to dashboards."""
    robot_id: str
    name: str
    state: RobotState
    x: int
    y: int
    zone_id: Optional[str] = None
    assigned_zone_id: Optional[str] = None
    target_x: Optional[int] = None
    target_y: Optional[int] = None
    latitude: float
    longitude: float
    health_level: HealthLevel
    heart_rate: int
    temperature: float
    oxygen_level: int
    stress_level: int
    fallen: bool
    battery_level: float
    battery_low: bool
    updated_at: Optional[datetime] = None

    @classmethod
    def from_worker(cls, robot: RobotWorker) -> RobotView:
        return cls(
            robot_id=robot.robot_id,
            name=robot.name,
            state=robot.state,
            x=robot.position.x,
            y=robot.position.y,
            zone_id=robot.zone_id,
            assigned_zone_id=robot.assigned_zone_id,
            target_x=robot.target.x if robot.target else None,
            target_y=robot.target.y if robot.target else None,
            latitude=round(robot.position.latitude(), 6),
            longitude=round(robot.position.longitude(), 6),
            health_level=robot.health.level,
            heart_rate=robot.health.heart_rate,
            temperature=robot.health.temperature,
            oxygen_level=robot.health.oxygen_level,
            stress_level=robot.health.stress_level,
            fallen=robot.health.fallen,
            battery_level=round(robot.battery.level, 2),
            battery_low=robot.battery.is_low,
            updated_at=robot.updated_at,
        )


class ZoneView(BaseModel):
    """Zone definition plus live occupancy and hazard flags."""
    zone_id: str
    name: str
    zone_type: ZoneType
    danger_level: str
    top_left_x: int
    top_left_y: int
    bottom_right_x: int
    bottom_right_y: int
    center_x: int
    center_y: int
    capacity: int
    occupancy: int
    hazardous: bool
    equipment_shutdown: bool


class ScenarioSummary(BaseModel):
    name: str
    description: str
    robot_count: int
    duration_s: float
    timeline_events: int


class StatusView(BaseModel):
    """Engine run state, world summary and metrics."""
    state: EngineState
    scenario: Optional[str] = None
    elapsed_s: float
    duration_s: Optional[float] = None
    tick_seconds: float
    seed: int
    timeline_applied: int
    timeline_total: int
    world: dict[str, Any]
    metrics: dict[str, Any]


class ControlCommand(BaseModel):
    """Control message accepted on the API and the sim.control.* routing keys."""
    command: CommandName
    scenario: Optional[str] = None
    scale: Optional[str] = None
    robot_count: Optional[int] = Field(default=None, ge=0)
    zone_id: Optional[str] = None
    document: Optional[dict[str, Any]] = None


class CommandResult(BaseModel):
    command: CommandName
    state: EngineState
    affected: int = 0
    detail: str = ""
