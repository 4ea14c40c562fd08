from __future__ import annotations

"""
File: factory_sim/control.py
Purpose: Build the simulation stack and expose one control/query facade.
Key responsibilities:
- Wire world, behavior, sensors, events and scenario engine from Settings.
- Serve queries (status, robots, zones, scenarios, map) for the API.
- Execute control commands arriving over HTTP or RabbitMQ.
"""

import logging
from typing import Any, Optional

from factory_sim.schemas import CommandResult, ControlCommand, RobotView, ScenarioSummary, StatusView, ZoneView
from factory_sim.settings import Settings, robots_for_scale, settings
from factory_sim.sim.behavior import RobotBehaviorEngine
from factory_sim.sim.engine import ScenarioEngine, start_datetime
from factory_sim.sim.entities import RobotState
from factory_sim.sim.errors import ConfigurationError
from factory_sim.sim.events import EventGenerator
from factory_sim.sim.grid import Zone
from factory_sim.sim.scenario import BUILTIN_SCENARIOS, Scenario, builtin_scenario, scenario_from_document
from factory_sim.sim.sensors import SensorDataGenerator
from factory_sim.sim.world import DEFAULT_START, VirtualWorld, build_standard_factory

logger = logging.getLogger("factory-sim.control")


def build_engine(cfg: Settings = settings) -> ScenarioEngine:
    """Assemble a ready-to-load engine from configuration."""
    start = start_datetime(DEFAULT_START, cfg.sim_start_time)
    world = VirtualWorld(build_standard_factory(cfg.world_width, cfg.world_height), start)
    behavior = RobotBehaviorEngine(
        world,
        seed=cfg.sim_seed,
        emergency_probability=cfg.emergency_probability,
        health_issue_probability=cfg.health_issue_probability,
        work_move_probability=cfg.work_move_probability,
        tick_seconds=cfg.sim_tick_seconds,
    )
    sensors = SensorDataGenerator()
    sensors.reseed(cfg.sim_seed)
    events = EventGenerator(
        world,
        sensors,
        location_update_interval=cfg.location_update_interval,
        heartbeat_interval=cfg.heartbeat_interval,
        queue_size=cfg.event_queue_size,
    )
    return ScenarioEngine(
        world,
        behavior,
        events,
        tick_seconds=cfg.sim_tick_seconds,
        workers=cfg.sim_workers,
        start_time=start,
    )


def zone_view(engine: ScenarioEngine, zone: Zone) -> ZoneView:
    world = engine.world
    center = zone.center()
    return ZoneView(
        zone_id=zone.zone_id,
        name=zone.name,
        zone_type=zone.zone_type,
        danger_level=zone.danger_level,
        top_left_x=zone.top_left.x,
        top_left_y=zone.top_left.y,
        bottom_right_x=zone.bottom_right.x,
        bottom_right_y=zone.bottom_right.y,
        center_x=center.x,
        center_y=center.y,
        capacity=zone.capacity,
        occupancy=world.occupancy_of(zone.zone_id),
        hazardous=world.is_zone_hazardous(zone.zone_id),
        equipment_shutdown=world.is_equipment_shutdown(zone.zone_id),
    )


class SimulationController:
    """Facade shared by the HTTP API and the control queue consumer."""
    def __init__(self, engine: ScenarioEngine | None = None) -> None:
        self.engine = engine or build_engine()

    # queries

    def status(self) -> StatusView:
        return StatusView(**self.engine.status())

    def robots(
        self,
        zone_id: Optional[str] = None,
        state: Optional[RobotState] = None,
        limit: Optional[int] = None,
    ) -> list[RobotView]:
        world = self.engine.world
        if zone_id is not None:
            if world.zone(zone_id) is None:
                raise KeyError(zone_id)
            selected = world.robots_in_zone(zone_id)
        else:
            selected = world.robots()
        if state is not None:
            selected = [robot for robot in selected if robot.state == state]
        if limit is not None:
            selected = selected[:limit]
        return [RobotView.from_worker(robot) for robot in selected]

    def robot(self, robot_id: str) -> RobotView:
        robot = self.engine.world.get_robot(robot_id)
        if robot is None:
            raise KeyError(robot_id)
        return RobotView.from_worker(robot)

    def emergency_robots(self) -> list[RobotView]:
        return [RobotView.from_worker(robot) for robot in self.engine.world.robots() if robot.is_in_danger]

    def zones(self) -> list[ZoneView]:
        return [zone_view(self.engine, zone) for zone in self.engine.world.zones()]

    def zone(self, zone_id: str) -> ZoneView:
        zone = self.engine.world.zone(zone_id)
        if zone is None:
            raise KeyError(zone_id)
        return zone_view(self.engine, zone)

    def scenarios(self) -> list[ScenarioSummary]:
        summaries = []
        for name in sorted(BUILTIN_SCENARIOS):
            scenario = builtin_scenario(name)
            summaries.append(
                ScenarioSummary(
                    name=scenario.name,
                    description=scenario.description,
                    robot_count=scenario.robot_count,
                    duration_s=scenario.duration_s,
                    timeline_events=len(scenario.events),
                )
            )
        return summaries

    def map_ascii(self) -> str:
        return self.engine.world.grid.to_ascii()

    def drain_events(self, limit: Optional[int] = None) -> list[dict[str, Any]]:
        """Pop buffered events, oldest first, for polling clients."""
        return [event.to_dict() for event in self.engine.events.drain(limit)]

    # controls

    def load_builtin(self, name: str, scale: Optional[str] = None, robot_count: Optional[int] = None) -> Scenario:
        if robot_count is None and scale is not None:
            try:
                robot_count = robots_for_scale(scale)
            except ValueError as exc:
                raise ConfigurationError(str(exc)) from exc
        scenario = builtin_scenario(name, robot_count)
        self.engine.load_scenario(scenario)
        return scenario

    def load_document(self, data: dict[str, Any]) -> Scenario:
        scenario = scenario_from_document(data)
        self.engine.load_scenario(scenario)
        return scenario

    def execute(self, command: ControlCommand) -> CommandResult:
        """Run one control command against the engine."""
        engine = self.engine
        affected = 0
        detail = ""
        if command.command == "load":
            if command.document is not None:
                scenario = self.load_document(command.document)
            else:
                scenario = self.load_builtin(
                    command.scenario or settings.sim_scenario,
                    scale=command.scale,
                    robot_count=command.robot_count,
                )
            affected = scenario.robot_count
            detail = scenario.name
        elif command.command == "start":
            engine.start()
        elif command.command == "stop":
            engine.stop()
        elif command.command == "pause":
            engine.pause()
        elif command.command == "resume":
            engine.resume()
        elif command.command == "emergency":
            affected = engine.trigger_emergency(command.zone_id)
            detail = command.zone_id or "ALL"
        elif command.command == "clear_emergency":
            affected = engine.clear_emergency()
        elif command.command == "evacuate":
            affected = engine.order_evacuation(command.zone_id)
            detail = command.zone_id or "ALL"
        logger.info("command=%s state=%s affected=%s", command.command, engine.state, affected)
        return CommandResult(command=command.command, state=engine.state, affected=affected, detail=detail)

    def close(self) -> None:
        self.engine.close()


