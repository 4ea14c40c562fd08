from __future__ import annotations

"""
File: factory_sim/sim/behavior.py
Purpose: Per-robot decision policy evaluated once per tick.
Key responsibilities:
- Ordered state-machine precedence (offline, emergency, evacuation, incidents, movement, schedule).
- Movement and evacuation along grid paths.
- Seeded incident injection, health refresh and battery drain.
- Evacuation orders and forced emergencies issued by scenarios or operators.
"""

from datetime import datetime
import logging
import random
import threading

from factory_sim.sim.entities import HealthStatus, Position, RobotState, RobotWorker, ZoneType
from factory_sim.sim.errors import ConfigurationError
from factory_sim.sim.pathfinder import descend
from factory_sim.sim.world import ALL_ZONES, VirtualWorld

logger = logging.getLogger("factory-sim.behavior")

STATE_ZONE_TYPES: dict[str, ZoneType] = {
    "WORKING": "WORK_AREA",
    "RESTING": "REST_AREA",
    "EATING": "CAFETERIA",
    "EVACUATING": "ASSEMBLY_POINT",
}
EVACUATION_STEP_CELLS = 2
WANDER_STEPS: tuple[tuple[int, int], ...] = ((1, 0), (-1, 0), (0, 1), (0, -1))


class RobotBehaviorEngine:
    """Stateless-per-robot policy; all randomness derives from (seed, robot, clock)."""
    def __init__(
        self,
        world: VirtualWorld,
        seed: int = 0,
        emergency_probability: float = 0.0001,
        health_issue_probability: float = 0.0005,
        work_move_probability: float = 0.1,
        tick_seconds: float = 1.0,
    ) -> None:
        self.world = world
        self.seed = seed
        self.emergency_probability = emergency_probability
        self.health_issue_probability = health_issue_probability
        self.work_move_probability = work_move_probability
        self.tick_seconds = tick_seconds
        self._anomaly_lock = threading.Lock()
        self.anomalies = 0

    def configure(
        self,
        seed: int | None = None,
        emergency_probability: float | None = None,
        health_issue_probability: float | None = None,
        work_move_probability: float | None = None,
        tick_seconds: float | None = None,
    ) -> None:
        """Override policy parameters; None leaves a value unchanged."""
        for name, value in (
            ("emergency_probability", emergency_probability),
            ("health_issue_probability", health_issue_probability),
            ("work_move_probability", work_move_probability),
        ):
            if value is not None and not 0.0 <= value <= 1.0:
                raise ConfigurationError(f"{name} must be within [0, 1], got {value}")
            if value is not None:
                setattr(self, name, value)
        if tick_seconds is not None:
            if tick_seconds <= 0:
                raise ConfigurationError(f"tick_seconds must be positive, got {tick_seconds}")
            self.tick_seconds = tick_seconds
        if seed is not None:
            self.seed = seed
        self.anomalies = 0

    def rng_for(self, robot_id: str, moment: datetime, salt: str = "") -> random.Random:
        """Generator unique to one robot at one instant, independent of evaluation order."""
        return random.Random(f"{self.seed}:{robot_id}:{moment.isoformat()}:{salt}")

    def tick(self, robot: RobotWorker, current_time: datetime) -> RobotWorker:
        """Return the robot's next snapshot; at most one behavioral transition fires."""
        if robot.state == "OFFLINE":
            return robot
        if robot.state == "EMERGENCY":
            return robot
        if robot.state == "EVACUATING":
            return self._evacuate(robot, current_time)

        rng = self.rng_for(robot.robot_id, current_time)
        if rng.random() < self.emergency_probability:
            logger.warning("random emergency robot=%s zone=%s", robot.robot_id, robot.zone_id)
            return robot.in_emergency(HealthStatus.danger(rng), at=current_time)
        if rng.random() < self.health_issue_probability:
            degraded = robot.with_health(HealthStatus.danger(rng), at=current_time)
            if degraded.health.level == "CRITICAL":
                logger.warning("critical health robot=%s zone=%s", robot.robot_id, robot.zone_id)
                return degraded.in_emergency(at=current_time)
            return degraded

        if robot.state == "MOVING" and robot.target is not None:
            return self._move(robot, current_time)

        scheduled = robot.scheduled_state(current_time.time())
        if scheduled is None or scheduled == "OFFLINE":
            return robot.with_state("OFFLINE", at=current_time)

        if scheduled != robot.state and robot.state != "MOVING" and not self._holding_at_assembly(robot):
            return self._change_state(robot, scheduled, rng, current_time)

        return self._perform_state_action(robot, rng, current_time)

    def _evacuate(self, robot: RobotWorker, at: datetime) -> RobotWorker:
        target = robot.target
        if target is None:
            assembly = self.world.get_assembly_point()
            if assembly is None:
                self._report_anomaly(robot, "evacuating with no assembly point")
                return robot
            target = assembly.center()
            robot = robot.evacuating_to(target, at=at)

        if robot.position == target:
            return robot.with_state("RESTING", at=at)
        field = self.world.distance_field_to(target)
        path = descend(self.world.grid, field, robot.position, EVACUATION_STEP_CELLS)
        if not path:
            logger.info("evacuation ended off target robot=%s position=%s", robot.robot_id, robot.position)
            return robot.with_state("RESTING", at=at)
        return self._step_to(robot, path[-1], at)

    def _move(self, robot: RobotWorker, at: datetime) -> RobotWorker:
        target = robot.target
        if target is None:
            return robot
        path = self.world.find_path(robot.position, target)
        if not path:
            if robot.position == target:
                return robot.with_state(self._arrival_state(robot, at), at=at)
            logger.info("unreachable target robot=%s target=%s; resuming work", robot.robot_id, target)
            return robot.with_state("WORKING", at=at)

        moved = self._step_to(robot, path[0], at)
        if moved.has_reached_target:
            return moved.with_state(self._arrival_state(moved, at), at=at)
        return moved

    def _change_state(self, robot: RobotWorker, new_state: RobotState, rng: random.Random, at: datetime) -> RobotWorker:
        zone_type = STATE_ZONE_TYPES.get(new_state)
        if zone_type is None:
            return robot.with_state(new_state, at=at)
        zone = self.world.find_nearest_zone(robot.position, zone_type)
        if zone is None or zone.contains(robot.position):
            return robot.with_state(new_state, at=at)
        destination = self.world.random_walkable_position(zone, rng)
        if destination is None:
            return robot.with_state(new_state, at=at)
        return robot.heading_to(destination, at=at)

    def _perform_state_action(self, robot: RobotWorker, rng: random.Random, at: datetime) -> RobotWorker:
        if robot.state == "WORKING":
            robot = robot.with_health(HealthStatus.working(rng), at=at)
            robot = robot.with_battery(robot.battery.drain("WORKING", self.tick_seconds), at=at)
            if rng.random() < self.work_move_probability:
                robot = self._wander(robot, rng, at)
            return robot
        if robot.state in ("RESTING", "EATING"):
            robot = robot.with_health(HealthStatus.normal(rng), at=at)
            return robot.with_battery(robot.battery.drain("IDLE", self.tick_seconds), at=at)
        return robot

    def _wander(self, robot: RobotWorker, rng: random.Random, at: datetime) -> RobotWorker:
        """One-cell shuffle that never leaves the current zone."""
        zone = self.world.zone(robot.zone_id) if robot.zone_id else None
        if zone is None:
            return robot
        dx, dy = rng.choice(WANDER_STEPS)
        destination = robot.position.offset(dx, dy)
        if not zone.contains(destination) or not self.world.grid.is_walkable(destination):
            return robot
        return self._step_to(robot, destination, at)

    def _step_to(self, robot: RobotWorker, position: Position, at: datetime) -> RobotWorker:
        zone_id = self.world.update_robot_position(robot.robot_id, position)
        return robot.moved_to(position, zone_id, at=at)

    def _arrival_state(self, robot: RobotWorker, at: datetime) -> RobotState:
        scheduled = robot.scheduled_state(at.time())
        if scheduled is None or scheduled in ("OFFLINE", "MOVING"):
            return "WORKING"
        return scheduled

    def _holding_at_assembly(self, robot: RobotWorker) -> bool:
        """Evacuated robots wait at the assembly point until the emergency is cleared."""
        if not self.world.emergency_active or robot.state != "RESTING":
            return False
        assembly = self.world.get_assembly_point()
        return assembly is not None and robot.zone_id == assembly.zone_id

    def _report_anomaly(self, robot: RobotWorker, reason: str) -> None:
        with self._anomaly_lock:
            self.anomalies += 1
        logger.error("behavior anomaly robot=%s reason=%s", robot.robot_id, reason)

    # commands

    def trigger_evacuation(self, zone_id: str | None = None) -> int:
        """Send online robots (in `zone_id`, or everywhere) to the assembly point."""
        assembly = self.world.require_assembly_point()
        scoped = zone_id not in (None, ALL_ZONES)
        if scoped and self.world.zone(zone_id) is None:
            raise ConfigurationError(f"unknown zone: {zone_id}")

        at = self.world.clock
        target = assembly.center()
        ordered = 0
        for robot in self.world.robots():
            if not robot.is_online or robot.state in ("EMERGENCY", "EVACUATING"):
                continue
            if robot.zone_id == assembly.zone_id:
                continue
            if scoped and robot.zone_id != zone_id:
                continue
            self.world.put_robot(robot.evacuating_to(target, at=at))
            ordered += 1
        logger.warning("evacuation ordered zone=%s robots=%s", zone_id or ALL_ZONES, ordered)
        return ordered

    def trigger_fall(self, robot_id: str) -> RobotWorker:
        """Put one robot into EMERGENCY with fall vitals."""
        return self._force_emergency(robot_id, fall=True)

    def trigger_health_emergency(self, robot_id: str) -> RobotWorker:
        return self._force_emergency(robot_id, fall=False)

    def _force_emergency(self, robot_id: str, fall: bool) -> RobotWorker:
        robot = self.world.get_robot(robot_id)
        if robot is None:
            raise KeyError(robot_id)
        at = self.world.clock
        rng = self.rng_for(robot_id, at, salt="forced")
        health = HealthStatus.fall(rng) if fall else HealthStatus.danger(rng)
        logger.warning("forced emergency robot=%s fall=%s", robot_id, fall)
        return self.world.put_robot(robot.in_emergency(health, at=at))

    def resolve_emergencies(self) -> int:
        """Release every EMERGENCY robot back to IDLE with normal vitals."""
        at = self.world.clock
        resolved = 0
        for robot in self.world.robots():
            if robot.state != "EMERGENCY":
                continue
            rng = self.rng_for(robot.robot_id, at, salt="resolved")
            self.world.put_robot(robot.with_health(HealthStatus.normal(rng), at=at).with_state("IDLE", at=at))
            resolved += 1
        return resolved
