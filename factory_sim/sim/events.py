from __future__ import annotations

"""
File: factory_sim/sim/events.py
Purpose: Derived telemetry/event records and the per-tick generator.
Key responsibilities:
- Detect state and zone transitions against last-observed bookkeeping.
- Emit periodic location, heartbeat and sensor telemetry.
- Emit emergency and battery alerts with priorities.
- Fan events out to listeners, isolating listener failures.
"""

from collections import deque
from dataclasses import asdict, dataclass
from datetime import datetime
import hashlib
import logging
import threading
from typing import Any, Callable, Literal, Union

from factory_sim.sim.entities import RobotWorker
from factory_sim.sim.sensors import SensorDataGenerator
from factory_sim.sim.world import VirtualWorld

logger = logging.getLogger("factory-sim.events")

EventType = Literal[
    "LOCATION_UPDATE",
    "HEARTBEAT",
    "STATE_CHANGE",
    "EMERGENCY",
    "ZONE_ENTERED",
    "ZONE_EXITED",
    "BATTERY_LOW",
    "SENSOR_DATA",
]
EventPriority = Literal["LOW", "NORMAL", "HIGH", "CRITICAL"]
EmergencyType = Literal["FALL", "HEART_RATE", "FEVER", "OXYGEN", "HEALTH_EMERGENCY"]

UNKNOWN_STATE = "UNKNOWN"
MOTION_STATES = frozenset({"WORKING", "MOVING", "EVACUATING"})
# a quarter second of the 100 Hz PPG waveform per reading
PPG_WINDOW_SAMPLES = 25


@dataclass(frozen=True)
class LocationPayload:
    x: int
    y: int
    zone_id: str | None
    latitude: float
    longitude: float


@dataclass(frozen=True)
class HeartbeatPayload:
    state: str
    heart_rate: int
    body_temperature: float
    oxygen_level: int
    stress_level: int
    health_level: str
    battery_level: float
    battery_low: bool


@dataclass(frozen=True)
class StateChangePayload:
    previous_state: str
    new_state: str
    reason: str


@dataclass(frozen=True)
class EmergencyPayload:
    emergency_type: EmergencyType
    health_level: str
    heart_rate: int
    temperature: float
    oxygen_level: int
    fallen: bool
    zone_id: str | None
    x: int
    y: int


@dataclass(frozen=True)
class ZonePayload:
    zone_id: str
    x: int
    y: int
    hazardous: bool


@dataclass(frozen=True)
class BatteryPayload:
    battery_level: float
    state: str
    zone_id: str | None


@dataclass(frozen=True)
class SensorPayload:
    accel_x: float
    accel_y: float
    accel_z: float
    accel_magnitude: float
    fall_detected: bool
    env_temperature: float
    humidity: float
    co2_ppm: float
    smoke_detected: bool
    gas_level: float
    environment_hazardous: bool
    current_draw_ma: float
    distance_cm: int
    motion_detected: bool
    ppg: tuple[int, ...]
    zone_id: str | None


EventPayload = Union[
    LocationPayload,
    HeartbeatPayload,
    StateChangePayload,
    EmergencyPayload,
    ZonePayload,
    BatteryPayload,
    SensorPayload,
]


@dataclass(frozen=True)
class DerivedEvent:
    """One telemetry/event record handed to publishers."""
    event_id: str
    event_type: EventType
    robot_id: str
    timestamp: datetime
    tick: int
    priority: EventPriority
    payload: EventPayload

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_id": self.event_id,
            "event_type": self.event_type,
            "robot_id": self.robot_id,
            "timestamp": self.timestamp.isoformat(),
            "tick": self.tick,
            "priority": self.priority,
            "payload": asdict(self.payload),
        }


EventListener = Callable[[DerivedEvent], None]


def classify_emergency(robot: RobotWorker) -> EmergencyType:
    """Name the vital sign that explains the robot's emergency."""
    health = robot.health
    if health.fallen:
        return "FALL"
    if health.heart_rate > 120 or health.heart_rate < 50:
        return "HEART_RATE"
    if health.temperature > 38.0 or health.temperature < 35.5:
        return "FEVER"
    if health.oxygen_level < 92:
        return "OXYGEN"
    return "HEALTH_EMERGENCY"


class EventGenerator:
    """Turns successive world snapshots into DerivedEvents."""
    def __init__(
        self,
        world: VirtualWorld,
        sensors: SensorDataGenerator,
        run_id: str = "run",
        location_update_interval: int = 10,
        heartbeat_interval: int = 50,
        emit_zone_events: bool = True,
        queue_size: int = 10000,
    ) -> None:
        self.world = world
        self.sensors = sensors
        self.run_id = run_id
        self.location_update_interval = location_update_interval
        self.heartbeat_interval = heartbeat_interval
        self.emit_zone_events = emit_zone_events
        self.tick_count = 0
        self.listener_failures = 0
        self._listeners: list[EventListener] = []
        self._listener_lock = threading.Lock()
        self._last_state: dict[str, str] = {}
        self._last_zone: dict[str, str | None] = {}
        self._battery_alerted: set[str] = set()
        self._queue: deque[DerivedEvent] = deque(maxlen=queue_size)

    def configure(
        self,
        run_id: str | None = None,
        location_update_interval: int | None = None,
        heartbeat_interval: int | None = None,
    ) -> None:
        for name, value in (
            ("location_update_interval", location_update_interval),
            ("heartbeat_interval", heartbeat_interval),
        ):
            if value is not None and value <= 0:
                raise ValueError(f"{name} must be positive, got {value}")
        if run_id is not None:
            self.run_id = run_id
        if location_update_interval is not None:
            self.location_update_interval = location_update_interval
        if heartbeat_interval is not None:
            self.heartbeat_interval = heartbeat_interval

    def reset(self) -> None:
        """Forget bookkeeping and queued events; listeners stay attached."""
        self.tick_count = 0
        self.listener_failures = 0
        self._last_state.clear()
        self._last_zone.clear()
        self._battery_alerted.clear()
        self._queue.clear()

    def add_listener(self, listener: EventListener) -> None:
        with self._listener_lock:
            self._listeners.append(listener)

    def remove_listener(self, listener: EventListener) -> None:
        with self._listener_lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def generate(self) -> list[DerivedEvent]:
        """Inspect the world once, record and dispatch this tick's events in robot-id order."""
        self.tick_count += 1
        tick = self.tick_count
        at = self.world.clock
        robots = self.world.robots()

        events: list[DerivedEvent] = []
        for robot in robots:
            events.extend(self._events_for(robot, tick, at))

        live = {robot.robot_id for robot in robots}
        for robot_id in [key for key in self._last_state if key not in live]:
            self._last_state.pop(robot_id, None)
            self._last_zone.pop(robot_id, None)
            self._battery_alerted.discard(robot_id)

        for event in events:
            self._queue.append(event)
            self._dispatch(event)
        return events

    def drain(self, max_items: int | None = None) -> list[DerivedEvent]:
        """Pop queued events, oldest first."""
        drained: list[DerivedEvent] = []
        while self._queue and (max_items is None or len(drained) < max_items):
            drained.append(self._queue.popleft())
        return drained

    @property
    def queued(self) -> int:
        return len(self._queue)

    def _events_for(self, robot: RobotWorker, tick: int, at: datetime) -> list[DerivedEvent]:
        out: list[DerivedEvent] = []

        def emit(event_type: EventType, priority: EventPriority, payload: EventPayload) -> None:
            out.append(
                DerivedEvent(
                    event_id=self._event_id(event_type, robot.robot_id, tick, len(out)),
                    event_type=event_type,
                    robot_id=robot.robot_id,
                    timestamp=at,
                    tick=tick,
                    priority=priority,
                    payload=payload,
                )
            )

        previous = self._last_state.get(robot.robot_id)
        if previous != robot.state:
            emit(
                "STATE_CHANGE",
                "HIGH",
                StateChangePayload(
                    previous_state=previous or UNKNOWN_STATE,
                    new_state=robot.state,
                    reason="Schedule or emergency",
                ),
            )
            self._last_state[robot.robot_id] = robot.state

        if self.emit_zone_events:
            self._zone_events(robot, emit)

        if robot.is_in_danger:
            emit(
                "EMERGENCY",
                "CRITICAL",
                EmergencyPayload(
                    emergency_type=classify_emergency(robot),
                    health_level=robot.health.level,
                    heart_rate=robot.health.heart_rate,
                    temperature=robot.health.temperature,
                    oxygen_level=robot.health.oxygen_level,
                    fallen=robot.health.fallen,
                    zone_id=robot.zone_id,
                    x=robot.position.x,
                    y=robot.position.y,
                ),
            )

        if robot.battery.is_critical and robot.robot_id not in self._battery_alerted:
            self._battery_alerted.add(robot.robot_id)
            emit(
                "BATTERY_LOW",
                "HIGH",
                BatteryPayload(battery_level=round(robot.battery.level, 2), state=robot.state, zone_id=robot.zone_id),
            )
        elif not robot.battery.is_critical:
            self._battery_alerted.discard(robot.robot_id)

        if not robot.is_online:
            return out

        if tick % self.location_update_interval == 0:
            emit(
                "LOCATION_UPDATE",
                "NORMAL",
                LocationPayload(
                    x=robot.position.x,
                    y=robot.position.y,
                    zone_id=robot.zone_id,
                    latitude=round(robot.position.latitude(), 6),
                    longitude=round(robot.position.longitude(), 6),
                ),
            )

        if tick % self.heartbeat_interval == 0:
            emit("HEARTBEAT", "NORMAL", self._heartbeat(robot))
            sensor = self._sensor_reading(robot)
            emit("SENSOR_DATA", "HIGH" if sensor.environment_hazardous or sensor.fall_detected else "LOW", sensor)
        return out

    def _zone_events(self, robot: RobotWorker, emit: Callable[[EventType, EventPriority, EventPayload], None]) -> None:
        known = robot.robot_id in self._last_zone
        previous_zone = self._last_zone.get(robot.robot_id)
        self._last_zone[robot.robot_id] = robot.zone_id
        if not known or previous_zone == robot.zone_id:
            return
        if previous_zone is not None:
            emit(
                "ZONE_EXITED",
                "NORMAL",
                ZonePayload(
                    zone_id=previous_zone,
                    x=robot.position.x,
                    y=robot.position.y,
                    hazardous=self.world.is_zone_hazardous(previous_zone),
                ),
            )
        if robot.zone_id is not None:
            hazardous = self.world.is_zone_hazardous(robot.zone_id)
            emit(
                "ZONE_ENTERED",
                "HIGH" if hazardous else "NORMAL",
                ZonePayload(zone_id=robot.zone_id, x=robot.position.x, y=robot.position.y, hazardous=hazardous),
            )

    def _heartbeat(self, robot: RobotWorker) -> HeartbeatPayload:
        health = robot.health
        if health.is_emergency:
            heart_rate, temperature = health.heart_rate, health.temperature
        else:
            heart_rate = self.sensors.heart_rate(robot.state)
            temperature = self.sensors.body_temperature(robot.state)
        return HeartbeatPayload(
            state=robot.state,
            heart_rate=heart_rate,
            body_temperature=temperature,
            oxygen_level=health.oxygen_level,
            stress_level=health.stress_level,
            health_level=health.level,
            battery_level=round(robot.battery.level, 2),
            battery_low=robot.battery.is_low,
        )

    def _sensor_reading(self, robot: RobotWorker) -> SensorPayload:
        accel = self.sensors.accelerometer(robot.state)
        env = self.sensors.environment(self.world.is_zone_hazardous(robot.zone_id))
        return SensorPayload(
            accel_x=round(accel.x, 4),
            accel_y=round(accel.y, 4),
            accel_z=round(accel.z, 4),
            accel_magnitude=round(accel.magnitude, 4),
            fall_detected=accel.is_fall_detected,
            env_temperature=env.temperature,
            humidity=env.humidity,
            co2_ppm=env.co2_ppm,
            smoke_detected=env.smoke_detected,
            gas_level=env.gas_level,
            environment_hazardous=env.is_hazardous,
            current_draw_ma=self.sensors.current_draw_ma(abnormal=robot.is_in_danger),
            distance_cm=self.sensors.distance_cm(),
            motion_detected=self.sensors.pir_motion(robot.state in MOTION_STATES),
            ppg=tuple(self.sensors.ppg_signal(PPG_WINDOW_SAMPLES)),
            zone_id=robot.zone_id,
        )

    def _dispatch(self, event: DerivedEvent) -> None:
        with self._listener_lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(event)
            except Exception as exc:  # noqa: BLE001
                self.listener_failures += 1
                logger.exception("event listener failed type=%s robot=%s: %s", event.event_type, event.robot_id, exc)

    def _event_id(self, event_type: str, robot_id: str, tick: int, seq: int) -> str:
        raw = f"{self.run_id}:{event_type}:{robot_id}:{tick}:{seq}"
        return hashlib.sha1(raw.encode("utf-8")).hexdigest()
