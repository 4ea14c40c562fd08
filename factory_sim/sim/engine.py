from __future__ import annotations

"""
File: factory_sim/sim/engine.py
Purpose: Tick-driven scenario controller for the factory simulation.
Key responsibilities:
- LOADED/RUNNING/PAUSED/STOPPED run-state machine with idempotent controls.
- Advance the clock and apply timeline events exactly once.
- Tick every robot (optionally on a thread pool) and commit snapshots.
- Drive the EventGenerator and notify scenario lifecycle listeners.
"""

import asyncio
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, time as dt_time
import logging
import random
import threading
import time
from typing import Any, Callable, Literal

from factory_sim.sim.behavior import RobotBehaviorEngine
from factory_sim.sim.entities import RobotWorker
from factory_sim.sim.errors import ConfigurationError, ScenarioStateError
from factory_sim.sim.events import DerivedEvent, EventGenerator
from factory_sim.sim.metrics import SimulationMetrics, compute_metrics
from factory_sim.sim.scenario import Scenario, TimelineEvent, validate_config
from factory_sim.sim.world import ALL_ZONES, DEFAULT_START, VirtualWorld

logger = logging.getLogger("factory-sim.engine")

EngineState = Literal["LOADED", "RUNNING", "PAUSED", "STOPPED"]
ScenarioListener = Callable[[str, dict[str, Any]], None]

# Float slack when comparing elapsed time against offsets and durations.
EPSILON_S = 1e-9


class ScenarioEngine:
    """Owns the run state and drives world, behavior and events once per tick."""
    def __init__(
        self,
        world: VirtualWorld,
        behavior: RobotBehaviorEngine,
        events: EventGenerator,
        tick_seconds: float = 1.0,
        workers: int = 1,
        start_time: datetime = DEFAULT_START,
    ) -> None:
        if tick_seconds <= 0:
            raise ValueError(f"invalid tick_seconds: {tick_seconds}")
        if workers < 1:
            raise ValueError(f"invalid workers: {workers}")
        self.world = world
        self.behavior = behavior
        self.events = events
        self.metrics = SimulationMetrics()
        self.workers = workers
        self.state: EngineState = "STOPPED"
        self.scenario: Scenario | None = None
        self.elapsed_s = 0.0
        self.tick_seconds = tick_seconds
        self.start_time = start_time
        self._next_event = 0
        self._tick_lock = threading.RLock()
        self._listeners: list[ScenarioListener] = []
        self._executor: ThreadPoolExecutor | None = None
        self._publication_stats: Callable[[], dict[str, int]] | None = None
        self._defaults: dict[str, Any] = {
            "seed": behavior.seed,
            "emergency_probability": behavior.emergency_probability,
            "health_issue_probability": behavior.health_issue_probability,
            "work_move_probability": behavior.work_move_probability,
            "location_update_interval": events.location_update_interval,
            "heartbeat_interval": events.heartbeat_interval,
            "tick_seconds": tick_seconds,
        }

    # listeners

    def add_listener(self, listener: ScenarioListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: ScenarioListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def report_publications(self, stats: Callable[[], dict[str, int]] | None) -> None:
        """Register the publisher counters (published, dropped, failed) shown in status()."""
        self._publication_stats = stats

    def _notify(self, kind: str, data: dict[str, Any] | None = None) -> None:
        payload = {
            "scenario": self.scenario.name if self.scenario else None,
            "elapsed_s": round(self.elapsed_s, 6),
            "clock": self.world.clock.isoformat(),
            **(data or {}),
        }
        for listener in list(self._listeners):
            try:
                listener(kind, payload)
            except Exception as exc:  # noqa: BLE001
                logger.exception("scenario listener failed kind=%s: %s", kind, exc)

    # controls

    def load_scenario(self, scenario: Scenario) -> None:
        """Install a scenario, rebuild the fleet, and move to LOADED."""
        with self._tick_lock:
            if self.state in ("RUNNING", "PAUSED"):
                raise ScenarioStateError(f"cannot load while {self.state}; stop first")
            config = validate_config(scenario.config)
            self._check_zones(scenario, config.spawn_zones or [])
            start_time = start_datetime(self.start_time, config.start_time)

            merged = dict(self._defaults)
            merged.update(config.model_dump(exclude_none=True, include=set(self._defaults)))
            seed = int(merged["seed"])

            self.behavior.configure(
                seed=seed,
                emergency_probability=merged["emergency_probability"],
                health_issue_probability=merged["health_issue_probability"],
                work_move_probability=merged["work_move_probability"],
                tick_seconds=merged["tick_seconds"],
            )
            self.events.configure(
                run_id=f"{scenario.scenario_id or scenario.name}-{seed}",
                location_update_interval=merged["location_update_interval"],
                heartbeat_interval=merged["heartbeat_interval"],
            )
            self.events.sensors.reseed(seed)
            self.tick_seconds = float(merged["tick_seconds"])

            self.world.reset(start_time)
            self.events.reset()
            self.metrics.reset()
            self.world.spawn_robots(scenario.robot_count, random.Random(seed), spawn_zones=config.spawn_zones)

            self.scenario = scenario
            self.elapsed_s = 0.0
            self._next_event = 0
            self.state = "LOADED"
        logger.info(
            "scenario loaded name=%s robots=%s duration_s=%s events=%s seed=%s",
            scenario.name,
            scenario.robot_count,
            scenario.duration_s,
            len(scenario.events),
            seed,
        )
        self._notify("SCENARIO_LOADED", {"robot_count": scenario.robot_count, "seed": seed})

    def start(self) -> None:
        with self._tick_lock:
            if self.state in ("RUNNING", "PAUSED"):
                logger.warning("start ignored; scenario already %s", self.state)
                return
            if self.state != "LOADED" or self.scenario is None:
                raise ScenarioStateError("no scenario loaded")
            at = self.world.clock
            for robot in self.world.robots():
                if robot.state == "OFFLINE":
                    self.world.put_robot(robot.with_state("WORKING", at=at))
            self.state = "RUNNING"
        logger.info("scenario started name=%s", self.scenario.name)
        self._notify("SCENARIO_STARTED")

    def pause(self) -> None:
        with self._tick_lock:
            if self.state != "RUNNING":
                return
            self.state = "PAUSED"
        logger.info("scenario paused elapsed_s=%s", self.elapsed_s)
        self._notify("SCENARIO_PAUSED")

    def resume(self) -> None:
        with self._tick_lock:
            if self.state != "PAUSED":
                return
            self.state = "RUNNING"
        logger.info("scenario resumed elapsed_s=%s", self.elapsed_s)
        self._notify("SCENARIO_RESUMED")

    def stop(self) -> None:
        with self._tick_lock:
            if self.state == "STOPPED":
                return
            self.state = "STOPPED"
        logger.info("scenario stopped elapsed_s=%s", self.elapsed_s)
        self._notify("SCENARIO_STOPPED")

    def trigger_emergency(self, zone_id: str | None = None) -> int:
        """Flag an emergency in `zone_id` (or everywhere) and evacuate it; returns robots ordered out."""
        with self._tick_lock:
            # nothing is flagged unless the evacuation can also be ordered
            self.world.require_assembly_point()
            self.world.trigger_emergency(zone_id)
            ordered = self.behavior.trigger_evacuation(zone_id)
        self._notify("EMERGENCY_TRIGGERED", {"zone_id": zone_id or ALL_ZONES, "evacuating": ordered})
        return ordered

    def order_evacuation(self, zone_id: str | None = None) -> int:
        with self._tick_lock:
            ordered = self.behavior.trigger_evacuation(zone_id)
        self._notify("EVACUATION_ORDER", {"zone_id": zone_id or ALL_ZONES, "evacuating": ordered})
        return ordered

    def clear_emergency(self) -> int:
        """Reset world emergency flags and release robots held in EMERGENCY."""
        with self._tick_lock:
            self.world.clear_emergency()
            resolved = self.behavior.resolve_emergencies()
        self._notify("EMERGENCY_CLEARED", {"resolved": resolved})
        return resolved

    def close(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

    # ticking

    def step(self, dt: float | None = None) -> list[DerivedEvent]:
        """Run one tick of `dt` simulated seconds (default tick_seconds) if RUNNING."""
        with self._tick_lock:
            if self.state != "RUNNING" or self.scenario is None:
                return []
            dt = self.tick_seconds if dt is None else dt
            if dt <= 0:
                raise ValueError(f"invalid tick delta: {dt}")
            started = time.perf_counter()

            self.elapsed_s += dt
            now = self.world.advance_clock(dt)
            self._apply_due_timeline()

            for robot in self._tick_robots(self.world.robots(), now):
                self.world.put_robot(robot)
            emitted = self.events.generate()

            self.metrics.record_tick((time.perf_counter() - started) * 1000.0, emitted)
            completed = self.elapsed_s + EPSILON_S >= self.scenario.duration_s
            if completed:
                self.state = "STOPPED"
        if completed:
            logger.info("scenario completed name=%s elapsed_s=%s", self.scenario.name, self.elapsed_s)
            self._notify("SCENARIO_COMPLETED")
        return emitted

    def advance(self, seconds: float) -> list[DerivedEvent]:
        """Tick repeatedly until `seconds` more simulated time has elapsed or the run stops."""
        target = self.elapsed_s + seconds
        emitted: list[DerivedEvent] = []
        while self.state == "RUNNING" and self.elapsed_s + EPSILON_S < target:
            emitted.extend(self.step())
        return emitted

    async def run(self, tick_hz: float) -> None:
        """Pace ticks against the wall clock until cancelled; idles while not RUNNING."""
        if tick_hz <= 0:
            raise ValueError(f"invalid tick_hz: {tick_hz}")
        interval = 1.0 / tick_hz
        while True:
            if self.state == "RUNNING":
                await asyncio.to_thread(self.step)
            await asyncio.sleep(interval)

    def _tick_robots(self, robots: list[RobotWorker], now: datetime) -> list[RobotWorker]:
        if self.workers <= 1 or len(robots) < 2:
            return [self._safe_tick(robot, now) for robot in robots]
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=self.workers, thread_name_prefix="factory-sim-tick")
        return list(self._executor.map(lambda robot: self._safe_tick(robot, now), robots))

    def _safe_tick(self, robot: RobotWorker, now: datetime) -> RobotWorker:
        try:
            return self.behavior.tick(robot, now)
        except Exception as exc:  # noqa: BLE001
            logger.exception("robot tick failed robot=%s: %s", robot.robot_id, exc)
            return self.world.get_robot(robot.robot_id) or robot

    # timeline

    def _apply_due_timeline(self) -> None:
        assert self.scenario is not None
        timeline = self.scenario.events
        while self._next_event < len(timeline) and timeline[self._next_event].offset_s <= self.elapsed_s + EPSILON_S:
            index = self._next_event
            event = timeline[index]
            self._next_event += 1
            try:
                self._apply_timeline_event(index, event)
                self.metrics.timeline_events_applied += 1
            except (ConfigurationError, KeyError) as exc:
                self.metrics.timeline_errors += 1
                logger.error("timeline event failed type=%s zone=%s: %s", event.event_type, event.target_zone, exc)
                continue
            self._notify(
                event.event_type,
                {"target_zone": event.target_zone, "offset_s": event.offset_s, "description": event.description},
            )

    def _apply_timeline_event(self, index: int, event: TimelineEvent) -> None:
        zone_id = event.target_zone
        logger.info("timeline event type=%s zone=%s offset_s=%s", event.event_type, zone_id, event.offset_s)
        if event.event_type in ("FIRE_DETECTED", "GAS_DETECTED"):
            self.world.trigger_emergency(zone_id)
        elif event.event_type == "EVACUATION_ORDER":
            self.behavior.trigger_evacuation(zone_id)
        elif event.event_type == "EQUIPMENT_SHUTDOWN":
            if zone_id in (None, ALL_ZONES):
                raise ConfigurationError("EQUIPMENT_SHUTDOWN needs a target zone")
            self.world.shutdown_equipment(zone_id)
        elif event.event_type == "CALL_EMERGENCY_SERVICES":
            logger.warning("emergency services called zone=%s", zone_id or ALL_ZONES)
        elif event.event_type in ("FALL_DETECTED", "HEALTH_EMERGENCY"):
            robot_id = event.params.get("robot_id") or self._pick_robot(index, zone_id)
            if robot_id is None:
                logger.warning("no robot available for %s zone=%s", event.event_type, zone_id)
                return
            if event.event_type == "FALL_DETECTED":
                self.behavior.trigger_fall(str(robot_id))
            else:
                self.behavior.trigger_health_emergency(str(robot_id))
        elif event.event_type == "CLEAR_EMERGENCY":
            self.world.clear_emergency()
            self.behavior.resolve_emergencies()

    def _pick_robot(self, index: int, zone_id: str | None) -> str | None:
        if zone_id in (None, ALL_ZONES):
            robots = self.world.robots()
        else:
            robots = self.world.robots_in_zone(zone_id)
        candidates = [robot.robot_id for robot in robots if robot.is_online and robot.state != "EMERGENCY"]
        if not candidates:
            return None
        return random.Random(f"{self.behavior.seed}:timeline:{index}").choice(candidates)

    def _check_zones(self, scenario: Scenario, spawn_zones: list[str]) -> None:
        referenced = {event.target_zone for event in scenario.events} | set(spawn_zones)
        unknown = sorted(
            zone_id for zone_id in referenced if zone_id not in (None, ALL_ZONES) and self.world.zone(zone_id) is None
        )
        if unknown:
            raise ConfigurationError(f"scenario {scenario.name} references unknown zones: {', '.join(unknown)}")

    def status(self) -> dict[str, Any]:
        """Serializable engine snapshot for the query surface."""
        scenario = self.scenario
        return {
            "state": self.state,
            "scenario": scenario.name if scenario else None,
            "elapsed_s": round(self.elapsed_s, 6),
            "duration_s": scenario.duration_s if scenario else None,
            "tick_seconds": self.tick_seconds,
            "seed": self.behavior.seed,
            "timeline_applied": self._next_event,
            "timeline_total": len(scenario.events) if scenario else 0,
            "world": self.world.snapshot(),
            "metrics": compute_metrics(
                self.metrics,
                self.behavior.anomalies,
                self.events.listener_failures,
                self._publication_stats() if self._publication_stats else None,
            ),
        }


def start_datetime(default: datetime, value: str | None) -> datetime:
    if value is None:
        return default
    try:
        moment = dt_time.fromisoformat(value)
    except ValueError as exc:
        raise ConfigurationError(f"invalid start_time: {value}") from exc
    return datetime.combine(default.date(), moment)
