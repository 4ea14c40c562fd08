import asyncio
import contextlib
import importlib
import threading
import time

import pytest

from factory_sim.control import SimulationController, build_engine
from factory_sim.main import SimRunner
from factory_sim.schemas import ControlCommand
from factory_sim.settings import Settings, robots_for_scale
from factory_sim.sim.errors import ConfigurationError


class FakeMessage:
    routing_key = "sim.control.command"

    def __init__(self, body: bytes) -> None:
        self.body = body
        self.acked = False

    async def ack(self) -> None:
        self.acked = True


def _controller() -> SimulationController:
    return SimulationController(build_engine(Settings(sim_seed=3, publish_enabled=False)))


def test_execute_load_and_lifecycle():
    controller = _controller()
    result = controller.execute(ControlCommand(command="load", scenario="fire_emergency", robot_count=4))
    assert result.state == "LOADED"
    assert result.affected == 4
    assert result.detail == "fire_emergency"

    assert controller.execute(ControlCommand(command="start")).state == "RUNNING"
    assert controller.execute(ControlCommand(command="pause")).state == "PAUSED"
    assert controller.execute(ControlCommand(command="resume")).state == "RUNNING"
    evacuated = controller.execute(ControlCommand(command="evacuate"))
    assert evacuated.affected == 4
    assert controller.execute(ControlCommand(command="stop")).state == "STOPPED"


def test_load_by_scale_and_document():
    controller = _controller()
    scenario = controller.load_builtin("daily_operation", scale="mini")
    assert scenario.robot_count == robots_for_scale("mini")
    with pytest.raises(ConfigurationError):
        controller.load_builtin("daily_operation", scale="galactic")

    controller.load_document({"name": "custom", "robot_count": 2, "config": {"spawn_zones": ["ZONE-E"]}})
    assert [robot.zone_id for robot in controller.robots()] == ["ZONE-E", "ZONE-E"]
    with pytest.raises(ConfigurationError):
        controller.load_document({"robot_count": 2})


def test_queries():
    controller = _controller()
    controller.load_builtin("worker_fall", robot_count=3)
    assert len(controller.robots()) == 3
    assert len(controller.robots(limit=2)) == 2
    assert controller.robots(state="WORKING") == []
    assert controller.robot("ROBOT-0001").robot_id == "ROBOT-0001"
    with pytest.raises(KeyError):
        controller.robot("ROBOT-9999")
    with pytest.raises(KeyError):
        controller.robots(zone_id="ZONE-NOPE")
    assert controller.zone("ZONE-H").zone_type == "ASSEMBLY_POINT"
    assert len(controller.zones()) == 9
    assert [summary.name for summary in controller.scenarios()][0] == "daily_operation"
    assert controller.status().state == "LOADED"
    assert controller.map_ascii().startswith("#")


def test_scale_override(monkeypatch):
    import factory_sim.settings as settings_module

    monkeypatch.setenv("FLEET_ROBOTS", "7")
    assert settings_module._build_scale_map() == {"mini": 7, "small": 7, "demo": 7, "large": 7, "load": 7}
    with pytest.raises(ValueError):
        robots_for_scale("huge")


def test_control_messages_are_applied_and_acked():
    controller = _controller()
    runner = SimRunner(controller, cfg=Settings(publish_enabled=False))

    load = FakeMessage(b'{"command": "load", "scenario": "gas_leak", "robot_count": 2}')
    asyncio.run(runner._on_control(load))
    assert load.acked
    assert controller.engine.scenario.name == "gas_leak"

    for body in (b"not json", b'{"command": "teleport"}', b'{"command": "load", "scenario": "nope"}'):
        message = FakeMessage(body)
        asyncio.run(runner._on_control(message))
        assert message.acked
    assert controller.engine.scenario.name == "gas_leak"


def test_runner_autostarts_without_broker():
    controller = _controller()
    cfg = Settings(publish_enabled=False, sim_autostart=True, sim_scenario="worker_fall", fleet_scale="mini", sim_tick_hz=50.0)
    runner = SimRunner(controller, cfg=cfg)

    async def scenario():
        task = asyncio.create_task(runner.run())
        await asyncio.sleep(0.3)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        await runner.close()

    asyncio.run(scenario())
    assert controller.engine.scenario.name == "worker_fall"
    assert controller.engine.state == "STOPPED"
    assert controller.engine.metrics.total_ticks >= 1


def test_api_module_imports():
    module = importlib.import_module("factory_sim.api")
    assert module.app.title == "factory-sim"


def test_control_waits_for_tick_lock_off_the_event_loop():
    controller = _controller()
    controller.load_builtin("gas_leak", robot_count=2)
    runner = SimRunner(controller, cfg=Settings(publish_enabled=False))
    held = threading.Event()

    def hold_tick_lock():
        with controller.engine._tick_lock:
            held.set()
            time.sleep(0.4)

    async def scenario():
        holder = threading.Thread(target=hold_tick_lock)
        holder.start()
        await asyncio.to_thread(held.wait)

        lags: list[float] = []

        async def heartbeat():
            while True:
                before = time.perf_counter()
                await asyncio.sleep(0.01)
                lags.append(time.perf_counter() - before - 0.01)

        beat = asyncio.create_task(heartbeat())
        message = FakeMessage(b'{"command": "stop"}')
        await runner._on_control(message)
        beat.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await beat
        await asyncio.to_thread(holder.join)
        return message, lags

    message, lags = asyncio.run(scenario())
    assert message.acked
    assert controller.engine.state == "STOPPED"
    assert len(lags) >= 10
    assert max(lags) < 0.1
