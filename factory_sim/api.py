from __future__ import annotations

"""
File: factory_sim/api.py
Purpose: FastAPI query and control surface for the factory simulation.
Key responsibilities:
- Expose /health, status, robot, zone, scenario and map queries.
- Serve buffered events to polling clients.
- Forward control commands to the shared SimulationController.
- Run the SimRunner in the background for the app lifetime.
Key entrypoints:
- create_app()
Config/env vars:
- same as factory_sim.main
"""

import asyncio
from contextlib import asynccontextmanager
import contextlib
import logging
from typing import Any, Optional

from fastapi import Body, FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse, PlainTextResponse

from factory_sim.control import SimulationController
from factory_sim.main import SimRunner
from factory_sim.schemas import CommandResult, ControlCommand, RobotView, ScenarioSummary, StatusView, ZoneView
from factory_sim.sim.entities import RobotState
from factory_sim.sim.errors import ConfigurationError

logger = logging.getLogger("factory-sim.api")


def _log_runner_exit(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error("simulation runner exited: %s", exc, exc_info=exc)


def create_app(controller: SimulationController | None = None, run_background: bool = True) -> FastAPI:
    """Build the API around `controller`; `run_background` also ticks and publishes."""
    controller = controller or SimulationController()

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        runner: SimRunner | None = None
        task: asyncio.Task | None = None
        if run_background:
            runner = SimRunner(controller)
            task = asyncio.create_task(runner.run())
            task.add_done_callback(_log_runner_exit)
        try:
            yield
        finally:
            if task is not None:
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
            if runner is not None:
                await runner.close()

    app = FastAPI(title="factory-sim", version="1.0.0", lifespan=lifespan)
    app.state.controller = controller

    @app.exception_handler(ConfigurationError)
    async def configuration_error(_request: Request, exc: ConfigurationError) -> JSONResponse:
        return JSONResponse(status_code=409, content={"detail": str(exc)})

    def run(command: ControlCommand) -> CommandResult:
        if command.zone_id is not None and controller.engine.world.zone(command.zone_id) is None:
            raise HTTPException(status_code=404, detail=f"unknown zone: {command.zone_id}")
        try:
            return controller.execute(command)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail=f"unknown id: {exc.args[0]}") from exc

    @app.get("/health")
    def health() -> dict[str, str]:
        """Liveness/readiness check."""
        return {"status": "ok"}

    @app.get("/status", response_model=StatusView)
    def status() -> StatusView:
        return controller.status()

    @app.get("/robots", response_model=list[RobotView])
    def robots(
        zone_id: Optional[str] = None,
        state: Optional[RobotState] = None,
        limit: Optional[int] = Query(default=None, ge=1),
    ) -> list[RobotView]:
        try:
            return controller.robots(zone_id=zone_id, state=state, limit=limit)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail=f"unknown zone: {zone_id}") from exc

    @app.get("/robots/emergency", response_model=list[RobotView])
    def emergency_robots() -> list[RobotView]:
        return controller.emergency_robots()

    @app.get("/robots/{robot_id}", response_model=RobotView)
    def robot(robot_id: str) -> RobotView:
        try:
            return controller.robot(robot_id)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail=f"unknown robot: {robot_id}") from exc

    @app.get("/zones", response_model=list[ZoneView])
    def zones() -> list[ZoneView]:
        return controller.zones()

    @app.get("/zones/{zone_id}", response_model=ZoneView)
    def zone(zone_id: str) -> ZoneView:
        try:
            return controller.zone(zone_id)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail=f"unknown zone: {zone_id}") from exc

    @app.get("/scenarios", response_model=list[ScenarioSummary])
    def scenarios() -> list[ScenarioSummary]:
        return controller.scenarios()

    @app.get("/map", response_class=PlainTextResponse)
    def factory_map() -> str:
        return controller.map_ascii()

    @app.get("/events")
    def events(limit: Optional[int] = Query(default=None, ge=1)) -> list[dict[str, Any]]:
        """Consume buffered events; each event is returned once."""
        return controller.drain_events(limit)

    @app.post("/scenarios/load", response_model=CommandResult)
    def load_document(document: dict[str, Any] = Body(...)) -> CommandResult:
        return run(ControlCommand(command="load", document=document))

    @app.post("/scenarios/{name}/load", response_model=CommandResult)
    def load_builtin(
        name: str,
        scale: Optional[str] = None,
        robot_count: Optional[int] = Query(default=None, ge=0),
    ) -> CommandResult:
        return run(ControlCommand(command="load", scenario=name, scale=scale, robot_count=robot_count))

    @app.post("/start", response_model=CommandResult)
    def start() -> CommandResult:
        return run(ControlCommand(command="start"))

    @app.post("/stop", response_model=CommandResult)
    def stop() -> CommandResult:
        return run(ControlCommand(command="stop"))

    @app.post("/pause", response_model=CommandResult)
    def pause() -> CommandResult:
        return run(ControlCommand(command="pause"))

    @app.post("/resume", response_model=CommandResult)
    def resume() -> CommandResult:
        return run(ControlCommand(command="resume"))

    @app.post("/emergency/clear", response_model=CommandResult)
    def clear_emergency() -> CommandResult:
        return run(ControlCommand(command="clear_emergency"))

    @app.post("/emergency/{zone_id}", response_model=CommandResult)
    def trigger_emergency(zone_id: str) -> CommandResult:
        return run(ControlCommand(command="emergency", zone_id=_zone_or_all(zone_id)))

    @app.post("/evacuation", response_model=CommandResult)
    def evacuation(zone_id: Optional[str] = None) -> CommandResult:
        return run(ControlCommand(command="evacuate", zone_id=_zone_or_all(zone_id)))

    return app


def _zone_or_all(zone_id: str | None) -> str | None:
    return None if zone_id in (None, "ALL") else zone_id


app = create_app()
