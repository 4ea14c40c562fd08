from __future__ import annotations

"""
File: factory_sim/main.py
Purpose: Simulation runner that ticks the factory and streams events to RabbitMQ.
Key responsibilities:
- Publish derived robot events and scenario notifications.
- Consume control commands from the control queue.
- Load and start the configured scenario, then pace ticks at SIM_TICK_HZ.
Key entrypoints:
- SimRunner.run()
Config/env vars:
- SIM_SCENARIO, SIM_AUTOSTART, SIM_SEED, SIM_TICK_HZ, SIM_TICK_SECONDS, SIM_WORKERS
- FLEET_SCALE, FLEET_ROBOTS
- RABBITMQ_*
"""

import asyncio
import logging
from typing import Any

import aio_pika
from pydantic import ValidationError

from factory_sim.control import SimulationController
from factory_sim.mq import connect, publish_event, setup_topology
from factory_sim.publisher import QueuedEventPublisher
from factory_sim.schemas import ControlCommand
from factory_sim.settings import Settings, rabbit_url, settings
from factory_sim.sim.errors import ConfigurationError

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s factory-sim %(message)s")
logger = logging.getLogger("factory-sim")


class SimRunner:
    """RabbitMQ-connected driver for one simulation engine."""
    def __init__(self, controller: SimulationController | None = None, cfg: Settings = settings) -> None:
        self.controller = controller or SimulationController()
        self.cfg = cfg
        self.exchange: aio_pika.abc.AbstractExchange | None = None
        self.publisher: QueuedEventPublisher | None = None
        self._connection: aio_pika.abc.AbstractRobustConnection | None = None

    async def run(self) -> None:
        """Connect, wire publishing and control, autostart, then tick until cancelled."""
        engine = self.controller.engine
        if self.cfg.publish_enabled:
            self._connection = await connect(rabbit_url())
            channel = await self._connection.channel()
            await channel.set_qos(prefetch_count=50)

            exchange, q_control = await setup_topology(channel, self.cfg.exchange_name, self.cfg.control_queue)
            self.exchange = exchange

            self.publisher = QueuedEventPublisher(self._publish, max_queue=self.cfg.event_queue_size)
            await self.publisher.start()
            engine.events.add_listener(self.publisher.publish_event)
            engine.add_listener(self.publisher.publish_notification)
            engine.report_publications(self.publisher.stats)

            await q_control.consume(self._on_control)

        if self.cfg.sim_autostart and engine.scenario is None:
            self.controller.load_builtin(self.cfg.sim_scenario, scale=self.cfg.fleet_scale)
            self.controller.engine.start()

        logger.info(
            "factory-sim started scenario=%s state=%s tick_hz=%s publish=%s",
            engine.scenario.name if engine.scenario else None,
            engine.state,
            self.cfg.sim_tick_hz,
            self.cfg.publish_enabled,
        )
        await engine.run(self.cfg.sim_tick_hz)

    async def _publish(self, routing_key: str, payload: dict[str, Any]) -> None:
        if self.exchange is None:
            raise RuntimeError("exchange not ready")
        await publish_event(self.exchange, routing_key, payload)

    async def _on_control(self, message: aio_pika.IncomingMessage) -> None:
        """Apply a control command; malformed or rejected commands are logged and acked."""
        try:
            command = ControlCommand.model_validate_json(message.body)
            # execute waits on the tick lock; keep the event loop free meanwhile
            result = await asyncio.to_thread(self.controller.execute, command)
            logger.info("control applied command=%s state=%s", result.command, result.state)
        except (ValidationError, ConfigurationError, KeyError) as exc:
            logger.warning("control rejected routing_key=%s: %s", message.routing_key, exc)
        except Exception as exc:  # noqa: BLE001
            logger.exception("control handler error: %s", exc)
        finally:
            await message.ack()

    async def close(self) -> None:
        self.controller.engine.stop()
        if self.publisher is not None:
            await self.publisher.stop()
            self.publisher = None
        if self._connection is not None:
            await self._connection.close()
            self._connection = None
        self.controller.close()


async def _main() -> None:
    runner = SimRunner()
    try:
        await runner.run()
    finally:
        await runner.close()


def main() -> None:
    asyncio.run(_main())


if __name__ == "__main__":
    main()
