from __future__ import annotations

"""
File: factory_sim/mq.py
Purpose: RabbitMQ connectivity and topology for factory-sim.
Key responsibilities:
- Declare the event exchange and the control queue.
- Publish derived events and scenario notifications as JSON.
"""

import json
from typing import Any

import aio_pika
from aio_pika import ExchangeType


async def connect(rabbit_url: str, connection_name: str = "factory-sim") -> aio_pika.RobustConnection:
    """Robust connection; the broker UI lists it under `connection_name`."""
    return await aio_pika.connect_robust(rabbit_url, client_properties={"connection_name": connection_name})


async def setup_topology(
    channel: aio_pika.abc.AbstractRobustChannel,
    exchange_name: str,
    control_queue: str,
):
    """Declare exchange/control queue and bind the control routing keys."""
    exchange = await channel.declare_exchange(exchange_name, ExchangeType.TOPIC, durable=True)

    queue_control = await channel.declare_queue(control_queue, durable=True)
    await queue_control.bind(exchange, routing_key="sim.control.*")

    return exchange, queue_control


def event_routing_key(event_type: str, prefix: str = "robot") -> str:
    """robot.location_update, robot.emergency, scenario.scenario_started, ..."""
    return f"{prefix}.{event_type.lower()}"


async def publish_event(exchange: aio_pika.abc.AbstractExchange, routing_key: str, payload: dict[str, Any]) -> None:
    """Send a derived event or scenario notification as compact JSON.

    Robot events carry their sha1 `event_id` as the AMQP message id so consumers can
    deduplicate redeliveries; notifications have none. `event_type` becomes the message type.
    """
    message = aio_pika.Message(
        body=json.dumps(payload, separators=(",", ":"), sort_keys=True).encode("utf-8"),
        content_type="application/json",
        delivery_mode=aio_pika.DeliveryMode.PERSISTENT,
        message_id=payload.get("event_id"),
        type=payload.get("event_type"),
    )
    await exchange.publish(message, routing_key=routing_key)
