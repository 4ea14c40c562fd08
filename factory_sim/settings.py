"""
File: factory_sim/settings.py
Purpose: Environment-backed configuration for factory-sim.
Key responsibilities:
- Parse RabbitMQ and API settings.
- Define fleet scale presets and simulation parameters.
"""

from dataclasses import dataclass
import os


DEFAULT_SCALE_MAP = {
    "mini": 5,
    "small": 20,
    "demo": 100,
    "large": 500,
    "load": 1000,
}


def _int_env(name: str, default: int = 0) -> int:
    """Parse an integer env var with a fallback."""
    raw = os.getenv(name, "")
    if raw == "":
        return default
    return int(raw)


def _bool_env(name: str, default: bool) -> bool:
    raw = os.getenv(name, "")
    if raw == "":
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _build_scale_map() -> dict[str, int]:
    """Return robot counts per scale with an optional global override."""
    scale_map = dict(DEFAULT_SCALE_MAP)
    robots = _int_env("FLEET_ROBOTS", 0)
    if robots > 0:
        for key in scale_map:
            scale_map[key] = robots
    return scale_map


SCALE_MAP = _build_scale_map()


def robots_for_scale(scale: str) -> int:
    if scale not in SCALE_MAP:
        raise ValueError(f"invalid scale: {scale}")
    return SCALE_MAP[scale]


@dataclass(frozen=True)
class Settings:
    """Simulation configuration parsed from environment."""
    rabbit_host: str = os.getenv("RABBITMQ_HOST", "rabbitmq")
    rabbit_port: int = int(os.getenv("RABBITMQ_PORT", "5672"))
    rabbit_user: str = os.getenv("RABBITMQ_USER", "factory")
    rabbit_pass: str = os.getenv("RABBITMQ_PASS", "factorypass")
    exchange_name: str = os.getenv("RABBITMQ_EXCHANGE", "factory.sim")
    control_queue: str = os.getenv("RABBITMQ_CONTROL_QUEUE", "factory-sim.control")
    publish_enabled: bool = _bool_env("SIM_PUBLISH_ENABLED", True)
    event_queue_size: int = int(os.getenv("SIM_EVENT_QUEUE_SIZE", "10000"))
    fleet_scale: str = os.getenv("FLEET_SCALE", "demo")
    sim_scenario: str = os.getenv("SIM_SCENARIO", "daily_operation")
    sim_autostart: bool = _bool_env("SIM_AUTOSTART", True)
    sim_seed: int = int(os.getenv("SIM_SEED", "42"))
    sim_tick_hz: float = float(os.getenv("SIM_TICK_HZ", "5"))
    sim_tick_seconds: float = float(os.getenv("SIM_TICK_SECONDS", "1.0"))
    sim_workers: int = int(os.getenv("SIM_WORKERS", "1"))
    sim_start_time: str = os.getenv("SIM_START_TIME", "08:00")
    emergency_probability: float = float(os.getenv("SIM_EMERGENCY_PROBABILITY", "0.0001"))
    health_issue_probability: float = float(os.getenv("SIM_HEALTH_ISSUE_PROBABILITY", "0.0005"))
    work_move_probability: float = float(os.getenv("SIM_WORK_MOVE_PROBABILITY", "0.1"))
    location_update_interval: int = int(os.getenv("SIM_LOCATION_UPDATE_INTERVAL", "10"))
    heartbeat_interval: int = int(os.getenv("SIM_HEARTBEAT_INTERVAL", "50"))
    world_width: int = int(os.getenv("WORLD_WIDTH", "100"))
    world_height: int = int(os.getenv("WORLD_HEIGHT", "50"))


settings = Settings()


def rabbit_url() -> str:
    return f"amqp://{settings.rabbit_user}:{settings.rabbit_pass}@{settings.rabbit_host}:{settings.rabbit_port}/"
