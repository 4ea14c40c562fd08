from __future__ import annotations

"""
File: factory_sim/sim/metrics.py
Purpose: Run-level counters for the scenario engine.
Key responsibilities:
- Tick count and tick wall-time average.
- Derived events by type, timeline errors and behavior anomalies.
- Dropped and failed publications reported by the event publisher.
"""

from collections import Counter
from dataclasses import dataclass, field

from factory_sim.sim.events import DerivedEvent


@dataclass
class SimulationMetrics:
    """Mutable counters owned by one ScenarioEngine."""
    total_ticks: int = 0
    total_events: int = 0
    total_tick_ms: float = 0.0
    max_tick_ms: float = 0.0
    timeline_events_applied: int = 0
    timeline_errors: int = 0
    events_by_type: Counter = field(default_factory=Counter)

    def record_tick(self, elapsed_ms: float, events: list[DerivedEvent]) -> None:
        self.total_ticks += 1
        self.total_tick_ms += elapsed_ms
        self.max_tick_ms = max(self.max_tick_ms, elapsed_ms)
        self.total_events += len(events)
        self.events_by_type.update(event.event_type for event in events)

    def reset(self) -> None:
        self.total_ticks = 0
        self.total_events = 0
        self.total_tick_ms = 0.0
        self.max_tick_ms = 0.0
        self.timeline_events_applied = 0
        self.timeline_errors = 0
        self.events_by_type.clear()


def compute_metrics(
    metrics: SimulationMetrics,
    anomalies: int = 0,
    listener_failures: int = 0,
    publications: dict[str, int] | None = None,
) -> dict[str, float | int | dict[str, int]]:
    """Serializable view used by the status endpoint."""
    avg_tick_ms = metrics.total_tick_ms / metrics.total_ticks if metrics.total_ticks else 0.0
    return {
        "total_ticks": metrics.total_ticks,
        "total_events": metrics.total_events,
        "avg_tick_ms": round(avg_tick_ms, 6),
        "max_tick_ms": round(metrics.max_tick_ms, 6),
        "timeline_events_applied": metrics.timeline_events_applied,
        "timeline_errors": metrics.timeline_errors,
        "anomalies": anomalies,
        "listener_failures": listener_failures,
        "dropped_publications": (publications or {}).get("dropped", 0),
        "failed_publications": (publications or {}).get("failed", 0),
        "events_by_type": dict(sorted(metrics.events_by_type.items())),
    }
