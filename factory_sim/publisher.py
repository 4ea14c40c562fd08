from __future__ import annotations

"""
File: factory_sim/publisher.py
Purpose: Decouple the tick loop from the message bus.
Key responsibilities:
- Accept events from any thread without blocking (bounded, drop-oldest).
- Drain to an async sink on the event loop, isolating sink failures.
"""

import asyncio
from collections import deque
import contextlib
import logging
import threading
from typing import Any, Awaitable, Callable

from factory_sim.mq import event_routing_key
from factory_sim.sim.events import DerivedEvent

logger = logging.getLogger("factory-sim.publisher")

PublishSink = Callable[[str, dict[str, Any]], Awaitable[None]]


class QueuedEventPublisher:
    """Bounded hand-off between simulation listeners and an async transport."""
    def __init__(self, sink: PublishSink, max_queue: int = 10000) -> None:
        if max_queue <= 0:
            raise ValueError(f"invalid queue size: {max_queue}")
        self.sink = sink
        self.published = 0
        self.dropped = 0
        self.failed = 0
        self._buffer: deque[tuple[str, dict[str, Any]]] = deque(maxlen=max_queue)
        self._lock = threading.Lock()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._wakeup: asyncio.Event | None = None
        self._task: asyncio.Task | None = None

    @property
    def pending(self) -> int:
        return len(self._buffer)

    def stats(self) -> dict[str, int]:
        return {"published": self.published, "dropped": self.dropped, "failed": self.failed, "pending": self.pending}

    def submit(self, routing_key: str, payload: dict[str, Any]) -> None:
        """Enqueue without waiting; the oldest message is dropped when full."""
        with self._lock:
            if len(self._buffer) == self._buffer.maxlen:
                self.dropped += 1
            self._buffer.append((routing_key, payload))
        loop, wakeup = self._loop, self._wakeup
        if loop is not None and wakeup is not None and not loop.is_closed():
            loop.call_soon_threadsafe(wakeup.set)

    def publish_event(self, event: DerivedEvent) -> None:
        """EventGenerator listener."""
        self.submit(event_routing_key(event.event_type), event.to_dict())

    def publish_notification(self, kind: str, data: dict[str, Any]) -> None:
        """ScenarioEngine listener."""
        self.submit(event_routing_key(kind, prefix="scenario"), {"event_type": kind, **data})

    async def start(self) -> None:
        if self._task is not None:
            return
        self._loop = asyncio.get_running_loop()
        self._wakeup = asyncio.Event()
        self._task = asyncio.create_task(self._drain_loop())
        if self._buffer:
            self._wakeup.set()

    async def stop(self, flush: bool = True) -> None:
        task = self._task
        if task is None:
            return
        if flush:
            await self.flush()
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        self._task = None
        self._wakeup = None
        self._loop = None

    async def flush(self) -> None:
        """Send everything currently buffered."""
        while True:
            item = self._pop()
            if item is None:
                return
            await self._send(*item)

    def _pop(self) -> tuple[str, dict[str, Any]] | None:
        with self._lock:
            return self._buffer.popleft() if self._buffer else None

    async def _drain_loop(self) -> None:
        assert self._wakeup is not None
        while True:
            await self._wakeup.wait()
            self._wakeup.clear()
            await self.flush()

    async def _send(self, routing_key: str, payload: dict[str, Any]) -> None:
        try:
            await self.sink(routing_key, payload)
            self.published += 1
        except Exception as exc:  # noqa: BLE001
            self.failed += 1
            logger.exception("publish failed routing_key=%s: %s", routing_key, exc)
