# colombo/services/events.py
# Typed events and a small in-process bus. Components publish; the host (API,
# tests, a UI shell) subscribes or consumes them from a queue.

import asyncio
from dataclasses import dataclass, field
from typing import AsyncIterator, Callable, List, Optional

import structlog

from colombo.models.dto import (
    Coordinate,
    DiscoverySnapshot,
    ErrorInfo,
    PlaybackState,
    TrackerStatus,
)

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class Event:
    pass


@dataclass(frozen=True)
class LocationEmitted(Event):
    coordinate: Coordinate


@dataclass(frozen=True)
class TrackerStatusChanged(Event):
    status: TrackerStatus
    error: Optional[ErrorInfo] = None


@dataclass(frozen=True)
class LandmarksPublished(Event):
    snapshot: DiscoverySnapshot


@dataclass(frozen=True)
class PlaybackStateChanged(Event):
    previous: PlaybackState
    state: PlaybackState
    error: Optional[ErrorInfo] = None


@dataclass(frozen=True)
class PlaybackPositionChanged(Event):
    current_time_seconds: float
    duration_seconds: float


@dataclass(frozen=True)
class PlaybackFinished(Event):
    landmark_id: Optional[str] = None


Handler = Callable[[Event], None]


@dataclass
class EventBus:
    """Synchronous fan-out to registered handlers."""

    _handlers: List[Handler] = field(default_factory=list)

    def subscribe(self, handler: Handler) -> Callable[[], None]:
        self._handlers.append(handler)

        def unsubscribe() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return unsubscribe

    def publish(self, event: Event) -> None:
        # Copy so handlers may unsubscribe while being called
        for handler in list(self._handlers):
            try:
                handler(event)
            except Exception:
                logger.exception("event_handler_failed", event_type=type(event).__name__)

    async def listen(self) -> AsyncIterator[Event]:
        """Yield every published event in order until the consumer stops iterating.

        The queue is unbounded so no event is ever dropped; a consumer that
        falls behind only delays its own view.
        """
        queue: "asyncio.Queue[Event]" = asyncio.Queue()
        unsubscribe = self.subscribe(queue.put_nowait)
        try:
            while True:
                yield await queue.get()
        finally:
            unsubscribe()
