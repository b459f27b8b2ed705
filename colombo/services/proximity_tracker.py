# colombo/services/proximity_tracker.py
# Turns the raw stream of location fixes into a sparse "user moved" signal.

import time
from typing import Callable, List, Optional

import structlog

from colombo.core.config import settings
from colombo.core.errors import InvalidArgument, LocationError, LocationPermissionError
from colombo.models.dto import (
    AuthorizationStatus,
    Coordinate,
    ErrorInfo,
    LocationFix,
    TrackerSnapshot,
    TrackerStatus,
)
from colombo.services.events import EventBus, LocationEmitted, TrackerStatusChanged

logger = structlog.get_logger(__name__)

Listener = Callable[[Coordinate], None]


class ProximityTracker:
    """
    Dual gate over incoming fixes.

    A fix is emitted when nothing was emitted yet (cold start), or when it is
    farther than `movement_threshold_meters` from the last emitted coordinate
    AND at least `min_fetch_interval_seconds` passed since the last emission.
    Bookkeeping is updated before listeners run, so a listener that triggers
    slow work cannot be re-entered by a burst of fixes.
    """

    def __init__(
        self,
        movement_threshold_meters: float = settings.MOVEMENT_THRESHOLD_METERS,
        min_fetch_interval_seconds: float = settings.MIN_FETCH_INTERVAL_SECONDS,
        events: Optional[EventBus] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        if movement_threshold_meters < 0:
            raise InvalidArgument("movement threshold must not be negative")
        if min_fetch_interval_seconds < 0:
            raise InvalidArgument("minimum fetch interval must not be negative")

        self.movement_threshold_meters = movement_threshold_meters
        self.min_fetch_interval_seconds = min_fetch_interval_seconds
        self.events = events or EventBus()
        self._clock = clock
        self._listeners: List[Listener] = []

        self.status = TrackerStatus.STOPPED
        self.authorization = AuthorizationStatus.NOT_DETERMINED
        self.last_fix: Optional[LocationFix] = None
        self.last_emitted: Optional[Coordinate] = None
        self.last_fetch_time: Optional[float] = None
        self.last_error: Optional[ErrorInfo] = None

    # --- Wiring ---

    def add_listener(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def snapshot(self) -> TrackerSnapshot:
        return TrackerSnapshot(
            status=self.status,
            authorization=self.authorization,
            last_fix=self.last_fix,
            last_emitted=self.last_emitted,
            last_error=self.last_error,
        )

    # --- Lifecycle ---

    def start(self) -> None:
        if self.status == TrackerStatus.ACTIVE:
            return
        if self.authorization in (AuthorizationStatus.DENIED, AuthorizationStatus.RESTRICTED):
            self._set_status(TrackerStatus.BLOCKED)
            return
        if self.authorization == AuthorizationStatus.NOT_DETERMINED:
            self._set_status(TrackerStatus.WAITING_FOR_PERMISSION)
            return
        self._set_status(TrackerStatus.ACTIVE)

    def stop(self) -> None:
        """Stop emitting. Calling it again is a no-op."""
        if self.status == TrackerStatus.STOPPED:
            return
        self._set_status(TrackerStatus.STOPPED)

    def reset(self) -> None:
        """Forget the anchor so the next fix emits."""
        self.last_emitted = None
        self.last_fetch_time = None

    def on_authorization_changed(self, authorization: AuthorizationStatus) -> None:
        self.authorization = authorization
        if authorization == AuthorizationStatus.AUTHORIZED:
            self.last_error = None
            self._set_status(TrackerStatus.ACTIVE)
        elif authorization in (AuthorizationStatus.DENIED, AuthorizationStatus.RESTRICTED):
            self.last_error = LocationPermissionError().to_info()
            self._set_status(TrackerStatus.BLOCKED)
        else:
            self._set_status(TrackerStatus.WAITING_FOR_PERMISSION)

    # --- Inputs ---

    def on_fix(self, fix: LocationFix) -> Optional[Coordinate]:
        """Feed one fix; returns the coordinate when it was emitted downstream."""
        if self.status != TrackerStatus.ACTIVE:
            logger.debug("fix_ignored", status=self.status.value)
            return None

        self.last_fix = fix
        self.last_error = None
        coordinate = fix.coordinate
        now = self._clock()

        if self.last_emitted is not None:
            moved = self.last_emitted.distance_to(coordinate)
            if moved <= self.movement_threshold_meters:
                return None
            if self.last_fetch_time is not None and now - self.last_fetch_time < self.min_fetch_interval_seconds:
                logger.debug("fix_throttled", moved_m=round(moved, 1))
                return None

        self.last_emitted = coordinate
        self.last_fetch_time = now
        logger.info("location_emitted", lat=coordinate.latitude, lon=coordinate.longitude)

        self.events.publish(LocationEmitted(coordinate=coordinate))
        for listener in list(self._listeners):
            listener(coordinate)
        return coordinate

    def on_error(self, error: LocationError) -> None:
        """Classify a provider failure. Permission errors block until access is granted again."""
        self.last_error = error.to_info()
        if isinstance(error, LocationPermissionError):
            self.authorization = AuthorizationStatus.DENIED
            logger.warning("location_blocked", error=error.code)
            self._set_status(TrackerStatus.BLOCKED)
            return
        # Transient: keep listening for the next fix
        logger.warning("location_error", error=error.code, detail=error.detail)
        self.events.publish(TrackerStatusChanged(status=self.status, error=self.last_error))

    def _set_status(self, status: TrackerStatus) -> None:
        if status == self.status:
            return
        self.status = status
        logger.info("tracker_status", status=status.value)
        self.events.publish(TrackerStatusChanged(status=status, error=self.last_error))
