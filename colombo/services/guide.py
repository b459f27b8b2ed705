# colombo/services/guide.py
# Wires tracker -> discovery -> playback and is the single entry point for the host.

from typing import Optional

import structlog

from colombo.core.config import settings
from colombo.core.errors import LandmarkNotFound, LocationError
from colombo.models.dto import (
    AuthorizationStatus,
    DiscoverySnapshot,
    GuideSnapshot,
    LocationFix,
    PlaybackSession,
    TrackerSnapshot,
)
from colombo.services.discovery_engine import LandmarkDiscoveryEngine
from colombo.services.events import EventBus
from colombo.services.playback import PlaybackController
from colombo.services.proximity_tracker import ProximityTracker

logger = structlog.get_logger(__name__)


class TourGuide:
    """
    Facade over the three stateful components. All mutation goes through the
    component that owns the state; callers only get snapshots back.
    """

    def __init__(
        self,
        tracker: ProximityTracker,
        discovery: LandmarkDiscoveryEngine,
        playback: PlaybackController,
        events: Optional[EventBus] = None,
        language: Optional[str] = settings.NARRATION_LANGUAGE,
    ):
        self.tracker = tracker
        self.discovery = discovery
        self.playback = playback
        self.events = events or tracker.events
        self.language = language
        self._remove_listener = tracker.add_listener(discovery.trigger)

    # --- Location input ---

    def set_authorization(self, authorization: AuthorizationStatus) -> TrackerSnapshot:
        self.tracker.on_authorization_changed(authorization)
        return self.tracker.snapshot()

    def ingest_fix(self, fix: LocationFix) -> bool:
        """Returns True when the fix triggered a discovery cycle."""
        return self.tracker.on_fix(fix) is not None

    def report_location_error(self, error: LocationError) -> TrackerSnapshot:
        self.tracker.on_error(error)
        return self.tracker.snapshot()

    def start_location_updates(self) -> TrackerSnapshot:
        self.tracker.start()
        return self.tracker.snapshot()

    def stop_location_updates(self) -> TrackerSnapshot:
        self.tracker.stop()
        return self.tracker.snapshot()

    def refresh(self) -> bool:
        """Re-run discovery around the last known position, ignoring the throttle."""
        if self.discovery.refresh():
            return True
        fix = self.tracker.last_fix
        if fix is None:
            return False
        self.tracker.reset()
        return self.ingest_fix(fix)

    # --- Playback input ---

    async def select_landmark(self, landmark_id: str, language_hint: Optional[str] = None) -> PlaybackSession:
        landmark = self.discovery.get(landmark_id)
        if landmark is None:
            raise LandmarkNotFound(f"Landmark {landmark_id} is not in the current results")
        logger.info("landmark_selected", landmark_id=landmark_id, name=landmark.name)
        return await self.playback.start(landmark, language_hint or self.language)

    # --- Read side ---

    def landmarks(self) -> DiscoverySnapshot:
        return self.discovery.snapshot

    def session(self) -> PlaybackSession:
        return self.playback.session

    def snapshot(self) -> GuideSnapshot:
        return GuideSnapshot(location=self.location(), landmarks=self.landmarks(), playback=self.session())

    def location(self) -> TrackerSnapshot:
        return self.tracker.snapshot()

    async def aclose(self) -> None:
        self._remove_listener()
        self.tracker.stop()
        await self.playback.aclose()
        await self.discovery.aclose()
