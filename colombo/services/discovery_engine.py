# colombo/services/discovery_engine.py
# Candidate search + article filtering, one cycle at a time.

import asyncio
from typing import List, Optional, Tuple

import structlog

from colombo.core.config import settings
from colombo.core.errors import ColomboError, InvalidArgument, ProviderError
from colombo.models.dto import (
    Coordinate,
    DiscoverySnapshot,
    DiscoveryStatus,
    Landmark,
    LandmarkCandidate,
)
from colombo.services.events import EventBus, LandmarksPublished
from colombo.services.geosearch import GeosearchClient
from colombo.services.landmark_source import LandmarkSource, PoiCategory

logger = structlog.get_logger(__name__)


class LandmarkDiscoveryEngine:
    """
    Owns the published landmark list.

    A cycle for coordinate `c`:
      1. search candidates around `c`
      2. drop candidates outside the search radius (providers are loose about it)
      3. sort by distance to `c`
      4. look up articles around each candidate, bounded-concurrently
      5. keep candidates with at least one article as Landmarks
      6. replace the published list in one assignment

    Only one cycle runs at a time. Triggers arriving meanwhile collapse into a
    single pending coordinate (the latest one) that runs once the current cycle
    is done.
    """

    def __init__(
        self,
        source: LandmarkSource,
        geosearch: GeosearchClient,
        events: Optional[EventBus] = None,
        search_radius_meters: float = settings.SEARCH_RADIUS_METERS,
        article_radius_meters: float = settings.ARTICLE_RADIUS_METERS,
        article_limit: int = settings.ARTICLE_LIMIT,
        category: PoiCategory = PoiCategory.LANDMARK,
        enrichment_concurrency: int = settings.ENRICHMENT_CONCURRENCY,
        enrichment_timeout_seconds: float = settings.ENRICHMENT_TIMEOUT_SECONDS,
    ):
        if search_radius_meters <= 0:
            raise InvalidArgument("search radius must be positive")
        if enrichment_concurrency < 1:
            raise InvalidArgument("enrichment concurrency must be at least 1")

        self.source = source
        self.geosearch = geosearch
        self.events = events or EventBus()
        self.search_radius_meters = search_radius_meters
        self.article_radius_meters = article_radius_meters
        self.article_limit = article_limit
        self.category = category
        self.enrichment_concurrency = enrichment_concurrency
        self.enrichment_timeout_seconds = enrichment_timeout_seconds

        self._snapshot = DiscoverySnapshot()
        self._landmarks: Tuple[Landmark, ...] = ()
        self._pending: Optional[Coordinate] = None
        self._task: Optional[asyncio.Task] = None
        self._last_coordinate: Optional[Coordinate] = None
        self.cycles_started = 0

    # --- Read side ---

    @property
    def landmarks(self) -> Tuple[Landmark, ...]:
        return self._landmarks

    @property
    def snapshot(self) -> DiscoverySnapshot:
        return self._snapshot.model_copy(deep=True)

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def get(self, landmark_id: str) -> Optional[Landmark]:
        for landmark in self._landmarks:
            if landmark.id == landmark_id:
                return landmark
        return None

    # --- Triggers ---

    def trigger(self, coordinate: Coordinate) -> None:
        """Request a cycle for `coordinate`; coalesced if one is already running."""
        self._last_coordinate = coordinate
        if self.is_running:
            logger.debug("discovery_coalesced", lat=coordinate.latitude, lon=coordinate.longitude)
            self._pending = coordinate
            return
        self._pending = None
        self._task = asyncio.get_running_loop().create_task(self._drain(coordinate))

    def refresh(self) -> bool:
        """Re-run discovery for the last known coordinate. Returns False when there is none."""
        if self._last_coordinate is None:
            return False
        self.trigger(self._last_coordinate)
        return True

    async def wait_idle(self) -> None:
        while self.is_running:
            await asyncio.shield(self._task)

    async def aclose(self) -> None:
        self._pending = None
        if self.is_running:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None

    async def _drain(self, coordinate: Coordinate) -> None:
        next_coordinate: Optional[Coordinate] = coordinate
        while next_coordinate is not None:
            try:
                await self.run_cycle(next_coordinate)
            except asyncio.CancelledError:
                self._stop_searching()
                raise
            except Exception:
                # Never let one broken cycle stop later ones
                logger.exception("discovery_cycle_crashed")
                self._publish(
                    next_coordinate, [], DiscoveryStatus.PROVIDER_ERROR, "Search error: unexpected failure"
                )
            next_coordinate, self._pending = self._pending, None

    def _stop_searching(self) -> None:
        status = self._snapshot.status
        if status == DiscoveryStatus.SEARCHING:
            status = DiscoveryStatus.IDLE
        self._snapshot = self._snapshot.model_copy(update={"is_searching": False, "status": status})

    # --- One cycle ---

    async def run_cycle(self, coordinate: Coordinate) -> DiscoverySnapshot:
        self.cycles_started += 1
        self._snapshot = self._snapshot.model_copy(update={"is_searching": True, "coordinate": coordinate})
        if self._snapshot.status == DiscoveryStatus.IDLE:
            self._snapshot.status = DiscoveryStatus.SEARCHING

        log = logger.bind(lat=coordinate.latitude, lon=coordinate.longitude, cycle=self.cycles_started)
        radius = self.search_radius_meters

        try:
            candidates = await self.source.search_nearby(coordinate, radius, self.category)
        except ProviderError as e:
            log.warning("candidate_search_failed", error=e.code, detail=e.detail)
            return self._publish(
                coordinate, [], DiscoveryStatus.PROVIDER_ERROR, f"Search error: {e.detail}"
            )

        if not candidates:
            log.info("no_candidates")
            return self._publish(
                coordinate, [], DiscoveryStatus.NO_CANDIDATES,
                f"No landmarks found within {radius:.0f} meters",
            )

        measured = [(coordinate.distance_to(c.coordinate), c) for c in candidates]
        ranked = sorted(
            (pair for pair in measured if pair[0] <= radius),
            key=lambda pair: pair[0],
        )
        if not ranked:
            log.info("candidates_out_of_radius", returned=len(candidates))
            return self._publish(
                coordinate, [], DiscoveryStatus.NO_CANDIDATES,
                f"No landmarks found within {radius:.0f} meters",
            )

        semaphore = asyncio.Semaphore(self.enrichment_concurrency)
        outcomes = await asyncio.gather(
            *(self._has_article(candidate, semaphore) for _, candidate in ranked)
        )

        landmarks: List[Landmark] = []
        failed = 0
        for (distance, candidate), outcome in zip(ranked, outcomes):
            if outcome is None:
                failed += 1
            elif outcome:
                landmarks.append(
                    Landmark(id=candidate.external_id, candidate=candidate, distance_from_user=distance)
                )

        log.info("discovery_done", candidates=len(ranked), landmarks=len(landmarks), failed=failed)

        if failed == len(ranked):
            return self._publish(
                coordinate, [], DiscoveryStatus.DEGRADED,
                "Article search is unavailable; showing no results", failed,
            )
        if not landmarks:
            return self._publish(
                coordinate, [], DiscoveryStatus.NO_LANDMARKS,
                f"No landmarks with articles found within {radius:.0f} meters", failed,
            )
        return self._publish(coordinate, landmarks, DiscoveryStatus.READY, None, failed)

    async def _has_article(self, candidate: LandmarkCandidate, semaphore: asyncio.Semaphore) -> Optional[bool]:
        """True/False for article found or not; None when the lookup failed."""
        async with semaphore:
            try:
                articles = await asyncio.wait_for(
                    self.geosearch.fetch_nearby(
                        candidate.coordinate, self.article_radius_meters, self.article_limit
                    ),
                    timeout=self.enrichment_timeout_seconds,
                )
            except asyncio.TimeoutError:
                logger.warning("article_lookup_timeout", candidate=candidate.name)
                return None
            except ColomboError as e:
                logger.warning("article_lookup_failed", candidate=candidate.name, error=e.code)
                return None

        if articles:
            logger.debug("article_found", candidate=candidate.name, title=articles[0].title,
                         distance=round(articles[0].distance_meters, 2), page_id=articles[0].page_id)
            return True
        logger.debug("article_missing", candidate=candidate.name)
        return False

    def _publish(
        self,
        coordinate: Coordinate,
        landmarks: List[Landmark],
        status: DiscoveryStatus,
        message: Optional[str],
        failed: int = 0,
    ) -> DiscoverySnapshot:
        landmarks.sort(key=lambda landmark: landmark.distance_from_user)
        snapshot = DiscoverySnapshot(
            status=status,
            landmarks=list(landmarks),
            coordinate=coordinate,
            message=message,
            is_searching=False,
            cycle=self._snapshot.cycle + 1,
            failed_enrichments=failed,
        )
        self._landmarks = tuple(landmarks)
        self._snapshot = snapshot
        self.events.publish(LandmarksPublished(snapshot=snapshot.model_copy(deep=True)))
        return snapshot.model_copy(deep=True)
