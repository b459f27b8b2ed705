"""Shared builders and fakes for the guide pipeline tests."""

import math
from typing import Callable, Dict, List, Optional

import httpx
import pytest

from colombo.core.errors import ColomboError
from colombo.models.dto import (
    Coordinate,
    GeoArticle,
    Landmark,
    LandmarkCandidate,
    LocationFix,
    NarrationResult,
)

EIFFEL_TOWER = Coordinate(latitude=48.8584, longitude=2.2945)


def offset(origin: Coordinate, north_m: float = 0.0, east_m: float = 0.0) -> Coordinate:
    """Small-distance offset, good to a few centimeters at these scales."""
    dlat = north_m / 111_320.0
    dlon = east_m / (111_320.0 * math.cos(math.radians(origin.latitude)))
    return Coordinate(latitude=origin.latitude + dlat, longitude=origin.longitude + dlon)


def fix_at(coordinate: Coordinate) -> LocationFix:
    return LocationFix(coordinate=coordinate)


def candidate(external_id: str, name: str, coordinate: Coordinate) -> LandmarkCandidate:
    return LandmarkCandidate(external_id=external_id, name=name, coordinate=coordinate)


def landmark(external_id: str = "node/1", name: str = "Eiffel Tower",
             coordinate: Coordinate = EIFFEL_TOWER) -> Landmark:
    return Landmark(id=external_id, candidate=candidate(external_id, name, coordinate), distance_from_user=0.0)


def article(coordinate: Coordinate, title: str = "Article") -> GeoArticle:
    return GeoArticle(page_id=1, title=title, coordinate=coordinate, distance_meters=0.0)


def narration_result(audio_uri: str = "https://cdn.colombo.guide/audio/1.wav") -> NarrationResult:
    return NarrationResult(placeName="Eiffel Tower", storyText="Built for the 1889 fair.", audioUri=audio_uri)


def mock_client(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class FakeSource:
    """LandmarkSource returning canned candidates and recording every call."""

    def __init__(self, candidates: Optional[List[LandmarkCandidate]] = None, error: Optional[ColomboError] = None):
        self.candidates = candidates or []
        self.error = error
        self.calls: List[Coordinate] = []

    async def search_nearby(self, coordinate, radius_meters, category):
        self.calls.append(coordinate)
        if self.error is not None:
            raise self.error
        return list(self.candidates)


class FakeGeosearch:
    """Answers per candidate coordinate: a list of articles, or an exception to raise."""

    def __init__(self, answers: Optional[Dict[Coordinate, object]] = None, default=None):
        self.answers = answers or {}
        self.default = default if default is not None else []
        self.calls: List[Coordinate] = []

    async def fetch_nearby(self, coordinate, radius_meters, limit):
        self.calls.append(coordinate)
        answer = self.answers.get(coordinate, self.default)
        if isinstance(answer, BaseException):
            raise answer
        return list(answer)


class FakeAudio:
    """AudioBackend with a manually driven play head."""

    def __init__(self, duration: float = 10.0, error: Optional[ColomboError] = None):
        self.duration = duration
        self.error = error
        self.loaded_uri: Optional[str] = None
        self.current = 0.0
        self.rate = 1.0
        self.playing = False
        self.closed = False

    async def load(self, uri: str) -> float:
        self.loaded_uri = uri
        if self.error is not None:
            raise self.error
        return self.duration

    def play(self) -> None:
        self.playing = True

    def pause(self) -> None:
        self.playing = False

    def seek(self, seconds: float) -> None:
        self.current = seconds

    def set_rate(self, rate: float) -> None:
        self.rate = rate

    def position(self) -> float:
        return self.current

    async def close(self) -> None:
        self.playing = False
        self.closed = True


class ManualClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return ManualClock()
