# colombo/services/geosearch.py
# Nearby-article lookup against the MediaWiki geosearch API.

import logging
from typing import List, Optional

import httpx
from pydantic import BaseModel, ValidationError

from colombo.core.config import settings
from colombo.core.errors import DecodeError, InvalidArgument, NetworkError
from colombo.models.dto import Coordinate, GeoArticle

logger = logging.getLogger(__name__)

# Bounds enforced by the provider for `gsradius` (meters) and `gslimit`
MIN_RADIUS = 10
MAX_RADIUS = 10000
MAX_LIMIT = 500


class _GeosearchEntry(BaseModel):
    pageid: int
    title: str
    lat: float
    lon: float
    dist: float


class _GeosearchQuery(BaseModel):
    geosearch: List[_GeosearchEntry]


class _GeosearchResponse(BaseModel):
    query: _GeosearchQuery


def provider_radius(radius_meters: float) -> int:
    """Convert a radius in meters to the provider's integer radius, failing outside its bounds."""
    if radius_meters is None or radius_meters <= 0:
        raise InvalidArgument(f"radius must be positive, got {radius_meters}")
    if not MIN_RADIUS <= radius_meters <= MAX_RADIUS:
        raise InvalidArgument(
            f"radius {radius_meters}m is outside the supported range [{MIN_RADIUS}, {MAX_RADIUS}]"
        )
    return int(round(radius_meters))


class GeosearchClient:
    """Stateless client: one GET per call, no retries."""

    def __init__(
        self,
        base_url: str = settings.GEOSEARCH_API_URL,
        timeout: float = settings.GEOSEARCH_TIMEOUT,
        user_agent: str = settings.HTTP_USER_AGENT,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url
        self.timeout = timeout
        self.user_agent = user_agent
        self._client = client

    async def fetch_nearby(self, coordinate: Coordinate, radius_meters: float, limit: int) -> List[GeoArticle]:
        """
        Returns the articles within `radius_meters` of `coordinate`, nearest first.

        Raises:
            InvalidArgument: radius or limit outside the provider's bounds.
            NetworkError: transport failure, timeout or non-2xx status.
            DecodeError: the body is not a geosearch result.
        """
        radius = provider_radius(radius_meters)
        if limit is None or not 1 <= limit <= MAX_LIMIT:
            raise InvalidArgument(f"limit must be within [1, {MAX_LIMIT}], got {limit}")

        params = {
            "action": "query",
            "list": "geosearch",
            "gscoord": coordinate.as_pipe(),
            "gsradius": radius,
            "gslimit": limit,
            "format": "json",
        }

        try:
            if self._client is not None:
                response = await self._client.get(self.base_url, params=params, headers=self._headers(), timeout=self.timeout)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.get(self.base_url, params=params, headers=self._headers())
            response.raise_for_status()
        except httpx.TimeoutException as e:
            logger.warning(f"Geosearch timed out for {coordinate.as_csv()}: {e}")
            raise NetworkError("Article search timed out") from e
        except httpx.HTTPStatusError as e:
            logger.error(f"Geosearch returned status {e.response.status_code}")
            raise NetworkError(f"Article search failed with status {e.response.status_code}") from e
        except httpx.HTTPError as e:
            logger.warning(f"Geosearch transport error: {e}")
            raise NetworkError("Article search is unreachable") from e

        return self._decode(response)

    def _headers(self) -> dict:
        return {"User-Agent": self.user_agent}

    @staticmethod
    def _decode(response: httpx.Response) -> List[GeoArticle]:
        try:
            data = response.json()
        except ValueError as e:
            raise DecodeError("Article search returned invalid JSON") from e

        if isinstance(data, dict) and "error" in data:
            info = data["error"].get("info") if isinstance(data["error"], dict) else data["error"]
            raise DecodeError(f"Article search rejected the query: {info}")

        try:
            payload = _GeosearchResponse.model_validate(data)
            return [
                GeoArticle(
                    page_id=entry.pageid,
                    title=entry.title,
                    coordinate=Coordinate(latitude=entry.lat, longitude=entry.lon),
                    distance_meters=entry.dist,
                )
                for entry in payload.query.geosearch
            ]
        except ValidationError as e:
            raise DecodeError("Article search returned an unexpected payload") from e
