# colombo/services/landmark_source.py
# Point-of-interest search. The engine depends on the LandmarkSource protocol;
# OverpassLandmarkSource is the OpenStreetMap-backed implementation.

from enum import Enum
from typing import Dict, List, Optional, Protocol

import httpx
import structlog

from colombo.core.config import settings
from colombo.core.errors import DecodeError, InvalidArgument, NetworkError, ProviderError
from colombo.models.dto import Coordinate, LandmarkCandidate, PostalAddress

logger = structlog.get_logger(__name__)


class PoiCategory(str, Enum):
    LANDMARK = "LANDMARK"
    MUSEUM = "MUSEUM"
    MONUMENT = "MONUMENT"
    PLACE_OF_WORSHIP = "PLACE_OF_WORSHIP"
    PARK = "PARK"


# Overpass tag selectors per category
CATEGORY_SELECTORS: Dict[PoiCategory, List[str]] = {
    PoiCategory.LANDMARK: [
        '["tourism"~"^(attraction|museum|artwork|viewpoint|gallery)$"]',
        '["historic"~"^(monument|memorial|castle|ruins|building|church|fort|archaeological_site)$"]',
        '["man_made"~"^(tower|lighthouse|bridge)$"]["name"]',
    ],
    PoiCategory.MUSEUM: ['["tourism"="museum"]', '["tourism"="gallery"]'],
    PoiCategory.MONUMENT: ['["historic"~"^(monument|memorial)$"]'],
    PoiCategory.PLACE_OF_WORSHIP: ['["amenity"="place_of_worship"]'],
    PoiCategory.PARK: ['["leisure"~"^(park|garden)$"]'],
}


class LandmarkSource(Protocol):
    async def search_nearby(
        self, coordinate: Coordinate, radius_meters: float, category: PoiCategory
    ) -> List[LandmarkCandidate]:
        """
        Candidates near `coordinate` in provider relevance order.

        An empty list means nothing was found; provider failures raise ProviderError.
        """
        ...


def build_query(coordinate: Coordinate, radius_meters: float, category: PoiCategory, timeout: int) -> str:
    around = f"(around:{radius_meters:.0f},{coordinate.latitude},{coordinate.longitude})"
    clauses = "\n".join(f"  nwr{selector}{around};" for selector in CATEGORY_SELECTORS[category])
    return f"[out:json][timeout:{timeout}];\n(\n{clauses}\n);\nout center tags;"


def _address_from_tags(tags: Dict[str, str]) -> Optional[PostalAddress]:
    address = PostalAddress(
        house_number=tags.get("addr:housenumber"),
        street=tags.get("addr:street"),
        city=tags.get("addr:city"),
        region=tags.get("addr:state") or tags.get("addr:province"),
        postcode=tags.get("addr:postcode"),
        country=tags.get("addr:country"),
    )
    return address if address.formatted() else None


def parse_element(element: dict) -> Optional[LandmarkCandidate]:
    """Turn an Overpass element into a candidate; None when it has no usable position or name."""
    tags = element.get("tags") or {}
    name = tags.get("name")
    if not name:
        return None

    # Nodes carry lat/lon; ways and relations only a computed center
    lat = element.get("lat")
    lon = element.get("lon")
    if lat is None or lon is None:
        center = element.get("center") or {}
        lat, lon = center.get("lat"), center.get("lon")
    if lat is None or lon is None:
        return None

    try:
        coordinate = Coordinate(latitude=lat, longitude=lon)
    except ValueError:
        return None

    return LandmarkCandidate(
        external_id=f"{element.get('type', 'node')}/{element.get('id')}",
        name=name,
        coordinate=coordinate,
        address=_address_from_tags(tags),
        phone=tags.get("phone") or tags.get("contact:phone"),
        website_url=tags.get("website") or tags.get("contact:website") or tags.get("url"),
    )


class OverpassLandmarkSource:
    """Fetch named points of interest from OpenStreetMap via the Overpass API."""

    def __init__(
        self,
        url: str = settings.OVERPASS_API_URL,
        timeout: float = settings.OVERPASS_TIMEOUT,
        user_agent: str = settings.HTTP_USER_AGENT,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.url = url
        self.timeout = timeout
        self.user_agent = user_agent
        self._client = client

    async def search_nearby(
        self,
        coordinate: Coordinate,
        radius_meters: float,
        category: PoiCategory = PoiCategory.LANDMARK,
    ) -> List[LandmarkCandidate]:
        if radius_meters is None or radius_meters <= 0:
            raise InvalidArgument(f"radius must be positive, got {radius_meters}")

        query = build_query(coordinate, radius_meters, category, timeout=int(self.timeout))
        logger.debug(
            "poi_search",
            lat=coordinate.latitude,
            lon=coordinate.longitude,
            radius=radius_meters,
            category=category.value,
        )

        headers = {"User-Agent": self.user_agent}
        try:
            # Leave the server its own query timeout before giving up locally
            if self._client is not None:
                response = await self._client.post(self.url, data={"data": query}, headers=headers, timeout=self.timeout + 10)
            else:
                async with httpx.AsyncClient(timeout=self.timeout + 10) as client:
                    response = await client.post(self.url, data={"data": query}, headers=headers)
        except httpx.TimeoutException as e:
            logger.warning("poi_search_timeout", error=str(e))
            raise NetworkError("Landmark search timed out") from e
        except httpx.HTTPError as e:
            logger.warning("poi_search_transport_error", error=str(e))
            raise NetworkError("Landmark search is unreachable") from e

        if response.status_code in (401, 403):
            raise ProviderError(f"Landmark search refused access ({response.status_code})")
        if response.status_code >= 400:
            logger.error("poi_search_status_error", status_code=response.status_code)
            raise NetworkError(f"Landmark search failed with status {response.status_code}")

        try:
            data = response.json()
            elements = data["elements"]
        except (ValueError, KeyError, TypeError) as e:
            raise DecodeError("Landmark search returned a malformed response") from e
        if not isinstance(elements, list):
            raise DecodeError("Landmark search returned a malformed response")

        candidates: List[LandmarkCandidate] = []
        seen = set()
        for element in elements:
            if not isinstance(element, dict):
                continue
            candidate = parse_element(element)
            if candidate is None or candidate.external_id in seen:
                continue
            seen.add(candidate.external_id)
            candidates.append(candidate)

        logger.info("poi_search_done", returned=len(elements), usable=len(candidates))
        return candidates
