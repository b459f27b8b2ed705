# colombo/services/place_directory.py
# Lookup of places already known to the narration backend, stored in Supabase.

from typing import Optional

import httpx
import structlog
from pydantic import ValidationError

from colombo.core.config import settings
from colombo.models.dto import DatabasePlace

logger = structlog.get_logger(__name__)


class PlaceDirectory:
    """Reads the `places` table through Supabase's REST interface."""

    def __init__(
        self,
        url: Optional[str] = settings.SUPABASE_URL,
        anon_key: Optional[str] = settings.SUPABASE_ANON_KEY,
        timeout: float = settings.SUPABASE_TIMEOUT,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.url = url.rstrip("/") if url else None
        self.anon_key = anon_key
        self.timeout = timeout
        self._client = client
        self.is_loading = False

    @property
    def configured(self) -> bool:
        return bool(self.url and self.anon_key)

    def _headers(self) -> dict:
        return {
            "apikey": self.anon_key,
            "Authorization": f"Bearer {self.anon_key}",
            "Accept": "application/json",
        }

    async def get_place(self, external_id: str) -> Optional[DatabasePlace]:
        """Return the stored record for `external_id`, or None when absent or on error."""
        if not self.configured:
            logger.warning("place_directory_not_configured")
            return None

        endpoint = f"{self.url}/rest/v1/places"
        params = {"select": "id,mapbox_id,place_name", "mapbox_id": f"eq.{external_id}"}
        logger.debug("place_lookup", external_id=external_id)

        self.is_loading = True
        try:
            if self._client is not None:
                response = await self._client.get(endpoint, params=params, headers=self._headers(), timeout=self.timeout)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.get(endpoint, params=params, headers=self._headers())
            response.raise_for_status()
            rows = response.json()
            places = [DatabasePlace.model_validate(row) for row in rows]
        except httpx.HTTPStatusError as e:
            logger.error("place_lookup_status_error", status_code=e.response.status_code, external_id=external_id)
            return None
        except (httpx.HTTPError, ValueError, TypeError, ValidationError) as e:
            logger.error("place_lookup_failed", error=str(e), external_id=external_id)
            return None
        finally:
            self.is_loading = False

        if not places:
            logger.debug("place_not_found", external_id=external_id)
            return None
        place = places[0]
        logger.debug("place_found", id=place.id, mapbox_id=place.mapbox_id, name=place.place_name)
        return place
