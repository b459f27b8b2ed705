# colombo/services/narration.py
# Requests the story text and audio URL for a landmark from the narration backend.

import logging
from typing import Optional

import httpx
from pydantic import ValidationError

from colombo.core.config import settings
from colombo.core.errors import (
    InvalidResponse,
    InvalidURL,
    MissingData,
    NarrationDecodeError,
    NarrationNetworkError,
    NarrationTimeout,
    ServerError,
    Unauthorized,
)
from colombo.models.dto import (
    NarrationRequest,
    NarrationResult,
    PlaceInfo,
    PlaceProperties,
    PlaceVisitBody,
)
from colombo.services.auth import TokenProvider

logger = logging.getLogger(__name__)

VISIT_PATH = "/api/places/visit"


def build_visit_body(request: NarrationRequest) -> dict:
    landmark = request.landmark
    body = PlaceVisitBody(
        place=PlaceInfo(
            map_kit_id=landmark.id,
            text=landmark.name,
            location=landmark.coordinate.as_csv(),
            place_name=landmark.name,
            properties=PlaceProperties(landmark=True),
        ),
        language=request.language_hint,
    )
    return body.model_dump(by_alias=True, exclude_none=True)


class NarrationService:
    """
    One POST per call, no retry. Every failure maps to a NarrationError subclass:

        400 -> MissingData, 401 -> Unauthorized, 408 -> NarrationTimeout,
        500 -> ServerError, any other non-200 -> InvalidResponse
    """

    def __init__(
        self,
        token_provider: TokenProvider,
        base_url: str = settings.NARRATION_BASE_URL,
        timeout: float = settings.NARRATION_TIMEOUT_SECONDS,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.token_provider = token_provider
        self.base_url = base_url
        self.timeout = timeout
        self._client = client

    def _visit_url(self) -> httpx.URL:
        try:
            url = httpx.URL(self.base_url.rstrip("/") + VISIT_PATH)
        except (httpx.InvalidURL, TypeError, AttributeError) as e:
            raise InvalidURL() from e
        if url.scheme not in ("http", "https") or not url.host:
            raise InvalidURL()
        return url

    async def request_narration(self, request: NarrationRequest) -> NarrationResult:
        url = self._visit_url()

        # No credential, no request
        try:
            token = await self.token_provider.get_access_token()
        except Exception as e:
            logger.warning(f"Token provider failed: {e}")
            token = None
        if not token:
            raise Unauthorized()

        headers = {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
        }
        body = build_visit_body(request)
        logger.info(f"Requesting narration for {request.landmark.name} ({request.landmark.id})")

        try:
            if self._client is not None:
                response = await self._client.post(url, json=body, headers=headers, timeout=self.timeout)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(url, json=body, headers=headers)
        except httpx.TimeoutException as e:
            logger.warning(f"Narration request timed out after {self.timeout}s")
            raise NarrationTimeout(cause=e) from e
        except httpx.HTTPError as e:
            logger.error(f"Narration transport error: {e}")
            raise NarrationNetworkError(f"Network error: {e}", cause=e) from e

        status_code = response.status_code
        if status_code == 200:
            try:
                return NarrationResult.model_validate(response.json())
            except (ValueError, ValidationError) as e:
                logger.error(f"Narration response could not be decoded: {e}")
                raise NarrationDecodeError() from e
        if status_code == 400:
            raise MissingData()
        if status_code == 401:
            raise Unauthorized()
        if status_code == 408:
            raise NarrationTimeout()
        if status_code == 500:
            raise ServerError()

        logger.error(f"Narration backend returned unexpected status {status_code}")
        raise InvalidResponse(f"Invalid server response ({status_code})")
