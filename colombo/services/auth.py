# colombo/services/auth.py
"""Bearer-token sources for the narration backend.

The narration backend accepts Supabase access tokens. SupabaseTokenProvider
keeps one fresh by exchanging the user's refresh token through the Supabase
auth REST endpoint (no client library needed).
"""
import time
from typing import Callable, Optional, Protocol

import httpx
import structlog

from colombo.core.config import settings

logger = structlog.get_logger(__name__)

# Refresh this many seconds before the access token actually expires
EXPIRY_SKEW_SECONDS = 60


class TokenProvider(Protocol):
    async def get_access_token(self) -> Optional[str]: ...


class StaticTokenProvider:
    def __init__(self, token: Optional[str] = settings.NARRATION_API_TOKEN):
        self._token = token

    async def get_access_token(self) -> Optional[str]:
        return self._token or None


class SupabaseTokenProvider:
    def __init__(
        self,
        url: Optional[str] = settings.SUPABASE_URL,
        anon_key: Optional[str] = settings.SUPABASE_ANON_KEY,
        refresh_token: Optional[str] = settings.SUPABASE_REFRESH_TOKEN,
        timeout: float = settings.SUPABASE_TIMEOUT,
        client: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.url = url.rstrip("/") if url else None
        self.anon_key = anon_key
        self.refresh_token = refresh_token
        self.timeout = timeout
        self._client = client
        self._clock = clock
        self._access_token: Optional[str] = None
        self._expires_at: float = 0.0

    async def get_access_token(self) -> Optional[str]:
        if self._access_token and self._clock() < self._expires_at - EXPIRY_SKEW_SECONDS:
            return self._access_token
        if not (self.url and self.anon_key and self.refresh_token):
            logger.warning("supabase_session_unavailable")
            return None
        return await self._refresh()

    async def _refresh(self) -> Optional[str]:
        endpoint = f"{self.url}/auth/v1/token"
        headers = {"apikey": self.anon_key, "Content-Type": "application/json"}
        params = {"grant_type": "refresh_token"}
        body = {"refresh_token": self.refresh_token}
        try:
            if self._client is not None:
                response = await self._client.post(endpoint, params=params, json=body, headers=headers, timeout=self.timeout)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(endpoint, params=params, json=body, headers=headers)
            response.raise_for_status()
            data = response.json()
            access_token = data["access_token"]
        except httpx.HTTPStatusError as e:
            logger.error("supabase_refresh_rejected", status_code=e.response.status_code)
            self._access_token = None
            return None
        except (httpx.HTTPError, ValueError, KeyError, TypeError) as e:
            logger.error("supabase_refresh_failed", error=str(e))
            self._access_token = None
            return None

        now = self._clock()
        expires_at = data.get("expires_at")
        if expires_at is None:
            expires_at = now + float(data.get("expires_in", 3600))
        self._access_token = access_token
        self._expires_at = float(expires_at)
        # Supabase rotates refresh tokens on every exchange
        self.refresh_token = data.get("refresh_token", self.refresh_token)
        logger.info("supabase_session_refreshed", expires_in=round(self._expires_at - now))
        return access_token
