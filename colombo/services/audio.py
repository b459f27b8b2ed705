# colombo/services/audio.py
# Audio resource used by the playback controller.

import io
import time
import wave
from typing import Callable, Optional, Protocol

import httpx
import structlog

from colombo.core.config import settings
from colombo.core.errors import InvalidSource, LoadFailure

logger = structlog.get_logger(__name__)

DURATION_HEADERS = ("x-content-duration", "content-duration")


class AudioBackend(Protocol):
    """One open audio resource. `load` resolves the duration before playback starts."""

    async def load(self, uri: str) -> float: ...

    def play(self) -> None: ...

    def pause(self) -> None: ...

    def seek(self, seconds: float) -> None: ...

    def set_rate(self, rate: float) -> None: ...

    def position(self) -> float: ...

    async def close(self) -> None: ...


def validate_audio_uri(uri: str) -> httpx.URL:
    try:
        url = httpx.URL(uri)
    except (httpx.InvalidURL, TypeError) as e:
        raise InvalidSource() from e
    if url.scheme not in ("http", "https") or not url.host:
        raise InvalidSource()
    return url


def probe_duration(content: bytes, headers: httpx.Headers) -> Optional[float]:
    """Duration in seconds from the response headers or, for WAV, the RIFF header."""
    for name in DURATION_HEADERS:
        value = headers.get(name)
        if value:
            try:
                return float(value)
            except ValueError:
                logger.warning("bad_duration_header", header=name, value=value)
    if content[:4] == b"RIFF":
        try:
            with wave.open(io.BytesIO(content)) as wav:
                rate = wav.getframerate()
                return wav.getnframes() / rate if rate else None
        except (wave.Error, EOFError):
            return None
    return None


class BufferedAudioPlayer:
    """
    Downloads the whole narration before playback and keeps the play head on a
    monotonic clock, honouring pause, seek and rate. Pushing samples to a
    speaker is the host platform's job; it reads `content` and `position()`.
    """

    def __init__(
        self,
        timeout: float = settings.AUDIO_DOWNLOAD_TIMEOUT,
        client: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.timeout = timeout
        self._client = client
        self._clock = clock
        self.content: Optional[bytes] = None
        self.duration: float = 0.0
        self.rate: float = 1.0
        self.playing = False
        self.closed = False
        self._anchor_position = 0.0
        self._anchor_time = 0.0

    async def load(self, uri: str) -> float:
        url = validate_audio_uri(uri)
        try:
            if self._client is not None:
                response = await self._client.get(url, timeout=self.timeout)
            else:
                async with httpx.AsyncClient(timeout=self.timeout, follow_redirects=True) as client:
                    response = await client.get(url)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error("audio_download_status_error", status_code=e.response.status_code)
            raise LoadFailure() from e
        except httpx.HTTPError as e:
            logger.error("audio_download_failed", error=str(e))
            raise LoadFailure() from e

        duration = probe_duration(response.content, response.headers)
        if duration is None or duration <= 0:
            logger.error("audio_duration_unknown", uri=uri, size=len(response.content))
            raise LoadFailure("Failed to load audio: duration unknown")

        self.content = response.content
        self.duration = duration
        self._anchor_position = 0.0
        self._anchor_time = self._clock()
        logger.info("audio_loaded", bytes=len(self.content), duration=round(duration, 2))
        return duration

    def position(self) -> float:
        if not self.playing:
            return self._anchor_position
        elapsed = (self._clock() - self._anchor_time) * self.rate
        return min(self.duration, self._anchor_position + elapsed)

    def _rebase(self) -> None:
        self._anchor_position = self.position()
        self._anchor_time = self._clock()

    def play(self) -> None:
        if self.playing:
            return
        self._anchor_time = self._clock()
        self.playing = True

    def pause(self) -> None:
        if not self.playing:
            return
        self._rebase()
        self.playing = False

    def seek(self, seconds: float) -> None:
        self._anchor_position = max(0.0, min(seconds, self.duration))
        self._anchor_time = self._clock()

    def set_rate(self, rate: float) -> None:
        self._rebase()
        self.rate = rate

    async def close(self) -> None:
        self.playing = False
        self.closed = True
        self.content = None
        self._anchor_position = 0.0
