# colombo/services/playback.py
# State machine driving narration -> audio preparation -> playback.

import asyncio
import math
from typing import Callable, List, Optional, Tuple

import structlog

from colombo.core.config import settings
from colombo.core.errors import (
    AudioError,
    ColomboError,
    IllegalStateError,
    InvalidArgument,
    NarrationError,
)
from colombo.models.dto import (
    Landmark,
    NarrationRequest,
    PlaybackSession,
    PlaybackState,
)
from colombo.services.audio import AudioBackend, BufferedAudioPlayer
from colombo.services.events import (
    EventBus,
    PlaybackFinished,
    PlaybackPositionChanged,
    PlaybackStateChanged,
)
from colombo.services.narration import NarrationService

logger = structlog.get_logger(__name__)

ACTIVE_STATES = (PlaybackState.PLAYING, PlaybackState.PAUSED)


class PlaybackController:
    """
    Owns the single playback session and the audio resource behind it.

        IDLE -> GENERATING_STORY -> PREPARING_AUDIO -> PLAYING <-> PAUSED
        PLAYING -> FINISHED -> IDLE
        GENERATING_STORY / PREPARING_AUDIO -> FAILED -> (acknowledge) -> IDLE
        any -> (stop) -> IDLE

    Every session gets a generation number; work that resumes after an await
    checks it and drops its result when the session was replaced meanwhile.
    """

    def __init__(
        self,
        narration: NarrationService,
        audio_factory: Callable[[], AudioBackend] = BufferedAudioPlayer,
        events: Optional[EventBus] = None,
        tick_interval: float = settings.PLAYBACK_TICK_SECONDS,
        min_rate: float = settings.MIN_PLAYBACK_RATE,
        max_rate: float = settings.MAX_PLAYBACK_RATE,
    ):
        self.narration = narration
        self.audio_factory = audio_factory
        self.events = events or EventBus()
        self.tick_interval = tick_interval
        self.min_rate = min_rate
        self.max_rate = max_rate

        self._session = PlaybackSession()
        self._audio: Optional[AudioBackend] = None
        self._pipeline: Optional[asyncio.Task] = None
        self._ticker: Optional[asyncio.Task] = None
        self._generation = 0

    # --- Read side ---

    @property
    def session(self) -> PlaybackSession:
        return self._session.model_copy()

    @property
    def state(self) -> PlaybackState:
        return self._session.state

    @property
    def has_audio(self) -> bool:
        return self._audio is not None

    # --- Session lifecycle ---

    async def start(self, landmark: Landmark, language_hint: Optional[str] = None) -> PlaybackSession:
        """Replace whatever is running with a new narration for `landmark`. Returns immediately."""
        stale = self._detach()
        rate = self._session.playback_rate
        generation = self._generation

        self._session = PlaybackSession(playback_rate=rate, landmark_id=landmark.id)
        self._transition(PlaybackState.GENERATING_STORY)
        self._pipeline = asyncio.get_running_loop().create_task(
            self._run(landmark, language_hint, generation)
        )
        await self._cleanup(stale)
        return self.session

    async def play(self, landmark: Landmark, language_hint: Optional[str] = None) -> PlaybackSession:
        """Like `start`, but waits until playback began or failed."""
        await self.start(landmark, language_hint)
        pipeline = self._pipeline
        if pipeline is not None:
            await asyncio.wait({pipeline})
        return self.session

    async def stop(self) -> PlaybackSession:
        """Back to IDLE from any state; cancels narration and releases the audio resource."""
        stale = self._detach()
        self._session.current_time_seconds = 0.0
        self._session.duration_seconds = 0.0
        self._session.error = None
        self._transition(PlaybackState.IDLE)
        await self._cleanup(stale)
        return self.session

    def acknowledge(self) -> PlaybackSession:
        """Clear a failure. Other states are left alone."""
        if self._session.state == PlaybackState.FAILED:
            self._session.error = None
            self._session.current_time_seconds = 0.0
            self._session.duration_seconds = 0.0
            self._transition(PlaybackState.IDLE)
        return self.session

    async def aclose(self) -> None:
        await self.stop()

    # --- Transport commands ---

    def pause(self) -> PlaybackSession:
        if self._session.state == PlaybackState.PAUSED:
            return self.session
        self._require_active("pause")
        self._audio.pause()
        self._sample_position()
        self._transition(PlaybackState.PAUSED)
        return self.session

    def resume(self) -> PlaybackSession:
        if self._session.state == PlaybackState.PLAYING:
            return self.session
        self._require_active("resume")
        self._audio.play()
        self._transition(PlaybackState.PLAYING)
        return self.session

    def toggle(self) -> PlaybackSession:
        if self._session.state == PlaybackState.PLAYING:
            return self.pause()
        return self.resume()

    def seek(self, seconds: float) -> PlaybackSession:
        """Move the play head, clamped to [0, duration]. Ignored until the duration is known."""
        if seconds is None or not math.isfinite(seconds):
            raise InvalidArgument(f"seek position must be a finite number, got {seconds}")
        session = self._session
        if session.state not in ACTIVE_STATES or session.duration_seconds <= 0 or self._audio is None:
            logger.debug("seek_ignored", state=session.state.value)
            return self.session

        target = max(0.0, min(float(seconds), session.duration_seconds))
        self._audio.seek(target)
        session.current_time_seconds = target
        self.events.publish(PlaybackPositionChanged(target, session.duration_seconds))
        return self.session

    def set_rate(self, rate: float) -> PlaybackSession:
        """Change speed without pausing. Stored for the next session when nothing plays."""
        if rate is None or not math.isfinite(rate) or not self.min_rate <= rate <= self.max_rate:
            raise InvalidArgument(
                f"playback rate must be within [{self.min_rate}, {self.max_rate}], got {rate}"
            )
        self._session.playback_rate = float(rate)
        if self._audio is not None:
            self._audio.set_rate(float(rate))
        return self.session

    # --- Internals ---

    def _require_active(self, command: str) -> None:
        if (
            self._session.state not in ACTIVE_STATES
            or self._session.duration_seconds <= 0
            or self._audio is None
        ):
            raise IllegalStateError(f"Cannot {command} while {self._session.state.value.lower()}")

    def _transition(self, state: PlaybackState) -> None:
        previous = self._session.state
        self._session.state = state
        if previous == state:
            return
        logger.info("playback_state", previous=previous.value, state=state.value,
                    landmark_id=self._session.landmark_id)
        self.events.publish(PlaybackStateChanged(previous, state, self._session.error))

    def _sample_position(self) -> float:
        session = self._session
        position = max(0.0, min(self._audio.position(), session.duration_seconds))
        session.current_time_seconds = position
        return position

    def _detach(self) -> Tuple[List[asyncio.Task], Optional[AudioBackend]]:
        """Invalidate the running session synchronously; returns what still has to be awaited."""
        self._generation += 1
        current = asyncio.current_task()
        tasks = []
        for task in (self._pipeline, self._ticker):
            if task is not None and not task.done() and task is not current:
                task.cancel()
                tasks.append(task)
        self._pipeline = None
        self._ticker = None
        audio, self._audio = self._audio, None
        return tasks, audio

    async def _cleanup(self, stale: Tuple[List[asyncio.Task], Optional[AudioBackend]]) -> None:
        tasks, audio = stale
        if tasks:
            await asyncio.wait(tasks)
        if audio is not None:
            try:
                await audio.close()
            except Exception:
                logger.exception("audio_close_failed")

    def _fail(self, error: ColomboError) -> None:
        logger.warning("playback_failed", error=error.code, detail=error.detail,
                       landmark_id=self._session.landmark_id)
        if self._ticker is not None and self._ticker is not asyncio.current_task():
            self._ticker.cancel()
        self._ticker = None
        self._audio = None
        self._session.error = error.to_info()
        self._session.current_time_seconds = 0.0
        self._transition(PlaybackState.FAILED)

    async def _run(self, landmark: Landmark, language_hint: Optional[str], generation: int) -> None:
        request = NarrationRequest(landmark=landmark, language_hint=language_hint)
        try:
            result = await self.narration.request_narration(request)
        except NarrationError as e:
            if generation == self._generation:
                self._fail(e)
            return
        if generation != self._generation:
            return

        self._session.narration = result
        self._transition(PlaybackState.PREPARING_AUDIO)

        audio = self.audio_factory()
        self._audio = audio
        try:
            duration = await audio.load(result.audio_uri)
        except AudioError as e:
            if generation == self._generation:
                self._fail(e)
            await self._cleanup(([], audio))
            return
        if generation != self._generation:
            return

        self._session.duration_seconds = duration
        self._session.current_time_seconds = 0.0
        audio.set_rate(self._session.playback_rate)
        audio.play()
        self._transition(PlaybackState.PLAYING)
        self._ticker = asyncio.get_running_loop().create_task(self._tick(generation))

    async def _tick(self, generation: int) -> None:
        while generation == self._generation:
            await asyncio.sleep(self.tick_interval)
            if generation != self._generation or self._audio is None:
                return
            if self._session.state != PlaybackState.PLAYING:
                continue
            position = self._sample_position()
            self.events.publish(PlaybackPositionChanged(position, self._session.duration_seconds))
            if position >= self._session.duration_seconds:
                await self._finish()
                return

    async def _finish(self) -> None:
        session = self._session
        session.current_time_seconds = session.duration_seconds
        self._ticker = None
        audio, self._audio = self._audio, None
        self._generation += 1

        self._transition(PlaybackState.FINISHED)
        self.events.publish(PlaybackFinished(landmark_id=session.landmark_id))
        session.current_time_seconds = 0.0
        session.duration_seconds = 0.0
        self._transition(PlaybackState.IDLE)
        await self._cleanup(([], audio))
