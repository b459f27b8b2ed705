"""Tests for the playback state machine."""
import asyncio
from unittest.mock import AsyncMock, Mock

import pytest

from colombo.core.errors import (
    IllegalStateError,
    InvalidArgument,
    LoadFailure,
    ServerError,
    Unauthorized,
)
from colombo.models.dto import PlaybackState
from colombo.services.events import (
    EventBus,
    PlaybackFinished,
    PlaybackStateChanged,
)
from colombo.services.playback import PlaybackController

from conftest import FakeAudio, landmark, narration_result


def controller_with(narration_result_or_error=None, audio=None, events=None, tick_interval=0.01):
    narration = Mock()
    if isinstance(narration_result_or_error, Exception):
        narration.request_narration = AsyncMock(side_effect=narration_result_or_error)
    else:
        narration.request_narration = AsyncMock(return_value=narration_result_or_error or narration_result())
    audio = audio or FakeAudio()
    controller = PlaybackController(
        narration=narration,
        audio_factory=lambda: audio,
        events=events or EventBus(),
        tick_interval=tick_interval,
    )
    return controller, audio


def states_of(events):
    return [e.state for e in events if isinstance(e, PlaybackStateChanged)]


class TestPipeline:
    @pytest.mark.asyncio
    async def test_happy_path_reaches_playing(self):
        events = EventBus()
        received = []
        events.subscribe(received.append)
        controller, audio = controller_with(events=events)

        session = await controller.play(landmark(), "fr")

        assert session.state == PlaybackState.PLAYING
        assert session.duration_seconds == 10.0
        assert session.narration.story_text.startswith("Built")
        assert audio.loaded_uri == "https://cdn.colombo.guide/audio/1.wav"
        assert audio.playing
        assert states_of(received) == [
            PlaybackState.GENERATING_STORY,
            PlaybackState.PREPARING_AUDIO,
            PlaybackState.PLAYING,
        ]
        request = controller.narration.request_narration.await_args.args[0]
        assert request.language_hint == "fr"
        await controller.aclose()

    @pytest.mark.asyncio
    async def test_start_returns_while_generating(self):
        gate = asyncio.Event()

        async def slow_narration(request):
            await gate.wait()
            return narration_result()

        controller, _ = controller_with()
        controller.narration.request_narration = AsyncMock(side_effect=slow_narration)

        session = await controller.start(landmark())
        assert session.state == PlaybackState.GENERATING_STORY
        assert session.landmark_id == "node/1"

        gate.set()
        await asyncio.wait({controller._pipeline})
        assert controller.state == PlaybackState.PLAYING
        await controller.aclose()

    @pytest.mark.asyncio
    async def test_unauthorized_fails_then_acknowledge(self):
        events = EventBus()
        received = []
        events.subscribe(received.append)
        controller, audio = controller_with(Unauthorized(), events=events)

        session = await controller.play(landmark())

        assert session.state == PlaybackState.FAILED
        assert session.error.error == "UNAUTHORIZED"
        assert audio.loaded_uri is None

        session = controller.acknowledge()
        assert session.state == PlaybackState.IDLE
        assert session.error is None
        assert states_of(received) == [
            PlaybackState.GENERATING_STORY,
            PlaybackState.FAILED,
            PlaybackState.IDLE,
        ]
        failed = [e for e in received if isinstance(e, PlaybackStateChanged) and e.state == PlaybackState.FAILED]
        assert failed[0].error.error == "UNAUTHORIZED"

    @pytest.mark.asyncio
    async def test_server_error_fails(self):
        controller, _ = controller_with(ServerError())
        session = await controller.play(landmark())
        assert session.state == PlaybackState.FAILED
        assert session.error.error == "SERVER_ERROR"

    @pytest.mark.asyncio
    async def test_audio_failure_fails_and_closes(self):
        controller, audio = controller_with(audio=FakeAudio(error=LoadFailure()))

        session = await controller.play(landmark())

        assert session.state == PlaybackState.FAILED
        assert session.error.error == "AUDIO_LOAD_FAILED"
        assert audio.closed
        assert not controller.has_audio

    @pytest.mark.asyncio
    async def test_acknowledge_outside_failed_is_noop(self):
        controller, _ = controller_with()
        assert controller.acknowledge().state == PlaybackState.IDLE

    @pytest.mark.asyncio
    async def test_new_start_replaces_running_session(self):
        gate = asyncio.Event()
        calls = []

        async def narration(request):
            calls.append(request.landmark.id)
            if len(calls) == 1:
                await gate.wait()
            return narration_result(f"https://cdn.colombo.guide/audio/{request.landmark.id.replace('/', '-')}.wav")

        controller, audio = controller_with()
        controller.narration.request_narration = AsyncMock(side_effect=narration)

        await controller.start(landmark("node/1"))
        await asyncio.sleep(0)
        session = await controller.play(landmark("node/2", "Louvre"))
        gate.set()
        await asyncio.sleep(0)

        assert session.landmark_id == "node/2"
        assert controller.state == PlaybackState.PLAYING
        assert audio.loaded_uri.endswith("node-2.wav")
        await controller.aclose()


class TestTransport:
    @pytest.mark.asyncio
    async def test_pause_and_resume(self):
        controller, audio = controller_with()
        await controller.play(landmark())

        audio.current = 4.0
        session = controller.pause()
        assert session.state == PlaybackState.PAUSED
        assert session.current_time_seconds == 4.0
        assert not audio.playing

        assert controller.toggle().state == PlaybackState.PLAYING
        assert audio.playing
        await controller.aclose()

    @pytest.mark.asyncio
    async def test_pause_while_idle_is_illegal(self):
        controller, _ = controller_with()
        with pytest.raises(IllegalStateError):
            controller.pause()
        with pytest.raises(IllegalStateError):
            controller.resume()

    @pytest.mark.asyncio
    async def test_seek_is_clamped(self):
        controller, audio = controller_with()
        await controller.play(landmark())

        assert controller.seek(25).current_time_seconds == 10.0
        assert audio.current == 10.0
        assert controller.seek(-3).current_time_seconds == 0.0
        assert controller.seek(4.5).current_time_seconds == 4.5
        await controller.aclose()

    @pytest.mark.asyncio
    async def test_seek_before_duration_known_is_noop(self):
        controller, _ = controller_with()
        session = controller.seek(5)
        assert session.current_time_seconds == 0.0
        assert session.state == PlaybackState.IDLE

    @pytest.mark.asyncio
    async def test_seek_rejects_nan(self):
        controller, _ = controller_with()
        with pytest.raises(InvalidArgument):
            controller.seek(float("nan"))

    @pytest.mark.asyncio
    async def test_rate_applies_live_and_carries_over(self):
        controller, audio = controller_with()
        controller.set_rate(1.5)
        await controller.play(landmark())
        assert audio.rate == 1.5

        controller.set_rate(0.75)
        assert audio.rate == 0.75
        assert controller.session.playback_rate == 0.75
        await controller.aclose()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("rate", [0.25, 3.0, float("inf")])
    async def test_rate_out_of_range(self, rate):
        controller, _ = controller_with()
        with pytest.raises(InvalidArgument):
            controller.set_rate(rate)

    @pytest.mark.asyncio
    async def test_stop_from_any_state(self):
        controller, audio = controller_with()
        await controller.play(landmark())
        audio.current = 3.0

        session = await controller.stop()

        assert session.state == PlaybackState.IDLE
        assert session.current_time_seconds == 0.0
        assert session.duration_seconds == 0.0
        assert audio.closed
        assert not controller.has_audio
        assert (await controller.stop()).state == PlaybackState.IDLE

    @pytest.mark.asyncio
    async def test_stop_while_generating_cancels(self):
        gate = asyncio.Event()

        async def never(request):
            await gate.wait()
            return narration_result()

        controller, audio = controller_with()
        controller.narration.request_narration = AsyncMock(side_effect=never)
        await controller.start(landmark())
        await asyncio.sleep(0)

        session = await controller.stop()

        assert session.state == PlaybackState.IDLE
        assert audio.loaded_uri is None

    @pytest.mark.asyncio
    async def test_finish_returns_to_idle(self):
        events = EventBus()
        received = []
        events.subscribe(received.append)
        controller, audio = controller_with(audio=FakeAudio(duration=1.0), events=events)
        await controller.play(landmark())

        audio.current = 1.0
        for _ in range(50):
            if controller.state == PlaybackState.IDLE:
                break
            await asyncio.sleep(0.01)

        assert controller.state == PlaybackState.IDLE
        assert controller.session.current_time_seconds == 0.0
        assert audio.closed
        assert PlaybackFinished(landmark_id="node/1") in received
        assert states_of(received)[-2:] == [PlaybackState.FINISHED, PlaybackState.IDLE]

    @pytest.mark.asyncio
    async def test_broken_subscriber_does_not_stall_transitions(self):
        events = EventBus()

        def broken(event):
            raise RuntimeError("boom")

        events.subscribe(broken)
        controller, audio = controller_with(events=events)

        session = await controller.play(landmark())

        assert session.state == PlaybackState.PLAYING
        assert audio.playing
        await controller.aclose()
