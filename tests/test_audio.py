"""Tests for the buffered audio player."""
import io
import wave

import httpx
import pytest

from colombo.core.errors import InvalidSource, LoadFailure
from colombo.services.audio import BufferedAudioPlayer, probe_duration, validate_audio_uri

from conftest import mock_client


def wav_bytes(seconds: float, rate: int = 8000) -> bytes:
    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as wav:
        wav.setnchannels(1)
        wav.setsampwidth(2)
        wav.setframerate(rate)
        wav.writeframes(b"\x00\x00" * int(seconds * rate))
    return buffer.getvalue()


class TestProbe:
    def test_header_wins(self):
        headers = httpx.Headers({"X-Content-Duration": "42.5"})
        assert probe_duration(b"ID3...", headers) == 42.5

    def test_wav_header(self):
        assert probe_duration(wav_bytes(2.0), httpx.Headers()) == pytest.approx(2.0)

    def test_unknown_format(self):
        assert probe_duration(b"\xff\xfb\x90\x00", httpx.Headers()) is None

    @pytest.mark.parametrize("uri", ["", "ftp://cdn.colombo.guide/a.mp3", "/relative/a.mp3"])
    def test_invalid_sources(self, uri):
        with pytest.raises(InvalidSource):
            validate_audio_uri(uri)


class TestBufferedAudioPlayer:
    @pytest.mark.asyncio
    async def test_load_and_play_head(self, clock):
        async with mock_client(lambda request: httpx.Response(200, content=wav_bytes(3.0))) as client:
            player = BufferedAudioPlayer(client=client, clock=clock)
            assert await player.load("https://cdn.colombo.guide/audio/1.wav") == pytest.approx(3.0)

        player.play()
        clock.advance(1.0)
        assert player.position() == pytest.approx(1.0)

        player.set_rate(2.0)
        clock.advance(0.5)
        assert player.position() == pytest.approx(2.0)

        player.pause()
        clock.advance(10)
        assert player.position() == pytest.approx(2.0)

        player.seek(99)
        assert player.position() == pytest.approx(3.0)
        player.seek(-1)
        assert player.position() == 0.0

    @pytest.mark.asyncio
    async def test_position_capped_at_duration(self, clock):
        headers = {"X-Content-Duration": "1.5"}
        async with mock_client(lambda request: httpx.Response(200, content=b"mp3", headers=headers)) as client:
            player = BufferedAudioPlayer(client=client, clock=clock)
            await player.load("https://cdn.colombo.guide/audio/1.mp3")

        player.play()
        clock.advance(5)
        assert player.position() == 1.5

    @pytest.mark.asyncio
    async def test_download_failure(self, clock):
        async with mock_client(lambda request: httpx.Response(404)) as client:
            player = BufferedAudioPlayer(client=client, clock=clock)
            with pytest.raises(LoadFailure):
                await player.load("https://cdn.colombo.guide/audio/missing.mp3")

    @pytest.mark.asyncio
    async def test_unknown_duration(self, clock):
        async with mock_client(lambda request: httpx.Response(200, content=b"\xff\xfb")) as client:
            player = BufferedAudioPlayer(client=client, clock=clock)
            with pytest.raises(LoadFailure):
                await player.load("https://cdn.colombo.guide/audio/1.mp3")

    @pytest.mark.asyncio
    async def test_close_releases_content(self, clock):
        async with mock_client(lambda request: httpx.Response(200, content=wav_bytes(1.0))) as client:
            player = BufferedAudioPlayer(client=client, clock=clock)
            await player.load("https://cdn.colombo.guide/audio/1.wav")

        player.play()
        await player.close()
        assert player.closed
        assert player.content is None
        assert not player.playing
