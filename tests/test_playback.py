"""
Tests for playback.
"""

import httpx
import numpy as np
import pytest

from src.assistant.audio import write_wav_mono_pcm16
from src.assistant.errors import PlaybackError
from src.assistant.playback import PlaybackController, decode_audio
from src.assistant.tts_types import CachedAudio, FreshAudio


class FakeOutput:
    def __init__(self, error=None):
        self.error = error
        self.calls = []

    def __call__(self, samples, sample_rate):
        if self.error is not None:
            raise self.error
        self.calls.append((samples, sample_rate))


@pytest.fixture
def wav_bytes(speech_block):
    return write_wav_mono_pcm16(speech_block.tobytes(), 16000)


def test_decode_wav(wav_bytes):
    samples, sample_rate = decode_audio(wav_bytes)

    assert sample_rate == 16000
    assert samples.dtype == np.float32
    assert len(samples) == 1600


def test_decode_rejects_garbage():
    with pytest.raises(PlaybackError):
        decode_audio(b"definitely not audio")

    with pytest.raises(PlaybackError):
        decode_audio(b"")


class TestPlay:
    @pytest.mark.asyncio
    async def test_fresh_audio_plays_payload(self, wav_bytes):
        output = FakeOutput()
        player = PlaybackController(output=output)

        assert await player.play(FreshAudio(payload=wav_bytes, url="https://example.com/a")) is True

        assert player.current_source == "payload"
        assert player.last_error is None
        assert player.is_loading is False
        assert output.calls[0][1] == 16000

    @pytest.mark.asyncio
    async def test_cached_audio_is_fetched(self, wav_bytes):
        seen = []

        def handler(request):
            seen.append(str(request.url))
            return httpx.Response(200, content=wav_bytes)

        output = FakeOutput()
        player = PlaybackController(
            output=output,
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        )
        url = "https://storage.example.com/audio/script-a.mp3?alt=media&token=t"

        assert await player.play(CachedAudio(url=url)) is True

        assert seen == [url]
        assert player.current_source == url
        assert len(output.calls) == 1

    @pytest.mark.asyncio
    async def test_file_url(self, tmp_path, wav_bytes):
        path = tmp_path / "script-a.wav"
        path.write_bytes(wav_bytes)
        output = FakeOutput()
        player = PlaybackController(output=output)

        assert await player.play(CachedAudio(url=path.as_uri())) is True
        assert len(output.calls) == 1

    @pytest.mark.asyncio
    async def test_fetch_failure_is_reported(self):
        player = PlaybackController(
            output=FakeOutput(),
            http_client=httpx.AsyncClient(
                transport=httpx.MockTransport(lambda request: httpx.Response(403))
            ),
        )

        assert await player.play(CachedAudio(url="https://storage.example.com/x")) is False
        assert player.last_error
        assert player.is_loading is False

    @pytest.mark.asyncio
    async def test_output_failure_is_reported(self, wav_bytes):
        player = PlaybackController(output=FakeOutput(error=RuntimeError("no output device")))

        assert await player.play(FreshAudio(payload=wav_bytes, url="u")) is False
        assert player.last_error == "no output device"

    @pytest.mark.asyncio
    async def test_error_cleared_on_next_success(self, wav_bytes):
        output = FakeOutput()
        player = PlaybackController(output=output)

        await player.play(FreshAudio(payload=b"junk", url="u"))
        assert player.last_error

        await player.play(FreshAudio(payload=wav_bytes, url="u"))
        assert player.last_error is None
