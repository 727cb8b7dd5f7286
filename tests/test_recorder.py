"""
Tests for the recording state machine.
"""

import asyncio
from dataclasses import replace

import numpy as np
import pytest

from src.assistant.capture import AudioCapture
from src.assistant.config import get_config
from src.assistant.errors import MicrophonePermissionError, RecorderStateError
from src.assistant.recorder import RecorderState, RecordingController


def make_controller(stream_factory, recorded, **overrides):
    config = replace(get_config(), **overrides) if overrides else get_config()
    capture = AudioCapture(config, stream_factory=stream_factory)
    controller = RecordingController(recorded.append, capture=capture, config=config)
    return controller, capture


async def wait_until(predicate, attempts=5000):
    for _ in range(attempts):
        if predicate():
            return
        await asyncio.sleep(0.001)
    raise AssertionError("condition not met in time")


class TestStartStop:
    @pytest.mark.asyncio
    async def test_start_opens_stream_and_records(self, stream_factory, speech_block):
        recorded = []
        controller, capture = make_controller(stream_factory, recorded)

        await controller.start()
        assert controller.state == RecorderState.RECORDING
        stream = stream_factory.last
        assert stream.started
        assert stream.kwargs["dtype"] == "int16"
        assert stream.kwargs["samplerate"] == 16000

        capture.feed(speech_block)
        capture.feed(speech_block)

        audio = await controller.stop()

        assert controller.state == RecorderState.IDLE
        assert stream.stopped and stream.closed
        assert audio is not None
        assert audio.chunk_count == 2
        assert audio.duration_ms == 200.0
        assert recorded == [audio]

    @pytest.mark.asyncio
    async def test_second_stop_is_noop(self, stream_factory, speech_block):
        recorded = []
        controller, capture = make_controller(stream_factory, recorded)

        await controller.start()
        capture.feed(speech_block)

        first = await controller.stop()
        second = await controller.stop()

        assert first is not None
        assert second is None
        assert len(recorded) == 1

    @pytest.mark.asyncio
    async def test_stop_while_idle_is_noop(self, stream_factory):
        recorded = []
        controller, _ = make_controller(stream_factory, recorded)

        assert await controller.stop() is None
        assert recorded == []

    @pytest.mark.asyncio
    async def test_start_twice_rejected(self, stream_factory):
        controller, _ = make_controller(stream_factory, [])

        await controller.start()
        with pytest.raises(RecorderStateError):
            await controller.start()

        await controller.stop()
        assert len(stream_factory.streams) == 1

    @pytest.mark.asyncio
    async def test_zero_chunks_produce_empty_audio(self, stream_factory):
        recorded = []
        controller, _ = make_controller(stream_factory, recorded)

        await controller.start()
        audio = await controller.stop()

        assert audio.is_empty
        assert audio.data.startswith(b"RIFF")
        assert recorded == [audio]

    @pytest.mark.asyncio
    async def test_blocks_after_stop_are_ignored(self, stream_factory, speech_block):
        recorded = []
        controller, capture = make_controller(stream_factory, recorded)

        await controller.start()
        capture.feed(speech_block)
        audio = await controller.stop()
        capture.feed(speech_block)

        assert audio.chunk_count == 1
        assert controller.session is None

    @pytest.mark.asyncio
    async def test_stop_cancels_monitor(self, stream_factory, silent_block):
        controller, capture = make_controller(stream_factory, [])

        await controller.start()
        capture.feed(silent_block)
        await asyncio.sleep(0.05)

        session = controller.session
        assert session.monitor.timer is not None

        await controller.stop()

        assert session.monitor_task.done()
        assert session.monitor.timer is None
        assert not session.monitor.is_running


class TestMicrophoneErrors:
    @pytest.mark.asyncio
    async def test_permission_denied(self, denied_stream_factory):
        recorded = []
        controller, capture = make_controller(denied_stream_factory, recorded)

        with pytest.raises(MicrophonePermissionError) as exc_info:
            await controller.start()

        assert isinstance(exc_info.value, PermissionError)
        assert controller.state == RecorderState.IDLE
        assert controller.session is None
        assert not capture.is_open
        assert recorded == []

    @pytest.mark.asyncio
    async def test_failed_start_releases_device(self, stream_factory):
        streams = []

        def failing_factory(**kwargs):
            stream = stream_factory(**kwargs)
            streams.append(stream)

            def boom():
                raise OSError("device busy")

            stream.start = boom
            return stream

        controller, capture = make_controller(failing_factory, [])

        with pytest.raises(MicrophonePermissionError):
            await controller.start()

        assert streams[0].closed
        assert controller.state == RecorderState.IDLE

        # Recorder is usable again afterwards.
        controller._capture = AudioCapture(controller.config, stream_factory=stream_factory)
        await controller.start()
        assert controller.state == RecorderState.RECORDING
        await controller.stop()


class TestStopWhileOpening:
    @pytest.mark.asyncio
    async def test_stop_during_open_releases_device(self, slow_stream_factory):
        recorded = []
        controller, capture = make_controller(slow_stream_factory, recorded)

        start = asyncio.create_task(controller.start())
        await asyncio.sleep(0.05)
        assert capture.is_opening

        audio = await controller.stop()
        assert audio.is_empty

        with pytest.raises(RecorderStateError):
            await start

        assert controller.state == RecorderState.IDLE
        assert controller.session is None
        assert not capture.is_open
        assert slow_stream_factory.last.closed
        assert recorded == [audio]

    @pytest.mark.asyncio
    async def test_next_recording_after_aborted_open(self, slow_stream_factory, speech_block):
        recorded = []
        controller, capture = make_controller(slow_stream_factory, recorded)

        start = asyncio.create_task(controller.start())
        await asyncio.sleep(0.05)
        await controller.stop()
        with pytest.raises(RecorderStateError):
            await start

        slow_stream_factory.delay = 0.0
        await controller.start()
        capture.feed(speech_block)
        audio = await controller.stop()

        assert audio.chunk_count == 1
        assert len(recorded) == 2
        assert all(stream.closed for stream in slow_stream_factory.streams)

    @pytest.mark.asyncio
    async def test_restart_refused_until_pending_open_finishes(self, slow_stream_factory):
        controller, capture = make_controller(slow_stream_factory, [])

        start = asyncio.create_task(controller.start())
        await asyncio.sleep(0.05)
        await controller.stop()

        with pytest.raises(RecorderStateError):
            await controller.start()
        assert controller.state == RecorderState.IDLE

        with pytest.raises(RecorderStateError):
            await start

        assert len(slow_stream_factory.streams) == 1
        assert not capture.is_open

    @pytest.mark.asyncio
    async def test_capture_refuses_second_open(self, stream_factory):
        capture = AudioCapture(get_config(), stream_factory=stream_factory)

        await capture.open(lambda block: None)
        with pytest.raises(RecorderStateError):
            await capture.open(lambda block: None)

        await capture.close()
        assert len(stream_factory.streams) == 1


class TestAutoStop:
    @pytest.mark.asyncio
    async def test_threshold_silence_auto_stops_exactly_once(self, stream_factory, stepping_clock):
        """Buffer held exactly at the threshold for the full duration stops once."""
        recorded = []
        config = replace(get_config(), silence_threshold=0.25, silence_poll_interval_ms=0)
        capture = AudioCapture(config, stream_factory=stream_factory)
        clock = stepping_clock(0.016)
        controller = RecordingController(recorded.append, capture=capture, config=config, clock=clock)

        await controller.start()
        # Peaks of +/-8192 map to 160/96 in the 8-bit view: deviation exactly 0.25.
        capture.feed(np.array([0, 8192, -8192] * 100, dtype=np.int16))

        await wait_until(lambda: recorded)

        assert controller.state == RecorderState.IDLE

        assert len(recorded) == 1
        assert clock.now >= 5.0
        assert stream_factory.last.closed
        assert await controller.stop() is None
        assert len(recorded) == 1

    @pytest.mark.asyncio
    async def test_sound_keeps_recording(self, stream_factory, speech_block, stepping_clock):
        recorded = []
        config = replace(get_config(), silence_poll_interval_ms=0)
        capture = AudioCapture(config, stream_factory=stream_factory)
        controller = RecordingController(
            recorded.append, capture=capture, config=config, clock=stepping_clock(0.016)
        )

        await controller.start()
        capture.feed(speech_block)

        for _ in range(1000):
            await asyncio.sleep(0)

        assert controller.state == RecorderState.RECORDING
        assert recorded == []
        await controller.stop()
        assert len(recorded) == 1
