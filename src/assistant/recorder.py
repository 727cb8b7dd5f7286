"""
Recording state machine.

Idle -> start() -> Recording -> stop() (manual or silence) -> Idle

Every handle a recording needs (stream, chunk list, silence monitor and its
task) lives on the RecordingSession and is released on every exit from
Recording, including failed starts.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, List, Optional

import numpy as np
import structlog

from src.assistant.audio import RecordedAudio, assemble_recording
from src.assistant.capture import AudioCapture
from src.assistant.config import get_config
from src.assistant.errors import RecorderStateError
from src.assistant.silence import SilenceMonitor

logger = structlog.get_logger(__name__)


class RecorderState(str, Enum):
    """Current state of the recorder."""
    IDLE = "idle"
    RECORDING = "recording"


@dataclass
class RecordingSession:
    """Mutable state of one recording, owned by the controller."""
    chunks: List[np.ndarray] = field(default_factory=list)
    active: bool = True
    started_at: float = field(default_factory=time.time)
    monitor: Optional[SilenceMonitor] = None
    monitor_task: Optional[asyncio.Task] = None

    def append(self, block: np.ndarray) -> None:
        if self.active:
            self.chunks.append(block)


class RecordingController:
    """
    Orchestrates AudioCapture and SilenceMonitor.

    `on_audio` receives the assembled recording exactly once per start/stop cycle.
    """

    def __init__(
        self,
        on_audio: Callable[[RecordedAudio], Any],
        *,
        capture: Optional[AudioCapture] = None,
        config: Optional[Any] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config or get_config()
        self._capture = capture or AudioCapture(self.config)
        self._on_audio = on_audio
        self._clock = clock
        self._state = RecorderState.IDLE
        self._session: Optional[RecordingSession] = None

    @property
    def state(self) -> RecorderState:
        return self._state

    @property
    def session(self) -> Optional[RecordingSession]:
        return self._session

    async def start(self) -> None:
        """
        Open the microphone and begin recording.

        Raises:
            RecorderStateError: already recording, or stopped while the microphone was opening
            MicrophonePermissionError: the microphone could not be opened
        """
        if self._state != RecorderState.IDLE:
            raise RecorderStateError("Recording already in progress")
        if self._capture.is_open or self._capture.is_opening:
            raise RecorderStateError("Microphone is still being released")

        session = RecordingSession()
        # Claim the state before the first await so a concurrent start() is rejected.
        self._state = RecorderState.RECORDING
        self._session = session

        try:
            await self._capture.open(session.append)
            if self._session is not session or not session.active:
                # stop() ran while the device was opening; that cycle is already over.
                raise RecorderStateError("Recording stopped before the microphone opened")
            session.monitor = SilenceMonitor(
                self._capture.read_amplitude,
                self.stop,
                threshold=self.config.silence_threshold,
                duration_s=self.config.silence_duration_seconds,
                interval_s=self.config.silence_poll_interval_seconds,
                clock=self._clock,
            )
        except BaseException:
            session.active = False
            if self._session is session:
                self._session = None
                self._state = RecorderState.IDLE
            await self._capture.close()
            raise

        session.monitor_task = asyncio.create_task(session.monitor.run())
        session.monitor_task.add_done_callback(self._on_monitor_done)
        logger.info(
            "Recording started",
            silence_threshold=self.config.silence_threshold,
            silence_duration_ms=self.config.silence_duration_ms,
        )

    async def stop(self) -> Optional[RecordedAudio]:
        """
        Stop recording and hand the assembled audio to `on_audio`.

        Returns:
            The recording, or None when there was nothing to stop
        """
        session = self._session
        if self._state != RecorderState.RECORDING or session is None:
            return None

        self._state = RecorderState.IDLE
        self._session = None
        session.active = False

        try:
            if session.monitor:
                session.monitor.stop()
            task = session.monitor_task
            if task and not task.done() and task is not asyncio.current_task():
                task.cancel()
                await asyncio.gather(task, return_exceptions=True)
        finally:
            await self._capture.close()

        audio = assemble_recording(session.chunks, self.config.sample_rate)
        session.chunks.clear()

        logger.info(
            "Recording stopped",
            chunks=audio.chunk_count,
            duration_ms=round(audio.duration_ms, 1),
            elapsed_s=round(time.time() - session.started_at, 2),
        )

        self._on_audio(audio)
        return audio

    @staticmethod
    def _on_monitor_done(task: asyncio.Task) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error("Silence monitor failed", error_type=type(error).__name__, error=str(error))
