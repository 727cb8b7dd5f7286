"""
Application facade.

Wires identity, recording and the processing pipeline together. A signed-in
session gates recording, and a recording cannot start while the previous one
is still being processed.
"""

from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional

import structlog

from src.assistant.audio import RecordedAudio
from src.assistant.auth import IdentityClient
from src.assistant.capture import AudioCapture
from src.assistant.config import Config, get_config
from src.assistant.errors import AuthError, PipelineBusyError, SessionRequiredError
from src.assistant.pipeline import (
    NOTICE_PROCESSING_FAILED,
    PipelineOutcome,
    PipelineResult,
    VoicePipeline,
)
from src.assistant.playback import PlaybackController
from src.assistant.recorder import RecorderState, RecordingController
from src.assistant.routing import get_script_resolver
from src.assistant.storage import create_storage
from src.assistant.stt import TranscriptionClient
from src.assistant.tts import SpeechSynthesisClient

logger = structlog.get_logger(__name__)


class VoiceAssistant:
    def __init__(
        self,
        identity: IdentityClient,
        pipeline: VoicePipeline,
        recorder: Optional[RecordingController] = None,
        config: Optional[Config] = None,
        capture: Optional[AudioCapture] = None,
    ):
        self.config = config or get_config()
        self._identity = identity
        self._pipeline = pipeline
        self._recorder = recorder or RecordingController(
            self._on_recorded_audio, capture=capture, config=self.config
        )
        self._run_task: Optional[asyncio.Task] = None
        self._last_result: Optional[PipelineResult] = None
        self._notices: List[str] = []
        self.total_recordings = 0

    @property
    def recorder(self) -> RecordingController:
        return self._recorder

    @property
    def pipeline(self) -> VoicePipeline:
        return self._pipeline

    @property
    def last_result(self) -> Optional[PipelineResult]:
        return self._last_result

    @property
    def run_task(self) -> Optional[asyncio.Task]:
        return self._run_task

    @property
    def is_signed_in(self) -> bool:
        return self._identity.current_session is not None

    # Identity

    async def sign_in(self, email: str, password: str) -> bool:
        try:
            await self._identity.sign_in(email, password)
        except AuthError as e:
            logger.error("Error signing in", error=str(e))
            return False
        return True

    async def sign_up(self, email: str, password: str) -> bool:
        try:
            await self._identity.sign_up(email, password)
        except AuthError as e:
            logger.error("Error signing up", error=str(e))
            return False
        return True

    async def sign_out(self) -> None:
        try:
            await self._identity.sign_out()
        except AuthError as e:
            logger.error("Error signing out", error=str(e))

    # Recording

    async def start_recording(self) -> None:
        """
        Raises:
            SessionRequiredError: nobody is signed in
            PipelineBusyError: the previous recording is still being processed
            RecorderStateError: already recording
            MicrophonePermissionError: the microphone could not be opened
        """
        if not self.is_signed_in:
            raise SessionRequiredError("Sign in to record")
        if self._pipeline.is_busy:
            raise PipelineBusyError("Previous recording is still being processed")

        await self._recorder.start()
        self.total_recordings += 1

    async def stop_recording(self) -> Optional[RecordedAudio]:
        return await self._recorder.stop()

    def _on_recorded_audio(self, audio: RecordedAudio) -> None:
        self._pipeline.reserve()
        self._run_task = asyncio.create_task(self._run_pipeline(audio))

    async def _run_pipeline(self, audio: RecordedAudio) -> None:
        try:
            self._last_result = await self._pipeline.run(audio)
        except asyncio.CancelledError:
            self._pipeline.release()
            raise
        except Exception as e:
            self._pipeline.release()
            logger.error("Pipeline run crashed", error_type=type(e).__name__, error=str(e))
            self._last_result = PipelineResult(
                outcome=PipelineOutcome.FAILED,
                notice=NOTICE_PROCESSING_FAILED,
                error=str(e) or type(e).__name__,
            )
            self.on_notice(NOTICE_PROCESSING_FAILED)

    def on_notice(self, notice: str) -> None:
        self._notices.append(notice)
        del self._notices[:-10]
        logger.info("User notice", notice=notice)

    # State

    def snapshot(self) -> Dict[str, Any]:
        session = self._identity.current_session
        return {
            "signed_in": session is not None,
            "email": session.email if session else None,
            "recorder_state": self._recorder.state.value,
            "pipeline_busy": self._pipeline.is_busy,
            "loading": self._pipeline.is_loading,
            "last_result": self._last_result.to_dict() if self._last_result else None,
            "notices": list(self._notices),
        }

    def metrics(self) -> Dict[str, Any]:
        data = self._pipeline.metrics.to_dict()
        data["total_recordings"] = self.total_recordings
        data["recording"] = self._recorder.state == RecorderState.RECORDING
        return data

    async def close(self) -> None:
        await self._recorder.stop()
        task = self._run_task
        if task and not task.done():
            await asyncio.gather(task, return_exceptions=True)
        await self._pipeline.close()


def create_assistant(config: Optional[Config] = None) -> VoiceAssistant:
    """Build the assistant with production clients."""
    config = config or get_config()

    identity = IdentityClient(config)
    storage = create_storage(config, token_provider=lambda: identity.id_token)

    assistant: Optional[VoiceAssistant] = None

    def _notice(notice: str) -> None:
        if assistant is not None:
            assistant.on_notice(notice)

    pipeline = VoicePipeline(
        transcriber=TranscriptionClient(config),
        resolver=get_script_resolver(),
        synthesizer=SpeechSynthesisClient(storage=storage, config=config),
        player=PlaybackController(config),
        on_notice=_notice,
    )
    assistant = VoiceAssistant(identity, pipeline, config=config)
    return assistant
