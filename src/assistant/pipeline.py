"""Voice Pipeline Orchestration.

One run per finished recording:
recorded WAV -> STT -> keyword route -> (cached OR synthesized) script audio -> playback

- STT failures abort the run with a "processing failed" notice
- No keyword match ends the run with a "no relevant information" notice
- Synthesis/storage failures abort the run
- Playback failures are logged; the run still completes

Only one run may be in flight. The owner reserves the pipeline when it hands a
recording off, so a new recording cannot start while the previous one is
still resolving.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Optional

import structlog

from src.assistant.audio import RecordedAudio
from src.assistant.errors import AssistantError, PipelineBusyError
from src.assistant.playback import PlaybackController
from src.assistant.routing import ScriptMatch, ScriptResolver
from src.assistant.stt import TranscriptionClient
from src.assistant.tts import SpeechSynthesisClient
from src.assistant.tts_types import CachedAudio, SynthesizedAudio

logger = structlog.get_logger(__name__)

NOTICE_PROCESSING_FAILED = "Error processing audio. Please try again."
NOTICE_SYNTHESIS_FAILED = "Error generating speech. Please try again."
NOTICE_NO_MATCH = "No relevant information found."


class PipelineOutcome(str, Enum):
    COMPLETED = "completed"
    NO_MATCH = "no_match"
    FAILED = "failed"


@dataclass
class PipelineResult:
    outcome: PipelineOutcome
    transcript: Optional[str] = None
    match: Optional[ScriptMatch] = None
    audio: Optional[SynthesizedAudio] = None
    notice: Optional[str] = None
    error: Optional[str] = None
    playback_error: Optional[str] = None
    latency_ms: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        audio: Optional[Dict[str, Any]] = None
        if self.audio is not None:
            audio = {
                "source": "cache" if isinstance(self.audio, CachedAudio) else "synthesized",
                "url": self.audio.url,
            }
        return {
            "outcome": self.outcome.value,
            "transcript": self.transcript,
            "script_name": self.match.script_name if self.match else None,
            "audio": audio,
            "notice": self.notice,
            "error": self.error,
            "playback_error": self.playback_error,
            "latency_ms": round(self.latency_ms, 2),
        }


@dataclass
class PipelineMetrics:
    """Counters across all runs."""
    total_runs: int = 0
    completed: int = 0
    no_match: int = 0
    failed: int = 0
    cache_hits: int = 0
    cache_misses: int = 0
    avg_latency_ms: float = 0.0

    def record(self, result: PipelineResult) -> None:
        self.total_runs += 1
        if result.outcome == PipelineOutcome.COMPLETED:
            self.completed += 1
        elif result.outcome == PipelineOutcome.NO_MATCH:
            self.no_match += 1
        else:
            self.failed += 1
        if result.audio is not None:
            if isinstance(result.audio, CachedAudio):
                self.cache_hits += 1
            else:
                self.cache_misses += 1
        self.avg_latency_ms = (
            (self.avg_latency_ms * (self.total_runs - 1) + result.latency_ms)
            / self.total_runs
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_runs": self.total_runs,
            "completed": self.completed,
            "no_match": self.no_match,
            "failed": self.failed,
            "cache_hits": self.cache_hits,
            "cache_misses": self.cache_misses,
            "avg_latency_ms": round(self.avg_latency_ms, 2),
        }


class VoicePipeline:
    """
    Main pipeline orchestrator.

    Runs STT, routing, synthesis and playback for one recording at a time.
    """

    def __init__(
        self,
        transcriber: TranscriptionClient,
        resolver: ScriptResolver,
        synthesizer: SpeechSynthesisClient,
        player: PlaybackController,
        on_notice: Optional[Callable[[str], None]] = None,
    ):
        self._transcriber = transcriber
        self._resolver = resolver
        self._synthesizer = synthesizer
        self._player = player
        self._on_notice = on_notice
        self._busy = False
        self._reserved = False
        self._loading = False
        self._metrics = PipelineMetrics()

    @property
    def is_busy(self) -> bool:
        return self._busy

    @property
    def is_loading(self) -> bool:
        return self._loading

    @property
    def metrics(self) -> PipelineMetrics:
        return self._metrics

    def reserve(self) -> None:
        """
        Mark the pipeline busy ahead of `run()`.

        Raises:
            PipelineBusyError: a run is already reserved or in flight
        """
        if self._busy:
            raise PipelineBusyError("Previous recording is still being processed")
        self._busy = True
        self._reserved = True

    def release(self) -> None:
        """Drop a reservation that will not be followed by `run()`."""
        self._busy = False
        self._reserved = False

    async def close(self) -> None:
        await self._transcriber.close()
        await self._synthesizer.close()

    def _notify(self, notice: str) -> None:
        if self._on_notice:
            self._on_notice(notice)

    async def run(self, audio: RecordedAudio) -> PipelineResult:
        """
        Process one recording.

        Raises:
            PipelineBusyError: called while another run is in flight
        """
        if self._reserved:
            self._reserved = False
        elif self._busy:
            raise PipelineBusyError("Previous recording is still being processed")

        self._busy = True
        self._loading = True
        started = time.time()

        try:
            result = await self._run(audio)
        finally:
            self._loading = False
            self._busy = False

        result.latency_ms = (time.time() - started) * 1000
        self._metrics.record(result)

        if result.notice:
            self._notify(result.notice)

        logger.info(
            "Pipeline run finished",
            outcome=result.outcome.value,
            script_name=result.match.script_name if result.match else None,
            latency_ms=round(result.latency_ms, 2),
        )
        return result

    async def _run(self, audio: RecordedAudio) -> PipelineResult:
        # 1. Speech-to-text
        try:
            transcription = await self._transcriber.transcribe(audio)
        except AssistantError as e:
            logger.error("Transcription failed", error_type=type(e).__name__, error=str(e))
            return PipelineResult(
                outcome=PipelineOutcome.FAILED,
                notice=NOTICE_PROCESSING_FAILED,
                error=str(e),
            )

        transcript = transcription.text

        # 2. Keyword routing
        match = self._resolver.resolve(transcript)
        if match is None:
            return PipelineResult(
                outcome=PipelineOutcome.NO_MATCH,
                transcript=transcript,
                notice=NOTICE_NO_MATCH,
            )

        # 3. Synthesis (cached or fresh)
        try:
            synthesized = await self._synthesizer.synthesize(match.script_name, match.script_text)
        except AssistantError as e:
            logger.error(
                "Speech synthesis failed",
                script_name=match.script_name,
                error_type=type(e).__name__,
                error=str(e),
            )
            return PipelineResult(
                outcome=PipelineOutcome.FAILED,
                transcript=transcript,
                match=match,
                notice=NOTICE_SYNTHESIS_FAILED,
                error=str(e),
            )

        # 4. Playback (non-fatal)
        played = await self._player.play(synthesized)

        return PipelineResult(
            outcome=PipelineOutcome.COMPLETED,
            transcript=transcript,
            match=match,
            audio=synthesized,
            playback_error=None if played else self._player.last_error,
        )
