"""Session driver: polls the live buffer and reconciles repeated decodes."""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable

import numpy as np

from livescribe._types import ProgressEvent, TranscriptionResult
from livescribe.config import DecodingConfig, StreamingConfig
from livescribe.early_stop import evaluate_early_stop
from livescribe.reconcile import create_strategy, select_mode
from livescribe.recorder import is_voice_detected
from livescribe.transcriber import load_audio
from livescribe.transcript import (
    TranscriptSnapshot,
    TranscriptState,
    merge_transcription_results,
)

logger = logging.getLogger(__name__)

WAITING_TEXT = "Waiting for speech..."

Listener = Callable[[TranscriptSnapshot], None]


class CancellationToken:
    """Token for cooperatively stopping the poll loop between iterations."""

    def __init__(self):
        """Initialize cancellation token in non-cancelled state."""
        self._cancelled = False

    def cancel(self) -> None:
        """Mark token as cancelled."""
        self._cancelled = True

    def is_cancelled(self) -> bool:
        """Check if token is cancelled."""
        return self._cancelled


class State(Enum):
    """Session state."""

    IDLE = "idle"
    STREAMING = "streaming"
    TRANSCRIBING = "transcribing"
    SHUTDOWN = "shutdown"


@dataclass
class SessionTelemetry:
    """Performance figures recomputed after each decode call."""

    tokens_per_second: float = 0.0
    first_token_time: float = 0.0
    pipeline_start: float = 0.0
    effective_real_time_factor: float = 0.0
    effective_speed_factor: float = 0.0
    total_inference_time: float = 0.0
    current_lag: float = 0.0
    current_fallbacks: int = 0
    current_encoding_loops: int = 0
    current_decoding_loops: int = 0

    def reset(self) -> None:
        self.tokens_per_second = 0.0
        self.first_token_time = 0.0
        self.pipeline_start = 0.0
        self.effective_real_time_factor = 0.0
        self.effective_speed_factor = 0.0
        self.total_inference_time = 0.0
        self.current_lag = 0.0
        self.current_fallbacks = 0
        self.current_encoding_loops = 0
        self.current_decoding_loops = 0


class TranscriptionSession:
    """Coordinates the recorder, the inference engine and transcript reconciliation.

    All transcript mutations happen on the event loop thread. Progress
    updates raised on the engine's worker thread are handed over with
    ``call_soon_threadsafe``; only the early stop decision is taken on the
    worker thread, since it reads nothing but the event itself.
    """

    def __init__(
        self,
        engine=None,
        recorder=None,
        streaming: StreamingConfig | None = None,
        decoding: DecodingConfig | None = None,
        sample_rate: int = 16000,
        model_name: str = "",
    ):
        """Initialize session.

        Args:
            engine: Inference engine (Transcriber); None leaves the session inert
            recorder: Live audio source exposing start/stop/snapshot
            streaming: Polling and reconciliation settings
            decoding: Values assembled into DecodingOptions per decode call
            sample_rate: Sample rate of the recorder buffer
            model_name: Model name used in user-facing notices
        """
        self.engine = engine
        self.recorder = recorder
        self.streaming = streaming or StreamingConfig()
        self.decoding = decoding or DecodingConfig()
        self.sample_rate = sample_rate
        self.model_name = model_name

        self.state = State.IDLE
        self.transcript = TranscriptState()
        self.telemetry = SessionTelemetry()
        self.last_buffer_size = 0

        self._cancel_token = CancellationToken()
        self._loop_task: asyncio.Task | None = None
        self._listeners: list[Listener] = []
        self._decode_generation = 0

        self._select_strategy()
        logger.info("Session initialized in %s mode", self.mode.value)

    def _select_strategy(self) -> None:
        supports_words = bool(getattr(self.engine, "supports_word_timestamps", False))
        self.mode, notice = select_mode(
            self.streaming.eager, supports_words, self.model_name
        )
        self.transcript.notice = notice
        self.strategy = create_strategy(
            self.mode,
            self.transcript,
            required_segments=self.streaming.required_segments_for_confirmation,
            token_confirmations_needed=self.streaming.token_confirmations_needed,
        )

    def add_listener(self, callback: Listener) -> None:
        """Add a listener called with a snapshot after every transcript change."""
        self._listeners.append(callback)

    def remove_listener(self, callback: Listener) -> None:
        """Remove a transcript listener."""
        if callback in self._listeners:
            self._listeners.remove(callback)

    def snapshot(self) -> TranscriptSnapshot:
        return self.transcript.snapshot()

    def _notify(self) -> None:
        snapshot = self.transcript.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception as e:
                logger.warning("Transcript listener failed: %s", e, exc_info=True)

    def reset(self) -> None:
        """Stop any running loop and return the transcript to its initial state."""
        self._cancel_token.cancel()
        self._cancel_token = CancellationToken()
        if self._loop_task and not self._loop_task.done():
            self._loop_task.cancel()
        self._loop_task = None
        self._decode_generation += 1

        self.transcript.reset()
        self.telemetry.reset()
        self.last_buffer_size = 0
        self._select_strategy()
        logger.debug("Session state reset")

    async def start_recording(self, loop: bool = True) -> None:
        """Start capturing audio and, when looping, the realtime poll loop.

        Raises:
            RuntimeError: If the recorder cannot start
        """
        if self.engine is None or self.recorder is None:
            logger.warning("No inference engine or recorder available, ignoring start")
            return
        if self.state != State.IDLE:
            logger.warning("Start requested while in %s state, ignoring", self.state.value)
            return

        self.reset()
        self.recorder.start()
        logger.info("State transition: IDLE -> STREAMING")
        self.state = State.STREAMING

        if loop:
            self._loop_task = asyncio.create_task(self.run_realtime_loop())

    async def stop_recording(self, loop: bool = True) -> None:
        """Stop capturing, decode the whole buffer when not looping, and finalize."""
        if self.state != State.STREAMING:
            logger.warning("Stop requested while in %s state, ignoring", self.state.value)
            return

        self._cancel_token.cancel()
        task = self._loop_task
        self._loop_task = None
        if task and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        self.recorder.stop()

        if not loop:
            logger.info("State transition: STREAMING -> TRANSCRIBING")
            self.state = State.TRANSCRIBING
            self._cancel_token = CancellationToken()
            try:
                await self.transcribe_current_buffer()
            except Exception as e:
                logger.error("Final decode failed: %s", e, exc_info=True)

        self.finalize()
        logger.info("State transition: %s -> IDLE", self.state.name)
        self.state = State.IDLE

    async def run_realtime_loop(self) -> None:
        """Poll the buffer until stopped; decode failures skip one iteration."""
        logger.info("Realtime loop starting (%s mode)", self.mode.value)
        try:
            while self.engine is not None and not self._cancel_token.is_cancelled():
                try:
                    await self.transcribe_current_buffer()
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    logger.error(
                        "Decode failed, retrying next iteration (%s: %s)",
                        type(e).__name__,
                        e,
                    )
                    await asyncio.sleep(self.streaming.error_recovery_delay)
        finally:
            self.finalize()
            logger.info("Realtime loop stopped")

    async def transcribe_current_buffer(self) -> bool:
        """Run one poll iteration.

        Returns:
            True when a decode call was made
        """
        if self.engine is None or self.recorder is None:
            logger.debug("No inference engine loaded, skipping poll")
            return False

        samples, energy = self.recorder.snapshot()
        next_buffer_size = len(samples) - self.last_buffer_size
        next_buffer_seconds = next_buffer_size / self.sample_rate

        if next_buffer_seconds <= self.streaming.min_buffer_seconds:
            await self._wait_for_audio()
            return False

        if self.streaming.use_vad and not is_voice_detected(
            energy, next_buffer_seconds, self.streaming.silence_threshold
        ):
            await self._wait_for_audio()
            return False

        self.last_buffer_size = len(samples)

        results = await self._decode(samples, stream_mode=True)
        result = merge_transcription_results(results)
        self.transcript.current_text = ""
        if result is not None:
            self.strategy.ingest(result)
            self._update_telemetry(result, len(samples))
        self._notify()
        return True

    async def transcribe_file(self, path: Path) -> TranscriptionResult | None:
        """Transcribe a whole file in one decode call.

        Raises:
            RuntimeError: If the file cannot be loaded or decoding fails
        """
        if self.engine is None:
            logger.warning("No inference engine loaded, ignoring file %s", path)
            return None

        self.reset()
        logger.info("State transition: %s -> TRANSCRIBING", self.state.name)
        self.state = State.TRANSCRIBING
        try:
            samples = await asyncio.get_running_loop().run_in_executor(
                None, load_audio, Path(path)
            )
            results = await self._decode(samples, stream_mode=False)
            result = merge_transcription_results(results)
            self.transcript.current_text = ""
            if result is not None:
                self.transcript.confirmed_segments.extend(result.segments)
                self._update_telemetry(result, len(samples))
            self._notify()
            return result
        finally:
            self.state = State.IDLE

    def finalize(self) -> None:
        """Flush provisional output into the confirmed transcript."""
        self.strategy.finalize()
        self.transcript.current_text = ""
        self._notify()

    async def shutdown(self) -> None:
        """Stop the loop and release recorder and engine."""
        logger.info("Session shutdown starting")
        self.state = State.SHUTDOWN
        self._cancel_token.cancel()

        task = self._loop_task
        self._loop_task = None
        if task and not task.done():
            task.cancel()
            try:
                await asyncio.wait_for(task, timeout=5.0)
            except (asyncio.CancelledError, asyncio.TimeoutError):
                pass

        if self.recorder:
            try:
                self.recorder.close()
            except Exception as e:
                logger.warning("Error closing recorder: %s", e)

        if self.engine:
            try:
                await self.engine.shutdown()
            except Exception as e:
                logger.warning("Error shutting down engine: %s", e)

        logger.info("Session shutdown complete")

    async def _wait_for_audio(self) -> None:
        if not self.transcript.current_text:
            self.transcript.current_text = WAITING_TEXT
            self._notify()
        await asyncio.sleep(self.streaming.poll_interval)

    async def _decode(
        self, samples: np.ndarray, stream_mode: bool
    ) -> list[TranscriptionResult]:
        """Run one decode call, stitching progress and applying early stop."""
        options = self.decoding.build_options(
            clip_start=self.strategy.clip_start,
            prefix_tokens=self.strategy.prefix_tokens,
        )
        chunks = self.transcript.current_chunks
        chunks.reset()
        chunks.stream_mode = stream_mode

        loop = asyncio.get_running_loop()
        generation = self._decode_generation
        window = self.streaming.compression_check_window
        cancel_token = self._cancel_token

        def on_progress(event: ProgressEvent) -> bool | None:
            loop.call_soon_threadsafe(self._apply_progress, generation, event)
            if cancel_token.is_cancelled():
                return False
            return evaluate_early_stop(
                event.tokens,
                event.avg_logprob,
                window,
                options.compression_ratio_threshold,
                options.log_prob_threshold,
            ).signal

        try:
            return await self.engine.transcribe(samples, options, on_progress)
        finally:
            # Let progress updates already queued on the loop land first
            await asyncio.sleep(0)
            if generation == self._decode_generation:
                self._decode_generation += 1
                chunks.reset()

    def _apply_progress(self, generation: int, event: ProgressEvent) -> None:
        if generation != self._decode_generation:
            return
        fallbacks = event.timings.total_decoding_fallbacks
        text = self.transcript.current_chunks.update(event.window_id, event.text, fallbacks)
        self.transcript.current_text = text
        self.telemetry.current_fallbacks = fallbacks
        self.telemetry.current_decoding_loops += 1
        self._notify()

    def _update_telemetry(self, result: TranscriptionResult, sample_count: int) -> None:
        timings = result.timings
        telemetry = self.telemetry
        telemetry.tokens_per_second = timings.tokens_per_second
        telemetry.first_token_time = timings.first_token_time
        telemetry.pipeline_start = timings.pipeline_start
        telemetry.current_lag = timings.decoding_loop
        telemetry.current_encoding_loops += timings.total_encoding_runs
        telemetry.total_inference_time += timings.full_pipeline

        total_audio = sample_count / self.sample_rate
        if total_audio > 0:
            telemetry.effective_real_time_factor = (
                telemetry.total_inference_time / total_audio
            )
        if telemetry.total_inference_time > 0:
            telemetry.effective_speed_factor = (
                total_audio / telemetry.total_inference_time
            )
        logger.debug(
            "Decode telemetry: %.1f tok/s, RTF %.2f, first token %.2fs",
            telemetry.tokens_per_second,
            telemetry.effective_real_time_factor,
            telemetry.first_token_time,
        )
