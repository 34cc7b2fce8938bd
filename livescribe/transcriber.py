"""Inference engine adapter over Faster Whisper."""

import asyncio
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Callable

import numpy as np

from livescribe._types import (
    DecodingOptions,
    ProgressEvent,
    Segment,
    TranscriptionResult,
    TranscriptionTimings,
    WordTiming,
)

logger = logging.getLogger(__name__)

SAMPLE_RATE = 16000

ProgressCallback = Callable[[ProgressEvent], "bool | None"]


class EngineError(RuntimeError):
    """Model loading or decoding failure."""


class Transcriber:
    """Encapsulates a Faster Whisper model behind the decode boundary.

    Runs decoding inside a thread pool executor to avoid blocking the event loop.
    Lazy-loads model on first transcription to avoid startup overhead.
    Progress callbacks are invoked on the executor thread once per decoded
    segment; returning False stops the decode after that segment.
    """

    def __init__(
        self,
        model_name: str = "base",
        device: str = "cpu",
        compute_type: str = "int8",
        model_directory: str | None = None,
        beam_size: int = 5,
        word_timestamps: bool = True,
        executor: ThreadPoolExecutor | None = None,
    ):
        """Initialize transcriber.

        Args:
            model_name: Faster Whisper model name (tiny, base, small, etc.)
            device: Device to run on (cpu, cuda, auto)
            compute_type: Compute precision (int8, float16, float32)
            model_directory: Custom cache directory for model weights
            beam_size: Beam search width for decoding
            word_timestamps: Whether word-level timings are produced
            executor: Optional ThreadPoolExecutor for transcription tasks
        """
        self.model_name = model_name
        self.device = device
        self.compute_type = compute_type
        self.model_directory = model_directory
        self.beam_size = beam_size
        self.word_timestamps = word_timestamps
        self.executor = executor or ThreadPoolExecutor(max_workers=1)
        self._model_owned = executor is None
        self._model = None
        self._model_lock = asyncio.Lock()
        logger.info(
            "Transcriber initialized: model=%s, device=%s, compute_type=%s, beam_size=%d",
            model_name,
            device,
            compute_type,
            beam_size,
        )

    @property
    def supports_word_timestamps(self) -> bool:
        return self.word_timestamps

    async def _ensure_model_loaded(self) -> None:
        """Lazy-load WhisperModel on first use.

        Raises:
            EngineError: If model fails to load
        """
        async with self._model_lock:
            if self._model is not None:
                return

            logger.info(
                "Loading Faster Whisper model: %s (device=%s, compute_type=%s)",
                self.model_name,
                self.device,
                self.compute_type,
            )

            try:
                from faster_whisper import WhisperModel

                start_time = time.perf_counter()
                self._model = WhisperModel(
                    self.model_name,
                    device=self.device,
                    compute_type=self.compute_type,
                    download_root=self.model_directory,
                )
                duration = time.perf_counter() - start_time
                logger.info("Model loaded successfully in %.2f seconds", duration)
            except Exception as e:
                logger.error(
                    "Failed to load model %s on device %s: %s",
                    self.model_name,
                    self.device,
                    e,
                )
                raise EngineError(
                    f"Failed to load Whisper model '{self.model_name}' on device "
                    f"'{self.device}' with compute_type '{self.compute_type}': {e}"
                ) from e

    async def transcribe(
        self,
        samples: np.ndarray,
        options: DecodingOptions,
        on_progress: ProgressCallback | None = None,
    ) -> list[TranscriptionResult]:
        """Decode samples asynchronously.

        Args:
            samples: Mono float32 audio at 16 kHz
            options: Decoding options for this call
            on_progress: Called with each progress update; False stops early

        Returns:
            One TranscriptionResult per decoding window

        Raises:
            EngineError: If model loading or decoding fails
        """
        await self._ensure_model_loaded()

        logger.debug(
            "Starting decode of %.2f seconds (clip=%s, prefix_tokens=%d)",
            len(samples) / SAMPLE_RATE,
            options.clip_timestamps,
            len(options.prefix_tokens),
        )

        try:
            results = await asyncio.get_running_loop().run_in_executor(
                self.executor,
                self._transcribe_sync,
                samples,
                options,
                on_progress,
            )
        except EngineError:
            raise
        except Exception as e:
            logger.error("Transcription failed: %s", e, exc_info=True)
            raise EngineError(f"Transcription failed: {e}") from e

        logger.debug("Decode completed: %d windows", len(results))
        return results

    def _transcribe_sync(
        self,
        samples: np.ndarray,
        options: DecodingOptions,
        on_progress: ProgressCallback | None,
    ) -> list[TranscriptionResult]:
        """Synchronous decode (runs in thread pool)."""
        if self._model is None:
            raise EngineError("Model not loaded")

        audio = np.asarray(samples, dtype=np.float32)
        input_seconds = len(audio) / SAMPLE_RATE
        pipeline_start = time.perf_counter()
        temperatures = options.temperatures()

        try:
            segments_iter, info = self._model.transcribe(
                audio,
                **self._transcribe_kwargs(options, temperatures),
            )
        except Exception as e:
            logger.error("Sync transcription failed: %s", e, exc_info=True)
            raise EngineError(f"Transcription processing failed: {e}") from e

        windows: dict[int, _WindowAccumulator] = {}
        all_tokens: list[int] = []
        logprobs: list[float] = []
        fallbacks = 0
        window_id = -1
        window_seek = None
        first_token_time = 0.0
        window_start = time.perf_counter()

        try:
            for raw in segments_iter:
                now = time.perf_counter()
                if not first_token_time:
                    first_token_time = now - pipeline_start

                # Each decoding window starts where the previous one ended, so
                # a change of seek marks a new window
                if raw.seek != window_seek:
                    window_seek = raw.seek
                    window_id += 1
                    window = windows[window_id] = _WindowAccumulator()
                    window.fallbacks = _fallback_index(raw.temperature, temperatures)
                    fallbacks += window.fallbacks

                window.add(self._convert_segment(raw), self._convert_words(raw))
                window.elapsed += now - window_start
                window_start = now

                all_tokens.extend(raw.tokens)
                logprobs.append(raw.avg_logprob)

                if on_progress is None:
                    continue

                event = ProgressEvent(
                    text="".join(window.texts).strip(),
                    tokens=tuple(all_tokens),
                    window_id=window_id,
                    avg_logprob=float(np.mean(logprobs)),
                    timings=TranscriptionTimings(
                        pipeline_start=pipeline_start,
                        first_token_time=first_token_time,
                        total_decoding_loops=len(all_tokens),
                        total_decoding_fallbacks=fallbacks,
                        input_audio_seconds=input_seconds,
                    ),
                )
                if on_progress(event) is False:
                    logger.debug("Decode stopped early after %d tokens", len(all_tokens))
                    break
        except Exception as e:
            logger.error("Sync transcription failed: %s", e, exc_info=True)
            raise EngineError(f"Transcription processing failed: {e}") from e

        full_pipeline = time.perf_counter() - pipeline_start
        language = getattr(info, "language", None) or options.language or "en"

        if not windows:
            return [
                TranscriptionResult(
                    text="",
                    language=language,
                    timings=TranscriptionTimings(
                        pipeline_start=pipeline_start,
                        full_pipeline=full_pipeline,
                        input_audio_seconds=input_seconds,
                    ),
                )
            ]

        return [
            windows[window_id].to_result(
                language=language,
                pipeline_start=pipeline_start,
                first_token_time=first_token_time,
                input_seconds=input_seconds,
            )
            for window_id in sorted(windows)
        ]

    def _transcribe_kwargs(
        self, options: DecodingOptions, temperatures: tuple[float, ...]
    ) -> dict:
        """Map DecodingOptions onto faster-whisper transcribe() arguments."""
        kwargs = {
            "task": options.task,
            # Without a prefilled prompt the language is detected
            "language": options.language if options.use_prefill_prompt else None,
            "beam_size": self.beam_size,
            "temperature": list(temperatures),
            "compression_ratio_threshold": options.compression_ratio_threshold,
            "log_prob_threshold": options.log_prob_threshold,
            "no_speech_threshold": options.no_speech_threshold,
            "without_timestamps": options.without_timestamps,
            "word_timestamps": options.word_timestamps and self.word_timestamps,
            "max_new_tokens": options.sample_length,
            "vad_filter": options.chunking_strategy == "vad",
            "condition_on_previous_text": options.use_prefill_cache,
        }
        if options.clip_timestamps:
            kwargs["clip_timestamps"] = list(options.clip_timestamps)
        if options.prefix_tokens:
            # A prompt only conditions the decode; faster-whisper's prefix is
            # applied to the first window alone and drops its words from the output
            kwargs["initial_prompt"] = list(options.prefix_tokens)
        if not options.skip_special_tokens:
            kwargs["suppress_tokens"] = []
        return kwargs

    def _convert_segment(self, raw) -> Segment:
        return Segment(
            start=float(raw.start),
            end=float(raw.end),
            text=raw.text,
            tokens=tuple(raw.tokens),
            avg_logprob=float(raw.avg_logprob),
        )

    def _convert_words(self, raw) -> list[WordTiming]:
        words = getattr(raw, "words", None) or []
        return [
            WordTiming(
                word=w.word,
                start=float(w.start),
                end=float(w.end),
                tokens=self._encode_word(w.word),
                probability=float(w.probability),
            )
            for w in words
        ]

    def _encode_word(self, word: str) -> tuple[int, ...]:
        tokenizer = getattr(self._model, "hf_tokenizer", None)
        if tokenizer is None:
            return ()
        return tuple(tokenizer.encode(word, add_special_tokens=False).ids)

    async def shutdown(self) -> None:
        """Clean up resources and shut down executor.

        Releases model reference and stops thread pool if owned by this instance.
        """
        logger.info("Transcriber shutting down")
        self._model = None
        if self._model_owned and self.executor:
            self.executor.shutdown(wait=True)
            logger.debug("Executor shut down")


class _WindowAccumulator:
    """Segments and words decoded for one 30 s window."""

    def __init__(self):
        self.segments: list[Segment] = []
        self.words: list[WordTiming] = []
        self.texts: list[str] = []
        self.tokens = 0
        self.elapsed = 0.0
        self.fallbacks = 0

    def add(self, segment: Segment, words: list[WordTiming]) -> None:
        self.segments.append(segment)
        self.words.extend(words)
        self.texts.append(segment.text)
        self.tokens += len(segment.tokens)

    def to_result(
        self,
        language: str,
        pipeline_start: float,
        first_token_time: float,
        input_seconds: float,
    ) -> TranscriptionResult:
        return TranscriptionResult(
            text="".join(self.texts).strip(),
            segments=self.segments,
            all_words=self.words,
            language=language,
            timings=TranscriptionTimings(
                pipeline_start=pipeline_start,
                first_token_time=first_token_time,
                decoding_loop=self.elapsed,
                full_pipeline=self.elapsed,
                total_decoding_loops=self.tokens,
                total_decoding_fallbacks=self.fallbacks,
                total_encoding_runs=1,
                input_audio_seconds=input_seconds,
            ),
        )


def _fallback_index(temperature: float, temperatures: tuple[float, ...]) -> int:
    """Number of fallbacks that led to decoding at ``temperature``."""
    for index, candidate in enumerate(temperatures):
        if abs(candidate - temperature) < 1e-6:
            return index
    return 0


def load_audio(audio_path: Path) -> np.ndarray:
    """Load an audio file as mono float32 at 16 kHz.

    Raises:
        RuntimeError: If audio cannot be loaded or processed
    """
    audio_path = Path(audio_path)
    if not audio_path.exists():
        raise RuntimeError(f"Audio file not found: {audio_path}")

    try:
        import soundfile

        try:
            audio_data, sample_rate = soundfile.read(str(audio_path), dtype="float32")
        except Exception:
            import wave

            with wave.open(str(audio_path), "rb") as wav_file:
                sample_rate = wav_file.getframerate()
                channels = wav_file.getnchannels()
                n_frames = wav_file.getnframes()
                audio_data = np.frombuffer(
                    wav_file.readframes(n_frames), dtype=np.int16
                ).astype(np.float32) / 32768.0
                if channels > 1:
                    audio_data = audio_data.reshape(-1, channels)

        logger.debug("Loaded audio: sample_rate=%d, shape=%s", sample_rate, audio_data.shape)

        if audio_data.ndim > 1:
            logger.debug("Converting to mono")
            audio_data = np.mean(audio_data, axis=1)

        if sample_rate != SAMPLE_RATE:
            logger.debug("Resampling from %d Hz to 16 kHz", sample_rate)
            from scipy.signal import resample_poly

            audio_data = resample_poly(audio_data, SAMPLE_RATE, int(sample_rate))

        return np.clip(audio_data, -1.0, 1.0).astype(np.float32)

    except Exception as e:
        logger.error("Failed to load audio from %s: %s", audio_path, e)
        raise RuntimeError(f"Failed to load audio from {audio_path}: {e}") from e
