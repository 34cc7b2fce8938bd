"""Shared types and dataclasses for cross-module use."""

from dataclasses import dataclass, field


@dataclass(frozen=True)
class Segment:
    """A timestamped span of transcript text returned as a unit by the engine.

    Equality only looks at (start, end, text) so the same span decoded twice
    compares equal even when token ids or confidence differ.
    """

    start: float
    end: float
    text: str
    tokens: tuple[int, ...] = field(default=(), compare=False)
    avg_logprob: float = field(default=0.0, compare=False)


@dataclass(frozen=True)
class WordTiming:
    """A single word with its timing and token ids."""

    word: str
    start: float
    end: float
    tokens: tuple[int, ...] = ()
    probability: float = 0.0


@dataclass
class TranscriptionTimings:
    """Performance counters for one decode call."""

    pipeline_start: float = 0.0
    first_token_time: float = 0.0
    decoding_loop: float = 0.0
    full_pipeline: float = 0.0
    total_decoding_loops: int = 0
    total_decoding_fallbacks: int = 0
    total_encoding_runs: int = 0
    input_audio_seconds: float = 0.0

    @property
    def tokens_per_second(self) -> float:
        if self.decoding_loop <= 0:
            return 0.0
        return self.total_decoding_loops / self.decoding_loop

    @property
    def real_time_factor(self) -> float:
        if self.input_audio_seconds <= 0:
            return 0.0
        return self.full_pipeline / self.input_audio_seconds

    @property
    def speed_factor(self) -> float:
        if self.full_pipeline <= 0:
            return 0.0
        return self.input_audio_seconds / self.full_pipeline


@dataclass
class TranscriptionResult:
    """Result from one decode window."""

    text: str
    segments: list[Segment] = field(default_factory=list)
    all_words: list[WordTiming] = field(default_factory=list)
    language: str = "en"
    timings: TranscriptionTimings = field(default_factory=TranscriptionTimings)


@dataclass(frozen=True)
class ProgressEvent:
    """Incremental progress reported by the engine while decoding."""

    text: str
    tokens: tuple[int, ...]
    window_id: int
    avg_logprob: float
    timings: TranscriptionTimings


@dataclass(frozen=True)
class DecodingOptions:
    """Immutable decoding configuration assembled once per decode call."""

    task: str = "transcribe"
    language: str | None = "en"
    temperature: float = 0.0
    temperature_fallback_count: int = 5
    temperature_increment: float = 0.2
    sample_length: int = 224
    use_prefill_prompt: bool = True
    use_prefill_cache: bool = True
    skip_special_tokens: bool = True
    without_timestamps: bool = False
    word_timestamps: bool = True
    clip_timestamps: tuple[float, ...] = ()
    prefix_tokens: tuple[int, ...] = ()
    chunking_strategy: str = "none"
    compression_ratio_threshold: float | None = 2.4
    log_prob_threshold: float | None = -1.0
    no_speech_threshold: float | None = 0.6

    def temperatures(self) -> tuple[float, ...]:
        """Temperature schedule: the start value followed by one step per fallback."""
        return tuple(
            round(self.temperature + i * self.temperature_increment, 4)
            for i in range(self.temperature_fallback_count + 1)
        )
