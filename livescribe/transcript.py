"""Transcript state owned by a session and the reconciliation contract."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Sequence

from livescribe._types import (
    Segment,
    TranscriptionResult,
    TranscriptionTimings,
    WordTiming,
)
from livescribe.stitcher import ChunkStitcher


@dataclass
class TranscriptState:
    """Mutable transcript state of one session.

    Confirmed segments and words are append-only; everything else is
    replaced as new decodes arrive. Both cursors only move forward.
    """

    confirmed_segments: list[Segment] = field(default_factory=list)
    unconfirmed_segments: list[Segment] = field(default_factory=list)
    confirmed_words: list[WordTiming] = field(default_factory=list)
    last_agreed_words: list[WordTiming] = field(default_factory=list)
    hypothesis_words: list[WordTiming] = field(default_factory=list)
    prev_words: list[WordTiming] = field(default_factory=list)
    prev_result: TranscriptionResult | None = None
    last_confirmed_segment_end_seconds: float = 0.0
    last_agreed_seconds: float = 0.0
    current_chunks: ChunkStitcher = field(default_factory=ChunkStitcher)
    current_text: str = ""
    confirmed_text: str = ""
    hypothesis_text: str = ""
    notice: str = ""

    def reset(self) -> None:
        """Return every field to its initial value."""
        self.confirmed_segments = []
        self.unconfirmed_segments = []
        self.confirmed_words = []
        self.last_agreed_words = []
        self.hypothesis_words = []
        self.prev_words = []
        self.prev_result = None
        self.last_confirmed_segment_end_seconds = 0.0
        self.last_agreed_seconds = 0.0
        self.current_chunks.reset()
        self.current_text = ""
        self.confirmed_text = ""
        self.hypothesis_text = ""
        self.notice = ""

    def snapshot(self) -> "TranscriptSnapshot":
        return TranscriptSnapshot(
            confirmed_segments=tuple(self.confirmed_segments),
            unconfirmed_segments=tuple(self.unconfirmed_segments),
            confirmed_text=self.confirmed_text,
            hypothesis_text=self.hypothesis_text,
            current_text=self.current_text,
            notice=self.notice,
        )


@dataclass(frozen=True)
class TranscriptSnapshot:
    """Read-only view of the transcript handed to listeners."""

    confirmed_segments: tuple[Segment, ...] = ()
    unconfirmed_segments: tuple[Segment, ...] = ()
    confirmed_text: str = ""
    hypothesis_text: str = ""
    current_text: str = ""
    notice: str = ""

    @property
    def text(self) -> str:
        """Full transcript: stable part followed by the provisional tail."""
        if self.confirmed_segments or self.unconfirmed_segments:
            return "".join(
                s.text for s in self.confirmed_segments + self.unconfirmed_segments
            ).strip()
        return (self.confirmed_text + self.hypothesis_text).strip()


class ReconciliationStrategy(ABC):
    """Turns successive decode results into confirmed and unconfirmed transcript."""

    def __init__(self, state: TranscriptState):
        self.state = state

    @property
    @abstractmethod
    def clip_start(self) -> float:
        """Audio time below which output is final; next decode reports from here."""

    @property
    def prefix_tokens(self) -> tuple[int, ...]:
        return ()

    @abstractmethod
    def ingest(self, result: TranscriptionResult) -> None:
        """Fold one decode result into the transcript state."""

    @abstractmethod
    def finalize(self) -> None:
        """Move whatever is still provisional into the confirmed transcript."""


def merge_transcription_results(
    results: Sequence[TranscriptionResult | None],
) -> TranscriptionResult | None:
    """Merge the per-window results of one decode call into a single result.

    Args:
        results: Results in window order; None entries are skipped

    Returns:
        Merged result, or None when there is nothing to merge
    """
    valid = [r for r in results if r is not None]
    if not valid:
        return None
    if len(valid) == 1:
        return valid[0]

    segments: list[Segment] = []
    words: list[WordTiming] = []
    timings = TranscriptionTimings(
        pipeline_start=min(r.timings.pipeline_start for r in valid),
        first_token_time=min(r.timings.first_token_time for r in valid),
    )
    for result in valid:
        segments.extend(result.segments)
        words.extend(result.all_words)
        timings.decoding_loop += result.timings.decoding_loop
        timings.full_pipeline += result.timings.full_pipeline
        timings.total_decoding_loops += result.timings.total_decoding_loops
        timings.total_decoding_fallbacks += result.timings.total_decoding_fallbacks
        timings.total_encoding_runs += result.timings.total_encoding_runs
        timings.input_audio_seconds = max(
            timings.input_audio_seconds, result.timings.input_audio_seconds
        )

    return TranscriptionResult(
        text=" ".join(r.text.strip() for r in valid if r.text.strip()),
        segments=segments,
        all_words=words,
        language=valid[0].language,
        timings=timings,
    )
