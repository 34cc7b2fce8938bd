"""Segment confirmation for the standard (non-eager) streaming mode."""

import logging

from livescribe._types import TranscriptionResult
from livescribe.transcript import ReconciliationStrategy, TranscriptState

logger = logging.getLogger(__name__)


class SegmentConfirmation(ReconciliationStrategy):
    """Freezes segments that sit safely behind the tail of each decode.

    The last ``required_segments`` segments of a decode stay provisional
    because more audio context may still revise them. Everything before them
    is committed once, and the end of the last committed segment becomes the
    clip start of the next decode.
    """

    def __init__(self, state: TranscriptState, required_segments: int = 2):
        super().__init__(state)
        if required_segments < 0:
            raise ValueError("required_segments must be non-negative")
        self.required_segments = required_segments

    @property
    def clip_start(self) -> float:
        return self.state.last_confirmed_segment_end_seconds

    def ingest(self, result: TranscriptionResult) -> None:
        segments = list(result.segments)
        state = self.state

        if len(segments) <= self.required_segments:
            state.unconfirmed_segments = segments
            return

        split = len(segments) - self.required_segments
        candidates = segments[:split]
        state.unconfirmed_segments = segments[split:]

        last_candidate = candidates[-1]
        if last_candidate.end <= state.last_confirmed_segment_end_seconds:
            logger.debug(
                "Confirmation cursor not advanced (%.2f <= %.2f)",
                last_candidate.end,
                state.last_confirmed_segment_end_seconds,
            )
            return

        state.last_confirmed_segment_end_seconds = last_candidate.end
        logger.debug("Last confirmed segment end: %.2f", last_candidate.end)

        for segment in candidates:
            if segment not in state.confirmed_segments:
                state.confirmed_segments.append(segment)

    def finalize(self) -> None:
        state = self.state
        for segment in state.unconfirmed_segments:
            if segment not in state.confirmed_segments:
                state.confirmed_segments.append(segment)
        if state.confirmed_segments:
            state.last_confirmed_segment_end_seconds = max(
                state.last_confirmed_segment_end_seconds,
                state.confirmed_segments[-1].end,
            )
        state.unconfirmed_segments = []
