"""Stitching of per-window progress text into one display string."""

import logging
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)


@dataclass
class ChunkProgress:
    """Partial texts decoded for one window and the fallback count they came from."""

    chunk_text: list[str] = field(default_factory=list)
    fallbacks: int = 0


class ChunkStitcher:
    """Merges progress updates keyed by window id into a single transcript preview.

    Text growing within one attempt replaces the last entry. Shorter text is
    either a new decoding window (stream mode, fallback count unchanged) and
    is appended, or a temperature fallback retry and overwrites the last
    entry so the rejected attempt disappears.

    In stream mode an equal fallback count is read as a new window, even when
    two distinct fallbacks happen to report the same count. Outside stream
    mode shorter text always overwrites the last entry.
    """

    def __init__(self, stream_mode: bool = False):
        """Initialize stitcher.

        Args:
            stream_mode: Route every update to window 0 and allow new windows
                within it
        """
        self.stream_mode = stream_mode
        self.chunks: dict[int, ChunkProgress] = {}
        self.current_fallbacks = 0
        self.decoding_loops = 0

    def update(self, window_id: int, text: str, fallbacks: int) -> str:
        """Apply one progress update and return the stitched text."""
        chunk_id = 0 if self.stream_mode else window_id
        current = self.chunks.get(chunk_id)

        if current is None or not current.chunk_text:
            self.chunks[chunk_id] = ChunkProgress(chunk_text=[text], fallbacks=fallbacks)
        elif len(text) >= len(current.chunk_text[-1]):
            current.chunk_text[-1] = text
        elif fallbacks == current.fallbacks and self.stream_mode:
            current.chunk_text.append(text)
        else:
            logger.info("Fallback occurred: %d", fallbacks)
            current.chunk_text[-1] = text
            current.fallbacks = fallbacks

        self.current_fallbacks = fallbacks
        self.decoding_loops += 1
        return self.text

    @property
    def text(self) -> str:
        return "\n".join(
            part
            for chunk_id in sorted(self.chunks)
            for part in self.chunks[chunk_id].chunk_text
        )

    def reset(self) -> None:
        """Discard all window state."""
        self.chunks.clear()
        self.current_fallbacks = 0
        self.decoding_loops = 0
