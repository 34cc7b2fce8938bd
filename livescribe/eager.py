"""Word-level agreement for low-latency (eager) streaming."""

import logging

from livescribe._types import TranscriptionResult
from livescribe.agreement import (
    join_words,
    longest_common_prefix,
    longest_different_suffix,
)
from livescribe.transcript import ReconciliationStrategy, TranscriptState

logger = logging.getLogger(__name__)


class EagerAgreement(ReconciliationStrategy):
    """Confirms words once two consecutive overlapping decodes agree on them.

    The last ``token_confirmations_needed`` words of each agreement are kept
    back as an anchor: they seed the next decode's prompt and mark the
    finalize cursor, but only the words before them become permanent.
    """

    def __init__(self, state: TranscriptState, token_confirmations_needed: int = 2):
        super().__init__(state)
        if token_confirmations_needed < 1:
            raise ValueError("token_confirmations_needed must be at least 1")
        self.token_confirmations_needed = token_confirmations_needed

    @property
    def clip_start(self) -> float:
        return self.state.last_agreed_seconds

    @property
    def prefix_tokens(self) -> tuple[int, ...]:
        return tuple(t for w in self.state.last_agreed_words for t in w.tokens)

    def ingest(self, result: TranscriptionResult) -> None:
        state = self.state
        needed = self.token_confirmations_needed
        cursor = state.last_agreed_seconds

        state.hypothesis_words = [w for w in result.all_words if w.start >= cursor]

        if state.prev_result is not None:
            state.prev_words = [
                w for w in state.prev_result.all_words if w.start >= cursor
            ]
            common_prefix = longest_common_prefix(
                state.prev_words, state.hypothesis_words
            )
            logger.info("[EagerMode] Prev \"%s\"", join_words(state.prev_words))
            logger.info("[EagerMode] Next \"%s\"", join_words(state.hypothesis_words))
            logger.info("[EagerMode] Found common prefix \"%s\"", join_words(common_prefix))

            if len(common_prefix) >= needed:
                state.last_agreed_words = common_prefix[-needed:]
                state.last_agreed_seconds = max(
                    cursor, state.last_agreed_words[0].start
                )
                state.confirmed_words.extend(common_prefix[:-needed])
                logger.info(
                    "[EagerMode] Found new last agreed word \"%s\" at %.2f seconds",
                    state.last_agreed_words[0].word,
                    state.last_agreed_seconds,
                )
            else:
                logger.info(
                    "[EagerMode] Using same last agreed time %.2f",
                    state.last_agreed_seconds,
                )

        state.prev_result = result
        self._render()

    def finalize(self) -> None:
        state = self.state
        tail = state.last_agreed_words + longest_different_suffix(
            state.prev_words, state.hypothesis_words
        )
        state.confirmed_words.extend(tail)
        state.last_agreed_words = []
        state.hypothesis_words = []
        state.prev_words = []
        self._render()

    def _render(self) -> None:
        state = self.state
        state.confirmed_text = join_words(state.confirmed_words)
        state.hypothesis_text = join_words(
            state.last_agreed_words
            + longest_different_suffix(state.prev_words, state.hypothesis_words)
        )
