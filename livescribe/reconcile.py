"""Selection of the reconciliation strategy used by a session."""

import logging
from enum import Enum

from livescribe.confirmation import SegmentConfirmation
from livescribe.eager import EagerAgreement
from livescribe.transcript import ReconciliationStrategy, TranscriptState

logger = logging.getLogger(__name__)


class ReconciliationMode(Enum):
    """How overlapping decodes are merged into the transcript."""

    SEGMENT = "segment"
    EAGER = "eager"


EAGER_UNSUPPORTED_NOTICE = (
    "Eager mode requires word timestamps, which are not supported by the "
    "current model: {model}."
)


def select_mode(
    eager: bool,
    supports_word_timestamps: bool,
    model: str = "",
) -> tuple[ReconciliationMode, str]:
    """Resolve the session mode from configuration and engine capability.

    Returns:
        The mode to use and a user-facing notice (empty when none is needed)
    """
    if not eager:
        return ReconciliationMode.SEGMENT, ""
    if not supports_word_timestamps:
        notice = EAGER_UNSUPPORTED_NOTICE.format(model=model or "unknown")
        logger.warning("%s Falling back to segment confirmation.", notice)
        return ReconciliationMode.SEGMENT, notice
    return ReconciliationMode.EAGER, ""


def create_strategy(
    mode: ReconciliationMode,
    state: TranscriptState,
    required_segments: int = 2,
    token_confirmations_needed: int = 2,
) -> ReconciliationStrategy:
    """Build the strategy for ``mode`` operating on ``state``."""
    if mode is ReconciliationMode.EAGER:
        return EagerAgreement(state, token_confirmations_needed)
    return SegmentConfirmation(state, required_segments)
