"""Early stopping heuristics evaluated on every decoding progress update."""

import logging
import zlib
from enum import Enum
from typing import Sequence

import numpy as np

logger = logging.getLogger(__name__)


class EarlyStop(Enum):
    """Outcome of an early stop check."""

    CONTINUE = "continue"
    REPETITION = "repetition"
    LOW_CONFIDENCE = "low_confidence"

    @property
    def signal(self) -> bool | None:
        """Value returned to the engine callback: None lets decoding go on."""
        return None if self is EarlyStop.CONTINUE else False


def compression_ratio(tokens: Sequence[int]) -> float:
    """Ratio of raw token bytes to their zlib-compressed size.

    Tokens are packed as little-endian int32. Degenerate repetition
    compresses well, so a high ratio indicates a looping decoder.
    """
    if len(tokens) == 0:
        return 0.0
    data = np.asarray(tokens, dtype="<i4").tobytes()
    return len(data) / len(zlib.compress(data))


def evaluate_early_stop(
    tokens: Sequence[int],
    avg_logprob: float | None,
    window: int,
    compression_ratio_threshold: float | None,
    log_prob_threshold: float | None,
) -> EarlyStop:
    """Decide whether an in-progress decode should be aborted.

    Args:
        tokens: Tokens decoded so far in the current call
        avg_logprob: Running average log probability of the decode
        window: Number of trailing tokens checked for repetition
        compression_ratio_threshold: Abort when the trailing window compresses
            better than this; None disables the check
        log_prob_threshold: Abort when avg_logprob falls below this; None
            disables the check

    Returns:
        EarlyStop.CONTINUE when the engine's own stopping criteria should apply
    """
    if compression_ratio_threshold is not None and window > 0 and len(tokens) > window:
        ratio = compression_ratio(list(tokens)[-window:])
        if ratio > compression_ratio_threshold:
            logger.debug(
                "Early stopping due to compression threshold (%.2f > %.2f)",
                ratio,
                compression_ratio_threshold,
            )
            return EarlyStop.REPETITION

    if (
        log_prob_threshold is not None
        and avg_logprob is not None
        and avg_logprob < log_prob_threshold
    ):
        logger.debug(
            "Early stopping due to logprob threshold (%.2f < %.2f)",
            avg_logprob,
            log_prob_threshold,
        )
        return EarlyStop.LOW_CONFIDENCE

    return EarlyStop.CONTINUE
