"""Word sequence agreement between consecutive overlapping decodes."""

from typing import Sequence

from livescribe._types import WordTiming


def longest_common_prefix(
    a: Sequence[WordTiming], b: Sequence[WordTiming]
) -> list[WordTiming]:
    """Return the leading words of ``b`` whose text matches ``a`` position by position.

    Only word text is compared; timings drift slightly between overlapping
    decodes and are ignored. The returned words come from ``b``, the newer
    decode.
    """
    prefix: list[WordTiming] = []
    for left, right in zip(a, b):
        if left.word != right.word:
            break
        prefix.append(right)
    return prefix


def longest_different_suffix(
    a: Sequence[WordTiming], b: Sequence[WordTiming]
) -> list[WordTiming]:
    """Return the part of ``b`` that extends past its common prefix with ``a``."""
    return list(b[len(longest_common_prefix(a, b)) :])


def join_words(words: Sequence[WordTiming]) -> str:
    """Concatenate word texts; whisper words carry their own leading space."""
    return "".join(w.word for w in words)
