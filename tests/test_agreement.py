"""Tests for word agreement primitives."""

import pytest

from livescribe._types import WordTiming
from livescribe.agreement import (
    join_words,
    longest_common_prefix,
    longest_different_suffix,
)


def _words(*texts: str, start: float = 0.0, step: float = 0.5) -> list[WordTiming]:
    return [
        WordTiming(word=text, start=start + i * step, end=start + (i + 1) * step)
        for i, text in enumerate(texts)
    ]


class TestLongestCommonPrefix:
    """Tests for longest_common_prefix."""

    def test_empty_inputs(self):
        """Test empty sequences yield an empty prefix."""
        assert longest_common_prefix([], []) == []
        assert longest_common_prefix(_words(" a"), []) == []
        assert longest_common_prefix([], _words(" a")) == []

    def test_first_word_differs(self):
        """Test no prefix when the first words differ."""
        assert longest_common_prefix(_words(" a", " b"), _words(" x", " b")) == []

    def test_partial_prefix(self):
        """Test prefix stops at the first mismatch."""
        a = _words(" the", " quick", " brown", " fox")
        b = _words(" the", " quick", " red", " fox")
        prefix = longest_common_prefix(a, b)
        assert [w.word for w in prefix] == [" the", " quick"]

    def test_timing_is_ignored(self):
        """Test words match on text even when their timing shifted."""
        a = _words(" hello", " world", start=0.0)
        b = _words(" hello", " world", start=0.3)
        prefix = longest_common_prefix(a, b)
        assert len(prefix) == 2
        assert prefix[0].start == pytest.approx(0.3)

    def test_self_agreement(self):
        """Test a sequence fully agrees with itself."""
        a = _words(" one", " two", " three")
        assert longest_common_prefix(a, a) == a

    @pytest.mark.parametrize(
        "left,right",
        [
            ((" a", " b", " c"), (" a", " b")),
            ((" a",), (" a", " b", " c")),
            ((" a", " x"), (" a", " y", " z")),
        ],
    )
    def test_length_bounded_and_elementwise_equal(self, left, right):
        """Test result length never exceeds the shorter input."""
        a, b = _words(*left), _words(*right)
        prefix = longest_common_prefix(a, b)
        assert len(prefix) <= min(len(a), len(b))
        for i, word in enumerate(prefix):
            assert a[i].word == b[i].word == word.word


class TestLongestDifferentSuffix:
    """Tests for longest_different_suffix."""

    def test_suffix_after_common_prefix(self):
        """Test suffix is the part of b past the common prefix."""
        a = _words(" I", " think", " so")
        b = _words(" I", " think", " that", " is", " right")
        suffix = longest_different_suffix(a, b)
        assert [w.word for w in suffix] == [" that", " is", " right"]

    def test_no_previous_words(self):
        """Test all of b is returned when a is empty."""
        b = _words(" hello", " there")
        assert longest_different_suffix([], b) == b

    def test_identical_sequences(self):
        """Test identical sequences leave no suffix."""
        a = _words(" same", " words")
        assert longest_different_suffix(a, a) == []

    def test_empty_b(self):
        """Test empty b yields empty suffix."""
        assert longest_different_suffix(_words(" a"), []) == []


def test_join_words_keeps_leading_spaces():
    """Test words are concatenated without extra separators."""
    assert join_words(_words(" Hello", " world", ".")) == " Hello world."
