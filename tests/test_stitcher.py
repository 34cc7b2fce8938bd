"""Tests for window/chunk stitching."""

from livescribe.stitcher import ChunkStitcher


class TestChunkStitcher:
    """Tests for ChunkStitcher."""

    def test_first_update_creates_window(self):
        """Test a new window id creates an entry."""
        stitcher = ChunkStitcher()
        assert stitcher.update(0, "hello", 0) == "hello"
        assert stitcher.chunks[0].chunk_text == ["hello"]
        assert stitcher.chunks[0].fallbacks == 0

    def test_growing_text_replaces_last_entry(self):
        """Test continuation of one attempt replaces the last entry."""
        stitcher = ChunkStitcher()
        stitcher.update(0, "hel", 0)
        stitcher.update(0, "hello", 0)
        assert stitcher.chunks[0].chunk_text == ["hello"]

    def test_fallback_overwrites(self):
        """Test a shorter text with a new fallback count overwrites the bad attempt."""
        stitcher = ChunkStitcher()
        for window_id, text, fallbacks in [(0, "a", 0), (0, "ab", 0), (0, "a", 1)]:
            stitcher.update(window_id, text, fallbacks)
        assert stitcher.text == "a"
        assert stitcher.chunks[0].fallbacks == 1
        assert stitcher.current_fallbacks == 1

    def test_fallback_overwrites_in_stream_mode(self):
        """Test fallback overwrite also applies in stream mode."""
        stitcher = ChunkStitcher(stream_mode=True)
        for window_id, text, fallbacks in [(0, "a", 0), (0, "ab", 0), (0, "a", 1)]:
            stitcher.update(window_id, text, fallbacks)
        assert stitcher.text == "a"

    def test_new_window_in_stream_mode(self):
        """Test shorter text with unchanged fallbacks starts a new entry in stream mode."""
        stitcher = ChunkStitcher(stream_mode=True)
        stitcher.update(0, "first window text", 0)
        stitcher.update(1, "second", 0)
        assert stitcher.chunks[0].chunk_text == ["first window text", "second"]
        assert stitcher.text == "first window text\nsecond"

    def test_shorter_text_without_stream_mode_is_fallback(self):
        """Test outside stream mode shorter text with an equal fallback count overwrites."""
        stitcher = ChunkStitcher()
        stitcher.update(0, "a long attempt", 0)
        stitcher.update(0, "retry", 0)
        assert stitcher.chunks[0].chunk_text == ["retry"]

    def test_windows_joined_in_id_order(self):
        """Test out-of-order windows are joined by ascending id."""
        stitcher = ChunkStitcher()
        stitcher.update(2, "third", 0)
        stitcher.update(0, "first", 0)
        stitcher.update(1, "second", 0)
        assert stitcher.text == "first\nsecond\nthird"

    def test_update_leaves_other_windows_untouched(self):
        """Test a fallback in one window does not disturb another."""
        stitcher = ChunkStitcher()
        stitcher.update(0, "stable text", 0)
        stitcher.update(1, "garbage garbage", 0)
        stitcher.update(1, "fixed", 1)
        assert stitcher.chunks[0].chunk_text == ["stable text"]
        assert stitcher.text == "stable text\nfixed"

    def test_duplicate_update_is_idempotent(self):
        """Test a duplicated progress event does not change the text."""
        stitcher = ChunkStitcher()
        stitcher.update(0, "same", 0)
        stitcher.update(0, "same", 0)
        assert stitcher.text == "same"
        assert stitcher.decoding_loops == 2

    def test_reset(self):
        """Test reset discards all windows and counters."""
        stitcher = ChunkStitcher()
        stitcher.update(0, "text", 2)
        stitcher.reset()
        assert stitcher.chunks == {}
        assert stitcher.text == ""
        assert stitcher.current_fallbacks == 0
        assert stitcher.decoding_loops == 0
