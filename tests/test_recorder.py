"""Tests for live recorder module."""

from unittest.mock import MagicMock, patch

import numpy as np
import pytest

from livescribe.recorder import (
    LiveRecorder,
    average_energy,
    is_voice_detected,
    relative_energy,
)


class TestEnergy:
    """Tests for energy helpers."""

    def test_average_energy_rms(self):
        """Test RMS of a constant signal is its amplitude."""
        assert average_energy(np.full(1600, 0.5, dtype=np.float32)) == pytest.approx(0.5)

    def test_average_energy_empty(self):
        """Test empty signal has zero energy."""
        assert average_energy(np.zeros(0, dtype=np.float32)) == 0.0

    def test_relative_energy_at_reference(self):
        """Test energy equal to the reference maps to zero."""
        assert relative_energy(0.01, 0.01) == pytest.approx(0.0)

    def test_relative_energy_full_scale(self):
        """Test full-scale energy maps to one."""
        assert relative_energy(1.0, 0.01) == pytest.approx(1.0)

    def test_relative_energy_default_reference(self):
        """Test the default reference puts -30 dB halfway."""
        assert relative_energy(10 ** (-30 / 20), None) == pytest.approx(0.5)

    def test_relative_energy_clamped(self):
        """Test values outside the reference range are clamped."""
        assert relative_energy(1e-5, 0.01) == 0.0
        assert relative_energy(2.0, 0.01) == 1.0
        assert relative_energy(0.0, 0.0) == 0.0


class TestIsVoiceDetected:
    """Tests for is_voice_detected."""

    def test_no_new_audio(self):
        """Test less than one energy block of new audio is never voice."""
        assert is_voice_detected([0.9] * 10, 0.05, 0.3) is False

    def test_short_region_checks_all(self):
        """Test a one-second region is checked in full."""
        energies = [0.0] * 20 + [0.0] * 9 + [0.8]
        assert is_voice_detected(energies, 1.0, 0.3) is True

    def test_only_new_region_considered(self):
        """Test loud audio before the new region is ignored."""
        energies = [0.9] * 20 + [0.1] * 15
        assert is_voice_detected(energies, 1.5, 0.3) is False

    def test_trailing_second_skipped(self):
        """Test voice only in the last second of a long region is not counted."""
        energies = [0.0] * 20 + [0.9] * 10
        assert is_voice_detected(energies, 3.0, 0.3) is False

    def test_voice_early_in_region(self):
        """Test voice at the start of a long region is detected."""
        energies = [0.9] * 5 + [0.0] * 25
        assert is_voice_detected(energies, 3.0, 0.3) is True

    def test_threshold_is_exclusive(self):
        """Test energy equal to the threshold is silence."""
        assert is_voice_detected([0.3] * 10, 1.0, 0.3) is False


class TestLiveRecorderInit:
    """Tests for LiveRecorder initialization."""

    def test_init_default_params(self):
        """Test recorder initialization with default parameters."""
        recorder = LiveRecorder()
        assert recorder.sample_rate == 16000
        assert recorder.channels == 1
        assert recorder.chunk_size == 1600
        assert recorder.device is None
        assert recorder.is_recording is False
        assert recorder.sample_count == 0

    def test_init_invalid_sample_rate(self):
        """Test initialization fails with invalid sample rate."""
        with pytest.raises(ValueError, match="sample_rate must be positive"):
            LiveRecorder(sample_rate=0)

    def test_init_invalid_channels(self):
        """Test initialization fails with invalid channel count."""
        with pytest.raises(ValueError, match="channels must be 1 or 2"):
            LiveRecorder(channels=3)

    def test_init_invalid_chunk_size(self):
        """Test initialization fails with invalid chunk size."""
        with pytest.raises(ValueError, match="chunk_size must be positive"):
            LiveRecorder(chunk_size=0)


class TestLiveRecorderBuffer:
    """Tests for buffering and snapshots."""

    def test_empty_snapshot(self):
        """Test snapshot before any audio is empty."""
        samples, energy = LiveRecorder().snapshot()
        assert samples.size == 0
        assert energy == []

    def test_append_and_snapshot(self):
        """Test appended blocks are concatenated with one energy value each."""
        recorder = LiveRecorder()
        recorder.append(np.full(1600, 0.001, dtype=np.float32))
        recorder.append(np.full(1600, 0.5, dtype=np.float32))

        samples, energy = recorder.snapshot()
        assert samples.shape == (3200,)
        assert samples.dtype == np.float32
        assert recorder.sample_count == 3200
        assert len(energy) == 2
        assert energy[0] == pytest.approx(0.0, abs=1e-6)
        assert energy[1] > 0.8

    def test_snapshot_is_a_copy(self):
        """Test mutating a snapshot does not touch the buffer."""
        recorder = LiveRecorder()
        recorder.append(np.zeros(1600, dtype=np.float32))
        samples, _ = recorder.snapshot()
        samples[:] = 1.0

        fresh, _ = recorder.snapshot()
        assert not fresh.any()

    def test_quiet_reference_tracks_minimum(self):
        """Test relative energy is measured against the quietest recent block."""
        recorder = LiveRecorder()
        for _ in range(5):
            recorder.append(np.full(1600, 0.01, dtype=np.float32))
        _, energy = recorder.snapshot()
        assert energy[-1] == pytest.approx(0.0, abs=1e-6)

    def test_stereo_callback_downmixed(self):
        """Test stereo callback blocks are averaged to mono."""
        recorder = LiveRecorder(channels=2)
        block = np.zeros((1600, 2), dtype=np.float32)
        block[:, 0] = 0.5
        recorder._callback(block, 1600, None, None)

        samples, _ = recorder.snapshot()
        assert samples.shape == (1600,)
        assert samples[0] == pytest.approx(0.25)

    def test_clear(self):
        """Test clear drops samples and energy."""
        recorder = LiveRecorder()
        recorder.append(np.zeros(1600, dtype=np.float32))
        recorder.clear()
        samples, energy = recorder.snapshot()
        assert samples.size == 0
        assert energy == []


class TestLiveRecorderStartStop:
    """Tests for recorder start/stop lifecycle."""

    @patch("livescribe.recorder.sounddevice.InputStream")
    def test_start_opens_stream(self, mock_input_stream):
        """Test start opens a float32 input stream."""
        mock_stream = MagicMock()
        mock_input_stream.return_value = mock_stream

        recorder = LiveRecorder()
        recorder.start()

        assert recorder.is_recording is True
        mock_stream.start.assert_called_once()
        kwargs = mock_input_stream.call_args.kwargs
        assert kwargs["samplerate"] == 16000
        assert kwargs["blocksize"] == 1600
        assert kwargs["dtype"] == "float32"
        recorder.close()

    @patch("livescribe.recorder.sounddevice.InputStream")
    def test_start_twice_fails(self, mock_input_stream):
        """Test starting while recording raises RuntimeError."""
        recorder = LiveRecorder()
        recorder.start()
        with pytest.raises(RuntimeError, match="Cannot start recording"):
            recorder.start()
        recorder.close()

    @patch("livescribe.recorder.sounddevice.InputStream")
    def test_start_failure(self, mock_input_stream):
        """Test stream open failure raises RuntimeError and stays idle."""
        mock_input_stream.side_effect = OSError("device busy")
        recorder = LiveRecorder()
        with pytest.raises(RuntimeError, match="Failed to start audio stream"):
            recorder.start()
        assert recorder.is_recording is False

    @patch("livescribe.recorder.sounddevice.InputStream")
    def test_stop_keeps_buffer(self, mock_input_stream):
        """Test stop closes the stream but keeps captured audio."""
        mock_stream = MagicMock()
        mock_input_stream.return_value = mock_stream

        recorder = LiveRecorder()
        recorder.start()
        recorder.append(np.zeros(1600, dtype=np.float32))
        recorder.stop()

        mock_stream.stop.assert_called_once()
        mock_stream.close.assert_called_once()
        assert recorder.is_recording is False
        assert recorder.sample_count == 1600

    @patch("livescribe.recorder.sounddevice.InputStream")
    def test_start_clears_previous_buffer(self, mock_input_stream):
        """Test a new recording starts from an empty buffer."""
        recorder = LiveRecorder()
        recorder.append(np.zeros(1600, dtype=np.float32))
        recorder.start()
        assert recorder.sample_count == 0
        recorder.close()

    @patch("livescribe.recorder.sounddevice.InputStream")
    def test_context_manager_cleanup(self, mock_input_stream):
        """Test context manager ensures cleanup."""
        mock_stream = MagicMock()
        mock_input_stream.return_value = mock_stream

        with LiveRecorder() as recorder:
            recorder.start()

        mock_stream.close.assert_called_once()
        assert recorder._stream is None


class TestDeviceResolution:
    """Tests for resolving device names."""

    @patch("livescribe.recorder.sounddevice.query_devices")
    def test_exact_and_partial_match(self, mock_query):
        """Test device names resolve to input device indices."""
        mock_query.return_value = [
            {"name": "HDMI Output", "max_input_channels": 0},
            {"name": "USB Microphone", "max_input_channels": 1},
            {"name": "Built-in Mic", "max_input_channels": 2},
        ]
        assert LiveRecorder(device="built-in mic")._resolve_device_selection() == 2
        assert LiveRecorder(device="USB")._resolve_device_selection() == 1

    @patch("livescribe.recorder.sounddevice.query_devices")
    def test_unknown_name_uses_default(self, mock_query):
        """Test an unknown device name falls back to the default input."""
        mock_query.return_value = [{"name": "USB Microphone", "max_input_channels": 1}]
        assert LiveRecorder(device="Headset")._resolve_device_selection() is None

    def test_index_passthrough(self):
        """Test integer devices are used as-is."""
        assert LiveRecorder(device=3)._resolve_device_selection() == 3
