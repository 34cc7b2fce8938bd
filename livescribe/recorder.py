"""Live audio capture into a growing sample buffer with an energy profile."""

import logging
import math
import threading
from enum import Enum
from typing import Sequence

import numpy as np
import sounddevice

logger = logging.getLogger(__name__)

# Each relative energy value covers one 100 ms capture block
ENERGY_BLOCK_SECONDS = 0.1
ENERGY_REFERENCE_WINDOW = 20


class _RecorderState(Enum):
    """Internal recorder state machine."""

    IDLE = "idle"
    RECORDING = "recording"


def average_energy(signal: np.ndarray) -> float:
    """RMS energy of a block of float samples."""
    if signal.size == 0:
        return 0.0
    return float(np.sqrt(np.mean(np.square(signal, dtype=np.float64))))


def relative_energy(energy: float, reference: float | None) -> float:
    """Energy in dB relative to a quiet-room reference, scaled to [0, 1].

    Full scale (0 dB) maps to 1 and anything at or below the reference maps
    to 0. Without a reference, 1e-3 is used.
    """
    reference_energy = max(1e-8, reference if reference is not None else 1e-3)
    db_energy = 20 * math.log10(max(energy, 1e-12))
    ref_db = 20 * math.log10(reference_energy)
    if ref_db >= 0:
        return 1.0 if db_energy >= 0 else 0.0
    normalized = (db_energy - ref_db) / (0 - ref_db)
    return max(0.0, min(normalized, 1.0))


def is_voice_detected(
    relative_energies: Sequence[float],
    next_buffer_seconds: float,
    silence_threshold: float,
) -> bool:
    """Check whether the newly captured audio contains voice.

    Only the energy values covering the new audio are considered, and of
    those the trailing second is left out unless the region is shorter
    than that.
    """
    values_to_consider = int(next_buffer_seconds / ENERGY_BLOCK_SECONDS)
    if values_to_consider <= 0:
        return False
    next_energies = list(relative_energies)[-values_to_consider:]
    values_to_check = max(10, len(next_energies) - 10)
    return any(e > silence_threshold for e in next_energies[:values_to_check])


class LiveRecorder:
    """Captures microphone audio via sounddevice into an append-only buffer.

    The stream callback runs on the PortAudio thread; ``snapshot`` returns a
    consistent copy of samples and energy taken under the same lock.
    """

    def __init__(
        self,
        sample_rate: int = 16000,
        channels: int = 1,
        chunk_size: int = 1600,
        device: int | str | None = None,
    ):
        """Initialize live recorder.

        Args:
            sample_rate: Sample rate in Hz
            channels: Number of capture channels (downmixed to mono)
            chunk_size: Frames per callback block; 1600 gives 100 ms at 16 kHz
            device: Audio device index or name (None for default)
        """
        if sample_rate <= 0:
            raise ValueError("sample_rate must be positive")
        if channels not in (1, 2):
            raise ValueError("channels must be 1 or 2")
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")

        self.sample_rate = sample_rate
        self.channels = channels
        self.chunk_size = chunk_size
        self.device = device

        self._state = _RecorderState.IDLE
        self._stream = None
        self._lock = threading.Lock()
        self._chunks: list[np.ndarray] = []
        self._sample_count = 0
        self._energy: list[float] = []
        self._relative_energy: list[float] = []

        logger.info(
            "LiveRecorder initialized: %d Hz, %d channels, device=%s",
            sample_rate,
            channels,
            device if device is not None else "default",
        )

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit; ensure cleanup."""
        self.close()
        return False

    @property
    def is_recording(self) -> bool:
        return self._state == _RecorderState.RECORDING

    @property
    def sample_count(self) -> int:
        with self._lock:
            return self._sample_count

    def start(self) -> None:
        """Start capturing into a fresh buffer.

        Raises:
            RuntimeError: If already recording or stream cannot be opened
        """
        if self._state != _RecorderState.IDLE:
            raise RuntimeError(
                f"Cannot start recording: recorder in {self._state.value} state"
            )

        resolved_device = self._resolve_device_selection()
        self.clear()

        try:
            self._stream = sounddevice.InputStream(
                device=resolved_device,
                samplerate=self.sample_rate,
                channels=self.channels,
                blocksize=self.chunk_size,
                callback=self._callback,
                dtype="float32",
            )
            self._stream.start()
            self._state = _RecorderState.RECORDING
            logger.info(
                "Audio stream started (sample_rate=%d, channels=%d, device=%s)",
                self.sample_rate,
                self.channels,
                resolved_device if resolved_device is not None else "default",
            )
        except Exception as e:
            self._state = _RecorderState.IDLE
            self._stream = None
            logger.error("Failed to start audio stream: %s", e)
            raise RuntimeError(f"Failed to start audio stream: {e}") from e

    def stop(self) -> None:
        """Stop capturing; the buffer is kept for a final decode."""
        if self._state != _RecorderState.RECORDING:
            logger.debug("Stop requested while not recording")
            return
        self._close_stream()
        self._state = _RecorderState.IDLE
        logger.info(
            "Audio recording stopped (%.2f seconds captured)",
            self.sample_count / self.sample_rate,
        )

    def close(self) -> None:
        """Explicitly close stream and cleanup resources."""
        self._close_stream()
        self.clear()
        self._state = _RecorderState.IDLE

    def clear(self) -> None:
        """Drop all captured samples and energy values."""
        with self._lock:
            self._chunks = []
            self._sample_count = 0
            self._energy = []
            self._relative_energy = []

    def snapshot(self) -> tuple[np.ndarray, list[float]]:
        """Return a copy of all samples so far and their relative energy profile."""
        with self._lock:
            if self._chunks:
                samples = np.concatenate(self._chunks)
                self._chunks = [samples]
            else:
                samples = np.zeros(0, dtype=np.float32)
            return samples.copy(), list(self._relative_energy)

    def append(self, block: np.ndarray) -> None:
        """Append a mono float32 block and extend the energy profile."""
        block = np.asarray(block, dtype=np.float32).reshape(-1)
        energy = average_energy(block)
        with self._lock:
            reference = (
                min(self._energy[-ENERGY_REFERENCE_WINDOW:]) if self._energy else None
            )
            self._chunks.append(block)
            self._sample_count += block.size
            self._energy.append(energy)
            self._relative_energy.append(relative_energy(energy, reference))

    def _callback(self, indata, frames, time_info, status):
        """Stream callback invoked on audio data arrival."""
        if status:
            logger.warning("Audio stream status: %s", status)

        if indata.ndim > 1 and indata.shape[1] > 1:
            self.append(np.mean(indata, axis=1))
        else:
            self.append(indata.copy())

    def _close_stream(self) -> None:
        if self._stream:
            try:
                self._stream.stop()
                self._stream.close()
            except Exception as e:
                logger.warning("Error closing stream: %s", e)
            finally:
                self._stream = None

    def _resolve_device_selection(self) -> int | None:
        """Resolve configured device selection to a sounddevice index."""

        if self.device is None or isinstance(self.device, int):
            return self.device

        try:
            device_list = sounddevice.query_devices()
            if isinstance(device_list, dict):
                device_list = [device_list]
        except Exception as e:
            logger.warning(
                "Unable to enumerate audio devices for '%s': %s; using default",
                self.device,
                e,
            )
            return None

        target = self.device.strip().lower()
        partial_match: int | None = None
        available: list[str] = []

        for idx, dev_info in enumerate(device_list):
            if dev_info.get("max_input_channels", 0) <= 0:
                continue

            name = dev_info.get("name", f"Device {idx}")
            normalized = name.strip().lower()
            available.append(f"[{idx}] {name}")

            if normalized == target:
                logger.debug("Resolved audio device '%s' to index %d", self.device, idx)
                return idx
            if partial_match is None and target in normalized:
                partial_match = idx

        if partial_match is not None:
            logger.debug(
                "Resolved audio device '%s' to index %d via partial match",
                self.device,
                partial_match,
            )
            return partial_match

        logger.warning(
            "Audio device '%s' not found. Using default input. Available devices: %s",
            self.device,
            "; ".join(available) if available else "none",
        )
        return None
