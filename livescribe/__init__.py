"""Stable incremental transcription on top of a batch speech-to-text engine."""

__version__ = "0.1.0"
