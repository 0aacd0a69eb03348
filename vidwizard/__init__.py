"""Render job orchestration and timing alignment for the video wizard."""

__version__ = "0.1.0"
