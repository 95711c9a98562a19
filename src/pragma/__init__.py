"""Manifest-driven runner for codex sub-agents."""

__version__ = "0.4.0"
