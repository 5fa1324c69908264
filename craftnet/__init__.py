"""Craftnet: escrow-backed job marketplace backend for members and apprentices."""

__version__ = "0.1.0"
