"""Append-only evaluation score storage with aggregate queries for comparing runs."""

__version__ = "0.1.0"
