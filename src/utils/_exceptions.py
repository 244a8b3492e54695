from __future__ import annotations


class BoardArchiveError(Exception):
    """Root exception for the board archive service."""


class ConfigurationError(BoardArchiveError):
    """Invalid or missing configuration."""
