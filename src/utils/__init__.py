from __future__ import annotations

from src.utils._exceptions import BoardArchiveError, ConfigurationError
from src.utils._logging import bound_context, configure_logging, get_logger

__all__ = [
    "BoardArchiveError",
    "ConfigurationError",
    "bound_context",
    "configure_logging",
    "get_logger",
]
