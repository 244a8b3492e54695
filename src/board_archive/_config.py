"""Configuration loader for the board archive pipeline."""

from __future__ import annotations

import os
from pathlib import Path

import yaml

from src.board_archive._models import BoardConfig
from src.utils._exceptions import ConfigurationError

DEFAULT_CONFIG_PATH = Path("configs/board.yaml")
COOKIE_ENV_VAR = "BOARD_ARCHIVE_COOKIE"


def load_board_config(config_path: Path | None = None) -> BoardConfig:
    """Load and validate the board config from a YAML file.

    Args:
        config_path: Path to the YAML config. Defaults to configs/board.yaml.

    Returns:
        Validated BoardConfig model. An empty ``source.cookie`` is filled
        from the ``BOARD_ARCHIVE_COOKIE`` environment variable.

    Raises:
        ConfigurationError: If the file is missing, unreadable, or invalid.
    """
    path = config_path or DEFAULT_CONFIG_PATH

    if not path.exists():
        msg = f"Config file not found: {path}"
        raise ConfigurationError(msg)

    try:
        raw = path.read_text(encoding="utf-8")
        data = yaml.safe_load(raw)
    except yaml.YAMLError as exc:
        msg = f"Invalid YAML in {path}: {exc}"
        raise ConfigurationError(msg) from exc

    if data is None:
        data = {}
    if not isinstance(data, dict):
        msg = f"Expected a YAML mapping in {path}, got {type(data).__name__}"
        raise ConfigurationError(msg)

    try:
        config = BoardConfig.model_validate(data)
    except Exception as exc:
        msg = f"Config validation failed for {path}: {exc}"
        raise ConfigurationError(msg) from exc

    return _apply_env_overrides(config)


def default_board_config() -> BoardConfig:
    """Built-in defaults, used when no config file is present."""
    return _apply_env_overrides(BoardConfig())


def _apply_env_overrides(config: BoardConfig) -> BoardConfig:
    if not config.source.cookie:
        cookie = os.environ.get(COOKIE_ENV_VAR, "")
        if cookie:
            config.source.cookie = cookie
    return config
