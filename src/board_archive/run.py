"""CLI entry point: python -m src.board_archive.run

Usage:
    python -m src.board_archive.run                 # one cycle
    python -m src.board_archive.run watch           # a cycle every interval_minutes
    python -m src.board_archive.run serve --port 8080 --watch
    python -m src.board_archive.run logs --limit 20
    python -m src.board_archive.run reset --yes     # development only
"""

from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys
from pathlib import Path

from src.board_archive._config import DEFAULT_CONFIG_PATH, default_board_config, load_board_config
from src.board_archive._models import BoardConfig
from src.board_archive.pipeline import BoardArchivePipeline, watch
from src.utils._exceptions import BoardArchiveError, ConfigurationError
from src.utils._logging import configure_logging, get_logger

_log = get_logger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Board archive: detect and log changes on a discussion board",
    )
    parser.add_argument(
        "command",
        nargs="?",
        choices=["cycle", "watch", "serve", "logs", "reset"],
        default="cycle",
        help="What to run (default: cycle).",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help=f"Path to the YAML config (default: {DEFAULT_CONFIG_PATH}).",
    )
    parser.add_argument(
        "--limit",
        type=int,
        default=100,
        help="Number of events to print for `logs`.",
    )
    parser.add_argument(
        "--host",
        type=str,
        default="0.0.0.0",
        help="Bind address for `serve`.",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=int(os.environ.get("PORT", "8080")),
        help="Port for `serve` (default: $PORT or 8080).",
    )
    parser.add_argument(
        "--watch",
        action="store_true",
        help="With `serve`, also run cycles in the background every interval_minutes.",
    )
    parser.add_argument(
        "--yes",
        action="store_true",
        help="Confirm `reset`.",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default="INFO",
        help="Logging level (DEBUG, INFO, WARNING, ERROR).",
    )
    parser.add_argument(
        "--console-log",
        action="store_true",
        help="Use human-readable console logging instead of JSON.",
    )
    return parser


def _load_config(path: Path | None) -> BoardConfig:
    if path is None and not DEFAULT_CONFIG_PATH.exists():
        _log.warning("config_not_found_using_defaults", path=str(DEFAULT_CONFIG_PATH))
        return default_board_config()
    return load_board_config(path)


def main(argv: list[str] | None = None) -> None:
    args = _build_parser().parse_args(argv)

    configure_logging(log_level=args.log_level, json_output=not args.console_log)

    try:
        config = _load_config(args.config)
    except ConfigurationError as exc:
        _log.error("config_invalid", error=str(exc))
        sys.exit(2)

    pipeline = BoardArchivePipeline(config)
    interval_seconds = config.board.interval_minutes * 60

    if args.command == "cycle":
        try:
            result = asyncio.run(pipeline.run_cycle())
        except BoardArchiveError:
            sys.exit(1)
        _log.info("result_summary", **result.model_dump(mode="json"))
        sys.exit(0)

    if args.command == "watch":
        try:
            asyncio.run(watch(pipeline, interval_seconds))
        except KeyboardInterrupt:
            _log.info("watch_interrupted")
        return

    if args.command == "serve":
        import uvicorn

        from src.board_archive.api import create_app

        app = create_app(
            pipeline,
            watch_interval_seconds=interval_seconds if args.watch else None,
        )
        uvicorn.run(app, host=args.host, port=args.port, log_config=None)
        return

    if args.command == "logs":
        events = asyncio.run(pipeline.recent_events(args.limit))
        for event in events:
            print(json.dumps(event.model_dump(mode="json"), ensure_ascii=False))
        return

    if args.command == "reset":
        if not args.yes:
            _log.error("reset_not_confirmed", hint="pass --yes to delete all data")
            sys.exit(2)
        snapshots, events = asyncio.run(pipeline.reset())
        _log.info("reset_complete", snapshots=snapshots, events=events)
        return


if __name__ == "__main__":
    main()
