from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Sequence

import uvicorn

from .app import DEFAULT_HOST, DEFAULT_PORT, ServerConfig, configure_logging, create_app
from .config import ConfigError


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Live Graphviz preview server")
    parser.add_argument("--host", default=DEFAULT_HOST, help="Host interface to bind to")
    parser.add_argument("--port", type=int, default=DEFAULT_PORT, help="Port to listen on")
    parser.add_argument(
        "--workspace",
        type=Path,
        default=Path.cwd(),
        help="Directory relative file paths in change events are resolved against",
    )
    parser.add_argument("--config", type=Path, default=None, help="YAML settings file")
    parser.add_argument("--no-watch", action="store_true", help="Do not reload the settings file on change")
    parser.add_argument("--log-file", type=Path, default=None, help="Path to the server log file")
    parser.add_argument("--log-level", default="info", help="Log level for the server and uvicorn")
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> None:
    args = parse_args(argv)
    config = ServerConfig(
        host=args.host,
        port=args.port,
        workspace=args.workspace,
        config_path=args.config,
        log_path=args.log_file,
        watch_config=not args.no_watch,
    )
    configure_logging(args.log_level, config.log_path)
    try:
        app = create_app(config)
    except ConfigError as exc:
        print(f"Invalid settings: {exc}", file=sys.stderr)
        raise SystemExit(2) from exc
    uvicorn.run(app, host=config.host, port=config.port, log_level=args.log_level.lower())


if __name__ == "__main__":  # pragma: no cover
    main()
