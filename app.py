from __future__ import annotations

import argparse
import logging
import sys
import traceback
from datetime import datetime, timezone
from pathlib import Path

from gatekeeper.errors import ConfigurationError
from log_server import __version__, create_app
from log_server.config import DEFAULT_CONFIG_PATH, load_settings
from log_server.runtime import env_bool, env_str, waitress_runtime_settings

LOGGER = logging.getLogger("logview")

USAGE = """The logview binary makes it easy to browse Twilio logs.

Usage:

    logview [--config=config.yml] <command>

The commands are:

    serve       Start a server that serves the log viewer
    version     Print the current version
    help        Show this help
"""


def _configure_logging() -> None:
    level_name = env_str("LOGVIEW_LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _write_startup_error_log(error: BaseException) -> Path:
    logs_dir = Path(env_str("LOGVIEW_LOG_DIR", "logs"))
    logs_dir.mkdir(parents=True, exist_ok=True)
    ts = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%SZ")
    log_path = logs_dir / f"startup-error-{ts}.log"
    content = (
        f"timestamp_utc={ts}\n"
        f"error_type={type(error).__name__}\n"
        f"error_message={error}\n\n"
        f"{traceback.format_exc()}"
    )
    log_path.write_text(content, encoding="utf-8")
    return log_path


def _serve(config_path: str | None) -> None:
    settings = load_settings(config_path)
    app = create_app(settings)
    if env_bool("LOGVIEW_DEBUG"):
        app.run(host="127.0.0.1", port=settings.port, debug=True, threaded=True)
        return

    from waitress import serve

    runtime = waitress_runtime_settings("LOGVIEW")
    LOGGER.info("Listening on %s:%d", runtime["host"], settings.port)
    serve(app, port=settings.port, **runtime)


def _parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="logview", add_help=False)
    parser.add_argument("--config", default=None, help=f"Path to a config file (default {DEFAULT_CONFIG_PATH})")
    parser.add_argument("command", nargs="?", default="serve")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = _parser().parse_args(argv)
    command = str(args.command).strip().lower()
    if command == "version":
        print(f"logview version {__version__}")
        return 0
    if command in {"help", "-h", "--help"}:
        print(USAGE)
        return 0
    if command != "serve":
        print(f"logview: unknown command {command!r}\n", file=sys.stderr)
        print(USAGE, file=sys.stderr)
        return 2

    _configure_logging()
    try:
        _serve(args.config)
    except ConfigurationError as exc:
        LOGGER.error("Error loading config: %s", exc.message)
        return 2
    return 0


if __name__ == "__main__":
    try:
        raise SystemExit(main())
    except Exception as exc:  # noqa: BLE001
        path = _write_startup_error_log(exc)
        print(f"logview failed to start.\n\n{exc}\n\nDetails: {path}", file=sys.stderr)
        raise SystemExit(1)
