"""Logging policy for annocache.

Every module logs through `logging.getLogger(__name__)`, under the
"annocache" logger configured here:

- stderr at the configured level (stdout stays clean for CLI JSON)
- an optional DEBUG file under `log_dir`, for attaching to bug reports
- httpx/httpcore request lines off unless `log_http_requests` is set
"""

import logging
import sys
from datetime import datetime
from pathlib import Path

from annocache.config import AppConfig

PACKAGE_LOGGER = "annocache"
HTTP_LOGGERS = ("httpx", "httpcore")
QUIET_LOGGERS = ("urllib3", "uvicorn.access")

_console: logging.Handler | None = None
_file: logging.FileHandler | None = None


def configure_logging(config: AppConfig, *, verbose: bool = False, log_file: bool = False) -> None:
    """Apply the config's logging policy.

    Handlers are attached once; levels are re-applied on every call, so a
    later `--verbose` still takes effect.
    """
    global _console, _file
    root = logging.getLogger(PACKAGE_LOGGER)
    console_level = logging.DEBUG if verbose else getattr(logging, config.log_level)

    if _console is None:
        _console = logging.StreamHandler(sys.stderr)
        _console.setFormatter(
            logging.Formatter(
                "%(asctime)s %(levelname)-5s [%(name)s] %(message)s", datefmt="%H:%M:%S"
            )
        )
        root.addHandler(_console)
    _console.setLevel(console_level)

    if (log_file or config.log_to_file) and _file is None:
        _file = open_log_file(config.log_dir)
        root.addHandler(_file)

    # The file captures DEBUG regardless of what the console shows
    root.setLevel(logging.DEBUG if _file is not None else console_level)

    http_level = logging.INFO if config.log_http_requests else logging.WARNING
    for name in HTTP_LOGGERS:
        logging.getLogger(name).setLevel(http_level)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def open_log_file(log_dir: Path) -> logging.FileHandler:
    """DEBUG handler writing <log_dir>/YYYYMMDD_HHMMSS.log."""
    log_dir.mkdir(parents=True, exist_ok=True)
    log_path = log_dir / f"{datetime.now():%Y%m%d_%H%M%S}.log"
    handler = logging.FileHandler(log_path, encoding="utf-8")
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(
        logging.Formatter(
            "%(asctime)s %(levelname)-5s [%(name)s] %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )
    return handler


def reset_logging() -> None:
    """Detach and close the handlers. For testing only."""
    global _console, _file
    root = logging.getLogger(PACKAGE_LOGGER)
    for handler in (_console, _file):
        if handler is not None:
            root.removeHandler(handler)
            handler.close()
    _console = _file = None
    root.setLevel(logging.WARNING)
    for name in HTTP_LOGGERS + QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.NOTSET)
