"""Centralized logging configuration for spice."""

from __future__ import annotations

import contextlib
import logging
import os
import sys
from pathlib import Path
from typing import Iterator, MutableMapping

_STREAM_HANDLER_ID = "spice_stream"
_FILE_HANDLER_ID = "spice_file"
LOG_LEVEL_ENV = "SPICE_LOG_LEVEL"
_FORMAT = "ts=%(asctime)s level=%(levelname)s logger=%(name)s msg=%(message)s"

TRACE = 5
logging.addLevelName(TRACE, "TRACE")

LOG_LEVELS: dict[str, int] = {
    "all": 1,
    "trace": TRACE,
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
    "fatal": logging.CRITICAL,
    "off": logging.CRITICAL + 10,
}

# Process-wide variables read by the JVM-based survey engine's loggers.
ENGINE_LOG_LEVEL_ENV_KEYS = (
    "SCALA_LOGGING_LEVEL",
    "ORG_SLF4J_SIMPLELOGGER_DEFAULTLOGLEVEL",
)


def normalize_level_name(name: str | None) -> str:
    """Return a known CLI level name; unknown or empty names fall back to info."""
    text = (name or "").strip().lower()
    if text == "warning":
        return "warn"
    if text == "critical":
        return "fatal"
    return text if text in LOG_LEVELS else "info"


def level_from_name(name: str | None) -> int:
    return LOG_LEVELS[normalize_level_name(name)]


def engine_level_name(name: str | None) -> str:
    return normalize_level_name(name).upper()


def _resolve_level(level: int | None) -> int:
    if level is not None:
        return level
    env_level = os.environ.get(LOG_LEVEL_ENV, "").strip()
    if not env_level:
        return logging.INFO
    return level_from_name(env_level)


def _mark_handler(handler: logging.Handler, handler_id: str) -> None:
    setattr(handler, "_spice_handler_id", handler_id)


def _get_handler(root: logging.Logger, handler_id: str) -> logging.Handler | None:
    for handler in root.handlers:
        if getattr(handler, "_spice_handler_id", None) == handler_id:
            return handler
    return None


def setup_logging(*, level: int | None = None) -> None:
    """Configure the root ``spice`` logger.

    The log level can be set via the *level* parameter or the
    ``SPICE_LOG_LEVEL`` environment variable (trace, debug, info, warn, ...).
    If ``SPICE_LOG_FILE`` is set, a file handler is attached and logs at
    least INFO-level lifecycle events.
    """
    stream_level = _resolve_level(level)

    root = logging.getLogger("spice")
    stream_handler = _get_handler(root, _STREAM_HANDLER_ID)
    if stream_handler is None:
        stream_handler = logging.StreamHandler()
        _mark_handler(stream_handler, _STREAM_HANDLER_ID)
        root.addHandler(stream_handler)
    elif isinstance(stream_handler, logging.StreamHandler):
        # Follow sys.stderr when it was swapped after the handler was created.
        stream_handler.setStream(sys.stderr)
    stream_handler.setFormatter(logging.Formatter(_FORMAT))
    stream_handler.setLevel(stream_level)

    file_path_raw = os.environ.get("SPICE_LOG_FILE", "").strip()
    file_level: int | None = None
    file_handler = _get_handler(root, _FILE_HANDLER_ID)
    if file_path_raw:
        file_path = Path(file_path_raw).expanduser().resolve()
        file_path.parent.mkdir(parents=True, exist_ok=True)
        if (
            file_handler is None
            or not isinstance(file_handler, logging.FileHandler)
            or Path(file_handler.baseFilename).resolve() != file_path
        ):
            if file_handler is not None:
                root.removeHandler(file_handler)
                file_handler.close()
            file_handler = logging.FileHandler(file_path, encoding="utf-8")
            _mark_handler(file_handler, _FILE_HANDLER_ID)
            root.addHandler(file_handler)
        file_level = min(stream_level, logging.INFO)
        file_handler.setFormatter(logging.Formatter(_FORMAT))
        file_handler.setLevel(file_level)
    elif file_handler is not None:
        root.removeHandler(file_handler)
        file_handler.close()

    effective_level = stream_level
    if file_level is not None:
        effective_level = min(effective_level, file_level)
    root.setLevel(effective_level)


@contextlib.contextmanager
def scoped_engine_log_level(
    level_name: str | None,
    environ: MutableMapping[str, str] | None = None,
) -> Iterator[str]:
    """Point the engine log level variables at *level_name* for one call.

    Prior values, including absence, are restored on exit. The variables are
    process-wide, so only one orchestrator may hold this scope at a time.
    """
    env = os.environ if environ is None else environ
    value = engine_level_name(level_name)
    saved = {key: env.get(key) for key in ENGINE_LOG_LEVEL_ENV_KEYS}
    try:
        for key in ENGINE_LOG_LEVEL_ENV_KEYS:
            env[key] = value
        yield value
    finally:
        for key, previous in saved.items():
            if previous is None:
                env.pop(key, None)
            else:
                env[key] = previous
