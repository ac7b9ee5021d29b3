from __future__ import annotations

import logging
import os
import shlex
import shutil
import subprocess
import time
from typing import Mapping, Sequence

from spice.models import EngineError

_log = logging.getLogger("spice.engines.process")


def resolve_engine_command(
    explicit: str | Sequence[str] | None, *, env_key: str, default: str
) -> list[str]:
    """Return the argv prefix for an engine executable.

    An explicit value wins, then *env_key*, then *default*. Strings are split
    with shell quoting rules.
    """
    if explicit is not None and not isinstance(explicit, str):
        argv = [str(part) for part in explicit]
        if argv:
            return argv
    text = explicit if isinstance(explicit, str) else None
    if not text or not text.strip():
        text = os.environ.get(env_key, "").strip() or default
    argv = shlex.split(text)
    if not argv:
        raise EngineError(env_key, "engine command resolved to an empty string")
    return argv


def render_extra_args(extra_args: Mapping[str, str]) -> list[str]:
    """Render forwarded options as ``--key value`` pairs; ``true`` is a bare flag."""
    rendered: list[str] = []
    for key, value in extra_args.items():
        flag = key if key.startswith("-") else f"--{key}"
        rendered.append(flag)
        if value != "true":
            rendered.append(value)
    return rendered


def run_engine_command(
    engine: str,
    argv: Sequence[str],
    *,
    env_updates: Mapping[str, str] | None = None,
) -> None:
    executable = argv[0]
    if shutil.which(executable) is None:
        raise EngineError(engine, f"'{executable}' is not installed or not on PATH")

    child_env = os.environ.copy()
    if env_updates:
        child_env.update(env_updates)

    _log.debug("engine_start engine=%s argv=%s", engine, shlex.join(argv))
    started = time.perf_counter()
    try:
        completed = subprocess.run(list(argv), env=child_env, check=False)
    except OSError as exc:
        raise EngineError(engine, f"failed to start '{executable}': {exc}") from exc
    duration_sec = time.perf_counter() - started
    _log.debug(
        "engine_end engine=%s exit_code=%s duration_sec=%.3f",
        engine,
        completed.returncode,
        duration_sec,
    )
    if completed.returncode != 0:
        raise EngineError(
            engine,
            f"exited with status {completed.returncode}",
            returncode=completed.returncode,
        )
