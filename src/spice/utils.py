from __future__ import annotations

import datetime as dt
import os
import platform


def utc_now_iso() -> str:
    return (
        dt.datetime.now(dt.timezone.utc)
        .replace(microsecond=0)
        .isoformat()
        .replace("+00:00", "Z")
    )


def utc_stamp() -> str:
    return dt.datetime.now(dt.timezone.utc).strftime("%Y%m%dT%H%M%SZ")


def _is_linux() -> bool:
    return platform.system() == "Linux"


def available_cores() -> int:
    """Number of CPUs this process may run on."""
    if _is_linux() and hasattr(os, "sched_getaffinity"):
        try:
            cores = len(os.sched_getaffinity(0))
            if cores:
                return cores
        except OSError:
            pass
    return os.cpu_count() or 1


def half_of_cores(cores: int) -> int:
    # Half-up rounding; built-in round() would send 5 / 2 to 2.
    return max(1, (int(cores) + 1) // 2)
