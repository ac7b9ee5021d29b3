from __future__ import annotations

import logging
import os
import shutil
import tempfile
from dataclasses import dataclass
from pathlib import Path

from spice.utils import utc_stamp

_log = logging.getLogger("spice.layout")

APP_DIR_NAME = ".spicelabs"
SURVEYOR_DIR_NAME = "surveyor"
SURVEY_DIR_NAME = "survey"
SCRATCH_DIR_NAME = "tmp"
UPLOAD_DIR_NAME = "ginger-output"

_BASE_DIR_CACHE: Path | None = None


@dataclass(frozen=True)
class OutputLayout:
    base_dir: Path
    invocation_dir: Path

    @property
    def surveyor_root(self) -> Path:
        return self.base_dir / SURVEYOR_DIR_NAME

    @property
    def survey_output_dir(self) -> Path:
        return self.invocation_dir / SURVEY_DIR_NAME

    @property
    def scratch_dir(self) -> Path:
        return self.invocation_dir / SCRATCH_DIR_NAME

    @property
    def upload_output_dir(self) -> Path:
        return self.invocation_dir / UPLOAD_DIR_NAME

    def to_json(self) -> dict[str, str]:
        return {
            "base_dir": str(self.base_dir),
            "invocation_dir": str(self.invocation_dir),
            "survey_output_dir": str(self.survey_output_dir),
            "scratch_dir": str(self.scratch_dir),
            "upload_output_dir": str(self.upload_output_dir),
        }


def _user_home() -> str:
    return os.environ.get("HOME") or os.environ.get("USERPROFILE") or ""


def _is_filesystem_root(path: Path) -> bool:
    return path == Path(path.anchor)


def resolve_base_dir(
    app_dir_name: str = APP_DIR_NAME,
    *,
    home: str | None = None,
    var_tmp: Path = Path("/var/tmp"),
    tmp: Path = Path("/tmp"),
) -> Path:
    """Pick the directory that holds every invocation's output.

    Prefers ``~/<app_dir_name>``; falls back to ``/var/tmp`` and then ``/tmp``
    when the home directory is unset or is the filesystem root.
    """
    home_text = _user_home() if home is None else home
    if home_text.strip():
        home_path = Path(home_text.strip())
        if not _is_filesystem_root(home_path):
            return home_path / app_dir_name
        _log.warning("Home directory is the filesystem root (%s)", home_path)
    else:
        _log.warning("Home directory is not set")

    if var_tmp.is_dir():
        _log.warning("Falling back to %s for output", var_tmp / app_dir_name)
        return var_tmp / app_dir_name

    _log.warning("%s does not exist, falling back to %s", var_tmp, tmp / app_dir_name)
    return tmp / app_dir_name


def default_base_dir() -> Path:
    """Resolve the base directory once per process."""
    global _BASE_DIR_CACHE
    if _BASE_DIR_CACHE is None:
        _BASE_DIR_CACHE = resolve_base_dir()
    return _BASE_DIR_CACHE


def create_invocation_layout(base_dir: Path) -> OutputLayout:
    base = Path(base_dir).expanduser()
    surveyor_root = base / SURVEYOR_DIR_NAME
    surveyor_root.mkdir(parents=True, exist_ok=True)
    # mkdtemp creates the directory atomically, so concurrent runs never collide.
    invocation_dir = Path(tempfile.mkdtemp(prefix=f"{utc_stamp()}-", dir=surveyor_root))
    layout = OutputLayout(base_dir=base, invocation_dir=invocation_dir)
    layout.survey_output_dir.mkdir(parents=True, exist_ok=True)
    layout.scratch_dir.mkdir(parents=True, exist_ok=True)
    _log.info("invocation_dir_created path=%s", invocation_dir)
    return layout


def remove_tree(path: Path) -> None:
    """Delete *path* recursively; a missing directory is not an error."""
    target = Path(path)
    if not target.exists():
        return
    try:
        shutil.rmtree(target)
    except FileNotFoundError:
        return
    except OSError as exc:
        _log.warning("Failed to remove %s: %s", target, exc)
