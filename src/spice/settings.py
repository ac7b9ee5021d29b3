from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from spice._logging import LOG_LEVELS
from spice.kvargs import parse_key_value_args
from spice.models import ConfigError

DEFAULT_SETTINGS_FILE = "spice.yaml"
SETTINGS_ENV = "SPICE_CONFIG"
SETTINGS_ALLOWED_KEYS = {
    "threads",
    "max_records",
    "use_static_metadata",
    "log_level",
    "tag",
    "tag_json",
    "output",
    "surveyor_args",
    "uploader_args",
    "surveyor_command",
    "uploader_command",
}


@dataclass(frozen=True)
class Settings:
    path: Path | None = None
    values: dict[str, Any] = field(default_factory=dict)

    def get(self, key: str) -> Any:
        return self.values.get(key)


def default_settings_path() -> Path:
    return Path(DEFAULT_SETTINGS_FILE).expanduser().resolve()


def _coerce_positive_int(value: Any, *, label: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"{label} must be an integer")
    if value < 1:
        raise ConfigError(f"{label} must be >= 1")
    return int(value)


def _coerce_bool(value: Any, *, label: str) -> bool:
    if not isinstance(value, bool):
        raise ConfigError(f"{label} must be a boolean")
    return value


def _coerce_optional_str(value: Any, *, label: str) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ConfigError(f"{label} must be a string")
    trimmed = value.strip()
    return trimmed or None


def _coerce_log_level(value: Any, *, label: str) -> str:
    text = _coerce_optional_str(value, label=label)
    if text is None or text.lower() not in LOG_LEVELS:
        raise ConfigError(f"{label} must be one of {list(LOG_LEVELS)}")
    return text.lower()


def _coerce_key_values(value: Any, *, label: str) -> dict[str, str]:
    if value is None:
        return {}
    if isinstance(value, dict):
        parsed: dict[str, str] = {}
        for key, item in value.items():
            if not isinstance(item, (str, int, float, bool)):
                raise ConfigError(
                    f"{label}.{key} must be a scalar value (str/int/float/bool)"
                )
            if isinstance(item, bool):
                parsed[str(key)] = "true" if item else "false"
            else:
                parsed[str(key)] = str(item)
        return parsed
    if isinstance(value, list):
        if not all(isinstance(item, str) for item in value):
            raise ConfigError(f"{label} must contain only strings")
        return parse_key_value_args(value)
    raise ConfigError(f"{label} must be a mapping or a list of strings")


def _parse_settings(raw: dict[str, Any], *, source: Path) -> dict[str, Any]:
    unknown = sorted(set(raw.keys()) - SETTINGS_ALLOWED_KEYS)
    if unknown:
        raise ConfigError(
            f"{source} has unknown keys: {unknown}. "
            f"Allowed keys: {sorted(SETTINGS_ALLOWED_KEYS)}"
        )
    parsed: dict[str, Any] = {}
    for key in ("threads", "max_records"):
        if raw.get(key) is not None:
            parsed[key] = _coerce_positive_int(raw[key], label=key)
    if raw.get("use_static_metadata") is not None:
        parsed["use_static_metadata"] = _coerce_bool(
            raw["use_static_metadata"], label="use_static_metadata"
        )
    if raw.get("log_level") is not None:
        parsed["log_level"] = _coerce_log_level(raw["log_level"], label="log_level")
    for key in ("tag", "tag_json", "surveyor_command", "uploader_command"):
        text = _coerce_optional_str(raw.get(key), label=key)
        if text is not None:
            parsed[key] = text
    output = _coerce_optional_str(raw.get("output"), label="output")
    if output is not None:
        output_path = Path(output).expanduser()
        if not output_path.is_absolute():
            output_path = (source.parent / output_path).resolve()
        parsed["output"] = output_path
    for key in ("surveyor_args", "uploader_args"):
        if key in raw:
            parsed[key] = _coerce_key_values(raw[key], label=key)
    return parsed


def load_settings(path: str | Path | None) -> Settings:
    """Load the optional YAML defaults file.

    An explicit *path* (or ``SPICE_CONFIG``) must exist; the implicit
    ``./spice.yaml`` is skipped when absent.
    """
    explicit = path if path is not None else os.environ.get(SETTINGS_ENV, "").strip()
    required = bool(explicit)
    resolved_path = (
        Path(explicit).expanduser().resolve() if explicit else default_settings_path()
    )
    if not resolved_path.exists():
        if required:
            raise ConfigError(f"Settings file not found: {resolved_path}")
        return Settings()

    try:
        loaded = yaml.safe_load(resolved_path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML in {resolved_path}: {exc}") from exc
    if loaded is None:
        loaded = {}
    if not isinstance(loaded, dict):
        raise ConfigError(f"Settings file root must be a mapping: {resolved_path}")
    values = _parse_settings({str(k): v for k, v in loaded.items()}, source=resolved_path)
    return Settings(path=resolved_path, values=values)
