from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any


class SpiceError(RuntimeError):
    """Base error for orchestrator failures."""


class ConfigError(SpiceError):
    """Raised when the invocation is misconfigured."""


class MissingTagError(ConfigError):
    pass


class MissingCredentialError(ConfigError):
    pass


class UnknownCommandError(ConfigError):
    pass


class InvalidCredentialFormat(SpiceError):
    """Raised when a credential cannot be decoded as a structured token."""


class EngineError(SpiceError):
    """Raised when the surveyor or uploader engine fails."""

    def __init__(self, engine: str, message: str, *, returncode: int | None = None):
        super().__init__(f"{engine}: {message}")
        self.engine = engine
        self.returncode = returncode


class Command(Enum):
    RUN = "run"
    SURVEY_ARTIFACTS = "survey_artifacts"
    UPLOAD_ADGS = "upload_adgs"
    UPLOAD_DEPLOYMENT_EVENTS = "upload_deployment_events"
    DECODE_CREDENTIAL = "decode_credential"

    @property
    def cli_name(self) -> str:
        return self.value.replace("_", "-")

    def __str__(self) -> str:
        return self.cli_name


DEPRECATED_COMMAND_ALIASES = {"scan_artifacts": Command.SURVEY_ARTIFACTS}


def parse_command(token: str | None) -> Command:
    """Resolve a ``--command`` token (case-insensitive, ``-`` or ``_``)."""
    if token is None or not str(token).strip():
        return Command.RUN
    normalized = str(token).strip().lower().replace("-", "_")
    for command in Command:
        if command.value == normalized:
            return command
    if normalized in DEPRECATED_COMMAND_ALIASES:
        return DEPRECATED_COMMAND_ALIASES[normalized]
    expected = [command.cli_name for command in Command]
    raise UnknownCommandError(f"Invalid command: {token}, expected one of {expected}")


SURVEY_COMMANDS = frozenset({Command.RUN, Command.SURVEY_ARTIFACTS})
UPLOAD_DIAGNOSTIC_COMMANDS = frozenset({Command.RUN, Command.UPLOAD_ADGS})
CREDENTIAL_OPTIONAL_COMMANDS = frozenset(
    {Command.SURVEY_ARTIFACTS, Command.DECODE_CREDENTIAL}
)

DEFAULT_MAX_RECORDS = 5000
DEFAULT_LOG_LEVEL = "info"


@dataclass(frozen=True)
class RunConfig:
    command: Command = Command.RUN
    input_path: Path | None = None
    output_path: Path | None = None
    tag: str | None = None
    tag_json: str | None = None
    threads: int | None = None
    max_records: int = DEFAULT_MAX_RECORDS
    use_static_metadata: bool = True
    credential: str | None = None
    surveyor_args: dict[str, str] = field(default_factory=dict)
    uploader_args: dict[str, str] = field(default_factory=dict)
    log_level: str = DEFAULT_LOG_LEVEL

    def to_json(self) -> dict[str, Any]:
        return {
            "command": self.command.cli_name,
            "input_path": None if self.input_path is None else str(self.input_path),
            "output_path": None if self.output_path is None else str(self.output_path),
            "tag": self.tag,
            "tag_json": self.tag_json,
            "threads": self.threads,
            "max_records": self.max_records,
            "use_static_metadata": self.use_static_metadata,
            "credential_set": bool(self.credential and self.credential.strip()),
            "surveyor_args": dict(self.surveyor_args),
            "uploader_args": dict(self.uploader_args),
            "log_level": self.log_level,
        }


def is_blank(value: str | None) -> bool:
    return value is None or not str(value).strip()
