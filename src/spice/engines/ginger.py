from __future__ import annotations

from pathlib import Path
from typing import Sequence

from spice.engines.base import AdgUploadRequest
from spice.engines.process import (
    render_extra_args,
    resolve_engine_command,
    run_engine_command,
)

UPLOADER_CMD_ENV = "SPICE_UPLOADER_CMD"
DEFAULT_UPLOADER_CMD = "ginger"
CREDENTIAL_ENV = "SPICE_PASS"


class GingerUploader:
    name = "ginger"

    def __init__(self, command: str | Sequence[str] | None = None):
        self.command = resolve_engine_command(
            command, env_key=UPLOADER_CMD_ENV, default=DEFAULT_UPLOADER_CMD
        )

    def build_adg_argv(self, request: AdgUploadRequest) -> list[str]:
        argv = [*self.command, "--adg", str(request.source_dir)]
        if request.output_dir is not None:
            argv.extend(["--out", str(request.output_dir)])
        argv.extend(render_extra_args(request.extra_args))
        return argv

    def build_events_argv(self, events_file: Path) -> list[str]:
        return [*self.command, "--events", str(events_file)]

    def upload_adgs(self, request: AdgUploadRequest) -> None:
        if request.output_dir is not None:
            Path(request.output_dir).mkdir(parents=True, exist_ok=True)
        run_engine_command(
            self.name,
            self.build_adg_argv(request),
            env_updates={CREDENTIAL_ENV: request.credential},
        )

    def upload_deployment_events(self, credential: str, events_file: Path) -> None:
        run_engine_command(
            self.name,
            self.build_events_argv(events_file),
            env_updates={CREDENTIAL_ENV: credential},
        )
