from __future__ import annotations

from typing import Sequence

from spice._logging import ENGINE_LOG_LEVEL_ENV_KEYS
from spice.engines.base import SurveyRequest
from spice.engines.process import (
    render_extra_args,
    resolve_engine_command,
    run_engine_command,
)

SURVEYOR_CMD_ENV = "SPICE_SURVEYOR_CMD"
DEFAULT_SURVEYOR_CMD = "goatrodeo"


class GoatRodeoSurveyor:
    name = "goatrodeo"

    def __init__(self, command: str | Sequence[str] | None = None):
        self.command = resolve_engine_command(
            command, env_key=SURVEYOR_CMD_ENV, default=DEFAULT_SURVEYOR_CMD
        )

    def build_argv(self, request: SurveyRequest) -> list[str]:
        argv = [
            *self.command,
            "--build",
            str(request.payload_path),
            "--out",
            str(request.output_path),
            "--threads",
            str(request.threads),
            "--maxrecords",
            str(request.max_records),
        ]
        if request.tag:
            argv.extend(["--tag", request.tag])
        if request.tag_json:
            argv.extend(["--tag-json", request.tag_json])
        argv.append(
            "--static-metadata" if request.use_static_metadata else "--no-static-metadata"
        )
        if request.temp_dir is not None:
            argv.extend(["--tempdir", str(request.temp_dir)])
        argv.extend(render_extra_args(request.extra_args))
        return argv

    def survey(self, request: SurveyRequest) -> None:
        run_engine_command(
            self.name,
            self.build_argv(request),
            env_updates={key: request.log_level for key in ENGINE_LOG_LEVEL_ENV_KEYS},
        )
