"""Command resolution and dispatch for the spice CLI.

One :class:`Orchestrator` handles one invocation: it fills in defaults,
validates the command's preconditions, prepares the output layout and then
hands off to the surveyor and/or uploader engines.

The engine log level is exported through process-wide environment variables
for the duration of a survey, so only one orchestrator may run per process at
a time.
"""

from __future__ import annotations

import json
import logging
import os
import shutil
import sys
import tempfile
import time
from dataclasses import replace
from pathlib import Path
from typing import Any, BinaryIO, Callable, MutableMapping

from spice._logging import engine_level_name, scoped_engine_log_level
from spice.credential import STATUS_EXPIRED, CredentialInspector, format_instant
from spice.engines.base import AdgUploadRequest, SurveyRequest, Surveyor, Uploader
from spice.layout import OutputLayout, create_invocation_layout, default_base_dir, remove_tree
from spice.models import (
    CREDENTIAL_OPTIONAL_COMMANDS,
    SURVEY_COMMANDS,
    UPLOAD_DIAGNOSTIC_COMMANDS,
    Command,
    InvalidCredentialFormat,
    MissingCredentialError,
    MissingTagError,
    RunConfig,
    is_blank,
)
from spice.utils import available_cores, half_of_cores

_log = logging.getLogger("spice.orchestrator")

CREDENTIAL_ENV = "SPICE_PASS"
DEPLOY_EVENTS_PREFIX = "deploy-events-"


def resolve_thread_count(threads: int | None, cores: int) -> int:
    if threads is not None:
        return threads
    return half_of_cores(cores)


def _discard_file(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError as exc:
        _log.warning("Failed to delete temporary file %s: %s", path, exc)


class Orchestrator:
    def __init__(
        self,
        config: RunConfig,
        *,
        surveyor: Surveyor,
        uploader: Uploader,
        environ: MutableMapping[str, str] | None = None,
        stdin: BinaryIO | None = None,
        cpu_count: Callable[[], int] | None = None,
        base_dir_resolver: Callable[[], Path] | None = None,
    ):
        self.config = config
        self.surveyor = surveyor
        self.uploader = uploader
        self._environ = os.environ if environ is None else environ
        self._stdin = stdin
        self._cpu_count = cpu_count or available_cores
        self._base_dir_resolver = base_dir_resolver or default_base_dir
        self.layout: OutputLayout | None = None
        self._steps: list[dict[str, Any]] = []

    # ── Pre-flight ────────────────────────────

    def prepare(self) -> RunConfig:
        """Resolve defaults and validate; first violation wins."""
        cfg = self.config
        command = cfg.command

        if command in SURVEY_COMMANDS and is_blank(cfg.tag):
            raise MissingTagError(f"--tag is required for command: {command}")

        if cfg.threads is None:
            cores = self._cpu_count()
            cfg = replace(cfg, threads=resolve_thread_count(None, cores))
            _log.info(
                "threads_resolved threads=%d available_cores=%d", cfg.threads, cores
            )

        if cfg.input_path is None:
            cfg = replace(cfg, input_path=Path.cwd())

        if command in SURVEY_COMMANDS:
            base_dir = cfg.output_path or self._base_dir_resolver()
            self.layout = create_invocation_layout(base_dir)
            cfg = replace(cfg, output_path=self.layout.base_dir)

        if is_blank(cfg.credential):
            cfg = replace(cfg, credential=self._environ.get(CREDENTIAL_ENV))

        if command not in CREDENTIAL_OPTIONAL_COMMANDS and is_blank(cfg.credential):
            raise MissingCredentialError(
                f"{CREDENTIAL_ENV} must be set via --credential or the "
                f"{CREDENTIAL_ENV} env var for command: {command}"
            )

        self.config = cfg
        return cfg

    def _credential_diagnostics(self) -> dict[str, Any] | None:
        credential = self.config.credential
        if self.config.command not in UPLOAD_DIAGNOSTIC_COMMANDS or is_blank(credential):
            return None
        try:
            inspector = CredentialInspector(credential)
        except InvalidCredentialFormat as exc:
            # Decode failures never abort an upload.
            _log.warning("Could not decode %s for diagnostics: %s", CREDENTIAL_ENV, exc)
            return {"error": str(exc)}
        status = inspector.status()
        _log.info(
            "credential project_id=%s expires_at=%s status=%s",
            inspector.project_id,
            format_instant(inspector.expires_at),
            status,
        )
        if status == STATUS_EXPIRED:
            _log.warning("%s has expired; the upload will likely be rejected", CREDENTIAL_ENV)
        return {
            "project_id": inspector.project_id,
            "expires_at": format_instant(inspector.expires_at),
            "status": status,
        }

    # ── Dispatch ──────────────────────────────

    def run(self) -> dict[str, Any]:
        cfg = self.prepare()
        diagnostics = self._credential_diagnostics()

        handlers: dict[Command, Callable[[], dict[str, Any] | None]] = {
            Command.RUN: self._run_all,
            Command.SURVEY_ARTIFACTS: self._survey,
            Command.UPLOAD_ADGS: self._upload_adgs,
            Command.UPLOAD_DEPLOYMENT_EVENTS: self._upload_deployment_events,
            Command.DECODE_CREDENTIAL: self._decode_credential,
        }
        decoded = handlers[cfg.command]()

        return {
            "command": cfg.command.cli_name,
            "config": cfg.to_json(),
            "layout": None if self.layout is None else self.layout.to_json(),
            "credential": decoded if decoded is not None else diagnostics,
            "steps": list(self._steps),
        }

    def _record_step(self, step: str, engine: str, started: float, **extra: Any) -> None:
        self._steps.append(
            {
                "step": step,
                "engine": engine,
                "duration_sec": round(time.perf_counter() - started, 3),
                **extra,
            }
        )

    def _survey(self) -> None:
        cfg = self.config
        layout = self.layout
        if layout is None or cfg.input_path is None or cfg.threads is None:
            raise RuntimeError("survey dispatched before pre-flight resolution")
        _log.info(
            "survey_start engine=%s payload=%s output=%s",
            self.surveyor.name,
            cfg.input_path,
            layout.survey_output_dir,
        )
        request = SurveyRequest(
            payload_path=cfg.input_path,
            output_path=layout.survey_output_dir,
            threads=cfg.threads,
            max_records=cfg.max_records,
            tag=str(cfg.tag),
            tag_json=cfg.tag_json,
            use_static_metadata=cfg.use_static_metadata,
            temp_dir=layout.scratch_dir,
            extra_args=dict(cfg.surveyor_args),
            log_level=engine_level_name(cfg.log_level),
        )
        started = time.perf_counter()
        try:
            with scoped_engine_log_level(cfg.log_level, self._environ):
                self.surveyor.survey(request)
        finally:
            remove_tree(layout.scratch_dir)
        self._record_step(
            "survey", self.surveyor.name, started, output=str(layout.survey_output_dir)
        )

    def _upload_adgs(self, source_dir: Path | None = None, output_dir: Path | None = None) -> None:
        cfg = self.config
        source = source_dir or cfg.input_path
        if source is None:
            raise RuntimeError("upload dispatched before pre-flight resolution")
        destination = output_dir or cfg.output_path
        _log.info(
            "upload_adgs_start engine=%s source=%s output=%s",
            self.uploader.name,
            source,
            destination,
        )
        request = AdgUploadRequest(
            credential=str(cfg.credential),
            source_dir=source,
            output_dir=destination,
            extra_args=dict(cfg.uploader_args),
        )
        started = time.perf_counter()
        self.uploader.upload_adgs(request)
        self._record_step(
            "upload_adgs",
            self.uploader.name,
            started,
            source=str(source),
            output=None if destination is None else str(destination),
        )

    def _run_all(self) -> None:
        self._survey()
        layout = self.layout
        if layout is None:
            raise RuntimeError("run dispatched before pre-flight resolution")
        self._upload_adgs(layout.survey_output_dir, layout.upload_output_dir)

    def _upload_deployment_events(self) -> None:
        _log.info("upload_deployment_events_start engine=%s", self.uploader.name)
        stream = self._stdin if self._stdin is not None else sys.stdin.buffer
        fd, name = tempfile.mkstemp(prefix=DEPLOY_EVENTS_PREFIX, suffix=".json")
        events_file = Path(name)
        started = time.perf_counter()
        try:
            with os.fdopen(fd, "wb") as handle:
                shutil.copyfileobj(stream, handle)
            self._check_events_payload(events_file)
            self.uploader.upload_deployment_events(str(self.config.credential), events_file)
        finally:
            _discard_file(events_file)
        self._record_step("upload_deployment_events", self.uploader.name, started)

    def _check_events_payload(self, events_file: Path) -> None:
        try:
            payload = json.loads(events_file.read_text(encoding="utf-8"))
        except (ValueError, RecursionError) as exc:
            _log.warning("Deployment events on stdin could not be parsed: %s", exc)
            return
        if not isinstance(payload, list):
            _log.warning("Deployment events payload is not a JSON array")
            return
        _log.info("deployment_events count=%d", len(payload))

    def _decode_credential(self) -> dict[str, Any]:
        credential = self.config.credential
        if is_blank(credential):
            raise MissingCredentialError(
                f"No credential to decode; pass --credential or set {CREDENTIAL_ENV}"
            )
        inspector = CredentialInspector(credential)
        inspector.log_full_info()
        return inspector.describe().to_json()
