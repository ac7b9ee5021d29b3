from __future__ import annotations

import argparse
import json
import logging
import os
import sys
import time
from pathlib import Path
from typing import Any, NoReturn, Sequence

from rich.console import Console
from rich.table import Table

from spice import __version__
from spice._logging import (
    LOG_LEVEL_ENV,
    LOG_LEVELS,
    level_from_name,
    normalize_level_name,
    setup_logging,
)
from spice.engines import GingerUploader, GoatRodeoSurveyor, Surveyor, Uploader
from spice.kvargs import split_key_value_option
from spice.models import (
    DEFAULT_LOG_LEVEL,
    DEFAULT_MAX_RECORDS,
    DEPRECATED_COMMAND_ALIASES,
    ConfigError,
    RunConfig,
    parse_command,
)
from spice.orchestrator import Orchestrator
from spice.settings import Settings, load_settings

_cli_log = logging.getLogger("spice.cli")

_BUILTIN_DEFAULTS: dict[str, Any] = {
    "threads": None,
    "max_records": DEFAULT_MAX_RECORDS,
    "use_static_metadata": True,
    "log_level": DEFAULT_LOG_LEVEL,
    "tag": None,
    "tag_json": None,
    "output": None,
    "surveyor_command": None,
    "uploader_command": None,
}
_TRUE_WORDS = {"true", "yes", "y", "1", "on"}
_FALSE_WORDS = {"false", "no", "n", "0", "off"}
_HELP_HINT = "Run 'spice --help' for usage."


class _ArgumentParser(argparse.ArgumentParser):
    def error(self, message: str) -> NoReturn:
        self.print_usage(sys.stderr)
        self.exit(1, f"{self.prog}: error: {message}\n")


def _positive_int(raw: str) -> int:
    try:
        value = int(raw)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"expected an integer, got '{raw}'") from exc
    if value < 1:
        raise argparse.ArgumentTypeError(f"expected a positive integer, got {value}")
    return value


def _parse_bool(raw: str) -> bool:
    text = str(raw).strip().lower()
    if text in _TRUE_WORDS:
        return True
    if text in _FALSE_WORDS:
        return False
    raise argparse.ArgumentTypeError(f"expected true or false, got '{raw}'")


def _console() -> Console:
    return Console(highlight=False)


def _build_parser() -> argparse.ArgumentParser:
    parser = _ArgumentParser(
        prog="spice",
        description="Spice Labs CLI: survey artifacts and upload ADGs",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--command",
        default=None,
        help=(
            "run[default - surveys and uploads adgs]|survey-artifacts|upload-adgs|"
            "upload-deployment-events|decode-credential"
        ),
    )
    parser.add_argument("--input", default=None, help="Input path (default: cwd)")
    parser.add_argument(
        "--output",
        default=None,
        help="Output base directory (default: ~/.spicelabs)",
    )
    parser.add_argument(
        "--tag",
        default=None,
        help="Tag all top level artifacts (files) with the current date and this text",
    )
    parser.add_argument("--tag-json", default=None, help="JSON attached to the tag")
    parser.add_argument(
        "--threads",
        type=_positive_int,
        default=None,
        help="Surveyor threads (default: half the available cores)",
    )
    parser.add_argument(
        "--max-records",
        type=_positive_int,
        default=None,
        help=f"Max records per batch (default: {DEFAULT_MAX_RECORDS})",
    )
    parser.add_argument(
        "--use-static-metadata",
        type=_parse_bool,
        default=None,
        metavar="BOOL",
        help="Collect static metadata while surveying (default: true)",
    )
    parser.add_argument(
        "--log-level",
        type=str.lower,
        choices=list(LOG_LEVELS),
        default=None,
        help="Log verbosity (default: info)",
    )
    parser.add_argument(
        "--surveyor-args",
        "--goat-rodeo-args",
        dest="surveyor_args",
        action="append",
        default=None,
        metavar="K=V[,K=V...]",
        help="Extra surveyor options (repeatable), e.g. blockList=ignored,tempDir=/tmp",
    )
    parser.add_argument(
        "--uploader-args",
        "--ginger-args",
        dest="uploader_args",
        action="append",
        default=None,
        metavar="K=V[,K=V...]",
        help="Extra uploader options (repeatable)",
    )
    parser.add_argument(
        "--credential",
        default=None,
        help="Spice pass (default: SPICE_PASS environment variable)",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Settings YAML path (default: SPICE_CONFIG or ./spice.yaml)",
    )
    parser.add_argument("--format", choices=["table", "json"], default="table")
    return parser


def _maybe_print_alias_notice(token: str | None) -> None:
    if not token:
        return
    normalized = token.strip().lower().replace("-", "_")
    if normalized in DEPRECATED_COMMAND_ALIASES:
        _cli_log.warning(
            "'%s' is a deprecated alias for '%s'.",
            token,
            DEPRECATED_COMMAND_ALIASES[normalized].cli_name,
        )


def _resolve_defaults(args: argparse.Namespace, settings: Settings) -> dict[str, str]:
    def _describe_sources(items: list[str]) -> str:
        if not items:
            return "builtin"
        if len(items) == 1:
            return items[0]
        return f"merged({'+'.join(items)})"

    sources: dict[str, str] = {}
    for key, builtin_value in _BUILTIN_DEFAULTS.items():
        resolved = builtin_value
        used_sources: list[str] = []

        if settings.get(key) is not None:
            resolved = settings.get(key)
            used_sources.append("settings")

        cli_value = getattr(args, key, None)
        if cli_value is not None:
            resolved = cli_value
            used_sources.append("cli")

        if key == "log_level" and not used_sources:
            env_level = os.environ.get(LOG_LEVEL_ENV, "").strip()
            if env_level:
                resolved = normalize_level_name(env_level)
                used_sources.append("env")

        setattr(args, key, resolved)
        sources[key] = _describe_sources(used_sources)

    for key in ("surveyor_args", "uploader_args"):
        merged: dict[str, str] = {}
        used_sources = []
        from_settings = settings.get(key)
        if from_settings:
            merged.update(from_settings)
            used_sources.append("settings")
        from_cli = split_key_value_option(getattr(args, key, None))
        if from_cli:
            merged.update(from_cli)
            used_sources.append("cli")
        setattr(args, key, merged)
        sources[key] = _describe_sources(used_sources)
    return sources


def build_config(args: argparse.Namespace) -> RunConfig:
    """Build the invocation config from parsed args (after defaults resolution)."""
    return RunConfig(
        command=parse_command(args.command),
        input_path=None if args.input is None else Path(args.input).expanduser(),
        output_path=None if args.output is None else Path(args.output).expanduser(),
        tag=args.tag,
        tag_json=args.tag_json,
        threads=args.threads,
        max_records=args.max_records,
        use_static_metadata=args.use_static_metadata,
        credential=args.credential,
        surveyor_args=dict(args.surveyor_args),
        uploader_args=dict(args.uploader_args),
        log_level=args.log_level,
    )


def _build_engines(args: argparse.Namespace) -> tuple[Surveyor, Uploader]:
    return (
        GoatRodeoSurveyor(args.surveyor_command),
        GingerUploader(args.uploader_command),
    )


def _render_summary_table(payload: dict[str, Any]) -> None:
    console = _console()
    config = dict(payload.get("config") or {})

    overview = Table(title="Spice Invocation", show_header=False)
    overview.add_column("Field", style="bold cyan")
    overview.add_column("Value")
    overview.add_row("Command", str(payload.get("command", "")))
    overview.add_row("Input", str(config.get("input_path") or "-"))
    overview.add_row("Tag", str(config.get("tag") or "-"))
    overview.add_row("Threads", str(config.get("threads") or "-"))
    overview.add_row("Max Records", str(config.get("max_records", "")))
    layout = payload.get("layout")
    if layout:
        overview.add_row("Invocation Dir", str(layout.get("invocation_dir", "")))
        overview.add_row("Survey Output", str(layout.get("survey_output_dir", "")))
    sources = dict(payload.get("resolved_defaults_sources") or {})
    non_builtin = sorted(key for key, value in sources.items() if value != "builtin")
    overview.add_row("Non-default Keys", ", ".join(non_builtin) or "-")
    console.print(overview)

    credential = payload.get("credential")
    if credential:
        cred_table = Table(title="Spice Pass", show_header=False)
        cred_table.add_column("Field", style="bold cyan")
        cred_table.add_column("Value")
        if "error" in credential:
            cred_table.add_row("Decode Error", str(credential["error"]))
        else:
            cred_table.add_row("Project ID", str(credential.get("project_id") or "-"))
            cred_table.add_row("Expires At", str(credential.get("expires_at") or "-"))
            cred_table.add_row("Status", str(credential.get("status", "")))
            for name, value in dict(credential.get("claims") or {}).items():
                cred_table.add_row(f"claim:{name}", str(value))
        console.print(cred_table)

    steps = list(payload.get("steps") or [])
    if steps:
        step_table = Table(title="Steps")
        step_table.add_column("Step", style="bold")
        step_table.add_column("Engine")
        step_table.add_column("Duration (s)", justify="right")
        step_table.add_column("Output")
        for step in steps:
            step_table.add_row(
                str(step.get("step", "")),
                str(step.get("engine", "")),
                f"{float(step.get('duration_sec', 0.0)):.3f}",
                str(step.get("output") or "-"),
            )
        console.print(step_table)


def _cmd_orchestrate(args: argparse.Namespace) -> int:
    settings = load_settings(args.config)
    sources = _resolve_defaults(args, settings)
    setup_logging(level=level_from_name(args.log_level))
    if settings.path is not None:
        _cli_log.info("settings_loaded path=%s", settings.path)
    _maybe_print_alias_notice(args.command)

    config = build_config(args)
    surveyor, uploader = _build_engines(args)
    payload = Orchestrator(config, surveyor=surveyor, uploader=uploader).run()
    payload["resolved_defaults_sources"] = sources

    if args.format == "json":
        print(json.dumps(payload, indent=2, sort_keys=True))
    else:
        _render_summary_table(payload)
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    setup_logging()
    parser = _build_parser()
    raw_argv = list(argv) if argv is not None else sys.argv[1:]
    args = parser.parse_args(raw_argv)
    if args.log_level is not None:
        setup_logging(level=level_from_name(args.log_level))
    command = str(args.command or "run")
    argv_text = " ".join(raw_argv)
    started = time.perf_counter()
    _cli_log.info("cli_command_start command=%s argv=%s", command, argv_text)

    exit_code = 1
    try:
        exit_code = int(_cmd_orchestrate(args))
    except ConfigError as exc:
        _cli_log.error(
            "cli_command_error command=%s kind=%s error=%s",
            command,
            type(exc).__name__,
            exc,
        )
        print(f"[config error] {exc}\n{_HELP_HINT}", file=sys.stderr)
        exit_code = 1
    except KeyboardInterrupt:
        _cli_log.error("cli_command_error command=%s kind=interrupted", command)
        print("\n[interrupted]", file=sys.stderr)
        exit_code = 130
    except RuntimeError as exc:
        _cli_log.error(
            "cli_command_error command=%s kind=%s error=%s",
            command,
            type(exc).__name__,
            exc,
        )
        _cli_log.debug("Stack trace:", exc_info=True)
        print(f"[runtime error] {exc}", file=sys.stderr)
        exit_code = 1
    except (OSError, ValueError) as exc:
        _cli_log.error(
            "cli_command_error command=%s kind=%s error=%s",
            command,
            type(exc).__name__,
            exc,
        )
        _cli_log.debug("Stack trace:", exc_info=True)
        print(f"[error] {type(exc).__name__}: {exc}", file=sys.stderr)
        exit_code = 1
    finally:
        duration_sec = time.perf_counter() - started
        _cli_log.info(
            "cli_command_end command=%s exit_code=%s duration_sec=%.3f",
            command,
            exit_code,
            duration_sec,
        )

    return exit_code


if __name__ == "__main__":
    raise SystemExit(main())
