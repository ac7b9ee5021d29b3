from __future__ import annotations

import base64
import io
import json
import logging
from pathlib import Path
from typing import Any

import pytest

from spice import cli
from spice.cli import main
from spice.engines.base import AdgUploadRequest, SurveyRequest
from spice.models import EngineError


def _write(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content.strip() + "\n", encoding="utf-8")


def _segment(value: Any) -> str:
    raw = json.dumps(value).encode("utf-8")
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _token(claims: dict[str, Any]) -> str:
    return f"{_segment({'alg': 'HS256', 'typ': 'JWT'})}.{_segment(claims)}.sig"


class _RecordingSurveyor:
    name = "recording-surveyor"

    def __init__(self) -> None:
        self.requests: list[SurveyRequest] = []
        self.fail: Exception | None = None

    def survey(self, request: SurveyRequest) -> None:
        self.requests.append(request)
        (request.output_path / "graph.grc").write_bytes(b"grc")
        if self.fail is not None:
            raise self.fail


class _RecordingUploader:
    name = "recording-uploader"

    def __init__(self) -> None:
        self.requests: list[AdgUploadRequest] = []
        self.events: list[bytes] = []

    def upload_adgs(self, request: AdgUploadRequest) -> None:
        self.requests.append(request)

    def upload_deployment_events(self, credential: str, events_file: Path) -> None:
        self.events.append(events_file.read_bytes())


@pytest.fixture
def engines(monkeypatch, tmp_path: Path) -> tuple[_RecordingSurveyor, _RecordingUploader]:
    surveyor = _RecordingSurveyor()
    uploader = _RecordingUploader()
    monkeypatch.setattr(cli, "_build_engines", lambda args: (surveyor, uploader))
    monkeypatch.chdir(tmp_path)
    for key in ("SPICE_PASS", "SPICE_CONFIG", "SPICE_LOG_FILE", "SPICE_LOG_LEVEL"):
        monkeypatch.delenv(key, raising=False)
    return surveyor, uploader


def test_run_workflow_surveys_and_uploads(engines, tmp_path: Path, monkeypatch, capsys) -> None:
    surveyor, uploader = engines
    monkeypatch.setenv("SPICE_PASS", _token({"x-uuid-project": "proj-7"}))
    payload = tmp_path / "payload"
    payload.mkdir()
    (payload / "app.jar").write_bytes(b"PK")

    exit_code = main(
        [
            "--tag",
            "release",
            "--input",
            str(payload),
            "--output",
            str(tmp_path / "out"),
            "--threads",
            "2",
            "--surveyor-args",
            "blockList=/etc/b,tempDir=/tmp/x",
            "--goat-rodeo-args",
            "maxRecords=10",
            "--uploader-args=--skip-key,--encrypt-only",
            "--format",
            "json",
        ]
    )

    assert exit_code == 0
    summary = json.loads(capsys.readouterr().out)
    assert summary["command"] == "run"
    assert summary["credential"]["project_id"] == "proj-7"
    request = surveyor.requests[0]
    assert request.threads == 2
    assert request.extra_args == {"blockList": "/etc/b", "tempDir": "/tmp/x", "maxRecords": "10"}
    assert uploader.requests[0].extra_args == {"--skip-key": "true", "--encrypt-only": "true"}
    assert uploader.requests[0].source_dir == request.output_path
    invocation_dir = Path(summary["layout"]["invocation_dir"])
    assert invocation_dir.parent == tmp_path / "out" / "surveyor"
    assert summary["resolved_defaults_sources"]["threads"] == "cli"
    assert summary["resolved_defaults_sources"]["max_records"] == "builtin"


def test_survey_artifacts_renders_table(engines, tmp_path: Path, capsys) -> None:
    exit_code = main(
        [
            "--command",
            "Survey-Artifacts",
            "--tag",
            "t",
            "--input",
            str(tmp_path),
            "--output",
            str(tmp_path / "out"),
        ]
    )

    assert exit_code == 0
    out = capsys.readouterr().out
    assert "Spice Invocation" in out
    assert "survey-artifacts" in out


def test_missing_tag_exits_1_with_hint(engines, tmp_path: Path, capsys) -> None:
    surveyor, _ = engines

    exit_code = main(["--command", "run", "--output", str(tmp_path / "out")])

    assert exit_code == 1
    err = capsys.readouterr().err
    assert "[config error] --tag is required" in err
    assert "spice --help" in err
    assert "Traceback" not in err
    assert not (tmp_path / "out").exists()
    assert surveyor.requests == []


def test_missing_credential_exits_1(engines, tmp_path: Path, capsys) -> None:
    _, uploader = engines

    exit_code = main(["--command", "upload-adgs", "--input", str(tmp_path)])

    assert exit_code == 1
    assert "SPICE_PASS must be set" in capsys.readouterr().err
    assert uploader.requests == []


def test_unknown_command_exits_1(engines, capsys) -> None:
    exit_code = main(["--command", "not-a-real"])

    assert exit_code == 1
    assert "Invalid command: not-a-real" in capsys.readouterr().err


def test_argument_errors_exit_1(engines) -> None:
    with pytest.raises(SystemExit) as exc:
        main(["--threads", "0"])
    assert exc.value.code == 1


def test_engine_failure_exits_1(engines, tmp_path: Path, capsys) -> None:
    surveyor, _ = engines
    surveyor.fail = EngineError("goatrodeo", "exited with status 2", returncode=2)

    exit_code = main(
        ["--command", "survey-artifacts", "--tag", "t", "--output", str(tmp_path / "out")]
    )

    assert exit_code == 1
    assert "[runtime error] goatrodeo: exited with status 2" in capsys.readouterr().err


def test_upload_deployment_events_reads_stdin(engines, monkeypatch, capsys) -> None:
    _, uploader = engines
    monkeypatch.setenv("SPICE_PASS", "tok")
    payload = b'[{"identifier":"x","system":"y","artifact":"z","start_time":"2025-01-01T00:00:00Z"}]'
    monkeypatch.setattr("sys.stdin", io.TextIOWrapper(io.BytesIO(payload)))

    exit_code = main(["--command", "upload-deployment-events", "--format", "json"])

    assert exit_code == 0
    assert uploader.events == [payload]


def test_decode_credential_reports_no_expiration(engines, capsys) -> None:
    token = _token({"sub": "svc", "project_id": "p-1"})

    exit_code = main(["--command", "decode-credential", "--credential", token, "--format", "json"])

    assert exit_code == 0
    summary = json.loads(capsys.readouterr().out)
    assert summary["credential"]["status"] == "No expiration"
    assert summary["credential"]["project_id"] == "p-1"


def test_decode_credential_rejects_garbage(engines, capsys) -> None:
    exit_code = main(["--command", "decode-credential", "--credential", "garbage"])

    assert exit_code == 1
    assert "expected to have 3 parts" in capsys.readouterr().err


def test_settings_file_supplies_defaults(engines, tmp_path: Path, capsys) -> None:
    surveyor, _ = engines
    _write(
        tmp_path / "spice.yaml",
        """
tag: from-settings
max_records: 42
surveyor_args:
  blockList: /etc/from-settings
""",
    )

    exit_code = main(
        [
            "--command",
            "survey-artifacts",
            "--output",
            str(tmp_path / "out"),
            "--surveyor-args",
            "extra=1",
            "--format",
            "json",
        ]
    )

    assert exit_code == 0
    summary = json.loads(capsys.readouterr().out)
    request = surveyor.requests[0]
    assert request.tag == "from-settings"
    assert request.max_records == 42
    assert request.extra_args == {"blockList": "/etc/from-settings", "extra": "1"}
    assert summary["resolved_defaults_sources"]["tag"] == "settings"
    assert summary["resolved_defaults_sources"]["surveyor_args"] == "merged(settings+cli)"


def test_deprecated_scan_alias_warns(engines, tmp_path: Path, capsys) -> None:
    surveyor, _ = engines

    exit_code = main(
        [
            "--command",
            "scan-artifacts",
            "--tag",
            "t",
            "--output",
            str(tmp_path / "out"),
            "--log-level",
            "warn",
        ]
    )

    assert exit_code == 0
    assert len(surveyor.requests) == 1
    assert "deprecated alias" in capsys.readouterr().err


def test_error_log_level_suppresses_info(engines, tmp_path: Path, capsys) -> None:
    exit_code = main(
        [
            "--command",
            "survey-artifacts",
            "--tag",
            "t",
            "--output",
            str(tmp_path / "out"),
            "--log-level",
            "error",
            "--format",
            "json",
        ]
    )

    assert exit_code == 0
    err = capsys.readouterr().err
    assert "survey_start" not in err
    assert "level=INFO" not in err


def test_log_level_env_applies_when_not_configured(
    engines, tmp_path: Path, monkeypatch, capsys
) -> None:
    surveyor, _ = engines
    monkeypatch.setenv("SPICE_LOG_LEVEL", "debug")

    exit_code = main(
        [
            "--command",
            "survey-artifacts",
            "--tag",
            "t",
            "--output",
            str(tmp_path / "out"),
            "--format",
            "json",
        ]
    )

    assert exit_code == 0
    summary = json.loads(capsys.readouterr().out)
    assert logging.getLogger("spice").level == logging.DEBUG
    assert summary["config"]["log_level"] == "debug"
    assert summary["resolved_defaults_sources"]["log_level"] == "env"
    assert surveyor.requests[0].log_level == "DEBUG"


def test_log_level_flag_beats_env(engines, monkeypatch, capsys) -> None:
    monkeypatch.setenv("SPICE_LOG_LEVEL", "debug")
    token = _token({"sub": "svc"})

    exit_code = main(
        [
            "--command",
            "decode-credential",
            "--credential",
            token,
            "--log-level",
            "warn",
            "--format",
            "json",
        ]
    )

    assert exit_code == 0
    summary = json.loads(capsys.readouterr().out)
    assert logging.getLogger("spice").level == logging.WARNING
    assert summary["resolved_defaults_sources"]["log_level"] == "cli"
