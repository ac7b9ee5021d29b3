from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Protocol


@dataclass(frozen=True)
class SurveyRequest:
    payload_path: Path
    output_path: Path
    threads: int
    max_records: int
    tag: str
    tag_json: str | None = None
    use_static_metadata: bool = True
    temp_dir: Path | None = None
    extra_args: Mapping[str, str] = field(default_factory=dict)
    log_level: str = "INFO"


@dataclass(frozen=True)
class AdgUploadRequest:
    credential: str
    source_dir: Path
    output_dir: Path | None = None
    extra_args: Mapping[str, str] = field(default_factory=dict)


class Surveyor(Protocol):
    name: str

    def survey(self, request: SurveyRequest) -> None: ...


class Uploader(Protocol):
    name: str

    def upload_adgs(self, request: AdgUploadRequest) -> None: ...

    def upload_deployment_events(self, credential: str, events_file: Path) -> None: ...
