"""Read-only inspection of spice pass tokens.

A spice pass is a JWT. The inspector decodes the header and claims so the CLI
can report which project a token belongs to and whether it has expired. The
signature is never verified; the upload service does that.
"""

from __future__ import annotations

import base64
import datetime as dt
import json
import logging
from dataclasses import dataclass, field
from typing import Any

from spice.models import InvalidCredentialFormat, is_blank

_log = logging.getLogger("spice.credential")

PROJECT_ID_CLAIMS = ("x-uuid-project", "project_id", "projectId")
STATUS_NO_EXPIRATION = "No expiration"
STATUS_VALID = "Valid"
STATUS_EXPIRED = "EXPIRED"
_TIME_CLAIMS = ("exp", "iat", "nbf")


@dataclass(frozen=True)
class DecodedCredential:
    project_id: str | None
    expires_at: dt.datetime | None
    status: str
    all_claims: dict[str, str] = field(default_factory=dict)

    def to_json(self) -> dict[str, Any]:
        return {
            "project_id": self.project_id,
            "expires_at": format_instant(self.expires_at),
            "status": self.status,
            "claims": dict(self.all_claims),
        }


def format_instant(value: dt.datetime | None) -> str | None:
    if value is None:
        return None
    return value.isoformat().replace("+00:00", "Z")


def display_claim(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, str):
        return value
    return json.dumps(value, separators=(",", ":"))


def _decode_segment(segment: str, *, label: str) -> dict[str, Any]:
    padded = segment + "=" * (-len(segment) % 4)
    try:
        raw = base64.b64decode(padded.encode("ascii"), altchars=b"-_", validate=True)
        decoded = json.loads(raw.decode("utf-8"))
    except ValueError as exc:
        raise InvalidCredentialFormat(
            f"The token's {label} is not valid base64url-encoded JSON"
        ) from exc
    if not isinstance(decoded, dict):
        raise InvalidCredentialFormat(f"The token's {label} is not a JSON object")
    return decoded


def _timestamp(claims: dict[str, Any], name: str) -> dt.datetime | None:
    value = claims.get(name)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidCredentialFormat(f"The '{name}' claim must be a numeric date")
    try:
        return dt.datetime.fromtimestamp(int(value), tz=dt.timezone.utc)
    except (OverflowError, OSError, ValueError):
        # Only the raw claim is reported for dates outside the calendar.
        _log.warning("The '%s' claim is out of range: %s", name, value)
        return None


class CredentialInspector:
    def __init__(self, token: str | None):
        if is_blank(token):
            raise InvalidCredentialFormat("SPICE_PASS cannot be null or blank")
        parts = str(token).strip().split(".")
        if len(parts) != 3:
            raise InvalidCredentialFormat(
                f"The token was expected to have 3 parts, but got {len(parts)}"
            )
        self.header = _decode_segment(parts[0], label="header")
        self.claims = _decode_segment(parts[1], label="payload")
        self._times = {name: _timestamp(self.claims, name) for name in _TIME_CLAIMS}

    @property
    def project_id(self) -> str | None:
        for name in PROJECT_ID_CLAIMS:
            value = self.claims.get(name)
            if value is not None:
                return value if isinstance(value, str) else None
        return None

    @property
    def expires_at(self) -> dt.datetime | None:
        return self._times["exp"]

    @property
    def issued_at(self) -> dt.datetime | None:
        return self._times["iat"]

    @property
    def not_before(self) -> dt.datetime | None:
        return self._times["nbf"]

    @property
    def audience(self) -> list[str] | None:
        value = self.claims.get("aud")
        if value is None:
            return None
        if isinstance(value, list):
            return [display_claim(item) for item in value]
        return [display_claim(value)]

    def status(self, now: dt.datetime | None = None) -> str:
        expires_at = self.expires_at
        if expires_at is None:
            return STATUS_NO_EXPIRATION
        current = now or dt.datetime.now(dt.timezone.utc)
        # A token expiring at exactly ``now`` counts as expired.
        return STATUS_VALID if expires_at > current else STATUS_EXPIRED

    def all_claims(self) -> dict[str, str]:
        return {str(name): display_claim(value) for name, value in self.claims.items()}

    def describe(self, now: dt.datetime | None = None) -> DecodedCredential:
        return DecodedCredential(
            project_id=self.project_id,
            expires_at=self.expires_at,
            status=self.status(now),
            all_claims=self.all_claims(),
        )

    def log_full_info(self, logger: logging.Logger | None = None) -> None:
        log = logger or _log
        log.info("JWT Header:")
        log.info("  Algorithm: %s", display_claim(self.header.get("alg")))
        log.info("  Type: %s", display_claim(self.header.get("typ")))

        log.info("JWT Claims:")
        log.info("  Issuer: %s", display_claim(self.claims.get("iss")))
        log.info("  Subject: %s", display_claim(self.claims.get("sub")))
        log.info("  Audience: %s", display_claim(self.audience))

        project_id = self.project_id
        if project_id is not None:
            log.info("  Project ID: %s", project_id)

        for label, name in (
            ("Issued At", "iat"),
            ("Expires At", "exp"),
            ("Not Before", "nbf"),
        ):
            instant = self._times[name]
            if instant is None:
                continue
            log.info(
                "  %s: %s (%s)",
                label,
                display_claim(self.claims.get(name)),
                format_instant(instant),
            )
            if name == "exp":
                log.info("  Status: %s", self.status())

        log.info("All Claims:")
        for name, value in self.all_claims().items():
            log.info("  %s: %s", name, value)
