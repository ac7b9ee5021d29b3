from __future__ import annotations

import base64
import datetime as dt
import json
import logging
from typing import Any

import pytest

from spice.credential import (
    STATUS_EXPIRED,
    STATUS_NO_EXPIRATION,
    STATUS_VALID,
    CredentialInspector,
)
from spice.models import InvalidCredentialFormat

_NOW = dt.datetime(2025, 6, 1, 12, 0, 0, tzinfo=dt.timezone.utc)


def _segment(value: Any) -> str:
    raw = json.dumps(value).encode("utf-8")
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _token(claims: dict[str, Any], header: dict[str, Any] | None = None) -> str:
    header = header or {"alg": "HS256", "typ": "JWT"}
    return f"{_segment(header)}.{_segment(claims)}.c2lnbmF0dXJl"


@pytest.mark.parametrize(
    ("claims", "expected"),
    [
        ({"x-uuid-project": "p1", "project_id": "p2", "projectId": "p3"}, "p1"),
        ({"x-uuid-project": None, "project_id": "p2", "projectId": "p3"}, "p2"),
        ({"projectId": "p3"}, "p3"),
        ({"x-uuid-project": 123, "project_id": "p2"}, None),
        ({"project_id": ["p2"]}, None),
        ({"sub": "user"}, None),
    ],
)
def test_project_id_follows_claim_fallback_chain(
    claims: dict[str, Any], expected: str | None
) -> None:
    assert CredentialInspector(_token(claims)).project_id == expected


def test_status_without_expiry() -> None:
    inspector = CredentialInspector(_token({"sub": "user"}))
    assert inspector.expires_at is None
    assert inspector.status(_NOW) == STATUS_NO_EXPIRATION


def test_status_boundary_counts_exact_expiry_as_expired() -> None:
    exp = int(_NOW.timestamp())
    assert CredentialInspector(_token({"exp": exp})).status(_NOW) == STATUS_EXPIRED
    assert CredentialInspector(_token({"exp": exp - 1})).status(_NOW) == STATUS_EXPIRED
    assert CredentialInspector(_token({"exp": exp + 1})).status(_NOW) == STATUS_VALID


def test_expires_at_is_utc_instant() -> None:
    exp = int(_NOW.timestamp())
    assert CredentialInspector(_token({"exp": exp})).expires_at == _NOW


def test_describe_renders_all_claims_as_strings() -> None:
    claims = {"iss": "spice", "aud": ["a", "b"], "n": 3, "nothing": None, "x-uuid-project": "p"}
    decoded = CredentialInspector(_token(claims)).describe(_NOW)
    assert decoded.project_id == "p"
    assert decoded.status == STATUS_NO_EXPIRATION
    assert decoded.all_claims == {
        "iss": "spice",
        "aud": '["a","b"]',
        "n": "3",
        "nothing": "null",
        "x-uuid-project": "p",
    }
    assert list(decoded.all_claims) == list(claims)


@pytest.mark.parametrize(
    "token",
    [
        "",
        "   ",
        "only-one-segment",
        "two.segments",
        "a.b.c.d",
        "!!!.###.sig",
        f"{_segment({'alg': 'none'})}.{_segment([1, 2])}.sig",
        f"{_segment({'alg': 'none'})}.{_segment({'exp': 'tomorrow'})}.sig",
    ],
)
def test_malformed_tokens_raise_invalid_format(token: str) -> None:
    with pytest.raises(InvalidCredentialFormat):
        CredentialInspector(token)


def test_none_token_raises_invalid_format() -> None:
    with pytest.raises(InvalidCredentialFormat, match="cannot be null or blank"):
        CredentialInspector(None)


def test_log_full_info_reports_header_standard_and_all_claims(caplog) -> None:
    iat = int(_NOW.timestamp())
    token = _token(
        {
            "iss": "https://issuer.example",
            "sub": "svc",
            "aud": "uploads",
            "iat": iat,
            "exp": iat + 3600,
            "nbf": iat,
            "project_id": "proj-9",
            "scopes": {"upload": True},
        },
        header={"alg": "RS256", "typ": "JWT"},
    )
    caplog.set_level(logging.INFO, logger="spice")
    CredentialInspector(token).log_full_info()
    text = caplog.text

    assert "Algorithm: RS256" in text
    assert "Type: JWT" in text
    assert "Issuer: https://issuer.example" in text
    assert "Subject: svc" in text
    assert 'Audience: ["uploads"]' in text
    assert "Project ID: proj-9" in text
    assert f"Issued At: {iat} (2025-06-01T12:00:00Z)" in text
    assert f"Expires At: {iat + 3600} (2025-06-01T13:00:00Z)" in text
    assert f"Not Before: {iat} (2025-06-01T12:00:00Z)" in text
    assert "Status:" in text
    assert 'scopes: {"upload":true}' in text


def test_log_full_info_tolerates_missing_optional_claims(caplog) -> None:
    caplog.set_level(logging.INFO, logger="spice")
    CredentialInspector(_token({})).log_full_info()
    assert "Issuer: null" in caplog.text
    assert "Expires At" not in caplog.text
    assert "Project ID" not in caplog.text


def test_out_of_range_time_claim_keeps_the_rest_of_the_token(caplog) -> None:
    caplog.set_level(logging.WARNING, logger="spice")
    exp = int(_NOW.timestamp()) + 60
    inspector = CredentialInspector(_token({"exp": exp, "nbf": 1e20, "x-uuid-project": "p"}))

    assert inspector.not_before is None
    assert inspector.status(_NOW) == STATUS_VALID
    decoded = inspector.describe(_NOW)
    assert decoded.project_id == "p"
    assert decoded.all_claims["nbf"] == "1e+20"
    assert "'nbf' claim is out of range" in caplog.text
