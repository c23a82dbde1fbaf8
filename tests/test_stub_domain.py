"""Stub server domain helpers: signed tokens and upload names."""
from __future__ import annotations

import pytest

from panel_stub.domain.paths import normalize_upload_name, split_extension
from panel_stub.domain.tokens import (
    BadSignatureError,
    ExpiredTokenError,
    MalformedTokenError,
    WrongTokenKindError,
    decode_token,
    encode_token,
)

SECRET = "test-secret"
NOW = 1_700_000_000_000


def make(kind="access", exp_ms=NOW + 1000) -> str:
    return encode_token(sub="admin", kind=kind, exp_ms=exp_ms, jti="j1", secret=SECRET)


def test_valid_token_decodes():
    payload = decode_token(make(), secret=SECRET, kind="access", now_ms=NOW)
    assert (payload.sub, payload.kind, payload.jti) == ("admin", "access", "j1")


def test_expired_token():
    with pytest.raises(ExpiredTokenError):
        decode_token(make(exp_ms=NOW), secret=SECRET, kind="access", now_ms=NOW)


def test_refresh_token_is_not_an_access_token():
    with pytest.raises(WrongTokenKindError):
        decode_token(make(kind="refresh"), secret=SECRET, kind="access", now_ms=NOW)


def test_tampered_or_foreign_token():
    body, _, mac = make().partition(".")
    with pytest.raises(BadSignatureError):
        decode_token(f"{body}x.{mac}", secret=SECRET, kind="access", now_ms=NOW)
    with pytest.raises(BadSignatureError):
        decode_token(make(), secret="other", kind="access", now_ms=NOW)
    with pytest.raises(MalformedTokenError):
        decode_token("no-dot", secret=SECRET, kind="access", now_ms=NOW)


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("site.ZIP", "site.zip"),
        ("  C:\\Users\\me\\Shop.Tar.GZ ", "Shop.Tar.gz"),
        ("../../etc/passwd", "passwd"),
        (".env", ".env"),
    ],
)
def test_normalize_upload_name(raw, expected):
    assert normalize_upload_name(raw) == expected


def test_split_extension_defaults_to_zip():
    assert split_extension("folder") == ("folder", ".zip")
    assert split_extension("site.TAR") == ("site", ".tar")


@pytest.mark.parametrize("bad", ["", "   ", "dir/..", "caf\u00e9.zip"])
def test_invalid_names(bad):
    with pytest.raises(ValueError):
        normalize_upload_name(bad)
