import hashlib
import io
import json

import pytest
import responses

from iacscan.rules import (
    RulesClient,
    RulesError,
    determine_bundle_version,
    is_engine_compatible,
)

BASE = "https://rules.example.com"
BUNDLE = b"bundle-archive-bytes"
CHECKSUM = hashlib.sha256(BUNDLE).hexdigest()


def manifest(preferred):
    def entry(version, minimum):
        return {
            "checksum": CHECKSUM,
            "url": f"{BASE}/cli/iac/rules/{version}/bundle.tar.gz",
            "min_policy_engine_version": minimum,
            "release_date": "2022-10-13",
        }

    return {
        "preferred_version": preferred,
        "versions": {
            "v0.3.5": entry("v0.3.5", "v0.4.1"),
            "v0.31.0": entry("v0.31.0", "v0.30.0"),
            "v0.2.5-dev.20221013": entry("v0.2.5-dev.20221013", "v0.4.0"),
            "v0.2.0-dev.20221007": entry("v0.2.0-dev.20221007", "v0.3.0"),
        },
    }


@pytest.fixture
def server():
    with responses.RequestsMock(assert_all_requests_are_fired=False) as rsps:
        yield rsps


def serve(rsps, preferred, bundle_version=None):
    rsps.add(responses.GET, f"{BASE}/versions.json", body=json.dumps(manifest(preferred)), status=200)
    if bundle_version:
        rsps.add(responses.GET, f"{BASE}/cli/iac/rules/{bundle_version}/bundle.tar.gz", body=BUNDLE, status=200)


SHARED = [("v0.4.1", "v0.3.5"), ("v0.4.0", "v0.2.5-dev.20221013")]


@pytest.mark.parametrize("engine,expected", SHARED)
def test_download_latest_bundle(server, engine, expected):
    serve(server, "v0.3.5", expected)
    out = io.BytesIO()
    RulesClient(BASE).download_latest_bundle(engine, out)
    assert out.getvalue() == BUNDLE


@pytest.mark.parametrize("engine,expected", SHARED)
def test_get_compatible_bundle_version(server, engine, expected):
    serve(server, "v0.3.5")
    assert RulesClient(BASE).get_compatible_bundle_version(engine) == expected


@pytest.mark.parametrize(
    "preferred,engine", [("non-existent-version", "0.4.0"), ("v0.3.5", "0.1.0")]
)
def test_download_latest_bundle_failure(server, preferred, engine):
    serve(server, preferred)
    out = io.BytesIO()
    with pytest.raises(RulesError):
        RulesClient(BASE).download_latest_bundle(engine, out)
    assert out.getvalue() == b""


def test_download_pinned_bundle(server):
    serve(server, "v0.2.0-dev.20221007", "v0.2.0-dev.20221007")
    out = io.BytesIO()
    RulesClient(BASE).download_pinned_bundle("v0.2.0-dev.20221007", "v0.4.0", out)
    assert out.getvalue() == BUNDLE


def test_download_pinned_bundle_newer_than_engine(server):
    serve(server, "v0.31.0", "v0.31.0")
    out = io.BytesIO()
    RulesClient(BASE).download_pinned_bundle("v0.31.0", "v0.30.11", out)
    assert out.getvalue() == BUNDLE


def test_download_pinned_bundle_unknown_version(server):
    serve(server, "v0.3.5")
    with pytest.raises(RulesError, match="failed to find version"):
        RulesClient(BASE).download_pinned_bundle("v9.9.9", "v0.4.0", io.BytesIO())


def test_download_pinned_bundle_incompatible(server):
    serve(server, "v0.3.5")
    with pytest.raises(RulesError, match="not compatible"):
        RulesClient(BASE).download_pinned_bundle("v0.3.5", "v0.4.0", io.BytesIO())


def test_download_bundle_forbidden(server):
    server.add(responses.GET, f"{BASE}/versions.json", status=403)
    out = io.BytesIO()
    with pytest.raises(RulesError, match="invalid status code: 403"):
        RulesClient(BASE).download_latest_bundle("", out)
    assert out.getvalue() == b""


def test_checksum_mismatch(server):
    data = manifest("v0.3.5")
    data["versions"]["v0.3.5"]["checksum"] = "0" * 64
    server.add(responses.GET, f"{BASE}/versions.json", body=json.dumps(data), status=200)
    server.add(responses.GET, f"{BASE}/cli/iac/rules/v0.3.5/bundle.tar.gz", body=BUNDLE, status=200)
    with pytest.raises(RulesError, match="invalid checksum"):
        RulesClient(BASE).download_latest_bundle("v0.4.1", io.BytesIO())


def test_determine_bundle_version_without_network():
    assert determine_bundle_version("v0.4.0", manifest("v0.3.5")) == "v0.2.5-dev.20221013"
    with pytest.raises(RulesError):
        determine_bundle_version("0.1.0", manifest("v0.3.5"))


@pytest.mark.parametrize(
    "current,minimum,expected",
    [
        ("v0.30.11", "v0.30.0", True),
        ("v0.4.0", "v0.4.1", False),
        ("v0.4.0", "v0.4.0", True),
        ("0.4.0", "0.4.0-dev", True),
        ("", "v0.1.0", False),
    ],
)
def test_is_engine_compatible(current, minimum, expected):
    assert is_engine_compatible(current, minimum) is expected