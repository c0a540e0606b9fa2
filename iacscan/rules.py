"""Download rules bundles that are compatible with a policy engine version."""

from __future__ import annotations

import functools
import hashlib
import re
from dataclasses import dataclass
from typing import Any, BinaryIO, Protocol

import requests

_VERSION_RE = re.compile(
    r"^v?(\d+(?:\.\d+)*)"
    r"(?:-([0-9A-Za-z\-~]+(?:\.[0-9A-Za-z\-~]+)*)|([A-Za-z\-~][0-9A-Za-z\-~]*(?:\.[0-9A-Za-z\-~]+)*))?"
    r"(?:\+([0-9A-Za-z\-~]+(?:\.[0-9A-Za-z\-~]+)*))?$"
)


class RulesError(Exception):
    """A rules bundle could not be resolved or downloaded."""


class _Writer(Protocol):
    def write(self, data: bytes, /) -> Any: ...


@dataclass(frozen=True)
class _Version:
    segments: tuple[int, ...]
    prerelease: str = ""
    metadata: str = ""

    @classmethod
    def parse(cls, text: str) -> _Version:
        match = _VERSION_RE.match(text.strip()) if isinstance(text, str) else None
        if match is None:
            raise ValueError(f"malformed version: {text!r}")
        segments = [int(s) for s in match.group(1).split(".")]
        segments += [0] * (3 - len(segments))
        return cls(tuple(segments), match.group(2) or match.group(3) or "", match.group(4) or "")

    def __str__(self) -> str:
        text = ".".join(str(s) for s in self.segments)
        if self.prerelease:
            text += "-" + self.prerelease
        if self.metadata:
            text += "+" + self.metadata
        return text


def _compare_prerelease_part(a: str, b: str) -> int:
    if a.isdigit() and b.isdigit():
        x, y = int(a), int(b)
    elif a.isdigit():
        return -1
    elif b.isdigit():
        return 1
    else:
        x, y = a, b  # type: ignore[assignment]
    return (x > y) - (x < y)


def _compare(a: _Version, b: _Version) -> int:
    width = max(len(a.segments), len(b.segments))
    sa = a.segments + (0,) * (width - len(a.segments))
    sb = b.segments + (0,) * (width - len(b.segments))
    if sa != sb:
        return (sa > sb) - (sa < sb)
    if a.prerelease == b.prerelease:
        return 0
    if not a.prerelease:
        return 1
    if not b.prerelease:
        return -1
    parts_a, parts_b = a.prerelease.split("."), b.prerelease.split(".")
    for pa, pb in zip(parts_a, parts_b):
        result = _compare_prerelease_part(pa, pb)
        if result:
            return result
    return (len(parts_a) > len(parts_b)) - (len(parts_a) < len(parts_b))


def is_engine_compatible(current_version: str, minimum_version: str) -> bool:
    """Tell whether the engine version meets the minimum; unparsable versions never do."""
    try:
        current = _Version.parse(current_version)
        minimum = _Version.parse(minimum_version)
    except ValueError:
        return False
    return _compare(current, minimum) >= 0


def _versions(manifest: dict[str, Any]) -> dict[str, dict[str, Any]]:
    versions = manifest.get("versions") or {}
    if not isinstance(versions, dict):
        raise RulesError("manifest versions is not an object")
    return versions


def _min_engine(versions: dict[str, dict[str, Any]], key: str) -> str:
    return str((versions.get(key) or {}).get("min_policy_engine_version") or "")


def determine_bundle_version(current_engine_version: str, manifest: dict[str, Any]) -> str:
    """Pick the preferred bundle if compatible, else the newest compatible one."""
    preferred = str(manifest.get("preferred_version") or "")
    versions = _versions(manifest)
    if preferred not in versions:
        raise RulesError(f"no descriptor found for preferred version {preferred}")

    if is_engine_compatible(current_engine_version, _min_engine(versions, preferred)):
        return preferred

    candidates = []
    for key in versions:
        if key == preferred:
            continue
        try:
            candidates.append(_Version.parse(key))
        except ValueError as err:
            raise RulesError(f"unable to parse {key}: {err}") from err
    candidates.sort(key=functools.cmp_to_key(_compare), reverse=True)

    for candidate in candidates:
        key = f"v{candidate}"
        if is_engine_compatible(current_engine_version, _min_engine(versions, key)):
            return key
    raise RulesError(f"no compatible rules bundle found for policy-engine version {current_engine_version}")


class RulesClient:
    """Fetches the rules manifest and bundles from a rules server."""

    def __init__(self, url: str, http_client: requests.Session | None = None):
        self.url = url
        self._http = http_client if http_client is not None else requests.Session()

    def get_compatible_bundle_version(self, policy_engine_version: str) -> str:
        manifest = self._manifest()
        try:
            return determine_bundle_version(policy_engine_version, manifest)
        except RulesError as err:
            raise RulesError(f"determine bundle version: {err}") from err

    def download_latest_bundle(self, current_engine_version: str, writer: _Writer | BinaryIO) -> None:
        """Write the newest bundle compatible with the engine to the writer."""
        manifest = self._manifest()
        try:
            version = determine_bundle_version(current_engine_version, manifest)
        except RulesError as err:
            raise RulesError(f"download bundle: determine bundle version: {err}") from err
        self._download_checked(_versions(manifest)[version], writer)

    def download_pinned_bundle(
        self, pinned_bundle_version: str, current_engine_version: str, writer: _Writer | BinaryIO
    ) -> None:
        """Write a specific bundle version, if the engine meets its minimum."""
        versions = _versions(self._manifest())
        if pinned_bundle_version not in versions:
            raise RulesError(f"failed to find version {pinned_bundle_version} as key in manifest")
        minimum = _min_engine(versions, pinned_bundle_version)
        if not is_engine_compatible(current_engine_version, minimum):
            raise RulesError(
                f"policy-engine version {current_engine_version} is not compatible with min required "
                f"policy-engine version {minimum} in bundle version {pinned_bundle_version}"
            )
        self._download_checked(versions[pinned_bundle_version], writer)

    def _manifest(self) -> dict[str, Any]:
        try:
            response = self._get(f"{self.url}/versions.json")
            with response:
                try:
                    manifest = response.json()
                except ValueError as err:
                    raise RulesError(f"decode: {err}") from err
        except RulesError as err:
            raise RulesError(f"download manifest: {err}") from err
        if not isinstance(manifest, dict):
            raise RulesError("download manifest: decode: not an object")
        return manifest

    def _download_checked(self, bundle: dict[str, Any], writer: _Writer | BinaryIO) -> None:
        digest = hashlib.sha256()
        try:
            response = self._get(str(bundle.get("url") or ""))
            with response:
                for chunk in response.iter_content(chunk_size=65536):
                    writer.write(chunk)
                    digest.update(chunk)
        except (RulesError, requests.RequestException) as err:
            raise RulesError(f"download bundle: {err}") from err
        checksum = digest.hexdigest()
        expected = bundle.get("checksum") or ""
        if expected != checksum:
            raise RulesError(f"invalid checksum: expected {expected}, got {checksum}")

    def _get(self, url: str) -> requests.Response:
        try:
            response = self._http.get(url, stream=True)
        except requests.RequestException as err:
            raise RulesError(f"perform request: {err}") from err
        if response.status_code != 200:
            response.close()
            raise RulesError(f"invalid status code: {response.status_code}")
        return response