"""Parse the URL forms git accepts for a remote."""

from __future__ import annotations

import re
from dataclasses import dataclass

_TRANSPORTS = frozenset({"ssh", "git", "git+ssh", "http", "https", "ftp", "ftps", "rsync", "file"})
_SCHEME_RE = re.compile(r"^([A-Za-z][A-Za-z0-9+.\-]*)://(.*)$", re.DOTALL)
_SCP_RE = re.compile(r"^(?:([A-Za-z0-9_]+)@)?([A-Za-z0-9._\-]+):([A-Za-z0-9./._\-~]+.*)$")


class GitURLError(ValueError):
    """The value is not a git URL."""


@dataclass
class GitURL:
    """The parts of a git remote URL."""

    scheme: str = ""
    user: str = ""
    host: str = ""
    path: str = ""
    raw_query: str = ""
    fragment: str = ""

    def __str__(self) -> str:
        out = ""
        if self.scheme:
            out += self.scheme + ":"
        if self.scheme or self.host or self.user:
            if self.host or self.path or self.user:
                out += "//"
            if self.user:
                out += self.user + "@"
            out += self.host
        if self.path and not self.path.startswith("/") and self.host:
            out += "/"
        out += self.path
        if self.raw_query:
            out += "?" + self.raw_query
        if self.fragment:
            out += "#" + self.fragment
        return out


def _parse_transport(url: str) -> GitURL | None:
    match = _SCHEME_RE.match(url)
    if match is None or match.group(1).lower() not in _TRANSPORTS:
        return None
    rest, _, fragment = match.group(2).partition("#")
    rest, _, query = rest.partition("?")
    slash = rest.find("/")
    authority, path = (rest, "") if slash < 0 else (rest[:slash], rest[slash:])
    user, _, host = authority.rpartition("@")
    return GitURL(match.group(1).lower(), user, host, path, query, fragment)


def _parse_scp(url: str) -> GitURL | None:
    match = _SCP_RE.match(url)
    if match is None:
        return None
    path, _, query = match.group(3).partition("?")
    return GitURL("ssh", match.group(1) or "", match.group(2), path, query)


def parse_git_url(url: str) -> GitURL:
    """Parse a transport URL, an scp-like address, or a local path."""
    if not isinstance(url, str):
        raise GitURLError(f"not a git URL: {url!r}")
    return _parse_transport(url) or _parse_scp(url) or GitURL(scheme="file", path=url)