"""Share scan results through the registry API (the older sharing path)."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Protocol

from iacscan.giturls import parse_git_url
from iacscan.registry import (
    Attributes,
    Data,
    Finding,
    Identity,
    IssueMetadata,
    RegistryError,
    ResourceInfo,
    RuleMetadata,
    ScanResult,
    ShareResultsRequest,
    Tag,
    Target,
)
from iacscan.results import Results, Vulnerability

_ALLOWED_SCHEMES = frozenset({"ssh", "http", "https", "ftp", "ftps"})
_CONTRIBUTOR_WINDOW = timedelta(days=90)
_CONTRIBUTOR_LIMIT = 500


class _RegistryClient(Protocol):
    def share_results(self, request: ShareResultsRequest) -> dict[str, str]: ...


def split_comma_list(value: str | None) -> list[str] | None:
    """Split a comma-separated flag value; None stays None, empty gives []."""
    if value is None:
        return None
    if value == "":
        return []
    return value.split(",")


def format_origin_url(origin_url: str) -> str:
    """Normalise a git origin URL to the form the registry expects."""
    if not origin_url:
        return ""
    parsed = parse_git_url(origin_url)
    if parsed.host and parsed.scheme and parsed.scheme in _ALLOWED_SCHEMES:
        return f"http://{parsed.host.strip('/')}/{parsed.path.strip('/')}"
    return str(parsed)


def convert_vulnerability_to_finding(vulnerability: Vulnerability) -> Finding:
    """Turn a vulnerability into a registry finding."""
    rule, resource = vulnerability.rule, vulnerability.resource
    return Finding(
        data=Data(
            metadata=RuleMetadata(
                public_id=rule.id,
                title=rule.title,
                severity=vulnerability.severity,
                issue=rule.title,
                impact=rule.description,
                references=[],
            ),
            issue_metadata=IssueMetadata(
                type=resource.kind,
                file=resource.file,
                resource_info=ResourceInfo(type=resource.type, tags=dict(resource.tags)),
                resource_path=resource.formatted_path,
                line_number=resource.line,
            ),
        ),
        type="iacIssue",
    )


@dataclass
class ShareResults:
    """Builds and sends a share-results request for one scan."""

    registry_client: _RegistryClient | None = None
    report: bool = False
    allow_analytics: bool = False
    policy: str = ""
    project_name: str = ""
    project_business_criticality: str | None = None
    project_environment: str | None = None
    project_lifecycle: str | None = None
    project_tags: str | None = None
    target_reference: str = ""
    remote_repo_url: str = ""
    get_wd: Callable[[], str] = os.getcwd
    get_repo_root_dir: Callable[[str], str] | None = None
    get_origin_url: Callable[[str], str] | None = None
    contributor_lister: Callable[[str, datetime, datetime, int], list[Any]] | None = field(default=None)

    def share_results(self, scan_results: Results) -> dict[str, str]:
        """Send the results; return the project ids keyed by target file."""
        try:
            contributors = self.list_contributors()
        except Exception as err:
            raise RegistryError(f"list contributors: {err}") from err

        attributes = Attributes(
            criticality=split_comma_list(self.project_business_criticality),
            environment=split_comma_list(self.project_environment),
            lifecycle=split_comma_list(self.project_lifecycle),
        )
        tags = self.format_tags()
        request = ShareResultsRequest(
            scan_results=[self.convert_results_to_envelope_scan_result(scan_results, self.project_name, self.policy)],
            contributors=contributors,
            attributes=attributes,
            tags=tags or None,
        )
        if self.registry_client is None:
            raise RegistryError("share results: no registry client configured")
        try:
            return self.registry_client.share_results(request)
        except Exception as err:
            raise RegistryError(f"share results: {err}") from err

    def convert_results_to_envelope_scan_result(self, results: Results, project_name: str, policy: str) -> ScanResult:
        return ScanResult(
            identity=Identity(type="iac", target_file="Infrastructure_as_code_issues"),
            facts=[],
            name=project_name,
            policy=policy,
            findings=[convert_vulnerability_to_finding(v) for v in results.vulnerabilities],
            target=self.get_target(project_name),
            target_reference=self.target_reference,
        )

    def get_target(self, project_name: str) -> Target:
        """The remote URL of the project if known, else its name."""
        origin = self.remote_repo_url
        try:
            if not origin:
                if self.get_origin_url is None:
                    return Target(name=project_name)
                origin = self.get_origin_url(self.get_wd())
            return Target(remote_url=format_origin_url(origin))
        except Exception:
            return Target(name=project_name)

    def format_tags(self) -> list[Tag]:
        """Parse the key=value,... tags flag."""
        tags = []
        for pair in split_comma_list(self.project_tags) or []:
            parts = pair.split("=")
            if len(parts) < 2:
                raise ValueError(f"invalid tag {pair!r}: expected key=value")
            tags.append(Tag(key=parts[0], value=parts[1]))
        return tags

    def list_contributors(self) -> list[Any] | None:
        """Recent contributors, or None when analytics are not allowed."""
        if not self.allow_analytics:
            return None
        if self.contributor_lister is None:
            return []
        now = datetime.now()
        return list(self.contributor_lister(self.get_wd(), now - _CONTRIBUTOR_WINDOW, now, _CONTRIBUTOR_LIMIT))