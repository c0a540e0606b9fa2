"""Turn raw engine output into reportable scan results and share them."""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import PurePath
from typing import Any, Callable, Protocol

from iacscan.filters import (
    apply_custom_severities,
    filter_by_severity_threshold,
    filter_missing_resources,
    filter_vulnerabilities_by_ignores,
)
from iacscan.giturls import parse_git_url
from iacscan.models import EngineResults
from iacscan.results import Results, ScanAnalytics, from_engine_results
from iacscan.settings import Settings

IAC_V2_TARGET_FILE = "Infrastructure_as_code_issues"

_GITHUB_PATH = re.compile(r"/?(.*).git/?")
_AZURE_DEVOPS_PATH = re.compile(r"^/([^/]+)/([^/]+)/_git/([^/]+)$")


class ProcessingError(Exception):
    """Scan results could not be processed or shared."""


@dataclass
class ShareResultsOptions:
    """How shared results are attributed to a project."""

    org_public_id: str = ""
    kind: str = ""
    name: str = ""
    branch: str = ""
    source_uri: str = ""
    source_type: str = ""
    allow_analytics: bool = False


@dataclass
class ShareResultsOutput:
    """What the platform answered to a share request."""

    url: str = ""
    project_ids: dict[str, str] = field(default_factory=dict)


class _SnykPlatform(Protocol):
    def share_results(self, engine_results: EngineResults, opts: ShareResultsOptions) -> ShareResultsOutput: ...

    def share_results_registry(
        self, results: Results, opts: ShareResultsOptions, policy_file: str
    ) -> ShareResultsOutput: ...


class _SettingsReader(Protocol):
    def read_settings(self) -> Settings: ...


def _never_ignore(rule_id: str, now: datetime, *parts: str) -> bool:
    return False


def _base_name(path: str) -> str:
    if path == "":
        return "."
    stripped = path.rstrip("/" + os.sep)
    if stripped == "":
        return os.sep
    return PurePath(stripped).name or stripped


def project_name_from_git_origin_url(url: str) -> str:
    """Derive a project name from a git remote URL; empty if none can be found."""
    path = parse_git_url(url).path
    match = _AZURE_DEVOPS_PATH.search(path)
    if match:
        return "/".join(match.groups())
    match = _GITHUB_PATH.search(path)
    if match:
        return match.group(1)
    return ""


@dataclass
class ResultsProcessor:
    """Filters engine results, attaches project metadata and optionally shares them."""

    snyk_platform: _SnykPlatform | None = None
    settings_reader: _SettingsReader | None = None
    report: bool = False
    severity_threshold: str = ""
    target_reference: str = ""
    target_name: str = ""
    remote_repo_url: str = ""
    get_wd: Callable[[], str] = os.getcwd
    get_repo_root_dir: Callable[[str], str] | None = None
    get_origin_url: Callable[[str], str] | None = None
    policy_path: str = ""
    include_passed_vulnerabilities: bool = False
    iac_new_engine: bool = False
    allow_analytics: bool = False
    ignore_matcher_factory: Callable[[bytes | None], Any] | None = None
    logger: logging.Logger = field(default_factory=lambda: logging.getLogger(__name__))

    def process_results(
        self, raw_results: EngineResults | None, scan_analytics: ScanAnalytics | None = None
    ) -> Results | None:
        """Process raw engine results; raise ProcessingError on failure."""
        if raw_results is None:
            return None

        try:
            if self.settings_reader is None:
                raise ProcessingError("no settings reader configured")
            user_settings = self.settings_reader.read_settings()
        except Exception as err:
            raise ProcessingError(f"read settings: {err}") from err

        try:
            project_name = self.compute_project_name()
        except Exception as err:
            raise ProcessingError(f"compute project name: {err}") from err

        try:
            source_uri = self.compute_project_url()
        except Exception as err:
            raise ProcessingError(f"compute project URI: {err}") from err

        try:
            matcher = self._create_ignore_matcher()
        except Exception as err:
            raise ProcessingError(f"create ignore policy matcher: {err}") from err

        if user_settings.custom_severities:
            raw_results = apply_custom_severities(raw_results, user_settings.custom_severities)

        raw_results = filter_missing_resources(raw_results)
        scan_results = from_engine_results(raw_results, self.include_passed_vulnerabilities)
        scan_results.metadata.project_name = project_name

        if self.severity_threshold:
            scan_results = filter_by_severity_threshold(scan_results, self.severity_threshold)

        scan_results = filter_vulnerabilities_by_ignores(scan_results, matcher, datetime.now())
        scan_results.scan_analytics = scan_analytics if scan_analytics is not None else ScanAnalytics()

        if self.report:
            self._share(raw_results, scan_results, user_settings, project_name, source_uri)

        return scan_results

    def _share(
        self,
        raw_results: EngineResults,
        scan_results: Results,
        user_settings: Settings,
        project_name: str,
        source_uri: str,
    ) -> None:
        self.logger.info("share results: project name = %s", project_name)
        self.logger.info("share results: source URI = %s", source_uri)

        opts = ShareResultsOptions(
            org_public_id=user_settings.org_public_id,
            kind="cli",
            name=project_name,
            branch=self.target_reference,
            source_uri=source_uri,
            source_type="cli",
            allow_analytics=self.allow_analytics,
        )

        if self.snyk_platform is None:
            raise ProcessingError("share results: no platform configured")

        if self.iac_new_engine:
            try:
                policy_file = self._read_policy_file()
            except OSError as err:
                raise ProcessingError(
                    f"share results to Registry failed on reading the policy file: {err}"
                ) from err

            share_results = from_engine_results(raw_results, False)
            try:
                output = self.snyk_platform.share_results_registry(
                    share_results, opts, (policy_file or b"").decode("utf-8", errors="replace")
                )
            except Exception as err:
                raise ProcessingError(f"share results: {err}") from err

            scan_results.metadata.project_public_id = output.project_ids.get(IAC_V2_TARGET_FILE, "")
        else:
            try:
                output = self.snyk_platform.share_results(raw_results, opts)
            except Exception as err:
                raise ProcessingError(f"share results: {err}") from err
            self.logger.info("share results: report URI = %s", output.url)

    def _create_ignore_matcher(self) -> Any:
        data = self._read_policy_file()
        if self.ignore_matcher_factory is None:
            return _never_ignore
        return self.ignore_matcher_factory(data)

    def _read_policy_file(self) -> bytes | None:
        if not self.policy_path:
            return None
        try:
            with open(self.policy_path, "rb") as policy:
                return policy.read()
        except FileNotFoundError:
            return None

    def _read_working_directory_name(self) -> str:
        return _base_name(self.get_wd())

    def _read_remote_url(self) -> str:
        if self.remote_repo_url:
            return self.remote_repo_url
        cwd = self.get_wd()
        if self.get_repo_root_dir is None:
            raise ProcessingError("no repository root lookup configured")
        if cwd != self.get_repo_root_dir(cwd):
            return ""
        if self.get_origin_url is None:
            raise ProcessingError("no origin URL lookup configured")
        return self.get_origin_url(cwd)

    def compute_project_url(self) -> str:
        """The remote URL of the project, or the working directory name."""
        try:
            remote_url = self._read_remote_url()
        except Exception as err:
            self.logger.warning("read remote URL: %s", err)
            return self._read_working_directory_name()
        return remote_url or self._read_working_directory_name()

    def compute_project_name(self) -> str:
        """The target name, else a name derived from the remote, else the directory name."""
        if self.target_name:
            return self.target_name

        try:
            remote_url = self._read_remote_url()
        except Exception as err:
            self.logger.warning("read remote URL: %s", err)
            return self._read_working_directory_name()
        if not remote_url:
            return self._read_working_directory_name()

        try:
            project_name = project_name_from_git_origin_url(remote_url)
        except Exception as err:
            self.logger.warning("compute project name from remote URL: %s", err)
            return self._read_working_directory_name()
        return project_name or self._read_working_directory_name()