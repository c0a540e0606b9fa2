"""Client for the registry API: organisation settings and result sharing."""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from typing import Any

import requests

_SHARE_RESULTS_ERROR_STATUSES = frozenset({400, 401, 403, 404, 429, 500})


class RegistryError(Exception):
    """A request to the registry failed."""


class ShareResultsApiError(RegistryError):
    """The share-results endpoint answered with a documented error."""

    def __init__(self, code: int = 0, failure: str = "", message: str = "", status_code: int = 0):
        self.code = code
        self.failure = failure
        self.message = message
        self.status_code = status_code
        super().__init__(str(self))

    def __str__(self) -> str:
        return f"({self.code}) Share Results API error: {self.message}"


@dataclass
class CustomPolicy:
    """A custom severity configured for a rule."""

    severity: str = ""


@dataclass
class IgnoreSettings:
    """How ignores are handled in the organisation."""

    admin_only: bool = False
    disregard_filesystem_ignores: bool = False
    reason_required: bool = False


@dataclass
class Meta:
    """Organisation metadata returned with the settings."""

    ignore_settings: IgnoreSettings = field(default_factory=IgnoreSettings)
    is_licenses_enabled: bool = False
    is_private: bool = False
    org: str = ""
    org_public_id: str = ""


@dataclass
class Entitlements:
    """Entitlements relevant to infrastructure-as-code scanning."""

    iac_custom_rules_entitlement: bool = False
    iac_drift: bool = False
    infrastructure_as_code: bool = False


def _mapping(value: Any, what: str) -> dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValueError(f"{what} is not an object")
    return value


@dataclass
class ReadIACOrgSettingsResponse:
    """The organisation settings for infrastructure-as-code scans."""

    custom_policies: dict[str, CustomPolicy] = field(default_factory=dict)
    entitlements: dict[str, bool] | None = None
    meta: Meta = field(default_factory=Meta)

    @classmethod
    def from_dict(cls, data: Any) -> ReadIACOrgSettingsResponse:
        """Build a response from decoded JSON; raise ValueError if malformed."""
        data = _mapping(data, "response")
        policies = {
            rule: CustomPolicy(severity=str(_mapping(policy, "custom policy").get("severity") or ""))
            for rule, policy in _mapping(data.get("customPolicies"), "customPolicies").items()
        }
        raw_entitlements = data.get("entitlements")
        entitlements = (
            None
            if raw_entitlements is None
            else {name: bool(value) for name, value in _mapping(raw_entitlements, "entitlements").items()}
        )
        raw_meta = _mapping(data.get("meta"), "meta")
        raw_ignore = _mapping(raw_meta.get("ignoreSettings"), "ignoreSettings")
        meta = Meta(
            ignore_settings=IgnoreSettings(
                admin_only=bool(raw_ignore.get("adminOnly", False)),
                disregard_filesystem_ignores=bool(raw_ignore.get("disregardFilesystemIgnores", False)),
                reason_required=bool(raw_ignore.get("reasonRequired", False)),
            ),
            is_licenses_enabled=bool(raw_meta.get("isLicensesEnabled", False)),
            is_private=bool(raw_meta.get("isPrivate", False)),
            org=str(raw_meta.get("org") or ""),
            org_public_id=str(raw_meta.get("orgPublicId") or ""),
        )
        return cls(custom_policies=policies, entitlements=entitlements, meta=meta)


@dataclass
class Identity:
    """Identifies the kind of scan and its target file."""

    type: str = ""
    target_file: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "targetFile": self.target_file}


@dataclass
class Target:
    """The project target of a scan."""

    remote_url: str = ""
    branch: str = ""
    name: str = ""

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        if self.remote_url:
            data["remoteUrl"] = self.remote_url
        if self.branch:
            data["branch"] = self.branch
        if self.name:
            data["name"] = self.name
        return data


@dataclass
class ResourceInfo:
    """Type and tags of the resource an issue is on."""

    type: str = ""
    tags: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        if self.type:
            data["type"] = self.type
        if self.tags:
            data["tags"] = dict(self.tags)
        return data


@dataclass
class IssueMetadata:
    """Where an issue was found."""

    type: str = ""
    file: str = ""
    resource_path: str = ""
    resource_info: ResourceInfo = field(default_factory=ResourceInfo)
    line_number: int = 0

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        if self.type:
            data["type"] = self.type
        data["file"] = self.file
        data["resourcePath"] = self.resource_path
        data["resourceInfo"] = self.resource_info.to_dict()
        data["lineNumber"] = self.line_number
        return data


@dataclass
class Remediation:
    """Remediation advice per input format."""

    cloudformation: str = ""
    terraform: str = ""
    arm: str = ""
    kubernetes: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            key: value
            for key, value in (
                ("cloudformation", self.cloudformation),
                ("terraform", self.terraform),
                ("arm", self.arm),
                ("kubernetes", self.kubernetes),
            )
            if value
        }


@dataclass
class RuleMetadata:
    """Description of the rule behind a finding."""

    public_id: str = ""
    title: str = ""
    documentation: str = ""
    is_generated_by_custom_rule: bool = False
    description: str = ""
    severity: str = ""
    issue: str = ""
    impact: str = ""
    resolve: str = ""
    references: list[str] | None = field(default_factory=list)
    remediation: Remediation | None = None
    compliance: list[list[str]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"publicId": self.public_id, "title": self.title}
        if self.documentation:
            data["documentation"] = self.documentation
        if self.is_generated_by_custom_rule:
            data["isGeneratedByCustomRule"] = True
        if self.description:
            data["description"] = self.description
        data["severity"] = self.severity
        data["issue"] = self.issue
        data["impact"] = self.impact
        data["resolve"] = self.resolve
        data["references"] = None if self.references is None else list(self.references)
        if self.remediation is not None:
            data["remediation"] = self.remediation.to_dict()
        if self.compliance:
            data["compliance"] = [list(entry) for entry in self.compliance]
        return data


@dataclass
class Data:
    """Rule and issue metadata of a finding."""

    metadata: RuleMetadata = field(default_factory=RuleMetadata)
    issue_metadata: IssueMetadata = field(default_factory=IssueMetadata)

    def to_dict(self) -> dict[str, Any]:
        return {"metadata": self.metadata.to_dict(), "issueMetadata": self.issue_metadata.to_dict()}


@dataclass
class Finding:
    """One issue reported in a scan result."""

    data: Data = field(default_factory=Data)
    type: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"data": self.data.to_dict(), "type": self.type}


@dataclass
class ScanResult:
    """The findings of one scan, as sent to the registry."""

    identity: Identity = field(default_factory=Identity)
    facts: list[dict[str, Any]] = field(default_factory=list)
    name: str = ""
    policy: str = ""
    findings: list[Finding] = field(default_factory=list)
    target: Target = field(default_factory=Target)
    target_reference: str = ""

    def to_dict(self) -> dict[str, Any]:
        """Encode as the JSON object the registry expects."""
        data: dict[str, Any] = {
            "identity": self.identity.to_dict(),
            "facts": [dict(fact) for fact in self.facts],
            "name": self.name,
            "policy": self.policy,
            "findings": [finding.to_dict() for finding in self.findings],
            "target": self.target.to_dict(),
        }
        if self.target_reference:
            data["targetReference"] = self.target_reference
        return data


@dataclass
class Tag:
    """A project tag."""

    key: str = ""
    value: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"key": self.key, "value": self.value}


@dataclass
class Attributes:
    """Project attributes; None means the attribute was not given."""

    criticality: list[str] | None = None
    environment: list[str] | None = None
    lifecycle: list[str] | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            key: list(value)
            for key, value in (
                ("criticality", self.criticality),
                ("environment", self.environment),
                ("lifecycle", self.lifecycle),
            )
            if value is not None
        }


def _encode_contributor(contributor: Any) -> Any:
    if hasattr(contributor, "to_dict"):
        return contributor.to_dict()
    if dataclasses.is_dataclass(contributor) and not isinstance(contributor, type):
        return dataclasses.asdict(contributor)
    return contributor


@dataclass
class ShareResultsRequest:
    """A request to share scan results with the registry."""

    scan_results: list[ScanResult] = field(default_factory=list)
    contributors: list[Any] | None = None
    tags: list[Tag] | None = None
    attributes: Attributes | None = None
    policy: str = ""
    org: str = ""

    def to_dict(self) -> dict[str, Any]:
        """Encode the request body; the organisation travels in the query string."""
        data: dict[str, Any] = {"scanResults": [result.to_dict() for result in self.scan_results]}
        if self.contributors:
            data["contributors"] = [_encode_contributor(c) for c in self.contributors]
        if self.tags is not None:
            data["tags"] = [tag.to_dict() for tag in self.tags]
        if self.attributes is not None:
            data["attributes"] = self.attributes.to_dict()
        if self.policy:
            data["policy"] = self.policy
        return data


class RegistryClient:
    """HTTP client for the registry API."""

    def __init__(self, url: str, http_client: requests.Session | None = None):
        self.url = url
        self._http = http_client if http_client is not None else requests.Session()

    def read_iac_org_settings(self, org: str) -> ReadIACOrgSettingsResponse:
        """Fetch the infrastructure-as-code settings of an organisation."""
        try:
            response = self._http.request("GET", f"{self.url}/v1/iac-org-settings", params={"org": org})
        except requests.RequestException as err:
            raise RegistryError(f"perform request: {err}") from err

        with response:
            if response.status_code != 200:
                raise RegistryError(f"invalid status code: {response.status_code}")
            try:
                return ReadIACOrgSettingsResponse.from_dict(response.json())
            except (ValueError, TypeError) as err:
                raise RegistryError(f"decode response body: {err}") from err

    def share_results(self, request: ShareResultsRequest) -> dict[str, str]:
        """Send scan results; return the project ids keyed by target file."""
        try:
            response = self._http.request(
                "POST",
                self.url + "/v1/iac-cli-share-results",
                json=request.to_dict(),
                headers={"Content-Type": "application/json"},
                params={"org": request.org},
            )
        except requests.RequestException as err:
            raise RegistryError(f"failed to send validRequest: {err}") from err

        with response:
            status = response.status_code
            if status == 200:
                body = self._decode(response)
                if body is None:
                    return {}
                if not isinstance(body, dict):
                    raise RegistryError("unable to decode response body: not an object")
                return {str(key): str(value) for key, value in body.items()}
            if status in _SHARE_RESULTS_ERROR_STATUSES:
                raise self._api_error(self._decode(response), status)
            raise RegistryError(f"unexpected status code from the API {status}")

    @staticmethod
    def _decode(response: requests.Response) -> Any:
        try:
            return response.json()
        except ValueError as err:
            raise RegistryError(f"unable to decode response body: {err}") from err

    @staticmethod
    def _api_error(body: Any, status: int) -> ShareResultsApiError:
        if body is None:
            body = {}
        if not isinstance(body, dict):
            return RegistryError("unable to decode response body: not an object")  # type: ignore[return-value]
        status_code = next(
            (value for key, value in body.items() if key.lower() == "statuscode" and isinstance(value, int)),
            0,
        )
        code = body.get("code", 0)
        return ShareResultsApiError(
            code=code if isinstance(code, int) else 0,
            failure=str(body.get("error") or ""),
            message=str(body.get("message") or ""),
            status_code=status_code or status,
        )