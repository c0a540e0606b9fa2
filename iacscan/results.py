"""Flattened scan results derived from policy engine output."""

from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from typing import Any, NamedTuple

from iacscan.models import EngineResults, Result, RuleResultResource, RuleResults

_DOCUMENTATION_URL = "https://security.snyk.io/rules/cloud/"


@dataclass
class Resource:
    """A resource, or the location of a vulnerability inside one."""

    id: str = ""
    type: str = ""
    kind: str = ""
    path: list[Any] = field(default_factory=list)
    formatted_path: str = ""
    file: str = ""
    line: int = 0
    column: int = 0
    tags: dict[str, str] = field(default_factory=dict)


@dataclass
class Rule:
    """The rule that produced a vulnerability."""

    id: str = ""
    title: str = ""
    description: str = ""
    references: str = ""
    labels: list[str] = field(default_factory=list)
    category: str = ""
    documentation: str = ""
    is_generated_by_custom_rule: bool = False


@dataclass
class Vulnerability:
    """A single rule outcome on a single resource."""

    rule: Rule = field(default_factory=Rule)
    message: str = ""
    remediation: str = ""
    severity: str = ""
    ignored: bool = False
    resource: Resource = field(default_factory=Resource)
    context: dict[str, Any] = field(default_factory=dict)


@dataclass
class Metadata:
    """Information about the scanned project."""

    project_name: str = ""
    project_public_id: str = ""
    ignored_count: int = 0


@dataclass
class ScanAnalytics:
    """Analytics collected during a scan."""

    suppressed_results: dict[str, list[str]] = field(default_factory=dict)


@dataclass
class Results:
    """Scan results in a flat form, easy to filter and aggregate."""

    resources: list[Resource] = field(default_factory=list)
    vulnerabilities: list[Vulnerability] = field(default_factory=list)
    passed_vulnerabilities: list[Vulnerability] = field(default_factory=list)
    metadata: Metadata = field(default_factory=Metadata)
    scan_analytics: ScanAnalytics = field(default_factory=ScanAnalytics)


_INPUT_KIND_BY_INPUT_TYPE = {
    "tf": "terraformconfig",
    "tf_hcl": "terraformconfig",
    "tf-hcl": "terraformconfig",
    "tf_plan": "terraformconfig",
    "tf-plan": "terraformconfig",
    "tf_state": "terraformconfig",
    "tf-state": "terraformconfig",
    "cloud_scan": "terraformconfig",
    "cloud-scan": "terraformconfig",
    "arm": "armconfig",
    "k8s": "k8sconfig",
    "cfn": "cloudformationconfig",
}

_REQUIRES_INPUT_PREFIX = frozenset(
    [f"SNYK-CC-TF-{n}" for n in range(1, 20)] + ["SNYK-CC-TF-45", "SNYK-CC-TF-46"]
)

_ARRAY_INDEXING = re.compile(r"\[\s*(\d+)\s*\]")


def from_engine_results(results: EngineResults | None, include_passed: bool = False) -> Results | None:
    """Convert engine results to the flat representation."""
    if results is None:
        return None
    failed, passed = _vulnerabilities_from_engine_results(results, include_passed)
    return Results(
        resources=list(_resources_from_engine_results(results)),
        vulnerabilities=failed,
        passed_vulnerabilities=passed,
    )


def kind_from_input_type(input_type: str) -> str:
    """Map an engine input type to a resource kind; unknown types pass through."""
    return _INPUT_KIND_BY_INPUT_TYPE.get(input_type, input_type)


def is_snyk_rule(rule_id: str) -> bool:
    """Tell whether a rule is one of the built-in rules."""
    return rule_id.startswith("SNYK-")


def _vulnerabilities_from_engine_results(
    results: EngineResults, include_passed: bool
) -> tuple[list[Vulnerability], list[Vulnerability]]:
    # Only the primary resource of a rule result (matching id, type and
    # namespace) yields a vulnerability, located at its first attribute.
    failed: list[Vulnerability] = []
    passed: list[Vulnerability] = []

    for result in results.results:
        for rule_results in result.rule_results:
            for rule_result in rule_results.results:
                if rule_result.passed:
                    if not include_passed:
                        continue
                    target = passed
                else:
                    target = failed

                primary = (
                    rule_result.resource_id,
                    rule_result.resource_type,
                    rule_result.resource_namespace,
                )
                for resource in rule_result.resources:
                    if (resource.id, resource.type, resource.namespace) != primary:
                        continue
                    target.append(
                        Vulnerability(
                            rule=_rule_from(rule_results),
                            message=rule_result.message,
                            remediation=rule_result.remediation,
                            severity=rule_result.severity,
                            ignored=rule_result.ignored,
                            resource=_vulnerable_resource(result, rule_results.id, resource),
                            context=dict(rule_result.context),
                        )
                    )

    return failed, passed


def _rule_from(rule_results: RuleResults) -> Rule:
    rule = Rule(
        id=rule_results.id,
        title=rule_results.title,
        description=rule_results.description,
        labels=list(rule_results.labels),
        category=rule_results.category,
        references=rule_results.references[0].url if rule_results.references else "",
    )
    if is_snyk_rule(rule_results.id):
        rule.documentation = _DOCUMENTATION_URL + rule_results.id
    else:
        rule.is_generated_by_custom_rule = True
    return rule


def _vulnerable_resource(result: Result, rule_id: str, resource: RuleResultResource) -> Resource:
    vulnerable = Resource(
        id=resource.id,
        type=resource.type,
        kind=kind_from_input_type(result.input.input_type),
    )

    if resource.location:
        location = resource.location[0]
        vulnerable.file = location.filepath
        vulnerable.line = location.line
        vulnerable.column = location.column

    details = result.input.resources.get(resource.type, {}).get(resource.id)
    if details is not None:
        vulnerable.tags = dict(details.tags)

    if not resource.attributes:
        vulnerable.formatted_path = formatted_path(rule_id, resource.id, [])
        return vulnerable

    attribute = resource.attributes[0]
    vulnerable.path = list(attribute.path)
    vulnerable.formatted_path = formatted_path(rule_id, resource.id, attribute.path)
    if attribute.location is not None:
        vulnerable.file = attribute.location.filepath
        vulnerable.line = attribute.location.line
        vulnerable.column = attribute.location.column
    return vulnerable


def _resources_from_engine_results(results: EngineResults):
    for result in results.results:
        kind = kind_from_input_type(result.input.input_type)
        for states in result.input.resources.values():
            for state in states.values():
                resource = Resource(kind=kind, id=state.id, type=state.resource_type)
                locations = _read_meta_locations(state.meta)
                if locations:
                    first = locations[0]
                    resource.file = first.file_path
                    resource.line = first.line
                    resource.column = first.column
                yield resource


class _Location(NamedTuple):
    file_path: str = ""
    line: int = 0
    column: int = 0


class _MetaError(ValueError):
    pass


def _read_meta_locations(meta: dict[str, Any] | None) -> list[_Location] | None:
    """Read the location list from resource metadata; None if it is unreadable."""
    if meta is None:
        return None
    raw = None
    for key in sorted(meta):
        if key.lower() == "location":
            raw = meta[key]
    if raw is None:
        return []
    if not isinstance(raw, list):
        return None
    try:
        return [_parse_location(item) for item in raw]
    except _MetaError:
        return None


def _parse_location(item: Any) -> _Location:
    if item is None:
        return _Location()
    if not isinstance(item, dict):
        raise _MetaError("location is not an object")
    values: dict[str, Any] = {}
    for key in sorted(item):
        name = key.lower()
        value = item[key]
        if name == "filepath":
            if value is not None and not isinstance(value, str):
                raise _MetaError("file path is not a string")
            values["file_path"] = value or ""
        elif name in ("line", "column"):
            values[name] = _as_int(value)
    return _Location(**values)


def _as_int(value: Any) -> int:
    if value is None:
        return 0
    if isinstance(value, bool):
        raise _MetaError("expected a number")
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    raise _MetaError("expected an integer")


def formatted_path(rule_id: str, resource_id: str, paths) -> str:
    """Format a resource path in the dotted form used by ignores and reporting."""
    parts = ["input.resource" if rule_id in _REQUIRES_INPUT_PREFIX else "resource"]

    if resource_id.startswith("module."):
        resource_id = resource_id[resource_id.find(".") + 1 :]
        resource_id = resource_id[resource_id.find(".") + 1 :]

    if "." in resource_id:
        elements = resource_id.split(".")
        resource_type, resource_name = elements[0], elements[1]
        resource_name = _ARRAY_INDEXING.sub(r'["\1"]', resource_name)
        parts.append(f".{resource_type}[{resource_name}]")
    elif resource_id:
        parts.append(f".{resource_id}")

    for path in paths or []:
        if isinstance(path, bool):
            parts.append(".true" if path else ".false")
        elif isinstance(path, (int, float)):
            parts.append(f"[{int(path)}]")
        else:
            parts.append(f".{path}")

    return "".join(parts)


def stub_resources(results: EngineResults | None) -> EngineResults | None:
    """Return a copy with resource attributes cleared, except for Terraform inputs."""
    if results is None:
        return None
    return replace(results, results=[_stub_result(r) for r in results.results])


def _stub_result(result: Result) -> Result:
    if kind_from_input_type(result.input.input_type) == "terraformconfig":
        return result
    stubbed = {
        kind: {rid: replace(state, attributes={}) for rid, state in states.items()}
        for kind, states in result.input.resources.items()
        if states
    }
    return replace(result, input=replace(result.input, resources=stubbed))