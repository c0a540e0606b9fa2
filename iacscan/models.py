"""Data model of the results produced by the policy engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class SourceLocation:
    """A position in a source file."""

    filepath: str = ""
    line: int = 0
    column: int = 0


@dataclass
class RuleResultResourceAttribute:
    """An attribute of a resource that contributed to a rule result."""

    path: list[Any] = field(default_factory=list)
    location: SourceLocation | None = None


@dataclass
class RuleResultResource:
    """A resource referenced by a rule result."""

    id: str = ""
    type: str = ""
    namespace: str = ""
    location: list[SourceLocation] = field(default_factory=list)
    attributes: list[RuleResultResourceAttribute] = field(default_factory=list)


@dataclass
class RuleResultsReference:
    """An external reference attached to a rule."""

    url: str = ""
    title: str = ""


@dataclass
class RuleResult:
    """The outcome of evaluating one rule against one resource."""

    passed: bool = False
    ignored: bool = False
    message: str = ""
    remediation: str = ""
    severity: str = ""
    resource_id: str = ""
    resource_type: str = ""
    resource_namespace: str = ""
    context: dict[str, Any] = field(default_factory=dict)
    resources: list[RuleResultResource] = field(default_factory=list)


@dataclass
class RuleResults:
    """All results produced by a single rule."""

    id: str = ""
    title: str = ""
    description: str = ""
    category: str = ""
    labels: list[str] = field(default_factory=list)
    references: list[RuleResultsReference] = field(default_factory=list)
    results: list[RuleResult] = field(default_factory=list)


@dataclass
class ResourceState:
    """The state of one resource in the scanned input."""

    id: str = ""
    resource_type: str = ""
    namespace: str = ""
    meta: dict[str, Any] | None = None
    attributes: dict[str, Any] = field(default_factory=dict)
    tags: dict[str, str] = field(default_factory=dict)


@dataclass
class State:
    """A scanned input: resources grouped by type, then by id."""

    format: str = ""
    format_version: str = ""
    input_type: str = ""
    environment_provider: str = ""
    meta: dict[str, Any] = field(default_factory=dict)
    resources: dict[str, dict[str, ResourceState]] = field(default_factory=dict)
    scope: dict[str, Any] = field(default_factory=dict)


@dataclass
class Result:
    """The rule results computed for one input."""

    input: State = field(default_factory=State)
    rule_results: list[RuleResults] = field(default_factory=list)


@dataclass
class EngineResults:
    """The complete output of a policy engine run."""

    format: str = ""
    format_version: str = ""
    results: list[Result] = field(default_factory=list)