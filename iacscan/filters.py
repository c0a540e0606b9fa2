"""Filters applied to scan results before they are reported."""

from __future__ import annotations

import os
from dataclasses import replace
from datetime import datetime
from typing import Any, Callable, Iterator

from iacscan.models import EngineResults, RuleResults
from iacscan.results import Results, Vulnerability

_SEVERITY_LEVEL_BY_NAME = {
    "low": 0,
    "medium": 1,
    "high": 2,
    "critical": 3,
}

_REMOVED_SEVERITY = "none"

_PLAN_INPUT_TYPE = "tf_plan"


def _match_function(matcher: Any) -> Callable[..., bool]:
    match = getattr(matcher, "match", None)
    if callable(match):
        return match
    if callable(matcher):
        return matcher
    raise TypeError("matcher must be callable or provide a match method")


def _ignore_parts(vulnerability: Vulnerability) -> Iterator[str]:
    file = vulnerability.resource.file
    if file:
        yield file.replace(os.sep, "/") if os.sep != "/" else file
    path = vulnerability.resource.formatted_path
    if path:
        yield from path.split(".")


def filter_vulnerabilities_by_ignores(results: Results | None, matcher: Any, now: datetime) -> Results | None:
    """Drop the vulnerabilities the matcher ignores and count them.

    The matcher is either callable as ``matcher(rule_id, now, *parts)`` or has
    a ``match`` method with that signature. The input is left unchanged.
    """
    if results is None:
        return None

    match = _match_function(matcher)
    kept: list[Vulnerability] = []
    ignored = 0
    for vulnerability in results.vulnerabilities:
        if match(vulnerability.rule.id, now, *_ignore_parts(vulnerability)):
            ignored += 1
        else:
            kept.append(vulnerability)

    return replace(
        results,
        vulnerabilities=kept,
        metadata=replace(results.metadata, ignored_count=ignored),
    )


def _resource_key(resource_type: str, resource_id: str, namespace: str) -> str:
    return f"{resource_type}_{resource_id}_{namespace}"


def filter_missing_resources(raw_results: EngineResults | None) -> EngineResults | None:
    """Point plan rule results at a resource that is present in the input.

    Resources with no planned change are removed from plan inputs, so a rule
    result may name a primary resource that no longer exists. Such a result is
    re-targeted to one of its related resources that is still in the input.
    The results are updated in place and returned.
    """
    if raw_results is None:
        return None

    for result in raw_results.results:
        if result.input.input_type != _PLAN_INPUT_TYPE:
            continue
        if not result.input.resources:
            continue

        present = {
            _resource_key(state.resource_type, state.id, state.namespace)
            for states in result.input.resources.values()
            for state in states.values()
        }

        for rule_results in result.rule_results:
            for rule_result in rule_results.results:
                primary = _resource_key(
                    rule_result.resource_type, rule_result.resource_id, rule_result.resource_namespace
                )
                if primary in present:
                    continue
                for resource in rule_result.resources:
                    if _resource_key(resource.type, resource.id, resource.namespace) in present:
                        rule_result.resource_type = resource.type
                        rule_result.resource_id = resource.id
                        rule_result.resource_namespace = resource.namespace

    return raw_results


def filter_by_severity_threshold(scan_results: Results | None, severity_threshold: str) -> Results | None:
    """Keep vulnerabilities at or above the threshold; unknown severities are dropped.

    An unknown threshold counts as the lowest level. The results are updated
    in place and returned.
    """
    if scan_results is None:
        return None

    threshold = _SEVERITY_LEVEL_BY_NAME.get(severity_threshold, 0)
    scan_results.vulnerabilities = [
        vulnerability
        for vulnerability in scan_results.vulnerabilities
        if vulnerability.severity in _SEVERITY_LEVEL_BY_NAME
        and _SEVERITY_LEVEL_BY_NAME[vulnerability.severity] >= threshold
    ]
    return scan_results


def _with_custom_severity(rule_results: RuleResults, severity: str) -> RuleResults:
    for rule_result in rule_results.results:
        rule_result.severity = severity
    return rule_results


def apply_custom_severities(
    raw_results: EngineResults | None, custom_severities: dict[str, str]
) -> EngineResults | None:
    """Override rule severities; rules whose custom severity is "none" are removed.

    The results are updated in place and returned.
    """
    if raw_results is None:
        return None

    for result in raw_results.results:
        result.rule_results = [
            _with_custom_severity(rule_results, custom_severities[rule_results.id])
            if rule_results.id in custom_severities
            else rule_results
            for rule_results in result.rule_results
            if custom_severities.get(rule_results.id, "").lower() != _REMOVED_SEVERITY
        ]

    return raw_results