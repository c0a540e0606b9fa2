import pytest

from iacscan.legacy import (
    ShareResults,
    convert_vulnerability_to_finding,
    format_origin_url,
    split_comma_list,
)
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
    Tag,
    Target,
)
from iacscan.results import Resource, Results, Rule, Vulnerability

RESOURCES = [("first", "resource-file", 1), ("second", "resource-file", 1), ("another", "another-resource-file", 2)]


def failing_wd():
    raise OSError("an error to fail get_target")


def make_results():
    vulns = [
        Vulnerability(
            rule=Rule(id="rule-id", title="rule-title", description="rule-description", category="rule-category"),
            message="result-message",
            remediation="result-remediation",
            severity="medium",
            ignored=True,
            resource=Resource(
                id=f"{name}-resource.id",
                type=f"{name}-resource-type",
                path=["attribute", "nested_attribute"],
                formatted_path=f"{name}-resource.resource[id].attribute.nested_attribute",
                file=file,
                kind="terraformconfig",
                line=line,
                column=2,
            ),
        )
        for name, file, line in RESOURCES
    ]
    return Results(vulnerabilities=vulns)


def expected_findings():
    return [
        Finding(
            data=Data(
                metadata=RuleMetadata(
                    public_id="rule-id",
                    title="rule-title",
                    severity="medium",
                    issue="rule-title",
                    impact="rule-description",
                    references=[],
                ),
                issue_metadata=IssueMetadata(
                    type="terraformconfig",
                    file=file,
                    resource_info=ResourceInfo(type=f"{name}-resource-type"),
                    resource_path=f"{name}-resource.resource[id].attribute.nested_attribute",
                    line_number=line,
                ),
            ),
            type="iacIssue",
        )
        for name, file, line in RESOURCES
    ]


@pytest.mark.parametrize(
    "processor,policy,target,reference",
    [
        (ShareResults(allow_analytics=True, get_wd=failing_wd, target_reference="target-branch"), "",
         Target(name="Project Name"), "target-branch"),
        (ShareResults(allow_analytics=True, get_wd=lambda: "Project Name",
                      remote_repo_url="git@example.com:test/remote-repo-url.git"), "",
         Target(remote_url="http://example.com/test/remote-repo-url.git"), ""),
        (ShareResults(allow_analytics=True, get_wd=failing_wd, get_origin_url=lambda cwd: "x"), "test-policy",
         Target(name="Project Name"), ""),
    ],
)
def test_convert_results_to_envelope_scan_result(processor, policy, target, reference):
    got = processor.convert_results_to_envelope_scan_result(make_results(), "Project Name", policy)
    assert got == ScanResult(
        identity=Identity(type="iac", target_file="Infrastructure_as_code_issues"),
        facts=[],
        name="Project Name",
        policy=policy,
        findings=expected_findings(),
        target=target,
        target_reference=reference,
    )


def test_convert_vulnerability_keeps_tags():
    vuln = Vulnerability(resource=Resource(type="t", tags={"team": "iac"}))
    assert convert_vulnerability_to_finding(vuln).data.issue_metadata.resource_info.tags == {"team": "iac"}


@pytest.mark.parametrize(
    "origin,expected",
    [
        ("git@example.com:path/to/repo.git/", "http://example.com/path/to/repo.git"),
        ("host.xz:/path/to/repo.git/", "http://host.xz/path/to/repo.git"),
        ("git://host.xz/path/to/repo.git/", "git://host.xz/path/to/repo.git/"),
        ("http://host.xz/path/to/repo.git/", "http://host.xz/path/to/repo.git"),
        ("https://host.xz:1234/path/to/repo.git/", "http://host.xz:1234/path/to/repo.git"),
        ("git@example.com:organization/repo.git?ref=test", "http://example.com/organization/repo.git"),
        ("ssh://host.xz:1234/path/to/repo.git/", "http://host.xz:1234/path/to/repo.git"),
        ("ftp://host.xz:1234/path/to/repo.git/", "http://host.xz:1234/path/to/repo.git"),
        ("ftps://host.xz/path/to/repo.git/", "http://host.xz/path/to/repo.git"),
        ("file:///path/to/repo.git/", "file:///path/to/repo.git/"),
        ("/path/to/repo.git/", "file:///path/to/repo.git/"),
        ("rsync://host.xz/path/to/repo.git/", "rsync://host.xz/path/to/repo.git/"),
        ("git+ssh://host.xz/path/to/repo.git/", "git+ssh://host.xz/path/to/repo.git/"),
        ("", ""),
    ],
)
def test_format_origin_url(origin, expected):
    assert format_origin_url(origin) == expected


@pytest.mark.parametrize(
    "values,expected",
    [
        ((None, None, None), Attributes()),
        (("", "", ""), Attributes(criticality=[], environment=[], lifecycle=[])),
        (("critical,high", "frontend,backend", "production"),
         Attributes(criticality=["critical", "high"], environment=["frontend", "backend"], lifecycle=["production"])),
    ],
)
def test_format_attributes(values, expected):
    got = Attributes(*(split_comma_list(v) for v in values))
    assert got == expected


@pytest.mark.parametrize(
    "tags,expected",
    [
        (None, []),
        ("", []),
        ("key1=value1,key2=value2", [Tag("key1", "value1"), Tag("key2", "value2")]),
    ],
)
def test_format_tags(tags, expected):
    assert ShareResults(project_tags=tags).format_tags() == expected


def test_format_tags_rejects_bad_pair():
    with pytest.raises(ValueError):
        ShareResults(project_tags="novalue").format_tags()


def test_contributors_not_listed_without_analytics():
    assert ShareResults(allow_analytics=False).list_contributors() is None


def test_contributors_listed_with_analytics():
    calls = []

    def lister(cwd, since, until, limit):
        calls.append((cwd, limit, since < until))
        return ["someone"]

    processor = ShareResults(allow_analytics=True, get_wd=lambda: "repo", contributor_lister=lister)
    assert processor.list_contributors() == ["someone"]
    assert calls == [("repo", 500, True)]


class _FakeRegistry:
    def __init__(self, error=None):
        self.requests = []
        self.error = error

    def share_results(self, request):
        self.requests.append(request)
        if self.error:
            raise self.error
        return {"Infrastructure_as_code_issues": "project-id"}


def test_share_results_builds_request():
    registry = _FakeRegistry()
    processor = ShareResults(
        registry_client=registry,
        project_name="Project Name",
        project_tags="k=v",
        project_lifecycle="production",
        get_wd=failing_wd,
    )
    assert processor.share_results(make_results()) == {"Infrastructure_as_code_issues": "project-id"}
    request = registry.requests[0]
    assert request.tags == [Tag("k", "v")]
    assert request.attributes == Attributes(lifecycle=["production"])
    assert request.contributors is None
    assert len(request.scan_results[0].findings) == 3


def test_share_results_without_tags_omits_them():
    registry = _FakeRegistry()
    ShareResults(registry_client=registry, get_wd=failing_wd).share_results(Results())
    assert registry.requests[0].tags is None


def test_share_results_wraps_errors():
    processor = ShareResults(registry_client=_FakeRegistry(RuntimeError("boom")), get_wd=failing_wd)
    with pytest.raises(RegistryError, match="share results: boom"):
        processor.share_results(Results())