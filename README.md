# iacscan

`iacscan` turns the output of an infrastructure-as-code policy engine into
flat scan results that are easy to filter. It can also:

- fetch organisation settings from a registry service;
- download a rules bundle that suits a given policy engine version;
- share scan results back to the registry.

## Installation

```
pip install iacscan
```

To run the test suite:

```
pip install "iacscan[test]"
pytest
```

## Modules

### `iacscan.models`

Dataclasses that describe engine output. The top of the tree is
`EngineResults`, which holds a list of `Result`. Each `Result` holds an input
`State` and a list of `RuleResults`.

### `iacscan.results`

`from_engine_results(results, include_passed)` turns an `EngineResults` into a
`Results` object. That object holds:

- `resources`: one entry for every resource in the inputs, with its file,
  line and column if its metadata gives a location;
- `vulnerabilities`: one entry for every failed rule result on its primary
  resource;
- `passed_vulnerabilities`: filled only when `include_passed` is true.

Each vulnerability's resource has a `formatted_path`, built by
`formatted_path(rule_id, resource_id, paths)`. Examples:

- `resource.aws_s3_bucket[name].a`
- `input.resource.aws_s3_bucket[name]`, for the rules that need the `input.`
  prefix.

Rules whose id starts with `SNYK-` get a documentation link. Any other rule is
marked `is_generated_by_custom_rule`.

`stub_resources(results)` returns a copy in which resource attributes are
cleared. Inputs whose kind is `terraformconfig` are left as they are.

### `iacscan.filters`

- `filter_by_severity_threshold(scan_results, threshold)` keeps the
  vulnerabilities at or above `low`, `medium`, `high` or `critical`. It drops
  those whose severity is not one of these four.
- `filter_vulnerabilities_by_ignores(results, matcher, now)` removes the
  vulnerabilities that the matcher reports as ignored, and records how many
  it removed in `metadata.ignored_count`. The matcher may be a callable or an
  object with a `match` method. Either way it is called as
  `matcher(rule_id, now, *parts)`. The parts are the file, followed by the
  dotted parts of the formatted path.
- `apply_custom_severities(raw_results, custom_severities)` overrides the
  severity of each rule named in the mapping. A rule whose custom severity is
  `none` is removed.
- `filter_missing_resources(raw_results)` works on `tf_plan` inputs. Where a
  rule result's primary resource is missing from the input, it re-points the
  result to a related resource that is present.

### `iacscan.registry`

`RegistryClient(url, http_client=None)` is built on `requests`. It has two
methods:

- `read_iac_org_settings(org)` returns a `ReadIACOrgSettingsResponse`.
- `share_results(request)` posts a `ShareResultsRequest` and returns the
  project ids keyed by target file.

Failures raise `RegistryError`. The documented API error statuses (400, 401,
403, 404, 429, 500) raise `ShareResultsApiError`.

### `iacscan.settings`

- `Reader(registry_client, org).read_settings()` returns a `Settings` object.
  It holds the organisation, the custom severities, the entitlements and the
  ignore settings.
- `CachedReader(reader)` reads once and returns the same outcome every time,
  whether that is the settings or the error.

### `iacscan.rules`

`RulesClient(url, http_client=None)` reads `<url>/versions.json`. It has three
methods:

- `get_compatible_bundle_version(engine_version)` returns the preferred
  bundle version if the engine meets that bundle's minimum engine version.
  Otherwise it returns the newest version that the engine does meet.
- `download_latest_bundle(engine_version, writer)` writes the chosen bundle
  to `writer` and checks its SHA-256 checksum.
- `download_pinned_bundle(version, engine_version, writer)` does the same for
  one named bundle version.

The module also has `determine_bundle_version` and `is_engine_compatible`.
Errors raise `RulesError`.

### `iacscan.giturls`

`parse_git_url(url)` accepts three forms of remote and returns a `GitURL`:

- transport URLs such as `ssh://`, `https://`, `git://` and `file://`;
- scp-like addresses such as `host.xz:path/to/repo.git`;
- local paths, which are treated as `file` URLs.

### `iacscan.processor`

`ResultsProcessor.process_results(raw_results, scan_analytics)` runs the
whole pipeline:

1. Read the settings through its `settings_reader`.
2. Compute the project name and the project URL.
3. Build the ignore matcher.
4. Apply custom severities.
5. Fix missing plan resources.
6. Convert the results.
7. Apply the severity threshold, if one is set.
8. Apply ignores.
9. If `report` is set, share the results through its `snyk_platform`.

The project name is taken from the first of these that applies:

- `target_name`;
- a name derived from the git remote URL, using
  `project_name_from_git_origin_url`;
- the name of the working directory.

Failures raise `ProcessingError`.

```python
from iacscan.processor import project_name_from_git_origin_url

project_name_from_git_origin_url("https://example.com/organization/project/_git/repository")
# 'organization/project/repository'
```

### `iacscan.legacy`

`ShareResults` sends results to the registry's share endpoint. It turns them
into a `ScanResult` envelope, then adds:

- the project attributes, parsed from comma-separated values;
- the tags, parsed from `key=value` pairs;
- optionally, the contributors.

`format_origin_url` normalises git remotes for the target. Remotes over `ssh`,
`http`, `https`, `ftp` and `ftps` become `http://host/path`.

## Example

```python
from iacscan.models import EngineResults
from iacscan.results import from_engine_results
from iacscan.filters import filter_by_severity_threshold

raw = EngineResults()  # normally built from policy engine output
scan = from_engine_results(raw, False)
scan = filter_by_severity_threshold(scan, "high")
for vuln in scan.vulnerabilities:
    print(vuln.rule.id, vuln.severity, vuln.resource.formatted_path)
```

## What it does not do

- There is no command-line tool. The package is a library.
- It does not run a policy engine. It only consumes the engine's results.
- It does not parse policy (ignore) files. `ResultsProcessor` ignores nothing
  unless an `ignore_matcher_factory` is given to build a matcher from the
  policy file's contents.
- It does not read git history. `ShareResults` lists contributors only
  through a `contributor_lister` that you supply. Without one, the list is
  empty.
- It has no platform client of its own. `ResultsProcessor` shares through the
  `snyk_platform` object that you give it.