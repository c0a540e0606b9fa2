import pytest

from iacscan.giturls import GitURL, GitURLError, parse_git_url


def test_scp_form():
    url = parse_git_url("git@example.com:path/to/repo.git?ref=test")
    assert (url.scheme, url.user, url.host) == ("ssh", "git", "example.com")
    assert url.path == "path/to/repo.git"
    assert url.raw_query == "ref=test"


def test_scp_form_without_user():
    url = parse_git_url("host.xz:/path/to/repo.git/")
    assert (url.scheme, url.user, url.host, url.path) == ("ssh", "", "host.xz", "/path/to/repo.git/")


def test_transport_with_port():
    url = parse_git_url("https://host.xz:1234/path/to/repo.git/")
    assert (url.scheme, url.host, url.path) == ("https", "host.xz:1234", "/path/to/repo.git/")


def test_local_path_becomes_file_url():
    url = parse_git_url("/path/to/repo.git/")
    assert url.scheme == "file"
    assert url.host == ""
    assert str(url) == "file:///path/to/repo.git/"


@pytest.mark.parametrize(
    "text",
    [
        "git://host.xz/path/to/repo.git/",
        "rsync://host.xz/path/to/repo.git/",
        "git+ssh://host.xz/path/to/repo.git/",
        "file:///path/to/repo.git/",
    ],
)
def test_transport_round_trip(text):
    assert str(parse_git_url(text)) == text


def test_str_inserts_slash_for_relative_path():
    assert str(GitURL(scheme="ssh", user="git", host="example.com", path="a/b.git")) == "ssh://git@example.com/a/b.git"


def test_unknown_scheme_is_not_a_transport():
    url = parse_git_url("azure-devops-style:project/repo")
    assert url.scheme == "ssh"
    assert url.host == "azure-devops-style"


def test_non_string_rejected():
    with pytest.raises(GitURLError):
        parse_git_url(None)