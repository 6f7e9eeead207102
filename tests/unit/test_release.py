"""Tests for release tagging and release records."""

from __future__ import annotations

import json
import subprocess

import pytest

from shipci.exceptions import (
    ApiError,
    ReleaseConflictError,
    ShipError,
    TagConflictError,
    TagNotFoundError,
    TransientError,
    VersionError,
)
from shipci.git_facts import git as git_commands
from shipci.release import (
    GitHubReleases,
    Identity,
    ReleasePublisher,
    ReleaseTagger,
    generate_notes,
    strip_prefix,
    tag_name,
)

from tests.conftest import FakeOpener, commit, git, requires_git


def test_tag_name_and_prefix():
    assert tag_name("1.2.3") == "v1.2.3"
    assert tag_name("1.2.3", prefix="release-") == "release-1.2.3"
    assert strip_prefix("v1.2.3") == "1.2.3"
    assert strip_prefix("1.2.3") == "1.2.3"
    with pytest.raises(VersionError):
        tag_name("latest")


def test_identity_env():
    env = Identity("Release Bot", "bot@example.com").env({"PATH": "/bin"})
    assert env["PATH"] == "/bin"
    assert env["GIT_COMMITTER_NAME"] == "Release Bot"
    assert env["GIT_AUTHOR_EMAIL"] == "bot@example.com"


# ---------------------------------------------------------------------
# Tagger
# ---------------------------------------------------------------------

@requires_git
def test_tag_is_created_and_pushed(git_repo, remote_repo):
    head = git("rev-parse", "HEAD", cwd=git_repo)
    tagger = ReleaseTagger(git_repo, identity=Identity("Release Bot", "bot@example.com"))

    assert tagger.tag("1.0.0") == "v1.0.0"
    assert git("rev-parse", "v1.0.0^{commit}", cwd=git_repo) == head
    assert git("cat-file", "-t", "v1.0.0", cwd=git_repo) == "tag"
    assert git("rev-parse", "v1.0.0^{commit}", cwd=remote_repo) == head


@requires_git
def test_tagging_twice_conflicts_and_keeps_first_tag(git_repo, remote_repo):
    tagger = ReleaseTagger(git_repo)
    tagger.tag("1.0.0")
    first = git("rev-parse", "v1.0.0", cwd=git_repo)

    commit(git_repo, "another change")
    with pytest.raises(TagConflictError) as exc:
        tagger.tag("1.0.0")
    assert exc.value.where == "local"
    assert git("rev-parse", "v1.0.0", cwd=git_repo) == first
    assert git("rev-parse", "v1.0.0", cwd=remote_repo) == first


@requires_git
def test_tag_existing_only_on_remote_conflicts(git_repo, remote_repo):
    tagger = ReleaseTagger(git_repo)
    tagger.tag("1.0.0")
    git("tag", "--delete", "v1.0.0", cwd=git_repo)

    with pytest.raises(TagConflictError) as exc:
        tagger.tag("1.0.0")
    assert exc.value.where == "remote"
    assert git("tag", "--list", "v1.0.0", cwd=git_repo) == ""


@requires_git
def test_equal_version_spelled_differently_is_a_new_tag_name(git_repo):
    tagger = ReleaseTagger(git_repo)
    assert tagger.tag("1.0.0", push=False) == "v1.0.0"
    assert tagger.tag("1.0.1", push=False) == "v1.0.1"


@requires_git
def test_tag_without_push_needs_no_remote(tmp_path, git_identity):
    repo = tmp_path / "solo"
    repo.mkdir()
    git("init", "--quiet", cwd=repo)
    commit(repo, "only commit")
    assert ReleaseTagger(repo).tag("0.1.0", push=False) == "v0.1.0"


@requires_git
def test_failed_push_removes_local_tag(git_repo, tmp_path):
    git("remote", "set-url", "origin", str(tmp_path / "gone.git"), cwd=git_repo)
    tagger = ReleaseTagger(git_repo)
    with pytest.raises(TransientError):
        tagger.tag("1.0.0")
    assert git("tag", "--list", "v1.0.0", cwd=git_repo) == ""


@requires_git
def test_push_refused_by_remote_is_not_retried(git_repo, remote_repo):
    hook = remote_repo / "hooks" / "pre-receive"
    hook.write_text("#!/bin/sh\necho 'tags are frozen' >&2\nexit 1\n", encoding="utf-8")
    hook.chmod(0o755)

    with pytest.raises(ShipError) as exc:
        ReleaseTagger(git_repo).tag("1.0.0")
    assert not isinstance(exc.value, (TagConflictError, TransientError))
    assert "refused v1.0.0" in str(exc.value)
    assert git("tag", "--list", "v1.0.0", cwd=git_repo) == ""


@requires_git
def test_push_timeout_is_transient_and_removes_local_tag(git_repo, monkeypatch):
    seen = {}

    def hung_push(remote, tag, cwd=None, env=None, timeout=None):
        seen["timeout"] = timeout
        raise subprocess.TimeoutExpired(["git", "push"], timeout)

    monkeypatch.setattr("shipci.git_facts.git.push_tag", hung_push)
    with pytest.raises(TransientError, match="timed out after 5s"):
        ReleaseTagger(git_repo).tag("1.0.0", timeout=5)
    assert seen["timeout"] == 5
    assert git("tag", "--list", "v1.0.0", cwd=git_repo) == ""


def test_remote_git_calls_carry_the_timeout(monkeypatch):
    calls = []

    def fake_run(cmd, **kwargs):
        calls.append((cmd[1], kwargs.get("timeout")))
        return subprocess.CompletedProcess(cmd, 0, stdout="", stderr="")

    monkeypatch.setattr(git_commands.subprocess, "run", fake_run)
    assert git_commands.remote_tag_exists("origin", "v1.0.0", timeout=7) is False
    git_commands.push_tag("origin", "v1.0.0", timeout=7)
    assert calls == [("ls-remote", 7), ("push", 7)]


# ---------------------------------------------------------------------
# Release notes
# ---------------------------------------------------------------------

@requires_git
def test_notes_list_commits_since_previous_release(git_repo):
    git("tag", "-a", "v1.0.0", "-m", "Release v1.0.0", cwd=git_repo)
    commit(git_repo, "Add retry for uploads")
    commit(git_repo, "Fix version parsing")
    git("tag", "-a", "v1.1.0", "-m", "Release v1.1.0", cwd=git_repo)

    notes = generate_notes(git_repo, "v1.1.0")
    assert notes.startswith("## Changes since v1.0.0")
    assert "Add retry for uploads" in notes
    assert "Fix version parsing" in notes
    assert "initial commit" not in notes


@requires_git
def test_notes_for_first_release(git_repo):
    git("tag", "-a", "v0.1.0", "-m", "Release v0.1.0", cwd=git_repo)
    notes = generate_notes(git_repo, "v0.1.0")
    assert notes.startswith("## Initial release")
    assert "initial commit" in notes


# ---------------------------------------------------------------------
# Release records
# ---------------------------------------------------------------------

class FakeReleases:
    def __init__(self, existing=None):
        self.existing = dict(existing or {})
        self.created = []

    def get_by_tag(self, tag):
        return self.existing.get(tag)

    def create(self, tag, title, body, *, make_latest=True):
        self.created.append((tag, title, body, make_latest))
        self.existing[tag] = {"tag_name": tag}
        return {"html_url": f"https://github.com/owner/lib/releases/tag/{tag}"}


@requires_git
def test_release_record_for_tag(git_repo):
    git("tag", "-a", "v1.0.0", "-m", "Release v1.0.0", cwd=git_repo)
    client = FakeReleases()
    record = ReleasePublisher(git_repo, client).create("v1.0.0")

    assert record.title == "1.0.0"
    assert record.url == "https://github.com/owner/lib/releases/tag/v1.0.0"
    assert record.latest is True
    assert client.created[0][:2] == ("v1.0.0", "1.0.0")
    assert "initial commit" in client.created[0][2]


@requires_git
def test_release_requires_existing_tag(git_repo):
    client = FakeReleases()
    with pytest.raises(TagNotFoundError):
        ReleasePublisher(git_repo, client).create("v9.9.9")
    assert client.created == []


@requires_git
def test_release_ignores_branch_named_like_the_tag(git_repo):
    git("branch", "v9.9.9", cwd=git_repo)
    client = FakeReleases()
    with pytest.raises(TagNotFoundError):
        ReleasePublisher(git_repo, client).create("v9.9.9")
    assert client.created == []


@requires_git
def test_second_release_for_same_tag_conflicts(git_repo):
    git("tag", "-a", "v1.0.0", "-m", "Release v1.0.0", cwd=git_repo)
    client = FakeReleases()
    publisher = ReleasePublisher(git_repo, client)
    publisher.create("v1.0.0")
    with pytest.raises(ReleaseConflictError):
        publisher.create("v1.0.0")
    assert len(client.created) == 1


# ---------------------------------------------------------------------
# GitHub API client
# ---------------------------------------------------------------------

def test_github_create_release_request():
    opener = FakeOpener((201, {"html_url": "https://github.com/owner/lib/releases/tag/v1.0.0"}))
    client = GitHubReleases("owner/lib", "tok", opener=opener)
    created = client.create("v1.0.0", "1.0.0", "notes")

    req = opener.requests[0]
    assert req.get_method() == "POST"
    assert req.full_url == "https://api.github.com/repos/owner/lib/releases"
    assert req.get_header("Authorization") == "Bearer tok"
    assert json.loads(req.data) == {
        "tag_name": "v1.0.0",
        "name": "1.0.0",
        "body": "notes",
        "draft": False,
        "prerelease": False,
        "make_latest": "true",
    }
    assert created["html_url"].endswith("/v1.0.0")


def test_github_get_by_tag_missing_is_none():
    opener = FakeOpener((404, {"message": "Not Found"}))
    assert GitHubReleases("owner/lib", "tok", opener=opener).get_by_tag("v1.0.0") is None
    assert opener.requests[0].full_url == "https://api.github.com/repos/owner/lib/releases/tags/v1.0.0"


def test_github_already_exists_is_a_conflict():
    body = {"message": "Validation Failed", "errors": [{"resource": "Release", "code": "already_exists"}]}
    client = GitHubReleases("owner/lib", "tok", opener=FakeOpener((422, body)))
    with pytest.raises(ReleaseConflictError):
        client.create("v1.0.0", "1.0.0", "")


def test_github_errors():
    client = GitHubReleases("owner/lib", "tok", opener=FakeOpener((502, b""), (401, {"message": "Bad credentials"})))
    with pytest.raises(TransientError):
        client.create("v1.0.0", "1.0.0", "")
    with pytest.raises(ApiError) as exc:
        client.create("v1.0.0", "1.0.0", "")
    assert exc.value.status_code == 401


def test_github_enterprise_url_and_repository_validation():
    opener = FakeOpener((200, {}))
    GitHubReleases("owner/lib", "tok", api_url="https://ghe.example.com/api/v3/", opener=opener).get_by_tag("v1")
    assert opener.requests[0].full_url == "https://ghe.example.com/api/v3/repos/owner/lib/releases/tags/v1"
    with pytest.raises(ValueError):
        GitHubReleases("lib", "tok")
