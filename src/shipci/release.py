# release.py
# Release tags (immutable, one per version) and the release record published for them.
from __future__ import annotations

import json
import os
import subprocess
import urllib.error
import urllib.request
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Optional
from urllib.parse import quote, urljoin

from .exceptions import (
    ApiError,
    ReleaseConflictError,
    ShipError,
    TagConflictError,
    TagNotFoundError,
    TransientError,
)
from .git_facts import git
from .versioning import Version, previous_release_tag

Opener = Callable[..., Any]


@dataclass(frozen=True)
class Identity:
    """Author/committer identity used for tags."""
    name: str
    email: str

    def env(self, base: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        env = dict(base if base is not None else os.environ)
        env.update(
            {
                "GIT_AUTHOR_NAME": self.name,
                "GIT_AUTHOR_EMAIL": self.email,
                "GIT_COMMITTER_NAME": self.name,
                "GIT_COMMITTER_EMAIL": self.email,
            }
        )
        return env


def tag_name(version: str, prefix: str = "v") -> str:
    """Deterministic tag name for a version; validates the version first."""
    return f"{prefix}{Version.parse(version).text}"


def strip_prefix(tag: str, prefix: str = "v") -> str:
    return tag[len(prefix):] if prefix and tag.startswith(prefix) else tag


# ---------------------------------------------------------------------
# Tagger
# ---------------------------------------------------------------------

class ReleaseTagger:
    def __init__(
        self,
        repo_dir: str | Path,
        *,
        prefix: str = "v",
        remote: str = "origin",
        identity: Optional[Identity] = None,
    ):
        self.repo_dir = Path(repo_dir)
        self.prefix = prefix
        self.remote = remote
        self.identity = identity

    def tag(
        self,
        version: str,
        commit: str = "HEAD",
        push: bool = True,
        timeout: Optional[float] = None,
    ) -> str:
        """
        Create annotated tag <prefix><version> at `commit` and push it.
        `timeout` bounds each call to the remote.

        Raises TagConflictError when the tag exists locally or on the remote;
        an existing tag is never moved.
        """
        name = tag_name(version, self.prefix)

        if git.tag_exists(name, cwd=self.repo_dir):
            raise TagConflictError(name, "local")

        if push:
            if not git.has_remote(self.remote, cwd=self.repo_dir):
                raise ShipError(f"Remote '{self.remote}' is not configured in {self.repo_dir}")
            try:
                remote_has_tag = git.remote_tag_exists(self.remote, name, cwd=self.repo_dir, timeout=timeout)
            except subprocess.CalledProcessError as e:
                raise TransientError(f"Could not list tags on '{self.remote}': {(e.stderr or '').strip()}") from e
            except subprocess.TimeoutExpired as e:
                raise TransientError(f"Listing tags on '{self.remote}' timed out after {timeout:g}s") from e
            if remote_has_tag:
                raise TagConflictError(name, "remote")

        env = self.identity.env() if self.identity else None
        try:
            git.create_annotated_tag(name, f"Release {name}", commit, cwd=self.repo_dir, env=env)
        except subprocess.CalledProcessError as e:
            if "already exists" in (e.stderr or ""):
                raise TagConflictError(name, "local") from e
            raise ShipError(f"git tag failed: {(e.stderr or '').strip()}") from e

        if push:
            try:
                git.push_tag(self.remote, name, cwd=self.repo_dir, env=env, timeout=timeout)
            except subprocess.TimeoutExpired as e:
                git.delete_tag(name, cwd=self.repo_dir)
                raise TransientError(f"git push of {name} timed out after {timeout:g}s") from e
            except subprocess.CalledProcessError as e:
                # drop the local tag so a retry starts from a clean state
                git.delete_tag(name, cwd=self.repo_dir)
                stderr = (e.stderr or "").strip()
                if "already exists" in stderr:
                    raise TagConflictError(name, "remote") from e
                if "rejected" in stderr or "denied" in stderr:
                    raise ShipError(f"{self.remote} refused {name}: {stderr}") from e
                raise TransientError(f"git push of {name} failed: {stderr}") from e
        return name


# ---------------------------------------------------------------------
# Release notes
# ---------------------------------------------------------------------

def generate_notes(repo_dir: str | Path, tag: str, prefix: str = "v") -> str:
    """Markdown list of commit subjects since the previous release tag."""
    tags = git.list_tags(f"{prefix}*", cwd=repo_dir)
    previous = previous_release_tag(tags, tag, prefix)
    rev_range = f"{previous}..{tag}" if previous else tag

    commits = git.commit_subjects(rev_range, cwd=repo_dir)
    header = f"## Changes since {previous}" if previous else "## Initial release"
    lines = [f"- {subject} ({sha})" for sha, subject in commits] or ["- No changes"]
    return header + "\n\n" + "\n".join(lines) + "\n"


# ---------------------------------------------------------------------
# Release record endpoint
# ---------------------------------------------------------------------

class GitHubReleases:
    """HTTP client for the GitHub releases API."""

    def __init__(
        self,
        repository: str,
        token: str,
        *,
        api_url: str = "https://api.github.com",
        timeout: float = 30,
        opener: Optional[Opener] = None,
    ):
        """
        Initialize the releases client.

        Args:
            repository: "owner/name"
            token: Token allowed to create releases
            api_url: API base URL (GitHub Enterprise uses https://host/api/v3)
            timeout: Per-request timeout in seconds
            opener: urlopen-compatible callable, for tests
        """
        if repository.count("/") != 1:
            raise ValueError(f"Repository must look like 'owner/name', got {repository!r}")
        self.repository = repository
        self.token = token
        self.base_url = api_url.rstrip("/")
        self.timeout = timeout
        self._open = opener or urllib.request.urlopen

    def _request(self, method: str, path: str, data: Optional[dict] = None) -> Dict[str, Any]:
        url = urljoin(self.base_url + "/", path.lstrip("/"))
        headers = {
            "Accept": "application/vnd.github+json",
            "Authorization": f"Bearer {self.token}",
            "X-GitHub-Api-Version": "2022-11-28",
            "Content-Type": "application/json",
        }
        body = json.dumps(data).encode("utf-8") if data is not None else None
        req = urllib.request.Request(url, data=body, headers=headers, method=method)

        try:
            with self._open(req, timeout=self.timeout) as response:
                payload = response.read().decode("utf-8")
                return json.loads(payload) if payload else {}
        except urllib.error.HTTPError as e:
            error_body = e.read().decode("utf-8") if e.fp else ""
            if e.code >= 500:
                raise TransientError(f"GitHub API {e.code} {e.reason}") from e
            raise ApiError(e.code, str(e.reason), error_body) from e
        except urllib.error.URLError as e:
            raise TransientError(f"Network error: {e.reason}") from e
        except json.JSONDecodeError as e:
            raise ApiError(200, "Invalid JSON", str(e)) from e

    def get_by_tag(self, tag: str) -> Optional[Dict[str, Any]]:
        try:
            return self._request("GET", f"/repos/{self.repository}/releases/tags/{quote(tag, safe='')}")
        except ApiError as e:
            if e.status_code == 404:
                return None
            raise

    def create(self, tag: str, title: str, body: str, *, make_latest: bool = True) -> Dict[str, Any]:
        try:
            return self._request(
                "POST",
                f"/repos/{self.repository}/releases",
                data={
                    "tag_name": tag,
                    "name": title,
                    "body": body,
                    "draft": False,
                    "prerelease": False,
                    "make_latest": "true" if make_latest else "false",
                },
            )
        except ApiError as e:
            if e.status_code == 422 and "already_exists" in e.body:
                raise ReleaseConflictError(tag) from e
            raise


@dataclass(frozen=True)
class ReleaseRecord:
    tag: str
    title: str
    body: str
    url: Optional[str]
    latest: bool


class ReleasePublisher:
    def __init__(self, repo_dir: str | Path, client: GitHubReleases, *, prefix: str = "v"):
        self.repo_dir = Path(repo_dir)
        self.client = client
        self.prefix = prefix

    def create(
        self,
        tag: str,
        *,
        generate: bool = True,
        verify_tag: bool = True,
        mark_latest: bool = True,
    ) -> ReleaseRecord:
        """
        Publish the release record for `tag`: title is the bare version,
        body the commit history since the previous release tag.
        """
        if verify_tag and git.resolve_commit(f"refs/tags/{tag}", cwd=self.repo_dir) is None:
            raise TagNotFoundError(tag)

        title = strip_prefix(tag, self.prefix)
        body = generate_notes(self.repo_dir, tag, self.prefix) if generate else ""

        if self.client.get_by_tag(tag) is not None:
            raise ReleaseConflictError(tag)
        created = self.client.create(tag, title, body, make_latest=mark_latest)
        return ReleaseRecord(
            tag=tag,
            title=title,
            body=body,
            url=created.get("html_url"),
            latest=mark_latest,
        )
