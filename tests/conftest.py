"""Shared test fixtures for shipci."""

from __future__ import annotations

import io
import json
import shutil
import subprocess
import urllib.error
from pathlib import Path

import pytest

from shipci.config import ShipConfig
from shipci.model import Trigger
from shipci.secret_store import Secrets
from shipci.services import RunServices
from shipci.ui.console import Console

TEST_SECRET = "s3cr3t-token-value"

requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git is not installed")


@pytest.fixture
def config(tmp_path: Path) -> ShipConfig:
    return ShipConfig(
        work_dir=tmp_path / "work",
        artifact_root=tmp_path / "artifacts",
        job_timeout=60.0,
        step_timeout=30.0,
        retry_attempts=3,
        retry_backoff=0.0,
    )


@pytest.fixture
def services(config: ShipConfig) -> RunServices:
    return RunServices.create(
        config,
        secrets=Secrets({"TOKEN": TEST_SECRET}, environ={}),
        run_id="run-1",
        console=Console(quiet=True),
    )


@pytest.fixture
def trigger(tmp_path: Path) -> Trigger:
    return Trigger(event="push", branch="master", sha="0" * 40, repository=str(tmp_path))


# ---------------------------------------------------------------------
# git helpers
# ---------------------------------------------------------------------

def git(*args: str, cwd: Path) -> str:
    proc = subprocess.run(["git", *args], cwd=str(cwd), text=True, capture_output=True, check=True)
    return proc.stdout.strip()


def commit(repo: Path, message: str, filename: str = "CHANGES.txt") -> str:
    path = repo / filename
    with path.open("a", encoding="utf-8") as f:
        f.write(message + "\n")
    git("add", filename, cwd=repo)
    git("commit", "--quiet", "-m", message, cwd=repo)
    return git("rev-parse", "HEAD", cwd=repo)


@pytest.fixture
def git_identity(monkeypatch: pytest.MonkeyPatch) -> None:
    for key, value in {
        "GIT_AUTHOR_NAME": "Test Author",
        "GIT_AUTHOR_EMAIL": "author@example.com",
        "GIT_COMMITTER_NAME": "Test Author",
        "GIT_COMMITTER_EMAIL": "author@example.com",
        "GIT_CONFIG_NOSYSTEM": "1",
    }.items():
        monkeypatch.setenv(key, value)


@pytest.fixture
def remote_repo(tmp_path: Path, git_identity: None) -> Path:
    remote = tmp_path / "remote.git"
    remote.mkdir()
    git("init", "--quiet", "--bare", cwd=remote)
    return remote


@pytest.fixture
def git_repo(tmp_path: Path, remote_repo: Path) -> Path:
    """A repository with one commit and an `origin` pointing at a bare remote."""
    repo = tmp_path / "repo"
    repo.mkdir()
    git("init", "--quiet", cwd=repo)
    git("symbolic-ref", "HEAD", "refs/heads/master", cwd=repo)
    commit(repo, "initial commit")
    git("remote", "add", "origin", str(remote_repo), cwd=repo)
    git("push", "--quiet", "origin", "master", cwd=repo)
    return repo


# ---------------------------------------------------------------------
# HTTP fakes (urlopen-compatible)
# ---------------------------------------------------------------------

class FakeResponse:
    def __init__(self, body: bytes = b""):
        self._body = body

    def read(self) -> bytes:
        return self._body

    def __enter__(self) -> "FakeResponse":
        return self

    def __exit__(self, *exc) -> None:
        return None


class FakeOpener:
    """Records requests and answers from a queue of (status, body) pairs."""

    def __init__(self, *answers):
        self.answers = list(answers)
        self.requests = []

    def __call__(self, req, timeout=None):
        self.requests.append(req)
        status, body = self.answers.pop(0) if self.answers else (200, {})
        payload = body if isinstance(body, bytes) else json.dumps(body).encode("utf-8")
        if status >= 400:
            raise urllib.error.HTTPError(req.full_url, status, "error", {}, io.BytesIO(payload))
        return FakeResponse(payload)
