"""End-to-end release pipeline over a local repository."""

from __future__ import annotations

import subprocess
from pathlib import Path

import pytest

from shipci.dag import overall_status, run_pipeline
from shipci.dsl import (
    check_version,
    checkout,
    download_artifact,
    job,
    needs_output,
    pipeline,
    publish,
    sh,
    step_output,
    tag_and_push,
    upload_artifact,
)
from shipci.model import JobStatus, Trigger
from shipci.services import RunServices
from shipci.secret_store import Secrets
from shipci.ui.console import Console

from tests.conftest import git, requires_git

PROJECT = "src/Lib/Lib.csproj"

CSPROJ = """<Project Sdk="Microsoft.NET.Sdk">
  <PropertyGroup>
    <TargetFramework>net8.0</TargetFramework>
    <Version>{version}</Version>
  </PropertyGroup>
</Project>
"""


def write_project(repo: Path, version: str) -> str:
    path = repo / PROJECT
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(CSPROJ.format(version=version), encoding="utf-8")
    git("add", PROJECT, cwd=repo)
    git("commit", "--quiet", "-m", f"Bump version to {version}", cwd=repo)
    return git("rev-parse", "HEAD", cwd=repo)


def release_pipeline(feed: Path):
    return pipeline(
        "release",
        job(
            "check_version",
            checkout(),
            check_version(PROJECT, id="version"),
            outputs={
                "is_valid": step_output("version", "is_valid"),
                "version": step_output("version", "version"),
            },
        ),
        job(
            "tag_and_push",
            checkout(),
            tag_and_push(needs_output("check_version", "version"), id="tag"),
            needs=["check_version"],
            if_="needs.check_version.outputs.is_valid == 'true'",
            outputs={"tag": step_output("tag", "tag")},
        ),
        job(
            "create_nuget",
            sh(
                "Pack",
                'mkdir -p out && echo pkg > "out/Lib.${TAG#v}.nupkg"',
                env={"TAG": needs_output("tag_and_push", "tag")},
            ),
            upload_artifact("nuget", ["out/*.nupkg"]),
            needs=["tag_and_push"],
        ),
        job(
            "deploy",
            download_artifact("nuget", path="packages"),
            publish(["packages/out/*.nupkg"], source=str(feed), id="publish"),
            needs=["create_nuget"],
            outputs={
                "pushed": step_output("publish", "pushed"),
                "skipped": step_output("publish", "skipped"),
            },
        ),
    )


def make_services(config, run_id: str) -> RunServices:
    return RunServices.create(config, secrets=Secrets(environ={}), run_id=run_id, console=Console(quiet=True))


def trigger_for(repo: Path, sha: str) -> Trigger:
    return Trigger(event="push", branch="master", sha=sha, repository=str(repo))


@requires_git
def test_release_flow_tags_packs_and_publishes(git_repo, config, tmp_path):
    head = write_project(git_repo, "1.0.0")
    feed = tmp_path / "feed"

    results = run_pipeline(release_pipeline(feed), trigger_for(git_repo, head), services=make_services(config, "r1"))

    assert {n: r.status for n, r in results.items()} == {
        "check_version": JobStatus.SUCCEEDED,
        "tag_and_push": JobStatus.SUCCEEDED,
        "create_nuget": JobStatus.SUCCEEDED,
        "deploy": JobStatus.SUCCEEDED,
    }, {n: r.error for n, r in results.items()}
    assert results["check_version"].outputs == {"is_valid": "true", "version": "1.0.0"}
    assert results["tag_and_push"].outputs == {"tag": "v1.0.0"}
    assert results["deploy"].outputs == {"pushed": "1", "skipped": "0"}

    # the tag was pushed back to the triggering repository
    assert git("rev-parse", "v1.0.0^{commit}", cwd=git_repo) == head
    assert (feed / "lib" / "1.0.0" / "Lib.1.0.0.nupkg").exists()


@requires_git
def test_rerun_without_version_bump_skips_release(git_repo, config, tmp_path):
    head = write_project(git_repo, "1.0.0")
    feed = tmp_path / "feed"
    run_pipeline(release_pipeline(feed), trigger_for(git_repo, head), services=make_services(config, "r1"))

    results = run_pipeline(release_pipeline(feed), trigger_for(git_repo, head), services=make_services(config, "r2"))
    assert results["check_version"].status is JobStatus.SUCCEEDED
    assert results["check_version"].outputs["is_valid"] == "false"
    assert results["tag_and_push"].status is JobStatus.SKIPPED
    assert results["deploy"].status is JobStatus.SKIPPED
    assert overall_status(results) is JobStatus.SUCCEEDED


@requires_git
def test_version_bump_releases_again(git_repo, config, tmp_path):
    first = write_project(git_repo, "1.0.0")
    feed = tmp_path / "feed"
    run_pipeline(release_pipeline(feed), trigger_for(git_repo, first), services=make_services(config, "r1"))

    second = write_project(git_repo, "1.1.0")
    results = run_pipeline(release_pipeline(feed), trigger_for(git_repo, second), services=make_services(config, "r2"))
    assert results["tag_and_push"].outputs == {"tag": "v1.1.0"}
    assert git("rev-parse", "v1.1.0^{commit}", cwd=git_repo) == second
    assert git("rev-parse", "v1.0.0^{commit}", cwd=git_repo) == first
    assert (feed / "lib" / "1.1.0" / "Lib.1.1.0.nupkg").exists()


@requires_git
def test_strict_version_gate_fails_the_job(git_repo, config):
    head = write_project(git_repo, "1.0.0")
    git("tag", "-a", "v1.0.0", "-m", "Release v1.0.0", cwd=git_repo)
    p = pipeline("gate", job("check", checkout(), check_version(PROJECT, fail_on_invalid=True)))

    results = run_pipeline(p, trigger_for(git_repo, head), services=make_services(config, "r1"))
    assert results["check"].status is JobStatus.FAILED
    assert results["check"].failed_step == "Check version"
    assert "not incremented" in results["check"].error


@requires_git
def test_checkout_of_unknown_commit_fails(git_repo, config):
    p = pipeline("p", job("build", checkout()))
    results = run_pipeline(p, trigger_for(git_repo, "f" * 40), services=make_services(config, "r1"))
    assert results["build"].status is JobStatus.FAILED
    assert "checkout_failed" in results["build"].error


def test_checkout_that_hangs_fails_with_a_timeout(config, tmp_path, monkeypatch):
    seen = {}

    def hung_fetch(repository, dest, remote="origin", timeout=None):
        seen["timeout"] = timeout
        raise subprocess.TimeoutExpired(["git", "fetch"], 1.0)

    monkeypatch.setattr("shipci.git_facts.git.fetch_into", hung_fetch)
    p = pipeline("p", job("build", checkout()))
    trigger = Trigger(event="push", branch="master", sha="0" * 40, repository=str(tmp_path))
    results = run_pipeline(p, trigger, services=make_services(config, "r1"))
    assert results["build"].status is JobStatus.FAILED
    assert "step 'Checkout' timed out" in results["build"].error
    assert 0 < seen["timeout"] <= config.step_timeout


def test_publish_skips_already_published_package(config, tmp_path):
    feed = tmp_path / "feed"
    p = pipeline(
        "p",
        job(
            "deploy",
            sh("Pack", "mkdir -p out && echo pkg > out/Lib.2.0.0.nupkg"),
            publish(["out/*.nupkg"], source=str(feed), id="first"),
            publish(["out/*.nupkg"], source=str(feed), id="second"),
            outputs={"skipped": step_output("second", "skipped")},
        ),
    )
    trigger = Trigger(event="push", branch="master", sha="0" * 40, repository=str(tmp_path))
    results = run_pipeline(p, trigger, services=make_services(config, "r1"))
    assert results["deploy"].status is JobStatus.SUCCEEDED
    assert results["deploy"].outputs == {"skipped": "1"}


def test_publish_without_matching_files_fails(config, tmp_path):
    p = pipeline("p", job("deploy", publish(["out/*.nupkg"], source=str(tmp_path / "feed"))))
    trigger = Trigger(event="push", branch="master", sha="0" * 40, repository=str(tmp_path))
    results = run_pipeline(p, trigger, services=make_services(config, "r1"))
    assert results["deploy"].status is JobStatus.FAILED
    assert "no_packages" in results["deploy"].error


@pytest.mark.parametrize("path", ["out/", "out/*.nupkg"])
def test_artifacts_flow_between_jobs(config, tmp_path, path):
    p = pipeline(
        "p",
        job("build", sh("Build", "mkdir -p out && echo data > out/a.nupkg"), upload_artifact("bin", [path])),
        job(
            "use",
            download_artifact("bin"),
            sh("Read", 'echo "content=$(cat out/a.nupkg)" >> "$SHIPCI_OUTPUT"', id="read"),
            needs=["build"],
            outputs={"content": step_output("read", "content")},
        ),
    )
    trigger = Trigger(event="push", branch="master", sha="0" * 40, repository=str(tmp_path))
    results = run_pipeline(p, trigger, services=make_services(config, "r1"))
    assert results["use"].outputs == {"content": "data"}
