"""Tests for the artifact store."""

from __future__ import annotations

import time

import pytest

from shipci.artifacts import ArtifactStore, artifact_summary
from shipci.exceptions import ArtifactConflictError, ArtifactNotFoundError


@pytest.fixture
def workspace(tmp_path):
    ws = tmp_path / "ws"
    (ws / "out" / "nested").mkdir(parents=True)
    (ws / "out" / "Library.1.0.0.nupkg").write_bytes(b"pkg")
    (ws / "out" / "Library.1.0.0.snupkg").write_bytes(b"symbols")
    (ws / "out" / "nested" / "notes.txt").write_text("hello", encoding="utf-8")
    return ws


@pytest.fixture
def store(tmp_path):
    return ArtifactStore(tmp_path / "artifacts", run_id="run-1", retention_days=7)


def test_upload_then_download_by_name(store, workspace, tmp_path):
    artifact = store.upload("nuget", ["out/*.nupkg"], base_dir=workspace)
    assert artifact.files == ["out/Library.1.0.0.nupkg"]
    assert artifact.retention_days == 7

    dest = tmp_path / "consumer"
    files = store.download("nuget", dest)
    assert files == [dest.resolve() / "out" / "Library.1.0.0.nupkg"]
    assert files[0].read_bytes() == b"pkg"


def test_directory_upload_keeps_relative_layout(store, workspace, tmp_path):
    artifact = store.upload("everything", ["out/"], base_dir=workspace)
    assert artifact.files == [
        "out/Library.1.0.0.nupkg",
        "out/Library.1.0.0.snupkg",
        "out/nested/notes.txt",
    ]
    files = store.download("everything", tmp_path / "d")
    assert (tmp_path / "d" / "out" / "nested" / "notes.txt").read_text(encoding="utf-8") == "hello"
    assert len(files) == 3


def test_name_is_unique_within_a_run(store, workspace):
    store.upload("nuget", ["out/*.nupkg"], base_dir=workspace)
    with pytest.raises(ArtifactConflictError):
        store.upload("nuget", ["out/*.snupkg"], base_dir=workspace)


def test_same_name_in_another_run_is_independent(tmp_path, workspace):
    first = ArtifactStore(tmp_path / "artifacts", run_id="run-1")
    second = ArtifactStore(tmp_path / "artifacts", run_id="run-2")
    first.upload("nuget", ["out/*.nupkg"], base_dir=workspace)
    second.upload("nuget", ["out/*.snupkg"], base_dir=workspace)
    assert second.get("nuget").files == ["out/Library.1.0.0.snupkg"]


def test_download_requires_exact_name(store, workspace, tmp_path):
    store.upload("nuget", ["out/*.nupkg"], base_dir=workspace)
    with pytest.raises(ArtifactNotFoundError):
        store.download("NuGet", tmp_path / "d")
    with pytest.raises(ArtifactNotFoundError):
        store.download("nuget-packages", tmp_path / "d")


def test_upload_with_no_matching_files(store, workspace):
    with pytest.raises(FileNotFoundError):
        store.upload("nothing", ["out/*.whl"], base_dir=workspace)
    assert not store.exists("nothing")


@pytest.mark.parametrize("name", ["", "a/b", ".hidden"])
def test_invalid_names(store, workspace, name):
    with pytest.raises(ValueError):
        store.upload(name, ["out/"], base_dir=workspace)


def test_explicit_retention_is_kept_and_zero_rejected(store, workspace):
    with pytest.raises(ValueError, match="retention_days"):
        store.upload("never", ["out/"], base_dir=workspace, retention_days=0)
    assert not store.exists("never")

    artifact = store.upload("brief", ["out/*.nupkg"], base_dir=workspace, retention_days=1)
    assert artifact.retention_days == 1


def test_list_and_summary(store, workspace):
    store.upload("nuget", ["out/*.nupkg"], base_dir=workspace)
    store.upload("docs", ["out/nested/"], base_dir=workspace)
    assert artifact_summary(store.list()) == {"docs": 1, "nuget": 1}


def test_purge_removes_only_expired(tmp_path, workspace):
    store = ArtifactStore(tmp_path / "artifacts", run_id="run-1", retention_days=7)
    store.upload("short", ["out/*.nupkg"], base_dir=workspace, retention_days=1)
    store.upload("long", ["out/*.snupkg"], base_dir=workspace)

    assert store.purge_expired(time.time()) == []

    removed = store.purge_expired(time.time() + 2 * 86400)
    assert [a.name for a in removed] == ["short"]
    assert not store.exists("short")
    assert store.exists("long")

    removed = store.purge_expired(time.time() + 30 * 86400)
    assert [a.name for a in removed] == ["long"]
    assert not (tmp_path / "artifacts" / "run-1").exists()
