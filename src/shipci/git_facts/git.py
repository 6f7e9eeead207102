# git.py
# Small, focused wrapper around the Git CLI.
# This module centralizes all Git interactions so the rest of the codebase
# never needs to call subprocess("git ...") directly.

from __future__ import annotations

import subprocess
from pathlib import Path
from typing import List, Mapping, Optional, Tuple


def _git(
    args: list[str],
    cwd: Optional[str | Path] = None,
    env: Optional[Mapping[str, str]] = None,
    timeout: Optional[float] = None,
) -> str:
    """
    Execute a git command and return its stdout as a clean string.

    This is the single low-level entry point for all Git operations in this file.
    Every other function builds on top of this to ensure:
    - consistent invocation of git
    - consistent text output (not bytes)
    - stderr kept on the raised CalledProcessError for error messages

    Args:
        args: List of git arguments (e.g. ["status", "--porcelain"])
        cwd: Optional working directory in which to run the git command.
        env: Optional full environment for the git process.
        timeout: Seconds before the process is killed (subprocess.TimeoutExpired).

    Returns:
        Stdout from the git command with surrounding whitespace removed.
    """
    proc = subprocess.run(
        ["git", *args],
        cwd=str(cwd) if cwd is not None else None,
        env=dict(env) if env is not None else None,
        text=True,
        capture_output=True,
        timeout=timeout,
    )
    if proc.returncode != 0:
        raise subprocess.CalledProcessError(
            proc.returncode, ["git", *args], output=proc.stdout, stderr=proc.stderr
        )
    return proc.stdout.strip()


def _git_ok(args: list[str], cwd: Optional[str | Path] = None) -> Tuple[bool, str]:
    """Run git where a non-zero exit is an answer ("no"), not an error."""
    proc = subprocess.run(
        ["git", *args],
        cwd=str(cwd) if cwd is not None else None,
        text=True,
        capture_output=True,
    )
    return proc.returncode == 0, proc.stdout.strip()


def repo_root(cwd: Optional[str | Path] = None) -> Path:
    """
    Return the absolute path to the root of the current Git repository.

    `git rev-parse --show-toplevel` prints the repo root directory
    regardless of where the command is run from inside the repo.
    """
    return Path(_git(["rev-parse", "--show-toplevel"], cwd=cwd))


def head_sha(cwd: Optional[str | Path] = None) -> str:
    """Return the full SHA hash of the current HEAD commit."""
    return _git(["rev-parse", "HEAD"], cwd=cwd)


def get_current_ref(cwd: Optional[str | Path] = None) -> str:
    """Current branch name, or the HEAD sha when detached."""
    ref = _git(["rev-parse", "--abbrev-ref", "HEAD"], cwd=cwd)
    if ref == "HEAD":
        return head_sha(cwd)
    return ref


def has_remote(remote: str, cwd: Optional[str | Path] = None) -> bool:
    ok, out = _git_ok(["remote"], cwd=cwd)
    return ok and remote in out.splitlines()


# ---------------------------------------------------------------------
# Checkout
# ---------------------------------------------------------------------

def fetch_into(
    repository: str,
    dest: str | Path,
    remote: str = "origin",
    timeout: Optional[float] = None,
) -> None:
    """
    Make `dest` a clone of `repository` (URL or local path), tags included.

    init + fetch instead of `git clone` so `dest` does not have to be empty.
    """
    _git(["init", "--quiet"], cwd=dest)
    _git(["remote", "add", remote, str(repository)], cwd=dest)
    _git(
        ["fetch", "--quiet", "--tags", remote, f"+refs/heads/*:refs/remotes/{remote}/*"],
        cwd=dest,
        timeout=timeout,
    )


def checkout(ref: str, cwd: str | Path, timeout: Optional[float] = None) -> None:
    _git(["checkout", "--quiet", "--detach", ref], cwd=cwd, timeout=timeout)


# ---------------------------------------------------------------------
# Tags
# ---------------------------------------------------------------------

def list_tags(pattern: str = "*", cwd: Optional[str | Path] = None) -> List[str]:
    """Tag names matching a glob pattern (e.g. "v*")."""
    out = _git(["tag", "--list", pattern], cwd=cwd)
    return out.splitlines() if out else []


def tag_exists(tag: str, cwd: Optional[str | Path] = None) -> bool:
    ok, _ = _git_ok(["rev-parse", "-q", "--verify", f"refs/tags/{tag}"], cwd=cwd)
    return ok


def remote_tag_exists(
    remote: str,
    tag: str,
    cwd: Optional[str | Path] = None,
    timeout: Optional[float] = None,
) -> bool:
    out = _git(["ls-remote", "--tags", remote, f"refs/tags/{tag}"], cwd=cwd, timeout=timeout)
    return bool(out)


def create_annotated_tag(
    tag: str,
    message: str,
    commit: str = "HEAD",
    cwd: Optional[str | Path] = None,
    env: Optional[Mapping[str, str]] = None,
) -> None:
    # no --force: git itself refuses to move an existing tag
    _git(["tag", "--annotate", tag, "--message", message, commit], cwd=cwd, env=env)


def delete_tag(tag: str, cwd: Optional[str | Path] = None) -> None:
    _git(["tag", "--delete", tag], cwd=cwd)


def push_tag(
    remote: str,
    tag: str,
    cwd: Optional[str | Path] = None,
    env: Optional[Mapping[str, str]] = None,
    timeout: Optional[float] = None,
) -> None:
    _git(["push", "--quiet", remote, f"refs/tags/{tag}"], cwd=cwd, env=env, timeout=timeout)


def resolve_commit(ref: str, cwd: Optional[str | Path] = None) -> Optional[str]:
    """SHA of the commit `ref` points to, or None if it does not resolve to one."""
    ok, out = _git_ok(["rev-parse", "-q", "--verify", f"{ref}^{{commit}}"], cwd=cwd)
    return out if ok and out else None


def commit_subjects(rev_range: str, cwd: Optional[str | Path] = None) -> List[Tuple[str, str]]:
    """
    (short_sha, subject) pairs for `rev_range`, newest first.

    `rev_range` is anything `git log` accepts: "v1.0.0..v1.1.0" or a single tag.
    """
    out = _git(["log", "--no-merges", "--pretty=format:%h%x09%s", rev_range], cwd=cwd)
    pairs: List[Tuple[str, str]] = []
    for line in out.splitlines():
        sha, _, subject = line.partition("\t")
        pairs.append((sha, subject))
    return pairs
