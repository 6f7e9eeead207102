# versioning.py
# Version ordering + the version gate (declared version must exceed the last release tag).
from __future__ import annotations

import functools
import re
import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional, Tuple, Union

from .exceptions import VersionError
from .git_facts import git

NOT_INCREMENTED = "project version is not incremented"

_VERSION_RE = re.compile(
    r"^(?P<release>\d+(?:\.\d+)*)"
    r"(?:-(?P<pre>[0-9A-Za-z]+(?:[.-][0-9A-Za-z]+)*))?"
    r"(?:\+(?P<build>[0-9A-Za-z.-]+))?$"
)


@functools.total_ordering
@dataclass(frozen=True, eq=False)
class Version:
    """
    Dot-separated numeric version with an optional pre-release suffix.

    Ordering:
      - release components compare numerically ("1.9" < "1.10")
      - missing trailing components count as zero ("1.0" == "1.0.0")
      - a pre-release sorts below its release ("1.0.0-rc.1" < "1.0.0")
      - build metadata ("+abc") is ignored
    """
    release: Tuple[int, ...]
    prerelease: Tuple[Union[int, str], ...] = ()
    text: str = ""

    @classmethod
    def parse(cls, text: str) -> "Version":
        raw = (text or "").strip()
        m = _VERSION_RE.match(raw)
        if not m:
            raise VersionError(f"Malformed version string: {text!r}")
        release = tuple(int(p) for p in m.group("release").split("."))
        pre: Tuple[Union[int, str], ...] = ()
        if m.group("pre"):
            pre = tuple(
                int(p) if p.isdigit() else p
                for p in re.split(r"[.-]", m.group("pre"))
            )
        return cls(release=release, prerelease=pre, text=raw)

    def _key(self):
        release = list(self.release)
        while len(release) > 1 and release[-1] == 0:
            release.pop()
        # numeric identifiers sort before alphanumeric ones
        pre = tuple((0, p, "") if isinstance(p, int) else (1, 0, p) for p in self.prerelease)
        return (tuple(release), 0 if self.prerelease else 1, pre)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Version):
            return NotImplemented
        return self._key() == other._key()

    def __lt__(self, other: "Version") -> bool:
        if not isinstance(other, Version):
            return NotImplemented
        return self._key() < other._key()

    def __hash__(self) -> int:
        return hash(self._key())

    def __str__(self) -> str:
        return self.text or ".".join(str(p) for p in self.release)


# ---------------------------------------------------------------------
# Project configuration
# ---------------------------------------------------------------------

def read_project_version(path: str | Path, element: str = "Version") -> str:
    """
    Extract the declared version from a project file.

    - XML-ish project files: the first single-line <Version>x</Version>
    - .toml: [project].version (or [tool.poetry].version)
    """
    p = Path(path)
    if not p.exists():
        raise VersionError(f"Project file not found: {p}")

    if p.suffix == ".toml":
        data = tomllib.loads(p.read_text(encoding="utf-8"))
        version = (data.get("project") or {}).get("version")
        if version is None:
            version = ((data.get("tool") or {}).get("poetry") or {}).get("version")
        if not version:
            raise VersionError(f"No version declared in {p.name}")
        return str(version).strip()

    pattern = re.compile(rf"<{re.escape(element)}>\s*([^<\s]+)\s*</{re.escape(element)}>")
    for line in p.read_text(encoding="utf-8").splitlines():
        m = pattern.search(line)
        if m:
            return m.group(1)
    raise VersionError(f"No <{element}> element found in {p.name}")


# ---------------------------------------------------------------------
# Release tags
# ---------------------------------------------------------------------

def tag_version(tag: str, prefix: str = "v") -> Optional[Version]:
    """Version encoded in a release tag, or None if the tag isn't one."""
    if not tag.startswith(prefix):
        return None
    try:
        return Version.parse(tag[len(prefix):])
    except VersionError:
        return None


def latest_release_tag(tags: Iterable[str], prefix: str = "v") -> Optional[str]:
    """Highest release tag under version ordering (not lexical order)."""
    best: Optional[Tuple[Version, str]] = None
    for tag in tags:
        v = tag_version(tag, prefix)
        if v is None:
            continue
        if best is None or v > best[0]:
            best = (v, tag)
    return best[1] if best else None


def previous_release_tag(tags: Iterable[str], tag: str, prefix: str = "v") -> Optional[str]:
    """Highest release tag strictly below `tag`."""
    current = tag_version(tag, prefix)
    if current is None:
        return None
    return latest_release_tag(
        (t for t in tags if (v := tag_version(t, prefix)) is not None and v < current),
        prefix,
    )


# ---------------------------------------------------------------------
# Gate
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class GateResult:
    is_valid: bool
    version: str
    latest_tag: Optional[str]
    message: str

    def outputs(self) -> dict[str, str]:
        return {
            "is_valid": "true" if self.is_valid else "false",
            "version": self.version,
            "latest_tag": self.latest_tag or "",
        }


def check_version(declared: str, latest_tag: Optional[str], prefix: str = "v") -> GateResult:
    """
    Pass iff max(V, T) == V and V != T, i.e. V is strictly greater than T.

    With no previous release tag, T sorts below every version and the gate passes.
    """
    v = Version.parse(declared)
    t = tag_version(latest_tag, prefix) if latest_tag else None
    if latest_tag and t is None:
        raise VersionError(f"Latest tag {latest_tag!r} is not a '{prefix}<version>' release tag")

    if t is None:
        return GateResult(True, str(v), None, f"first release: {v}")

    is_valid = max(v, t) == v and v != t
    if is_valid:
        message = f"version {v} > {t} ({latest_tag})"
    else:
        message = f"{NOT_INCREMENTED}: declared {v}, latest release {latest_tag}"
    return GateResult(is_valid, str(v), latest_tag, message)


def run_version_gate(
    project_file: str | Path,
    repo_dir: str | Path,
    *,
    prefix: str = "v",
    element: str = "Version",
) -> GateResult:
    """Read the declared version and compare it with the repository's tag history."""
    declared = read_project_version(project_file, element=element)
    tags = git.list_tags(f"{prefix}*", cwd=repo_dir)
    return check_version(declared, latest_release_tag(tags, prefix), prefix)
