# artifacts.py
from __future__ import annotations

import json
import shutil
import tarfile
import threading
import time
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from .exceptions import ArtifactConflictError, ArtifactNotFoundError

# ---------------------------------------------------------------------
# Core idea
# ---------------------------------------------------------------------
# Artifacts are the only thing jobs share besides their outputs:
#
#   root/
#     <run_id>/
#       <name>.tar.gz         files, stored by path relative to the job workspace
#       <name>.manifest.json  what was stored, when, and for how long
#
# A name is written once per run. Entries older than their retention are
# removed by purge_expired().
# ---------------------------------------------------------------------

DEFAULT_ARTIFACT_DIR = ".shipci/artifacts"
DEFAULT_RETENTION_DAYS = 90


@dataclass(frozen=True)
class Artifact:
    name: str
    run_id: str
    files: List[str]
    created_at_unix: int
    retention_days: int

    @property
    def expires_at_unix(self) -> int:
        return self.created_at_unix + self.retention_days * 86400


def _relpath(p: Path, root: Path) -> str:
    return str(p.resolve().relative_to(root.resolve())).replace("\\", "/")


def _iter_files_under(root: Path) -> Iterable[Path]:
    # deterministic traversal
    for p in sorted(root.rglob("*")):
        if p.is_file():
            yield p


def _resolve_globs(base_dir: Path, patterns: List[str]) -> List[Path]:
    """
    Expand upload patterns into concrete files.
    Supports:
      - file path: "out/pkg.1.0.0.nupkg"
      - dir path:  "out/"
      - glob:      "out/*.nupkg", "dist/**/*.whl"
    """
    out: List[Path] = []
    for pat in patterns:
        pat = pat.strip()
        if not pat:
            continue
        p = base_dir / pat
        if p.exists():
            out.extend([p] if p.is_file() else list(_iter_files_under(p)))
            continue
        for m in sorted(base_dir.glob(pat)):
            out.extend([m] if m.is_file() else list(_iter_files_under(m)))

    # De-dupe while preserving order
    seen = set()
    uniq: List[Path] = []
    for p in out:
        rp = str(p.resolve())
        if rp not in seen:
            seen.add(rp)
            uniq.append(p)
    return uniq


class ArtifactStore:
    """File-based artifact store scoped to one run."""

    def __init__(
        self,
        root: str | Path = DEFAULT_ARTIFACT_DIR,
        run_id: str = "local",
        retention_days: int = DEFAULT_RETENTION_DAYS,
    ):
        self.root = Path(root).resolve()
        self.root.mkdir(parents=True, exist_ok=True)
        self.run_id = run_id
        self.retention_days = retention_days
        self._lock = threading.Lock()

    def _run_dir(self) -> Path:
        d = self.root / self.run_id
        d.mkdir(parents=True, exist_ok=True)
        return d

    def archive_path(self, name: str) -> Path:
        return self._run_dir() / f"{name}.tar.gz"

    def manifest_path(self, name: str) -> Path:
        return self._run_dir() / f"{name}.manifest.json"

    def exists(self, name: str) -> bool:
        return self.manifest_path(name).exists()

    def upload(
        self,
        name: str,
        paths: List[str],
        *,
        base_dir: str | Path = ".",
        retention_days: Optional[int] = None,
    ) -> Artifact:
        """
        Store the files matched by `paths` (relative to base_dir) under `name`.

        Raises ArtifactConflictError if the name was already used in this run,
        and FileNotFoundError if nothing matched.
        """
        if not name or "/" in name or name.startswith("."):
            raise ValueError(f"Invalid artifact name: {name!r}")
        if retention_days is not None and retention_days < 1:
            raise ValueError(f"retention_days must be at least 1, got {retention_days}")

        base = Path(base_dir).resolve()
        files = _resolve_globs(base, paths)
        if not files:
            raise FileNotFoundError(f"No files matched {paths} under {base} for artifact '{name}'")

        with self._lock:
            if self.exists(name):
                raise ArtifactConflictError(name, self.run_id)

            art = self.archive_path(name)
            tmp = art.with_suffix(".tmp")
            rels = [_relpath(f, base) for f in files]
            try:
                # Build tar.gz in tmp, then atomic rename
                with tarfile.open(str(tmp), mode="w:gz") as tar:
                    for f, rel in zip(files, rels):
                        tar.add(str(f), arcname=rel, recursive=False)
                tmp.replace(art)
            finally:
                if tmp.exists():
                    tmp.unlink(missing_ok=True)

            artifact = Artifact(
                name=name,
                run_id=self.run_id,
                files=rels,
                created_at_unix=int(time.time()),
                retention_days=retention_days if retention_days is not None else self.retention_days,
            )
            # manifest last: it marks the artifact as complete
            self.manifest_path(name).write_text(
                json.dumps(asdict(artifact), sort_keys=True, indent=2), encoding="utf-8"
            )
        return artifact

    def get(self, name: str) -> Artifact:
        man = self.manifest_path(name)
        if not man.exists() or not self.archive_path(name).exists():
            raise ArtifactNotFoundError(name, self.run_id)
        return Artifact(**json.loads(man.read_text(encoding="utf-8")))

    def download(self, name: str, dest: str | Path = ".") -> List[Path]:
        """Extract artifact `name` into dest; returns the extracted file paths."""
        artifact = self.get(name)
        dest_p = Path(dest).resolve()
        dest_p.mkdir(parents=True, exist_ok=True)
        with tarfile.open(str(self.archive_path(name)), mode="r:gz") as tar:
            tar.extractall(path=str(dest_p), filter="data")
        return [dest_p / rel for rel in artifact.files]

    def list(self) -> List[Artifact]:
        return [
            Artifact(**json.loads(m.read_text(encoding="utf-8")))
            for m in sorted(self._run_dir().glob("*.manifest.json"))
        ]

    def purge_expired(self, now: Optional[float] = None) -> List[Artifact]:
        """Remove artifacts of every run whose retention elapsed."""
        now_unix = int(now if now is not None else time.time())
        removed: List[Artifact] = []
        for man in sorted(self.root.glob("*/*.manifest.json")):
            try:
                artifact = Artifact(**json.loads(man.read_text(encoding="utf-8")))
            except (OSError, ValueError, TypeError):
                continue
            if artifact.expires_at_unix > now_unix:
                continue
            name = man.name[: -len(".manifest.json")]
            man.unlink(missing_ok=True)
            (man.parent / f"{name}.tar.gz").unlink(missing_ok=True)
            removed.append(artifact)

        for run_dir in self.root.iterdir():
            if run_dir.is_dir() and not any(run_dir.iterdir()):
                shutil.rmtree(run_dir, ignore_errors=True)
        return removed


def artifact_summary(artifacts: Iterable[Artifact]) -> Dict[str, int]:
    """name -> file count, for console output."""
    return {a.name: len(a.files) for a in artifacts}
