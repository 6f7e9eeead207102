"""shipci configuration, loaded from SHIPCI_* environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Optional, Tuple


def _env_float(name: str, default: Optional[float]) -> Optional[float]:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    if raw.strip().lower() in ("none", "0", "off"):
        return None
    return float(raw)


@dataclass(frozen=True)
class ShipConfig:
    work_dir: Path = Path(".shipci/work")
    artifact_root: Path = Path(".shipci/artifacts")
    artifact_retention_days: int = 90

    max_workers: Optional[int] = None

    # defaults applied when a job/step does not set its own timeout (seconds)
    job_timeout: Optional[float] = 3600.0
    step_timeout: Optional[float] = 1800.0

    # transient failures of built-in steps (registry, release API)
    retry_attempts: int = 3
    retry_backoff: float = 1.0

    tag_prefix: str = "v"
    remote: str = "origin"
    release_branches: Tuple[str, ...] = ("master",)
    keep_workspaces: bool = False

    @classmethod
    def from_env(cls) -> ShipConfig:
        branches = os.getenv("SHIPCI_RELEASE_BRANCHES", "master")
        workers = os.getenv("SHIPCI_MAX_WORKERS")
        keep = os.getenv("SHIPCI_KEEP_WORKSPACES", "false").lower() in ("true", "1", "yes")

        return cls(
            work_dir=Path(os.getenv("SHIPCI_WORK_DIR", ".shipci/work")),
            artifact_root=Path(os.getenv("SHIPCI_ARTIFACT_DIR", ".shipci/artifacts")),
            artifact_retention_days=int(os.getenv("SHIPCI_ARTIFACT_RETENTION_DAYS", "90")),
            max_workers=int(workers) if workers else None,
            job_timeout=_env_float("SHIPCI_JOB_TIMEOUT", 3600.0),
            step_timeout=_env_float("SHIPCI_STEP_TIMEOUT", 1800.0),
            retry_attempts=int(os.getenv("SHIPCI_RETRY_ATTEMPTS", "3")),
            retry_backoff=float(os.getenv("SHIPCI_RETRY_BACKOFF", "1.0")),
            tag_prefix=os.getenv("SHIPCI_TAG_PREFIX", "v"),
            remote=os.getenv("SHIPCI_REMOTE", "origin"),
            release_branches=tuple(b.strip() for b in branches.split(",") if b.strip()),
            keep_workspaces=keep,
        )

    def with_overrides(self, **overrides) -> ShipConfig:
        """Apply CLI overrides, ignoring options the user did not pass."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})

    def validate(self) -> None:
        if self.retry_attempts < 1:
            msg = "SHIPCI_RETRY_ATTEMPTS must be at least 1"
            raise ValueError(msg)
        if self.artifact_retention_days < 1:
            msg = "SHIPCI_ARTIFACT_RETENTION_DAYS must be at least 1"
            raise ValueError(msg)
        if self.max_workers is not None and self.max_workers < 1:
            msg = "SHIPCI_MAX_WORKERS must be at least 1"
            raise ValueError(msg)
