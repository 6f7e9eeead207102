# sandbox.py
# One disposable working directory per job; nothing survives the job except
# its outputs and the artifacts it uploaded.
from __future__ import annotations

import shutil
import tempfile
from pathlib import Path
from typing import Optional

from .exceptions import ShipError

SUPPORTED_RUNNERS = ("local", "docker")


class Sandbox:
    def __init__(self, root: str | Path, job_name: str, *, runs_on: str = "local", keep: bool = False):
        if runs_on not in SUPPORTED_RUNNERS:
            raise ValueError(f"Unsupported runs_on {runs_on!r}; expected one of {SUPPORTED_RUNNERS}")
        self.root = Path(root)
        self.job_name = job_name
        self.runs_on = runs_on
        self.keep = keep
        self.path: Optional[Path] = None

    def __enter__(self) -> "Sandbox":
        self.root.mkdir(parents=True, exist_ok=True)
        safe = "".join(c if c.isalnum() or c in "-_" else "_" for c in self.job_name)
        self.path = Path(tempfile.mkdtemp(prefix=f"{safe}-", dir=str(self.root))).resolve()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if self.path is not None and not self.keep:
            shutil.rmtree(self.path, ignore_errors=True)

    def output_file(self, step_index: int) -> Path:
        """Per-step file a shell step writes its key=value outputs to."""
        if self.path is None:
            raise ShipError(f"Sandbox for job '{self.job_name}' is not open")
        d = self.path / ".shipci"
        d.mkdir(exist_ok=True)
        return d / f"step-{step_index}.out"
