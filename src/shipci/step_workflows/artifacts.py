# step_workflows/artifacts.py
from __future__ import annotations

from typing import Dict, List

from ..model import Step, StepContext


def upload_artifact(
    name: str,
    paths: List[str],
    *,
    retention_days: int | None = None,
    step_name: str | None = None,
) -> Step:
    return Step(
        name=step_name or f"Upload artifact {name}",
        kind="upload_artifact",
        data={"name": name, "paths": list(paths), "retention_days": retention_days},
    )


def download_artifact(name: str, *, path: str = ".", step_name: str | None = None) -> Step:
    return Step(
        name=step_name or f"Download artifact {name}",
        kind="download_artifact",
        data={"name": name, "path": path},
    )


def run_upload_step(ctx: StepContext) -> Dict[str, str]:
    artifact = ctx.services.artifacts.upload(
        ctx.data["name"],
        list(ctx.data["paths"]),
        base_dir=ctx.workspace,
        retention_days=ctx.data.get("retention_days"),
    )
    ctx.log(f"uploaded {len(artifact.files)} file(s) as '{artifact.name}'")
    return {"files": str(len(artifact.files))}


def run_download_step(ctx: StepContext) -> Dict[str, str]:
    dest = ctx.workspace / ctx.data.get("path", ".")
    files = ctx.services.artifacts.download(ctx.data["name"], dest)
    ctx.log(f"downloaded {len(files)} file(s) from '{ctx.data['name']}'")
    return {"files": str(len(files))}
