# step_workflows/publish.py
from __future__ import annotations

from typing import Dict, List

from ..artifacts import _resolve_globs
from ..exceptions import CIError
from ..model import EnvValue, Step, StepContext
from ..publish import Publisher, open_feed


def publish(
    paths: List[str],
    *,
    source: EnvValue,
    api_key: EnvValue | None = None,
    name: str = "Publish packages",
    id: str | None = "publish",
    skip_duplicate: bool = True,
) -> Step:
    """Push package files (globs, relative to the workspace) to `source`. Outputs: pushed, skipped."""
    return Step(
        name=name,
        kind="publish",
        id=id,
        data={
            "paths": list(paths),
            "source": source,
            "api_key": api_key,
            "skip_duplicate": skip_duplicate,
        },
    )


def run_step(ctx: StepContext) -> Dict[str, str]:
    files = _resolve_globs(ctx.workspace, list(ctx.data["paths"]))
    if not files:
        raise CIError(
            kind="no_packages",
            job=ctx.job.name,
            step=ctx.step.name,
            message=f"no package files matched {ctx.data['paths']}",
        )

    api_key = ctx.data.get("api_key")
    publisher = Publisher(
        open_feed(str(ctx.data["source"]), timeout=ctx.bounded(300)),
        api_key=str(api_key) if api_key else None,
        skip_duplicate=bool(ctx.data.get("skip_duplicate", True)),
    )
    results = publisher.publish(files)

    pushed = [r for r in results if r.status == "pushed"]
    skipped = [r for r in results if r.status == "skipped"]
    for r in results:
        ctx.log(f"{r.status}: {r.package_id} {r.version}")
    for r in skipped:
        ctx.services.console.print_info(f"[{ctx.job.name}] {r.package_id} {r.version} already published, skipped")
    return {"pushed": str(len(pushed)), "skipped": str(len(skipped))}
