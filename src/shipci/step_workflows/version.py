# step_workflows/version.py
from __future__ import annotations

import subprocess
from typing import Dict

from ..exceptions import CIError, ShipError
from ..model import Step, StepContext
from ..versioning import run_version_gate


# ---------------------------------------------------------------------
# Version gate step helper
# ---------------------------------------------------------------------

def check_version(
    project_file: str,
    *,
    name: str = "Check version",
    id: str | None = "version",
    element: str = "Version",
    tag_prefix: str | None = None,
    fail_on_invalid: bool = False,
) -> Step:
    """
    Compare the version declared in `project_file` with the latest release tag.

    Outputs: is_valid ("true"/"false"), version, latest_tag.
    By default a version that was not incremented is reported but does not
    fail the job; dependents gate on `is_valid` instead.
    """
    return Step(
        name=name,
        kind="check_version",
        id=id,
        data={
            "project_file": project_file,
            "element": element,
            "tag_prefix": tag_prefix,
            "fail_on_invalid": fail_on_invalid,
        },
    )


# ---------------------------------------------------------------------
# Version gate step execution
# ---------------------------------------------------------------------

def run_step(ctx: StepContext) -> Dict[str, str]:
    prefix = ctx.data.get("tag_prefix") or ctx.services.config.tag_prefix
    project_file = ctx.workspace / ctx.data["project_file"]

    try:
        result = run_version_gate(
            project_file,
            ctx.workspace,
            prefix=prefix,
            element=ctx.data.get("element") or "Version",
        )
    except subprocess.CalledProcessError as e:
        raise CIError(
            kind="git_error",
            job=ctx.job.name,
            step=ctx.step.name,
            message="could not list release tags (is the repository checked out?)",
            details={"git": (e.stderr or "").strip()},
        ) from e

    ctx.log(result.message)
    if not result.is_valid:
        ctx.services.console.print_warning(f"[{ctx.job.name}] {result.message}")
        if ctx.data.get("fail_on_invalid"):
            raise ShipError(result.message)
    return result.outputs()
