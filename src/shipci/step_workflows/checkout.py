# step_workflows/checkout.py
from __future__ import annotations

import subprocess
from pathlib import Path
from typing import Dict

from ..exceptions import CIError, StepTimeout
from ..git_facts import git
from ..model import Step, StepContext


# ---------------------------------------------------------------------
# Checkout step helper
# ---------------------------------------------------------------------

def checkout(name: str = "Checkout", *, ref: str | None = None, id: str | None = None) -> Step:
    """Fetch the triggering repository into the job sandbox (at the trigger sha by default)."""
    return Step(name=name, kind="checkout", id=id, data={"ref": ref})


# ---------------------------------------------------------------------
# Checkout step execution
# ---------------------------------------------------------------------

def run_step(ctx: StepContext) -> Dict[str, str]:
    repository = ctx.trigger.repository
    local = Path(repository).expanduser()
    if local.exists():
        repository = str(local.resolve())
    ref = ctx.data.get("ref") or ctx.trigger.sha

    try:
        git.fetch_into(repository, ctx.workspace, remote=ctx.services.config.remote, timeout=ctx.time_left())
        git.checkout(ref, cwd=ctx.workspace, timeout=ctx.time_left())
        sha = git.head_sha(cwd=ctx.workspace)
    except subprocess.CalledProcessError as e:
        raise CIError(
            kind="checkout_failed",
            job=ctx.job.name,
            step=ctx.step.name,
            message=f"could not check out {ref} from {ctx.trigger.repository}",
            details={"git": (e.stderr or "").strip()},
        ) from e
    except subprocess.TimeoutExpired as e:
        raise StepTimeout(job=ctx.job.name, step=ctx.step.name, timeout=e.timeout) from e
    except FileNotFoundError as e:
        raise CIError(
            kind="tool_unavailable",
            job=ctx.job.name,
            step=ctx.step.name,
            message="git is not available",
            details={"hint": "Install Git or fix PATH."},
        ) from e

    ctx.log(f"checked out {sha[:12]} from {ctx.trigger.repository}")
    return {"sha": sha}
