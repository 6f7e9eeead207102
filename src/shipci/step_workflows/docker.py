# step_workflows/docker.py
# Shell steps of a job that declares an `image` run inside that container,
# with the job sandbox mounted as the working tree.
from __future__ import annotations

import subprocess
from pathlib import Path
from typing import Dict, List

from ..exceptions import CIError

CONTAINER_WORKDIR = "/workspace"


def check_docker_available(job_name: str) -> None:
    """Check if Docker is available, raise helpful error if not."""
    from ..runner import TOOL_HINTS

    try:
        subprocess.run(
            ["docker", "--version"],
            capture_output=True,
            check=True,
        )
    except (subprocess.CalledProcessError, FileNotFoundError):
        raise CIError(
            kind="docker_unavailable",
            job=job_name,
            step=None,
            message="Docker is not available",
            details={"hint": TOOL_HINTS["docker"]},
        )


def container_path(workspace: Path, host_path: Path) -> str:
    """Translate a path inside the sandbox to its path inside the container."""
    rel = host_path.resolve().relative_to(workspace.resolve())
    return f"{CONTAINER_WORKDIR}/{rel.as_posix()}".rstrip("/.") or CONTAINER_WORKDIR


def docker_command(
    image: str,
    cmd: str,
    *,
    workspace: Path,
    cwd: str | None,
    env: Dict[str, str],
) -> List[str]:
    """
    Build the `docker run` invocation for one shell step.

    Only the step's explicit env is forwarded; the host environment stays outside.
    """
    out = ["docker", "run", "--rm"]

    # Volume mount: sandbox -> /workspace
    out.extend(["-v", f"{workspace.resolve()}:{CONTAINER_WORKDIR}"])

    # Working directory: /workspace/<relative_cwd>
    step_cwd = cwd or "."
    container_cwd = f"{CONTAINER_WORKDIR}/{step_cwd}".replace("/./", "/").rstrip("/.")
    out.extend(["-w", container_cwd or CONTAINER_WORKDIR])

    for key, value in env.items():
        out.extend(["-e", f"{key}={value}"])

    out.append(image)
    out.extend(["sh", "-c", cmd])
    return out
