# runner.py
# Step executor + job runner. One sandbox per job, steps strictly in order,
# first failing step ends the job.
from __future__ import annotations

import os
import runpy
import shutil
import signal
import subprocess
import threading
import time
from pathlib import Path
from types import MappingProxyType
from typing import Any, Callable, Dict, List, Mapping, Optional

from .exceptions import (
    CIError,
    JobCancelled,
    ShipError,
    StepFailure,
    StepTimeout,
    TransientError,
)
from .model import (
    Job,
    JobResult,
    JobStatus,
    NeedsOutput,
    Pipeline,
    SecretRef,
    Step,
    StepContext,
    StepOutput,
    Trigger,
)
from .sandbox import Sandbox
from .services import RunServices
from .step_workflows import artifacts as artifact_steps
from .step_workflows import checkout as checkout_steps
from .step_workflows import docker as docker_steps
from .step_workflows import publish as publish_steps
from .step_workflows import release as release_steps
from .step_workflows import version as version_steps

TOOL_HINTS = {
    "dotnet": "Install the .NET SDK (https://dot.net) or fix PATH.",
    "git": "Install Git or fix PATH.",
    "npm": "Install Node.js (includes npm) or fix PATH.",
    "node": "Install Node.js or fix PATH.",
    "pytest": "Install pytest (e.g., pip install pytest).",
    "docker": "Install Docker and ensure the daemon is running.",
    "python3": "Install Python 3 or fix PATH (python3).",
}

# kept on failure so the report shows what the step printed last
LOG_TAIL_CHARS = 4000

_POLL_SECONDS = 0.1


def _run_python_step(ctx: StepContext) -> Optional[Dict[str, Any]]:
    fn = ctx.data.get("fn")
    if not callable(fn):
        raise CIError(
            kind="invalid_step",
            job=ctx.job.name,
            step=ctx.step.name,
            message="python step has no callable 'fn'",
        )
    return fn(ctx)


# kind -> handler(ctx) -> outputs
STEP_HANDLERS: Dict[str, Callable[[StepContext], Optional[Dict[str, Any]]]] = {
    "python": _run_python_step,
    "checkout": checkout_steps.run_step,
    "check_version": version_steps.run_step,
    "tag": release_steps.run_tag_step,
    "release": release_steps.run_release_step,
    "publish": publish_steps.run_step,
    "upload_artifact": artifact_steps.run_upload_step,
    "download_artifact": artifact_steps.run_download_step,
}


# ----------------------------------------------------------------------
# Workflow loading (local file/module)
# ----------------------------------------------------------------------

def load_workflow(path: str | Path) -> Pipeline:
    """
    Load a pipeline from a python file path.

    The file must define one of:
      - workflow() -> Pipeline | List[Job]
      - PIPELINE = Pipeline(...)
      - JOBS = [Job, ...]
    """
    wf_path = Path(path).expanduser().resolve()
    if not wf_path.exists():
        raise FileNotFoundError(f"Workflow file not found: {wf_path}")
    if wf_path.suffix != ".py":
        raise ValueError(f"Workflow must be a .py file, got: {wf_path.name}")

    module_name = f"shipci_workflow_{wf_path.stem}"
    globals_dict = runpy.run_path(str(wf_path), run_name=module_name)

    loaded: Any = None
    if "workflow" in globals_dict and callable(globals_dict["workflow"]):
        loaded = globals_dict["workflow"]()
    elif "PIPELINE" in globals_dict:
        loaded = globals_dict["PIPELINE"]
    elif "JOBS" in globals_dict:
        loaded = globals_dict["JOBS"]

    if isinstance(loaded, Pipeline):
        return loaded
    if isinstance(loaded, list) and all(isinstance(j, Job) for j in loaded):
        return Pipeline(name=wf_path.stem, jobs=loaded)
    raise TypeError(
        "Workflow must return/define a Pipeline or a List[Job]. "
        "Define workflow() -> Pipeline, PIPELINE = pipeline(...) or JOBS = [Job, ...]."
    )


# ----------------------------------------------------------------------
# Reference resolution
# ----------------------------------------------------------------------

def _resolve(
    value: Any,
    *,
    job: Job,
    step: Step,
    step_outputs: Mapping[str, Mapping[str, str]],
    needs: Mapping[str, JobResult],
    services: RunServices,
) -> Any:
    if isinstance(value, StepOutput):
        outputs = step_outputs.get(value.step_id)
        if outputs is None or value.key not in outputs:
            raise CIError(
                kind="missing_output",
                job=job.name,
                step=step.name,
                message=f"step '{value.step_id}' did not publish output '{value.key}'",
            )
        return outputs[value.key]
    if isinstance(value, NeedsOutput):
        result = needs.get(value.job)
        if result is None:
            raise CIError(
                kind="undeclared_dependency",
                job=job.name,
                step=step.name,
                message=f"job '{value.job}' is not listed in needs",
            )
        outputs = result.visible_outputs
        if value.key not in outputs:
            raise CIError(
                kind="missing_output",
                job=job.name,
                step=step.name,
                message=f"job '{value.job}' has no output '{value.key}' (status: {result.status.value})",
            )
        return outputs[value.key]
    if isinstance(value, SecretRef):
        return services.secrets.get(value.name)
    if isinstance(value, list):
        return [
            _resolve(v, job=job, step=step, step_outputs=step_outputs, needs=needs, services=services)
            for v in value
        ]
    return value


def _resolve_env(env: Mapping[str, Any], **kw) -> Dict[str, str]:
    return {k: str(_resolve(v, **kw)) for k, v in env.items()}


def _check_tool_available(tool: str, job_name: str) -> None:
    if shutil.which(tool) is None:
        raise CIError(
            kind="tool_unavailable",
            job=job_name,
            step=None,
            message=f"{tool} is not available",
            details={"hint": TOOL_HINTS.get(tool, f"Install {tool} or fix PATH."), "tool": tool},
        )


# ----------------------------------------------------------------------
# Execution primitives
# ----------------------------------------------------------------------

def parse_output_file(path: Path) -> Dict[str, str]:
    """
    Read `key=value` lines a step wrote to $SHIPCI_OUTPUT.

    Multi-line values use a delimiter:
        notes<<EOF
        line 1
        line 2
        EOF
    """
    if not path.exists():
        return {}
    outputs: Dict[str, str] = {}
    lines = path.read_text(encoding="utf-8").splitlines()
    i = 0
    while i < len(lines):
        line = lines[i]
        i += 1
        if not line.strip():
            continue
        if "<<" in line and ("=" not in line or line.index("<<") < line.index("=")):
            key, delim = line.split("<<", 1)
            body: List[str] = []
            while i < len(lines) and lines[i] != delim:
                body.append(lines[i])
                i += 1
            i += 1  # skip delimiter
            outputs[key.strip()] = "\n".join(body)
            continue
        if "=" not in line:
            continue
        key, value = line.split("=", 1)
        outputs[key.strip()] = value
    return outputs


def _kill(proc: subprocess.Popen) -> None:
    try:
        os.killpg(proc.pid, signal.SIGKILL)
    except (AttributeError, ProcessLookupError, PermissionError):
        proc.kill()


def _run_process(
    cmd: List[str] | str,
    *,
    cwd: Path,
    env: Dict[str, str],
    timeout: Optional[float],
    cancel: threading.Event,
    job: Job,
    step: Step,
) -> tuple[int, str]:
    proc = subprocess.Popen(
        cmd,
        shell=isinstance(cmd, str),
        cwd=str(cwd),
        env=env,
        text=True,
        stdout=subprocess.PIPE,
        stderr=subprocess.STDOUT,
        start_new_session=True,
    )
    deadline = time.monotonic() + timeout if timeout else None
    while True:
        try:
            out, _ = proc.communicate(timeout=_POLL_SECONDS)
            return proc.returncode, out or ""
        except subprocess.TimeoutExpired:
            if cancel.is_set():
                _kill(proc)
                proc.communicate()
                raise JobCancelled(f"[{job.name}] cancelled during step '{step.name}'")
            if deadline is not None and time.monotonic() >= deadline:
                _kill(proc)
                proc.communicate()
                raise StepTimeout(job=job.name, step=step.name, timeout=timeout)


def _run_shell_step(
    ctx: StepContext,
    sandbox: Sandbox,
    index: int,
    timeout: Optional[float],
) -> Dict[str, str]:
    job, step = ctx.job, ctx.step
    workspace = ctx.workspace
    cwd = (workspace / (step.cwd or ".")).resolve()
    if not cwd.exists():
        raise CIError(
            kind="missing_cwd",
            job=job.name,
            step=step.name,
            message=f"cwd not found: {step.cwd}",
        )

    out_file = sandbox.output_file(index)
    context_env = {
        "SHIPCI": "true",
        "SHIPCI_RUN_ID": ctx.run_id,
        "SHIPCI_JOB": job.name,
        "SHIPCI_SHA": ctx.trigger.sha,
        "SHIPCI_BRANCH": ctx.trigger.branch,
        "SHIPCI_REPOSITORY": ctx.trigger.repository,
    }

    if job.image:
        env = {
            **context_env,
            **ctx.env,
            "SHIPCI_WORKSPACE": docker_steps.CONTAINER_WORKDIR,
            "SHIPCI_OUTPUT": docker_steps.container_path(workspace, out_file),
        }
        cmd: List[str] | str = docker_steps.docker_command(
            job.image, step.run, workspace=workspace, cwd=step.cwd, env=env
        )
        proc_env = os.environ.copy()
    else:
        cmd = step.run
        proc_env = os.environ.copy()
        proc_env.update(context_env)
        proc_env.update(ctx.env)
        proc_env["SHIPCI_WORKSPACE"] = str(workspace)
        proc_env["SHIPCI_OUTPUT"] = str(out_file)

    code, output = _run_process(
        cmd, cwd=cwd, env=proc_env, timeout=timeout, cancel=ctx.cancel, job=job, step=step
    )
    for line in output.splitlines():
        ctx.log(line)
    if code != 0:
        raise StepFailure(
            job=job.name,
            step=step.name,
            cmd=step.run,
            exit_code=code,
            output=output[-LOG_TAIL_CHARS:],
        )
    return parse_output_file(out_file)


def _call_with_retries(
    handler: Callable[[StepContext], Optional[Dict[str, Any]]],
    ctx: StepContext,
    services: RunServices,
    timeout: Optional[float] = None,
) -> Optional[Dict[str, Any]]:
    """
    Retry TransientError with exponential backoff; anything else surfaces at once.
    No retry starts once the step deadline would pass before it.
    """
    attempts = max(1, services.config.retry_attempts)
    for attempt in range(attempts):
        try:
            return handler(ctx)
        except TransientError as e:
            if attempt == attempts - 1:
                raise
            delay = services.config.retry_backoff * (2 ** attempt)
            if ctx.deadline is not None and time.monotonic() + delay >= ctx.deadline:
                raise StepTimeout(job=ctx.job.name, step=ctx.step.name, timeout=timeout or 0.0) from e
            ctx.log(f"transient failure (attempt {attempt + 1}/{attempts}): {e}; retrying in {delay:g}s")
            services.console.print_debug(f"[{ctx.job.name}] {e}; retry in {delay:g}s")
            if ctx.cancel.wait(delay):
                raise JobCancelled(f"[{ctx.job.name}] cancelled while waiting to retry '{ctx.step.name}'")
    return None


def _stringify(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _effective_timeout(*candidates: Optional[float]) -> Optional[float]:
    values = [c for c in candidates if c is not None]
    return min(values) if values else None


# ----------------------------------------------------------------------
# Job runner
# ----------------------------------------------------------------------

def run_job(
    job: Job,
    *,
    trigger: Trigger,
    needs: Mapping[str, JobResult],
    services: RunServices,
    cancel: Optional[threading.Event] = None,
    pipeline_env: Optional[Mapping[str, Any]] = None,
) -> JobResult:
    """
    Run every step of `job` in a fresh sandbox and return its terminal result.

    Step failures never escape as exceptions: they become a FAILED result
    carrying the error and the failing step's (secret-masked) output.
    """
    console = services.console
    config = services.config
    cancel = cancel or threading.Event()
    needs_view = MappingProxyType(dict(needs))

    started = time.monotonic()
    job_timeout = job.timeout if job.timeout is not None else config.job_timeout
    deadline = started + job_timeout if job_timeout else None

    step_outputs: Dict[str, Dict[str, str]] = {}
    log_lines: List[str] = []
    current: Optional[Step] = None
    result = JobResult(name=job.name, status=JobStatus.RUNNING)

    console.print_job_start(job.name)
    try:
        with Sandbox(config.work_dir / services.run_id, job.name, runs_on=job.runs_on,
                     keep=config.keep_workspaces) as sandbox:
            if job.image:
                docker_steps.check_docker_available(job.name)
            else:
                for tool in job.requires:
                    _check_tool_available(tool, job.name)

            for index, step in enumerate(job.steps):
                current = step
                if cancel.is_set():
                    raise JobCancelled(f"[{job.name}] cancelled before step '{step.name}'")

                remaining = deadline - time.monotonic() if deadline is not None else None
                if remaining is not None and remaining <= 0:
                    raise StepTimeout(job=job.name, step=step.name, timeout=job_timeout)

                console.print_step(job.name, step.name)
                log_lines.append(f"▶ {step.name}")

                kw = dict(job=job, step=step, step_outputs=step_outputs, needs=needs_view, services=services)
                env = _resolve_env({**(pipeline_env or {}), **job.env, **step.env}, **kw)
                data = {k: _resolve(v, **kw) for k, v in step.data.items()}
                timeout = _effective_timeout(step.timeout, config.step_timeout, remaining)

                ctx = StepContext(
                    run_id=services.run_id,
                    job=job,
                    step=step,
                    workspace=sandbox.path,
                    env=env,
                    data=data,
                    steps=MappingProxyType({k: MappingProxyType(v) for k, v in step_outputs.items()}),
                    needs=needs_view,
                    trigger=trigger,
                    services=services,
                    cancel=cancel,
                    log_lines=log_lines,
                    deadline=time.monotonic() + timeout if timeout is not None else None,
                )

                if step.kind == "shell":
                    outputs = _run_shell_step(ctx, sandbox, index, timeout)
                else:
                    handler = STEP_HANDLERS.get(step.kind)
                    if handler is None:
                        raise CIError(
                            kind="unknown_step_kind",
                            job=job.name,
                            step=step.name,
                            message=f"no handler for step kind {step.kind!r}",
                            details={"known": ", ".join(sorted(STEP_HANDLERS))},
                        )
                    outputs = _call_with_retries(handler, ctx, services, timeout) or {}

                if step.id:
                    step_outputs[step.id] = {k: _stringify(v) for k, v in outputs.items()}

            for name, ref in job.outputs.items():
                result.outputs[name] = str(
                    _resolve(ref, job=job, step=current or job.steps[-1], step_outputs=step_outputs,
                             needs=needs_view, services=services)
                )
            current = None
            result.status = JobStatus.SUCCEEDED

    except JobCancelled as e:
        result.status = JobStatus.CANCELLED
        result.reason = "run cancelled"
        result.error = str(e)
    except StepFailure as e:
        result.status = JobStatus.FAILED
        result.error = str(e)
        result.log = e.output
    except ShipError as e:
        result.status = JobStatus.FAILED
        result.error = str(e)
    except Exception as e:
        result.status = JobStatus.FAILED
        result.error = f"{type(e).__name__}: {e}"
        if console.debug:
            console.print_exception(e)

    if result.status is JobStatus.FAILED:
        if current is not None:
            result.failed_step = current.name
        if not result.log:
            result.log = "\n".join(log_lines)[-LOG_TAIL_CHARS:]
        result.log = services.secrets.mask(result.log)
        result.error = services.secrets.mask(result.error or "")
        console.print_failure(job.name, result.error, hint=_hint_for(result.error), is_job=True)

    result.duration = time.monotonic() - started
    console.print_job_finished(result)
    return result


def _hint_for(error: str) -> Optional[str]:
    for line in error.splitlines():
        if line.startswith("hint="):
            return line[len("hint="):]
    return None
