# dag.py
from __future__ import annotations

import threading
from collections import deque
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from .concurrency import RunCoordinator
from .conditions import should_run
from .exceptions import PipelineDefinitionError
from .model import (
    Job,
    JobResult,
    JobStatus,
    NeedsOutput,
    Pipeline,
    StepOutput,
    Trigger,
)
from .runner import run_job
from .sandbox import SUPPORTED_RUNNERS
from .services import RunServices


def build_dag(jobs: List[Job]) -> Tuple[Dict[str, Set[str]], Dict[str, int]]:
    """
    Build a DAG from Job objects.

    Requires:
      - job.name: str (unique)
      - job.needs: iterable[str] (names of jobs that must finish BEFORE this job)
    """
    names = [j.name for j in jobs]
    if len(set(names)) != len(names):
        dupes = sorted({n for n in names if names.count(n) > 1})
        raise PipelineDefinitionError(f"Duplicate job names found: {dupes}")

    name_set = set(names)
    adj: Dict[str, Set[str]] = {n: set() for n in name_set}
    indeg: Dict[str, int] = {n: 0 for n in name_set}

    for job in jobs:
        for dep in job.needs:
            if dep not in name_set:
                raise PipelineDefinitionError(
                    f"Job '{job.name}' needs missing job '{dep}'. "
                    f"Known jobs: {sorted(name_set)}"
                )
            if dep == job.name:
                raise PipelineDefinitionError(f"Job '{job.name}' needs itself")
            # edge dep -> job (dep must finish before job)
            if job.name not in adj[dep]:
                adj[dep].add(job.name)
                indeg[job.name] += 1

    return adj, indeg


def topo_levels(adj: Dict[str, Set[str]], indeg: Dict[str, int]) -> List[List[str]]:
    """
    Convert DAG into topological "levels" (stages).
    Jobs within a stage do not depend on each other.
    """
    indeg = dict(indeg)  # copy (we mutate it)
    q = deque(sorted([n for n, d in indeg.items() if d == 0]))

    levels: List[List[str]] = []
    processed = 0

    while q:
        level_size = len(q)
        level: List[str] = []

        for _ in range(level_size):
            node = q.popleft()
            level.append(node)
            processed += 1

            for child in sorted(adj.get(node, set())):
                indeg[child] -= 1
                if indeg[child] == 0:
                    q.append(child)

        levels.append(level)

    if processed != len(indeg):
        remaining = sorted([n for n, d in indeg.items() if d > 0])
        raise PipelineDefinitionError(f"Job graph has a cycle. Stuck jobs: {remaining}")

    return levels


# ---------------------------------------------------------------------
# Static checks (before anything runs)
# ---------------------------------------------------------------------

def _refs(values: Iterable[Any]) -> Iterable[Any]:
    for v in values:
        if isinstance(v, list):
            yield from _refs(v)
        else:
            yield v


def validate_pipeline(pipeline: Pipeline) -> List[List[str]]:
    """
    Reject a pipeline that cannot run as declared; returns its stages.

    A job may only look at jobs it lists in `needs`, and a step may only
    read outputs of earlier steps of the same job.
    """
    if not pipeline.jobs:
        raise PipelineDefinitionError(f"Pipeline '{pipeline.name}' has no jobs")
    adj, indeg = build_dag(pipeline.jobs)
    levels = topo_levels(adj, indeg)

    for ref in _refs(pipeline.env.values()):
        if isinstance(ref, (StepOutput, NeedsOutput)):
            raise PipelineDefinitionError(
                f"Pipeline env may only hold strings and secrets, got {ref!r}"
            )

    for job in pipeline.jobs:
        needs = set(job.needs)
        if not job.steps:
            raise PipelineDefinitionError(f"Job '{job.name}' has no steps")
        if job.runs_on not in SUPPORTED_RUNNERS:
            raise PipelineDefinitionError(
                f"Job '{job.name}': unsupported runs_on {job.runs_on!r} (expected one of {SUPPORTED_RUNNERS})"
            )
        if job.runs_on == "docker" and not job.image:
            raise PipelineDefinitionError(f"Job '{job.name}' runs on docker but declares no image")

        if job.when is not None:
            unknown = job.when.jobs() - needs
            if unknown:
                raise PipelineDefinitionError(
                    f"Job '{job.name}' condition references {sorted(unknown)} which are not in needs"
                )

        seen_ids: Set[str] = set()
        all_ids = {s.id for s in job.steps if s.id}
        for step in job.steps:
            for ref in _refs([*job.env.values(), *step.env.values(), *step.data.values()]):
                if isinstance(ref, NeedsOutput) and ref.job not in needs:
                    raise PipelineDefinitionError(
                        f"Job '{job.name}' step '{step.name}' reads output of '{ref.job}' which is not in needs"
                    )
                if isinstance(ref, StepOutput) and ref.step_id not in seen_ids:
                    raise PipelineDefinitionError(
                        f"Job '{job.name}' step '{step.name}' reads output of step '{ref.step_id}' "
                        "which does not run before it"
                    )
            if step.id:
                if step.id in seen_ids:
                    raise PipelineDefinitionError(f"Job '{job.name}' has duplicate step id '{step.id}'")
                seen_ids.add(step.id)

        for out_name, ref in job.outputs.items():
            if not isinstance(ref, StepOutput) or ref.step_id not in all_ids:
                raise PipelineDefinitionError(
                    f"Job '{job.name}' output '{out_name}' must reference a step of the same job, got {ref!r}"
                )

    return levels


# ---------------------------------------------------------------------
# Scheduler
# ---------------------------------------------------------------------

def _skip_reason(job: Job, needs: Dict[str, JobResult]) -> str:
    not_ok = sorted(n for n, r in needs.items() if r.status is not JobStatus.SUCCEEDED)
    if job.when is None and not_ok:
        return "dependency " + ", ".join(f"{n} {needs[n].status.value}" for n in not_ok)
    return "condition not met"


def run_pipeline(
    pipeline: Pipeline,
    trigger: Trigger,
    *,
    services: RunServices,
    max_workers: Optional[int] = None,
    cancel_event: Optional[threading.Event] = None,
    coordinator: Optional[RunCoordinator] = None,
) -> Dict[str, JobResult]:
    """
    Run every job of `pipeline` for `trigger`.

    - A job starts once every job in its needs is terminal (succeeded,
      failed, skipped or cancelled); its condition is evaluated then.
    - A false condition moves the job straight to skipped.
    - Independent jobs run concurrently on a thread pool; a failing job
      only affects the jobs whose conditions look at it.

    Returns results keyed by job name in declaration order. A trigger the
    pipeline does not run for returns {}.
    """
    console = services.console
    config = services.config

    if not pipeline.matches(trigger, config.release_branches):
        console.print_trigger_ignored(pipeline.name, trigger.branch, trigger.event)
        return {}

    validate_pipeline(pipeline)
    adj, indeg = build_dag(pipeline.jobs)
    job_map = {j.name: j for j in pipeline.jobs}

    cancel = cancel_event or threading.Event()
    if coordinator is not None:
        coordinator.begin(trigger.branch, services.run_id, cancel)

    results: Dict[str, JobResult] = {n: JobResult(name=n, status=JobStatus.PENDING) for n in job_map}
    waiting = dict(indeg)
    ready = deque(sorted(n for n, d in waiting.items() if d == 0))
    in_flight: Dict[Future, str] = {}

    def release(name: str) -> None:
        for child in sorted(adj[name]):
            waiting[child] -= 1
            if waiting[child] == 0:
                ready.append(child)

    workers = max_workers or config.max_workers
    try:
        with ThreadPoolExecutor(max_workers=workers) as pool:
            while ready or in_flight:
                while ready:
                    name = ready.popleft()
                    job = job_map[name]
                    needs = {d: results[d] for d in job.needs}

                    if cancel.is_set():
                        results[name] = JobResult(name=name, status=JobStatus.CANCELLED, reason="run cancelled")
                        release(name)
                        continue
                    if not should_run(job.when, needs):
                        reason = _skip_reason(job, needs)
                        results[name] = JobResult(name=name, status=JobStatus.SKIPPED, reason=reason)
                        console.print_job_skipped(name, reason)
                        release(name)
                        continue

                    results[name].status = JobStatus.RUNNING
                    fut = pool.submit(
                        run_job,
                        job,
                        trigger=trigger,
                        needs=needs,
                        services=services,
                        cancel=cancel,
                        pipeline_env=pipeline.env,
                    )
                    in_flight[fut] = name

                if not in_flight:
                    break

                done, _ = wait(list(in_flight), return_when=FIRST_COMPLETED)
                for fut in done:
                    name = in_flight.pop(fut)
                    try:
                        results[name] = fut.result()
                    except Exception as e:
                        # run_job reports failures itself; this is a bug in the runner
                        results[name] = JobResult(
                            name=name,
                            status=JobStatus.FAILED,
                            error=f"{type(e).__name__}: {e}",
                        )
                        if console.debug:
                            console.print_exception(e)
                    release(name)
    finally:
        if coordinator is not None:
            coordinator.finish(trigger.branch, services.run_id)

    return {name: results[name] for name in job_map}


def overall_status(results: Dict[str, JobResult]) -> JobStatus:
    """failed > cancelled > succeeded; skipped jobs do not fail a run."""
    statuses = {r.status for r in results.values()}
    if JobStatus.FAILED in statuses:
        return JobStatus.FAILED
    if JobStatus.CANCELLED in statuses:
        return JobStatus.CANCELLED
    if not results:
        return JobStatus.SKIPPED
    return JobStatus.SUCCEEDED
