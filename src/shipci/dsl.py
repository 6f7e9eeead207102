# src/shipci/dsl.py
from __future__ import annotations

from dataclasses import replace
from typing import Any, Callable, Dict, List, Optional, Union

from .conditions import (
    RESULT_ALIASES,
    Always,
    Condition,
    Failure,
    OutputEquals,
    StatusIs,
    Success,
    parse_condition,
)
from .exceptions import ConditionError
from .model import EnvValue, Job, NeedsOutput, Pipeline, SecretRef, Step, StepContext, StepOutput
from .step_workflows.artifacts import download_artifact, upload_artifact
from .step_workflows.checkout import checkout
from .step_workflows.publish import publish
from .step_workflows.release import create_release, tag_and_push
from .step_workflows.version import check_version


# ---------------------------------------------------------------------
# Step helpers
# ---------------------------------------------------------------------

def sh(
    name: str,
    cmd: str,
    *,
    id: str | None = None,
    cwd: str | None = None,
    env: Optional[Dict[str, EnvValue]] = None,
    timeout: float | None = None,
) -> Step:
    """Create a shell step. Write `key=value` lines to $SHIPCI_OUTPUT to publish outputs."""
    return Step(name=name, run=cmd, id=id, cwd=cwd, env=env or {}, timeout=timeout)


def py(name: str, fn: Callable[[StepContext], Optional[Dict[str, Any]]], *, id: str | None = None) -> Step:
    """Run a python callable as a step; the dict it returns becomes the step outputs."""
    return Step(name=name, kind="python", id=id, data={"fn": fn})


# ---------------------------------------------------------------------
# References
# ---------------------------------------------------------------------

def step_output(step_id: str, key: str) -> StepOutput:
    return StepOutput(step_id, key)


def needs_output(job_name: str, key: str) -> NeedsOutput:
    return NeedsOutput(job_name, key)


def secret(name: str) -> SecretRef:
    return SecretRef(name)


# ---------------------------------------------------------------------
# Conditions
# ---------------------------------------------------------------------

def success() -> Condition:
    return Success()


def failure() -> Condition:
    return Failure()


def always() -> Condition:
    return Always()


def status_is(job_name: str, status: str) -> Condition:
    if status not in RESULT_ALIASES:
        raise ConditionError(f"Unknown job result {status!r}; expected one of {sorted(RESULT_ALIASES)}")
    return StatusIs(job_name, RESULT_ALIASES[status])


def output_equals(job_name: str, key: str, value: str) -> Condition:
    """needs.<job>.outputs.<key> == value"""
    return OutputEquals(job_name, key, value)


def _condition(when: Union[str, Condition, None]) -> Optional[Condition]:
    if when is None or isinstance(when, Condition):
        return when
    return parse_condition(when)


# ---------------------------------------------------------------------
# Functional Job helper
# ---------------------------------------------------------------------

def job(
    name: str,
    *steps: Step,  # allow: job("x", sh(...), sh(...))
    steps_list: Optional[List[Step]] = None,  # allow: job("x", steps_list=[...])
    needs: Optional[List[str]] = None,
    if_: Union[str, Condition, None] = None,
    env: Optional[Dict[str, EnvValue]] = None,
    outputs: Optional[Dict[str, StepOutput]] = None,
    requires: Optional[List[str]] = None,
    runs_on: str = "local",
    image: str | None = None,
    timeout: float | None = None,
    cwd: str | None = None,  # default cwd applied to steps missing cwd
) -> Job:
    steps_final: List[Step] = []
    if steps_list:
        steps_final.extend(list(steps_list))
    steps_final.extend(list(steps))

    if not steps_final:
        raise ValueError(f"job({name!r}) must have at least one step")

    if cwd is not None:
        steps_final = [s if s.cwd is not None else replace(s, cwd=cwd) for s in steps_final]

    return Job(
        name=name,
        steps=steps_final,
        needs=list(needs or []),
        when=_condition(if_),
        env=dict(env or {}),
        outputs=dict(outputs or {}),
        requires=list(requires or []),
        runs_on="docker" if image and runs_on == "local" else runs_on,
        image=image,
        timeout=timeout,
    )


# ---------------------------------------------------------------------
# Builder API
# ---------------------------------------------------------------------

class JobBuilder:
    def __init__(self, name: str):
        self.name = name
        self._needs: list[str] = []
        self._steps: list[Step] = []
        self._env: dict[str, EnvValue] = {}
        self._outputs: dict[str, StepOutput] = {}
        self._requires: list[str] = []
        self._when: Optional[Condition] = None
        self._image: str | None = None
        self._timeout: float | None = None

    def depends_on(self, *job_names: str):
        self._needs.extend(job_names)
        return self

    def run_if(self, condition: Union[str, Condition]):
        self._when = _condition(condition)
        return self

    def define_requirements(self, *tools: str):
        self._requires.extend(tools)
        return self

    def define_step(self, name: str, run: str, cwd: str | None = None, id: str | None = None):
        self._steps.append(Step(name=name, run=run, cwd=cwd, id=id))
        return self

    def add_step(self, step: Step):
        self._steps.append(step)
        return self

    def with_env(self, **env: EnvValue):
        self._env.update({k: v if isinstance(v, (StepOutput, NeedsOutput, SecretRef)) else str(v)
                          for k, v in env.items()})
        return self

    def with_output(self, name: str, step_id: str, key: str | None = None):
        self._outputs[name] = StepOutput(step_id, key or name)
        return self

    def in_container(self, image: str):
        self._image = image
        return self

    def with_timeout(self, seconds: float):
        self._timeout = seconds
        return self

    def build(self) -> Job:
        if not self._steps:
            raise ValueError(f"Job '{self.name}' has no steps")

        return Job(
            name=self.name,
            steps=list(self._steps),
            needs=list(self._needs),
            when=self._when,
            env=dict(self._env),
            outputs=dict(self._outputs),
            requires=list(self._requires),
            runs_on="docker" if self._image else "local",
            image=self._image,
            timeout=self._timeout,
        )


def build(name: str) -> JobBuilder:
    """Convenience: build('test').define_step(...).build()"""
    return JobBuilder(name)


# ---------------------------------------------------------------------
# Workflow helpers (single-file story)
# ---------------------------------------------------------------------

def wf(*jobs: Job) -> List[Job]:
    """
    Workflow definition helper.

    Users can write:
        from shipci import wf, job, sh

        def workflow():
            return wf(
                job(...),
                job(...),
            )

    Or use JOBS directly:
        JOBS = wf(job(...), job(...))
    """
    return list(jobs)


def pipeline(
    name: str,
    *jobs: Job,
    events: tuple[str, ...] = ("push",),
    branches: Optional[List[str]] = None,
    env: Optional[Dict[str, EnvValue]] = None,
) -> Pipeline:
    """A named pipeline with its trigger (events, branches; None = configured release branches)."""
    return Pipeline(
        name=name,
        jobs=list(jobs),
        events=tuple(events),
        branches=list(branches) if branches is not None else None,
        env=dict(env or {}),
    )


__all__ = [
    "sh",
    "py",
    "job",
    "build",
    "JobBuilder",
    "wf",
    "pipeline",
    "step_output",
    "needs_output",
    "secret",
    "success",
    "failure",
    "always",
    "status_is",
    "output_equals",
    "checkout",
    "check_version",
    "tag_and_push",
    "create_release",
    "publish",
    "upload_artifact",
    "download_artifact",
]
