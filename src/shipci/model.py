# model.py
from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional, Tuple, Union

if TYPE_CHECKING:
    from .conditions import Condition
    from .services import RunServices


# ---------------------------------------------------------------------
# References (resolved by the job runner when a step starts)
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class StepOutput:
    """Output `key` of an earlier step (by step id) in the same job."""
    step_id: str
    key: str


@dataclass(frozen=True)
class NeedsOutput:
    """Output `key` of a job listed in `needs`."""
    job: str
    key: str


@dataclass(frozen=True)
class SecretRef:
    """A secret injected from the secret store, never written into the workflow."""
    name: str


EnvValue = Union[str, StepOutput, NeedsOutput, SecretRef]


# ---------------------------------------------------------------------
# Pipeline definition
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class Step:
    """A single unit of work inside a CI job."""
    name: str
    run: str = ""
    kind: str = "shell"
    id: str | None = None
    cwd: str | None = None
    env: Dict[str, EnvValue] = field(default_factory=dict)
    data: Dict[str, Any] = field(default_factory=dict)
    timeout: float | None = None


@dataclass
class Job:
    """
    A CI job: ordered steps + dependencies + run condition.

    `needs` is the only source of ordering; a job may only look at the
    status and outputs of the jobs it names there.
    """
    name: str
    steps: list[Step]
    needs: list[str] = field(default_factory=list)
    when: Optional["Condition"] = None

    env: Dict[str, EnvValue] = field(default_factory=dict)
    runs_on: str = "local"
    image: str | None = None
    requires: list[str] = field(default_factory=list)

    # output-name -> step output it is read from once the job finished
    outputs: Dict[str, StepOutput] = field(default_factory=dict)
    timeout: float | None = None


@dataclass
class Pipeline:
    name: str
    jobs: list[Job]
    events: Tuple[str, ...] = ("push",)
    # None -> use the configured release branches
    branches: Optional[List[str]] = None
    env: Dict[str, EnvValue] = field(default_factory=dict)

    def matches(self, trigger: "Trigger", default_branches: Tuple[str, ...] = ()) -> bool:
        if trigger.event not in self.events:
            return False
        branches = self.branches if self.branches is not None else list(default_branches)
        if not branches:
            return True
        return trigger.branch in branches


@dataclass(frozen=True)
class Trigger:
    """The repository event that started a run."""
    event: str
    branch: str
    sha: str
    repository: str


# ---------------------------------------------------------------------
# Run state
# ---------------------------------------------------------------------

class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"

    @property
    def terminal(self) -> bool:
        return self not in (JobStatus.PENDING, JobStatus.RUNNING)


@dataclass
class JobResult:
    name: str
    status: JobStatus
    outputs: Dict[str, str] = field(default_factory=dict)
    error: str | None = None
    failed_step: str | None = None
    log: str = ""
    reason: str | None = None
    duration: float = 0.0

    @property
    def visible_outputs(self) -> Mapping[str, str]:
        """Outputs as dependents see them: only after the job succeeded."""
        if self.status is JobStatus.SUCCEEDED:
            return MappingProxyType(dict(self.outputs))
        return MappingProxyType({})


@dataclass
class StepContext:
    """Everything a step handler may look at while it runs."""
    run_id: str
    job: Job
    step: Step
    workspace: Path
    env: Dict[str, str]
    data: Dict[str, Any]
    # read-only views; steps only publish through their returned outputs
    steps: Mapping[str, Mapping[str, str]]
    needs: Mapping[str, JobResult]
    trigger: Trigger
    services: "RunServices"
    cancel: threading.Event
    log_lines: List[str] = field(default_factory=list)
    # monotonic time the step must finish by (step timeout or job deadline)
    deadline: Optional[float] = None

    def log(self, line: str) -> None:
        self.log_lines.append(line)

    def time_left(self) -> Optional[float]:
        """Seconds until the step deadline, or None when the step is unbounded."""
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    def bounded(self, limit: float) -> float:
        """`limit` capped by the time left before the step deadline."""
        left = self.time_left()
        if left is None:
            return limit
        # a zero socket timeout would switch to non-blocking mode
        return max(min(limit, left), 0.1)
