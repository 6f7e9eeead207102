# report.py
from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Mapping

from pydantic import BaseModel, Field

from .model import JobResult, Trigger
from .dag import overall_status

# -------------------- Schemas --------------------

class TriggerReport(BaseModel):
    event: str
    branch: str
    sha: str
    repository: str

class JobReport(BaseModel):
    name: str
    status: str
    outputs: dict[str, str] = Field(default_factory=dict)
    reason: str | None = None
    error: str | None = None
    failed_step: str | None = None
    duration_seconds: float = 0.0

class RunReport(BaseModel):
    run_id: str
    pipeline: str
    status: str
    trigger: TriggerReport
    finished_at: datetime
    jobs: list[JobReport]

    def job(self, name: str) -> JobReport:
        for j in self.jobs:
            if j.name == name:
                return j
        raise KeyError(name)

# -------------------- Building --------------------

def build_report(
    run_id: str,
    pipeline: str,
    trigger: Trigger,
    results: Mapping[str, JobResult],
) -> RunReport:
    jobs = [
        JobReport(
            name=r.name,
            status=r.status.value,
            # only what dependents could see
            outputs=dict(r.visible_outputs),
            reason=r.reason,
            error=r.error,
            failed_step=r.failed_step,
            duration_seconds=round(r.duration, 3),
        )
        for r in results.values()
    ]
    return RunReport(
        run_id=run_id,
        pipeline=pipeline,
        status=overall_status(dict(results)).value,
        trigger=TriggerReport(
            event=trigger.event,
            branch=trigger.branch,
            sha=trigger.sha,
            repository=trigger.repository,
        ),
        finished_at=datetime.now(timezone.utc),
        jobs=jobs,
    )


def write_report(report: RunReport, path: str | Path) -> Path:
    out = Path(path)
    out.parent.mkdir(parents=True, exist_ok=True)
    out.write_text(report.model_dump_json(indent=2) + "\n", encoding="utf-8")
    return out
