from .dsl import (
    JobBuilder,
    always,
    build,
    check_version,
    checkout,
    create_release,
    download_artifact,
    failure,
    job,
    needs_output,
    output_equals,
    pipeline,
    publish,
    py,
    secret,
    sh,
    status_is,
    step_output,
    success,
    tag_and_push,
    upload_artifact,
    wf,
)
from .dag import run_pipeline
from .model import Job, JobResult, JobStatus, Pipeline, Step, Trigger

__all__ = [
    "job", "sh", "py", "wf", "pipeline", "JobBuilder", "build",
    "step_output", "needs_output", "secret",
    "success", "failure", "always", "status_is", "output_equals",
    "checkout", "check_version", "tag_and_push", "create_release", "publish",
    "upload_artifact", "download_artifact",
    "run_pipeline", "Job", "Step", "Pipeline", "Trigger", "JobResult", "JobStatus",
]
