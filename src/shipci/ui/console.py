"""Console output formatting utilities for shipci."""

from __future__ import annotations

import sys
import threading
from typing import Mapping, Optional

from ..model import JobResult, JobStatus

STATUS_LABELS = {
    JobStatus.SUCCEEDED: "SUCCESS",
    JobStatus.FAILED: "FAILED",
    JobStatus.SKIPPED: "SKIPPED",
    JobStatus.CANCELLED: "CANCELLED",
}


class Console:
    """Centralized console output formatting (safe to call from job threads)."""

    def __init__(self, debug: bool = False, quiet: bool = False):
        """
        Initialize console formatter.

        Args:
            debug: If True, show detailed output including stack traces
            quiet: If True, only errors are printed
        """
        self.debug = debug
        self.quiet = quiet
        self._lock = threading.Lock()

    def _out(self, *lines: str, err: bool = False) -> None:
        if self.quiet and not err:
            return
        stream = sys.stderr if err else sys.stdout
        with self._lock:
            for line in lines:
                print(line, file=stream)

    def print_run_started(
        self,
        pipeline: str,
        workflow: str,
        job_count: int,
        branch: str,
        sha: str,
    ) -> None:
        """Print run start information."""
        self._out(
            "\nRUN STARTED",
            f"Pipeline: {pipeline}",
            f"Workflow: {workflow}",
            f"Trigger: {branch} @ {sha[:12]}",
            f"Jobs: {job_count}",
            "",
        )

    def print_trigger_ignored(self, pipeline: str, branch: str, event: str) -> None:
        self._out(f"\nRUN SKIPPED: pipeline '{pipeline}' does not run for {event} on '{branch}'")

    def print_job_start(self, name: str) -> None:
        """Print job start message."""
        self._out(f"\nJOB STARTED: {name}")

    def print_step(self, job: str, name: str) -> None:
        """Print step start message."""
        self._out(f"[{job}] STEP: {name}")

    def print_job_finished(self, result: JobResult) -> None:
        label = STATUS_LABELS.get(result.status, result.status.value.upper())
        self._out(f"[{result.name}] STATUS: {label.lower()} ({result.duration:.1f}s)")

    def print_failure(
        self,
        name: str,
        reason: str,
        exit_code: Optional[int] = None,
        hint: Optional[str] = None,
        is_job: bool = False,
    ) -> None:
        """
        Print failure message.

        Args:
            name: Job or step name
            reason: Failure reason/error message
            exit_code: Optional exit code
            hint: Optional hint for user
            is_job: If True, print "JOB FAILED", otherwise "STEP FAILED"
        """
        prefix = "JOB FAILED" if is_job else "STEP FAILED"
        lines = [f"{prefix}: {name}"]
        if exit_code is not None:
            lines.append(f"Exit code: {exit_code}")
        if hint:
            lines.append(f"Hint: {hint}")
        if self.debug:
            lines.append(f"Error details: {reason}")
        else:
            # first line only outside debug mode
            lines.append(f"Error: {reason.splitlines()[0] if reason else 'Unknown error'}")
        self._out(*lines)

    def print_job_skipped(self, name: str, reason: str) -> None:
        """Print job skipped message."""
        self._out(f"\nJOB SKIPPED: {name} ({reason})")

    def print_warning(self, message: str) -> None:
        """Print a diagnostic that does not fail the job."""
        self._out(f"WARNING: {message}")

    def print_results(self, results: Mapping[str, JobResult]) -> None:
        """Print final results summary."""
        lines = ["\n" + "=" * 40, "RESULTS", "=" * 40]
        for name, result in results.items():
            label = STATUS_LABELS.get(result.status, result.status.value.upper())
            line = f"  {name}: {label}"
            if result.reason:
                line += f" ({result.reason})"
            lines.append(line)
        self._out(*lines)

        for name, result in results.items():
            if result.status is not JobStatus.FAILED:
                continue
            where = f" in step '{result.failed_step}'" if result.failed_step else ""
            lines = [f"\n--- {name} failed{where} ---", result.error or "Unknown error"]
            if result.log:
                lines.append(result.log.rstrip())
            self._out(*lines)

    def print_error(
        self,
        title: str,
        message: str,
        details: Optional[list[str]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        """
        Print structured error message.

        Args:
            title: Error title
            message: Main error message
            details: Optional list of detail lines
            suggestion: Optional suggestion for user
        """
        lines = [f"\nERROR: {title}", message]
        if details:
            lines.extend(f"  {detail}" for detail in details)
        if suggestion:
            lines.append(f"\n{suggestion}")
        self._out(*lines, err=True)

    def print_exception(self, exc: BaseException) -> None:
        """Print exception, with full traceback only in debug mode."""
        if self.debug:
            import traceback

            with self._lock:
                traceback.print_exception(type(exc), exc, exc.__traceback__)
        else:
            self._out(f"Error: {exc}", err=True)

    def print_info(self, message: str) -> None:
        """Print informational message."""
        self._out(message)

    def print_debug(self, message: str) -> None:
        """Print debug message (only if debug mode enabled)."""
        if self.debug:
            self._out(f"[DEBUG] {message}", err=True)


# Global console instance (will be initialized by CLI)
_console: Optional[Console] = None


def get_console() -> Console:
    """Get the global console instance."""
    global _console
    if _console is None:
        _console = Console()
    return _console


def set_console(console: Console) -> None:
    """Set the global console instance."""
    global _console
    _console = console
