"""shipci exceptions."""

from __future__ import annotations

from dataclasses import dataclass, field


class ShipError(Exception):
    """Base exception for shipci operations."""


# ----------------------------------------------------------------------
# Structured job/step errors
# ----------------------------------------------------------------------

@dataclass
class CIError(ShipError):
    """
    Structured CI error with enough context for:
      - clean CLI output
      - the final run report
      - debugging without full tracebacks
    """
    kind: str
    job: str
    step: str | None
    message: str
    details: dict = field(default_factory=dict)

    def __str__(self) -> str:
        lines = [f"{self.kind}: {self.message}", f"job={self.job}"]
        if self.step:
            lines.append(f"step={self.step}")
        for k, v in self.details.items():
            lines.append(f"{k}={v}")
        return "\n".join(lines)


@dataclass
class StepFailure(ShipError):
    job: str
    step: str
    cmd: str
    exit_code: int
    output: str = ""

    def __str__(self) -> str:
        return f"[{self.job}] step '{self.step}' failed (exit={self.exit_code}): {self.cmd}"


@dataclass
class StepTimeout(ShipError):
    job: str
    step: str
    timeout: float

    def __str__(self) -> str:
        return f"[{self.job}] step '{self.step}' timed out after {self.timeout:g}s"


class JobCancelled(ShipError):
    """Raised inside a job when its run has been cancelled."""


# ----------------------------------------------------------------------
# Validation errors
# ----------------------------------------------------------------------

class PipelineDefinitionError(ShipError, ValueError):
    """Raised when a pipeline cannot be scheduled as declared."""


class ConditionError(PipelineDefinitionError):
    """Raised when a run condition cannot be parsed."""


class VersionError(ShipError, ValueError):
    """Raised for malformed or missing version strings."""


# ----------------------------------------------------------------------
# Conflicts
# ----------------------------------------------------------------------

class ConflictError(ShipError):
    """Base class for 'already exists' failures."""


class TagConflictError(ConflictError):
    def __init__(self, tag: str, where: str = "local") -> None:
        self.tag = tag
        self.where = where
        super().__init__(f"Tag '{tag}' already exists ({where}); refusing to re-tag")


class ArtifactConflictError(ConflictError):
    def __init__(self, name: str, run_id: str) -> None:
        self.name = name
        self.run_id = run_id
        super().__init__(f"Artifact '{name}' already uploaded in run {run_id}")


class PackageExistsError(ConflictError):
    def __init__(self, package_id: str, version: str) -> None:
        self.package_id = package_id
        self.version = version
        super().__init__(f"Package {package_id} {version} already exists at the registry")


class ReleaseConflictError(ConflictError):
    def __init__(self, tag: str) -> None:
        self.tag = tag
        super().__init__(f"A release for tag '{tag}' already exists")


# ----------------------------------------------------------------------
# Lookups / infrastructure
# ----------------------------------------------------------------------

class ArtifactNotFoundError(ShipError):
    def __init__(self, name: str, run_id: str) -> None:
        self.name = name
        self.run_id = run_id
        super().__init__(f"Artifact '{name}' was not uploaded in run {run_id}")


class TagNotFoundError(ShipError):
    def __init__(self, tag: str) -> None:
        self.tag = tag
        super().__init__(f"Tag '{tag}' does not exist or does not point to a reachable commit")


class MissingSecretError(ShipError):
    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(
            f"Secret '{name}' is not set. Export SHIPCI_SECRET_{name} or {name} in the environment."
        )


class TransientError(ShipError):
    """Network or storage failure worth retrying."""


class RegistryAuthError(ShipError):
    def __init__(self, status_code: int, body: str = "") -> None:
        self.status_code = status_code
        self.body = body
        super().__init__(f"Registry rejected credentials ({status_code}): {body}")


class ApiError(ShipError):
    """Raised when a remote API returns a non-success response."""

    def __init__(self, status_code: int, status_text: str, body: str = "") -> None:
        self.status_code = status_code
        self.status_text = status_text
        self.body = body
        super().__init__(f"API Error {status_code} {status_text}: {body}")
