"""Result models for convoy.

Pydantic v2 models that capture structured outcomes of a deployment: each
convergence step, each rendered file, the status of every service, and the
external readiness check. A CI job can check
``result.overall_status == OverallStatus.PASSED`` instead of parsing logs,
and ``summary.json`` is the same model dumped with ``model_dump_json()``.

Key Concepts:
    OverallStatus: PASSED, FAILED, PARTIAL, ERROR, SKIPPED, RUNNING,
        PENDING, CANCELLED.
    StepResult: One convergence step (ok / changed / skipped / failed).
    RenderResult: Files written by the renderer, with change detection.
    ReadinessResult: Outcome of the bounded-retry endpoint poll.
    DeploymentResult: Everything above for one run. ``mark_complete()``
        finalises duration, status and summary.

Tags:
    results, models, pydantic, deployment, status, reporting
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field


def _now() -> str:
    return datetime.now(UTC).isoformat()


# ---------------------------------------------------------------------------
# Shared enums
# ---------------------------------------------------------------------------


class OverallStatus(str, Enum):
    """Overall status of a run."""

    PASSED = "PASSED"
    FAILED = "FAILED"
    PARTIAL = "PARTIAL"
    ERROR = "ERROR"
    SKIPPED = "SKIPPED"
    RUNNING = "RUNNING"
    PENDING = "PENDING"
    CANCELLED = "CANCELLED"


class StepStatus(str, Enum):
    """Outcome of a single convergence step."""

    OK = "ok"  # Already in the desired state
    CHANGED = "changed"  # Host state was modified
    SKIPPED = "skipped"  # Disabled by config
    FAILED = "failed"


HEALTHY_STATES = ("running", "healthy")


# ---------------------------------------------------------------------------
# Step / render / readiness results
# ---------------------------------------------------------------------------


class StepResult(BaseModel):
    """Result of one convergence step."""

    name: str
    status: StepStatus
    detail: str = ""
    duration_ms: float = 0.0
    error: str | None = None


class RenderedFile(BaseModel):
    """A generated artifact on disk."""

    path: str
    kind: Literal["compose", "proxy", "ci", "env"]
    sha256: str
    changed: bool


class RenderResult(BaseModel):
    """All files written by one render pass."""

    output_dir: str
    files: list[RenderedFile] = Field(default_factory=list)

    @property
    def changed(self) -> bool:
        return any(f.changed for f in self.files)

    def path_for(self, kind: str) -> str | None:
        for f in self.files:
            if f.kind == kind:
                return f.path
        return None


class ReadinessResult(BaseModel):
    """Outcome of polling an external endpoint."""

    url: str
    ready: bool = False
    attempts: int = 0
    max_attempts: int = 0
    last_status: int | None = None
    last_error: str | None = None
    elapsed_seconds: float = 0.0


# ---------------------------------------------------------------------------
# Service / Deployment results
# ---------------------------------------------------------------------------


class ServiceStatus(BaseModel):
    """Health/status of a single deployed service."""

    name: str
    container_id: str | None = None
    container_name: str | None = None
    image: str | None = None
    status: Literal["running", "healthy", "unhealthy", "exited", "starting", "not_found"] = "not_found"
    health: str | None = None
    error: str | None = None


class DeploymentResult(BaseModel):
    """Result of a deployment operation (up/down/restart/status/logs)."""

    run_id: str
    mode: str
    project_name: str | None = None
    docker_host: str | None = None
    started_at: str = Field(default_factory=_now)
    completed_at: str | None = None
    duration_seconds: float = 0.0
    steps: list[StepResult] = Field(default_factory=list)
    services: list[ServiceStatus] = Field(default_factory=list)
    rendered: RenderResult | None = None
    readiness: ReadinessResult | None = None
    artifacts: list[str] = Field(default_factory=list)
    overall_status: OverallStatus = OverallStatus.PENDING
    error: str | None = None
    summary: str = ""

    def record_step(
        self,
        name: str,
        status: StepStatus,
        detail: str = "",
        duration_ms: float = 0.0,
        error: str | None = None,
    ) -> StepResult:
        step = StepResult(
            name=name,
            status=status,
            detail=detail,
            duration_ms=duration_ms,
            error=error,
        )
        self.steps.append(step)
        return step

    @property
    def failed_step(self) -> StepResult | None:
        for step in self.steps:
            if step.status == StepStatus.FAILED:
                return step
        return None

    @property
    def changed_steps(self) -> list[StepResult]:
        return [s for s in self.steps if s.status == StepStatus.CHANGED]

    def mark_complete(self, status: OverallStatus | None = None) -> None:
        """Mark the run as complete, compute duration, status and summary."""
        self.completed_at = _now()
        start = datetime.fromisoformat(self.started_at)
        end = datetime.fromisoformat(self.completed_at)
        self.duration_seconds = (end - start).total_seconds()

        healthy = sum(1 for s in self.services if s.status in HEALTHY_STATES)
        total = len(self.services)

        if status:
            self.overall_status = status
        elif self.error and not self.failed_step:
            self.overall_status = OverallStatus.ERROR
        elif self.failed_step or self.error:
            self.overall_status = OverallStatus.FAILED
        elif self.readiness is not None and not self.readiness.ready:
            self.overall_status = OverallStatus.FAILED
        elif not self.services or healthy == total:
            self.overall_status = OverallStatus.PASSED
        elif healthy:
            self.overall_status = OverallStatus.PARTIAL
        else:
            self.overall_status = OverallStatus.FAILED

        summary = f"{healthy}/{total} services healthy, {len(self.changed_steps)} steps changed"
        if self.readiness is not None:
            state = "ready" if self.readiness.ready else "not ready"
            summary += (
                f", endpoint {state} after {self.readiness.attempts}"
                f"/{self.readiness.max_attempts} attempts"
            )
        if self.failed_step:
            summary += f", failed at {self.failed_step.name!r}"
        self.summary = summary
