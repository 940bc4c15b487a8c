"""Deployment orchestration.

``DeploymentRunner`` turns a parameter set and a ``DeploymentConfig`` into a
converged host. Each convergence step is recorded on the
``DeploymentResult`` as ``ok`` (already in the desired state), ``changed``,
``skipped`` or ``failed``; the run stops at the first failure.

Convergence sequence for ``up``::

    validate → render → network → volumes → pull → services → health → readiness

``status``, ``logs`` and ``down`` replace ``render`` with ``locate``: they
reuse the compose file already in ``render_dir`` and only render when none
exists yet.

Every step is idempotent: a second ``up`` with unchanged params reports
``render``, ``network`` and ``volumes`` as ``ok`` and leaves running
containers alone.

Key Concepts:
    DeploymentRunner.run(): Never raises. Failures land on the failed step
        and in ``result.error``; a summary JSON and HTML report are written
        for every run.
    _map_compose_status(): compose ``State``/``Health`` → ServiceStatus.status.

Related Modules:
    - :mod:`convoy.container` — docker CLI operations
    - :mod:`convoy.render` — artifacts written in the ``render`` step
    - :mod:`convoy.readiness` — the ``readiness`` step
    - :mod:`convoy.log_collector` — run artifacts

Tags:
    workflow, deployment, convergence, orchestration, idempotent
"""

from __future__ import annotations

import re
import time
from collections.abc import Callable
from pathlib import Path

from convoy.compose import container_name_for, project_name_for
from convoy.config import DeploymentConfig, DeploymentMode, get_settings
from convoy.container import ContainerManager
from convoy.core.errors import ConvergeError, ConvoyError, ReadinessError
from convoy.core.logging import LogContext, get_logger
from convoy.log_collector import LogCollector
from convoy.params import BlueprintParams, load_params, with_image_tag
from convoy.readiness import ReadinessProbe, probe_from_params
from convoy.render import COMPOSE_FILENAME, render_bundle
from convoy.results import DeploymentResult, ServiceStatus, StepStatus
from convoy.services import ServiceSpec, get_service_specs

logger = get_logger(__name__)

# compose prints "Container x  Running" for untouched containers
_COMPOSE_CHANGE_RE = re.compile(r"\b(Creat|Recreat|Start|Stopp|Remov)(ed|ing)\b")

StepOutcome = tuple[StepStatus, str]

# modes that reuse the compose file already on disk instead of re-rendering
_REUSE_RENDER_MODES = frozenset({DeploymentMode.STATUS, DeploymentMode.LOGS, DeploymentMode.DOWN})


class DeploymentRunner:
    """Orchestrates one deployment operation.

    Parameters
    ----------
    config
        Deployment configuration.
    params
        Parameter set. Loaded from ``config.params_file`` when omitted.
    manager
        Container manager. Built from ``params.host`` when omitted.
    probe
        Readiness probe. Built from ``params.health`` when omitted.
    """

    def __init__(
        self,
        config: DeploymentConfig,
        params: BlueprintParams | None = None,
        manager: ContainerManager | None = None,
        probe: ReadinessProbe | None = None,
    ) -> None:
        self.config = config
        self.params = params
        self._manager = manager
        self._probe = probe
        self._compose_file: Path | None = None

    # ------------------------------------------------------------------
    # Lazily-resolved collaborators
    # ------------------------------------------------------------------

    @property
    def manager(self) -> ContainerManager:
        if self._manager is None:
            settings = get_settings()
            self._manager = ContainerManager(
                docker_host=self.params.docker_host if self.params else None,
                docker_binary=settings.docker_binary,
                timeout=self.config.timeout_seconds,
            )
        return self._manager

    @property
    def project_name(self) -> str:
        if self.config.project_name:
            return self.config.project_name
        if self.params is None:
            return ""
        return project_name_for(self.params)

    def _specs(self) -> list[ServiceSpec]:
        assert self.params is not None
        return get_service_specs(self.params, self.config.targets)

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def run(self) -> DeploymentResult:
        """Execute the deployment operation."""
        mode = self.config.mode
        result = DeploymentResult(run_id=self.config.run_id, mode=mode.value)

        with LogContext(run_id=self.config.run_id, mode=mode.value):
            logger.info("deploy.started", targets=self.config.targets or "all")
            try:
                self._run_mode(mode, result)
            except ConvoyError as e:
                result.error = e.message
            except Exception as e:
                logger.exception("deploy.unexpected_error")
                result.error = f"{type(e).__name__}: {e}"

            result.mark_complete()
            self._write_reports(result)
            logger.info(
                "deploy.complete",
                status=result.overall_status.value,
                summary=result.summary,
                duration_seconds=round(result.duration_seconds, 2),
            )
        return result

    def _run_mode(self, mode: DeploymentMode, result: DeploymentResult) -> None:
        self._step(result, "validate", self._validate)
        result.project_name = self.project_name
        result.docker_host = self.manager.docker_host
        if mode in _REUSE_RENDER_MODES:
            self._step(result, "locate", lambda: self._locate(result))
        else:
            self._step(result, "render", lambda: self._render(result))

        if mode == DeploymentMode.UP:
            self._converge(result)
            self._collect_status(result)
        elif mode == DeploymentMode.DOWN:
            self._step(result, "stop", self._stop)
        elif mode == DeploymentMode.RESTART:
            self._step(result, "stop", self._stop)
            self._converge(result)
            self._collect_status(result)
        elif mode == DeploymentMode.STATUS:
            self._collect_status(result)
        elif mode == DeploymentMode.LOGS:
            self._step(result, "logs", lambda: self._collect_logs(result))
        else:
            raise ConvergeError(f"Unknown mode: {mode}")

    def _converge(self, result: DeploymentResult) -> None:
        self._step(result, "network", self._network)
        self._step(result, "volumes", self._volumes)
        self._step(result, "pull", self._pull)
        self._step(result, "services", self._services)
        self._step(result, "health", self._health)
        self._step(result, "readiness", lambda: self._readiness(result))

    def _step(
        self,
        result: DeploymentResult,
        name: str,
        action: Callable[[], StepOutcome],
    ) -> None:
        """Run one step and record it. Re-raises after recording a failure."""
        start = time.monotonic()
        try:
            status, detail = action()
        except ConvoyError as e:
            duration_ms = (time.monotonic() - start) * 1000
            e.with_context(step=name, run_id=self.config.run_id)
            result.record_step(name, StepStatus.FAILED, duration_ms=duration_ms, error=e.message)
            logger.error("step.failed", step=name, error=e.message, **e.context.to_dict())
            raise
        duration_ms = (time.monotonic() - start) * 1000
        result.record_step(name, status, detail=detail, duration_ms=duration_ms)
        logger.info("step.complete", step=name, status=status.value, detail=detail)

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def _validate(self) -> StepOutcome:
        if self.params is None:
            self.params = load_params(self.config.params_file)
        if self.config.image_tag:
            self.params = with_image_tag(self.params, self.config.image_tag)
        # Fails early on an unknown --target
        self._specs()
        version = self.manager.server_version()
        host = self.manager.docker_host or "local daemon"
        return StepStatus.OK, f"docker {version} on {host}"

    def _render(self, result: DeploymentResult) -> StepOutcome:
        assert self.params is not None
        rendered = render_bundle(self.params, self.config.render_dir, self.config.project_name)
        result.rendered = rendered
        compose_path = rendered.path_for("compose")
        if compose_path is None:
            raise ConvergeError("render produced no compose file")
        self._compose_file = Path(compose_path)
        changed = [Path(f.path).name for f in rendered.files if f.changed]
        if changed:
            return StepStatus.CHANGED, f"wrote {', '.join(changed)}"
        return StepStatus.OK, f"{len(rendered.files)} files up to date"

    def _locate(self, result: DeploymentResult) -> StepOutcome:
        """Use the compose file from the last render; render only if there is none."""
        existing = Path(self.config.render_dir) / COMPOSE_FILENAME
        if existing.is_file():
            self._compose_file = existing
            return StepStatus.OK, f"using {existing}"
        return self._render(result)

    def _network(self) -> StepOutcome:
        assert self.params is not None and self.params.network
        if self.manager.ensure_network(self.params.network):
            return StepStatus.CHANGED, f"created {self.params.network}"
        return StepStatus.OK, f"{self.params.network} exists"

    def _volumes(self) -> StepOutcome:
        volumes = sorted({v for spec in self._specs() for v in spec.volumes})
        if not volumes:
            return StepStatus.OK, "no volumes"
        created = [v for v in volumes if self.manager.ensure_volume(v)]
        if created:
            return StepStatus.CHANGED, f"created {', '.join(created)}"
        return StepStatus.OK, f"{len(volumes)} volumes exist"

    def _pull(self) -> StepOutcome:
        if not self.config.pull:
            return StepStatus.SKIPPED, "pull disabled"
        images = list(dict.fromkeys(spec.image for spec in self._specs()))
        updated = [image for image in images if self.manager.pull_image(image)]
        if updated:
            return StepStatus.CHANGED, f"updated {', '.join(updated)}"
        return StepStatus.OK, f"{len(images)} images current"

    def _services(self) -> StepOutcome:
        assert self._compose_file is not None
        proc = self.manager.compose_up(
            self._compose_file,
            project_name=self.project_name,
            services=self.config.targets or None,
            remove_orphans=self.config.remove_orphans,
        )
        output = f"{proc.stdout}\n{proc.stderr}"
        names = [spec.name for spec in self._specs()]
        if _COMPOSE_CHANGE_RE.search(output):
            return StepStatus.CHANGED, f"converged {', '.join(names)}"
        return StepStatus.OK, f"{len(names)} services unchanged"

    def _health(self) -> StepOutcome:
        if not self.config.wait:
            return StepStatus.SKIPPED, "wait disabled"
        checked = [spec for spec in self._specs() if spec.has_healthcheck]
        for spec in checked:
            self.manager.wait_for_healthy(
                container_name_for(self.project_name, spec.name),
                timeout=self.config.startup_timeout_seconds,
            )
        if not checked:
            return StepStatus.SKIPPED, "no healthchecks"
        return StepStatus.OK, f"{len(checked)} healthy"

    def _readiness(self, result: DeploymentResult) -> StepOutcome:
        assert self.params is not None
        if not self.config.check_readiness:
            return StepStatus.SKIPPED, "readiness disabled"
        if not self.params.proxy.enabled and not self.params.health.url:
            return StepStatus.SKIPPED, "no public endpoint"

        probe = self._probe or probe_from_params(self.params)
        readiness = probe.wait()
        result.readiness = readiness
        if not readiness.ready:
            raise ReadinessError(
                f"{readiness.url} not ready after {readiness.attempts} attempts: "
                f"{readiness.last_error}",
                retryable=False,
            ).with_context(url=readiness.url)
        return StepStatus.OK, f"{readiness.url} ready after {readiness.attempts} attempts"

    def _stop(self) -> StepOutcome:
        assert self._compose_file is not None
        if self.config.targets:
            # dependencies of the targets stay up
            self.manager.compose_remove(
                self._compose_file,
                self.config.targets,
                project_name=self.project_name,
            )
            return StepStatus.CHANGED, f"stopped {', '.join(self.config.targets)}"
        self.manager.compose_down(
            self._compose_file,
            project_name=self.project_name,
            remove_orphans=self.config.remove_orphans,
        )
        return StepStatus.CHANGED, f"stopped {self.project_name}"

    def _collect_logs(self, result: DeploymentResult) -> StepOutcome:
        assert self._compose_file is not None
        collector = LogCollector(self.config.output_dir, self.config.run_id)
        specs = self._specs()
        for spec in specs:
            text = self.manager.compose_logs(
                self._compose_file,
                spec.name,
                project_name=self.project_name,
                tail=self.config.log_tail,
            )
            path = collector.capture_service_logs(spec.name, text)
            result.artifacts.append(str(path))
        return StepStatus.OK, f"captured {len(specs)} services"

    # ------------------------------------------------------------------
    # Status and reports
    # ------------------------------------------------------------------

    def _collect_status(self, result: DeploymentResult) -> None:
        """Populate ``result.services`` from ``compose ps``."""
        assert self._compose_file is not None
        wanted = {spec.name for spec in self._specs()}
        seen: set[str] = set()

        for data in self.manager.compose_ps(self._compose_file, self.project_name):
            name = data.get("Service") or data.get("Name", "unknown")
            if name not in wanted:
                continue
            seen.add(name)
            health = data.get("Health") or None
            result.services.append(
                ServiceStatus(
                    name=name,
                    container_id=data.get("ID") or None,
                    container_name=data.get("Name") or None,
                    image=data.get("Image") or None,
                    status=_map_compose_status(data.get("State", ""), health),
                    health=health,
                )
            )

        for name in sorted(wanted - seen):
            result.services.append(ServiceStatus(name=name, status="not_found"))

    def _write_reports(self, result: DeploymentResult) -> None:
        try:
            collector = LogCollector(self.config.output_dir, self.config.run_id)
            result.artifacts.extend(
                [
                    str(collector.run_dir / "summary.json"),
                    str(collector.run_dir / "report.html"),
                ]
            )
            collector.write_summary(result)
            collector.write_html_report(result)
        except OSError as e:
            logger.error("reports.write_failed", output_dir=str(self.config.output_dir), error=str(e))


def _map_compose_status(state: str, health: str | None = None) -> str:
    """Map Docker Compose state to our status values."""
    state = state.lower()
    health = (health or "").lower()
    if health == "unhealthy" or "unhealthy" in state:
        return "unhealthy"
    if state == "running":
        if health == "starting":
            return "starting"
        return "healthy" if health == "healthy" else "running"
    if state == "healthy":
        return state
    if "exit" in state or state == "dead":
        return "exited"
    if "starting" in state or "created" in state or "restarting" in state:
        return "starting"
    return "not_found"
