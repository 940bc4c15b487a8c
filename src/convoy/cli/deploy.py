"""
CLI: deployment commands.

Usage::

    convoy render                          # write compose, Caddyfile, CI workflow
    convoy up                              # converge the host, then verify
    convoy up --tag $GITHUB_SHA --no-readiness
    convoy wait                            # poll the public endpoint
    convoy status                          # service table
    convoy logs -t api                     # capture service logs
    convoy down                            # stop services (volumes survive)
    convoy restart                         # down then up

    convoy services                        # list services from the params
    convoy clean                           # remove stopped convoy containers
"""

from __future__ import annotations

import json
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from convoy.config import DeploymentConfig, DeploymentMode, get_settings
from convoy.core.errors import ConvoyError
from convoy.params import BlueprintParams, load_params, with_image_tag
from convoy.results import DeploymentResult, OverallStatus, StepStatus

console = Console()
err_console = Console(stderr=True)

_PARAMS_HELP = "Parameter file (default: $CONVOY_PARAMS_FILE or convoy.yml)."


def _params_path(params_file: Path | None) -> Path:
    return params_file or get_settings().params_file


def _load(params_file: Path | None, tag: str | None = None) -> BlueprintParams:
    try:
        params = load_params(_params_path(params_file))
    except ConvoyError as e:
        err_console.print(f"[bold red]Error[/bold red]: {e.message}")
        raise typer.Exit(code=1) from e
    return with_image_tag(params, tag) if tag else params


def _run(config: DeploymentConfig, json_out: bool) -> DeploymentResult:
    from convoy.workflow import DeploymentRunner

    result = DeploymentRunner(config).run()

    if json_out:
        typer.echo(result.model_dump_json(indent=2))
    else:
        _print_deployment_result(result)

    if result.overall_status in (OverallStatus.FAILED, OverallStatus.ERROR):
        raise typer.Exit(code=1)
    return result


def _config(mode: DeploymentMode, params_file: Path | None, **kwargs: object) -> DeploymentConfig:
    settings = get_settings()
    values: dict[str, object] = {
        "mode": mode,
        "params_file": _params_path(params_file),
        "render_dir": settings.render_dir,
        "output_dir": settings.output_dir,
        "timeout_seconds": settings.command_timeout_seconds,
    }
    values.update({k: v for k, v in kwargs.items() if v is not None})
    return DeploymentConfig(**values)  # type: ignore[arg-type]


# ── Render ───────────────────────────────────────────────────────────────


def render(
    params_file: Path | None = typer.Option(None, "--params", "-p", help=_PARAMS_HELP),
    output: Path | None = typer.Option(None, "--output", "-o", help="Directory for rendered files."),
    project: str | None = typer.Option(None, "--project-name", help="Compose project name."),
    tag: str | None = typer.Option(None, "--tag", help="Image tag for services built by CI."),
    json_out: bool = typer.Option(False, "--json", help="Output as JSON."),
) -> None:
    """Render the compose file, proxy config and CI workflow."""
    from convoy.render import render_bundle

    params = _load(params_file, tag)
    try:
        rendered = render_bundle(params, output or get_settings().render_dir, project)
    except ConvoyError as e:
        err_console.print(f"[bold red]Error[/bold red]: {e.message}")
        raise typer.Exit(code=1) from e

    if json_out:
        typer.echo(rendered.model_dump_json(indent=2))
        return

    table = Table(title=f"Rendered into {rendered.output_dir}")
    table.add_column("File", style="bold cyan")
    table.add_column("Kind")
    table.add_column("Changed")
    table.add_column("SHA-256")
    for f in rendered.files:
        table.add_row(
            f.path,
            f.kind,
            "[yellow]yes[/yellow]" if f.changed else "[dim]no[/dim]",
            f.sha256[:12],
        )
    console.print(table)


# ── Deploy up / down / restart ───────────────────────────────────────────


def deploy_up(
    params_file: Path | None = typer.Option(None, "--params", "-p", help=_PARAMS_HELP),
    target: list[str] = typer.Option([], "--target", "-t", help="Specific service(s) to start."),
    tag: str | None = typer.Option(None, "--tag", help="Image tag for services built by CI."),
    pull: bool = typer.Option(True, "--pull/--no-pull", help="Pull images before starting."),
    wait: bool = typer.Option(True, "--wait/--no-wait", help="Wait for container healthchecks."),
    readiness: bool = typer.Option(
        True, "--readiness/--no-readiness", help="Poll the public endpoint after start."
    ),
    project: str | None = typer.Option(None, "--project-name", help="Compose project name."),
    json_out: bool = typer.Option(False, "--json", help="Output as JSON."),
) -> None:
    """Converge the host: network, volumes, images, services, health, readiness."""
    config = _config(
        DeploymentMode.UP,
        params_file,
        targets=target,
        image_tag=tag,
        pull=pull,
        wait=wait,
        check_readiness=readiness,
        project_name=project,
    )
    if not json_out:
        console.print(f"[bold green]▲ convoy up[/] — run_id: {config.run_id}")
    _run(config, json_out)


def deploy_down(
    params_file: Path | None = typer.Option(None, "--params", "-p", help=_PARAMS_HELP),
    project: str | None = typer.Option(None, "--project-name", help="Compose project name."),
    json_out: bool = typer.Option(False, "--json", help="Output as JSON."),
) -> None:
    """Stop and remove services. Named volumes are kept."""
    config = _config(DeploymentMode.DOWN, params_file, project_name=project)
    if not json_out:
        console.print("[bold red]▼ convoy down[/]")
    _run(config, json_out)


def deploy_restart(
    params_file: Path | None = typer.Option(None, "--params", "-p", help=_PARAMS_HELP),
    target: list[str] = typer.Option([], "--target", "-t", help="Specific service(s)."),
    tag: str | None = typer.Option(None, "--tag", help="Image tag for services built by CI."),
    project: str | None = typer.Option(None, "--project-name", help="Compose project name."),
    json_out: bool = typer.Option(False, "--json", help="Output as JSON."),
) -> None:
    """Restart services: stop (only the targets, if given) then up."""
    config = _config(
        DeploymentMode.RESTART,
        params_file,
        targets=target,
        image_tag=tag,
        project_name=project,
    )
    if not json_out:
        console.print("[bold yellow]↻ convoy restart[/]")
    _run(config, json_out)


def deploy_status(
    params_file: Path | None = typer.Option(None, "--params", "-p", help=_PARAMS_HELP),
    project: str | None = typer.Option(None, "--project-name", help="Compose project name."),
    json_out: bool = typer.Option(False, "--json", help="Output as JSON."),
) -> None:
    """Check status of deployed services."""
    config = _config(DeploymentMode.STATUS, params_file, project_name=project)
    _run(config, json_out)


def deploy_logs(
    params_file: Path | None = typer.Option(None, "--params", "-p", help=_PARAMS_HELP),
    target: list[str] = typer.Option([], "--target", "-t", help="Service(s) to collect."),
    tail: int = typer.Option(200, "--tail", "-n", help="Number of lines per service."),
    project: str | None = typer.Option(None, "--project-name", help="Compose project name."),
    json_out: bool = typer.Option(False, "--json", help="Output as JSON."),
) -> None:
    """Collect service logs into the run directory."""
    config = _config(
        DeploymentMode.LOGS,
        params_file,
        targets=target,
        log_tail=tail,
        project_name=project,
    )
    result = _run(config, json_out)
    if not json_out:
        for path in result.artifacts:
            console.print(f"  [dim]{path}[/dim]")


# ── Readiness ────────────────────────────────────────────────────────────


def wait(
    params_file: Path | None = typer.Option(None, "--params", "-p", help=_PARAMS_HELP),
    url: str | None = typer.Option(None, "--url", help="Override the endpoint URL."),
    attempts: int | None = typer.Option(None, "--attempts", "-a", min=1, help="Maximum attempts."),
    interval: float | None = typer.Option(None, "--interval", "-i", min=0, help="Seconds between attempts."),
    json_out: bool = typer.Option(False, "--json", help="Output as JSON."),
) -> None:
    """Poll the public endpoint until it answers or the attempt budget runs out."""
    from convoy.readiness import ReadinessProbe

    params = _load(params_file)
    health = params.health
    probe = ReadinessProbe(
        url or params.health_url(),
        attempts=attempts or health.attempts,
        interval_seconds=interval if interval is not None else health.interval_seconds,
        timeout_seconds=health.timeout_seconds,
        expected_status=health.expected_status,
    )
    if not json_out:
        console.print(
            f"[bold]Waiting for[/] {probe.url} "
            f"({probe.attempts} attempts, {probe.interval_seconds:g}s apart)"
        )
    result = probe.wait()

    if json_out:
        typer.echo(result.model_dump_json(indent=2))
    elif result.ready:
        console.print(f"[green]✓ ready after {result.attempts} attempt(s)[/]")
    else:
        err_console.print(
            f"[red]✗ not ready after {result.attempts} attempt(s): {result.last_error}[/]"
        )

    if not result.ready:
        raise typer.Exit(code=1)


# ── Info commands ────────────────────────────────────────────────────────


def list_services(
    params_file: Path | None = typer.Option(None, "--params", "-p", help=_PARAMS_HELP),
    json_out: bool = typer.Option(False, "--json", help="Output as JSON."),
) -> None:
    """List the services a parameter file deploys."""
    from convoy.services import build_service_specs

    params = _load(params_file)
    specs = build_service_specs(params)

    if json_out:
        out = {
            spec.name: {
                "image": spec.image,
                "category": spec.category,
                "port": spec.internal_port,
                "public": spec.public,
                "path_prefix": spec.path_prefix if spec.public else None,
                "depends_on": list(spec.depends_on),
                "healthcheck": spec.healthcheck_path if spec.has_healthcheck else None,
            }
            for spec in specs
        }
        typer.echo(json.dumps(out, indent=2))
        return

    table = Table(title=f"Services for {params.project_id} ({params.environment})")
    table.add_column("Name", style="bold cyan")
    table.add_column("Image")
    table.add_column("Port")
    table.add_column("Route")
    table.add_column("Depends on")
    table.add_column("Healthcheck")

    for spec in specs:
        table.add_row(
            spec.name,
            spec.image,
            str(spec.internal_port or "—"),
            spec.path_prefix if spec.public else "—",
            ", ".join(spec.depends_on) or "—",
            spec.healthcheck_path if spec.has_healthcheck else "—",
        )

    console.print(table)


def clean(
    params_file: Path | None = typer.Option(None, "--params", "-p", help=_PARAMS_HELP),
    project: str | None = typer.Option(None, "--project-name", help="Limit to one compose project."),
) -> None:
    """Remove stopped convoy-managed containers on the host."""
    from convoy.container import ContainerManager

    params = _load(params_file)
    settings = get_settings()
    if not ContainerManager.is_docker_available(params.docker_host, settings.docker_binary):
        err_console.print("[red]Docker is not available.[/]")
        raise typer.Exit(code=1)

    mgr = ContainerManager(
        docker_host=params.docker_host,
        docker_binary=settings.docker_binary,
        timeout=settings.command_timeout_seconds,
    )
    removed = mgr.cleanup_orphans(project)
    console.print(f"[green]Removed {removed} stopped container(s).[/]")


# ── Output formatters ────────────────────────────────────────────────────


_STEP_STYLES = {
    StepStatus.OK: "green",
    StepStatus.CHANGED: "yellow",
    StepStatus.SKIPPED: "dim",
    StepStatus.FAILED: "red bold",
}


def _print_deployment_result(result: DeploymentResult) -> None:
    """Pretty-print a DeploymentResult."""
    if result.steps:
        steps = Table(title="Steps")
        steps.add_column("Step", style="bold")
        steps.add_column("Status")
        steps.add_column("Detail")
        steps.add_column("Time")
        for step in result.steps:
            style = _STEP_STYLES.get(step.status, "white")
            steps.add_row(
                step.name,
                f"[{style}]{step.status.value}[/{style}]",
                step.error or step.detail or "—",
                f"{step.duration_ms:.0f}ms",
            )
        console.print(steps)

    if result.services:
        table = Table(title="Service Status")
        table.add_column("Service", style="bold")
        table.add_column("Status")
        table.add_column("Container")
        table.add_column("Image")

        for svc in result.services:
            status_style = {
                "running": "green",
                "healthy": "green bold",
                "starting": "yellow",
                "unhealthy": "red",
                "exited": "red",
                "not_found": "dim",
            }.get(svc.status, "white")

            table.add_row(
                svc.name,
                f"[{status_style}]{svc.status}[/{status_style}]",
                svc.container_name or "—",
                svc.image or "—",
            )

        console.print(table)

    style = "green" if result.overall_status == OverallStatus.PASSED else "red"
    console.print(f"\n[bold {style}]{result.overall_status.value}[/] — {result.summary}")

    if result.error:
        err_console.print(f"\n[red]Error: {result.error}[/]")
