"""
CLI: ``convoy params`` — parameter file inspection and scaffolding.
"""

from __future__ import annotations

from pathlib import Path

import typer
from rich.table import Table

from convoy.cli.deploy import _PARAMS_HELP, _load, _params_path, console, err_console

app = typer.Typer(no_args_is_help=True)


@app.command("show")
def show_params(
    params_file: Path | None = typer.Option(None, "--params", "-p", help=_PARAMS_HELP),
    format: str = typer.Option("table", "--format", "-f", help="Output format: table, json, yaml"),
) -> None:
    """Show the validated parameter set with derived values filled in."""
    from convoy.params import dump_params

    params = _load(params_file)

    if format == "json":
        console.print_json(params.model_dump_json(exclude_none=True))
        return
    if format == "yaml":
        typer.echo(dump_params(params), nl=False)
        return

    table = Table(title=str(_params_path(params_file)))
    table.add_column("Key", style="bold")
    table.add_column("Value")
    table.add_row("project_id", params.project_id)
    table.add_row("region / zone", f"{params.region} / {params.zone}")
    table.add_row("environment", params.environment)
    table.add_row("registry", params.registry or "—")
    table.add_row("docker host", params.docker_host or "local")
    table.add_row("network", params.network or "—")
    table.add_row("services", ", ".join(s.name for s in params.services))
    table.add_row("volumes", ", ".join(params.volume_names()) or "—")
    table.add_row("secrets", ", ".join(params.secret_names()) or "—")
    table.add_row("readiness url", params.health_url())
    table.add_row(
        "readiness budget",
        f"{params.health.attempts} × {params.health.interval_seconds:g}s",
    )
    console.print(table)


@app.command("validate")
def validate_params(
    params_file: Path | None = typer.Option(None, "--params", "-p", help=_PARAMS_HELP),
) -> None:
    """Validate a parameter file; exit 1 with the problems if it is invalid."""
    params = _load(params_file)
    console.print(
        f"[green]✓ {_params_path(params_file)} is valid[/] — "
        f"{len(params.services)} services, project {params.project_id}"
    )


@app.command("init")
def init_params(
    path: Path = typer.Argument(Path("convoy.yml"), help="Where to write the example file."),
    force: bool = typer.Option(False, "--force", help="Overwrite an existing file."),
) -> None:
    """Write an example parameter file to start from."""
    from convoy.params import dump_params, example_params

    if path.exists() and not force:
        err_console.print(f"[red]{path} already exists[/] (use --force to overwrite)")
        raise typer.Exit(code=1)

    path.write_text(dump_params(example_params()), encoding="utf-8")
    console.print(f"[green]✓ wrote {path}[/]")
