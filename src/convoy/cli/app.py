"""
Root Typer application for the convoy CLI.

Deployment commands live at the top level (``convoy up``, ``convoy wait``);
parameter-file helpers are grouped under ``convoy params``.
"""

from __future__ import annotations

from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as pkg_version

import typer
from typer import Typer

from convoy import __version__
from convoy.config import get_settings
from convoy.core.logging import configure_logging

app = Typer(
    name="convoy",
    help="convoy — render, converge and verify container deployments on a remote VM.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        try:
            v = pkg_version("convoy")
        except PackageNotFoundError:
            v = __version__
        typer.echo(f"convoy {v}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(  # noqa: UP007
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging."),
) -> None:
    """convoy CLI — deploy a parameter set to its host and wait until it answers."""
    settings = get_settings()
    configure_logging(
        level="DEBUG" if verbose else settings.log_level,
        json_format=settings.json_logs,
    )


# ── Command registration ─────────────────────────────────────────────────

from convoy.cli import deploy  # noqa: E402
from convoy.cli.params import app as params_app  # noqa: E402

app.command("render")(deploy.render)
app.command("up")(deploy.deploy_up)
app.command("down")(deploy.deploy_down)
app.command("restart")(deploy.deploy_restart)
app.command("status")(deploy.deploy_status)
app.command("logs")(deploy.deploy_logs)
app.command("wait")(deploy.wait)
app.command("services")(deploy.list_services)
app.command("clean")(deploy.clean)

app.add_typer(params_app, name="params", help="Parameter file helpers.")
