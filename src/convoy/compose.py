"""Compose file generation for convoy.

Generates the ``docker-compose.yml`` that runs on the target host from the
parameter set. Nobody maintains the compose file by hand: the params are the
single source of truth, and re-rendering is cheap and deterministic.

Key Concepts:
    generate_compose: One compose service per ``ServiceSpec`` plus the
        reverse proxy; dependency ordering, healthchecks, labels.
    project_name_for: Default compose project (``{project}-{environment}``).
    container_name_for: Stable container name used by health polling.
    write_compose_file: Persists YAML string to disk.

Architecture Decisions:
    - YAML string output (not dict): Callers get a ready-to-write string
      with a human-readable header comment.
    - The Caddyfile is inlined as a compose ``configs`` entry, not a bind
      mount: with ``DOCKER_HOST=ssh://...`` bind paths would resolve on the
      remote VM, where the rendered file does not exist.
    - Network and volumes are ``external: true``: the convergence sequence
      creates them before ``compose up``, so ``compose down`` never deletes
      data volumes.
    - ``depends_on`` uses ``service_healthy`` when the dependency has a
      healthcheck, ``service_started`` otherwise.
    - Secrets are written as ``${NAME}`` references, resolved by compose
      from the deploy-time environment.

Related Modules:
    - :mod:`convoy.services` — Source of ServiceSpec
    - :mod:`convoy.render` — Writes the compose file next to the Caddyfile

Tags:
    compose, docker, yaml, generation, deployment
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

from convoy.core.logging import get_logger
from convoy.params import PROXY_SERVICE_NAME, BlueprintParams
from convoy.proxy import render_caddyfile
from convoy.services import ServiceSpec, build_service_specs

logger = get_logger(__name__)

LABEL_PREFIX = "convoy"


def _yaml_dumps(data: dict[str, Any]) -> str:
    return yaml.safe_dump(data, default_flow_style=False, sort_keys=False, allow_unicode=True)


def project_name_for(params: BlueprintParams) -> str:
    """Default compose project name for a parameter set."""
    return f"{params.project_id}-{params.environment}"


def container_name_for(project: str, service: str) -> str:
    return f"{project}-{service}"


def healthcheck_block(spec: ServiceSpec) -> dict[str, Any]:
    """Compose healthcheck for an HTTP service."""
    return {
        "test": [
            "CMD-SHELL",
            f"wget -qO- http://localhost:{spec.internal_port}{spec.healthcheck_path} || exit 1",
        ],
        "interval": "10s",
        "timeout": "5s",
        "retries": 5,
        "start_period": "30s",
    }


# ---------------------------------------------------------------------------
# Deployment compose generation
# ---------------------------------------------------------------------------


def generate_compose(
    params: BlueprintParams,
    project_name: str | None = None,
) -> str:
    """Generate the compose YAML for a deployment.

    Parameters
    ----------
    params
        Validated parameter set.
    project_name
        Compose project name. Defaults to ``project_name_for(params)``.

    Returns
    -------
    str
        YAML string ready to write to a file.
    """
    project = project_name or project_name_for(params)
    network = params.network or f"{params.project_id}-net"
    specs = build_service_specs(params)
    by_name = {s.name: s for s in specs}

    compose: dict[str, Any] = {
        "name": project,
        "services": {},
        "networks": {
            network: {"external": True},
        },
        "volumes": {},
    }

    for spec in specs:
        service: dict[str, Any] = {
            "image": spec.image,
            "container_name": container_name_for(project, spec.name),
            "networks": [network],
            "labels": [
                f"{LABEL_PREFIX}.project={project}",
                f"{LABEL_PREFIX}.service={spec.name}",
                f"{LABEL_PREFIX}.environment={params.environment}",
                f"{LABEL_PREFIX}.category={spec.category}",
            ],
            "restart": "unless-stopped",
        }

        if spec.command:
            service["command"] = spec.command

        # Environment: literal values first, secret references last
        env: dict[str, str] = dict(spec.env)
        for name in spec.secrets:
            env[name] = f"${{{name}}}"
        if env:
            service["environment"] = env

        if spec.depends_on:
            service["depends_on"] = {
                dep: {
                    "condition": "service_healthy"
                    if by_name[dep].has_healthcheck
                    else "service_started"
                }
                for dep in spec.depends_on
            }

        if spec.has_healthcheck:
            service["healthcheck"] = healthcheck_block(spec)

        mounts: list[str] = []
        for vol_name, mount_path in spec.volumes.items():
            mounts.append(f"{vol_name}:{mount_path}")
            compose["volumes"][vol_name] = {"external": True}

        if spec.name == PROXY_SERVICE_NAME:
            service["ports"] = [
                f"{params.proxy.http_port}:80",
                f"{params.proxy.https_port}:443",
            ]
            service["configs"] = [
                {"source": "caddyfile", "target": "/etc/caddy/Caddyfile"},
            ]
            compose["configs"] = {"caddyfile": {"content": render_caddyfile(params)}}

        if mounts:
            service["volumes"] = mounts

        for key, value in spec.labels.items():
            service["labels"].append(f"{key}={value}")

        compose["services"][spec.name] = service

    if not compose["volumes"]:
        del compose["volumes"]

    header = (
        f"# Generated by convoy for {params.project_id} ({params.environment})\n"
        f"# Project:  {project}\n"
        f"# Services: {', '.join(s.name for s in specs)}\n"
        f"# Do not edit: change the parameter file and re-render.\n\n"
    )
    return header + _yaml_dumps(compose)


# ---------------------------------------------------------------------------
# Compose file operations
# ---------------------------------------------------------------------------


def write_compose_file(content: str, output_path: str | Path) -> Path:
    """Write compose YAML to a file and return its path."""
    path = Path(output_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    logger.info("compose.written", path=str(path))
    return path
