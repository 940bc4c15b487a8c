"""Service specifications derived from the parameter set.

``ServiceSpec`` is the immutable, fully-resolved description of one
container: image reference, port, healthcheck, dependencies. Compose
generation and convergence both work from specs, never from raw params, so
image resolution and dependency ordering happen in one place.

Key Concepts:
    ServiceSpec: Frozen dataclass for one deployable container.
    build_service_specs(): params -> specs, proxy appended last.
    get_service_specs(): subset for ``--target`` with transitive deps,
        in dependency order.

Tags:
    services, specs, registry, dependencies, compose
"""

from __future__ import annotations

from dataclasses import dataclass, field

from convoy.core.errors import ParamsError
from convoy.params import PROXY_SERVICE_NAME, BlueprintParams


@dataclass(frozen=True)
class ServiceSpec:
    """Specification for a deployable service container."""

    name: str
    """Service identifier (compose service name and DNS name on the network)."""

    category: str
    """Service category: app or infra."""

    image: str
    """Fully-resolved image reference."""

    internal_port: int | None = None
    """Port the container listens on."""

    healthcheck_path: str | None = None
    """HTTP path probed inside the container (None = no healthcheck)."""

    env: dict[str, str] = field(default_factory=dict)
    """Environment variables."""

    secrets: tuple[str, ...] = ()
    """Environment variable names supplied at deploy time."""

    depends_on: tuple[str, ...] = ()
    """Service dependencies."""

    volumes: dict[str, str] = field(default_factory=dict)
    """Named volume -> container path."""

    command: str | None = None
    """Command override."""

    public: bool = False
    """Routed through the reverse proxy."""

    path_prefix: str = "/"
    """Proxy path prefix for public services."""

    labels: dict[str, str] = field(default_factory=dict)
    """Extra docker labels."""

    @property
    def has_healthcheck(self) -> bool:
        return bool(self.healthcheck_path and self.internal_port)


def build_service_specs(params: BlueprintParams) -> list[ServiceSpec]:
    """Resolve every service in ``params`` (plus the proxy) into specs."""
    specs = [
        ServiceSpec(
            name=svc.name,
            category="app",
            image=params.image_ref(svc),
            internal_port=svc.port,
            healthcheck_path=svc.healthcheck_path,
            env=dict(svc.env),
            secrets=tuple(svc.secrets),
            depends_on=tuple(svc.depends_on),
            volumes=dict(svc.volumes),
            command=svc.command,
            public=svc.public,
            path_prefix=svc.path_prefix,
        )
        for svc in params.services
    ]

    if params.proxy.enabled:
        specs.append(
            ServiceSpec(
                name=PROXY_SERVICE_NAME,
                category="infra",
                image=params.proxy.image,
                depends_on=tuple(s.name for s in params.public_services()),
                volumes={
                    f"{params.project_id}-caddy-data": "/data",
                    f"{params.project_id}-caddy-config": "/config",
                },
            )
        )
    return specs


def get_service_specs(
    params: BlueprintParams,
    targets: list[str] | None = None,
) -> list[ServiceSpec]:
    """Return specs for ``targets`` and their dependencies, dependencies first.

    Parameters
    ----------
    params
        Validated parameter set.
    targets
        Service names. Empty or None selects every service.

    Raises
    ------
    ParamsError
        If a target name is not a known service.
    """
    specs = build_service_specs(params)
    by_name = {s.name: s for s in specs}

    if targets:
        unknown = [t for t in targets if t not in by_name]
        if unknown:
            available = ", ".join(by_name)
            raise ParamsError(f"Unknown service(s): {', '.join(unknown)}. Available: {available}")
        roots = list(targets)
    else:
        roots = list(by_name)

    ordered: list[ServiceSpec] = []
    seen: set[str] = set()

    def visit(name: str) -> None:
        if name in seen:
            return
        seen.add(name)
        for dep in by_name[name].depends_on:
            visit(dep)
        ordered.append(by_name[name])

    for name in roots:
        visit(name)
    return ordered
