"""Parameter set for a convoy deployment.

The parameter set is the key-value table a human fills in once per
project: project id, region, zone, the services to run, the host they run
on, and how the public endpoint is reached. Every rendered artifact and every
convergence step is derived from it; nothing else is hand-edited.

Key Concepts:
    BlueprintParams: Root model. Loaded from YAML with ``load_params()``.
    ServiceParams: One container service (image, port, env, secrets, volumes).
    RemoteHost: Target VM reached through ``DOCKER_HOST=ssh://...``.
    ProxyParams: Reverse proxy container and public domain.
    HealthParams: External readiness endpoint and retry budget
        (10 attempts, 10 seconds apart by default).
    CIParams: Names used when rendering the CI workflow.

Architecture Decisions:
    - Pydantic v2 models: validation errors surface as one ``ParamsError``
      with the offending path attached.
    - Secrets are names, never values: rendered files reference ``${NAME}``
      and the value is supplied by the CI secret store at deploy time.
    - Registry defaults to Artifact Registry naming
      (``{region}-docker.pkg.dev/{project}/{repository}``). This is string
      formatting only; convoy never calls a cloud API.

Example::

    params = load_params("convoy.yml")
    params.image_ref(params.get_service("api"))
    # 'europe-west1-docker.pkg.dev/acme-prod/apps/api:latest'

Tags:
    params, configuration, pydantic, yaml, blueprint
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from convoy.core.errors import ParamsError

_PROJECT_ID_RE = re.compile(r"^[a-z][a-z0-9-]{4,28}[a-z0-9]$")
_DNS_LABEL_RE = re.compile(r"^[a-z0-9]([a-z0-9-]{0,61}[a-z0-9])?$")
_ENV_NAME_RE = re.compile(r"^[A-Z_][A-Z0-9_]*$")

PROXY_SERVICE_NAME = "proxy"


class RemoteHost(BaseModel):
    """The VM that runs the containers."""

    address: str = Field(description="Hostname or IP address of the VM")
    ssh_user: str = Field(default="deploy", description="SSH user with docker access")
    ssh_port: int = Field(default=22, ge=1, le=65535)

    @property
    def docker_host(self) -> str:
        """``DOCKER_HOST`` value that tunnels the docker CLI over SSH."""
        suffix = f":{self.ssh_port}" if self.ssh_port != 22 else ""
        return f"ssh://{self.ssh_user}@{self.address}{suffix}"


class ServiceParams(BaseModel):
    """One container service in the deployment."""

    name: str
    image: str = Field(
        description="Bare name resolved against the registry, or a full reference (with '/', ':' or '@')"
    )
    tag: str = "latest"
    port: int | None = Field(default=None, ge=1, le=65535, description="Internal container port")
    public: bool = False
    path_prefix: str = "/"
    env: dict[str, str] = Field(default_factory=dict)
    secrets: list[str] = Field(default_factory=list)
    volumes: dict[str, str] = Field(default_factory=dict, description="named volume -> mount path")
    depends_on: list[str] = Field(default_factory=list)
    healthcheck_path: str | None = "/health"
    command: str | None = None
    build_context: str | None = None

    @field_validator("name")
    @classmethod
    def _valid_name(cls, v: str) -> str:
        if not _DNS_LABEL_RE.match(v):
            raise ValueError(f"service name {v!r} must be a lowercase DNS label")
        return v

    @field_validator("path_prefix")
    @classmethod
    def _valid_prefix(cls, v: str) -> str:
        if not v.startswith("/"):
            raise ValueError("path_prefix must start with '/'")
        return v.rstrip("/") or "/"

    @field_validator("secrets")
    @classmethod
    def _valid_secrets(cls, v: list[str]) -> list[str]:
        for name in v:
            if not _ENV_NAME_RE.match(name):
                raise ValueError(f"secret name {name!r} must be an UPPER_SNAKE env var name")
        return v

    @model_validator(mode="after")
    def _public_needs_port(self) -> ServiceParams:
        if self.public and self.port is None:
            raise ValueError(f"public service {self.name!r} needs a port")
        return self


class ProxyParams(BaseModel):
    """Reverse proxy in front of the public services."""

    enabled: bool = True
    image: str = "caddy:2"
    http_port: int = 80
    https_port: int = 443
    domain: str | None = None
    acme_email: str | None = None


class HealthParams(BaseModel):
    """External readiness check run after the services are up."""

    url: str | None = None
    path: str = "/health"
    attempts: int = Field(default=10, ge=1)
    interval_seconds: float = Field(default=10.0, ge=0)
    timeout_seconds: float = Field(default=5.0, gt=0)
    expected_status: int = 200


class CIParams(BaseModel):
    """Names used in the rendered CI workflow."""

    branch: str = "main"
    workflow_name: str = "deploy"
    registry_secret: str = "REGISTRY_CREDENTIALS"
    ssh_key_secret: str = "DEPLOY_SSH_KEY"
    python_version: str = "3.12"
    params_path: str = "convoy.yml"
    install_spec: str = Field(
        default=".",
        description="pip requirement for convoy in the deploy job (checkout path, VCS URL or pinned version)",
    )


class BlueprintParams(BaseModel):
    """The full parameter table for one project/environment."""

    project_id: str
    region: str
    zone: str
    environment: str = "production"
    repository: str = "apps"
    registry: str | None = None
    host: RemoteHost | None = None
    network: str | None = None
    services: list[ServiceParams] = Field(min_length=1)
    proxy: ProxyParams = Field(default_factory=ProxyParams)
    health: HealthParams = Field(default_factory=HealthParams)
    ci: CIParams = Field(default_factory=CIParams)

    @field_validator("project_id")
    @classmethod
    def _valid_project_id(cls, v: str) -> str:
        if not _PROJECT_ID_RE.match(v):
            raise ValueError(
                f"project_id {v!r} must be 6-30 chars of lowercase letters, digits and hyphens"
            )
        return v

    @model_validator(mode="after")
    def _check_consistency(self) -> BlueprintParams:
        if not self.zone.startswith(self.region):
            raise ValueError(f"zone {self.zone!r} is not in region {self.region!r}")

        names = [s.name for s in self.services]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ValueError(f"duplicate service names: {', '.join(duplicates)}")

        if self.proxy.enabled and PROXY_SERVICE_NAME in names:
            raise ValueError(f"service name {PROXY_SERVICE_NAME!r} is reserved for the reverse proxy")

        known = set(names)
        for svc in self.services:
            missing = [d for d in svc.depends_on if d not in known]
            if missing:
                raise ValueError(f"service {svc.name!r} depends on unknown {missing}")

        _check_acyclic({s.name: s.depends_on for s in self.services})

        if not self.registry:
            self.registry = (
                f"{self.region}-docker.pkg.dev/{self.project_id}/{self.repository}"
            )
        if not self.network:
            self.network = f"{self.project_id}-net"
        return self

    # ------------------------------------------------------------------
    # Derived values
    # ------------------------------------------------------------------

    @property
    def registry_host(self) -> str:
        return (self.registry or "").split("/", 1)[0]

    @property
    def docker_host(self) -> str | None:
        return self.host.docker_host if self.host else None

    def image_ref(self, service: ServiceParams) -> str:
        """Full image reference for a service."""
        if any(c in service.image for c in "/:@"):
            image = service.image
        else:
            image = f"{self.registry}/{service.image}"
        # A tag or digest already in the reference wins
        last = image.rsplit("/", 1)[-1]
        if ":" in last or "@" in last:
            return image
        return f"{image}:{service.tag}"

    def get_service(self, name: str) -> ServiceParams:
        for svc in self.services:
            if svc.name == name:
                return svc
        available = ", ".join(s.name for s in self.services)
        raise ParamsError(f"Unknown service: {name!r}. Available: {available}")

    def volume_names(self) -> list[str]:
        return sorted({v for s in self.services for v in s.volumes})

    def public_services(self) -> list[ServiceParams]:
        return [s for s in self.services if s.public]

    def secret_names(self) -> list[str]:
        """All secret names in declaration order, without duplicates."""
        seen: dict[str, None] = {}
        for svc in self.services:
            for name in svc.secrets:
                seen.setdefault(name)
        return list(seen)

    def health_url(self) -> str:
        """URL polled by the readiness check."""
        if self.health.url:
            return self.health.url
        if self.proxy.domain:
            return f"https://{self.proxy.domain}{self.health.path}"
        address = self.host.address if self.host else "localhost"
        port = "" if self.proxy.http_port == 80 else f":{self.proxy.http_port}"
        return f"http://{address}{port}{self.health.path}"


def with_image_tag(params: BlueprintParams, tag: str) -> BlueprintParams:
    """Copy of ``params`` with ``tag`` applied to every service built by CI."""
    services = [
        svc.model_copy(update={"tag": tag}) if svc.build_context else svc
        for svc in params.services
    ]
    return params.model_copy(update={"services": services})


def _check_acyclic(graph: dict[str, list[str]]) -> None:
    visiting: set[str] = set()
    done: set[str] = set()

    def visit(node: str, trail: list[str]) -> None:
        if node in done:
            return
        if node in visiting:
            cycle = " -> ".join([*trail[trail.index(node):], node])
            raise ValueError(f"dependency cycle: {cycle}")
        visiting.add(node)
        for dep in graph.get(node, []):
            visit(dep, [*trail, node])
        visiting.discard(node)
        done.add(node)

    for name in graph:
        visit(name, [])


# ---------------------------------------------------------------------------
# Loading / dumping
# ---------------------------------------------------------------------------


def parse_params(data: Any, source: str = "<params>") -> BlueprintParams:
    """Validate a mapping into ``BlueprintParams``."""
    if not isinstance(data, dict):
        raise ParamsError(f"{source}: expected a mapping at the top level").with_context(
            path=source
        )
    try:
        return BlueprintParams.model_validate(data)
    except ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or '<root>'}: {err['msg']}"
            for err in exc.errors()
        )
        raise ParamsError(f"{source}: {problems}", cause=exc).with_context(path=source) from exc


def load_params(path: str | Path) -> BlueprintParams:
    """Load and validate a YAML parameter file.

    Raises
    ------
    ParamsError
        If the file is missing, is not valid YAML, or fails validation.
    """
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        raise ParamsError(f"Parameter file not found: {path}", cause=exc).with_context(
            path=str(path)
        ) from exc
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ParamsError(f"{path}: invalid YAML: {exc}", cause=exc).with_context(
            path=str(path)
        ) from exc
    return parse_params(data, source=str(path))


def dump_params(params: BlueprintParams) -> str:
    """Serialize params to YAML (round-trips through ``load_params``)."""
    data = params.model_dump(mode="json", exclude_defaults=True)
    return yaml.safe_dump(data, sort_keys=False, allow_unicode=True)


def example_params() -> BlueprintParams:
    """A small, valid parameter set used by ``convoy params init``."""
    return BlueprintParams(
        project_id="acme-prod",
        region="europe-west1",
        zone="europe-west1-b",
        host=RemoteHost(address="203.0.113.10"),
        services=[
            ServiceParams(
                name="api",
                image="api",
                port=8000,
                public=True,
                path_prefix="/api",
                env={"LOG_LEVEL": "info"},
                secrets=["DATABASE_URL"],
                depends_on=["cache"],
                build_context="services/api",
            ),
            ServiceParams(
                name="web",
                image="web",
                port=3000,
                public=True,
                build_context="services/web",
            ),
            ServiceParams(
                name="cache",
                image="redis:7-alpine",
                port=6379,
                volumes={"cache-data": "/data"},
                healthcheck_path=None,
            ),
        ],
        proxy=ProxyParams(domain="app.example.com", acme_email="ops@example.com"),
    )
