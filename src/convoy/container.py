"""Docker and docker compose operations for convoy.

Drives the target host via the ``docker`` CLI (subprocess). A remote VM is
reached by setting ``DOCKER_HOST=ssh://user@host`` in the child process
environment; the same code path serves a local daemon when no host is set.

Key Concepts:
    ContainerManager: ``ensure_network()``, ``ensure_volume()``,
        ``pull_image()``, ``compose_up()``, ``compose_ps()``,
        ``wait_for_healthy()``, ``cleanup_orphans()``.
    DockerNotFoundError: ``docker`` is not on PATH.
    DockerCommandError: A command exited non-zero or timed out.

Architecture Decisions:
    - subprocess, not docker-py: works with any runtime exposing a
      ``docker`` CLI and with the CLI's built-in SSH transport.
    - ``ensure_*`` methods inspect before creating and return whether
      they changed anything, which is what makes convergence idempotent.
    - Exponential backoff with cap: health polling starts at 1s, doubles
      to 5s max.

Related Modules:
    - :mod:`convoy.workflow` — DeploymentRunner drives ContainerManager
    - :mod:`convoy.compose` — Produces the compose file used here

Tags:
    container, docker, compose, subprocess, ssh, health, network, volume
"""

from __future__ import annotations

import json
import os
import shutil
import subprocess
import time
from collections.abc import Callable
from pathlib import Path
from typing import Any

from convoy.core.errors import DockerCommandError, DockerNotFoundError
from convoy.core.logging import get_logger
from convoy.core.retry import ExponentialBackoff

logger = get_logger(__name__)


class ContainerManager:
    """Runs docker and docker compose commands against one host.

    Parameters
    ----------
    docker_host
        ``DOCKER_HOST`` value (``ssh://deploy@10.0.0.5``). None targets the
        local daemon.
    docker_binary
        Name or path of the docker CLI.
    label_prefix
        Label prefix for convoy-managed objects.
    timeout
        Default timeout (seconds) for each command.

    Example::

        mgr = ContainerManager(docker_host="ssh://deploy@203.0.113.10")
        mgr.ensure_network("acme-net")
        mgr.compose_up("docker-compose.yml", project_name="acme-prod-production")
    """

    def __init__(
        self,
        docker_host: str | None = None,
        docker_binary: str = "docker",
        label_prefix: str = "convoy",
        timeout: int = 300,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.docker_host = docker_host
        self.label_prefix = label_prefix
        self.timeout = timeout
        self._sleep = sleep
        self._docker_cmd = self._find_docker(docker_binary)

    # ------------------------------------------------------------------
    # Docker CLI discovery
    # ------------------------------------------------------------------

    @staticmethod
    def _find_docker(docker_binary: str = "docker") -> str:
        docker = shutil.which(docker_binary)
        if docker is None:
            raise DockerNotFoundError(
                f"Docker CLI {docker_binary!r} not found on PATH. Install Docker or add it to PATH.\n"
                "  - Linux: https://docs.docker.com/engine/install/\n"
                "  - macOS: https://docs.docker.com/desktop/install/mac-install/"
            )
        return docker

    @staticmethod
    def is_docker_available(docker_host: str | None = None, docker_binary: str = "docker") -> bool:
        """Check that the CLI is installed and the (possibly remote) daemon answers."""
        docker = shutil.which(docker_binary)
        if docker is None:
            return False
        env = dict(os.environ)
        if docker_host:
            env["DOCKER_HOST"] = docker_host
        try:
            result = subprocess.run(
                [docker, "info", "--format", "{{.ServerVersion}}"],
                capture_output=True,
                timeout=30,
                env=env,
            )
            return result.returncode == 0
        except (subprocess.TimeoutExpired, OSError):
            return False

    def server_version(self) -> str:
        """Return the daemon version; raises DockerCommandError if unreachable."""
        result = self._run_docker(["info", "--format", "{{.ServerVersion}}"], timeout=60)
        return result.stdout.strip()

    # ------------------------------------------------------------------
    # Networks and volumes
    # ------------------------------------------------------------------

    def network_exists(self, name: str) -> bool:
        result = self._run_docker(["network", "inspect", name], check=False)
        return result.returncode == 0

    def ensure_network(self, name: str) -> bool:
        """Create a bridge network unless it exists. Returns True if created."""
        if self.network_exists(name):
            logger.debug("network.exists", network=name)
            return False
        self._run_docker(
            [
                "network", "create",
                "--driver", "bridge",
                "--label", f"{self.label_prefix}.managed=true",
                name,
            ]
        )
        logger.info("network.created", network=name)
        return True

    def volume_exists(self, name: str) -> bool:
        result = self._run_docker(["volume", "inspect", name], check=False)
        return result.returncode == 0

    def ensure_volume(self, name: str) -> bool:
        """Create a named volume unless it exists. Returns True if created."""
        if self.volume_exists(name):
            logger.debug("volume.exists", volume=name)
            return False
        self._run_docker(
            ["volume", "create", "--label", f"{self.label_prefix}.managed=true", name]
        )
        logger.info("volume.created", volume=name)
        return True

    # ------------------------------------------------------------------
    # Images
    # ------------------------------------------------------------------

    def image_id(self, image: str) -> str | None:
        result = self._run_docker(
            ["image", "inspect", "--format", "{{.Id}}", image],
            check=False,
        )
        if result.returncode == 0 and result.stdout.strip():
            return result.stdout.strip()
        return None

    def pull_image(self, image: str) -> bool:
        """Pull an image. Returns True when the local image id changed."""
        before = self.image_id(image)
        self._run_docker(["pull", "--quiet", image])
        after = self.image_id(image)
        changed = before != after
        logger.info("image.pulled", image=image, changed=changed)
        return changed

    # ------------------------------------------------------------------
    # Compose
    # ------------------------------------------------------------------

    def compose(
        self,
        args: list[str],
        compose_file: str | Path,
        project_name: str | None = None,
        check: bool = True,
        timeout: int | None = None,
        extra_env: dict[str, str] | None = None,
    ) -> subprocess.CompletedProcess[str]:
        """Run ``docker compose -f <file> [-p <project>] <args>``."""
        cmd = ["compose", "-f", str(compose_file)]
        if project_name:
            cmd.extend(["--project-name", project_name])
        cmd.extend(args)
        return self._run_docker(cmd, check=check, timeout=timeout, extra_env=extra_env)

    def compose_up(
        self,
        compose_file: str | Path,
        project_name: str | None = None,
        services: list[str] | None = None,
        remove_orphans: bool = True,
        extra_env: dict[str, str] | None = None,
    ) -> subprocess.CompletedProcess[str]:
        """Create or recreate services whose configuration changed."""
        args = ["up", "--detach"]
        if remove_orphans:
            args.append("--remove-orphans")
        args.extend(services or [])
        result = self.compose(args, compose_file, project_name, extra_env=extra_env)
        logger.info("compose.up", project=project_name, services=services or "all")
        return result

    def compose_down(
        self,
        compose_file: str | Path,
        project_name: str | None = None,
        remove_orphans: bool = True,
    ) -> subprocess.CompletedProcess[str]:
        args = ["down"]
        if remove_orphans:
            args.append("--remove-orphans")
        result = self.compose(args, compose_file, project_name)
        logger.info("compose.down", project=project_name)
        return result

    def compose_remove(
        self,
        compose_file: str | Path,
        services: list[str],
        project_name: str | None = None,
    ) -> subprocess.CompletedProcess[str]:
        """Stop and remove only ``services``; the rest of the project keeps running."""
        if not services:
            raise ValueError("compose_remove needs at least one service")
        self.compose(["stop", *services], compose_file, project_name)
        result = self.compose(["rm", "--force", *services], compose_file, project_name)
        logger.info("compose.removed", project=project_name, services=services)
        return result

    def compose_ps(
        self,
        compose_file: str | Path,
        project_name: str | None = None,
    ) -> list[dict[str, Any]]:
        """List compose containers as dicts (``Service``, ``Name``, ``State``...)."""
        result = self.compose(
            ["ps", "--all", "--format", "json"],
            compose_file,
            project_name,
            check=False,
        )
        if result.returncode != 0:
            logger.warning("compose.ps_failed", stderr=result.stderr.strip())
            return []
        return parse_compose_ps(result.stdout)

    def compose_logs(
        self,
        compose_file: str | Path,
        service: str,
        project_name: str | None = None,
        tail: int = 200,
    ) -> str:
        result = self.compose(
            ["logs", "--no-color", "--timestamps", "--tail", str(tail), service],
            compose_file,
            project_name,
            check=False,
        )
        return result.stdout + result.stderr

    # ------------------------------------------------------------------
    # Container state
    # ------------------------------------------------------------------

    def get_container_status(self, container_name: str) -> str:
        """Get container status (running, exited, etc.)."""
        result = self._run_docker(
            ["inspect", "--format", "{{.State.Status}}", container_name],
            check=False,
        )
        return result.stdout.strip() if result.returncode == 0 else "not_found"

    def get_container_health(self, container_name: str) -> str:
        """Get container health status (healthy, unhealthy, starting)."""
        result = self._run_docker(
            ["inspect", "--format", "{{if .State.Health}}{{.State.Health.Status}}{{end}}", container_name],
            check=False,
        )
        status = result.stdout.strip()
        return status if status and result.returncode == 0 else "unknown"

    def wait_for_healthy(self, container_name: str, timeout: int) -> None:
        """Poll container health until healthy or timeout.

        Uses exponential backoff: 1s, 2s, 4s, 5s (capped), ...

        Raises
        ------
        DockerCommandError
            If the container exits or is not healthy within ``timeout``.
        """
        backoff = ExponentialBackoff(base_delay=1.0, max_delay=5.0)
        deadline = time.monotonic() + timeout
        attempt = 0

        while time.monotonic() < deadline:
            health = self.get_container_health(container_name)
            if health == "healthy":
                logger.info("container.healthy", container=container_name)
                return
            status = self.get_container_status(container_name)
            if status in ("exited", "dead"):
                logs = self._run_docker(["logs", "--tail", "20", container_name], check=False)
                raise DockerCommandError(
                    f"Container {container_name} exited before becoming healthy.\n"
                    f"Last logs:\n{logs.stdout + logs.stderr}"
                ).with_context(service=container_name)
            self._sleep(backoff.next_delay(attempt))
            attempt += 1

        raise DockerCommandError(
            f"Container {container_name} did not become healthy within {timeout}s. "
            f"Last health status: {self.get_container_health(container_name)}"
        ).with_context(service=container_name)

    def list_containers(self, project_name: str | None = None) -> list[dict[str, Any]]:
        """List convoy-managed containers, optionally for one project."""
        cmd = [
            "ps", "--all",
            "--filter", f"label={self.label_prefix}.service",
            "--format", "{{json .}}",
        ]
        if project_name:
            cmd.extend(["--filter", f"label={self.label_prefix}.project={project_name}"])
        result = self._run_docker(cmd, check=False)
        return parse_compose_ps(result.stdout)

    def cleanup_orphans(self, project_name: str | None = None) -> int:
        """Remove convoy-managed containers that are not running.

        Returns the number of containers removed.
        """
        removed = 0
        for c in self.list_containers(project_name):
            if c.get("State", "").lower() == "running":
                continue
            name = c.get("Names") or c.get("Name", "")
            if not name:
                continue
            self._run_docker(["rm", "--force", name], check=False)
            removed += 1

        if removed:
            logger.info("cleanup.complete", containers_removed=removed)
        return removed

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _env(self, extra_env: dict[str, str] | None = None) -> dict[str, str]:
        env = dict(os.environ)
        if self.docker_host:
            env["DOCKER_HOST"] = self.docker_host
        if extra_env:
            env.update(extra_env)
        return env

    def _run_docker(
        self,
        args: list[str],
        check: bool = True,
        timeout: int | None = None,
        extra_env: dict[str, str] | None = None,
    ) -> subprocess.CompletedProcess[str]:
        """Run a docker CLI command."""
        cmd = [self._docker_cmd, *args]
        timeout = timeout or self.timeout
        logger.debug("docker.exec", cmd=" ".join(cmd), docker_host=self.docker_host)
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=timeout,
                env=self._env(extra_env),
            )
        except subprocess.TimeoutExpired as exc:
            raise DockerCommandError(
                f"Docker command timed out after {timeout}s: {' '.join(args)}",
                cause=exc,
            ).with_context(command=" ".join(args)) from exc

        if check and result.returncode != 0:
            raise DockerCommandError(
                f"Docker command failed (exit {result.returncode}): "
                f"{' '.join(args)}\n{result.stderr}",
                exit_code=result.returncode,
                stderr=result.stderr,
            ).with_context(command=" ".join(args))
        return result


def parse_compose_ps(output: str) -> list[dict[str, Any]]:
    """Parse ``--format json`` output.

    Newer compose releases print one JSON object per line, older ones a
    single JSON array.
    """
    text = output.strip()
    if not text:
        return []
    if text.startswith("["):
        try:
            data = json.loads(text)
        except json.JSONDecodeError:
            return []
        return [d for d in data if isinstance(d, dict)]

    rows: list[dict[str, Any]] = []
    for line in text.splitlines():
        line = line.strip()
        if not line:
            continue
        try:
            row = json.loads(line)
        except json.JSONDecodeError:
            logger.debug("compose.ps_unparsed", line=line)
            continue
        if isinstance(row, dict):
            rows.append(row)
    return rows
