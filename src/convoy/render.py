"""Bundle rendering: every generated artifact for a deployment.

``render_bundle()`` writes, from one parameter set:

    {output_dir}/
    ├── docker-compose.yml
    ├── Caddyfile                      (when the proxy is enabled)
    ├── .env.example                   (one empty line per secret)
    └── .github/workflows/{name}.yml

Writes are idempotent. Each file's SHA-256 is compared with what is already on
disk; identical content is not rewritten and is reported ``changed=False``.
The convergence runner relies on this to report the ``render`` step as
``ok`` on a second run with unchanged params.

Tags:
    render, templates, idempotent, compose, caddy, ci
"""

from __future__ import annotations

import hashlib
from pathlib import Path

from convoy.ci import render_ci_workflow
from convoy.compose import generate_compose
from convoy.core.errors import RenderError
from convoy.core.logging import get_logger
from convoy.params import BlueprintParams
from convoy.proxy import render_caddyfile
from convoy.results import RenderedFile, RenderResult

logger = get_logger(__name__)

COMPOSE_FILENAME = "docker-compose.yml"
CADDYFILE_FILENAME = "Caddyfile"
ENV_EXAMPLE_FILENAME = ".env.example"


def content_hash(content: str) -> str:
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def write_if_changed(path: Path, content: str) -> tuple[str, bool]:
    """Write ``content`` unless the file already holds it.

    Returns ``(sha256, changed)``.
    """
    digest = content_hash(content)
    if path.is_file():
        existing = path.read_text(encoding="utf-8")
        if content_hash(existing) == digest:
            return digest, False
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
    except OSError as exc:
        raise RenderError(f"Cannot write {path}: {exc}", cause=exc).with_context(
            path=str(path)
        ) from exc
    return digest, True


def render_env_example(params: BlueprintParams) -> str:
    lines = [
        f"# Secrets for {params.project_id} ({params.environment}).",
        "# Values come from the secret store at deploy time; never commit them.",
    ]
    lines += [f"{name}=" for name in params.secret_names()]
    return "\n".join(lines) + "\n"


def render_bundle(
    params: BlueprintParams,
    output_dir: str | Path,
    project_name: str | None = None,
) -> RenderResult:
    """Render and write every artifact for ``params`` into ``output_dir``."""
    output_dir = Path(output_dir)
    result = RenderResult(output_dir=str(output_dir))

    artifacts: list[tuple[str, str, str]] = [
        (COMPOSE_FILENAME, "compose", generate_compose(params, project_name)),
    ]
    if params.proxy.enabled:
        artifacts.append((CADDYFILE_FILENAME, "proxy", render_caddyfile(params)))
    artifacts.append((ENV_EXAMPLE_FILENAME, "env", render_env_example(params)))
    artifacts.append(
        (
            f".github/workflows/{params.ci.workflow_name}.yml",
            "ci",
            render_ci_workflow(params),
        )
    )

    for rel_path, kind, content in artifacts:
        path = output_dir / rel_path
        digest, changed = write_if_changed(path, content)
        result.files.append(
            RenderedFile(path=str(path), kind=kind, sha256=digest, changed=changed)
        )
        logger.debug("render.file", path=str(path), kind=kind, changed=changed)

    logger.info(
        "render.complete",
        output_dir=str(output_dir),
        files=len(result.files),
        changed=sum(1 for f in result.files if f.changed),
    )
    return result
