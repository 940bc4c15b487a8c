"""CI workflow rendering.

Renders a GitHub Actions workflow that closes the loop from ``git push`` to a
verified deployment:

1. ``build`` job: log into the registry, build every service that has a
   ``build_context``, tag it with the commit SHA and ``latest``, push.
2. ``deploy`` job: install convoy, load the SSH key for the VM, export the
   declared secrets from the CI secret store, run ``convoy up`` with the
   commit tag, then ``convoy wait`` which fails the pipeline when the
   readiness budget is exhausted.

Secrets only ever appear as ``${{ secrets.NAME }}`` expressions.

Tags:
    ci, github-actions, workflow, yaml, pipeline
"""

from __future__ import annotations

import shlex
from typing import Any

import yaml

from convoy.params import BlueprintParams


def _image_repo(ref: str) -> str:
    """Strip the tag from an image reference."""
    head, _, last = ref.rpartition("/")
    if ":" in last:
        last = last.split(":", 1)[0]
    return f"{head}/{last}" if head else last


def _secret(name: str) -> str:
    return "${{ secrets.%s }}" % name


def render_ci_workflow(params: BlueprintParams) -> str:
    """Render the GitHub Actions workflow YAML for ``params``."""
    ci = params.ci
    built = [s for s in params.services if s.build_context]

    jobs: dict[str, Any] = {}

    if built:
        build_steps: list[dict[str, Any]] = [
            {"uses": "actions/checkout@v4"},
            {
                "name": "Log in to registry",
                "uses": "docker/login-action@v3",
                "with": {
                    "registry": params.registry_host,
                    "username": "_json_key",
                    "password": _secret(ci.registry_secret),
                },
            },
        ]
        for svc in built:
            repo = _image_repo(params.image_ref(svc))
            build_steps.append(
                {
                    "name": f"Build and push {svc.name}",
                    "run": (
                        f"docker build -t {repo}:${{{{ github.sha }}}} -t {repo}:latest "
                        f"{svc.build_context}\n"
                        f"docker push --all-tags {repo}"
                    ),
                }
            )
        jobs["build"] = {"runs-on": "ubuntu-latest", "steps": build_steps}

    deploy_steps: list[dict[str, Any]] = [
        {"uses": "actions/checkout@v4"},
        {
            "uses": "actions/setup-python@v5",
            "with": {"python-version": ci.python_version},
        },
        {"name": "Install convoy", "run": f"pip install {shlex.quote(ci.install_spec)}"},
    ]

    if params.host:
        deploy_steps.append(
            {
                "name": "Load SSH key",
                "uses": "webfactory/ssh-agent@v0.9.0",
                "with": {"ssh-private-key": _secret(ci.ssh_key_secret)},
            }
        )
        deploy_steps.append(
            {
                "name": "Trust host key",
                "run": (
                    "mkdir -p ~/.ssh\n"
                    f"ssh-keyscan -p {params.host.ssh_port} -H {params.host.address} "
                    ">> ~/.ssh/known_hosts"
                ),
            }
        )

    deploy_env: dict[str, str] = {"CONVOY_LOG_FORMAT": "json"}
    for name in params.secret_names():
        deploy_env[name] = _secret(name)

    tag_flag = " --tag ${{ github.sha }}" if built else ""
    deploy_steps.append(
        {
            "name": "Deploy",
            "env": deploy_env,
            "run": f"convoy up --params {ci.params_path} --no-readiness{tag_flag}",
        }
    )
    deploy_steps.append(
        {
            "name": "Wait for readiness",
            "env": {"CONVOY_LOG_FORMAT": "json"},
            "run": f"convoy wait --params {ci.params_path}",
        }
    )

    deploy_job: dict[str, Any] = {
        "runs-on": "ubuntu-latest",
        "environment": params.environment,
        "steps": deploy_steps,
    }
    if built:
        deploy_job["needs"] = "build"
    jobs["deploy"] = deploy_job

    workflow: dict[str, Any] = {
        "name": ci.workflow_name,
        "on": {
            "push": {"branches": [ci.branch]},
            "workflow_dispatch": {},
        },
        "concurrency": {"group": f"{ci.workflow_name}-{params.environment}"},
        "jobs": jobs,
    }

    header = f"# Generated by convoy for {params.project_id} ({params.environment})\n"
    return header + yaml.safe_dump(workflow, sort_keys=False, default_flow_style=False)
