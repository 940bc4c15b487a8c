"""
Shared pytest fixtures for convoy tests.

Nothing here talks to docker or the network: container operations are
mocked with ``unittest.mock`` and HTTP goes through ``httpx.MockTransport``.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Mark every test as a unit test."""
    for item in items:
        item.add_marker(pytest.mark.unit)


@pytest.fixture(autouse=True)
def _isolated_settings(monkeypatch: pytest.MonkeyPatch, tmp_path: Path):
    """Keep CONVOY_* variables and .env files from the host out of tests."""
    import os

    from convoy.config import reset_settings

    for key in list(os.environ):
        if key.startswith("CONVOY_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.chdir(tmp_path)
    reset_settings()
    yield
    reset_settings()


@pytest.fixture
def params_data() -> dict[str, Any]:
    """Raw mapping for a small but complete parameter set."""
    return {
        "project_id": "acme-prod",
        "region": "europe-west1",
        "zone": "europe-west1-b",
        "host": {"address": "203.0.113.10"},
        "services": [
            {
                "name": "api",
                "image": "api",
                "port": 8000,
                "public": True,
                "path_prefix": "/api",
                "env": {"LOG_LEVEL": "info"},
                "secrets": ["DATABASE_URL"],
                "depends_on": ["cache"],
                "build_context": "services/api",
            },
            {
                "name": "web",
                "image": "web",
                "port": 3000,
                "public": True,
                "build_context": "services/web",
            },
            {
                "name": "cache",
                "image": "redis:7-alpine",
                "port": 6379,
                "volumes": {"cache-data": "/data"},
                "healthcheck_path": None,
            },
        ],
        "proxy": {"domain": "app.example.com", "acme_email": "ops@example.com"},
    }


@pytest.fixture
def sample_params(params_data):
    from convoy.params import parse_params

    return parse_params(params_data)


@pytest.fixture
def params_file(tmp_path: Path, params_data) -> Path:
    import yaml

    path = tmp_path / "convoy.yml"
    path.write_text(yaml.safe_dump(params_data), encoding="utf-8")
    return path
