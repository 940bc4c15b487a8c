"""
convoy - deploy a containerised application to a single VM from one parameter file.

One parameter table (project, region, zone, services, host) drives three
capabilities:

- render: compose file, reverse-proxy config and CI workflow
- converge: idempotent network, volume, image and service setup on the host
- verify: bounded-retry readiness polling of the public endpoint

Example:
    >>> from convoy import DeploymentConfig, DeploymentRunner, load_params
    >>> params = load_params("convoy.yml")
    >>> result = DeploymentRunner(DeploymentConfig(), params=params).run()
    >>> result.overall_status
"""

__version__ = "0.1.0"

from convoy.config import DeploymentConfig, DeploymentMode, get_settings
from convoy.params import BlueprintParams, load_params
from convoy.readiness import ReadinessProbe
from convoy.render import render_bundle
from convoy.results import DeploymentResult, OverallStatus
from convoy.workflow import DeploymentRunner

__all__ = [
    "BlueprintParams",
    "DeploymentConfig",
    "DeploymentMode",
    "DeploymentResult",
    "DeploymentRunner",
    "OverallStatus",
    "ReadinessProbe",
    "__version__",
    "get_settings",
    "load_params",
    "render_bundle",
]
