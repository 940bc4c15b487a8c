"""Run artifacts: service logs, JSON summary, HTML report.

Every convoy run produces a self-contained ``{run_id}/`` directory that CI
can upload as an artifact and a human can open in a browser.

Output Structure::

    {output_dir}/{run_id}/
    ├── summary.json
    ├── report.html
    └── services/
        ├── api.log
        └── proxy.log

Architecture Decisions:
    - Directory-per-run: runs never collide, even in parallel CI.
    - HTML inline CSS: the report is a single self-contained file.
    - Every value interpolated into the report is HTML-escaped; service
      names and error text come from user input and container output.

Related Modules:
    - :mod:`convoy.results` — Models serialised by the collector
    - :mod:`convoy.workflow` — Invokes the collector at the end of each run

Tags:
    logs, collector, artifacts, reporting, html, structured-output
"""

from __future__ import annotations

from datetime import UTC, datetime
from html import escape
from pathlib import Path

from convoy.core.logging import get_logger
from convoy.results import DeploymentResult

logger = get_logger(__name__)

_SERVICE_COLORS = {
    "running": "#22c55e",
    "healthy": "#22c55e",
    "unhealthy": "#ef4444",
    "exited": "#ef4444",
    "starting": "#f59e0b",
    "not_found": "#6b7280",
}

_STEP_COLORS = {
    "ok": "#22c55e",
    "changed": "#3b82f6",
    "skipped": "#6b7280",
    "failed": "#ef4444",
}

_OVERALL_COLORS = {
    "PASSED": "#22c55e",
    "FAILED": "#ef4444",
    "PARTIAL": "#f59e0b",
    "ERROR": "#ef4444",
}


class LogCollector:
    """Collects and structures the artifacts of one run.

    Parameters
    ----------
    output_dir
        Base directory for output.
    run_id
        Unique run identifier.
    """

    def __init__(self, output_dir: Path, run_id: str) -> None:
        self.run_dir = Path(output_dir) / run_id
        self.run_dir.mkdir(parents=True, exist_ok=True)
        self.run_id = run_id

    def services_dir(self) -> Path:
        """Get or create the directory for service logs."""
        d = self.run_dir / "services"
        d.mkdir(parents=True, exist_ok=True)
        return d

    def capture_service_logs(self, service_name: str, logs: str) -> Path:
        """Save one service's log text and return the file path."""
        log_path = self.services_dir() / f"{service_name}.log"
        log_path.write_text(logs, encoding="utf-8")
        logger.debug("logs.captured", service=service_name, path=str(log_path))
        return log_path

    def write_summary(self, result: DeploymentResult) -> Path:
        """Write machine-readable summary JSON."""
        path = self.run_dir / "summary.json"
        path.write_text(result.model_dump_json(indent=2), encoding="utf-8")
        logger.info("summary.written", path=str(path))
        return path

    def write_html_report(self, result: DeploymentResult) -> Path:
        """Generate a human-readable HTML report."""
        path = self.run_dir / "report.html"
        path.write_text(self._generate_html(result), encoding="utf-8")
        logger.info("report.written", path=str(path))
        return path

    # ------------------------------------------------------------------
    # HTML generation
    # ------------------------------------------------------------------

    @staticmethod
    def _generate_html(result: DeploymentResult) -> str:
        step_rows = ""
        for step in result.steps:
            color = _STEP_COLORS.get(step.status.value, "#6b7280")
            step_rows += f"""
            <tr>
                <td><strong>{escape(step.name)}</strong></td>
                <td style="color: {color}; font-weight: bold;">{step.status.value}</td>
                <td>{escape(step.detail) or "—"}</td>
                <td>{step.duration_ms:.0f}ms</td>
                <td>{escape(step.error or "")}</td>
            </tr>"""

        service_rows = ""
        for s in result.services:
            color = _SERVICE_COLORS.get(s.status, "#6b7280")
            service_rows += f"""
            <tr>
                <td><strong>{escape(s.name)}</strong></td>
                <td>{escape(s.image or "—")}</td>
                <td style="color: {color}; font-weight: bold;">{s.status}</td>
                <td>{escape(s.health or "—")}</td>
            </tr>"""

        readiness = ""
        if result.readiness is not None:
            r = result.readiness
            state = "ready" if r.ready else "not ready"
            last_error = f" &nbsp;|&nbsp; last error: {escape(r.last_error)}" if r.last_error else ""
            readiness = f"""
    <h2>Readiness</h2>
    <p class="meta">{escape(r.url)}: {state} after {r.attempts}/{r.max_attempts} attempts
        ({r.elapsed_seconds:.1f}s){last_error}</p>"""

        overall = result.overall_status.value
        overall_color = _OVERALL_COLORS.get(overall, "#6b7280")
        error = f"<p><code>{escape(result.error)}</code></p>" if result.error else ""

        return f"""<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <title>convoy {escape(result.mode)} — {escape(result.run_id)}</title>
    <style>
        * {{ margin: 0; padding: 0; box-sizing: border-box; }}
        body {{ font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', sans-serif;
               background: #0f172a; color: #e2e8f0; padding: 2rem; }}
        h1 {{ color: #f8fafc; margin-bottom: 0.5rem; }}
        h2 {{ color: #f8fafc; margin: 2rem 0 0.5rem; font-size: 1.1rem; }}
        .meta {{ color: #94a3b8; margin-bottom: 1rem; }}
        .status-banner {{
            background: {overall_color}22;
            border: 1px solid {overall_color};
            border-radius: 8px;
            padding: 1rem 1.5rem;
            margin-bottom: 1rem;
        }}
        .status-banner strong {{ color: {overall_color}; }}
        table {{ width: 100%; border-collapse: collapse; margin-top: 0.5rem; }}
        th {{ text-align: left; padding: 0.75rem; background: #1e293b;
             color: #94a3b8; font-size: 0.85rem; text-transform: uppercase; }}
        td {{ padding: 0.75rem; border-bottom: 1px solid #1e293b; }}
        .footer {{ margin-top: 2rem; color: #64748b; font-size: 0.85rem; }}
    </style>
</head>
<body>
    <h1>convoy deployment report</h1>
    <div class="meta">
        Run ID: {escape(result.run_id)} &nbsp;|&nbsp;
        Mode: {escape(result.mode)} &nbsp;|&nbsp;
        Project: {escape(result.project_name or "—")} &nbsp;|&nbsp;
        Host: {escape(result.docker_host or "local")} &nbsp;|&nbsp;
        Duration: {result.duration_seconds:.1f}s
    </div>
    <div class="status-banner">
        <strong>{overall}</strong> — {escape(result.summary)}
        {error}
    </div>
    <h2>Steps</h2>
    <table>
        <thead>
            <tr><th>Step</th><th>Status</th><th>Detail</th><th>Duration</th><th>Error</th></tr>
        </thead>
        <tbody>{step_rows}
        </tbody>
    </table>
    <h2>Services</h2>
    <table>
        <thead>
            <tr><th>Service</th><th>Image</th><th>Status</th><th>Health</th></tr>
        </thead>
        <tbody>{service_rows}
        </tbody>
    </table>{readiness}
    <div class="footer">
        Generated by convoy at {datetime.now(UTC).isoformat()}
    </div>
</body>
</html>"""
