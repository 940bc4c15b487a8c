"""Tests for ContainerManager (convoy.container).

All docker invocations are mocked — no Docker required.
"""

from __future__ import annotations

import json
import subprocess
from itertools import chain, repeat
from unittest.mock import MagicMock, patch

import pytest


def _proc(returncode: int = 0, stdout: str = "", stderr: str = "") -> MagicMock:
    return MagicMock(returncode=returncode, stdout=stdout, stderr=stderr)


@pytest.fixture
def mgr():
    from convoy.container import ContainerManager

    with patch("shutil.which", return_value="/usr/bin/docker"):
        yield ContainerManager(docker_host="ssh://deploy@203.0.113.10", sleep=lambda _: None)


class TestDiscovery:
    @patch("shutil.which", return_value=None)
    def test_missing_cli(self, _which):
        from convoy.container import ContainerManager
        from convoy.core.errors import DockerNotFoundError

        with pytest.raises(DockerNotFoundError, match="not found on PATH"):
            ContainerManager()

    @patch("subprocess.run")
    @patch("shutil.which", return_value="/usr/bin/docker")
    def test_is_docker_available_true(self, _which, mock_run):
        from convoy.container import ContainerManager

        mock_run.return_value = _proc(stdout="27.1.1")
        assert ContainerManager.is_docker_available("ssh://deploy@vm") is True
        assert mock_run.call_args.kwargs["env"]["DOCKER_HOST"] == "ssh://deploy@vm"

    @patch("subprocess.run", side_effect=subprocess.TimeoutExpired("docker", 30))
    @patch("shutil.which", return_value="/usr/bin/docker")
    def test_is_docker_available_timeout(self, _which, _run):
        from convoy.container import ContainerManager

        assert ContainerManager.is_docker_available() is False

    @patch("shutil.which", return_value=None)
    def test_is_docker_available_no_cli(self, _which):
        from convoy.container import ContainerManager

        assert ContainerManager.is_docker_available() is False


class TestRunDocker:
    @patch("subprocess.run")
    def test_docker_host_passed_in_env(self, mock_run, mgr):
        mock_run.return_value = _proc(stdout="27.1.1\n")
        assert mgr.server_version() == "27.1.1"
        args, kwargs = mock_run.call_args
        assert args[0] == ["/usr/bin/docker", "info", "--format", "{{.ServerVersion}}"]
        assert kwargs["env"]["DOCKER_HOST"] == "ssh://deploy@203.0.113.10"

    @patch("subprocess.run")
    def test_failure_raises_command_error(self, mock_run, mgr):
        from convoy.core.errors import DockerCommandError

        mock_run.return_value = _proc(returncode=1, stderr="Cannot connect to the Docker daemon")
        with pytest.raises(DockerCommandError) as exc_info:
            mgr.server_version()
        err = exc_info.value
        assert err.exit_code == 1
        assert "Cannot connect" in err.stderr
        assert err.context.command.startswith("info")

    @patch("subprocess.run", side_effect=subprocess.TimeoutExpired("docker", 60))
    def test_timeout_raises_command_error(self, _run, mgr):
        from convoy.core.errors import DockerCommandError

        with pytest.raises(DockerCommandError, match="timed out"):
            mgr.server_version()


class TestNetworksAndVolumes:
    @patch("subprocess.run")
    def test_ensure_network_creates_when_missing(self, mock_run, mgr):
        mock_run.side_effect = [_proc(returncode=1), _proc()]
        assert mgr.ensure_network("acme-net") is True
        create = mock_run.call_args_list[1].args[0]
        assert create[1:4] == ["network", "create", "--driver"]
        assert create[-1] == "acme-net"
        assert "convoy.managed=true" in create

    @patch("subprocess.run")
    def test_ensure_network_noop_when_present(self, mock_run, mgr):
        mock_run.return_value = _proc()
        assert mgr.ensure_network("acme-net") is False
        assert mock_run.call_count == 1

    @patch("subprocess.run")
    def test_ensure_volume(self, mock_run, mgr):
        mock_run.side_effect = [_proc(returncode=1), _proc(), _proc()]
        assert mgr.ensure_volume("cache-data") is True
        assert mgr.ensure_volume("cache-data") is False
        assert mock_run.call_args_list[1].args[0][1:3] == ["volume", "create"]


class TestImages:
    @patch("subprocess.run")
    def test_pull_reports_change(self, mock_run, mgr):
        mock_run.side_effect = [_proc(stdout="sha256:old"), _proc(), _proc(stdout="sha256:new")]
        assert mgr.pull_image("redis:7") is True
        assert mock_run.call_args_list[1].args[0][1:] == ["pull", "--quiet", "redis:7"]

    @patch("subprocess.run")
    def test_pull_unchanged(self, mock_run, mgr):
        mock_run.side_effect = [_proc(stdout="sha256:same"), _proc(), _proc(stdout="sha256:same")]
        assert mgr.pull_image("redis:7") is False

    @patch("subprocess.run")
    def test_pull_first_time(self, mock_run, mgr):
        mock_run.side_effect = [_proc(returncode=1), _proc(), _proc(stdout="sha256:new")]
        assert mgr.pull_image("redis:7") is True

    @patch("subprocess.run")
    def test_pull_failure(self, mock_run, mgr):
        from convoy.core.errors import DockerCommandError

        mock_run.side_effect = [_proc(returncode=1), _proc(returncode=1, stderr="denied")]
        with pytest.raises(DockerCommandError):
            mgr.pull_image("private/img:1")


class TestCompose:
    @patch("subprocess.run")
    def test_compose_up_command(self, mock_run, mgr):
        mock_run.return_value = _proc()
        mgr.compose_up("/tmp/dc.yml", project_name="acme-prod-production", services=["api"])
        cmd = mock_run.call_args.args[0]
        assert cmd == [
            "/usr/bin/docker", "compose", "-f", "/tmp/dc.yml",
            "--project-name", "acme-prod-production",
            "up", "--detach", "--remove-orphans", "api",
        ]

    @patch("subprocess.run")
    def test_compose_up_extra_env(self, mock_run, mgr):
        mock_run.return_value = _proc()
        mgr.compose_up("dc.yml", extra_env={"DATABASE_URL": "postgres://x"}, remove_orphans=False)
        assert "--remove-orphans" not in mock_run.call_args.args[0]
        assert mock_run.call_args.kwargs["env"]["DATABASE_URL"] == "postgres://x"

    @patch("subprocess.run")
    def test_compose_down(self, mock_run, mgr):
        mock_run.return_value = _proc()
        mgr.compose_down("dc.yml", project_name="p")
        assert mock_run.call_args.args[0][-2:] == ["down", "--remove-orphans"]

    @patch("subprocess.run")
    def test_compose_remove_only_named_services(self, mock_run, mgr):
        mock_run.return_value = _proc()
        mgr.compose_remove("dc.yml", ["api", "web"], project_name="p")
        stop, rm = (c.args[0] for c in mock_run.call_args_list)
        assert stop[-3:] == ["stop", "api", "web"]
        assert rm[-4:] == ["rm", "--force", "api", "web"]
        assert "down" not in stop + rm

    def test_compose_remove_requires_services(self, mgr):
        with pytest.raises(ValueError):
            mgr.compose_remove("dc.yml", [])

    @patch("subprocess.run")
    def test_compose_ps_ndjson(self, mock_run, mgr):
        lines = [
            {"Service": "api", "Name": "p-api", "State": "running", "Health": "healthy"},
            {"Service": "cache", "Name": "p-cache", "State": "running", "Health": ""},
        ]
        mock_run.return_value = _proc(stdout="\n".join(json.dumps(x) for x in lines))
        rows = mgr.compose_ps("dc.yml", "p")
        assert [r["Service"] for r in rows] == ["api", "cache"]

    @patch("subprocess.run")
    def test_compose_ps_failure_returns_empty(self, mock_run, mgr):
        mock_run.return_value = _proc(returncode=1, stderr="no such file")
        assert mgr.compose_ps("dc.yml") == []

    @patch("subprocess.run")
    def test_compose_logs(self, mock_run, mgr):
        mock_run.return_value = _proc(stdout="line1\n", stderr="line2\n")
        assert mgr.compose_logs("dc.yml", "api", tail=50) == "line1\nline2\n"
        cmd = mock_run.call_args.args[0]
        assert cmd[cmd.index("--tail") + 1] == "50"
        assert cmd[-1] == "api"


class TestParseComposePs:
    def test_json_array(self):
        from convoy.container import parse_compose_ps

        assert parse_compose_ps('[{"Service": "api"}, {"Service": "web"}]') == [
            {"Service": "api"},
            {"Service": "web"},
        ]

    def test_skips_garbage_lines(self):
        from convoy.container import parse_compose_ps

        out = '{"Service": "api"}\nWARN something\n\n{"Service": "web"}\n'
        assert [r["Service"] for r in parse_compose_ps(out)] == ["api", "web"]

    def test_empty(self):
        from convoy.container import parse_compose_ps

        assert parse_compose_ps("  \n") == []


class TestHealth:
    def test_wait_for_healthy_polls_until_healthy(self, mgr):
        with patch.object(mgr, "get_container_health", side_effect=["starting", "starting", "healthy"]), \
             patch.object(mgr, "get_container_status", return_value="running"):
            mgr.wait_for_healthy("p-api", timeout=60)

    def test_wait_for_healthy_backoff(self):
        from convoy.container import ContainerManager

        sleeps: list[float] = []
        with patch("shutil.which", return_value="/usr/bin/docker"):
            mgr = ContainerManager(sleep=sleeps.append)
        health = ["starting"] * 5 + ["healthy"]
        with patch.object(mgr, "get_container_health", side_effect=health), \
             patch.object(mgr, "get_container_status", return_value="running"):
            mgr.wait_for_healthy("p-api", timeout=60)
        assert sleeps == [1.0, 2.0, 4.0, 5.0, 5.0]

    @patch("subprocess.run")
    def test_exited_container_fails_fast(self, mock_run, mgr):
        from convoy.core.errors import DockerCommandError

        mock_run.return_value = _proc(stdout="boom\n")
        with patch.object(mgr, "get_container_health", return_value="unknown"), \
             patch.object(mgr, "get_container_status", return_value="exited"):
            with pytest.raises(DockerCommandError, match="exited before becoming healthy") as exc_info:
                mgr.wait_for_healthy("p-api", timeout=60)
        assert exc_info.value.context.service == "p-api"

    def test_timeout(self, mgr):
        from convoy.core.errors import DockerCommandError

        with patch.object(mgr, "get_container_health", return_value="starting"), \
             patch.object(mgr, "get_container_status", return_value="running"), \
             patch("convoy.container.time.monotonic", side_effect=chain([0.0, 0.0], repeat(100.0))):
            with pytest.raises(DockerCommandError, match="did not become healthy within 10s"):
                mgr.wait_for_healthy("p-api", timeout=10)

    @patch("subprocess.run")
    def test_health_and_status_inspect(self, mock_run, mgr):
        mock_run.side_effect = [_proc(stdout="healthy\n"), _proc(stdout="running\n"), _proc(returncode=1)]
        assert mgr.get_container_health("p-api") == "healthy"
        assert mgr.get_container_status("p-api") == "running"
        assert mgr.get_container_status("gone") == "not_found"


class TestCleanup:
    @patch("subprocess.run")
    def test_cleanup_removes_stopped_only(self, mock_run, mgr):
        listing = "\n".join(
            json.dumps(x)
            for x in [
                {"Names": "p-api", "State": "running"},
                {"Names": "p-old", "State": "exited"},
            ]
        )
        mock_run.side_effect = [_proc(stdout=listing), _proc()]
        assert mgr.cleanup_orphans("p") == 1
        list_cmd = mock_run.call_args_list[0].args[0]
        assert "label=convoy.project=p" in list_cmd
        assert mock_run.call_args_list[1].args[0] == ["/usr/bin/docker", "rm", "--force", "p-old"]
