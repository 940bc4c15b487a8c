"""Tests for the readiness probe (convoy.readiness).

HTTP goes through ``httpx.MockTransport``; sleeps are recorded, not slept.
"""

from __future__ import annotations

import httpx
import pytest

URL = "https://app.example.com/health"


def _client(statuses: list[int | Exception]) -> tuple[httpx.Client, list[httpx.Request]]:
    seen: list[httpx.Request] = []
    queue = list(statuses)

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        item = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(item, Exception):
            raise item
        return httpx.Response(item)

    return httpx.Client(transport=httpx.MockTransport(handler)), seen


def _probe(statuses, **kwargs):
    from convoy.readiness import ReadinessProbe

    client, seen = _client(statuses)
    sleeps: list[float] = []
    probe = ReadinessProbe(URL, client=client, sleep=sleeps.append, **kwargs)
    return probe, seen, sleeps


class TestWait:
    def test_ready_first_try(self):
        probe, seen, sleeps = _probe([200])
        result = probe.wait()
        assert result.ready is True
        assert result.attempts == 1
        assert result.max_attempts == 10
        assert result.last_status == 200
        assert len(seen) == 1
        assert sleeps == []

    def test_ready_after_retries(self):
        probe, seen, sleeps = _probe([502, 503, 200], interval_seconds=10.0)
        result = probe.wait()
        assert result.ready is True
        assert result.attempts == 3
        assert sleeps == [10.0, 10.0]

    def test_budget_exhausted(self):
        probe, seen, sleeps = _probe([503])
        result = probe.wait()
        assert result.ready is False
        assert result.attempts == 10
        assert len(seen) == 10
        # No sleep after the last attempt
        assert sleeps == [10.0] * 9
        assert result.last_status == 503
        assert "HTTP 503" in result.last_error

    def test_connection_errors_are_retried(self):
        err = httpx.ConnectError("connection refused")
        probe, _, sleeps = _probe([err, err, 200], attempts=5, interval_seconds=1.0)
        result = probe.wait()
        assert result.ready is True
        assert result.attempts == 3
        assert sleeps == [1.0, 1.0]

    def test_connection_error_reported(self):
        probe, _, _ = _probe([httpx.ConnectTimeout("timed out")], attempts=2)
        result = probe.wait()
        assert result.ready is False
        assert result.last_status is None
        assert "ConnectTimeout" in result.last_error

    def test_any_2xx_accepted_when_200_expected(self):
        probe, _, _ = _probe([204])
        assert probe.wait().ready is True

    def test_exact_status_when_not_200(self):
        probe, _, _ = _probe([200, 401], attempts=2, expected_status=401)
        result = probe.wait()
        assert result.ready is True
        assert result.attempts == 2

    def test_single_attempt(self):
        probe, _, sleeps = _probe([500], attempts=1)
        result = probe.wait()
        assert result.attempts == 1
        assert sleeps == []

    def test_invalid_attempts(self):
        from convoy.readiness import ReadinessProbe

        with pytest.raises(ValueError):
            ReadinessProbe(URL, attempts=0)


class TestCheckAndRaise:
    def test_check(self):
        probe, seen, _ = _probe([200])
        assert probe.check() is True
        probe, _, _ = _probe([500])
        assert probe.check() is False

    def test_wait_or_raise(self):
        from convoy.core.errors import ReadinessError

        probe, _, _ = _probe([503], attempts=3, interval_seconds=0)
        with pytest.raises(ReadinessError, match="not ready after 3 attempts") as exc_info:
            probe.wait_or_raise()
        assert exc_info.value.retryable is False
        assert exc_info.value.context.url == URL

    def test_wait_or_raise_ready(self):
        probe, _, _ = _probe([200])
        assert probe.wait_or_raise().ready is True


def test_probe_from_params(params_data):
    from convoy.params import parse_params
    from convoy.readiness import probe_from_params

    params_data["health"] = {"attempts": 4, "interval_seconds": 2, "expected_status": 204}
    probe = probe_from_params(parse_params(params_data))
    assert probe.url == "https://app.example.com/health"
    assert probe.attempts == 4
    assert probe.interval_seconds == 2
    assert probe.expected_status == 204
