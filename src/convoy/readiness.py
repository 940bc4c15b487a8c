"""External readiness polling.

After ``compose up`` the containers may report healthy long before the public
endpoint answers: the proxy still has to obtain a certificate, DNS may lag,
a firewall rule may be missing. ``ReadinessProbe`` polls the public URL with
a fixed budget and reports what it saw.

Key Concepts:
    ReadinessProbe.check(): One GET. Ready when the status matches
        ``expected_status`` (any 2xx when 200 is expected).
    ReadinessProbe.wait(): Up to ``attempts`` GETs, ``interval_seconds``
        apart, never sleeping after the last one. Returns ReadinessResult.
    ReadinessProbe.wait_or_raise(): Same, raises ReadinessError when the
        budget is exhausted.

Architecture Decisions:
    - The retry loop is ``RetryContext`` + ``ConstantBackoff`` from
      :mod:`convoy.core.retry`; ``sleep`` is injectable so tests run instantly.
    - A caller-supplied ``httpx.Client`` is used as-is and never closed.

Tags:
    readiness, health, httpx, retry, polling
"""

from __future__ import annotations

import time
from collections.abc import Callable

import httpx

from convoy.core.errors import ReadinessError
from convoy.core.logging import get_logger
from convoy.core.retry import ConstantBackoff, RetryContext
from convoy.params import BlueprintParams
from convoy.results import ReadinessResult

logger = get_logger(__name__)


class ReadinessProbe:
    """Bounded-retry HTTP poll of one URL.

    Example::

        probe = ReadinessProbe("https://app.example.com/health")
        result = probe.wait()
        if not result.ready:
            print(result.last_error)
    """

    def __init__(
        self,
        url: str,
        attempts: int = 10,
        interval_seconds: float = 10.0,
        timeout_seconds: float = 5.0,
        expected_status: int = 200,
        client: httpx.Client | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if attempts < 1:
            raise ValueError("attempts must be >= 1")
        self.url = url
        self.attempts = attempts
        self.interval_seconds = interval_seconds
        self.timeout_seconds = timeout_seconds
        self.expected_status = expected_status
        self._client = client
        self._sleep = sleep
        self._last_status: int | None = None

    def _accepts(self, status: int) -> bool:
        if self.expected_status == 200:
            return 200 <= status < 300
        return status == self.expected_status

    def _get(self, client: httpx.Client) -> int:
        """One GET; returns the status or raises ReadinessError."""
        try:
            response = client.get(self.url, timeout=self.timeout_seconds)
        except httpx.HTTPError as exc:
            self._last_status = None
            raise ReadinessError(
                f"{type(exc).__name__}: {exc}", cause=exc
            ).with_context(url=self.url) from exc

        self._last_status = response.status_code
        if not self._accepts(response.status_code):
            raise ReadinessError(
                f"HTTP {response.status_code} (expected {self.expected_status})"
            ).with_context(url=self.url, status=response.status_code)
        return response.status_code

    def check(self) -> bool:
        """Single attempt, no retry."""
        client = self._client or httpx.Client(follow_redirects=True)
        try:
            self._get(client)
            return True
        except ReadinessError:
            return False
        finally:
            if self._client is None:
                client.close()

    def wait(self) -> ReadinessResult:
        """Poll until ready or the attempt budget is spent."""
        strategy = ConstantBackoff(
            max_retries=self.attempts - 1,
            delay=self.interval_seconds,
            retryable_errors=(ReadinessError,),
        )

        def _on_retry(attempt: int, error: Exception, delay: float) -> None:
            logger.info(
                "readiness.retry",
                url=self.url,
                attempt=attempt,
                max_attempts=self.attempts,
                error=str(error),
                next_delay=delay,
            )

        ctx = RetryContext(strategy, on_retry=_on_retry, sleep=self._sleep)
        result = ReadinessResult(url=self.url, max_attempts=self.attempts)

        client = self._client or httpx.Client(follow_redirects=True)
        try:
            ctx.run(self._get, client)
            result.ready = True
        except ReadinessError as exc:
            result.last_error = exc.message
        finally:
            if self._client is None:
                client.close()

        result.attempts = ctx.attempts
        result.last_status = self._last_status
        result.elapsed_seconds = ctx.elapsed_seconds

        if result.ready:
            logger.info("readiness.ready", url=self.url, attempts=result.attempts)
        else:
            logger.warning(
                "readiness.exhausted",
                url=self.url,
                attempts=result.attempts,
                last_error=result.last_error,
            )
        return result

    def wait_or_raise(self) -> ReadinessResult:
        result = self.wait()
        if not result.ready:
            raise ReadinessError(
                f"{self.url} not ready after {result.attempts} attempts: {result.last_error}",
                retryable=False,
            ).with_context(url=self.url, attempts=result.attempts)
        return result


def probe_from_params(
    params: BlueprintParams,
    client: httpx.Client | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> ReadinessProbe:
    """Build a probe from the ``health`` section of ``params``."""
    health = params.health
    return ReadinessProbe(
        params.health_url(),
        attempts=health.attempts,
        interval_seconds=health.interval_seconds,
        timeout_seconds=health.timeout_seconds,
        expected_status=health.expected_status,
        client=client,
        sleep=sleep,
    )
