"""Tests for convoy.core.errors."""

from __future__ import annotations

from convoy.core.errors import (
    ConfigError,
    ConvergeError,
    ConvoyError,
    DockerCommandError,
    DockerError,
    DockerNotFoundError,
    ErrorCategory,
    ErrorContext,
    ParamsError,
    ProxyConfigError,
    ReadinessError,
    RenderError,
    TransientError,
    categorize_error,
    is_retryable,
)


class TestErrorContext:
    def test_to_dict_only_set_fields(self):
        ctx = ErrorContext(run_id="abc", service="api", metadata={"attempts": 3})
        d = ctx.to_dict()
        assert d == {"run_id": "abc", "service": "api", "attempts": 3}

    def test_empty(self):
        assert ErrorContext().to_dict() == {}


class TestConvoyError:
    def test_defaults(self):
        err = ConvoyError("boom")
        assert err.message == "boom"
        assert err.category == ErrorCategory.INTERNAL
        assert err.retryable is False
        assert str(err) == "boom"

    def test_with_context_sets_known_fields_and_metadata(self):
        err = ConvoyError("boom").with_context(step="pull", image="redis:7")
        assert err.context.step == "pull"
        assert err.context.metadata == {"image": "redis:7"}

    def test_cause_is_chained(self):
        cause = OSError("disk full")
        err = RenderError("cannot write", cause=cause)
        assert err.__cause__ is cause
        assert err.to_dict()["cause"] == "disk full"

    def test_to_dict(self):
        err = ParamsError("bad zone").with_context(path="convoy.yml")
        d = err.to_dict()
        assert d["error_type"] == "ParamsError"
        assert d["category"] == "CONFIG"
        assert d["retryable"] is False
        assert d["context"] == {"path": "convoy.yml"}

    def test_repr(self):
        assert repr(ConvergeError("x")) == "ConvergeError('x', category=CONVERGE)"


class TestHierarchy:
    def test_categories(self):
        assert ParamsError("x").category == ErrorCategory.CONFIG
        assert ProxyConfigError("x").category == ErrorCategory.CONFIG
        assert RenderError("x").category == ErrorCategory.RENDER
        assert DockerNotFoundError("x").category == ErrorCategory.DOCKER
        assert ReadinessError("x").category == ErrorCategory.NETWORK

    def test_subclassing(self):
        assert issubclass(ParamsError, ConfigError)
        assert issubclass(DockerCommandError, DockerError)
        assert issubclass(ReadinessError, TransientError)

    def test_docker_command_error_records_exit_code(self):
        err = DockerCommandError("failed", exit_code=125, stderr="no such image")
        assert err.exit_code == 125
        assert err.stderr == "no such image"
        assert err.context.exit_code == 125

    def test_readiness_retryable_override(self):
        assert ReadinessError("x").retryable is True
        assert ReadinessError("x", retryable=False).retryable is False


class TestHelpers:
    def test_is_retryable(self):
        assert is_retryable(TransientError("x")) is True
        assert is_retryable(ParamsError("x")) is False
        assert is_retryable(ConnectionError()) is True
        assert is_retryable(ValueError()) is False

    def test_categorize_error(self):
        assert categorize_error(DockerCommandError("x")) == ErrorCategory.DOCKER
        assert categorize_error(TimeoutError()) == ErrorCategory.NETWORK
        assert categorize_error(KeyError("k")) == ErrorCategory.CONFIG
        assert categorize_error(RuntimeError()) == ErrorCategory.UNKNOWN
