"""
Structured error types for convoy.

Every failure a deployment can hit maps to one class in this hierarchy, so the
runner can record it on the failed step, the CLI can print it, and the retry
helpers can decide whether another attempt makes sense.

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────────┐
        │                       ConvoyError                            │
        │  (category, retryable, context, cause)                       │
        ├─────────────────────────────────────────────────────────────┤
        │  ConfigError         DockerError          TransientError    │
        │  (CONFIG)            (DOCKER)             (retryable=True)  │
        │      │                   │                     │            │
        │  ParamsError         DockerNotFoundError   ReadinessError   │
        │  ProxyConfigError    DockerCommandError                     │
        │                                                              │
        │  RenderError         ConvergeError                          │
        │  (RENDER)            (CONVERGE)                             │
        └─────────────────────────────────────────────────────────────┘

Examples:
    >>> err = ParamsError("project_id is required").with_context(path="convoy.yml")
    >>> err.retryable
    False
    >>> err.to_dict()["category"]
    'CONFIG'

Tags:
    errors, exceptions, retry-logic, convoy
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Standard error categories for classification and reporting."""

    NETWORK = "NETWORK"  # HTTP, DNS, timeouts
    DOCKER = "DOCKER"  # docker CLI / daemon
    CONFIG = "CONFIG"  # parameters, settings
    RENDER = "RENDER"  # template generation, file writes
    CONVERGE = "CONVERGE"  # convergence sequence
    INTERNAL = "INTERNAL"  # bugs, unexpected state
    UNKNOWN = "UNKNOWN"


@dataclass
class ErrorContext:
    """Structured metadata attached to an error.

    Only non-None fields are serialized by :meth:`to_dict`. Anything that
    does not fit a named field lands in ``metadata``.
    """

    run_id: str | None = None
    step: str | None = None
    service: str | None = None
    path: str | None = None
    url: str | None = None
    command: str | None = None
    exit_code: int | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {}
        for key in ("run_id", "step", "service", "path", "url", "command", "exit_code"):
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        result.update(self.metadata)
        return result


class ConvoyError(Exception):
    """Base exception for all convoy errors.

    Subclasses set ``default_category`` and ``default_retryable``.
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> ConvoyError:
        """Add context to this error (fluent API).

        Usage:
            raise DockerCommandError("pull failed").with_context(service="api")
        """
        for key, value in kwargs.items():
            if key != "metadata" and hasattr(self.context, key):
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result: dict[str, Any] = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# TRANSIENT ERRORS (Usually Retryable)
# =============================================================================


class TransientError(ConvoyError):
    """Temporary error that may succeed on retry."""

    default_category = ErrorCategory.NETWORK
    default_retryable = True


class ReadinessError(TransientError):
    """An endpoint did not become ready within its attempt budget."""


# =============================================================================
# CONFIGURATION ERRORS (Never Retryable)
# =============================================================================


class ConfigError(ConvoyError):
    """Invalid or missing configuration."""

    default_category = ErrorCategory.CONFIG


class ParamsError(ConfigError):
    """The parameter file is missing, unreadable, or fails validation."""


class ProxyConfigError(ConfigError):
    """The parameter set cannot be turned into a reverse-proxy config."""


# =============================================================================
# RENDER / DOCKER / CONVERGE
# =============================================================================


class RenderError(ConvoyError):
    """Rendering or writing a generated artifact failed."""

    default_category = ErrorCategory.RENDER


class DockerError(ConvoyError):
    """Base class for docker CLI failures."""

    default_category = ErrorCategory.DOCKER


class DockerNotFoundError(DockerError):
    """The docker CLI is not installed or the daemon is unreachable."""


class DockerCommandError(DockerError):
    """A docker command exited non-zero or timed out."""

    def __init__(
        self,
        message: str,
        *,
        exit_code: int | None = None,
        stderr: str = "",
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.exit_code = exit_code
        self.stderr = stderr
        if exit_code is not None:
            self.context.exit_code = exit_code


class ConvergeError(ConvoyError):
    """A convergence step left the host in an unexpected state."""

    default_category = ErrorCategory.CONVERGE


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================


def is_retryable(error: Exception) -> bool:
    """Check if an error is retryable."""
    if isinstance(error, ConvoyError):
        return error.retryable
    return isinstance(error, (ConnectionError, TimeoutError))


def categorize_error(error: Exception) -> ErrorCategory:
    """Get the category of an error."""
    if isinstance(error, ConvoyError):
        return error.category
    if isinstance(error, (ConnectionError, TimeoutError)):
        return ErrorCategory.NETWORK
    if isinstance(error, (ValueError, KeyError)):
        return ErrorCategory.CONFIG
    return ErrorCategory.UNKNOWN


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "ConvoyError",
    "TransientError",
    "ReadinessError",
    "ConfigError",
    "ParamsError",
    "ProxyConfigError",
    "RenderError",
    "DockerError",
    "DockerNotFoundError",
    "DockerCommandError",
    "ConvergeError",
    "is_retryable",
    "categorize_error",
]
