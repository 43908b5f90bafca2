"""
Structured error types for relspine.

Every failure a release transition can hit maps onto one class in this
module. Each error carries a category, a structured context, and an
optional chained cause so the CLI can decide whether to re-prompt, abort,
or report, and so the structured log line carries the same metadata.

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────────┐
        │                      RelspineError                           │
        │            (category, recoverable, context, cause)           │
        ├─────────────────────────────────────────────────────────────┤
        │  InputError          NotFoundError        ValidationError    │
        │  (INPUT, recover)    (NOT_FOUND)          (VALIDATION)       │
        │                          │                                   │
        │                 TargetRevisionUnresolvedError                │
        │                                                              │
        │  ApplyError          MonitorTimeoutError  ToolError          │
        │  (APPLY)             (TIMEOUT)            (TOOL)             │
        │                                               │              │
        │  ArtifactError       ConfigError         ToolNotFoundError   │
        │  (STORAGE)           (CONFIG)                                │
        │                                                              │
        │  InvalidTransitionError (ORCHESTRATION)                      │
        └─────────────────────────────────────────────────────────────┘

Propagation:
    - InputError is the only recoverable class; the CLI re-prompts on it.
    - NotFoundError, ValidationError, ApplyError terminate a transition
      in ``FAILED``.
    - MonitorTimeoutError is descriptive only. Health monitoring never
      fails a transition whose mutation already committed.

Examples:
    >>> err = NotFoundError("Release 's0' not found").with_context(namespace="b2bi")
    >>> err.context.namespace
    'b2bi'
    >>> err.to_dict()["category"]
    'NOT_FOUND'

Tags:
    error-handling, exception-hierarchy, error-context, relspine
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Standard error categories for classification and reporting."""

    INPUT = "INPUT"  # Empty or malformed operator input
    NOT_FOUND = "NOT_FOUND"  # Namespace, release, revision, package absent
    VALIDATION = "VALIDATION"  # Dry-run rejected by the release manager
    APPLY = "APPLY"  # Mutating upgrade/rollback call failed
    TIMEOUT = "TIMEOUT"  # Health convergence not observed in time
    TOOL = "TOOL"  # External binary missing, failing, or malformed output
    STORAGE = "STORAGE"  # Artifact files
    CONFIG = "CONFIG"  # Settings
    ORCHESTRATION = "ORCHESTRATION"  # Illegal state machine moves
    INTERNAL = "INTERNAL"


@dataclass
class ErrorContext:
    """Structured metadata attached to an error.

    Only the fields that are set end up in :meth:`to_dict`; anything
    without a dedicated field goes into ``metadata``.
    """

    release: str | None = None
    namespace: str | None = None
    run_id: str | None = None
    state: str | None = None
    revision: int | None = None
    command: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result: dict[str, Any] = {}
        for key in ["release", "namespace", "run_id", "state", "revision", "command"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class RelspineError(Exception):
    """Base exception for all relspine errors.

    Subclasses set ``default_category`` and ``default_recoverable``;
    callers may override either per instance.
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_recoverable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        recoverable: bool | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.recoverable = recoverable if recoverable is not None else self.default_recoverable
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> RelspineError:
        """Add context to this error (fluent API).

        Usage:
            raise NotFoundError("Release not found").with_context(
                release="s0", namespace="b2bi-dev"
            )
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
            "recoverable": self.recoverable,
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
# OPERATOR INPUT
# =============================================================================


class InputError(RelspineError):
    """Empty or invalid namespace, release, version, or revision.

    Recoverable: interactive callers re-prompt instead of aborting.
    """

    default_category = ErrorCategory.INPUT
    default_recoverable = True

    def __init__(self, message: str, *, field: str | None = None, value: Any = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.field = field
        self.value = value

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.field:
            result["field"] = self.field
        if self.value is not None:
            result["value"] = repr(self.value)
        return result


# =============================================================================
# LOOKUP ERRORS
# =============================================================================


class NotFoundError(RelspineError):
    """Namespace, release, revision or package version is absent."""

    default_category = ErrorCategory.NOT_FOUND


class TargetRevisionUnresolvedError(NotFoundError):
    """The target revision exists but its package/app version cannot be read."""

    def __init__(self, revision: int, message: str | None = None, **kwargs: Any):
        self.revision = revision
        super().__init__(
            message or f"Could not resolve package/app version of revision {revision}",
            **kwargs,
        )
        self.context.revision = revision


# =============================================================================
# RELEASE MANAGER OUTCOMES
# =============================================================================


class ValidationError(RelspineError):
    """The non-mutating dry run was rejected. Nothing was applied."""

    default_category = ErrorCategory.VALIDATION

    def __init__(self, message: str, *, output: str = "", **kwargs: Any):
        super().__init__(message, **kwargs)
        self.output = output


class ApplyError(RelspineError):
    """The mutating upgrade/rollback call failed.

    Never retried automatically: a partially applied stateful release must
    be inspected through its revision history first.
    """

    default_category = ErrorCategory.APPLY

    def __init__(self, message: str, *, output: str = "", **kwargs: Any):
        super().__init__(message, **kwargs)
        self.output = output


class MonitorTimeoutError(RelspineError):
    """Workload did not converge within the polling ceiling."""

    default_category = ErrorCategory.TIMEOUT

    def __init__(self, namespace: str, ticks: int, message: str | None = None, **kwargs: Any):
        self.namespace = namespace
        self.ticks = ticks
        super().__init__(
            message or f"Namespace {namespace!r} did not converge after {ticks} checks",
            **kwargs,
        )


# =============================================================================
# INFRASTRUCTURE
# =============================================================================


class ToolError(RelspineError):
    """An external command failed, timed out, or returned unparseable output."""

    default_category = ErrorCategory.TOOL

    def __init__(
        self,
        message: str,
        *,
        returncode: int | None = None,
        stderr: str = "",
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.returncode = returncode
        self.stderr = stderr


class ToolNotFoundError(ToolError):
    """Required binary is not on PATH."""

    def __init__(self, binary: str, message: str | None = None):
        self.binary = binary
        super().__init__(message or f"{binary} not found in PATH.")


class ArtifactError(RelspineError):
    """Backup or override file could not be written (or already exists)."""

    default_category = ErrorCategory.STORAGE


class ConfigError(RelspineError):
    """Invalid settings."""

    default_category = ErrorCategory.CONFIG


class InvalidTransitionError(RelspineError):
    """Raised when an illegal state transition is attempted."""

    default_category = ErrorCategory.ORCHESTRATION

    def __init__(
        self, current: str, target: str, enum_name: str = "TransitionState", message: str | None = None
    ) -> None:
        self.current = current
        self.target = target
        super().__init__(message or f"Invalid {enum_name} transition: {current} → {target}")


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================


def is_recoverable(error: Exception) -> bool:
    """Check if an error can be fixed by asking the operator again."""
    if isinstance(error, RelspineError):
        return error.recoverable
    return False


def categorize_error(error: Exception) -> ErrorCategory:
    """Get the category of an error."""
    if isinstance(error, RelspineError):
        return error.category
    if isinstance(error, (FileNotFoundError, PermissionError)):
        return ErrorCategory.STORAGE
    if isinstance(error, ValueError):
        return ErrorCategory.INPUT
    return ErrorCategory.INTERNAL


__all__ = [
    "ApplyError",
    "ArtifactError",
    "ConfigError",
    "ErrorCategory",
    "ErrorContext",
    "InputError",
    "InvalidTransitionError",
    "MonitorTimeoutError",
    "NotFoundError",
    "RelspineError",
    "TargetRevisionUnresolvedError",
    "ToolError",
    "ToolNotFoundError",
    "ValidationError",
    "categorize_error",
    "is_recoverable",
]
