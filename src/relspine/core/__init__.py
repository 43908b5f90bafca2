"""relspine core -- error hierarchy and structured logging.

Architecture::

    errors.py          Structured error hierarchy (RelspineError and friends)
    logging.py         structlog configuration and scoped context
"""

from relspine.core.errors import (
    ApplyError,
    ArtifactError,
    ConfigError,
    ErrorCategory,
    ErrorContext,
    InputError,
    InvalidTransitionError,
    MonitorTimeoutError,
    NotFoundError,
    RelspineError,
    TargetRevisionUnresolvedError,
    ToolError,
    ToolNotFoundError,
    ValidationError,
    categorize_error,
    is_recoverable,
)
from relspine.core.logging import LogContext, configure_logging, get_logger

__all__ = [
    "ApplyError",
    "ArtifactError",
    "ConfigError",
    "ErrorCategory",
    "ErrorContext",
    "InputError",
    "InvalidTransitionError",
    "LogContext",
    "MonitorTimeoutError",
    "NotFoundError",
    "RelspineError",
    "TargetRevisionUnresolvedError",
    "ToolError",
    "ToolNotFoundError",
    "ValidationError",
    "categorize_error",
    "configure_logging",
    "get_logger",
    "is_recoverable",
]
