"""
Error taxonomy for secret-mangler.

Every error carries a message and structured details for logging. The
``retryable`` flag tells the controller whether a failed reconciliation
should be requeued with backoff or dropped until the template changes.

Exit Codes (CLI):
- 0: Success
- 10: Configuration error (malformed reference, owner linkage, bad settings)
- 11: Store error (Kubernetes API or backend failure)
- 12: Source not found
- 127: Unknown/internal error
"""

from __future__ import annotations

import functools
import sys
import traceback
from enum import IntEnum
from typing import Any, Callable, TypeVar

import structlog

logger = structlog.get_logger()


class ExitCode(IntEnum):
    """Standardized exit codes for CLI commands."""

    SUCCESS = 0
    CONFIG_ERROR = 10
    STORE_ERROR = 11
    SOURCE_NOT_FOUND = 12
    UNKNOWN_ERROR = 127


class SecretManglerError(Exception):
    """Base exception for secret-mangler errors with exit code support."""

    exit_code: ExitCode = ExitCode.UNKNOWN_ERROR
    retryable: bool = False
    show_traceback: bool = False

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ConfigurationError(SecretManglerError):
    """Raised when a template or the operator configuration is invalid."""

    exit_code = ExitCode.CONFIG_ERROR


class MalformedReferenceError(ConfigurationError):
    """Raised when a mapping value looks like a reference but cannot be parsed."""

    def __init__(self, field: str, value: str, reason: str = "malformed reference"):
        super().__init__(
            f"mapping {field!r} contains a faulty lookup string {value!r}: {reason}",
            details={"field": field, "value": value, "reason": reason},
        )
        self.field = field
        self.value = value


class LinkageError(ConfigurationError):
    """Raised when the owner reference cannot be attached to a secret."""


class SourceNotFoundError(SecretManglerError):
    """Raised when a referenced source secret does not exist."""

    exit_code = ExitCode.SOURCE_NOT_FOUND

    def __init__(self, source: str, field: str | None = None):
        details: dict[str, Any] = {"source": source}
        if field is not None:
            details["field"] = field
        super().__init__(f"referenced secret {source} not found", details=details)
        self.source = source
        self.field = field


class StoreError(SecretManglerError):
    """Raised when the backing store fails. Always retryable."""

    exit_code = ExitCode.STORE_ERROR
    retryable = True


class NotFoundError(StoreError):
    """Raised when the object addressed by a store call does not exist."""


class ConflictError(StoreError):
    """Raised on optimistic-concurrency conflicts or duplicate creates."""


# Type variable for decorated functions
F = TypeVar("F", bound=Callable[..., int])


def main_with_error_handling(
    *,
    show_traceback: bool = False,
    log_errors: bool = True,
) -> Callable[[F], F]:
    """
    Decorator for CLI entry points that converts exceptions into exit codes.

    Exit codes:
        - SecretManglerError subclasses: Uses the error's exit_code
        - KeyboardInterrupt: Returns 130 (standard for SIGINT)
        - Other exceptions: Returns 127 (unknown error)
    """

    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> int:
            try:
                return func(*args, **kwargs)
            except SecretManglerError as e:
                if log_errors:
                    logger.error(
                        "command_error",
                        error_type=type(e).__name__,
                        message=e.message,
                        exit_code=int(e.exit_code),
                        **e.details,
                    )
                if e.show_traceback or show_traceback:
                    traceback.print_exc(file=sys.stderr)
                return e.exit_code
            except KeyboardInterrupt:
                if log_errors:
                    logger.info("command_interrupted")
                return 130
            except Exception as e:
                if log_errors:
                    logger.error(
                        "unexpected_error",
                        error_type=type(e).__name__,
                        message=str(e),
                        exit_code=int(ExitCode.UNKNOWN_ERROR),
                    )
                if show_traceback:
                    traceback.print_exc(file=sys.stderr)
                return ExitCode.UNKNOWN_ERROR

        return wrapper  # type: ignore[return-value]

    return decorator


def format_error_message(error: SecretManglerError) -> str:
    """Format an error message for display to users."""
    msg = error.message
    if error.details:
        detail_str = ", ".join(f"{k}={v}" for k, v in error.details.items())
        msg = f"{msg} ({detail_str})"
    return msg
