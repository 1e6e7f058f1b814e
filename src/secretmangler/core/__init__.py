"""Core modules for secret-mangler - centralized error definitions."""

from secretmangler.core.errors import (
    ConfigurationError,
    ConflictError,
    ExitCode,
    LinkageError,
    MalformedReferenceError,
    NotFoundError,
    SecretManglerError,
    SourceNotFoundError,
    StoreError,
    format_error_message,
    main_with_error_handling,
)

__all__ = [
    "ExitCode",
    "SecretManglerError",
    "ConfigurationError",
    "MalformedReferenceError",
    "LinkageError",
    "SourceNotFoundError",
    "StoreError",
    "NotFoundError",
    "ConflictError",
    "main_with_error_handling",
    "format_error_message",
]
