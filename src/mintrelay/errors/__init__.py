"""Relayer error handling.

Exception hierarchy and retry policy shared by every pipeline stage.
"""

from .exceptions import (
    ConfigurationError,
    DecodeError,
    ErrorCategory,
    ErrorContext,
    ErrorSeverity,
    FinalityError,
    FinalityTimeoutError,
    NetworkError,
    OracleError,
    RelayError,
    ReorgDetectedError,
    StorageError,
    SubmissionError,
    create_missing_config_error,
)
from .recovery import RetryPolicy

__all__ = [
    # Exceptions
    "RelayError",
    "ConfigurationError",
    "DecodeError",
    "NetworkError",
    "OracleError",
    "SubmissionError",
    "FinalityError",
    "ReorgDetectedError",
    "FinalityTimeoutError",
    "StorageError",
    "ErrorCategory",
    "ErrorContext",
    "ErrorSeverity",
    "create_missing_config_error",
    # Recovery
    "RetryPolicy",
]
