"""Exception hierarchy for the mint relayer.

Every failure the relay pipeline distinguishes has its own type here so the
dispatcher can decide whether to drop, retry, dead-letter or abort.
"""

import time
import traceback
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


class ErrorSeverity(Enum):
    """Error severity levels."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCategory(Enum):
    """Error categories."""

    CONFIGURATION = "configuration"
    DECODE = "decode"
    NETWORK = "network"
    ORACLE = "oracle"
    SUBMISSION = "submission"
    FINALITY = "finality"
    STORAGE = "storage"
    SYSTEM = "system"


@dataclass
class ErrorContext:
    """Where in the relay pipeline an error happened."""

    timestamp: float = field(default_factory=time.time)
    component: Optional[str] = None
    operation: Optional[str] = None
    message_id: Optional[str] = None
    transaction_hash: Optional[str] = None
    chain_id: Optional[int] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert context to dictionary."""
        return {
            "timestamp": self.timestamp,
            "component": self.component,
            "operation": self.operation,
            "message_id": self.message_id,
            "transaction_hash": self.transaction_hash,
            "chain_id": self.chain_id,
            "metadata": self.metadata,
        }


class RelayError(Exception):
    """Base exception for all relayer errors."""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        category: ErrorCategory = ErrorCategory.SYSTEM,
        context: Optional[ErrorContext] = None,
        cause: Optional[Exception] = None,
        retryable: bool = False,
        metadata: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.severity = severity
        self.category = category
        self.context = context or ErrorContext()
        self.cause = cause
        self.retryable = retryable
        self.metadata = metadata or {}
        self.timestamp = time.time()
        self.traceback = traceback.format_exc()

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary."""
        return {
            "type": self.__class__.__name__,
            "message": self.message,
            "error_code": self.error_code,
            "severity": self.severity.value,
            "category": self.category.value,
            "context": self.context.to_dict(),
            "cause": str(self.cause) if self.cause else None,
            "retryable": self.retryable,
            "metadata": self.metadata,
            "timestamp": self.timestamp,
        }

    def __str__(self) -> str:
        parts = [f"{self.__class__.__name__}: {self.message}"]

        if self.error_code:
            parts.append(f"Code: {self.error_code}")

        if self.retryable:
            parts.append("Retryable: Yes")

        return " | ".join(parts)


class ConfigurationError(RelayError):
    """Missing or malformed configuration."""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        config_value: Optional[Any] = None,
        **kwargs,
    ):
        super().__init__(
            message,
            category=ErrorCategory.CONFIGURATION,
            severity=ErrorSeverity.CRITICAL,
            **kwargs,
        )
        self.config_key = config_key
        self.config_value = config_value

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        # never echo values back, they may be keys
        data.update({"config_key": self.config_key})
        return data


class DecodeError(RelayError):
    """A source log could not be decoded into a deposit."""

    def __init__(
        self, message: str, transaction_hash: Optional[str] = None, **kwargs
    ):
        super().__init__(message, category=ErrorCategory.DECODE, **kwargs)
        self.transaction_hash = transaction_hash

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update({"transaction_hash": self.transaction_hash})
        return data


class NetworkError(RelayError):
    """Transport-level failure talking to a ledger endpoint."""

    def __init__(self, message: str, endpoint: Optional[str] = None, **kwargs):
        super().__init__(
            message, category=ErrorCategory.NETWORK, retryable=True, **kwargs
        )
        self.endpoint = endpoint

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update({"endpoint": self.endpoint})
        return data


class OracleError(RelayError):
    """A read-only destination query failed."""

    def __init__(self, message: str, query: Optional[str] = None, **kwargs):
        super().__init__(
            message, category=ErrorCategory.ORACLE, retryable=True, **kwargs
        )
        self.query = query

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update({"query": self.query})
        return data


class SubmissionError(RelayError):
    """The destination mint call failed, was rejected or reverted."""

    def __init__(
        self,
        message: str,
        transaction_hash: Optional[str] = None,
        attempt: Optional[int] = None,
        **kwargs,
    ):
        super().__init__(
            message, category=ErrorCategory.SUBMISSION, retryable=True, **kwargs
        )
        self.transaction_hash = transaction_hash
        self.attempt = attempt

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update(
            {"transaction_hash": self.transaction_hash, "attempt": self.attempt}
        )
        return data


class FinalityError(RelayError):
    """A deposit could not be confirmed on the source ledger."""

    def __init__(self, message: str, block_number: Optional[int] = None, **kwargs):
        super().__init__(
            message,
            category=ErrorCategory.FINALITY,
            severity=ErrorSeverity.HIGH,
            **kwargs,
        )
        self.block_number = block_number

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update({"block_number": self.block_number})
        return data


class ReorgDetectedError(FinalityError):
    """The block holding the deposit is no longer canonical."""

    def __init__(
        self,
        message: str,
        expected_hash: Optional[str] = None,
        canonical_hash: Optional[str] = None,
        **kwargs,
    ):
        super().__init__(message, **kwargs)
        self.expected_hash = expected_hash
        self.canonical_hash = canonical_hash

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update(
            {
                "expected_hash": self.expected_hash,
                "canonical_hash": self.canonical_hash,
            }
        )
        return data


class FinalityTimeoutError(FinalityError):
    """Confirmations did not accumulate within the configured timeout."""

    def __init__(self, message: str, timeout_duration: Optional[float] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.timeout_duration = timeout_duration


class StorageError(RelayError):
    """Idempotency store failure."""

    def __init__(self, message: str, operation: Optional[str] = None, **kwargs):
        super().__init__(
            message,
            category=ErrorCategory.STORAGE,
            severity=ErrorSeverity.HIGH,
            **kwargs,
        )
        self.operation = operation

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update({"operation": self.operation})
        return data


def create_missing_config_error(keys) -> ConfigurationError:
    """Create a configuration error listing every missing key."""
    keys = list(keys)
    return ConfigurationError(
        f"Missing required configuration: {', '.join(keys)}",
        config_key=keys[0] if len(keys) == 1 else None,
        error_code="CONFIG_MISSING",
        metadata={"missing": keys},
    )
