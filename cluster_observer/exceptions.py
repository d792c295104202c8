"""
Cluster Observer - Exceptions.

============================================================
CUSTOM EXCEPTIONS
============================================================

All exceptions for the cluster observer:
- ObserverError: Base exception
- ConfigurationError: Bad or missing settings (defaults applied)
- TransientFetchError: Recoverable snapshot fetch failure
- DeliveryError: Telemetry delivery failed
- FatalError: Unexpected failure during a cycle
- RemoteManagementError: Management plane request failed
- CycleCancelledError: Cooperative cancellation

============================================================
PROPAGATION
============================================================

- ConfigurationError, TransientFetchError: recovered locally
- DeliveryError: returned as a failed cycle result
- FatalError: raised to the host

Fetch failures are classified with classify_fetch_error(),
which returns a tagged ClassifiedError.

============================================================
"""

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional


class ErrorKind(str, Enum):
    """Error taxonomy used for classification and logging."""
    CONFIGURATION = "configuration"
    TRANSIENT_FETCH = "transient_fetch"
    DELIVERY = "delivery"
    FATAL = "fatal"
    CANCELLED = "cancelled"


class ObserverError(Exception):
    """
    Base exception for cluster observer errors.

    All observer exceptions inherit from this class.
    """

    kind: ErrorKind = ErrorKind.FATAL

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        """
        Initialize exception.

        Args:
            message: Error message
            details: Additional error details
        """
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging."""
        return {
            "error_type": self.__class__.__name__,
            "kind": self.kind.value,
            "message": self.message,
            "details": self.details,
        }


class ConfigurationError(ObserverError):
    """
    Raised when configuration is invalid.

    Never fatal: callers log it and keep the default.
    """

    kind = ErrorKind.CONFIGURATION

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        actual_value: Optional[str] = None,
    ) -> None:
        """
        Initialize exception.

        Args:
            message: Error message
            config_key: Which config key is invalid
            actual_value: What was provided
        """
        details = {}
        if config_key:
            details["config_key"] = config_key
        if actual_value is not None:
            details["actual"] = actual_value

        super().__init__(message=message, details=details)
        self.config_key = config_key


class RemoteManagementError(ObserverError):
    """
    Raised by snapshot sources when the management plane fails.

    Recoverable: the cycle ends without a state change.
    """

    kind = ErrorKind.TRANSIENT_FETCH

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response_body: Optional[str] = None,
    ) -> None:
        details: Dict[str, Any] = {}
        if status_code is not None:
            details["status_code"] = status_code
        if response_body:
            details["response_body"] = response_body

        super().__init__(message=message, details=details)
        self.status_code = status_code
        self.response_body = response_body


class TransientFetchError(ObserverError):
    """Recoverable failure while fetching the cluster health snapshot."""

    kind = ErrorKind.TRANSIENT_FETCH

    def __init__(self, message: str, original_exception: Optional[BaseException] = None) -> None:
        details = {}
        if original_exception is not None:
            details["original_exception"] = str(original_exception)
            details["exception_type"] = type(original_exception).__name__

        super().__init__(message=message, details=details)
        self.original_exception = original_exception


class DeliveryError(ObserverError):
    """
    Raised when a telemetry provider fails to deliver a report.

    Carries the HTTP status and response body when the sink answered.
    """

    kind = ErrorKind.DELIVERY

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response_body: Optional[str] = None,
        provider: Optional[str] = None,
    ) -> None:
        details: Dict[str, Any] = {}
        if status_code is not None:
            details["status_code"] = status_code
        if response_body is not None:
            details["response_body"] = response_body
        if provider:
            details["provider"] = provider

        super().__init__(message=message, details=details)
        self.status_code = status_code
        self.response_body = response_body
        self.provider = provider


class FatalError(ObserverError):
    """
    Unexpected failure that aborts the cycle.

    Signals the host that this observer instance is unhealthy.
    """

    kind = ErrorKind.FATAL

    def __init__(self, message: str, original_exception: Optional[BaseException] = None) -> None:
        details = {}
        if original_exception is not None:
            details["original_exception"] = str(original_exception)
            details["exception_type"] = type(original_exception).__name__

        super().__init__(message=message, details=details)
        self.original_exception = original_exception


class CycleCancelledError(ObserverError):
    """Raised at a cancellation checkpoint once cancellation was requested."""

    kind = ErrorKind.CANCELLED

    def __init__(self, message: str = "Observer cycle cancelled") -> None:
        super().__init__(message=message)


# ============================================================
# CLASSIFICATION
# ============================================================

@dataclass(frozen=True)
class ClassifiedError:
    """Tagged classification of an exception raised at the fetch boundary."""

    kind: ErrorKind
    error: ObserverError

    @property
    def is_recoverable(self) -> bool:
        """Whether the cycle can end cleanly."""
        return self.kind in (ErrorKind.TRANSIENT_FETCH, ErrorKind.CONFIGURATION, ErrorKind.CANCELLED)


def classify_fetch_error(exc: BaseException) -> ClassifiedError:
    """
    Classify an exception raised while fetching cluster health.

    Argument errors (ValueError, TypeError), management plane
    errors and timeouts are transient. Cancellation stays
    cancellation. Everything else is fatal.

    Args:
        exc: The exception raised by the snapshot source

    Returns:
        ClassifiedError with the wrapped observer error
    """
    if isinstance(exc, CycleCancelledError):
        return ClassifiedError(kind=ErrorKind.CANCELLED, error=exc)

    if isinstance(exc, TransientFetchError):
        return ClassifiedError(kind=ErrorKind.TRANSIENT_FETCH, error=exc)

    if isinstance(exc, (RemoteManagementError, ValueError, TypeError, TimeoutError, asyncio.TimeoutError)):
        return ClassifiedError(
            kind=ErrorKind.TRANSIENT_FETCH,
            error=TransientFetchError(f"Unable to determine cluster health: {exc}", original_exception=exc),
        )

    if isinstance(exc, FatalError):
        return ClassifiedError(kind=ErrorKind.FATAL, error=exc)

    return ClassifiedError(
        kind=ErrorKind.FATAL,
        error=FatalError(f"Unable to determine cluster health: {exc!r}", original_exception=exc),
    )
