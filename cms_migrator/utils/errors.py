"""Errors raised by the migration and the transport retry policy.

Every failure aborts the run; there is no per-object skip. The classification
below only decides how an error is logged and reported.
"""

from enum import Enum
from typing import Any, Callable, Dict, Optional, Tuple, Type

from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from cms_migrator.logging import get_logger


class ErrorType(str, Enum):
    """What failed."""

    TRANSPORT = "transport"
    DATABASE = "database"
    PATH_MAPPING = "path_mapping"
    TIMEOUT = "timeout"
    UNKNOWN = "unknown"


class ErrorSeverity(str, Enum):
    """How far a failure reaches."""

    CRITICAL = "critical"  # run aborted
    HIGH = "high"  # unit aborted, run aborted once siblings finish


class MigrationError(Exception):
    """Base class of migration failures.

    ``context`` holds identifiers such as the container and blob name; they
    are copied into the error log record.
    """

    error_type: ErrorType = ErrorType.UNKNOWN
    severity: ErrorSeverity = ErrorSeverity.HIGH

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        *,
        error_type: Optional[ErrorType] = None,
        severity: Optional[ErrorSeverity] = None,
    ) -> None:
        super().__init__(message)
        self.context: Dict[str, Any] = dict(context or {})
        if error_type is not None:
            self.error_type = error_type
        if severity is not None:
            self.severity = severity


class TransportError(MigrationError):
    """A storage or database call failed for good."""

    error_type = ErrorType.TRANSPORT
    severity = ErrorSeverity.CRITICAL


class PathMappingError(MigrationError):
    """A file could not be mapped onto an object key."""

    error_type = ErrorType.PATH_MAPPING
    severity = ErrorSeverity.CRITICAL


class TransferTimeoutError(MigrationError):
    """Copying one object took longer than the configured deadline."""

    error_type = ErrorType.TIMEOUT
    severity = ErrorSeverity.CRITICAL

    def __init__(self, message: str, timeout: float, context: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, context)
        self.timeout = timeout


def describe_error(error: BaseException) -> Dict[str, Any]:
    """Classify an exception for logging.

    Exceptions outside the hierarchy count as critical and of unknown type.
    """
    if isinstance(error, MigrationError):
        error_type, severity, context = error.error_type, error.severity, error.context
    else:
        error_type, severity, context = ErrorType.UNKNOWN, ErrorSeverity.CRITICAL, {}

    return {
        "error_type": error_type.value,
        "severity": severity.value,
        "exception_type": type(error).__name__,
        "message": str(error),
        "context": context,
    }


def create_retry_decorator(
    exceptions: Tuple[Type[BaseException], ...],
    max_attempts: int = 3,
    backoff_factor: float = 2.0,
) -> Callable:
    """Build a tenacity decorator retrying ``exceptions`` with exponential backoff.

    Waits grow from one second up to a minute. The last exception is
    re-raised once ``max_attempts`` calls have failed.
    """
    log = get_logger("retry")

    def before_sleep(retry_state: Any) -> None:
        log.warning(
            "transport_retry",
            operation=getattr(retry_state.fn, "__qualname__", None),
            attempt=retry_state.attempt_number,
            error=str(retry_state.outcome.exception()),
            sleep_seconds=retry_state.next_action.sleep if retry_state.next_action else 0,
        )

    return retry(
        retry=retry_if_exception_type(exceptions),
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(multiplier=backoff_factor, min=1, max=60),
        before_sleep=before_sleep,
        reraise=True,
    )
