"""Typed error taxonomy shared by the chunking pipeline and the HTTP surface."""

from __future__ import annotations

import hashlib
from datetime import UTC, datetime
from enum import StrEnum
from types import MappingProxyType
from typing import Any, Mapping


class ErrorCategory(StrEnum):
    AUTHENTICATION = "authentication"
    API = "api"
    NETWORK = "network"
    DATA = "data"
    UNKNOWN = "unknown"


class Severity(StrEnum):
    CRITICAL = "critical"
    WARNING = "warning"
    ERROR = "error"


class ErrorType(StrEnum):
    """Stable identifiers rendered by the UI layer. Never rename a value."""

    # Authentication
    AUTH_EXPIRED = "auth_expired"
    AUTH_INVALID = "auth_invalid"
    AUTH_MISSING = "auth_missing"
    PERMISSION_DENIED = "permission_denied"

    # API
    API_KEY_INVALID = "api_key_invalid"
    API_KEY_MISSING = "api_key_missing"
    API_RATE_LIMITED = "api_rate_limited"
    API_QUOTA_EXCEEDED = "api_quota_exceeded"
    API_SERVICE_UNAVAILABLE = "api_service_unavailable"
    API_CONTEXT_TOO_LONG = "api_context_too_long"

    # Network
    NETWORK_CONNECTION = "network_connection"
    NETWORK_TIMEOUT = "network_timeout"
    NETWORK_DNS_FAILURE = "network_dns_failure"
    NETWORK_OFFLINE = "network_offline"

    # Data
    TRANSCRIPT_NOT_FOUND = "transcript_not_found"
    TRANSCRIPT_TOO_LARGE = "transcript_too_large"
    TRANSCRIPT_EMPTY = "transcript_empty"
    JSON_PARSE_ERROR = "json_parse_error"
    INVALID_RESPONSE = "invalid_response"
    MALFORMED_TIMESTAMPS = "malformed_timestamps"
    MISSING_SPEAKERS = "missing_speakers"

    UNKNOWN = "unknown"

    @property
    def category(self) -> ErrorCategory:
        return _CATEGORY_BY_TYPE[self]

    @property
    def is_retryable(self) -> bool:
        return self in RETRYABLE_TYPES


_CATEGORY_BY_TYPE: dict[ErrorType, ErrorCategory] = {
    ErrorType.AUTH_EXPIRED: ErrorCategory.AUTHENTICATION,
    ErrorType.AUTH_INVALID: ErrorCategory.AUTHENTICATION,
    ErrorType.AUTH_MISSING: ErrorCategory.AUTHENTICATION,
    ErrorType.PERMISSION_DENIED: ErrorCategory.AUTHENTICATION,
    ErrorType.API_KEY_INVALID: ErrorCategory.API,
    ErrorType.API_KEY_MISSING: ErrorCategory.API,
    ErrorType.API_RATE_LIMITED: ErrorCategory.API,
    ErrorType.API_QUOTA_EXCEEDED: ErrorCategory.API,
    ErrorType.API_SERVICE_UNAVAILABLE: ErrorCategory.API,
    ErrorType.API_CONTEXT_TOO_LONG: ErrorCategory.API,
    ErrorType.NETWORK_CONNECTION: ErrorCategory.NETWORK,
    ErrorType.NETWORK_TIMEOUT: ErrorCategory.NETWORK,
    ErrorType.NETWORK_DNS_FAILURE: ErrorCategory.NETWORK,
    ErrorType.NETWORK_OFFLINE: ErrorCategory.NETWORK,
    ErrorType.TRANSCRIPT_NOT_FOUND: ErrorCategory.DATA,
    ErrorType.TRANSCRIPT_TOO_LARGE: ErrorCategory.DATA,
    ErrorType.TRANSCRIPT_EMPTY: ErrorCategory.DATA,
    ErrorType.JSON_PARSE_ERROR: ErrorCategory.DATA,
    ErrorType.INVALID_RESPONSE: ErrorCategory.DATA,
    ErrorType.MALFORMED_TIMESTAMPS: ErrorCategory.DATA,
    ErrorType.MISSING_SPEAKERS: ErrorCategory.DATA,
    ErrorType.UNKNOWN: ErrorCategory.UNKNOWN,
}

RETRYABLE_TYPES: frozenset[ErrorType] = frozenset(
    {
        ErrorType.API_RATE_LIMITED,
        ErrorType.API_SERVICE_UNAVAILABLE,
        ErrorType.NETWORK_CONNECTION,
        ErrorType.NETWORK_TIMEOUT,
        ErrorType.NETWORK_DNS_FAILURE,
        ErrorType.NETWORK_OFFLINE,
    }
)


def severity_for(error_type: ErrorType) -> Severity:
    if error_type.category is ErrorCategory.AUTHENTICATION or error_type is ErrorType.API_KEY_INVALID:
        return Severity.CRITICAL
    if error_type is ErrorType.API_RATE_LIMITED:
        return Severity.WARNING
    return Severity.ERROR


class DomainError(Exception):
    """A classified, sanitized failure.

    Category, retryability and severity are functions of ``type`` and cannot
    be overridden. Instances are read-only; use :meth:`with_attempts` or
    :meth:`with_context` to derive a modified copy.

    Construct through :func:`src.errors.classifier.normalize_error` (raw
    failures) or :func:`src.errors.classifier.make_error` (known failures) so
    that messages and context are redacted before they are stored.
    """

    def __init__(
        self,
        error_type: ErrorType,
        message: str,
        *,
        context: Mapping[str, Any] | None = None,
        status_code: int | None = None,
        attempts: int = 0,
        stack: str | None = None,
        timestamp: str | None = None,
    ) -> None:
        super().__init__(message)
        self._type = ErrorType(error_type)
        self._message = message
        self._context = MappingProxyType(dict(context or {}))
        self._status_code = status_code
        self._attempts = attempts
        self._stack = stack
        self._timestamp = timestamp or datetime.now(UTC).isoformat()

    @property
    def type(self) -> ErrorType:
        return self._type

    @property
    def category(self) -> ErrorCategory:
        return self._type.category

    @property
    def message(self) -> str:
        return self._message

    @property
    def context(self) -> Mapping[str, Any]:
        return self._context

    @property
    def status_code(self) -> int | None:
        return self._status_code

    @property
    def attempts(self) -> int:
        """Number of calls made before this error became terminal (0 if never retried)."""
        return self._attempts

    @property
    def stack(self) -> str | None:
        """Sanitized, truncated traceback of the original failure."""
        return self._stack

    @property
    def timestamp(self) -> str:
        return self._timestamp

    @property
    def is_retryable(self) -> bool:
        return self._type.is_retryable

    @property
    def severity(self) -> Severity:
        return severity_for(self._type)

    @property
    def error_id(self) -> str:
        digest = hashlib.sha1(
            f"{self._type}{self._message}{self._timestamp}".encode(), usedforsecurity=False
        ).hexdigest()
        return f"err_{digest[:8]}"

    def _copy(self, **changes: Any) -> DomainError:
        values: dict[str, Any] = {
            "context": self._context,
            "status_code": self._status_code,
            "attempts": self._attempts,
            "stack": self._stack,
            "timestamp": self._timestamp,
        }
        values.update(changes)
        clone = type(self)(self._type, self._message, **values)
        clone.__cause__ = self.__cause__
        return clone

    def with_attempts(self, attempts: int) -> DomainError:
        return self._copy(attempts=attempts)

    def with_context(self, **extra: Any) -> DomainError:
        return self._copy(context={**self._context, **extra})

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self._type.value,
            "category": self.category.value,
            "severity": self.severity.value,
            "message": self._message,
            "context": dict(self._context),
            "status_code": self._status_code,
            "attempts": self._attempts,
            "is_retryable": self.is_retryable,
            "timestamp": self._timestamp,
            "error_id": self.error_id,
        }

    def __repr__(self) -> str:
        return f"DomainError(type={self._type.value!r}, message={self._message!r})"
