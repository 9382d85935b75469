"""Normalize arbitrary failures into :class:`DomainError`.

Classification order:

1. Already a ``DomainError`` -> returned unchanged.
2. HTTP status (``status_code`` / ``status`` / ``response.status_code``).
3. Exception class (provider SDK timeouts/connection errors, ``httpx``,
   stdlib ``TimeoutError`` / ``ConnectionError`` / ``json.JSONDecodeError``).
4. Message substrings.
5. ``UNKNOWN``.

Secrets are redacted from the message and the context before the
``DomainError`` is built; tracebacks keep at most five frames.
"""

from __future__ import annotations

import json
import logging
import re
import socket
import traceback
from typing import Any, Mapping

import anthropic
import httpx
import openai

from src.errors.taxonomy import DomainError, ErrorType, Severity

logger = logging.getLogger(__name__)

MAX_STACK_FRAMES = 5

_REDACTIONS: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"Bearer\s+[A-Za-z0-9\-._~+/]+=*", re.IGNORECASE), "Bearer [REDACTED]"),
    (
        re.compile(r"(x-)?api[_-]?key[\"'\s:=]+[A-Za-z0-9\-._~+/]+=*", re.IGNORECASE),
        "api_key: [REDACTED]",
    ),
    (re.compile(r"sk-(ant-)?[A-Za-z0-9\-_]+"), "sk-[REDACTED]"),
    (re.compile(r"https?://[^\s\"']+"), "[URL_REDACTED]"),
    (re.compile(r"\b\d{1,3}\.\d{1,3}\.\d{1,3}\.\d{1,3}\b"), "[IP_REDACTED]"),
]

_SENSITIVE_KEYS = ("apikey", "api_key", "token", "password", "secret", "auth", "bearer", "cookie")

_HOST_IDENTIFIERS: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"chrome-extension://[a-z]+"), "chrome-extension://[ID]"),
    (re.compile(r"moz-extension://[0-9a-f\-]+"), "moz-extension://[ID]"),
    (re.compile(r"/(home|Users)/[^/\s\"]+"), "/~"),
    (re.compile(r"[A-Za-z]:\\Users\\[^\\\s\"]+"), "~"),
]

# (needles, qualifiers, type): matches when any needle and, if qualifiers are
# given, any qualifier occurs in the lowercased message. First match wins.
_MESSAGE_RULES: list[tuple[tuple[str, ...], tuple[str, ...], ErrorType]] = [
    (("rate limit", "rate_limit", "too many requests"), (), ErrorType.API_RATE_LIMITED),
    (("quota", "usage limit", "billing"), (), ErrorType.API_QUOTA_EXCEEDED),
    (("api key", "api_key", "x-api-key"), ("missing", "required", "not configured", "no api"), ErrorType.API_KEY_MISSING),
    (("api key", "api_key", "x-api-key"), (), ErrorType.API_KEY_INVALID),
    (("session expired", "token expired", "unauthorized", "invalid token"), (), ErrorType.AUTH_EXPIRED),
    (("not authenticated", "no session", "missing credentials", "login required"), (), ErrorType.AUTH_MISSING),
    (("authentication failed", "invalid credentials"), (), ErrorType.AUTH_INVALID),
    (("forbidden", "permission"), (), ErrorType.PERMISSION_DENIED),
    (
        ("context length", "context_length", "maximum context", "prompt is too long", "too many tokens"),
        (),
        ErrorType.API_CONTEXT_TOO_LONG,
    ),
    (("server error", "service unavailable", "overloaded", "bad gateway"), (), ErrorType.API_SERVICE_UNAVAILABLE),
    (("timeout", "timed out"), (), ErrorType.NETWORK_TIMEOUT),
    (("getaddrinfo", "name or service not known", "dns", "enotfound"), (), ErrorType.NETWORK_DNS_FAILURE),
    (("offline", "internet disconnected", "network is unreachable"), (), ErrorType.NETWORK_OFFLINE),
    (("fetch failed", "failed to fetch", "network", "connection", "econnrefused", "econnreset"), (), ErrorType.NETWORK_CONNECTION),
    (("too large", "exceeds maximum size"), (), ErrorType.TRANSCRIPT_TOO_LARGE),
    (("empty transcript", "no entries"), (), ErrorType.TRANSCRIPT_EMPTY),
    (("not found", "no transcript"), (), ErrorType.TRANSCRIPT_NOT_FOUND),
    (("timestamp",), (), ErrorType.MALFORMED_TIMESTAMPS),
    (("speaker",), ("missing", "no ", "unknown"), ErrorType.MISSING_SPEAKERS),
    (("json", "parse", "unexpected token"), (), ErrorType.JSON_PARSE_ERROR),
]


def sanitize_message(message: str) -> str:
    """Strip bearer tokens, API keys, URLs and IP addresses from *message*."""
    for pattern, replacement in _REDACTIONS:
        message = pattern.sub(replacement, message)
    return message


def sanitize_context(context: Mapping[str, Any] | None) -> dict[str, Any]:
    """Redact values under sensitive keys and scrub secrets from string values."""
    sanitized: dict[str, Any] = {}
    for key, value in (context or {}).items():
        if any(s in str(key).lower() for s in _SENSITIVE_KEYS):
            sanitized[key] = "[REDACTED]"
        elif isinstance(value, str):
            sanitized[key] = sanitize_message(value)
        elif isinstance(value, Mapping):
            sanitized[key] = sanitize_context(value)
        elif callable(value):
            # Callbacks (retry hooks etc.) are not data.
            continue
        else:
            sanitized[key] = value
    return sanitized


def sanitize_stack(exc: BaseException) -> str | None:
    """Return the innermost ``MAX_STACK_FRAMES`` frames with host identifiers removed."""
    if exc.__traceback__ is None:
        return None
    frames = traceback.format_tb(exc.__traceback__)[-MAX_STACK_FRAMES:]
    text = "".join(frames)
    for pattern, replacement in _HOST_IDENTIFIERS:
        text = pattern.sub(replacement, text)
    return sanitize_message(text)


def extract_status(raw: Any) -> int | None:
    """Find an HTTP status code on an exception, response-like object or dict."""
    if isinstance(raw, Mapping):
        candidates = [raw.get("status_code"), raw.get("status")]
        response = raw.get("response")
        if isinstance(response, Mapping):
            candidates.append(response.get("status"))
    else:
        candidates = [getattr(raw, "status_code", None), getattr(raw, "status", None)]
        response = getattr(raw, "response", None)
        if response is not None:
            candidates.append(getattr(response, "status_code", None))
    for value in candidates:
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        if isinstance(value, str) and value.isdigit():
            return int(value)
    return None


def extract_message(raw: Any) -> str:
    if isinstance(raw, Mapping):
        error = raw.get("error")
        if isinstance(error, Mapping) and error.get("message"):
            return str(error["message"])
        for key in ("message", "statusText", "detail"):
            if raw.get(key):
                return str(raw[key])
        return "An unknown error occurred"
    if isinstance(raw, BaseException):
        text = str(raw)
        if text:
            return text
        return type(raw).__name__
    if raw:
        return str(raw)
    return "An unknown error occurred"


def _type_from_status(status: int, message: str) -> ErrorType | None:
    lowered = message.lower()
    if status == 401:
        if "api key" in lowered or "api_key" in lowered or "x-api-key" in lowered:
            return ErrorType.API_KEY_INVALID
        return ErrorType.AUTH_EXPIRED
    if status == 403:
        return ErrorType.PERMISSION_DENIED
    if status == 429:
        return ErrorType.API_RATE_LIMITED
    if status == 404:
        return ErrorType.TRANSCRIPT_NOT_FOUND
    if status == 402:
        return ErrorType.API_QUOTA_EXCEEDED
    if status == 408:
        return ErrorType.NETWORK_TIMEOUT
    if status == 413:
        return ErrorType.TRANSCRIPT_TOO_LARGE
    if status >= 500:
        return ErrorType.API_SERVICE_UNAVAILABLE
    return None


def _type_from_exception(raw: Any) -> ErrorType | None:
    # SDK timeout classes subclass their connection errors; check them first.
    if isinstance(raw, (anthropic.APITimeoutError, openai.APITimeoutError, httpx.TimeoutException, TimeoutError)):
        return ErrorType.NETWORK_TIMEOUT
    if isinstance(raw, socket.gaierror):
        return ErrorType.NETWORK_DNS_FAILURE
    if isinstance(
        raw, (anthropic.APIConnectionError, openai.APIConnectionError, httpx.TransportError, ConnectionError)
    ):
        return ErrorType.NETWORK_CONNECTION
    if isinstance(raw, json.JSONDecodeError):
        return ErrorType.JSON_PARSE_ERROR
    return None


def _type_from_message(message: str) -> ErrorType | None:
    lowered = message.lower()
    for needles, qualifiers, error_type in _MESSAGE_RULES:
        if not any(n in lowered for n in needles):
            continue
        if qualifiers and not any(q in lowered for q in qualifiers):
            continue
        return error_type
    return None


def detect_error_type(raw: Any) -> ErrorType:
    message = extract_message(raw)
    status = extract_status(raw)
    if status is not None:
        by_status = _type_from_status(status, message)
        if by_status is not None:
            return by_status
    return _type_from_exception(raw) or _type_from_message(message) or ErrorType.UNKNOWN


def make_error(
    error_type: ErrorType,
    message: str,
    context: Mapping[str, Any] | None = None,
    *,
    status_code: int | None = None,
) -> DomainError:
    """Build a ``DomainError`` for a failure the caller has already identified."""
    return DomainError(
        error_type,
        sanitize_message(message),
        context=sanitize_context(context),
        status_code=status_code,
    )


def normalize_error(raw: Any, context: Mapping[str, Any] | None = None) -> DomainError:
    """Classify *raw* (an exception, dict or message) into a sanitized ``DomainError``."""
    if isinstance(raw, DomainError):
        return raw.with_context(**sanitize_context(context)) if context else raw

    error = DomainError(
        detect_error_type(raw),
        sanitize_message(extract_message(raw)),
        context=sanitize_context(context),
        status_code=extract_status(raw),
        stack=sanitize_stack(raw) if isinstance(raw, BaseException) else None,
    )
    log_error(error)
    return error


def log_error(error: DomainError) -> None:
    level = logging.ERROR if error.severity is Severity.CRITICAL else logging.WARNING
    logger.log(
        level,
        "Classified error %s (category=%s, severity=%s, retryable=%s): %s",
        error.type.value,
        error.category.value,
        error.severity.value,
        error.is_retryable,
        error.message,
    )
