"""
Transport error classification.

Turns whatever a transport raised (SOAP fault, HTTP status error,
socket error, Kafka error) into an ErrorClassification with a retry
decision. Pure: callers log.

Rule precedence:
  1. structured fault, server / 5xx   -> SERVER_FAULT        retry
  2. structured fault, client / 4xx   -> CLIENT_FAULT        no retry
  3. timeout                          -> TIMEOUT             retry
  4. connection refused               -> CONNECTION_REFUSED  retry
  5. connection reset                 -> CONNECTION_RESET    retry
  6. name resolution                  -> DNS_ERROR           no retry
  7. certificate / TLS                -> TLS_ERROR           no retry
  8. quota / rate limit               -> QUOTA_EXCEEDED      no retry
  9. anything else                    -> UNKNOWN             retry
"""

from __future__ import annotations

import asyncio
import errno
import socket
import ssl
from collections.abc import Iterator
from dataclasses import dataclass
from enum import Enum
from typing import Any

import httpx
from aiokafka import errors as kafka_errors


class ErrorKind(str, Enum):
    TIMEOUT = "TIMEOUT"
    CONNECTION_REFUSED = "CONNECTION_REFUSED"
    CONNECTION_RESET = "CONNECTION_RESET"
    DNS_ERROR = "DNS_ERROR"
    TLS_ERROR = "TLS_ERROR"
    QUOTA_EXCEEDED = "QUOTA_EXCEEDED"
    CLIENT_FAULT = "CLIENT_FAULT"
    SERVER_FAULT = "SERVER_FAULT"
    UNKNOWN = "UNKNOWN"


RETRYABLE_KINDS = frozenset(
    {
        ErrorKind.TIMEOUT,
        ErrorKind.CONNECTION_REFUSED,
        ErrorKind.CONNECTION_RESET,
        ErrorKind.SERVER_FAULT,
        ErrorKind.UNKNOWN,
    }
)


@dataclass(frozen=True)
class ErrorClassification:
    kind: ErrorKind
    retryable: bool
    message: str

    def as_log_fields(self) -> dict[str, Any]:
        return {"error_kind": self.kind.value, "retryable": self.retryable, "error": self.message}


class TransportFault(Exception):
    """Structured fault returned by the counterparty (e.g. a SOAP Fault)."""

    def __init__(self, fault_code: str, fault_string: str, detail: Any = None):
        super().__init__(f"{fault_code}: {fault_string}")
        self.fault_code = fault_code
        self.fault_string = fault_string
        self.detail = detail


class ResponseFormatError(Exception):
    """The counterparty answered, but not in the shape we expect."""


# ── Indicator tables ──────────────────────────────────────────────────────

TIMEOUT_TYPES: tuple[type[BaseException], ...] = (
    httpx.TimeoutException,
    asyncio.TimeoutError,
    TimeoutError,
    socket.timeout,
    kafka_errors.KafkaTimeoutError,
    kafka_errors.RequestTimedOutError,
)
TIMEOUT_ERRNOS = {errno.ETIMEDOUT}
TIMEOUT_MARKERS = ("timeout", "timed out")

REFUSED_ERRNOS = {errno.ECONNREFUSED}
REFUSED_MARKERS = ("connection refused",)

RESET_ERRNOS = {errno.ECONNRESET, errno.EPIPE}
RESET_MARKERS = ("connection reset", "reset by peer")

DNS_MARKERS = (
    "name or service not known",
    "nodename nor servname",
    "getaddrinfo failed",
    "temporary failure in name resolution",
    "name resolution",
)

TLS_MARKERS = ("certificate", "ssl", "tls")

QUOTA_MARKERS = ("quota", "rate limit", "rate-limit", "too many requests", "throttl")


def _chain(exc: BaseException) -> Iterator[BaseException]:
    """The exception plus its __cause__/__context__ chain."""
    seen: set[int] = set()
    current: BaseException | None = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        yield current
        current = current.__cause__ or current.__context__


def _fault_code(exc: BaseException) -> str | None:
    code = getattr(exc, "fault_code", None)
    return str(code).lower() if code else None


def _http_status(exc: BaseException) -> int | None:
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code
    return None


def _matches(chain: list[BaseException], types=(), errnos=frozenset(), markers=()) -> bool:
    for exc in chain:
        if types and isinstance(exc, types):
            return True
        if errnos and isinstance(exc, OSError) and exc.errno in errnos:
            return True
        text = str(exc).lower()
        if markers and any(marker in text for marker in markers):
            return True
    return False


def _message(exc: BaseException) -> str:
    text = str(exc)
    return text if text else type(exc).__name__


def classify_error(failure: BaseException) -> ErrorClassification:
    """Classify a transport failure. Never raises."""
    chain = list(_chain(failure))
    message = _message(failure)

    def result(kind: ErrorKind) -> ErrorClassification:
        return ErrorClassification(kind=kind, retryable=kind in RETRYABLE_KINDS, message=message)

    for exc in chain:
        code = _fault_code(exc)
        status = _http_status(exc)
        if (code and ("server" in code or "500" in code)) or (status is not None and 500 <= status < 600):
            return result(ErrorKind.SERVER_FAULT)
        if (code and ("client" in code or "400" in code)) or (status is not None and 400 <= status < 500):
            return result(ErrorKind.CLIENT_FAULT)

    if _matches(chain, TIMEOUT_TYPES, TIMEOUT_ERRNOS, TIMEOUT_MARKERS):
        return result(ErrorKind.TIMEOUT)
    if _matches(chain, (ConnectionRefusedError,), REFUSED_ERRNOS, REFUSED_MARKERS):
        return result(ErrorKind.CONNECTION_REFUSED)
    if _matches(chain, (ConnectionResetError, BrokenPipeError), RESET_ERRNOS, RESET_MARKERS):
        return result(ErrorKind.CONNECTION_RESET)
    if _matches(chain, (socket.gaierror,), markers=DNS_MARKERS):
        return result(ErrorKind.DNS_ERROR)
    if _matches(chain, (ssl.SSLError, ssl.CertificateError), markers=TLS_MARKERS):
        return result(ErrorKind.TLS_ERROR)
    if _matches(chain, markers=QUOTA_MARKERS):
        return result(ErrorKind.QUOTA_EXCEEDED)
    return result(ErrorKind.UNKNOWN)
