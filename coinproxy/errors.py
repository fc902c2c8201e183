# coinproxy/errors.py
"""
Failure taxonomy for the proxy core.

Lower layers raise these; only the dispatcher turns them into HTTP responses.
"""

from __future__ import annotations

from coinproxy.schemas import ErrorCode


class ProxyError(Exception):
    """Base class for every failure the proxy core reports."""

    code: ErrorCode = ErrorCode.INTERNAL_ERROR

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class InvalidRequest(ProxyError):
    """Caller error: missing or malformed parameters. Never retried."""

    code = ErrorCode.INVALID_REQUEST


class UpstreamUnavailable(ProxyError):
    """Provider unreachable, timed out, or answered with a non-2xx status."""

    code = ErrorCode.UPSTREAM_UNAVAILABLE

    def __init__(
        self, message: str, status_code: int | None = None, *, timed_out: bool = False
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.timed_out = timed_out
        if timed_out:
            self.code = ErrorCode.UPSTREAM_TIMEOUT
        elif status_code == 429:
            self.code = ErrorCode.RATE_LIMIT

    @property
    def retryable(self) -> bool:
        # network failures, timeouts and 5xx only
        return self.status_code is None or self.status_code >= 500


class MalformedUpstreamResponse(ProxyError):
    """Provider answered 2xx but the payload is unparseable or incomplete."""

    code = ErrorCode.MALFORMED_UPSTREAM
