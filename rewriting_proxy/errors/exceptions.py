"""Exception hierarchy for the rewriting proxy pipeline."""

from enum import Enum
from typing import Optional


class FailureKind(str, Enum):
    MISSING_TARGET = "MissingTarget"
    INVALID_TARGET = "InvalidTarget"
    BLOCKED_TARGET = "BlockedTarget"
    UPSTREAM_TIMEOUT = "UpstreamTimeout"
    UPSTREAM_NETWORK_ERROR = "UpstreamNetworkError"
    UPSTREAM_NON_SUCCESS_STATUS = "UpstreamNonSuccessStatus"
    REWRITE_FAILURE = "RewriteFailure"


class ProxyError(Exception):
    """Base exception for all proxy failures.

    Attributes:
        message: Human readable description shown on the diagnostic page
        target_url: The target the failure relates to (optional)
        kind: Failure classification reported in ``X-Proxy-Error``
        status_code: Status the proxy answers with
    """

    kind: FailureKind = FailureKind.UPSTREAM_NETWORK_ERROR
    status_code: int = 500

    def __init__(self, message: str, target_url: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.target_url = target_url


class MissingTarget(ProxyError):
    """No target URL was supplied."""

    kind = FailureKind.MISSING_TARGET
    status_code = 400


class InvalidTarget(ProxyError):
    """The target URL could not be parsed into an http(s) URL."""

    kind = FailureKind.INVALID_TARGET
    status_code = 400


class BlockedTarget(ProxyError):
    """The target host is excluded by the allow/deny policy."""

    kind = FailureKind.BLOCKED_TARGET
    status_code = 403


class UpstreamTimeout(ProxyError):
    """The upstream fetch did not finish before the deadline."""

    kind = FailureKind.UPSTREAM_TIMEOUT


class UpstreamNetworkError(ProxyError):
    """DNS, connection, TLS or protocol failure talking to the upstream."""

    kind = FailureKind.UPSTREAM_NETWORK_ERROR


class RewriteFailure(ProxyError):
    """The markup could not be rewritten; callers fall back to the raw bytes."""

    kind = FailureKind.REWRITE_FAILURE
