from .exceptions import (
    BlockedTarget,
    FailureKind,
    InvalidTarget,
    MissingTarget,
    ProxyError,
    RewriteFailure,
    UpstreamNetworkError,
    UpstreamTimeout,
)

__all__ = [
    "BlockedTarget",
    "FailureKind",
    "InvalidTarget",
    "MissingTarget",
    "ProxyError",
    "RewriteFailure",
    "UpstreamNetworkError",
    "UpstreamTimeout",
]
