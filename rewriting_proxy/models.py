from dataclasses import dataclass, field
from typing import Optional

from rewriting_proxy.errors.exceptions import FailureKind


@dataclass
class ProxyOptions:
    debug: bool = False
    bypass_rewrite: bool = False
    retry_count: int = 0
    force_protocol_bypass: bool = False


@dataclass
class ProxyRequest:
    raw_target_url: Optional[str]
    method: str = "GET"
    # Ordered (name, value) pairs; duplicates are kept
    headers: list[tuple[str, str]] = field(default_factory=list)
    body: bytes = b""
    options: ProxyOptions = field(default_factory=ProxyOptions)
    service: Optional[str] = None

    def header(self, name: str) -> Optional[str]:
        """First value of ``name`` (case-insensitive), or None."""
        name = name.lower()
        for key, value in self.headers:
            if key.lower() == name:
                return value
        return None


@dataclass(frozen=True)
class ResolvedTarget:
    absolute_url: str
    scheme: str
    host: str
    path: str
    origin: str


@dataclass
class UpstreamResponse:
    status_code: int
    headers: list[tuple[str, str]]
    content_type: str
    body: bytes
    final_url: str
    redirected: bool = False
    encoding: str = "utf-8"

    @property
    def text(self) -> str:
        try:
            return self.body.decode(self.encoding or "utf-8", errors="replace")
        except LookupError:
            return self.body.decode("utf-8", errors="replace")


@dataclass(frozen=True)
class RewriteContext:
    target_url: str
    proxy_path_prefix: str
    bypass_domains: frozenset[str] = frozenset()
    debug: bool = False
    service: Optional[str] = None
    # Client-supplied label, appended as `&service=` so it survives navigation
    service_param: Optional[str] = None
    blocked_script_patterns: tuple[str, ...] = ()


@dataclass(frozen=True)
class CacheEntry:
    key: str
    payload: bytes
    content_type: str
    created_at: float
    size_bytes: int


@dataclass
class ErrorReport:
    target_url: str
    kind: FailureKind
    message: str
    stack: Optional[str] = None
    retry_count: int = 0
