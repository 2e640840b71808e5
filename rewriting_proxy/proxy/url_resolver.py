"""
Target normalization and reference resolution.

Every URL the proxy emits has the form ``{prefix}?url=<encoded absolute URL>``.
Relative references are resolved against the final fetched URL (after
redirects), the same base a browser would use.
"""

import re
from typing import Iterable, Optional
from urllib.parse import quote, urljoin, urlsplit, urlunsplit

from rewriting_proxy.errors.exceptions import BlockedTarget, InvalidTarget, MissingTarget
from rewriting_proxy.models import ResolvedTarget

SKIPPED_PREFIXES = ("data:", "blob:", "javascript:", "#")
UNKNOWN_SERVICE = "Unknown Service"

_SCHEME_RE = re.compile(r"^[a-zA-Z][a-zA-Z0-9+.\-]*://")
_BAD_HOST_CHARS = re.compile(r"[\s<>\"'{}|\\^`]")
# Same unreserved set as JavaScript's encodeURIComponent
_ENCODE_SAFE = "!*'()"


def resolve_target(
    raw: Optional[str],
    base_hint: Optional[str] = None,
    force_protocol_bypass: bool = False,
) -> ResolvedTarget:
    """
    Turn the raw ``url`` query value into a ResolvedTarget.

    Bare hosts get ``https://``. A relative path is resolved against
    ``base_hint`` when one is given. ``force_protocol_bypass`` downgrades
    https to http for origins with a broken TLS endpoint.
    """
    if raw is None or not raw.strip():
        raise MissingTarget("No URL provided")

    candidate = raw.strip()
    lowered = candidate.lower()

    if lowered.startswith(("http://", "https://")):
        pass
    elif candidate.startswith("//"):
        candidate = "https:" + candidate
    elif base_hint and candidate.startswith(("/", "./", "../")):
        candidate = urljoin(base_hint, candidate)
    elif _SCHEME_RE.match(candidate):
        raise InvalidTarget(f"Unsupported URL scheme in {candidate}", candidate)
    else:
        candidate = "https://" + candidate

    try:
        parts = urlsplit(candidate)
        port = parts.port
    except ValueError as e:
        raise InvalidTarget(f"Malformed URL {candidate}: {e}", candidate) from e

    scheme = parts.scheme.lower()
    host = (parts.hostname or "").lower()
    if scheme not in ("http", "https"):
        raise InvalidTarget(f"Unsupported URL scheme in {candidate}", candidate)
    if not host or _BAD_HOST_CHARS.search(host):
        raise InvalidTarget(f"Malformed URL {candidate}: missing or invalid host", candidate)

    if force_protocol_bypass and scheme == "https":
        scheme = "http"

    netloc = parts.netloc
    path = parts.path or "/"
    absolute_url = urlunsplit((scheme, netloc, path, parts.query, ""))
    origin_host = f"[{host}]" if ":" in host else host
    origin = f"{scheme}://{origin_host}" + (f":{port}" if port else "")

    return ResolvedTarget(
        absolute_url=absolute_url,
        scheme=scheme,
        host=host,
        path=path,
        origin=origin,
    )


def normalize_url(url: str) -> str:
    """Give an absolute URL an explicit root path (``https://a.com`` -> ``https://a.com/``)."""
    try:
        parts = urlsplit(url)
    except ValueError:
        return url
    if parts.scheme and parts.netloc and not parts.path:
        return urlunsplit((parts.scheme, parts.netloc, "/", parts.query, parts.fragment))
    return url


def is_skipped(value: str) -> bool:
    return value.strip().lower().startswith(SKIPPED_PREFIXES)


def is_proxied(value: str, prefix: str) -> bool:
    """True when ``value`` already routes through the proxy endpoint."""
    value = value.strip()
    prefixes = {prefix}
    prefix_path = urlsplit(prefix).path
    if prefix_path:
        prefixes.add(prefix_path)
    return any(value == p or value.startswith(p + "?") for p in prefixes)


def resolve_reference(value: str, base_url: str) -> Optional[str]:
    """Resolve an attribute value against ``base_url``; None if not http(s)."""
    value = value.strip()
    if not value:
        return None
    try:
        absolute = urljoin(base_url, value)
        scheme = urlsplit(absolute).scheme.lower()
    except ValueError:
        return None
    if scheme not in ("http", "https"):
        return None
    return absolute


def proxy_url(
    absolute_url: str, prefix: str, bypass: bool = False, service: Optional[str] = None
) -> str:
    url = f"{prefix}?url={quote(absolute_url, safe=_ENCODE_SAFE)}"
    if bypass:
        url += "&bypass=true"
    if service:
        url += f"&service={quote(service, safe=_ENCODE_SAFE)}"
    return url


def host_matches(host: str, suffixes: Iterable[str]) -> bool:
    """Exact host or any subdomain of one of ``suffixes``."""
    host = (host or "").lower().rstrip(".")
    for suffix in suffixes:
        suffix = suffix.lower().lstrip(".")
        if suffix and (host == suffix or host.endswith("." + suffix)):
            return True
    return False


def check_target_policy(
    target: ResolvedTarget,
    allowed: Iterable[str] = (),
    blocked: Iterable[str] = (),
) -> None:
    allowed = list(allowed)
    if host_matches(target.host, blocked):
        raise BlockedTarget(f"Access to {target.host} is blocked", target.absolute_url)
    if allowed and not host_matches(target.host, allowed):
        raise BlockedTarget(
            f"{target.host} is not in the list of allowed targets", target.absolute_url
        )


def service_label(url: str, service: Optional[str] = None) -> str:
    """Dashboard label for a target, derived from the domain when not supplied."""
    if service and service != UNKNOWN_SERVICE:
        return service
    try:
        host = urlsplit(url).hostname or ""
    except ValueError:
        return UNKNOWN_SERVICE
    domain_parts = [p for p in host.split(".") if p]
    if len(domain_parts) >= 2:
        domain = domain_parts[-2]
        return domain[:1].upper() + domain[1:]
    return UNKNOWN_SERVICE
