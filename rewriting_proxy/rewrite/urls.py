"""Attribute-level URL rewriting shared by both rewrite engines."""

import re
from urllib.parse import urlsplit

from rewriting_proxy.models import RewriteContext
from rewriting_proxy.proxy.url_resolver import (
    host_matches,
    is_proxied,
    is_skipped,
    proxy_url,
    resolve_reference,
)

_SRCSET_CANDIDATE_RE = re.compile(r"^(\s*)(\S+)(.*)$", re.S)
_REFRESH_URL_RE = re.compile(r"(url\s*=\s*['\"]?)([^'\";]+)", re.I)


def rewrite_url_value(
    value: str, base_url: str, context: RewriteContext, allow_bypass: bool = False
) -> str:
    """Proxy-encode one reference; returns ``value`` untouched when it must not change."""
    if not value or not value.strip():
        return value
    if is_skipped(value) or is_proxied(value, context.proxy_path_prefix):
        return value
    absolute = resolve_reference(value, base_url)
    if absolute is None:
        return value
    bypass = False
    if allow_bypass and context.bypass_domains:
        bypass = host_matches(urlsplit(absolute).hostname or "", context.bypass_domains)
    return proxy_url(
        absolute, context.proxy_path_prefix, bypass=bypass, service=context.service_param
    )


def rewrite_srcset(value: str, base_url: str, context: RewriteContext) -> str:
    """Rewrite each candidate URL, keeping descriptors and separators as they were."""
    candidates = []
    for candidate in value.split(","):
        match = _SRCSET_CANDIDATE_RE.match(candidate)
        if not match:
            candidates.append(candidate)
            continue
        lead, url, rest = match.groups()
        candidates.append(lead + rewrite_url_value(url, base_url, context) + rest)
    return ",".join(candidates)


def rewrite_refresh(value: str, base_url: str, context: RewriteContext) -> str:
    """Rewrite the target of a ``<meta http-equiv="refresh" content="5;url=...">``."""

    def _replace(match: re.Match) -> str:
        return match.group(1) + rewrite_url_value(match.group(2), base_url, context)

    return _REFRESH_URL_RE.sub(_replace, value, count=1)
