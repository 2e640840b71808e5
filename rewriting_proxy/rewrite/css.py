"""url() and @import rewriting for stylesheets and inline styles."""

import re

from rewriting_proxy.models import RewriteContext
from rewriting_proxy.proxy.url_resolver import (
    is_proxied,
    proxy_url,
    resolve_reference,
)

CSS_SKIPPED_PREFIXES = ("data:", "blob:", "#")

_CSS_URL_RE = re.compile(
    r"url\(\s*(?P<quote>['\"]?)(?P<url>.*?)(?P=quote)\s*\)", re.I | re.S
)
_CSS_IMPORT_RE = re.compile(r"@import\s+(?P<quote>['\"])(?P<url>[^'\"]+)(?P=quote)", re.I)


def _proxied_css_target(url: str, base_url: str, context: RewriteContext):
    url = url.strip()
    if not url or url.lower().startswith(CSS_SKIPPED_PREFIXES):
        return None
    if is_proxied(url, context.proxy_path_prefix):
        return None
    absolute = resolve_reference(url, base_url)
    if absolute is None:
        return None
    return proxy_url(absolute, context.proxy_path_prefix)


def rewrite_css(css: str, base_url: str, context: RewriteContext) -> str:
    """
    Point every ``url(...)`` (quoted or bare) and ``@import "..."`` at the proxy.

    Values already routed through the proxy, ``data:``/``blob:`` URIs and
    SVG fragment references are left exactly as written.
    """
    if not css:
        return css

    def _url(match: re.Match) -> str:
        target = _proxied_css_target(match.group("url"), base_url, context)
        if target is None:
            return match.group(0)
        return f'url("{target}")'

    def _import(match: re.Match) -> str:
        target = _proxied_css_target(match.group("url"), base_url, context)
        if target is None:
            return match.group(0)
        return f'@import "{target}"'

    css = _CSS_URL_RE.sub(_url, css)
    return _CSS_IMPORT_RE.sub(_import, css)
