"""Decide how an upstream response travels back to the client."""

import posixpath
from enum import Enum
from typing import Iterable
from urllib.parse import urlsplit

from rewriting_proxy.models import ProxyOptions, UpstreamResponse
from rewriting_proxy.proxy.url_resolver import host_matches

HTML_CONTENT_TYPES = ("text/html", "application/xhtml+xml")
CSS_CONTENT_TYPES = ("text/css",)

STATIC_ASSET_EXTENSIONS = {
    # images
    ".png", ".jpg", ".jpeg", ".gif", ".webp", ".avif", ".svg", ".ico", ".bmp",
    # styles and scripts
    ".css", ".js", ".mjs", ".map",
    # fonts
    ".woff", ".woff2", ".ttf", ".otf", ".eot",
    # media
    ".mp3", ".mp4", ".webm", ".ogg", ".wav", ".m4a",
}


class Disposition(str, Enum):
    REWRITE_HTML = "rewrite_html"
    REWRITE_CSS = "rewrite_css"
    PASSTHROUGH = "passthrough"


def media_type(content_type: str) -> str:
    return (content_type or "").split(";", 1)[0].strip().lower()


def is_html(content_type: str) -> bool:
    return media_type(content_type) in HTML_CONTENT_TYPES


def classify(
    content_type: str,
    host: str,
    options: ProxyOptions,
    bypass_domains: Iterable[str] = (),
    rewrite_css: bool = False,
) -> Disposition:
    """Branch purely on the upstream Content-Type (plus the bypass switches)."""
    kind = media_type(content_type)
    if kind in HTML_CONTENT_TYPES:
        if options.bypass_rewrite or host_matches(host, bypass_domains):
            return Disposition.PASSTHROUGH
        return Disposition.REWRITE_HTML
    if kind in CSS_CONTENT_TYPES and rewrite_css and not options.bypass_rewrite:
        return Disposition.REWRITE_CSS
    return Disposition.PASSTHROUGH


def has_static_extension(url: str) -> bool:
    try:
        path = urlsplit(url).path
    except ValueError:
        return False
    return posixpath.splitext(path)[1].lower() in STATIC_ASSET_EXTENSIONS


def is_cacheable_request(method: str, url: str) -> bool:
    return method.upper() == "GET" and has_static_extension(url)


def is_cacheable_response(upstream: UpstreamResponse, max_bytes: int) -> bool:
    return (
        upstream.status_code == 200
        and not is_html(upstream.content_type)
        and len(upstream.body) <= max_bytes
    )
