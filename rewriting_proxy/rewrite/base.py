import html
import re
from abc import ABC, abstractmethod
from datetime import datetime, timezone

from rewriting_proxy.errors import RewriteFailure
from rewriting_proxy.models import RewriteContext
from rewriting_proxy.rewrite.css import rewrite_css
from rewriting_proxy.rewrite.urls import rewrite_srcset, rewrite_url_value

URL_ATTRIBUTES = ("src", "href", "data-src", "data-url", "data-background", "poster")
SRCSET_ATTRIBUTES = ("srcset", "imagesrcset")
BYPASS_TAGS = {"a", "iframe"}
BLOCKING_META_HEADERS = {
    "x-frame-options",
    "frame-options",
    "content-security-policy",
    "content-security-policy-report-only",
}
DEBUG_OVERLAY_ID = "rewriting-proxy-debug"


class RewriteEngineBase(ABC):
    """One HTML rewriting strategy. Engines are stateless and shared across requests."""

    name = "base"

    def rewrite(self, document: str, context: RewriteContext) -> str:
        try:
            return self._rewrite(document, context)
        except RewriteFailure:
            raise
        except Exception as e:
            raise RewriteFailure(
                f"{self.name} engine could not rewrite document: {e}",
                context.target_url,
            ) from e

    @abstractmethod
    def _rewrite(self, document: str, context: RewriteContext) -> str:
        pass


def rewrite_attribute(
    tag: str, attribute: str, value: str, base_url: str, context: RewriteContext
) -> str:
    """New value for ``attribute`` of ``tag``; unchanged values are returned as-is."""
    attribute = attribute.lower()
    if attribute in URL_ATTRIBUTES:
        return rewrite_url_value(
            value, base_url, context, allow_bypass=tag.lower() in BYPASS_TAGS
        )
    if attribute in SRCSET_ATTRIBUTES:
        return rewrite_srcset(value, base_url, context)
    if attribute == "style":
        return rewrite_css(value, base_url, context)
    return value


def is_blocking_meta(http_equiv) -> bool:
    return bool(http_equiv) and http_equiv.strip().lower() in BLOCKING_META_HEADERS


def is_refresh_meta(http_equiv) -> bool:
    return bool(http_equiv) and http_equiv.strip().lower() == "refresh"


def is_blocked_script(src, context: RewriteContext) -> bool:
    if not src:
        return False
    return any(
        re.search(pattern, src, re.I) for pattern in context.blocked_script_patterns
    )


def debug_overlay(context: RewriteContext) -> str:
    timestamp = datetime.now(timezone.utc).isoformat(timespec="seconds")
    service = f" [{html.escape(context.service)}]" if context.service else ""
    return (
        f'<div id="{DEBUG_OVERLAY_ID}" style="position:fixed;bottom:0;right:0;'
        "z-index:2147483647;background:rgba(0,0,0,.75);color:#fff;"
        'font:11px/1.4 monospace;padding:4px 8px;pointer-events:none">'
        f"proxied{service}: {html.escape(context.target_url)} @ {timestamp}"
        "</div>"
    )
