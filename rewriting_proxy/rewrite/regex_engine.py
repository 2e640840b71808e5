"""
Pattern-matching rewriter for deployments that cannot afford a full parse.

The document is scanned once as a sequence of comments, raw-text blocks
(``<script>``/``<style>``) and start tags. Only start tags and style bodies
are edited; everything else is copied through byte for byte, which keeps the
output stable when the engine runs over its own result.
"""

import html
import re
from typing import Optional

from rewriting_proxy.models import RewriteContext
from rewriting_proxy.proxy.url_resolver import resolve_reference
from rewriting_proxy.rewrite.base import (
    DEBUG_OVERLAY_ID,
    RewriteEngineBase,
    debug_overlay,
    is_blocked_script,
    is_blocking_meta,
    is_refresh_meta,
    rewrite_attribute,
)
from rewriting_proxy.rewrite.countermeasures import MARKER_ATTRIBUTE, countermeasure_tag
from rewriting_proxy.rewrite.css import rewrite_css
from rewriting_proxy.rewrite.urls import rewrite_refresh

_TAG_BODY = r"""(?:"[^"]*"|'[^']*'|[^'">])*"""

_TOKEN_RE = re.compile(
    rf"""
    (?P<comment><!--.*?-->)
  | (?P<raw><(?P<rawname>script|style)\b(?P<rawattrs>{_TAG_BODY})>
        (?P<rawbody>.*?)</(?P=rawname)\s*>)
  | (?P<tag><(?P<name>[a-zA-Z][a-zA-Z0-9:-]*)(?P<attrs>{_TAG_BODY})>)
    """,
    re.S | re.I | re.X,
)
_ATTR_RE = re.compile(
    r"""(?P<lead>\s+)(?P<name>[^\s"'>/=]+)
        (?:(?P<eq>\s*=\s*)(?:"(?P<dq>[^"]*)"|'(?P<sq>[^']*)'|(?P<uq>[^\s"'=<>`]+)))?""",
    re.X,
)
_HEAD_OPEN_RE = re.compile(rf"<head\b{_TAG_BODY}>", re.I)
_HEAD_CLOSE_RE = re.compile(r"</head\s*>", re.I)
_HTML_OPEN_RE = re.compile(rf"<html\b{_TAG_BODY}>", re.I)
_BODY_OPEN_RE = re.compile(rf"<body\b{_TAG_BODY}>", re.I)
_DOCTYPE_RE = re.compile(r"^\s*<!doctype[^>]*>", re.I)


def _attribute_value(match: re.Match) -> Optional[str]:
    for group in ("dq", "sq", "uq"):
        if match.group(group) is not None:
            return html.unescape(match.group(group))
    return None


def _attributes(attrs: str) -> dict:
    values = {}
    for match in _ATTR_RE.finditer(attrs):
        values.setdefault(match.group("name").lower(), _attribute_value(match) or "")
    return values


class _ScanState:
    def __init__(self, base_url: str, has_base: bool):
        self.base_url = base_url
        self.has_base = has_base
        self.base_written = False


class RegexRewriteEngine(RewriteEngineBase):
    name = "regex"

    def _rewrite(self, document: str, context: RewriteContext) -> str:
        has_base, base_url = self._find_base(document, context.target_url)
        state = _ScanState(base_url, has_base)

        output = _TOKEN_RE.sub(lambda m: self._token(m, context, state), document)

        if not state.has_base:
            output = self._insert_in_head(output, f'<base href="{html.escape(base_url)}">')
        if MARKER_ATTRIBUTE not in output:
            output = self._insert_before_head_end(
                output, countermeasure_tag(context.target_url, context.proxy_path_prefix)
            )
        if context.debug and f'id="{DEBUG_OVERLAY_ID}"' not in output:
            output = self._insert_in_body(output, debug_overlay(context))
        return output

    def _find_base(self, document: str, target_url: str) -> tuple[bool, str]:
        for match in _TOKEN_RE.finditer(document):
            if match.group("tag") and match.group("name").lower() == "base":
                href = _attributes(match.group("attrs")).get("href")
                absolute = resolve_reference(href, target_url) if href else None
                return True, absolute or target_url
        return False, target_url

    def _token(self, match: re.Match, context: RewriteContext, state: _ScanState) -> str:
        if match.group("comment"):
            return match.group(0)

        if match.group("raw"):
            name = match.group("rawname")
            attrs = match.group("rawattrs")
            if name.lower() == "script" and is_blocked_script(
                _attributes(attrs).get("src"), context
            ):
                return ""
            open_tag = f"<{name}{self._rewrite_attrs(name, attrs, context, state)}>"
            body = match.group("rawbody")
            if name.lower() == "style":
                body = rewrite_css(body, state.base_url, context)
            closing = match.group(0)[match.end("rawbody") - match.start(0):]
            return open_tag + body + closing

        name = match.group("name")
        attrs = match.group("attrs")
        lowered = name.lower()
        if lowered == "meta" and is_blocking_meta(_attributes(attrs).get("http-equiv")):
            return ""
        if lowered == "base":
            if state.base_written:
                return ""
            state.base_written = True
            return self._base_tag(match, state)
        rewritten = self._rewrite_attrs(name, attrs, context, state)
        if rewritten == attrs:
            return match.group(0)
        return f"<{name}{rewritten}>"

    def _base_tag(self, match: re.Match, state: _ScanState) -> str:
        name, attrs = match.group("name"), match.group("attrs")
        if "href" not in _attributes(attrs):
            return f'<{name} href="{html.escape(state.base_url)}"{attrs}>'

        def _replace(attr: re.Match) -> str:
            if attr.group("name").lower() != "href" or _attribute_value(attr) == state.base_url:
                return attr.group(0)
            return f'{attr.group("lead")}{attr.group("name")}="{html.escape(state.base_url)}"'

        return f"<{name}{_ATTR_RE.sub(_replace, attrs)}>"

    def _rewrite_attrs(
        self, tag: str, attrs: str, context: RewriteContext, state: _ScanState
    ) -> str:
        refresh = tag.lower() == "meta" and is_refresh_meta(_attributes(attrs).get("http-equiv"))

        def _replace(attr: re.Match) -> str:
            value = _attribute_value(attr)
            if value is None:
                return attr.group(0)
            name = attr.group("name")
            if refresh and name.lower() == "content":
                rewritten = rewrite_refresh(value, state.base_url, context)
            else:
                rewritten = rewrite_attribute(tag, name, value, state.base_url, context)
            if rewritten == value:
                return attr.group(0)
            quote = "'" if attr.group("sq") is not None else '"'
            return f'{attr.group("lead")}{name}{attr.group("eq")}{quote}{html.escape(rewritten)}{quote}'

        return _ATTR_RE.sub(_replace, attrs)

    def _insert_in_head(self, document: str, fragment: str) -> str:
        head = _HEAD_OPEN_RE.search(document)
        if head:
            return document[: head.end()] + fragment + document[head.end():]
        wrapped = f"<head>{fragment}</head>"
        root = _HTML_OPEN_RE.search(document)
        if root:
            return document[: root.end()] + wrapped + document[root.end():]
        doctype = _DOCTYPE_RE.match(document)
        position = doctype.end() if doctype else 0
        return document[:position] + wrapped + document[position:]

    def _insert_before_head_end(self, document: str, fragment: str) -> str:
        head_end = _HEAD_CLOSE_RE.search(document)
        if head_end:
            return document[: head_end.start()] + fragment + document[head_end.start():]
        # </head> may legally be omitted
        body = _BODY_OPEN_RE.search(document)
        if body:
            return document[: body.start()] + fragment + document[body.start():]
        return self._insert_in_head(document, fragment)

    def _insert_in_body(self, document: str, fragment: str) -> str:
        body = _BODY_OPEN_RE.search(document)
        if body:
            return document[: body.end()] + fragment + document[body.end():]
        return document + fragment
