"""Tree-based rewriting on top of BeautifulSoup's ``html.parser`` backend."""

from bs4 import BeautifulSoup, Doctype, Tag
from bs4.dammit import EntitySubstitution
from bs4.formatter import HTMLFormatter

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
from rewriting_proxy.rewrite.countermeasures import (
    COUNTERMEASURE_VERSION,
    MARKER_ATTRIBUTE,
    build_countermeasure_script,
)
from rewriting_proxy.rewrite.css import rewrite_css
from rewriting_proxy.rewrite.urls import rewrite_refresh

# Minimal escaping, void elements written as <base href="..."> without a slash
_FORMATTER = HTMLFormatter(
    entity_substitution=EntitySubstitution.substitute_xml,
    void_element_close_prefix=None,
)
_REWRITTEN_ATTRIBUTES = (
    "src",
    "href",
    "data-src",
    "data-url",
    "data-background",
    "poster",
    "srcset",
    "imagesrcset",
    "style",
)


class DomRewriteEngine(RewriteEngineBase):
    name = "dom"

    def _rewrite(self, document: str, context: RewriteContext) -> str:
        soup = BeautifulSoup(document, "html.parser")

        self._remove_blocking_elements(soup, context)
        head = self._ensure_head(soup)
        base_url = self._ensure_base(soup, head, context)
        self._rewrite_attributes(soup, base_url, context)
        self._rewrite_style_blocks(soup, base_url, context)
        self._inject_countermeasures(soup, head, context)
        if context.debug:
            self._inject_debug_overlay(soup, context)

        return _serialize(soup)

    def _remove_blocking_elements(self, soup: BeautifulSoup, context: RewriteContext):
        for meta in soup.find_all("meta", attrs={"http-equiv": True}):
            if is_blocking_meta(meta.get("http-equiv")):
                meta.decompose()
        for script in soup.find_all("script", src=True):
            if is_blocked_script(script.get("src"), context):
                script.decompose()

    def _ensure_head(self, soup: BeautifulSoup):
        head = soup.head
        if head is not None:
            return head
        head = soup.new_tag("head")
        if soup.html is not None:
            soup.html.insert(0, head)
        else:
            position = 1 if soup.contents and isinstance(soup.contents[0], Doctype) else 0
            soup.insert(position, head)
        return head

    def _ensure_base(self, soup: BeautifulSoup, head, context: RewriteContext) -> str:
        """Leave exactly one absolute <base>; returns the document base URL."""
        bases = soup.find_all("base")
        if not bases:
            head.insert(0, soup.new_tag("base", attrs={"href": context.target_url}))
            return context.target_url

        base = bases[0]
        for extra in bases[1:]:
            extra.decompose()
        href = base.get("href")
        base_url = (
            resolve_reference(href, context.target_url) if href else None
        ) or context.target_url
        base["href"] = base_url
        return base_url

    def _rewrite_attributes(self, soup: BeautifulSoup, base_url: str, context: RewriteContext):
        for tag in soup.find_all(True):
            if tag.name == "base":
                continue
            for attribute in _REWRITTEN_ATTRIBUTES:
                value = tag.get(attribute)
                if not isinstance(value, str):
                    continue
                rewritten = rewrite_attribute(tag.name, attribute, value, base_url, context)
                if rewritten != value:
                    tag[attribute] = rewritten
            if tag.name == "meta" and is_refresh_meta(tag.get("http-equiv")):
                content = tag.get("content")
                if isinstance(content, str):
                    tag["content"] = rewrite_refresh(content, base_url, context)

    def _rewrite_style_blocks(self, soup: BeautifulSoup, base_url: str, context: RewriteContext):
        for style in soup.find_all("style"):
            css = style.get_text()
            rewritten = rewrite_css(css, base_url, context)
            if rewritten != css:
                style.string = rewritten

    def _inject_countermeasures(self, soup: BeautifulSoup, head, context: RewriteContext):
        if soup.find("script", attrs={MARKER_ATTRIBUTE: True}) is not None:
            return
        script = soup.new_tag("script", attrs={MARKER_ATTRIBUTE: COUNTERMEASURE_VERSION})
        script.string = build_countermeasure_script(
            context.target_url, context.proxy_path_prefix
        )
        head.append(script)

    def _inject_debug_overlay(self, soup: BeautifulSoup, context: RewriteContext):
        if soup.find(id=DEBUG_OVERLAY_ID) is not None:
            return
        overlay = BeautifulSoup(debug_overlay(context), "html.parser").div.extract()
        container = soup.body or soup.html or soup
        container.append(overlay)


def _serialize(soup: BeautifulSoup) -> str:
    """
    Decode top-level nodes one by one. bs4 writes a newline after every
    doctype, which would grow by one line each time a page is rewritten.
    """
    parts = []
    for node in soup.contents:
        if isinstance(node, Doctype):
            parts.append(f"<!DOCTYPE {node}>")
        elif isinstance(node, Tag):
            parts.append(node.decode(formatter=_FORMATTER))
        else:
            parts.append(node.output_ready(formatter=_FORMATTER))
    return "".join(parts)
