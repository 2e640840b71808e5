"""
Request pipeline: resolve, cache lookup, fetch, classify, rewrite, respond.

Every stage raises ProxyError subclasses; this module is the one place they
are turned into HTTP responses.
"""

import logging
import traceback
from urllib.parse import quote
from typing import Iterable, Optional

from fastapi.responses import RedirectResponse, Response
from opentelemetry import trace
from prometheus_client import Counter

from rewriting_proxy.cache import AssetCacheBase
from rewriting_proxy.errors import MissingTarget, ProxyError, RewriteFailure
from rewriting_proxy.errors.error_page import render_error_page
from rewriting_proxy.models import ErrorReport, ProxyRequest, RewriteContext, UpstreamResponse
from rewriting_proxy.proxy.classifier import (
    Disposition,
    classify,
    is_cacheable_request,
    is_cacheable_response,
    is_html,
)
from rewriting_proxy.proxy.fetcher import UpstreamFetcher, build_client_headers
from rewriting_proxy.proxy.url_resolver import (
    check_target_policy,
    resolve_target,
    service_label,
)
from rewriting_proxy.rewrite import RewriteEngineBase
from rewriting_proxy.rewrite.css import rewrite_css
from rewriting_proxy.utils import cookie_fingerprint
from rewriting_proxy.utils.traced_requests import traced_request
from rewriting_proxy.vars import (
    ALLOWED_TARGET_DOMAINS,
    ASSET_CACHE_MAX_BYTES,
    ASSET_CACHE_TTL,
    BLOCKED_SCRIPT_PATTERNS,
    BLOCKED_TARGET_DOMAINS,
    BYPASS_DOMAINS,
    DEFAULT_LANDING_URL,
    REWRITE_CSS_URLS,
    proxy_path_prefix,
)

tracer = trace.get_tracer(__name__)
logger = logging.getLogger("uvicorn.error")

PROXY_REQUESTS = Counter(
    "rewriting_proxy_requests_total",
    "Proxy requests by X-Proxy-Status outcome",
    ["status"],
)
CACHE_LOOKUPS = Counter(
    "rewriting_proxy_cache_lookups_total",
    "Asset cache lookups by result",
    ["result"],
)

STATUS_SUCCESS = "success"
STATUS_FORWARDED = "forwarded"
STATUS_ERROR = "error"

HTML_UTF8 = "text/html; charset=utf-8"
NO_STORE = "no-store"
_HEADER_SAFE = ":/?#[]@!$&'()*+,;=%~"


class ProxyHandler:
    def __init__(
        self,
        fetcher: UpstreamFetcher,
        cache: AssetCacheBase,
        engine: RewriteEngineBase,
        proxy_prefix: Optional[str] = None,
        landing_url: str = DEFAULT_LANDING_URL,
        bypass_domains: Iterable[str] = BYPASS_DOMAINS,
        blocked_script_patterns: Iterable[str] = BLOCKED_SCRIPT_PATTERNS,
        allowed_domains: Iterable[str] = ALLOWED_TARGET_DOMAINS,
        blocked_domains: Iterable[str] = BLOCKED_TARGET_DOMAINS,
        rewrite_css: bool = REWRITE_CSS_URLS,
        cache_ttl: float = ASSET_CACHE_TTL,
        cache_max_bytes: int = ASSET_CACHE_MAX_BYTES,
    ):
        self.fetcher = fetcher
        self.cache = cache
        self.engine = engine
        self.proxy_prefix = proxy_prefix if proxy_prefix is not None else proxy_path_prefix()
        self.landing_url = landing_url
        self.bypass_domains = frozenset(d.lower() for d in bypass_domains)
        self.blocked_script_patterns = tuple(blocked_script_patterns)
        self.allowed_domains = tuple(allowed_domains)
        self.blocked_domains = tuple(blocked_domains)
        self.rewrite_css = rewrite_css
        self.cache_ttl = cache_ttl
        self.cache_max_bytes = cache_max_bytes

    async def handle(self, proxy_request: ProxyRequest) -> Response:
        options = proxy_request.options
        with traced_request(
            tracer,
            "proxy.request",
            proxy_request.raw_target_url,
            f"Proxy {proxy_request.method} {proxy_request.raw_target_url} (retry={options.retry_count})",
            extra_attrs={
                "proxy.method": proxy_request.method,
                "proxy.retry": options.retry_count,
                "proxy.bypass": options.bypass_rewrite,
            },
        ) as span:
            logger.debug(f"[Proxy] cookie {cookie_fingerprint(proxy_request.header('cookie'))}")
            try:
                response = await self._handle(proxy_request, span)
            except MissingTarget:
                logger.info(f"[Proxy] No target URL, redirecting to {self.landing_url}")
                span.set_attribute("proxy.error", MissingTarget.kind.value)
                response = RedirectResponse(self.landing_url, status_code=302)
                _mark(response, STATUS_ERROR, "")
                response.headers["X-Proxy-Error"] = MissingTarget.kind.value
            except ProxyError as e:
                span.set_attribute("proxy.error", e.kind.value)
                response = self._error_response(e, proxy_request)
            span.set_attribute("proxy.status_code", response.status_code)
            PROXY_REQUESTS.labels(status=response.headers.get("X-Proxy-Status", "")).inc()
            return response

    async def _handle(self, proxy_request: ProxyRequest, span) -> Response:
        options = proxy_request.options
        target = resolve_target(
            proxy_request.raw_target_url,
            force_protocol_bypass=options.force_protocol_bypass,
        )
        check_target_policy(target, self.allowed_domains, self.blocked_domains)
        span.set_attribute("proxy.target_url", target.absolute_url)

        cacheable = is_cacheable_request(proxy_request.method, target.absolute_url)
        if cacheable:
            entry = self.cache.get(target.absolute_url)
            CACHE_LOOKUPS.labels(result="hit" if entry else "miss").inc()
            span.set_attribute("proxy.cache", "HIT" if entry else "MISS")
            if entry:
                logger.info(f"[Proxy] Cache hit for {target.absolute_url}")
                response = Response(content=entry.payload, status_code=200)
                _extend(
                    response,
                    build_client_headers((), entry.content_type, self._asset_cache_control()),
                )
                _mark(response, STATUS_FORWARDED, target.absolute_url)
                response.headers["X-Proxy-Cache"] = "HIT"
                return response

        upstream = await self.fetcher.fetch(proxy_request, target)
        if upstream.redirected:
            logger.info(f"[Proxy] {target.absolute_url} redirected to {upstream.final_url}")

        response = self._upstream_response(proxy_request, target.host, upstream, cacheable)
        _mark(response, response.headers.get("X-Proxy-Status", STATUS_FORWARDED), target.absolute_url)
        if cacheable:
            response.headers["X-Proxy-Cache"] = "MISS"
            if (
                is_cacheable_response(upstream, self.cache_max_bytes)
                and "X-Proxy-Error" not in response.headers
            ):
                # Cache what the client received, rewritten stylesheets included
                self.cache.put(
                    target.absolute_url,
                    response.body,
                    response.headers.get("Content-Type", upstream.content_type),
                )
        if upstream.redirected:
            response.headers["X-Proxy-Final-Url"] = _header_value(upstream.final_url)
        return response

    def _upstream_response(
        self,
        proxy_request: ProxyRequest,
        host: str,
        upstream: UpstreamResponse,
        cacheable: bool,
    ) -> Response:
        if upstream.status_code >= 400:
            logger.warning(
                f"[Proxy] Upstream answered {upstream.status_code} for {upstream.final_url}"
            )
            response = self._passthrough(upstream, cacheable=False)
            response.headers["X-Proxy-Upstream-Status"] = str(upstream.status_code)
            return response

        disposition = classify(
            upstream.content_type,
            host,
            proxy_request.options,
            self.bypass_domains,
            self.rewrite_css,
        )
        logger.debug(f"[Proxy] {upstream.final_url} classified as {disposition.value}")
        if disposition is Disposition.PASSTHROUGH:
            return self._passthrough(upstream, cacheable)

        context = RewriteContext(
            target_url=upstream.final_url,
            proxy_path_prefix=self.proxy_prefix,
            bypass_domains=self.bypass_domains,
            debug=proxy_request.options.debug,
            service=service_label(upstream.final_url, proxy_request.service),
            service_param=proxy_request.service,
            blocked_script_patterns=self.blocked_script_patterns,
        )
        try:
            if disposition is Disposition.REWRITE_HTML:
                body = self.engine.rewrite(upstream.text, context)
                content_type = HTML_UTF8
            else:
                body = self._rewrite_stylesheet(upstream, context)
                content_type = "text/css; charset=utf-8"
        except RewriteFailure as e:
            logger.warning(f"[Proxy] {e.message}; serving unmodified bytes")
            response = self._passthrough(upstream, cacheable=False)
            response.headers["X-Proxy-Error"] = e.kind.value
            return response

        response = Response(content=body.encode("utf-8"), status_code=upstream.status_code)
        if disposition is Disposition.REWRITE_HTML:
            cache_control = NO_STORE
        elif cacheable and is_cacheable_response(upstream, self.cache_max_bytes):
            cache_control = self._asset_cache_control()
        else:
            cache_control = "no-cache"
        _extend(response, build_client_headers(upstream.headers, content_type, cache_control))
        response.headers["X-Proxy-Status"] = STATUS_SUCCESS
        return response

    def _rewrite_stylesheet(self, upstream: UpstreamResponse, context: RewriteContext) -> str:
        try:
            return rewrite_css(upstream.text, upstream.final_url, context)
        except Exception as e:
            raise RewriteFailure(
                f"stylesheet could not be rewritten: {e}", upstream.final_url
            ) from e

    def _passthrough(self, upstream: UpstreamResponse, cacheable: bool) -> Response:
        content_type = upstream.content_type or "application/octet-stream"
        if is_html(upstream.content_type):
            cache_control = NO_STORE
        elif cacheable and is_cacheable_response(upstream, self.cache_max_bytes):
            cache_control = self._asset_cache_control()
        else:
            cache_control = _header(upstream.headers, "cache-control") or "no-cache"
        response = Response(content=upstream.body, status_code=upstream.status_code)
        _extend(response, build_client_headers(upstream.headers, content_type, cache_control))
        response.headers["X-Proxy-Status"] = STATUS_FORWARDED
        return response

    def _asset_cache_control(self) -> str:
        return f"public, max-age={int(self.cache_ttl)}"

    def _error_response(self, error: ProxyError, proxy_request: ProxyRequest) -> Response:
        target_url = error.target_url or proxy_request.raw_target_url or ""
        logger.error(f"[Proxy] {error.kind.value} for {target_url}: {error.message}")
        report = ErrorReport(
            target_url=target_url,
            kind=error.kind,
            message=error.message,
            stack=traceback.format_exc() if proxy_request.options.debug else None,
            retry_count=proxy_request.options.retry_count,
        )
        page = render_error_page(report, self.proxy_prefix, self.landing_url)
        response = Response(content=page.encode("utf-8"), status_code=error.status_code)
        _extend(response, build_client_headers((), HTML_UTF8, NO_STORE))
        _mark(response, STATUS_ERROR, target_url)
        response.headers["X-Proxy-Error"] = error.kind.value
        return response


def _header(headers: Iterable[tuple[str, str]], name: str) -> Optional[str]:
    for key, value in headers:
        if key.lower() == name:
            return value
    return None


def _header_value(value: str) -> str:
    """Header values must be latin-1; percent-encode anything else."""
    return quote(value, safe=_HEADER_SAFE)


def _extend(response: Response, headers: Iterable[tuple[str, str]]) -> None:
    for name, value in headers:
        response.headers.append(name, value)


def _mark(response: Response, status: str, source: str) -> None:
    response.headers["X-Proxy-Status"] = status
    response.headers["X-Proxy-Source"] = _header_value(source)
