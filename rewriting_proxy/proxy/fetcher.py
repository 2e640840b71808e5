"""
Upstream fetch with browser-impersonating request headers.

One ``httpx.AsyncClient`` per request; redirects are followed transparently
and the whole exchange is bounded by an overall deadline. The body is
buffered in full since every downstream stage needs it whole.
"""

import asyncio
import logging
from typing import Iterable, Optional

import httpx

from rewriting_proxy.errors import UpstreamNetworkError, UpstreamTimeout
from rewriting_proxy.models import ProxyRequest, ResolvedTarget, UpstreamResponse
from rewriting_proxy.proxy.url_resolver import normalize_url
from rewriting_proxy.vars import PROXY_MAX_REDIRECTS, PROXY_TIMEOUT, UPSTREAM_PROXY_URL

logger = logging.getLogger("uvicorn.error")

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
)
BROWSER_HEADERS = {
    "User-Agent": USER_AGENT,
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9",
    "Accept-Encoding": "gzip, deflate",
    "Sec-Fetch-Dest": "document",
    "Sec-Fetch-Mode": "navigate",
    "Sec-Fetch-Site": "same-origin",
    "Sec-Fetch-User": "?1",
    "Upgrade-Insecure-Requests": "1",
}
BODY_METHODS = {"POST", "PUT", "PATCH", "DELETE"}

# Hop-by-hop headers that should NOT be forwarded (RFC 2616)
HOP_BY_HOP_HEADERS = {
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailers",
    "transfer-encoding",
    "upgrade",
}
# Headers that stop the page from rendering inside the dashboard frame
FRAME_BLOCKING_HEADERS = {
    "x-frame-options",
    "frame-options",
    "content-security-policy",
    "content-security-policy-report-only",
}
# The body is re-emitted decoded and possibly rewritten
BODY_HEADERS = {"content-encoding", "content-length"}
# Set by the proxy itself
MANAGED_HEADERS = {"content-type", "cache-control"}


def build_upstream_headers(proxy_request: ProxyRequest, target: ResolvedTarget) -> dict:
    headers = dict(BROWSER_HEADERS)
    headers["Referer"] = target.origin + "/"
    cookie = proxy_request.header("cookie")
    if cookie:
        headers["Cookie"] = cookie
    method = proxy_request.method.upper()
    if method in BODY_METHODS and (method != "DELETE" or proxy_request.body):
        headers["Origin"] = target.origin
        content_type = proxy_request.header("content-type")
        if content_type:
            headers["Content-Type"] = content_type
    return headers


def build_client_headers(
    upstream_headers: Iterable[tuple[str, str]],
    content_type: str,
    cache_control: str,
) -> list[tuple[str, str]]:
    """
    Response header policy: frame-blocking, hop-by-hop, body and
    proxy-managed headers are dropped; everything else, repeated Set-Cookie
    included, passes through in order.
    """
    headers = []
    for name, value in upstream_headers:
        lowered = name.lower()
        if (
            lowered in FRAME_BLOCKING_HEADERS
            or lowered in HOP_BY_HOP_HEADERS
            or lowered in BODY_HEADERS
            or lowered in MANAGED_HEADERS
            or lowered.startswith("access-control-")
            or lowered == "cross-origin-resource-policy"
        ):
            continue
        headers.append((name, value))
    if content_type:
        headers.append(("Content-Type", content_type))
    headers.append(("Cache-Control", cache_control))
    headers.append(("Access-Control-Allow-Origin", "*"))
    headers.append(("Cross-Origin-Resource-Policy", "cross-origin"))
    return headers


class UpstreamFetcher:
    def __init__(
        self,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = PROXY_TIMEOUT,
        max_redirects: int = PROXY_MAX_REDIRECTS,
        upstream_proxy: Optional[str] = UPSTREAM_PROXY_URL,
    ):
        self.transport = transport
        self.timeout = timeout
        self.max_redirects = max_redirects
        self.upstream_proxy = upstream_proxy or None

    def _client(self, cookie: Optional[str] = None) -> httpx.AsyncClient:
        kwargs = {
            "timeout": httpx.Timeout(self.timeout),
            "follow_redirects": True,
            "max_redirects": self.max_redirects,
        }
        if cookie:
            kwargs["event_hooks"] = {"request": [_cookie_hook(cookie)]}
        if self.transport is not None:
            kwargs["transport"] = self.transport
        elif self.upstream_proxy:
            kwargs["proxy"] = self.upstream_proxy
        return httpx.AsyncClient(**kwargs)

    async def fetch(self, proxy_request: ProxyRequest, target: ResolvedTarget) -> UpstreamResponse:
        method = proxy_request.method.upper()
        headers = build_upstream_headers(proxy_request, target)
        content = proxy_request.body if method in BODY_METHODS and proxy_request.body else None
        logger.debug(f"[Fetcher] {method} {target.absolute_url}")
        try:
            return await asyncio.wait_for(
                self._fetch(method, target.absolute_url, headers, content),
                timeout=self.timeout,
            )
        except (httpx.TimeoutException, asyncio.TimeoutError) as e:
            logger.error(f"[Fetcher] Timeout after {self.timeout}s for {target.absolute_url}")
            raise UpstreamTimeout(
                f"Request timed out after {self.timeout:g} seconds", target.absolute_url
            ) from e
        except httpx.HTTPError as e:
            logger.error(f"[Fetcher] Failed to fetch {target.absolute_url}: {e}")
            raise UpstreamNetworkError(
                f"{type(e).__name__}: {e}", target.absolute_url
            ) from e

    async def _fetch(
        self, method: str, url: str, headers: dict, content: Optional[bytes]
    ) -> UpstreamResponse:
        async with self._client(headers.get("Cookie")) as client:
            response = await client.request(method, url, headers=headers, content=content)
            body = response.content

        # Cookies set on redirect hops must reach the client too
        response_headers = [
            (name, value)
            for hop in response.history
            for name, value in _raw_headers(hop)
            if name.lower() == "set-cookie"
        ]
        response_headers.extend(_raw_headers(response))
        content_type = next(
            (value for name, value in response_headers if name.lower() == "content-type"), ""
        )
        return UpstreamResponse(
            status_code=response.status_code,
            headers=response_headers,
            content_type=content_type,
            body=body,
            final_url=normalize_url(str(response.url)),
            redirected=bool(response.history),
            encoding=response.encoding or "utf-8",
        )


def _raw_headers(response: httpx.Response) -> list[tuple[str, str]]:
    """Header pairs as latin-1 text, so the original bytes survive re-encoding."""
    return [
        (name.decode("latin-1"), value.decode("latin-1"))
        for name, value in response.headers.raw
    ]


def _cookie_hook(cookie: str):
    """httpx drops request-level cookies on redirect; put the client's back on every hop."""

    async def restore_cookie(request: httpx.Request) -> None:
        current = request.headers.get("Cookie")
        if not current or current == cookie:
            request.headers["Cookie"] = cookie
        elif cookie not in current:
            request.headers["Cookie"] = f"{cookie}; {current}"

    return restore_cookie
