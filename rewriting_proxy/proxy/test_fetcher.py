import asyncio
import gzip

import httpx
import pytest

from rewriting_proxy.errors import UpstreamNetworkError, UpstreamTimeout
from rewriting_proxy.models import ProxyRequest
from rewriting_proxy.proxy.fetcher import (
    USER_AGENT,
    UpstreamFetcher,
    build_client_headers,
    build_upstream_headers,
)
from rewriting_proxy.proxy.url_resolver import resolve_target


def _fetcher(handler, **kwargs):
    return UpstreamFetcher(transport=httpx.MockTransport(handler), **kwargs)


def test_upstream_headers_impersonate_a_browser():
    target = resolve_target("https://example.com/page")
    request = ProxyRequest(
        raw_target_url="https://example.com/page",
        headers=[("Cookie", "sid=abc; theme=dark"), ("User-Agent", "curl/8")],
    )
    headers = build_upstream_headers(request, target)
    assert headers["User-Agent"] == USER_AGENT
    assert headers["Accept-Encoding"] == "gzip, deflate"
    assert headers["Referer"] == "https://example.com/"
    assert headers["Cookie"] == "sid=abc; theme=dark"
    assert headers["Sec-Fetch-Mode"] == "navigate"
    assert "Origin" not in headers


def test_upstream_headers_for_body_methods():
    target = resolve_target("https://example.com/form")
    request = ProxyRequest(
        raw_target_url="https://example.com/form",
        method="POST",
        headers=[("content-type", "application/x-www-form-urlencoded")],
        body=b"a=1",
    )
    headers = build_upstream_headers(request, target)
    assert headers["Origin"] == "https://example.com"
    assert headers["Content-Type"] == "application/x-www-form-urlencoded"


def test_client_headers_policy():
    upstream = [
        ("X-Frame-Options", "DENY"),
        ("Content-Security-Policy", "frame-ancestors 'none'"),
        ("Content-Security-Policy-Report-Only", "default-src 'self'"),
        ("Frame-Options", "DENY"),
        ("Content-Encoding", "gzip"),
        ("Content-Length", "12"),
        ("Connection", "keep-alive"),
        ("Access-Control-Allow-Origin", "https://example.com"),
        ("Cache-Control", "private"),
        ("Content-Type", "text/html"),
        ("Set-Cookie", "a=1"),
        ("ETag", '"v1"'),
        ("Set-Cookie", "b=2"),
    ]
    headers = build_client_headers(upstream, "text/html; charset=utf-8", "no-store")
    names = [name.lower() for name, _ in headers]
    assert "x-frame-options" not in names
    assert "content-security-policy" not in names
    assert "content-security-policy-report-only" not in names
    assert "frame-options" not in names
    assert "content-encoding" not in names
    assert "content-length" not in names
    assert "connection" not in names
    assert headers[:3] == [("Set-Cookie", "a=1"), ("ETag", '"v1"'), ("Set-Cookie", "b=2")]
    assert ("Content-Type", "text/html; charset=utf-8") in headers
    assert ("Cache-Control", "no-store") in headers
    assert ("Access-Control-Allow-Origin", "*") in headers
    assert ("Cross-Origin-Resource-Policy", "cross-origin") in headers


@pytest.mark.asyncio
async def test_fetch_returns_buffered_response():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["headers"] = request.headers
        return httpx.Response(
            200,
            headers={"Content-Type": "text/html; charset=utf-8"},
            content=b"<p>hi</p>",
        )

    target = resolve_target("example.com")
    response = await _fetcher(handler).fetch(ProxyRequest(raw_target_url="example.com"), target)
    assert response.status_code == 200
    assert response.body == b"<p>hi</p>"
    assert response.content_type == "text/html; charset=utf-8"
    assert response.final_url == "https://example.com/"
    assert response.redirected is False
    assert seen["headers"]["user-agent"] == USER_AGENT


@pytest.mark.asyncio
async def test_fetch_forwards_body_verbatim():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["method"] = request.method
        seen["body"] = request.content
        seen["origin"] = request.headers.get("origin")
        return httpx.Response(201, content=b"created")

    body = b"--boundary\r\nContent-Disposition: form-data; name=\"f\"\r\n\r\n\x00\x01\r\n--boundary--"
    request = ProxyRequest(
        raw_target_url="https://example.com/upload",
        method="POST",
        headers=[("Content-Type", "multipart/form-data; boundary=boundary")],
        body=body,
    )
    response = await _fetcher(handler).fetch(request, resolve_target(request.raw_target_url))
    assert response.status_code == 201
    assert seen == {"method": "POST", "body": body, "origin": "https://example.com"}


@pytest.mark.asyncio
async def test_fetch_follows_redirects():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/old":
            return httpx.Response(301, headers={"Location": "https://www.example.com/new"})
        return httpx.Response(200, headers={"Content-Type": "text/html"}, content=b"new")

    target = resolve_target("https://example.com/old")
    response = await _fetcher(handler).fetch(ProxyRequest(raw_target_url="x"), target)
    assert response.status_code == 200
    assert response.redirected is True
    assert response.final_url == "https://www.example.com/new"


@pytest.mark.asyncio
async def test_fetch_keeps_client_cookie_across_redirects():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append((request.url.host, request.headers.get("cookie")))
        if request.url.host == "example.com":
            return httpx.Response(
                301,
                headers=[("Location", "https://www.example.com/"), ("Set-Cookie", "hop=1; Path=/")],
            )
        return httpx.Response(200, headers={"Content-Type": "text/html"}, content=b"home")

    request = ProxyRequest(raw_target_url="example.com", headers=[("cookie", "sid=abc")])
    response = await _fetcher(handler).fetch(request, resolve_target("example.com"))
    assert seen[0] == ("example.com", "sid=abc")
    assert seen[1][0] == "www.example.com"
    assert "sid=abc" in seen[1][1]
    assert ("Set-Cookie", "hop=1; Path=/") in response.headers
    assert response.content_type == "text/html"


@pytest.mark.asyncio
async def test_fetch_decodes_gzip():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            headers={"Content-Type": "text/plain", "Content-Encoding": "gzip"},
            content=gzip.compress(b"plain text"),
        )

    target = resolve_target("https://example.com/")
    response = await _fetcher(handler).fetch(ProxyRequest(raw_target_url="x"), target)
    assert response.body == b"plain text"


@pytest.mark.asyncio
async def test_fetch_network_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("Name or service not known", request=request)

    target = resolve_target("https://does-not-exist.invalid/")
    with pytest.raises(UpstreamNetworkError) as exc_info:
        await _fetcher(handler).fetch(ProxyRequest(raw_target_url="x"), target)
    assert exc_info.value.target_url == "https://does-not-exist.invalid/"
    assert "Name or service not known" in exc_info.value.message


@pytest.mark.asyncio
async def test_fetch_too_many_redirects_is_network_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(302, headers={"Location": "https://example.com/loop"})

    target = resolve_target("https://example.com/loop")
    with pytest.raises(UpstreamNetworkError):
        await _fetcher(handler, max_redirects=3).fetch(ProxyRequest(raw_target_url="x"), target)


@pytest.mark.asyncio
async def test_fetch_transport_timeout():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    target = resolve_target("https://slow.example.com/")
    with pytest.raises(UpstreamTimeout):
        await _fetcher(handler).fetch(ProxyRequest(raw_target_url="x"), target)


@pytest.mark.asyncio
async def test_fetch_overall_deadline():
    async def handler(request: httpx.Request) -> httpx.Response:
        await asyncio.sleep(5)
        return httpx.Response(200)

    target = resolve_target("https://slow.example.com/")
    with pytest.raises(UpstreamTimeout) as exc_info:
        await _fetcher(handler, timeout=0.05).fetch(ProxyRequest(raw_target_url="x"), target)
    assert "0.05 seconds" in exc_info.value.message
