import httpx
import pytest
from fastapi.testclient import TestClient

from rewriting_proxy.cache import InMemoryAssetCache
from rewriting_proxy.proxy.fetcher import UpstreamFetcher
from rewriting_proxy.proxy.handler import ProxyHandler
from rewriting_proxy.rewrite import DomRewriteEngine
from rewriting_proxy.routes import get_proxy_handler
from rewriting_proxy.server import app


@pytest.fixture
def upstream_requests():
    return []


@pytest.fixture
def client(upstream_requests):
    def upstream(request: httpx.Request) -> httpx.Response:
        upstream_requests.append(request)
        if request.url.host == "does-not-exist.invalid":
            raise httpx.ConnectError("Name or service not known", request=request)
        if request.method == "POST":
            return httpx.Response(200, headers={"Content-Type": "application/json"}, content=request.content)
        return httpx.Response(
            200,
            headers={"Content-Type": "text/html"},
            content=b'<html><head></head><body><a href="/about">About</a></body></html>',
        )

    handler = ProxyHandler(
        UpstreamFetcher(transport=httpx.MockTransport(upstream)),
        InMemoryAssetCache(),
        DomRewriteEngine(),
        proxy_prefix="/proxy",
        landing_url="/dashboard",
    )
    app.dependency_overrides[get_proxy_handler] = lambda: handler
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_get_rewrites_page(client):
    response = client.get("/proxy", params={"url": "example.com", "service": "Example"})
    assert response.status_code == 200
    assert response.headers["x-proxy-status"] == "success"
    assert response.headers["x-proxy-source"] == "https://example.com/"
    assert '<a href="/proxy?url=https%3A%2F%2Fexample.com%2Fabout&amp;service=Example">' in response.text
    assert '<base href="https://example.com/">' in response.text


def test_debug_flag_injects_overlay(client):
    response = client.get("/proxy", params={"url": "example.com", "debug": "true", "service": "Example"})
    assert 'id="rewriting-proxy-debug"' in response.text
    assert "[Example]" in response.text


def test_missing_url_redirects(client, upstream_requests):
    response = client.get("/proxy", follow_redirects=False)
    assert response.status_code == 302
    assert response.headers["location"] == "/dashboard"
    assert upstream_requests == []


def test_dns_failure(client):
    response = client.get("/proxy", params={"url": "https://does-not-exist.invalid/", "retry": "1"})
    assert response.status_code == 500
    assert response.headers["x-proxy-status"] == "error"
    assert response.headers["x-proxy-error"] == "UpstreamNetworkError"
    assert "https://does-not-exist.invalid/" in response.text
    assert "retry=2" in response.text


def test_negative_retry_rejected(client):
    response = client.get("/proxy", params={"url": "example.com", "retry": "-1"})
    assert response.status_code == 422


def test_post_forwards_body_and_cookie(client, upstream_requests):
    response = client.post(
        "/proxy",
        params={"url": "https://example.com/api"},
        content=b'{"q": 1}',
        headers={"Content-Type": "application/json", "Cookie": "sid=abc"},
    )
    assert response.status_code == 200
    assert response.content == b'{"q": 1}'
    assert response.headers["x-proxy-status"] == "forwarded"
    sent = upstream_requests[0]
    assert sent.method == "POST"
    assert sent.headers["content-type"] == "application/json"
    assert sent.headers["cookie"] == "sid=abc"
    assert sent.headers["origin"] == "https://example.com"


def test_preflight(client):
    response = client.options("/proxy")
    assert response.status_code == 200
    assert response.headers["access-control-allow-origin"] == "*"
    assert response.headers["access-control-allow-methods"] == "GET,POST,PUT,DELETE,PATCH,OPTIONS"
    assert response.headers["access-control-allow-headers"] == "*"
    assert response.headers["access-control-max-age"] == "86400"


def test_metrics_exposed(client):
    client.get("/proxy", params={"url": "example.com"})
    response = client.get("/metrics")
    assert response.status_code == 200
    assert "rewriting_proxy_requests_total" in response.text
