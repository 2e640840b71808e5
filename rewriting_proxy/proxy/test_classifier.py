from rewriting_proxy.models import ProxyOptions, UpstreamResponse
from rewriting_proxy.proxy.classifier import (
    Disposition,
    classify,
    is_cacheable_request,
    is_cacheable_response,
)


def _upstream(status=200, content_type="image/png", body=b"x"):
    return UpstreamResponse(
        status_code=status,
        headers=[],
        content_type=content_type,
        body=body,
        final_url="https://example.com/a.png",
    )


def test_html_is_rewritten():
    assert classify("text/html; charset=utf-8", "example.com", ProxyOptions()) is Disposition.REWRITE_HTML
    assert classify("application/xhtml+xml", "example.com", ProxyOptions()) is Disposition.REWRITE_HTML


def test_html_bypass_flag_and_bypass_domain():
    assert (
        classify("text/html", "example.com", ProxyOptions(bypass_rewrite=True))
        is Disposition.PASSTHROUGH
    )
    assert (
        classify("text/html", "m.youtube.com", ProxyOptions(), bypass_domains=["youtube.com"])
        is Disposition.PASSTHROUGH
    )


def test_css_only_when_enabled():
    assert classify("text/css", "example.com", ProxyOptions()) is Disposition.PASSTHROUGH
    assert classify("text/css", "example.com", ProxyOptions(), rewrite_css=True) is Disposition.REWRITE_CSS


def test_everything_else_passes_through():
    for content_type in ("application/json", "image/png", "", "application/javascript"):
        assert classify(content_type, "example.com", ProxyOptions()) is Disposition.PASSTHROUGH


def test_cacheable_request():
    assert is_cacheable_request("GET", "https://example.com/static/app.JS?v=3")
    assert is_cacheable_request("get", "https://example.com/font.woff2")
    assert not is_cacheable_request("POST", "https://example.com/logo.png")
    assert not is_cacheable_request("GET", "https://example.com/index.html")
    assert not is_cacheable_request("GET", "https://example.com/api/items")


def test_cacheable_response():
    assert is_cacheable_response(_upstream(), 10)
    assert not is_cacheable_response(_upstream(status=404), 10)
    assert not is_cacheable_response(_upstream(content_type="text/html"), 10)
    assert not is_cacheable_response(_upstream(body=b"x" * 11), 10)
