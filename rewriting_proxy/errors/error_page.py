"""Self-contained diagnostic page for failed proxy requests."""

from __future__ import annotations

import html
from typing import TYPE_CHECKING

from rewriting_proxy.proxy.url_resolver import proxy_url

if TYPE_CHECKING:
    from rewriting_proxy.models import ErrorReport

_PAGE = """<!DOCTYPE html>
<html>
<head>
<meta charset="utf-8">
<title>Proxy Error</title>
<style>
body {{ font-family: Arial, sans-serif; line-height: 1.6; color: #333; max-width: 800px; margin: 0 auto; padding: 2rem; }}
h1 {{ color: #e53e3e; }}
.error-box {{ background-color: #f8f9fa; border: 1px solid #ddd; border-radius: 6px; padding: 1.5rem; margin: 2rem 0; }}
.error-box pre {{ white-space: pre-wrap; font-size: 12px; }}
.button {{ display: inline-block; background: #3182ce; color: white; padding: 0.5rem 1rem; border-radius: 0.25rem; text-decoration: none; margin-right: 0.5rem; }}
.button.secondary {{ background: #718096; }}
</style>
</head>
<body>
<h1>Proxy Error</h1>
<p>We encountered an error while trying to access: <strong id="proxy-target">{target}</strong></p>
<div class="error-box">
<h3>{kind}</h3>
<p>{message}</p>
<p>Attempt {attempt}</p>
{stack}
</div>
<div class="actions">
<a href="{retry}" class="button" id="proxy-retry">Try Again</a>
<a href="{bypass}" class="button" id="proxy-retry-bypass">Try Without Rewriting</a>
<a href="{landing}" class="button secondary" id="proxy-return">Back to Dashboard</a>
</div>
</body>
</html>
"""


def retry_url(target_url: str, proxy_prefix: str, retry_count: int, bypass: bool = False) -> str:
    url = proxy_url(target_url, proxy_prefix)
    if bypass:
        url += "&bypass=true"
    return f"{url}&retry={retry_count + 1}"


def render_error_page(report: ErrorReport, proxy_prefix: str, landing_url: str) -> str:
    """
    Render the diagnostic page for ``report``.

    The page offers three actions: retry, retry with rewriting bypassed, and
    return to the landing page. Retry links carry ``retry=n+1``; enforcing a
    ceiling is left to the client.
    """
    stack = ""
    if report.stack:
        stack = f"<details><summary>Stack trace</summary><pre>{html.escape(report.stack)}</pre></details>"
    return _PAGE.format(
        target=html.escape(report.target_url),
        kind=html.escape(report.kind.value),
        message=html.escape(report.message),
        attempt=report.retry_count + 1,
        stack=stack,
        retry=html.escape(retry_url(report.target_url, proxy_prefix, report.retry_count)),
        bypass=html.escape(
            retry_url(report.target_url, proxy_prefix, report.retry_count, bypass=True)
        ),
        landing=html.escape(landing_url),
    )
