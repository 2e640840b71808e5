import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import Response

from rewriting_proxy.cache import asset_cache
from rewriting_proxy.models import ProxyOptions, ProxyRequest
from rewriting_proxy.proxy.fetcher import UpstreamFetcher
from rewriting_proxy.proxy.handler import ProxyHandler
from rewriting_proxy.rewrite import rewrite_engine
from rewriting_proxy.vars import BASE_PATH, PROXY_PATH

router = APIRouter()

logger = logging.getLogger("uvicorn.error")

if BASE_PATH:
    router.prefix = BASE_PATH
    logger.info(f"Using BASE_PATH: {BASE_PATH}")
else:
    logger.info("No BASE_PATH set, using root path")

# One cache and one engine per process, shared by all requests
_handler = ProxyHandler(UpstreamFetcher(), asset_cache(), rewrite_engine())

CORS_PREFLIGHT_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET,POST,PUT,DELETE,PATCH,OPTIONS",
    "Access-Control-Allow-Headers": "*",
    "Access-Control-Max-Age": "86400",
}


def get_proxy_handler() -> ProxyHandler:
    return _handler


@router.options(PROXY_PATH)
async def proxy_preflight():
    return Response(status_code=200, headers=CORS_PREFLIGHT_HEADERS)


@router.api_route(PROXY_PATH, methods=["GET", "POST", "PUT", "PATCH", "DELETE"])
async def proxy(
    request: Request,
    url: Optional[str] = Query(None, description="Target URL, absolute or bare host"),
    debug: bool = Query(False, description="Inject the debug overlay"),
    bypass: bool = Query(False, description="Forward HTML without rewriting"),
    retry: int = Query(0, ge=0, description="Attempt counter maintained by the client"),
    protocol_bypass: bool = Query(False, description="Fetch https targets over http"),
    service: Optional[str] = Query(None, description="Service label for the debug overlay"),
    handler: ProxyHandler = Depends(get_proxy_handler),
):
    body = b""
    if request.method in ("POST", "PUT", "PATCH", "DELETE"):
        body = await request.body()
    proxy_request = ProxyRequest(
        raw_target_url=url,
        method=request.method,
        headers=list(request.headers.items()),
        body=body,
        options=ProxyOptions(
            debug=debug,
            bypass_rewrite=bypass,
            retry_count=retry,
            force_protocol_bypass=protocol_bypass,
        ),
        service=service,
    )
    return await handler.handle(proxy_request)
