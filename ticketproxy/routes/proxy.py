from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from starlette.responses import Response, StreamingResponse

from ..deps import get_proxy_engine
from ..proxy import HeaderMap, ProxyEngine, ProxyRequest, UpstreamResponse

router = APIRouter(tags=["proxy"])

PROXY_METHODS = ["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS"]
UPSTREAM_PREFIX = "/v1"


def to_response(upstream: UpstreamResponse) -> Response:
    headers = HeaderMap(upstream.headers)
    if "content-type" not in headers:
        headers.set("content-type", "application/json")

    if upstream.streamed:
        response: Response = StreamingResponse(upstream.chunks, status_code=upstream.status_code)
    else:
        response = Response(content=upstream.body or b"", status_code=upstream.status_code)

    for name, value in headers.items():
        response.headers.append(name, value)
    return response


@router.api_route(UPSTREAM_PREFIX + "/{params:path}", methods=PROXY_METHODS)
async def proxy_v1(params: str, request: Request, engine: ProxyEngine = Depends(get_proxy_engine)):
    """
    Everything under /v1 that isn't answered locally is forwarded to the
    ticketing API with the service's API key attached.
    """
    body = await request.body()
    proxy_request = ProxyRequest(
        method=request.method,
        path=UPSTREAM_PREFIX,
        params=params,
        query=request.url.query,
        headers=HeaderMap.from_pairs(request.headers.raw),
        body=body,
    )
    upstream = await engine.forward(proxy_request)
    return to_response(upstream)
