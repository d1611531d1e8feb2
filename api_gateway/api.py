import logging
from typing import Annotated

import httpx
from fastapi import APIRouter, Depends, HTTPException, Request, Response, status

from .config import Settings, get_settings

logger = logging.getLogger(__name__)

ROUTE_HEADER = "X-Gateway-Route"
FORWARDED_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE"]
# Recomputed by httpx / starlette for each hop.
HOP_HEADERS = {"host", "content-length", "connection", "transfer-encoding", "content-encoding", "keep-alive"}


def get_http_client(request: Request) -> httpx.AsyncClient:
    return request.app.state.http_client


monitoring_router = APIRouter(tags=["Monitoring"])


@monitoring_router.get("/health/ping", status_code=status.HTTP_200_OK)
def health_check() -> dict:
    return {"status": "ok"}


gateway_router = APIRouter(tags=["Gateway"])


@gateway_router.api_route("/{route}/{path:path}", methods=FORWARDED_METHODS)
async def forward(
    route: str,
    path: str,
    request: Request,
    client: Annotated[httpx.AsyncClient, Depends(get_http_client)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> Response:
    """Strip the service prefix and pass the request on unchanged."""
    upstream = settings.routes.get(route)
    if upstream is None:
        raise HTTPException(status_code=404, detail=f"No route configured for '{route}'")

    headers = {k: v for k, v in request.headers.items() if k.lower() not in HOP_HEADERS}
    headers[ROUTE_HEADER] = route
    url = f"{upstream.rstrip('/')}/{path}"

    try:
        upstream_response = await client.request(
            request.method,
            url,
            params=request.url.query,
            content=await request.body(),
            headers=headers,
        )
    except httpx.RequestError as e:
        logger.exception("Upstream '%s' unreachable at %s", route, url)
        raise HTTPException(status_code=502, detail=f"Upstream '{route}' is unreachable") from e

    logger.info("%s /%s/%s -> %s", request.method, route, path, upstream_response.status_code)
    return Response(
        content=upstream_response.content,
        status_code=upstream_response.status_code,
        headers={k: v for k, v in upstream_response.headers.items() if k.lower() not in HOP_HEADERS},
    )
