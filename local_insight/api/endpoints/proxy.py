import logging
from typing import Annotated

import httpx
from fastapi import APIRouter, Depends, Request, Response, status
from fastapi.responses import JSONResponse

from local_insight.core.config import settings
from local_insight.core.fetch import get_http_client

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ea", tags=["Proxy"])

client_dep = Annotated[httpx.AsyncClient, Depends(get_http_client)]

# The body is relayed decoded
DROPPED_HEADERS = {"connection", "transfer-encoding", "content-encoding", "content-length"}


def _upstream_path(path: str, request: Request) -> str:
    """
    Path below /ea exactly as the caller sent it, so escapes such as %2F
    reach the upstream untouched.
    """
    raw_path = request.scope.get("raw_path")
    if raw_path:
        sent = raw_path.split(b"?", 1)[0].decode("latin-1")
        root_path = request.scope.get("root_path") or ""
        if root_path and sent.startswith(root_path):
            sent = sent[len(root_path):]
        if sent.startswith(f"{router.prefix}/"):
            return sent[len(router.prefix):]
    return f"/{path}"


# Environment Agency relay
@router.get("/{path:path}")
async def relay(path: str, request: Request, client: client_dep):
    url = f"{settings.EA_BASE_URL.rstrip('/')}{_upstream_path(path, request)}"
    if request.url.query:
        url = f"{url}?{request.url.query}"

    headers = {
        "Accept": request.headers.get("accept") or "application/json",
        "User-Agent": settings.PROXY_USER_AGENT,
    }

    try:
        upstream = await client.get(url, headers=headers)
    except httpx.HTTPError as error:
        logger.error("Proxy request to %s failed: %s", url, error)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": str(error) or type(error).__name__},
        )

    passthrough = {
        name: value
        for name, value in upstream.headers.items()
        if name.lower() not in DROPPED_HEADERS
    }
    return Response(content=upstream.content, status_code=upstream.status_code, headers=passthrough)
