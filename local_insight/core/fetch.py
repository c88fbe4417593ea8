# local_insight/core/fetch.py
"""
FETCH MODULE - One HTTP GET, decoded as JSON

Purpose:
    1. Send a GET with a timeout and an ``Accept: application/json`` header
    2. Turn non-2xx responses into RequestFailed (status + body snippet)
    3. Turn timeouts into RequestTimeout and bad JSON into DecodeFailed

Every upstream source module goes through ``fetch_json`` so the cache only
ever sees one error taxonomy.
"""

import logging
from typing import Any, Dict, Optional

import httpx
from fastapi import Request

from local_insight.core.config import settings
from local_insight.core.errors import DecodeFailed, RequestFailed, RequestTimeout

logger = logging.getLogger(__name__)

DEFAULT_HEADERS = {"Accept": "application/json"}


def build_client(transport: Optional[httpx.AsyncBaseTransport] = None) -> httpx.AsyncClient:
    """
    Create the shared AsyncClient used by every source module.

    Args:
        transport: Optional transport (tests pass an ``httpx.MockTransport``)
    """
    return httpx.AsyncClient(
        timeout=settings.REQUEST_TIMEOUT_SECONDS,
        follow_redirects=True,
        transport=transport,
    )


async def fetch_json(
    client: httpx.AsyncClient,
    url: str,
    *,
    params: Optional[Dict[str, Any]] = None,
    timeout: Optional[float] = None,
    headers: Optional[Dict[str, str]] = None,
) -> Any:
    """
    Fetch ``url`` and return the decoded JSON body.

    Args:
        client: Shared AsyncClient
        url: Absolute URL
        params: Query parameters
        timeout: Seconds before giving up (defaults to REQUEST_TIMEOUT_SECONDS)
        headers: Extra headers; ``Accept`` may be overridden here

    Returns:
        Parsed JSON (dict, list or scalar)

    Raises:
        RequestTimeout, RequestFailed, DecodeFailed
    """
    timeout = settings.REQUEST_TIMEOUT_SECONDS if timeout is None else timeout
    merged_headers = {**DEFAULT_HEADERS, **(headers or {})}

    logger.debug("GET %s params=%s", url, params)

    try:
        response = await client.get(
            url, params=params, headers=merged_headers, timeout=timeout
        )
    except httpx.TimeoutException as error:
        raise RequestTimeout(url, timeout) from error
    except httpx.HTTPError as error:
        # DNS, connection refused, protocol errors...
        raise RequestFailed(url, 0, str(error)) from error

    if not response.is_success:
        raise RequestFailed(url, response.status_code, response.text)

    try:
        return response.json()
    except ValueError as error:
        raise DecodeFailed(url, str(error)) from error


def get_http_client(request: Request) -> httpx.AsyncClient:
    """FastAPI dependency: the client opened by the app lifespan."""
    return request.app.state.http_client
