# local_insight/core/sources/bathing_water.py
"""
Environment Agency bathing-water linked-data API.

The list endpoint wraps its items differently from one release to the next,
so the items are found with ``extract_items_container``. Detail resources
are requested as the "id" JSON first; when that resource is missing or is
not JSON, the equivalent "doc" resource is tried.
"""

import logging
from typing import Any, Dict, List, Tuple

import httpx

from local_insight.core.config import settings
from local_insight.core.errors import DecodeFailed, RequestFailed
from local_insight.core.fetch import fetch_json
from local_insight.core.normalize import extract_items_container

logger = logging.getLogger(__name__)


def _with_json_suffix(url: str) -> str:
    return url if url.endswith(".json") else f"{url}.json"


def to_ea_url(url: str) -> str:
    """
    Re-home an EA linked-data URL onto the configured EA base URL.

    Example:
        "http://environment.data.gov.uk/id/bathing-water/ukc2102-03600.json"
            → "https://environment.data.gov.uk/id/bathing-water/ukc2102-03600.json"
    """
    parsed = httpx.URL(url)
    if not parsed.scheme:
        raise ValueError(f"Bathing water identifier is not a URL: {url!r}")
    return settings.EA_BASE_URL.rstrip("/") + parsed.raw_path.decode("ascii")


def detail_urls(about_url: str) -> Tuple[str, str]:
    """The "id" resource and its "doc" fallback, both as JSON."""
    id_url = _with_json_suffix(about_url)
    doc_url = _with_json_suffix(about_url.replace("/id/", "/doc/"))
    return to_ea_url(id_url), to_ea_url(doc_url)


async def list_bathing_waters(client: httpx.AsyncClient) -> List[Dict[str, Any]]:
    data = await fetch_json(client, settings.BATHING_WATER_LIST_URL)
    return extract_items_container(data)


async def get_bathing_water_detail(client: httpx.AsyncClient, about_url: str) -> Any:
    """
    Fetch a bathing water's detail resource.

    Falls back to the "doc" resource only when the "id" resource answered
    with a 4xx or with something that is not JSON. Timeouts, 5xx and
    transport failures are real outages and are raised as-is.
    """
    if not about_url:
        raise ValueError("Missing bathing water URL")

    id_url, doc_url = detail_urls(about_url)

    try:
        return await fetch_json(client, id_url)
    except RequestFailed as error:
        if not error.is_client_error:
            raise
        logger.info("Bathing water id resource returned %s, trying %s", error.status, doc_url)
    except DecodeFailed:
        logger.info("Bathing water id resource is not JSON, trying %s", doc_url)

    return await fetch_json(client, doc_url)
