# local_insight/core/sources/ons.py
"""
ONS beta API: datasets → latest version → dimensions → options → observations.

Pure helpers (``latest_version_href``, ``version_parts``) live next to the
fetch functions because the cascade needs them to derive its next key.
"""

import re
from typing import Any, Dict, List, Mapping, Optional
from urllib.parse import quote

import httpx

from local_insight.core.config import settings
from local_insight.core.fetch import fetch_json
from local_insight.core.normalize import extract_items_container

VERSION_HREF_PATTERN = re.compile(r"datasets/([^/]+)/editions/([^/]+)/versions/([^/?#]+)")


def _segment(value: str) -> str:
    return quote(str(value), safe="")


def _version_url(dataset_id: str, edition: str, version: str) -> str:
    return (
        f"{settings.ONS_BASE_URL}/datasets/{_segment(dataset_id)}"
        f"/editions/{_segment(edition)}/versions/{_segment(version)}"
    )


async def list_datasets(client: httpx.AsyncClient) -> List[Dict[str, Any]]:
    data = await fetch_json(client, f"{settings.ONS_BASE_URL}/datasets")
    return extract_items_container(data)


async def get_dataset(client: httpx.AsyncClient, dataset_id: str) -> Dict[str, Any]:
    return await fetch_json(client, f"{settings.ONS_BASE_URL}/datasets/{_segment(dataset_id)}")


def latest_version_href(dataset: Any) -> Optional[str]:
    """
    Absolute URL of a dataset's latest version, or None.

    Example:
        {"links": {"latest_version": {"href": "/v1/datasets/cpih01/editions/time-series/versions/6"}}}
            → "https://api.beta.ons.gov.uk/v1/datasets/cpih01/editions/time-series/versions/6"
    """
    if not isinstance(dataset, Mapping):
        return None
    href = ((dataset.get("links") or {}).get("latest_version") or {}).get("href")
    if not href or not isinstance(href, str):
        return None
    return href if href.startswith("http") else f"{settings.ONS_ORIGIN}{href}"


async def get_version(client: httpx.AsyncClient, href: str) -> Dict[str, Any]:
    return await fetch_json(client, href)


def version_parts(version: Any) -> Optional[Dict[str, str]]:
    """
    Split a version resource's self link into dataset id, edition and version.

    Returns None when the link is missing or does not look like a version URL.
    """
    if not isinstance(version, Mapping):
        return None
    href = ((version.get("links") or {}).get("self") or {}).get("href")
    if not href or not isinstance(href, str):
        return None
    match = VERSION_HREF_PATTERN.search(href)
    if not match:
        return None
    return {"dataset_id": match.group(1), "edition": match.group(2), "version": match.group(3)}


async def get_dimensions(
    client: httpx.AsyncClient, dataset_id: str, edition: str, version: str
) -> List[Dict[str, Any]]:
    data = await fetch_json(client, f"{_version_url(dataset_id, edition, version)}/dimensions")
    return extract_items_container(data)


async def get_dimension_options(
    client: httpx.AsyncClient,
    dataset_id: str,
    edition: str,
    version: str,
    dimension: str,
    limit: int = 50,
    offset: int = 0,
) -> List[Dict[str, Any]]:
    data = await fetch_json(
        client,
        f"{_version_url(dataset_id, edition, version)}/dimensions/{_segment(dimension)}/options",
        params={"limit": limit, "offset": offset},
    )
    return extract_items_container(data)


async def get_observations(
    client: httpx.AsyncClient,
    dataset_id: str,
    edition: str,
    version: str,
    selections: Mapping[str, Optional[str]],
) -> Any:
    """
    Observations for one option per dimension.

    Returns the "observations" list when present, else "items", else the
    raw body (callers check the shape).
    """
    params = {dimension: option for dimension, option in selections.items() if option}
    data = await fetch_json(
        client, f"{_version_url(dataset_id, edition, version)}/observations", params=params
    )
    if isinstance(data, Mapping):
        if data.get("observations") is not None:
            return data["observations"]
        if data.get("items") is not None:
            return data["items"]
    return data
