"""data.police.uk street-level crime API."""

from typing import Any, Dict, List
from urllib.parse import quote

import httpx

from local_insight.core.config import settings
from local_insight.core.fetch import fetch_json


def _as_list(data: Any) -> List[Dict[str, Any]]:
    return data if isinstance(data, list) else []


async def get_crime_categories(client: httpx.AsyncClient, month: str) -> List[Dict[str, Any]]:
    """Categories valid for ``month`` (YYYY-MM): [{"url": "burglary", "name": "Burglary"}, ...]"""
    data = await fetch_json(
        client, f"{settings.POLICE_BASE_URL}/crime-categories", params={"date": month}
    )
    return _as_list(data)


async def get_crimes_at_location(
    client: httpx.AsyncClient,
    lat: float,
    lng: float,
    month: str,
    category: str = "all-crime",
) -> List[Dict[str, Any]]:
    data = await fetch_json(
        client,
        f"{settings.POLICE_BASE_URL}/crimes-street/{quote(category or 'all-crime', safe='')}",
        params={"lat": lat, "lng": lng, "date": month},
    )
    return _as_list(data)


async def get_outcomes_for_crime(client: httpx.AsyncClient, persistent_id: str) -> Dict[str, Any]:
    """
    Outcomes for one crime.

    Only street-level records carrying a ``persistent_id`` can be looked up;
    many records have it set to "" or null.
    """
    data = await fetch_json(
        client, f"{settings.POLICE_BASE_URL}/outcomes-for-crime/{quote(persistent_id, safe='')}"
    )
    return data if isinstance(data, dict) else {}
