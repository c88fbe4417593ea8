"""Environment Agency flood-monitoring API (stations, measures, readings, floods)."""

from typing import Any, Dict, List, Optional
from urllib.parse import quote

import httpx

from local_insight.core.config import settings
from local_insight.core.fetch import fetch_json
from local_insight.core.normalize import extract_items_container


async def get_stations_near(
    client: httpx.AsyncClient, lat: float, lng: float, dist: float = 15.0
) -> List[Dict[str, Any]]:
    data = await fetch_json(
        client,
        f"{settings.FLOOD_BASE_URL}/id/stations",
        params={"lat": lat, "long": lng, "dist": dist},
    )
    return extract_items_container(data)


async def get_measures_for_station(client: httpx.AsyncClient, station_id: str) -> List[Dict[str, Any]]:
    data = await fetch_json(
        client, f"{settings.FLOOD_BASE_URL}/id/stations/{quote(station_id, safe='')}/measures"
    )
    return extract_items_container(data)


async def get_latest_reading_for_measure(
    client: httpx.AsyncClient, measure_id: str
) -> Optional[Dict[str, Any]]:
    """Latest reading of a measure, or None when the measure has no recent data."""
    data = await fetch_json(
        client,
        f"{settings.FLOOD_BASE_URL}/id/measures/{quote(measure_id, safe='')}/readings?latest",
    )
    items = extract_items_container(data)
    return items[0] if items else None


async def get_floods_near(
    client: httpx.AsyncClient, lat: float, lng: float, dist: float = 15.0
) -> List[Dict[str, Any]]:
    data = await fetch_json(
        client,
        f"{settings.FLOOD_BASE_URL}/id/floods",
        params={"lat": lat, "long": lng, "dist": dist},
    )
    return extract_items_container(data)
