import logging
from urllib.parse import quote

import httpx

from local_insight.core.config import settings
from local_insight.core.errors import PostcodeNotFound, RequestFailed
from local_insight.core.fetch import fetch_json
from local_insight.core.normalize import pick_number
from local_insight.core.schemas import Location

logger = logging.getLogger(__name__)


def clean_postcode(postcode: str) -> str:
    """Trim and upper-case so "sw1a 1aa " and "SW1A 1AA" share a cache key."""
    return " ".join(postcode.split()).upper()


async def lookup_postcode(client: httpx.AsyncClient, postcode: str) -> Location:
    """
    Resolve a UK postcode to a location via postcodes.io.

    Raises:
        PostcodeNotFound: unknown postcode, or a result without coordinates
    """
    cleaned = clean_postcode(postcode)
    url = f"{settings.POSTCODES_BASE_URL}/postcodes/{quote(cleaned, safe='')}"

    try:
        data = await fetch_json(client, url)
    except RequestFailed as error:
        if error.status == 404:
            raise PostcodeNotFound(cleaned) from error
        raise

    result = data.get("result") if isinstance(data, dict) else None
    if not isinstance(result, dict):
        raise PostcodeNotFound(cleaned)

    lat = pick_number(result.get("latitude"))
    lng = pick_number(result.get("longitude"))
    if lat is None or lng is None:
        # Non-geographic postcodes (PO boxes, large users) have no coordinates
        raise PostcodeNotFound(cleaned)

    return Location(
        postcode=result.get("postcode") or cleaned,
        lat=lat,
        lng=lng,
        district=result.get("admin_district"),
        region=result.get("region"),
    )
