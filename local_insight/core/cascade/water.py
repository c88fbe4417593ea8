"""
Water panel: bathing-water list → detail of the chosen site.

The list is ranked by distance from the location and can be filtered by
name or authority; a site without an identifier is listed but cannot be
selected for details.
"""

from typing import Any, Dict, List, Mapping, Optional

from local_insight.core.cascade.base import Cascade, CascadeSnapshot, Stage, StageView
from local_insight.core.geo import sort_by_distance
from local_insight.core.normalize import (
    canonical_text,
    normalize_record,
    pick_authority,
    pick_coordinates,
    pick_identifier,
    pick_label,
)
from local_insight.core.schemas import Coordinates, Domain, NormalizedRecord
from local_insight.core.sources import bathing_water as water_api

PLACEHOLDER = "Bathing water"
MAX_RESULTS = 30


def _first_text(record: Mapping[str, Any], *names: str) -> str:
    for name in names:
        text = canonical_text(record.get(name))
        if text:
            return text
    return ""


def detail_root(detail: Any) -> Any:
    """
    The resource inside a detail response.

    First item of "items" / "result.items", else "result.primaryTopic",
    else "result", else the body itself.
    """
    if not isinstance(detail, Mapping):
        return {}
    result = detail.get("result")
    items = detail.get("items")
    if items is None and isinstance(result, Mapping):
        items = result.get("items")
    if isinstance(items, list):
        return items[0] if items else {}
    if isinstance(result, Mapping):
        topic = result.get("primaryTopic")
        return topic if isinstance(topic, Mapping) else result
    return detail


def summarize_detail(detail: Any) -> NormalizedRecord:
    """
    Canonical summary of a detail resource.

    Metadata holds the readable extras, in display order: local authority,
    water type, classification, coordinates.
    """
    root = detail_root(detail)
    if not isinstance(root, Mapping):
        root = {}

    coordinates = pick_coordinates(root)
    authority = pick_authority(root)
    water_type = _first_text(root, "waterType", "bathingWaterType", "type")
    classification = _first_text(root, "latestClassification", "classification", "overallClassification")

    extra = []
    if authority:
        extra.append(("Local authority", authority))
    if water_type:
        extra.append(("Water type", water_type))
    if classification:
        extra.append(("Classification", classification))
    if coordinates:
        extra.append(("Coordinates", f"{coordinates.lat:.4f}, {coordinates.lng:.4f}"))

    return NormalizedRecord(
        label=pick_label(root, PLACEHOLDER),
        identifier=pick_identifier(root),
        coordinates=coordinates,
        authority=authority,
        metadata=extra,
    )


def rank_sites(
    items: List[Any], origin: Coordinates, search: str = "", limit: int = MAX_RESULTS
) -> List[Dict[str, Any]]:
    """Normalize, sort nearest first, filter by label/authority, keep ``limit``."""
    records = [normalize_record(item, PLACEHOLDER) for item in items if isinstance(item, Mapping)]
    ranked = sort_by_distance(records, origin, lambda record: record.coordinates)

    needle = (search or "").strip().lower()
    results = []
    for km, record in ranked:
        if needle and needle not in record.label.lower() and needle not in (record.authority or "").lower():
            continue
        results.append({**record.model_dump(), "km": round(km, 1) if km is not None else None})
        if len(results) >= limit:
            break
    return results


# =========================
# Stage keys and fetchers
# =========================
def _sites_key(view: StageView):
    return ("bwq-list",)


async def _fetch_sites(client, key):
    return await water_api.list_bathing_waters(client)


def _detail_key(view: StageView):
    site = view.selection("sites")
    return ("bwq-detail", site) if site else None


async def _fetch_detail(client, key):
    return await water_api.get_bathing_water_detail(client, key[1])


class WaterCascade(Cascade):
    domain = Domain.WATER
    terminal = "detail"
    stages = (
        Stage("sites", _sites_key, _fetch_sites),
        Stage("detail", _detail_key, _fetch_detail, depends_on="sites"),
    )

    def initial_params(self) -> Dict[str, Any]:
        return {"search": ""}

    def present(self, snapshot: CascadeSnapshot) -> Dict[str, Any]:
        items = snapshot.data("sites")
        origin = Coordinates(lat=self.location.lat, lng=self.location.lng)
        results = rank_sites(items or [], origin, snapshot.params.get("search") or "")

        detail = snapshot.data("detail")
        selected: Optional[str] = snapshot.selections.get("sites")

        return {
            "total": len(items or []),
            "results": results,
            "selected": selected,
            "detail": summarize_detail(detail).model_dump() if detail is not None else None,
        }
