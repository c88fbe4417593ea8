"""
Flood panel: stations near the location → measures of the chosen station →
latest reading of the chosen measure. Alerts are a separate root stage that
only runs once the user asks for them.
"""

from typing import Any, Dict, List, Optional

from local_insight.core.cascade.base import Cascade, CascadeSnapshot, Stage, StageView
from local_insight.core.config import settings
from local_insight.core.normalize import canonical_text, pick_coordinates, pick_label
from local_insight.core.schemas import Domain
from local_insight.core.sources import flood as flood_api

MAX_STATIONS = 60
MAX_ALERTS = 20


def pick_preferred_measure(measures: List[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """First measure whose parameter name mentions "level", else the first measure."""
    for measure in measures:
        if "level" in canonical_text(measure.get("parameterName")).lower():
            return measure
    return measures[0] if measures else None


def default_measure(measures: Any) -> Optional[str]:
    if not isinstance(measures, list):
        return None
    preferred = pick_preferred_measure([m for m in measures if isinstance(m, dict)])
    notation = canonical_text(preferred.get("notation")) if preferred else ""
    return notation or None


def measure_label(measure: Dict[str, Any]) -> str:
    """ "Water Level (m) • Downstream Stage" """
    label = canonical_text(measure.get("parameterName")) or "Measure"
    unit = canonical_text(measure.get("unitName"))
    qualifier = canonical_text(measure.get("qualifier"))
    if unit:
        label = f"{label} ({unit})"
    if qualifier:
        label = f"{label} • {qualifier}"
    return label


# =========================
# Stage keys and fetchers
# =========================
def _stations_key(view: StageView):
    return ("flood-stations", view.location.lat, view.location.lng, view.param("radius_km"))


async def _fetch_stations(client, key):
    _, lat, lng, dist = key
    return await flood_api.get_stations_near(client, lat=lat, lng=lng, dist=dist)


def _measures_key(view: StageView):
    station = view.selection("stations")
    return ("flood-measures", station) if station else None


async def _fetch_measures(client, key):
    return await flood_api.get_measures_for_station(client, key[1])


def _reading_key(view: StageView):
    measure = view.selection("measures")
    return ("flood-reading", measure) if measure else None


async def _fetch_reading(client, key):
    return await flood_api.get_latest_reading_for_measure(client, key[1])


def _alerts_key(view: StageView):
    if not view.param("show_alerts"):
        return None
    return ("flood-alerts", view.location.lat, view.location.lng, view.param("radius_km"))


async def _fetch_alerts(client, key):
    _, lat, lng, dist = key
    return await flood_api.get_floods_near(client, lat=lat, lng=lng, dist=dist)


class FloodCascade(Cascade):
    domain = Domain.FLOOD
    terminal = "reading"
    stages = (
        Stage("stations", _stations_key, _fetch_stations),
        Stage(
            "measures",
            _measures_key,
            _fetch_measures,
            depends_on="stations",
            default_selection=default_measure,
        ),
        Stage("reading", _reading_key, _fetch_reading, depends_on="measures"),
        Stage("alerts", _alerts_key, _fetch_alerts),
    )

    def initial_params(self) -> Dict[str, Any]:
        return {"radius_km": settings.SEARCH_RADIUS_KM, "show_alerts": False}

    def present(self, snapshot: CascadeSnapshot) -> Dict[str, Any]:
        stations = [s for s in snapshot.data("stations") or [] if isinstance(s, dict)]
        measures = [m for m in snapshot.data("measures") or [] if isinstance(m, dict)]
        selected_station = snapshot.selections.get("stations")

        station_views = []
        for station in stations[:MAX_STATIONS]:
            coordinates = pick_coordinates(station)
            station_views.append(
                {
                    "id": canonical_text(station.get("stationReference")) or None,
                    "label": pick_label(station, "Station"),
                    "river": canonical_text(station.get("riverName")) or None,
                    "town": canonical_text(station.get("town")) or None,
                    "coordinates": coordinates.model_dump() if coordinates else None,
                }
            )

        reading = snapshot.data("reading")
        alerts = snapshot.data("alerts")

        return {
            "stations": station_views,
            "selected_station": next((s for s in station_views if s["id"] == selected_station), None),
            "measures": [
                {"id": canonical_text(m.get("notation")) or None, "label": measure_label(m)}
                for m in measures
            ],
            "selected_measure": snapshot.selections.get("measures"),
            "reading": (
                {"value": reading.get("value"), "date_time": reading.get("dateTime")}
                if isinstance(reading, dict)
                else None
            ),
            "alerts": (
                [
                    {
                        "id": canonical_text(alert.get("floodAreaID")) or None,
                        "severity": canonical_text(alert.get("severity") or alert.get("severityLevel")) or "Alert",
                        "description": canonical_text(alert.get("description") or alert.get("message")) or None,
                    }
                    for alert in alerts[:MAX_ALERTS]
                    if isinstance(alert, dict)
                ]
                if isinstance(alerts, list)
                else None
            ),
        }
