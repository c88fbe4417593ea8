"""
Crime panel: categories for the month, street-level crimes around the
location, and outcomes for the chosen crime when it has a persistent_id.
"""

from datetime import date
from typing import Any, Dict, List, Optional

from local_insight.core.cascade.base import Cascade, CascadeSnapshot, Stage, StageView
from local_insight.core.normalize import canonical_text, field, pick_identifier
from local_insight.core.schemas import Domain
from local_insight.core.sources import police as police_api

MAX_CRIMES = 25
MAX_OUTCOMES = 10
ALL_CRIME = "all-crime"

street_name = field("location", "street", "name")


def recent_months(count: int = 12, today: Optional[date] = None) -> List[str]:
    """
    The ``count`` months before the current one, newest first.

    Example (today = 2025-03-10):
        recent_months(3) → ["2025-02", "2025-01", "2024-12"]
    """
    today = today or date.today()
    months = []
    year, month = today.year, today.month
    for _ in range(count):
        month -= 1
        if month == 0:
            year, month = year - 1, 12
        months.append(f"{year:04d}-{month:02d}")
    return months


def find_crime(crimes: Any, crime_id: Optional[str]) -> Optional[Dict[str, Any]]:
    if not crime_id or not isinstance(crimes, list):
        return None
    for crime in crimes:
        if isinstance(crime, dict) and pick_identifier(crime) == crime_id:
            return crime
    return None


def crime_summary(crime: Dict[str, Any]) -> Dict[str, Any]:
    category = canonical_text(crime.get("category"))
    return {
        "id": pick_identifier(crime),
        "category": category.replace("-", " ") if category else "Crime",
        "street": canonical_text(street_name(crime)) or None,
        "month": crime.get("month"),
        "has_outcomes": bool(crime.get("persistent_id")),
    }


# =========================
# Stage keys and fetchers
# =========================
def _categories_key(view: StageView):
    return ("police-categories", view.param("month"))


async def _fetch_categories(client, key):
    return await police_api.get_crime_categories(client, key[1])


def _crimes_key(view: StageView):
    return (
        "police-crimes",
        view.location.lat,
        view.location.lng,
        view.param("month"),
        view.param("category") or ALL_CRIME,
    )


async def _fetch_crimes(client, key):
    _, lat, lng, month, category = key
    return await police_api.get_crimes_at_location(client, lat=lat, lng=lng, month=month, category=category)


def _outcomes_key(view: StageView):
    crime = find_crime(view.data("crimes"), view.selection("crimes"))
    persistent_id = crime.get("persistent_id") if crime else None
    return ("police-outcomes", persistent_id) if persistent_id else None


async def _fetch_outcomes(client, key):
    return await police_api.get_outcomes_for_crime(client, key[1])


class CrimeCascade(Cascade):
    domain = Domain.CRIME
    terminal = "outcomes"
    stages = (
        Stage("categories", _categories_key, _fetch_categories),
        Stage("crimes", _crimes_key, _fetch_crimes),
        Stage("outcomes", _outcomes_key, _fetch_outcomes, depends_on="crimes"),
    )

    def initial_params(self) -> Dict[str, Any]:
        return {"month": recent_months(1)[0], "category": ALL_CRIME}

    def present(self, snapshot: CascadeSnapshot) -> Dict[str, Any]:
        categories = snapshot.data("categories") or []
        crimes = [c for c in snapshot.data("crimes") or [] if isinstance(c, dict)]
        selected = find_crime(crimes, snapshot.selections.get("crimes"))
        outcomes = snapshot.data("outcomes")

        outcome_views = None
        if isinstance(outcomes, dict):
            outcome_views = [
                {
                    "category": canonical_text(o.get("category")) or "Outcome",
                    "date": o.get("date"),
                }
                for o in (outcomes.get("outcomes") or [])[:MAX_OUTCOMES]
                if isinstance(o, dict)
            ]

        return {
            "months": recent_months(12),
            "categories": [
                {"id": c.get("url"), "label": canonical_text(c.get("name")) or c.get("url")}
                for c in categories
                if isinstance(c, dict)
            ],
            "total": len(crimes),
            "top_street": (canonical_text(street_name(crimes[0])) or None) if crimes else None,
            "crimes": [crime_summary(c) for c in crimes[:MAX_CRIMES]],
            "selected": crime_summary(selected) if selected else None,
            "outcomes": outcome_views,
        }
