# local_insight/core/dashboard.py
"""
DASHBOARD - The current location and one cascade per panel

Purpose:
    1. Resolve a postcode to a Location (through the query cache)
    2. Remember the last good postcode in the preference store
    3. Hand out the cascade of a panel, rebuilt whenever the location moves
    4. Turn a resolved cascade into a PanelResponse

Data Flow:
    PUT /location → set_postcode → lookup_postcode (cached) → Location
    GET /panels/x → cascade(x).resolve() → snapshot → PanelResponse
"""

import functools
import logging
from typing import Dict, Optional, Type

import httpx
from fastapi import Request

from local_insight.core.cascade.base import Cascade, StageSnapshot
from local_insight.core.cascade.crime import CrimeCascade
from local_insight.core.cascade.flood import FloodCascade
from local_insight.core.cascade.stats import StatsCascade
from local_insight.core.cascade.water import WaterCascade
from local_insight.core.config import settings
from local_insight.core.errors import LocationNotSet, UpstreamError, describe_error
from local_insight.core.preferences import MemoryPreferenceStore, PreferenceStore
from local_insight.core.query_cache import QueryCache, QueryKey, QueryState
from local_insight.core.schemas import Domain, Location, LocationResponse, PanelResponse, StageResponse
from local_insight.core.sources.postcodes import clean_postcode, lookup_postcode

logger = logging.getLogger(__name__)

CASCADES: Dict[Domain, Type[Cascade]] = {
    Domain.FLOOD: FloodCascade,
    Domain.WATER: WaterCascade,
    Domain.CRIME: CrimeCascade,
    Domain.STATS: StatsCascade,
}


def stage_response(snapshot: StageSnapshot) -> StageResponse:
    state = snapshot.state
    return StageResponse(
        status=state.status,
        enabled=snapshot.enabled,
        key=list(snapshot.key) if snapshot.key is not None else None,
        error=describe_error(state.error),
        branches=(
            {branch: stage_response(child) for branch, child in snapshot.branches.items()}
            if snapshot.branches is not None
            else None
        ),
    )


class Dashboard:
    def __init__(
        self,
        client: httpx.AsyncClient,
        cache: Optional[QueryCache] = None,
        preferences: Optional[PreferenceStore] = None,
    ):
        self.client = client
        self.cache = cache if cache is not None else QueryCache()
        self.preferences = preferences if preferences is not None else MemoryPreferenceStore()
        self.location: Optional[Location] = None
        self._cascades: Dict[Domain, Cascade] = {}
        self._unsubscribe = self.cache.subscribe(self._log_failures)

    def _log_failures(self, key: QueryKey, state: QueryState) -> None:
        if state.is_error:
            logger.warning("Query %s failed: %s", key[0], state.error)

    # =========================
    # Location
    # =========================
    async def set_postcode(self, postcode: str) -> Location:
        """
        Look up ``postcode`` and make it the current location.

        Raises:
            PostcodeNotFound: Unknown or non-geographic postcode
            UpstreamError: Any other lookup failure
        """
        cleaned = clean_postcode(postcode)
        state = await self.cache.fetch(
            ("postcode", cleaned),
            functools.partial(lookup_postcode, self.client, cleaned),
            stale_time=settings.DEFAULT_STALE_TIME_SECONDS,
        )
        if state.is_error:
            raise state.error

        location: Location = state.data
        if location != self.location:
            self._cascades = {}
            logger.info("Location set to %s (%.5f, %.5f)", location.postcode, location.lat, location.lng)
        self.location = location
        self.preferences.set(location.postcode)
        return location

    async def restore(self) -> Optional[Location]:
        """Re-apply the saved postcode, if any; a failed lookup leaves no location."""
        saved = self.preferences.get()
        if not saved:
            return None
        try:
            return await self.set_postcode(saved)
        except UpstreamError as error:
            logger.warning("Could not restore saved postcode %r: %s", saved, error)
            return None

    def describe(self) -> LocationResponse:
        location = self.location
        if location is None:
            return LocationResponse(label="No postcode set")
        area = location.district or location.region
        label = f"{location.postcode} • {area}" if area else location.postcode
        return LocationResponse(postcode=location.postcode, location=location, label=label)

    # =========================
    # Panels
    # =========================
    def cascade(self, domain: Domain) -> Cascade:
        if self.location is None:
            raise LocationNotSet("Set a postcode before opening a panel")
        cascade = self._cascades.get(domain)
        if cascade is None:
            cascade = self._cascades[domain] = CASCADES[domain](self.cache, self.client, self.location)
        return cascade

    async def panel(self, domain: Domain) -> PanelResponse:
        cascade = self.cascade(domain)
        snapshot = await cascade.resolve()
        return PanelResponse(
            domain=domain,
            postcode=cascade.location.postcode,
            ready=snapshot.ready,
            stages={name: stage_response(stage) for name, stage in snapshot.stages.items()},
            selections=snapshot.selections,
            params=snapshot.params,
            view=cascade.present(snapshot),
        )

    def close(self) -> None:
        self._unsubscribe()


def get_dashboard(request: Request) -> Dashboard:
    return request.app.state.dashboard
