from datetime import date

import httpx
import pytest

from local_insight.core.cascade.base import Cascade, Stage
from local_insight.core.cascade.crime import CrimeCascade, recent_months
from local_insight.core.cascade.flood import FloodCascade, pick_preferred_measure
from local_insight.core.cascade.stats import StatsCascade
from local_insight.core.cascade.water import WaterCascade
from local_insight.core.errors import RequestFailed, UnknownParam, UnknownStage
from local_insight.core.schemas import Domain, QueryStatus

from conftest import LOCATION

FLOW = {"notation": "A1-flow", "parameterName": "Flow", "unitName": "m3/s"}
LEVEL = {"notation": "A1-level", "parameterName": "Downstream Level", "unitName": "m", "qualifier": "Stage"}

STATIONS = {
    "items": [
        {"stationReference": "A1", "label": "Kingston", "lat": 51.41, "long": -0.31, "riverName": "Thames"},
        {"stationReference": "B2", "label": "Teddington", "lat": 51.43, "long": -0.32},
    ]
}


@pytest.fixture
def flood_routes(upstream):
    upstream.add("/flood-monitoring/id/stations", STATIONS)
    upstream.add("/flood-monitoring/id/stations/A1/measures", {"items": [FLOW, LEVEL]})
    upstream.add(
        "/flood-monitoring/id/stations/B2/measures",
        {"items": [{"notation": "B2-level", "parameterName": "Water Level"}]},
    )
    for measure, value in (("A1-level", 1.23), ("A1-flow", 40.5), ("B2-level", 2.5)):
        upstream.add(
            f"/flood-monitoring/id/measures/{measure}/readings",
            {"items": [{"dateTime": "2025-01-01T10:00:00Z", "value": value}]},
        )
    return upstream


# =========================
# Generic resolver
# =========================
def test_stage_must_follow_its_parent(cache):
    async def fetch(client, key):
        return key

    class Backwards(Cascade):
        domain = Domain.FLOOD
        terminal = "child"
        stages = (
            Stage("child", lambda view: ("child",), fetch, depends_on="parent"),
            Stage("parent", lambda view: ("parent",), fetch),
        )

    with pytest.raises(ValueError):
        Backwards(cache, None, LOCATION)


@pytest.mark.asyncio
async def test_unknown_stage_and_param(cache, http_client):
    cascade = FloodCascade(cache, http_client, LOCATION)

    with pytest.raises(UnknownStage):
        cascade.select("trains", "x")
    with pytest.raises(UnknownStage):
        cascade.select("stations", "A1", branch="time")
    with pytest.raises(UnknownParam):
        cascade.set_param("colour", "red")
    with pytest.raises(ValueError):
        cascade.set_param("radius_km", "far")
    with pytest.raises(ValueError):
        cascade.set_param("show_alerts", 1)


# =========================
# Flood
# =========================
def test_preferred_measure_mentions_level():
    assert pick_preferred_measure([FLOW, LEVEL]) is LEVEL
    assert pick_preferred_measure([FLOW]) is FLOW
    assert pick_preferred_measure([]) is None


@pytest.mark.asyncio
async def test_flood_cascade_waits_for_a_station(cache, http_client, flood_routes):
    cascade = FloodCascade(cache, http_client, LOCATION)

    snapshot = await cascade.resolve()

    assert snapshot["stations"].state.is_success
    assert not snapshot["measures"].enabled
    assert snapshot["reading"].state.is_idle
    assert not snapshot.ready
    assert [s["id"] for s in cascade.present(snapshot)["stations"]] == ["A1", "B2"]


@pytest.mark.asyncio
async def test_default_measure_then_reading(cache, http_client, flood_routes):
    cascade = FloodCascade(cache, http_client, LOCATION)
    cascade.select("stations", "A1")

    snapshot = await cascade.resolve()
    view = cascade.present(snapshot)

    assert cascade.selection("measures") == "A1-level"
    assert snapshot.ready
    assert view["reading"] == {"value": 1.23, "date_time": "2025-01-01T10:00:00Z"}
    assert view["selected_station"]["label"] == "Kingston"
    assert view["measures"][1]["label"] == "Downstream Level (m) • Stage"
    assert view["alerts"] is None


@pytest.mark.asyncio
async def test_new_station_clears_measure_choice(cache, http_client, flood_routes):
    """Station A → measure M1, then station B: measure choice is gone"""
    cascade = FloodCascade(cache, http_client, LOCATION)
    cascade.select("stations", "A1")
    await cascade.resolve()
    cascade.select("measures", "A1-flow")
    snapshot = await cascade.resolve()
    assert cascade.present(snapshot)["reading"]["value"] == 40.5

    cascade.select("stations", "B2")
    assert cascade.selection("measures") is None

    snapshot = cascade.evaluate()
    assert snapshot["reading"].state.is_idle
    assert not snapshot["reading"].enabled

    snapshot = await cascade.resolve()
    assert cascade.selection("measures") == "B2-level"
    assert cascade.present(snapshot)["reading"]["value"] == 2.5


@pytest.mark.asyncio
async def test_measure_picked_before_reevaluating_new_station_is_kept(cache, http_client, flood_routes):
    """Station A, then station B and its flow measure in one go: the flow choice stands"""
    flood_routes.add(
        "/flood-monitoring/id/stations/B2/measures",
        {"items": [{"notation": "B2-level", "parameterName": "Water Level"}, {"notation": "B2-flow", "parameterName": "Flow"}]},
    )
    flood_routes.add(
        "/flood-monitoring/id/measures/B2-flow/readings",
        {"items": [{"dateTime": "2025-01-01T10:00:00Z", "value": 12.0}]},
    )
    cascade = FloodCascade(cache, http_client, LOCATION)
    cascade.select("stations", "A1")
    await cascade.resolve()
    assert cascade.selection("measures") == "A1-level"

    cascade.select("stations", "B2")
    cascade.select("measures", "B2-flow")
    snapshot = await cascade.resolve()

    assert cascade.selection("measures") == "B2-flow"
    assert cascade.present(snapshot)["reading"]["value"] == 12.0


@pytest.mark.asyncio
async def test_default_measure_survives_reordered_refetch(cache, http_client, upstream, clock):
    upstream.add("/flood-monitoring/id/stations", STATIONS)
    calls = []

    def measures(request):
        calls.append(request)
        return {"items": [FLOW, LEVEL] if len(calls) == 1 else [LEVEL, FLOW]}

    upstream.add("/flood-monitoring/id/stations/A1/measures", measures)

    cascade = FloodCascade(cache, http_client, LOCATION)
    cascade.select("stations", "A1")
    await cascade.resolve()
    assert cascade.selection("measures") == "A1-level"

    clock.advance(3600)
    snapshot = await cascade.resolve()

    assert len(calls) == 2
    assert [m["id"] for m in cascade.present(snapshot)["measures"]] == ["A1-level", "A1-flow"]
    assert cascade.selection("measures") == "A1-level"


@pytest.mark.asyncio
async def test_alerts_only_fetched_when_switched_on(cache, http_client, flood_routes):
    flood_routes.add("/flood-monitoring/id/floods", {"items": [{"floodAreaID": "061WAF", "severity": "Flood alert"}]})
    cascade = FloodCascade(cache, http_client, LOCATION)

    await cascade.resolve()
    assert flood_routes.hits("/flood-monitoring/id/floods") == []

    cascade.set_param("show_alerts", True)
    snapshot = await cascade.resolve()

    assert cascade.present(snapshot)["alerts"] == [
        {"id": "061WAF", "severity": "Flood alert", "description": None}
    ]


# =========================
# Water
# =========================
@pytest.fixture
def water_routes(upstream):
    upstream.add(
        "/doc/bathing-water.json",
        {
            "result": {
                "primaryTopic": {
                    "items": [
                        {
                            "_about": "http://environment.data.gov.uk/id/bathing-water/ukj1",
                            "name": {"_value": "Far Beach", "_lang": "en"},
                            "lat": 50.7,
                            "long": -1.5,
                            "district": {"name": {"_value": "Isle of Wight"}},
                        },
                        {
                            "_about": "http://environment.data.gov.uk/id/bathing-water/ukj2",
                            "name": {"_value": "Near Lido"},
                            "lat": "51.49",
                            "long": "-0.15",
                        },
                        {"name": "Somewhere"},
                    ]
                }
            }
        },
    )
    upstream.add(
        "/doc/bathing-water/ukj2.json",
        {
            "result": {
                "primaryTopic": {
                    "_about": "http://environment.data.gov.uk/id/bathing-water/ukj2",
                    "name": {"_value": "Near Lido"},
                    "latestClassification": {"name": {"_value": "Excellent"}},
                    "lat": 51.49,
                    "long": -0.15,
                }
            }
        },
    )
    return upstream


@pytest.mark.asyncio
async def test_bathing_waters_nearest_first(cache, http_client, water_routes):
    cascade = WaterCascade(cache, http_client, LOCATION)

    view = cascade.present(await cascade.resolve())

    assert view["total"] == 3
    assert [r["label"] for r in view["results"]] == ["Near Lido", "Far Beach", "Somewhere"]
    assert view["results"][0]["km"] < 2
    assert view["results"][2]["km"] is None
    assert view["results"][2]["identifier"] is None
    assert view["detail"] is None


@pytest.mark.asyncio
async def test_bathing_water_search_filters_by_authority(cache, http_client, water_routes):
    cascade = WaterCascade(cache, http_client, LOCATION)
    cascade.set_param("search", "wight")

    view = cascade.present(await cascade.resolve())

    assert [r["label"] for r in view["results"]] == ["Far Beach"]


@pytest.mark.asyncio
async def test_bathing_water_detail_from_doc_resource(cache, http_client, water_routes):
    cascade = WaterCascade(cache, http_client, LOCATION)
    cascade.select("sites", "http://environment.data.gov.uk/id/bathing-water/ukj2")

    snapshot = await cascade.resolve()
    detail = cascade.present(snapshot)["detail"]

    assert snapshot.ready
    assert detail["label"] == "Near Lido"
    assert ["Classification", "Excellent"] in [list(pair) for pair in detail["metadata"]]
    assert water_routes.hits("/id/bathing-water/ukj2.json")


# =========================
# Crime
# =========================
CRIMES = [
    {
        "id": 101,
        "category": "burglary",
        "persistent_id": "abc",
        "month": "2025-01",
        "location": {"street": {"id": 1, "name": "On or near High Street"}},
    },
    {
        "id": 102,
        "category": "anti-social-behaviour",
        "persistent_id": "",
        "month": "2025-01",
        "location": {"street": {"id": 2, "name": "On or near Mall"}},
    },
]


@pytest.fixture
def crime_routes(upstream):
    upstream.add("/api/crime-categories", [{"url": "all-crime", "name": "All crime"}])
    upstream.add("/api/crimes-street/all-crime", CRIMES)
    upstream.add(
        "/api/outcomes-for-crime/abc",
        {"outcomes": [{"category": {"code": "under-investigation", "name": "Under investigation"}, "date": "2025-01"}]},
    )
    return upstream


def test_recent_months_cross_the_year():
    assert recent_months(3, today=date(2025, 2, 10)) == ["2025-01", "2024-12", "2024-11"]


@pytest.mark.asyncio
async def test_outcomes_need_a_persistent_id(cache, http_client, crime_routes):
    cascade = CrimeCascade(cache, http_client, LOCATION)

    snapshot = await cascade.resolve()
    view = cascade.present(snapshot)
    assert view["total"] == 2
    assert view["top_street"] == "On or near High Street"
    assert not snapshot.ready

    cascade.select("crimes", "102")
    snapshot = await cascade.resolve()
    assert not snapshot.ready
    assert cascade.present(snapshot)["selected"]["has_outcomes"] is False

    cascade.select("crimes", "101")
    snapshot = await cascade.resolve()
    assert snapshot.ready
    assert cascade.present(snapshot)["outcomes"] == [{"category": "Under investigation", "date": "2025-01"}]


@pytest.mark.asyncio
async def test_new_month_drops_crime_choice(cache, http_client, crime_routes):
    cascade = CrimeCascade(cache, http_client, LOCATION)
    cascade.select("crimes", "101")
    await cascade.resolve()

    cascade.set_param("month", "2024-06")
    cascade.evaluate()

    assert cascade.selection("crimes") is None
    await cascade.resolve()


@pytest.mark.asyncio
async def test_crime_picked_after_new_month_is_kept(cache, http_client, crime_routes):
    cascade = CrimeCascade(cache, http_client, LOCATION)
    cascade.select("crimes", "101")
    await cascade.resolve()

    cascade.set_param("month", "2024-06")
    cascade.select("crimes", "102")
    await cascade.resolve()

    assert cascade.selection("crimes") == "102"


@pytest.mark.asyncio
async def test_failed_stage_does_not_stop_its_siblings(cache, http_client, crime_routes):
    crime_routes.add("/api/crime-categories", httpx.Response(500, text="police API down"))
    cascade = CrimeCascade(cache, http_client, LOCATION)

    snapshot = await cascade.resolve()

    assert snapshot["categories"].state.status is QueryStatus.ERROR
    assert isinstance(snapshot["categories"].state.error, RequestFailed)
    assert snapshot["crimes"].state.is_success
    assert cascade.present(snapshot)["categories"] == []


# =========================
# Stats (fan-out)
# =========================
VERSION = "/v1/datasets/cpih01/editions/time-series/versions/6"


@pytest.fixture
def ons_routes(upstream):
    dataset = {
        "id": "cpih01",
        "title": "Consumer Prices Index",
        "links": {"latest_version": {"href": VERSION}},
    }
    upstream.add("/v1/datasets", {"items": [dataset, {"id": "mid-year-pop-est", "title": "Population"}]})
    upstream.add("/v1/datasets/cpih01", dataset)
    upstream.add(VERSION, {"links": {"self": {"href": f"https://api.beta.ons.gov.uk{VERSION}"}}})
    upstream.add(
        f"{VERSION}/dimensions",
        {"items": [{"name": "time"}, {"name": "aggregate"}, {"name": "geography"}]},
    )
    upstream.add(f"{VERSION}/dimensions/time/options", {"items": [{"option": "Oct-25", "label": "Oct-25"}]})
    upstream.add(
        f"{VERSION}/dimensions/aggregate/options",
        {"items": [{"option": "CP00", "label": "Overall Index"}, {"option": "CP01", "label": "Food"}]},
    )
    upstream.add(f"{VERSION}/dimensions/geography/options", {"items": []})
    upstream.add(
        f"{VERSION}/observations",
        {"observations": [{"observation": "134.2", "metadata": {"unit_of_measure": "Index", "empty": None}}]},
    )
    return upstream


@pytest.mark.asyncio
async def test_dataset_search(cache, http_client, ons_routes):
    cascade = StatsCascade(cache, http_client, LOCATION)
    cascade.set_param("search", "consumer")

    view = cascade.present(await cascade.resolve())

    assert view["datasets"] == [{"id": "cpih01", "title": "Consumer Prices Index"}]


@pytest.mark.asyncio
async def test_observations_wait_for_every_dimension(cache, http_client, ons_routes):
    """3 dimensions: observations stay disabled until all 3 have a selection"""
    cascade = StatsCascade(cache, http_client, LOCATION)
    cascade.select("datasets", "cpih01")

    snapshot = await cascade.resolve()

    assert set(snapshot["options"].branches) == {"time", "aggregate", "geography"}
    assert snapshot["options"].settled
    assert cascade.selections["options"] == {"time": "Oct-25", "aggregate": "CP00"}
    assert not snapshot["observations"].enabled
    assert not snapshot.ready
    assert ons_routes.hits(f"{VERSION}/observations") == []

    cascade.select("options", "K02000001", branch="geography")
    snapshot = await cascade.resolve()

    assert snapshot.ready
    params = ons_routes.hits(f"{VERSION}/observations")[-1].url.params
    assert dict(params) == {"time": "Oct-25", "aggregate": "CP00", "geography": "K02000001"}

    view = cascade.present(snapshot)
    assert view["version"] == {"dataset_id": "cpih01", "edition": "time-series", "version": "6"}
    assert view["observations"]["count"] == 1
    assert view["observations"]["primary"] == {"value": "134.2", "metadata": [("unit_of_measure", "Index")]}


@pytest.mark.asyncio
async def test_changing_an_option_refetches_observations(cache, http_client, ons_routes):
    cascade = StatsCascade(cache, http_client, LOCATION)
    cascade.select("datasets", "cpih01")
    cascade.select("options", "K02000001", branch="geography")
    await cascade.resolve()

    cascade.select("options", "CP01", branch="aggregate")
    await cascade.resolve()

    requests = ons_routes.hits(f"{VERSION}/observations")
    assert [r.url.params["aggregate"] for r in requests] == ["CP00", "CP01"]


@pytest.mark.asyncio
async def test_fan_out_with_no_dimensions_never_settles(cache, http_client, ons_routes):
    ons_routes.add(f"{VERSION}/dimensions", {"items": []})
    cascade = StatsCascade(cache, http_client, LOCATION)
    cascade.select("datasets", "cpih01")

    snapshot = await cascade.resolve()

    assert snapshot["options"].branches == {}
    assert not snapshot["options"].settled
    assert not snapshot["observations"].enabled
