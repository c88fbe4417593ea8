import httpx
import pytest
import pytest_asyncio
from httpx import AsyncClient

STATIONS = {
    "items": [
        {"stationReference": "A1", "label": "Kingston", "lat": 51.41, "long": -0.31},
        {"stationReference": "B2", "label": "Teddington", "lat": 51.43, "long": -0.32},
    ]
}
MEASURES = {
    "items": [
        {"notation": "A1-flow", "parameterName": "Flow"},
        {"notation": "A1-level", "parameterName": "Water Level", "unitName": "mASD"},
    ]
}


@pytest.fixture
def flood_upstream(upstream):
    upstream.add("/flood-monitoring/id/stations", STATIONS)
    upstream.add("/flood-monitoring/id/stations/A1/measures", MEASURES)
    upstream.add(
        "/flood-monitoring/id/measures/A1-level/readings",
        {"items": [{"dateTime": "2025-01-01T10:00:00Z", "value": 0.82}]},
    )
    upstream.add("/flood-monitoring/id/floods", {"items": []})
    return upstream


# Client with SW1A 1AA already set
@pytest_asyncio.fixture(scope="function")
async def located_client(client: AsyncClient, flood_upstream):
    response = await client.put("/location", json={"postcode": "SW1A 1AA"})
    assert response.status_code == 200
    return client


@pytest.mark.asyncio
async def test_panel_needs_a_location(client: AsyncClient):
    response = await client.get("/panels/flood")
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_unknown_panel(client: AsyncClient):
    response = await client.get("/panels/weather")
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_flood_panel(located_client: AsyncClient):
    """Stations load; nothing downstream until a station is picked"""
    response = await located_client.get("/panels/flood")
    assert response.status_code == 200
    data = response.json()

    assert data["domain"] == "flood"
    assert data["postcode"] == "SW1A 1AA"
    assert data["ready"] is False
    assert data["stages"]["stations"]["status"] == "success"
    assert data["stages"]["stations"]["key"][0] == "flood-stations"
    assert data["stages"]["measures"] == {
        "status": "idle",
        "enabled": False,
        "key": None,
        "error": None,
        "branches": None,
    }
    assert data["params"] == {"radius_km": 15.0, "show_alerts": False}
    assert [s["label"] for s in data["view"]["stations"]] == ["Kingston", "Teddington"]


@pytest.mark.asyncio
async def test_select_station(located_client: AsyncClient):
    """Picking a station pre-selects its level measure and loads the reading"""
    response = await located_client.post(
        "/panels/flood/selections", json={"stage": "stations", "value": "A1"}
    )
    assert response.status_code == 200
    data = response.json()

    assert data["ready"] is True
    assert data["selections"] == {"stations": "A1", "measures": "A1-level"}
    assert data["view"]["reading"]["value"] == 0.82
    assert data["view"]["measures"][1]["label"] == "Water Level (mASD)"


@pytest.mark.asyncio
async def test_select_unknown_stage(located_client: AsyncClient):
    response = await located_client.post(
        "/panels/flood/selections", json={"stage": "rivers", "value": "A1"}
    )
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_fan_out_selection_needs_branch(located_client: AsyncClient, upstream):
    upstream.add("/v1/datasets", {"items": []})

    response = await located_client.post(
        "/panels/stats/selections", json={"stage": "options", "value": "CP00"}
    )
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_update_params(located_client: AsyncClient, flood_upstream):
    response = await located_client.patch("/panels/flood/params", json={"show_alerts": True, "radius_km": 5})
    assert response.status_code == 200
    data = response.json()

    assert data["params"] == {"radius_km": 5, "show_alerts": True}
    assert data["view"]["alerts"] == []
    request = flood_upstream.hits("/flood-monitoring/id/floods")[-1]
    assert request.url.params["dist"] == "5"


@pytest.mark.asyncio
async def test_update_unknown_param(located_client: AsyncClient):
    response = await located_client.patch("/panels/flood/params", json={"colour": "red"})
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_update_param_wrong_type(located_client: AsyncClient):
    response = await located_client.patch("/panels/flood/params", json={"radius_km": "far"})
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_stage_errors_are_reported_per_stage(located_client: AsyncClient, upstream):
    upstream.add("/api/crime-categories", httpx.Response(500, text="boom"))
    upstream.add("/api/crimes-street/all-crime", [])

    response = await located_client.get("/panels/crime")
    assert response.status_code == 200
    stages = response.json()["stages"]

    assert stages["categories"]["status"] == "error"
    assert stages["categories"]["error"]["type"] == "RequestFailed"
    assert stages["categories"]["error"]["status"] == 500
    assert stages["crimes"]["status"] == "success"


@pytest.mark.asyncio
async def test_rejected_params_leave_every_param_untouched(located_client: AsyncClient):
    response = await located_client.patch("/panels/flood/params", json={"radius_km": 5, "show_alerts": "yes"})
    assert response.status_code == 422

    response = await located_client.get("/panels/flood")
    assert response.json()["params"] == {"radius_km": 15.0, "show_alerts": False}
