import httpx
import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport

from local_insight.main import app
from local_insight.core.dashboard import Dashboard, get_dashboard
from local_insight.core.fetch import build_client, get_http_client
from local_insight.core.preferences import MemoryPreferenceStore
from local_insight.core.query_cache import QueryCache
from local_insight.core.schemas import Location

LOCATION = Location(
    postcode="SW1A 1AA",
    lat=51.501009,
    lng=-0.141588,
    district="Westminster",
    region="London",
)

POSTCODE_RESULT = {
    "status": 200,
    "result": {
        "postcode": "SW1A 1AA",
        "latitude": 51.501009,
        "longitude": -0.141588,
        "admin_district": "Westminster",
        "region": "London",
    },
}


class FakeClock:
    """Monotonic clock the tests move by hand."""

    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeUpstream:
    """
    Answers every upstream request by URL path and records it.

    A route answer is JSON (served with 200), an ``httpx.Response`` or a
    callable taking the request and returning either. Unknown paths get 404.
    """

    def __init__(self):
        self.routes = {}
        self.requests = []

    def add(self, path, answer):
        self.routes[path] = answer

    def hits(self, path):
        return [request for request in self.requests if request.url.path == path]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        answer = self.routes.get(request.url.path)
        if answer is None:
            return httpx.Response(404, json={"error": "Not found"})
        if callable(answer):
            answer = answer(request)
        if isinstance(answer, httpx.Response):
            return answer
        return httpx.Response(200, json=answer)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def upstream():
    fake = FakeUpstream()
    fake.add("/postcodes/SW1A 1AA", POSTCODE_RESULT)
    return fake


# Shared upstream client, every request answered by FakeUpstream
@pytest_asyncio.fixture(scope="function")
async def http_client(upstream):
    async with build_client(transport=httpx.MockTransport(upstream)) as client:
        yield client


@pytest.fixture
def cache(clock):
    return QueryCache(clock=clock)


@pytest_asyncio.fixture(scope="function")
async def dashboard(http_client, cache):
    board = Dashboard(http_client, cache=cache, preferences=MemoryPreferenceStore())
    yield board
    board.close()


# Client
@pytest_asyncio.fixture(scope="function")
async def client(dashboard, http_client):
    app.dependency_overrides[get_dashboard] = lambda: dashboard
    app.dependency_overrides[get_http_client] = lambda: http_client

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as ac:
        yield ac

    app.dependency_overrides.clear()
