import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI

from local_insight.api.router import api_router
from local_insight.core.config import settings
from local_insight.core.dashboard import Dashboard
from local_insight.core.fetch import build_client
from local_insight.core.preferences import build_preference_store

logger = logging.getLogger(__name__)


# Open the shared HTTP client, restore the saved postcode, close everything on shutdown
@asynccontextmanager
async def lifespan(app: FastAPI):
    logging.basicConfig(level=settings.LOG_LEVEL)

    client = build_client()
    dashboard = Dashboard(client, preferences=build_preference_store(settings.PREFERENCE_FILE))
    app.state.http_client = client
    app.state.dashboard = dashboard

    location = await dashboard.restore()
    if location is not None:
        logger.info("Restored saved postcode %s", location.postcode)

    yield
    dashboard.close()
    await client.aclose()


app = FastAPI(title="UK Local Insight API", lifespan=lifespan)

# Include the master router containing all our endpoints
app.include_router(api_router)


@app.get("/")
async def root():
    return {"message": "Welcome to the UK Local Insight API"}


@app.get("/health")
async def health():
    return {"status": "ok"}
