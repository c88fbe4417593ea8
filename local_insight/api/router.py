from fastapi import APIRouter
from local_insight.api.endpoints import location, panels, proxy

api_router = APIRouter()

# Combine all sub-routers into one
api_router.include_router(location.router)
api_router.include_router(panels.router)
api_router.include_router(proxy.router)
