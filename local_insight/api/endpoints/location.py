import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status

from local_insight.core import schemas
from local_insight.core.dashboard import Dashboard, get_dashboard
from local_insight.core.errors import PostcodeNotFound, UpstreamError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/location", tags=["Location"])

dashboard_dep = Annotated[Dashboard, Depends(get_dashboard)]


# Current location
@router.get("", response_model=schemas.LocationResponse, status_code=status.HTTP_200_OK)
async def get_location(dashboard: dashboard_dep):
    return dashboard.describe()


# Change postcode
@router.put("", response_model=schemas.LocationResponse, status_code=status.HTTP_200_OK)
async def set_location(body: schemas.PostcodeRequest, dashboard: dashboard_dep):
    try:
        await dashboard.set_postcode(body.postcode)
    except PostcodeNotFound as error:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(error))
    except UpstreamError as error:
        logger.warning("Postcode lookup failed for %r: %s", body.postcode, error)
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"Postcode lookup failed: {error}",
        )

    return dashboard.describe()
