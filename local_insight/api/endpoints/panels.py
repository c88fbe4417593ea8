from typing import Annotated, Any, Dict

from fastapi import APIRouter, Body, Depends, HTTPException, status

from local_insight.core import schemas
from local_insight.core.dashboard import Dashboard, get_dashboard
from local_insight.core.errors import LocationNotSet, UnknownParam, UnknownStage

router = APIRouter(prefix="/panels", tags=["Panels"])

dashboard_dep = Annotated[Dashboard, Depends(get_dashboard)]


def _no_location(error: LocationNotSet) -> HTTPException:
    return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(error))


# Resolved panel
@router.get("/{domain}", response_model=schemas.PanelResponse)
async def get_panel(domain: schemas.Domain, dashboard: dashboard_dep):
    try:
        return await dashboard.panel(domain)
    except LocationNotSet as error:
        raise _no_location(error)


# Pick an item from a stage's list
@router.post("/{domain}/selections", response_model=schemas.PanelResponse)
async def select_item(
    domain: schemas.Domain,
    selection: schemas.SelectionRequest,
    dashboard: dashboard_dep,
):
    try:
        cascade = dashboard.cascade(domain)
        cascade.select(selection.stage, selection.value, selection.branch)
    except LocationNotSet as error:
        raise _no_location(error)
    except UnknownStage as error:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(error))

    return await dashboard.panel(domain)


# Change search radius, month, filters...
@router.patch("/{domain}/params", response_model=schemas.PanelResponse)
async def update_params(
    domain: schemas.Domain,
    params: Annotated[Dict[str, Any], Body()],
    dashboard: dashboard_dep,
):
    try:
        cascade = dashboard.cascade(domain)
    except LocationNotSet as error:
        raise _no_location(error)

    unknown = [name for name in params if name not in cascade.params]
    if unknown:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unknown parameter(s) for {domain.value}: {', '.join(sorted(unknown))}",
        )

    try:
        cascade.set_params(params)
    except UnknownParam as error:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(error))
    except ValueError as error:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(error))

    return await dashboard.panel(domain)
