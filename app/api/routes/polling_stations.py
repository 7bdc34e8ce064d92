"""Polling station API routes: reporting status and cross-checks."""

from typing import Annotated

import asyncpg
from fastapi import APIRouter, Depends, Query

from app.api.deps import forbid_agents, get_user_scope
from app.core.database import get_db
from app.core.responses import success_response
from app.services import reporting as reporting_service
from app.services import submissions as submissions_service
from app.services.scope import Scope, narrow_scope, scope_from_filters

router = APIRouter(prefix="/polling-stations", tags=["Polling Stations"])


@router.get("/reporting-status", response_model=dict)
async def get_reporting_status(
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    current_user: Annotated[dict, Depends(forbid_agents)],
    restriction: Annotated[Scope, Depends(get_user_scope)],
    county_id: int | None = None,
    constituency_id: int | None = None,
    ward_id: int | None = None,
    status: str = Query("all", pattern="^(all|submitted|not_submitted)$"),
):
    """Submission state of every station in the requested area."""
    requested = scope_from_filters(
        county_id=county_id, constituency_id=constituency_id, ward_id=ward_id
    )
    scope = await narrow_scope(conn, restriction, requested, user_id=current_user["id"])

    report = await reporting_service.get_reporting_status(
        conn, scope=scope, status_filter=status
    )
    return success_response(data=report)


@router.get("/{polling_station_id}/cross-check", response_model=dict)
async def cross_check_station(
    polling_station_id: int,
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    current_user: Annotated[dict, Depends(forbid_agents)],
    scope: Annotated[Scope, Depends(get_user_scope)],
    position: str = Query(..., pattern="^(president|governor|senator|women_rep|mp|mca)$"),
):
    """Compare the verified primary result with backup submissions."""
    comparison = await submissions_service.cross_verify_station(
        conn, polling_station_id=polling_station_id, position=position, scope=scope
    )
    return success_response(data=comparison)
