"""Result API routes: result intake and scoped aggregation."""

from typing import Annotated

import asyncpg
from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field

from app.api.deps import get_config, get_current_user, get_optional_scope, get_optional_user
from app.core.config import TallyConfig
from app.core.database import get_db
from app.core.responses import success_response
from app.services import aggregation as aggregation_service
from app.services import submissions as submissions_service
from app.services.scope import Scope, narrow_scope, scope_from_filters

router = APIRouter(prefix="/results", tags=["Results"])

POSITION_PATTERN = "^(president|governor|senator|women_rep|mp|mca)$"


class CandidateVoteIn(BaseModel):
    """Votes declared for one candidate."""

    candidate_name: str = Field(..., min_length=1)
    party_name: str | None = None
    votes: int


class ResultCreate(BaseModel):
    """Declared result attached to a submission."""

    submission_id: int = Field(..., gt=0)
    position: str = Field(..., pattern=POSITION_PATTERN)
    registered_voters: int
    total_votes_cast: int
    valid_votes: int
    rejected_votes: int
    candidate_votes: list[CandidateVoteIn]
    manually_verified: bool = False


@router.post("", response_model=dict, status_code=status.HTTP_201_CREATED)
async def create_result(
    payload: ResultCreate,
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    current_user: Annotated[dict, Depends(get_current_user)],
    config: Annotated[TallyConfig, Depends(get_config)],
):
    """
    Record the result declared on a submitted form.

    Arithmetic errors are stored with the result rather than rejected.
    """
    recorded = await submissions_service.record_result(
        conn,
        user=current_user,
        submission_id=payload.submission_id,
        position=payload.position,
        registered_voters=payload.registered_voters,
        total_votes_cast=payload.total_votes_cast,
        valid_votes=payload.valid_votes,
        rejected_votes=payload.rejected_votes,
        candidate_votes=[cv.model_dump() for cv in payload.candidate_votes],
        manually_verified=payload.manually_verified,
        config=config,
    )
    return success_response(data=recorded, message="Result created successfully")


@router.get("/aggregate", response_model=dict)
async def get_aggregate(
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    current_user: Annotated[dict | None, Depends(get_optional_user)],
    restriction: Annotated[Scope, Depends(get_optional_scope)],
    position: str = Query(..., pattern=POSITION_PATTERN),
    county_id: int | None = None,
    constituency_id: int | None = None,
    ward_id: int | None = None,
    polling_station_id: int | None = None,
    level: str | None = None,
    location_id: int | None = None,
):
    """
    Aggregate verified results for a position.

    Candidate callers are confined to their electoral area; filters outside
    it fall back to the whole area.
    """
    requested = scope_from_filters(
        county_id=county_id,
        constituency_id=constituency_id,
        ward_id=ward_id,
        polling_station_id=polling_station_id,
        level=level,
        location_id=location_id,
    )
    scope = await narrow_scope(
        conn,
        restriction,
        requested,
        user_id=current_user["id"] if current_user else None,
    )

    aggregate = await aggregation_service.aggregate_results(conn, position, scope)
    return success_response(data=aggregate)
