"""Ballot candidate API routes."""

from typing import Annotated

import asyncpg
from fastapi import APIRouter, Depends, Query

from app.api.deps import get_user_scope
from app.core.database import get_db
from app.core.responses import success_response
from app.services import candidates as candidates_service
from app.services.scope import Scope

router = APIRouter(prefix="/ballot-candidates", tags=["Ballot Candidates"])


@router.get("", response_model=dict)
async def list_ballot_candidates(
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    scope: Annotated[Scope, Depends(get_user_scope)],
    position: str | None = Query(None, pattern="^(president|governor|senator|women_rep|mp|mca)$"),
):
    """List candidates on the ballot, optionally for one position."""
    candidates = await candidates_service.list_ballot_candidates(
        conn, position=position, scope=scope
    )
    return success_response(data={"candidates": candidates, "count": len(candidates)})
